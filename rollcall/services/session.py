"""Session business logic."""
from typing import Any, Callable, Dict, List, Optional

from rollcall.core.clock import Clock, maybe_await
from rollcall.core.constants import SESSIONS_COLLECTION
from rollcall.core.exceptions import NotFoundError, StoreUnavailable, ValidationError
from rollcall.core.logging_config import get_logger
from rollcall.core.sanitization import sanitize_label
from rollcall.core.utils import generate_session_code
from rollcall.schemas.common import GeoPoint
from rollcall.schemas.session import EndReason, Session, SessionStatus
from rollcall.services.deadline import Countdown, is_due
from rollcall.services.participant import ParticipantFeed, ParticipantTracker
from rollcall.store.base import (
    SERVER_TIMESTAMP,
    DocumentSnapshot,
    DocumentStore,
    Query,
    Subscription,
    server_timestamp,
)

logger = get_logger(__name__)


def session_path(session_id: str) -> str:
    return f"{SESSIONS_COLLECTION}/{session_id}"


class SessionManager:
    """Creates sessions and drives the active -> ended -> archived lifecycle.

    Status writes are idempotent: stopping or expiring a session that is no
    longer active is a no-op, which is how concurrent stop/expire races
    converge without locking.
    """

    def __init__(
        self,
        store: DocumentStore,
        code_factory: Callable[[], str] = generate_session_code,
    ):
        self.store = store
        self._code_factory = code_factory

    @property
    def clock(self) -> Clock:
        return self.store.clock

    async def create_session(
        self,
        owner_id: str,
        label: str,
        threshold_minutes: int,
        radius_meters: float,
        owner_location: Optional[GeoPoint] = None,
    ) -> Session:
        """Create an active session whose deadline is ``threshold_minutes`` from now.

        Raises:
            ValidationError: empty label, or non-positive duration/radius
        """
        if not owner_id:
            raise ValidationError("Owner is required")
        label = sanitize_label(label or "")
        if threshold_minutes is None or threshold_minutes <= 0:
            raise ValidationError("Threshold minutes must be positive")
        if radius_meters is None or radius_meters <= 0:
            raise ValidationError("Radius must be positive")

        code = self._code_factory()
        session_id = await self.store.add(SESSIONS_COLLECTION, {
            "code": code,
            "ownerId": owner_id,
            "label": label,
            "thresholdMinutes": int(threshold_minutes),
            "geofenceRadiusMeters": float(radius_meters),
            "ownerLocation": owner_location.to_document() if owner_location else None,
            "status": SessionStatus.ACTIVE.value,
            # Both resolve to the same server instant
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
            "endsAt": server_timestamp(offset_ms=int(threshold_minutes) * 60_000),
        })

        session = await self.get_session(session_id)
        logger.info(
            "session_created",
            session_id=session.id,
            owner_id=owner_id,
            label=label,
            threshold_minutes=session.threshold_minutes,
            ends_at=session.ends_at,
        )
        return session

    async def get_session(self, session_id: str) -> Session:
        snapshot = await self.store.get(session_path(session_id))
        if not snapshot.exists:
            raise NotFoundError("Session not found")
        return Session.from_snapshot(snapshot)

    async def stop_session(self, session: Session) -> Session:
        """Owner-triggered early end. Keeps the record for reconciliation."""
        return await self._end(session.id, EndReason.STOPPED)

    async def auto_expire(self, session: Session) -> bool:
        """End the session if its deadline has passed.

        Returns True only when this call performed the transition.
        """
        if not is_due(session.ends_at, self.clock.now_ms()):
            return False
        try:
            current = await self.get_session(session.id)
        except NotFoundError:
            return False
        if not current.is_active:
            return False
        await self._end(session.id, EndReason.EXPIRED)
        return True

    async def archive_session(self, session_id: str) -> None:
        await self.store.update(session_path(session_id), {
            "status": SessionStatus.ARCHIVED.value,
            "archivedAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })
        logger.info("session_archived", session_id=session_id)

    async def delete_session(self, session_id: str) -> None:
        await self.store.delete(session_path(session_id))
        logger.info("session_deleted", session_id=session_id)

    async def list_active_sessions(self) -> List[Session]:
        """Active sessions whose deadline is still ahead, newest first."""
        query = Query(SESSIONS_COLLECTION).where("status", "==", SessionStatus.ACTIVE.value)
        snapshots = await self.store.query(query)
        return self._visible(snapshots)

    async def watch_active_sessions(self, on_change: Callable[[List[Session]], Any]) -> Subscription:
        """Live variant of ``list_active_sessions``."""
        query = Query(SESSIONS_COLLECTION).where("status", "==", SessionStatus.ACTIVE.value)

        def deliver(snapshots: List[DocumentSnapshot]):
            return on_change(self._visible(snapshots))

        return await self.store.watch_query(query, deliver)

    def _visible(self, snapshots: List[DocumentSnapshot]) -> List[Session]:
        now = self.clock.now_ms()
        sessions = [Session.from_snapshot(s) for s in snapshots]
        # A status can linger after the deadline when nobody expired it yet
        sessions = [s for s in sessions if not is_due(s.ends_at, now)]
        sessions.sort(key=lambda s: s.created_at, reverse=True)
        return sessions

    async def _end(self, session_id: str, reason: EndReason) -> Session:
        current = await self.get_session(session_id)
        if not current.is_active:
            return current

        update: Dict[str, Any] = {
            "status": SessionStatus.ENDED.value,
            "endReason": reason.value,
            "endedAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        await self.store.update(session_path(session_id), update)
        logger.info("session_ended", session_id=session_id, reason=reason.value)
        return await self.get_session(session_id)


class SessionConsole:
    """Owner-side controller for one running session.

    Owns the deadline countdown (which triggers ``auto_expire``) and the live
    participant feed. ``close`` releases both; it runs automatically when the
    session is stopped or expires.
    """

    def __init__(
        self,
        manager: SessionManager,
        tracker: ParticipantTracker,
        session: Session,
        on_participants: Optional[Callable[..., Any]] = None,
        on_joined: Optional[Callable[..., Any]] = None,
        on_tick: Optional[Callable[[str], Any]] = None,
        on_ended: Optional[Callable[[Session], Any]] = None,
        tick_interval: Optional[float] = None,
    ):
        self.manager = manager
        self.tracker = tracker
        self.session = session
        self._on_participants = on_participants
        self._on_joined = on_joined
        self._on_ended = on_ended
        self._on_tick = on_tick
        self._tick_interval = tick_interval
        self.countdown = self._new_countdown()
        self.feed: Optional[ParticipantFeed] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> "SessionConsole":
        self.feed = await self.tracker.subscribe(
            self.session.id,
            self._participants_changed,
            on_joined=self._on_joined,
            observer=f"console:{self.session.owner_id}",
        )
        self.countdown.start()
        return self

    def resume(self) -> None:
        """Re-arm a cancelled countdown, e.g. after a failed finalize."""
        if self._closed or self.countdown.running:
            return
        self.countdown = self._new_countdown().start()

    async def stop(self) -> Session:
        """Stop the session early and release resources."""
        self.countdown.cancel()
        try:
            self.session = await self.manager.stop_session(self.session)
        finally:
            await self.close()
        return self.session

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.countdown.cancel()
        if self.feed is not None:
            self.feed.unsubscribe()
        if self._on_ended is not None:
            await maybe_await(self._on_ended(self.session))

    def _new_countdown(self) -> Countdown:
        kwargs = {"interval": self._tick_interval} if self._tick_interval else {}
        return Countdown(self.manager.clock, self.session.ends_at, on_tick=self._on_tick, on_due=self._expire, **kwargs)

    async def _participants_changed(self, participants):
        if self._on_participants is not None:
            await maybe_await(self._on_participants(participants))

    async def _expire(self) -> None:
        if self._closed:
            return
        try:
            if await self.manager.auto_expire(self.session):
                self.session = await self.manager.get_session(self.session.id)
        except NotFoundError:
            logger.info("session_vanished_before_expiry", session_id=self.session.id)
        except StoreUnavailable as exc:
            logger.warning("session_expiry_failed", session_id=self.session.id, error=str(exc))
        finally:
            await self.close()
