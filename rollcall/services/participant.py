"""Participant business logic."""
from typing import Any, Callable, Dict, List, Optional, Tuple

from rollcall.core.clock import maybe_await
from rollcall.core.constants import PARTICIPANTS_COLLECTION, SESSIONS_COLLECTION
from rollcall.core.exceptions import NotFoundError, ValidationError
from rollcall.core.logging_config import get_logger
from rollcall.schemas.common import GeoPoint
from rollcall.schemas.participant import (
    DEFAULT_PARTICIPANT_STATUS,
    Participant,
    ParticipantProfile,
    ParticipantStatus,
)
from rollcall.schemas.session import SessionStatus
from rollcall.services.deadline import is_due
from rollcall.store.base import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore, Query, Subscription

logger = get_logger(__name__)


def participants_collection(session_id: str) -> str:
    return f"{SESSIONS_COLLECTION}/{session_id}/{PARTICIPANTS_COLLECTION}"


def participant_path(session_id: str, user_id: str) -> str:
    return f"{participants_collection(session_id)}/{user_id}"


def _sorted_participants(snapshots: List[DocumentSnapshot]) -> List[Participant]:
    participants = [Participant.from_snapshot(s) for s in snapshots]
    participants.sort(key=lambda p: (p.joined_at is None, p.joined_at or 0, p.id))
    return participants


class ParticipantFeed:
    """A live view of one session's participants, owned by whoever subscribed.

    ``on_change`` receives the full participant list (ordered by join time) on
    every change. ``on_joined`` fires once for every observed increase of the
    participant count, compared against the last count seen.
    """

    def __init__(
        self,
        session_id: str,
        on_change: Callable[[List[Participant]], Any],
        on_joined: Optional[Callable[[int], Any]] = None,
    ):
        self.session_id = session_id
        self._on_change = on_change
        self._on_joined = on_joined
        self._subscription: Optional[Subscription] = None
        self._release: Optional[Callable[["ParticipantFeed"], None]] = None
        self.last_count = 0

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
        if self._release is not None:
            release, self._release = self._release, None
            release(self)

    async def _deliver(self, snapshots: List[DocumentSnapshot]) -> None:
        participants = _sorted_participants(snapshots)
        await maybe_await(self._on_change(participants))
        count = len(participants)
        if count > self.last_count and self._on_joined is not None:
            await maybe_await(self._on_joined(count))
        self.last_count = count


class ParticipantTracker:
    """Owns participant records and live participant subscriptions."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._feeds: Dict[Tuple[str, str], ParticipantFeed] = {}

    async def join(
        self,
        session_id: str,
        user_id: str,
        profile: ParticipantProfile,
        location: Optional[GeoPoint] = None,
        image_ref: Optional[str] = None,
    ) -> Participant:
        """Create or refresh the caller's participant record.

        Re-joining merges into the same record keyed by user id. The status goes
        back to present, except after a failed verification challenge: once
        the challenge has marked someone absent, joining again keeps them absent.

        Raises:
            NotFoundError: the session does not exist
            ValidationError: the session is no longer accepting participants
        """
        if not user_id:
            raise ValidationError("User is required")

        session = await self.store.get(f"{SESSIONS_COLLECTION}/{session_id}")
        if not session.exists:
            raise NotFoundError("Session not found")
        if session.get("status") != SessionStatus.ACTIVE.value:
            raise ValidationError("Session is not accepting participants")
        # Still marked active when nobody expired it after the deadline
        if is_due(session.get("endsAt"), self.store.clock.now_ms()):
            raise ValidationError("Session is not accepting participants")

        path = participant_path(session_id, user_id)
        existing = await self.store.get(path)
        failed = existing.exists and (
            existing.get("codeAttemptsExceeded") or existing.get("codeTimeoutAbsent")
        )

        fields: Dict[str, Any] = {
            "userId": user_id,
            "displayName": profile.display_name,
            "contactHandle": profile.contact_handle,
            "imageRef": image_ref,
            "joinedAt": SERVER_TIMESTAMP,
            "location": location.to_document() if location else None,
        }
        if not failed:
            fields.update({
                "status": DEFAULT_PARTICIPANT_STATUS.value,
                "present": True,
                "exitedEarly": False,
                "exitedAt": None,
            })

        await self.store.set(path, fields, merge=True)
        logger.info(
            "participant_joined",
            session_id=session_id,
            user_id=user_id,
            rejoin=existing.exists,
            has_location=location is not None,
        )
        return await self.get_participant(session_id, user_id)

    async def attach_image(self, session_id: str, user_id: str, image_ref: Optional[str]) -> Participant:
        """Record the opaque media reference for an existing participant."""
        await self.store.update(participant_path(session_id, user_id), {"imageRef": image_ref})
        return await self.get_participant(session_id, user_id)

    async def get_participant(self, session_id: str, user_id: str) -> Participant:
        snapshot = await self.store.get(participant_path(session_id, user_id))
        if not snapshot.exists:
            raise NotFoundError("Participant not found")
        return Participant.from_snapshot(snapshot)

    async def list_participants(self, session_id: str) -> List[Participant]:
        snapshots = await self.store.query(Query(participants_collection(session_id)))
        return _sorted_participants(snapshots)

    async def remove_all(self, session_id: str) -> int:
        """Delete every participant record of a session."""
        snapshots = await self.store.query(Query(participants_collection(session_id)))
        for snapshot in snapshots:
            await self.store.delete(snapshot.path)
        return len(snapshots)

    async def subscribe(
        self,
        session_id: str,
        on_change: Callable[[List[Participant]], Any],
        on_joined: Optional[Callable[[int], Any]] = None,
        observer: Optional[str] = None,
    ) -> ParticipantFeed:
        """Start a live participant feed for ``session_id``.

        When ``observer`` is given, an earlier feed of the same observer on the
        same session is unsubscribed first so repeated starts never stack
        duplicate listeners. The returned feed must be unsubscribed by its owner.
        """
        if observer is not None:
            previous = self._feeds.get((observer, session_id))
            if previous is not None:
                previous.unsubscribe()

        feed = ParticipantFeed(session_id, on_change, on_joined)
        feed._subscription = await self.store.watch_query(
            Query(participants_collection(session_id)),
            feed._deliver,
        )

        if observer is not None:
            key = (observer, session_id)
            self._feeds[key] = feed

            def release(f: ParticipantFeed) -> None:
                if self._feeds.get(key) is f:
                    del self._feeds[key]

            feed._release = release

        return feed

    def active_feed(self, observer: str, session_id: str) -> Optional[ParticipantFeed]:
        return self._feeds.get((observer, session_id))

    @staticmethod
    def count_by_status(participants: List[Participant]) -> Dict[ParticipantStatus, int]:
        counts = {status: 0 for status in ParticipantStatus}
        for participant in participants:
            counts[participant.effective_status] += 1
        return counts
