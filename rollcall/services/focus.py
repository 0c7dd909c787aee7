"""Focus (monitored) view.

A participant occupies the monitored view from ``enter`` until one of: the
verification challenge reaches a terminal state, a manual exit, deletion of
the session record, or the session deadline. Whatever the cause, leaving
cancels the challenge timers, the focus countdown and the session listener.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

from rollcall.core.clock import Clock, maybe_await
from rollcall.core.constants import (
    CHALLENGE_MAX_ATTEMPTS,
    CHALLENGE_OPEN_DELAY_SECONDS,
    CHALLENGE_WINDOW_SECONDS,
    COUNTDOWN_INTERVAL_SECONDS,
)
from rollcall.core.exceptions import ChallengeClosedError, NotFoundError, ValidationError
from rollcall.core.logging_config import get_logger
from rollcall.schemas.challenge import (
    ChallengeState,
    CodeSubmission,
    ExitReason,
    FocusState,
    TERMINAL_STATES,
)
from rollcall.schemas.participant import Participant
from rollcall.schemas.session import Session
from rollcall.services.challenge import VerificationChallenge
from rollcall.services.deadline import Countdown
from rollcall.services.participant import participant_path
from rollcall.services.session import session_path
from rollcall.store.base import DocumentSnapshot, DocumentStore, Subscription

logger = get_logger(__name__)

EXIT_REASONS = {
    ChallengeState.ABSENT_EXITED: ExitReason.EXITED,
    ChallengeState.ABSENT_TIMEOUT: ExitReason.CODE_TIMEOUT,
    ChallengeState.ABSENT_EXCEEDED: ExitReason.ATTEMPTS_EXCEEDED,
    ChallengeState.SESSION_ENDED: ExitReason.SESSION_ENDED,
}

# A participant who failed the challenge stays out for the rest of the session
LOCKOUT_REASONS = frozenset({ExitReason.CODE_TIMEOUT, ExitReason.ATTEMPTS_EXCEEDED})


class FocusSession:
    """One participant's stay in the monitored view of one session."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        session: Session,
        user_id: str,
        open_delay: float = CHALLENGE_OPEN_DELAY_SECONDS,
        window: float = CHALLENGE_WINDOW_SECONDS,
        max_attempts: int = CHALLENGE_MAX_ATTEMPTS,
        tick_interval: float = COUNTDOWN_INTERVAL_SECONDS,
        on_leave: Optional[Callable[["FocusSession"], Any]] = None,
    ):
        self.store = store
        self.session = session
        self.user_id = user_id
        self.challenge = VerificationChallenge(
            store,
            clock,
            session.id,
            user_id,
            session.code,
            open_delay=open_delay,
            window=window,
            max_attempts=max_attempts,
            on_transition=self._challenge_changed,
        )
        self.countdown = Countdown(clock, session.ends_at, on_due=self._time_up, interval=tick_interval)
        self.exit_reason: Optional[ExitReason] = None
        self._on_leave = on_leave
        self._subscription: Optional[Subscription] = None

    @property
    def left(self) -> bool:
        return self.exit_reason is not None

    async def enter(self) -> "FocusSession":
        subscription = await self.store.watch_document(session_path(self.session.id), self._session_changed)
        if self.left:
            # Session was already gone on the initial snapshot
            subscription.unsubscribe()
            return self
        self._subscription = subscription
        self.challenge.start()
        self.countdown.start()
        logger.info("focus_entered", session_id=self.session.id, user_id=self.user_id)
        return self

    async def submit_code(self, code: Optional[str]) -> CodeSubmission:
        if self.left:
            raise ChallengeClosedError("You have left the monitored view")
        return await self.challenge.submit(code)

    async def exit(self) -> FocusState:
        """Leave voluntarily. The participant is marked absent."""
        if not self.left:
            await self.challenge.exit()
        return self.state()

    def state(self) -> FocusState:
        return FocusState(
            session_id=self.session.id,
            user_id=self.user_id,
            state=self.challenge.state,
            attempts=self.challenge.attempts,
            attempts_remaining=self.challenge.attempts_remaining,
            remaining=None if self.left else self.countdown.remaining_label,
            exit_reason=self.exit_reason,
        )

    async def close(self) -> None:
        """Tear down without marking anything; used when the session is discarded."""
        await self._leave(ExitReason.SESSION_ENDED)

    async def _session_changed(self, snapshot: DocumentSnapshot) -> None:
        if not snapshot.exists:
            await self.challenge.end_session()

    async def _challenge_changed(self, old_state: ChallengeState, new_state: ChallengeState) -> None:
        if new_state in TERMINAL_STATES:
            await self._leave(EXIT_REASONS[new_state])

    async def _time_up(self) -> None:
        await self._leave(ExitReason.TIME_UP)

    async def _leave(self, reason: ExitReason) -> None:
        if self.left:
            return
        self.exit_reason = reason
        self.challenge.cancel()
        self.countdown.cancel()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        logger.info(
            "focus_left",
            session_id=self.session.id,
            user_id=self.user_id,
            reason=reason.value,
            state=self.challenge.state.value,
        )
        if self._on_leave is not None:
            await maybe_await(self._on_leave(self))


class FocusRegistry:
    """Tracks every monitored view on this server, one per (session, user)."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        open_delay: float = CHALLENGE_OPEN_DELAY_SECONDS,
        window: float = CHALLENGE_WINDOW_SECONDS,
        max_attempts: int = CHALLENGE_MAX_ATTEMPTS,
        tick_interval: float = COUNTDOWN_INTERVAL_SECONDS,
    ):
        self.store = store
        self.clock = clock
        self.open_delay = open_delay
        self.window = window
        self.max_attempts = max_attempts
        self.tick_interval = tick_interval
        self._views: Dict[Tuple[str, str], FocusSession] = {}

    async def enter(self, session: Session, user_id: str) -> FocusSession:
        """Enter the monitored view, or return the view already in progress.

        A challenge still in progress is kept as is, timers included. After a
        voluntary exit (or a deadline/session end) a fresh challenge starts.
        A participant who timed out or ran out of attempts cannot re-enter.

        Raises:
            NotFoundError: the user has not joined the session
            ValidationError: the session is not active
            ChallengeClosedError: the user already failed verification
        """
        key = (session.id, user_id)
        current = self._views.get(key)
        if current is not None and not current.left:
            return current
        if current is not None and current.exit_reason in LOCKOUT_REASONS:
            raise ChallengeClosedError("Verification failed; you have been marked absent")

        if not session.is_active:
            raise ValidationError("Session is not active")

        snapshot = await self.store.get(participant_path(session.id, user_id))
        if not snapshot.exists:
            raise NotFoundError("Join the session before entering the monitored view")
        if Participant.from_snapshot(snapshot).challenge_failed:
            raise ChallengeClosedError("Verification failed; you have been marked absent")

        view = FocusSession(
            self.store,
            self.clock,
            session,
            user_id,
            open_delay=self.open_delay,
            window=self.window,
            max_attempts=self.max_attempts,
            tick_interval=self.tick_interval,
        )
        self._views[key] = view
        return await view.enter()

    def get(self, session_id: str, user_id: str) -> FocusSession:
        view = self._views.get((session_id, user_id))
        if view is None:
            raise NotFoundError("Not in the monitored view")
        return view

    async def submit(self, session_id: str, user_id: str, code: Optional[str]) -> CodeSubmission:
        return await self.get(session_id, user_id).submit_code(code)

    async def exit(self, session_id: str, user_id: str) -> FocusState:
        return await self.get(session_id, user_id).exit()

    def views_for(self, session_id: str) -> List[FocusSession]:
        return [view for (sid, _), view in self._views.items() if sid == session_id]

    async def discard_session(self, session_id: str) -> int:
        """Drop every view of a finished session, closing any still open."""
        views = self.views_for(session_id)
        for view in views:
            await view.close()
            self._views.pop((session_id, view.user_id), None)
        return len(views)
