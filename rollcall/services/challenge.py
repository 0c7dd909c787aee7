"""Verification challenge.

Gates a participant's "joined" status behind re-entering the session code
from inside the monitored view::

    JOINED --10s--> AWAITING_CODE --correct code--> VERIFIED --exit--> ABSENT_EXITED
                    AWAITING_CODE --3rd wrong code--> ABSENT_EXCEEDED
                    AWAITING_CODE --30s, no success--> ABSENT_TIMEOUT
    any non-terminal state --session gone--> SESSION_ENDED

Local state always changes (and timers are cancelled) before the store write
is awaited, so a timer can never fire against a state that has already been
left. Store failures during those writes are logged and otherwise ignored:
the participant is let out of the monitored view even if the write is lost.
"""
from typing import Any, Callable, Dict, Optional

from rollcall.core.clock import Clock, TimerHandle, maybe_await
from rollcall.core.constants import (
    CHALLENGE_MAX_ATTEMPTS,
    CHALLENGE_OPEN_DELAY_SECONDS,
    CHALLENGE_WINDOW_SECONDS,
)
from rollcall.core.exceptions import ChallengeClosedError, NotFoundError, StoreUnavailable
from rollcall.core.logging_config import get_logger
from rollcall.core.sanitization import normalize_code
from rollcall.schemas.challenge import ChallengeState, CodeSubmission, TERMINAL_STATES
from rollcall.schemas.participant import ParticipantStatus
from rollcall.services.participant import participant_path
from rollcall.store.base import SERVER_TIMESTAMP, DocumentStore

logger = get_logger(__name__)

TransitionListener = Callable[[ChallengeState, ChallengeState], Any]


class VerificationChallenge:
    """Per-participant code re-entry state machine."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        session_id: str,
        user_id: str,
        expected_code: str,
        open_delay: float = CHALLENGE_OPEN_DELAY_SECONDS,
        window: float = CHALLENGE_WINDOW_SECONDS,
        max_attempts: int = CHALLENGE_MAX_ATTEMPTS,
        on_transition: Optional[TransitionListener] = None,
    ):
        self.store = store
        self.clock = clock
        self.session_id = session_id
        self.user_id = user_id
        self._expected = normalize_code(expected_code)
        self.open_delay = open_delay
        self.window = window
        self.max_attempts = max_attempts
        self._on_transition = on_transition

        self.state = ChallengeState.JOINED
        self.attempts = 0
        self.opened_at: Optional[int] = None
        self._started = False
        self._open_timer: Optional[TimerHandle] = None
        self._window_timer: Optional[TimerHandle] = None

    # -- queries --------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts, 0)

    @property
    def has_pending_timers(self) -> bool:
        return any(t is not None and t.active for t in (self._open_timer, self._window_timer))

    # -- inputs ---------------------------------------------------------------

    def start(self) -> None:
        """Called on entry into the monitored view; arms the open-delay timer."""
        if self._started or self.is_terminal:
            return
        self._started = True
        self._open_timer = self.clock.call_later(self.open_delay, self._open)

    async def submit(self, code: Optional[str]) -> CodeSubmission:
        """Check one code entry.

        An empty entry is rejected without consuming an attempt. A wrong entry
        consumes one; the last one ends the challenge as ABSENT_EXCEEDED.

        Raises:
            ChallengeClosedError: the challenge is not awaiting a code
        """
        if self.state != ChallengeState.AWAITING_CODE:
            raise ChallengeClosedError(self._closed_message())

        entry = normalize_code(code)
        if not entry:
            return self._submission(False, "Please enter the code.")

        if entry == self._expected:
            await self._transition(ChallengeState.VERIFIED, {
                "status": ParticipantStatus.PRESENT.value,
                "present": True,
                "exitedEarly": False,
                "codeAttemptsExceeded": False,
                "codeVerified": True,
                "codeVerifiedAt": SERVER_TIMESTAMP,
            })
            return self._submission(True)

        self.attempts += 1
        logger.info(
            "challenge_wrong_code",
            session_id=self.session_id,
            user_id=self.user_id,
            attempts=self.attempts,
        )
        if self.attempts >= self.max_attempts:
            await self._transition(ChallengeState.ABSENT_EXCEEDED, self._absent_fields(codeAttemptsExceeded=True))
            return self._submission(False, "Too many incorrect attempts. You have been marked absent.")

        remaining = self.attempts_remaining
        plural = "" if remaining == 1 else "s"
        return self._submission(False, f"Incorrect code. {remaining} attempt{plural} remaining.")

    async def exit(self) -> ChallengeState:
        """Participant leaves the monitored view and is marked absent.

        A terminal state is left untouched: a timeout or attempt failure that
        already fired recorded the same absent outcome.
        """
        if self.is_terminal:
            return self.state
        await self._transition(ChallengeState.ABSENT_EXITED, self._absent_fields())
        return self.state

    async def end_session(self) -> ChallengeState:
        """The session went away; stop without touching the participant record."""
        if self.is_terminal:
            return self.state
        await self._transition(ChallengeState.SESSION_ENDED, None)
        return self.state

    def cancel(self) -> None:
        """Disarm both timers without changing state."""
        for timer in (self._open_timer, self._window_timer):
            if timer is not None:
                timer.cancel()
        self._open_timer = None
        self._window_timer = None

    # -- timer edges ----------------------------------------------------------

    async def _open(self) -> None:
        self._open_timer = None
        if self.state != ChallengeState.JOINED:
            return
        self.opened_at = self.clock.now_ms()
        self._window_timer = self.clock.call_later(self.window, self._window_elapsed)
        await self._transition(ChallengeState.AWAITING_CODE, None)

    async def _window_elapsed(self) -> None:
        self._window_timer = None
        if self.state != ChallengeState.AWAITING_CODE:
            return
        await self._transition(ChallengeState.ABSENT_TIMEOUT, self._absent_fields(codeTimeoutAbsent=True))

    # -- internals ------------------------------------------------------------

    def _absent_fields(self, **flags: bool) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "status": ParticipantStatus.ABSENT.value,
            "present": False,
            "exitedEarly": True,
            "exitedAt": SERVER_TIMESTAMP,
        }
        if flags:
            fields["codeVerified"] = False
            fields.update(flags)
        return fields

    async def _transition(self, new_state: ChallengeState, fields: Optional[Dict[str, Any]]) -> None:
        old_state = self.state
        self.state = new_state
        if new_state != ChallengeState.AWAITING_CODE:
            self.cancel()

        logger.info(
            "challenge_transition",
            session_id=self.session_id,
            user_id=self.user_id,
            from_state=old_state.value,
            to_state=new_state.value,
            attempts=self.attempts,
        )

        if fields is not None:
            await self._persist(fields)

        if self._on_transition is not None:
            await maybe_await(self._on_transition(old_state, new_state))

    async def _persist(self, fields: Dict[str, Any]) -> None:
        try:
            await self.store.update(participant_path(self.session_id, self.user_id), fields)
        except (StoreUnavailable, NotFoundError) as exc:
            logger.warning(
                "challenge_persist_failed",
                session_id=self.session_id,
                user_id=self.user_id,
                state=self.state.value,
                error=str(exc),
            )

    def _submission(self, accepted: bool, error: Optional[str] = None) -> CodeSubmission:
        return CodeSubmission(
            accepted=accepted,
            state=self.state,
            attempts=self.attempts,
            attempts_remaining=self.attempts_remaining,
            error=error,
        )

    def _closed_message(self) -> str:
        if self.state == ChallengeState.JOINED:
            return "Verification has not opened yet"
        if self.state == ChallengeState.VERIFIED:
            return "Code already verified"
        return "Verification is closed"
