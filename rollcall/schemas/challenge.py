"""Verification challenge schemas."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from rollcall.schemas.common import DocumentModel


class ChallengeState(str, Enum):
    JOINED = "joined"
    AWAITING_CODE = "awaiting_code"
    VERIFIED = "verified"
    ABSENT_EXCEEDED = "absent_exceeded"
    ABSENT_TIMEOUT = "absent_timeout"
    ABSENT_EXITED = "absent_exited"
    SESSION_ENDED = "session_ended"


TERMINAL_STATES = frozenset({
    ChallengeState.ABSENT_EXCEEDED,
    ChallengeState.ABSENT_TIMEOUT,
    ChallengeState.ABSENT_EXITED,
    ChallengeState.SESSION_ENDED,
})

ABSENT_STATES = frozenset({
    ChallengeState.ABSENT_EXCEEDED,
    ChallengeState.ABSENT_TIMEOUT,
    ChallengeState.ABSENT_EXITED,
})


class ExitReason(str, Enum):
    EXITED = "exited"
    CODE_TIMEOUT = "code_timeout"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    SESSION_ENDED = "session_ended"
    TIME_UP = "time_up"


class CodeSubmission(DocumentModel):
    """Outcome of one code entry."""

    accepted: bool
    state: ChallengeState
    attempts: int
    attempts_remaining: int
    error: Optional[str] = None


class CodeRequest(BaseModel):
    code: str = Field("", max_length=64)


class FocusState(DocumentModel):
    session_id: str
    user_id: str
    state: ChallengeState
    attempts: int
    attempts_remaining: int
    remaining: Optional[str] = None
    exit_reason: Optional[ExitReason] = None
