"""Pydantic schemas for stored documents and request/response validation."""
from rollcall.schemas.attendance import AttendanceEntry, AttendanceRecord, FinalizeRequest
from rollcall.schemas.challenge import (
    ChallengeState,
    CodeRequest,
    CodeSubmission,
    ExitReason,
    FocusState,
)
from rollcall.schemas.common import GeoPoint
from rollcall.schemas.participant import (
    ImageRefRequest,
    JoinRequest,
    Participant,
    ParticipantProfile,
    ParticipantStatus,
)
from rollcall.schemas.session import EndReason, Session, SessionCreate, SessionStatus, SessionSummary

__all__ = [
    "AttendanceEntry",
    "AttendanceRecord",
    "FinalizeRequest",
    "ChallengeState",
    "CodeRequest",
    "CodeSubmission",
    "ExitReason",
    "FocusState",
    "GeoPoint",
    "ImageRefRequest",
    "JoinRequest",
    "Participant",
    "ParticipantProfile",
    "ParticipantStatus",
    "EndReason",
    "Session",
    "SessionCreate",
    "SessionStatus",
    "SessionSummary",
]
