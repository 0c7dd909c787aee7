"""Participant schemas."""
from enum import Enum
from typing import Optional

from pydantic import Field

from rollcall.schemas.common import DocumentModel, GeoPoint


class ParticipantStatus(str, Enum):
    PRESENT = "present"
    LATE = "late"
    ABSENT = "absent"


DEFAULT_PARTICIPANT_STATUS = ParticipantStatus.PRESENT


class ParticipantProfile(DocumentModel):
    """Identity details supplied by the identity collaborator."""

    display_name: Optional[str] = None
    contact_handle: Optional[str] = None


class Participant(DocumentModel):
    """A user's join record within one session, keyed by user id."""

    id: str
    user_id: str
    display_name: Optional[str] = None
    contact_handle: Optional[str] = None
    image_ref: Optional[str] = None
    joined_at: Optional[int] = None
    location: Optional[GeoPoint] = None
    status: Optional[ParticipantStatus] = None
    present: bool = True
    code_verified: bool = False
    code_verified_at: Optional[int] = None
    exited_early: bool = False
    exited_at: Optional[int] = None
    code_attempts_exceeded: bool = False
    code_timeout_absent: bool = False

    @property
    def effective_status(self) -> ParticipantStatus:
        return self.status or DEFAULT_PARTICIPANT_STATUS

    @property
    def challenge_failed(self) -> bool:
        return self.code_attempts_exceeded or self.code_timeout_absent


class JoinRequest(DocumentModel):
    location: Optional[GeoPoint] = None
    image_ref: Optional[str] = Field(None, max_length=2048)


class ImageRefRequest(DocumentModel):
    image_ref: str = Field(..., min_length=1, max_length=2048)
