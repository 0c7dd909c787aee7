"""Session schemas."""
from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from rollcall.core.sanitization import sanitize_label
from rollcall.schemas.common import DocumentModel, GeoPoint


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    ARCHIVED = "archived"


class EndReason(str, Enum):
    STOPPED = "stopped"
    EXPIRED = "expired"


class Session(DocumentModel):
    """A time-boxed attendance session. ``ends_at`` is fixed at creation."""

    id: str
    code: str
    owner_id: str
    label: str
    threshold_minutes: int
    geofence_radius_meters: float
    owner_location: Optional[GeoPoint] = None
    created_at: int
    ends_at: int
    updated_at: Optional[int] = None
    status: SessionStatus = SessionStatus.ACTIVE
    ended_at: Optional[int] = None
    end_reason: Optional[EndReason] = None
    archived_at: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE


class SessionCreate(DocumentModel):
    label: str = Field(..., min_length=1, max_length=100)
    threshold_minutes: int = Field(..., gt=0, le=24 * 60)
    radius_meters: float = Field(..., gt=0)
    owner_location: Optional[GeoPoint] = None

    @field_validator('label')
    @classmethod
    def sanitize_label_field(cls, v: str) -> str:
        """Sanitize and validate the session label."""
        return sanitize_label(v)


class SessionSummary(DocumentModel):
    """What participants see of a session. The code is never included: it is
    shown in the room by the owner and re-entered as proof of presence."""

    id: str
    owner_id: str
    label: str
    threshold_minutes: int
    geofence_radius_meters: float
    created_at: int
    ends_at: int
    status: SessionStatus

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummary":
        return cls.model_validate(session.model_dump(exclude={"code", "owner_location"}))
