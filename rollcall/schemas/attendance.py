"""Attendance record schemas."""
from typing import Dict, List, Optional

from pydantic import Field

from rollcall.schemas.common import DocumentModel
from rollcall.schemas.participant import ParticipantStatus


class AttendanceEntry(DocumentModel):
    participant_id: str
    user_id: str
    display_name: Optional[str] = None
    contact_handle: Optional[str] = None
    status: ParticipantStatus
    distance_meters: Optional[int] = None


class AttendanceRecord(DocumentModel):
    """Immutable end-of-session record. Only ``hidden_by`` changes after writing."""

    id: str
    session_id: str
    label: str
    code: str
    threshold_minutes: int
    radius: float
    owner_id: str
    created_at: Optional[int] = None
    participant_ids: List[str] = Field(default_factory=list)
    summary: List[AttendanceEntry] = Field(default_factory=list)
    hidden_by: List[str] = Field(default_factory=list)

    def entry_for(self, user_id: str) -> Optional[AttendanceEntry]:
        for entry in self.summary:
            if entry.user_id == user_id:
                return entry
        return None


class FinalizeRequest(DocumentModel):
    status_overrides: Dict[str, ParticipantStatus] = Field(default_factory=dict)
