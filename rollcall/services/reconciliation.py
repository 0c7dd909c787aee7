"""Reconciliation: turns a finished session into its attendance record."""
from typing import List, Mapping, Optional, Set

from rollcall.core.exceptions import NotFoundError, ValidationError
from rollcall.core.logging_config import get_logger
from rollcall.core.utils import haversine_meters
from rollcall.schemas.attendance import AttendanceEntry, AttendanceRecord
from rollcall.schemas.common import GeoPoint
from rollcall.schemas.participant import Participant, ParticipantStatus
from rollcall.schemas.session import Session
from rollcall.services.attendance import attendance_path
from rollcall.services.participant import ParticipantTracker
from rollcall.services.session import SessionManager
from rollcall.store.base import SERVER_TIMESTAMP

logger = get_logger(__name__)


def distance_between(a: Optional[GeoPoint], b: Optional[GeoPoint]) -> Optional[int]:
    """Great-circle distance in whole metres, or None when either point is missing."""
    if a is None or b is None:
        return None
    return int(round(haversine_meters(a.lat, a.lng, b.lat, b.lng)))


def build_summary(
    session: Session,
    participants: List[Participant],
    status_overrides: Optional[Mapping[str, ParticipantStatus]] = None,
) -> List[AttendanceEntry]:
    overrides = status_overrides or {}
    summary = []
    for participant in participants:
        status = overrides.get(participant.user_id) or overrides.get(participant.id) or participant.effective_status
        summary.append(AttendanceEntry(
            participant_id=participant.id,
            user_id=participant.user_id or participant.id,
            display_name=participant.display_name,
            contact_handle=participant.contact_handle,
            status=ParticipantStatus(status),
            distance_meters=distance_between(participant.location, session.owner_location),
        ))
    return summary


class ReconciliationEngine:
    """Writes the attendance record, then archives and deletes the session.

    Deleting the session is what makes ``finalize`` single-shot: a second call
    for the same session finds nothing and raises ``NotFoundError``. Calls that
    overlap on this server are refused the same way while the first is running.
    """

    def __init__(self, manager: SessionManager, tracker: ParticipantTracker):
        self.manager = manager
        self.tracker = tracker
        self.store = manager.store
        self._in_flight: Set[str] = set()

    async def finalize(
        self,
        session: Session,
        participants: Optional[List[Participant]] = None,
        status_overrides: Optional[Mapping[str, ParticipantStatus]] = None,
    ) -> AttendanceRecord:
        """Finalize ``session`` into an attendance record.

        When ``participants`` is omitted the current participant records are
        read from the store. Overrides are checked before anything is written; an
        active session is then stopped. The record is stored under the session
        id, so retrying after a failed cleanup step reuses it.

        Raises:
            NotFoundError: the session no longer exists, or is already being finalized
            ValidationError: an override names someone who is not a participant
        """
        if session.id in self._in_flight:
            raise NotFoundError("Session is already being finalized")
        self._in_flight.add(session.id)
        try:
            return await self._finalize(session, participants, status_overrides)
        finally:
            self._in_flight.discard(session.id)

    async def _finalize(
        self,
        session: Session,
        participants: Optional[List[Participant]],
        status_overrides: Optional[Mapping[str, ParticipantStatus]],
    ) -> AttendanceRecord:
        current = await self.manager.get_session(session.id)
        # The record is keyed by session, so a retry after a failed cleanup
        # finishes the cleanup instead of writing a second record
        record_path = attendance_path(current.id)
        written = await self.store.get(record_path)
        if written.exists:
            logger.warning("attendance_record_exists", session_id=current.id)
            participant_count = len(written.get("summary") or [])
        else:
            participant_count = await self._write_record(current, record_path, participants, status_overrides)

        await self.manager.archive_session(current.id)
        removed = await self.tracker.remove_all(current.id)
        await self.manager.delete_session(current.id)

        logger.info(
            "attendance_finalized",
            session_id=current.id,
            record_id=current.id,
            participants=participant_count,
            removed=removed,
            overrides=len(status_overrides or {}),
        )
        return AttendanceRecord.from_snapshot(await self.store.get(record_path))

    async def _write_record(
        self,
        current: Session,
        record_path: str,
        participants: Optional[List[Participant]],
        status_overrides: Optional[Mapping[str, ParticipantStatus]],
    ) -> int:
        if participants is None:
            participants = await self.tracker.list_participants(current.id)

        if status_overrides:
            known = {p.user_id for p in participants} | {p.id for p in participants}
            unknown = sorted(set(status_overrides) - known)
            if unknown:
                raise ValidationError(f"Unknown participants in overrides: {', '.join(unknown)}")

        if current.is_active:
            current = await self.manager.stop_session(current)

        summary = build_summary(current, participants, status_overrides)
        await self.store.set(record_path, {
            "sessionId": current.id,
            "label": current.label,
            "code": current.code,
            "thresholdMinutes": current.threshold_minutes,
            "radius": current.geofence_radius_meters,
            "ownerId": current.owner_id,
            "createdAt": SERVER_TIMESTAMP,
            "participantIds": [entry.user_id for entry in summary],
            "summary": [entry.to_document() for entry in summary],
            "hiddenBy": [],
        })
        return len(summary)
