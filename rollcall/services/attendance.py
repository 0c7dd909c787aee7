"""Attendance history: recent records per viewer and per-viewer hiding."""
from typing import Any, Callable, Dict, List, Optional

from rollcall.core.constants import ATTENDANCE_COLLECTION, RECENT_ATTENDANCE_LIMIT
from rollcall.core.exceptions import NotFoundError, QueryError
from rollcall.core.logging_config import get_logger
from rollcall.core.security import Role
from rollcall.schemas.attendance import AttendanceRecord
from rollcall.store.base import DocumentSnapshot, DocumentStore, Query, Subscription, array_union

logger = get_logger(__name__)


def attendance_path(record_id: str) -> str:
    return f"{ATTENDANCE_COLLECTION}/{record_id}"


class AttendanceHistory:
    """Read side of attendance records.

    Recent lists prefer the ordered query. When the store cannot serve it
    (missing index) the unordered query is used and rows are re-sorted by
    ``createdAt`` here, so both paths return the same order.
    """

    def __init__(self, store: DocumentStore, limit: int = RECENT_ATTENDANCE_LIMIT):
        self.store = store
        self.limit = limit

    async def get_record(self, record_id: str, viewer_id: Optional[str] = None) -> AttendanceRecord:
        snapshot = await self.store.get(attendance_path(record_id))
        if not snapshot.exists:
            raise NotFoundError("Attendance record not found")
        record = AttendanceRecord.from_snapshot(snapshot)
        if viewer_id is not None and not self._can_view(record, viewer_id):
            raise NotFoundError("Attendance record not found")
        return record

    async def recent_for_owner(self, owner_id: str, limit: Optional[int] = None) -> List[AttendanceRecord]:
        return await self._recent(self._recent_query(owner_id, Role.OWNER), owner_id, limit)

    async def recent_for_participant(self, user_id: str, limit: Optional[int] = None) -> List[AttendanceRecord]:
        return await self._recent(self._recent_query(user_id, Role.PARTICIPANT), user_id, limit)

    async def recent(self, viewer_id: str, role: Role, limit: Optional[int] = None) -> List[AttendanceRecord]:
        if role == Role.OWNER:
            return await self.recent_for_owner(viewer_id, limit)
        return await self.recent_for_participant(viewer_id, limit)

    async def watch_recent(
        self,
        viewer_id: str,
        role: Role,
        on_change: Callable[[List[AttendanceRecord]], Any],
        limit: Optional[int] = None,
    ) -> Subscription:
        """Live recent list. The returned subscription covers the fallback listener too."""
        base = self._recent_query(viewer_id, role)
        current: Dict[str, Subscription] = {}

        def deliver(snapshots: List[DocumentSnapshot]):
            return on_change(self._visible(snapshots, viewer_id, limit))

        async def fall_back(error: Exception) -> None:
            logger.warning("recent_attendance_fallback", viewer_id=viewer_id, error=str(error))
            current["subscription"] = await self.store.watch_query(base.unordered(), deliver)

        primary = await self.store.watch_query(
            base.order("createdAt", descending=True), deliver, on_error=fall_back
        )
        current.setdefault("subscription", primary)
        return Subscription(lambda: current["subscription"].unsubscribe())

    async def hide(self, record_id: str, viewer_id: str) -> AttendanceRecord:
        """Hide a record from ``viewer_id``'s recent list only."""
        await self.get_record(record_id, viewer_id)
        await self.store.update(attendance_path(record_id), {"hiddenBy": array_union(viewer_id)})
        logger.info("attendance_hidden", record_id=record_id, viewer_id=viewer_id)
        return await self.get_record(record_id)

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _recent_query(viewer_id: str, role: Role) -> Query:
        query = Query(ATTENDANCE_COLLECTION)
        if role == Role.OWNER:
            return query.where("ownerId", "==", viewer_id)
        return query.where("participantIds", "array-contains", viewer_id)

    @staticmethod
    def _can_view(record: AttendanceRecord, viewer_id: str) -> bool:
        return record.owner_id == viewer_id or viewer_id in record.participant_ids

    async def _recent(self, base: Query, viewer_id: str, limit: Optional[int]) -> List[AttendanceRecord]:
        try:
            snapshots = await self.store.query(base.order("createdAt", descending=True))
        except QueryError as exc:
            logger.warning("recent_attendance_fallback", viewer_id=viewer_id, error=str(exc))
            snapshots = await self.store.query(base.unordered())
        return self._visible(snapshots, viewer_id, limit)

    def _visible(self, snapshots: List[DocumentSnapshot], viewer_id: str, limit: Optional[int]) -> List[AttendanceRecord]:
        records = [AttendanceRecord.from_snapshot(s) for s in snapshots]
        records = [r for r in records if viewer_id not in r.hidden_by]
        records.sort(key=lambda r: r.created_at or 0, reverse=True)
        return records[: limit or self.limit]
