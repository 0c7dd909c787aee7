"""Attendance history endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from rollcall.api.deps import get_current_actor, get_services, to_http_error
from rollcall.core.exceptions import RollcallError
from rollcall.core.security import Actor
from rollcall.schemas.attendance import AttendanceRecord
from rollcall.services.container import Services

router = APIRouter()


@router.get("/recent", response_model=List[AttendanceRecord])
async def recent_attendance_endpoint(
    limit: Optional[int] = Query(None, ge=1, le=50),
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    """
    The caller's most recent attendance records, newest first.

    Owners get records of sessions they ran; participants get records that
    list them. Records the caller has hidden are left out.
    """
    try:
        return await services.attendance.recent(actor.user_id, actor.role, limit)
    except RollcallError as e:
        raise to_http_error(e)


@router.get("/{record_id}", response_model=AttendanceRecord)
async def get_attendance_endpoint(
    record_id: str,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    try:
        return await services.attendance.get_record(record_id, actor.user_id)
    except RollcallError as e:
        raise to_http_error(e)


@router.post("/{record_id}/hide", response_model=AttendanceRecord)
async def hide_attendance_endpoint(
    record_id: str,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    """Hide a record from the caller's recent list. Other viewers still see it."""
    try:
        return await services.attendance.hide(record_id, actor.user_id)
    except RollcallError as e:
        raise to_http_error(e)
