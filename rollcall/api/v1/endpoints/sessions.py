"""Session endpoints (owner side, plus read-only views for participants)."""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request

from rollcall.api.deps import get_current_actor, get_services, require_owner, to_http_error
from rollcall.core.exceptions import NotFoundError, RollcallError
from rollcall.core.rate_limit import RATE_LIMITS, limiter
from rollcall.core.security import Actor, Role
from rollcall.schemas.attendance import AttendanceRecord, FinalizeRequest
from rollcall.schemas.participant import Participant
from rollcall.schemas.session import Session, SessionCreate, SessionSummary
from rollcall.services.container import Services

router = APIRouter()


async def _owned_session(services: Services, session_id: str, owner: Actor) -> Session:
    session = await services.sessions.get_session(session_id)
    if session.owner_id != owner.user_id:
        # Other owners' sessions are indistinguishable from missing ones
        raise NotFoundError("Session not found")
    return session


@router.post("", response_model=Session, status_code=201)
@limiter.limit(RATE_LIMITS["owner_write"])
async def create_session_endpoint(
    request: Request,
    payload: SessionCreate,
    owner: Actor = Depends(require_owner),
    services: Services = Depends(get_services),
):
    """
    Create an active session and start its owner console (owner only).

    The session gets a fresh random code and a deadline of
    ``threshold_minutes`` from the server's creation time. The console
    counts down to that deadline and ends the session automatically.

    Example:
        Request:
            POST /api/v1/sessions
            Authorization: Bearer eyJhbGc...
            {
                "label": "CS101",
                "thresholdMinutes": 10,
                "radiusMeters": 50,
                "ownerLocation": {"lat": 12.97, "lng": 77.59}
            }

        Response (201):
            {
                "id": "4f0c2a...",
                "code": "K7Q2ZD",
                "status": "active",
                "createdAt": 1700000000000,
                "endsAt": 1700000600000,
                ...
            }

    Raises:
        HTTPException: 400 on invalid label, duration or radius
        HTTPException: 403 if the caller is not an owner
    """
    try:
        session = await services.sessions.create_session(
            owner.user_id,
            payload.label,
            payload.threshold_minutes,
            payload.radius_meters,
            payload.owner_location,
        )
        await services.open_console(session)
        return session
    except RollcallError as e:
        raise to_http_error(e)


@router.get("/active", response_model=List[SessionSummary])
async def list_active_sessions_endpoint(
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
):
    """Active sessions whose deadline has not passed yet, newest first."""
    try:
        sessions = await services.sessions.list_active_sessions()
    except RollcallError as e:
        raise to_http_error(e)
    return [SessionSummary.from_session(s) for s in sessions]


@router.get("/{session_id}", response_model=None)
async def get_session_endpoint(
    session_id: str,
    actor: Actor = Depends(get_current_actor),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Point read. Only the owning owner sees the code and owner location."""
    try:
        session = await services.sessions.get_session(session_id)
    except RollcallError as e:
        raise to_http_error(e)
    if actor.role == Role.OWNER and session.owner_id == actor.user_id:
        view = session
    else:
        view = SessionSummary.from_session(session)
    return view.model_dump(by_alias=True, mode="json")


@router.post("/{session_id}/stop", response_model=Session)
@limiter.limit(RATE_LIMITS["owner_write"])
async def stop_session_endpoint(
    request: Request,
    session_id: str,
    owner: Actor = Depends(require_owner),
    services: Services = Depends(get_services),
):
    """
    End the session early (owner only).

    Idempotent: stopping a session that already ended returns it unchanged.
    The record stays until it is finalized.
    """
    try:
        session = await _owned_session(services, session_id, owner)
        return await services.stop_session(session)
    except RollcallError as e:
        raise to_http_error(e)


@router.get("/{session_id}/participants", response_model=List[Participant])
async def list_participants_endpoint(
    session_id: str,
    owner: Actor = Depends(require_owner),
    services: Services = Depends(get_services),
):
    """Participants ordered by join time (owner only)."""
    try:
        session = await _owned_session(services, session_id, owner)
        return await services.participants.list_participants(session.id)
    except RollcallError as e:
        raise to_http_error(e)


@router.post("/{session_id}/finalize", response_model=AttendanceRecord)
@limiter.limit(RATE_LIMITS["owner_write"])
async def finalize_session_endpoint(
    request: Request,
    session_id: str,
    payload: FinalizeRequest = FinalizeRequest(),
    owner: Actor = Depends(require_owner),
    services: Services = Depends(get_services),
):
    """
    Write the attendance record and remove the session (owner only).

    Participants without a status count as present. ``statusOverrides`` maps
    user ids to the status the owner wants recorded instead. Works once per
    session: afterwards the session is gone and this returns 404.

    Example:
        Request:
            POST /api/v1/sessions/4f0c2a.../finalize
            {"statusOverrides": {"user-17": "late"}}

        Response (200):
            {
                "id": "9b1e...",
                "sessionId": "4f0c2a...",
                "summary": [
                    {"userId": "user-17", "status": "late", "distanceMeters": 12},
                    ...
                ],
                ...
            }
    """
    try:
        session = await _owned_session(services, session_id, owner)
        return await services.finalize(session, payload.status_overrides)
    except RollcallError as e:
        raise to_http_error(e)
