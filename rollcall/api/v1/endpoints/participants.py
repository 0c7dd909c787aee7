"""Participant endpoints: joining a session and the monitored view."""
from fastapi import APIRouter, Depends, Request

from rollcall.api.deps import get_services, require_participant, to_http_error
from rollcall.core.exceptions import RollcallError
from rollcall.core.rate_limit import RATE_LIMITS, limiter
from rollcall.core.security import Actor
from rollcall.schemas.challenge import CodeRequest, CodeSubmission, FocusState
from rollcall.schemas.participant import ImageRefRequest, JoinRequest, Participant
from rollcall.services.container import Services

router = APIRouter()


@router.post("/{session_id}/participants", response_model=Participant)
@limiter.limit(RATE_LIMITS["join"])
async def join_session_endpoint(
    request: Request,
    session_id: str,
    payload: JoinRequest = JoinRequest(),
    participant: Actor = Depends(require_participant),
    services: Services = Depends(get_services),
):
    """
    Join an active session (participant only).

    Joining twice is harmless: the record is keyed by user id and refreshed in
    place. Location is optional; without it the final distance is null.

    Example:
        Request:
            POST /api/v1/sessions/4f0c2a.../participants
            {"location": {"lat": 12.9701, "lng": 77.5902}}

        Response (200):
            {"id": "user-17", "userId": "user-17", "status": "present", ...}

    Raises:
        HTTPException: 404 if the session does not exist
        HTTPException: 400 if the session has ended
    """
    try:
        return await services.participants.join(
            session_id,
            participant.user_id,
            participant.profile,
            location=payload.location,
            image_ref=payload.image_ref,
        )
    except RollcallError as e:
        raise to_http_error(e)


@router.post("/{session_id}/participants/me/image", response_model=Participant)
async def attach_image_endpoint(
    session_id: str,
    payload: ImageRefRequest,
    participant: Actor = Depends(require_participant),
    services: Services = Depends(get_services),
):
    """Record the caller's uploaded image reference. Join first."""
    try:
        return await services.participants.attach_image(session_id, participant.user_id, payload.image_ref)
    except RollcallError as e:
        raise to_http_error(e)


@router.post("/{session_id}/focus", response_model=FocusState)
async def enter_focus_endpoint(
    session_id: str,
    participant: Actor = Depends(require_participant),
    services: Services = Depends(get_services),
):
    """
    Enter the monitored view (participant only).

    Starts the verification challenge: code entry opens after the open delay
    and must succeed within the window that follows. Calling this again while
    a challenge is running returns its current state without restarting it.

    Raises:
        HTTPException: 404 if the session or the caller's join record is missing
        HTTPException: 409 if the caller already failed verification
    """
    try:
        session = await services.sessions.get_session(session_id)
        view = await services.focus.enter(session, participant.user_id)
        return view.state()
    except RollcallError as e:
        raise to_http_error(e)


@router.get("/{session_id}/focus", response_model=FocusState)
async def get_focus_endpoint(
    session_id: str,
    participant: Actor = Depends(require_participant),
    services: Services = Depends(get_services),
):
    """Current challenge state, attempts left and time remaining."""
    try:
        return services.focus.get(session_id, participant.user_id).state()
    except RollcallError as e:
        raise to_http_error(e)


@router.post("/{session_id}/focus/code", response_model=CodeSubmission)
@limiter.limit(RATE_LIMITS["code_submit"])
async def submit_code_endpoint(
    request: Request,
    session_id: str,
    payload: CodeRequest,
    participant: Actor = Depends(require_participant),
    services: Services = Depends(get_services),
):
    """
    Submit the session code shown in the room.

    A wrong code returns ``accepted: false`` with the attempts left; the last
    wrong attempt marks the caller absent. An empty code does not use up an
    attempt.

    Example:
        Request:
            POST /api/v1/sessions/4f0c2a.../focus/code
            {"code": "k7q2zd"}

        Response (200):
            {"accepted": true, "state": "verified", "attempts": 0, "attemptsRemaining": 3}

        Response (409):
            {"detail": "Verification has not opened yet"}
    """
    try:
        return await services.focus.submit(session_id, participant.user_id, payload.code)
    except RollcallError as e:
        raise to_http_error(e)


@router.post("/{session_id}/focus/exit", response_model=FocusState)
async def exit_focus_endpoint(
    session_id: str,
    participant: Actor = Depends(require_participant),
    services: Services = Depends(get_services),
):
    """Leave the monitored view. The caller is marked absent."""
    try:
        return await services.focus.exit(session_id, participant.user_id)
    except RollcallError as e:
        raise to_http_error(e)
