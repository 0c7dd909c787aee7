"""Server-Sent Events endpoints."""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from rollcall.api.deps import get_services, require_owner, to_http_error
from rollcall.core.exceptions import NotFoundError, RollcallError
from rollcall.core.logging_config import get_logger
from rollcall.core.security import Actor
from rollcall.schemas.participant import Participant
from rollcall.services.container import Services
from rollcall.services.participant import ParticipantTracker
from rollcall.services.session import session_path

logger = get_logger(__name__)
router = APIRouter()

# Queue item: (event name, payload). A name of None closes the stream.
Event = Tuple[Optional[str], Dict[str, Any]]


def format_event(name: Optional[str], data: Dict[str, Any]) -> str:
    if name is None or name == "message":
        return f"data: {json.dumps(data)}\n\n"
    return f"event: {name}\ndata: {json.dumps(data)}\n\n"


async def event_generator(
    request: Request,
    updates: "asyncio.Queue[Event]",
    keepalive: float = 15.0,
    on_close: Optional[Callable[[], None]] = None,
):
    """
    Push-based SSE event generator.

    Store listeners put events on ``updates``; this drains them as they come.
    When nothing arrives for ``keepalive`` seconds a comment line is sent so
    proxies keep the connection open. An ``ended`` event is the last one.

    Args:
        request: FastAPI request object to check for client disconnect
        updates: Queue filled by the store listeners
        keepalive: Seconds of silence before a keepalive comment
        on_close: Releases the listeners once the stream is over
    """
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                name, data = await asyncio.wait_for(updates.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue

            yield format_event(name, data)
            if name == "ended":
                break
    except asyncio.CancelledError:
        # Client disconnected
        pass
    finally:
        if on_close is not None:
            on_close()


def participants_payload(participants: List[Participant]) -> Dict[str, Any]:
    counts = ParticipantTracker.count_by_status(participants)
    return {
        "participants": [p.model_dump(by_alias=True, mode="json") for p in participants],
        "count": len(participants),
        "counts": {status.value: n for status, n in counts.items()},
    }


@router.get("/sse/sessions/{session_id}/participants")
async def sse_session_participants(
    request: Request,
    session_id: str,
    owner: Actor = Depends(require_owner),
    services: Services = Depends(get_services),
):
    """
    Live participant list of one session (owner only).

    Events:
        (default)  full participant list with per-status counts, on every change
        joined     the participant count went up, ``{"count": n}``
        ended      the session record was deleted; the stream closes

    The client should reconnect automatically if disconnected.
    """
    try:
        session = await services.sessions.get_session(session_id)
        if session.owner_id != owner.user_id:
            raise NotFoundError("Session not found")
    except RollcallError as e:
        raise to_http_error(e)

    updates: "asyncio.Queue[Event]" = asyncio.Queue()

    def changed(participants: List[Participant]) -> None:
        updates.put_nowait(("message", participants_payload(participants)))

    def joined(count: int) -> None:
        updates.put_nowait(("joined", {"count": count}))

    def session_changed(snapshot) -> None:
        if not snapshot.exists:
            updates.put_nowait(("ended", {"sessionId": session_id}))

    feed = await services.participants.subscribe(session.id, changed, on_joined=joined)
    watch = await services.store.watch_document(session_path(session.id), session_changed)

    def close() -> None:
        feed.unsubscribe()
        watch.unsubscribe()
        logger.info("sse_stream_closed", session_id=session_id, owner_id=owner.user_id)

    return StreamingResponse(
        event_generator(request, updates, keepalive=services.settings.SSE_KEEPALIVE_SECONDS, on_close=close),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable buffering in nginx
        }
    )
