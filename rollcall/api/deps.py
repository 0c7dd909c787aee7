"""Shared API dependencies."""
from fastapi import HTTPException, Request

from rollcall.core.exceptions import (
    ChallengeClosedError,
    NotFoundError,
    RollcallError,
    StoreUnavailable,
    ValidationError,
)
from rollcall.core.security import get_current_actor, require_owner, require_participant
from rollcall.services.container import Services


def get_services(request: Request) -> Services:
    """The engine instance created at application startup."""
    return request.app.state.services


def to_http_error(exc: RollcallError) -> HTTPException:
    """Map a domain error onto the HTTP status the API reports for it."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ChallengeClosedError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, StoreUnavailable):
        return HTTPException(status_code=503, detail="Service temporarily unavailable")
    return HTTPException(status_code=500, detail="Internal error")


__all__ = [
    "get_services",
    "to_http_error",
    "get_current_actor",
    "require_owner",
    "require_participant",
]
