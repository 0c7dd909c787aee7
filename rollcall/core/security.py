"""Identity tokens.

User accounts live with an external identity provider. Rollcall only needs a
stable user id, a display name, a contact handle and a role tag, which travel
in a signed JWT.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import jwt
from fastapi import HTTPException, Request

from rollcall.core import config
from rollcall.schemas.participant import ParticipantProfile


class Role(str, Enum):
    OWNER = "owner"
    PARTICIPANT = "participant"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller."""

    user_id: str
    role: Role
    display_name: Optional[str] = None
    contact_handle: Optional[str] = None

    @property
    def profile(self) -> ParticipantProfile:
        return ParticipantProfile(display_name=self.display_name, contact_handle=self.contact_handle)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=config.settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.settings.SECRET_KEY, algorithm=config.settings.ALGORITHM)
    return encoded_jwt


def create_actor_token(
    user_id: str,
    role: Role,
    display_name: Optional[str] = None,
    contact_handle: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Issue a token for an actor (used by the identity bridge and tests)."""
    return create_access_token(
        {"sub": user_id, "role": Role(role).value, "name": display_name, "handle": contact_handle},
        expires_delta,
    )


def _extract_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if header:
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return request.cookies.get("access_token")


def get_current_actor(request: Request) -> Actor:
    """Verify the JWT from the Authorization header or cookie and return the actor."""
    token = _extract_token(request)

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = jwt.decode(token, config.settings.SECRET_KEY, algorithms=[config.settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise HTTPException(status_code=403, detail="Unknown role")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    return Actor(
        user_id=user_id,
        role=role,
        display_name=payload.get("name"),
        contact_handle=payload.get("handle"),
    )


def require_owner(request: Request) -> Actor:
    actor = get_current_actor(request)
    if actor.role != Role.OWNER:
        raise HTTPException(status_code=403, detail="Not authorized")
    return actor


def require_participant(request: Request) -> Actor:
    actor = get_current_actor(request)
    if actor.role != Role.PARTICIPANT:
        raise HTTPException(status_code=403, detail="Not authorized")
    return actor
