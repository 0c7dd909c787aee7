from typing import Dict, Optional

from rollcall.core.security import Role, create_actor_token
from rollcall.schemas.common import GeoPoint
from rollcall.schemas.participant import ParticipantProfile

OWNER_ID = "owner-1"
PARTICIPANT_ID = "student-1"

CAMPUS = GeoPoint(lat=12.9716, lng=77.5946)


def auth_headers(user_id: str, role: str, name: Optional[str] = None, handle: Optional[str] = None) -> Dict[str, str]:
    """Bearer header for a test actor."""
    token = create_actor_token(user_id, Role(role), display_name=name, contact_handle=handle)
    return {"Authorization": f"Bearer {token}"}


def profile(name: str) -> ParticipantProfile:
    return ParticipantProfile(display_name=name, contact_handle=f"{name.lower()}@example.edu")


async def create_session(services, owner_id: str = OWNER_ID, minutes: int = 10, location: Optional[GeoPoint] = CAMPUS):
    """Create an active session through the manager."""
    return await services.sessions.create_session(owner_id, "CS101", minutes, 50, location)


async def join(services, session, user_id: str = PARTICIPANT_ID, location: Optional[GeoPoint] = None):
    return await services.participants.join(session.id, user_id, profile(user_id), location=location)


def session_payload(minutes: int = 10, radius: float = 50, location: Optional[GeoPoint] = CAMPUS, label: str = "CS101"):
    """JSON body for POST /api/v1/sessions."""
    payload = {"label": label, "thresholdMinutes": minutes, "radiusMeters": radius}
    if location is not None:
        payload["ownerLocation"] = {"lat": location.lat, "lng": location.lng}
    return payload
