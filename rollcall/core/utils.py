"""General utility functions."""
import math
import secrets

from rollcall.core.constants import (
    EARTH_RADIUS_METERS,
    SESSION_CODE_ALPHABET,
    SESSION_CODE_LENGTH,
)


def generate_session_code(length: int = SESSION_CODE_LENGTH) -> str:
    """Generate a random uppercase alphanumeric session code.

    Codes are not checked for uniqueness: they only need to be distinguishable
    among the handful of sessions a participant can see at once.
    """
    return "".join(secrets.choice(SESSION_CODE_ALPHABET) for _ in range(length))


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in metres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_METERS * c

