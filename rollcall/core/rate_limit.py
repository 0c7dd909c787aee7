"""Rate limiting configuration."""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address


def get_client_ip(request):
    """Client IP for rate limiting, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


# Uses Redis if REDIS_URL is set, in-process memory otherwise
limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["120/minute"],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
    strategy="fixed-window",
)

# A whole class may join from one NAT'd campus address within a minute
RATE_LIMITS = {
    "join": "200/minute",
    "code_submit": "60/minute",
    "owner_write": "60/minute",
}
