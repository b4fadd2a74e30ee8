"""Rate limiting configuration using slowapi."""

from pydantic import IPvAnyAddress, TypeAdapter, ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import get_settings

settings = get_settings()

_IP_ADAPTER = TypeAdapter(IPvAnyAddress)


def get_real_client_ip(request: Request) -> str:
    """Get the real client IP address, handling proxies.

    Checks X-Forwarded-For and X-Real-IP headers before falling back
    to the direct client address.
    """
    # X-Forwarded-For can contain multiple IPs: client, proxy1, proxy2
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    # Common in nginx setups
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return get_remote_address(request)


def get_client_ip_address(request: Request) -> str | None:
    """The client IP as a normalized address, or None if it does not parse."""
    try:
        return str(_IP_ADAPTER.validate_python(get_real_client_ip(request)))
    except ValidationError:
        return None


limiter = Limiter(
    key_func=get_real_client_ip,
    storage_uri=settings.rate_limit_storage_uri,
    strategy="fixed-window",
)

# Click tracking sits on the redirect hot path, so the limit is generous
RATE_LIMIT_TRACK_CLICK = settings.rate_limit_track_click
RATE_LIMIT_ENGAGEMENT = settings.rate_limit_engagement
