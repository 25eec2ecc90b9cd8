"""Rate limiting shared by the HTTP routes."""

import os

from fastapi import Request
from slowapi import Limiter


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def send_rate_limit() -> str:
    return os.getenv("WIDGET_SEND_RATE_LIMIT", "20/minute")


limiter = Limiter(key_func=get_client_ip)
