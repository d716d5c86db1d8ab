"""
Rate limits for the EduChain portal (slowapi).

Clients are keyed by session token when they present one, otherwise by
client IP. RATE_LIMIT_ENABLED=false switches every limit off.
"""

import hashlib
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from app.core.config import get_settings
from app.core.errors import error_response
from app.core.security import get_client_ip

logger = logging.getLogger(__name__)

# Login/registration: credential and challenge guessing
RATE_AUTH = "10/minute"

# Upload: storage, oracle and ledger work per call
RATE_UPLOAD = "20/minute"

# Re-verification: one oracle call each
RATE_VERIFY = "20/minute"


def get_ip_key(request: Request) -> str:
    """Client IP only. Auth endpoints use this: callers choose their own tokens."""
    return f"ip:{get_client_ip(request) or 'unknown'}"


def get_client_key(request: Request) -> str:
    """
    Session token when present, otherwise client IP.

    Only used on endpoints that require a session; FastAPI resolves
    require_user before the limit is checked, so the token is a valid one.
    """
    token = request.cookies.get(get_settings().session_cookie_name)
    if not token:
        scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() == "bearer":
            token = credentials.strip()
    if token:
        # Never keep raw tokens in limiter storage
        return "session:" + hashlib.sha256(token.encode()).hexdigest()[:16]
    return get_ip_key(request)


limiter = Limiter(
    key_func=get_client_key,
    default_limits=["200/minute"],
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit %s hit by %s on %s", exc.detail, get_client_key(request), request.url.path)
    return error_response(
        request,
        429,
        "rate_limit_exceeded",
        "Too many requests. Please slow down.",
        details=[{"limit": str(exc.detail)}],
        headers={"Retry-After": "60"},
    )
