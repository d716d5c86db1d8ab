"""
EduChain - Security Module
Password hashing, session issue/lookup/teardown and the FastAPI
dependencies that gate every endpoint.

Core Principle:
- The client holds an opaque session token (cookie or bearer header)
- Everything else (user id, role, expiry) lives in the server-side
  session backend and is re-validated on every request
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import Settings, get_settings
from app.core.errors import AuthError, AuthorizationError
from app.core.sessions import get_session_backend
from app.core.user_context import StoredSession, UserContext, UserRole


logger = logging.getLogger("educhain.security")


# =============================================================================
# Password Hashing (bcrypt)
# =============================================================================

# bcrypt only looks at the first 72 bytes and rejects longer input
BCRYPT_MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=get_settings().bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against its bcrypt hash."""
    if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        # Could never have been hashed, so it cannot match
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        logger.warning("Stored credential is not a valid bcrypt hash")
        return False


# =============================================================================
# Session Store
# =============================================================================

def generate_session_id() -> str:
    """Generate an opaque, unguessable session token."""
    return secrets.token_urlsafe(32)


async def create_session(
    user_id: str,
    username: str,
    role: UserRole,
    ttl_minutes: int,
) -> StoredSession:
    """Create a new session for an authenticated user."""
    now = datetime.now(timezone.utc)
    session = StoredSession(
        session_id=generate_session_id(),
        user_id=user_id,
        username=username,
        role=role.value,
        created_at=now,
        expires_at=now + timedelta(minutes=ttl_minutes),
    )
    await get_session_backend().set(
        session.session_id,
        session.to_dict(),
        ttl_seconds=ttl_minutes * 60,
    )
    return session


async def get_session(session_id: str) -> Optional[StoredSession]:
    """Get session by ID (None when unknown or expired)."""
    data = await get_session_backend().get(session_id)
    if not data:
        return None

    session = StoredSession.from_dict(data)
    if session.expires_at <= datetime.now(timezone.utc):
        await invalidate_session(session_id)
        return None
    return session


async def invalidate_session(session_id: str) -> bool:
    """Invalidate/logout a session. Unknown ids are not an error."""
    return await get_session_backend().delete(session_id)


# =============================================================================
# Request Helpers
# =============================================================================

def get_client_ip(request: Request) -> Optional[str]:
    """
    Client IP. X-Forwarded-For / X-Real-IP are honoured only with
    TRUST_PROXY_HEADERS=true (behind a proxy that sets them); otherwise any
    caller could pick its own address.
    """
    if not get_settings().trust_proxy_headers:
        return request.client.host if request.client else None

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host
    return None


security_bearer = HTTPBearer(auto_error=False)


def get_session_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_bearer),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """
    Extract the session token.

    Sources (priority order):
    1. session cookie
    2. Authorization: Bearer <session_id>
    3. X-Session-Id header
    """
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    if credentials:
        return credentials.credentials
    return request.headers.get("X-Session-Id")


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_current_user(
    session_id: Optional[str] = Depends(get_session_token),
) -> Optional[UserContext]:
    """Current user context from the session store, or None when anonymous."""
    if not session_id:
        return None
    session = await get_session(session_id)
    if session is None:
        return None
    return session.to_context()


async def require_user(
    user: Optional[UserContext] = Depends(get_current_user),
) -> UserContext:
    """Require an authenticated user."""
    if user is None:
        raise AuthError("Not logged in or session expired")
    return user


async def require_admin(
    user: UserContext = Depends(require_user),
) -> UserContext:
    """Require an authenticated ADMIN."""
    if not user.is_admin:
        raise AuthorizationError("Access denied! Admin only.")
    return user


__all__ = [
    "BCRYPT_MAX_PASSWORD_BYTES",
    "hash_password",
    "verify_password",
    "generate_session_id",
    "create_session",
    "get_session",
    "invalidate_session",
    "get_client_ip",
    "get_session_token",
    "get_current_user",
    "require_user",
    "require_admin",
]
