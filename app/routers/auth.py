"""
Authentication Router
Login, registration, logout and session checks.

Credentials arrive as form fields (username, password, recaptchaToken).
A successful login sets the session cookie and also returns the token so
non-browser clients can send it as a Bearer header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Form, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.errors import NotFoundError
from app.core.rate_limit import RATE_AUTH, get_ip_key, limiter
from app.core.security import get_client_ip, get_current_user, get_session_token, require_user
from app.core.user_context import UserContext
from app.services.accounts import AccountService
from app.services.challenge import ChallengeVerifier, get_challenge_verifier


router = APIRouter()


def get_account_service(
    db: AsyncSession = Depends(get_db),
    challenge: ChallengeVerifier = Depends(get_challenge_verifier),
    settings: Settings = Depends(get_settings),
) -> AccountService:
    return AccountService(db, challenge, settings)


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/login")
@limiter.limit(RATE_AUTH, key_func=get_ip_key)
async def login(
    request: Request,
    response: Response,
    username: str = Form(...),
    password: str = Form(...),
    recaptchaToken: Optional[str] = Form(None),
    accounts: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_settings),
):
    """Authenticate and start a session."""
    user, session = await accounts.login(
        username, password, recaptchaToken, remote_ip=get_client_ip(request)
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session.session_id,
        max_age=settings.session_ttl_minutes * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return {
        "success": True,
        "message": "Login successful!",
        "userId": user.id,
        "username": user.username,
        "role": user.role,
        "sessionToken": session.session_id,
        "expiresAt": session.expires_at.isoformat(),
    }


@router.post("/register")
@limiter.limit(RATE_AUTH, key_func=get_ip_key)
async def register(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    role: str = Form(...),
    recaptchaToken: Optional[str] = Form(None),
    accounts: AccountService = Depends(get_account_service),
):
    """Create an account. Does not log the new user in."""
    user = await accounts.register(
        username, password, role, recaptchaToken, remote_ip=get_client_ip(request)
    )
    return {"success": True, "message": "Registration successful!", "userId": user.id}


@router.post("/logout")
async def logout(
    response: Response,
    session_id: Optional[str] = Depends(get_session_token),
    user: Optional[UserContext] = Depends(get_current_user),
    accounts: AccountService = Depends(get_account_service),
    settings: Settings = Depends(get_settings),
):
    """End the current session. Safe to call when already logged out."""
    await accounts.logout(session_id, user.user_id if user else None)
    response.delete_cookie(settings.session_cookie_name)
    return {"success": True, "message": "Logout successful!"}


@router.get("/check")
async def check_auth(user: Optional[UserContext] = Depends(get_current_user)):
    """Who is logged in, as far as the server-side session says."""
    if user is None:
        return {"success": True, "loggedIn": False, "message": "Not logged in"}
    return {"success": True, "loggedIn": True, **user.to_identity()}


@router.get("/user")
async def current_user(
    user: UserContext = Depends(require_user),
    accounts: AccountService = Depends(get_account_service),
):
    """Profile of the logged-in user."""
    account = await accounts.get_user(user.user_id)
    if account is None:
        raise NotFoundError("User", user.user_id)
    return {
        "success": True,
        "user": {
            **account.to_summary(),
            "createdAt": account.created_at.isoformat() if account.created_at else None,
        },
        "expiresAt": user.expires_at.isoformat() if user.expires_at else None,
    }
