"""
Account Service - registration, login and logout.

Flow for login:
1. Challenge token must be present and accepted by the provider
2. Only then are credentials compared
3. A server-side session is issued; the client gets the opaque token

Registration never logs the new user in.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import AuditAction, audit_log, audit_login
from app.core.config import Settings
from app.core.errors import AuthError, ValidationError
from app.core.security import (
    BCRYPT_MAX_PASSWORD_BYTES,
    create_session,
    hash_password,
    invalidate_session,
    verify_password,
)
from app.core.user_context import StoredSession, UserRole
from app.models.models import User
from app.services.challenge import ChallengeVerifier

logger = logging.getLogger(__name__)

MAX_USERNAME_LENGTH = 100

# Compared against when the username is unknown so both paths cost one bcrypt check
_DUMMY_HASH = hash_password("educhain-timing-equalizer")


class AccountService:
    """SessionGate operations backed by the users table and the session store."""

    def __init__(self, db: AsyncSession, challenge: ChallengeVerifier, settings: Settings):
        self.db = db
        self.challenge = challenge
        self.settings = settings

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def register(
        self,
        username: str,
        password: str,
        role: str,
        challenge_token: Optional[str],
        remote_ip: Optional[str] = None,
    ) -> User:
        """Create a user. Raises ValidationError; never logs the user in."""
        if not challenge_token or not challenge_token.strip():
            raise ValidationError("reCAPTCHA verification is required.")
        if not await self.challenge.verify(challenge_token, remote_ip):
            raise ValidationError("reCAPTCHA verification failed. Please try again.")

        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required", details=[{"field": "username"}])
        if len(username) > MAX_USERNAME_LENGTH:
            raise ValidationError(
                f"Username must be at most {MAX_USERNAME_LENGTH} characters",
                details=[{"field": "username"}],
            )
        if not password:
            raise ValidationError("Password is required", details=[{"field": "password"}])
        if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValidationError(
                f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes",
                details=[{"field": "password"}],
            )
        try:
            user_role = UserRole.parse(role)
        except ValueError:
            raise ValidationError(
                f"Invalid role '{role}'. Use STUDENT or ADMIN.",
                details=[{"field": "role"}],
            ) from None

        if await self.get_by_username(username) is not None:
            raise ValidationError("Username already exists!", details=[{"field": "username"}])

        user = User(
            id=str(uuid.uuid4()),
            username=username,
            password_hash=hash_password(password),
            role=user_role.value,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same name
            await self.db.rollback()
            raise ValidationError("Username already exists!", details=[{"field": "username"}]) from None

        logger.info("Registered %s user %s", user.role, user.id)
        await audit_log(
            AuditAction.USER_REGISTER,
            user_id=user.id,
            resource_type="user",
            resource_id=user.id,
            details={"username": username, "role": user.role},
            ip_address=remote_ip,
        )
        return user

    async def login(
        self,
        username: str,
        password: str,
        challenge_token: Optional[str],
        remote_ip: Optional[str] = None,
    ) -> tuple[User, StoredSession]:
        """Authenticate and issue a session. Raises AuthError."""
        # The challenge is settled before any credential is looked at
        if not challenge_token or not challenge_token.strip():
            await audit_login(None, False, remote_ip, "challenge missing", username=username)
            raise AuthError("reCAPTCHA verification is required.")
        if not await self.challenge.verify(challenge_token, remote_ip):
            await audit_login(None, False, remote_ip, "challenge rejected", username=username)
            raise AuthError("reCAPTCHA verification failed. Please try again.")

        user = await self.get_by_username((username or "").strip())
        if user is None:
            verify_password(password or "", _DUMMY_HASH)
            await audit_login(None, False, remote_ip, "unknown user", username=username)
            raise AuthError("Invalid username or password!")
        if not verify_password(password or "", user.password_hash):
            await audit_login(user.id, False, remote_ip, "bad password", username=username)
            raise AuthError("Invalid username or password!")

        session = await create_session(
            user_id=user.id,
            username=user.username,
            role=UserRole(user.role),
            ttl_minutes=self.settings.session_ttl_minutes,
        )
        await audit_login(user.id, True, remote_ip, username=username)
        return user, session

    async def logout(self, session_id: Optional[str], user_id: Optional[str] = None) -> None:
        """Invalidate the session. Calling it twice (or anonymously) is fine."""
        if not session_id:
            return
        if await invalidate_session(session_id):
            await audit_log(AuditAction.LOGOUT, user_id=user_id)
