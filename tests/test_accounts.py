"""
Tests for registration, login and logout (AccountService).
"""

import pytest

from app.core.audit import AuditAction, get_audit_logger
from app.core.config import get_settings
from app.core.errors import AuthError, ValidationError
from app.core.security import get_session
from app.core.user_context import UserRole
from app.services.accounts import AccountService


@pytest.fixture
def accounts(db_session, challenge):
    return AccountService(db_session, challenge, get_settings())


# =============================================================================
# Registration
# =============================================================================

@pytest.mark.anyio
async def test_register_creates_user_without_session(accounts):
    user = await accounts.register("alice", "pw-alice", "student", "ok-token")

    assert user.role == "STUDENT"
    assert user.password_hash != "pw-alice"
    assert (await accounts.get_by_username("alice")).id == user.id


@pytest.mark.anyio
async def test_register_duplicate_username(accounts):
    await accounts.register("alice", "pw", "STUDENT", "ok-token")
    with pytest.raises(ValidationError, match="Username already exists!"):
        await accounts.register("alice", "other", "ADMIN", "ok-token")


@pytest.mark.anyio
@pytest.mark.parametrize("token,message", [
    (None, "reCAPTCHA verification is required."),
    ("", "reCAPTCHA verification is required."),
    ("bad-token", "reCAPTCHA verification failed. Please try again."),
])
async def test_register_requires_challenge(accounts, token, message):
    with pytest.raises(ValidationError) as exc_info:
        await accounts.register("alice", "pw", "STUDENT", token)
    assert exc_info.value.message == message
    assert await accounts.get_by_username("alice") is None


@pytest.mark.anyio
@pytest.mark.parametrize("username,password,role", [
    ("", "pw", "STUDENT"),
    ("alice", "", "STUDENT"),
    ("alice", "pw", "professor"),
    ("x" * 101, "pw", "STUDENT"),
])
async def test_register_field_validation(accounts, username, password, role):
    with pytest.raises(ValidationError):
        await accounts.register(username, password, role, "ok-token")


@pytest.mark.anyio
@pytest.mark.parametrize("password", ["x" * 73, "\u00e9" * 37])
async def test_register_rejects_password_bcrypt_cannot_hash(accounts, password):
    with pytest.raises(ValidationError) as exc_info:
        await accounts.register("alice", password, "STUDENT", "ok-token")
    assert exc_info.value.details == [{"field": "password"}]
    assert await accounts.get_by_username("alice") is None


@pytest.mark.anyio
async def test_register_accepts_72_byte_password(accounts):
    await accounts.register("alice", "x" * 72, "STUDENT", "ok-token")
    user, _ = await accounts.login("alice", "x" * 72, "ok-token")
    assert user.username == "alice"


# =============================================================================
# Login
# =============================================================================

@pytest.mark.anyio
async def test_login_issues_session_with_stored_role(accounts):
    await accounts.register("root", "pw-root", "ADMIN", "ok-token")

    user, session = await accounts.login("root", "pw-root", "ok-token", remote_ip="10.1.1.1")

    assert session.role == user.role == UserRole.ADMIN.value
    stored = await get_session(session.session_id)
    assert stored is not None and stored.user_id == user.id


@pytest.mark.anyio
async def test_login_without_challenge_never_compares_credentials(accounts, challenge, monkeypatch):
    await accounts.register("alice", "pw", "STUDENT", "ok-token")
    compared = []
    monkeypatch.setattr(
        "app.services.accounts.verify_password",
        lambda *args: compared.append(args) or True,
    )

    with pytest.raises(AuthError, match="reCAPTCHA verification is required."):
        await accounts.login("alice", "pw", None)
    with pytest.raises(AuthError, match="reCAPTCHA verification failed"):
        await accounts.login("alice", "pw", "bad-token")
    assert compared == []


@pytest.mark.anyio
@pytest.mark.parametrize("username,password", [("alice", "wrong"), ("nobody", "pw")])
async def test_login_bad_credentials(accounts, username, password):
    await accounts.register("alice", "pw", "STUDENT", "ok-token")
    with pytest.raises(AuthError, match="Invalid username or password!"):
        await accounts.login(username, password, "ok-token")


@pytest.mark.anyio
async def test_failed_login_is_audited(accounts):
    await accounts.register("alice", "pw", "STUDENT", "ok-token")
    with pytest.raises(AuthError):
        await accounts.login("alice", "wrong", "ok-token")

    entries = get_audit_logger().read_entries(AuditAction.LOGIN_FAILURE, limit=1)
    assert entries[0]["details"] == {"username": "alice"}
    assert entries[0]["success"] is False


@pytest.mark.anyio
async def test_logout_is_idempotent(accounts):
    await accounts.register("alice", "pw", "STUDENT", "ok-token")
    user, session = await accounts.login("alice", "pw", "ok-token")

    await accounts.logout(session.session_id, user.id)
    await accounts.logout(session.session_id, user.id)
    await accounts.logout(None)

    assert await get_session(session.session_id) is None
