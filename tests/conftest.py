"""
Shared fixtures for the EduChain test suite.

The environment is configured before anything from app is imported:
a throwaway SQLite database, upload/audit/ledger directories under a temp
dir, fast bcrypt and no rate limiting. External collaborators (oracle,
ledger, reCAPTCHA) are replaced with scripted fakes through
app.dependency_overrides.
"""

import asyncio
import hashlib
import os
import tempfile
import uuid
from typing import Optional

_TEST_DIR = tempfile.mkdtemp(prefix="educhain-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_DIR, "uploads")
os.environ["AUDIT_LOG_DIR"] = os.path.join(_TEST_DIR, "audit")
os.environ["ATTESTATION_LEDGER_PATH"] = os.path.join(_TEST_DIR, "ledger.jsonl")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RECAPTCHA_SECRET_KEY"] = "test-secret"
os.environ["GEMINI_API_KEY"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.database import Base, close_db, get_db_session, get_engine
from app.core.security import hash_password
from app.core.sessions import configure_session_backend
from app.core.user_context import UserContext, UserRole
from app.main import create_app
from app.models import models  # noqa: F401
from app.models.models import DocumentType, User
from app.services.attestation import AttestationService, get_attestation_service
from app.services.challenge import ChallengeVerifier, get_challenge_verifier
from app.services.oracle import OracleVerdict, VerificationOracle, get_oracle
from app.services.storage import LocalBlobStore, get_blob_store


PASSWORD = "correct horse battery staple"


# =============================================================================
# Collaborator fakes
# =============================================================================

class FakeChallenge(ChallengeVerifier):
    """Accepts every non-empty token except 'bad-token'."""

    def __init__(self):
        self.calls: list[Optional[str]] = []

    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> bool:
        self.calls.append(token)
        return bool(token) and token != "bad-token"


class ScriptedOracle(VerificationOracle):
    """Returns a fixed verdict, optionally after a delay or by raising."""

    name = "scripted"

    def __init__(
        self,
        detected_type: str = "Transcript",
        confidence: float = 0.92,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.detected_type = detected_type
        self.confidence = confidence
        self.delay = delay
        self.error = error
        self.calls: list[DocumentType] = []

    def script(self, detected_type: str, confidence: float, error: Optional[Exception] = None):
        self.detected_type = detected_type
        self.confidence = confidence
        self.error = error

    async def classify(self, content: bytes, mime_type: str, declared_type: DocumentType) -> OracleVerdict:
        self.calls.append(declared_type)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return OracleVerdict(self.detected_type, self.confidence, "scripted")


class MemoryAttestation(AttestationService):
    """In-memory ledger recording every attest call."""

    def __init__(self):
        self.records: dict[str, str] = {}
        self.attest_calls: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None

    async def attest(self, content_sha256: str, document_id: str) -> str:
        if self.error is not None:
            raise self.error
        self.attest_calls.append((content_sha256, document_id))
        attestation_hash = "0x" + hashlib.sha256(f"{document_id}:{content_sha256}".encode()).hexdigest()
        self.records[attestation_hash] = content_sha256
        return attestation_hash

    async def confirm(self, content_sha256: str, attestation_hash: str) -> bool:
        if self.error is not None:
            raise self.error
        return self.records.get(attestation_hash) == content_sha256


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def database():
    """Fresh schema and session store per test; engine disposed afterwards."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    configure_session_backend(None)
    yield
    await close_db()


@pytest.fixture
async def db_session(database):
    async with get_db_session() as session:
        yield session


@pytest.fixture
def oracle():
    return ScriptedOracle()


@pytest.fixture
def attestation():
    return MemoryAttestation()


@pytest.fixture
def challenge():
    return FakeChallenge()


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def build_app(oracle, attestation, challenge, blob_store):
    """create_app() with scripted collaborators; reads settings at call time."""
    def _build():
        application = create_app()
        application.dependency_overrides[get_oracle] = lambda: oracle
        application.dependency_overrides[get_attestation_service] = lambda: attestation
        application.dependency_overrides[get_challenge_verifier] = lambda: challenge
        application.dependency_overrides[get_blob_store] = lambda: blob_store
        return application
    return _build


@pytest.fixture
def app(build_app):
    return build_app()


@pytest.fixture
async def client(app, database):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# =============================================================================
# Helpers (exposed as fixtures)
# =============================================================================

async def _create_user(username: str, role: UserRole = UserRole.STUDENT, password: str = PASSWORD) -> User:
    async with get_db_session() as session:
        user = User(
            id=str(uuid.uuid4()),
            username=username,
            password_hash=hash_password(password),
            role=role.value,
        )
        session.add(user)
    return user


def _context_for(user: User) -> UserContext:
    return UserContext(user_id=user.id, username=user.username, role=UserRole(user.role))


async def _login(client: AsyncClient, username: str, password: str = PASSWORD) -> dict:
    """Log in and return Bearer headers; the cookie is dropped so clients can switch users."""
    response = await client.post(
        "/api/auth/login",
        data={"username": username, "password": password, "recaptchaToken": "ok-token"},
    )
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['sessionToken']}"}


@pytest.fixture
def make_user(database):
    """await make_user("alice") / await make_user("root", UserRole.ADMIN)"""
    return _create_user


@pytest.fixture
def login_as():
    """await login_as(client, "alice") -> Bearer headers"""
    return _login


@pytest.fixture
def context_for():
    return _context_for
