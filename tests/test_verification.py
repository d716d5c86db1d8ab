"""
Tests for the VerificationCoordinator decision rule, timeouts, the
single-flight guard and the integrity re-check of verified documents.
"""

import asyncio
import uuid

import httpx
import pytest

from app.core.config import get_settings
from app.core.errors import (
    AuthorizationError,
    NotFoundError,
    VerificationError,
    VerificationInProgressError,
)
from app.core.user_context import UserRole
from app.models.models import Document, DocumentStatus
from app.services.attestation import AttestationTimeoutError
from app.services.oracle import GeminiOracle, OracleError, OracleTimeoutError
from app.services.verification import VerificationCoordinator, VerificationLocks

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
async def people(make_user):
    student = await make_user("alice")
    other = await make_user("bob")
    admin = await make_user("registrar", UserRole.ADMIN)
    return {"student": student, "other": other, "admin": admin}


@pytest.fixture
def coordinator(db_session, blob_store, oracle, attestation):
    return VerificationCoordinator(
        db_session, blob_store, oracle, attestation, get_settings(), locks=VerificationLocks()
    )


@pytest.fixture
def add_document(db_session, blob_store):
    async def _add(owner, declared_type="Transcript", filename="transcript.pdf", content=b"%PDF-1.4 grades"):
        blob = await blob_store.put(owner.id, filename, content)
        document = Document(
            id=str(uuid.uuid4()),
            owner_id=owner.id,
            filename=filename,
            mime_type="application/pdf",
            size_bytes=blob.size,
            content_ref=blob.content_ref,
            content_sha256=blob.sha256,
            declared_type=declared_type,
            status=DocumentStatus.PENDING.value,
        )
        document.owner = owner
        db_session.add(document)
        await db_session.flush()
        return document
    return _add


# =============================================================================
# Decision rule
# =============================================================================

@pytest.mark.anyio
async def test_matching_confident_verdict_verifies(people, coordinator, add_document, oracle, attestation, context_for):
    document = await add_document(people["student"])
    oracle.script("Transcript", 0.92)

    outcome = await coordinator.verify(context_for(people["student"]), document.id)

    assert outcome.verified
    assert document.status == "VERIFIED"
    assert document.attestation_hash
    assert document.confidence_score == pytest.approx(0.92)
    assert document.detected_type == "Transcript"
    assert "92%" in outcome.message
    assert attestation.attest_calls == [(document.content_sha256, document.id)]


@pytest.mark.anyio
async def test_type_mismatch_fails(people, coordinator, add_document, oracle, attestation, context_for):
    document = await add_document(people["student"], declared_type="Certificate", filename="photo.png")
    oracle.script("ID", 0.81)

    outcome = await coordinator.verify(context_for(people["admin"]), document.id)

    assert not outcome.verified
    assert document.status == "FAILED"
    assert document.attestation_hash is None
    assert document.detected_type == "ID"
    assert "ID" in outcome.message and "81%" in outcome.message
    assert "Certificate" in outcome.message
    assert attestation.attest_calls == []


@pytest.mark.anyio
async def test_nan_confidence_is_not_a_match(people, coordinator, add_document, oracle, attestation, context_for):
    document = await add_document(people["student"])
    oracle.script("Transcript", float("nan"))

    outcome = await coordinator.verify(context_for(people["student"]), document.id)

    assert not outcome.verified
    assert document.status == "FAILED"
    assert document.confidence_score == 0.0
    assert attestation.attest_calls == []


@pytest.mark.anyio
async def test_rejection_message_carries_oracle_reason(people, db_session, blob_store, attestation,
                                                      add_document, context_for):
    def unreachable(request):
        raise AssertionError("unsupported formats are never sent")

    oracle = GeminiOracle("key", "model", "http://oracle.test", transport=httpx.MockTransport(unreachable))
    coordinator = VerificationCoordinator(
        db_session, blob_store, oracle, attestation, get_settings(), locks=VerificationLocks()
    )
    document = await add_document(people["student"], filename="transcript.docx")
    document.mime_type = DOCX
    await db_session.flush()

    outcome = await coordinator.verify(context_for(people["student"]), document.id)

    assert document.status == "FAILED"
    assert "does not support" in outcome.message
    assert "does not support" in document.verification_message


@pytest.mark.anyio
async def test_low_confidence_fails(people, coordinator, add_document, oracle, context_for):
    document = await add_document(people["student"])
    oracle.script("Transcript", 0.55)

    outcome = await coordinator.verify(context_for(people["student"]), document.id)

    assert not outcome.verified
    assert document.status == "FAILED"
    assert "55%" in outcome.message


@pytest.mark.anyio
async def test_threshold_is_inclusive(people, coordinator, add_document, oracle, context_for):
    document = await add_document(people["student"])
    oracle.script("Transcript", get_settings().verification_confidence_threshold)

    outcome = await coordinator.verify(context_for(people["student"]), document.id)
    assert outcome.verified


@pytest.mark.anyio
async def test_failed_document_can_be_verified_again(people, coordinator, add_document, oracle, context_for):
    document = await add_document(people["student"])
    actor = context_for(people["student"])

    oracle.script("Diploma", 0.9)
    await coordinator.verify(actor, document.id)
    assert document.status == "FAILED"

    oracle.script("Transcript", 0.9)
    outcome = await coordinator.verify(actor, document.id)
    assert outcome.verified
    assert document.status == "VERIFIED"


# =============================================================================
# No decision: timeouts and outages
# =============================================================================

@pytest.mark.anyio
@pytest.mark.parametrize("error", [OracleTimeoutError("slow"), OracleError("down")])
async def test_oracle_failure_leaves_document_untouched(people, coordinator, add_document, oracle, attestation, context_for, error):
    document = await add_document(people["student"])
    oracle.script("Transcript", 0.99, error=error)

    with pytest.raises(VerificationError) as exc_info:
        await coordinator.verify(context_for(people["student"]), document.id)

    assert exc_info.value.retryable
    assert exc_info.value.status_code == 503
    assert document.status == "PENDING"
    assert document.confidence_score is None
    assert document.attestation_hash is None
    assert attestation.attest_calls == []


@pytest.mark.anyio
async def test_slow_oracle_is_cut_off(people, db_session, blob_store, oracle, attestation, add_document, context_for):
    settings = get_settings().model_copy(update={"oracle_timeout_seconds": 0.05})
    coordinator = VerificationCoordinator(db_session, blob_store, oracle, attestation, settings, locks=VerificationLocks())
    document = await add_document(people["student"])
    oracle.delay = 1.0

    with pytest.raises(VerificationError, match="timed out"):
        await coordinator.verify(context_for(people["student"]), document.id)
    assert document.status == "PENDING"


@pytest.mark.anyio
async def test_attestation_timeout_leaves_document_pending(people, coordinator, add_document, oracle, attestation, context_for):
    document = await add_document(people["student"])
    oracle.script("Transcript", 0.95)
    attestation.error = AttestationTimeoutError("slow ledger")

    with pytest.raises(VerificationError):
        await coordinator.verify(context_for(people["student"]), document.id)
    assert document.status == "PENDING"
    assert document.attestation_hash is None


# =============================================================================
# Authorization
# =============================================================================

@pytest.mark.anyio
async def test_student_cannot_verify_others_document(people, coordinator, add_document, oracle, context_for):
    document = await add_document(people["student"])

    with pytest.raises(AuthorizationError) as denied:
        await coordinator.verify(context_for(people["other"]), document.id)
    with pytest.raises(NotFoundError) as missing:
        await coordinator.verify(context_for(people["other"]), "no-such-document")

    # Indistinguishable from a missing document, apart from the id
    assert denied.value.status_code == missing.value.status_code == 404
    assert denied.value.error_code == missing.value.error_code
    assert oracle.calls == []


# =============================================================================
# Single flight
# =============================================================================

@pytest.mark.anyio
async def test_concurrent_verification_is_rejected(people, coordinator, add_document, oracle, context_for):
    document = await add_document(people["student"])
    actor = context_for(people["student"])
    oracle.delay = 0.2

    first = asyncio.create_task(coordinator.run(actor, document))
    await asyncio.sleep(0.05)

    with pytest.raises(VerificationInProgressError) as exc_info:
        await coordinator.run(actor, document)
    assert exc_info.value.status_code == 409

    outcome = await first
    assert outcome.verified
    assert len(oracle.calls) == 1
    # Lock released afterwards
    assert not coordinator.locks.is_locked(document.id)


# =============================================================================
# Re-verifying a verified document
# =============================================================================

@pytest.mark.anyio
async def test_reverify_checks_integrity_without_new_attestation(people, coordinator, add_document, oracle, attestation, context_for):
    document = await add_document(people["student"])
    actor = context_for(people["student"])
    await coordinator.verify(actor, document.id)
    attestation_hash = document.attestation_hash

    outcome = await coordinator.verify(actor, document.id)

    assert outcome.verified
    assert outcome.integrity_check
    assert document.attestation_hash == attestation_hash
    assert len(attestation.attest_calls) == 1
    assert len(oracle.calls) == 1


@pytest.mark.anyio
async def test_reverify_detects_tampered_content(people, coordinator, add_document, blob_store, context_for):
    document = await add_document(people["student"])
    actor = context_for(people["student"])
    await coordinator.verify(actor, document.id)

    (blob_store.root / document.content_ref).write_bytes(b"%PDF-1.4 forged grades")

    outcome = await coordinator.verify(actor, document.id)
    assert not outcome.verified
    assert outcome.integrity_check
    assert "Integrity check failed" in outcome.message
    # Row is not rewritten by an integrity check
    assert document.status == "VERIFIED"
