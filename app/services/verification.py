"""
Verification Coordinator - decides whether a document is what it claims.

Pipeline for one document:
1. Read the stored bytes
2. Ask the oracle what the document looks like (bounded by a timeout)
3. Accept when the detected type equals the declared type and the
   confidence reaches the threshold; reject otherwise
4. On accept, record the content digest with the attestation service

Nothing is written to the row until steps 2 and 4 have both returned, so a
timeout or a cancelled request leaves the document exactly as it was.
"""

import asyncio
import hashlib
import hmac
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import AuditAction, audit_document
from app.core.config import Settings
from app.core.errors import (
    VerificationError,
    VerificationInProgressError,
    document_access_denied,
    document_not_found,
)
from app.core.user_context import Action, UserContext
from app.models.models import Document, DocumentStatus, DocumentType, utcnow
from app.services.attestation import AttestationError, AttestationService
from app.services.document_registry import DocumentRegistry
from app.services.oracle import OracleError, OracleTimeoutError, OracleVerdict, VerificationOracle
from app.services.storage import BlobStore

logger = logging.getLogger(__name__)


# =============================================================================
# Single in-flight verification per document
# =============================================================================

class VerificationLocks:
    """Per-document locks. A second caller is turned away, not queued."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def is_locked(self, document_id: str) -> bool:
        lock = self._locks.get(document_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, document_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(document_id, asyncio.Lock())
        if lock.locked():
            raise VerificationInProgressError(document_id)
        # Uncontended acquire completes without yielding to the loop
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if self._locks.get(document_id) is lock and not lock.locked():
                del self._locks[document_id]


verification_locks = VerificationLocks()


# =============================================================================
# Outcome
# =============================================================================

@dataclass
class VerificationOutcome:
    """Result of one verification pass."""
    document: Document
    verified: bool
    message: str
    confidence: Optional[float] = None
    detected_type: Optional[str] = None
    integrity_check: bool = False

    def to_response(self) -> dict:
        return {
            "success": True,
            "message": self.message,
            "verified": self.verified,
            "confidence": self.confidence,
            "detectedType": self.detected_type,
            "status": self.document.status,
            "integrityCheck": self.integrity_check,
            "document": self.document.to_dict(),
        }


def percent(confidence: float) -> str:
    return f"{confidence:.0%}"


# =============================================================================
# Coordinator
# =============================================================================

class VerificationCoordinator:
    """Runs the oracle decision and attestation for a document."""

    def __init__(
        self,
        db: AsyncSession,
        blob_store: BlobStore,
        oracle: VerificationOracle,
        attestation: AttestationService,
        settings: Settings,
        locks: Optional[VerificationLocks] = None,
    ):
        self.db = db
        self.registry = DocumentRegistry(db)
        self.blob_store = blob_store
        self.oracle = oracle
        self.attestation = attestation
        self.settings = settings
        self.locks = locks or verification_locks

    async def verify(self, actor: UserContext, document_id: str) -> VerificationOutcome:
        """Verify a stored document on behalf of its owner or an admin."""
        document = await self.registry.get(document_id)
        if document is None:
            raise document_not_found(document_id)
        if not actor.can(Action.VERIFY, document.owner_id):
            await audit_document(
                AuditAction.UNAUTHORIZED_ACCESS, actor.user_id, document_id,
                success=False, attempted="verify",
            )
            raise document_access_denied(document_id)
        return await self.run(actor, document)

    async def run(self, actor: UserContext, document: Document) -> VerificationOutcome:
        """Verify a document the caller is already known to be allowed to verify."""
        async with self.locks.hold(document.id):
            content = await self.blob_store.get(document.content_ref)

            if document.status == DocumentStatus.VERIFIED.value and document.attestation_hash:
                outcome = await self._check_integrity(document, content)
            else:
                outcome = await self._decide(document, content)

        await audit_document(
            AuditAction.DOCUMENT_VERIFY,
            actor.user_id,
            document.id,
            success=outcome.verified,
            status=document.status,
            confidence=outcome.confidence,
            detected_type=outcome.detected_type,
            integrity_check=outcome.integrity_check,
        )
        return outcome

    # -------------------------------------------------------------------------

    async def _decide(self, document: Document, content: bytes) -> VerificationOutcome:
        declared = DocumentType(document.declared_type)
        verdict = await self._classify(document, content, declared)
        threshold = self.settings.verification_confidence_threshold

        type_matches = verdict.detected_type == declared.value
        if type_matches and verdict.confidence >= threshold:
            attestation_hash = await self._attest(document)
            message = f"Document verified as {declared.value} with {percent(verdict.confidence)} confidence"
            document.status = DocumentStatus.VERIFIED.value
            document.attestation_hash = attestation_hash
            document.verified_at = utcnow()
        else:
            if not type_matches:
                message = (
                    f"Document type mismatch! You selected '{declared.value}' but the document "
                    f"appears to be '{verdict.detected_type}' ({percent(verdict.confidence)} confidence). "
                    "Please select the correct document type and try again."
                )
            else:
                message = (
                    f"Document could not be verified as {declared.value}: low confidence "
                    f"({percent(verdict.confidence)}, {percent(threshold)} required). "
                    "Please upload a clearer copy and try again."
                )
            if verdict.reason:
                message = f"{message} Details: {verdict.reason}"
            document.status = DocumentStatus.FAILED.value
            document.attestation_hash = None
            document.verified_at = None

        document.confidence_score = verdict.confidence
        document.detected_type = verdict.detected_type
        document.verification_message = message
        await self.db.flush()

        verified = document.status == DocumentStatus.VERIFIED.value
        logger.info(
            "Document %s %s (declared=%s detected=%s confidence=%.2f)",
            document.id,
            document.status,
            declared.value,
            verdict.detected_type,
            verdict.confidence,
            extra={"document_id": document.id, "oracle": self.oracle.name},
        )
        return VerificationOutcome(
            document=document,
            verified=verified,
            message=message,
            confidence=verdict.confidence,
            detected_type=verdict.detected_type,
        )

    async def _check_integrity(self, document: Document, content: bytes) -> VerificationOutcome:
        """Re-check an already verified document. Never mutates the row."""
        digest = hashlib.sha256(content).hexdigest()
        content_intact = hmac.compare_digest(digest, document.content_sha256)

        attested = False
        if content_intact:
            try:
                attested = await asyncio.wait_for(
                    self.attestation.confirm(digest, document.attestation_hash),
                    timeout=self.settings.attestation_timeout_seconds,
                )
            except (asyncio.TimeoutError, AttestationError) as e:
                logger.warning("Attestation lookup failed for %s: %s", document.id, e)
                raise VerificationError(
                    "Could not reach the attestation service. Please try again."
                ) from e

        if content_intact and attested:
            message = "Document already verified; content matches its attestation record"
            verified = True
        else:
            message = "Integrity check failed: stored content does not match its attestation record"
            verified = False
            logger.error(
                "Integrity check failed for document %s (content_intact=%s attested=%s)",
                document.id, content_intact, attested,
            )

        return VerificationOutcome(
            document=document,
            verified=verified,
            message=message,
            confidence=document.confidence_score,
            detected_type=document.detected_type,
            integrity_check=True,
        )

    async def _classify(self, document: Document, content: bytes, declared: DocumentType) -> OracleVerdict:
        try:
            return await asyncio.wait_for(
                self.oracle.classify(content, document.mime_type, declared),
                timeout=self.settings.oracle_timeout_seconds,
            )
        except (asyncio.TimeoutError, OracleTimeoutError) as e:
            logger.warning("Oracle timed out for document %s", document.id)
            raise VerificationError(
                "Verification timed out. The document is still pending; please try again."
            ) from e
        except OracleError as e:
            logger.error("Oracle unavailable for document %s: %s", document.id, e)
            raise VerificationError(
                "Verification service is unavailable. The document is still pending; please try again."
            ) from e

    async def _attest(self, document: Document) -> str:
        try:
            return await asyncio.wait_for(
                self.attestation.attest(document.content_sha256, document.id),
                timeout=self.settings.attestation_timeout_seconds,
            )
        except (asyncio.TimeoutError, AttestationError) as e:
            logger.error("Attestation failed for document %s: %s", document.id, e)
            raise VerificationError(
                "Could not record the attestation. The document is unchanged; please try again."
            ) from e
