"""
Upload Pipeline - admin uploads a document on behalf of a student.

Every check runs before anything is written. Once the bytes are stored and
the PENDING row exists, the document is verified in the same request so the
caller gets the verdict back with the upload acknowledgement.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

import anyio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import AuditAction, audit_document
from app.core.config import Settings
from app.core.errors import AuthorizationError, StorageError, ValidationError, VerificationError
from app.core.user_context import Action, UserContext
from app.models.models import Document, DocumentStatus, DocumentType
from app.services.document_registry import DocumentRegistry
from app.services.storage import BlobStore
from app.services.verification import VerificationCoordinator, VerificationOutcome

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000

MIME_TYPES = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
}


@dataclass
class UploadResult:
    document: Document
    message: str
    verification: Optional[VerificationOutcome] = None

    @property
    def verified(self) -> bool:
        return self.verification is not None and self.verification.verified

    def to_response(self) -> dict:
        return {
            "success": True,
            "documentId": self.document.id,
            "verified": self.verified,
            "confidence": self.verification.confidence if self.verification else None,
            "detectedType": self.verification.detected_type if self.verification else None,
            "status": self.document.status,
            "message": self.message,
            "document": self.document.to_dict(),
        }


def file_extension(filename: str) -> str:
    suffix = PurePath(filename).suffix
    return suffix[1:].lower() if suffix else ""


class UploadPipeline:
    """Validate, store, record and verify one uploaded file."""

    def __init__(
        self,
        db: AsyncSession,
        blob_store: BlobStore,
        coordinator: VerificationCoordinator,
        settings: Settings,
    ):
        self.db = db
        self.registry = DocumentRegistry(db)
        self.blob_store = blob_store
        self.coordinator = coordinator
        self.settings = settings

    async def upload(
        self,
        actor: UserContext,
        owner_id: str,
        filename: str,
        content: bytes,
        declared_type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> UploadResult:
        if not actor.can(Action.UPLOAD, owner_id):
            await audit_document(
                AuditAction.UNAUTHORIZED_ACCESS, actor.user_id, None,
                success=False, attempted="upload", owner_id=owner_id,
            )
            raise AuthorizationError("Access denied! Admin only.")

        filename = PurePath((filename or "").replace("\\", "/")).name.strip()
        doc_type = self._validate(owner_id, filename, content, declared_type, description)

        owner = await self.registry.get_student(owner_id) if owner_id else None
        if owner is None:
            raise ValidationError(
                f"Student '{owner_id}' not found",
                details=[{"field": "studentId"}],
            )

        # Nothing has been written up to here
        blob = await self.blob_store.put(owner.id, filename, content)

        document = Document(
            id=str(uuid.uuid4()),
            owner_id=owner.id,
            uploaded_by=actor.user_id,
            filename=filename,
            mime_type=MIME_TYPES.get(file_extension(filename), "application/octet-stream"),
            size_bytes=blob.size,
            content_ref=blob.content_ref,
            content_sha256=blob.sha256,
            declared_type=doc_type.value,
            description=(description or "").strip() or None,
            status=DocumentStatus.PENDING.value,
        )
        document.owner = owner
        try:
            await self.registry.add(document)
        except SQLAlchemyError as e:
            logger.error("Failed to record document for %s: %s", owner.id, e)
            await self._release(blob.content_ref)
            raise StorageError("Database", "Failed to record the uploaded document") from e

        logger.info(
            "Stored %s (%d bytes) for student %s as %s",
            filename, blob.size, owner.id, document.id,
            extra={"document_id": document.id, "uploaded_by": actor.user_id},
        )
        await audit_document(
            AuditAction.DOCUMENT_UPLOAD,
            actor.user_id,
            document.id,
            owner_id=owner.id,
            filename=filename,
            size_bytes=blob.size,
            declared_type=doc_type.value,
        )

        try:
            outcome = await self.coordinator.run(actor, document)
        except VerificationError as e:
            # Upload stands; the document stays PENDING and can be verified later
            return UploadResult(
                document=document,
                message=f"Document uploaded, but verification did not complete. {e.message}",
            )
        except asyncio.CancelledError:
            await self._release(blob.content_ref)
            raise

        return UploadResult(document=document, message=outcome.message, verification=outcome)

    def _validate(
        self,
        owner_id: str,
        filename: str,
        content: bytes,
        declared_type: Optional[str],
        description: Optional[str],
    ) -> DocumentType:
        if not owner_id:
            raise ValidationError("Please select a student", details=[{"field": "studentId"}])
        if not filename:
            raise ValidationError("Please select a file", details=[{"field": "file"}])

        ext = file_extension(filename)
        allowed = self.settings.allowed_extensions_set
        if ext not in allowed:
            raise ValidationError(
                f"File type '.{ext}' is not allowed. Allowed: {', '.join(sorted(allowed))}",
                details=[{"field": "file", "extension": ext}],
            )

        if len(content) > self.settings.max_upload_size_bytes:
            raise ValidationError(
                f"File size must be less than {self.settings.max_upload_size_mb}MB",
                details=[{"field": "file", "size": len(content)}],
            )
        if not content:
            raise ValidationError("File is empty", details=[{"field": "file"}])

        if declared_type is None or not declared_type.strip():
            doc_type = DocumentType.GENERAL
        else:
            doc_type = DocumentType.parse(declared_type)
            if doc_type is None:
                raise ValidationError(
                    f"Unknown document type '{declared_type}'. "
                    f"Use one of: {', '.join(t.value for t in DocumentType)}",
                    details=[{"field": "documentType"}],
                )

        if description and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters",
                details=[{"field": "description"}],
            )
        return doc_type

    async def _release(self, content_ref: str) -> None:
        try:
            # Runs while the request is being cancelled too
            with anyio.CancelScope(shield=True):
                await self.blob_store.delete(content_ref)
        except StorageError as e:
            logger.error("Could not release orphaned content %s: %s", content_ref, e)
