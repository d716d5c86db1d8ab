"""
Document access - reading, downloading and deleting stored documents.

A student asking for someone else's document gets the same answer as for a
document that does not exist.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.audit import AuditAction, audit_document
from app.core.errors import AuthorizationError, document_access_denied
from app.core.user_context import Action, UserContext
from app.models.models import Document
from app.services.document_registry import DocumentRegistry
from app.services.storage import BlobStore

logger = logging.getLogger(__name__)


class DownloadGateway:
    """Read access to document metadata and bytes."""

    def __init__(self, db: AsyncSession, blob_store: BlobStore):
        self.registry = DocumentRegistry(db)
        self.blob_store = blob_store

    async def _authorized(self, actor: UserContext, document_id: str, action: Action) -> Document:
        document = await self.registry.get_or_404(document_id)
        if not actor.can(action, document.owner_id):
            await audit_document(
                AuditAction.UNAUTHORIZED_ACCESS, actor.user_id, document_id,
                success=False, attempted=action.value,
            )
            raise document_access_denied(document_id)
        return document

    async def get(self, actor: UserContext, document_id: str) -> Document:
        return await self._authorized(actor, document_id, Action.READ)

    async def download(self, actor: UserContext, document_id: str) -> tuple[Document, bytes]:
        """The stored bytes, complete and untouched, plus the row they belong to."""
        document = await self._authorized(actor, document_id, Action.DOWNLOAD)
        content = await self.blob_store.get(document.content_ref)

        await audit_document(
            AuditAction.DOCUMENT_DOWNLOAD, actor.user_id, document.id,
            filename=document.filename, size_bytes=len(content),
        )
        return document, content


class DeletionCoordinator:
    """Admin-only removal of a document and its bytes."""

    def __init__(self, db: AsyncSession, blob_store: BlobStore):
        self.db = db
        self.registry = DocumentRegistry(db)
        self.blob_store = blob_store

    async def delete(self, actor: UserContext, document_id: str) -> Document:
        if not actor.can(Action.DELETE):
            await audit_document(
                AuditAction.UNAUTHORIZED_ACCESS, actor.user_id, document_id,
                success=False, attempted="delete",
            )
            raise AuthorizationError("Access denied! Admin only.")

        document = await self.registry.get_or_404(document_id)
        await self.registry.remove(document)

        # A StorageError here propagates and the row removal is rolled back
        if not await self.blob_store.delete(document.content_ref):
            logger.warning("Content for document %s was already gone", document.id)

        logger.info("Deleted document %s (%s)", document.id, document.filename)
        await audit_document(
            AuditAction.DOCUMENT_DELETE, actor.user_id, document.id,
            owner_id=document.owner_id, filename=document.filename,
        )
        return document
