"""
Document Registry - the persistent record of every document.

Dashboards read through here; only the upload, verification and deletion
flows write. Every method that needs a role takes the caller's UserContext
and checks it before touching the database.
"""

import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AuthorizationError, document_not_found
from app.core.user_context import Action, UserContext, UserRole
from app.models.models import Document, User

logger = logging.getLogger(__name__)


class DocumentRegistry:
    """Queries and writes against the documents table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Writes
    # =========================================================================

    async def add(self, document: Document) -> Document:
        self.db.add(document)
        await self.db.flush()
        return document

    async def remove(self, document: Document) -> None:
        await self.db.delete(document)
        await self.db.flush()

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, document_id: str) -> Optional[Document]:
        return await self.db.get(Document, document_id)

    async def get_or_404(self, document_id: str) -> Document:
        document = await self.get(document_id)
        if document is None:
            raise document_not_found(document_id)
        return document

    async def get_student(self, user_id: str) -> Optional[User]:
        user = await self.db.get(User, user_id)
        if user is None or user.role != UserRole.STUDENT.value:
            return None
        return user

    async def list_mine(self, actor: UserContext) -> list[Document]:
        """The caller's own documents, newest first."""
        result = await self.db.execute(
            select(Document)
            .where(Document.owner_id == actor.user_id)
            .order_by(Document.uploaded_at.desc(), Document.id)
        )
        return list(result.scalars().unique())

    async def list_all(self, actor: UserContext, query: Optional[str] = None) -> list[Document]:
        """
        Every document, newest first (admin only).

        query filters case-insensitively on filename, owner username and
        declared type.
        """
        if not actor.can(Action.LIST_ALL):
            raise AuthorizationError("Access denied! Admin only.")

        stmt = select(Document).join(User, Document.owner_id == User.id)
        if query and query.strip():
            pattern = f"%{query.strip().lower()}%"
            stmt = stmt.where(or_(
                func.lower(Document.filename).like(pattern),
                func.lower(User.username).like(pattern),
                func.lower(Document.declared_type).like(pattern),
            ))
        stmt = stmt.order_by(Document.uploaded_at.desc(), Document.id)

        result = await self.db.execute(stmt)
        return list(result.scalars().unique())

    async def list_students(self, actor: UserContext) -> list[dict]:
        """Upload targets for the admin dashboard: {id, username, role} only."""
        if not actor.can(Action.LIST_STUDENTS):
            raise AuthorizationError("Access denied! Admin only.")

        result = await self.db.execute(
            select(User)
            .where(User.role == UserRole.STUDENT.value)
            .order_by(User.username)
        )
        return [user.to_summary() for user in result.scalars()]
