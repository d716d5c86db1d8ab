"""
EduChain Database Models
SQLAlchemy ORM models for users and documents.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, inspect
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class DocumentStatus(str, Enum):
    """Verification lifecycle of a document."""
    PENDING = "PENDING"      # Stored, no decision yet (or oracle timed out)
    VERIFIED = "VERIFIED"    # Oracle accepted, attestation recorded
    FAILED = "FAILED"        # Oracle rejected (type mismatch / low confidence)


class DocumentType(str, Enum):
    """Academic document categories an uploader can declare."""
    GENERAL = "General"
    TRANSCRIPT = "Transcript"
    CERTIFICATE = "Certificate"
    DEGREE = "Degree"
    DIPLOMA = "Diploma"
    ID = "ID"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["DocumentType"]:
        """
        Case-insensitive lookup with the labels the oracle and older clients use
        ("ID Card", "Other", ...). Returns None for anything unrecognised.
        """
        if value is None:
            return None
        key = " ".join(value.strip().lower().replace("_", " ").split())
        if not key:
            return None
        for member in cls:
            if member.value.lower() == key:
                return member
        return _DOCUMENT_TYPE_ALIASES.get(key)


_DOCUMENT_TYPE_ALIASES = {
    "id card": DocumentType.ID,
    "student id": DocumentType.ID,
    "identity card": DocumentType.ID,
    "identification": DocumentType.ID,
    "academic transcript": DocumentType.TRANSCRIPT,
    "degree certificate": DocumentType.DEGREE,
    "other": DocumentType.GENERAL,
}


# =============================================================================
# User Model
# =============================================================================

class User(Base):
    """
    Portal account.

    The password is only ever stored as a bcrypt hash. The role is fixed at
    registration.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(100))
    role: Mapped[str] = mapped_column(String(10), index=True)  # STUDENT, ADMIN

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def to_summary(self) -> dict:
        """Public projection; never includes the credential."""
        return {"id": self.id, "username": self.username, "role": self.role}


# =============================================================================
# Document Model
# =============================================================================

class Document(Base):
    """
    Academic document owned by a student.

    status == VERIFIED exactly when attestation_hash is set.
    """
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)

    # File info
    filename: Mapped[str] = mapped_column(String(255))
    mime_type: Mapped[str] = mapped_column(String(100))
    size_bytes: Mapped[int] = mapped_column(Integer)
    content_ref: Mapped[str] = mapped_column(String(500))
    content_sha256: Mapped[str] = mapped_column(String(64))

    # Metadata
    declared_type: Mapped[str] = mapped_column(String(20))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Verification
    status: Mapped[str] = mapped_column(String(10), default=DocumentStatus.PENDING.value, index=True)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    detected_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    attestation_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    verification_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    # Relationships
    owner: Mapped["User"] = relationship(foreign_keys=[owner_id], lazy="joined")

    def to_dict(self) -> dict:
        # Never trigger a lazy load here (async sessions cannot)
        owner = inspect(self).attrs.owner.loaded_value
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "ownerUsername": owner.username if isinstance(owner, User) else None,
            "filename": self.filename,
            "declaredType": self.declared_type,
            "description": self.description,
            "sizeBytes": self.size_bytes,
            "mimeType": self.mime_type,
            "uploadTimestamp": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "status": self.status,
            "confidenceScore": self.confidence_score,
            "detectedType": self.detected_type,
            "attestationHash": self.attestation_hash,
            "verificationMessage": self.verification_message,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
        }
