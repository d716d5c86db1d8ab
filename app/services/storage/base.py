"""
EduChain Storage Service - Base Interface
Abstract blob store for document bytes.

The rest of the portal only sees an opaque content_ref string returned
by put(); how and where bytes live is the store's business.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class StoredBlob:
    """Result of writing a blob."""
    content_ref: str
    size: int
    sha256: str


class BlobStore(ABC):
    """
    Abstract base class for blob stores.
    Implementations raise StorageError on any read/write failure.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider name, e.g. local"""
        pass

    @abstractmethod
    async def put(self, owner_id: str, filename: str, content: bytes) -> StoredBlob:
        """Store bytes for an owner and return an opaque reference."""
        pass

    @abstractmethod
    async def get(self, content_ref: str) -> bytes:
        """Read the complete content behind a reference."""
        pass

    @abstractmethod
    async def delete(self, content_ref: str) -> bool:
        """Release stored bytes. Returns False when nothing was stored."""
        pass
