"""
Local filesystem blob store.

Layout: <root>/<owner_id>/<uuid>.<ext>
Writes go to a temp file first and are renamed into place, so a reference
never points at a half-written file. File I/O runs in worker threads.
"""

import asyncio
import hashlib
import logging
import uuid
from pathlib import Path

from app.core.errors import StorageError
from app.services.storage.base import BlobStore, StoredBlob

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class LocalBlobStore(BlobStore):
    """Blob store backed by a local directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    @property
    def provider_name(self) -> str:
        return "local"

    def _safe_name(self, filename: str) -> str:
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
        return f"{uuid.uuid4()}.{ext}"

    def _resolve(self, content_ref: str) -> Path:
        """Map a reference to a path inside root (rejects traversal)."""
        root = self.root.resolve()
        path = (root / content_ref).resolve()
        if root not in path.parents:
            raise StorageError(self.provider_name, f"Invalid content reference: {content_ref}")
        return path

    @staticmethod
    def _write(path: Path, content: bytes) -> str:
        """Write through a temp file, hashing each chunk as it goes out."""
        temp_path = path.with_suffix(path.suffix + ".tmp")
        digest = hashlib.sha256()
        view = memoryview(content)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "wb") as f:
                for offset in range(0, len(view), CHUNK_SIZE):
                    chunk = view[offset:offset + CHUNK_SIZE]
                    digest.update(chunk)
                    f.write(chunk)
            temp_path.replace(path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
        return digest.hexdigest()

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    async def put(self, owner_id: str, filename: str, content: bytes) -> StoredBlob:
        content_ref = f"{owner_id}/{self._safe_name(filename)}"
        path = self._resolve(content_ref)
        try:
            sha256 = await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            logger.error("Failed to store %s for owner %s: %s", filename, owner_id, e)
            raise StorageError(self.provider_name, "Failed to write document content") from e

        return StoredBlob(content_ref=content_ref, size=len(content), sha256=sha256)

    async def get(self, content_ref: str) -> bytes:
        path = self._resolve(content_ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as e:
            raise StorageError(self.provider_name, "Document content is missing") from e
        except OSError as e:
            logger.error("Failed to read %s: %s", content_ref, e)
            raise StorageError(self.provider_name, "Failed to read document content") from e

    async def delete(self, content_ref: str) -> bool:
        path = self._resolve(content_ref)
        try:
            return await asyncio.to_thread(self._unlink, path)
        except OSError as e:
            logger.error("Failed to delete %s: %s", content_ref, e)
            raise StorageError(self.provider_name, "Failed to delete document content") from e
