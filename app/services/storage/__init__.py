# Storage services - where document bytes live
from typing import Optional

from app.core.config import get_settings
from app.services.storage.base import BlobStore, StoredBlob
from app.services.storage.local import LocalBlobStore


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """
    Get the configured blob store (FastAPI dependency).

    Tests swap it with app.dependency_overrides.
    """
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalBlobStore(get_settings().upload_dir)
    return _blob_store


__all__ = [
    "BlobStore",
    "StoredBlob",
    "LocalBlobStore",
    "get_blob_store",
]
