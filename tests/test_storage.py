"""
Tests for the local blob store.
"""

import hashlib

import pytest

from app.core.errors import StorageError
from app.services.storage import local
from app.services.storage.local import LocalBlobStore


@pytest.mark.anyio
async def test_put_hashes_and_lays_out_by_owner(blob_store: LocalBlobStore, monkeypatch):
    # Several chunks, last one short
    monkeypatch.setattr(local, "CHUNK_SIZE", 4)
    content = b"%PDF-1.4 transcript"

    stored = await blob_store.put("owner-1", "Grades.PDF", content)

    assert stored.sha256 == hashlib.sha256(content).hexdigest()
    assert stored.size == len(content)
    owner, name = stored.content_ref.split("/")
    assert owner == "owner-1"
    assert name.endswith(".pdf")
    assert await blob_store.get(stored.content_ref) == content
    assert [p.name for p in (blob_store.root / "owner-1").iterdir()] == [name]


@pytest.mark.anyio
async def test_empty_content(blob_store: LocalBlobStore):
    stored = await blob_store.put("owner-1", "blank", b"")

    assert stored.sha256 == hashlib.sha256(b"").hexdigest()
    assert stored.content_ref.endswith(".bin")
    assert await blob_store.get(stored.content_ref) == b""


@pytest.mark.anyio
async def test_delete_reports_whether_anything_was_stored(blob_store: LocalBlobStore):
    stored = await blob_store.put("owner-1", "a.png", b"\x89PNG")

    assert await blob_store.delete(stored.content_ref) is True
    assert not (blob_store.root / stored.content_ref).exists()
    assert await blob_store.delete(stored.content_ref) is False

    with pytest.raises(StorageError):
        await blob_store.get(stored.content_ref)


@pytest.mark.anyio
async def test_reference_outside_root_is_rejected(blob_store: LocalBlobStore):
    with pytest.raises(StorageError):
        await blob_store.get("../../etc/passwd")


@pytest.mark.anyio
async def test_failed_write_leaves_no_temp_file(tmp_path):
    # The owner directory cannot be created under a regular file
    (tmp_path / "blobs").mkdir()
    (tmp_path / "blobs" / "owner-1").write_bytes(b"")
    store = LocalBlobStore(tmp_path / "blobs")

    with pytest.raises(StorageError):
        await store.put("owner-1", "a.pdf", b"data")

    assert [p.name for p in (tmp_path / "blobs").iterdir()] == ["owner-1"]
