"""
Documents Router
Upload, listing, download, verification and deletion of academic documents.

Every endpoint requires a session; role and ownership are checked by the
services, which raise the portal errors rendered by app.core.errors.
"""

import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.rate_limit import RATE_UPLOAD, RATE_VERIFY, limiter
from app.core.security import require_admin, require_user
from app.core.user_context import UserContext
from app.services.attestation import AttestationService, get_attestation_service
from app.services.document_access import DeletionCoordinator, DownloadGateway
from app.services.document_registry import DocumentRegistry
from app.services.oracle import VerificationOracle, get_oracle
from app.services.storage import BlobStore, get_blob_store
from app.services.upload_pipeline import UploadPipeline
from app.services.verification import VerificationCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Service wiring
# =============================================================================

def get_verification_coordinator(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    oracle: VerificationOracle = Depends(get_oracle),
    attestation: AttestationService = Depends(get_attestation_service),
    settings: Settings = Depends(get_settings),
) -> VerificationCoordinator:
    return VerificationCoordinator(db, blob_store, oracle, attestation, settings)


def get_upload_pipeline(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    coordinator: VerificationCoordinator = Depends(get_verification_coordinator),
    settings: Settings = Depends(get_settings),
) -> UploadPipeline:
    return UploadPipeline(db, blob_store, coordinator, settings)


def get_download_gateway(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> DownloadGateway:
    return DownloadGateway(db, blob_store)


def get_deletion_coordinator(
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> DeletionCoordinator:
    return DeletionCoordinator(db, blob_store)


def content_disposition(filename: str) -> str:
    """Attachment header that survives non-ASCII filenames."""
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "document"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


# =============================================================================
# Upload
# =============================================================================

@router.post("/upload")
@limiter.limit(RATE_UPLOAD)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    studentId: str = Form(...),
    documentType: Optional[str] = Form("General"),
    description: Optional[str] = Form(None),
    user: UserContext = Depends(require_user),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    settings: Settings = Depends(get_settings),
):
    """
    Upload a document for a student (admin only) and verify it immediately.

    The response carries the verification verdict. A verification that could
    not complete leaves the document PENDING; it can be retried later.
    """
    # One byte past the limit is enough to reject oversize files
    content = await file.read(settings.max_upload_size_bytes + 1)
    result = await pipeline.upload(
        user,
        owner_id=studentId,
        filename=file.filename or "",
        content=content,
        declared_type=documentType,
        description=description,
    )
    return result.to_response()


# =============================================================================
# Listings
# =============================================================================

@router.get("/my-documents")
async def my_documents(
    user: UserContext = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Documents owned by the logged-in user, newest first."""
    documents = await DocumentRegistry(db).list_mine(user)
    return {"success": True, "documents": [d.to_dict() for d in documents]}


@router.get("/all")
async def all_documents(
    q: Optional[str] = Query(None, max_length=200, description="Filter by filename, student or type"),
    user: UserContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Every document in the portal (admin only)."""
    documents = await DocumentRegistry(db).list_all(user, q)
    return {"success": True, "documents": [d.to_dict() for d in documents]}


@router.get("/students")
async def list_students(
    user: UserContext = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Students an admin can upload for."""
    students = await DocumentRegistry(db).list_students(user)
    return {"success": True, "students": students}


# =============================================================================
# Single document
# =============================================================================

@router.get("/download/{document_id}")
async def download_document(
    document_id: str,
    user: UserContext = Depends(require_user),
    gateway: DownloadGateway = Depends(get_download_gateway),
):
    """Stored bytes, verbatim, as an attachment with the original filename."""
    document, content = await gateway.download(user, document_id)
    return Response(
        content=content,
        media_type=document.mime_type or "application/octet-stream",
        headers={"Content-Disposition": content_disposition(document.filename)},
    )


@router.post("/verify/{document_id}")
@limiter.limit(RATE_VERIFY)
async def verify_document(
    request: Request,
    document_id: str,
    user: UserContext = Depends(require_user),
    coordinator: VerificationCoordinator = Depends(get_verification_coordinator),
):
    """Run (or re-run) verification for a document the caller may verify."""
    outcome = await coordinator.verify(user, document_id)
    return outcome.to_response()


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    user: UserContext = Depends(require_user),
    gateway: DownloadGateway = Depends(get_download_gateway),
):
    """Metadata for one document."""
    document = await gateway.get(user, document_id)
    return {"success": True, "document": document.to_dict()}


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    user: UserContext = Depends(require_user),
    deleter: DeletionCoordinator = Depends(get_deletion_coordinator),
):
    """Remove a document and its stored bytes (admin only)."""
    document = await deleter.delete(user, document_id)
    return {
        "success": True,
        "message": "Document deleted successfully!",
        "documentId": document.id,
    }
