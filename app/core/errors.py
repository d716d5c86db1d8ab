"""
Standardized Error Handling for the EduChain portal.

Every error leaves the API as JSON with the same envelope:
    {"success": false, "error": <code>, "message": <text>, ...}
"""

import logging
from http import HTTPStatus
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class PortalError(Exception):
    """Base exception for portal errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "portal_error",
        status_code: int = 500,
        details: list[dict] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details
        super().__init__(message)

    def to_content(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class AuthError(PortalError):
    """Bad credentials, missing/invalid challenge token or expired session."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            error_code="authentication_required",
            status_code=401,
        )


class AuthorizationError(PortalError):
    """
    Authenticated but not permitted.

    With conceal=True the error renders exactly like a document NotFoundError,
    so a caller cannot learn that a resource exists for another owner.
    """

    def __init__(self, message: str = "Permission denied", conceal: bool = False):
        if conceal:
            super().__init__(message=message, error_code="not_found", status_code=404)
        else:
            super().__init__(message=message, error_code="permission_denied", status_code=403)
        self.concealed = conceal


class ValidationError(PortalError):
    """Oversize file, disallowed extension, missing field, unknown owner."""

    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(
            message=message,
            error_code="validation_error",
            status_code=422,
            details=details,
        )


class NotFoundError(PortalError):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} '{identifier}' not found"
        super().__init__(
            message=message,
            error_code="not_found",
            status_code=404,
        )


class VerificationError(PortalError):
    """
    Verification could not reach a decision (oracle or ledger timeout/outage).
    The document keeps its previous status and the caller may retry.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(
            message=message,
            error_code="verification_unavailable",
            status_code=503,
            details=[{"retryable": retryable}],
        )
        self.retryable = retryable


class VerificationInProgressError(PortalError):
    """Another verification of the same document is still running."""

    def __init__(self, document_id: str):
        super().__init__(
            message=f"Verification of document '{document_id}' is already in progress",
            error_code="verification_in_progress",
            status_code=409,
        )


class StorageError(PortalError):
    """Content write/read failure in the blob store."""

    def __init__(self, provider: str = "Storage", message: str = "Storage operation failed"):
        super().__init__(
            message=f"{provider}: {message}",
            error_code="storage_error",
            status_code=500,
        )


def document_not_found(document_id: Any) -> NotFoundError:
    return NotFoundError("Document", document_id)


def document_access_denied(document_id: Any) -> AuthorizationError:
    """Denial that is indistinguishable from document_not_found()."""
    return AuthorizationError(document_not_found(document_id).message, conceal=True)



# =============================================================================
# Exception Handlers
# =============================================================================

# Codes for errors raised by FastAPI/Starlette themselves
HTTP_ERROR_CODES = {
    400: "bad_request",
    401: "authentication_required",
    403: "permission_denied",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    422: "validation_error",
    429: "rate_limit_exceeded",
    503: "service_unavailable",
}


def error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[list[dict]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """The single JSON envelope every failure leaves the API in."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error_code,
            "message": message,
            "details": details,
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s on %s: %s", exc.error_code, request.url.path, exc.message,
               extra={"error_code": exc.error_code})
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return error_response(request, exc.status_code, exc.error_code, exc.message, exc.details, headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = str(exc.detail) if exc.detail else HTTPStatus(exc.status_code).phrase
    return error_response(
        request,
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "error"),
        message,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Missing form fields, wrong types: reported per field."""
    details = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]) or None,
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    logger.info("Rejected request to %s: %d invalid field(s)", request.url.path, len(details))
    return error_response(request, 422, "validation_error", "Request validation failed", details)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path,
                 exc_info=exc)
    # Internals stay in the log
    return error_response(request, 500, "internal_error", "An unexpected error occurred")


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "PortalError",
    "AuthError",
    "AuthorizationError",
    "ValidationError",
    "NotFoundError",
    "VerificationError",
    "VerificationInProgressError",
    "StorageError",
    "document_not_found",
    "document_access_denied",
    "error_response",
    "setup_exception_handlers",
]
