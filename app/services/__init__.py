# Business logic services - document lifecycle and its collaborators

from app.services.accounts import AccountService
from app.services.attestation import (
    AttestationError,
    AttestationService,
    AttestationTimeoutError,
    HttpLedgerAttestation,
    LocalLedgerAttestation,
    get_attestation_service,
)
from app.services.challenge import ChallengeVerifier, RecaptchaVerifier, get_challenge_verifier
from app.services.document_access import DeletionCoordinator, DownloadGateway
from app.services.document_registry import DocumentRegistry
from app.services.oracle import (
    GeminiOracle,
    OracleError,
    OracleTimeoutError,
    OracleVerdict,
    VerificationOracle,
    get_oracle,
)
from app.services.upload_pipeline import UploadPipeline, UploadResult
from app.services.verification import (
    VerificationCoordinator,
    VerificationLocks,
    VerificationOutcome,
    verification_locks,
)

__all__ = [
    "AccountService",
    "AttestationError",
    "AttestationService",
    "AttestationTimeoutError",
    "HttpLedgerAttestation",
    "LocalLedgerAttestation",
    "get_attestation_service",
    "ChallengeVerifier",
    "RecaptchaVerifier",
    "get_challenge_verifier",
    "DeletionCoordinator",
    "DownloadGateway",
    "DocumentRegistry",
    "GeminiOracle",
    "OracleError",
    "OracleTimeoutError",
    "OracleVerdict",
    "VerificationOracle",
    "get_oracle",
    "UploadPipeline",
    "UploadResult",
    "VerificationCoordinator",
    "VerificationLocks",
    "VerificationOutcome",
    "verification_locks",
]
