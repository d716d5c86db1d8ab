"""
Attestation Service - tamper-evident record of verified documents.

Accepted documents get their content digest written to an append-only
ledger. The ledger hands back an attestation hash, which is stored on the
document row and can later be used to confirm the digest was attested.

Backends:
- local: JSON-lines file, every entry chained to the previous entry's hash
- http:  remote ledger service
"""

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)

GENESIS_HASH = "0x" + "0" * 64


class AttestationError(Exception):
    """The ledger could not record or confirm an attestation."""


class AttestationTimeoutError(AttestationError):
    """The ledger did not answer in time."""


class AttestationService(ABC):
    """Append-only attestation ledger."""

    @abstractmethod
    async def attest(self, content_sha256: str, document_id: str) -> str:
        """Record the digest. Returns the attestation hash."""
        pass

    @abstractmethod
    async def confirm(self, content_sha256: str, attestation_hash: str) -> bool:
        """True when the ledger holds this hash for this digest."""
        pass


# =============================================================================
# Local hash-chained ledger
# =============================================================================

class LocalLedgerAttestation(AttestationService):
    """
    File-backed ledger.

    Each line is one entry; the entry hash covers its own fields plus the
    previous entry's hash, so rewriting any line breaks every later hash.
    """

    def __init__(self, ledger_path: str):
        self.ledger_path = Path(ledger_path)
        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    @staticmethod
    def entry_hash(entry: dict) -> str:
        body = {k: v for k, v in entry.items() if k != "hash"}
        serialized = json.dumps(body, sort_keys=True, default=str)
        return "0x" + hashlib.sha256(serialized.encode()).hexdigest()

    def _read_entries(self) -> list[dict]:
        if not self.ledger_path.exists():
            return []
        entries = []
        with open(self.ledger_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(json.loads(line))
        return entries

    def _append(self, entry: dict) -> None:
        with open(self.ledger_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, sort_keys=True) + "\n")

    async def attest(self, content_sha256: str, document_id: str) -> str:
        async with self._lock:
            try:
                entries = await asyncio.to_thread(self._read_entries)
                previous = entries[-1]["hash"] if entries else GENESIS_HASH
                entry = {
                    "index": len(entries),
                    "documentId": document_id,
                    "contentSha256": content_sha256,
                    "previousHash": previous,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
                entry["hash"] = self.entry_hash(entry)
                await asyncio.to_thread(self._append, entry)
            except (OSError, ValueError) as e:
                raise AttestationError(f"Ledger write failed: {e}") from e

        logger.info("Attested document %s as %s", document_id, entry["hash"])
        return entry["hash"]

    async def confirm(self, content_sha256: str, attestation_hash: str) -> bool:
        try:
            entries = await asyncio.to_thread(self._read_entries)
        except (OSError, ValueError) as e:
            raise AttestationError(f"Ledger read failed: {e}") from e

        for entry in entries:
            if entry.get("hash") == attestation_hash:
                return (
                    entry.get("contentSha256") == content_sha256
                    and self.entry_hash(entry) == attestation_hash
                )
        return False

    async def verify_chain(self) -> bool:
        """Walk the whole ledger and check every link."""
        entries = await asyncio.to_thread(self._read_entries)
        previous = GENESIS_HASH
        for entry in entries:
            if entry.get("previousHash") != previous or self.entry_hash(entry) != entry.get("hash"):
                logger.warning("Ledger chain broken at index %s", entry.get("index"))
                return False
            previous = entry["hash"]
        return True


# =============================================================================
# Remote ledger
# =============================================================================

class HttpLedgerAttestation(AttestationService):
    """Client for a remote ledger exposing POST /attestations and GET /attestations/{hash}."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def attest(self, content_sha256: str, document_id: str) -> str:
        try:
            async with self._client() as client:
                response = await client.post(
                    "/attestations",
                    json={"documentId": document_id, "contentSha256": content_sha256},
                )
                response.raise_for_status()
                return response.json()["hash"]
        except httpx.TimeoutException as e:
            raise AttestationTimeoutError(f"Ledger did not respond within {self.timeout}s") from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise AttestationError(f"Ledger attest failed: {e}") from e

    async def confirm(self, content_sha256: str, attestation_hash: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.get(f"/attestations/{attestation_hash}")
                if response.status_code == 404:
                    return False
                response.raise_for_status()
                return response.json().get("contentSha256") == content_sha256
        except httpx.TimeoutException as e:
            raise AttestationTimeoutError(f"Ledger did not respond within {self.timeout}s") from e
        except (httpx.HTTPError, ValueError) as e:
            raise AttestationError(f"Ledger lookup failed: {e}") from e


_attestation_service: Optional[AttestationService] = None


def get_attestation_service() -> AttestationService:
    """FastAPI dependency returning the configured ledger (created once)."""
    global _attestation_service
    if _attestation_service is None:
        settings = get_settings()
        if settings.attestation_backend == "http":
            if not settings.attestation_url:
                raise RuntimeError("ATTESTATION_URL is required when ATTESTATION_BACKEND=http")
            _attestation_service = HttpLedgerAttestation(
                base_url=settings.attestation_url,
                api_key=settings.attestation_api_key,
                timeout=settings.attestation_timeout_seconds,
            )
        else:
            _attestation_service = LocalLedgerAttestation(settings.attestation_ledger_path)
    return _attestation_service
