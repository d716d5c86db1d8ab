"""
EduChain - Verification Oracle (Google Gemini)

Classifies a document image/PDF and reports which academic document type it
looks like, with a confidence score. The accept/reject decision is NOT made
here; see app.services.verification.
"""

import base64
import json
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import get_settings
from app.models.models import DocumentType

logger = logging.getLogger(__name__)


UNKNOWN_TYPE = "Unknown"


class OracleError(Exception):
    """The oracle could not produce a verdict (outage, bad status, no key)."""


class OracleTimeoutError(OracleError):
    """The oracle did not answer within its time budget."""


@dataclass
class OracleVerdict:
    """What the oracle thinks the document is."""
    detected_type: str
    confidence: float
    reason: str = ""

    def __post_init__(self):
        confidence = float(self.confidence)
        # NaN and inf carry no information; min/max would turn NaN into 1.0
        self.confidence = max(0.0, min(1.0, confidence)) if math.isfinite(confidence) else 0.0


def normalize_detected_type(label: Optional[str]) -> str:
    """
    Map an oracle label onto a DocumentType value.
    Unrecognised labels are kept verbatim so they never match a declared type.
    """
    parsed = DocumentType.parse(label)
    if parsed is not None:
        return parsed.value
    label = (label or "").strip()
    return label[:50] if label else UNKNOWN_TYPE


class VerificationOracle(ABC):
    """External document classifier."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def classify(
        self,
        content: bytes,
        mime_type: str,
        declared_type: DocumentType,
    ) -> OracleVerdict:
        """Classify the document. Raises OracleError / OracleTimeoutError."""
        pass


class GeminiOracle(VerificationOracle):
    """
    Google Gemini vision client for document classification.
    """

    # Formats Gemini accepts as inline data
    SUPPORTED_MIME_TYPES = {"application/pdf", "image/jpeg", "image/png"}

    _FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)

    def __init__(
        self,
        api_key: str,
        model: str,
        api_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return f"gemini:{self.model}"

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)

    async def classify(
        self,
        content: bytes,
        mime_type: str,
        declared_type: DocumentType,
    ) -> OracleVerdict:
        if not self.is_available:
            raise OracleError("Gemini API key not configured. Set GEMINI_API_KEY in .env")

        if mime_type not in self.SUPPORTED_MIME_TYPES:
            return OracleVerdict(
                detected_type=UNKNOWN_TYPE,
                confidence=0.0,
                reason=f"Automatic verification does not support {mime_type} files. Upload a PDF, JPG or PNG.",
            )

        payload = {
            "contents": [{
                "parts": [
                    {"text": self._build_prompt(declared_type)},
                    {"inline_data": {
                        "mime_type": mime_type,
                        "data": base64.b64encode(content).decode("ascii"),
                    }},
                ],
            }],
            "generationConfig": {"temperature": 0.0},
        }
        url = f"{self.api_url}/{self.model}:generateContent"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException as e:
            raise OracleTimeoutError(f"Gemini did not respond within {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise OracleError(f"Gemini request failed: {e}") from e

        if response.status_code != 200:
            # Body may echo the request; keep it out of user-facing messages
            logger.error("Gemini API error (status %d): %s", response.status_code, response.text[:500])
            raise OracleError(f"Gemini returned HTTP {response.status_code}")

        return self._parse_response(response)

    def _build_prompt(self, declared_type: DocumentType) -> str:
        types = ", ".join(t.value for t in DocumentType if t is not DocumentType.GENERAL)
        return (
            "You are a document verification AI. Analyze this document and determine "
            f"whether it is a valid {declared_type.value}.\n\n"
            "Look for these indicators:\n"
            "- Transcript: grades, course names, GPA, student name, institution name, academic terms\n"
            "- Certificate: official seals, signatures, certifying authority, date of issuance\n"
            "- Degree: degree title, conferring institution, conferral date\n"
            "- Diploma: diploma title, institution name, graduation date, seals, signatures\n"
            "- ID: photo, ID number, institution logo, expiration date, name\n\n"
            f"Classify it as exactly one of: {types}, Other.\n"
            "Respond ONLY with this JSON (no extra text):\n"
            '{"documentType": "<type>", "confidence": <0.0-1.0>, "reason": "<brief explanation>"}'
        )

    def _parse_response(self, response: httpx.Response) -> OracleVerdict:
        """Extract the verdict; malformed output is a zero-confidence Unknown."""
        try:
            body = response.json()
            text = body["candidates"][0]["content"]["parts"][0]["text"]
            data = json.loads(self._FENCE_RE.sub("", text).strip())
            return OracleVerdict(
                detected_type=normalize_detected_type(data.get("documentType")),
                confidence=float(data.get("confidence", 0.0)),
                reason=str(data.get("reason", "")),
            )
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("Failed to parse Gemini response: %s", e)
            return OracleVerdict(
                detected_type=UNKNOWN_TYPE,
                confidence=0.0,
                reason="The verification response could not be processed.",
            )


def get_oracle() -> VerificationOracle:
    """FastAPI dependency returning the configured oracle."""
    settings = get_settings()
    return GeminiOracle(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        api_url=settings.gemini_api_url,
        timeout=settings.oracle_timeout_seconds,
    )
