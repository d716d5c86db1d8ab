"""
Human-verification challenge (Google reCAPTCHA).

The browser widget hands the client a token; the server validates it against
the provider before any credential is looked at. The check fails closed:
no secret, a network error or a malformed reply all count as "not human".
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class ChallengeVerifier(ABC):
    """Validates challenge tokens with the challenge provider."""

    @abstractmethod
    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> bool:
        pass


class RecaptchaVerifier(ChallengeVerifier):
    """Google reCAPTCHA siteverify client."""

    def __init__(
        self,
        secret_key: str,
        verify_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key
        self.verify_url = verify_url
        self.timeout = timeout
        self._transport = transport

    @property
    def is_available(self) -> bool:
        return bool(self.secret_key)

    async def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> bool:
        if not token or not token.strip():
            return False

        if not self.is_available:
            logger.error("reCAPTCHA secret key not configured. Set RECAPTCHA_SECRET_KEY in .env")
            return False

        form = {"secret": self.secret_key, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.verify_url, data=form)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            logger.warning("reCAPTCHA verification request failed: %s", e)
            return False
        except ValueError:
            logger.warning("reCAPTCHA returned a non-JSON response")
            return False

        if not payload.get("success", False):
            logger.info("reCAPTCHA rejected token: %s", payload.get("error-codes", []))
            return False
        return True


def get_challenge_verifier() -> ChallengeVerifier:
    """FastAPI dependency returning the configured verifier."""
    settings = get_settings()
    return RecaptchaVerifier(
        secret_key=settings.recaptcha_secret_key,
        verify_url=settings.recaptcha_verify_url,
        timeout=settings.recaptcha_timeout_seconds,
    )
