"""
Session store for the EduChain portal.

Browsers and API clients only ever hold an opaque token. What the token
stands for (user id, username, role, expiry) is kept here as a plain dict
and looked up again on every request, so a logout or expiry takes effect
immediately.

Two backends:
- MemorySessionBackend: single process, used in development and tests
- RedisSessionBackend: shared between workers, selected by REDIS_URL
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class SessionBackend(ABC):
    """Key/value store for session payloads with per-key expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[dict]:
        """Payload for key, or None when unknown or expired."""

    @abstractmethod
    async def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        """Store value under key for ttl_seconds."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Drop key. Returns whether anything was removed."""

    async def close(self) -> None:
        pass


class MemorySessionBackend(SessionBackend):
    """Process-local sessions; lost on restart and invisible to other workers."""

    def __init__(self):
        # key -> (monotonic deadline, payload)
        self._entries: dict[str, tuple[float, dict]] = {}

    async def get(self, key: str) -> Optional[dict]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        deadline, payload = entry
        if time.monotonic() >= deadline:
            del self._entries[key]
            return None
        return payload

    async def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        self._purge()
        self._entries[key] = (time.monotonic() + ttl_seconds, value)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def _purge(self) -> None:
        now = time.monotonic()
        for key in [k for k, (deadline, _) in self._entries.items() if now >= deadline]:
            del self._entries[key]


class RedisSessionBackend(SessionBackend):
    """
    Sessions in Redis under ``educhain:session:<token>`` with a native TTL.

    A failed read counts as "no session" (the caller is treated as logged
    out); a failed write propagates so a login never hands out a token that
    was not stored.
    """

    def __init__(self, redis_url: str, prefix: str = "educhain:session:"):
        self.redis_url = redis_url
        self.prefix = prefix
        self._client = None

    async def _get_client(self):
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        return self._client

    async def get(self, key: str) -> Optional[dict]:
        try:
            client = await self._get_client()
            raw = await client.get(self.prefix + key)
        except Exception as e:
            logger.error("Session lookup failed: %s", e)
            return None
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: dict, ttl_seconds: int) -> None:
        client = await self._get_client()
        await client.set(self.prefix + key, json.dumps(value), ex=ttl_seconds)

    async def delete(self, key: str) -> bool:
        client = await self._get_client()
        return await client.delete(self.prefix + key) > 0

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# =============================================================================
# Module-level backend
# =============================================================================

_session_backend: Optional[SessionBackend] = None


def get_session_backend() -> SessionBackend:
    global _session_backend
    if _session_backend is None:
        configure_session_backend(None)
    return _session_backend


def configure_session_backend(redis_url: Optional[str] = None) -> SessionBackend:
    """Select the backend at startup. Without a Redis URL sessions stay in memory."""
    global _session_backend
    if redis_url:
        _session_backend = RedisSessionBackend(redis_url)
        # Strip credentials before logging
        logger.info("Session backend: redis (%s)", redis_url.rsplit("@", 1)[-1])
    else:
        _session_backend = MemorySessionBackend()
        logger.info("Session backend: memory")
    return _session_backend


async def close_session_backend() -> None:
    global _session_backend
    if _session_backend is not None:
        await _session_backend.close()
    _session_backend = None
