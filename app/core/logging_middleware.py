"""
Per-request logging for the EduChain portal.

Assigns each request an id (the caller's X-Request-Id when present), makes
it visible to every log record and error body produced while handling the
request, and writes one summary line with status and duration.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging_config import request_id_var
from app.core.security import get_client_ip

logger = logging.getLogger("educhain.requests")

# Liveness/readiness probes hit every few seconds
QUIET_PATHS = frozenset({"/healthz", "/readyz", "/favicon.ico"})


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        context = {
            "method": request.method,
            "path": request.url.path,
            "client_ip": get_client_ip(request) or "unknown",
        }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s failed after %.1fms",
                request.method, request.url.path, (time.perf_counter() - started) * 1000,
                extra=context,
            )
            raise
        finally:
            request_id_var.reset(token)

        duration_ms = (time.perf_counter() - started) * 1000
        if request.url.path not in QUIET_PATHS:
            logger.log(
                _level_for(response.status_code),
                "%s %s -> %d (%.1fms)",
                request.method, request.url.path, response.status_code, duration_ms,
                extra={**context, "status_code": response.status_code,
                       "duration_ms": round(duration_ms, 2), "request_id": request_id},
            )

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        return response
