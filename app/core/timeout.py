"""
Request time limit for the EduChain portal.

The handler runs inside an anyio cancel scope: when the limit is hit the
handler is cancelled, the request's database transaction rolls back and
the client gets a 504. Work the client never saw finish is never
committed. Upload and verify wait on the oracle and the attestation
ledger, so they get a larger budget.
"""

import logging
from typing import Optional

import anyio
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

SLOW_PATH_PREFIXES = ("/api/documents/upload", "/api/documents/verify/")


class TimeoutMiddleware:
    """
    app.add_middleware(TimeoutMiddleware, timeout=30.0, slow_timeout=75.0)
    """

    def __init__(self, app: ASGIApp, timeout: float = 30.0, slow_timeout: Optional[float] = None):
        self.app = app
        self.timeout = timeout
        self.slow_timeout = slow_timeout if slow_timeout is not None else timeout

    def timeout_for(self, path: str) -> float:
        if path.startswith(SLOW_PATH_PREFIXES):
            return self.slow_timeout
        return self.timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = self.timeout_for(scope["path"])
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        with anyio.move_on_after(limit) as cancel_scope:
            await self.app(scope, receive, send_wrapper)

        if not cancel_scope.cancelled_caught:
            return

        logger.warning(
            "Request exceeded %.1fs: %s %s", limit, scope["method"], scope["path"],
            extra={"timeout_seconds": limit},
        )
        if response_started:
            # Headers already went out; nothing sensible left to send
            return

        response = JSONResponse(
            status_code=504,
            content={
                "success": False,
                "error": "gateway_timeout",
                "message": f"Request timed out after {limit:g} seconds",
                "details": None,
                "request_id": scope.get("state", {}).get("request_id"),
            },
            headers={"Retry-After": "30"},
        )
        await response(scope, receive, send)
