"""
Shutdown hooks for the EduChain portal.

Services that hold connections (database engine, Redis session store)
register an async close function; the application lifespan runs them in
reverse registration order when the server stops.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

ShutdownHandler = Callable[[], Coroutine[Any, Any, None]]

_shutdown_handlers: list[ShutdownHandler] = []


def register_shutdown_handler(handler: ShutdownHandler) -> None:
    """Register an async function to be called during shutdown (once)."""
    if handler not in _shutdown_handlers:
        _shutdown_handlers.append(handler)
        logger.debug("Registered shutdown handler: %s", handler.__name__)


async def run_shutdown_handlers(timeout: float = 30.0) -> None:
    """
    Execute all registered handlers, newest first.
    A failing or hanging handler is logged and the rest still run.
    """
    if not _shutdown_handlers:
        return

    logger.info("Running %d shutdown handlers...", len(_shutdown_handlers))
    per_handler = timeout / len(_shutdown_handlers)

    for handler in reversed(_shutdown_handlers):
        try:
            await asyncio.wait_for(handler(), timeout=per_handler)
        except asyncio.TimeoutError:
            logger.error("Shutdown handler timed out: %s", handler.__name__)
        except Exception as e:
            logger.error("Shutdown handler failed: %s - %s", handler.__name__, e)

    _shutdown_handlers.clear()
    logger.info("All shutdown handlers completed")
