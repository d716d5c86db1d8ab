"""
EduChain Document Portal - FastAPI Application
Main application entry point.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from app.core.config import get_settings
from app.core.database import close_db, init_db
from app.core.errors import setup_exception_handlers
from app.core.logging_config import setup_logging
from app.core.logging_middleware import RequestLoggingMiddleware
from app.core.rate_limit import limiter, rate_limit_exceeded_handler
from app.core.sessions import close_session_backend, configure_session_backend
from app.core.shutdown import register_shutdown_handler, run_shutdown_handlers
from app.core.timeout import TimeoutMiddleware
from app.routers import auth, documents, health

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    setup_logging(
        level=settings.log_level,
        json_format=settings.log_json_format,
        log_file=settings.log_file,
    )

    Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
    configure_session_backend(settings.redis_url)
    await init_db()

    register_shutdown_handler(close_db)
    register_shutdown_handler(close_session_backend)

    logger.info("%s %s started", settings.app_name, settings.app_version)
    yield
    await run_shutdown_handlers()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Role-gated academic document portal with automated verification",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Middleware (last added runs first)
    app.add_middleware(
        TimeoutMiddleware,
        timeout=settings.request_timeout_seconds,
        slow_timeout=settings.slow_request_timeout_seconds
        or settings.oracle_timeout_seconds + settings.attestation_timeout_seconds + 30,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    setup_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
    app.include_router(documents.router, prefix="/api/documents", tags=["Documents"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=get_settings().debug)
