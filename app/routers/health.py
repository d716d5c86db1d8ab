"""
Health Router
Liveness and readiness probes.

Endpoints:
- /healthz - Basic liveness check (is the process running?)
- /readyz - Readiness check (database reachable, upload dir writable)
"""

import asyncio
import time
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.core.config import Settings, get_settings
from app.core.database import get_db_session


router = APIRouter()

# Track startup time for uptime calculation
_start_time = time.time()


@router.get("/healthz")
async def health_check():
    """
    Liveness probe - is the app process running?
    """
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


def _directory_writable(path: Path) -> bool:
    if not path.is_dir():
        return False
    probe = path / ".write_test"
    try:
        probe.write_text("test")
        probe.unlink()
        return True
    except OSError:
        return False


@router.get("/readyz")
async def readiness_check(settings: Settings = Depends(get_settings)):
    """
    Readiness check - is the app ready to serve traffic?
    Returns 503 when a critical check fails.
    """
    checks = {}
    details = {}
    start = time.perf_counter()

    checks["upload_dir"] = _directory_writable(Path(settings.upload_dir))

    try:
        db_start = time.perf_counter()
        async with get_db_session() as session:
            await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=5.0)
        checks["database"] = True
        details["database_latency_ms"] = round((time.perf_counter() - db_start) * 1000, 2)
    except asyncio.TimeoutError:
        checks["database"] = False
        details["database_error"] = "Connection timeout (5s)"
    except Exception as e:
        checks["database"] = False
        details["database_error"] = str(e)

    # Informational; verification degrades to PENDING without them
    details["oracle_configured"] = bool(settings.gemini_api_key)
    details["challenge_configured"] = bool(settings.recaptcha_secret_key)
    details["attestation_backend"] = settings.attestation_backend
    details["check_duration_ms"] = round((time.perf_counter() - start) * 1000, 2)

    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "degraded",
            "checks": checks,
            "details": details,
            "uptime_seconds": round(time.time() - _start_time, 2),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
