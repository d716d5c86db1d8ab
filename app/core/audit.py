"""
Audit trail for the EduChain portal.

Security-relevant events (logins, registrations, uploads, verifications,
downloads, deletions and refused access) are appended as JSON lines to one
file per UTC day under AUDIT_LOG_DIR and mirrored to the ``educhain.audit``
logger. Writing the trail never fails the request that produced it.

    await audit_document(AuditAction.DOCUMENT_DOWNLOAD, user.user_id, document.id,
                         filename=document.filename)
"""

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from app.core.config import get_settings
from app.core.logging_config import request_id_var

logger = logging.getLogger("educhain.audit")


class AuditAction(str, Enum):
    LOGIN_SUCCESS = "auth.login.success"
    LOGIN_FAILURE = "auth.login.failure"
    LOGOUT = "auth.logout"
    USER_REGISTER = "user.register"

    DOCUMENT_UPLOAD = "document.upload"
    DOCUMENT_VERIFY = "document.verify"
    DOCUMENT_DOWNLOAD = "document.download"
    DOCUMENT_DELETE = "document.delete"

    UNAUTHORIZED_ACCESS = "security.unauthorized"


@dataclass
class AuditEntry:
    action: AuditAction
    user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = field(default_factory=request_id_var.get)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


class AuditLogger:
    """Append-only JSON-lines writer, one file per day."""

    def __init__(self, log_dir: str | Path):
        self.log_dir = Path(log_dir)

    def file_for(self, when: datetime) -> Path:
        return self.log_dir / f"audit_{when:%Y-%m-%d}.jsonl"

    async def log(self, entry: AuditEntry) -> None:
        line = json.dumps(entry.to_dict(), default=str)
        try:
            await asyncio.to_thread(self._append, self.file_for(entry.timestamp), line)
        except OSError as e:
            logger.error("Audit write failed for %s: %s", entry.action.value, e)

        logger.log(
            logging.INFO if entry.success else logging.WARNING,
            "%s user=%s %s=%s success=%s",
            entry.action.value,
            entry.user_id or "anonymous",
            entry.resource_type or "resource",
            entry.resource_id or "-",
            entry.success,
        )

    def _append(self, path: Path, line: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read_entries(self, action: Optional[AuditAction] = None, limit: int = 100) -> list[dict[str, Any]]:
        """Newest first, optionally only one action."""
        results: list[dict[str, Any]] = []
        for path in sorted(self.log_dir.glob("audit_*.jsonl"), reverse=True):
            for line in reversed(path.read_text(encoding="utf-8").splitlines()):
                if not line.strip():
                    continue
                entry = json.loads(line)
                if action is not None and entry.get("action") != action.value:
                    continue
                results.append(entry)
                if len(results) >= limit:
                    return results
        return results


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger(get_settings().audit_log_dir)
    return _audit_logger


async def audit_log(action: AuditAction, **fields: Any) -> None:
    """Record one event; fields are AuditEntry attributes."""
    if fields.get("details") is None:
        fields.pop("details", None)
    await get_audit_logger().log(AuditEntry(action=action, **fields))


async def audit_login(
    user_id: Optional[str],
    success: bool,
    ip_address: Optional[str] = None,
    error: Optional[str] = None,
    username: Optional[str] = None,
) -> None:
    await audit_log(
        AuditAction.LOGIN_SUCCESS if success else AuditAction.LOGIN_FAILURE,
        user_id=user_id,
        ip_address=ip_address,
        details={"username": username} if username else None,
        success=success,
        error_message=error,
    )


async def audit_document(
    action: AuditAction,
    user_id: str,
    document_id: Optional[str],
    success: bool = True,
    **details: Any,
) -> None:
    """Event on one document; extra keyword arguments land in details."""
    await audit_log(
        action,
        user_id=user_id,
        resource_type="document",
        resource_id=document_id,
        details=details,
        success=success,
    )
