"""
EduChain - User Context System
Role, identity and capabilities for each authenticated session.

Design Principles:
- Identity is always re-derived from the server-held session, never from
  anything the client claims about itself
- ADMIN can perform every action
- STUDENT may only read/download/verify documents it owns
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


# =============================================================================
# User Roles
# =============================================================================

class UserRole(str, Enum):
    """Portal roles. Fixed at registration."""
    STUDENT = "STUDENT"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, value: str) -> "UserRole":
        """Case-insensitive lookup; raises ValueError for unknown roles."""
        try:
            return cls(value.strip().upper())
        except (AttributeError, ValueError):
            raise ValueError(f"Unknown role: {value!r}") from None


# =============================================================================
# Actions (capabilities checked against a resource owner)
# =============================================================================

class Action(str, Enum):
    READ = "read"
    DOWNLOAD = "download"
    VERIFY = "verify"
    UPLOAD = "upload"
    DELETE = "delete"
    LIST_ALL = "list_all"
    LIST_STUDENTS = "list_students"


# Actions a student may perform, and only on resources it owns
STUDENT_OWN_ACTIONS = frozenset({Action.READ, Action.DOWNLOAD, Action.VERIFY})


def can(
    actor_role: UserRole,
    actor_id: str,
    action: Action,
    resource_owner_id: Optional[str] = None,
) -> bool:
    """Capability check used by every document operation."""
    if actor_role == UserRole.ADMIN:
        return True
    if actor_role != UserRole.STUDENT:
        return False
    if action not in STUDENT_OWN_ACTIONS:
        return False
    return resource_owner_id is not None and resource_owner_id == actor_id


# =============================================================================
# User Context (carries all session context)
# =============================================================================

@dataclass
class UserContext:
    """
    Identity of the caller for one request.
    This is what gets passed to route handlers and services.
    """
    user_id: str
    username: str
    role: UserRole = UserRole.STUDENT

    # Session tracking
    session_id: Optional[str] = None
    authenticated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def can(self, action: Action, resource_owner_id: Optional[str] = None) -> bool:
        return can(self.role, self.user_id, action, resource_owner_id)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    def to_identity(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.username,
            "role": self.role.value,
        }


# =============================================================================
# Session Storage Structure
# =============================================================================

@dataclass
class StoredSession:
    """
    What we store in the session backend (memory/Redis).
    Contains everything needed to reconstruct UserContext.
    """
    session_id: str
    user_id: str
    username: str
    role: str
    created_at: datetime
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "username": self.username,
            "role": self.role,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoredSession":
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            username=data["username"],
            role=data["role"],
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )

    def to_context(self) -> UserContext:
        return UserContext(
            user_id=self.user_id,
            username=self.username,
            role=UserRole(self.role),
            session_id=self.session_id,
            authenticated_at=self.created_at,
            expires_at=self.expires_at,
        )
