"""
Audit log model.
"""
from enum import Enum
from typing import Any, Dict
from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.new().str


class AuditAction(str, Enum):
    """Audited actions."""

    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    SESSION_TIMEOUT = "session_timeout"

    # CRUD operations
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"

    # User management
    USER_BLOCKED = "user_blocked"
    USER_UNBLOCKED = "user_unblocked"
    ROLE_CHANGED = "role_changed"
    PASSWORD_RESET = "password_reset"

    # Access control
    ACCESS_DENIED = "access_denied"
    PERMISSION_VIOLATION = "permission_violation"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class AuditLog(Base, TimestampMixin):
    """
    Audit log entry.

    Tracks who did what, on which module, with which outcome.
    user_id is the identity provider's user id (profiles live in the
    document store, so there is no foreign key).
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    user_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown")
    user_role: Mapped[str] = mapped_column(String(50), nullable=False, default="Unknown")

    # What happened
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    module: Mapped[str] = mapped_column(String(50), nullable=False, default="system", index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AuditStatus.SUCCESS.value)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, module={self.module})>"
