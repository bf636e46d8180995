"""
Audit trail service.

record() never raises and never waits for the write: the entry is handed
to a background task and failures are only logged.
"""
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.audit.models import AuditAction, AuditLog, AuditStatus
from app.utils import get_logger


log = get_logger(__name__)

AUTH_MODULE = "authentication"


@dataclass
class AuditEntry:
    action: AuditAction
    user_id: Optional[str] = None
    user_name: str = "Unknown"
    user_role: str = "Unknown"
    module: str = "system"
    status: AuditStatus = AuditStatus.SUCCESS
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditSink(ABC):
    """Destination for audit entries."""

    @abstractmethod
    async def write(self, entry: AuditEntry) -> None:
        ...


class DatabaseAuditSink(AuditSink):
    """Persists entries to the audit_logs table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def write(self, entry: AuditEntry) -> None:
        async with self.session_factory() as db:
            db.add(AuditLog(
                user_id=entry.user_id,
                user_name=entry.user_name,
                user_role=entry.user_role,
                action=entry.action.value,
                module=entry.module,
                status=entry.status.value,
                details=entry.details or None,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
            ))
            await db.commit()


class AuditTrail:
    """
    Fire-and-forget audit recorder.

    Usage:
        audit = AuditTrail(DatabaseAuditSink(AsyncSessionLocal))
        audit.login(user_id, email, role)
    """

    def __init__(self, sink: AuditSink):
        self.sink = sink
        self._pending: Set[asyncio.Task] = set()

    def record(self, entry: AuditEntry) -> None:
        log.info(
            "Audit: user=%s action=%s module=%s status=%s",
            entry.user_name, entry.action.value, entry.module, entry.status.value,
        )
        try:
            task = asyncio.get_running_loop().create_task(self._write(entry))
        except RuntimeError:
            log.error("No running event loop; dropped audit entry %s", entry.action.value)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entry: AuditEntry) -> None:
        try:
            await self.sink.write(entry)
        except Exception:
            log.exception("Error writing audit entry %s for %s", entry.action.value, entry.user_name)

    async def drain(self) -> None:
        """Wait for every pending write (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Authentication events

    def login(self, user_id: str, email: str, role: str) -> None:
        self.record(AuditEntry(
            action=AuditAction.LOGIN,
            user_id=user_id,
            user_name=email,
            user_role=role,
            module=AUTH_MODULE,
            details={"email": email},
        ))

    def login_failed(self, identifier: str, reason: str) -> None:
        self.record(AuditEntry(
            action=AuditAction.LOGIN_FAILED,
            user_name=identifier,
            module=AUTH_MODULE,
            status=AuditStatus.FAILED,
            details={"email": identifier, "reason": reason},
        ))

    def logout(self, user_id: str, email: str, role: str) -> None:
        self.record(AuditEntry(
            action=AuditAction.LOGOUT,
            user_id=user_id,
            user_name=email,
            user_role=role,
            module=AUTH_MODULE,
            details={"email": email},
        ))

    def session_timeout(self, user_id: str, email: str, role: str) -> None:
        self.record(AuditEntry(
            action=AuditAction.SESSION_TIMEOUT,
            user_id=user_id,
            user_name=email,
            user_role=role,
            module=AUTH_MODULE,
            details={"email": email},
        ))

    # Access control and administration

    def access_denied(
        self,
        user_id: str,
        email: str,
        role: str,
        module: str,
        action: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        self.record(AuditEntry(
            action=AuditAction.ACCESS_DENIED,
            user_id=user_id,
            user_name=email,
            user_role=role,
            module=module,
            status=AuditStatus.FAILED,
            details={"attemptedAction": action},
            ip_address=ip_address,
            user_agent=user_agent,
        ))

    def admin_action(
        self,
        action: AuditAction,
        actor_id: str,
        actor_email: str,
        actor_role: str,
        details: Optional[Dict[str, Any]] = None,
        module: str = "user-management",
    ) -> None:
        self.record(AuditEntry(
            action=action,
            user_id=actor_id,
            user_name=actor_email,
            user_role=actor_role,
            module=module,
            details=details or {},
        ))


async def query_audit_logs(
    db: AsyncSession,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    module: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[List[AuditLog], int]:
    """Most recent audit entries, optionally filtered, plus the total match count."""
    stmt = select(AuditLog)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if module:
        stmt = stmt.where(AuditLog.module == module)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all()), total
