"""
Audit log API routes.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.audit.models import AuditAction
from app.features.audit.schemas import AuditLogListResponse, AuditLogResponse
from app.features.audit.service import query_audit_logs
from app.features.permissions.dependencies import require_permission
from app.features.permissions.models import Action, Module
from app.features.users.models import UserProfile


router = APIRouter()


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    user_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    module: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user: UserProfile = Depends(require_permission(Module.AUDIT, Action.READ)),
):
    """List audit logs, newest first, with optional filtering."""
    logs, total = await query_audit_logs(
        db,
        user_id=user_id,
        action=action.value if action else None,
        module=module,
        skip=skip,
        limit=limit,
    )

    pages = (total + limit - 1) // limit
    page = (skip // limit) + 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages,
    )
