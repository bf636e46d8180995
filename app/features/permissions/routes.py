"""
Permission API routes.

Checks against the current session, the effective permission matrix and
the administrator-wide role override settings.
"""
from fastapi import APIRouter, Depends

from app.core.services import Services
from app.features.audit.models import AuditAction
from app.features.permissions import policy
from app.features.permissions.dependencies import require_permission
from app.features.permissions.models import ACTION_DISPLAY_NAMES, ROLE_DISPLAY_NAMES, Action, Module
from app.features.permissions.schemas import (
    ModulePermissions,
    MyPermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    PermissionMatrixResponse,
    RolePolicySettingsResponse,
    RolePolicySettingsUpdate,
)
from app.features.users.dependencies import get_current_gateway, get_services
from app.features.users.gateway import AuthGateway
from app.features.users.models import UserProfile
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    gateway: AuthGateway = Depends(get_current_gateway),
):
    """Check if the current user has a permission (or module access when no action is given)."""
    if policy.coerce_module(check_request.module) is None:
        return PermissionCheckResponse(has_permission=False, reason=f"Unknown module: {check_request.module}")
    if check_request.action is not None and policy.coerce_action(check_request.action) is None:
        return PermissionCheckResponse(has_permission=False, reason=f"Unknown action: {check_request.action}")

    if check_request.action is None:
        allowed = gateway.check_access(check_request.module)
    else:
        allowed = gateway.check_permission(check_request.module, check_request.action)

    return PermissionCheckResponse(
        has_permission=allowed,
        reason=None if allowed else "Permission denied",
    )


@router.get("/me", response_model=MyPermissionsResponse)
async def get_my_permissions(gateway: AuthGateway = Depends(get_current_gateway)):
    """Effective permissions of the current user, per accessible module."""
    return MyPermissionsResponse(
        role=gateway.role,
        role_display_name=policy.role_display_name(gateway.role),
        role_level=policy.role_level(gateway.role),
        modules=[
            ModulePermissions(
                module=module,
                actions=[a for a in Action if a in gateway.module_permissions(module)],
            )
            for module in gateway.accessible_modules()
        ],
    )


# ============================================================================
# Role Policy Settings Routes
# ============================================================================

@router.get("/matrix", response_model=PermissionMatrixResponse)
async def get_permission_matrix(
    services: Services = Depends(get_services),
    user: UserProfile = Depends(require_permission(Module.SETTINGS, Action.READ)),
):
    """Effective matrix for every role with the role-wide overrides applied."""
    settings = await services.role_policies.load()
    return PermissionMatrixResponse(
        matrix=policy.permission_matrix(settings.role_overrides()),
        role_display_names=dict(ROLE_DISPLAY_NAMES),
        action_display_names=dict(ACTION_DISPLAY_NAMES),
    )


@router.get("/settings", response_model=RolePolicySettingsResponse)
async def get_role_settings(
    services: Services = Depends(get_services),
    user: UserProfile = Depends(require_permission(Module.SETTINGS, Action.READ)),
):
    settings = await services.role_policies.load()
    return RolePolicySettingsResponse(
        custom_permissions=settings.custom_permissions,
        last_updated_by=settings.last_updated_by,
        last_updated=settings.last_updated,
    )


@router.put("/settings", response_model=RolePolicySettingsResponse)
async def update_role_settings(
    update: RolePolicySettingsUpdate,
    services: Services = Depends(get_services),
    user: UserProfile = Depends(require_permission(Module.SETTINGS, Action.MANAGE)),
):
    """Replace the role-wide overrides."""
    settings = await services.role_policies.replace(update.custom_permissions, updated_by=user.email)
    services.registry.apply_role_settings(settings)
    services.audit.admin_action(
        AuditAction.UPDATE,
        user.uid,
        user.email,
        user.role or "unknown",
        details={"roles": sorted(role.value for role in update.custom_permissions)},
        module=Module.SETTINGS.value,
    )
    log.info("Role permission settings updated by %s", user.email)
    return RolePolicySettingsResponse(
        custom_permissions=settings.custom_permissions,
        last_updated_by=settings.last_updated_by,
        last_updated=settings.last_updated,
    )
