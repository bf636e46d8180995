"""
Route guard and FastAPI dependencies for route protection.

evaluate_route() is the guard decision consumed by clients:
- not authenticated, or account not active -> REDIRECT_LOGIN
- authenticated and active, but the role or module check fails -> REDIRECT_UNAUTHORIZED
- otherwise -> RENDER

The require_* dependencies apply the same decision to API routes, answering
401 for REDIRECT_LOGIN and 403 for REDIRECT_UNAUTHORIZED. Denials are
recorded on the audit trail.
"""
from enum import Enum
from typing import Iterable, Optional

from fastapi import Depends, HTTPException, Request, status

from app.features.permissions import policy
from app.features.permissions.models import Action, Module, OverrideMap, Role
from app.features.users.dependencies import get_optional_gateway, get_services
from app.features.users.gateway import AuthGateway
from app.features.users.models import UserProfile
from app.core.services import Services
from app.utils import get_logger


log = get_logger(__name__)


class RouteDecision(str, Enum):
    RENDER = "render"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_UNAUTHORIZED = "redirect_unauthorized"


def evaluate_route(
    authenticated: bool,
    account_active: bool,
    role: policy.RoleLike,
    required_module: Optional[policy.ModuleLike] = None,
    required_roles: Optional[Iterable[policy.RoleLike]] = None,
    overrides: Optional[OverrideMap] = None,
    required_action: Optional[policy.ActionLike] = None,
) -> RouteDecision:
    """
    Decide whether a protected page or endpoint may be served.

    Args:
        authenticated: A session exists
        account_active: The profile status is active
        role: Current role (unknown roles fail every role and module check)
        required_module: Module that must be accessible
        required_roles: Roles allowed through; empty or None means any role
        overrides: The user's override map
        required_action: With required_module, the action that must be permitted
    """
    if not authenticated or not account_active:
        return RouteDecision.REDIRECT_LOGIN

    if required_roles:
        allowed = {policy.coerce_role(r) for r in required_roles} - {None}
        if policy.coerce_role(role) not in allowed:
            return RouteDecision.REDIRECT_UNAUTHORIZED

    if required_module is not None:
        if required_action is not None:
            granted = policy.has_permission(role, required_module, required_action, overrides)
        else:
            granted = policy.can_access_module(role, required_module, overrides)
        if not granted:
            return RouteDecision.REDIRECT_UNAUTHORIZED

    return RouteDecision.RENDER


def _guard(
    module: Optional[Module] = None,
    action: Optional[Action] = None,
    roles: Optional[Iterable[Role]] = None,
):
    roles = tuple(roles) if roles else None

    async def guard_dependency(
        request: Request,
        gateway: Optional[AuthGateway] = Depends(get_optional_gateway),
        services: Services = Depends(get_services),
    ) -> UserProfile:
        authenticated = gateway is not None and gateway.is_authenticated()
        decision = evaluate_route(
            authenticated=authenticated,
            account_active=authenticated and gateway.is_active(),
            role=gateway.role if authenticated else None,
            required_module=module,
            required_roles=roles,
            overrides=gateway.overrides if authenticated else None,
            required_action=action,
        )

        if decision == RouteDecision.REDIRECT_LOGIN:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session expired or not authenticated",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if decision == RouteDecision.REDIRECT_UNAUTHORIZED:
            user = gateway.user
            target = module.value if module is not None else "roles"
            log.info("Access denied: %s (%s) on %s:%s", user.email, user.role, target, action.value if action else "*")
            services.audit.access_denied(
                user.uid,
                user.email,
                user.role or "unknown",
                target,
                action.value if action else None,
                ip_address=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
            )
            if action is not None:
                detail = f"Permission denied: {action.value} on {target}"
            else:
                detail = f"Access denied: {target}"
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

        return gateway.user

    return guard_dependency


def require_module(module: Module):
    """
    Require access to a module (any action).

    Usage:
        @router.get("/logs")
        async def list_logs(user: UserProfile = Depends(require_module(Module.AUDIT))):
            ...
    """
    return _guard(module=module)


def require_permission(module: Module, action: Action):
    """
    Require a specific action on a module.

    Usage:
        @router.post("/")
        async def create_user(user: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.CREATE))):
            ...
    """
    return _guard(module=module, action=action)


def require_roles(*roles: Role):
    """Require one of the given roles."""
    return _guard(roles=roles)
