"""
User feature routes.

auth_router: login, logout and session endpoints.
router: the current user's profile and user administration.
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.core.rate_limit import login_limit
from app.core.services import Services
from app.features.audit.models import AuditAction
from app.features.permissions import policy
from app.features.permissions.dependencies import require_permission
from app.features.permissions.models import Action, Module
from app.features.permissions.overrides import dump_override_map
from app.features.users.auth import create_session_token
from app.features.users.dependencies import get_current_gateway, get_current_user, get_services
from app.features.users.exceptions import AuthError
from app.features.users.gateway import AuthGateway, system_email
from app.features.users.models import UserProfile, UserStatus, utc_timestamp
from app.features.users.schemas import (
    ActivityRequest,
    ActivityResponse,
    LoginRequest,
    LoginResponse,
    OverridesUpdate,
    PasswordReset,
    ProfileUpdate,
    RoleUpdate,
    SessionStatusResponse,
    StatusUpdate,
    UserCreate,
    UserResponse,
)
from app.utils import get_logger


log = get_logger(__name__)

auth_router = APIRouter(tags=["auth"])
router = APIRouter(tags=["users"])


def _http_error(e: AuthError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


def _session_response(gateway: AuthGateway):
    session = gateway.session_status()
    return SessionStatusResponse.from_status(session) if session is not None else None


# ============================================================================
# Authentication
# ============================================================================

@auth_router.post("/login", response_model=LoginResponse)
@login_limit
async def login(
    request: Request,
    credentials: LoginRequest,
    services: Services = Depends(get_services),
):
    """Log in with an email address or a 10-digit mobile number."""
    gateway = await services.new_gateway()
    try:
        result = await gateway.login(credentials.identifier, credentials.password)
    except AuthError as e:
        raise _http_error(e)

    sid = services.registry.register(gateway)
    return LoginResponse(
        access_token=create_session_token(sid, result.user.uid),
        user=UserResponse.from_profile(result.user),
        provisioned=result.provisioned,
        accessible_modules=gateway.accessible_modules(),
        session=_session_response(gateway),
    )


@auth_router.post("/logout")
async def logout(gateway: AuthGateway = Depends(get_current_gateway)):
    await gateway.logout()
    return {"message": "Logged out"}


@auth_router.get("/session", response_model=SessionStatusResponse)
async def get_session(gateway: AuthGateway = Depends(get_current_gateway)):
    """Remaining time of the current session; warning_shown is set inside the last five minutes."""
    return _session_response(gateway)


@auth_router.post("/activity", response_model=ActivityResponse)
async def report_activity(
    activity: ActivityRequest,
    gateway: AuthGateway = Depends(get_current_gateway),
):
    """Client-side activity (click, keydown, ...) resets the inactivity window."""
    delivered = gateway.session.activity_bus.emit(activity.event)
    gateway.pending_warning_ms = None
    return ActivityResponse(recorded=delivered > 0, session=_session_response(gateway))


@auth_router.post("/extend", response_model=ActivityResponse)
async def extend_session(gateway: AuthGateway = Depends(get_current_gateway)):
    """Explicit "continue session" from the expiry warning."""
    recorded = gateway.record_activity()
    return ActivityResponse(recorded=recorded, session=_session_response(gateway))


# ============================================================================
# Current user
# ============================================================================

@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(user: UserProfile = Depends(get_current_user)):
    """Get current authenticated user's profile."""
    return UserResponse.from_profile(user)


@router.get("/me/modules", response_model=List[Module])
async def get_my_modules(
    user: UserProfile = Depends(get_current_user),
    gateway: AuthGateway = Depends(get_current_gateway),
):
    """Modules the current user can open, in navigation order."""
    return gateway.accessible_modules()


# ============================================================================
# User administration
# ============================================================================

async def _get_profile_or_404(services: Services, uid: str) -> UserProfile:
    try:
        profile = await services.profiles.get(uid)
    except AuthError as e:
        raise _http_error(e)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return profile


async def _update_profile(services: Services, uid: str, fields: dict) -> UserProfile:
    try:
        profile = await services.profiles.update(uid, fields)
    except AuthError as e:
        raise _http_error(e)
    services.registry.refresh_user(profile)
    return profile


@router.get("/", response_model=List[UserResponse])
async def list_users(
    limit: int = 100,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.READ)),
):
    try:
        profiles = await services.profiles.list_profiles(limit=limit)
    except AuthError as e:
        raise _http_error(e)
    return [UserResponse.from_profile(p) for p in profiles]


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.CREATE)),
):
    """Create an account whose login address is derived from the mobile number."""
    try:
        existing = await services.profiles.find_by_mobile(user_data.mobile_number)
        if existing is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Mobile number already registered",
            )

        email = system_email(user_data.mobile_number, services.system_email_domain)
        uid = await services.identity.create_account(email, user_data.password, user_data.full_name)
        now = utc_timestamp()
        profile = await services.profiles.create(UserProfile(
            uid=uid,
            email=email,
            mobileNumber=user_data.mobile_number,
            fullName=user_data.full_name,
            role=user_data.role.value,
            department=user_data.department,
            status=UserStatus.ACTIVE.value,
            customPermissions=user_data.custom_permissions,
            createdAt=now,
            createdBy=admin.email,
        ))
    except AuthError as e:
        raise _http_error(e)

    services.audit.admin_action(
        AuditAction.CREATE, admin.uid, admin.email, admin.role or "unknown",
        details={"targetUser": uid, "email": email, "role": profile.role},
    )
    log.info("User %s created by %s", email, admin.email)
    return UserResponse.from_profile(profile)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: str,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.READ)),
):
    return UserResponse.from_profile(await _get_profile_or_404(services, user_id))


@router.patch("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    update_data: ProfileUpdate,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.UPDATE)),
):
    await _get_profile_or_404(services, user_id)
    fields = {}
    if update_data.full_name is not None:
        fields["fullName"] = update_data.full_name
    if update_data.department is not None:
        fields["department"] = update_data.department
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nothing to update")

    profile = await _update_profile(services, user_id, fields)
    services.audit.admin_action(
        AuditAction.UPDATE, admin.uid, admin.email, admin.role or "unknown",
        details={"targetUser": user_id, "fields": sorted(fields)},
    )
    return UserResponse.from_profile(profile)


@router.patch("/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: str,
    update: StatusUpdate,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.BLOCK)),
):
    """Block or unblock an account. Blocking ends every live session of the user."""
    if user_id == admin.uid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own status",
        )
    await _get_profile_or_404(services, user_id)

    profile = await _update_profile(services, user_id, {"status": update.status.value})
    if update.status == UserStatus.BLOCKED:
        await services.registry.revoke_user(user_id)
        action = AuditAction.USER_BLOCKED
    else:
        action = AuditAction.USER_UNBLOCKED

    services.audit.admin_action(
        action, admin.uid, admin.email, admin.role or "unknown",
        details={"targetUser": user_id, "email": profile.email},
    )
    return UserResponse.from_profile(profile)


@router.patch("/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: str,
    update: RoleUpdate,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.UPDATE)),
):
    """Change a user's role. Nobody grants a role above their own or changes their own."""
    if user_id == admin.uid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own role",
        )
    if not policy.is_role_at_least(admin.role, update.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot grant a role above your own",
        )
    current = await _get_profile_or_404(services, user_id)

    profile = await _update_profile(services, user_id, {"role": update.role.value})
    services.audit.admin_action(
        AuditAction.ROLE_CHANGED, admin.uid, admin.email, admin.role or "unknown",
        details={"targetUser": user_id, "from": current.role, "to": update.role.value},
    )
    return UserResponse.from_profile(profile)


@router.put("/{user_id}/permissions", response_model=UserResponse)
async def update_user_permissions(
    user_id: str,
    update: OverridesUpdate,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.MANAGE)),
):
    """Replace the per-user override map; each module named replaces the role default."""
    await _get_profile_or_404(services, user_id)
    overrides = (
        {module: frozenset(actions) for module, actions in update.custom_permissions.items()}
        if update.custom_permissions is not None else None
    )

    profile = await _update_profile(services, user_id, {"customPermissions": dump_override_map(overrides)})
    services.audit.admin_action(
        AuditAction.UPDATE, admin.uid, admin.email, admin.role or "unknown",
        details={
            "targetUser": user_id,
            "modules": sorted(m.value for m in overrides) if overrides is not None else None,
        },
    )
    return UserResponse.from_profile(profile)


@router.post("/{user_id}/password")
async def reset_user_password(
    user_id: str,
    reset: PasswordReset,
    services: Services = Depends(get_services),
    admin: UserProfile = Depends(require_permission(Module.USER_MANAGEMENT, Action.RESET_PASSWORD)),
):
    profile = await _get_profile_or_404(services, user_id)
    try:
        await services.identity.update_password(user_id, reset.new_password)
    except AuthError as e:
        raise _http_error(e)

    await _update_profile(services, user_id, {"passwordResetAt": utc_timestamp(), "passwordResetBy": admin.email})
    services.audit.admin_action(
        AuditAction.PASSWORD_RESET, admin.uid, admin.email, admin.role or "unknown",
        details={"targetUser": user_id, "email": profile.email},
    )
    return {"message": "Password reset successfully"}
