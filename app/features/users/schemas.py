"""
Pydantic schemas for authentication and user administration.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.features.permissions.models import Action, Module, Role
from app.features.permissions.overrides import override_map_to_dict
from app.features.permissions.policy import role_display_name
from app.features.sessions.activity import ActivityEvent
from app.features.sessions.controller import SessionStatus
from app.features.users.models import UserProfile, UserStatus


# ============================================================================
# Authentication
# ============================================================================

class LoginRequest(BaseModel):
    """Email address or 10-digit mobile number plus password."""
    identifier: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    """Profile as returned to the client."""
    uid: str
    email: str
    mobile_number: str = ""
    full_name: str = ""
    role: Optional[str] = None
    role_display_name: str = ""
    department: str = ""
    status: str
    custom_permissions: Optional[Dict[str, List[str]]] = None
    created_at: Optional[str] = None
    last_login: Optional[str] = None
    created_by: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserResponse":
        return cls(
            uid=profile.uid,
            email=profile.email,
            mobile_number=profile.mobile_number,
            full_name=profile.full_name,
            role=profile.role,
            role_display_name=role_display_name(profile.role),
            department=profile.department,
            status=profile.status,
            custom_permissions=override_map_to_dict(profile.custom_permissions),
            created_at=profile.created_at,
            last_login=profile.last_login,
            created_by=profile.created_by,
        )


class SessionStatusResponse(BaseModel):
    state: str
    remaining_ms: int
    remaining: str
    warning_shown: bool
    timeout_minutes: float
    last_activity_at: Optional[int] = None

    @classmethod
    def from_status(cls, session: SessionStatus) -> "SessionStatusResponse":
        return cls(
            state=session.state.value,
            remaining_ms=session.remaining_ms,
            remaining=session.remaining_display,
            warning_shown=session.warning_shown,
            timeout_minutes=session.timeout_minutes,
            last_activity_at=session.last_activity_at,
        )


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
    provisioned: bool = False
    accessible_modules: List[Module] = []
    session: Optional[SessionStatusResponse] = None


class ActivityResponse(BaseModel):
    recorded: bool
    session: Optional[SessionStatusResponse] = None


# ============================================================================
# User administration
# ============================================================================

class UserCreate(BaseModel):
    """New user identified by mobile number; the login address is derived from it."""
    mobile_number: str = Field(..., pattern=r"^[0-9]{10}$")
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1, max_length=255)
    role: Role = Role.EMPLOYEE
    department: str = Field("", max_length=255)
    custom_permissions: Optional[Dict[Module, List[Action]]] = None


class StatusUpdate(BaseModel):
    status: UserStatus


class RoleUpdate(BaseModel):
    role: Role


class OverridesUpdate(BaseModel):
    """Per-user overrides; null clears them."""
    custom_permissions: Optional[Dict[Module, List[Action]]] = None


class PasswordReset(BaseModel):
    new_password: str = Field(..., min_length=6)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1, max_length=255)
    department: Optional[str] = Field(None, max_length=255)


class ActivityRequest(BaseModel):
    event: ActivityEvent = ActivityEvent.CLICK
