"""
Pydantic schemas for permission checks and role policy settings.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from app.features.permissions.models import Action, Module, Role


# ============================================================================
# Permission check
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking if the current user has a permission."""
    module: str = Field(..., description="Module name (e.g., 'sales', 'user-management')")
    action: Optional[str] = Field(None, description="Action; omit to check module access")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool
    reason: Optional[str] = None


class ModulePermissions(BaseModel):
    module: Module
    actions: List[Action]


class MyPermissionsResponse(BaseModel):
    """Effective permissions of the current user."""
    role: Optional[str]
    role_display_name: str
    role_level: int
    modules: List[ModulePermissions] = []


# ============================================================================
# Role policy settings
# ============================================================================

class PermissionMatrixResponse(BaseModel):
    """Effective role -> module -> actions matrix, role-wide overrides applied."""
    matrix: Dict[Role, Dict[Module, List[Action]]]
    role_display_names: Dict[Role, str]
    action_display_names: Dict[Action, str]


class RolePolicySettingsResponse(BaseModel):
    custom_permissions: Dict[Role, Dict[Module, List[Action]]] = {}
    last_updated_by: Optional[str] = None
    last_updated: Optional[datetime] = None


class RolePolicySettingsUpdate(BaseModel):
    """Replaces the whole role-wide override set."""
    custom_permissions: Dict[Role, Dict[Module, List[Action]]] = Field(default_factory=dict)
