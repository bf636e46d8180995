"""
User profile record kept in the document store.

Field names follow the stored document (camelCase aliases); Python code
uses the snake_case attributes.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from app.features.permissions.models import Action, Module, Role
from app.features.permissions.overrides import dump_override_map, parse_override_map


class UserStatus(str, Enum):
    ACTIVE = "active"
    BLOCKED = "blocked"


class UserProfile(BaseModel):
    """
    Profile of an authenticated identity.

    Created on first successful login when no profile exists, mutated by
    administrative actions, never deleted here.
    """
    uid: str
    email: str
    mobile_number: str = Field("", alias="mobileNumber")
    full_name: str = Field("", alias="fullName")
    # Kept as the raw stored string; unknown roles are denied by the engine
    role: Optional[str] = None
    department: str = ""
    status: str = UserStatus.ACTIVE.value
    custom_permissions: Optional[Dict[Module, FrozenSet[Action]]] = Field(None, alias="customPermissions")
    created_at: Optional[str] = Field(None, alias="createdAt")
    last_login: Optional[str] = Field(None, alias="lastLogin")
    created_by: str = Field("system", alias="createdBy")

    model_config = {"populate_by_name": True}

    @field_validator("custom_permissions", mode="before")
    @classmethod
    def parse_overrides(cls, v: Any):
        """Accept the stored JSON string or a plain mapping."""
        if isinstance(v, Mapping) and all(isinstance(k, Module) for k in v):
            return {module: frozenset(actions) for module, actions in v.items()}
        return parse_override_map(v)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @property
    def is_blocked(self) -> bool:
        return self.status == UserStatus.BLOCKED.value

    @property
    def role_enum(self) -> Optional[Role]:
        try:
            return Role(self.role)
        except ValueError:
            return None

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "UserProfile":
        data = dict(document)
        data.setdefault("uid", data.get("$id"))
        return cls.model_validate(data)

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude={"custom_permissions"})
        data["customPermissions"] = dump_override_map(self.custom_permissions)
        return data


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()
