"""
Override store.

Two override mechanisms share the replace-not-merge contract:
- Per-user overrides, kept on the user profile as `customPermissions`
- Administrator-wide per-role overrides, kept in the single
  `settings/permissions` document

Appwrite attributes cannot hold nested maps, so both are stored as JSON
strings and parsed at the boundary.
"""
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from appwrite.exception import AppwriteException
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from app.features.permissions.models import Action, Module, OverrideMap, PolicyLookupError, Role
from app.features.permissions.policy import coerce_action, coerce_module, coerce_role, report
from app.utils import get_logger


log = get_logger(__name__)

SETTINGS_DOCUMENT_ID = "permissions"


# ============================================================================
# Per-user override maps
# ============================================================================

def parse_override_map(raw: Any) -> Optional[OverrideMap]:
    """
    Parse a stored override map.

    Accepts a JSON string or a mapping of module -> list of actions.
    Unknown modules and actions are dropped and reported. An explicitly
    present empty list is kept: it denies the module.

    Returns:
        The override map, or None when nothing is stored
    """
    if raw is None or raw == "":
        return None

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            log.warning("Ignoring malformed override map: %r", raw)
            return None
        if raw is None:
            return None

    if not isinstance(raw, Mapping):
        log.warning("Ignoring override map of type %s", type(raw).__name__)
        return None

    overrides: Dict[Module, frozenset] = {}
    for module_key, actions in raw.items():
        module = coerce_module(module_key)
        if module is None:
            report(PolicyLookupError(kind="module", value=str(module_key)))
            continue
        if actions is None:
            continue

        resolved = set()
        for action_key in actions:
            action = coerce_action(action_key)
            if action is None:
                report(PolicyLookupError(kind="action", value=str(action_key), module=module.value))
                continue
            resolved.add(action)
        overrides[module] = frozenset(resolved)

    return overrides


def override_map_to_dict(overrides: Optional[OverrideMap]) -> Optional[Dict[str, List[str]]]:
    """Plain dict form of an override map, actions in declaration order."""
    if overrides is None:
        return None
    order = list(Action)
    return {
        module.value: [action.value for action in sorted(actions, key=order.index)]
        for module, actions in overrides.items()
    }


def override_map_to_dict_enum(overrides: OverrideMap) -> Dict[Module, List[Action]]:
    order = list(Action)
    return {module: sorted(actions, key=order.index) for module, actions in overrides.items()}


def dump_override_map(overrides: Optional[OverrideMap]) -> Optional[str]:
    """Serialize an override map for storage (None stays None)."""
    as_dict = override_map_to_dict(overrides)
    if as_dict is None:
        return None
    return json.dumps(as_dict)


# ============================================================================
# Administrator-wide role overrides
# ============================================================================

class RolePolicySettings(BaseModel):
    """
    The `settings/permissions` document.

    customPermissions maps role -> module -> actions and replaces the
    matrix per module, exactly like a per-user override.
    """
    custom_permissions: Dict[Role, Dict[Module, List[Action]]] = Field(
        default_factory=dict, alias="customPermissions"
    )
    last_updated_by: Optional[str] = Field(None, alias="lastUpdatedBy")
    last_updated: Optional[datetime] = Field(None, alias="lastUpdated")

    model_config = {"populate_by_name": True}

    def overrides_for(self, role: Any) -> Optional[OverrideMap]:
        resolved = coerce_role(role)
        if resolved is None or resolved not in self.custom_permissions:
            return None
        return {
            module: frozenset(actions)
            for module, actions in self.custom_permissions[resolved].items()
        }

    def role_overrides(self) -> Dict[Role, OverrideMap]:
        return {role: self.overrides_for(role) for role in self.custom_permissions}

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "RolePolicySettings":
        raw = document.get("customPermissions")
        if isinstance(raw, str):
            raw = json.loads(raw) if raw else {}

        custom: Dict[Role, Dict[Module, List[Action]]] = {}
        for role_key, modules in (raw or {}).items():
            role = coerce_role(role_key)
            if role is None:
                report(PolicyLookupError(kind="role", value=str(role_key)))
                continue
            parsed = parse_override_map(modules) or {}
            custom[role] = override_map_to_dict_enum(parsed)

        return cls(
            customPermissions=custom,
            lastUpdatedBy=document.get("lastUpdatedBy"),
            lastUpdated=document.get("lastUpdated"),
        )

    def to_document(self) -> Dict[str, Any]:
        payload = {
            role.value: {
                module.value: [action.value for action in actions]
                for module, actions in modules.items()
            }
            for role, modules in self.custom_permissions.items()
        }
        return {
            "customPermissions": json.dumps(payload),
            "lastUpdatedBy": self.last_updated_by,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }


class RolePolicyStore(ABC):
    """Loads and saves the administrator-wide role overrides."""

    @abstractmethod
    async def load(self) -> RolePolicySettings:
        ...

    @abstractmethod
    async def save(self, settings: RolePolicySettings) -> RolePolicySettings:
        ...

    async def replace(
        self,
        custom_permissions: Mapping[Role, Mapping[Module, List[Action]]],
        updated_by: str,
    ) -> RolePolicySettings:
        """Replace the whole override set, stamping who changed it and when."""
        settings = RolePolicySettings(
            customPermissions={role: dict(modules) for role, modules in custom_permissions.items()},
            lastUpdatedBy=updated_by,
            lastUpdated=datetime.now(timezone.utc),
        )
        return await self.save(settings)


class AppwriteRolePolicyStore(RolePolicyStore):
    """Role overrides kept in an Appwrite settings collection."""

    def __init__(self, databases, database_id: str, collection_id: str):
        self.databases = databases
        self.database_id = database_id
        self.collection_id = collection_id

    async def load(self) -> RolePolicySettings:
        try:
            document = await run_in_threadpool(
                self.databases.get_document,
                self.database_id,
                self.collection_id,
                SETTINGS_DOCUMENT_ID,
            )
        except AppwriteException as e:
            if e.code == 404:
                return RolePolicySettings()
            raise
        return RolePolicySettings.from_document(document)

    async def save(self, settings: RolePolicySettings) -> RolePolicySettings:
        data = settings.to_document()
        try:
            await run_in_threadpool(
                self.databases.update_document,
                self.database_id,
                self.collection_id,
                SETTINGS_DOCUMENT_ID,
                data,
            )
        except AppwriteException as e:
            if e.code != 404:
                raise
            await run_in_threadpool(
                self.databases.create_document,
                self.database_id,
                self.collection_id,
                SETTINGS_DOCUMENT_ID,
                data,
            )
        log.info("Role permission settings saved by %s", settings.last_updated_by)
        return settings
