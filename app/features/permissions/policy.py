"""
Permission policy engine.

Pure, synchronous functions over the default matrix and an optional
override map. None of them raise: unknown modules, roles or actions deny
and report a PolicyLookupError on the diagnostics channel.

Override semantics: when the override map names a module, its action set
replaces the matrix entry for that module. The two are never merged.
"""
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Union

from app.features.permissions.models import (
    ACTION_DISPLAY_NAMES,
    POLICY_TABLE,
    ROLE_DISPLAY_NAMES,
    ROLE_HIERARCHY,
    Action,
    Module,
    OverrideMap,
    PolicyLookupError,
    Role,
)
from app.utils import get_logger


log = get_logger(__name__)

RoleLike = Union[Role, str, None]
ModuleLike = Union[Module, str]
ActionLike = Union[Action, str]

DiagnosticListener = Callable[[PolicyLookupError], None]


# ============================================================================
# Diagnostics channel
# ============================================================================

_listeners: List[DiagnosticListener] = []


def subscribe_diagnostics(listener: DiagnosticListener) -> Callable[[], None]:
    """
    Register a listener for lookup errors.

    Returns a callable that removes the listener again.
    """
    _listeners.append(listener)

    def unsubscribe() -> None:
        if listener in _listeners:
            _listeners.remove(listener)

    return unsubscribe


def report(error: PolicyLookupError) -> None:
    """Log a lookup error and hand it to every subscribed listener."""
    log.warning(str(error))
    for listener in list(_listeners):
        try:
            listener(error)
        except Exception:
            log.exception("Diagnostics listener failed")


# ============================================================================
# Boundary coercion
# ============================================================================

def coerce_role(role: RoleLike) -> Optional[Role]:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def coerce_module(module: ModuleLike) -> Optional[Module]:
    if isinstance(module, Module):
        return module
    try:
        return Module(module)
    except ValueError:
        return None


def coerce_action(action: ActionLike) -> Optional[Action]:
    if isinstance(action, Action):
        return action
    try:
        return Action(action)
    except ValueError:
        return None


def _raw(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


# ============================================================================
# Evaluation
# ============================================================================

def _effective_actions(
    role: RoleLike,
    module: ModuleLike,
    overrides: Optional[OverrideMap],
    diagnose: bool,
) -> Optional[frozenset]:
    """
    Resolve the action set for a role on a module.

    Returns None when the lookup cannot be answered (unknown module, or
    unknown role without an override for the module).
    """
    resolved_module = coerce_module(module)
    if resolved_module is None:
        if diagnose:
            report(PolicyLookupError(kind="module", value=_raw(module)))
        return None

    if overrides and resolved_module in overrides and overrides[resolved_module] is not None:
        return frozenset(overrides[resolved_module])

    resolved_role = coerce_role(role)
    if resolved_role is None:
        if diagnose:
            report(PolicyLookupError(kind="role", value=_raw(role), module=resolved_module.value))
        return None

    return POLICY_TABLE[resolved_module].get(resolved_role, frozenset())


def has_permission(
    role: RoleLike,
    module: ModuleLike,
    action: ActionLike,
    overrides: Optional[OverrideMap] = None,
) -> bool:
    """
    Check if a role may perform an action on a module.

    Args:
        role: User role
        module: Module identifier
        action: Action token
        overrides: Per-user override map (replaces matrix entries it names)

    Returns:
        True if the effective action set contains the action
    """
    resolved_action = coerce_action(action)
    if resolved_action is None:
        report(PolicyLookupError(kind="action", value=_raw(action)))
        return False

    actions = _effective_actions(role, module, overrides, diagnose=True)
    if actions is None:
        return False
    return resolved_action in actions


def can_access_module(
    role: RoleLike,
    module: ModuleLike,
    overrides: Optional[OverrideMap] = None,
) -> bool:
    """True iff the effective action set for the module is non-empty."""
    actions = _effective_actions(role, module, overrides, diagnose=True)
    return bool(actions)


def get_accessible_modules(role: RoleLike, overrides: Optional[OverrideMap] = None) -> List[Module]:
    """All modules the role can access, in matrix order."""
    if coerce_role(role) is None and not overrides:
        report(PolicyLookupError(kind="role", value=_raw(role)))
        return []
    return [
        module for module in POLICY_TABLE
        if _effective_actions(role, module, overrides, diagnose=False)
    ]


def get_module_permissions(
    role: RoleLike,
    module: ModuleLike,
    overrides: Optional[OverrideMap] = None,
) -> frozenset:
    """Effective action set for a role on a module (empty when unknown)."""
    return _effective_actions(role, module, overrides, diagnose=False) or frozenset()


def role_level(role: RoleLike) -> int:
    """Hierarchy rank of a role; unknown roles rank 0."""
    resolved = coerce_role(role)
    if resolved is None:
        return 0
    return ROLE_HIERARCHY[resolved]


def is_role_at_least(role: RoleLike, target_role: RoleLike) -> bool:
    """Check if role ranks at or above target_role."""
    return role_level(role) >= role_level(target_role)


def permission_matrix(
    role_overrides: Optional[Mapping[Role, OverrideMap]] = None,
) -> Dict[Role, Dict[Module, List[Action]]]:
    """
    Effective matrix for every role.

    role_overrides carries the administrator-wide per-role overrides; the
    same replace semantics apply per module.
    """
    role_overrides = role_overrides or {}
    matrix: Dict[Role, Dict[Module, List[Action]]] = {}
    for role in Role:
        overrides = role_overrides.get(role)
        matrix[role] = {
            module: sorted(get_module_permissions(role, module, overrides), key=_action_order)
            for module in POLICY_TABLE
        }
    return matrix


def _action_order(action: Action) -> int:
    return list(Action).index(action)


def role_display_name(role: RoleLike) -> str:
    resolved = coerce_role(role)
    if resolved is not None:
        return ROLE_DISPLAY_NAMES[resolved]
    raw = _raw(role) if role is not None else ""
    return raw[:1].upper() + raw[1:]


def action_display_name(action: ActionLike) -> str:
    resolved = coerce_action(action)
    if resolved is not None:
        return ACTION_DISPLAY_NAMES[resolved]
    raw = _raw(action)
    return raw[:1].upper() + raw[1:]
