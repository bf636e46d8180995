"""
Roles, actions, modules and the default permission matrix.

The matrix is the foundation for every access decision:
- Every module in POLICY_TABLE has an entry for every role
  (an empty set means "no access")
- A module missing from the table is inaccessible to every role
- Role ranks are used for hierarchy comparisons only, never for lookups
"""
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


# ============================================================================
# Enumerations
# ============================================================================

class Role(str, Enum):
    """User roles, highest privilege first."""
    ADMIN = "admin"
    MANAGER = "manager"
    HR = "hr"
    EMPLOYEE = "employee"
    INTERN = "intern"


class Action(str, Enum):
    """Capability tokens. The engine only tests set membership."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    MANAGE = "manage"
    BLOCK = "block"
    RESET_PASSWORD = "reset_password"


class Module(str, Enum):
    """Protected subsystems known at build time."""
    DASHBOARD = "dashboard"
    PROJECTS = "projects"
    SALES = "sales"
    TELECALLING = "telecalling"
    EMPLOYEES = "employees"
    EXPENSES = "expenses"
    PERFORMANCE = "performance"
    CONTRACTORS = "contractors"
    SKILL_MATRIX = "skillMatrix"
    INVENTORY = "inventory"
    INTERNSHIP = "internship"
    CERTIFICATES = "certificates"
    ID_CARDS = "id-cards"
    DOCUMENTS = "documents"
    REPORTS = "reports"
    TASKS = "tasks"
    PROGRESS = "progress"
    SETTINGS = "settings"
    USER_MANAGEMENT = "user-management"
    AUDIT = "audit"
    FINANCE = "finance"


ROLE_HIERARCHY: Mapping[Role, int] = MappingProxyType({
    Role.ADMIN: 5,
    Role.MANAGER: 4,
    Role.HR: 3,
    Role.EMPLOYEE: 2,
    Role.INTERN: 1,
})


# Per-user or per-role replacement of the default action set of a module
OverrideMap = Mapping[Module, frozenset]


# ============================================================================
# Default permission matrix
# ============================================================================

C, R, U, D, E = Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE, Action.EXPORT
FULL = (C, R, U, D, E)


def _row(admin=(), manager=(), hr=(), employee=(), intern=()) -> Mapping[Role, frozenset]:
    return MappingProxyType({
        Role.ADMIN: frozenset(admin),
        Role.MANAGER: frozenset(manager),
        Role.HR: frozenset(hr),
        Role.EMPLOYEE: frozenset(employee),
        Role.INTERN: frozenset(intern),
    })


POLICY_TABLE: Mapping[Module, Mapping[Role, frozenset]] = MappingProxyType({
    Module.DASHBOARD: _row(admin=(R,), manager=(R,), hr=(R,), employee=(R,), intern=(R,)),
    Module.PROJECTS: _row(admin=FULL, manager=(C, R, U, E), hr=(R,), employee=(R,), intern=(R,)),
    Module.SALES: _row(admin=FULL, manager=(C, R, U, E), hr=(R,), employee=(C, R), intern=(R,)),
    Module.TELECALLING: _row(admin=FULL, manager=FULL, hr=(R,), employee=(C, R, U, D), intern=(R,)),
    Module.EMPLOYEES: _row(admin=FULL, manager=(R, E), hr=(C, R, U, E)),
    Module.EXPENSES: _row(admin=FULL, manager=(C, R, U, E), hr=(R,), employee=(C, R)),
    Module.PERFORMANCE: _row(admin=FULL, manager=(R, E), hr=(C, R, U, E), employee=(R,)),
    Module.CONTRACTORS: _row(admin=FULL, manager=(R, E), hr=(C, R, U, E)),
    Module.SKILL_MATRIX: _row(admin=FULL, manager=(R, E), hr=(C, R, U, E), employee=(R,)),
    Module.INVENTORY: _row(admin=FULL, manager=(C, R, U, E), hr=(R,), employee=(R,)),
    Module.INTERNSHIP: _row(admin=FULL, manager=(C, R, U, E), hr=(C, R, U, E), intern=(R,)),
    Module.CERTIFICATES: _row(admin=FULL, manager=(C, R, E), hr=(C, R, U, E), intern=(R,)),
    Module.ID_CARDS: _row(admin=FULL, manager=(C, R, E), hr=(C, R, U, E), employee=(R,), intern=(R,)),
    Module.DOCUMENTS: _row(admin=(C, R, U, D), manager=(C, R, U), hr=(C, R, U), employee=(R,), intern=(R,)),
    Module.REPORTS: _row(admin=(R, E), manager=(R, E), hr=(R, E)),
    # employees and interns update their assigned tasks / own progress
    Module.TASKS: _row(admin=(C, R, U, D), manager=(C, R, U, D), hr=(R,), employee=(R, U), intern=(R, U)),
    Module.PROGRESS: _row(admin=(R, U), manager=(R, U), hr=(R,), employee=(R, U), intern=(R, U)),
    Module.SETTINGS: _row(admin=(R, U, Action.MANAGE), manager=(R,), hr=(R,)),
    Module.USER_MANAGEMENT: _row(
        admin=(C, R, U, D, Action.MANAGE, Action.BLOCK, Action.RESET_PASSWORD),
    ),
    Module.AUDIT: _row(admin=(R, E), hr=(R,)),
    Module.FINANCE: _row(admin=FULL, manager=(R, E), hr=(R,)),
})


# ============================================================================
# Display names
# ============================================================================

ROLE_DISPLAY_NAMES: Mapping[Role, str] = MappingProxyType({
    Role.ADMIN: "Administrator",
    Role.MANAGER: "Manager",
    Role.HR: "HR Manager",
    Role.EMPLOYEE: "Employee",
    Role.INTERN: "Intern",
})

ACTION_DISPLAY_NAMES: Mapping[Action, str] = MappingProxyType({
    Action.CREATE: "Create",
    Action.READ: "View",
    Action.UPDATE: "Edit",
    Action.DELETE: "Delete",
    Action.EXPORT: "Export",
    Action.MANAGE: "Manage",
    Action.BLOCK: "Block/Unblock",
    Action.RESET_PASSWORD: "Reset Password",
})


# ============================================================================
# Diagnostics
# ============================================================================

@dataclass(frozen=True)
class PolicyLookupError:
    """
    A lookup against an unknown module, role or action.

    Delivered through the diagnostics channel; the engine itself still
    answers "deny".
    """
    kind: str
    value: str
    module: Optional[str] = None

    def __str__(self) -> str:
        if self.module is not None:
            return f"{self.kind.capitalize()} '{self.value}' not found for module '{self.module}'"
        return f"{self.kind.capitalize()} '{self.value}' not found in permissions"
