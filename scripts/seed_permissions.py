"""
Seed script for the role permission settings document.

Creates the `settings/permissions` document (no role-wide overrides) when it
does not exist yet, then logs the effective permission matrix.

Usage:
    uv run python -m scripts.seed_permissions
    uv run python -m scripts.seed_permissions --show
"""
import asyncio
import sys

from app.core import config
from app.features.permissions.models import Role
from app.features.permissions.overrides import AppwriteRolePolicyStore, RolePolicySettings
from app.features.permissions.policy import action_display_name, permission_matrix, role_display_name
from app.features.users.auth import AppwriteClient
from app.utils import get_logger


log = get_logger(__name__)


def describe_matrix(settings: RolePolicySettings) -> list[str]:
    """One line per role and accessible module, e.g. 'HR Manager / employees: Create, View, Edit, Export'."""
    lines = []
    matrix = permission_matrix(settings.role_overrides())
    for role in Role:
        for module, actions in matrix[role].items():
            if not actions:
                continue
            labels = ", ".join(action_display_name(a) for a in actions)
            lines.append(f"{role_display_name(role)} / {module.value}: {labels}")
    return lines


async def main(show_only: bool = False):
    store = AppwriteRolePolicyStore(
        AppwriteClient.databases(), config.DATABASE_ID, config.SETTINGS_COLLECTION_ID
    )
    settings = await store.load()

    if not show_only and settings.last_updated is None and not settings.custom_permissions:
        log.info("Creating role permission settings document...")
        settings = await store.replace({}, updated_by="system")
        log.info("Role permission settings created")

    log.info("Effective permission matrix:")
    for line in describe_matrix(settings):
        log.info("  %s", line)


if __name__ == "__main__":
    asyncio.run(main(show_only="--show" in sys.argv[1:]))
