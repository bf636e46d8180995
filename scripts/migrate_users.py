"""
Bring stored user profiles up to the current schema.

Fills in status (active), role (employee), department, createdAt and
createdBy on profiles written before those fields existed. Profiles that
already carry status and createdAt are left untouched.

Usage:
    uv run python -m scripts.migrate_users
    uv run python -m scripts.migrate_users --check
"""
import sys
from typing import Any, Dict, Mapping

from appwrite.exception import AppwriteException
from appwrite.query import Query

from app.core import config
from app.features.users.auth import AppwriteClient
from app.features.users.models import utc_timestamp
from app.utils import get_logger


log = get_logger(__name__)

PAGE_SIZE = 100


def needs_migration(document: Mapping[str, Any]) -> bool:
    return not (document.get("status") and document.get("createdAt"))


def migration_fields(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Fields to write so the profile matches the current schema."""
    now = utc_timestamp()
    return {
        "status": document.get("status") or "active",
        "role": document.get("role") or "employee",
        "department": document.get("department") or "General",
        "createdAt": document.get("createdAt") or now,
        "createdBy": document.get("createdBy") or "migration",
        "mobileNumber": document.get("mobileNumber") or "",
        "fullName": document.get("fullName") or document.get("email", ""),
    }


def iter_documents(databases):
    offset = 0
    while True:
        result = databases.list_documents(
            config.DATABASE_ID,
            config.USERS_COLLECTION_ID,
            [Query.limit(PAGE_SIZE), Query.offset(offset)],
        )
        documents = result.get("documents", [])
        yield from documents
        if len(documents) < PAGE_SIZE:
            break
        offset += PAGE_SIZE


def main(check_only: bool = False):
    databases = AppwriteClient.databases()
    total = migrated = failed = 0

    for document in iter_documents(databases):
        total += 1
        if not needs_migration(document):
            continue
        if check_only:
            migrated += 1
            continue
        try:
            fields = migration_fields(document)
            databases.update_document(config.DATABASE_ID, config.USERS_COLLECTION_ID, document["$id"], fields)
            migrated += 1
            log.info("Migrated %s - role: %s, status: %s", document.get("email", document["$id"]), fields["role"], fields["status"])
        except AppwriteException as e:
            failed += 1
            log.error("Error migrating %s: %s", document["$id"], e.message)

    if check_only:
        log.info("%d of %d profiles need migration", migrated, total)
    else:
        log.info("Migration complete: %d migrated, %d failed, %d total", migrated, failed, total)


if __name__ == "__main__":
    main(check_only="--check" in sys.argv[1:])
