"""
Application services.

Everything the routes need at request time, built once at startup and kept
on app.state.services. Tests build a Services with in-memory fakes instead.
"""
from dataclasses import dataclass, field
from typing import Optional

from app.core import config
from app.core.database.engine import AsyncSessionLocal
from app.features.audit.service import AuditTrail, DatabaseAuditSink
from app.features.permissions.overrides import (
    AppwriteRolePolicyStore,
    RolePolicySettings,
    RolePolicyStore,
)
from app.features.sessions.registry import SessionRegistry
from app.features.users.auth import AppwriteClient, AppwriteIdentityProvider, IdentityProvider
from app.features.users.gateway import AuthGateway, SessionFactory, default_session_factory
from app.features.users.store import AppwriteProfileStore, ProfileStore
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class Services:
    identity: IdentityProvider
    profiles: ProfileStore
    role_policies: RolePolicyStore
    audit: AuditTrail
    registry: SessionRegistry = field(default_factory=SessionRegistry)
    session_factory: SessionFactory = default_session_factory
    system_email_domain: str = config.SYSTEM_EMAIL_DOMAIN

    async def load_role_settings(self) -> Optional[RolePolicySettings]:
        """Current role-wide overrides; None when the settings store fails."""
        try:
            return await self.role_policies.load()
        except Exception as e:
            log.error("Error loading role permission settings: %s", e)
            return None

    async def new_gateway(self) -> AuthGateway:
        return AuthGateway(
            identity=self.identity,
            profiles=self.profiles,
            audit=self.audit,
            system_email_domain=self.system_email_domain,
            session_factory=self.session_factory,
            role_settings=await self.load_role_settings(),
        )

    async def shutdown(self) -> None:
        await self.registry.close()
        await self.audit.drain()


def build_services() -> Services:
    """Services backed by Appwrite and the audit database."""
    client = AppwriteClient.get_client()
    databases = AppwriteClient.databases()
    return Services(
        identity=AppwriteIdentityProvider(client),
        profiles=AppwriteProfileStore(databases, config.DATABASE_ID, config.USERS_COLLECTION_ID),
        role_policies=AppwriteRolePolicyStore(databases, config.DATABASE_ID, config.SETTINGS_COLLECTION_ID),
        audit=AuditTrail(DatabaseAuditSink(AsyncSessionLocal)),
    )
