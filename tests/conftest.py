"""
Test configuration and fixtures.

In-memory fakes stand in for Appwrite (identity provider, profile store,
settings store) and for the audit database. A manual clock and scheduler
drive the session lifecycle in virtual time.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_TOKEN_SECRET", "test-secret-key-with-at-least-32-bytes!")

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from app.features.audit.service import AuditEntry, AuditSink, AuditTrail
from app.features.permissions.overrides import RolePolicySettings, RolePolicyStore
from app.features.sessions.controller import SessionLifecycleController
from app.features.sessions.scheduler import ScheduledTask, Scheduler
from app.features.users.auth import Credential, IdentityProvider
from app.features.users.exceptions import InvalidCredential, ProfileStoreUnavailable
from app.features.users.gateway import AuthGateway
from app.features.users.models import UserProfile
from app.features.users.store import ProfileStore


SYSTEM_DOMAIN = "sandhya.management"
START_MS = 1_700_000_000_000


# ==================== Virtual time ====================


class ManualClock:
    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, milliseconds: int) -> None:
        self.now += milliseconds


class ManualTask(ScheduledTask):
    def __init__(self, interval_ms: int, callback, first_due: int):
        self.interval_ms = interval_ms
        self.callback = callback
        self.next_due = first_due
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Runs periodic callbacks only when virtual time is advanced."""

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.tasks: List[ManualTask] = []

    def every(self, interval_seconds, callback) -> ManualTask:
        interval_ms = int(interval_seconds * 1000)
        task = ManualTask(interval_ms, callback, self.clock() + interval_ms)
        self.tasks.append(task)
        return task

    def active(self) -> List[ManualTask]:
        return [t for t in self.tasks if not t.cancelled]

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every tick that falls due on the way."""
        target = self.clock() + int(seconds * 1000)
        while True:
            due = [t for t in self.active() if t.next_due <= target]
            if not due:
                break
            task = min(due, key=lambda t: t.next_due)
            self.clock.now = task.next_due
            task.next_due += task.interval_ms
            await task.callback()
        self.clock.now = target


# ==================== Fake collaborators ====================


class FakeIdentityProvider(IdentityProvider):
    def __init__(self):
        self.accounts: Dict[str, Dict[str, str]] = {}
        self.calls: List[str] = []
        self.signed_out: List[Credential] = []
        self._sessions = 0

    def add_account(self, uid: str, email: str, password: str) -> None:
        self.accounts[email] = {"uid": uid, "password": password}

    async def sign_in(self, email: str, password: str) -> Credential:
        self.calls.append("sign_in")
        account = self.accounts.get(email)
        if account is None or account["password"] != password:
            raise InvalidCredential()
        self._sessions += 1
        return Credential(user_id=account["uid"], session_id=f"session-{self._sessions}", email=email)

    async def sign_out(self, credential: Credential) -> None:
        self.calls.append("sign_out")
        self.signed_out.append(credential)

    async def create_account(self, email: str, password: str, name: str) -> str:
        self.calls.append("create_account")
        uid = f"uid-{len(self.accounts) + 1}"
        self.add_account(uid, email, password)
        return uid

    async def update_password(self, user_id: str, password: str) -> None:
        self.calls.append("update_password")
        for account in self.accounts.values():
            if account["uid"] == user_id:
                account["password"] = password


class FakeProfileStore(ProfileStore):
    def __init__(self):
        self.profiles: Dict[str, UserProfile] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.created: List[UserProfile] = []

    def add(self, **fields: Any) -> UserProfile:
        profile = UserProfile(**fields)
        self.profiles[profile.uid] = profile
        return profile

    async def get(self, uid: str) -> Optional[UserProfile]:
        if self.fail_reads:
            raise ProfileStoreUnavailable()
        return self.profiles.get(uid)

    async def find_by_mobile(self, mobile_number: str) -> Optional[UserProfile]:
        for profile in self.profiles.values():
            if profile.mobile_number == mobile_number:
                return profile
        return None

    async def create(self, profile: UserProfile) -> UserProfile:
        if self.fail_writes or profile.uid in self.profiles:
            raise ProfileStoreUnavailable("Failed to create user profile")
        self.profiles[profile.uid] = profile
        self.created.append(profile)
        return profile

    async def update(self, uid: str, fields: Dict[str, Any]) -> UserProfile:
        if self.fail_writes or uid not in self.profiles:
            raise ProfileStoreUnavailable("Failed to update user profile")
        document = self.profiles[uid].to_document()
        document.update(fields)
        profile = UserProfile.from_document(document)
        self.profiles[uid] = profile
        return profile

    async def list_profiles(self, limit: int = 100) -> List[UserProfile]:
        return list(self.profiles.values())[:limit]


class FakeRolePolicyStore(RolePolicyStore):
    def __init__(self):
        self.settings = RolePolicySettings()

    async def load(self) -> RolePolicySettings:
        return self.settings

    async def save(self, settings: RolePolicySettings) -> RolePolicySettings:
        self.settings = settings
        return settings


class MemoryAuditSink(AuditSink):
    def __init__(self):
        self.entries: List[AuditEntry] = []
        self.fail = False

    async def write(self, entry: AuditEntry) -> None:
        if self.fail:
            raise RuntimeError("audit store down")
        self.entries.append(entry)

    def actions(self) -> List[str]:
        return [e.action.value for e in self.entries]


# ==================== Fixtures ====================


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def identity():
    provider = FakeIdentityProvider()
    provider.add_account("uid-admin", "admin@example.com", "admin-pass")
    provider.add_account("uid-emp", f"9876500001@{SYSTEM_DOMAIN}", "emp-pass")
    provider.add_account("uid-blocked", f"9876500002@{SYSTEM_DOMAIN}", "blocked-pass")
    provider.add_account("uid-new", f"9876500003@{SYSTEM_DOMAIN}", "new-pass")
    return provider


@pytest.fixture
def profiles():
    store = FakeProfileStore()
    store.add(
        uid="uid-admin", email="admin@example.com", fullName="Admin", role="admin",
        department="System", status="active",
    )
    store.add(
        uid="uid-emp", email=f"9876500001@{SYSTEM_DOMAIN}", mobileNumber="9876500001",
        fullName="Employee One", role="employee", department="Sales", status="active",
    )
    store.add(
        uid="uid-blocked", email=f"9876500002@{SYSTEM_DOMAIN}", mobileNumber="9876500002",
        fullName="Blocked User", role="employee", department="Sales", status="blocked",
    )
    return store


@pytest.fixture
def role_policies():
    return FakeRolePolicyStore()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink):
    return AuditTrail(audit_sink)


@pytest.fixture
def session_factory(clock, scheduler):
    def factory(on_expire, on_warning):
        return SessionLifecycleController(
            on_expire=on_expire,
            on_warning=on_warning,
            scheduler=scheduler,
            clock=clock,
            timeout_minutes=30,
            check_interval_seconds=30,
        )
    return factory


@pytest.fixture
def gateway(identity, profiles, audit, session_factory):
    return AuthGateway(
        identity=identity,
        profiles=profiles,
        audit=audit,
        system_email_domain=SYSTEM_DOMAIN,
        session_factory=session_factory,
    )


@pytest.fixture
def services(identity, profiles, role_policies, audit, session_factory):
    from app.core.services import Services

    return Services(
        identity=identity,
        profiles=profiles,
        role_policies=role_policies,
        audit=audit,
        session_factory=session_factory,
        system_email_domain=SYSTEM_DOMAIN,
    )


@pytest_asyncio.fixture
async def async_client(services):
    """Async client against the app, wired to the in-memory services."""
    from httpx import ASGITransport, AsyncClient

    from app.core.rate_limit import limiter
    from app.main import app

    limiter.enabled = False
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await services.registry.close()
    await services.audit.drain()
    app.state.services = None
    limiter.enabled = True
