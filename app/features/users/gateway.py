"""
Auth Gateway.

One AuthGateway per principal context. It owns the authentication state,
the identity-provider credential, the loaded profile and the session
controller enforcing the inactivity timeout:

    ANONYMOUS -> AUTHENTICATING -> AUTHENTICATED -> ANONYMOUS
                       |
                       +-> BLOCKED -> ANONYMOUS

Permission checks are pass-throughs to the policy engine with the current
role and override map; an anonymous context is denied everything.
"""
import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set

from app.core import config
from app.features.audit.service import AuditTrail
from app.features.permissions import policy
from app.features.permissions.models import Module, OverrideMap, Role
from app.features.permissions.overrides import RolePolicySettings
from app.features.sessions.controller import SessionLifecycleController, SessionStatus
from app.features.users.auth import Credential, IdentityProvider
from app.features.users.exceptions import (
    AccountBlocked,
    AuthError,
    IdentifierNotFound,
    ProfileStoreUnavailable,
)
from app.features.users.models import UserProfile, UserStatus, utc_timestamp
from app.features.users.store import ProfileStore
from app.utils import get_logger


log = get_logger(__name__)

MOBILE_NUMBER_PATTERN = re.compile(r"[0-9]{10}")

SessionFactory = Callable[
    [Callable[[], Awaitable[None]], Callable[[int], None]],
    SessionLifecycleController,
]


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    BLOCKED = "blocked"


class LogoutReason(str, Enum):
    USER = "user"
    TIMEOUT = "timeout"
    REVOKED = "revoked"


@dataclass(frozen=True)
class AuthResult:
    user: UserProfile
    credential: Credential
    provisioned: bool = False


def is_mobile_number(identifier: str) -> bool:
    """Exactly ten ASCII digits."""
    return MOBILE_NUMBER_PATTERN.fullmatch(identifier) is not None


def system_email(mobile_number: str, domain: str = config.SYSTEM_EMAIL_DOMAIN) -> str:
    return f"{mobile_number}@{domain}"


def default_profile(uid: str, email: str, domain: str = config.SYSTEM_EMAIL_DOMAIN) -> UserProfile:
    """
    Profile provisioned on first login.

    System-issued addresses (<mobile>@<domain>) become employees; any other
    identity that the provider accepted becomes an administrator.
    """
    system_issued = email.lower().endswith("@" + domain.lower())
    now = utc_timestamp()
    return UserProfile(
        uid=uid,
        email=email,
        mobileNumber=email.split("@")[0] if system_issued else "",
        fullName="System User" if system_issued else "System Administrator",
        role=Role.EMPLOYEE.value if system_issued else Role.ADMIN.value,
        department="General" if system_issued else "System",
        status=UserStatus.ACTIVE.value,
        customPermissions=None,
        createdAt=now,
        lastLogin=now,
        createdBy="system",
    )


def default_session_factory(
    on_expire: Callable[[], Awaitable[None]],
    on_warning: Callable[[int], None],
) -> SessionLifecycleController:
    return SessionLifecycleController(
        on_expire=on_expire,
        on_warning=on_warning,
        timeout_minutes=config.SESSION_TIMEOUT_MINUTES,
        check_interval_seconds=config.SESSION_CHECK_INTERVAL_SECONDS,
    )


class AuthGateway:
    """
    Authentication and authorization context for one principal.

    Args:
        identity: Identity provider adapter
        profiles: Profile store adapter
        audit: Audit trail (fire-and-forget)
        system_email_domain: Domain of system-issued login addresses
        session_factory: Builds the session controller for a new session
        role_settings: Administrator-wide role overrides
    """

    def __init__(
        self,
        identity: IdentityProvider,
        profiles: ProfileStore,
        audit: AuditTrail,
        system_email_domain: str = config.SYSTEM_EMAIL_DOMAIN,
        session_factory: SessionFactory = default_session_factory,
        role_settings: Optional[RolePolicySettings] = None,
    ):
        self.identity = identity
        self.profiles = profiles
        self.audit = audit
        self.system_email_domain = system_email_domain
        self.session_factory = session_factory
        self.role_settings = role_settings

        self.state = AuthState.ANONYMOUS
        self.transitions: List[AuthState] = [AuthState.ANONYMOUS]
        self.user: Optional[UserProfile] = None
        self.credential: Optional[Credential] = None
        self.session: Optional[SessionLifecycleController] = None
        self.pending_warning_ms: Optional[int] = None
        # Opaque id under which the session registry tracks this gateway
        self.session_id: Optional[str] = None

        # Called once after every logout, whatever the reason
        self.on_logout: Optional[Callable[["AuthGateway", LogoutReason], None]] = None

        self._logging_out = False
        self._background: Set[asyncio.Task] = set()

    def _set_state(self, state: AuthState) -> None:
        self.state = state
        self.transitions.append(state)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def resolve_identifier(self, identifier: str) -> str:
        """
        Map a login identifier to the email the identity provider knows.

        Raises:
            IdentifierNotFound: A mobile number with no matching profile
        """
        if not is_mobile_number(identifier):
            return identifier
        profile = await self.profiles.find_by_mobile(identifier)
        if profile is None:
            raise IdentifierNotFound()
        return profile.email

    async def login(self, identifier: str, secret: str) -> AuthResult:
        """
        Authenticate and start a session.

        Raises:
            IdentifierNotFound, InvalidCredential, AccountBlocked,
            ProfileStoreUnavailable, IdentityProviderUnavailable
        """
        if self.state != AuthState.ANONYMOUS:
            raise RuntimeError(f"Cannot log in from state {self.state.value}")

        self._set_state(AuthState.AUTHENTICATING)
        credential: Optional[Credential] = None
        try:
            email = await self.resolve_identifier(identifier)
            credential = await self.identity.sign_in(email, secret)

            profile, provisioned = await self._load_or_provision(credential)

            if profile.is_blocked:
                self._set_state(AuthState.BLOCKED)
                await self._invalidate(credential)
                raise AccountBlocked()
        except AuthError as e:
            log.info("Login failed for %s: %s", identifier, e.message)
            self.audit.login_failed(identifier, e.message)
            self._reset()
            raise
        except Exception:
            log.exception("Unexpected error during login for %s", identifier)
            self.audit.login_failed(identifier, "An unexpected error occurred")
            if credential is not None:
                await self._invalidate(credential)
            self._reset()
            raise

        self._attach(profile, credential)
        self.session = self.session_factory(self._expire, self._warn)
        await self.session.start()
        self._set_state(AuthState.AUTHENTICATED)

        if not provisioned:
            self._spawn(self._touch_last_login(profile.uid))
        self.audit.login(profile.uid, profile.email, profile.role or "unknown")
        log.info("User %s logged in as %s", profile.email, profile.role)
        return AuthResult(user=profile, credential=credential, provisioned=provisioned)

    async def _load_or_provision(self, credential: Credential):
        try:
            profile = await self.profiles.get(credential.user_id)
        except ProfileStoreUnavailable:
            log.warning("Profile read failed for %s; provisioning", credential.email)
            profile = None
        if profile is not None:
            return profile, False

        try:
            profile = await self.profiles.create(
                default_profile(credential.user_id, credential.email, self.system_email_domain)
            )
        except AuthError:
            await self._invalidate(credential)
            raise
        log.info("Provisioned profile for %s as %s", profile.email, profile.role)
        return profile, True

    async def _invalidate(self, credential: Credential) -> None:
        try:
            await self.identity.sign_out(credential)
        except AuthError as e:
            log.error("Could not invalidate credential for %s: %s", credential.email, e.message)

    async def _touch_last_login(self, uid: str) -> None:
        try:
            await self.profiles.update(uid, {"lastLogin": utc_timestamp()})
        except AuthError as e:
            log.error("Error updating last login for %s: %s", uid, e.message)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _attach(self, profile: UserProfile, credential: Credential) -> None:
        self.user = profile
        self.credential = credential

    def _reset(self) -> None:
        self.user = None
        self.credential = None
        self.session = None
        self.pending_warning_ms = None
        self._set_state(AuthState.ANONYMOUS)

    # ------------------------------------------------------------------
    # Logout and session callbacks
    # ------------------------------------------------------------------

    async def logout(self, reason: LogoutReason = LogoutReason.USER) -> None:
        """End the session. A second call is a no-op."""
        if self.state != AuthState.AUTHENTICATED or self._logging_out:
            return
        self._logging_out = True
        try:
            user, credential, session = self.user, self.credential, self.session
            if reason == LogoutReason.TIMEOUT:
                self.audit.session_timeout(user.uid, user.email, user.role or "unknown")
            else:
                self.audit.logout(user.uid, user.email, user.role or "unknown")

            if session is not None:
                session.stop()
                session.storage.clear()
            self._reset()

            await self._invalidate(credential)
            log.info("User %s logged out (%s)", user.email, reason.value)
        finally:
            self._logging_out = False

        if self.on_logout is not None:
            self.on_logout(self, reason)

    async def _expire(self) -> None:
        await self.logout(LogoutReason.TIMEOUT)

    def _warn(self, remaining_ms: int) -> None:
        self.pending_warning_ms = remaining_ms
        log.info("Session for %s expires in %s", self.user.email if self.user else "?", remaining_ms)

    def record_activity(self) -> bool:
        if self.session is None:
            return False
        recorded = self.session.record_activity()
        if recorded:
            self.pending_warning_ms = None
        return recorded

    def session_status(self) -> Optional[SessionStatus]:
        if self.session is None:
            return None
        return self.session.status()

    def apply_profile(self, profile: UserProfile) -> None:
        """Swap in a changed profile (role, overrides, status) for a live session."""
        if self.user is not None and self.user.uid == profile.uid:
            self.user = profile

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    @property
    def role(self) -> Optional[str]:
        return self.user.role if self.user is not None else None

    @property
    def overrides(self) -> Optional[OverrideMap]:
        """Role-wide overrides with per-user overrides replacing them per module."""
        if self.user is None:
            return None
        merged = {}
        if self.role_settings is not None:
            merged.update(self.role_settings.overrides_for(self.user.role) or {})
        merged.update(self.user.custom_permissions or {})
        return merged or None

    def check_permission(self, module, action) -> bool:
        if not self.is_authenticated():
            return False
        return policy.has_permission(self.role, module, action, self.overrides)

    def check_access(self, module) -> bool:
        if not self.is_authenticated():
            return False
        return policy.can_access_module(self.role, module, self.overrides)

    def accessible_modules(self) -> List[Module]:
        if not self.is_authenticated():
            return []
        return policy.get_accessible_modules(self.role, self.overrides)

    def module_permissions(self, module) -> frozenset:
        if not self.is_authenticated():
            return frozenset()
        return policy.get_module_permissions(self.role, module, self.overrides)

    def is_authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED and self.user is not None

    def is_active(self) -> bool:
        return self.is_authenticated() and self.user.is_active

    def is_admin(self) -> bool:
        return self.is_authenticated() and self.user.role == Role.ADMIN.value

    def is_manager(self) -> bool:
        return self.is_authenticated() and policy.is_role_at_least(self.user.role, Role.MANAGER)
