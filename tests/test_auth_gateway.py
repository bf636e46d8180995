"""
Tests for the Auth Gateway login/logout flow.
"""
import pytest
from appwrite.exception import AppwriteException

from app.features.permissions.models import Action, Module, Role
from app.features.permissions.overrides import RolePolicySettings
from app.features.sessions.controller import SessionState
from app.features.users.exceptions import (
    AccountBlocked,
    IdentifierNotFound,
    InvalidCredential,
    ProfileStoreUnavailable,
)
from app.features.users.gateway import AuthGateway, AuthState, LogoutReason, default_profile, is_mobile_number
from app.features.users.store import AppwriteProfileStore


SYSTEM_DOMAIN = "sandhya.management"
MINUTE = 60


class FakeDatabases:
    """Synchronous stand-in for the Appwrite Databases service."""

    def __init__(self, documents):
        self.documents = documents

    def get_document(self, database_id, collection_id, document_id):
        if document_id not in self.documents:
            raise AppwriteException("Document not found", 404)
        return dict(self.documents[document_id])

    def create_document(self, database_id, collection_id, document_id, data):
        if document_id in self.documents:
            raise AppwriteException("Document with the requested ID already exists", 409)
        self.documents[document_id] = {"$id": document_id, **data}
        return dict(self.documents[document_id])


class TestIdentifierGrammar:
    """Tests for login identifier classification."""

    @pytest.mark.parametrize("identifier", ["9876543210", "0000000000"])
    def test_mobile_numbers(self, identifier):
        assert is_mobile_number(identifier)

    @pytest.mark.parametrize("identifier", ["987654321", "98765432101", "98765 43210", "admin@example.com", "٩٨٧٦٥٤٣٢١٠"])
    def test_everything_else(self, identifier):
        assert not is_mobile_number(identifier)


class TestDefaultProfile:
    """Tests for first-login provisioning defaults."""

    def test_system_issued_address(self):
        profile = default_profile("u1", f"9876543210@{SYSTEM_DOMAIN}", SYSTEM_DOMAIN)
        assert profile.role == Role.EMPLOYEE.value
        assert profile.mobile_number == "9876543210"
        assert profile.full_name == "System User"
        assert profile.department == "General"
        assert profile.is_active

    def test_external_address(self):
        profile = default_profile("u2", "owner@gmail.com", SYSTEM_DOMAIN)
        assert profile.role == Role.ADMIN.value
        assert profile.mobile_number == ""
        assert profile.department == "System"
        assert profile.created_by == "system"


class TestLogin:
    """Tests for successful logins."""

    @pytest.mark.asyncio
    async def test_login_by_email(self, gateway, audit, audit_sink):
        result = await gateway.login("admin@example.com", "admin-pass")

        assert result.user.uid == "uid-admin"
        assert result.provisioned is False
        assert gateway.state == AuthState.AUTHENTICATED
        assert gateway.is_authenticated() and gateway.is_active() and gateway.is_admin()
        assert gateway.session.state == SessionState.ACTIVE
        assert gateway.transitions == [AuthState.ANONYMOUS, AuthState.AUTHENTICATING, AuthState.AUTHENTICATED]

        await audit.drain()
        assert audit_sink.actions() == ["login"]

    @pytest.mark.asyncio
    async def test_login_by_mobile_number(self, gateway, identity):
        result = await gateway.login("9876500001", "emp-pass")
        assert result.user.uid == "uid-emp"
        assert identity.calls == ["sign_in"]

    @pytest.mark.asyncio
    async def test_last_login_updated(self, gateway, profiles):
        await gateway.login("admin@example.com", "admin-pass")
        for task in list(gateway._background):
            await task
        assert profiles.profiles["uid-admin"].last_login is not None

    @pytest.mark.asyncio
    async def test_provisions_missing_profile(self, gateway, profiles):
        result = await gateway.login(f"9876500003@{SYSTEM_DOMAIN}", "new-pass")
        assert result.provisioned is True
        assert result.user.role == "employee"
        assert profiles.profiles["uid-new"].mobile_number == "9876500003"
        assert len(profiles.created) == 1

    @pytest.mark.asyncio
    async def test_profile_read_failure_falls_back_to_provisioning(self, gateway, profiles, identity):
        """A transient read error provisions; an existing profile is never overwritten."""
        identity.add_account("uid-fresh", "fresh@example.com", "pw")
        profiles.fail_reads = True
        result = await gateway.login("fresh@example.com", "pw")
        assert result.provisioned is True
        assert result.user.role == "admin"

    @pytest.mark.asyncio
    async def test_permissions_follow_profile(self, gateway, profiles):
        profiles.profiles["uid-emp"] = profiles.profiles["uid-emp"].model_copy(
            update={"custom_permissions": {Module.FINANCE: frozenset({Action.READ})}}
        )
        await gateway.login("9876500001", "emp-pass")

        assert gateway.check_permission(Module.SALES, Action.CREATE) is True
        assert gateway.check_permission(Module.FINANCE, Action.READ) is True
        assert gateway.check_permission(Module.FINANCE, Action.CREATE) is False
        assert gateway.check_access(Module.FINANCE) is True
        assert gateway.check_access(Module.EMPLOYEES) is False
        assert Module.FINANCE in gateway.accessible_modules()
        assert gateway.is_manager() is False

    @pytest.mark.asyncio
    async def test_user_override_wins_over_role_settings(self, gateway):
        gateway.role_settings = RolePolicySettings(customPermissions={
            Role.ADMIN: {Module.FINANCE: [Action.READ], Module.SALES: [Action.READ]},
        })
        await gateway.login("admin@example.com", "admin-pass")
        gateway.user = gateway.user.model_copy(
            update={"custom_permissions": {Module.SALES: frozenset({Action.EXPORT})}}
        )

        assert gateway.check_permission(Module.FINANCE, Action.CREATE) is False
        assert gateway.check_permission(Module.SALES, Action.READ) is False
        assert gateway.check_permission(Module.SALES, Action.EXPORT) is True

    @pytest.mark.asyncio
    async def test_cannot_login_twice(self, gateway):
        await gateway.login("admin@example.com", "admin-pass")
        with pytest.raises(RuntimeError):
            await gateway.login("admin@example.com", "admin-pass")


class TestLoginFailures:
    """Tests for failed logins."""

    @pytest.mark.asyncio
    async def test_unknown_mobile_number_never_reaches_provider(self, gateway, identity, audit, audit_sink):
        with pytest.raises(IdentifierNotFound) as exc_info:
            await gateway.login("9876543210", "whatever")

        assert identity.calls == []
        assert exc_info.value.message == "Mobile number not found. Please contact administrator."
        assert gateway.state == AuthState.ANONYMOUS

        await audit.drain()
        entry = audit_sink.entries[0]
        assert entry.action.value == "login_failed"
        assert entry.details["email"] == "9876543210"

    @pytest.mark.asyncio
    async def test_wrong_password(self, gateway):
        with pytest.raises(InvalidCredential):
            await gateway.login("admin@example.com", "nope")
        assert not gateway.is_authenticated()
        assert gateway.session is None

    @pytest.mark.asyncio
    async def test_blocked_account(self, gateway, identity, scheduler, audit, audit_sink):
        with pytest.raises(AccountBlocked) as exc_info:
            await gateway.login("9876500002", "blocked-pass")

        assert exc_info.value.status_code == 403
        assert gateway.is_authenticated() is False
        assert gateway.session is None
        assert scheduler.tasks == []
        assert identity.signed_out[-1].user_id == "uid-blocked"
        assert gateway.transitions[-2:] == [AuthState.BLOCKED, AuthState.ANONYMOUS]

        await audit.drain()
        assert audit_sink.actions() == ["login_failed"]
        assert audit_sink.entries[0].details["reason"] == AccountBlocked.message

    @pytest.mark.asyncio
    async def test_provisioning_write_failure(self, gateway, profiles, identity):
        profiles.fail_writes = True
        with pytest.raises(ProfileStoreUnavailable):
            await gateway.login(f"9876500003@{SYSTEM_DOMAIN}", "new-pass")
        assert identity.signed_out[-1].user_id == "uid-new"
        assert not gateway.is_authenticated()

    @pytest.mark.asyncio
    async def test_read_failure_never_overwrites_existing_profile(self, gateway, profiles):
        profiles.fail_reads = True
        with pytest.raises(ProfileStoreUnavailable):
            await gateway.login("9876500002", "blocked-pass")
        assert profiles.profiles["uid-blocked"].is_blocked

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_block_login(self, gateway, audit, audit_sink):
        audit_sink.fail = True
        result = await gateway.login("admin@example.com", "admin-pass")
        await audit.drain()
        assert result.user.uid == "uid-admin"
        assert audit_sink.entries == []

    @pytest.mark.asyncio
    async def test_padded_mobile_number_is_used_as_is(self, gateway, identity):
        with pytest.raises(InvalidCredential):
            await gateway.login(" 9876500001 ", "emp-pass")
        assert identity.calls == ["sign_in"]
        assert gateway.state == AuthState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_malformed_stored_profile(self, identity, audit, audit_sink, session_factory):
        databases = FakeDatabases({
            "uid-emp": {
                "$id": "uid-emp",
                "email": f"9876500001@{SYSTEM_DOMAIN}",
                "mobileNumber": "9876500001",
                "fullName": "Employee One",
                "role": "employee",
                "department": None,
                "status": "active",
            },
        })
        gateway = AuthGateway(
            identity=identity,
            profiles=AppwriteProfileStore(databases, "db", "users"),
            audit=audit,
            system_email_domain=SYSTEM_DOMAIN,
            session_factory=session_factory,
        )

        with pytest.raises(ProfileStoreUnavailable):
            await gateway.login(f"9876500001@{SYSTEM_DOMAIN}", "emp-pass")

        assert gateway.state == AuthState.ANONYMOUS
        assert gateway.session is None
        assert identity.signed_out[-1].user_id == "uid-emp"
        assert databases.documents["uid-emp"]["department"] is None

        await audit.drain()
        assert audit_sink.actions() == ["login_failed"]

    @pytest.mark.asyncio
    async def test_unexpected_error_resets_gateway(self, gateway, profiles, identity, audit, audit_sink):
        original_get = profiles.get

        async def broken_get(uid):
            raise RuntimeError("connection reset")

        profiles.get = broken_get
        with pytest.raises(RuntimeError):
            await gateway.login("admin@example.com", "admin-pass")

        assert gateway.state == AuthState.ANONYMOUS
        assert gateway.credential is None
        assert identity.signed_out[-1].user_id == "uid-admin"

        await audit.drain()
        assert audit_sink.actions() == ["login_failed"]

        profiles.get = original_get
        result = await gateway.login("9876500001", "emp-pass")
        assert result.user.uid == "uid-emp"

    @pytest.mark.asyncio
    async def test_anonymous_is_denied_everything(self, gateway):
        assert gateway.check_permission(Module.DASHBOARD, Action.READ) is False
        assert gateway.check_access(Module.DASHBOARD) is False
        assert gateway.accessible_modules() == []
        assert gateway.is_admin() is False


class TestLogout:
    """Tests for logout and session expiry."""

    @pytest.mark.asyncio
    async def test_logout_twice(self, gateway, identity, audit, audit_sink):
        await gateway.login("admin@example.com", "admin-pass")
        session = gateway.session

        await gateway.logout()
        await gateway.logout()

        assert gateway.state == AuthState.ANONYMOUS
        assert gateway.session is None
        assert gateway.user is None
        assert session.storage.exists() is False
        assert identity.calls.count("sign_out") == 1

        await audit.drain()
        assert audit_sink.actions() == ["login", "logout"]

    @pytest.mark.asyncio
    async def test_logout_when_anonymous(self, gateway):
        await gateway.logout()
        assert gateway.state == AuthState.ANONYMOUS

    @pytest.mark.asyncio
    async def test_inactivity_forces_logout(self, gateway, scheduler, audit, audit_sink):
        reasons = []
        gateway.on_logout = lambda _gateway, reason: reasons.append(reason)
        await gateway.login("admin@example.com", "admin-pass")

        await scheduler.advance(26 * MINUTE)
        assert gateway.pending_warning_ms is not None
        assert gateway.is_authenticated()

        await scheduler.advance(5 * MINUTE)
        assert gateway.is_authenticated() is False
        assert reasons == [LogoutReason.TIMEOUT]

        await audit.drain()
        assert audit_sink.actions() == ["login", "session_timeout"]

    @pytest.mark.asyncio
    async def test_activity_clears_pending_warning(self, gateway, scheduler):
        await gateway.login("admin@example.com", "admin-pass")
        await scheduler.advance(26 * MINUTE)
        assert gateway.record_activity() is True
        assert gateway.pending_warning_ms is None
        assert gateway.session_status().state == SessionState.ACTIVE
