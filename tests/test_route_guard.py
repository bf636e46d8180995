"""
Tests for the route guard decision and the session registry.
"""
import pytest

from app.features.permissions.dependencies import RouteDecision, evaluate_route
from app.features.permissions.models import Action, Module, Role
from app.features.sessions.registry import SessionRegistry
from app.features.users.gateway import AuthState


class TestEvaluateRoute:
    """Tests for evaluate_route."""

    def test_unauthenticated_redirects_to_login(self):
        assert evaluate_route(False, False, None) == RouteDecision.REDIRECT_LOGIN
        assert evaluate_route(False, True, Role.ADMIN, required_module=Module.DASHBOARD) == RouteDecision.REDIRECT_LOGIN

    def test_inactive_account_redirects_to_login(self):
        assert evaluate_route(True, False, Role.ADMIN) == RouteDecision.REDIRECT_LOGIN

    def test_render_without_requirements(self):
        assert evaluate_route(True, True, Role.INTERN) == RouteDecision.RENDER

    def test_module_check(self):
        assert evaluate_route(True, True, Role.HR, required_module=Module.EMPLOYEES) == RouteDecision.RENDER
        assert evaluate_route(True, True, Role.EMPLOYEE, required_module=Module.EMPLOYEES) == RouteDecision.REDIRECT_UNAUTHORIZED

    def test_module_check_uses_overrides(self):
        overrides = {Module.EMPLOYEES: frozenset({Action.READ})}
        decision = evaluate_route(True, True, Role.EMPLOYEE, required_module=Module.EMPLOYEES, overrides=overrides)
        assert decision == RouteDecision.RENDER

    def test_role_check(self):
        roles = [Role.ADMIN, Role.MANAGER]
        assert evaluate_route(True, True, Role.MANAGER, required_roles=roles) == RouteDecision.RENDER
        assert evaluate_route(True, True, "hr", required_roles=roles) == RouteDecision.REDIRECT_UNAUTHORIZED

    def test_unknown_role_is_unauthorized(self):
        decision = evaluate_route(True, True, "ghost", required_module=Module.DASHBOARD)
        assert decision == RouteDecision.REDIRECT_UNAUTHORIZED

    def test_action_check(self):
        assert evaluate_route(
            True, True, Role.MANAGER, required_module=Module.SALES, required_action=Action.DELETE,
        ) == RouteDecision.REDIRECT_UNAUTHORIZED
        assert evaluate_route(
            True, True, Role.ADMIN, required_module=Module.SALES, required_action=Action.DELETE,
        ) == RouteDecision.RENDER


class TestSessionRegistry:
    """Tests for live session tracking."""

    @pytest.mark.asyncio
    async def test_register_and_logout(self, gateway):
        registry = SessionRegistry()
        await gateway.login("admin@example.com", "admin-pass")
        sid = registry.register(gateway)

        assert gateway.session_id == sid
        assert registry.get(sid) is gateway
        await gateway.logout()
        assert registry.get(sid) is None
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_revoke_user(self, gateway, profiles):
        registry = SessionRegistry()
        await gateway.login("9876500001", "emp-pass")
        registry.register(gateway)

        assert await registry.revoke_user("uid-emp") == 1
        assert gateway.state == AuthState.ANONYMOUS
        assert registry.sessions_for("uid-emp") == []

    @pytest.mark.asyncio
    async def test_refresh_user(self, gateway, profiles):
        registry = SessionRegistry()
        await gateway.login("9876500001", "emp-pass")
        registry.register(gateway)

        promoted = await profiles.update("uid-emp", {"role": "manager"})
        assert registry.refresh_user(promoted) == 1
        assert gateway.is_manager()
        assert gateway.check_permission(Module.SALES, Action.UPDATE)
