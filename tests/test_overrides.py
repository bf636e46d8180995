"""
Tests for override maps and the role policy settings document.
"""
import json

import pytest

from app.features.permissions import policy
from app.features.permissions.models import Action, Module, Role
from app.features.permissions.overrides import (
    RolePolicySettings,
    dump_override_map,
    override_map_to_dict,
    parse_override_map,
)
from app.features.users.models import UserProfile


class TestParseOverrideMap:
    """Tests for parse_override_map."""

    def test_none_and_empty(self):
        assert parse_override_map(None) is None
        assert parse_override_map("") is None
        assert parse_override_map("null") is None

    def test_json_string(self):
        parsed = parse_override_map('{"finance": ["read", "export"]}')
        assert parsed == {Module.FINANCE: frozenset({Action.READ, Action.EXPORT})}

    def test_mapping(self):
        parsed = parse_override_map({"sales": ["create"]})
        assert parsed == {Module.SALES: frozenset({Action.CREATE})}

    def test_empty_list_is_kept(self):
        """An explicit empty list denies the module."""
        parsed = parse_override_map({"dashboard": []})
        assert parsed == {Module.DASHBOARD: frozenset()}
        assert policy.can_access_module(Role.ADMIN, Module.DASHBOARD, parsed) is False

    def test_unknown_entries_dropped_and_reported(self):
        received = []
        unsubscribe = policy.subscribe_diagnostics(received.append)
        try:
            parsed = parse_override_map({"payroll": ["read"], "sales": ["read", "approve"]})
        finally:
            unsubscribe()
        assert parsed == {Module.SALES: frozenset({Action.READ})}
        assert [(e.kind, e.value) for e in received] == [("module", "payroll"), ("action", "approve")]

    def test_malformed_json_ignored(self):
        assert parse_override_map("{not json") is None
        assert parse_override_map("[1, 2]") is None


class TestSerialization:
    """Tests for dumping override maps."""

    def test_dump_orders_actions(self):
        overrides = {Module.FINANCE: frozenset({Action.EXPORT, Action.READ})}
        assert json.loads(dump_override_map(overrides)) == {"finance": ["read", "export"]}

    def test_dump_none(self):
        assert dump_override_map(None) is None
        assert override_map_to_dict(None) is None

    def test_profile_round_trip_keeps_overrides(self):
        profile = UserProfile(
            uid="u1", email="u1@example.com", role="employee",
            customPermissions={"finance": ["read"]},
        )
        document = profile.to_document()
        assert isinstance(document["customPermissions"], str)
        restored = UserProfile.from_document({**document, "$id": "u1"})
        assert restored.custom_permissions == {Module.FINANCE: frozenset({Action.READ})}


class TestRolePolicySettings:
    """Tests for the administrator-wide role overrides."""

    def test_overrides_for_role(self):
        settings = RolePolicySettings(customPermissions={Role.MANAGER: {Module.SALES: [Action.READ]}})
        assert settings.overrides_for("manager") == {Module.SALES: frozenset({Action.READ})}
        assert settings.overrides_for(Role.HR) is None
        assert settings.overrides_for("ghost") is None

    def test_from_document_parses_json(self):
        document = {
            "customPermissions": json.dumps({"hr": {"finance": ["read", "export"]}, "owner": {"sales": ["read"]}}),
            "lastUpdatedBy": "admin@example.com",
            "lastUpdated": "2024-05-01T10:00:00+00:00",
        }
        settings = RolePolicySettings.from_document(document)
        assert list(settings.custom_permissions) == [Role.HR]
        assert settings.custom_permissions[Role.HR][Module.FINANCE] == [Action.READ, Action.EXPORT]
        assert settings.last_updated_by == "admin@example.com"
        assert settings.last_updated.year == 2024

    def test_to_document_round_trip(self):
        settings = RolePolicySettings(customPermissions={Role.INTERN: {Module.TASKS: [Action.READ]}})
        restored = RolePolicySettings.from_document(settings.to_document())
        assert restored.custom_permissions == settings.custom_permissions

    @pytest.mark.asyncio
    async def test_store_replace_stamps_author(self, role_policies):
        saved = await role_policies.replace({Role.HR: {Module.AUDIT: []}}, updated_by="admin@example.com")
        assert saved.last_updated_by == "admin@example.com"
        assert saved.last_updated is not None
        loaded = await role_policies.load()
        assert loaded.overrides_for(Role.HR) == {Module.AUDIT: frozenset()}
