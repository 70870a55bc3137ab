"""Tests for role definitions and legacy alias resolution."""

import pytest

from gatepass.core.exceptions import UnknownRoleError, ValidationError
from gatepass.core.roles import (
    APPROVER_ROLES,
    Role,
    RoleAliasResolver,
    RoleAliasTable,
    RoleIdentity,
    display_name,
    is_approver_role,
)


class TestRoleDefinitions:
    """Test canonical role definitions."""

    def test_approver_roles(self):
        """Test only the three supervisory roles own approval records."""
        assert set(APPROVER_ROLES) == {Role.WARDEN, Role.CAMPUS_ADMIN, Role.OS}
        assert is_approver_role("os")
        assert not is_approver_role("staff")
        assert not is_approver_role("admin")

    def test_display_names(self):
        """Test human-readable role names."""
        assert display_name("os") == "Office Staff"
        assert display_name("campus_admin") == "Campus Admin"
        assert display_name("warden") == "Warden"


class TestRoleAliasTable:
    """Test alias table construction."""

    def test_default_table_has_legacy_aliases(self):
        """Test the built-in director and ao aliases."""
        table = RoleAliasTable.default()

        assert table.lookup("director") == "campus_admin"
        assert table.lookup("ao") == "os"
        assert table.lookup("warden") == "warden"
        assert len(table) == len(Role)

    def test_lookup_is_case_insensitive(self):
        """Test names are matched regardless of case and padding."""
        table = RoleAliasTable.default()

        assert table.lookup("DIRECTOR") == "campus_admin"
        assert table.lookup("  Ao ") == "os"

    def test_unknown_name(self):
        """Test unknown names are not in the table."""
        table = RoleAliasTable.default()

        assert table.lookup("principal") is None
        assert "principal" not in table
        assert "director" in table

    def test_alias_claimed_twice_rejected(self):
        """Test an alias may belong to one canonical role only."""
        with pytest.raises(ValueError, match="claimed by both"):
            RoleAliasTable.from_mapping({"campus_admin": ["head"], "os": ["head"]})

    def test_identity_names(self):
        """Test an identity lists its canonical name and aliases."""
        identity = RoleIdentity(canonical="os", aliases=frozenset(["ao"]))
        assert identity.names == frozenset(["os", "ao"])


class TestRoleAliasResolver:
    """Test alias resolution."""

    @pytest.fixture
    def resolver(self):
        return RoleAliasResolver(RoleAliasTable.default())

    def test_canonicalize(self, resolver):
        """Test legacy and canonical names map to the canonical role."""
        assert resolver.canonicalize("director") == "campus_admin"
        assert resolver.canonicalize("campus_admin") == "campus_admin"
        assert resolver.canonicalize("AO") == "os"
        assert resolver.canonicalize(" Warden ") == "warden"

    def test_canonicalize_unknown_role(self, resolver):
        """Test unknown roles raise a validation error."""
        with pytest.raises(UnknownRoleError) as exc_info:
            resolver.canonicalize("principal")

        assert exc_info.value.role == "principal"
        assert isinstance(exc_info.value, ValidationError)

    def test_canonicalize_blank_role(self, resolver):
        """Test blank role names are unknown."""
        with pytest.raises(UnknownRoleError):
            resolver.canonicalize("   ")

    def test_expand(self, resolver):
        """Test expansion returns the canonical name and every alias."""
        assert resolver.expand("ao") == frozenset(["os", "ao"])
        assert resolver.expand("campus_admin") == frozenset(["campus_admin", "director"])
        assert resolver.expand("warden") == frozenset(["warden"])

    def test_aliases_only(self, resolver):
        """Test alias listing excludes the canonical name."""
        assert resolver.aliases("os") == frozenset(["ao"])
        assert resolver.aliases("staff") == frozenset()

    def test_same_authority(self, resolver):
        """Test alias pairs are the same authority in both directions."""
        assert resolver.same_authority("director", "campus_admin")
        assert resolver.same_authority("campus_admin", "DIRECTOR")
        assert not resolver.same_authority("ao", "director")

    def test_is_member(self, resolver):
        """Test membership checks across aliases."""
        assert resolver.is_member("ao", ["warden", "os"])
        assert resolver.is_member("os", ["warden", "AO"])
        assert not resolver.is_member("director", ["warden", "os"])

    def test_canonicalize_flow(self, resolver):
        """Test flows keep order and lose duplicate authorities."""
        flow = ["WARDEN", "director", "campus_admin", "ao"]
        assert resolver.canonicalize_flow(flow) == ["warden", "campus_admin", "os"]

    def test_custom_table(self):
        """Test a configured alias table is honored."""
        table = RoleAliasTable.from_mapping({"warden": ["rector"], "os": []})
        resolver = RoleAliasResolver(table)

        assert resolver.canonicalize("rector") == "warden"
        with pytest.raises(UnknownRoleError):
            resolver.canonicalize("ao")
