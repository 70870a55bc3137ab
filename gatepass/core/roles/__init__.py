"""Role definitions and legacy role-name handling."""

from .roles import Role, APPROVER_ROLES, LEGACY_ALIASES, display_name, is_approver_role
from .aliases import RoleIdentity, RoleAliasTable, RoleAliasResolver

__all__ = [
    "Role",
    "APPROVER_ROLES",
    "LEGACY_ALIASES",
    "display_name",
    "is_approver_role",
    "RoleIdentity",
    "RoleAliasTable",
    "RoleAliasResolver",
]
