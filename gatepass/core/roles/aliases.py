"""Role alias resolution.

The role renaming (director -> campus_admin, ao -> os) left documents and
identity claims that still use the old names. All translation between old
and new names happens here; the rest of the engine only sees canonical
role names.

A RoleAliasTable is an immutable value built once (from defaults or from
the workflow configuration file) and handed to a RoleAliasResolver.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from ..exceptions import UnknownRoleError
from .roles import LEGACY_ALIASES, Role


def _normalize(name: str) -> str:
    return name.strip().lower()


@dataclass(frozen=True)
class RoleIdentity:
    """A canonical role and the legacy names denoting the same authority."""

    canonical: str
    aliases: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def names(self) -> FrozenSet[str]:
        """Canonical name plus every alias."""
        return frozenset([self.canonical]) | self.aliases


class RoleAliasTable:
    """Immutable bidirectional mapping between canonical roles and aliases."""

    def __init__(self, identities: Iterable[RoleIdentity]):
        by_canonical: Dict[str, RoleIdentity] = {}
        by_name: Dict[str, str] = {}

        for identity in identities:
            canonical = _normalize(identity.canonical)
            aliases = frozenset(_normalize(a) for a in identity.aliases) - {canonical}
            normalized = RoleIdentity(canonical=canonical, aliases=aliases)

            for name in normalized.names:
                owner = by_name.get(name)
                if owner is not None and owner != canonical:
                    raise ValueError(
                        f"Role name '{name}' claimed by both '{owner}' and '{canonical}'"
                    )
                by_name[name] = canonical

            by_canonical[canonical] = normalized

        self._by_canonical = by_canonical
        self._by_name = by_name

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Iterable[str]]) -> "RoleAliasTable":
        """Build a table from {canonical: [aliases]}."""
        return cls(
            RoleIdentity(canonical=canonical, aliases=frozenset(aliases or []))
            for canonical, aliases in mapping.items()
        )

    @classmethod
    def default(cls) -> "RoleAliasTable":
        """Table with every canonical role and the built-in legacy aliases."""
        return cls(
            RoleIdentity(canonical=role.value, aliases=LEGACY_ALIASES.get(role, frozenset()))
            for role in Role
        )

    def lookup(self, name: str) -> Optional[str]:
        """Canonical name for any known name, or None."""
        return self._by_name.get(_normalize(name))

    def identity(self, canonical: str) -> RoleIdentity:
        return self._by_canonical[canonical]

    @property
    def canonical_roles(self) -> List[str]:
        return list(self._by_canonical)

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None

    def __len__(self) -> int:
        return len(self._by_canonical)


class RoleAliasResolver:
    """Canonicalizes and expands role names against a RoleAliasTable."""

    def __init__(self, table: RoleAliasTable):
        self.table = table

    def canonicalize(self, name: str) -> str:
        """
        Map a role name or legacy alias to its canonical role.

        Raises:
            UnknownRoleError: If the name is not a known role or alias
        """
        if not isinstance(name, str) or not name.strip():
            raise UnknownRoleError(str(name))
        canonical = self.table.lookup(name)
        if canonical is None:
            raise UnknownRoleError(name)
        return canonical

    def expand(self, name: str) -> FrozenSet[str]:
        """Return the canonical role of `name` together with all its aliases."""
        return self.table.identity(self.canonicalize(name)).names

    def aliases(self, name: str) -> FrozenSet[str]:
        """Legacy aliases only (without the canonical name)."""
        return self.table.identity(self.canonicalize(name)).aliases

    def same_authority(self, first: str, second: str) -> bool:
        """Check if two role names denote the same authority."""
        return self.canonicalize(first) == self.canonicalize(second)

    def is_member(self, name: str, roles: Iterable[str]) -> bool:
        """Check if `name`, or any alias of it, appears in `roles`."""
        canonical = self.canonicalize(name)
        for role in roles:
            if self.table.lookup(role) == canonical:
                return True
        return False

    def canonicalize_flow(self, flow: Iterable[str]) -> List[str]:
        """Canonicalize an approval flow, keeping order and dropping duplicates."""
        result: List[str] = []
        for role in flow:
            canonical = self.canonicalize(role)
            if canonical not in result:
                result.append(canonical)
        return result
