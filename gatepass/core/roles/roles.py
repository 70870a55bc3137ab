"""Canonical role definitions for Gatepass.

Roles that take part in leave approval:
1. Warden - residence supervisor for a hostel
2. Campus Admin - campus-level administrator (formerly "director")
3. OS - office staff of a school (formerly "ao", academic officer)

Other roles:
- Admin - top-level administrator, may decide on behalf of any approver role
- Staff - gate staff recording check-out and check-in
- Student - requester
"""

from enum import Enum
from typing import Dict, FrozenSet, Tuple


class Role(str, Enum):
    """Canonical role names."""

    ADMIN = "admin"
    STUDENT = "student"
    WARDEN = "warden"
    CAMPUS_ADMIN = "campus_admin"
    OS = "os"
    STAFF = "staff"


# Every role that owns an approval record on a leave request, in decision order
APPROVER_ROLES: Tuple[Role, ...] = (
    Role.WARDEN,
    Role.CAMPUS_ADMIN,
    Role.OS,
)

# Roles used by the data import before the renaming; kept readable forever
LEGACY_ALIASES: Dict[Role, FrozenSet[str]] = {
    Role.CAMPUS_ADMIN: frozenset(["director"]),
    Role.OS: frozenset(["ao"]),
}

DISPLAY_NAMES: Dict[Role, str] = {
    Role.ADMIN: "Admin",
    Role.STUDENT: "Student",
    Role.WARDEN: "Warden",
    Role.CAMPUS_ADMIN: "Campus Admin",
    Role.OS: "Office Staff",
    Role.STAFF: "Gate Staff",
}


def display_name(role: str) -> str:
    """Human readable name for a canonical role."""
    try:
        return DISPLAY_NAMES[Role(role)]
    except ValueError:
        return role.replace("_", " ").title()


def is_approver_role(role: str) -> bool:
    """Check if a canonical role owns an approval record."""
    return role in {r.value for r in APPROVER_ROLES}
