"""Approval workflow states.

State Machine Diagram (overall status of a request):

    ┌──────────┐
    │ PENDING  │ ← Initial state (records: pending / auto_approved)
    └────┬─────┘
         │
         ├──────────────────────────┐
         │ every required role      │ any role
         │ approved/auto_approved   │ rejects
    ┌────▼─────┐              ┌─────▼────┐
    │ APPROVED │              │ REJECTED │
    └──────────┘              └──────────┘

Per-role records move once from PENDING to APPROVED or REJECTED. Records
created as AUTO_APPROVED never change.

The overall status is never mutated directly: it is always recomputed from
the approval flow and the approval records by compute_overall_status().
"""

from typing import Iterable, Mapping, Optional, Set

from ..models import ApprovalRecord, Decision, OverallStatus
from ..roles import RoleAliasResolver


# Terminal overall states, no further decisions accepted
TERMINAL_STATUSES: Set[OverallStatus] = {
    OverallStatus.APPROVED,
    OverallStatus.REJECTED,
}

# Decisions an approver may submit
DECIDABLE: Set[Decision] = {
    Decision.APPROVED,
    Decision.REJECTED,
}


def is_terminal(status: OverallStatus) -> bool:
    """Check if an overall status is terminal."""
    return OverallStatus(status) in TERMINAL_STATUSES


def compute_overall_status(
    approval_flow: Iterable[str],
    approval_records: Mapping[str, ApprovalRecord],
    resolver: Optional[RoleAliasResolver] = None,
) -> OverallStatus:
    """
    Derive the overall status of a request from its records.

    Any rejected record makes the request rejected. Otherwise the request is
    approved when every role of the flow has an approved or auto-approved
    record, and pending in all other cases.

    Args:
        approval_flow: Required roles
        approval_records: Records keyed by role name
        resolver: When given, flow entries and record keys are compared by
            authority so a legacy alias and its canonical name are one slot

    Returns:
        The overall status; pure and idempotent
    """
    if resolver is not None:
        records = {}
        for role, record in approval_records.items():
            canonical = resolver.canonicalize(role)
            # A canonical key takes precedence over a mirrored alias
            if canonical not in records or role == canonical:
                records[canonical] = record
        flow = resolver.canonicalize_flow(approval_flow)
    else:
        records = dict(approval_records)
        flow = list(approval_flow)

    if any(record.decision == Decision.REJECTED for record in records.values()):
        return OverallStatus.REJECTED

    for role in flow:
        record = records.get(role)
        if record is None or not record.is_satisfied:
            return OverallStatus.PENDING

    return OverallStatus.APPROVED
