"""Approval state machine implementation.

Applies one approver decision to a leave request and recomputes its overall
status. The machine works on an in-memory copy; persisting the outcome
atomically is the caller's job (see ApprovalService).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union

from ..exceptions import InvalidStateError, ValidationError
from ..models import (
    ApprovalRecord,
    Approver,
    Decision,
    LeaveRequest,
    OverallStatus,
    utcnow,
)
from ..roles import RoleAliasResolver
from .events import TransitionCause, TransitionEvent
from .states import DECIDABLE, TERMINAL_STATUSES, compute_overall_status


@dataclass
class DecisionOutcome:
    """Result of applying one decision."""
    request: LeaveRequest
    role: str
    decision: Decision
    previous_status: OverallStatus
    events: List[TransitionEvent] = field(default_factory=list)

    @property
    def status(self) -> OverallStatus:
        return self.request.overall_status

    @property
    def changed_status(self) -> bool:
        return self.status != self.previous_status


class ApprovalStateMachine:
    """
    State machine for the leave approval workflow.

    Enforces:
    - no decisions once the request is approved or rejected
    - each role decides at most once, never over an auto-approved record
    - the overall status is recomputed from the records after every decision
    """

    def __init__(
        self,
        request: LeaveRequest,
        *,
        resolver: Optional[RoleAliasResolver] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the state machine.

        Args:
            request: Leave request with canonical role records
            resolver: Used to canonicalize role names passed to decide()
            clock: Source of decision timestamps
        """
        self._request = request
        self.resolver = resolver
        self.clock = clock

    @property
    def request(self) -> LeaveRequest:
        return self._request

    @property
    def state(self) -> OverallStatus:
        """Overall status derived from the current records."""
        return compute_overall_status(
            self._request.approval_flow, self._request.approval_records
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATUSES

    def pending_roles(self) -> List[str]:
        """Roles of the flow still waiting for a decision, in flow order."""
        pending = []
        for role in self._request.approval_flow:
            record = self._request.approval_records.get(role)
            if record is not None and record.is_pending:
                pending.append(role)
        return pending

    def can_decide(self, role: str) -> bool:
        """Check if `role` may still record a decision."""
        if self.is_terminal:
            return False
        record = self._request.approval_records.get(self._canonical(role))
        return record is not None and record.is_pending

    def decide(
        self,
        role: str,
        decision: Union[Decision, str],
        approver: Approver,
        comments: Optional[str] = None,
    ) -> DecisionOutcome:
        """
        Record a decision for one role.

        Args:
            role: Role whose record is decided
            decision: approved or rejected
            approver: Acting approver
            comments: Optional free text

        Returns:
            DecisionOutcome with the updated request copy and emitted events

        Raises:
            ValidationError: If the decision is not approved/rejected
            InvalidStateError: If the request is terminal or the role's
                record is not pending
        """
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationError(f"Decision must be either approved or rejected, got {decision}")
        if decision not in DECIDABLE:
            raise ValidationError(
                f"Decision must be either approved or rejected, got {decision.value}"
            )

        request = self._request
        role = self._canonical(role)
        previous_status = self.state

        if previous_status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Leave request {request.id} is already {previous_status.value}; "
                f"no further decisions are accepted"
            )

        record = request.approval_records.get(role)
        if record is None:
            raise InvalidStateError(f"Leave request {request.id} has no approval record for {role}")
        if not record.is_pending:
            raise InvalidStateError(
                f"The {role} decision on leave request {request.id} is already "
                f"{record.decision.value}"
            )

        now = self.clock()
        records = dict(request.approval_records)
        records[role] = ApprovalRecord(
            role=role,
            decision=decision,
            timestamp=now,
            approver_id=approver.id,
            approver_name=approver.display_name,
            comments=comments or "",
        )
        new_status = compute_overall_status(request.approval_flow, records)

        updated = request.model_copy(
            update={
                "approval_records": records,
                "overall_status": new_status,
                "updated_at": now,
            }
        )
        self._request = updated

        if new_status == OverallStatus.REJECTED:
            cause = TransitionCause.REJECTED
        elif new_status == OverallStatus.APPROVED:
            cause = TransitionCause.APPROVED
        else:
            cause = TransitionCause.ROLE_APPROVED

        event = TransitionEvent.for_request(
            updated,
            cause,
            from_status=previous_status.value,
            role=role,
            actor_id=approver.id,
            actor_name=approver.display_name,
            comments=comments,
            occurred_at=now,
        )

        return DecisionOutcome(
            request=updated,
            role=role,
            decision=decision,
            previous_status=previous_status,
            events=[event],
        )

    def _canonical(self, role: str) -> str:
        if self.resolver is None:
            return role
        return self.resolver.canonicalize(role)
