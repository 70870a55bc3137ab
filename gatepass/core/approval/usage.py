"""Gate usage tracking for approved leave requests.

After approval, gate staff record the requester leaving (check-out) and
returning (check-in). Both stamps are written once and never changed.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Set, Tuple

from ..exceptions import AuthorizationError, InvalidStateError
from ..models import Approver, LeaveRequest, OverallStatus, utcnow
from ..roles import Role, RoleAliasResolver
from .events import TransitionCause, TransitionEvent

GATE_ROLES: Set[str] = {Role.STAFF.value, Role.ADMIN.value}


@dataclass
class UsageAck:
    """Acknowledgement of a gate action."""
    request_id: str
    action: str
    message: str
    at: datetime


class UsageTracker:
    """Applies check-out and check-in to approved requests."""

    def __init__(
        self,
        resolver: RoleAliasResolver,
        *,
        require_check_out_before_check_in: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.resolver = resolver
        self.require_check_out_before_check_in = require_check_out_before_check_in
        self.clock = clock

    def check_out(
        self, request: LeaveRequest, actor: Approver
    ) -> Tuple[LeaveRequest, TransitionEvent, UsageAck]:
        """Record the requester leaving. Valid once, only for approved requests."""
        self._check_actor(actor)
        self._check_approved(request)
        if request.checked_out:
            raise InvalidStateError(f"Leave request {request.id} is already checked out")
        if request.is_used:
            raise InvalidStateError(f"Leave request {request.id} is already completed")

        now = self.clock()
        updated = request.model_copy(
            update={
                "checked_out": True,
                "check_out_time": now,
                "check_out_by": actor.id,
                "check_out_staff_name": actor.display_name,
                "updated_at": now,
            }
        )
        event = TransitionEvent.for_request(
            updated,
            TransitionCause.CHECKED_OUT,
            from_status=request.overall_status.value,
            actor_id=actor.id,
            actor_name=actor.display_name,
            occurred_at=now,
        )
        return updated, event, UsageAck(request.id, "check_out", "Student checked out", now)

    def check_in(
        self, request: LeaveRequest, actor: Approver
    ) -> Tuple[LeaveRequest, TransitionEvent, UsageAck]:
        """Record the requester returning; completes the request."""
        self._check_actor(actor)
        self._check_approved(request)
        if request.is_used:
            raise InvalidStateError(f"Leave request {request.id} is already checked in")
        if self.require_check_out_before_check_in and not request.checked_out:
            raise InvalidStateError(
                f"Leave request {request.id} cannot be checked in before it is checked out"
            )

        now = self.clock()
        updated = request.model_copy(
            update={
                "is_used": True,
                "check_in_time": now,
                "check_in_by": actor.id,
                "check_in_staff_name": actor.display_name,
                "updated_at": now,
            }
        )
        event = TransitionEvent.for_request(
            updated,
            TransitionCause.CHECKED_IN,
            from_status=request.overall_status.value,
            actor_id=actor.id,
            actor_name=actor.display_name,
            occurred_at=now,
        )
        return updated, event, UsageAck(request.id, "check_in", "Student checked in", now)

    def _check_actor(self, actor: Approver) -> None:
        role = self.resolver.canonicalize(actor.role)
        if role not in GATE_ROLES:
            raise AuthorizationError(f"Only gate staff may record check-out and check-in, not {role}")

    @staticmethod
    def _check_approved(request: LeaveRequest) -> None:
        if request.overall_status != OverallStatus.APPROVED:
            raise InvalidStateError(
                f"Leave request {request.id} is not approved (status: {request.overall_status.value})"
            )


def is_awaiting_exit(request: LeaveRequest) -> bool:
    """Approved and not yet used."""
    return request.overall_status == OverallStatus.APPROVED and not request.is_used


def is_completed(request: LeaveRequest, *, checked_out_only: bool = True) -> bool:
    """Checked back in (and, by default, checked out before)."""
    if not request.is_used:
        return False
    return request.checked_out or not checked_out_only
