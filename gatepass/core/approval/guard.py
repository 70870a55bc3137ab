"""Authorization checks for approval decisions.

Decides whether an acting approver may record a decision for a given role on
a given leave request. Checks run in a fixed order:

1. the request exists and is not yet approved or rejected
2. the approver's role (after alias resolution) is in the request's flow,
   unless the approver is an admin, who may act for any pending role
3. role-specific scope: a warden must be the requester's assigned warden;
   office staff must belong to the requester's school and may never decide
   over an auto-approved office staff record
"""

import logging
from typing import Optional

from ..exceptions import AuthorizationError, InvalidStateError, NotFoundError, UnknownRoleError
from ..models import Approver, Decision, LeaveRequest
from ..roles import Role, RoleAliasResolver, display_name
from .states import TERMINAL_STATUSES, compute_overall_status

logger = logging.getLogger(__name__)


def same_text(first: Optional[str], second: Optional[str]) -> bool:
    if not first or not second:
        return False
    return " ".join(first.split()).casefold() == " ".join(second.split()).casefold()


class AuthorizationGuard:
    """Checks that an approver is entitled to decide on a request."""

    def __init__(self, resolver: RoleAliasResolver):
        self.resolver = resolver

    def authorize(
        self,
        approver: Approver,
        request: Optional[LeaveRequest],
        *,
        request_id: Optional[str] = None,
        acting_for: Optional[str] = None,
    ) -> str:
        """
        Check an approver against a request.

        Args:
            approver: Acting approver with its claimed role
            request: Target request, None when it was not found
            request_id: Used in the not-found message
            acting_for: Role an admin decides for (defaults to the first
                pending role of the flow)

        Returns:
            Canonical role whose record the approver may decide

        Raises:
            NotFoundError: Unknown request
            InvalidStateError: Request already approved or rejected
            UnknownRoleError: Claimed role is not a known role
            AuthorizationError: Role not in flow, out of scope, or the
                target record was auto-approved
        """
        if request is None:
            raise NotFoundError(f"Leave request {request_id} not found")

        status = compute_overall_status(request.approval_flow, request.approval_records)
        if status in TERMINAL_STATUSES:
            raise InvalidStateError(
                f"Leave request {request.id} is already {status.value}; "
                f"no further decisions are accepted"
            )

        claimed = self.resolver.canonicalize(approver.role)
        flow = self.resolver.canonicalize_flow(request.approval_flow)

        if claimed == Role.ADMIN.value:
            target = self._admin_target(request, flow, acting_for)
            self._check_not_auto_approved(request, target)
            logger.info(f"Admin {approver.id} deciding for {target} on leave request {request.id}")
            return target

        if acting_for is not None and self.resolver.canonicalize(acting_for) != claimed:
            raise AuthorizationError(
                f"You ({claimed}) may only decide for your own role, not {acting_for}"
            )

        if claimed not in flow:
            raise AuthorizationError(
                f"You ({claimed}) are not authorized to approve/reject this type of leave"
            )

        if claimed == Role.WARDEN.value:
            self._check_warden(approver, request)
        elif claimed == Role.OS.value:
            self._check_not_auto_approved(request, claimed)
            self._check_office_staff(approver, request)

        return claimed

    def is_authorized(
        self,
        approver: Approver,
        request: Optional[LeaveRequest],
        *,
        acting_for: Optional[str] = None,
    ) -> bool:
        """Non-raising variant of authorize()."""
        try:
            self.authorize(approver, request, acting_for=acting_for)
        except (AuthorizationError, InvalidStateError, NotFoundError, UnknownRoleError):
            return False
        return True

    def in_scope(self, role: str, approver: Optional[Approver], request: LeaveRequest) -> bool:
        """
        Check if a request falls in an approver's institutional scope.

        Used to filter pending/history listings; no approver means no filter.
        """
        if approver is None:
            return True

        role = self.resolver.canonicalize(role)
        if role == Role.WARDEN.value:
            return self._is_assigned_warden(approver, request)
        if role == Role.OS.value:
            return self._is_school_office_staff(approver, request)
        return True

    def _admin_target(self, request: LeaveRequest, flow, acting_for: Optional[str]) -> str:
        if acting_for is not None:
            target = self.resolver.canonicalize(acting_for)
            if target not in request.approval_records:
                raise AuthorizationError(
                    f"{display_name(target)} does not approve leave requests"
                )
            return target

        for role in flow:
            record = request.approval_records.get(role)
            if record is not None and record.is_pending:
                return role

        raise InvalidStateError(f"Leave request {request.id} has no pending approval step")

    def _check_not_auto_approved(self, request: LeaveRequest, role: str) -> None:
        record = request.approval_records.get(role)
        if record is not None and record.decision == Decision.AUTO_APPROVED:
            raise AuthorizationError(
                f"The {display_name(role)} step of this leave request was auto-approved "
                f"({record.comments or 'no reason recorded'}) and cannot be decided manually"
            )

    def _check_warden(self, approver: Approver, request: LeaveRequest) -> None:
        if not self._is_assigned_warden(approver, request):
            logger.warning(
                f"Warden {approver.id} is not the assigned warden for leave request {request.id}"
            )
            raise AuthorizationError(
                "You are not authorized to approve/reject this leave request as you "
                "are not the assigned warden for this requester"
            )

    def _check_office_staff(self, approver: Approver, request: LeaveRequest) -> None:
        if not self._is_school_office_staff(approver, request):
            logger.warning(
                f"Office staff {approver.id} ({approver.school}) is not assigned to "
                f"school {request.school} of leave request {request.id}"
            )
            raise AuthorizationError(
                "You are not authorized to approve/reject this leave request as you "
                "are not the assigned office staff for this school"
            )

    @staticmethod
    def supervises(approver: Approver, request: LeaveRequest) -> bool:
        """Check if the request's hostel names `approver` as its warden."""
        hostel = request.hostel
        if hostel is None:
            return False
        if hostel.warden_id:
            return hostel.warden_id == approver.id
        return same_text(hostel.warden_name, approver.name)

    @classmethod
    def _is_assigned_warden(cls, approver: Approver, request: LeaveRequest) -> bool:
        hostel = request.hostel
        if hostel is None or not (hostel.warden_id or hostel.warden_name):
            # No residence unit on record, any warden may decide
            return True
        return cls.supervises(approver, request)

    @staticmethod
    def _is_school_office_staff(approver: Approver, request: LeaveRequest) -> bool:
        if not request.school:
            return True
        return same_text(request.school, approver.school)
