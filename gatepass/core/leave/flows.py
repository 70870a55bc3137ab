"""Approval flow resolution.

Maps a leave type to the ordered roles that must approve it and builds the
initial approval records of a new request. Every approver role gets a
record: roles in the flow start pending, the others start auto-approved.

Some roles may be pre-resolved by auto-approval policies. Each policy is an
explicit, named object that can be enabled or disabled on its own:

- PartnerInstitutionPolicy: office staff sign-off of partner institutions
  happens outside this system, so the role is auto-approved at creation.
- ResidenceSupervisorBypassPolicy: auto-approves the warden for every
  request. Disabled unless explicitly configured.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

from gatepass.common.config import (
    DEFAULT_APPROVAL_FLOWS,
    DEFAULT_FLOW_LEAVE_TYPE,
    PartnerInstitutionConfig,
    WorkflowConfig,
)

from ..models import ApprovalRecord, LeaveType, RequesterProfile, utcnow
from ..roles import APPROVER_ROLES, Role, RoleAliasResolver

logger = logging.getLogger(__name__)

NOT_REQUIRED_REASON = "Auto-approved (not required for this leave type)"


class AutoApprovalPolicy(ABC):
    """Pre-resolves roles to auto-approved when a request is created."""

    name: str = "policy"

    @abstractmethod
    def auto_approved_roles(
        self,
        leave_type: LeaveType,
        requester: RequesterProfile,
    ) -> Dict[str, str]:
        """
        Roles this policy auto-approves for the given request.

        Returns:
            Mapping of role name -> recorded reason
        """


class PartnerInstitutionPolicy(AutoApprovalPolicy):
    """Auto-approve roles whose sign-off a partner institution handles itself."""

    name = "partner_institution"

    def __init__(self, institutions: Sequence[PartnerInstitutionConfig]):
        self.institutions = list(institutions)

    def matching_institution(self, requester: RequesterProfile) -> Optional[PartnerInstitutionConfig]:
        for institution in self.institutions:
            if institution.matches(requester.email, requester.school):
                return institution
        return None

    def auto_approved_roles(
        self,
        leave_type: LeaveType,
        requester: RequesterProfile,
    ) -> Dict[str, str]:
        institution = self.matching_institution(requester)
        if institution is None:
            return {}
        reason = f"Auto-approved for {institution.name} requesters"
        return {role: reason for role in institution.auto_approve_roles}


class ResidenceSupervisorBypassPolicy(AutoApprovalPolicy):
    """Auto-approve the warden for every request."""

    name = "residence_supervisor_bypass"

    def auto_approved_roles(
        self,
        leave_type: LeaveType,
        requester: RequesterProfile,
    ) -> Dict[str, str]:
        return {Role.WARDEN.value: "Auto-approved (residence supervisor bypass policy)"}


@dataclass
class FlowResolution:
    """Approval flow and initial records for a new request."""
    leave_type: LeaveType
    approval_flow: List[str]
    approval_records: Dict[str, ApprovalRecord]
    applied_policies: List[str] = field(default_factory=list)

    @property
    def is_partner_institution(self) -> bool:
        return PartnerInstitutionPolicy.name in self.applied_policies


class ApprovalFlowResolver:
    """
    Resolves approval flows and initial approval records.

    Flow tables may be written with legacy role names; they are canonicalized
    once at construction.
    """

    def __init__(
        self,
        resolver: RoleAliasResolver,
        *,
        flows: Optional[Mapping[str, Sequence[str]]] = None,
        default_leave_type: str = DEFAULT_FLOW_LEAVE_TYPE,
        policies: Sequence[AutoApprovalPolicy] = (),
        approver_roles: Sequence[str] = tuple(r.value for r in APPROVER_ROLES),
    ):
        self.resolver = resolver
        self.flows: Dict[str, List[str]] = {
            leave_type: resolver.canonicalize_flow(flow)
            for leave_type, flow in (flows or DEFAULT_APPROVAL_FLOWS).items()
        }
        if default_leave_type not in self.flows:
            raise ValueError(f"No approval flow for default leave type {default_leave_type}")
        self.default_leave_type = default_leave_type
        self.policies = list(policies)
        self.approver_roles = resolver.canonicalize_flow(approver_roles)

        for leave_type, flow in self.flows.items():
            unknown = [role for role in flow if role not in self.approver_roles]
            if unknown:
                raise ValueError(
                    f"Approval flow for {leave_type} uses non-approver roles: {unknown}"
                )

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfig,
        resolver: RoleAliasResolver,
        *,
        partner_auto_approval: bool = True,
        warden_bypass: bool = False,
    ) -> "ApprovalFlowResolver":
        """Build a resolver from workflow configuration and policy toggles."""
        policies: List[AutoApprovalPolicy] = []
        if partner_auto_approval and config.partner_institutions:
            policies.append(PartnerInstitutionPolicy(config.partner_institutions))
        if warden_bypass:
            logger.warning("Residence supervisor bypass policy is enabled")
            policies.append(ResidenceSupervisorBypassPolicy())

        return cls(
            resolver,
            flows=config.approval_flows,
            default_leave_type=config.default_flow_leave_type,
            policies=policies,
        )

    def flow_for(self, leave_type: str) -> List[str]:
        """Required roles for a leave type (default flow when unknown)."""
        key = leave_type.value if isinstance(leave_type, LeaveType) else str(leave_type)
        flow = self.flows.get(key)
        if flow is None:
            logger.warning(
                f"No approval flow for leave type {key}, using {self.default_leave_type}"
            )
            flow = self.flows[self.default_leave_type]
        return list(flow)

    def resolve(
        self,
        leave_type: LeaveType,
        requester: RequesterProfile,
        *,
        now: Optional[datetime] = None,
    ) -> FlowResolution:
        """
        Build the approval flow and initial records for a new request.

        Args:
            leave_type: Classified leave type
            requester: Normalized requester profile
            now: Timestamp for auto-approved records

        Returns:
            FlowResolution with one record per approver role
        """
        now = now or utcnow()
        flow = self.flow_for(leave_type)

        policy_reasons: Dict[str, str] = {}
        applied: List[str] = []
        for policy in self.policies:
            roles = policy.auto_approved_roles(leave_type, requester)
            if not roles:
                continue
            applied.append(policy.name)
            for role, reason in roles.items():
                canonical = self.resolver.canonicalize(role)
                if canonical in self.approver_roles:
                    policy_reasons.setdefault(canonical, reason)

        records: Dict[str, ApprovalRecord] = {}
        for role in self.approver_roles:
            if role in policy_reasons:
                records[role] = ApprovalRecord.auto_approved(role, policy_reasons[role], now)
            elif role in flow:
                records[role] = ApprovalRecord.pending(role)
            else:
                records[role] = ApprovalRecord.auto_approved(role, NOT_REQUIRED_REASON, now)

        if applied:
            logger.info(
                f"Auto-approval policies {applied} applied for requester {requester.id}"
            )

        return FlowResolution(
            leave_type=leave_type,
            approval_flow=flow,
            approval_records=records,
            applied_policies=applied,
        )
