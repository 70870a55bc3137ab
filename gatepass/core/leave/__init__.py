"""Leave classification and approval flow resolution."""

from .classifier import classify, duration_days
from .flows import (
    ApprovalFlowResolver,
    AutoApprovalPolicy,
    FlowResolution,
    PartnerInstitutionPolicy,
    ResidenceSupervisorBypassPolicy,
)

__all__ = [
    "classify",
    "duration_days",
    "ApprovalFlowResolver",
    "AutoApprovalPolicy",
    "FlowResolution",
    "PartnerInstitutionPolicy",
    "ResidenceSupervisorBypassPolicy",
]
