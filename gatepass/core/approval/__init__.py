"""Leave approval workflow: state machine, authorization, usage and service."""

from .states import TERMINAL_STATUSES, compute_overall_status, is_terminal
from .events import (
    CeleryEventPublisher,
    EventPublisher,
    InMemoryEventQueue,
    TransitionCause,
    TransitionEvent,
)
from .machine import ApprovalStateMachine, DecisionOutcome
from .guard import AuthorizationGuard
from .usage import UsageAck, UsageTracker
from .codec import LeaveRequestCodec
from .service import DecisionResult, LeaveRequestService

__all__ = [
    "TERMINAL_STATUSES",
    "compute_overall_status",
    "is_terminal",
    "CeleryEventPublisher",
    "EventPublisher",
    "InMemoryEventQueue",
    "TransitionCause",
    "TransitionEvent",
    "ApprovalStateMachine",
    "DecisionOutcome",
    "AuthorizationGuard",
    "UsageAck",
    "UsageTracker",
    "LeaveRequestCodec",
    "DecisionResult",
    "LeaveRequestService",
]
