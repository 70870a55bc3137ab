"""Domain models for leave requests and their approval records.

These models always use canonical role names. Translation from and to the
persisted document schema (which may still carry legacy role names) lives in
gatepass.core.approval.codec.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Decision(str, Enum):
    """Per-role decision on a leave request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"


class OverallStatus(str, Enum):
    """Overall status of a leave request."""

    PENDING = "pending"
    APPROVED = "approved"    # Terminal
    REJECTED = "rejected"    # Terminal


class LeaveType(str, Enum):
    """Leave type derived by the classifier."""

    SHORT_LEAVE = "short_leave"
    LONG_LEAVE = "long_leave"
    VACATION = "vacation"
    ACADEMIC = "academic"
    NON_ACADEMIC = "non_academic"


class LeaveCategory(str, Enum):
    """Category chosen by the requester; `regular` when none was given."""

    ACADEMIC = "academic"
    NON_ACADEMIC = "non_academic"
    REGULAR = "regular"


class ApprovalRecord(BaseModel):
    """One approver role's decision on a leave request."""

    model_config = ConfigDict(frozen=True)

    role: str
    decision: Decision = Decision.PENDING
    timestamp: Optional[datetime] = None
    approver_id: Optional[str] = None
    approver_name: Optional[str] = None
    comments: str = ""

    @model_validator(mode="after")
    def _timestamp_matches_decision(self) -> "ApprovalRecord":
        if (self.timestamp is None) != (self.decision == Decision.PENDING):
            raise ValueError(
                f"Approval record for {self.role}: timestamp must be set "
                f"exactly when the decision is not pending (decision={self.decision.value})"
            )
        return self

    @classmethod
    def pending(cls, role: str) -> "ApprovalRecord":
        return cls(role=role)

    @classmethod
    def auto_approved(
        cls,
        role: str,
        reason: str,
        at: Optional[datetime] = None,
    ) -> "ApprovalRecord":
        return cls(
            role=role,
            decision=Decision.AUTO_APPROVED,
            timestamp=at or utcnow(),
            comments=reason,
        )

    @property
    def is_pending(self) -> bool:
        return self.decision == Decision.PENDING

    @property
    def is_satisfied(self) -> bool:
        """Approved by a person or pre-resolved at creation."""
        return self.decision in (Decision.APPROVED, Decision.AUTO_APPROVED)


class HostelAssignment(BaseModel):
    """Residence unit of a requester and its assigned warden."""
    name: Optional[str] = None
    warden_id: Optional[str] = None
    warden_name: Optional[str] = None


class ContactDetails(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ParentDetails(BaseModel):
    father: ContactDetails = Field(default_factory=ContactDetails)
    mother: ContactDetails = Field(default_factory=ContactDetails)


class RequesterProfile(BaseModel):
    """
    Normalized member profile.

    Produced by the member import; the engine never guesses field names.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    prn: Optional[str] = None
    branch: str = "Unknown"
    school: str = ""
    programme: str = ""
    year_of_study: str = ""
    gender: str = ""
    hostel: Optional[HostelAssignment] = None


class Approver(BaseModel):
    """Acting approver as supplied by the identity provider."""

    id: str
    role: str
    name: Optional[str] = None
    email: Optional[str] = None
    school: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or "Unknown User"


class LeaveRequest(BaseModel):
    """A time-bounded exit permission and its approval state."""

    id: Optional[str] = None
    requester_id: str

    # Requester snapshot taken at creation
    requester_name: str
    prn: Optional[str] = None
    branch: str = "Unknown"
    school: str = ""
    programme: str = ""
    year_of_study: str = ""
    gender: str = ""
    hostel: Optional[HostelAssignment] = None
    student_contact: ContactDetails = Field(default_factory=ContactDetails)
    parent_details: ParentDetails = Field(default_factory=ParentDetails)

    # Leave details
    leave_type: LeaveType
    leave_category: LeaveCategory = LeaveCategory.REGULAR
    purpose: str
    destination: str
    from_date: datetime
    to_date: datetime
    out_time: str
    in_time: str

    # Approval state
    approval_flow: List[str]
    approval_records: Dict[str, ApprovalRecord]
    overall_status: OverallStatus = OverallStatus.PENDING
    is_partner_institution: bool = False

    # Usage tracking
    checked_out: bool = False
    check_out_time: Optional[datetime] = None
    check_out_by: Optional[str] = None
    check_out_staff_name: Optional[str] = None
    is_used: bool = False
    check_in_time: Optional[datetime] = None
    check_in_by: Optional[str] = None
    check_in_staff_name: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.overall_status in (OverallStatus.APPROVED, OverallStatus.REJECTED)
