"""Tests for the leave approval state machine."""

from datetime import datetime, timezone

import pytest

from gatepass.core.approval.events import TransitionCause
from gatepass.core.approval.machine import ApprovalStateMachine
from gatepass.core.approval.states import (
    DECIDABLE,
    TERMINAL_STATUSES,
    compute_overall_status,
    is_terminal,
)
from gatepass.core.exceptions import InvalidStateError, ValidationError
from gatepass.core.models import ApprovalRecord, Approver, Decision, OverallStatus

from tests.factories import build_leave_request, decided

DECIDED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

WARDEN = Approver(id="warden-1", role="warden", name="Meera Iyer")
CAMPUS_ADMIN = Approver(id="ca-1", role="campus_admin", name="Vikram Shah")
OFFICE_STAFF = Approver(id="os-1", role="os", email="os@sithyd.siu.edu.in")


class TestApprovalStates:
    """Test status definitions."""

    def test_terminal_statuses(self):
        """Test approved and rejected are terminal."""
        assert TERMINAL_STATUSES == {OverallStatus.APPROVED, OverallStatus.REJECTED}
        assert is_terminal(OverallStatus.REJECTED)
        assert not is_terminal(OverallStatus.PENDING)

    def test_decidable(self):
        """Test approvers may only approve or reject."""
        assert DECIDABLE == {Decision.APPROVED, Decision.REJECTED}

    def test_record_timestamp_invariant(self):
        """Test timestamps exist exactly for non-pending records."""
        with pytest.raises(ValueError):
            ApprovalRecord(role="warden", decision=Decision.APPROVED)
        with pytest.raises(ValueError):
            ApprovalRecord(role="warden", timestamp=DECIDED_AT)

    def test_record_satisfaction(self):
        """Test approved and auto-approved records satisfy their role."""
        assert decided("warden").is_satisfied
        assert ApprovalRecord.auto_approved("os", "partner", DECIDED_AT).is_satisfied
        assert not ApprovalRecord.pending("warden").is_satisfied
        assert not decided("warden", Decision.REJECTED).is_satisfied


class TestComputeOverallStatus:
    """Test status derivation from records."""

    FLOW = ["warden", "campus_admin", "os"]

    def test_all_pending(self):
        """Test a fresh request is pending."""
        records = {role: ApprovalRecord.pending(role) for role in self.FLOW}
        assert compute_overall_status(self.FLOW, records) == OverallStatus.PENDING

    def test_partially_approved(self):
        """Test the request stays pending until every role approved."""
        records = {role: ApprovalRecord.pending(role) for role in self.FLOW}
        records["warden"] = decided("warden")
        assert compute_overall_status(self.FLOW, records) == OverallStatus.PENDING

    def test_all_satisfied(self):
        """Test approved and auto-approved records together approve."""
        records = {
            "warden": decided("warden"),
            "campus_admin": decided("campus_admin"),
            "os": ApprovalRecord.auto_approved("os", "partner", DECIDED_AT),
        }
        assert compute_overall_status(self.FLOW, records) == OverallStatus.APPROVED

    def test_any_rejection_wins(self):
        """Test one rejection rejects regardless of other records."""
        records = {
            "warden": decided("warden"),
            "campus_admin": decided("campus_admin", Decision.REJECTED),
            "os": ApprovalRecord.pending("os"),
        }
        assert compute_overall_status(self.FLOW, records) == OverallStatus.REJECTED

    def test_roles_outside_flow_ignored(self):
        """Test only flow roles must be satisfied."""
        records = {
            "warden": decided("warden"),
            "os": decided("os"),
            "campus_admin": ApprovalRecord.pending("campus_admin"),
        }
        assert compute_overall_status(["warden", "os"], records) == OverallStatus.APPROVED

    def test_missing_record_is_pending(self):
        """Test a flow role without a record keeps the request pending."""
        records = {"warden": decided("warden")}
        assert compute_overall_status(["warden", "os"], records) == OverallStatus.PENDING

    def test_idempotent(self):
        """Test recomputation gives the same answer."""
        records = {"warden": decided("warden"), "os": ApprovalRecord.pending("os")}
        first = compute_overall_status(["warden", "os"], records)
        assert compute_overall_status(["warden", "os"], records) == first

    def test_alias_keys_with_resolver(self, resolver):
        """Test legacy keys count for their canonical role."""
        records = {
            "warden": decided("warden"),
            "director": decided("campus_admin"),
            "ao": decided("os"),
        }
        status = compute_overall_status(["WARDEN", "director", "os"], records, resolver)
        assert status == OverallStatus.APPROVED

    def test_canonical_key_wins_over_alias(self, resolver):
        """Test a disagreeing alias key does not override the canonical record."""
        records = {
            "warden": decided("warden"),
            "director": decided("campus_admin"),
            "campus_admin": ApprovalRecord.pending("campus_admin"),
        }
        status = compute_overall_status(["warden", "campus_admin"], records, resolver)
        assert status == OverallStatus.PENDING


class TestApprovalStateMachine:
    """Test applying decisions."""

    def _machine(self, request, resolver=None):
        return ApprovalStateMachine(request, resolver=resolver, clock=lambda: DECIDED_AT)

    def test_initial_state(self):
        """Test a fresh request is pending with every flow role open."""
        machine = self._machine(build_leave_request())

        assert machine.state == OverallStatus.PENDING
        assert machine.pending_roles() == ["warden", "campus_admin", "os"]
        assert machine.can_decide("warden")
        assert not machine.is_terminal

    def test_role_approval_keeps_pending(self):
        """Test one approval of several records the decision."""
        request = build_leave_request()
        outcome = self._machine(request).decide("warden", "approved", WARDEN, "Fine by me")
        record = outcome.request.approval_records["warden"]

        assert outcome.status == OverallStatus.PENDING
        assert not outcome.changed_status
        assert record.decision == Decision.APPROVED
        assert record.timestamp == DECIDED_AT
        assert record.approver_id == "warden-1"
        assert record.approver_name == "Meera Iyer"
        assert record.comments == "Fine by me"
        assert [e.cause for e in outcome.events] == [TransitionCause.ROLE_APPROVED]

    def test_input_request_not_mutated(self):
        """Test decisions work on a copy."""
        request = build_leave_request()
        self._machine(request).decide("warden", Decision.APPROVED, WARDEN)

        assert request.approval_records["warden"].is_pending
        assert request.overall_status == OverallStatus.PENDING

    def test_last_approval_approves(self):
        """Test the final required approval approves the request."""
        request = build_leave_request(
            flow=["warden", "os"],
            records={"warden": decided("warden")},
        )
        outcome = self._machine(request).decide("os", "approved", OFFICE_STAFF)

        assert outcome.status == OverallStatus.APPROVED
        assert outcome.changed_status
        assert outcome.request.overall_status == OverallStatus.APPROVED
        assert outcome.request.approval_records["os"].approver_name == "os@sithyd.siu.edu.in"
        assert outcome.events[0].cause == TransitionCause.APPROVED
        assert outcome.events[0].from_status == "pending"

    def test_rejection_is_terminal(self):
        """Test a rejection ends the workflow."""
        machine = self._machine(build_leave_request())
        outcome = machine.decide("campus_admin", "rejected", CAMPUS_ADMIN, "Exams next week")

        assert outcome.status == OverallStatus.REJECTED
        assert outcome.events[0].cause == TransitionCause.REJECTED
        assert outcome.events[0].role == "campus_admin"
        assert machine.is_terminal
        assert not machine.can_decide("warden")

        with pytest.raises(InvalidStateError, match="already rejected"):
            machine.decide("warden", "approved", WARDEN)

    def test_role_decides_once(self):
        """Test a role cannot change its decision."""
        machine = self._machine(build_leave_request())
        machine.decide("warden", "approved", WARDEN)

        with pytest.raises(InvalidStateError, match="already approved"):
            machine.decide("warden", "rejected", WARDEN)

    def test_auto_approved_record_not_decidable(self):
        """Test pre-resolved records cannot be decided."""
        request = build_leave_request(
            records={"os": ApprovalRecord.auto_approved("os", "partner", DECIDED_AT)},
        )
        with pytest.raises(InvalidStateError, match="auto_approved"):
            self._machine(request).decide("os", "approved", OFFICE_STAFF)

    @pytest.mark.parametrize("decision", ["pending", "auto_approved", "maybe"])
    def test_invalid_decisions(self, decision):
        """Test only approved and rejected are accepted."""
        with pytest.raises(ValidationError, match="approved or rejected"):
            self._machine(build_leave_request()).decide("warden", decision, WARDEN)

    def test_legacy_role_name(self, resolver):
        """Test legacy role names decide for their canonical record."""
        outcome = self._machine(build_leave_request(), resolver).decide(
            "director", "approved", CAMPUS_ADMIN
        )

        assert outcome.role == "campus_admin"
        assert outcome.request.approval_records["campus_admin"].decision == Decision.APPROVED
        assert "director" not in outcome.request.approval_records

    def test_missing_record(self):
        """Test roles without a record cannot decide."""
        with pytest.raises(InvalidStateError, match="no approval record"):
            self._machine(build_leave_request()).decide("staff", "approved", WARDEN)

    def test_event_payload(self):
        """Test transition events carry the notification snapshot."""
        outcome = self._machine(build_leave_request()).decide("warden", "approved", WARDEN)
        event = outcome.events[0]

        assert event.request_id == "req-1"
        assert event.dedup_key == "req-1:role_approved:warden"
        assert event.payload["requester_id"] == "student-1"
        assert event.payload["pending_roles"] == ["campus_admin", "os"]
        assert event.occurred_at == DECIDED_AT
