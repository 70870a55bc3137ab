"""Tests for approval authorization checks."""

import pytest

from gatepass.core.approval.guard import AuthorizationGuard, same_text
from gatepass.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    UnknownRoleError,
)
from gatepass.core.models import ApprovalRecord, Approver, Decision, HostelAssignment

from tests.factories import SCMS_SCHOOL, SIT_SCHOOL, build_leave_request, decided

BLOCK_A = HostelAssignment(name="Block A", warden_id="warden-1", warden_name="Meera Iyer")


@pytest.fixture
def guard(resolver):
    return AuthorizationGuard(resolver)


def _approver(role, **fields):
    values = {"id": f"{role}-1", "role": role, "name": f"{role.title()} One"}
    values.update(fields)
    return Approver(**values)


class TestSameText:
    """Test the lenient text comparison used for names and schools."""

    def test_case_and_spacing_ignored(self):
        assert same_text("Symbiosis  Institute ", "symbiosis institute")

    def test_missing_values_never_match(self):
        assert not same_text(None, "x")
        assert not same_text("", "")


class TestCheckOrder:
    """Test the order in which checks are applied."""

    def test_missing_request(self, guard):
        """Test a missing request is reported first."""
        with pytest.raises(NotFoundError, match="req-9"):
            guard.authorize(_approver("warden"), None, request_id="req-9")

    def test_terminal_before_role(self, guard):
        """Test a decided request is reported before any role check."""
        request = build_leave_request(records={"warden": decided("warden", Decision.REJECTED)})
        with pytest.raises(InvalidStateError, match="already rejected"):
            guard.authorize(_approver("staff"), request)

    def test_unknown_role(self, guard):
        """Test unknown claimed roles are validation errors."""
        with pytest.raises(UnknownRoleError):
            guard.authorize(_approver("principal"), build_leave_request())

    def test_role_not_in_flow(self, guard):
        """Test roles outside the flow are rejected."""
        request = build_leave_request(flow=["warden", "os"])
        with pytest.raises(AuthorizationError, match="not authorized"):
            guard.authorize(_approver("campus_admin"), request)

    def test_non_approver_role(self, guard):
        """Test non-approver roles are never in a flow."""
        with pytest.raises(AuthorizationError):
            guard.authorize(_approver("student"), build_leave_request())


class TestRoleChecks:
    """Test role-specific scope rules."""

    def test_legacy_alias_authorized(self, guard):
        """Test a director decides for the campus admin step."""
        assert guard.authorize(_approver("director"), build_leave_request()) == "campus_admin"
        assert guard.authorize(_approver("AO", school=SIT_SCHOOL), build_leave_request()) == "os"

    def test_assigned_warden_by_id(self, guard):
        """Test the warden named by id may decide."""
        request = build_leave_request(hostel=BLOCK_A)
        assert guard.authorize(_approver("warden", id="warden-1"), request) == "warden"

    def test_other_warden_rejected(self, guard):
        """Test another warden may not decide even with a matching name."""
        request = build_leave_request(hostel=BLOCK_A)
        with pytest.raises(AuthorizationError, match="assigned warden"):
            guard.authorize(_approver("warden", id="warden-2", name="Meera Iyer"), request)

    def test_warden_by_name(self, guard):
        """Test wardens are matched by name when no id is on record."""
        hostel = HostelAssignment(name="Block B", warden_name="Meera  IYER")
        request = build_leave_request(hostel=hostel)

        assert guard.authorize(_approver("warden", name="meera iyer"), request) == "warden"
        with pytest.raises(AuthorizationError):
            guard.authorize(_approver("warden", name="Ravi Kumar"), request)

    def test_no_hostel_any_warden(self, guard):
        """Test requesters without a residence unit accept any warden."""
        assert guard.authorize(_approver("warden"), build_leave_request()) == "warden"
        request = build_leave_request(hostel=HostelAssignment(name="Day scholar"))
        assert guard.authorize(_approver("warden"), request) == "warden"

    def test_office_staff_school_match(self, guard):
        """Test office staff only decide for their own school."""
        request = build_leave_request(school=SIT_SCHOOL)

        staff = _approver("os", school="symbiosis institute of technology, hyderabad")
        assert guard.authorize(staff, request) == "os"
        with pytest.raises(AuthorizationError, match="office staff"):
            guard.authorize(_approver("os", school=SCMS_SCHOOL), request)
        with pytest.raises(AuthorizationError):
            guard.authorize(_approver("os"), request)

    def test_office_staff_without_school_on_request(self, guard):
        """Test requests without a school accept any office staff."""
        request = build_leave_request(school="")
        assert guard.authorize(_approver("os"), request) == "os"

    def test_office_staff_auto_approved(self, guard):
        """Test office staff cannot decide an auto-approved step."""
        request = build_leave_request(
            school=SCMS_SCHOOL,
            records={"os": ApprovalRecord.auto_approved("os", "Partner institution")},
        )
        with pytest.raises(AuthorizationError, match="auto-approved"):
            guard.authorize(_approver("os", school=SCMS_SCHOOL), request)

    def test_acting_for_other_role_rejected(self, guard):
        """Test non-admins may only decide for their own role."""
        with pytest.raises(AuthorizationError, match="own role"):
            guard.authorize(_approver("warden"), build_leave_request(), acting_for="os")

    def test_acting_for_own_alias_allowed(self, guard):
        """Test naming one's own role through an alias is accepted."""
        request = build_leave_request()
        assert guard.authorize(_approver("campus_admin"), request, acting_for="director") == "campus_admin"


class TestAdmin:
    """Test admin overrides."""

    def test_first_pending_role(self, guard):
        """Test admins decide for the first pending role by default."""
        request = build_leave_request(records={"warden": decided("warden")})
        assert guard.authorize(_approver("admin"), request) == "campus_admin"

    def test_acting_for(self, guard):
        """Test admins may pick the role they decide for."""
        assert guard.authorize(_approver("admin"), build_leave_request(), acting_for="ao") == "os"

    def test_acting_for_non_approver(self, guard):
        """Test admins cannot act for a role without a record."""
        with pytest.raises(AuthorizationError, match="does not approve"):
            guard.authorize(_approver("admin"), build_leave_request(), acting_for="staff")

    def test_cannot_override_auto_approved(self, guard):
        """Test admins cannot decide over an auto-approved record."""
        request = build_leave_request(flow=["warden", "os"])
        with pytest.raises(AuthorizationError, match="auto-approved"):
            guard.authorize(_approver("admin"), request, acting_for="campus_admin")

    def test_admin_skips_scope(self, guard):
        """Test admins are not bound to a hostel or school."""
        request = build_leave_request(hostel=BLOCK_A, school=SCMS_SCHOOL)
        assert guard.authorize(_approver("admin"), request) == "warden"


class TestScope:
    """Test listing scope helpers."""

    def test_in_scope_without_approver(self, guard):
        assert guard.in_scope("warden", None, build_leave_request(hostel=BLOCK_A))

    def test_in_scope_by_role(self, guard):
        """Test scope follows the role's rule."""
        request = build_leave_request(hostel=BLOCK_A, school=SIT_SCHOOL)

        assert guard.in_scope("warden", _approver("warden", id="warden-1"), request)
        assert not guard.in_scope("warden", _approver("warden", id="warden-2"), request)
        assert guard.in_scope("ao", _approver("os", school=SIT_SCHOOL), request)
        assert not guard.in_scope("os", _approver("os", school=SCMS_SCHOOL), request)
        assert guard.in_scope("campus_admin", _approver("campus_admin"), request)

    def test_supervises(self):
        """Test hostel supervision needs a hostel on record."""
        assert not AuthorizationGuard.supervises(_approver("warden"), build_leave_request())
        request = build_leave_request(hostel=BLOCK_A)
        assert AuthorizationGuard.supervises(_approver("warden", id="warden-1"), request)

    def test_is_authorized(self, guard):
        """Test the non-raising variant."""
        request = build_leave_request(flow=["warden", "os"])
        assert guard.is_authorized(_approver("warden"), request)
        assert not guard.is_authorized(_approver("campus_admin"), request)
        assert not guard.is_authorized(_approver("warden"), None)

    def test_is_authorized_unknown_role(self, guard):
        """Test an unrecognised role is a refusal, not an error."""
        request = build_leave_request(flow=["warden", "os"])
        assert not guard.is_authorized(_approver("janitor"), request)
        assert not guard.is_authorized(_approver("warden"), request, acting_for="janitor")
