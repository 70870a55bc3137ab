"""Leave request service.

High-level API of the workflow engine. Ties together payload validation,
classification, flow resolution, authorization, the approval state machine
and usage tracking, and persists every change through the document store.

Every mutation is a read -> compute -> conditional write cycle against the
document version that was read. A concurrent writer makes the conditional
write fail; the cycle is then repeated on fresh data (re-running the guard)
up to `max_retries` times before TransientStoreError surfaces. Transition
events are published only after the write succeeded.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from gatepass.common.config import WorkflowConfig, load_workflow_config
from gatepass.core.config import Settings, get_settings
from gatepass.db.store import DocumentStore, StoredDocument

from ..exceptions import (
    AuthorizationError,
    GatepassError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from ..leave.classifier import classify
from ..leave.flows import ApprovalFlowResolver
from ..models import (
    Approver,
    ContactDetails,
    Decision,
    LeaveCategory,
    LeaveRequest,
    OverallStatus,
    ParentDetails,
    RequesterProfile,
    utcnow,
)
from ..roles import Role, RoleAliasResolver, is_approver_role
from ..schemas import DecisionRequest, LeaveRequestCreate, parse_payload
from .codec import LeaveRequestCodec
from .events import EventPublisher, InMemoryEventQueue, TransitionCause, TransitionEvent
from .guard import AuthorizationGuard, same_text
from .machine import ApprovalStateMachine
from .usage import UsageAck, UsageTracker, is_awaiting_exit, is_completed

logger = logging.getLogger(__name__)

LEAVE_REQUESTS = "leave_requests"
USERS = "users"

# (updated request, events to publish, value returned to the caller)
Mutation = Tuple[LeaveRequest, List[TransitionEvent], Any]


def _as_utc(value: datetime) -> datetime:
    # Naive times from older documents are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class DecisionResult:
    """Answer of a decide() call."""
    id: str
    status: OverallStatus


class LeaveRequestService:
    """
    Exposed operations of the leave approval workflow.

    Handles:
    - Creating leave requests
    - Approver decisions with authorization
    - Pending and history listings per approver role
    - Gate check-out and check-in
    - Requester, gate staff, hostel and school listings
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        resolver: RoleAliasResolver,
        flow_resolver: ApprovalFlowResolver,
        codec: Optional[LeaveRequestCodec] = None,
        publisher: Optional[EventPublisher] = None,
        usage_tracker: Optional[UsageTracker] = None,
        max_retries: int = 3,
        retry_backoff: float = 0.05,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the service.

        Args:
            store: Document store holding requests and user profiles
            resolver: Role alias resolver shared by every component
            flow_resolver: Approval flow resolver with its policies
            codec: Document codec (defaults to one mirroring legacy aliases)
            publisher: Receives transition events (defaults to an in-memory queue)
            usage_tracker: Gate usage tracker
            max_retries: Attempts of one read/compute/write cycle
            retry_backoff: Linear backoff step between attempts, in seconds
            clock: Source of timestamps
            sleep: Used for backoff
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.store = store
        self.resolver = resolver
        self.flow_resolver = flow_resolver
        self.codec = codec or LeaveRequestCodec(resolver, default_flow=flow_resolver.flow_for)
        self.publisher = publisher or InMemoryEventQueue()
        self.guard = AuthorizationGuard(resolver)
        self.usage_tracker = usage_tracker or UsageTracker(resolver, clock=clock)
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        *,
        workflow_config: Optional[WorkflowConfig] = None,
        publisher: Optional[EventPublisher] = None,
    ) -> "LeaveRequestService":
        """Build a fully wired service from settings and workflow configuration."""
        settings = settings or get_settings()
        config = workflow_config or load_workflow_config(settings.workflow_config_path)
        resolver = RoleAliasResolver(config.alias_table())
        flow_resolver = ApprovalFlowResolver.from_config(
            config,
            resolver,
            partner_auto_approval=settings.partner_auto_approval_enabled,
            warden_bypass=settings.warden_bypass_enabled,
        )

        return cls(
            store,
            resolver=resolver,
            flow_resolver=flow_resolver,
            codec=LeaveRequestCodec(
                resolver,
                mirror_legacy_aliases=settings.mirror_legacy_aliases,
                default_flow=flow_resolver.flow_for,
            ),
            publisher=publisher,
            usage_tracker=UsageTracker(
                resolver,
                require_check_out_before_check_in=settings.require_check_out_before_check_in,
            ),
            max_retries=settings.store_max_retries,
            retry_backoff=settings.store_retry_backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_request(
        self,
        requester_id: str,
        payload: Union[LeaveRequestCreate, Mapping[str, Any]],
    ) -> LeaveRequest:
        """
        Create a new leave request.

        Args:
            requester_id: ID of the requester's `users` document
            payload: LeaveRequestCreate or a raw camelCase/snake_case mapping

        Returns:
            The persisted request with its id

        Raises:
            ValidationError: Invalid payload
            NotFoundError: Unknown requester
        """
        data = parse_payload(LeaveRequestCreate, payload)
        requester = self._load_requester(requester_id)

        leave_type = classify(data.from_date, data.to_date, data.leave_category)
        now = self.clock()
        resolution = self.flow_resolver.resolve(leave_type, requester, now=now)

        request = LeaveRequest(
            requester_id=requester.id,
            requester_name=requester.name,
            prn=data.prn,
            branch=requester.branch,
            school=requester.school,
            programme=requester.programme,
            year_of_study=requester.year_of_study,
            gender=requester.gender,
            hostel=requester.hostel,
            student_contact=ContactDetails(
                name=requester.name,
                email=data.student_email,
                phone=data.student_phone,
            ),
            parent_details=ParentDetails(
                father=ContactDetails(
                    name=data.father_name, email=data.father_email, phone=data.father_phone
                ),
                mother=ContactDetails(
                    name=data.mother_name, email=data.mother_email, phone=data.mother_phone
                ),
            ),
            leave_type=leave_type,
            leave_category=data.leave_category or LeaveCategory.REGULAR,
            purpose=data.purpose,
            destination=data.destination,
            from_date=data.from_date,
            to_date=data.to_date,
            out_time=data.out_time,
            in_time=data.in_time,
            approval_flow=resolution.approval_flow,
            approval_records=resolution.approval_records,
            is_partner_institution=resolution.is_partner_institution,
            created_at=now,
            updated_at=now,
        )

        doc = self._with_retries(
            f"create leave request for {requester_id}",
            lambda: self.store.add(LEAVE_REQUESTS, self.codec.encode(request)),
        )
        request = request.model_copy(update={"id": doc.id})

        logger.info(
            f"Created {leave_type.value} leave request {doc.id} for requester {requester_id} "
            f"(flow: {', '.join(request.approval_flow)})"
        )
        self.publisher.publish(TransitionEvent.for_request(request, TransitionCause.CREATED, occurred_at=now))
        return request

    def decide(
        self,
        request_id: str,
        approver: Approver,
        decision: Union[Decision, str],
        comments: Optional[str] = None,
        acting_for: Optional[str] = None,
    ) -> DecisionResult:
        """
        Record an approver's decision.

        Args:
            request_id: Target request
            approver: Acting approver (role may be a legacy alias)
            decision: approved or rejected
            comments: Optional free text, at most 500 characters
            acting_for: Role an admin decides for

        Returns:
            DecisionResult with the new overall status

        Raises:
            ValidationError: Invalid decision or comments
            NotFoundError: Unknown request
            AuthorizationError: Approver may not decide for this request
            InvalidStateError: Request terminal or role already decided
            TransientStoreError: Contention did not resolve within the retries
        """
        body = parse_payload(DecisionRequest, {"decision": decision, "comments": comments})

        def apply(request: Optional[LeaveRequest]) -> Mutation:
            role = self.guard.authorize(
                approver, request, request_id=request_id, acting_for=acting_for
            )
            machine = ApprovalStateMachine(request, resolver=self.resolver, clock=self.clock)
            outcome = machine.decide(role, body.decision, approver, body.comments)
            logger.info(
                f"{approver.display_name} ({role}) {outcome.decision.value} leave request "
                f"{request_id}: {outcome.previous_status.value} -> {outcome.status.value}"
            )
            return outcome.request, outcome.events, DecisionResult(request_id, outcome.status)

        return self._mutate(request_id, apply)

    def check_out(self, request_id: str, actor: Approver) -> UsageAck:
        """Record the requester leaving through the gate."""

        def apply(request: Optional[LeaveRequest]) -> Mutation:
            request = self._require(request, request_id)
            updated, event, ack = self.usage_tracker.check_out(request, actor)
            logger.info(f"Leave request {request_id} checked out by {actor.display_name}")
            return updated, [event], ack

        return self._mutate(request_id, apply)

    def check_in(self, request_id: str, actor: Approver) -> UsageAck:
        """Record the requester returning; the request is then completed."""

        def apply(request: Optional[LeaveRequest]) -> Mutation:
            request = self._require(request, request_id)
            updated, event, ack = self.usage_tracker.check_in(request, actor)
            logger.info(f"Leave request {request_id} checked in by {actor.display_name}")
            return updated, [event], ack

        return self._mutate(request_id, apply)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> LeaveRequest:
        """Fetch one request, canonicalized."""
        doc = self._with_retries(
            f"read leave request {request_id}",
            lambda: self.store.get(LEAVE_REQUESTS, request_id),
        )
        if doc is None:
            raise NotFoundError(f"Leave request {request_id} not found")
        return self.codec.decode(doc.id, doc.data)

    def get_pending(self, role: str, scope: Optional[Approver] = None) -> List[LeaveRequest]:
        """
        Requests waiting for a decision of `role`, newest first.

        Args:
            role: Approver role (legacy aliases accepted); admin sees every
                pending request
            scope: Acting approver; restricts wardens to their hostels and
                office staff to their school
        """
        role = self._listing_role(role)
        scope = self._effective_scope(scope)

        results = []
        for request in self._load_requests():
            if request.overall_status != OverallStatus.PENDING:
                continue
            if role != Role.ADMIN.value:
                record = request.approval_records.get(role)
                if role not in request.approval_flow or record is None or not record.is_pending:
                    continue
                if not self.guard.in_scope(role, scope, request):
                    continue
            results.append(request)

        results.sort(key=lambda r: _as_utc(r.created_at), reverse=True)
        return results

    def get_history(self, role: str, scope: Optional[Approver] = None) -> List[LeaveRequest]:
        """
        Requests `role` has approved or rejected, most recent decision first.

        Admin sees every request with at least one manual decision.
        """
        role = self._listing_role(role)
        scope = self._effective_scope(scope)
        manual = (Decision.APPROVED, Decision.REJECTED)

        decided: List[Tuple[datetime, LeaveRequest]] = []
        for request in self._load_requests():
            if role == Role.ADMIN.value:
                stamps = [
                    record.timestamp
                    for record in request.approval_records.values()
                    if record.decision in manual
                ]
                if stamps:
                    decided.append((max(stamps), request))
                continue

            record = request.approval_records.get(role)
            if record is None or record.decision not in manual:
                continue
            if not self.guard.in_scope(role, scope, request):
                continue
            decided.append((record.timestamp, request))

        decided.sort(key=lambda item: _as_utc(item[0]), reverse=True)
        return [request for _, request in decided]

    def list_requester_requests(self, requester_id: str) -> List[LeaveRequest]:
        """A requester's own requests, newest first."""
        # Filtered after decoding so camelCase documents (`studentId`) match too
        requests = [r for r in self._load_requests() if r.requester_id == requester_id]
        requests.sort(key=lambda r: _as_utc(r.created_at), reverse=True)
        return requests

    def list_awaiting_exit(self) -> List[LeaveRequest]:
        """Approved, unused requests for the gate, earliest departure first."""
        requests = [r for r in self._load_requests() if is_awaiting_exit(r)]
        requests.sort(key=lambda r: _as_utc(r.from_date))
        return requests

    def list_completed(self) -> List[LeaveRequest]:
        """Requests checked out and back in, latest check-in first."""
        requests = [r for r in self._load_requests() if is_completed(r)]
        requests.sort(key=lambda r: _as_utc(r.check_in_time), reverse=True)
        return requests

    def list_for_hostel_warden(
        self,
        warden: Approver,
        status: Optional[Union[OverallStatus, str]] = None,
    ) -> List[LeaveRequest]:
        """Every request from the hostels supervised by `warden`, newest first."""
        status = self._status_filter(status)
        requests = [
            r
            for r in self._load_requests()
            if self.guard.supervises(warden, r) and (status is None or r.overall_status == status)
        ]
        requests.sort(key=lambda r: _as_utc(r.created_at), reverse=True)
        return requests

    def list_for_school(
        self,
        school: str,
        status: Optional[Union[OverallStatus, str]] = None,
    ) -> List[LeaveRequest]:
        """Every request from one school, newest first."""
        status = self._status_filter(status)
        requests = [
            r
            for r in self._load_requests()
            if same_text(r.school, school) and (status is None or r.overall_status == status)
        ]
        requests.sort(key=lambda r: _as_utc(r.created_at), reverse=True)
        return requests

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mutate(self, request_id: str, apply: Callable[[Optional[LeaveRequest]], Mutation]) -> Any:
        """Run one guarded read/compute/conditional-write cycle with retries."""
        last_error: Optional[TransientStoreError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                doc = self.store.get(LEAVE_REQUESTS, request_id)
            except TransientStoreError as e:
                last_error = e
                self._backoff(attempt, request_id, e)
                continue

            request = self.codec.decode(doc.id, doc.data) if doc is not None else None
            updated, events, result = apply(request)

            try:
                self.store.update_if_version(
                    LEAVE_REQUESTS, request_id, doc.version, self.codec.encode(updated)
                )
            except TransientStoreError as e:
                last_error = e
                self._backoff(attempt, request_id, e)
                continue

            for event in events:
                self.publisher.publish(event)
            return result

        logger.warning(
            f"Giving up on leave request {request_id} after {self.max_retries} attempts: {last_error}"
        )
        raise TransientStoreError(
            f"Leave request {request_id} could not be updated, please retry"
        ) from last_error

    def _with_retries(self, action: str, operation: Callable[[], Any]) -> Any:
        last_error: Optional[TransientStoreError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                return operation()
            except TransientStoreError as e:
                last_error = e
                self._backoff(attempt, action, e)
        raise TransientStoreError(f"Could not {action}, please retry") from last_error

    def _backoff(self, attempt: int, target: str, error: Exception) -> None:
        logger.info(f"Store conflict on {target} (attempt {attempt}/{self.max_retries}): {error}")
        if attempt < self.max_retries:
            self._sleep(self.retry_backoff * attempt)

    def _load_requester(self, requester_id: str) -> RequesterProfile:
        doc = self._with_retries(
            f"read requester {requester_id}",
            lambda: self.store.get(USERS, requester_id),
        )
        if doc is None:
            raise NotFoundError(f"Requester {requester_id} not found")
        try:
            return RequesterProfile(**{**doc.data, "id": doc.id})
        except PydanticValidationError as e:
            raise ValidationError(f"Requester profile {requester_id} is incomplete: {e}")

    def _load_requests(self) -> List[LeaveRequest]:
        docs: List[StoredDocument] = self._with_retries(
            "list leave requests",
            lambda: self.store.query(LEAVE_REQUESTS),
        )
        requests = []
        for doc in docs:
            try:
                requests.append(self.codec.decode(doc.id, doc.data))
            except GatepassError as e:
                logger.error(f"Skipping unreadable leave request {doc.id}: {e.message}")
        return requests

    @staticmethod
    def _require(request: Optional[LeaveRequest], request_id: str) -> LeaveRequest:
        if request is None:
            raise NotFoundError(f"Leave request {request_id} not found")
        return request

    def _listing_role(self, role: str) -> str:
        role = self.resolver.canonicalize(role)
        if role != Role.ADMIN.value and not is_approver_role(role):
            raise AuthorizationError(f"Role {role} does not approve leave requests")
        return role

    def _effective_scope(self, scope: Optional[Approver]) -> Optional[Approver]:
        if scope is not None and self.resolver.canonicalize(scope.role) == Role.ADMIN.value:
            return None
        return scope

    @staticmethod
    def _status_filter(status: Optional[Union[OverallStatus, str]]) -> Optional[OverallStatus]:
        if status is None:
            return None
        try:
            return OverallStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status filter: {status}")

