"""Domain events emitted on leave request transitions.

The engine publishes one TransitionEvent per actual transition after the
transition has been persisted. Consumers deduplicate on `dedup_key`, so a
retried publication never results in a second notification.

An event the broker refuses is parked in the `event_outbox` kind of the
document store and re-sent by CeleryEventPublisher.republish_failed(), so a
committed transition is published at least once.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from gatepass.db.store import DocumentStore

from ..models import LeaveRequest, utcnow

logger = logging.getLogger(__name__)

EVENT_OUTBOX = "event_outbox"


class TransitionCause(str, Enum):
    """What caused a transition."""

    CREATED = "created"              # Request submitted
    ROLE_APPROVED = "role_approved"  # One role approved, request still pending
    APPROVED = "approved"            # Every required role satisfied
    REJECTED = "rejected"            # A role rejected
    CHECKED_OUT = "checked_out"      # Requester left through the gate
    CHECKED_IN = "checked_in"        # Requester returned, request completed


@dataclass(frozen=True)
class TransitionEvent:
    """A persisted transition of one leave request."""

    request_id: str
    cause: TransitionCause
    to_status: str
    from_status: Optional[str] = None
    role: Optional[str] = None
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    comments: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def dedup_key(self) -> str:
        """Identity of the transition, shared by every re-delivery."""
        if self.role and self.cause in (TransitionCause.ROLE_APPROVED, TransitionCause.REJECTED):
            return f"{self.request_id}:{self.cause.value}:{self.role}"
        return f"{self.request_id}:{self.cause.value}"

    @classmethod
    def for_request(
        cls,
        request: LeaveRequest,
        cause: TransitionCause,
        *,
        from_status: Optional[str] = None,
        role: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        comments: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> "TransitionEvent":
        """Build an event carrying the snapshot notification consumers need."""
        if request.id is None:
            raise ValueError("Cannot emit an event for an unsaved request")

        hostel = request.hostel
        payload = {
            "requester_id": request.requester_id,
            "requester_name": request.requester_name,
            "leave_type": request.leave_type.value,
            "approval_flow": list(request.approval_flow),
            "school": request.school,
            "hostel_name": hostel.name if hostel else None,
            "hostel_warden_id": hostel.warden_id if hostel else None,
            "hostel_warden_name": hostel.warden_name if hostel else None,
            "is_partner_institution": request.is_partner_institution,
            "pending_roles": [
                role_name
                for role_name, record in request.approval_records.items()
                if record.is_pending
            ],
        }
        return cls(
            request_id=request.id,
            cause=cause,
            to_status=request.overall_status.value,
            from_status=from_status,
            role=role,
            actor_id=actor_id,
            actor_name=actor_name,
            comments=comments,
            payload=payload,
            occurred_at=occurred_at or utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable form for message queues."""
        return {
            "event_id": self.event_id,
            "request_id": self.request_id,
            "cause": self.cause.value,
            "to_status": self.to_status,
            "from_status": self.from_status,
            "role": self.role,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "comments": self.comments,
            "payload": dict(self.payload),
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransitionEvent":
        return cls(
            request_id=data["request_id"],
            cause=TransitionCause(data["cause"]),
            to_status=data["to_status"],
            from_status=data.get("from_status"),
            role=data.get("role"),
            actor_id=data.get("actor_id"),
            actor_name=data.get("actor_name"),
            comments=data.get("comments"),
            payload=dict(data.get("payload") or {}),
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
            event_id=data.get("event_id") or uuid.uuid4().hex,
        )


class EventPublisher(ABC):
    """Hands transition events to the notification side."""

    @abstractmethod
    def publish(self, event: TransitionEvent) -> None:
        """Publish one event. Must not raise for delivery problems downstream."""


class InMemoryEventQueue(EventPublisher):
    """Thread-safe in-process queue, drained by a local worker or by tests."""

    def __init__(self):
        self._events: Deque[TransitionEvent] = deque()
        self._lock = threading.Lock()

    def publish(self, event: TransitionEvent) -> None:
        with self._lock:
            self._events.append(event)

    def drain(self) -> List[TransitionEvent]:
        """Remove and return every queued event in publication order."""
        with self._lock:
            events = list(self._events)
            self._events.clear()
        return events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class CeleryEventPublisher(EventPublisher):
    """
    Queues events for the Celery notification worker.

    With a store, events the broker refuses are written to the outbox and
    kept there until republish_failed() gets them queued.
    """

    def __init__(
        self,
        send: Optional[Callable[[Dict[str, Any]], Any]] = None,
        store: Optional[DocumentStore] = None,
    ):
        self._send = send
        self.store = store

    def publish(self, event: TransitionEvent) -> None:
        try:
            self._sender()(event.to_dict())
        except Exception as e:
            logger.error(f"Failed to queue {event.cause.value} event for {event.request_id}: {e}")
            self._park(event, e)

    def republish_failed(self) -> int:
        """Re-send every parked event; returns how many were queued."""
        if self.store is None:
            return 0

        send = self._sender()
        queued = 0
        for doc in self.store.query(EVENT_OUTBOX, order=[("failed_at", "asc")]):
            try:
                send(doc.data["event"])
            except Exception as e:
                logger.warning(f"Outbox event {doc.id} still cannot be queued: {e}")
                break
            self.store.delete(EVENT_OUTBOX, doc.id)
            queued += 1

        if queued:
            logger.info(f"Republished {queued} parked event(s)")
        return queued

    def _sender(self) -> Callable[[Dict[str, Any]], Any]:
        if self._send is None:
            from gatepass.workers.notification_tasks import deliver_transition_event
            self._send = deliver_transition_event.delay
        return self._send

    def _park(self, event: TransitionEvent, error: Exception) -> None:
        if self.store is None:
            # Nowhere to keep it; the transition itself is already persisted
            logger.warning(f"No outbox configured, dropping event {event.dedup_key}")
            return
        try:
            self.store.set(
                EVENT_OUTBOX,
                event.event_id,
                {
                    "dedup_key": event.dedup_key,
                    "event": event.to_dict(),
                    "error": str(error),
                    "failed_at": utcnow().isoformat(),
                },
            )
        except Exception:
            logger.exception(f"Could not park event {event.dedup_key} in the outbox")
