"""Notification delivery for leave request transitions.

Handles:
- Inbox notifications stored as `notifications` documents
- Fan-out of new requests to the approvers still pending on them
- Requester notifications on approvals, rejection and check-in
- At-most-once delivery to each recipient of a transition through marker
  documents

Push delivery to devices is left to the dispatcher implementation; the
store-backed dispatcher only records inbox entries.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from jinja2 import Template

from gatepass.core.approval.events import InMemoryEventQueue, TransitionCause, TransitionEvent
from gatepass.core.approval.guard import same_text
from gatepass.core.exceptions import AuthorizationError, NotFoundError
from gatepass.core.models import utcnow
from gatepass.core.roles import Role, RoleAliasResolver, display_name
from gatepass.db.store import DocumentStore

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"
NOTIFICATION_LOG = "notification_log"
USERS = "users"

INBOX_LIMIT = 50

# (target, dispatch call) for one recipient or role broadcast
Delivery = Tuple[str, Callable[[], Any]]


# Message templates
MESSAGE_TEMPLATES = {
    TransitionCause.CREATED: {
        "title": "New {{ leave_label | title }} Request",
        "body": "New {{ leave_label }} request from {{ requester_name }}",
    },
    TransitionCause.ROLE_APPROVED: {
        "title": "Leave Request Update",
        "body": "{{ role_name }} has approved your leave request.",
    },
    TransitionCause.APPROVED: {
        "title": "Leave Request Approved",
        "body": "Your leave request has been approved by all required approvers!",
    },
    TransitionCause.REJECTED: {
        "title": "Leave Request Rejected",
        "body": (
            "Your leave request was rejected by {{ role_name }}"
            "{% if comments %}: {{ comments }}{% endif %}"
        ),
    },
    TransitionCause.CHECKED_IN: {
        "title": "Check-in Complete",
        "body": "Welcome back, {{ requester_name }}. Your leave request is now completed.",
    },
}

_COMPILED: Dict[Tuple[TransitionCause, str], Template] = {}


def render(cause: TransitionCause, context: Dict[str, Any]) -> Tuple[str, str]:
    """Render the title and body of a notification."""
    template = MESSAGE_TEMPLATES[cause]
    rendered = []
    for part in ("title", "body"):
        key = (cause, part)
        if key not in _COMPILED:
            _COMPILED[key] = Template(template[part])
        rendered.append(_COMPILED[key].render(**context).strip())
    return rendered[0], rendered[1]


def delivery_marker(event: TransitionEvent, target: str) -> str:
    """Marker id of one delivery of a transition."""
    return f"{event.dedup_key}:{target}"


class NotificationDispatcher(ABC):
    """Delivers notifications to users and to every member of a role."""

    @abstractmethod
    def notify_user(self, user_id: str, title: str, body: str) -> Optional[str]:
        """Notify one user; returns the notification id."""

    @abstractmethod
    def notify_role(self, role: str, title: str, body: str) -> List[str]:
        """Notify every user holding `role` (or one of its aliases)."""


class StoreNotificationDispatcher(NotificationDispatcher):
    """Stores notifications as inbox documents."""

    def __init__(
        self,
        store: DocumentStore,
        resolver: RoleAliasResolver,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.resolver = resolver
        self.clock = clock

    def notify_user(self, user_id: str, title: str, body: str) -> Optional[str]:
        doc = self.store.add(
            NOTIFICATIONS,
            {
                "user_id": user_id,
                "title": title,
                "body": body,
                "is_read": False,
                "created_at": self.clock().isoformat(),
            },
        )
        logger.debug(f"Notification {doc.id} stored for user {user_id}")
        return doc.id

    def notify_role(self, role: str, title: str, body: str) -> List[str]:
        notification_ids = []
        for user_id in self.role_members(role):
            notification_id = self.notify_user(user_id, title, body)
            if notification_id:
                notification_ids.append(notification_id)
        return notification_ids

    def role_members(self, role: str) -> List[str]:
        """IDs of users whose stored role is `role` or one of its aliases."""
        canonical = self.resolver.canonicalize(role)
        members = []
        for doc in self.store.query(USERS):
            stored_role = doc.data.get("role")
            if isinstance(stored_role, str) and self.resolver.table.lookup(stored_role) == canonical:
                members.append(doc.id)
        return members

    def list_for_user(self, user_id: str, limit: int = INBOX_LIMIT) -> List[Dict[str, Any]]:
        """A user's most recent notifications, newest first."""
        docs = self.store.query(
            NOTIFICATIONS,
            [("user_id", "==", user_id)],
            order=[("created_at", "desc")],
            limit=limit,
        )
        return [{"id": doc.id, **doc.data} for doc in docs]

    def mark_as_read(self, notification_id: str, user_id: str) -> None:
        """
        Mark one notification as read.

        Raises:
            NotFoundError: Unknown notification
            AuthorizationError: Notification belongs to another user
        """
        doc = self.store.get(NOTIFICATIONS, notification_id)
        if doc is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if doc.data.get("user_id") != user_id:
            raise AuthorizationError("Unauthorized to modify this notification")
        self.store.update(
            NOTIFICATIONS,
            notification_id,
            {"is_read": True, "updated_at": self.clock().isoformat()},
        )


class NotificationWorker:
    """
    Consumes transition events and notifies the people concerned.

    Each delivery of a transition has its own `notification_log` marker,
    keyed by the transition's dedup key and the delivery target (a user or
    a role broadcast). The worker claims a marker before dispatching to its
    target; a redelivered transition finds the markers and skips those
    targets. A failed dispatch releases only its own marker, so a retry
    reaches the targets that were missed and nobody twice.
    """

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        resolver: RoleAliasResolver,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.resolver = resolver
        self.clock = clock

    def handle(self, event: TransitionEvent) -> bool:
        """
        Notify for one transition.

        Returns:
            True if any notification was dispatched, False for duplicates and
            transitions nobody is notified about
        """
        deliveries = self._plan(event)
        if not deliveries:
            return False

        dispatched = 0
        for target, deliver in deliveries:
            marker = delivery_marker(event, target)
            if not self._claim(event, marker, target):
                logger.debug(f"Skipping duplicate delivery {marker}")
                continue
            try:
                deliver()
            except Exception:
                logger.exception(f"Dispatch failed for {marker}, releasing marker")
                self.store.delete(NOTIFICATION_LOG, marker)
                raise
            dispatched += 1

        if not dispatched:
            logger.info(f"Skipping duplicate delivery of {event.dedup_key}")
            return False

        logger.info(f"Dispatched {dispatched} notification(s) for {event.dedup_key}")
        return True

    def drain(self, queue: InMemoryEventQueue) -> int:
        """Handle every queued event; returns how many were dispatched."""
        return sum(1 for event in queue.drain() if self.handle(event))

    def _claim(self, event: TransitionEvent, marker: str, target: str) -> bool:
        return self.store.create_if_absent(
            NOTIFICATION_LOG,
            marker,
            {
                "dedup_key": event.dedup_key,
                "target": target,
                "request_id": event.request_id,
                "cause": event.cause.value,
                "role": event.role,
                "event_id": event.event_id,
                "created_at": self.clock().isoformat(),
            },
        )

    def _plan(self, event: TransitionEvent) -> List[Delivery]:
        if event.cause not in MESSAGE_TEMPLATES:
            return []

        payload = event.payload
        context = {
            "requester_name": payload.get("requester_name") or "A student",
            "leave_label": str(payload.get("leave_type") or "leave").replace("_", " "),
            "role_name": display_name(event.role) if event.role else "A staff member",
            "comments": event.comments,
        }
        title, body = render(event.cause, context)

        if event.cause == TransitionCause.CREATED:
            return self._plan_approver_fanout(payload, title, body)

        requester_id = payload.get("requester_id")
        if not requester_id:
            logger.warning(f"No requester on {event.dedup_key}, nobody to notify")
            return []
        return [self._to_user(requester_id, title, body)]

    def _plan_approver_fanout(
        self, payload: Dict[str, Any], title: str, body: str
    ) -> List[Delivery]:
        pending = set(payload.get("pending_roles") or [])
        deliveries: List[Delivery] = []

        if Role.WARDEN.value in pending:
            warden_id = self._find_warden(payload)
            if warden_id:
                deliveries.append(self._to_user(warden_id, title, body))
            else:
                deliveries.append(self._to_role(Role.WARDEN.value, title, body))

        if Role.CAMPUS_ADMIN.value in pending:
            deliveries.append(self._to_role(Role.CAMPUS_ADMIN.value, title, body))

        if Role.OS.value in pending:
            office_staff = self._find_school_office_staff(payload.get("school"))
            if office_staff:
                deliveries.extend(self._to_user(user_id, title, body) for user_id in office_staff)
            else:
                deliveries.append(self._to_role(Role.OS.value, title, body))

        return deliveries

    def _to_user(self, user_id: str, title: str, body: str) -> Delivery:
        return f"user:{user_id}", lambda: self.dispatcher.notify_user(user_id, title, body)

    def _to_role(self, role: str, title: str, body: str) -> Delivery:
        return f"role:{role}", lambda: self.dispatcher.notify_role(role, title, body)

    def _users_with_role(self, role: str) -> List[Tuple[str, Dict[str, Any]]]:
        users = []
        for doc in self.store.query(USERS):
            stored_role = doc.data.get("role")
            if isinstance(stored_role, str) and self.resolver.table.lookup(stored_role) == role:
                users.append((doc.id, doc.data))
        return users

    def _find_warden(self, payload: Dict[str, Any]) -> Optional[str]:
        warden_id = payload.get("hostel_warden_id")
        warden_name = payload.get("hostel_warden_name")
        for user_id, data in self._users_with_role(Role.WARDEN.value):
            if warden_id and user_id == warden_id:
                return user_id
            if not warden_id and same_text(data.get("name"), warden_name):
                return user_id
        return None

    def _find_school_office_staff(self, school: Optional[str]) -> List[str]:
        if not school:
            return []
        return [
            user_id
            for user_id, data in self._users_with_role(Role.OS.value)
            if same_text(data.get("school"), school)
        ]
