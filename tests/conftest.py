"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from gatepass.common.config import load_workflow_config
from gatepass.core.approval.events import InMemoryEventQueue
from gatepass.core.approval.service import LeaveRequestService
from gatepass.core.leave.flows import ApprovalFlowResolver
from gatepass.core.roles import RoleAliasResolver, RoleAliasTable
from gatepass.db.store import InMemoryDocumentStore
from gatepass.services.notifications import NotificationWorker, StoreNotificationDispatcher


class FakeClock:
    """Deterministic clock advancing one minute per reading."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(minutes=1)
        return self.current


@pytest.fixture
def resolver():
    """Role alias resolver over the default table."""
    return RoleAliasResolver(RoleAliasTable.default())


@pytest.fixture
def workflow_config():
    """Built-in workflow configuration."""
    return load_workflow_config()


@pytest.fixture
def flow_resolver(workflow_config, resolver):
    """Flow resolver with the partner institution policy enabled."""
    return ApprovalFlowResolver.from_config(workflow_config, resolver)


@pytest.fixture
def store():
    """Empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def queue():
    """In-memory transition event queue."""
    return InMemoryEventQueue()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(store, resolver, flow_resolver, queue, clock):
    """Leave request service over the in-memory store, without backoff sleeps."""
    return LeaveRequestService(
        store,
        resolver=resolver,
        flow_resolver=flow_resolver,
        publisher=queue,
        clock=clock,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def dispatcher(store, resolver):
    """Dispatcher storing inbox notifications in the test store."""
    return StoreNotificationDispatcher(store, resolver)


@pytest.fixture
def worker(store, dispatcher, resolver):
    """Notification worker over the test store."""
    return NotificationWorker(store, dispatcher, resolver)
