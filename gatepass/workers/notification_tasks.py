"""Celery tasks for transition notifications.

The leave request service queues one task per persisted transition (see
CeleryEventPublisher), and republish_parked_events periodically re-sends
events parked in the outbox. Delivery is at-least-once; the NotificationWorker's
marker documents make repeated deliveries harmless.
"""

from functools import lru_cache
from typing import Any, Dict
import logging

from celery import Celery, shared_task

from gatepass.common.config import load_workflow_config
from gatepass.common.logger import setup_logger
from gatepass.core.approval.events import CeleryEventPublisher, TransitionEvent
from gatepass.core.config import get_settings
from gatepass.core.exceptions import TransientStoreError
from gatepass.core.roles import RoleAliasResolver
from gatepass.services.notifications import NotificationWorker, StoreNotificationDispatcher

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Celery
celery_app = Celery(
    'gatepass',
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_routes={
        'gatepass.workers.notification_tasks.deliver_transition_event': {'queue': 'notifications'},
        'gatepass.workers.notification_tasks.republish_parked_events': {'queue': 'notifications'},
    },
    task_default_queue='default',
    beat_schedule={
        'republish-parked-events': {
            'task': 'gatepass.workers.notification_tasks.republish_parked_events',
            'schedule': 300.0,
        },
    },
)


@lru_cache
def get_worker() -> NotificationWorker:
    """Notification worker wired to the configured SQL document store."""
    from gatepass.db.store import SqlDocumentStore

    setup_logger("gatepass", log_dir=settings.log_dir, level=settings.log_level)

    config = load_workflow_config(settings.workflow_config_path)
    resolver = RoleAliasResolver(config.alias_table())
    store = SqlDocumentStore()
    return NotificationWorker(store, StoreNotificationDispatcher(store, resolver), resolver)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def deliver_transition_event(self, event_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Notify the people concerned by one leave request transition.

    Args:
        event_data: TransitionEvent.to_dict() output

    Returns:
        Dedup key of the transition and whether notifications were sent
    """
    event = TransitionEvent.from_dict(event_data)
    try:
        dispatched = get_worker().handle(event)
    except TransientStoreError as e:
        logger.warning(f"Store unavailable while notifying {event.dedup_key}, retrying")
        raise self.retry(exc=e)

    return {"dedup_key": event.dedup_key, "dispatched": dispatched}


@shared_task
def republish_parked_events() -> Dict[str, Any]:
    """Queue again the transition events the broker refused earlier."""
    publisher = CeleryEventPublisher(send=deliver_transition_event.delay, store=get_worker().store)
    return {"republished": publisher.republish_failed()}
