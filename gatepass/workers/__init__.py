"""Celery workers for gatepass."""

from gatepass.workers.notification_tasks import (
    celery_app,
    deliver_transition_event,
)

__all__ = [
    "celery_app",
    "deliver_transition_event",
]
