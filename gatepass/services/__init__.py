"""Services built around the workflow engine."""

from .notifications import (
    NotificationDispatcher,
    NotificationWorker,
    StoreNotificationDispatcher,
)

__all__ = [
    "NotificationDispatcher",
    "NotificationWorker",
    "StoreNotificationDispatcher",
]
