"""Background services: server monitor, subscription scheduler, notifications."""

from .monitor import ServerMonitor, ServerStatus
from .notifier import LogNotifier, Notifier, WebhookNotifier, build_notifier
from .scheduler import RepeatingTask
from .subscriptions import (
    SubscriptionScheduler,
    SubscriptionStatus,
    SubscriptionView,
    SuspensionResult,
)

__all__ = [
    "ServerMonitor",
    "ServerStatus",
    "LogNotifier",
    "Notifier",
    "WebhookNotifier",
    "build_notifier",
    "RepeatingTask",
    "SubscriptionScheduler",
    "SubscriptionStatus",
    "SubscriptionView",
    "SuspensionResult",
]
