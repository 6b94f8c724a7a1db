"""Guardian (parent) notification channel."""

from .notifier import (
    GuardianDispatcher,
    GuardianEvent,
    GuardianNotifier,
    LoggingGuardianNotifier,
    WebhookGuardianNotifier,
    create_notifier,
)

__all__ = [
    "GuardianDispatcher",
    "GuardianEvent",
    "GuardianNotifier",
    "LoggingGuardianNotifier",
    "WebhookGuardianNotifier",
    "create_notifier",
]
