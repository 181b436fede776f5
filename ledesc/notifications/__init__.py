"""User notification and logging package."""

from ledesc.notifications.notifier import (
    NotificationInbox,
    NotificationSink,
    Notifier,
    get_logger,
)

__all__ = ["NotificationInbox", "NotificationSink", "Notifier", "get_logger"]
