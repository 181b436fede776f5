"""
Notifier

DESIGN DECISION: Every user-visible outcome goes through one place.
This provides:
1. A structured log line for everything the user was told
2. One seam for the UI to receive toasts and banners
3. Test code can assert on exactly what the user saw

The notifier:
- Always logs locally through structlog
- Fans out to any number of sinks (UI inbox, tests)
- Never lets a failing sink break the operation that produced the message
"""

from collections import deque
from typing import Callable, Optional

import structlog

from ledesc.models.notification import Notification, NotificationSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


NotificationSink = Callable[[Notification], None]


def get_logger(name: str):
    """Get a structlog logger bound to a component name."""
    return structlog.get_logger(name)


class NotificationInbox:
    """
    Sink that keeps notifications until the UI drains them.

    Persistent notifications stay in `banners` until dismissed;
    the rest are handed out once by drain().
    """

    def __init__(self, maxlen: int = 100):
        self._pending: deque[Notification] = deque(maxlen=maxlen)
        self._banners: list[Notification] = []
        self.history: list[Notification] = []

    def __call__(self, notification: Notification) -> None:
        self.history.append(notification)
        if notification.persistent:
            self._banners.append(notification)
        else:
            self._pending.append(notification)

    def drain(self) -> list[Notification]:
        items = list(self._pending)
        self._pending.clear()
        return items

    @property
    def banners(self) -> list[Notification]:
        return list(self._banners)

    def dismiss(self, notification: Notification) -> None:
        self._banners = [
            n for n in self._banners
            if n.notification_id != notification.notification_id
        ]


class Notifier:
    """
    Central notification service.

    Publishes to:
    1. Structured local log (for debugging)
    2. Every registered sink (for the user)
    """

    def __init__(self, sinks: Optional[list[NotificationSink]] = None):
        self._sinks: list[NotificationSink] = list(sinks or [])
        self._logger = get_logger("ledesc.notifier")

    def add_sink(self, sink: NotificationSink) -> Callable[[], None]:
        """Register a sink. Returns a callable that removes it again."""
        self._sinks.append(sink)

        def remove() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return remove

    def notify(self, notification: Notification) -> Notification:
        """
        Publish a notification.

        Always logs locally, then delivers to every sink.
        """
        log_dict = notification.to_log_dict()

        if notification.severity == NotificationSeverity.ERROR:
            self._logger.error("notification", **log_dict)
        elif notification.severity == NotificationSeverity.WARNING:
            self._logger.warning("notification", **log_dict)
        else:
            self._logger.info("notification", **log_dict)

        for sink in list(self._sinks):
            try:
                sink(notification)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "notification_sink_failed",
                    error=str(e),
                    notification_id=str(notification.notification_id),
                )

        return notification
