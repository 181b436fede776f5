"""Live state ownership and the decisions derived from it."""

from ledesc.state.container import StateContainer, StateObserver
from ledesc.state.reminder import (
    ReminderDecision,
    crossed_alert_threshold,
    evaluate_end_of_month_reminder,
)

__all__ = [
    "ReminderDecision",
    "StateContainer",
    "StateObserver",
    "crossed_alert_threshold",
    "evaluate_end_of_month_reminder",
]
