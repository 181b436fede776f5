"""
Reminder and alert decisions.

Pure functions over settings and purchases; the session decides when to
run them and what to do with the answer.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel

from ledesc.finance.calculator import summarize_month
from ledesc.models.benefit import BenefitSettings, Purchase


class ReminderDecision(BaseModel):
    """Whether to show the end-of-month reminder, and with which numbers."""

    should_remind: bool
    month: str
    remaining_balance: Decimal
    days_remaining: int
    reason: str = ""


def evaluate_end_of_month_reminder(
    settings: BenefitSettings,
    purchases: Iterable[Purchase],
    today: Optional[date] = None,
) -> ReminderDecision:
    """
    Remind when all of these hold:
    - the reminder is enabled
    - it has not been shown for this month yet
    - at most days_before_end_of_month_to_remind days are left
    - some allowance is still unspent
    """
    usage = summarize_month(settings, purchases, today)

    def decide(should_remind: bool, reason: str = "") -> ReminderDecision:
        return ReminderDecision(
            should_remind=should_remind,
            month=usage.month,
            remaining_balance=usage.remaining_balance,
            days_remaining=usage.days_remaining,
            reason=reason,
        )

    if not settings.enable_end_of_month_reminder:
        return decide(False, "disabled")
    if settings.last_end_of_month_reminder_shown_for_month == usage.month:
        return decide(False, "already_shown")
    if usage.days_remaining > settings.days_before_end_of_month_to_remind:
        return decide(False, "too_early")
    if usage.remaining_balance <= 0:
        return decide(False, "nothing_left")
    return decide(True)


def crossed_alert_threshold(
    settings: BenefitSettings,
    before: Iterable[Purchase],
    after: Iterable[Purchase],
    today: Optional[date] = None,
) -> Optional[Decimal]:
    """
    Percentage used after a change, if the change moved this month's usage
    from below the alert threshold to at or above it. None otherwise.
    """
    threshold = settings.alert_threshold_percentage
    used_before = summarize_month(settings, before, today).percentage_used
    used_after = summarize_month(settings, after, today).percentage_used
    if used_before < threshold <= used_after:
        return used_after
    return None
