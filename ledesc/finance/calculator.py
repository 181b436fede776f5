"""
Discount and allowance arithmetic.

Everything here is pure: amounts in, amounts out. Rounding is half-up at
the cent, which is what people expect from a receipt.
"""

import calendar
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from pydantic import BaseModel

from ledesc.models.benefit import BenefitSettings, Purchase

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    """Round to cents, half-up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class DiscountBreakdown(BaseModel):
    """Result of applying the benefit discount to one purchase amount."""

    amount: Decimal
    discount_percentage: Decimal
    discount_applied: Decimal
    final_amount: Decimal


def calculate_discount(amount: Number, discount_percentage: Number) -> DiscountBreakdown:
    """
    Apply the benefit discount to a raw purchase amount.

    discount_applied = round(amount * pct / 100, 2)
    final_amount     = round(amount - discount_applied, 2), never negative

    Raises:
        ValueError: amount is negative or the percentage is outside 0-100
    """
    amount = to_decimal(amount)
    pct = to_decimal(discount_percentage)
    if amount < 0:
        raise ValueError(f"Amount cannot be negative: {amount}")
    if pct < 0 or pct > HUNDRED:
        raise ValueError(f"Discount percentage must be between 0 and 100: {pct}")

    discount = round_money(amount * pct / HUNDRED)
    final = max(Decimal("0.00"), round_money(amount - discount))
    return DiscountBreakdown(
        amount=amount,
        discount_percentage=pct,
        discount_applied=discount,
        final_amount=final,
    )


def month_marker(day: Union[date, datetime]) -> str:
    """YYYY-MM, the format the reminder marker is stored in."""
    return f"{day.year:04d}-{day.month:02d}"


def purchases_in_month(purchases: Iterable[Purchase], day: Union[date, datetime]) -> list[Purchase]:
    return [p for p in purchases if p.date.year == day.year and p.date.month == day.month]


class MonthlyUsage(BaseModel):
    """How much of this month's allowance is gone, and how much time is left."""

    month: str
    monthly_allowance: Decimal
    spent: Decimal
    remaining_balance: Decimal
    percentage_used: Decimal
    days_in_month: int
    days_remaining: int


def summarize_month(
    settings: BenefitSettings,
    purchases: Iterable[Purchase],
    today: Optional[date] = None,
) -> MonthlyUsage:
    """
    Usage of the allowance for the month containing `today`.

    spent is the sum of final amounts; remaining balance floors at zero.
    days_remaining counts the days after today.
    """
    today = today or date.today()
    allowance = to_decimal(settings.monthly_allowance)
    spent = sum(
        (to_decimal(p.final_amount) for p in purchases_in_month(purchases, today)),
        Decimal("0"),
    )
    spent = round_money(spent)
    remaining = max(Decimal("0.00"), round_money(allowance - spent))
    if allowance > 0:
        used = (spent / allowance * HUNDRED).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    else:
        used = Decimal("0.0")
    days_in_month = calendar.monthrange(today.year, today.month)[1]

    return MonthlyUsage(
        month=month_marker(today),
        monthly_allowance=allowance,
        spent=spent,
        remaining_balance=remaining,
        percentage_used=used,
        days_in_month=days_in_month,
        days_remaining=days_in_month - today.day,
    )
