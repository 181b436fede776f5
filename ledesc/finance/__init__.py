"""Benefit arithmetic package."""

from ledesc.finance.calculator import (
    DiscountBreakdown,
    MonthlyUsage,
    calculate_discount,
    month_marker,
    purchases_in_month,
    round_money,
    summarize_month,
)

__all__ = [
    "DiscountBreakdown",
    "MonthlyUsage",
    "calculate_discount",
    "month_marker",
    "purchases_in_month",
    "round_money",
    "summarize_month",
]
