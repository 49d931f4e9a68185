"""
Budget aggregation rules: spent vs. limit, alert threshold, period reset.

Pure functions over any object carrying the budget attributes
(limit_amount, spent, period, window_start, window_end, alert_threshold,
alert_sent, rollover, last_reset). Persistence is the caller's job.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from expense_tracker.domain.errors import ValidationError
from expense_tracker.domain.recurrence import add_period, PATTERNS

BUDGET_PERIODS = PATTERNS
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass
class BudgetState:
    """Detached budget, for callers that do not work with ORM rows."""
    limit_amount: Decimal
    spent: Decimal
    period: str
    window_start: datetime
    window_end: datetime
    alert_threshold: int = 80
    alert_sent: bool = False
    rollover: bool = False
    last_reset: datetime | None = None


def period_window(period: str, start: datetime) -> tuple[datetime, datetime]:
    """[start, end) window of one budget period beginning at start."""
    if period not in BUDGET_PERIODS:
        raise ValidationError(f"unknown budget period: {period}")
    return start, add_period(start, period)


def validate_budget_params(limit_amount: Decimal, period: str, alert_threshold: int) -> None:
    if limit_amount < 0:
        raise ValidationError("budget limit must be non-negative")
    if period not in BUDGET_PERIODS:
        raise ValidationError(f"unknown budget period: {period}")
    if not 0 <= alert_threshold <= 100:
        raise ValidationError("alert threshold must be between 0 and 100")


class BudgetAggregator:

    @staticmethod
    def percent_used(budget) -> Decimal:
        if budget.limit_amount > 0:
            return Decimal(budget.spent) / Decimal(budget.limit_amount) * _HUNDRED
        return _ZERO

    @staticmethod
    def is_exceeded(budget) -> bool:
        return budget.spent > budget.limit_amount

    @staticmethod
    def remaining(budget) -> Decimal:
        return max(_ZERO, Decimal(budget.limit_amount) - Decimal(budget.spent))

    @staticmethod
    def should_alert(budget) -> bool:
        """Threshold reached and nobody has been alerted yet in this window."""
        if budget.alert_sent:
            return False
        return BudgetAggregator.percent_used(budget) >= budget.alert_threshold

    @staticmethod
    def apply_expense(budget, amount: Decimal) -> bool:
        """Add amount to spent. Returns True when the alert is newly triggered."""
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("expense amount must be positive")
        budget.spent = Decimal(budget.spent) + amount
        if BudgetAggregator.should_alert(budget):
            budget.alert_sent = True
            return True
        return False

    @staticmethod
    def is_reset_due(budget, as_of: datetime) -> bool:
        return as_of >= budget.window_end

    @staticmethod
    def reset_if_due(budget, as_of: datetime) -> bool:
        """Start a new window if the current one has ended. Returns True if reset."""
        if not BudgetAggregator.is_reset_due(budget, as_of):
            return False
        if budget.rollover:
            budget.limit_amount = Decimal(budget.limit_amount) + BudgetAggregator.remaining(budget)
        budget.spent = _ZERO
        budget.alert_sent = False
        budget.last_reset = as_of
        budget.window_start, budget.window_end = period_window(budget.period, as_of)
        return True
