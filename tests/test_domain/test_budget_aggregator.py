"""Tests for BudgetAggregator - spent vs limit, alerts, period resets"""
from datetime import datetime
from decimal import Decimal

import pytest

from expense_tracker.domain.budget import (
    BudgetAggregator, BudgetState, period_window, validate_budget_params,
)
from expense_tracker.domain.errors import ValidationError


def _budget(limit="100", spent="0", threshold=80, rollover=False, period="monthly"):
    start, end = period_window(period, datetime(2026, 3, 1))
    return BudgetState(
        limit_amount=Decimal(limit),
        spent=Decimal(spent),
        period=period,
        window_start=start,
        window_end=end,
        alert_threshold=threshold,
        rollover=rollover,
    )


class TestApplyExpense:
    def test_alert_triggered_once(self):
        b = _budget(limit="100", spent="70", threshold=75)
        assert BudgetAggregator.apply_expense(b, Decimal("10")) is True
        assert b.alert_sent is True
        assert b.spent == Decimal("80")

        assert BudgetAggregator.apply_expense(b, Decimal("5")) is False
        assert b.spent == Decimal("85")

    def test_below_threshold(self):
        b = _budget(limit="100", spent="0", threshold=80)
        assert BudgetAggregator.apply_expense(b, Decimal("79.99")) is False
        assert b.alert_sent is False

    def test_threshold_is_inclusive(self):
        b = _budget(limit="100", threshold=80)
        assert BudgetAggregator.apply_expense(b, Decimal("80")) is True

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5")])
    def test_rejects_non_positive(self, amount):
        b = _budget()
        with pytest.raises(ValidationError):
            BudgetAggregator.apply_expense(b, amount)
        assert b.spent == Decimal("0")


class TestDerivedValues:
    def test_exceeded_is_strict(self):
        assert BudgetAggregator.is_exceeded(_budget(limit="100", spent="100")) is False
        assert BudgetAggregator.is_exceeded(_budget(limit="100", spent="100.01")) is True

    def test_percent_used_zero_limit(self):
        assert BudgetAggregator.percent_used(_budget(limit="0", spent="50")) == Decimal("0")

    def test_zero_limit_never_alerts(self):
        b = _budget(limit="0", threshold=80)
        assert BudgetAggregator.apply_expense(b, Decimal("10")) is False

    def test_remaining_never_negative(self):
        assert BudgetAggregator.remaining(_budget(limit="100", spent="130")) == Decimal("0")
        assert BudgetAggregator.remaining(_budget(limit="100", spent="30")) == Decimal("70")


class TestResetIfDue:
    def test_rollover(self):
        b = _budget(limit="100", spent="40", rollover=True)
        b.alert_sent = True
        assert BudgetAggregator.reset_if_due(b, b.window_end) is True
        assert b.limit_amount == Decimal("160")
        assert b.spent == Decimal("0")
        assert b.alert_sent is False

    def test_without_rollover_keeps_limit(self):
        b = _budget(limit="100", spent="40")
        BudgetAggregator.reset_if_due(b, b.window_end)
        assert b.limit_amount == Decimal("100")

    def test_overspent_rollover_adds_nothing(self):
        b = _budget(limit="100", spent="150", rollover=True)
        BudgetAggregator.reset_if_due(b, b.window_end)
        assert b.limit_amount == Decimal("100")

    def test_not_due(self):
        b = _budget(limit="100", spent="40", rollover=True)
        assert BudgetAggregator.reset_if_due(b, datetime(2026, 3, 20)) is False
        assert b.spent == Decimal("40")

    def test_new_window_starts_at_reset(self):
        b = _budget()
        as_of = datetime(2026, 4, 3, 6, 0)
        BudgetAggregator.reset_if_due(b, as_of)
        assert b.window_start == as_of
        assert b.window_end == datetime(2026, 5, 3, 6, 0)
        assert b.last_reset == as_of


class TestValidateBudgetParams:
    def test_negative_limit(self):
        with pytest.raises(ValidationError):
            validate_budget_params(Decimal("-1"), "monthly", 80)

    def test_unknown_period(self):
        with pytest.raises(ValidationError):
            validate_budget_params(Decimal("100"), "quarterly", 80)

    def test_threshold_range(self):
        with pytest.raises(ValidationError):
            validate_budget_params(Decimal("100"), "monthly", 120)
