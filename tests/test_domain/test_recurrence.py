"""Tests for recurrence date arithmetic"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import pytest

from expense_tracker.domain.errors import ValidationError
from expense_tracker.domain.recurrence import (
    add_months, add_period, compute_next_occurrence, monthly_equivalent, validate_pattern,
)


@dataclass
class Template:
    pattern: str
    start_date: datetime
    next_occurrence: datetime | None = None


class TestAddPeriod:
    def test_daily(self):
        assert add_period(datetime(2026, 12, 31, 9), "daily") == datetime(2027, 1, 1, 9)

    def test_weekly(self):
        assert add_period(datetime(2026, 2, 25), "weekly") == datetime(2026, 3, 4)

    def test_monthly_keeps_time_of_day(self):
        assert add_period(datetime(2026, 4, 10, 8, 30), "monthly") == datetime(2026, 5, 10, 8, 30)

    def test_monthly_across_year(self):
        assert add_period(datetime(2026, 12, 15), "monthly") == datetime(2027, 1, 15)

    def test_yearly_from_leap_day(self):
        assert add_period(datetime(2028, 2, 29), "yearly") == datetime(2029, 2, 28)

    def test_unknown_pattern(self):
        with pytest.raises(ValidationError):
            add_period(datetime(2026, 1, 1), "fortnightly")


class TestAddMonths:
    def test_clips_to_last_day(self):
        assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)

    def test_clips_in_leap_year(self):
        assert add_months(datetime(2028, 1, 31), 1) == datetime(2028, 2, 29)

    def test_negative(self):
        assert add_months(datetime(2026, 3, 31), -1) == datetime(2026, 2, 28)


class TestComputeNextOccurrence:
    def test_end_of_month_chain(self):
        t = Template(pattern="monthly", start_date=datetime(2026, 1, 31))
        t.next_occurrence = compute_next_occurrence(t)
        assert t.next_occurrence == datetime(2026, 2, 28)
        t.next_occurrence = compute_next_occurrence(t)
        # clipped day carries over, never back to the 31st
        assert t.next_occurrence == datetime(2026, 3, 28)

    def test_end_of_month_chain_leap_year(self):
        t = Template(pattern="monthly", start_date=datetime(2028, 1, 31))
        t.next_occurrence = compute_next_occurrence(t)
        t.next_occurrence = compute_next_occurrence(t)
        assert t.next_occurrence == datetime(2028, 3, 29)

    def test_uses_start_date_when_next_missing(self):
        t = Template(pattern="weekly", start_date=datetime(2026, 3, 2))
        assert compute_next_occurrence(t) == datetime(2026, 3, 9)

    def test_next_before_start_is_ignored(self):
        t = Template(
            pattern="daily", start_date=datetime(2026, 3, 10),
            next_occurrence=datetime(2026, 3, 1),
        )
        assert compute_next_occurrence(t) == datetime(2026, 3, 11)

    def test_strictly_forward(self):
        t = Template(pattern="yearly", start_date=datetime(2026, 6, 1), next_occurrence=datetime(2026, 6, 1))
        assert compute_next_occurrence(t) > t.next_occurrence


def test_validate_pattern():
    validate_pattern("monthly")
    with pytest.raises(ValidationError):
        validate_pattern("MONTHLY")


@pytest.mark.parametrize("pattern,expected", [
    ("daily", Decimal("300")),
    ("weekly", Decimal("40")),
    ("monthly", Decimal("10")),
    ("yearly", Decimal("120") / 12),
])
def test_monthly_equivalent(pattern, expected):
    amount = Decimal("120") if pattern == "yearly" else Decimal("10")
    assert monthly_equivalent(amount, pattern) == expected
