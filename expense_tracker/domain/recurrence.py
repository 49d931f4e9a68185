"""
Recurrence date arithmetic for recurring expenses and budget windows.

Patterns:
- daily: +1 day
- weekly: +7 days
- monthly: +1 calendar month, clipped to the last day of the target month
- yearly: +1 calendar year, clipped (Feb 29 -> Feb 28)

Clipping is applied to the previous occurrence, not to the start date, so a
template started on Jan 31 runs Jan 31 -> Feb 28 -> Mar 28.
"""
import calendar
from datetime import datetime, timedelta

from expense_tracker.domain.errors import ValidationError


PATTERNS = ("daily", "weekly", "monthly", "yearly")


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: datetime, n: int) -> datetime:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = min(d.day, last_day_of_month(year, month))
    return d.replace(year=year, month=month, day=day)


def add_period(d: datetime, pattern: str) -> datetime:
    """Shift d forward by one period of the given pattern."""
    if pattern == "daily":
        return d + timedelta(days=1)
    if pattern == "weekly":
        return d + timedelta(days=7)
    if pattern == "monthly":
        return add_months(d, 1)
    if pattern == "yearly":
        return add_months(d, 12)
    raise ValidationError(f"unknown recurrence pattern: {pattern}")


def validate_pattern(pattern: str) -> None:
    if pattern not in PATTERNS:
        raise ValidationError(f"unknown recurrence pattern: {pattern}")


def compute_next_occurrence(template) -> datetime:
    """Next occurrence after the template's current one.

    Works on any object with pattern, start_date and next_occurrence
    attributes (ORM row or plain dataclass).
    """
    current = template.start_date
    if template.next_occurrence is not None and template.next_occurrence > current:
        current = template.next_occurrence
    return add_period(current, template.pattern)


def monthly_equivalent(amount, pattern: str):
    """Approximate monthly cost of one recurring amount."""
    if pattern == "daily":
        return amount * 30
    if pattern == "weekly":
        return amount * 4
    if pattern == "monthly":
        return amount
    if pattern == "yearly":
        return amount / 12
    raise ValidationError(f"unknown recurrence pattern: {pattern}")
