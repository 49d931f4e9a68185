"""
Validation utilities
"""
import re
from decimal import Decimal, InvalidOperation

from expense_tracker.domain.errors import ValidationError


def normalize_decimal_input(value: str) -> str:
    """
    Normalize an amount typed by a user: comma decimal separator becomes a dot

    Example:
        >>> normalize_decimal_input("100,50")
        "100.50"
    """
    return value.strip().replace(",", ".")


def parse_amount(value, max_decimal_places: int = 2, allow_zero: bool = False) -> Decimal:
    """
    Parse a money amount (str / int / Decimal) into a positive Decimal

    Raises:
        ValidationError: not a number, too many decimal places, or not positive

    Example:
        >>> parse_amount("100,50")
        Decimal("100.50")
        >>> parse_amount("100.505")
        ValidationError: at most 2 decimal places
    """
    normalized = normalize_decimal_input(str(value))

    try:
        amount = Decimal(normalized)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"invalid amount: {value!r}")

    pattern = rf"^-?\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        raise ValidationError(f"at most {max_decimal_places} decimal places")

    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError("amount must be greater than zero")

    return amount
