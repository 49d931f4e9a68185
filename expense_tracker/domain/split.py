"""
Split configuration for shared expenses.

split_type:
- full: the payer carries the whole amount, shares are informational
- custom: shares are required and must add up to the amount
- equal: shares are required, amounts are recomputed as amount / n

Shares are stored as JSON: [{"user_id": 2, "amount": "12.50", "is_paid": false}, ...]
"""
from decimal import Decimal, ROUND_DOWN, InvalidOperation

from expense_tracker.domain.errors import ValidationError


SPLIT_TYPES = ("equal", "custom", "full")
SPLIT_TOLERANCE = Decimal("0.01")
_CENT = Decimal("0.01")


def _parse_share_amount(raw) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"invalid share amount: {raw!r}") from e
    if value < 0:
        raise ValidationError("share amount must be non-negative")
    return value


def normalize_shares(split_type: str, amount: Decimal, shares: list | None) -> list[dict]:
    """Validate a split configuration and return shares in storage form.

    Raises ValidationError for an unknown split type, malformed shares or
    shares that do not add up to the amount.
    """
    if split_type not in SPLIT_TYPES:
        raise ValidationError(f"unknown split type: {split_type}")
    shares = shares or []
    if not isinstance(shares, list):
        raise ValidationError("shared_with must be a list")

    parsed: list[tuple[int, Decimal, bool]] = []
    seen: set[int] = set()
    for share in shares:
        if not isinstance(share, dict) or share.get("user_id") is None:
            raise ValidationError("each share needs a user_id")
        user_id = int(share["user_id"])
        if user_id in seen:
            raise ValidationError(f"duplicate share for user {user_id}")
        seen.add(user_id)
        share_amount = _parse_share_amount(share.get("amount", "0"))
        parsed.append((user_id, share_amount, bool(share.get("is_paid", False))))

    if split_type in ("equal", "custom") and not parsed:
        raise ValidationError(f"split type '{split_type}' requires at least one share")

    if split_type == "equal":
        per_person = (amount / len(parsed)).quantize(_CENT, rounding=ROUND_DOWN)
        remainder = amount - per_person * len(parsed)
        out = []
        for i, (user_id, _, is_paid) in enumerate(parsed):
            share_amount = per_person + remainder if i == 0 else per_person
            out.append({"user_id": user_id, "amount": str(share_amount), "is_paid": is_paid})
        return out

    if parsed:
        total = sum((a for _, a, _ in parsed), Decimal("0"))
        if abs(total - amount) > SPLIT_TOLERANCE:
            raise ValidationError(
                f"split amounts must equal total amount ({total} != {amount})"
            )

    return [
        {"user_id": user_id, "amount": str(share_amount), "is_paid": is_paid}
        for user_id, share_amount, is_paid in parsed
    ]


def pending_amount(shares: list[dict]) -> Decimal:
    """Sum of shares not yet paid back."""
    return sum(
        (Decimal(s["amount"]) for s in shares if not s.get("is_paid")),
        Decimal("0"),
    )
