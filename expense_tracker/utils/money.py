"""
Currency table and money formatting.

Amounts are stored in the base currency. Rates are expressed as units of a
currency per one unit of the base currency, e.g. {"USD": 1, "INR": 83}.

Usage:
    table = currency_table_from_settings(get_settings())
    table.to_base(Decimal("830"), "INR")   -> Decimal("10.00")
    format_money(Decimal("1234.5"), "USD") -> "1,234.50 USD"
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP

from expense_tracker.domain.errors import ValidationError

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class CurrencyTable:
    base: str
    rates: dict[str, Decimal] = field(default_factory=dict)

    def _rate(self, code: str) -> Decimal:
        if code not in self.rates:
            raise ValidationError(f"unsupported currency: {code}")
        rate = Decimal(self.rates[code])
        if rate <= 0:
            raise ValidationError(f"invalid rate for {code}: {rate}")
        return rate

    def to_base(self, amount: Decimal, code: str) -> Decimal:
        """Convert an amount given in `code` into the base currency."""
        return (Decimal(amount) / self._rate(code)).quantize(_CENT, rounding=ROUND_HALF_UP)


def currency_table_from_settings(settings) -> CurrencyTable:
    rates = {code: Decimal(str(rate)) for code, rate in settings.CURRENCY_RATES.items()}
    rates.setdefault(settings.BASE_CURRENCY, Decimal("1"))
    return CurrencyTable(base=settings.BASE_CURRENCY, rates=rates)


def format_money(amount, currency: str = "USD", decimals: int = 2) -> str:
    """
    Format an amount with thousands separators and the currency code.

    Args:
        amount: int / float / Decimal / str
        currency: ISO currency code
        decimals: digits after the decimal point

    Returns:
        "1,234.50 USD"
    """
    if isinstance(amount, str):
        amount = Decimal(amount)
    fmt = f"{{:,.{decimals}f}}"
    return f"{fmt.format(amount)} {currency}"
