"""Currency helpers.

Amounts are carried as integer minor units (cents) inside the core so that
balance checks are exact; decimals only exist at the API boundary.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from contractflow.core.exceptions import ValidationError

CENT = Decimal("0.01")


def to_cents(amount: Decimal | int | float | str) -> int:
    """Convert a decimal currency amount to integer minor units."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}")
    return int((value.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def from_cents(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(CENT)


def format_cents(cents: int | None, currency: str = "usd") -> str:
    symbol = "$" if currency.lower() == "usd" else f"{currency.upper()} "
    return f"{symbol}{from_cents(cents):,.2f}"
