from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
# keeps amount_cents well inside a signed 64-bit column
MAX_AMOUNT = Decimal("1000000000000")


def to_cents(value: Union[Decimal, int, float, str]) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    if isinstance(value, str):
        clean = value.strip().replace("$", "").replace(" ", "").replace(",", "")
    else:
        clean = str(value)
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount > MAX_AMOUNT:
        raise ValueError("Amount is too large")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0:
        raise ValueError("Amount must be positive")
    return cents


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def cents_to_float(cents: int) -> float:
    return float(from_cents(cents))
