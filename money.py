from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")
TENTH = Decimal("0.1")
MAX_AMOUNT = Decimal("999999999.99")
MAX_AMOUNT_CENTS = 99_999_999_999

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, float):
        # Route floats through their shortest repr so 0.1 stays 0.1.
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError("Invalid amount") from exc


def has_two_places(amount: Decimal) -> bool:
    """True when ``amount`` carries no precision beyond whole cents."""
    if not amount.is_finite():
        return False
    return amount == amount.quantize(CENT, rounding=ROUND_HALF_UP)


def quantize(amount: Number) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Number) -> int:
    value = to_decimal(amount)
    if not has_two_places(value):
        raise ValueError("Amount must have max 2 decimal places")
    return int((value * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage(part_cents: int, whole_cents: int) -> Decimal:
    if not whole_cents:
        return Decimal("0.0")
    ratio = Decimal(int(part_cents)) * 100 / Decimal(int(whole_cents))
    return ratio.quantize(TENTH, rounding=ROUND_HALF_UP)
