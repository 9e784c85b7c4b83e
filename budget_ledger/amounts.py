"""
Monetary amount helpers

The ledger is single-currency: every amount is a Decimal quantized to
centavos with ROUND_HALF_UP, and stored as its string form.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from .errors import ValidationError


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Any, field: str = "amount") -> Decimal:
    """Parse and quantize an amount, raising ValidationError for non-numeric input"""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field, value=value)
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field, value=value)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field, value=value)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def optional_amount(value: Any, field: str) -> Optional[Decimal]:
    return None if value is None else to_amount(value, field)


def total(amounts: Iterable[Decimal]) -> Decimal:
    """Sum of amounts, quantized; ZERO for an empty iterable"""
    return sum(amounts, ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage(part: Decimal, whole: Decimal) -> float:
    """part / whole * 100 as a float, 0.0 when whole is not positive"""
    if whole <= 0:
        return 0.0
    return float(part / whole * 100)
