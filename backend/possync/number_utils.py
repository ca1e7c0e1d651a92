from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional


def to_decimal(value) -> Decimal:
    """
    Convert request input to Decimal without binary floating-point drift.

    - Decimal -> unchanged
    - int / str -> Decimal(value)
    - float -> Decimal(str(value)), so 10.1 becomes Decimal("10.1")
    - None -> Decimal("0")

    NaN and infinities are rejected; every amount must be finite.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, bool):
        raise ValueError("Boolean is not a numeric amount")
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, float):
            d = Decimal(str(value))
        else:
            d = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid decimal value: {value!r}") from exc
    if not d.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return d


def decimal_to_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize a Decimal for JSON without exponent notation or trailing zeros."""
    if value is None:
        return None
    d = to_decimal(value)
    if d == d.to_integral_value():
        return str(d.quantize(Decimal("1")))
    return format(d.normalize(), "f")
