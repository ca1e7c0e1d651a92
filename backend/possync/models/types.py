from __future__ import annotations

from decimal import Decimal

from sqlalchemy.types import String, TypeDecorator

from possync.number_utils import to_decimal


class DecimalText(TypeDecorator):
    """
    Exact fixed-point decimal stored as its plain-notation text.

    SQLite has no decimal storage class; Numeric columns come back through
    float. Text keeps every digit the pricing formula produced, so the
    persisted total equals the computed Decimal.
    """
    impl = String(64)
    cache_ok = True

    @property
    def python_type(self):
        return Decimal

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return format(to_decimal(value), "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)
