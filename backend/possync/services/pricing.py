"""
Order pricing in fixed-point decimals.

BUSINESS RULE (order of operations is fixed; reordering changes the total):
    subtotal       = sum(price * quantity)
    discountAmount = subtotal * discountPct / 100
    serviceCharge  = (subtotal - discountAmount) * serviceChargePct / 100
    taxAmount      = (subtotal - discountAmount + serviceCharge) * taxPct / 100
    totalAmount    = subtotal - discountAmount + serviceCharge + taxAmount

No rounding is applied between steps.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from possync.number_utils import to_decimal

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_amount: Decimal
    service_charge: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "service_charge": self.service_charge,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
        }


def line_total(price, quantity) -> Decimal:
    return to_decimal(price) * int(quantity)


def compute_totals(
    lines: Iterable[tuple],
    discount_percentage=0,
    service_charge_percentage=0,
    tax_percentage=0,
) -> OrderTotals:
    """
    Price an order.

    lines: iterable of (price, quantity) pairs.
    Percentages may be Decimal, int, str or float (floats go through str()).
    """
    subtotal = sum((line_total(price, qty) for price, qty in lines), Decimal("0"))
    discount_amount = subtotal * to_decimal(discount_percentage) / HUNDRED
    discounted = subtotal - discount_amount
    service_charge = discounted * to_decimal(service_charge_percentage) / HUNDRED
    taxable = discounted + service_charge
    tax_amount = taxable * to_decimal(tax_percentage) / HUNDRED
    total_amount = subtotal - discount_amount + service_charge + tax_amount

    return OrderTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        service_charge=service_charge,
        tax_amount=tax_amount,
        total_amount=total_amount,
    )
