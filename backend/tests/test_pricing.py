# Overview: Pytest coverage for order pricing.

from decimal import Decimal

import pytest
from possync.number_utils import to_decimal
from possync.services.pricing import compute_totals, line_total


def test_reference_order_totals():
    totals = compute_totals(
        [(Decimal("10.00"), 2), (Decimal("5.00"), 1)],
        discount_percentage=10,
        service_charge_percentage=5,
        tax_percentage=8,
    )

    assert totals.subtotal == Decimal("25.00")
    assert totals.discount_amount == Decimal("2.50")
    assert totals.service_charge == Decimal("1.125")
    assert totals.tax_amount == Decimal("1.89")
    assert totals.total_amount == Decimal("25.515")


def test_float_inputs_do_not_drift():
    totals = compute_totals([(0.1, 3)], tax_percentage=0)
    assert totals.subtotal == Decimal("0.3")


def test_no_adjustments():
    totals = compute_totals([("4.50", 2)])
    assert totals.total_amount == totals.subtotal == Decimal("9.00")
    assert totals.discount_amount == 0


def test_order_of_operations_is_fixed():
    """Service charge applies after discount, tax applies after service charge."""
    totals = compute_totals([(100, 1)], discount_percentage=50, service_charge_percentage=10, tax_percentage=10)
    assert totals.service_charge == Decimal("5")
    assert totals.tax_amount == Decimal("5.5")
    assert totals.total_amount == Decimal("60.5")


def test_line_total():
    assert line_total("2.25", 4) == Decimal("9.00")


@pytest.mark.parametrize("value", ["NaN", "sNaN", "Infinity", "-inf", float("nan"), float("inf"), Decimal("Infinity")])
def test_non_finite_amounts_are_rejected(value):
    with pytest.raises(ValueError):
        to_decimal(value)
