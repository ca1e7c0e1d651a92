# Overview: Pytest coverage for order creation and the order lifecycle.

"""
Order Transaction Tests

CRITICAL INVARIANT: An order is all-or-nothing. Header, lines and the sync
log entry commit together, or nothing is stored and nothing is broadcast.
"""

from decimal import Decimal

import pytest
from sqlalchemy import event
from possync.models import MenuItem, Order, OrderLine, SyncLogEntry
from possync.number_utils import decimal_to_str
from possync.services import ledger_service, order_service
from possync.services.entity_store import EntityNotFound, VersionConflict
from possync.services.ledger_service import LedgerAppendError
from possync.services.order_service import OrderError, OrderTransactionError
from possync.services.pricing import compute_totals


def _counts(db_session, org_id):
    return (
        db_session.query(Order).filter_by(org_id=org_id).count(),
        db_session.query(OrderLine).count(),
        db_session.query(SyncLogEntry).filter_by(org_id=org_id).count(),
    )


class TestCreateOrder:
    def test_priced_order_is_committed(self, db_session, org_a, table_a, menu_a, listener):
        burger, soup = menu_a
        session = listener(org_a.id)

        order = order_service.create_order(
            org_a.id,
            "waiter-1",
            [
                {"menu_item_id": burger.id, "quantity": 2},
                {"menu_item_id": soup.id, "quantity": 1, "modifiers": ["no croutons"]},
            ],
            table_id=table_a.id,
            customer_name="Ana",
            discount_percentage=10,
            service_charge_percentage=5,
            tax_percentage=8,
        )

        assert order.status == "pending"
        assert order.version == 1
        assert order.total_amount == Decimal("25.515")
        assert [line.name for line in order.lines] == ["Burger", "Soup"]
        assert order.lines[0].line_total == Decimal("20.00")
        assert order.lines[1].modifiers == ["no croutons"]
        assert order.created_by == "waiter-1"

        entries = db_session.query(SyncLogEntry).filter_by(org_id=org_a.id).all()
        assert [(e.entity_kind, e.entity_id, e.operation) for e in entries] == [("order", order.id, "INSERT")]

        assert session.event_types() == ["order-created"]
        payload = session.events[0]["payload"]
        assert payload["total_amount"] == "25.515"
        assert len(payload["items"]) == 2

    def test_line_price_override_is_kept(self, db_session, org_a, menu_a):
        burger, _ = menu_a
        order = order_service.create_order(
            org_a.id, None, [{"menuItemId": burger.id, "quantity": 1, "price": 8.5, "name": "Happy Burger"}]
        )
        assert order.lines[0].price == Decimal("8.5")
        assert order.lines[0].name == "Happy Burger"
        assert order.subtotal == Decimal("8.5")

    def test_missing_second_line_rolls_back_everything(self, db_session, org_a, menu_a, listener):
        burger, soup = menu_a
        session = listener(org_a.id)

        with pytest.raises(EntityNotFound):
            order_service.create_order(
                org_a.id,
                None,
                [
                    {"menu_item_id": burger.id, "quantity": 1},
                    {"menu_item_id": "does-not-exist", "quantity": 1},
                    {"menu_item_id": soup.id, "quantity": 1},
                ],
            )

        assert _counts(db_session, org_a.id) == (0, 0, 0)
        assert session.events == []

    def test_line_rejected_by_storage_rolls_back_header(self, db_session, org_a, menu_a, listener):
        """The header and line 1 are already flushed when line 2 fails."""
        burger, soup = menu_a
        session = listener(org_a.id)
        flushed_order_ids = []

        def _point_second_line_at_missing_item(mapper, connection, target):
            flushed_order_ids.append(target.order_id)
            if target.position == 2:
                target.menu_item_id = "vanished-item"

        event.listen(OrderLine, "before_insert", _point_second_line_at_missing_item)
        try:
            with pytest.raises(OrderTransactionError):
                order_service.create_order(
                    org_a.id,
                    None,
                    [{"menu_item_id": burger.id, "quantity": 1}, {"menu_item_id": soup.id, "quantity": 1}],
                )
        finally:
            event.remove(OrderLine, "before_insert", _point_second_line_at_missing_item)

        assert len(flushed_order_ids) == 2
        assert flushed_order_ids[0] is not None
        with pytest.raises(EntityNotFound):
            order_service.get_order(org_a.id, flushed_order_ids[0])
        assert _counts(db_session, org_a.id) == (0, 0, 0)
        assert session.events == []

    def test_large_amounts_persist_exactly(self, db_session, org_a):
        item = MenuItem(org_id=org_a.id, name="Wagyu", price=Decimal("123456789012.123456"))
        db_session.add(item)
        db_session.commit()

        order = order_service.create_order(
            org_a.id, None, [{"menu_item_id": item.id, "quantity": 3}], tax_percentage="8.25"
        )
        expected = compute_totals([(Decimal("123456789012.123456"), 3)], tax_percentage=Decimal("8.25"))

        order_id = order.id
        db_session.expire_all()
        stored = order_service.get_order(org_a.id, order_id)
        assert stored.total_amount == expected.total_amount
        assert stored.tax_amount == expected.tax_amount
        assert stored.lines[0].price == Decimal("123456789012.123456")
        assert stored.to_dict()["total_amount"] == decimal_to_str(expected.total_amount)

    @pytest.mark.parametrize("value", ["NaN", "sNaN", "Infinity", "-Infinity"])
    def test_non_finite_price_is_rejected(self, db_session, org_a, menu_a, value):
        burger, _ = menu_a
        with pytest.raises(OrderError):
            order_service.create_order(org_a.id, None, [{"menu_item_id": burger.id, "quantity": 1, "price": value}])
        assert _counts(db_session, org_a.id) == (0, 0, 0)

    @pytest.mark.parametrize("name", ["discount_percentage", "service_charge_percentage", "tax_percentage"])
    @pytest.mark.parametrize("value", ["NaN", "Infinity"])
    def test_non_finite_percentage_is_rejected(self, db_session, org_a, menu_a, name, value):
        burger, _ = menu_a
        with pytest.raises(OrderError) as exc:
            order_service.create_order(org_a.id, None, [{"menu_item_id": burger.id, "quantity": 1}], **{name: value})
        assert name in str(exc.value)
        assert _counts(db_session, org_a.id) == (0, 0, 0)

    def test_ledger_failure_rolls_back_order(self, db_session, org_a, menu_a, listener, monkeypatch):
        burger, _ = menu_a
        session = listener(org_a.id)

        def _fail(**kwargs):
            raise LedgerAppendError("Failed to append ledger entry")

        monkeypatch.setattr(ledger_service, "append_entry", _fail)

        with pytest.raises(OrderTransactionError):
            order_service.create_order(org_a.id, None, [{"menu_item_id": burger.id, "quantity": 1}])

        assert _counts(db_session, org_a.id) == (0, 0, 0)
        assert session.events == []

    def test_table_of_other_tenant_is_not_found(self, db_session, org_b, table_a):
        with pytest.raises(EntityNotFound) as exc:
            order_service.create_order(
                org_b.id, None, [{"menu_item_id": "any", "quantity": 1}], table_id=table_a.id
            )
        assert exc.value.kind == "table"
        assert _counts(db_session, org_b.id) == (0, 0, 0)

    def test_menu_item_of_other_tenant_is_not_found(self, db_session, org_b, menu_a):
        burger, _ = menu_a
        with pytest.raises(EntityNotFound):
            order_service.create_order(org_b.id, None, [{"menu_item_id": burger.id, "quantity": 1}])

    @pytest.mark.parametrize("lines, message", [
        ([], "at least one item"),
        ([{"menu_item_id": "m", "quantity": 0}], "positive integer"),
        ([{"menu_item_id": "m", "quantity": 1.5}], "positive integer"),
        ([{"menu_item_id": "m", "quantity": True}], "positive integer"),
        ([{"menu_item_id": "m", "quantity": 1, "price": -1}], "negative"),
        ([{"quantity": 1}], "menu_item_id required"),
    ])
    def test_invalid_lines(self, db_session, org_a, lines, message):
        with pytest.raises(OrderError) as exc:
            order_service.create_order(org_a.id, None, lines)
        assert message in str(exc.value)

    def test_negative_percentage(self, db_session, org_a, menu_a):
        burger, _ = menu_a
        with pytest.raises(OrderError):
            order_service.create_order(
                org_a.id, None, [{"menu_item_id": burger.id, "quantity": 1}], tax_percentage=-5
            )


class TestOrderLifecycle:
    @pytest.fixture
    def order(self, db_session, org_a, menu_a):
        burger, soup = menu_a
        return order_service.create_order(
            org_a.id, "waiter-1",
            [{"menu_item_id": burger.id, "quantity": 2}, {"menu_item_id": soup.id, "quantity": 1}],
        )

    def test_complete_defaults_amount_paid_to_total(self, db_session, org_a, order, listener):
        session = listener(org_a.id)

        done = order_service.complete_order(org_a.id, "cashier-1", order.id, payment_method="card")

        assert done.status == "completed"
        assert done.amount_paid == Decimal("25")
        assert done.payment_method == "card"
        assert done.version == 2
        assert done.completed_at is not None
        ops = [e.operation for e in db_session.query(SyncLogEntry).order_by(SyncLogEntry.id)]
        assert ops == ["INSERT", "UPDATE"]
        assert session.event_types() == ["order-updated"]

    def test_cancel(self, db_session, org_a, order):
        cancelled = order_service.cancel_order(org_a.id, None, order.id, expected_version=1)
        assert cancelled.status == "cancelled"
        assert cancelled.version == 2

    def test_terminal_orders_do_not_transition(self, db_session, org_a, order):
        order_service.cancel_order(org_a.id, None, order.id)
        with pytest.raises(OrderError):
            order_service.complete_order(org_a.id, None, order.id)

    def test_stale_version_conflicts(self, db_session, org_a, order):
        order_service.complete_order(org_a.id, None, order.id, amount_paid="30")
        with pytest.raises(VersionConflict) as exc:
            order_service.cancel_order(org_a.id, None, order.id, expected_version=1)
        assert exc.value.server_version == 2

    def test_list_orders_filters_by_status(self, db_session, org_a, order):
        assert [o.id for o in order_service.list_orders(org_a.id, status="pending")] == [order.id]
        assert order_service.list_orders(org_a.id, status="completed") == []
        with pytest.raises(OrderError):
            order_service.list_orders(org_a.id, status="lost")

    def test_get_order_is_tenant_scoped(self, db_session, org_b, order):
        with pytest.raises(EntityNotFound):
            order_service.get_order(org_b.id, order.id)
