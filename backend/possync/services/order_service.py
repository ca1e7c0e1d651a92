"""
Order Transaction Processor - priced, atomic order creation and lifecycle

WHY: Orders are created, not merged. The header, every line and the sync log
entry commit together or not at all; no partial order is ever observable.
Lines are never reconciled on their own.

LIFECYCLE: pending -> completed | cancelled (terminal). Transitions bump the
order version like any versioned entity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import DiningTable, MenuItem, Order, OrderLine
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING,
    ORDER_STATUSES,
)
from possync.number_utils import to_decimal
from possync.time_utils import utcnow
from . import broadcast, ledger_service
from .concurrency import run_with_retry
from .entity_store import EntityNotFound, VersionConflict
from .ledger_service import LedgerAppendError
from .pricing import compute_totals, line_total
from .tenant_service import require_organization, scoped_query

ENTITY_KIND = "order"


class OrderError(Exception):
    """Raised for order operation errors (bad input, illegal transition)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderTransactionError(Exception):
    """Storage-level abort during an order write. Fully rolled back; safe to retry."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass
class OrderLineInput:
    menu_item_id: str
    quantity: int
    price: Optional[Decimal] = None
    name: Optional[str] = None
    modifiers: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "OrderLineInput":
        if not isinstance(data, dict):
            raise OrderError("Order line must be an object")
        menu_item_id = data.get("menu_item_id") or data.get("menuItemId")
        if not menu_item_id:
            raise OrderError("menu_item_id required for every line")
        quantity = data.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise OrderError("Quantity must be a positive integer", details={"menu_item_id": menu_item_id})
        price = data.get("price")
        try:
            price = to_decimal(price) if price is not None else None
        except ValueError:
            raise OrderError("Price must be a number", details={"menu_item_id": menu_item_id})
        modifiers = data.get("modifiers") or []
        if not isinstance(modifiers, list):
            raise OrderError("Modifiers must be a list", details={"menu_item_id": menu_item_id})
        return cls(
            menu_item_id=str(menu_item_id),
            quantity=quantity,
            price=price,
            name=data.get("name"),
            modifiers=modifiers,
        )


def _validate_lines(lines: list[OrderLineInput]) -> None:
    if not lines:
        raise OrderError("Order must contain at least one item")
    for index, line in enumerate(lines, start=1):
        if line.quantity <= 0:
            raise OrderError(
                "Quantity must be a positive integer",
                details={"line": index, "quantity": line.quantity},
            )
        if line.price is not None and (not line.price.is_finite() or line.price < 0):
            raise OrderError(
                "Price must be a finite, non-negative number",
                details={"line": index, "price": str(line.price)},
            )


def _percentage(name: str, value) -> Decimal:
    try:
        pct = to_decimal(value)
    except ValueError:
        raise OrderError(f"{name} must be a number")
    if pct < 0:
        raise OrderError(f"{name} must not be negative")
    return pct


def create_order(
    org_id: int,
    actor_id: Optional[str],
    lines: Iterable,
    *,
    table_id: Optional[str] = None,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    discount_percentage=0,
    service_charge_percentage=0,
    tax_percentage=0,
) -> Order:
    """
    Price and commit a new pending order with its lines.

    Lines may be OrderLineInput or dicts ({menu_item_id, quantity, price?,
    name?, modifiers?}). A missing name/price snapshots the menu item.

    Raises OrderError for bad input, EntityNotFound when the table or a
    menu item does not exist in this organization, OrderTransactionError for
    storage failures. In every failure case nothing is committed.
    """
    require_organization(org_id)

    line_inputs = [l if isinstance(l, OrderLineInput) else OrderLineInput.from_dict(l) for l in lines]
    _validate_lines(line_inputs)
    discount_pct = _percentage("discount_percentage", discount_percentage)
    service_pct = _percentage("service_charge_percentage", service_charge_percentage)
    tax_pct = _percentage("tax_percentage", tax_percentage)

    try:
        if table_id is not None:
            table = scoped_query(DiningTable, org_id).filter(DiningTable.id == table_id).first()
            if table is None:
                raise EntityNotFound("table", table_id)

        order_lines = []
        for position, line in enumerate(line_inputs, start=1):
            item = scoped_query(MenuItem, org_id).filter(MenuItem.id == line.menu_item_id).first()
            if item is None:
                raise EntityNotFound("menu_item", line.menu_item_id)
            price = line.price if line.price is not None else to_decimal(item.price)
            order_lines.append(OrderLine(
                menu_item_id=item.id,
                position=position,
                name=line.name or item.name,
                price=price,
                quantity=line.quantity,
                modifiers=list(line.modifiers),
                line_total=line_total(price, line.quantity),
            ))

        totals = compute_totals(
            ((ol.price, ol.quantity) for ol in order_lines),
            discount_pct,
            service_pct,
            tax_pct,
        )

        order = Order(
            org_id=org_id,
            table_id=table_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            created_by=str(actor_id) if actor_id is not None else None,
            status=ORDER_STATUS_PENDING,
            discount_percentage=discount_pct,
            service_charge_percentage=service_pct,
            tax_percentage=tax_pct,
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            service_charge=totals.service_charge,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
        )
        db.session.add(order)
        db.session.flush()

        # Header first, then each line; a failing line aborts the whole order
        for order_line in order_lines:
            order.lines.append(order_line)
            db.session.flush()

        ledger_service.append_entry(
            org_id=org_id,
            entity_kind=ENTITY_KIND,
            entity_id=order.id,
            operation="INSERT",
            actor_id=actor_id,
        )
        db.session.commit()
    except (EntityNotFound, OrderError):
        db.session.rollback()
        raise
    except (LedgerAppendError, SQLAlchemyError) as exc:
        db.session.rollback()
        raise OrderTransactionError("Order could not be saved; nothing was committed") from exc

    order = get_order(org_id, order.id)
    broadcast.publish(org_id, "order-created", order.to_dict())
    return order


def get_order(org_id: int, order_id: str) -> Order:
    order = scoped_query(Order, org_id).filter(Order.id == order_id).first()
    if order is None:
        raise EntityNotFound(ENTITY_KIND, order_id)
    return order


def list_orders(org_id: int, status: Optional[str] = None) -> list[Order]:
    """Orders of one organization, newest first, lines eagerly loaded."""
    q = scoped_query(Order, org_id)
    if status:
        if status not in ORDER_STATUSES:
            raise OrderError(f"Unknown order status {status!r}")
        q = q.filter(Order.status == status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def complete_order(
    org_id: int,
    actor_id: Optional[str],
    order_id: str,
    *,
    amount_paid=None,
    payment_method: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> Order:
    """Mark a pending order paid. amount_paid defaults to the order total."""
    paid = None
    if amount_paid is not None:
        try:
            paid = to_decimal(amount_paid)
        except ValueError:
            raise OrderError("amount_paid must be a number")
        if paid < 0:
            raise OrderError("amount_paid must not be negative")

    def _apply(order: Order) -> None:
        order.status = ORDER_STATUS_COMPLETED
        order.amount_paid = paid if paid is not None else order.total_amount
        order.payment_method = payment_method
        order.completed_at = utcnow()

    return _transition(org_id, actor_id, order_id, "complete", expected_version, _apply)


def cancel_order(
    org_id: int,
    actor_id: Optional[str],
    order_id: str,
    *,
    expected_version: Optional[int] = None,
) -> Order:
    def _apply(order: Order) -> None:
        order.status = ORDER_STATUS_CANCELLED
        order.cancelled_at = utcnow()

    return _transition(org_id, actor_id, order_id, "cancel", expected_version, _apply)


def _transition(org_id, actor_id, order_id, verb, expected_version, apply) -> Order:
    require_organization(org_id)

    def _op():
        order = (
            scoped_query(Order, org_id)
            .filter(Order.id == order_id)
            .populate_existing()
            .first()
        )
        if order is None:
            raise EntityNotFound(ENTITY_KIND, order_id)
        if expected_version is not None and order.version != expected_version:
            raise VersionConflict(ENTITY_KIND, order_id, order.version, expected_version)
        if order.status != ORDER_STATUS_PENDING:
            raise OrderError(
                f"Cannot {verb} order with status {order.status}",
                details={"status": order.status},
            )

        apply(order)
        order.updated_at = utcnow()
        try:
            db.session.flush()
        except StaleDataError:
            if expected_version is None:
                raise
            db.session.rollback()
            fresh = scoped_query(Order, org_id).filter(Order.id == order_id).first()
            raise VersionConflict(ENTITY_KIND, order_id, fresh.version if fresh else None, expected_version)

        ledger_service.append_entry(
            org_id=org_id,
            entity_kind=ENTITY_KIND,
            entity_id=order.id,
            operation="UPDATE",
            actor_id=actor_id,
        )
        db.session.commit()
        return order

    try:
        order = run_with_retry(
            _op,
            attempts=current_app.config.get("WRITE_RETRY_ATTEMPTS", 3),
            retry_stale=expected_version is None,
        )
    except (EntityNotFound, VersionConflict, OrderError):
        db.session.rollback()
        raise
    except (LedgerAppendError, SQLAlchemyError) as exc:
        db.session.rollback()
        raise OrderTransactionError(f"Order {verb} failed; nothing was committed") from exc

    order = get_order(org_id, order_id)
    broadcast.publish(org_id, "order-updated", order.to_dict())
    return order
