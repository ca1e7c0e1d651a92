from __future__ import annotations

from ..extensions import db
from possync.number_utils import decimal_to_str
from .types import DecimalText
from possync.time_utils import to_utc_z, utcnow
from .entities import new_entity_id


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUSES = (ORDER_STATUS_PENDING, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED)


class Order(db.Model):
    """
    Order aggregate root (sync kind "order").

    WHY: Orders are created, not merged. The header, its lines and the
    sync log entry are committed as one unit by order_service.create_order.

    LIFECYCLE: pending -> completed | cancelled (both terminal).

    FINANCIALS: All amounts are fixed-point decimals. total_amount is derived
    from the lines and the three percentages; it is never set directly.
    """
    __tablename__ = "orders"
    __table_args__ = (
        # Composite index for tenant-scoped listing by status and date
        db.Index("ix_orders_org_status_created", "org_id", "status", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_entity_id)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    table_id = db.Column(db.String(36), db.ForeignKey("tables.id"), nullable=True, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)

    # Actor identity handed over by the transport layer
    created_by = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    discount_percentage = db.Column(DecimalText(), nullable=False, default=0)
    service_charge_percentage = db.Column(DecimalText(), nullable=False, default=0)
    tax_percentage = db.Column(DecimalText(), nullable=False, default=0)

    subtotal = db.Column(DecimalText(), nullable=False, default=0)
    discount_amount = db.Column(DecimalText(), nullable=False, default=0)
    service_charge = db.Column(DecimalText(), nullable=False, default=0)
    tax_amount = db.Column(DecimalText(), nullable=False, default=0)
    total_amount = db.Column(DecimalText(), nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    amount_paid = db.Column(DecimalText(), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    lines = db.relationship(
        "OrderLine",
        back_populates="order",
        order_by="OrderLine.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    table = db.relationship("DiningTable")
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} total={self.total_amount}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.org_id,
            "table_id": self.table_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "created_by": self.created_by,
            "status": self.status,
            "discount_percentage": decimal_to_str(self.discount_percentage),
            "service_charge_percentage": decimal_to_str(self.service_charge_percentage),
            "tax_percentage": decimal_to_str(self.tax_percentage),
            "subtotal": decimal_to_str(self.subtotal),
            "discount_amount": decimal_to_str(self.discount_amount),
            "service_charge": decimal_to_str(self.service_charge),
            "tax_amount": decimal_to_str(self.tax_amount),
            "total_amount": decimal_to_str(self.total_amount),
            "payment_method": self.payment_method,
            "amount_paid": decimal_to_str(self.amount_paid),
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }
        if include_lines:
            data["items"] = [line.to_dict() for line in self.lines]
        return data


class OrderLine(db.Model):
    """
    Line item owned by exactly one Order.

    Created once inside the order-creation transaction and never reconciled
    on its own. name/price are snapshots taken at order time.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.UniqueConstraint("order_id", "position", name="uq_order_items_order_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(36), db.ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = db.Column(db.String(36), db.ForeignKey("menu_items.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    name = db.Column(db.String(255), nullable=False)
    price = db.Column(DecimalText(), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    modifiers = db.Column(db.JSON, nullable=False, default=list)
    line_total = db.Column(DecimalText(), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "menu_item_id": self.menu_item_id,
            "position": self.position,
            "name": self.name,
            "price": decimal_to_str(self.price),
            "quantity": self.quantity,
            "modifiers": self.modifiers or [],
            "subtotal": decimal_to_str(self.line_total),
            "created_at": to_utc_z(self.created_at),
        }
