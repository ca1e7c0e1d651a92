from __future__ import annotations

import uuid

from ..extensions import db
from possync.number_utils import decimal_to_str
from .types import DecimalText
from possync.time_utils import to_utc_z, utcnow


def new_entity_id() -> str:
    return str(uuid.uuid4())


class DiningTable(db.Model):
    """
    A physical table on the floor plan (sync kind "table").

    VERSIONED: version starts at 1 and is bumped by exactly one on every
    UPDATE through SQLAlchemy's version_id_col, which turns each flush into
    UPDATE ... WHERE id = ? AND version = ? (atomic compare-and-increment).

    MERGING: When tables are pushed together for a large party, the surviving
    table records the absorbed ids/names and the combined seat count.
    """
    __tablename__ = "tables"
    __table_args__ = (
        db.Index("ix_tables_org_name", "org_id", "name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_entity_id)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(100), nullable=False)
    seats = db.Column(db.Integer, nullable=False, default=4)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    is_merged = db.Column(db.Boolean, nullable=False, default=False)
    merged_tables = db.Column(db.JSON, nullable=True)
    merged_table_names = db.Column(db.JSON, nullable=True)
    total_seats = db.Column(db.Integer, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    organization = db.relationship("Organization", backref=db.backref("tables", lazy=True))
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<DiningTable id={self.id} name={self.name!r} v{self.version}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.org_id,
            "name": self.name,
            "seats": self.seats,
            "description": self.description,
            "is_active": self.is_active,
            "is_merged": self.is_merged,
            "merged_tables": self.merged_tables or [],
            "merged_table_names": self.merged_table_names or [],
            "total_seats": self.total_seats,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class MenuItem(db.Model):
    """
    Sellable menu item (sync kind "menu_item").

    Order lines snapshot name and price at order time, so repricing an item
    never changes historic orders.
    """
    __tablename__ = "menu_items"
    __table_args__ = (
        db.Index("ix_menu_items_org_active", "org_id", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_entity_id)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(255), nullable=True)
    price = db.Column(DecimalText(), nullable=False, default=0)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    organization = db.relationship("Organization", backref=db.backref("menu_items", lazy=True))
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": decimal_to_str(self.price),
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Customer(db.Model):
    """
    Customer master data for repeat guests and loyalty (sync kind "customer").

    MULTI-TENANT: Customers are scoped to organizations via org_id.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_org_phone", "org_id", "phone"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_entity_id)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    organization = db.relationship("Organization", backref=db.backref("customers", lazy=True))
    __mapper_args__ = {"version_id_col": version}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.org_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "loyalty_points": self.loyalty_points,
            "version": self.version,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
