from __future__ import annotations

from ..extensions import db
from possync.time_utils import to_utc_z

class Organization(db.Model):
    """
    Multi-tenant root: Every tenant is an Organization (one restaurant).

    WHY: Enables shared-database multi-tenancy with strict isolation.
    Tables, menu items, customers, orders and the sync log all belong to
    exactly one organization. No data may cross organization boundaries.

    DESIGN:
    - Organizations are the tenant boundary
    - Every tenant-owned row carries org_id (FK)
    - All queries must be scoped by org_id
    - Organizations are never merged
    """
    __tablename__ = "organizations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code for lookups

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
