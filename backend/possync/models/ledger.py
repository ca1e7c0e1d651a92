from __future__ import annotations

from ..extensions import db
from possync.time_utils import to_utc_z, utcnow


LEDGER_OPERATIONS = ("INSERT", "UPDATE", "DELETE")


class SyncLogEntry(db.Model):
    """
    Append-only change ledger (one row per committed mutation).

    WHY: The ledger is the catch-up feed for devices that were offline.
    Real-time events are best-effort; this table is not.

    IMMUTABLE: Records are never updated or deleted.

    ORDERING: Within an organization entries are ordered by committed_at,
    ties broken by id (the ledger sequence).
    """
    __tablename__ = "sync_log"
    __table_args__ = (
        db.Index("ix_sync_log_org_committed", "org_id", "committed_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    entity_kind = db.Column(db.String(32), nullable=False, index=True)  # table, menu_item, customer, order
    entity_id = db.Column(db.String(36), nullable=False, index=True)
    operation = db.Column(db.String(8), nullable=False)  # INSERT, UPDATE, DELETE

    actor_id = db.Column(db.String(128), nullable=True)

    # Python-side default: SQLite's now() only has second resolution
    committed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<SyncLogEntry id={self.id} {self.operation} {self.entity_kind}:{self.entity_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.org_id,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "operation": self.operation,
            "actor_id": self.actor_id,
            "committed_at": to_utc_z(self.committed_at),
        }
