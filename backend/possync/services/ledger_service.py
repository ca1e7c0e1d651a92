# Overview: Service-layer operations for the change ledger (sync log); append and catch-up reads.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import SyncLogEntry
from ..models.ledger import LEDGER_OPERATIONS
from possync.time_utils import utcnow
"""
Change Ledger Invariants (authoritative)

- Append-only: no updates, no deletes.
- append_entry is the last step of a mutation and runs inside the same DB
  transaction as the mutation it records. It flushes, never commits.
- A mutation whose ledger append fails must be rolled back by the caller.
- list_since is strictly-newer and ascending by (committed_at, id).
"""


class LedgerAppendError(Exception):
    """Raised when a ledger entry cannot be written; fatal to the enclosing mutation."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def append_entry(
    *,
    org_id: int,
    entity_kind: str,
    entity_id: str,
    operation: str,
    actor_id: str | None = None,
) -> SyncLogEntry:
    """
    Append one ledger entry to the current transaction.

    committed_at is taken here, as late as possible before the caller commits.
    """
    if operation not in LEDGER_OPERATIONS:
        raise LedgerAppendError(f"Unknown ledger operation {operation!r}")

    entry = SyncLogEntry(
        org_id=org_id,
        entity_kind=entity_kind,
        entity_id=str(entity_id),
        operation=operation,
        actor_id=str(actor_id) if actor_id is not None else None,
        committed_at=utcnow(),
    )
    try:
        db.session.add(entry)
        db.session.flush()  # ensures entry.id is assigned without committing
    except SQLAlchemyError as exc:
        raise LedgerAppendError(
            "Failed to append ledger entry",
            details={"entity_kind": entity_kind, "entity_id": str(entity_id), "operation": operation},
        ) from exc
    return entry


def list_since(org_id: int, since: Optional[datetime] = None) -> list[SyncLogEntry]:
    """
    Ledger entries for one organization strictly newer than `since`.

    Ascending by commit order; unbounded (callers paginate if needed).
    since=None returns the whole ledger.
    """
    q = db.session.query(SyncLogEntry).filter(SyncLogEntry.org_id == org_id)
    if since is not None:
        q = q.filter(SyncLogEntry.committed_at > since)
    return q.order_by(SyncLogEntry.committed_at.asc(), SyncLogEntry.id.asc()).all()


def list_entries(
    org_id: int,
    *,
    limit: int = 100,
    cursor: tuple[datetime, int] | None = None,
    entity_kind: str | None = None,
) -> list[SyncLogEntry]:
    """
    Newest-first page of ledger entries for audit views.

    cursor is the (committed_at, id) of the last row of the previous page.
    """
    q = db.session.query(SyncLogEntry).filter(SyncLogEntry.org_id == org_id)
    if entity_kind:
        q = q.filter(SyncLogEntry.entity_kind == entity_kind)
    if cursor is not None:
        cursor_dt, cursor_id = cursor
        q = q.filter(
            or_(
                SyncLogEntry.committed_at < cursor_dt,
                and_(SyncLogEntry.committed_at == cursor_dt, SyncLogEntry.id < cursor_id),
            )
        )
    return (
        q.order_by(SyncLogEntry.committed_at.desc(), SyncLogEntry.id.desc())
        .limit(limit)
        .all()
    )
