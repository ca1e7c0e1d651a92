"""
Reconciliation Protocol Handler - offline device catch-up

PROTOCOL:
1. Device sends its checkpoint (lastSyncTime) and queued changes.
2. Changes are applied one at a time, in the order given, each as its own
   unit of work. One failing change never aborts the others.
3. syncTime is read from the server clock, then every ledger entry newer than
   lastSyncTime is returned (the device's own just-applied changes included).
4. The device stores syncTime as its next checkpoint.

Reading the clock before the ledger query makes delivery at-least-once: an
entry that commits in between shows up now and again on the next sync.
A ledger row is stamped at flush but only visible once its transaction
commits, so the issued syncTime is moved back by SYNC_CHECKPOINT_LAG_SECONDS.
Entries inside that overlap are delivered twice; devices drop repeats by
ledger entry id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from flask import current_app

from ..extensions import db
from ..models import SyncLogEntry
from possync.time_utils import to_utc_z, utcnow
from . import ledger_service
from .conflict_service import ChangeResult, ProposedChange, apply_change
from .tenant_service import require_organization


@dataclass
class SyncResult:
    results: list[ChangeResult]
    server_changes: list[SyncLogEntry]
    sync_time: datetime

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "serverChanges": [e.to_dict() for e in self.server_changes],
            "syncTime": to_utc_z(self.sync_time),
        }


def sync(
    org_id: int,
    actor_id: Optional[str],
    last_sync_time: Optional[datetime],
    proposed_changes: Optional[Iterable] = None,
) -> SyncResult:
    """
    Apply a device's queued changes, then return what it is missing.

    proposed_changes: ProposedChange objects or wire dicts.
    last_sync_time: None means "never synced" (full ledger).
    """
    require_organization(org_id)

    results: list[ChangeResult] = []
    for raw in proposed_changes or []:
        results.append(_apply_one(org_id, actor_id, raw))

    sync_time = utcnow()
    lag = current_app.config.get("SYNC_CHECKPOINT_LAG_SECONDS", 5)
    if lag:
        sync_time -= timedelta(seconds=lag)
    server_changes = ledger_service.list_since(org_id, last_sync_time)
    return SyncResult(results=results, server_changes=server_changes, sync_time=sync_time)


def _apply_one(org_id: int, actor_id: Optional[str], raw) -> ChangeResult:
    if isinstance(raw, ProposedChange):
        change = raw
    else:
        try:
            change = ProposedChange.from_dict(raw)
        except ValueError as exc:
            raw_id = raw.get("id") if isinstance(raw, dict) else None
            return ChangeResult.failed(raw_id, str(exc))

    try:
        return apply_change(org_id, actor_id, change)
    except Exception:
        # Isolate unexpected storage failures to this change
        db.session.rollback()
        current_app.logger.exception(
            "Failed to apply %s %s %s during sync", change.operation, change.kind, change.entity_id
        )
        return ChangeResult.failed(change.entity_id, "Change could not be applied; retry")
