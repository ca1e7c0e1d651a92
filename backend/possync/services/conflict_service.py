"""
Conflict Resolver - apply or reject one client-proposed mutation

POLICY: last-writer-detects-and-defers. The server never overwrites a
change the client has not seen:
- UPDATE/DELETE apply only when clientVersion equals the stored version.
- A stored version ahead of the client is a conflict; the client re-fetches,
  re-applies its business change and resubmits with the new version.
- A client version ahead of the server is also a conflict.
- INSERT is idempotent per id so retransmitted offline inserts are harmless.

OUTCOMES: Conflict, not-found and bad-input branches come back as
ChangeResult values. Only unexpected storage failures raise.

SIDE EFFECTS: On success exactly one ledger entry is written in the same
transaction as the mutation, and exactly one broadcast event is published
after the commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.entities import new_entity_id
from . import broadcast, entity_store, ledger_service
from .entity_store import (
    EntityNotFound,
    UnknownEntityKind,
    UnknownFieldError,
    VersionConflict,
)

OP_INSERT = "INSERT"
OP_UPDATE = "UPDATE"
OP_DELETE = "DELETE"
OPERATIONS = (OP_INSERT, OP_UPDATE, OP_DELETE)

STATUS_SUCCESS = "success"
STATUS_CONFLICT = "conflict"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"


@dataclass
class ProposedChange:
    kind: str
    entity_id: Optional[str]
    operation: str
    fields: dict = field(default_factory=dict)
    client_version: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProposedChange":
        """
        Build from the wire shape {kind, id, operation, fields, clientVersion}.

        Also accepts the older client shape {table, operation, data, clientVersion}
        where the id lives inside data.
        """
        if not isinstance(data, dict):
            raise ValueError("Change must be an object")
        values = data.get("fields")
        if values is None:
            values = data.get("data") or {}
        if not isinstance(values, dict):
            raise ValueError("Change fields must be an object")

        entity_id = data.get("id") or values.get("id")
        client_version = data.get("clientVersion", data.get("client_version"))
        if client_version is not None:
            try:
                client_version = int(client_version)
            except (TypeError, ValueError):
                raise ValueError("clientVersion must be an integer")

        return cls(
            kind=data.get("kind") or data.get("table") or "",
            entity_id=str(entity_id) if entity_id is not None else None,
            operation=str(data.get("operation") or "").upper(),
            fields=values,
            client_version=client_version,
        )


@dataclass
class ChangeResult:
    entity_id: Optional[str]
    status: str
    server_version: Optional[int] = None
    client_version: Optional[int] = None
    error: Optional[str] = None
    entity: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_SUCCESS

    @classmethod
    def success(cls, entity_id, server_version=None, entity=None) -> "ChangeResult":
        return cls(entity_id=entity_id, status=STATUS_SUCCESS, server_version=server_version, entity=entity)

    @classmethod
    def conflict(cls, entity_id, server_version, client_version) -> "ChangeResult":
        return cls(
            entity_id=entity_id,
            status=STATUS_CONFLICT,
            server_version=server_version,
            client_version=client_version,
        )

    @classmethod
    def not_found(cls, entity_id, kind: str) -> "ChangeResult":
        return cls(entity_id=entity_id, status=STATUS_NOT_FOUND, error=f"{kind} {entity_id} not found")

    @classmethod
    def failed(cls, entity_id, message: str) -> "ChangeResult":
        return cls(entity_id=entity_id, status=STATUS_ERROR, error=message)

    def to_dict(self) -> dict:
        """Sync wire shape. Not-found is reported as an error with a message."""
        status = STATUS_ERROR if self.status == STATUS_NOT_FOUND else self.status
        data: dict[str, Any] = {"id": self.entity_id, "status": status}
        if self.server_version is not None:
            data["serverVersion"] = self.server_version
        if self.client_version is not None:
            data["clientVersion"] = self.client_version
        if self.error:
            data["error"] = self.error
        return data


def apply_change(org_id: int, actor_id: Optional[str], change: ProposedChange) -> ChangeResult:
    """
    Resolve one proposed change as its own unit of work.

    The caller must have validated org_id (tenant_service.require_organization).
    """
    try:
        kind_def = entity_store.resolve_kind(change.kind)
    except UnknownEntityKind as exc:
        return ChangeResult.failed(change.entity_id, str(exc))

    if change.operation == OP_INSERT:
        return _apply_insert(org_id, actor_id, kind_def, change)
    if change.operation in (OP_UPDATE, OP_DELETE):
        return _apply_versioned(org_id, actor_id, kind_def, change)
    return ChangeResult.failed(change.entity_id, f"Unknown operation {change.operation!r}")


def _apply_insert(org_id: int, actor_id, kind_def, change: ProposedChange) -> ChangeResult:
    entity_id = change.entity_id or new_entity_id()

    existing = db.session.get(kind_def.model, entity_id)
    if existing is not None:
        if existing.org_id == org_id:
            # Retransmitted insert: already applied, nothing new to record
            return ChangeResult.success(entity_id, server_version=existing.version)
        return ChangeResult.failed(entity_id, "id is not available")

    try:
        entity_store.create_entity(org_id, kind_def.name, change.fields, entity_id=entity_id)
        ledger_service.append_entry(
            org_id=org_id,
            entity_kind=kind_def.name,
            entity_id=entity_id,
            operation=OP_INSERT,
            actor_id=actor_id,
        )
        db.session.commit()
    except (UnknownFieldError, ValueError) as exc:
        db.session.rollback()
        return ChangeResult.failed(entity_id, str(exc))
    except IntegrityError:
        db.session.rollback()
        winner = db.session.get(kind_def.model, entity_id)
        if winner is not None and winner.org_id == org_id:
            # Lost a race against the same retransmitted insert
            return ChangeResult.success(entity_id, server_version=winner.version)
        if winner is not None:
            return ChangeResult.failed(entity_id, "id is not available")
        return ChangeResult.failed(entity_id, f"{kind_def.name} violates a storage constraint")
    except Exception:
        db.session.rollback()
        raise

    entity = entity_store.get_entity(org_id, kind_def.name, entity_id)
    payload = entity.to_dict()
    broadcast.publish(org_id, kind_def.event_type("created"), payload)
    return ChangeResult.success(entity_id, server_version=entity.version, entity=payload)


def _apply_versioned(org_id: int, actor_id, kind_def, change: ProposedChange) -> ChangeResult:
    entity_id = change.entity_id
    if not entity_id:
        return ChangeResult.failed(None, f"id is required for {change.operation}")
    if change.client_version is None:
        return ChangeResult.failed(entity_id, f"clientVersion is required for {change.operation}")

    current = entity_store.find_entity(org_id, kind_def.name, entity_id)
    if current is None:
        return ChangeResult.not_found(entity_id, kind_def.name)

    if current.version != change.client_version:
        return _conflict(kind_def.name, entity_id, current.version, change.client_version)

    try:
        if change.operation == OP_UPDATE:
            entity_store.update_entity(
                org_id, kind_def.name, entity_id, change.fields, expected_version=change.client_version
            )
            payload = None
        else:
            payload = entity_store.delete_entity(
                org_id, kind_def.name, entity_id, expected_version=change.client_version
            )
        ledger_service.append_entry(
            org_id=org_id,
            entity_kind=kind_def.name,
            entity_id=entity_id,
            operation=change.operation,
            actor_id=actor_id,
        )
        db.session.commit()
    except VersionConflict as exc:
        # Another writer committed between our read and the atomic UPDATE
        db.session.rollback()
        fresh = entity_store.find_entity(org_id, kind_def.name, entity_id)
        if fresh is None:
            return ChangeResult.not_found(entity_id, kind_def.name)
        return _conflict(kind_def.name, entity_id, fresh.version, exc.client_version)
    except EntityNotFound:
        db.session.rollback()
        return ChangeResult.not_found(entity_id, kind_def.name)
    except (UnknownFieldError, ValueError) as exc:
        db.session.rollback()
        return ChangeResult.failed(entity_id, str(exc))
    except IntegrityError:
        db.session.rollback()
        if change.operation == OP_DELETE:
            return ChangeResult.failed(entity_id, f"{kind_def.name} {entity_id} is referenced by other records")
        return ChangeResult.failed(entity_id, f"{kind_def.name} violates a storage constraint")
    except Exception:
        db.session.rollback()
        raise

    if change.operation == OP_UPDATE:
        entity = entity_store.get_entity(org_id, kind_def.name, entity_id)
        payload = entity.to_dict()
        broadcast.publish(org_id, kind_def.event_type("updated"), payload)
        return ChangeResult.success(entity_id, server_version=entity.version, entity=payload)

    broadcast.publish(org_id, kind_def.event_type("deleted"), payload)
    return ChangeResult.success(entity_id, server_version=payload.get("version"), entity=payload)


def _conflict(kind: str, entity_id, server_version: int, client_version: int) -> ChangeResult:
    current_app.logger.info(
        "Version conflict on %s %s: server=%s client=%s", kind, entity_id, server_version, client_version
    )
    return ChangeResult.conflict(entity_id, server_version, client_version)
