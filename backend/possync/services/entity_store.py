"""
Versioned Entity Store - tenant-scoped reference records with optimistic versions

WHY: Tables, menu items and customers are edited from several devices at
once. Each row carries a version that increases by exactly one per write and
is the only token used to detect concurrent edits.

ATOMICITY: Every versioned model maps `version` as SQLAlchemy's
version_id_col, so a flush emits UPDATE/DELETE ... WHERE id = ? AND
version = ?. If another writer got there first, zero rows match and the
flush raises StaleDataError. There is no read-then-write window.

TRANSACTIONS: Store functions flush but never commit. The caller owns the
unit of work (mutation + ledger entry) and commits or rolls back. A lost
versioned flush is the exception: it has already ended the transaction, so
the store rolls back and re-reads before raising VersionConflict.

FIELD WHITELIST: Each kind has its own typed change set. Column names never
come from caller input.
"""

from __future__ import annotations

from dataclasses import dataclass, fields as dataclass_fields
from typing import Any, Mapping, Optional

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Customer, DiningTable, MenuItem
from possync.number_utils import to_decimal
from possync.time_utils import utcnow
from .tenant_service import scoped_query


class EntityNotFound(Exception):
    """Raised when an entity does not exist in the caller's organization."""
    def __init__(self, kind: str, entity_id):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class VersionConflict(Exception):
    """Raised when the stored version differs from the caller's expected version."""
    def __init__(self, kind: str, entity_id, server_version: int | None, client_version: int | None):
        super().__init__(
            f"{kind} {entity_id} is at version {server_version}, not {client_version}"
        )
        self.kind = kind
        self.entity_id = entity_id
        self.server_version = server_version
        self.client_version = client_version


class UnknownEntityKind(Exception):
    """Raised for kinds that are not reconciled through the store."""
    def __init__(self, kind):
        super().__init__(f"Unknown entity kind {kind!r}")
        self.kind = kind


class UnknownFieldError(Exception):
    """Raised when a change set names a field outside the kind's whitelist."""
    def __init__(self, kind: str, names: list[str]):
        super().__init__(f"Unknown field(s) for {kind}: {', '.join(sorted(names))}")
        self.kind = kind
        self.names = names


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()

# Keys clients echo back from a fetched record; owned by the store, never written from input
SYSTEM_MANAGED_KEYS = frozenset({"id", "tenant_id", "org_id", "version", "created_at", "updated_at"})


@dataclass(frozen=True)
class _ChangeSet:
    kind = ""

    @classmethod
    def from_fields(cls, values: Mapping[str, Any] | None):
        values = dict(values or {})
        allowed = {f.name for f in dataclass_fields(cls)}
        unknown = [k for k in values if k not in allowed and k not in SYSTEM_MANAGED_KEYS]
        if unknown:
            raise UnknownFieldError(cls.kind, unknown)
        picked = {k: cls._coerce(k, v) for k, v in values.items() if k in allowed}
        return cls(**picked)

    @classmethod
    def _coerce(cls, name: str, value):
        return value

    def as_dict(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in dataclass_fields(self)
            if getattr(self, f.name) is not UNSET
        }


@dataclass(frozen=True)
class TableChanges(_ChangeSet):
    kind = "table"

    name: Any = UNSET
    seats: Any = UNSET
    description: Any = UNSET
    is_active: Any = UNSET
    is_merged: Any = UNSET
    merged_tables: Any = UNSET
    merged_table_names: Any = UNSET
    total_seats: Any = UNSET


@dataclass(frozen=True)
class MenuItemChanges(_ChangeSet):
    kind = "menu_item"

    name: Any = UNSET
    description: Any = UNSET
    category: Any = UNSET
    price: Any = UNSET
    stock_quantity: Any = UNSET
    is_active: Any = UNSET

    @classmethod
    def _coerce(cls, name: str, value):
        if name == "price" and value is not None:
            return to_decimal(value)
        return value


@dataclass(frozen=True)
class CustomerChanges(_ChangeSet):
    kind = "customer"

    name: Any = UNSET
    phone: Any = UNSET
    email: Any = UNSET
    loyalty_points: Any = UNSET


@dataclass(frozen=True)
class EntityKind:
    name: str
    model: type
    changes: type
    event_prefix: str

    def event_type(self, action: str) -> str:
        return f"{self.event_prefix}-{action}"


ENTITY_KINDS: dict[str, EntityKind] = {
    "table": EntityKind("table", DiningTable, TableChanges, "table"),
    "menu_item": EntityKind("menu_item", MenuItem, MenuItemChanges, "menu-item"),
    "customer": EntityKind("customer", Customer, CustomerChanges, "customer"),
}

# Plural table names sent by older clients in the "table" field
_KIND_ALIASES = {
    "tables": "table",
    "menu_items": "menu_item",
    "menu-items": "menu_item",
    "customers": "customer",
}


def resolve_kind(kind: str) -> EntityKind:
    key = (kind or "").strip().lower()
    key = _KIND_ALIASES.get(key, key)
    kind_def = ENTITY_KINDS.get(key)
    if kind_def is None:
        raise UnknownEntityKind(kind)
    return kind_def


def find_entity(org_id: int, kind: str, entity_id: str):
    """Fresh (identity-map bypassing) read of one entity; None if absent in this tenant."""
    kind_def = resolve_kind(kind)
    return (
        scoped_query(kind_def.model, org_id)
        .filter(kind_def.model.id == entity_id)
        .populate_existing()
        .first()
    )


def get_entity(org_id: int, kind: str, entity_id: str):
    entity = find_entity(org_id, kind, entity_id)
    if entity is None:
        raise EntityNotFound(resolve_kind(kind).name, entity_id)
    return entity


def list_entities(org_id: int, kind: str) -> list:
    kind_def = resolve_kind(kind)
    return scoped_query(kind_def.model, org_id).order_by(kind_def.model.name.asc(), kind_def.model.id.asc()).all()


def create_entity(org_id: int, kind: str, values: Mapping[str, Any] | None, entity_id: Optional[str] = None):
    """
    Stage a new entity at version 1.

    The primary key is global; callers check for an existing id first
    (see conflict_service) and handle IntegrityError from a concurrent insert.
    """
    kind_def = resolve_kind(kind)
    changes = kind_def.changes.from_fields(values)
    entity = kind_def.model(org_id=org_id, **changes.as_dict())
    if entity_id:
        entity.id = str(entity_id)
    db.session.add(entity)
    db.session.flush()
    return entity


def _lost_race(org_id: int, kind: str, entity_id: str, expected_version: int) -> Exception:
    """
    A versioned flush matched no row: another writer got there first.

    The failed flush has already ended the transaction, so roll the session
    back and re-read the row to report the version that writer committed.
    """
    db.session.rollback()
    current = find_entity(org_id, kind, entity_id)
    if current is None:
        return EntityNotFound(kind, entity_id)
    return VersionConflict(kind, entity_id, current.version, expected_version)


def update_entity(
    org_id: int,
    kind: str,
    entity_id: str,
    values: Mapping[str, Any] | None,
    expected_version: Optional[int] = None,
):
    """
    Apply a change set and bump the version by one.

    expected_version=None is an unconditional overwrite for internal writers;
    StaleDataError then propagates so run_with_retry can re-run the unit.
    """
    kind_def = resolve_kind(kind)
    changes = kind_def.changes.from_fields(values)

    entity = get_entity(org_id, kind_def.name, entity_id)
    if expected_version is not None and entity.version != expected_version:
        raise VersionConflict(kind_def.name, entity_id, entity.version, expected_version)

    for name, value in changes.as_dict().items():
        setattr(entity, name, value)
    # Always dirty the row so the version bumps even for a no-op change set
    entity.updated_at = utcnow()

    try:
        db.session.flush()
    except StaleDataError:
        if expected_version is None:
            raise
        raise _lost_race(org_id, kind_def.name, entity_id, expected_version)
    return entity


def delete_entity(org_id: int, kind: str, entity_id: str, expected_version: Optional[int] = None) -> dict:
    """Remove an entity; returns its last serialized state for the ledger/broadcast."""
    kind_def = resolve_kind(kind)
    entity = get_entity(org_id, kind_def.name, entity_id)
    if expected_version is not None and entity.version != expected_version:
        raise VersionConflict(kind_def.name, entity_id, entity.version, expected_version)

    snapshot = entity.to_dict()
    db.session.delete(entity)
    try:
        db.session.flush()
    except StaleDataError:
        if expected_version is None:
            raise
        raise _lost_race(org_id, kind_def.name, entity_id, expected_version)
    return snapshot
