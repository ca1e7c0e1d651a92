# Overview: Flask API routes for versioned reference entities (tables, menu items, customers).

"""
Every write goes through the conflict resolver, exactly like a change
submitted in a sync batch: same version rule, same ledger entry, same
broadcast. Clients send the version they last saw.

Status mapping:
- success -> 200 (201 for create)
- conflict -> 409 with serverVersion / clientVersion
- not found -> 404
- bad input -> 400
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import entity_store
from ..services.conflict_service import (
    OP_DELETE,
    OP_INSERT,
    OP_UPDATE,
    STATUS_CONFLICT,
    STATUS_NOT_FOUND,
    STATUS_SUCCESS,
    ProposedChange,
    apply_change,
)
from ..services.entity_store import EntityNotFound, UnknownEntityKind
from ..decorators import require_tenant_context
from ..services.tenant_service import get_current_actor_id


entities_bp = Blueprint("entities", __name__, url_prefix="/api/entities")


def _result_response(result, success_status: int = 200):
    body = result.to_dict()
    if result.entity is not None:
        body["entity"] = result.entity
    if result.status == STATUS_SUCCESS:
        return jsonify(body), success_status
    if result.status == STATUS_CONFLICT:
        return jsonify(body), 409
    if result.status == STATUS_NOT_FOUND:
        return jsonify(body), 404
    return jsonify(body), 400


def _version_arg(value):
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return "invalid"


@entities_bp.get("/<kind>")
@require_tenant_context
def list_entities_route(kind: str):
    try:
        kind_def = entity_store.resolve_kind(kind)
    except UnknownEntityKind as e:
        return jsonify({"error": str(e)}), 400

    rows = entity_store.list_entities(g.org_id, kind_def.name)
    return jsonify({"items": [r.to_dict() for r in rows]}), 200


@entities_bp.get("/<kind>/<entity_id>")
@require_tenant_context
def get_entity_route(kind: str, entity_id: str):
    try:
        entity = entity_store.get_entity(g.org_id, kind, entity_id)
    except UnknownEntityKind as e:
        return jsonify({"error": str(e)}), 400
    except EntityNotFound as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"entity": entity.to_dict()}), 200


@entities_bp.post("/<kind>")
@require_tenant_context
def create_entity_route(kind: str):
    """
    Create an entity. The body holds the fields; an optional "id" lets
    offline clients assign identities up front (retransmits are idempotent).
    """
    data = request.get_json(silent=True) or {}
    fields = {k: v for k, v in data.items() if k != "id"}
    change = ProposedChange(
        kind=kind,
        entity_id=str(data["id"]) if data.get("id") else None,
        operation=OP_INSERT,
        fields=fields,
    )
    try:
        result = apply_change(g.org_id, get_current_actor_id(), change)
    except Exception:
        current_app.logger.exception("Failed to create %s", kind)
        return jsonify({"error": "Internal server error"}), 500
    return _result_response(result, success_status=201)


@entities_bp.put("/<kind>/<entity_id>")
@require_tenant_context
def update_entity_route(kind: str, entity_id: str):
    """Update an entity. Body: {"version": <last seen>, ...fields}."""
    data = request.get_json(silent=True) or {}
    version = _version_arg(data.get("version"))
    if version is None or version == "invalid":
        return jsonify({"error": "version required"}), 400

    fields = {k: v for k, v in data.items() if k not in ("id", "version")}
    change = ProposedChange(
        kind=kind,
        entity_id=entity_id,
        operation=OP_UPDATE,
        fields=fields,
        client_version=version,
    )
    try:
        result = apply_change(g.org_id, get_current_actor_id(), change)
    except Exception:
        current_app.logger.exception("Failed to update %s %s", kind, entity_id)
        return jsonify({"error": "Internal server error"}), 500
    return _result_response(result)


@entities_bp.delete("/<kind>/<entity_id>")
@require_tenant_context
def delete_entity_route(kind: str, entity_id: str):
    """Delete an entity. Query: ?version=<last seen>."""
    version = _version_arg(request.args.get("version"))
    if version is None or version == "invalid":
        return jsonify({"error": "version required"}), 400

    change = ProposedChange(
        kind=kind,
        entity_id=entity_id,
        operation=OP_DELETE,
        client_version=version,
    )
    try:
        result = apply_change(g.org_id, get_current_actor_id(), change)
    except Exception:
        current_app.logger.exception("Failed to delete %s %s", kind, entity_id)
        return jsonify({"error": "Internal server error"}), 500
    return _result_response(result)
