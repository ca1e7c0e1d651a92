# Overview: Flask API routes for reading the per-tenant sync ledger.

from flask import Blueprint, request, jsonify, g

from possync.time_utils import parse_iso_datetime, to_utc_z
from ..decorators import require_tenant_context
from ..services import ledger_service

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- Pages are newest first; cursor is "<committed_at>|<id>" of the last row seen.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
@require_tenant_context
def list_ledger_entries_route():
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    cursor = None
    cursor_raw = request.args.get("cursor")
    if cursor_raw:
        try:
            cursor_parts = cursor_raw.split("|")
            cursor = (parse_iso_datetime(cursor_parts[0]), int(cursor_parts[1]))
        except (ValueError, IndexError):
            return jsonify({"error": "cursor must be in format <ISO-8601>|<id>"}), 400
        if cursor[0] is None:
            return jsonify({"error": "cursor must be in format <ISO-8601>|<id>"}), 400

    rows = ledger_service.list_entries(
        g.org_id,
        limit=limit,
        cursor=cursor,
        entity_kind=request.args.get("entity_kind") or None,
    )

    next_cursor = None
    if len(rows) == limit:
        last = rows[-1]
        next_cursor = f"{to_utc_z(last.committed_at)}|{last.id}"

    return jsonify({
        "items": [r.to_dict() for r in rows],
        "next_cursor": next_cursor,
        "limit": limit,
    }), 200
