# Overview: Flask API route for offline device reconciliation.

from flask import Blueprint, request, jsonify, g, current_app

from possync.time_utils import parse_iso_datetime
from ..decorators import require_tenant_context
from ..services import sync_service
from ..services.tenant_service import TenantNotFound, get_current_actor_id

sync_bp = Blueprint("sync", __name__, url_prefix="/api")


@sync_bp.post("/sync")
@require_tenant_context
def sync_route():
    """
    Apply a device's queued changes and return what it missed.

    Request:
        {
            "lastSyncTime": "2025-01-01T10:00:00.000000Z" | null,
            "proposedChanges": [
                {"kind": "table", "id": "...", "operation": "UPDATE",
                 "fields": {...}, "clientVersion": 3}
            ]
        }

    "pendingChanges" is accepted in place of "proposedChanges".

    Response:
        {"results": [...], "serverChanges": [...], "syncTime": "..."}

    Per-change outcomes live in "results"; a conflicting change does not
    fail the request.
    """
    data = request.get_json(silent=True) or {}

    try:
        last_sync_time = parse_iso_datetime(data.get("lastSyncTime"))
    except (AttributeError, TypeError, ValueError):
        return jsonify({"error": "lastSyncTime must be an ISO-8601 datetime"}), 400

    changes = data.get("proposedChanges")
    if changes is None:
        changes = data.get("pendingChanges") or []
    if not isinstance(changes, list):
        return jsonify({"error": "proposedChanges must be a list"}), 400

    try:
        result = sync_service.sync(g.org_id, get_current_actor_id(), last_sync_time, changes)
    except TenantNotFound:
        return jsonify({"error": "Organization not found"}), 404
    except Exception:
        current_app.logger.exception("Sync failed for organization %s", g.org_id)
        return jsonify({"error": "Internal server error"}), 500

    body = result.to_dict()
    body["syncResults"] = body["results"]
    return jsonify(body), 200
