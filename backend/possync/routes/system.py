# backend/possync/routes/system.py
"""
System health endpoint.

Checks the database and the in-process session registry so deployments can
tell a dead core from a quiet one.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Organization, SyncLogEntry
from ..services.broadcast import get_registry
from possync.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with two cheap counts.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        org_count = db.session.query(Organization).count()
        ledger_count = db.session.query(SyncLogEntry).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "organizations": org_count,
                "ledger_entries": ledger_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_broadcast_health() -> dict:
    try:
        get_registry()
    except KeyError:
        return {"status": "unhealthy", "error": "Session registry not initialized"}
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: All systems healthy
    - 503: One or more systems unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    broadcast_health = check_broadcast_health()

    all_checks = [database_health, broadcast_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "broadcast": broadcast_health,
        }
    }

    return response, http_status
