# Overview: Server-Sent Events stream of tenant broadcast events.

from flask import Blueprint, Response, g, current_app

from ..decorators import require_tenant_context
from ..services.broadcast import QueueSession, format_sse, get_registry

events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.get("/stream")
@require_tenant_context
def event_stream_route():
    """
    Subscribe the caller to its organization's events.

    Frames: "event: <eventType>\\ndata: {eventType, tenant, payload}".
    A comment frame is sent every EVENT_STREAM_HEARTBEAT_SECONDS when idle.
    Delivery is best-effort; a reconnecting device catches up through /api/sync.
    """
    registry = get_registry()
    logger = current_app.logger
    heartbeat = current_app.config.get("EVENT_STREAM_HEARTBEAT_SECONDS", 15)
    session = QueueSession(
        maxsize=current_app.config.get("BROADCAST_QUEUE_SIZE", 100),
        logger=logger,
    )
    org_id = g.org_id
    registry.subscribe(session, org_id)

    def generate():
        try:
            yield f": connected {session.session_id}\n\n"
            while True:
                event = session.get(timeout=heartbeat)
                if event is None:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        finally:
            # Runs on client disconnect (generator closed)
            registry.unsubscribe(session)
            logger.debug("Event stream %s closed for organization %s", session.session_id, org_id)

    response = Response(generate(), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response
