"""
Tenant Broadcast Fan-out - best-effort real-time events per organization

DESIGN:
- One SessionRegistry per Flask app, created in create_app and kept in
  app.extensions. There is no module-level registry.
- A session is anything with a `session_id` and a `send(event)` method.
  QueueSession is the built-in in-memory mailbox used by the SSE stream.
- A session is subscribed to at most one organization; subscribing again
  replaces the previous subscription.
- publish() is fire-and-forget: no persistence, no acknowledgment, no replay.
  Devices that miss events catch up through the sync ledger.
- Callers publish only after the database commit succeeded.

EVENT SHAPE:
    {"eventType": "table-updated", "tenant": 1, "payload": {...}}
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from typing import Optional, Protocol

from flask import current_app

EXTENSION_KEY = "possync.sessions"


class Session(Protocol):
    session_id: str

    def send(self, event: dict) -> None:
        ...


def build_event(org_id: int, event_type: str, payload: dict) -> dict:
    return {"eventType": event_type, "tenant": org_id, "payload": payload}


class SessionRegistry:
    """
    Tracks which session listens to which organization.

    Thread-safe: subscribe/unsubscribe/publish may run on different request
    threads. publish() snapshots the subscriber set under the lock and sends
    outside it, so a slow session never blocks registration.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._by_tenant: dict[int, set] = {}
        self._session_tenant: dict = {}

    def subscribe(self, session: Session, org_id: int) -> Optional[int]:
        """Subscribe a session to one organization; returns the tenant it left, if any."""
        with self._lock:
            previous = self._detach(session)
            self._by_tenant.setdefault(org_id, set()).add(session)
            self._session_tenant[session] = org_id
        self._logger.debug("Session %s joined organization %s", session.session_id, org_id)
        return previous

    def unsubscribe(self, session: Session) -> Optional[int]:
        """Remove a session (explicit leave or disconnect). Unknown sessions are a no-op."""
        with self._lock:
            previous = self._detach(session)
        if previous is not None:
            self._logger.debug("Session %s left organization %s", session.session_id, previous)
        return previous

    def _detach(self, session: Session) -> Optional[int]:
        org_id = self._session_tenant.pop(session, None)
        if org_id is not None:
            members = self._by_tenant.get(org_id)
            if members is not None:
                members.discard(session)
                if not members:
                    del self._by_tenant[org_id]
        return org_id

    def tenant_of(self, session: Session) -> Optional[int]:
        with self._lock:
            return self._session_tenant.get(session)

    def subscriber_count(self, org_id: int) -> int:
        with self._lock:
            return len(self._by_tenant.get(org_id, ()))

    def publish(self, org_id: int, event_type: str, payload: dict) -> int:
        """
        Deliver one event to every session of `org_id`.

        Returns the number of sessions the event was handed to. A session whose
        send() raises is logged and dropped from the registry.
        """
        with self._lock:
            targets = list(self._by_tenant.get(org_id, ()))
        if not targets:
            return 0

        event = build_event(org_id, event_type, payload)
        delivered = 0
        for session in targets:
            try:
                session.send(event)
                delivered += 1
            except Exception:
                self._logger.warning(
                    "Dropping session %s after failed %s delivery",
                    getattr(session, "session_id", session),
                    event_type,
                    exc_info=True,
                )
                self.unsubscribe(session)
        return delivered

    def clear(self) -> None:
        with self._lock:
            self._by_tenant.clear()
            self._session_tenant.clear()


class QueueSession:
    """
    Bounded in-memory mailbox for one connected device.

    send() never blocks: when the mailbox is full the event is dropped and
    counted. The device recovers the gap through its next sync.
    """

    def __init__(self, maxsize: int = 100, session_id: Optional[str] = None, logger: Optional[logging.Logger] = None):
        self.session_id = session_id or uuid.uuid4().hex
        self.dropped = 0
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._logger = logger or logging.getLogger(__name__)

    def send(self, event: dict) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            self._logger.warning(
                "Session %s mailbox full; dropped %s", self.session_id, event.get("eventType")
            )

    def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Next event, or None if nothing arrived within `timeout` seconds."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()


def format_sse(event: dict) -> str:
    """Render an event as one Server-Sent Events frame."""
    data = json.dumps(event, default=str, separators=(",", ":"))
    return f"event: {event['eventType']}\ndata: {data}\n\n"


def init_broadcast(app) -> SessionRegistry:
    registry = SessionRegistry(logger=app.logger)
    app.extensions[EXTENSION_KEY] = registry
    return registry


def get_registry() -> SessionRegistry:
    return current_app.extensions[EXTENSION_KEY]


def publish(org_id: int, event_type: str, payload: dict) -> int:
    """Publish through the current app's registry."""
    return get_registry().publish(org_id, event_type, payload)
