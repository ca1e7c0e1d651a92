# Overview: Pytest coverage for tenant broadcast fan-out.

import json
import logging

from possync.services.broadcast import (
    QueueSession,
    SessionRegistry,
    build_event,
    format_sse,
    get_registry,
)
from possync.services.conflict_service import ProposedChange, apply_change


class BrokenSession:
    """Session whose transport is gone."""

    def __init__(self, session_id: str = "broken"):
        self.session_id = session_id

    def send(self, event: dict) -> None:
        raise ConnectionError("socket closed")


class Recorder:
    def __init__(self, session_id: str):
        self.session_id = session_id
        self.events = []

    def send(self, event: dict) -> None:
        self.events.append(event)


class TestSessionRegistry:
    def test_publish_reaches_only_the_tenant(self):
        registry = SessionRegistry()
        a1, a2, b1 = Recorder("a1"), Recorder("a2"), Recorder("b1")
        registry.subscribe(a1, 1)
        registry.subscribe(a2, 1)
        registry.subscribe(b1, 2)

        delivered = registry.publish(1, "table-updated", {"id": "t1"})

        assert delivered == 2
        assert a1.events == [{"eventType": "table-updated", "tenant": 1, "payload": {"id": "t1"}}]
        assert a2.events == a1.events
        assert b1.events == []

    def test_resubscribe_moves_session(self):
        registry = SessionRegistry()
        session = Recorder("s")
        registry.subscribe(session, 1)

        previous = registry.subscribe(session, 2)

        assert previous == 1
        assert registry.tenant_of(session) == 2
        assert registry.subscriber_count(1) == 0
        assert registry.publish(1, "x", {}) == 0

    def test_unsubscribe_is_idempotent(self):
        registry = SessionRegistry()
        session = Recorder("s")
        registry.subscribe(session, 1)
        assert registry.unsubscribe(session) == 1
        assert registry.unsubscribe(session) is None
        assert registry.subscriber_count(1) == 0

    def test_failing_session_is_dropped(self, caplog):
        registry = SessionRegistry(logger=logging.getLogger("possync.test"))
        good, bad = Recorder("good"), BrokenSession()
        registry.subscribe(good, 1)
        registry.subscribe(bad, 1)

        with caplog.at_level(logging.WARNING, logger="possync.test"):
            delivered = registry.publish(1, "table-created", {})

        assert delivered == 1
        assert len(good.events) == 1
        assert registry.tenant_of(bad) is None
        assert any("Dropping session broken" in r.getMessage() for r in caplog.records)


class TestQueueSession:
    def test_overflow_drops_events(self):
        session = QueueSession(maxsize=2)
        for n in range(3):
            session.send(build_event(1, "table-updated", {"n": n}))

        assert session.dropped == 1
        assert session.pending() == 2
        assert session.get(timeout=0.01)["payload"] == {"n": 0}

    def test_get_times_out_empty(self):
        assert QueueSession().get(timeout=0.01) is None

    def test_sse_frame(self):
        frame = format_sse(build_event(3, "order-created", {"id": "o1"}))
        assert frame.startswith("event: order-created\n")
        assert frame.endswith("\n\n")
        data = json.loads(frame.split("data: ", 1)[1])
        assert data == {"eventType": "order-created", "tenant": 3, "payload": {"id": "o1"}}


class TestPublishAfterCommit:
    def test_registry_lives_on_the_app(self, app):
        assert app.extensions["possync.sessions"] is get_registry()

    def test_no_event_for_failed_mutation(self, db_session, org_a, table_a, listener):
        session = listener(org_a.id)
        apply_change(
            org_a.id, None,
            ProposedChange(kind="table", entity_id=table_a.id, operation="UPDATE", fields={"seats": 2}, client_version=4),
        )
        assert session.events == []

    def test_other_tenant_sees_nothing(self, db_session, org_a, org_b, table_a, listener):
        watcher_b = listener(org_b.id)
        apply_change(
            org_a.id, None,
            ProposedChange(kind="table", entity_id=table_a.id, operation="UPDATE", fields={"seats": 2}, client_version=1),
        )
        assert watcher_b.events == []
