"""
Pytest fixtures for possync backend tests.

Provides test database setup, two-tenant fixtures, recording sessions for
broadcast assertions, and the Flask test client.
"""

import itertools
from decimal import Decimal

import pytest
from possync import create_app
from possync.extensions import db
from possync.models import Organization, DiningTable, MenuItem
from possync.services.broadcast import get_registry


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'EVENT_STREAM_HEARTBEAT_SECONDS': 0.05,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_registry().clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        get_registry().clear()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Bistro Nord", code="NORD", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Trattoria Sud", code="SUD", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def table_a(db_session, org_a):
    """Table T1 in Organization A, version 1."""
    table = DiningTable(org_id=org_a.id, name="T1", seats=4)
    db_session.add(table)
    db_session.commit()
    return table


@pytest.fixture(scope='function')
def menu_a(db_session, org_a):
    """Two menu items in Organization A."""
    burger = MenuItem(org_id=org_a.id, name="Burger", price=Decimal("10.00"), category="Mains")
    soup = MenuItem(org_id=org_a.id, name="Soup", price=Decimal("5.00"), category="Starters")
    db_session.add_all([burger, soup])
    db_session.commit()
    return burger, soup


class RecordingSession:
    """Session stand-in that keeps every event it receives."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.events = []

    def send(self, event: dict) -> None:
        self.events.append(event)

    def event_types(self) -> list:
        return [e["eventType"] for e in self.events]


@pytest.fixture(scope='function')
def listener(db_session):
    """Factory: subscribe a RecordingSession to an organization."""
    registry = get_registry()
    counter = itertools.count(1)

    def _subscribe(org_id: int, session_id: str = None) -> RecordingSession:
        session = RecordingSession(session_id or f"rec-{org_id}-{next(counter)}")
        registry.subscribe(session, org_id)
        return session

    return _subscribe


@pytest.fixture(scope='function')
def headers_a(org_a):
    """Gateway-forwarded tenant headers for Organization A."""
    return {'X-Org-Id': str(org_a.id), 'X-Actor-Id': 'waiter-a'}


@pytest.fixture(scope='function')
def headers_b(org_b):
    """Gateway-forwarded tenant headers for Organization B."""
    return {'X-Org-Id': str(org_b.id), 'X-Actor-Id': 'waiter-b'}
