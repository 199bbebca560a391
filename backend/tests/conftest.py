"""
Pytest fixtures for repairdesk backend tests.

Provides the in-memory app, a per-test clean database, a pinned clock,
a recording notification sink, actors and a small seeded workshop.
"""

from datetime import datetime, timedelta

import pytest

from repairdesk import create_app
from repairdesk.extensions import db
from repairdesk.models import Location
from repairdesk.permissions import Actor, ROLE_PRIVILEGED, ROLE_STANDARD
from repairdesk.services import order_service, parts_service


class FixedClock:
    """Callable clock for the CLOCK config slot; only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingSink:
    """Notification sink that keeps every event; can be told to blow up."""

    def __init__(self):
        self.events = []
        self.in_transaction = []
        self.fail = False

    def notify(self, event):
        self.in_transaction.append(db.session().in_transaction())
        if self.fail:
            raise RuntimeError("SMS gateway unreachable")
        self.events.append(event)

    @property
    def types(self):
        return [e.type for e in self.events]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def clock(app):
    """Pin business time at 2026-03-02 09:00 UTC."""
    fixed = FixedClock(datetime(2026, 3, 2, 9, 0))
    app.config['CLOCK'] = fixed
    yield fixed
    app.config['CLOCK'] = None


@pytest.fixture(scope='function')
def sink(app):
    recording = RecordingSink()
    app.config['NOTIFICATION_SINK'] = recording
    yield recording
    app.config['NOTIFICATION_SINK'] = None


@pytest.fixture
def standard():
    return Actor(id="tech-1", role=ROLE_STANDARD)


@pytest.fixture
def privileged():
    return Actor(id="manager-1", role=ROLE_PRIVILEGED)


@pytest.fixture
def standard_headers():
    return {"X-Actor-Id": "tech-1", "X-Actor-Role": "standard"}


@pytest.fixture
def privileged_headers():
    return {"X-Actor-Id": "manager-1", "X-Actor-Role": "privileged"}


@pytest.fixture(scope='function')
def location(db_session):
    loc = Location(name="Berlin Mitte", code="BER")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def other_location(db_session):
    loc = Location(name="Hamburg Altona", code="HAM")
    db_session.add(loc)
    db_session.commit()
    return loc


@pytest.fixture(scope='function')
def part(db_session, location, privileged):
    """Display-X with three on the shelf."""
    return parts_service.create_part(
        location,
        privileged,
        sku="DSP-X",
        name="Display-X",
        manufacturer="Apple",
        device_model="iPhone 13",
        purchase_price="40.00",
        sale_price="89.90",
        initial_stock=3,
    )


@pytest.fixture(scope='function')
def order(db_session, location, standard):
    return order_service.create_order(
        location,
        standard,
        device_manufacturer="Apple",
        device_model="iPhone 13",
        error_description="Cracked display",
        checklist=["Display works", "Face ID works"],
    )


@pytest.fixture(scope='function')
def b2b_order(db_session, location, standard):
    return order_service.create_order(
        location,
        standard,
        device_manufacturer="Samsung",
        device_model="Galaxy S22",
        error_description="No power",
        is_b2b=True,
        mail_in=True,
    )
