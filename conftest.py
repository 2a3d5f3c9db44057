import os
from datetime import datetime, time, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking_engine.auth import jwt_handler  # noqa: E402
from booking_engine.core.errors import UpstreamDegraded, UpstreamWriteFailure  # noqa: E402
from booking_engine.database import Base  # noqa: E402
from booking_engine.external_calendar.google import Credential, EventRef, get_calendar_gateway  # noqa: E402
from booking_engine.main import app  # noqa: E402
from booking_engine.models.availability import AvailabilityRule  # noqa: E402
from booking_engine.models.tenant import Tenant  # noqa: E402
from booking_engine.routes.common import get_db  # noqa: E402

ROUTE_MODULES = (
    'booking_engine.routes.scheduling_routes',
    'booking_engine.routes.voice_routes',
    'booking_engine.routes.availability_routes',
    'booking_engine.routes.appointment_routes',
    'booking_engine.routes.calendar_routes',
)


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def tenant(db):
    record = Tenant(
        id='acme',
        business_name='Acme Dental',
        timezone='UTC',
        default_meeting_duration=30,
        buffer_minutes=0,
        max_advance_days=60,
        can_book_meetings=True,
        voice_agent_id='agent_acme',
        voice_requires_calendar=True,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def monday_rule(db, tenant):
    # 2026-01-05 is a Monday; day_of_week 1 = Monday.
    rule = AvailabilityRule(tenant_id=tenant.id, day_of_week=1, start_time=time(9, 0), end_time=time(17, 0))
    db.add(rule)
    db.commit()
    return rule


class FakeGateway:
    """In-memory stand-in for GoogleCalendarGateway that records every call."""

    client_id = 'test-client'

    def __init__(self, connected=True, busy=None, fail_reads=False, fail_writes=False):
        self.connected = connected
        self.busy = list(busy or [])
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.calls = []
        self.created = []
        self.deleted = []
        self._next_event = 1

    def is_connected(self, db, tenant_id):
        self.calls.append(('is_connected', tenant_id))
        return self.connected

    def get_valid_credential(self, db, tenant_id):
        self.calls.append(('get_valid_credential', tenant_id))
        if not self.connected:
            return None
        if self.fail_reads:
            raise UpstreamDegraded('calendar unreachable')
        return Credential(tenant_id, 'token', 'primary')

    def query_busy(self, db, tenant_id, range_start, range_end, credential=None):
        self.calls.append(('query_busy', tenant_id, range_start, range_end))
        if not self.connected:
            return []
        if self.fail_reads:
            raise UpstreamDegraded('calendar unreachable')
        return [period for period in self.busy if period.start < range_end and period.end > range_start]

    def create_event(self, db, tenant_id, title, description, start, end, attendee_email=None, time_zone=None):
        self.calls.append(('create_event', tenant_id, start, end))
        if self.fail_writes or not self.connected:
            raise UpstreamWriteFailure('calendar write failed')
        event_id = f'evt_{self._next_event}'
        self._next_event += 1
        self.created.append((event_id, title, start, end))
        return EventRef(event_id=event_id, html_link=f'https://calendar.example/{event_id}')

    def delete_event(self, db, tenant_id, event_id):
        self.calls.append(('delete_event', tenant_id, event_id))
        if self.fail_writes:
            raise UpstreamWriteFailure('calendar delete failed')
        self.deleted.append(event_id)

    def build_authorization_url(self, state):
        return f'https://accounts.example/auth?state={state}'

    def disconnect(self, db, tenant_id):
        self.calls.append(('disconnect', tenant_id))
        self.connected = False


@pytest.fixture
def gateway():
    return FakeGateway()


def at(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def bearer(tenant_id='acme', role='admin'):
    token = jwt_handler.create_access_token(f'{role}@{tenant_id}', tenant_id, role=role)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def client(db, gateway, monkeypatch):
    for module in ROUTE_MODULES:
        monkeypatch.setattr(f'{module}.ensure_database_ready', lambda: None)

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_calendar_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def every_day_rules(db, tenant):
    db.add_all(
        AvailabilityRule(tenant_id=tenant.id, day_of_week=day, start_time=time(9, 0), end_time=time(17, 0))
        for day in range(7)
    )
    db.commit()


@pytest.fixture
def tomorrow():
    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return today + timedelta(days=1)
