"""Shared test fixtures."""
import importlib
from datetime import datetime, timedelta

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadqueue.database import Base
from leadqueue.models.enums import Category, CallbackStatus, InboundStatus

MODEL_MODULES = (
    'lead_record', 'callback', 'inbound_call', 'conversion_record', 'lead_transition',
    'call_contact', 'agent_session', 'job_cursor', 'job_run', 'leak_scan_metric',
)

# Fixed reference time for tests that pass now= explicitly
NOW = datetime(2026, 10, 14, 12, 0, 0)


class FakeRedis:
    """Minimal in-memory Redis fake (strings, hashes, NX/EX sets, pipelines)."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}
        self.ttls = {}

    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.get_store:
            return None
        self.get_store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def exists(self, *keys):
        return sum(1 for k in keys if k in self.get_store or k in self.hash_store)

    def incr(self, key):
        val = int(self.get_store.get(key, 0)) + 1
        self.get_store[key] = str(val)
        return val

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)
            self.ttls.pop(k, None)

    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = value

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that replays queued commands on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        results = [getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._ops]
        self._ops = []
        return results


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    for module in MODEL_MODULES:
        importlib.import_module(f'leadqueue.models.{module}')
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    close() is disabled so that session_scope() closing its session does not
    detach the rows tests are still holding. Commits expire those rows, so
    reads after a service call see what the service wrote.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('leadqueue.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture
def fake_redis():
    """In-memory Redis fake with dict-backed storage."""
    return FakeRedis()


@pytest.fixture
def mock_queue():
    """Stand-in for the RQ queue; records enqueue / enqueue_in calls."""
    return MagicMock()


@pytest.fixture
def app(fake_redis, mock_queue):
    """Flask test app wired to fake Redis and a mock RQ queue."""
    with patch('leadqueue.extensions.redis_client', fake_redis), \
            patch('leadqueue.pipeline.manager._get_queue', return_value=mock_queue):
        from leadqueue import create_app
        app = create_app()
        app.config['TESTING'] = True
        yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_lead(db_session):
    """Factory fixture — inserts and commits a LeadRecord."""
    from leadqueue.models.lead_record import LeadRecord

    def _make(person_id, category=Category.UNSIGNED, score=0, **overrides):
        values = dict(person_id=person_id, category=category, score=score, active=True,
                      reason='Missing signature')
        values.update(overrides)
        lead = LeadRecord(**values)
        db_session.add(lead)
        db_session.commit()
        return lead
    return _make


@pytest.fixture
def make_callback(db_session):
    """Factory fixture — inserts and commits a Callback due a minute before NOW."""
    from leadqueue.models.callback import Callback

    def _make(person_id, scheduled_for=None, **overrides):
        values = dict(
            person_id=person_id,
            category=Category.UNSIGNED,
            scheduled_for=scheduled_for or NOW - timedelta(minutes=1),
            status=CallbackStatus.PENDING,
            max_retries=1,
        )
        values.update(overrides)
        callback = Callback(**values)
        db_session.add(callback)
        db_session.commit()
        return callback
    return _make


@pytest.fixture
def make_entry(db_session):
    """Factory fixture — inserts and commits a waiting inbound call."""
    from leadqueue.models.inbound_call import InboundCallQueueEntry

    def _make(call_sid, entered_at=None, priority=50, **overrides):
        values = dict(
            call_sid=call_sid,
            priority=priority,
            status=InboundStatus.WAITING,
            entered_at=entered_at or NOW,
        )
        values.update(overrides)
        entry = InboundCallQueueEntry(**values)
        db_session.add(entry)
        db_session.commit()
        return entry
    return _make


@pytest.fixture
def now():
    """Fixed reference time; factories schedule relative to it."""
    return NOW
