"""
Pytest Configuration and Shared Fixtures
========================================

This module provides shared fixtures for all MedRemind tests.
Fixtures include database sessions, a fixed clock, an unstarted job queue,
recording notification transports, the reminder engine and sample data.
"""

import os
import sys
from datetime import datetime, timedelta
from typing import Generator, Dict, List

# Never touch a real database or start the scheduler from tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker, Session

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, build_engine
from models import (
    User, Medicine, ReminderOccurrence, ReminderItem,
    ReminderStatus, RepeatKind,
)
from actions.job_queue import DelayedJobQueue
from actions.reminder_engine import ReminderSchedulingEngine
from api.deps import get_reminder_engine
from services.reminder_store import ReminderStore
from tools.clock import FixedClock
from tools.notification_service import NotificationChannel, NotificationService
from app import app


# Monday 2024-03-04 07:00 UTC
NOW = datetime(2024, 3, 4, 7, 0)


# ==================== DATABASE FIXTURES ====================

@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite"""
    engine = build_engine("sqlite:///:memory:")

    # Create all tables
    Base.metadata.create_all(bind=engine)

    yield engine

    # Cleanup
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> sessionmaker:
    """Session factory bound to the test database"""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=test_engine
    )


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a test database session for seeding data"""
    session = session_factory()

    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def store(session_factory) -> ReminderStore:
    """Reminder store on the test database"""
    return ReminderStore(session_factory=session_factory)


# ==================== PIPELINE FIXTURES ====================

class RecordingTransport:
    """Notification transport that records calls instead of sending"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[tuple] = []

    def __call__(self, target: str, title: str, body: str):
        self.calls.append((target, title, body))
        if self.fail:
            raise RuntimeError("provider unavailable")
        return f"msg-{len(self.calls)}"


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at NOW, advanced explicitly by tests"""
    return FixedClock(NOW)


@pytest.fixture
def queue(clock) -> DelayedJobQueue:
    """Unstarted in-memory job queue; tests execute jobs by hand"""
    return DelayedJobQueue(jobstore_url=None, clock=clock)


@pytest.fixture
def make_transport():
    """Factory for recording transports, optionally failing on every call"""
    return RecordingTransport


@pytest.fixture
def transports() -> Dict[NotificationChannel, RecordingTransport]:
    return {
        NotificationChannel.PUSH: RecordingTransport(),
        NotificationChannel.SMS: RecordingTransport(),
        NotificationChannel.EMAIL: RecordingTransport(),
    }


@pytest.fixture
def dispatcher(transports) -> NotificationService:
    return NotificationService(transports=transports, timeout_seconds=5)


@pytest.fixture
def engine(store, queue, dispatcher, clock) -> ReminderSchedulingEngine:
    """Reminder engine wired to the test store, queue, transports and clock"""
    return ReminderSchedulingEngine(
        store=store,
        queue=queue,
        dispatcher=dispatcher,
        clock=clock,
        grace_minutes=30
    )


@pytest.fixture(scope="function")
def client(engine) -> Generator[TestClient, None, None]:
    """Create a FastAPI test client with the engine overridden"""
    app.dependency_overrides[get_reminder_engine] = lambda: engine

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ==================== SAMPLE DATA FIXTURES ====================

@pytest.fixture
def guardian(db_session: Session) -> User:
    """Guardian receiving missed-dose alerts by push and email"""
    user = User(
        name="Maria Lopez",
        email="maria.lopez@example.com",
        phone="+15550000001",
        timezone="UTC",
        push_token="guardian-device",
        notify_push=True,
        notify_sms=False,
        notify_email=True
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def test_user(db_session: Session, guardian: User) -> User:
    """Reminder recipient notified by push and SMS"""
    user = User(
        name="Leo Lopez",
        email="leo.lopez@example.com",
        phone="+15550000002",
        timezone="UTC",
        push_token="leo-device",
        notify_push=True,
        notify_sms=True,
        notify_email=False,
        guardian_id=guardian.id
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def medicines(db_session: Session, test_user: User) -> List[Medicine]:
    """Two medicines owned by the test user"""
    items = [
        Medicine(user_id=test_user.id, name="Metformin", dosage="500mg"),
        Medicine(user_id=test_user.id, name="Lisinopril", dosage="10mg"),
    ]
    db_session.add_all(items)
    db_session.commit()
    for item in items:
        db_session.refresh(item)
    return items


@pytest.fixture
def make_occurrence(db_session: Session, test_user: User, medicines: List[Medicine]):
    """Factory persisting an occurrence directly, bypassing the engine"""

    def _make(
        fire_time: datetime = NOW + timedelta(hours=1),
        medicine_count: int = 1,
        repeat_kind: RepeatKind = RepeatKind.NONE,
        status: ReminderStatus = ReminderStatus.PENDING,
        **fields
    ) -> ReminderOccurrence:
        occurrence = ReminderOccurrence(
            user_id=fields.pop("user_id", test_user.id),
            scheduled_start=fields.pop("scheduled_start", fire_time),
            fire_time=fire_time,
            repeat_kind=repeat_kind,
            status=status,
            items=[
                ReminderItem(medicine_id=medicine.id, position=position)
                for position, medicine in enumerate(medicines[:medicine_count])
            ],
            **fields
        )
        db_session.add(occurrence)
        db_session.commit()
        db_session.refresh(occurrence)
        return occurrence

    return _make


# ==================== MARKERS ====================

def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "api: mark test as an API test")
    config.addinivalue_line("markers", "database: mark test as requiring database")
