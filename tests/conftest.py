"""Shared test fixtures: in-memory document store, fixed clock, recording publisher."""

from datetime import date, datetime, timedelta
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app.database import Base
from app.document_store import DocumentStore, SqlDocumentStore, Where
from app.domain.scheduling.events import DomainEvent, EventPublisher
from app.domain.scheduling.schemas import Caller, CallerRole
from app.shared.errors import UpstreamUnavailable

BA = ZoneInfo("America/Argentina/Buenos_Aires")

# Sunday; the seeded professional works on Tuesdays
SUNDAY = date(2026, 3, 1)
TUESDAY = date(2026, 3, 3)
NEXT_TUESDAY = date(2026, 3, 10)

PRO_ID = "pro_ana"
DEPOSIT_PRO_ID = "pro_bruno"


def local(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=BA)


class FakeClock:
    """Callable clock the tests can move"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingPublisher(EventPublisher):
    def __init__(self, fail: bool = False):
        self.events: list[DomainEvent] = []
        self.fail = fail

    async def publish(self, event: DomainEvent) -> None:
        if self.fail:
            raise RuntimeError("queue down")
        self.events.append(event)

    def types_for(self, recipient_id: Optional[str]) -> list[str]:
        return [e.type.value for e in self.events if e.recipient_id == recipient_id]


class FlakyStore(DocumentStore):
    """Delegates to a real store but fails reads on chosen collections"""

    def __init__(self, inner: DocumentStore, failing: Sequence[str] = ()):
        self.inner = inner
        self.failing = set(failing)

    def get(self, collection, doc_id):
        return self.inner.get(collection, doc_id)

    def query(self, collection: str, predicates: Sequence[Where] = ()):
        if collection in self.failing:
            raise UpstreamUnavailable(f"{collection} unreachable")
        return self.inner.query(collection, predicates)

    def create(self, collection, doc, doc_id=None):
        return self.inner.create(collection, doc, doc_id)

    def update(self, collection, doc_id, partial):
        return self.inner.update(collection, doc_id, partial)

    def transaction(self, *lock_keys):
        return self.inner.transaction(*lock_keys)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(local(SUNDAY, 12))


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# Tuesday 09:00-12:00, 50 minute sessions, 10 minute buffer, no deposit
ANA_PROFILE = {
    "name": "Ana Gómez",
    "email": "ana@example.com",
    "availability": {
        "monday": {"enabled": False, "slots": [{"start": "09:00", "end": "12:00"}]},
        "tuesday": {"enabled": True, "slots": [{"start": "09:00", "end": "12:00"}]},
    },
    "sessionDuration": 50,
    "bufferTime": 10,
    "sessionPrice": 20000,
    "depositPercent": 0,
}


@pytest.fixture
def professional(store):
    return store.create("professionals", ANA_PROFILE, doc_id=PRO_ID)


@pytest.fixture
def deposit_professional(store):
    """Same Tuesday template, but bookings require a 50% deposit"""
    return store.create(
        "professionals",
        {
            "name": "Bruno Díaz",
            "email": "bruno@example.com",
            "availability": {
                "tuesday": {"enabled": True, "slots": [{"start": "09:00", "end": "12:00"}]},
            },
            "sessionDuration": 50,
            "bufferTime": 10,
            "sessionPrice": 30000,
            "depositPercent": 50,
        },
        doc_id=DEPOSIT_PRO_ID,
    )


@pytest.fixture
def patient() -> Caller:
    return Caller(uid="patient_juan", role=CallerRole.PATIENT, email="juan@example.com", name="Juan Pérez")


@pytest.fixture
def other_patient() -> Caller:
    return Caller(uid="patient_lucia", role=CallerRole.PATIENT, email="lucia@example.com", name="Lucía")


@pytest.fixture
def pro() -> Caller:
    return Caller(uid=PRO_ID, role=CallerRole.PROFESSIONAL, email="ana@example.com")


@pytest.fixture
def deposit_pro() -> Caller:
    return Caller(uid=DEPOSIT_PRO_ID, role=CallerRole.PROFESSIONAL, email="bruno@example.com")
