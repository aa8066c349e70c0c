"""FastAPI dependencies shared by the routers"""

from datetime import datetime
from typing import Callable

from .database import SessionLocal
from .document_store import DocumentStore, SqlDocumentStore
from .domain.scheduling.events import ArqEventPublisher, EventPublisher
from .domain.scheduling.time_calculator import utc_now

_store = SqlDocumentStore(SessionLocal)
_publisher = ArqEventPublisher()


def get_document_store() -> DocumentStore:
    return _store


def get_event_publisher() -> EventPublisher:
    return _publisher


def get_clock() -> Callable[[], datetime]:
    return utc_now
