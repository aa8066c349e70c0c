"""
Storage models for the document store.

Every collection (appointments, bookings, professionals, services,
notifications) lives in the ``documents`` table as a JSON payload keyed by
(collection, id). ``schedule_locks`` holds one row per lock key so a
transaction can serialize writers on a professional's schedule or on a single
appointment.
"""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlalchemy.sql import func

from .database import Base


class Document(Base):
    """A schemaless record inside a named collection"""

    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(64), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("ix_documents_collection", "collection"),)


class ScheduleLock(Base):
    """Row lock anchor; writers bump ``version`` to take the lock"""

    __tablename__ = "schedule_locks"

    key = Column(String(160), primary_key=True)
    version = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
