"""
Document store used by the scheduling engine.

The engine only needs get / query / create / update over named collections,
with equality, ``in`` and range predicates. There are no joins; anything that
spans collections is merged in application code.

``transaction(*lock_keys)`` is the atomic conditional write: every read and
write made through the yielded store happens in one database transaction that
holds row locks on the given keys until commit.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Iterator, Optional, Sequence

from sqlalchemy import false, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Document, ScheduleLock
from .shared.errors import Conflict, NotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)

OPERATORS = ("==", "in", ">", ">=", "<", "<=")


@dataclass(frozen=True)
class Where:
    """A single predicate on a top-level document field"""

    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise ValueError(f"Unsupported operator '{self.op}'")
        if self.op == "in" and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise ValueError("'in' predicates need a collection of values")


def generate_id(prefix: str) -> str:
    """Generate a prefixed UUID."""
    return f"{prefix}_{uuid.uuid4().hex}"


class DocumentStore(ABC):
    """Abstract document store"""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Return the document (with its ``id``) or None"""

    @abstractmethod
    def query(self, collection: str, predicates: Sequence[Where] = ()) -> list[dict]:
        """Return every document matching all predicates"""

    @abstractmethod
    def create(self, collection: str, doc: dict, doc_id: Optional[str] = None) -> dict:
        """Insert a document and return it with its ``id``"""

    @abstractmethod
    def update(self, collection: str, doc_id: str, partial: dict) -> dict:
        """Shallow-merge ``partial`` into an existing document"""

    @abstractmethod
    def transaction(self, *lock_keys: str) -> ContextManager["DocumentStore"]:
        """Run the block atomically while holding the given locks"""


def _json_field(field: str, sample: Any):
    element = Document.data[field]
    # bool is checked first because it is a subclass of int
    if isinstance(sample, bool):
        return element.as_boolean()
    if isinstance(sample, int):
        return element.as_integer()
    if isinstance(sample, float):
        return element.as_float()
    return element.as_string()


def _compile(predicate: Where):
    if predicate.op == "in":
        values = list(predicate.value)
        if not values:
            return false()
        return _json_field(predicate.field, values[0]).in_(values)

    column = _json_field(predicate.field, predicate.value)
    if predicate.op == "==":
        return column == predicate.value
    if predicate.op == ">":
        return column > predicate.value
    if predicate.op == ">=":
        return column >= predicate.value
    if predicate.op == "<":
        return column < predicate.value
    return column <= predicate.value


def _to_dict(document: Document) -> dict:
    return {**(document.data or {}), "id": document.id}


class SqlDocumentStore(DocumentStore):
    """DocumentStore backed by the ``documents`` table"""

    def __init__(self, session_factory: Callable[[], Session], session: Optional[Session] = None):
        self.session_factory = session_factory
        self._session = session

    def _run(self, operation: Callable[[Session], Any], write: bool = False) -> Any:
        if self._session is not None:
            # Bound to an open transaction; commit happens when it exits
            try:
                return operation(self._session)
            except IntegrityError as e:
                raise Conflict("Document already exists") from e
            except SQLAlchemyError as e:
                logger.error(f"❌ Document store error inside transaction: {e}")
                raise UpstreamUnavailable("Document store unavailable") from e

        session = self.session_factory()
        try:
            result = operation(session)
            if write:
                session.commit()
            return result
        except IntegrityError as e:
            session.rollback()
            raise Conflict("Document already exists") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"❌ Document store error: {e}")
            raise UpstreamUnavailable("Document store unavailable") from e
        finally:
            session.close()

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        def operation(session: Session):
            document = session.get(Document, (collection, doc_id))
            return _to_dict(document) if document else None

        return self._run(operation)

    def query(self, collection: str, predicates: Sequence[Where] = ()) -> list[dict]:
        def operation(session: Session):
            q = session.query(Document).filter(Document.collection == collection)
            for predicate in predicates:
                q = q.filter(_compile(predicate))
            return [_to_dict(document) for document in q.all()]

        return self._run(operation)

    def create(self, collection: str, doc: dict, doc_id: Optional[str] = None) -> dict:
        data = {key: value for key, value in doc.items() if key != "id"}
        new_id = doc_id or doc.get("id") or generate_id(collection[:3])

        def operation(session: Session):
            document = Document(collection=collection, id=new_id, data=data)
            session.add(document)
            session.flush()
            return _to_dict(document)

        return self._run(operation, write=True)

    def update(self, collection: str, doc_id: str, partial: dict) -> dict:
        def operation(session: Session):
            document = session.get(Document, (collection, doc_id))
            if document is None:
                raise NotFound(f"{collection}/{doc_id} not found")
            merged = dict(document.data or {})
            merged.update({key: value for key, value in partial.items() if key != "id"})
            # Reassign so the JSON column is flagged dirty
            document.data = merged
            session.flush()
            return _to_dict(document)

        return self._run(operation, write=True)

    @staticmethod
    def _acquire(session: Session, key: str) -> None:
        if session.get(ScheduleLock, key) is None:
            session.add(ScheduleLock(key=key, version=0))
            session.flush()
        # The UPDATE takes the row (or database) write lock until commit
        session.execute(
            update(ScheduleLock)
            .where(ScheduleLock.key == key)
            .values(version=ScheduleLock.version + 1)
        )

    @contextmanager
    def transaction(self, *lock_keys: str) -> Iterator["SqlDocumentStore"]:
        if self._session is not None:
            yield self
            return

        session = self.session_factory()
        try:
            # Sorted acquisition order keeps two multi-key writers from deadlocking
            for key in sorted(set(lock_keys)):
                self._acquire(session, key)
            yield SqlDocumentStore(self.session_factory, session=session)
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.warning(f"⚠️ Concurrent write on {lock_keys}, asking caller to retry")
            raise Conflict("Another change to this schedule is in progress, please retry") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"❌ Transaction failed for {lock_keys}: {e}")
            raise UpstreamUnavailable("Document store unavailable") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
