"""Document store contract and implementations.

The engine persists everything as JSON documents grouped by kind
(`leave_requests`, `users`, `notifications`, `notification_log`). Every
document carries a version number; `update_if_version` is the atomic
conditional write that all request mutations go through.

Filters are `(path, op, value)` triples over dotted paths, with `op` one of
`==`, `!=` and `in`. Orders are `(path, direction)` pairs with direction
`asc` or `desc`; documents missing the path sort last.
"""

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from gatepass.core.exceptions import NotFoundError, TransientStoreError, WriteConflictError
from gatepass.db.base import Base
from gatepass.db.models import Document

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]
Order = Tuple[str, str]

FILTER_OPERATORS = ("==", "!=", "in")

_MISSING = object()


class StoredDocument(NamedTuple):
    """A document as read from the store."""
    id: str
    version: int
    data: Dict[str, Any]


def get_path(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Read a dotted path from nested mappings."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def set_path(data: Dict[str, Any], path: str, value: Any) -> None:
    """Write a dotted path, creating intermediate mappings."""
    parts = path.split(".")
    current = data
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def matches(data: Dict[str, Any], filters: Sequence[Filter]) -> bool:
    """Check a document body against every filter."""
    for path, op, expected in filters:
        value = get_path(data, path, _MISSING)
        if op == "==":
            if value is _MISSING or value != expected:
                return False
        elif op == "!=":
            if value is not _MISSING and value == expected:
                return False
        elif op == "in":
            if value is _MISSING or value not in expected:
                return False
        else:
            raise ValueError(f"Unsupported filter operator: {op}")
    return True


def sort_documents(docs: List[StoredDocument], order: Sequence[Order]) -> List[StoredDocument]:
    """Sort documents by one or more (path, direction) keys."""
    result = list(docs)
    # Stable sort, least significant key first
    for path, direction in reversed(list(order)):
        if direction not in ("asc", "desc"):
            raise ValueError(f"Unsupported sort direction: {direction}")
        present = [d for d in result if get_path(d.data, path) is not None]
        missing = [d for d in result if get_path(d.data, path) is None]
        present.sort(key=lambda d: get_path(d.data, path), reverse=direction == "desc")
        result = present + missing
    return result


def apply_changes(data: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `data` with dotted-path changes applied."""
    updated = copy.deepcopy(data)
    for path, value in changes.items():
        set_path(updated, path, copy.deepcopy(value))
    return updated


class DocumentStore(ABC):
    """Storage contract used by the engine."""

    @abstractmethod
    def get(self, kind: str, doc_id: str) -> Optional[StoredDocument]:
        """Fetch one document, None when absent."""

    @abstractmethod
    def query(
        self,
        kind: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        """Documents of `kind` matching every filter, in the given order."""

    @abstractmethod
    def set(self, kind: str, doc_id: str, data: Dict[str, Any]) -> StoredDocument:
        """Create or replace a document unconditionally."""

    @abstractmethod
    def delete(self, kind: str, doc_id: str) -> bool:
        """Delete a document; returns whether it existed."""

    @abstractmethod
    def create_if_absent(self, kind: str, doc_id: str, data: Dict[str, Any]) -> bool:
        """Create a document only if the id is free; returns whether it was created."""

    @abstractmethod
    def update_if_version(
        self,
        kind: str,
        doc_id: str,
        expected_version: int,
        data: Dict[str, Any],
    ) -> StoredDocument:
        """
        Replace a document only if it is still at `expected_version`.

        Raises:
            WriteConflictError: If the document changed or disappeared
        """

    def add(self, kind: str, data: Dict[str, Any]) -> StoredDocument:
        """Create a document under a generated id."""
        doc_id = uuid.uuid4().hex
        while not self.create_if_absent(kind, doc_id, data):
            doc_id = uuid.uuid4().hex
        return StoredDocument(doc_id, 1, copy.deepcopy(data))

    def update(self, kind: str, doc_id: str, changes: Dict[str, Any]) -> StoredDocument:
        """
        Merge dotted-path changes into an existing document.

        Raises:
            NotFoundError: If the document does not exist
        """
        doc = self.get(kind, doc_id)
        if doc is None:
            raise NotFoundError(f"{kind}/{doc_id} not found")
        return self.update_if_version(kind, doc_id, doc.version, apply_changes(doc.data, changes))


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store serialized by a single lock."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Tuple[int, Dict[str, Any]]]] = {}
        self._lock = threading.Lock()

    def get(self, kind: str, doc_id: str) -> Optional[StoredDocument]:
        with self._lock:
            entry = self._docs.get(kind, {}).get(doc_id)
            if entry is None:
                return None
            version, data = entry
            return StoredDocument(doc_id, version, copy.deepcopy(data))

    def query(
        self,
        kind: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        with self._lock:
            docs = [
                StoredDocument(doc_id, version, copy.deepcopy(data))
                for doc_id, (version, data) in self._docs.get(kind, {}).items()
                if matches(data, filters)
            ]
        docs = sort_documents(docs, order)
        return docs[:limit] if limit is not None else docs

    def set(self, kind: str, doc_id: str, data: Dict[str, Any]) -> StoredDocument:
        with self._lock:
            bucket = self._docs.setdefault(kind, {})
            version = bucket[doc_id][0] + 1 if doc_id in bucket else 1
            bucket[doc_id] = (version, copy.deepcopy(data))
            return StoredDocument(doc_id, version, copy.deepcopy(data))

    def delete(self, kind: str, doc_id: str) -> bool:
        with self._lock:
            return self._docs.get(kind, {}).pop(doc_id, None) is not None

    def create_if_absent(self, kind: str, doc_id: str, data: Dict[str, Any]) -> bool:
        with self._lock:
            bucket = self._docs.setdefault(kind, {})
            if doc_id in bucket:
                return False
            bucket[doc_id] = (1, copy.deepcopy(data))
            return True

    def update_if_version(
        self,
        kind: str,
        doc_id: str,
        expected_version: int,
        data: Dict[str, Any],
    ) -> StoredDocument:
        with self._lock:
            bucket = self._docs.get(kind, {})
            entry = bucket.get(doc_id)
            if entry is None or entry[0] != expected_version:
                raise WriteConflictError(kind, doc_id, expected_version)
            version = expected_version + 1
            bucket[doc_id] = (version, copy.deepcopy(data))
            return StoredDocument(doc_id, version, copy.deepcopy(data))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(bucket) for bucket in self._docs.values())


class SqlDocumentStore(DocumentStore):
    """
    SQLAlchemy-backed store over the `documents` table.

    Filters and ordering are evaluated in Python after loading the rows of
    one kind, which keeps JSON path handling identical across databases.
    """

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            from gatepass.db.session import get_engine
            engine = get_engine()
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except OperationalError as e:
            logger.error(f"Document store operation failed: {e}")
            raise TransientStoreError("Document store temporarily unavailable") from e
        finally:
            session.close()

    @staticmethod
    def _to_stored(row: Document) -> StoredDocument:
        return StoredDocument(row.id, row.version, copy.deepcopy(row.body or {}))

    def get(self, kind: str, doc_id: str) -> Optional[StoredDocument]:
        with self._transaction() as session:
            row = session.get(Document, (kind, doc_id))
            return self._to_stored(row) if row is not None else None

    def query(
        self,
        kind: str,
        filters: Sequence[Filter] = (),
        order: Sequence[Order] = (),
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        with self._transaction() as session:
            rows = session.execute(select(Document).where(Document.kind == kind)).scalars().all()
            docs = [self._to_stored(row) for row in rows if matches(row.body or {}, filters)]
        docs = sort_documents(docs, order)
        return docs[:limit] if limit is not None else docs

    def set(self, kind: str, doc_id: str, data: Dict[str, Any]) -> StoredDocument:
        with self._transaction() as session:
            row = session.get(Document, (kind, doc_id), with_for_update=True)
            if row is None:
                row = Document(kind=kind, id=doc_id, version=1, body=copy.deepcopy(data))
                session.add(row)
            else:
                row.version = row.version + 1
                row.body = copy.deepcopy(data)
            session.flush()
            return self._to_stored(row)

    def delete(self, kind: str, doc_id: str) -> bool:
        with self._transaction() as session:
            row = session.get(Document, (kind, doc_id))
            if row is None:
                return False
            session.delete(row)
            return True

    def create_if_absent(self, kind: str, doc_id: str, data: Dict[str, Any]) -> bool:
        try:
            with self._transaction() as session:
                session.add(Document(kind=kind, id=doc_id, version=1, body=copy.deepcopy(data)))
        except IntegrityError:
            return False
        return True

    def update_if_version(
        self,
        kind: str,
        doc_id: str,
        expected_version: int,
        data: Dict[str, Any],
    ) -> StoredDocument:
        with self._transaction() as session:
            result = session.execute(
                update(Document)
                .where(
                    Document.kind == kind,
                    Document.id == doc_id,
                    Document.version == expected_version,
                )
                .values(
                    version=expected_version + 1,
                    body=copy.deepcopy(data),
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise WriteConflictError(kind, doc_id, expected_version)
        return StoredDocument(doc_id, expected_version + 1, copy.deepcopy(data))
