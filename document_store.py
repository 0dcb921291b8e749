"""
Document Store

Backend-neutral access to the `users`, `drivers` and `tasks` collections.
Provides get/set/update/merge writes, atomic numeric increments, server
timestamps, push-based query subscriptions and multi-document transactions.

Backends:
- SQLDocumentStore: JSON documents in a single SQLAlchemy table (SQLite for
  local development and tests, PostgreSQL for single-region deployments)
- FirestoreDocumentStore (firebase_service.py): Google Cloud Firestore
"""

import json
import logging
import operator
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from timezone_utils import utc_now

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]
Snapshot = List[Tuple[str, Dict[str, Any]]]


class _ServerTimestamp:
    """Sentinel resolved to the commit time by the backend"""

    def __repr__(self):
        return 'SERVER_TIMESTAMP'

SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Atomic numeric increment applied by the backend at write time"""
    amount: float


class StoreError(Exception):
    """Raised when the underlying database or network call fails"""
    pass

class DocumentNotFound(StoreError):
    """Raised by update() when the target document does not exist"""
    pass


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    '==': operator.eq,
    '!=': operator.ne,
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
    'in': lambda value, options: value in options,
}


def matches(data: Dict[str, Any], filters: Optional[Sequence[Filter]]) -> bool:
    """Evaluate query filters against a document. Missing fields never match."""
    for field_name, op, expected in filters or ():
        if op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        if field_name not in data:
            return False
        try:
            if not OPERATORS[op](data[field_name], expected):
                return False
        except TypeError:
            return False
    return True


def apply_write(existing: Optional[Dict[str, Any]], data: Dict[str, Any], merge: bool) -> Dict[str, Any]:
    """
    Resolve a write against the current document contents.

    With merge, untouched fields are kept; without it the document is replaced.
    Increment adds to the stored number (missing counts as 0) and
    SERVER_TIMESTAMP becomes the current UTC time.
    """
    result = dict(existing or {}) if merge else {}
    base = existing or {}
    now = utc_now()
    for key, value in data.items():
        if isinstance(value, Increment):
            current = base.get(key) if merge else None
            if isinstance(current, bool) or not isinstance(current, (int, float)):
                current = 0
            result[key] = current + value.amount
        elif value is SERVER_TIMESTAMP:
            result[key] = now
        else:
            result[key] = value
    return result


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() when the consumer goes away"""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self):
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._cancel()


class Transaction(ABC):
    """
    Read/write view used by multi-document operations.

    All reads must happen before the first write (Firestore rule, kept for
    every backend so service code behaves the same everywhere).
    """

    is_atomic = True

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False):
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str):
        ...


class DirectWriter(Transaction):
    """Transaction-shaped wrapper that applies every call immediately"""

    is_atomic = False

    def __init__(self, store: 'DocumentStore'):
        self._store = store

    def get(self, collection, doc_id):
        return self._store.get(collection, doc_id)

    def set(self, collection, doc_id, data, merge=False):
        self._store.set(collection, doc_id, data, merge=merge)

    def update(self, collection, doc_id, fields):
        self._store.update(collection, doc_id, fields)

    def delete(self, collection, doc_id):
        self._store.delete(collection, doc_id)


class DocumentStore(ABC):
    """Interface shared by all document store backends"""

    supports_transactions = False

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False):
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]):
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str):
        ...

    @abstractmethod
    def query(self, collection: str, filters: Optional[Sequence[Filter]] = None,
              order_by: Optional[str] = None, descending: bool = False,
              limit: Optional[int] = None) -> Snapshot:
        ...

    @abstractmethod
    def subscribe(self, collection: str, filters: Optional[Sequence[Filter]],
                  on_change: Callable[[Snapshot], None]) -> Subscription:
        ...

    def new_document_id(self, collection: str) -> str:
        return uuid.uuid4().hex[:20]

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = self.new_document_id(collection)
        self.set(collection, doc_id, data)
        return doc_id

    def run_transaction(self, operation: Callable[[Transaction], Any]) -> Any:
        raise NotImplementedError(f"{type(self).__name__} does not support transactions")

    def close(self):
        pass


# JSON encoding keeps datetimes round-trippable inside the TEXT column
def _encode_default(value):
    if isinstance(value, datetime):
        return {'$date': value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

def _decode_hook(obj):
    if len(obj) == 1 and '$date' in obj:
        return datetime.fromisoformat(obj['$date'])
    return obj

def encode_document(data: Dict[str, Any]) -> str:
    return json.dumps(data, default=_encode_default, ensure_ascii=False)

def decode_document(raw: str) -> Dict[str, Any]:
    return json.loads(raw, object_hook=_decode_hook)


class Base(DeclarativeBase):
    pass

class DocumentRow(Base):
    __tablename__ = 'documents'

    collection = Column(String(64), primary_key=True)
    doc_id = Column(String(128), primary_key=True)
    data = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def __repr__(self):
        return f'<DocumentRow {self.collection}/{self.doc_id}>'


def build_engine(database_url: str):
    """Create an engine; SQLite gets a shared connection so threads see one database"""
    if database_url.startswith('sqlite'):
        options = {'connect_args': {'check_same_thread': False}}
        if database_url in ('sqlite://', 'sqlite:///:memory:'):
            options['poolclass'] = StaticPool
        return create_engine(database_url, **options)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=280,
    )


class _SQLTransaction(Transaction):

    def __init__(self, session, touched: set):
        self._session = session
        self._touched = touched

    def _row(self, collection, doc_id, for_update=False):
        return self._session.get(DocumentRow, (collection, doc_id), with_for_update=for_update)

    def get(self, collection, doc_id):
        row = self._row(collection, doc_id, for_update=True)
        return decode_document(row.data) if row else None

    def set(self, collection, doc_id, data, merge=False):
        row = self._row(collection, doc_id)
        existing = decode_document(row.data) if row else None
        document = apply_write(existing, data, merge)
        if row is None:
            self._session.add(DocumentRow(collection=collection, doc_id=doc_id,
                                          data=encode_document(document)))
        else:
            row.data = encode_document(document)
            row.updated_at = utc_now()
        self._touched.add(collection)

    def update(self, collection, doc_id, fields):
        row = self._row(collection, doc_id)
        if row is None:
            raise DocumentNotFound(f"No document to update: {collection}/{doc_id}")
        document = apply_write(decode_document(row.data), fields, merge=True)
        row.data = encode_document(document)
        row.updated_at = utc_now()
        self._touched.add(collection)

    def delete(self, collection, doc_id):
        row = self._row(collection, doc_id)
        if row is not None:
            self._session.delete(row)
            self._touched.add(collection)


class SQLDocumentStore(DocumentStore):
    """
    Document store on a single SQLAlchemy table.

    Every write runs in a database transaction; run_transaction() groups several
    writes into one. Subscriptions are in-process: listeners are re-queried and
    notified after each commit that touched their collection.
    """

    supports_transactions = True

    def __init__(self, database_url: str = 'sqlite://'):
        self.database_url = database_url
        self._engine = build_engine(database_url)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        # SQLite serializes writers anyway; the lock also protects the shared
        # in-memory connection and the listener table.
        self._lock = threading.RLock()
        self._listeners: Dict[int, Tuple[str, Tuple[Filter, ...], Callable[[Snapshot], None]]] = {}
        self._next_listener_id = 0
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not initialise document table: {e}") from e

    def _execute(self, operation: Callable[[Transaction], Any]) -> Any:
        touched: set = set()
        try:
            with self._lock:
                with self._sessions() as session, session.begin():
                    result = operation(_SQLTransaction(session, touched))
        except SQLAlchemyError as e:
            logger.error(f"Document store operation failed: {str(e)}")
            raise StoreError(str(e)) from e
        for collection in touched:
            self._notify(collection)
        return result

    def get(self, collection, doc_id):
        try:
            with self._lock, self._sessions() as session:
                row = session.get(DocumentRow, (collection, doc_id))
                return decode_document(row.data) if row else None
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    def set(self, collection, doc_id, data, merge=False):
        self._execute(lambda txn: txn.set(collection, doc_id, data, merge=merge))

    def update(self, collection, doc_id, fields):
        self._execute(lambda txn: txn.update(collection, doc_id, fields))

    def delete(self, collection, doc_id):
        self._execute(lambda txn: txn.delete(collection, doc_id))

    def run_transaction(self, operation):
        return self._execute(operation)

    def query(self, collection, filters=None, order_by=None, descending=False, limit=None):
        try:
            with self._lock, self._sessions() as session:
                rows = session.query(DocumentRow).filter(DocumentRow.collection == collection).all()
                documents = [(row.doc_id, decode_document(row.data)) for row in rows]
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

        results = [(doc_id, data) for doc_id, data in documents if matches(data, filters)]
        if order_by:
            # Firestore drops documents that lack the ordering field
            results = [item for item in results if item[1].get(order_by) is not None]
            results.sort(key=lambda item: item[1][order_by], reverse=descending)
        else:
            results.sort(key=lambda item: item[0])
        if limit is not None:
            results = results[:limit]
        return results

    def subscribe(self, collection, filters, on_change):
        frozen_filters = tuple(filters or ())
        with self._lock:
            listener_id = self._next_listener_id
            self._next_listener_id += 1
            self._listeners[listener_id] = (collection, frozen_filters, on_change)

        def cancel():
            with self._lock:
                self._listeners.pop(listener_id, None)

        # Initial snapshot, like Firestore's first on_snapshot callback
        on_change(self.query(collection, frozen_filters))
        return Subscription(cancel)

    def _notify(self, collection: str):
        with self._lock:
            listeners = [entry for entry in self._listeners.values() if entry[0] == collection]
        for _, filters, callback in listeners:
            # A broken listener must not fail the write that already committed
            try:
                callback(self.query(collection, filters))
            except Exception:
                logger.exception(f"Subscription callback failed for collection '{collection}'")

    def close(self):
        with self._lock:
            self._listeners.clear()
        self._engine.dispose()
