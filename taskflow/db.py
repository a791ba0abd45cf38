"""
Document store abstraction with in-memory and SQL implementations.

The store mirrors the subset of a hosted document database the client uses:
collection-scoped CRUD, field-equality queries, array updates, a few atomic
conditional writes and live query subscriptions. The Firestore adapter lives
in `taskflow.firestore`.
"""

from __future__ import annotations

import copy
import itertools
import json
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable, Optional, Protocol

from sqlalchemy import JSON, Column, Float, String, create_engine, event, select, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from shared.json_utils import to_json_safe
from taskflow.errors import NotFoundError

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list["StoredDocument"]], None]
ErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: dict


@dataclass(frozen=True)
class Query:
    """Field-equality query over one collection."""

    collection: str
    filters: tuple[tuple[str, Any], ...] = ()
    array_contains: Optional[tuple[str, Any]] = None
    order_by: Optional[str] = None
    descending: bool = False
    limit: Optional[int] = None

    def where(self, field_name: str, value: Any) -> "Query":
        return replace(self, filters=self.filters + ((field_name, value),))

    def matches(self, data: dict) -> bool:
        for field_name, value in self.filters:
            if data.get(field_name) != value:
                return False
        if self.array_contains is not None:
            field_name, value = self.array_contains
            if value not in (data.get(field_name) or []):
                return False
        return True

    def apply(self, documents: Iterable[StoredDocument]) -> list[StoredDocument]:
        """Filters, orders and limits documents the way the remote store would."""
        results = [doc for doc in documents if self.matches(doc.data)]
        if self.order_by:
            key = self.order_by
            results.sort(
                key=lambda doc: (doc.data.get(key) is not None, doc.data.get(key)),
                reverse=self.descending,
            )
        if self.limit is not None:
            results = results[: self.limit]
        return results


class Subscription(Protocol):
    """Handle returned by `DocumentStore.listen`."""

    def remove(self) -> None:
        ...


class DocumentStore(Protocol):
    """Interface for document database access."""

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        ...

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        ...

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...

    def query(self, query: Query) -> list[StoredDocument]:
        ...

    def array_union(
        self, collection: str, doc_id: str, field_name: str, values: list
    ) -> None:
        ...

    def append_unique(
        self, collection: str, doc_id: str, field_name: str, item: dict, key: str
    ) -> bool:
        """Appends `item` unless an element with the same `key` value exists."""
        ...

    def update_if(
        self, collection: str, doc_id: str, expected: dict, updates: dict
    ) -> bool:
        """Applies `updates` only if the document exists and matches `expected`."""
        ...

    def insert_if_absent(
        self, collection: str, doc_id: str, data: dict, conflict: Query
    ) -> bool:
        """Creates the document unless it exists or `conflict` matches anything."""
        ...

    def update_many(self, collection: str, doc_ids: list[str], updates: dict) -> int:
        ...

    def listen(
        self,
        query: Query,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        ...


class ListenerRegistration:
    """Removes a listener from its store; safe to call more than once."""

    def __init__(self, on_remove: Callable[[], None]):
        self._on_remove = on_remove
        self._removed = False

    def remove(self) -> None:
        if self._removed:
            return
        self._removed = True
        self._on_remove()


@dataclass
class _Listener:
    query: Query
    callback: SnapshotCallback
    on_error: Optional[ErrorCallback]


class _ListenerHub:
    """In-process snapshot delivery for stores without a native watch API."""

    def __init__(self):
        self._listeners: dict[int, _Listener] = {}
        self._listeners_lock = threading.Lock()
        self._listener_ids = itertools.count()

    def query(self, query: Query) -> list[StoredDocument]:
        raise NotImplementedError

    def listen(
        self,
        query: Query,
        callback: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        listener = _Listener(query=query, callback=callback, on_error=on_error)
        with self._listeners_lock:
            listener_id = next(self._listener_ids)
            self._listeners[listener_id] = listener

        def _remove() -> None:
            with self._listeners_lock:
                self._listeners.pop(listener_id, None)

        # Like the hosted store, the current result set is delivered right away.
        self._deliver(listener)
        return ListenerRegistration(_remove)

    @property
    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def _notify(self, collection: str) -> None:
        with self._listeners_lock:
            listeners = [
                listener
                for listener in self._listeners.values()
                if listener.query.collection == collection
            ]
        for listener in listeners:
            self._deliver(listener)

    def _deliver(self, listener: _Listener) -> None:
        try:
            documents = self.query(listener.query)
        except Exception as e:
            if listener.on_error is None:
                raise
            listener.on_error(e)
            return
        try:
            listener.callback(documents)
        except Exception:
            logger.exception("Snapshot listener for %s failed", listener.query.collection)


class InMemoryDocumentStore(_ListenerHub):
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        super().__init__()
        self.collections: dict[str, dict[str, dict]] = {}
        self._lock = threading.RLock()

    def _collection(self, collection: str) -> dict[str, dict]:
        return self.collections.setdefault(collection, {})

    def _require(self, collection: str, doc_id: str) -> dict:
        data = self._collection(collection).get(doc_id)
        if data is None:
            raise NotFoundError(f"No document to update: {collection}/{doc_id}")
        return data

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.collections.clear()

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            data = self._collection(collection).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        with self._lock:
            docs = self._collection(collection)
            if merge and doc_id in docs:
                docs[doc_id].update(copy.deepcopy(data))
            else:
                docs[doc_id] = copy.deepcopy(data)
        self._notify(collection)

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        with self._lock:
            self._require(collection, doc_id).update(copy.deepcopy(updates))
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            removed = self._collection(collection).pop(doc_id, None)
        if removed is not None:
            self._notify(collection)

    def query(self, query: Query) -> list[StoredDocument]:
        with self._lock:
            documents = [
                StoredDocument(id=doc_id, data=copy.deepcopy(data))
                for doc_id, data in self._collection(query.collection).items()
            ]
        return query.apply(documents)

    def array_union(
        self, collection: str, doc_id: str, field_name: str, values: list
    ) -> None:
        with self._lock:
            data = self._require(collection, doc_id)
            current = list(data.get(field_name) or [])
            for value in values:
                if value not in current:
                    current.append(copy.deepcopy(value))
            data[field_name] = current
        self._notify(collection)

    def append_unique(
        self, collection: str, doc_id: str, field_name: str, item: dict, key: str
    ) -> bool:
        with self._lock:
            data = self._require(collection, doc_id)
            current = list(data.get(field_name) or [])
            if any(existing.get(key) == item.get(key) for existing in current):
                return False
            current.append(copy.deepcopy(item))
            data[field_name] = current
        self._notify(collection)
        return True

    def update_if(
        self, collection: str, doc_id: str, expected: dict, updates: dict
    ) -> bool:
        with self._lock:
            data = self._collection(collection).get(doc_id)
            if data is None:
                return False
            if any(data.get(k) != v for k, v in expected.items()):
                return False
            data.update(copy.deepcopy(updates))
        self._notify(collection)
        return True

    def insert_if_absent(
        self, collection: str, doc_id: str, data: dict, conflict: Query
    ) -> bool:
        with self._lock:
            if doc_id in self._collection(collection):
                return False
            if self.query(replace(conflict, limit=1)):
                return False
            self._collection(collection)[doc_id] = copy.deepcopy(data)
        self._notify(collection)
        return True

    def update_many(self, collection: str, doc_ids: list[str], updates: dict) -> int:
        if not doc_ids:
            return 0
        with self._lock:
            targets = [self._require(collection, doc_id) for doc_id in doc_ids]
            for data in targets:
                data.update(copy.deepcopy(updates))
        self._notify(collection)
        return len(doc_ids)


class SqlDocumentStore(_ListenerHub):
    """
    SQLAlchemy-backed implementation storing each document as a JSON row.

    Accepts any SQLAlchemy URL (e.g., Postgres, or SQLite for tests). Query
    filters are evaluated in Python so the same code runs on every backend.
    Datetimes are stored as ISO-8601 strings.

    Conditional writes read and write inside one transaction. On SQLite every
    transaction starts with `BEGIN IMMEDIATE`, which takes the database write
    lock up front. On Postgres, rows are locked `FOR UPDATE` and
    `insert_if_absent` holds a transaction-scoped advisory lock keyed by its
    conflict query, since row locks cannot see rows that do not exist yet.
    """

    def __init__(self, database_url: str):
        super().__init__()
        if not database_url:
            raise ValueError("database_url is required for SqlDocumentStore")
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
            connect_args=connect_args,
        )
        if self.engine.dialect.name == "sqlite":
            _serialize_sqlite_transactions(self.engine)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _row(self, session: Session, collection: str, doc_id: str, lock: bool = False):
        stmt = select(DocumentRow).where(
            DocumentRow.collection == collection, DocumentRow.doc_id == doc_id
        )
        if lock:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalar_one_or_none()

    def _lock_query(self, session: Session, query: Query) -> None:
        if self.engine.dialect.name != "postgresql":
            return
        key = json.dumps(
            to_json_safe([query.collection, query.filters, query.array_contains]),
            sort_keys=True,
        )
        session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key}
        )

    def _has_match(self, session: Session, query: Query) -> bool:
        rows = (
            session.execute(
                select(DocumentRow)
                .where(DocumentRow.collection == query.collection)
                .with_for_update()
            )
            .scalars()
            .all()
        )
        json_query = _json_query(query)
        return any(json_query.matches(row.data) for row in rows)

    def _require_row(self, session: Session, collection: str, doc_id: str):
        row = self._row(session, collection, doc_id, lock=True)
        if row is None:
            raise NotFoundError(f"No document to update: {collection}/{doc_id}")
        return row

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self.Session() as session:
            row = self._row(session, collection, doc_id)
            return copy.deepcopy(row.data) if row else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        payload = to_json_safe(data)
        with self.Session() as session:
            row = self._row(session, collection, doc_id, lock=True)
            if row is None:
                session.add(
                    DocumentRow(
                        collection=collection,
                        doc_id=doc_id,
                        data=payload,
                        updated_at=time.time(),
                    )
                )
            else:
                row.data = {**row.data, **payload} if merge else payload
                row.updated_at = time.time()
            session.commit()
        self._notify(collection)

    def update(self, collection: str, doc_id: str, updates: dict) -> None:
        with self.Session() as session:
            row = self._require_row(session, collection, doc_id)
            row.data = {**row.data, **to_json_safe(updates)}
            row.updated_at = time.time()
            session.commit()
        self._notify(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        with self.Session() as session:
            row = self._row(session, collection, doc_id, lock=True)
            if row is None:
                return
            session.delete(row)
            session.commit()
        self._notify(collection)

    def query(self, query: Query) -> list[StoredDocument]:
        with self.Session() as session:
            rows = (
                session.execute(
                    select(DocumentRow).where(DocumentRow.collection == query.collection)
                )
                .scalars()
                .all()
            )
            documents = [
                StoredDocument(id=row.doc_id, data=copy.deepcopy(row.data))
                for row in rows
            ]
        return _json_query(query).apply(documents)

    def array_union(
        self, collection: str, doc_id: str, field_name: str, values: list
    ) -> None:
        with self.Session() as session:
            row = self._require_row(session, collection, doc_id)
            current = list(row.data.get(field_name) or [])
            for value in to_json_safe(values):
                if value not in current:
                    current.append(value)
            row.data = {**row.data, field_name: current}
            row.updated_at = time.time()
            session.commit()
        self._notify(collection)

    def append_unique(
        self, collection: str, doc_id: str, field_name: str, item: dict, key: str
    ) -> bool:
        with self.Session() as session:
            row = self._require_row(session, collection, doc_id)
            current = list(row.data.get(field_name) or [])
            if any(existing.get(key) == item.get(key) for existing in current):
                return False
            current.append(to_json_safe(item))
            row.data = {**row.data, field_name: current}
            row.updated_at = time.time()
            session.commit()
        self._notify(collection)
        return True

    def update_if(
        self, collection: str, doc_id: str, expected: dict, updates: dict
    ) -> bool:
        with self.Session() as session:
            row = self._row(session, collection, doc_id, lock=True)
            if row is None:
                return False
            if any(row.data.get(k) != v for k, v in to_json_safe(expected).items()):
                return False
            row.data = {**row.data, **to_json_safe(updates)}
            row.updated_at = time.time()
            session.commit()
        self._notify(collection)
        return True

    def insert_if_absent(
        self, collection: str, doc_id: str, data: dict, conflict: Query
    ) -> bool:
        with self.Session() as session:
            self._lock_query(session, conflict)
            if self._row(session, collection, doc_id, lock=True) is not None:
                return False
            if self._has_match(session, conflict):
                return False
            session.add(
                DocumentRow(
                    collection=collection,
                    doc_id=doc_id,
                    data=to_json_safe(data),
                    updated_at=time.time(),
                )
            )
            session.commit()
        self._notify(collection)
        return True

    def update_many(self, collection: str, doc_ids: list[str], updates: dict) -> int:
        if not doc_ids:
            return 0
        payload = to_json_safe(updates)
        with self.Session() as session:
            rows = [self._require_row(session, collection, doc_id) for doc_id in doc_ids]
            now = time.time()
            for row in rows:
                row.data = {**row.data, **payload}
                row.updated_at = now
            session.commit()
        self._notify(collection)
        return len(doc_ids)


def _serialize_sqlite_transactions(engine) -> None:
    """SQLAlchemy's recipe for SQLite transactions that lock on BEGIN."""

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def _json_query(query: Query) -> Query:
    """Rewrites filter values into their stored JSON form."""
    return replace(
        query,
        filters=tuple((name, to_json_safe(value)) for name, value in query.filters),
        array_contains=(
            (query.array_contains[0], to_json_safe(query.array_contains[1]))
            if query.array_contains
            else None
        ),
    )


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"

    collection = Column(String, primary_key=True)
    doc_id = Column(String, primary_key=True)
    data = Column(JSON, nullable=False)
    updated_at = Column(Float, nullable=False)
