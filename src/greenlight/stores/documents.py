"""Document store protocol and SQLite implementation.

Design notes:
- Every mutation, including single-document set/delete, runs as a transaction
- Transactions take the write lock up front (BEGIN IMMEDIATE), so two
  transactions that read the same document cannot both commit on a stale read
- Change notifications are published after commit, never for rolled-back work
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, Protocol, TypeVar

from ..errors import DocumentStoreError, sanitize_exception
from ..types import CollectionSnapshot, DocumentChange
from .common import (
    DEFAULT_BUSY_TIMEOUT_SECONDS,
    SnapshotCallback,
    SubscriptionRegistry,
    Unsubscribe,
    decode_document,
    deliver,
    encode_document,
    validate_doc_id,
    validate_nonempty_str,
)

T = TypeVar("T")


class DocumentTransaction(Protocol):
    """Handle passed to a transaction function. Reads observe earlier writes."""

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> None:
        ...


class DocumentStore(Protocol):
    """Protocol for a collection-of-documents store with atomic transactions."""

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        ...

    def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        ...

    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    def list(self, collection: str) -> dict[str, dict[str, Any]]:
        ...

    def transaction(self, fn: Callable[[DocumentTransaction], T]) -> T:
        ...

    def subscribe(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        ...


_WAL_INITIALIZED: dict[Path, bool] = {}
_WAL_LOCK = threading.Lock()


def _ensure_wal_mode(path: Path) -> None:
    """Ensure WAL mode is set exactly once per database file. Thread-safe."""
    with _WAL_LOCK:
        if path in _WAL_INITIALIZED:
            return
        conn = sqlite3.connect(path)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            _WAL_INITIALIZED[path] = True
        finally:
            conn.close()


class _SQLiteTransaction:
    """Buffers writes until commit; reads consult the buffer first."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._writes: dict[tuple[str, str], dict[str, Any] | None] = {}

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        validate_nonempty_str("collection", collection)
        validate_doc_id(doc_id)
        key = (collection, doc_id)
        if key in self._writes:
            pending = self._writes[key]
            return dict(pending) if pending is not None else None
        return _read_document(self._conn, collection, doc_id)

    def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        validate_nonempty_str("collection", collection)
        validate_doc_id(doc_id)
        encode_document(fields)  # reject unserializable fields before commit
        self._writes[(collection, doc_id)] = dict(fields)

    def delete(self, collection: str, doc_id: str) -> None:
        validate_nonempty_str("collection", collection)
        validate_doc_id(doc_id)
        self._writes[(collection, doc_id)] = None

    def apply(self, now: str) -> list[tuple[str, DocumentChange]]:
        changes: list[tuple[str, DocumentChange]] = []
        for (collection, doc_id), data in self._writes.items():
            existed = _read_document(self._conn, collection, doc_id) is not None
            if data is None:
                if not existed:
                    continue
                self._conn.execute(
                    "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                    (collection, doc_id),
                )
                changes.append((collection, DocumentChange("removed", doc_id, None)))
                continue
            self._conn.execute(
                """
                INSERT INTO documents (collection, doc_id, data, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(collection, doc_id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (collection, doc_id, encode_document(data), now),
            )
            kind = "modified" if existed else "added"
            changes.append((collection, DocumentChange(kind, doc_id, dict(data))))
        return changes


def _read_document(conn: sqlite3.Connection, collection: str, doc_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
        (collection, doc_id),
    ).fetchone()
    if row is None:
        return None
    return decode_document(row[0])


@dataclass
class SQLiteDocumentStore:
    """SQLite-backed document store.

    Features:
    - One table of JSON documents keyed by (collection, doc_id)
    - Serializable multi-document transactions with read-your-writes
    - In-process snapshot subscriptions, delivered after each commit
    - WAL mode initialized once per database (thread-safe)
    """

    path: Path
    busy_timeout_seconds: float = field(default=DEFAULT_BUSY_TIMEOUT_SECONDS)
    _subscriptions: SubscriptionRegistry = field(
        default_factory=SubscriptionRegistry, init=False, repr=False
    )

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _ensure_wal_mode(self.path)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
                """
            )

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch a document by id. Returns None if not found."""
        validate_nonempty_str("collection", collection)
        validate_doc_id(doc_id)
        try:
            with self._connect() as conn:
                return _read_document(conn, collection, doc_id)
        except sqlite3.Error as exc:
            raise DocumentStoreError(sanitize_exception(exc)) from exc

    def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Create or overwrite a document."""
        self.transaction(lambda tx: tx.set(collection, doc_id, fields))

    def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns False if it did not exist."""

        def _delete(tx: DocumentTransaction) -> bool:
            if tx.get(collection, doc_id) is None:
                return False
            tx.delete(collection, doc_id)
            return True

        return self.transaction(_delete)

    def list(self, collection: str) -> dict[str, dict[str, Any]]:
        """Return every document in a collection, keyed by id."""
        validate_nonempty_str("collection", collection)
        try:
            with self._connect() as conn:
                return _read_collection(conn, collection)
        except sqlite3.Error as exc:
            raise DocumentStoreError(sanitize_exception(exc)) from exc

    def transaction(self, fn: Callable[[DocumentTransaction], T]) -> T:
        """Run ``fn`` atomically. Any exception raised by ``fn`` aborts every write."""
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    tx = _SQLiteTransaction(conn)
                    result = fn(tx)
                    changes = tx.apply(datetime.now(timezone.utc).isoformat())
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                # No other in-process commit can land between ours and its snapshots.
                with self._subscriptions.delivering():
                    conn.execute("COMMIT")
                    self._publish(conn, changes)
        except sqlite3.Error as exc:
            raise DocumentStoreError(sanitize_exception(exc)) from exc
        return result

    def subscribe(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Register a listener and deliver the current snapshot to it immediately."""
        validate_nonempty_str("collection", collection)
        with self._subscriptions.delivering():
            unsubscribe = self._subscriptions.add(collection, callback)
            documents = self.list(collection)
            initial = tuple(
                DocumentChange("added", doc_id, data) for doc_id, data in documents.items()
            )
            deliver(callback, CollectionSnapshot(collection, documents, initial))
        return unsubscribe

    def _publish(
        self, conn: sqlite3.Connection, changes: list[tuple[str, DocumentChange]]
    ) -> None:
        by_collection: dict[str, list[DocumentChange]] = {}
        for collection, change in changes:
            by_collection.setdefault(collection, []).append(change)
        for collection, collection_changes in by_collection.items():
            if not self._subscriptions.has_listeners(collection):
                continue
            snapshot = CollectionSnapshot(
                collection, _read_collection(conn, collection), tuple(collection_changes)
            )
            self._subscriptions.publish(snapshot)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; transactions are opened explicitly. Always closes."""
        conn = sqlite3.connect(
            self.path, timeout=self.busy_timeout_seconds, isolation_level=None
        )
        try:
            yield conn
        finally:
            conn.close()


def _read_collection(conn: sqlite3.Connection, collection: str) -> dict[str, dict[str, Any]]:
    rows = conn.execute(
        "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY doc_id",
        (collection,),
    ).fetchall()
    return {doc_id: decode_document(raw) for doc_id, raw in rows}
