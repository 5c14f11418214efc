"""Sync-to-async adapters for greenlight protocols.

These adapters wrap synchronous implementations to conform to async protocols.
Use asyncio.to_thread() for blocking I/O operations.

Design notes:
- Adapters are explicit: users construct them, not the coordinator
- Each adapter wraps exactly one sync implementation
- A transaction function runs on the worker thread together with the store's
  transaction, so the write lock is never held across an event-loop hop
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping, TypeVar

if TYPE_CHECKING:
    from ..stores.common import SnapshotCallback, Unsubscribe
    from ..stores.documents import DocumentTransaction
    from ..types import AuditEntry

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SyncDocumentStoreAdapter:
    """Wraps a sync DocumentStore to provide AsyncDocumentStore interface.

    Usage:
        sync_store = SQLiteDocumentStore(path)
        documents = SyncDocumentStoreAdapter(sync_store)
    """

    _store: Any  # DocumentStore protocol

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch in thread pool (SQLite I/O is blocking)."""
        return await asyncio.to_thread(self._store.get, collection, doc_id)

    async def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._store.set, collection, doc_id, fields)

    async def delete(self, collection: str, doc_id: str) -> bool:
        return await asyncio.to_thread(self._store.delete, collection, doc_id)

    async def list(self, collection: str) -> dict[str, dict[str, Any]]:
        return await asyncio.to_thread(self._store.list, collection)

    async def transaction(self, fn: Callable[[DocumentTransaction], T]) -> T:
        """Run the whole transaction, including ``fn``, in the thread pool."""
        return await asyncio.to_thread(self._store.transaction, fn)

    async def subscribe(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Subscribe in thread pool. Callbacks fire on the committing thread."""
        return await asyncio.to_thread(self._store.subscribe, collection, callback)


@dataclass(frozen=True, slots=True)
class SyncTreeStoreAdapter:
    """Wraps a sync TreeStore to provide AsyncTreeStore interface.

    Usage:
        sync_tree = SQLiteTreeStore(path)
        tree = SyncTreeStoreAdapter(sync_tree)
    """

    _tree: Any  # TreeStore protocol

    async def set(self, path: str, value: Any) -> None:
        await asyncio.to_thread(self._tree.set, path, value)

    async def get(self, path: str) -> Any | None:
        return await asyncio.to_thread(self._tree.get, path)

    async def remove(self, path: str) -> None:
        await asyncio.to_thread(self._tree.remove, path)


@dataclass(frozen=True, slots=True)
class SyncAuditLoggerAdapter:
    """Wraps a sync AuditLogger to provide AsyncAuditLogger interface.

    Usage:
        sync_logger = JsonlAuditLogger()
        async_logger = SyncAuditLoggerAdapter(sync_logger)
    """

    _logger: Any  # AuditLogger protocol

    async def log(self, entry: AuditEntry) -> None:
        """Log entry in thread pool (file I/O is blocking)."""
        await asyncio.to_thread(self._logger.log, entry)
