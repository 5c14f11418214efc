"""Async protocol definitions for greenlight.

These protocols define the async interface contract for both store boundaries.
Use explicit adapters (see adapters/sync_to_async.py) to wrap sync implementations.

Design notes:
- Every store call is a suspension point for the calling task
- Transaction functions are plain callables run inside the store's transaction;
  they must not await, so the store can hold its write lock for their duration
- @runtime_checkable is for debugging/logging convenience only, not dispatch
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol, TypeVar, runtime_checkable

from .stores.common import SnapshotCallback, Unsubscribe
from .stores.documents import DocumentTransaction
from .types import AuditEntry

T = TypeVar("T")


@runtime_checkable
class AsyncDocumentStore(Protocol):
    """Async document store with per-collection multi-document transactions.

    Implementations must:
    - Abort every write of a transaction whose function raises
    - Serialize conflicting transactions (only one commit may observe a stale read)
    - Deliver collection snapshots to subscribers after commit
    """

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Fetch a document. Returns None if not found."""
        ...

    async def set(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Create or overwrite a document."""
        ...

    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns False if it did not exist."""
        ...

    async def list(self, collection: str) -> dict[str, dict[str, Any]]:
        """Return every document in a collection, keyed by id."""
        ...

    async def transaction(self, fn: Callable[[DocumentTransaction], T]) -> T:
        """Run ``fn`` atomically and return its result."""
        ...

    async def subscribe(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        """Register a snapshot listener; the current snapshot is delivered at once."""
        ...


@runtime_checkable
class AsyncTreeStore(Protocol):
    """Async realtime tree store. No transactional link to the document store."""

    async def set(self, path: str, value: Any) -> None:
        """Atomically overwrite the subtree at ``path``."""
        ...

    async def get(self, path: str) -> Any | None:
        """Point read. Returns None if nothing is stored at ``path``."""
        ...

    async def remove(self, path: str) -> None:
        """Delete the subtree at ``path``."""
        ...


@runtime_checkable
class AsyncAuditLogger(Protocol):
    """Async audit logger for operational records."""

    async def log(self, entry: AuditEntry) -> None:
        """Write an audit entry."""
        ...
