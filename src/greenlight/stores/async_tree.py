"""Async tree store implementation.

Native async store that doesn't require thread pool wrapping.
For the sync SQLiteTreeStore, use SyncTreeStoreAdapter instead.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiosqlite

from ..errors import TreeStoreError, sanitize_exception
from .common import (
    DEFAULT_BUSY_TIMEOUT_SECONDS,
    SUBTREE_WHERE,
    ancestors,
    flatten_tree,
    normalize_path,
    subtree_params,
    unflatten_rows,
)
from .tree import CREATE_NODES_TABLE


@dataclass
class AsyncSQLiteTreeStore:
    """Native async SQLite tree store using aiosqlite.

    Same schema and semantics as SQLiteTreeStore, so both can share a file.

    Usage:
        tree = AsyncSQLiteTreeStore(Path("tree.db"))
        await tree.initialize()  # Create tables
        coordinator = ApprovalCoordinator(documents=..., tree=tree)
    """

    path: Path
    busy_timeout_seconds: float = field(default=DEFAULT_BUSY_TIMEOUT_SECONDS)
    _initialized: bool = field(default=False, repr=False)
    _init_lock: asyncio.Lock | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self) -> None:
        """Create tables if they don't exist. Call once at startup."""
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute(CREATE_NODES_TABLE)
        self._initialized = True

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._initialized:
                return
            await self.initialize()

    async def set(self, path: str, value: Any) -> None:
        """Atomically overwrite the subtree at ``path``."""
        node = normalize_path(path)
        rows = flatten_tree(node, value)
        await self._ensure_initialized()
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    await db.execute(
                        f"DELETE FROM nodes WHERE {SUBTREE_WHERE}", subtree_params(node)
                    )
                    for ancestor in ancestors(node):
                        await db.execute("DELETE FROM nodes WHERE path = ?", (ancestor,))
                    await db.executemany("INSERT INTO nodes (path, value) VALUES (?, ?)", rows)
                    await db.execute("COMMIT")
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
        except aiosqlite.Error as exc:
            raise TreeStoreError(sanitize_exception(exc)) from exc

    async def get(self, path: str) -> Any | None:
        """Read the value at ``path``. Returns None if nothing is stored there."""
        node = normalize_path(path)
        await self._ensure_initialized()
        try:
            async with self._connect() as db:
                async with db.execute(
                    f"SELECT path, value FROM nodes WHERE {SUBTREE_WHERE} ORDER BY path",
                    subtree_params(node),
                ) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise TreeStoreError(sanitize_exception(exc)) from exc
        return unflatten_rows(node, [(row[0], row[1]) for row in rows])

    async def remove(self, path: str) -> None:
        """Delete the subtree at ``path``. Removing an absent path is a no-op."""
        node = normalize_path(path)
        await self._ensure_initialized()
        try:
            async with self._connect() as db:
                await db.execute(f"DELETE FROM nodes WHERE {SUBTREE_WHERE}", subtree_params(node))
        except aiosqlite.Error as exc:
            raise TreeStoreError(sanitize_exception(exc)) from exc

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(
            self.path, timeout=self.busy_timeout_seconds, isolation_level=None
        )
