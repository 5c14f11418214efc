"""Realtime tree store protocol and SQLite implementation.

The tree is stored as one row per leaf, keyed by its full ``/``-separated path.
``set`` replaces the whole subtree at a path in one transaction, which makes a
repeated write of the same value a no-op in effect.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Protocol

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

CREATE_NODES_TABLE = """
    CREATE TABLE IF NOT EXISTS nodes (
        path TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
"""


class TreeStore(Protocol):
    """Protocol for a hierarchical key/value store with atomic subtree writes."""

    def set(self, path: str, value: Any) -> None:
        ...

    def get(self, path: str) -> Any | None:
        ...

    def remove(self, path: str) -> None:
        ...


@dataclass
class SQLiteTreeStore:
    """SQLite-backed realtime tree store.

    Setting ``None`` or an empty mapping removes the node, matching the
    semantics of hosted realtime databases.
    """

    path: Path
    busy_timeout_seconds: float = field(default=DEFAULT_BUSY_TIMEOUT_SECONDS)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(CREATE_NODES_TABLE)

    def set(self, path: str, value: Any) -> None:
        """Atomically overwrite the subtree at ``path``."""
        node = normalize_path(path)
        rows = flatten_tree(node, value)
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute(f"DELETE FROM nodes WHERE {SUBTREE_WHERE}", subtree_params(node))
                    for ancestor in ancestors(node):
                        conn.execute("DELETE FROM nodes WHERE path = ?", (ancestor,))
                    conn.executemany("INSERT INTO nodes (path, value) VALUES (?, ?)", rows)
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as exc:
            raise TreeStoreError(sanitize_exception(exc)) from exc

    def get(self, path: str) -> Any | None:
        """Read the value at ``path``. Returns None if nothing is stored there."""
        node = normalize_path(path)
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT path, value FROM nodes WHERE {SUBTREE_WHERE} ORDER BY path",
                    subtree_params(node),
                ).fetchall()
        except sqlite3.Error as exc:
            raise TreeStoreError(sanitize_exception(exc)) from exc
        return unflatten_rows(node, rows)

    def remove(self, path: str) -> None:
        """Delete the subtree at ``path``. Removing an absent path is a no-op."""
        node = normalize_path(path)
        try:
            with self._connect() as conn:
                conn.execute(f"DELETE FROM nodes WHERE {SUBTREE_WHERE}", subtree_params(node))
        except sqlite3.Error as exc:
            raise TreeStoreError(sanitize_exception(exc)) from exc

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(
            self.path, timeout=self.busy_timeout_seconds, isolation_level=None
        )
        try:
            yield conn
        finally:
            conn.close()
