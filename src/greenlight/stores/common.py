"""Shared store constants, validators and tree helpers."""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, Mapping

from ..types import CollectionSnapshot

DEFAULT_BUSY_TIMEOUT_SECONDS: float = 5.0
PATH_SEPARATOR = "/"
_FORBIDDEN_KEY_CHARS = frozenset(".#$[]")

_logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[CollectionSnapshot], None]
Unsubscribe = Callable[[], None]


def validate_nonempty_str(name: str, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")


def validate_doc_id(doc_id: str) -> None:
    validate_nonempty_str("doc_id", doc_id)
    if PATH_SEPARATOR in doc_id:
        raise ValueError("doc_id must not contain '/'")


def encode_document(data: Mapping[str, Any]) -> str:
    if not isinstance(data, Mapping):
        raise TypeError("document fields must be a mapping")
    return json.dumps(dict(data), sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def decode_document(raw: str) -> dict[str, Any]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("stored document is not an object")
    return data


# -------- Tree paths --------


def _validate_key(key: str) -> None:
    if not key:
        raise ValueError("tree path contains an empty segment")
    if any(ch in _FORBIDDEN_KEY_CHARS for ch in key):
        raise ValueError(f"tree key {key!r} contains a forbidden character")


def normalize_path(path: str) -> str:
    """Return ``path`` without surrounding separators, validating each segment."""
    validate_nonempty_str("path", path)
    cleaned = path.strip(PATH_SEPARATOR)
    if not cleaned:
        raise ValueError("path must name a node below the root")
    for segment in cleaned.split(PATH_SEPARATOR):
        _validate_key(segment)
    return cleaned


def join_path(*parts: str) -> str:
    return normalize_path(PATH_SEPARATOR.join(part.strip(PATH_SEPARATOR) for part in parts))


def ancestors(path: str) -> list[str]:
    """Proper ancestors of ``path``, nearest last: ``a/b/c`` -> ``[a, a/b]``."""
    segments = path.split(PATH_SEPARATOR)
    return [PATH_SEPARATOR.join(segments[:i]) for i in range(1, len(segments))]


def flatten_tree(path: str, value: Any) -> list[tuple[str, str]]:
    """Flatten a value tree into ``(leaf_path, json_value)`` rows.

    ``None`` leaves and empty mappings produce no rows; lists are stored as
    mappings keyed by index.
    """
    rows: list[tuple[str, str]] = []
    _flatten_into(rows, path, value)
    return rows


def _flatten_into(rows: list[tuple[str, str]], path: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, Mapping):
        for key, child in value.items():
            if not isinstance(key, str):
                raise TypeError("tree keys must be strings")
            _validate_key(key)
            _flatten_into(rows, f"{path}{PATH_SEPARATOR}{key}", child)
        return
    if isinstance(value, (list, tuple)):
        for index, child in enumerate(value):
            _flatten_into(rows, f"{path}{PATH_SEPARATOR}{index}", child)
        return
    if isinstance(value, (str, int, float, bool)):
        rows.append((path, json.dumps(value)))
        return
    raise TypeError(f"unsupported tree value type: {type(value).__name__}")


def unflatten_rows(path: str, rows: Iterable[tuple[str, str]]) -> Any:
    """Rebuild the value at ``path`` from leaf rows; None when nothing is stored."""
    prefix = path + PATH_SEPARATOR
    tree: dict[str, Any] = {}
    found = False
    for leaf_path, raw in rows:
        value = json.loads(raw)
        if leaf_path == path:
            return value
        if not leaf_path.startswith(prefix):
            continue
        found = True
        node = tree
        segments = leaf_path[len(prefix):].split(PATH_SEPARATOR)
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = value
    return tree if found else None


# Subtree match without LIKE: keys such as ``water_level`` contain wildcards.
SUBTREE_WHERE = "(path = ? OR substr(path, 1, ?) = ?)"


def subtree_params(path: str) -> tuple[str, int, str]:
    prefix = path + PATH_SEPARATOR
    return (path, len(prefix), prefix)


# -------- Collection subscriptions --------


class SubscriptionRegistry:
    """Thread-safe registry of per-collection snapshot listeners.

    Writers hold ``delivering()`` from just before COMMIT until their snapshots
    are published, and subscribers hold it while registering and reading their
    first snapshot. Listeners therefore see commits in order, and a first
    snapshot never predates a snapshot delivered after it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()
        self._listeners: dict[str, list[SnapshotCallback]] = {}

    def add(self, collection: str, callback: SnapshotCallback) -> Unsubscribe:
        with self._lock:
            self._listeners.setdefault(collection, []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(collection, [])
                if callback in listeners:
                    listeners.remove(callback)

        return _unsubscribe

    def has_listeners(self, collection: str) -> bool:
        with self._lock:
            return bool(self._listeners.get(collection))

    @contextmanager
    def delivering(self) -> Iterator[None]:
        """Serialize commit-and-publish against other writers and initial reads."""
        with self._delivery_lock:
            yield

    def publish(self, snapshot: CollectionSnapshot) -> None:
        with self._delivery_lock:
            with self._lock:
                listeners = list(self._listeners.get(snapshot.collection, ()))
            for callback in listeners:
                deliver(callback, snapshot)


def deliver(callback: SnapshotCallback, snapshot: CollectionSnapshot) -> None:
    """Invoke a listener; a failing listener must not fail the writer that committed."""
    try:
        callback(snapshot)
    except Exception as exc:
        _logger.warning(
            "Snapshot listener for collection %s failed: %s", snapshot.collection, exc
        )
