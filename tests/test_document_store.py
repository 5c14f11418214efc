from __future__ import annotations

import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from greenlight.errors import DocumentStoreError
from greenlight.stores import SQLiteDocumentStore
from greenlight.stores.documents import DocumentTransaction
from greenlight.types import CollectionSnapshot


def test_set_get_list_and_delete(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")

    assert store.get("requests", "r1") is None
    store.set("requests", "r1", {"name": "Amina", "ec": 3})
    store.set("requests", "r2", {"name": "Youssef"})
    store.set("clients", "u1", {"cin": "AB1"})

    assert store.get("requests", "r1") == {"name": "Amina", "ec": 3}
    assert store.list("requests") == {"r1": {"name": "Amina", "ec": 3}, "r2": {"name": "Youssef"}}

    assert store.delete("requests", "r1") is True
    assert store.delete("requests", "r1") is False
    assert list(store.list("requests")) == ["r2"]
    assert store.get("clients", "u1") == {"cin": "AB1"}


def test_set_overwrites_whole_document(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    store.set("clients", "u1", {"name": "a", "email": "a@example.com"})
    store.set("clients", "u1", {"name": "b"})

    assert store.get("clients", "u1") == {"name": "b"}


def test_documents_survive_reopen(tmp_path: Path) -> None:
    path = tmp_path / "docs.db"
    SQLiteDocumentStore(path).set("clients", "u1", {"cin": "AB1"})

    assert SQLiteDocumentStore(path).get("clients", "u1") == {"cin": "AB1"}


def test_invalid_ids_are_rejected(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")

    with pytest.raises(ValueError):
        store.get("requests", "")
    with pytest.raises(ValueError):
        store.set("requests", "a/b", {})
    with pytest.raises(ValueError):
        store.list(" ")


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------


def test_transaction_moves_document_atomically(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    store.set("requests", "r1", {"authUid": "u1"})

    def _move(tx: DocumentTransaction) -> str:
        data = tx.get("requests", "r1")
        assert data is not None
        tx.set("clients", data["authUid"], {"status": "approved"})
        tx.delete("requests", "r1")
        return data["authUid"]

    assert store.transaction(_move) == "u1"
    assert store.get("requests", "r1") is None
    assert store.get("clients", "u1") == {"status": "approved"}


def test_transaction_rolls_back_every_write_on_error(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    store.set("requests", "r1", {"authUid": "u1"})

    def _fail(tx: DocumentTransaction) -> None:
        tx.set("clients", "u1", {"status": "approved"})
        tx.delete("requests", "r1")
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        store.transaction(_fail)

    assert store.get("clients", "u1") is None
    assert store.get("requests", "r1") == {"authUid": "u1"}


def test_transaction_reads_its_own_writes(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    seen: list[object] = []

    def _fn(tx: DocumentTransaction) -> None:
        tx.set("clients", "u1", {"n": 1})
        seen.append(tx.get("clients", "u1"))
        tx.delete("clients", "u1")
        seen.append(tx.get("clients", "u1"))

    store.transaction(_fn)

    assert seen == [{"n": 1}, None]
    assert store.get("clients", "u1") is None


def test_transaction_rejects_unserializable_fields(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")

    with pytest.raises(TypeError):
        store.set("clients", "u1", {"when": object()})
    assert store.get("clients", "u1") is None


def test_concurrent_check_then_create_has_single_winner(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")

    def _claim(worker: int) -> bool:
        def _fn(tx: DocumentTransaction) -> bool:
            if tx.get("clients", "u1") is not None:
                return False
            time.sleep(0.02)
            tx.set("clients", "u1", {"winner": worker})
            return True

        return store.transaction(_fn)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(_claim, range(6)))

    assert results.count(True) == 1
    winner = results.index(True)
    assert store.get("clients", "u1") == {"winner": winner}


def test_sqlite_errors_are_wrapped(tmp_path: Path) -> None:
    path = tmp_path / "docs.db"
    store = SQLiteDocumentStore(path)
    conn = sqlite3.connect(path)
    conn.execute("DROP TABLE documents")
    conn.commit()
    conn.close()

    with pytest.raises(DocumentStoreError):
        store.get("clients", "u1")
    with pytest.raises(DocumentStoreError):
        store.set("clients", "u1", {})


# -----------------------------------------------------------------------------
# Subscriptions
# -----------------------------------------------------------------------------


def test_subscribe_delivers_initial_snapshot_then_changes(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    store.set("requests", "r1", {"name": "a"})
    snapshots: list[CollectionSnapshot] = []

    unsubscribe = store.subscribe("requests", snapshots.append)
    assert snapshots[0].documents == {"r1": {"name": "a"}}
    assert [c.kind for c in snapshots[0].changes] == ["added"]

    store.set("requests", "r2", {"name": "b"})
    store.set("requests", "r1", {"name": "a2"})
    store.delete("requests", "r2")
    store.set("clients", "u1", {"cin": "x"})

    assert len(snapshots) == 4
    assert [(c.kind, c.doc_id) for c in snapshots[1].changes] == [("added", "r2")]
    assert [(c.kind, c.doc_id) for c in snapshots[2].changes] == [("modified", "r1")]
    assert [(c.kind, c.doc_id) for c in snapshots[3].changes] == [("removed", "r2")]
    assert snapshots[3].documents == {"r1": {"name": "a2"}}

    unsubscribe()
    store.set("requests", "r3", {})
    assert len(snapshots) == 4


def test_rolled_back_transaction_publishes_nothing(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    snapshots: list[CollectionSnapshot] = []
    store.subscribe("clients", snapshots.append)

    def _fail(tx: DocumentTransaction) -> None:
        tx.set("clients", "u1", {})
        raise RuntimeError("abort")

    with pytest.raises(RuntimeError):
        store.transaction(_fail)

    assert len(snapshots) == 1


def test_failing_listener_does_not_fail_writer(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    calls: list[int] = []

    def _listener(snapshot: CollectionSnapshot) -> None:
        calls.append(len(snapshot.documents))
        raise RuntimeError("listener boom")

    store.subscribe("clients", _listener)
    store.set("clients", "u1", {"cin": "x"})

    assert calls == [0, 1]
    assert store.get("clients", "u1") == {"cin": "x"}


def test_deleting_missing_document_publishes_nothing(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    snapshots: list[CollectionSnapshot] = []
    store.subscribe("requests", snapshots.append)

    assert store.delete("requests", "missing") is False
    assert len(snapshots) == 1


def test_concurrent_writers_publish_snapshots_in_commit_order(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    snapshots: list[CollectionSnapshot] = []
    store.subscribe("clients", snapshots.append)

    def _add(worker: int) -> None:
        store.set("clients", f"u{worker}", {"worker": worker})

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(_add, range(24)))

    published = snapshots[1:]
    assert len(published) == 24
    # The collection only grows, so each snapshot must be strictly larger.
    sizes = [len(s.documents) for s in published]
    assert sizes == list(range(1, 25))
    for snapshot in published:
        (change,) = snapshot.changes
        assert change.kind == "added"
        assert change.doc_id in snapshot.documents
    assert len(snapshots[-1].documents) == 24


def test_subscriber_joining_during_writes_misses_nothing(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    snapshots: list[CollectionSnapshot] = []

    def _add(worker: int) -> None:
        if worker == 6:
            store.subscribe("clients", snapshots.append)
        store.set("clients", f"u{worker}", {})

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(_add, range(12)))

    seen = set(snapshots[0].documents)
    for snapshot in snapshots[1:]:
        seen.update(c.doc_id for c in snapshot.changes)
        assert set(snapshot.documents) == seen
    assert seen == {f"u{i}" for i in range(12)}


def test_listener_may_write_from_inside_a_snapshot(tmp_path: Path) -> None:
    store = SQLiteDocumentStore(tmp_path / "docs.db")
    snapshots: list[CollectionSnapshot] = []

    def _mirror(snapshot: CollectionSnapshot) -> None:
        snapshots.append(snapshot)
        for change in snapshot.changes:
            if change.kind == "added":
                store.set("mirror", change.doc_id, {})

    store.subscribe("clients", _mirror)
    store.set("clients", "u1", {})

    assert store.list("mirror") == {"u1": {}}
    assert len(snapshots) == 2
