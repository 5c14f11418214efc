from __future__ import annotations

import json
from pathlib import Path

import pytest

from greenlight.cli import main


def _base(tmp_path: Path) -> list[str]:
    return [
        "--documents-db",
        str(tmp_path / "docs.db"),
        "--tree-db",
        str(tmp_path / "tree.db"),
        "--audit-log",
        str(tmp_path / "audit.jsonl"),
        "--json",
    ]


def _run(capsys: pytest.CaptureFixture[str], argv: list[str]) -> tuple[int, object]:
    code = main(argv)
    out = capsys.readouterr().out.strip().splitlines()
    return code, json.loads(out[-1]) if out else None


def _submit(tmp_path: Path, capsys: pytest.CaptureFixture[str], request_id: str = "r1") -> None:
    code, payload = _run(
        capsys,
        _base(tmp_path)
        + ["submit", "--id", request_id, "--cin", "AB1234", "--auth-uid", "u1", "--name", "Amina", "--ec", "3"],
    )
    assert code == 0
    assert payload == {"success": True, "requestId": request_id}


def test_submit_list_and_approve(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _submit(tmp_path, capsys)

    code, rows = _run(capsys, _base(tmp_path) + ["requests"])
    assert code == 0
    assert isinstance(rows, list)
    assert rows[0]["request_id"] == "r1"
    assert rows[0]["status_label"] == "Pending"

    code, payload = _run(capsys, _base(tmp_path) + ["approve", "r1"])
    assert code == 0
    assert payload == {"success": True, "authUid": "u1"}

    code, rows = _run(capsys, _base(tmp_path) + ["clients"])
    assert code == 0
    assert [row["auth_uid"] for row in rows] == ["u1"]

    code, state = _run(capsys, _base(tmp_path) + ["device", "u1"])
    assert code == 0
    assert state["environment"]["ec"] == 3
    assert state["name"] == "Amina"

    lines = (tmp_path / "audit.jsonl").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["operation"] == "approve"
    assert entry["metadata"]["cin"] == "[redacted]"


def test_second_approval_reports_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _submit(tmp_path, capsys, "r1")
    _submit(tmp_path, capsys, "r2")
    assert main(_base(tmp_path) + ["approve", "r1"]) == 0
    capsys.readouterr()

    code, payload = _run(capsys, _base(tmp_path) + ["approve", "r2"])
    assert code == 1
    assert payload == {"error": "AlreadyApproved", "authUid": "u1"}


def test_decline_twice_is_benign(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _submit(tmp_path, capsys)

    code, payload = _run(capsys, _base(tmp_path) + ["decline", "r1"])
    assert code == 0
    assert payload == {"success": True}

    code, payload = _run(capsys, _base(tmp_path) + ["decline", "r1"])
    assert code == 0
    assert payload["error"] == "NotFound"


def test_edit_and_decommission(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _submit(tmp_path, capsys)
    assert main(_base(tmp_path) + ["approve", "r1"]) == 0
    capsys.readouterr()

    code, payload = _run(capsys, _base(tmp_path) + ["edit-client", "u1", "--name", "Amina B."])
    assert code == 0
    assert payload["client"]["name"] == "Amina B."

    code, state = _run(capsys, _base(tmp_path) + ["device", "u1"])
    assert state["name"] == "Amina B."

    code, payload = _run(capsys, _base(tmp_path) + ["decommission", "u1"])
    assert code == 0

    code, payload = _run(capsys, _base(tmp_path) + ["device", "u1"])
    assert code == 1
    assert payload["error"] == "NotFound"


def test_reconcile_with_nothing_to_do(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, payload = _run(capsys, _base(tmp_path) + ["reconcile"])
    assert code == 0
    assert payload == []


def test_missing_request_exits_nonzero(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code, payload = _run(capsys, _base(tmp_path) + ["approve", "nope"])
    assert code == 1
    assert payload["error"] == "NotFound"


def test_invalid_configuration_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(_base(tmp_path) + ["--attempts", "0", "requests"]) == 2
    assert "invalid configuration" in capsys.readouterr().err


def test_text_output_uses_locale(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    argv = [
        "--documents-db",
        str(tmp_path / "docs.db"),
        "--tree-db",
        str(tmp_path / "tree.db"),
        "--audit-log",
        "",
        "--locale",
        "fr",
    ]
    assert main(argv + ["submit", "--id", "r1", "--cin", "AB1", "--auth-uid", "u1"]) == 0
    assert "Demande r1 enregistrée" in capsys.readouterr().out

    assert main(argv + ["approve", "r1"]) == 0
    assert "Demande approuvée pour u1" in capsys.readouterr().out
    assert not (tmp_path / "audit.jsonl").exists()
