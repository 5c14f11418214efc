from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from greenlight.adapters import SyncAuditLoggerAdapter
from greenlight.errors import AuditLogError, sanitize_exception
from greenlight.loggers import JsonlAuditLogger
from greenlight.types import AuditEntry


def _entry(target_id: str = "r1") -> AuditEntry:
    return AuditEntry(
        timestamp=datetime(2026, 1, 25, 12, 0, tzinfo=timezone.utc),
        operation="approve",
        target_id=target_id,
        auth_uid="u1",
        outcome="success",
        steps=[{"step": "documents", "outcome": "committed"}],
    )


def test_jsonl_logger_appends_lines(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "audit.jsonl"
    logger = JsonlAuditLogger(path)

    logger.log(_entry("r1"))
    logger.log(_entry("r2"))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["target_id"] for line in lines] == ["r1", "r2"]
    assert json.loads(lines[0])["steps"] == [{"step": "documents", "outcome": "committed"}]


def test_jsonl_logger_wraps_os_errors(tmp_path: Path) -> None:
    logger = JsonlAuditLogger(tmp_path)

    with pytest.raises(AuditLogError) as excinfo:
        logger.log(_entry())

    assert str(tmp_path) not in str(excinfo.value)


def test_async_adapter_writes_through(tmp_path: Path) -> None:
    path = tmp_path / "audit.jsonl"

    async def _run() -> None:
        await SyncAuditLoggerAdapter(JsonlAuditLogger(path)).log(_entry())

    asyncio.run(_run())
    assert len(path.read_text(encoding="utf-8").splitlines()) == 1


def test_sanitize_exception_hides_paths() -> None:
    assert sanitize_exception(RuntimeError("cannot open /var/lib/x.db")) == "RuntimeError"
    assert sanitize_exception(RuntimeError("plain")) == "plain"
    err = FileNotFoundError(2, "No such file or directory", "/secret/path")
    assert sanitize_exception(err) == "FileNotFoundError errno=2 No such file or directory"
