"""JSONL audit logger implementation for greenlight."""

from __future__ import annotations

import threading
from pathlib import Path

from ..errors import AuditLogError, sanitize_exception
from ..types import AuditEntry


class JsonlAuditLogger:
    """Append-only JSONL audit logger."""

    def __init__(self, path: str | Path = "greenlight_audit.jsonl") -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def log(self, entry: AuditEntry) -> None:
        """Append an audit entry to the JSONL file."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, self.path.open("a", encoding="utf-8") as f:
                f.write(entry.to_json_line() + "\n")
        except OSError as e:
            raise AuditLogError(f"Failed to write audit log: {sanitize_exception(e)}") from e
