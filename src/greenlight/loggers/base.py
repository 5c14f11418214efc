"""Audit logger interface for greenlight."""

from __future__ import annotations

from typing import Protocol

from ..types import AuditEntry


class AuditLogger(Protocol):
    """Protocol for sync audit logger implementations."""

    def log(self, entry: AuditEntry) -> None:
        """Write an audit entry."""
        ...
