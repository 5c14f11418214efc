from .base import AuditLogger
from .jsonl import JsonlAuditLogger

__all__ = ["AuditLogger", "JsonlAuditLogger"]
