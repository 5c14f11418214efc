from __future__ import annotations

from typing import Any, Mapping

REDACTED = "[redacted]"

# Personal data carried by requests and clients.
_PII_KEYS = frozenset({"cin", "phone", "email"})


def is_sensitive_key(key: str) -> bool:
    return key.lower() in _PII_KEYS


def redact_value(key: str | None, value: Any) -> Any:
    """Redact a value while preserving safe primitive types.

    Used before anything derived from a request or client reaches the audit log.
    Deterministic and idempotent.
    """
    if key is not None and is_sensitive_key(key):
        return REDACTED

    if value is None or isinstance(value, (str, bool, int, float)):
        return value

    if isinstance(value, (list, tuple)):
        return [redact_value(None, v) for v in value]

    if isinstance(value, Mapping):
        return {str(k): redact_value(str(k), v) for k, v in value.items()}

    return f"<{type(value).__name__}>"


def redact_document(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: redact_value(k, v) for k, v in data.items()}
