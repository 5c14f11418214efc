"""Runtime configuration for greenlight.

Values come from keyword arguments, then ``GREENLIGHT_*`` environment
variables, then the defaults below.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .locales import DEFAULT_LOCALE, validate_locale

DEFAULT_PROVISION_ATTEMPTS: int = 3
DEFAULT_RETRY_BACKOFF_SECONDS: float = 0.5
ENV_PREFIX = "GREENLIGHT_"


class GreenlightConfig(BaseSettings):
    """Paths and retry behaviour for one coordinator deployment."""

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, frozen=True)

    documents_path: Path = Path("greenlight_documents.db")
    tree_path: Path = Path("greenlight_tree.db")
    audit_path: Path | None = Path("greenlight_audit.jsonl")
    locale: str = DEFAULT_LOCALE
    provision_attempts: int = Field(default=DEFAULT_PROVISION_ATTEMPTS, ge=1)
    retry_backoff_seconds: float = Field(default=DEFAULT_RETRY_BACKOFF_SECONDS, ge=0)
    timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("locale")
    @classmethod
    def _known_locale(cls, value: str) -> str:
        return validate_locale(value)

    @field_validator("audit_path", "timeout_seconds", mode="before")
    @classmethod
    def _blank_as_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> "GreenlightConfig":
        """Build config from the environment; non-None overrides win (CLI flags)."""
        return cls(**{k: v for k, v in overrides.items() if v is not None})
