from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from greenlight.config import GreenlightConfig


def test_defaults() -> None:
    config = GreenlightConfig()

    assert config.provision_attempts == 3
    assert config.retry_backoff_seconds == 0.5
    assert config.timeout_seconds is None
    assert config.locale == "en"
    assert config.audit_path == Path("greenlight_audit.jsonl")


def test_environment_variables_are_read(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREENLIGHT_DOCUMENTS_PATH", "/data/docs.db")
    monkeypatch.setenv("GREENLIGHT_PROVISION_ATTEMPTS", "5")
    monkeypatch.setenv("GREENLIGHT_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("GREENLIGHT_LOCALE", "fr")
    monkeypatch.setenv("GREENLIGHT_AUDIT_PATH", "")
    monkeypatch.setenv("OTHER_PROVISION_ATTEMPTS", "9")

    config = GreenlightConfig.from_env()

    assert config.documents_path == Path("/data/docs.db")
    assert config.provision_attempts == 5
    assert config.timeout_seconds == 2.5
    assert config.locale == "fr"
    assert config.audit_path is None


def test_overrides_win_over_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREENLIGHT_PROVISION_ATTEMPTS", "5")

    config = GreenlightConfig.from_env(provision_attempts=1, locale=None)

    assert config.provision_attempts == 1
    assert config.locale == "en"


def test_invalid_environment_value_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREENLIGHT_PROVISION_ATTEMPTS", "0")

    with pytest.raises(ValidationError):
        GreenlightConfig.from_env()


@pytest.mark.parametrize(
    "values",
    [
        {"provision_attempts": 0},
        {"retry_backoff_seconds": -1},
        {"timeout_seconds": 0},
        {"locale": "de"},
    ],
)
def test_invalid_values_are_rejected(values: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        GreenlightConfig(**values)


def test_config_is_frozen() -> None:
    config = GreenlightConfig()
    with pytest.raises(ValidationError):
        config.provision_attempts = 9  # type: ignore[misc]
