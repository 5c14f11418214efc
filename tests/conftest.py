from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path
from typing import Iterator

import pytest


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep GREENLIGHT_* settings from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("GREENLIGHT_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def tmp_path() -> Iterator[Path]:
    """Return a writable temp dir under %TEMP% without tempfile.mkdtemp ACL quirks."""
    temp_root = Path(os.environ.get("TEMP", Path.cwd()))
    root = temp_root / "greenlight_test_runs"
    root.mkdir(parents=True, exist_ok=True)
    path = root / f"run_{uuid.uuid4().hex}"
    path.mkdir(parents=True, exist_ok=True)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
