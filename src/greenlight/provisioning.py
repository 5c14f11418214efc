"""Device state layout in the tree store and its post-write check."""

from __future__ import annotations

from typing import Any

from .stores.common import join_path, validate_doc_id
from .types import DEVICE_STATE_ROOT, DeviceState

REQUIRED_TOP_LEVEL_FIELDS: tuple[str, ...] = ("name", "environment", "energy")


def device_state_path(auth_uid: str) -> str:
    """Tree path of the subtree owned by ``auth_uid``."""
    validate_doc_id(auth_uid)
    return join_path(DEVICE_STATE_ROOT, auth_uid)


def device_name_path(auth_uid: str) -> str:
    return join_path(device_state_path(auth_uid), "name")


def verification_problem(observed: Any, expected: DeviceState | None = None) -> str | None:
    """Compare a read-back subtree with what was written.

    Returns a short description of the first problem found, or None when the
    subtree is present with the expected top-level fields. The configuration
    seed is compared only when ``expected`` is given: live devices change it
    after provisioning.
    """
    if observed is None:
        return "device state absent after write"
    if not isinstance(observed, dict):
        return "device state is not a subtree"
    missing = [name for name in REQUIRED_TOP_LEVEL_FIELDS if name not in observed]
    if missing:
        return f"device state missing fields: {', '.join(missing)}"
    environment = observed.get("environment")
    if not isinstance(environment, dict):
        return "device state environment is not a subtree"
    if expected is not None and environment.get("ec") != expected.environment.ec:
        return "device state configuration seed does not match"
    return None
