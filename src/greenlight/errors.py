"""Exception types for greenlight."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .types import ApprovalReport


class GreenlightError(Exception):
    """Base exception for all greenlight errors."""

    code: str = "Error"
    retriable: bool = False

    def as_response(self) -> dict[str, Any]:
        """Render the error the way the dashboard API reports it."""
        return {"error": self.code, "message": str(self)}


class InvalidRequest(GreenlightError):
    """Raised when a request lacks the fields needed to approve it."""

    code = "InvalidRequest"

    def __init__(self, message: str, *, request_id: str | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class AlreadyApproved(GreenlightError):
    """Raised when a client already exists for the owning principal."""

    code = "AlreadyApproved"

    def __init__(self, auth_uid: str) -> None:
        super().__init__(f"client already exists for {auth_uid}")
        self.auth_uid = auth_uid

    def as_response(self) -> dict[str, Any]:
        return {"error": self.code, "authUid": self.auth_uid}


class NotFound(GreenlightError):
    """Raised when the target document was already removed by another actor."""

    code = "NotFound"

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class ProvisioningError(GreenlightError):
    """Base for failures after the client record has been committed.

    The client exists but its device state is not verified; the operation can be
    resumed with ``ApprovalCoordinator.provision(auth_uid)``.
    """

    retriable = True

    def __init__(
        self,
        message: str,
        *,
        auth_uid: str,
        attempts: int = 1,
        report: ApprovalReport | None = None,
    ) -> None:
        super().__init__(message)
        self.auth_uid = auth_uid
        self.attempts = attempts
        self.report = report

    def as_response(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "authUid": self.auth_uid,
            "attempts": self.attempts,
            "message": str(self),
        }


class ProvisioningFailed(ProvisioningError):
    """Raised when the tree-store write itself fails."""

    code = "ProvisioningFailed"


class ProvisioningUnverified(ProvisioningError):
    """Raised when the read-back after a write does not observe the device state."""

    code = "ProvisioningUnverified"


class StoreError(GreenlightError):
    """Raised when a backing store operation fails."""

    code = "StoreError"
    retriable = True


class DocumentStoreError(StoreError):
    """Raised when the document store fails."""


class TreeStoreError(StoreError):
    """Raised when the realtime tree store fails."""


class AuditLogError(GreenlightError):
    """Raised when audit logging fails."""

    code = "AuditLogError"


def sanitize_exception(exc: BaseException) -> str:
    """Return a safe error message without filesystem paths."""
    if isinstance(exc, OSError):
        parts: list[str] = [exc.__class__.__name__]
        if exc.errno is not None:
            parts.append(f"errno={exc.errno}")
        if exc.strerror:
            parts.append(exc.strerror)
        return " ".join(parts).strip()
    message = str(exc)
    if "/" in message or "\\" in message:
        return exc.__class__.__name__
    return message
