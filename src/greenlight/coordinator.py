"""Approval coordinator for greenlight.

Drives a pending request to exactly one terminal outcome across two stores that
share no transaction: the document store (clients, requests) and the realtime
tree store (device state).

Design notes:
- Step A (client write + request delete) is one document-store transaction; its
  existence check on the client is the only serialization point
- Steps B (subtree write) and C (read-back) start only after A commits, are
  idempotent, and are retried with backoff; A is never retried
- Every step records a StepOutcome; a B/C failure is raised, never reported as
  success, and can be resumed from the persisted client with provision()
- Audit logging is best-effort (does not mask the workflow outcome)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import ValidationError

from .config import GreenlightConfig
from .errors import (
    AlreadyApproved,
    DocumentStoreError,
    GreenlightError,
    InvalidRequest,
    NotFound,
    ProvisioningError,
    ProvisioningFailed,
    ProvisioningUnverified,
    sanitize_exception,
)
from .protocols import AsyncAuditLogger, AsyncDocumentStore, AsyncTreeStore
from .provisioning import device_name_path, device_state_path, verification_problem
from .redaction import redact_document
from .stores.common import validate_doc_id
from .stores.documents import DocumentTransaction
from .types import (
    CLIENTS_COLLECTION,
    DEVICE_STATE_ROOT,
    REQUESTS_COLLECTION,
    ApprovalReport,
    AuditEntry,
    Client,
    DeviceState,
    OnboardingRequest,
    Operation,
    Step,
    StepOutcome,
    StepResult,
)

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def _describe(exc: BaseException) -> str:
    message = sanitize_exception(exc)
    name = type(exc).__name__
    if not message or message == name:
        return name
    return f"{name}: {message}"


class ApprovalCoordinator:
    """Owns the cross-store invariant: a client exists iff its device state does.

    Example:
        documents = SyncDocumentStoreAdapter(SQLiteDocumentStore(path))
        tree = SyncTreeStoreAdapter(SQLiteTreeStore(tree_path))
        coordinator = ApprovalCoordinator(documents=documents, tree=tree)

        report = await coordinator.approve("req-1")
        assert report.success
    """

    __slots__ = (
        "_documents",
        "_tree",
        "_audit_logger",
        "_config",
        "_on_error",
        "_clock",
        "_error_count",
    )

    def __init__(
        self,
        *,
        documents: AsyncDocumentStore,
        tree: AsyncTreeStore,
        audit_logger: AsyncAuditLogger | None = None,
        config: GreenlightConfig | None = None,
        on_error: Callable[[str, Exception], None] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the coordinator with async store implementations.

        Args:
            documents: Document store holding ``requests`` and ``clients``
            tree: Realtime tree store holding ``users/{authUid}`` device state
            audit_logger: Optional async audit logger for operational records
            config: Retry and timeout settings (defaults when omitted)
            on_error: Optional callback(event_type, exception) for metrics
            clock: Source of acceptance timestamps (UTC now by default)
        """
        if documents is None or tree is None:
            raise ValueError("documents and tree stores are required")
        self._documents = documents
        self._tree = tree
        self._audit_logger = audit_logger
        self._config = config or GreenlightConfig()
        self._on_error = on_error
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._error_count: int = 0

    @property
    def error_count(self) -> int:
        """Number of surfaced provisioning and audit failures since creation."""
        return self._error_count

    # -------- Approve / decline --------

    async def approve(self, request_id: str, *, timeout: float | None = None) -> ApprovalReport:
        """Approve a pending request.

        Flow: validate -> A: client + request delete (transaction)
        -> B: write device state -> C: read it back

        Args:
            request_id: Key of the request document
            timeout: Overall deadline in seconds (default: config.timeout_seconds).
                Step A always runs to completion; expiry during B or C is reported
                as the failure of that step.

        Returns:
            ApprovalReport whose ``success`` is True

        Raises:
            InvalidRequest: If authUid or cin is missing (no mutation)
            NotFound: If the request was already approved or declined
            AlreadyApproved: If a client already exists for the principal
            ProvisioningFailed: If the device state write failed after A committed
            ProvisioningUnverified: If the device state could not be read back
        """
        metadata: dict[str, Any] = {}
        auth_uid: str | None = None
        try:
            validate_doc_id(request_id)
        except ValueError as exc:
            raise InvalidRequest(str(exc), request_id=request_id) from exc
        deadline = self._deadline(timeout)
        try:
            request = await self._load_request(request_id)
            auth_uid = request.auth_uid
            metadata = request.to_document()
            client = Client.from_request(request, self._clock())
            report = ApprovalReport(auth_uid=request.auth_uid, request_id=request_id)
            await self._commit_documents(request, client)
            report.record(Step.DOCUMENTS, StepOutcome.COMMITTED)
            _logger.debug("Client %s committed; request %s removed", auth_uid, request_id)
            await self._provision_with_retry(
                report, DeviceState.seeded(client.name, client.ec), deadline
            )
        except Exception as exc:
            await self._audit("approve", request_id, auth_uid=auth_uid, error=exc, metadata=metadata)
            raise
        await self._audit("approve", request_id, auth_uid=auth_uid, report=report, metadata=metadata)
        return report

    async def decline(self, request_id: str) -> None:
        """Delete a pending request. Nothing else is created.

        Raises:
            NotFound: If the request is already gone (benign race with another actor)
        """
        validate_doc_id(request_id)
        try:
            removed = await self._documents.delete(REQUESTS_COLLECTION, request_id)
            if not removed:
                raise NotFound(REQUESTS_COLLECTION, request_id)
        except Exception as exc:
            await self._audit("decline", request_id, error=exc)
            raise
        await self._audit("decline", request_id)

    # -------- Resume and repair --------

    async def provision(self, auth_uid: str, *, timeout: float | None = None) -> ApprovalReport:
        """Re-run steps B and C for an approved principal.

        The persisted client is the cursor: its name and configuration seed are
        written again as a full-subtree overwrite, so repeating this is safe.

        Raises:
            NotFound: If no client exists for ``auth_uid``
            ProvisioningFailed / ProvisioningUnverified: As for approve()
        """
        device_state_path(auth_uid)
        deadline = self._deadline(timeout)
        try:
            client = await self._load_client(auth_uid)
            report = ApprovalReport(auth_uid=auth_uid)
            await self._provision_with_retry(
                report, DeviceState.seeded(client.name, client.ec), deadline
            )
        except Exception as exc:
            await self._audit("provision", auth_uid, auth_uid=auth_uid, error=exc)
            raise
        await self._audit("provision", auth_uid, auth_uid=auth_uid, report=report)
        return report

    async def reconcile(self) -> list[ApprovalReport]:
        """Provision every client whose device state is absent or incomplete.

        Device state under ``users/`` with no client is removed afterwards.
        Failures are returned in the reports rather than stopping the sweep.
        """
        clients = await self._documents.list(CLIENTS_COLLECTION)
        reports: list[ApprovalReport] = []
        for auth_uid in clients:
            try:
                observed = await self._tree.get(device_state_path(auth_uid))
            except Exception as exc:
                _logger.warning("Could not read device state for %s: %s", auth_uid, _describe(exc))
                observed = None
            problem = verification_problem(observed)
            if problem is None:
                continue
            _logger.info("Resuming provisioning for %s: %s", auth_uid, problem)
            try:
                reports.append(await self.provision(auth_uid))
            except ProvisioningError as exc:
                reports.append(exc.report or ApprovalReport(auth_uid=auth_uid))
            except NotFound:
                _logger.info("Client %s removed during reconcile; skipping", auth_uid)
            except (DocumentStoreError, ValueError) as exc:
                _logger.warning("Skipping %s during reconcile: %s", auth_uid, exc)
        await self._remove_orphans(set(clients))
        return reports

    async def _remove_orphans(self, known: set[str]) -> None:
        """Remove ``users/{uid}`` subtrees whose client is gone (failed decommission)."""
        try:
            subtrees = await self._tree.get(DEVICE_STATE_ROOT)
        except Exception as exc:
            _logger.warning("Could not list device state for orphan sweep: %s", _describe(exc))
            return
        if not isinstance(subtrees, dict):
            return
        for auth_uid in subtrees:
            if auth_uid in known:
                continue
            try:
                # Re-read: the client may have been approved since the listing.
                if await self._documents.get(CLIENTS_COLLECTION, auth_uid) is not None:
                    continue
                await self._tree.remove(device_state_path(auth_uid))
            except Exception as exc:
                _logger.warning("Could not remove orphaned device state %s: %s", auth_uid, _describe(exc))
                self._notify_error("reconcile_orphan_remove", exc)
                continue
            _logger.warning("Removed orphaned device state for %s", auth_uid)
            await self._audit("decommission", auth_uid, auth_uid=auth_uid, metadata={"orphan": True})

    # -------- Client maintenance --------

    async def edit_client(
        self, auth_uid: str, *, name: str | None = None, email: str | None = None
    ) -> Client:
        """Update a client's name and/or email, mirroring the name to its device state.

        Raises:
            NotFound: If no client exists for ``auth_uid``
            ProvisioningFailed: If the name could not be mirrored (document already updated)
        """
        device_state_path(auth_uid)
        if name is None and email is None:
            raise ValueError("provide name and/or email to update")
        changes: dict[str, str] = {}
        if name is not None:
            changes["name"] = name
        if email is not None:
            changes["email"] = email

        def _update(tx: DocumentTransaction) -> Client:
            data = tx.get(CLIENTS_COLLECTION, auth_uid)
            if data is None:
                raise NotFound(CLIENTS_COLLECTION, auth_uid)
            updated = self._parse_client(auth_uid, {**data, **changes})
            tx.set(CLIENTS_COLLECTION, auth_uid, updated.to_document())
            return updated

        try:
            client = await self._documents.transaction(_update)
            if name is not None:
                await self._mirror_name(auth_uid, name)
        except Exception as exc:
            await self._audit("edit", auth_uid, auth_uid=auth_uid, error=exc)
            raise
        await self._audit("edit", auth_uid, auth_uid=auth_uid, metadata=changes)
        return client

    async def decommission(self, auth_uid: str) -> None:
        """Delete a client and its device state subtree.

        The subtree is removed even when the client is already gone, so retrying
        after a partial failure clears an orphaned device state.

        Raises:
            NotFound: If no client existed (any orphaned subtree is still removed)
            ProvisioningFailed: If the subtree could not be removed
        """
        device_state_path(auth_uid)
        try:
            removed = await self._documents.delete(CLIENTS_COLLECTION, auth_uid)
            try:
                await self._tree.remove(device_state_path(auth_uid))
            except Exception as exc:
                self._notify_error("decommission_tree_remove", exc)
                raise ProvisioningFailed(
                    f"device state for {auth_uid} could not be removed: {_describe(exc)}",
                    auth_uid=auth_uid,
                ) from exc
            if not removed:
                raise NotFound(CLIENTS_COLLECTION, auth_uid)
        except Exception as exc:
            await self._audit("decommission", auth_uid, auth_uid=auth_uid, error=exc)
            raise
        await self._audit("decommission", auth_uid, auth_uid=auth_uid)

    # -------- Steps --------

    async def _load_request(self, request_id: str) -> OnboardingRequest:
        data = await self._documents.get(REQUESTS_COLLECTION, request_id)
        if data is None:
            raise NotFound(REQUESTS_COLLECTION, request_id)
        try:
            request = OnboardingRequest.from_document(request_id, data)
        except ValidationError as exc:
            raise InvalidRequest(
                f"request {request_id} is malformed", request_id=request_id
            ) from exc
        if not request.auth_uid.strip() or not request.cin.strip():
            raise InvalidRequest(
                f"request {request_id} is missing authUid or cin", request_id=request_id
            )
        try:
            device_state_path(request.auth_uid)
        except ValueError as exc:
            raise InvalidRequest(
                f"request {request_id} has an invalid authUid", request_id=request_id
            ) from exc
        return request

    async def _load_client(self, auth_uid: str) -> Client:
        data = await self._documents.get(CLIENTS_COLLECTION, auth_uid)
        if data is None:
            raise NotFound(CLIENTS_COLLECTION, auth_uid)
        return self._parse_client(auth_uid, data)

    @staticmethod
    def _parse_client(auth_uid: str, data: dict[str, Any]) -> Client:
        try:
            return Client.from_document(data)
        except ValidationError as exc:
            raise DocumentStoreError(f"client document {auth_uid} is malformed") from exc

    async def _commit_documents(self, request: OnboardingRequest, client: Client) -> None:
        """Step A. All-or-nothing: the client appears and the request disappears together."""

        def _step(tx: DocumentTransaction) -> None:
            if tx.get(REQUESTS_COLLECTION, request.request_id) is None:
                raise NotFound(REQUESTS_COLLECTION, request.request_id)
            if tx.get(CLIENTS_COLLECTION, request.auth_uid) is not None:
                raise AlreadyApproved(request.auth_uid)
            tx.set(CLIENTS_COLLECTION, request.auth_uid, client.to_document())
            tx.delete(REQUESTS_COLLECTION, request.request_id)

        await self._documents.transaction(_step)

    async def _provision_with_retry(
        self, report: ApprovalReport, state: DeviceState, deadline: float | None
    ) -> None:
        """Steps B and C, retried with exponential backoff. Raises when exhausted."""
        path = device_state_path(report.auth_uid)
        attempts = self._config.provision_attempts
        delay = self._config.retry_backoff_seconds
        cause: Exception | None = None
        for attempt in range(1, attempts + 1):
            report.attempts = attempt
            result, cause = await self._provision_once(report, path, state, deadline)
            if result.ok:
                _logger.debug("Device state for %s verified on attempt %d", report.auth_uid, attempt)
                return
            if attempt == attempts or self._expired(deadline):
                break
            _logger.warning(
                "Provisioning %s attempt %d/%d ended %s (%s); retrying in %.2fs",
                report.auth_uid,
                attempt,
                attempts,
                result.outcome.value,
                result.detail,
                delay,
            )
            await self._sleep_within(delay, deadline)
            delay *= 2

        last = report.last
        if last is None or last.step is Step.DOCUMENTS:
            raise ProvisioningFailed(
                f"no provisioning attempt was made for {report.auth_uid}",
                auth_uid=report.auth_uid,
                attempts=0,
                report=report,
            )
        error_cls: type[ProvisioningError] = ProvisioningUnverified
        if last.outcome is StepOutcome.FAILED:
            error_cls = ProvisioningFailed
        error = error_cls(
            f"device state for {report.auth_uid} {last.outcome.value} after "
            f"{report.attempts} attempt(s): {last.detail}",
            auth_uid=report.auth_uid,
            attempts=report.attempts,
            report=report,
        )
        self._error_count += 1
        _logger.error(
            "Client %s has no verified device state; manual remediation or "
            "provision(%r) required: %s",
            report.auth_uid,
            report.auth_uid,
            last.detail,
        )
        self._notify_error(error.code, error)
        if cause is not None:
            raise error from cause
        raise error

    async def _provision_once(
        self, report: ApprovalReport, path: str, state: DeviceState, deadline: float | None
    ) -> tuple[StepResult, Exception | None]:
        try:
            await self._bounded(self._tree.set(path, state.to_tree()), deadline)
        except Exception as exc:
            return report.record(Step.PROVISION, StepOutcome.FAILED, _describe(exc)), exc
        report.record(Step.PROVISION, StepOutcome.COMMITTED)

        try:
            observed = await self._bounded(self._tree.get(path), deadline)
        except Exception as exc:
            return report.record(Step.VERIFY, StepOutcome.UNVERIFIED, _describe(exc)), exc
        problem = verification_problem(observed, state)
        if problem is not None:
            return report.record(Step.VERIFY, StepOutcome.UNVERIFIED, problem), None
        return report.record(Step.VERIFY, StepOutcome.COMMITTED), None

    async def _mirror_name(self, auth_uid: str, name: str) -> None:
        try:
            current = await self._tree.get(device_state_path(auth_uid))
            if current is None:
                _logger.warning(
                    "No device state for %s; name not mirrored until provision()", auth_uid
                )
                return
            await self._tree.set(device_name_path(auth_uid), name)
        except Exception as exc:
            self._notify_error("edit_tree_write", exc)
            raise ProvisioningFailed(
                f"name for {auth_uid} could not be mirrored: {_describe(exc)}",
                auth_uid=auth_uid,
            ) from exc

    # -------- Deadlines --------

    def _deadline(self, timeout: float | None) -> float | None:
        if timeout is None:
            timeout = self._config.timeout_seconds
        if timeout is None:
            return None
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        return asyncio.get_running_loop().time() + timeout

    @staticmethod
    def _expired(deadline: float | None) -> bool:
        return deadline is not None and asyncio.get_running_loop().time() >= deadline

    @staticmethod
    async def _bounded(awaitable: Awaitable[T], deadline: float | None) -> T:
        if deadline is None:
            return await awaitable
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise TimeoutError("deadline expired")
        return await asyncio.wait_for(awaitable, remaining)

    @staticmethod
    async def _sleep_within(delay: float, deadline: float | None) -> None:
        if deadline is not None:
            delay = min(delay, max(0.0, deadline - asyncio.get_running_loop().time()))
        await asyncio.sleep(delay)

    # -------- Audit --------

    async def _audit(
        self,
        operation: Operation,
        target_id: str,
        *,
        auth_uid: str | None = None,
        report: ApprovalReport | None = None,
        error: Exception | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Best-effort audit record; failures are counted and logged, never raised."""
        if self._audit_logger is None:
            return
        if report is None and isinstance(error, ProvisioningError):
            report = error.report
        error_code: str | None = None
        if error is not None:
            error_code = error.code if isinstance(error, GreenlightError) else type(error).__name__
        try:
            entry = AuditEntry(
                timestamp=datetime.now(timezone.utc),
                operation=operation,
                target_id=target_id,
                auth_uid=auth_uid,
                outcome="error" if error is not None else "success",
                error_code=error_code,
                error=_describe(error) if error is not None else None,
                steps=[
                    {"step": step.step.value, "outcome": step.outcome.value}
                    for step in (report.steps if report is not None else ())
                ],
                metadata=redact_document(metadata or {}),
            )
            await self._audit_logger.log(entry)
        except Exception as exc:
            self._error_count += 1
            _logger.warning("Failed to write %s audit entry for %s: %s", operation, target_id, exc)
            self._notify_error("audit_write", exc)

    def _notify_error(self, event: str, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(event, exc)
        except Exception:
            pass  # Hook failure shouldn't cascade
