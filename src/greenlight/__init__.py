"""greenlight public API."""

from .adapters import SyncAuditLoggerAdapter, SyncDocumentStoreAdapter, SyncTreeStoreAdapter
from .config import GreenlightConfig
from .coordinator import ApprovalCoordinator
from .errors import (
    AlreadyApproved,
    AuditLogError,
    DocumentStoreError,
    GreenlightError,
    InvalidRequest,
    NotFound,
    ProvisioningError,
    ProvisioningFailed,
    ProvisioningUnverified,
    StoreError,
    TreeStoreError,
)
from .loggers import JsonlAuditLogger
from .protocols import AsyncAuditLogger, AsyncDocumentStore, AsyncTreeStore
from .roster import ClientRow, RequestRow, RosterProjection
from .stores import AsyncSQLiteTreeStore, SQLiteDocumentStore, SQLiteTreeStore
from .types import (
    ApprovalReport,
    AuditEntry,
    Client,
    DeviceState,
    OnboardingRequest,
    Step,
    StepOutcome,
    StepResult,
)

__all__ = (
    # Coordinator
    "ApprovalCoordinator",
    "GreenlightConfig",
    # Read side
    "RosterProjection",
    "RequestRow",
    "ClientRow",
    # Types
    "OnboardingRequest",
    "Client",
    "DeviceState",
    "ApprovalReport",
    "Step",
    "StepOutcome",
    "StepResult",
    "AuditEntry",
    # Stores
    "SQLiteDocumentStore",
    "SQLiteTreeStore",
    "AsyncSQLiteTreeStore",
    "SyncDocumentStoreAdapter",
    "SyncTreeStoreAdapter",
    "SyncAuditLoggerAdapter",
    "JsonlAuditLogger",
    # Async protocols
    "AsyncDocumentStore",
    "AsyncTreeStore",
    "AsyncAuditLogger",
    # Errors
    "GreenlightError",
    "InvalidRequest",
    "AlreadyApproved",
    "NotFound",
    "ProvisioningError",
    "ProvisioningFailed",
    "ProvisioningUnverified",
    "StoreError",
    "DocumentStoreError",
    "TreeStoreError",
    "AuditLogError",
)
