"""Adapters that wrap sync store and logger implementations for async use.

    from greenlight.adapters import SyncDocumentStoreAdapter, SyncTreeStoreAdapter
"""

from .sync_to_async import SyncAuditLoggerAdapter, SyncDocumentStoreAdapter, SyncTreeStoreAdapter

__all__ = (
    "SyncAuditLoggerAdapter",
    "SyncDocumentStoreAdapter",
    "SyncTreeStoreAdapter",
)
