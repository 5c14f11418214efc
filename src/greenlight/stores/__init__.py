"""Backing store implementations for greenlight."""

from .async_tree import AsyncSQLiteTreeStore
from .documents import DocumentStore, DocumentTransaction, SQLiteDocumentStore
from .tree import SQLiteTreeStore, TreeStore

__all__ = [
    "AsyncSQLiteTreeStore",
    "DocumentStore",
    "DocumentTransaction",
    "SQLiteDocumentStore",
    "SQLiteTreeStore",
    "TreeStore",
]
