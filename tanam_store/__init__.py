"""Versioned document storage for the Tanam content admin"""

from tanam_store.config import RepositoryConfig, StoreSettings, UrlMatchPolicy
from tanam_store.document_store import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore
from tanam_store.entities import (
    ContentEntry,
    EntryStatus,
    EntryUrl,
    OrderBy,
    QueryOptions,
    SortOrder,
    Theme,
)
from tanam_store.entry_repository import EntryRepository
from tanam_store.errors import (
    MultipleMatches,
    NotFound,
    StoreError,
    StoreUnavailable,
    TransactionConflict,
    ValidationError,
)
from tanam_store.features import RepositoryFeature, SoftDeleteFeature, TimestampFeature
from tanam_store.list_projection import ListProjection
from tanam_store.memory_store import MemoryDocumentStore
from tanam_store.postgres_store import PostgresDocumentStore
from tanam_store.query_builder import DocumentQuery
from tanam_store.subscription import Subscription
from tanam_store.theme_repository import ThemeRepository

__all__ = [
    "ContentEntry",
    "DocumentQuery",
    "DocumentSnapshot",
    "DocumentStore",
    "EntryRepository",
    "EntryStatus",
    "EntryUrl",
    "ListProjection",
    "MemoryDocumentStore",
    "MultipleMatches",
    "NotFound",
    "OrderBy",
    "PostgresDocumentStore",
    "QueryOptions",
    "RepositoryConfig",
    "RepositoryFeature",
    "SERVER_TIMESTAMP",
    "SoftDeleteFeature",
    "SortOrder",
    "StoreError",
    "StoreSettings",
    "StoreUnavailable",
    "Subscription",
    "ThemeRepository",
    "TimestampFeature",
    "TransactionConflict",
    "UrlMatchPolicy",
    "ValidationError",
]
