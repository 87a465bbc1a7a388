"""Statement tracking for the PostgreSQL document store.

Store calls label the SQL they run with a StoreOperation (what the call does
and which document or collection it targets). Inside
`DatabaseManager.track_queries()` every statement is recorded with the
operation that issued it.
"""

from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class StoreOperation:
    """A document store call and its target"""

    name: str
    collection: str | None = None
    document_id: str | None = None


@dataclass
class QueryLog:
    """One SQL statement and the store operation that ran it"""

    query: str
    params: list[Any]
    operation: StoreOperation | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def operation_name(self) -> str | None:
        return self.operation.name if self.operation else None


class QueryTracker:
    """Collects the statements run while tracking is active"""

    def __init__(self):
        self.queries: list[QueryLog] = []

    def log_query(self, query: str, params: list[Any], operation: StoreOperation | None):
        self.queries.append(QueryLog(query=query, params=params, operation=operation))

    def get_queries(self) -> list[QueryLog]:
        """Get all logged queries"""
        return self.queries.copy()

    def for_document(self, collection: str, document_id: str) -> list[QueryLog]:
        """Statements issued on behalf of one document"""
        return [
            log
            for log in self.queries
            if log.operation is not None
            and log.operation.collection == collection
            and log.operation.document_id == document_id
        ]

    def operations(self) -> list[str]:
        """Names of the operations that ran statements, in order, without repeats in a row"""
        names: list[str] = []
        for log in self.queries:
            name = log.operation_name
            if name is not None and (not names or names[-1] != name):
                names.append(name)
        return names


_query_tracker: ContextVar[QueryTracker | None] = ContextVar(
    "query_tracker", default=None
)
_operation: ContextVar[StoreOperation | None] = ContextVar("store_operation", default=None)


class DatabaseManager:
    """Operation labelling and query tracking for the PostgreSQL document store"""

    @classmethod
    def get_query_tracker(cls) -> QueryTracker | None:
        """Get the current query tracker from context"""
        return _query_tracker.get()

    @classmethod
    def current_operation(cls) -> StoreOperation | None:
        return _operation.get()

    @classmethod
    @contextmanager
    def operation(
        cls, name: str, collection: str | None = None, document_id: str | None = None
    ) -> Iterator[StoreOperation]:
        """Label the statements run inside the block. The innermost label wins."""
        operation = StoreOperation(name, collection, document_id)
        token = _operation.set(operation)
        try:
            yield operation
        finally:
            _operation.reset(token)

    @classmethod
    def log_query(cls, query: str, params: list[Any]):
        """Log a query to the current query tracker if available"""
        tracker = _query_tracker.get()
        if tracker:
            tracker.log_query(query, params, _operation.get())

    @classmethod
    @asynccontextmanager
    async def track_queries(cls):
        """Context manager for query tracking. Nested blocks share the outer tracker.

        async with DatabaseManager.track_queries() as tracker:
            await entries.save(entry)
            statements = tracker.for_document("tanam-content-entries", entry.id)
        """
        current_tracker = _query_tracker.get()
        if current_tracker:
            yield current_tracker
            return

        tracker = QueryTracker()
        token = _query_tracker.set(tracker)
        try:
            yield tracker
        finally:
            _query_tracker.reset(token)
