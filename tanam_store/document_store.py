"""Document store capability surface.

Repositories talk to a DocumentStore, never to a database driver directly.
Implementations: tanam_store.memory_store and tanam_store.postgres_store.
"""

import secrets
import string
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from tanam_store.entities import format_timestamp
from tanam_store.query_builder import DocumentQuery
from tanam_store.subscription import Subscription

ID_ALPHABET = string.ascii_letters + string.digits
ID_LENGTH = 20


class _ServerTimestamp:
    # Copies must stay the singleton so `is SERVER_TIMESTAMP` still matches
    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> "_ServerTimestamp":
        return self

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Placeholder replaced by the store's commit-time clock when written
SERVER_TIMESTAMP: Any = _ServerTimestamp()


def generate_id() -> str:
    """Random 20-character alphanumeric document id"""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


def resolve_server_timestamps(value: Any, now: datetime) -> Any:
    """Return a copy of value with every SERVER_TIMESTAMP replaced by now"""
    if value is SERVER_TIMESTAMP:
        return format_timestamp(now)
    if isinstance(value, dict):
        return {key: resolve_server_timestamps(item, now) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [resolve_server_timestamps(item, now) for item in value]
    return value


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time copy of a stored document. data is None when it does not exist."""

    id: str
    data: dict[str, Any] | None = None

    @property
    def exists(self) -> bool:
        return self.data is not None


class SnapshotFeed[T]:
    """Feeds a subscription, skipping values equal to the last one delivered"""

    _UNSET = object()

    def __init__(self, subscription: Subscription[T]):
        self.subscription = subscription
        self._last: Any = self._UNSET

    def publish(self, value: T) -> None:
        if value == self._last:
            return
        self._last = value
        self.subscription.push(value)


class Transaction(ABC):
    """Read-modify-write scope handed to the function given to run_transaction"""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> DocumentSnapshot: ...

    @abstractmethod
    async def set(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Replace the whole document. Returns the payload as written."""

    @abstractmethod
    async def update(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge top-level fields into an existing document. Returns the fields as written.

        Raises NotFound if the document does not exist.
        """


TransactionFunction = Callable[[Transaction], Awaitable[Any]]


class DocumentStore(ABC):
    """Abstract document database.

    All writes resolve SERVER_TIMESTAMP placeholders with the store's clock.
    Connectivity failures surface as StoreUnavailable.
    """

    def create_id(self) -> str:
        """Allocate a new document id"""
        return generate_id()

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> DocumentSnapshot: ...

    @abstractmethod
    async def set(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Create or replace a document. Returns the payload as written."""

    @abstractmethod
    async def update(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Merge top-level fields into an existing document (NotFound if absent)"""

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> bool:
        """Remove a document. Returns False if it did not exist."""

    @abstractmethod
    async def query(
        self, collection: str, query: DocumentQuery
    ) -> list[DocumentSnapshot]: ...

    @abstractmethod
    async def run_transaction(
        self, fn: TransactionFunction, max_attempts: int | None = None
    ) -> Any:
        """Run fn atomically, retrying it when a concurrent commit conflicts.

        Exceptions raised by fn abort the transaction and propagate unchanged.
        Raises TransactionConflict once max_attempts conflicting runs are used up.
        """

    @abstractmethod
    async def watch_document(
        self, collection: str, document_id: str
    ) -> Subscription[DocumentSnapshot]:
        """Current snapshot now, then one per committed change"""

    @abstractmethod
    async def watch_query(
        self, collection: str, query: DocumentQuery
    ) -> Subscription[list[DocumentSnapshot]]:
        """Current result set now, then one per committed change to it"""
