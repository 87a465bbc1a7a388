"""In-process document store.

Every document carries a version bumped on each committed write. Transactions
buffer their writes and validate the versions they read at commit time; a
changed version means a concurrent commit won, and the transaction function
is run again.
"""

import asyncio
import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from tanam_store.document_store import (
    DocumentSnapshot,
    DocumentStore,
    SnapshotFeed,
    Transaction,
    TransactionFunction,
    resolve_server_timestamps,
)
from tanam_store.errors import NotFound, StoreUnavailable, TransactionConflict
from tanam_store.query_builder import DocumentQuery
from tanam_store.subscription import Subscription

logger = logging.getLogger(__name__)


@dataclass
class _Record:
    version: int
    data: dict[str, Any]


@dataclass
class _Write:
    collection: str
    document_id: str
    data: dict[str, Any] | None
    merge: bool = False


class _Watch:
    def __init__(self, collection: str, fetch: Callable[[], Any], feed: SnapshotFeed):
        self.collection = collection
        self.fetch = fetch
        self.feed = feed

    def refresh(self) -> None:
        self.feed.publish(self.fetch())


class MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryDocumentStore"):
        self._store = store
        self.reads: dict[tuple[str, str], int] = {}
        self.writes: list[_Write] = []

    async def get(self, collection: str, document_id: str) -> DocumentSnapshot:
        self._store._check_available()
        record = self._store._record(collection, document_id)
        self.reads.setdefault((collection, document_id), record.version if record else 0)
        snapshot = self._store._snapshot(collection, document_id)
        await asyncio.sleep(0)
        return snapshot

    async def set(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        resolved = self._store._resolve(data)
        self.writes.append(_Write(collection, document_id, resolved))
        return copy.deepcopy(resolved)

    async def update(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        record = self._store._record(collection, document_id)
        if record is None:
            raise NotFound(collection, document_id)
        self.reads.setdefault((collection, document_id), record.version)
        resolved = self._store._resolve(data)
        self.writes.append(_Write(collection, document_id, resolved, merge=True))
        return copy.deepcopy(resolved)


class MemoryDocumentStore(DocumentStore):
    """Document store held in process memory.

    Set `available = False` to make every call fail with StoreUnavailable.
    """

    def __init__(
        self,
        max_transaction_attempts: int = 5,
        clock: Callable[[], datetime] | None = None,
    ):
        self.max_transaction_attempts = max_transaction_attempts
        self.available = True
        self._clock = clock or (lambda: datetime.now(UTC))
        self._collections: dict[str, dict[str, _Record]] = {}
        self._watches: list[_Watch] = []
        self._version = 0

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailable("Document store is offline")

    def _record(self, collection: str, document_id: str) -> _Record | None:
        return self._collections.get(collection, {}).get(document_id)

    def _snapshot(self, collection: str, document_id: str) -> DocumentSnapshot:
        record = self._record(collection, document_id)
        data = copy.deepcopy(record.data) if record else None
        return DocumentSnapshot(id=document_id, data=data)

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        return copy.deepcopy(resolve_server_timestamps(data, self._clock()))

    def _select(self, collection: str, query: DocumentQuery) -> list[DocumentSnapshot]:
        snapshots = [
            DocumentSnapshot(id=document_id, data=copy.deepcopy(record.data))
            for document_id, record in self._collections.get(collection, {}).items()
        ]
        return query.apply(snapshots)

    def _commit(self, writes: list[_Write]) -> None:
        """Apply writes atomically and refresh affected watches"""
        touched = set()
        for write in writes:
            documents = self._collections.setdefault(write.collection, {})
            self._version += 1
            if write.data is None:
                documents.pop(write.document_id, None)
            elif write.merge and write.document_id in documents:
                merged = {**documents[write.document_id].data, **write.data}
                documents[write.document_id] = _Record(self._version, merged)
            else:
                documents[write.document_id] = _Record(self._version, write.data)
            touched.add(write.collection)

        for watch in list(self._watches):
            if watch.collection in touched:
                watch.refresh()

    async def get(self, collection: str, document_id: str) -> DocumentSnapshot:
        self._check_available()
        await asyncio.sleep(0)
        return self._snapshot(collection, document_id)

    async def set(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        self._check_available()
        await asyncio.sleep(0)
        resolved = self._resolve(data)
        self._commit([_Write(collection, document_id, resolved)])
        return copy.deepcopy(resolved)

    async def update(
        self, collection: str, document_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        self._check_available()
        await asyncio.sleep(0)
        if self._record(collection, document_id) is None:
            raise NotFound(collection, document_id)
        resolved = self._resolve(data)
        self._commit([_Write(collection, document_id, resolved, merge=True)])
        return copy.deepcopy(resolved)

    async def delete(self, collection: str, document_id: str) -> bool:
        self._check_available()
        await asyncio.sleep(0)
        if self._record(collection, document_id) is None:
            return False
        self._commit([_Write(collection, document_id, None)])
        return True

    async def query(
        self, collection: str, query: DocumentQuery
    ) -> list[DocumentSnapshot]:
        self._check_available()
        await asyncio.sleep(0)
        return self._select(collection, query)

    async def run_transaction(
        self, fn: TransactionFunction, max_attempts: int | None = None
    ) -> Any:
        attempts = max_attempts or self.max_transaction_attempts
        for attempt in range(1, attempts + 1):
            self._check_available()
            transaction = MemoryTransaction(self)
            result = await fn(transaction)
            if self._try_commit(transaction):
                return result
            logger.warning(
                "Transaction conflict on attempt %d of %d", attempt, attempts
            )
        raise TransactionConflict(attempts)

    def _try_commit(self, transaction: MemoryTransaction) -> bool:
        for (collection, document_id), version in transaction.reads.items():
            record = self._record(collection, document_id)
            if (record.version if record else 0) != version:
                return False
        for write in transaction.writes:
            if write.merge and self._record(write.collection, write.document_id) is None:
                raise NotFound(write.collection, write.document_id)
        self._commit(transaction.writes)
        return True

    async def watch_document(
        self, collection: str, document_id: str
    ) -> Subscription[DocumentSnapshot]:
        return self._watch(collection, lambda: self._snapshot(collection, document_id))

    async def watch_query(
        self, collection: str, query: DocumentQuery
    ) -> Subscription[list[DocumentSnapshot]]:
        return self._watch(collection, lambda: self._select(collection, query))

    def _watch(self, collection: str, fetch: Callable[[], Any]) -> Subscription[Any]:
        self._check_available()

        async def release() -> None:
            self._watches.remove(watch)

        subscription: Subscription[Any] = Subscription(on_cancel=release)
        watch = _Watch(collection, fetch, SnapshotFeed(subscription))
        self._watches.append(watch)
        watch.refresh()
        return subscription

    def listener_count(self) -> int:
        """Number of live subscriptions still registered"""
        return len(self._watches)
