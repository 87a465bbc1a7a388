"""Repository base class"""

import logging
from typing import Any

from tanam_store.config import RepositoryConfig
from tanam_store.document_store import DocumentStore
from tanam_store.entities import BaseEntity
from tanam_store.entity_mapper import EntityMapper
from tanam_store.features import RepositoryFeature, TimestampFeature
from tanam_store.query_builder import DocumentQuery
from tanam_store.subscription import Subscription

logger = logging.getLogger(__name__)


class DocumentRepository[T: BaseEntity]:
    """Repository over one collection of a document store.

    The store is injected, so any DocumentStore (PostgreSQL, in-memory test
    double) can back it. Entities returned are disposable snapshots; every
    read goes back to the store.

    Type Parameters:
        T: Entity type stored in the collection
    """

    default_collection: str = ""

    def __init__(
        self,
        store: DocumentStore,
        entity_class: type[T],
        config: RepositoryConfig | None = None,
    ):
        if store is None:
            raise ValueError("store is required")
        self.store = store
        self.entity_class = entity_class
        self.config = config or RepositoryConfig()
        self.collection = self.config.collection or self.default_collection
        if not self.collection:
            raise ValueError("collection is required")
        self.features: list[RepositoryFeature] = (
            self.config.features
            if self.config.features is not None
            else self.default_features()
        )
        self.entity_mapper = EntityMapper(entity_class)

    def default_features(self) -> list[RepositoryFeature]:
        """Features used when the config does not name any"""
        return [TimestampFeature()]

    def _before_create(self, data: dict[str, Any]) -> dict[str, Any]:
        for feature in self.features:
            data = feature.before_create(data)
        return data

    def _before_update(self, data: dict[str, Any]) -> dict[str, Any]:
        for feature in self.features:
            data = feature.before_update(data)
        return data

    def _apply_query_filters(self, query: DocumentQuery) -> DocumentQuery:
        for feature in self.features:
            query = feature.apply_query_filters(query)
        return query

    async def find_by_id(self, document_id: str) -> T | None:
        """One-shot read of a document"""
        snapshot = await self.store.get(self.collection, document_id)
        return self.entity_mapper.map_snapshot(snapshot)

    async def _insert(self, document_id: str, entity: T) -> T:
        """Persist a new document and return it as written"""
        data = self._before_create(entity.to_document())
        written = await self.store.set(self.collection, document_id, data)
        logger.info("Created %s/%s", self.collection, document_id)
        return self.entity_mapper.map_document(document_id, written)

    async def _watch_one(self, document_id: str) -> Subscription[T | None]:
        subscription = await self.store.watch_document(self.collection, document_id)
        return subscription.map(self.entity_mapper.map_snapshot)

    async def _watch_many(self, query: DocumentQuery) -> Subscription[list[T]]:
        logger.debug("Watching %s with %r", self.collection, query)
        subscription = await self.store.watch_query(self.collection, query)
        return subscription.map(self.entity_mapper.map_snapshots)
