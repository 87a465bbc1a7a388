import logging
from datetime import datetime
from typing import Any

from tanam_store.config import RepositoryConfig, UrlMatchPolicy
from tanam_store.document_store import SERVER_TIMESTAMP, DocumentSnapshot, DocumentStore, Transaction
from tanam_store.entities import ContentEntry, EntrySchema, EntryStatus, EntryUrl, QueryOptions
from tanam_store.errors import MultipleMatches, NotFound
from tanam_store.features import RepositoryFeature, SoftDeleteFeature, TimestampFeature
from tanam_store.query_builder import DocumentQuery
from tanam_store.repository import DocumentRepository
from tanam_store.subscription import Subscription

logger = logging.getLogger(__name__)


class EntryRepository(DocumentRepository[ContentEntry]):
    """Content entries with revision-checked saves.

    `save` is the only way to change an entry after `create`: it re-reads the
    stored revision inside a transaction and writes revision + 1, so a caller
    can never set the revision directly.
    """

    default_collection = "tanam-content-entries"

    def __init__(self, store: DocumentStore, config: RepositoryConfig | None = None):
        super().__init__(store, ContentEntry, config)

    def default_features(self) -> list[RepositoryFeature]:
        return [
            TimestampFeature(EntrySchema.created_at.path, EntrySchema.updated_at.path),
            SoftDeleteFeature(EntrySchema.status.path, EntryStatus.DELETED.value),
        ]

    async def create(self, content_type_id: str, url_root: str) -> ContentEntry:
        """Persist a new unpublished entry at revision 0, addressed by its own id"""
        entry_id = self.store.create_id()
        entry = ContentEntry(
            content_type=content_type_id,
            title=entry_id,
            url=EntryUrl(root=url_root, path=entry_id),
            revision=0,
            status=EntryStatus.UNPUBLISHED,
            tags=[],
            data={},
        )
        return await self._insert(entry_id, entry)

    async def get(self, entry_id: str) -> ContentEntry | None:
        """One-shot read of an entry"""
        return await self.find_by_id(entry_id)

    async def save(self, entry: ContentEntry) -> ContentEntry:
        """Write the entry with the next revision.

        The caller's entry is updated in place with the new revision and
        update time. Raises NotFound if the entry was never created and
        TransactionConflict if concurrent writers exhaust the retry budget.
        """
        return await self._commit(entry, {})

    async def set_status(self, entry: ContentEntry, status: EntryStatus | str) -> ContentEntry:
        entry.status = EntryStatus(status)
        return await self.save(entry)

    async def publish(self, entry: ContentEntry) -> ContentEntry:
        """Mark the entry published, stamping the publish time"""
        entry.status = EntryStatus.PUBLISHED
        return await self._commit(entry, {EntrySchema.publish_time.path: SERVER_TIMESTAMP})

    async def delete(self, entry: ContentEntry) -> ContentEntry:
        """Flag the entry as deleted. The record itself is kept."""
        return await self.set_status(entry, EntryStatus.DELETED)

    async def _commit(self, entry: ContentEntry, extra: dict[str, Any]) -> ContentEntry:
        if not entry.id:
            raise ValueError("Cannot save an entry without an id")
        entry_id = entry.id

        async def increment_revision(tx: Transaction) -> tuple[int, dict[str, Any]]:
            current = await tx.get(self.collection, entry_id)
            if not current.exists:
                raise NotFound(self.collection, entry_id)
            revision = current.data.get(EntrySchema.revision.path, 0) + 1
            data = entry.to_document()
            data.pop(EntrySchema.created_at.path, None)
            data.update(extra)
            data[EntrySchema.revision.path] = revision
            data[EntrySchema.updated_at.path] = SERVER_TIMESTAMP
            data = self._before_update(data)
            return revision, await tx.update(self.collection, entry_id, data)

        revision, written = await self.store.run_transaction(
            increment_revision, self.config.max_transaction_attempts
        )
        entry.revision = revision
        entry.updated_at = datetime.fromisoformat(written[EntrySchema.updated_at.path])
        if EntrySchema.publish_time.path in extra:
            entry.publish_time = datetime.fromisoformat(written[EntrySchema.publish_time.path])
        logger.info("Saved %s/%s at revision %d", self.collection, entry_id, revision)
        return entry

    async def find_by_url(self, root: str, path: str) -> Subscription[ContentEntry | None]:
        """Live lookup of the non-deleted entry published at root/path.

        Emits None while nothing matches. With UrlMatchPolicy.STRICT the
        stream fails with MultipleMatches if the URL is not unique.
        """
        logger.debug("find_by_url root=%s path=%s", root, path)
        strict = self.config.url_match_policy == UrlMatchPolicy.STRICT
        query = (
            DocumentQuery()
            .where(EntrySchema.url_root, root)
            .where(EntrySchema.url_path, path)
            .limit(2 if strict else 1)
        )
        query = self._apply_query_filters(query)
        subscription = await self.store.watch_query(self.collection, query)

        def pick(snapshots: list[DocumentSnapshot]) -> ContentEntry | None:
            if len(snapshots) > 1:
                logger.warning("URL %s/%s matches %d entries", root, path, len(snapshots))
                raise MultipleMatches(self.collection, {"url.root": root, "url.path": path})
            entries = self.entity_mapper.map_snapshots(snapshots)
            return entries[0] if entries else None

        return subscription.map(pick)

    async def get_by_id(
        self, content_type_id: str, entry_id: str
    ) -> Subscription[ContentEntry | None]:
        """Live stream of one entry, None while it does not exist.

        Entries are addressed by id alone; content_type_id is accepted so
        call sites can stay scoped to a content type.
        """
        return await self._watch_one(entry_id)

    async def list_by_content_type(
        self,
        content_type_id: str,
        options: QueryOptions | None = None,
        *,
        include_deleted: bool = True,
    ) -> Subscription[list[ContentEntry]]:
        """Live list of a content type's entries, optionally ordered and capped"""
        logger.debug("list_by_content_type %s %r", content_type_id, options)
        query = DocumentQuery().where(EntrySchema.content_type, content_type_id)
        query = query.with_options(options)
        if not include_deleted:
            query = self._apply_query_filters(query)
        return await self._watch_many(query)
