import logging

from tanam_store.config import RepositoryConfig
from tanam_store.document_store import DocumentStore
from tanam_store.entities import Theme
from tanam_store.query_builder import DocumentQuery
from tanam_store.repository import DocumentRepository
from tanam_store.subscription import Subscription

logger = logging.getLogger(__name__)


class ThemeRepository(DocumentRepository[Theme]):
    """Themes: plain CRUD, last write wins."""

    default_collection = "tanam-themes"

    def __init__(self, store: DocumentStore, config: RepositoryConfig | None = None):
        super().__init__(store, Theme, config)

    async def create(self, theme_id: str | None = None) -> Theme:
        """Persist a blank theme"""
        return await self._insert(theme_id or self.store.create_id(), Theme())

    async def update(self, theme: Theme) -> Theme | None:
        """Overwrite the theme's fields and return the stored version"""
        if not theme.id:
            raise ValueError("Cannot update a theme without an id")
        data = self._before_update(theme.to_document())
        await self.store.update(self.collection, theme.id, data)
        return await self.find_by_id(theme.id)

    async def delete(self, theme_id: str) -> bool:
        deleted = await self.store.delete(self.collection, theme_id)
        if deleted:
            logger.info("Deleted %s/%s", self.collection, theme_id)
        return deleted

    async def get_themes(self) -> Subscription[list[Theme]]:
        return await self._watch_many(DocumentQuery())

    async def get_theme(self, theme_id: str) -> Subscription[Theme | None]:
        return await self._watch_one(theme_id)
