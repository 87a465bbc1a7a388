"""Soft delete feature for status-flagged deletion"""

from tanam_store.features.base_feature import RepositoryFeature
from tanam_store.query_builder import DocumentQuery


class SoftDeleteFeature(RepositoryFeature):
    """
    Hides documents whose status field marks them as deleted.

    Deletion is a status value; records are never physically removed.
    Lookups that apply repository filters skip them:

        config = RepositoryConfig(features=[TimestampFeature(), SoftDeleteFeature()])
        entries = EntryRepository(store, config)
        await entries.find_by_url("posts", "hello")  # deleted entries excluded
    """

    def __init__(self, status_field: str = "status", deleted_value: str = "deleted"):
        self.status_field = status_field
        self.deleted_value = deleted_value

    def apply_query_filters(self, query: DocumentQuery) -> DocumentQuery:
        return query.where(self.status_field, "!=", self.deleted_value)
