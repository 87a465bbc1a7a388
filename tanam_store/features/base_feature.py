"""Base feature interface for repository features"""

from typing import Any

from tanam_store.query_builder import DocumentQuery


class RepositoryFeature:
    """
    Base class for repository features.

    Features hook into repository lifecycle events to add functionality
    like server timestamps or soft-delete filtering.
    """

    def before_create(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Hook called before a document is first written.

        Args:
            data: Document payload

        Returns:
            Modified payload
        """
        return data

    def before_update(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Hook called before an existing document is written again.

        Args:
            data: Document payload

        Returns:
            Modified payload
        """
        return data

    def apply_query_filters(self, query: DocumentQuery) -> DocumentQuery:
        """
        Hook to narrow lookups (e.g., skip documents flagged as deleted).

        Args:
            query: Document query

        Returns:
            Modified query
        """
        return query
