"""Timestamp feature for server-assigned timestamps"""

from typing import Any

from tanam_store.document_store import SERVER_TIMESTAMP
from tanam_store.features.base_feature import RepositoryFeature


class TimestampFeature(RepositoryFeature):
    """
    Stamps `createdAt` and `updatedAt` with the store's commit time.

    The values are SERVER_TIMESTAMP placeholders, never the client clock.
    """

    def __init__(self, created_field: str = "createdAt", updated_field: str = "updatedAt"):
        self.created_field = created_field
        self.updated_field = updated_field

    def before_create(self, data: dict[str, Any]) -> dict[str, Any]:
        data[self.created_field] = SERVER_TIMESTAMP
        data[self.updated_field] = SERVER_TIMESTAMP
        return data

    def before_update(self, data: dict[str, Any]) -> dict[str, Any]:
        # createdAt is written once
        data.pop(self.created_field, None)
        data[self.updated_field] = SERVER_TIMESTAMP
        return data
