from typing import Any

from tanam_store.document_store import DocumentSnapshot
from tanam_store.entities import BaseEntity


class EntityMapper[T: BaseEntity]:
    """Composition class for mapping stored documents to entities.

    The document key is not part of the stored payload, so every mapping
    re-attaches it as the entity id.
    """

    def __init__(self, entity_class: type[T]):
        self.entity_class = entity_class

    def map_document(self, document_id: str, data: dict[str, Any]) -> T:
        """Map a document payload and its key to an entity"""
        return self.entity_class.model_validate({**data, "id": document_id})

    def map_snapshot(self, snapshot: DocumentSnapshot) -> T | None:
        """Map a snapshot to an entity, or None when the document does not exist"""
        if not snapshot.exists:
            return None
        return self.map_document(snapshot.id, snapshot.data)

    def map_snapshots(self, snapshots: list[DocumentSnapshot]) -> list[T]:
        """Map query results to entities"""
        return [
            self.map_document(snapshot.id, snapshot.data)
            for snapshot in snapshots
            if snapshot.exists
        ]
