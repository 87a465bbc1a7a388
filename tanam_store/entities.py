from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, NonNegativeInt, PlainSerializer
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as fixed-width UTC ISO 8601 so stored values sort as text."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


Timestamp = Annotated[datetime, PlainSerializer(format_timestamp, when_used="json")]


class Field[T]:
    """Type-safe document field path.

    Usage:
        class EntrySchema(SchemaBase):
            content_type = Field[str]("contentType")
            url_root = Field[str]("url.root")

    This allows for:
        DocumentQuery().where(EntrySchema.url_root, "blog")
    """

    def __init__(self, path: str):
        """
        Args:
            path: Dotted path of the field inside the stored document
        """
        self._path = path

    @property
    def path(self) -> str:
        """Return the dotted document path."""
        return self._path

    def __str__(self) -> str:
        """Return the path when used in queries"""
        return self._path

    def __repr__(self) -> str:
        return f"Field({self._path})"


class SchemaBase:
    """Base class for schema definitions with type-safe field paths."""

    pass


class DocumentModel(BaseModel):
    """Base class for everything persisted inside a document payload."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        use_enum_values=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class BaseEntity(DocumentModel):
    """Base entity class for all stored documents.

    The id is the document key and is never written into the payload.
    """

    id: str | None = None

    def to_document(self) -> dict[str, Any]:
        """Serialize to the stored payload (camelCase keys, no id)."""
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class EntryStatus(str, Enum):
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    DELETED = "deleted"


class EntryUrl(DocumentModel):
    root: str
    path: str


class ContentEntry(BaseEntity):
    content_type: str
    title: str
    url: EntryUrl
    revision: NonNegativeInt = 0
    status: EntryStatus = EntryStatus.UNPUBLISHED
    tags: list[str] = []
    publish_time: Timestamp | None = None
    updated_at: Timestamp | None = None
    created_at: Timestamp | None = None
    data: dict[str, Any] = {}


class Theme(BaseEntity):
    title: str = ""
    description: str = ""
    images: list[str] = []
    styles: list[str] = []
    updated_at: Timestamp | None = None
    created_at: Timestamp | None = None


class EntrySchema(SchemaBase):
    content_type = Field[str]("contentType")
    url_root = Field[str]("url.root")
    url_path = Field[str]("url.path")
    revision = Field[int]("revision")
    status = Field[str]("status")
    publish_time = Field[str]("publishTime")
    updated_at = Field[str]("updatedAt")
    created_at = Field[str]("createdAt")


class OrderBy(BaseModel):
    field: str
    sort_order: SortOrder = SortOrder.ASC


class QueryOptions(BaseModel):
    """Ordering and size options for list queries"""

    limit: int | None = None
    order_by: OrderBy | None = None
