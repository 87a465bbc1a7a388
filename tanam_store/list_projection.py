"""Client-side sorting and paging for table views.

Pure functions over an already fetched list; the input is never modified.
"""

from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from tanam_store.entities import SortOrder
from tanam_store.subscription import Subscription


def _value(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _title_key(item: Any) -> str:
    return _value(item, "title") or ""


def _updated_key(item: Any) -> tuple[int, float]:
    updated_at = _value(item, "updated_at")
    if updated_at is None:
        return (0, 0.0)
    return (1, updated_at.timestamp())


SORT_KEYS: dict[str, Callable[[Any], Any]] = {
    "title": _title_key,
    "updated": _updated_key,
}


def sort[T](data: Sequence[T], field: str | None, direction: SortOrder | str | None) -> list[T]:
    """Sorted copy of data.

    Unknown fields and an empty direction leave the order unchanged.
    """
    key = SORT_KEYS.get(field or "")
    if isinstance(direction, SortOrder):
        direction = direction.value
    direction = (direction or "").lower()
    if key is None or direction not in (SortOrder.ASC.value, SortOrder.DESC.value):
        return list(data)
    return sorted(data, key=key, reverse=direction == SortOrder.DESC.value)


def page[T](data: Sequence[T], page_index: int, page_size: int) -> list[T]:
    """Copy of the page_index-th slice of page_size items, clipped to the data"""
    if page_index < 0:
        raise ValueError("Page index must be 0 or greater")
    if page_size < 1:
        raise ValueError("Page size must be 1 or greater")
    start = page_index * page_size
    return list(data[start : start + page_size])


@dataclass
class ListProjection[T]:
    """Sort and paging state of one table view.

    Usage:
        projection = ListProjection(sort_field="title", direction="asc", page_size=20)
        async for rows in projection.connect(await themes.get_themes()):
            render(rows, total=projection.length)
    """

    sort_field: str | None = None
    direction: SortOrder | str | None = None
    page_index: int = 0
    page_size: int = 10
    length: int = 0

    def apply(self, data: Sequence[T]) -> list[T]:
        """Sort, then cut the current page. Records the unpaged length."""
        self.length = len(data)
        return page(sort(data, self.sort_field, self.direction), self.page_index, self.page_size)

    async def connect(self, subscription: Subscription[list[T]]) -> AsyncIterator[list[T]]:
        """Project every emission of a live list.

        Closing the generator cancels the subscription.
        """
        try:
            async for data in subscription:
                yield self.apply(data)
        finally:
            await subscription.cancel()
