"""
Simple query builder for document queries.
The same query is compiled to SQL over JSONB documents or evaluated in memory.
"""

import json
import operator
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from tanam_store.entities import Field, QueryOptions, SortOrder

if TYPE_CHECKING:
    from tanam_store.document_store import DocumentSnapshot

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

SQL_OPERATORS = {
    "==": "=",
    "!=": "<>",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
}

_MISSING = object()


def get_path(document: dict[str, Any], path: str) -> Any:
    """Resolve a dotted path inside a document, or _MISSING"""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def sort_key(value: Any) -> tuple[int, Any]:
    """Total order over JSON values, matching jsonb: null < string < number < boolean < array < object"""
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (3, value)
    if isinstance(value, int | float):
        return (2, value)
    if isinstance(value, str):
        return (1, value)
    if isinstance(value, list):
        return (4, json.dumps(value, sort_keys=True))
    return (5, json.dumps(value, sort_keys=True))


class DocumentQuery:
    """
    Immutable query over one collection: AND-ed field conditions, ordering and limit.

    Usage:
        query = DocumentQuery().where("url.root", "blog").order_by_desc("updatedAt").limit(10)

    Documents missing a filtered or ordered field never match.
    Results are ordered by document id after any explicit ordering.
    """

    def __init__(self):
        self.conditions: list[tuple[str, str, Any]] = []
        self.order_by_parts: list[tuple[str, SortOrder]] = []
        self.limit_count: int | None = None

    def _clone(self) -> "DocumentQuery":
        """Create a copy of the current query"""
        new_query = DocumentQuery()
        new_query.conditions = self.conditions.copy()
        new_query.order_by_parts = self.order_by_parts.copy()
        new_query.limit_count = self.limit_count
        return new_query

    def where(self, field: str | Field, *args: Any) -> "DocumentQuery":
        """Add a condition.

        Supports both of the following call styles:
        - where(field, value) -> operator defaults to '=='
        - where(field, operator, value) -> explicit operator in the second place
        """
        if len(args) == 2:
            op, value = args
        elif len(args) == 1:
            op, value = "==", args[0]
        else:
            raise TypeError("where() expects (field, value) or (field, operator, value)")
        if op not in OPERATORS:
            raise ValueError(f"Unsupported operator '{op}'")

        new_query = self._clone()
        new_query.conditions.append((str(field), op, value))
        return new_query

    def order_by(self, field: str | Field, sort_order: SortOrder | str = SortOrder.ASC) -> "DocumentQuery":
        """Add an ordering on the given field. Chain to add multiple fields."""
        if not isinstance(sort_order, SortOrder):
            sort_order = SortOrder(sort_order.lower())
        new_query = self._clone()
        new_query.order_by_parts.append((str(field), sort_order))
        return new_query

    def order_by_desc(self, field: str | Field) -> "DocumentQuery":
        return self.order_by(field, SortOrder.DESC)

    def limit(self, count: int) -> "DocumentQuery":
        """Cap the number of results"""
        if count < 1:
            raise ValueError("Limit must be 1 or greater")
        new_query = self._clone()
        new_query.limit_count = count
        return new_query

    def with_options(self, options: QueryOptions | None) -> "DocumentQuery":
        """Apply ordering and limit from list query options"""
        if options is None:
            return self
        query = self
        if options.order_by is not None:
            query = query.order_by(options.order_by.field, options.order_by.sort_order)
        if options.limit:
            query = query.limit(options.limit)
        return query

    # In-memory evaluation

    def matches(self, document: dict[str, Any]) -> bool:
        """Check whether a document payload satisfies every condition"""
        for path, op, expected in self.conditions:
            value = get_path(document, path)
            if value is _MISSING:
                return False
            if op in ("==", "!="):
                if not OPERATORS[op](value, expected):
                    return False
            elif not OPERATORS[op](sort_key(value), sort_key(expected)):
                return False
        for path, _ in self.order_by_parts:
            if get_path(document, path) is _MISSING:
                return False
        return True

    def apply(self, snapshots: Iterable["DocumentSnapshot"]) -> list["DocumentSnapshot"]:
        """Filter, order and limit existing snapshots"""
        results = sorted(
            (s for s in snapshots if s.exists and self.matches(s.data)),
            key=lambda s: s.id,
        )
        for path, sort_order in reversed(self.order_by_parts):
            results.sort(
                key=lambda s, path=path: sort_key(get_path(s.data, path)),
                reverse=sort_order == SortOrder.DESC,
            )
        if self.limit_count is not None:
            results = results[: self.limit_count]
        return results

    # SQL compilation

    def build(self, table_name: str, collection: str) -> tuple[str, list[Any]]:
        """Build a SELECT over a (collection, id, data jsonb) table"""
        params: list[Any] = [collection]
        where_parts = ["collection = $1"]

        def path_param(path: str) -> str:
            params.append(path.split("."))
            return f"(data #> ${len(params)}::text[])"

        for path, op, value in self.conditions:
            column = path_param(path)
            params.append(json.dumps(value))
            where_parts.append(f"{column} {SQL_OPERATORS[op]} ${len(params)}::jsonb")

        order_parts = []
        for path, sort_order in self.order_by_parts:
            column = path_param(path)
            where_parts.append(f"{column} IS NOT NULL")
            order_parts.append(f"{column} {sort_order.value.upper()}")
        order_parts.append("id")

        query = (
            f"SELECT id, data FROM {table_name} WHERE {' AND '.join(where_parts)} "
            f"ORDER BY {', '.join(order_parts)}"
        )
        if self.limit_count is not None:
            query += f" LIMIT {self.limit_count}"
        return query, params

    def __repr__(self) -> str:
        return (
            f"DocumentQuery(conditions={self.conditions!r}, "
            f"order_by={[(p, o.value) for p, o in self.order_by_parts]!r}, "
            f"limit={self.limit_count!r})"
        )
