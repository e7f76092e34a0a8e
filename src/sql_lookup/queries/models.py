"""
Immutable query definitions.

Everything here is built once by the compiler during initialization and then
read concurrently by request threads without locking: dataclasses are
frozen and every mapping is a read-only ``MappingProxyType``.

Architecture:
    ::

        QueryRegistry  (query_id -> QueryDefinition)
            │
            ▼
        QueryDefinition
          query_id, sql (one ``?``), key_type: DataType
          columns: name -> ColumnSchema   (iterated in name order)
            │
            ▼
        ColumnSchema
          name, data_type, output_field, substitutions

Tags:
    query-definition, registry, immutable, sql-lookup

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from sql_lookup.queries.types import DataType


def _frozen(mapping: Mapping[str, Any] | None, *, sort: bool = False) -> Mapping[str, Any]:
    items = dict(mapping or {})
    if sort:
        items = dict(sorted(items.items()))
    return MappingProxyType(items)


@dataclass(frozen=True)
class ColumnSchema:
    """How one result column is read and where it lands in the output record.

    Attributes:
        name: Column label in the result set
        data_type: How the raw value is extracted
        output_field: Key in the output record (defaults to ``name``)
        substitutions: Raw rendered value -> replacement, applied once
    """

    name: str
    data_type: DataType
    output_field: str = ""
    substitutions: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.output_field:
            object.__setattr__(self, "output_field", self.name)
        object.__setattr__(self, "substitutions", _frozen(self.substitutions))

    def substitute(self, value: str | None) -> str | None:
        """Single-pass substitution; NULL is never substituted."""
        if value is None:
            return None
        return self.substitutions.get(value, value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "data_type": self.data_type.value,
            "output_field": self.output_field,
            "substitutions": dict(self.substitutions),
        }


@dataclass(frozen=True)
class QueryDefinition:
    """A compiled, registered query.

    ``columns`` is always iterated in sorted-by-name order, regardless of the
    order the configuration listed them in.
    """

    query_id: str
    sql: str
    key_type: DataType
    columns: Mapping[str, ColumnSchema] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", _frozen(self.columns, sort=True))

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_id": self.query_id,
            "sql": self.sql,
            "key_type": self.key_type.value,
            "columns": [column.to_dict() for column in self.columns.values()],
        }


class QueryRegistry(Mapping[str, QueryDefinition]):
    """Read-only mapping of query id -> QueryDefinition."""

    __slots__ = ("_queries",)

    def __init__(self, queries: Mapping[str, QueryDefinition] | None = None):
        self._queries = _frozen(queries, sort=True)

    def __getitem__(self, query_id: str) -> QueryDefinition:
        return self._queries[query_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._queries)

    def __len__(self) -> int:
        return len(self._queries)

    def __repr__(self) -> str:
        return f"QueryRegistry({list(self._queries)})"


__all__ = ["ColumnSchema", "QueryDefinition", "QueryRegistry"]
