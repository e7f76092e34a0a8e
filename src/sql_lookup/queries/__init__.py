"""Query definitions, compiler and executor."""

from sql_lookup.queries.compiler import compile_query, compile_registry, discover_query_ids
from sql_lookup.queries.executor import QueryExecutor
from sql_lookup.queries.models import ColumnSchema, QueryDefinition, QueryRegistry
from sql_lookup.queries.results import FailureStage, LookupResult, LookupStatus
from sql_lookup.queries.types import DataType

__all__ = [
    "ColumnSchema",
    "DataType",
    "FailureStage",
    "LookupResult",
    "LookupStatus",
    "QueryDefinition",
    "QueryExecutor",
    "QueryRegistry",
    "compile_query",
    "compile_registry",
    "discover_query_ids",
]
