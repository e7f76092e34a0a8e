"""
Configuration-to-query compiler.

Turns the ``query.*`` section of the configuration tree into immutable
``QueryDefinition`` objects. Compilation is pure: the same tree always
produces the same definitions and nothing outside the returned objects is
touched.

Manifesto:
    - **Walk, don't scan:** The compiler descends ``query -> <id> -> column
      -> <name>`` in the ``ConfigNode`` tree instead of matching key patterns
    - **Fatal vs local:** Query-level problems raise ``ConfigurationError``
      and abort initialization; column-level problems drop the column with a
      warning and compilation continues
    - **Fail at startup:** The SQL's single positional parameter is checked
      here, not at the first lookup

Architecture:
    ::

        query.<id>.sql                         (required)
        query.<id>.search-data-type            (required: TEXT|NUMBER|TIMESTAMP)
        query.<id>.column.<name>.enabled       ("true" to include)
        query.<id>.column.<name>.data-type     (default "string": dropped)
        query.<id>.column.<name>.json-field    (default: <name>)
        query.<id>.column.<name>.enum.<raw>    (substitution text)
                    │
                    ▼ compile_query()
        QueryDefinition(query_id, sql, key_type, columns)

Examples:
    >>> tree = ConfigNode.from_mapping({
    ...     "query.user.sql": "SELECT id, status FROM users WHERE id = ?",
    ...     "query.user.search-data-type": "number",
    ...     "query.user.column.status.enabled": "true",
    ...     "query.user.column.status.data-type": "text",
    ...     "query.user.column.status.json-field": "state",
    ...     "query.user.column.status.enum.A": "Active",
    ... })
    >>> query = compile_query(tree, "user")
    >>> query.key_type, query.columns["status"].output_field
    (<DataType.NUMBER: 'NUMBER'>, 'state')

Tags:
    compiler, configuration, query-definition, sql-lookup

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from sqlalchemy import TextClause, text

from sql_lookup.config.tree import ConfigNode
from sql_lookup.core.errors import (
    ColumnConfigurationError,
    InvalidConfigError,
    KeyTypeError,
    MissingConfigError,
)
from sql_lookup.core.logging import get_logger
from sql_lookup.queries.models import ColumnSchema, QueryDefinition, QueryRegistry
from sql_lookup.queries.types import KEY_PARAM, DataType

logger = get_logger(__name__)

QUERY_ROOT = "query"

# Value a column's data-type falls back to when unset. It is deliberately not
# a DataType member, so such columns are dropped.
DEFAULT_COLUMN_DATA_TYPE = "string"

# SQLAlchemy's own pattern for ``:name`` bind parameters in text()
_NAMED_BIND_RE = re.compile(r"(?<![:\w\x5c]):(\w+)(?!:)")


def _as_tree(config: ConfigNode | Mapping[str, Any]) -> ConfigNode:
    if isinstance(config, ConfigNode):
        return config
    return ConfigNode.from_mapping(config)


# =============================================================================
# SQL TEMPLATE HANDLING
# =============================================================================


def placeholder_positions(sql: str) -> list[int]:
    """Offsets of ``?`` characters outside quoted literals and identifiers."""
    positions: list[int] = []
    quote: str | None = None
    for index, char in enumerate(sql):
        if quote is not None:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == "?":
            positions.append(index)
    return positions


def to_named_sql(sql: str) -> str:
    """Rewrite the single ``?`` to ``:key`` and escape stray ``:name`` tokens.

    The result is ready for ``sqlalchemy.text``; any colon-word already in the
    template is escaped so SQLAlchemy does not treat it as a bind parameter.
    """
    escaped = _NAMED_BIND_RE.sub(r"\\:\1", sql)
    positions = placeholder_positions(escaped)
    if len(positions) != 1:
        raise ValueError(f"Expected exactly one positional parameter, found {len(positions)}")
    index = positions[0]
    return f"{escaped[:index]}:{KEY_PARAM}{escaped[index + 1:]}"


def build_statement(query: QueryDefinition, key: Any) -> TextClause:
    """Build the executable statement with ``key`` bound by the query's key codec.

    Raises:
        KeyTypeError: If ``key`` does not match ``query.key_type``
    """
    codec = query.key_type.codec
    if not codec.check(key):
        raise KeyTypeError(query.query_id, query.key_type.value, key)
    return text(to_named_sql(query.sql)).bindparams(codec.bind(key))


# =============================================================================
# COMPILATION
# =============================================================================


def compile_column(query_id: str, name: str, node: ConfigNode) -> ColumnSchema:
    """Build one column from its ``column.<name>`` node.

    Raises:
        ColumnConfigurationError: If the data-type does not resolve
    """
    raw_type = node.value_of("data-type", DEFAULT_COLUMN_DATA_TYPE)
    data_type = DataType.resolve(raw_type)
    if data_type is None:
        raise ColumnConfigurationError(
            query_id, name, f"Column {name} of query {query_id} has invalid data-type {raw_type!r}"
        )

    substitutions: dict[str, str] = {}
    enum_node = node.child("enum")
    if enum_node is not None:
        for raw_value, entry in enum_node.children.items():
            if entry.value is not None:
                substitutions[raw_value] = entry.value

    return ColumnSchema(
        name=name,
        data_type=data_type,
        output_field=node.value_of("json-field") or name,
        substitutions=substitutions,
    )


def compile_query(config: ConfigNode | Mapping[str, Any], query_id: str) -> QueryDefinition:
    """Compile ``query.<query_id>`` into a ``QueryDefinition``.

    Raises:
        MissingConfigError: If ``sql`` or ``search-data-type`` is absent
        InvalidConfigError: If the key type is unknown or the SQL does not have
            exactly one positional parameter
    """
    tree = _as_tree(config)
    prefix = f"{QUERY_ROOT}.{query_id}"
    node = tree.child(prefix) or ConfigNode(query_id)

    sql = node.value_of("sql")
    if sql is None or not sql.strip():
        raise MissingConfigError(f"{prefix}.sql")

    raw_key_type = node.value_of("search-data-type")
    if raw_key_type is None:
        raise MissingConfigError(f"{prefix}.search-data-type")
    key_type = DataType.resolve(raw_key_type)
    if key_type is None:
        raise InvalidConfigError(f"{prefix}.search-data-type", raw_key_type)

    placeholders = len(placeholder_positions(_NAMED_BIND_RE.sub(r"\\:\1", sql)))
    if placeholders != 1:
        raise InvalidConfigError(
            f"{prefix}.sql",
            sql,
            f"Query {query_id} must have exactly one positional parameter, found {placeholders}",
        )

    columns: dict[str, ColumnSchema] = {}
    column_root = node.child("column")
    if column_root is not None:
        for name in sorted(column_root.children):
            column_node = column_root.children[name]
            enabled = column_node.value_of("enabled", "")
            if enabled.strip().lower() != "true":
                logger.warning("query.column_disabled", query_id=query_id, column=name)
                continue
            try:
                columns[name] = compile_column(query_id, name, column_node)
            except ColumnConfigurationError as e:
                logger.warning(
                    "query.column_dropped",
                    query_id=query_id,
                    column=name,
                    error=e.message,
                )

    query = QueryDefinition(query_id=query_id, sql=sql, key_type=key_type, columns=columns)
    logger.debug(
        "query.compiled",
        query_id=query_id,
        key_type=key_type.value,
        columns=list(query.columns),
    )
    return query


def discover_query_ids(config: ConfigNode | Mapping[str, Any]) -> list[str]:
    """Sorted ids ``X`` for which ``query.X.sql`` has a value."""
    root = _as_tree(config).child(QUERY_ROOT)
    if root is None:
        return []
    return sorted(
        query_id for query_id, node in root.children.items() if node.value_of("sql") is not None
    )


def compile_registry(config: ConfigNode | Mapping[str, Any]) -> QueryRegistry:
    """Compile every discovered query.

    Raises:
        ConfigurationError: On the first query that fails to compile
    """
    tree = _as_tree(config)
    queries: dict[str, QueryDefinition] = {}
    for query_id in discover_query_ids(tree):
        try:
            queries[query_id] = compile_query(tree, query_id)
        except (MissingConfigError, InvalidConfigError) as e:
            e.with_context(query_id=query_id)
            raise
    logger.info("query.registry_compiled", queries=list(queries))
    return QueryRegistry(queries)


__all__ = [
    "DEFAULT_COLUMN_DATA_TYPE",
    "build_statement",
    "compile_column",
    "compile_query",
    "compile_registry",
    "discover_query_ids",
    "placeholder_positions",
    "to_named_sql",
]
