"""
Keyed single-record query execution.

Manifesto:
    - **One key, at most one record:** The fetch is bounded to two rows; two
      means "more than one" and nothing past the second row is ever read
    - **Read-only:** The connection is never committed; closing it rolls the
      implicit transaction back
    - **Scoped resources:** Connection and result are released on every
      path, success or failure
    - **Stage-aware failures:** Connection, statement and result failures are
      reported with distinct messages and a ``FailureStage``
    - **No retries:** Pool-level liveness checks are the only resilience

Architecture:
    ::

        execute(query, key)
          │  precondition: key matches query.key_type   (KeyTypeError)
          ▼
        ┌──────────── connection scope ───────────────┐  CONNECTION
        │ with pool.connect() as conn:                │
        │   ┌──────── statement scope ──────────────┐ │  STATEMENT
        │   │ result = conn.execute(stmt)           │ │
        │   │   ┌──── result scope ───────────────┐ │ │  RESULT
        │   │   │ rows = result.fetchmany(2)      │ │ │
        │   │   │ 0 -> RECORD_NOT_FOUND           │ │ │
        │   │   │ 2 -> MULTIPLE_RECORDS           │ │ │
        │   │   │ 1 -> extract, substitute        │ │ │
        │   │   └─────────────────────────────────┘ │ │
        │   └───────────────────────────────────────┘ │
        └─────────────────────────────────────────────┘

Examples:
    >>> executor = QueryExecutor(pool)
    >>> result = executor.execute(registry["user"], 42)
    >>> result.status, result.object_id, dict(result.details)
    (<LookupStatus.SUCCESS: 'SUCCESS'>, '42', {'state': 'Active'})

Tags:
    executor, sqlalchemy, bounded-fetch, cardinality, sql-lookup

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import TextClause
from sqlalchemy.engine import Connection, CursorResult, Row
from sqlalchemy.exc import SQLAlchemyError

from sql_lookup.core.database import ConnectionPool
from sql_lookup.core.errors import ResultError, StatementError
from sql_lookup.core.logging import get_logger
from sql_lookup.queries.compiler import build_statement
from sql_lookup.queries.models import ColumnSchema, QueryDefinition
from sql_lookup.queries.results import FailureStage, LookupResult

logger = get_logger(__name__)

# Rows fetched per lookup: enough to tell "one" from "more than one".
FETCH_BOUND = 2


def _row_value(row: Mapping[str, Any], column: ColumnSchema) -> Any:
    """Value of ``column`` in ``row``; exact label first, then case-insensitive."""
    if column.name in row:
        return row[column.name]
    wanted = column.name.lower()
    for label, value in row.items():
        if str(label).lower() == wanted:
            return value
    raise ResultError(f"Column {column.name} is not in the result set")


def map_row(query: QueryDefinition, row: Row[Any]) -> dict[str, str | None]:
    """Build the output record for a single row.

    Raises:
        ResultError: If a column is missing or a value cannot be converted
    """
    mapping = row._mapping
    details: dict[str, str | None] = {}
    for column in query.columns.values():
        raw = _row_value(mapping, column)
        details[column.output_field] = column.substitute(column.data_type.codec.extract(raw))
    return details


def _execute_statement(conn: Connection, statement: TextClause) -> CursorResult[Any]:
    """Execute with a bounded server-side buffer.

    Raises:
        StatementError: If preparing, binding or executing fails
    """
    try:
        return conn.execution_options(stream_results=True, max_row_buffer=FETCH_BOUND).execute(statement)
    except SQLAlchemyError as e:
        raise StatementError(str(e), cause=e) from e


class QueryExecutor:
    """Executes one ``QueryDefinition`` for one key against the pool."""

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    def execute(self, query: QueryDefinition, key: Any) -> LookupResult:
        """Run ``query`` bound to ``key``.

        Raises:
            KeyTypeError: If ``key`` does not match ``query.key_type`` (checked
                before any database access)
        """
        statement = build_statement(query, key)
        object_id = query.key_type.codec.render_key(key)
        log = logger.bind(query_id=query.query_id, object_id=object_id)

        try:
            with self.pool.connect() as conn:
                try:
                    result = _execute_statement(conn, statement)
                except StatementError as e:
                    e.with_context(query_id=query.query_id, stage=FailureStage.STATEMENT.value)
                    log.error("lookup.statement_failed", error=e.to_dict())
                    return LookupResult.failure(
                        f"Database error executing statement -- {e.message}",
                        FailureStage.STATEMENT,
                        object_id,
                    )

                try:
                    rows = result.fetchmany(FETCH_BOUND)
                    if not rows:
                        log.info("lookup.record_not_found")
                        return LookupResult.not_found(object_id)
                    if len(rows) > 1:
                        log.warning("lookup.multiple_records")
                        return LookupResult.multiple(object_id)
                    details = map_row(query, rows[0])
                except ResultError as e:
                    log.error("lookup.result_failed", error=e.message)
                    return LookupResult.failure(
                        f"Database error reading result -- {e.message}",
                        FailureStage.RESULT,
                        object_id,
                    )
                except (SQLAlchemyError, ValueError) as e:
                    # ValueError: driver-side type processing of a fetched value
                    log.error("lookup.result_failed", error=str(e))
                    return LookupResult.failure(
                        f"Database error reading result -- {e}",
                        FailureStage.RESULT,
                        object_id,
                    )
                finally:
                    result.close()
        except SQLAlchemyError as e:
            log.error("lookup.connection_failed", error=str(e))
            return LookupResult.failure(
                f"Database error acquiring connection -- {e}",
                FailureStage.CONNECTION,
                object_id,
            )

        log.info("lookup.record_found", fields=len(details))
        return LookupResult.success(object_id, details)


__all__ = ["FETCH_BOUND", "QueryExecutor", "map_row"]
