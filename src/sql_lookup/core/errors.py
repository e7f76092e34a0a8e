"""
Structured error types for sql-lookup.

Every failure the lookup adapter can raise is a ``SqlLookupError`` carrying a
category, structured context and an optional chained cause. Callers can log
``error.to_dict()`` directly and route on ``error.category``.

Manifesto:
    - **Typed hierarchy:** One class per failure domain (config, database,
      request validation, unsupported operation)
    - **No retry semantics:** Nothing in this package retries; resilience is
      the connection pool's job
    - **Rich context:** Errors carry the query id, config key and stage that
      failed
    - **Error chaining:** The driver exception is preserved as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                      SqlLookupError                          │
        │           (category, context, cause, to_dict())              │
        ├──────────────────────────────────────────────────────────────┤
        │                                                              │
        │  ConfigurationError         DatabaseError                    │
        │  (CONFIG, fatal)            (DATABASE)                       │
        │       │                          │                           │
        │  MissingConfigError         DatabaseConnectionError          │
        │  InvalidConfigError         StatementError                   │
        │  ColumnConfigurationError   ResultError                      │
        │  (recovered locally)                                         │
        │                                                              │
        │  RequestValidationError     UnsupportedOperationError        │
        │  (VALIDATION)               (OPERATION)                      │
        │       │                                                      │
        │  KeyTypeError                                                │
        └──────────────────────────────────────────────────────────────┘

Cardinality outcomes (record not found, multiple records) are statuses on
``LookupResult``, not exceptions.

Examples:
    >>> error = MissingConfigError("query.user.sql")
    >>> error.category
    <ErrorCategory.CONFIG: 'CONFIG'>
    >>> error.with_context(query_id="user").to_dict()["context"]
    {'query_id': 'user'}

Tags:
    error-handling, exception-hierarchy, error-context, sql-lookup

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories used for logging and health routing."""

    CONFIG = "CONFIG"             # Missing or invalid configuration
    DATABASE = "DATABASE"         # Connection, statement or result set
    VALIDATION = "VALIDATION"     # Malformed lookup request
    OPERATION = "OPERATION"       # Unsupported request type
    TIMEOUT = "TIMEOUT"           # Bounded call exceeded its deadline
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Typed fields cover what the adapter knows at each failure site. Anything
    else goes into ``metadata``; ``to_dict()`` only emits fields that are set.

    Attributes:
        service_id: Identifier of the lookup service instance
        query_id: Registered query the failure relates to
        column: Column name for column-level failures
        config_key: Configuration key that was missing or invalid
        stage: Resource scope that failed (connection, statement, result)
        request_id: Caller supplied request identifier
        metadata: Additional key-value pairs
    """

    service_id: str | None = None
    query_id: str | None = None
    column: str | None = None
    config_key: str | None = None
    stage: str | None = None
    request_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["service_id", "query_id", "column", "config_key", "stage", "request_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SqlLookupError(Exception):
    """
    Base exception for all sql-lookup errors.

    Subclasses set ``default_category``; the instance category can still be
    overridden per raise site.

    Examples:
        >>> error = SqlLookupError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> try:
        ...     raise OSError("socket closed")
        ... except OSError as e:
        ...     error = DatabaseConnectionError("Pool checkout failed", cause=e)
        >>> error.cause
        OSError('socket closed')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SqlLookupError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StatementError("Execute failed").with_context(query_id="user")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(SqlLookupError):
    """
    Configuration error.

    Fatal: aborts compilation of the affected query and the whole
    initialization sequence.
    """

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(
            message or f"Missing required configuration: {key}",
            context=ErrorContext(config_key=key),
        )


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(
            message or f"Invalid configuration for {key}: {value!r}",
            context=ErrorContext(config_key=key),
        )


class ColumnConfigurationError(ConfigurationError):
    """
    Column-level configuration error.

    Unlike its parent this one is recovered locally: the compiler logs it,
    drops the offending column and carries on with the query.
    """

    def __init__(self, query_id: str, column: str, message: str):
        self.query_id = query_id
        self.column = column
        super().__init__(message, context=ErrorContext(query_id=query_id, column=column))


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseError(SqlLookupError):
    """Database error, surfaced to callers as a FAILURE result."""

    default_category = ErrorCategory.DATABASE


class DatabaseConnectionError(DatabaseError):
    """Could not build the pool or check a connection out of it."""

    pass


class StatementError(DatabaseError):
    """Preparing, binding or executing the statement failed."""

    pass


class ResultError(DatabaseError):
    """Reading the result set failed (missing column, conversion failure)."""

    pass


# =============================================================================
# REQUEST ERRORS
# =============================================================================


class RequestValidationError(SqlLookupError):
    """
    Lookup request failed validation before reaching the database.

    Raised for a missing query id, an unknown query id, a missing key or a
    key that does not parse as the query's key type.
    """

    default_category = ErrorCategory.VALIDATION


class KeyTypeError(RequestValidationError, TypeError):
    """Executor precondition: the typed key does not match the query's key type."""

    def __init__(self, query_id: str, expected: str, value: Any):
        self.expected = expected
        self.value = value
        super().__init__(
            f"Key {value!r} does not match key type {expected} of query {query_id}",
            context=ErrorContext(query_id=query_id),
        )


class UnsupportedOperationError(SqlLookupError, NotImplementedError):
    """Create, update and delete requests are never supported."""

    default_category = ErrorCategory.OPERATION

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation.capitalize()} requests are not supported by this service")


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SqlLookupError",
    # Config
    "ConfigurationError",
    "MissingConfigError",
    "InvalidConfigError",
    "ColumnConfigurationError",
    # Database
    "DatabaseError",
    "DatabaseConnectionError",
    "StatementError",
    "ResultError",
    # Request
    "RequestValidationError",
    "KeyTypeError",
    "UnsupportedOperationError",
]
