"""SQLAlchemy engine and connection pool for the lookup service.

Manifesto:
    The pool is the only shared mutable resource in the adapter. Each lookup
    checks out its own connection and returns it on every path, so the pool
    settings are the whole concurrency story: size, overflow, checkout
    timeout, recycling and liveness checks all come from ``cloud.database.*``.

This module provides:

* ``PoolSettings``        -- Validated pool configuration read from the tree.
* ``create_lookup_engine`` -- Engine factory with a SQLite special case.
* ``ConnectionPool``      -- Thin wrapper exposing connect/validate/ping/status.

Configuration keys::

    cloud.database.url                      SQLAlchemy URL (required)
    cloud.database.username                 (required)
    cloud.database.password                 ciphertext, decrypted by the caller (required)
    cloud.database.pool.min-size            3       -> pool_size
    cloud.database.pool.max-size            10      -> max_overflow = max - min
    cloud.database.pool.connection-timeout  30000ms -> pool_timeout
    cloud.database.pool.idle-timeout        300000ms-> pool_recycle
    cloud.database.pool.keepalive-time      60000ms -> pool_pre_ping when > 0
    cloud.database.pool.test-query          SELECT 1
    cloud.database.properties.*             -> connect_args

Tags:
    sqlalchemy, connection-pool, engine, database, sql-lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, SecretStr, ValidationError, model_validator
from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import text
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from sql_lookup.config.tree import ConfigNode
from sql_lookup.core.errors import (
    DatabaseConnectionError,
    ErrorCategory,
    ErrorContext,
    InvalidConfigError,
    MissingConfigError,
)
from sql_lookup.core.logging import get_logger
from sql_lookup.core.secrets import SecretValue
from sql_lookup.core.timeout import TimeoutExpired, run_with_timeout

logger = get_logger(__name__)

DATABASE_PREFIX = "cloud.database"


def _int_setting(node: ConfigNode, key: str, default: int) -> int:
    raw = node.value_of(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise InvalidConfigError(f"{DATABASE_PREFIX}.{key}", raw) from None


class PoolSettings(BaseModel):
    """Validated ``cloud.database.*`` settings.

    Durations are kept in milliseconds as configured; the ``engine_kwargs``
    property converts them for SQLAlchemy.
    """

    url: str
    username: str
    password: SecretStr
    min_size: int = Field(default=3, ge=0)
    max_size: int = Field(default=10, ge=1)
    connection_timeout_ms: int = Field(default=30_000, ge=0)
    idle_timeout_ms: int = Field(default=300_000, ge=0)
    keepalive_time_ms: int = Field(default=60_000, ge=0)
    test_query: str = "SELECT 1"
    properties: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_sizes(self) -> PoolSettings:
        if self.max_size < self.min_size:
            raise ValueError(f"max-size {self.max_size} is smaller than min-size {self.min_size}")
        return self

    @classmethod
    def from_config(cls, config: ConfigNode) -> PoolSettings:
        """Read ``cloud.database.*`` from the tree.

        Raises:
            MissingConfigError: If url, username or password is absent
            InvalidConfigError: If a numeric value does not parse or is out of range
        """
        node = config.child(DATABASE_PREFIX) or ConfigNode()
        required: dict[str, str] = {}
        for key in ("url", "username", "password"):
            value = node.value_of(key)
            if value is None or not value.strip():
                raise MissingConfigError(f"{DATABASE_PREFIX}.{key}")
            required[key] = value.strip()

        properties_node = node.child("properties")
        properties = properties_node.flatten() if properties_node is not None else {}

        values: dict[str, Any] = {
            **required,
            "min_size": _int_setting(node, "pool.min-size", 3),
            "max_size": _int_setting(node, "pool.max-size", 10),
            "connection_timeout_ms": _int_setting(node, "pool.connection-timeout", 30_000),
            "idle_timeout_ms": _int_setting(node, "pool.idle-timeout", 300_000),
            "keepalive_time_ms": _int_setting(node, "pool.keepalive-time", 60_000),
            "test_query": node.value_of("pool.test-query") or "SELECT 1",
            "properties": properties,
        }
        try:
            return cls(**values)
        except ValidationError as e:
            # pydantic messages echo the input, which includes the password
            reasons = "; ".join(error["msg"] for error in e.errors())
            raise InvalidConfigError(
                f"{DATABASE_PREFIX}.pool", None, f"Invalid database pool configuration: {reasons}"
            ) from None

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def safe_url(self) -> str:
        """URL for logs: never carries the password."""
        try:
            return make_url(self.url).render_as_string(hide_password=True)
        except ArgumentError:
            return "<invalid url>"

    def engine_kwargs(self) -> dict[str, Any]:
        """Pool keyword arguments for ``create_engine`` (empty for SQLite)."""
        if self.is_sqlite:
            return {}
        kwargs: dict[str, Any] = {
            "pool_size": self.min_size,
            "max_overflow": self.max_size - self.min_size,
            "pool_timeout": self.connection_timeout_ms / 1000,
            "pool_pre_ping": self.keepalive_time_ms > 0,
        }
        if self.idle_timeout_ms > 0:
            kwargs["pool_recycle"] = self.idle_timeout_ms // 1000
        return kwargs


# Driver keyword that carries the client application name, per (backend, driver).
APPLICATION_NAME_ARGS: dict[tuple[str, str], str] = {
    ("postgresql", "psycopg2"): "application_name",
    ("postgresql", "psycopg"): "application_name",
    ("postgresql", "pg8000"): "application_name",
    ("mysql", "pymysql"): "program_name",
}


def driver_connect_args(
    settings: PoolSettings, url: URL, application_name: str | None = None
) -> dict[str, Any]:
    """``connect_args`` for the driver: configured properties plus defaults.

    ``application_name`` is passed only to drivers that accept one; an
    explicit property of the same name wins.
    """
    connect_args: dict[str, Any] = dict(settings.properties)
    if settings.is_sqlite:
        connect_args.setdefault("check_same_thread", False)
    arg = APPLICATION_NAME_ARGS.get((url.get_backend_name(), url.get_driver_name()))
    if application_name and arg:
        connect_args.setdefault(arg, application_name)
    return connect_args


def create_lookup_engine(
    settings: PoolSettings,
    password: SecretValue | None = None,
    application_name: str | None = None,
) -> Engine:
    """Create the engine described by ``settings``.

    ``password`` is the decrypted password; it is set on the URL together with
    the username for every backend except SQLite. ``application_name`` is
    reported to the server where the driver supports it.

    Raises:
        DatabaseConnectionError: If the URL is malformed or the driver is missing
    """
    try:
        url: URL = make_url(settings.url)
    except ArgumentError as e:
        raise DatabaseConnectionError(
            f"Invalid database URL: {e}",
            context=ErrorContext(config_key=f"{DATABASE_PREFIX}.url"),
            cause=e,
        ) from e

    if not settings.is_sqlite:
        url = url.set(
            username=settings.username,
            password=password.get_secret() if password is not None else None,
        )

    try:
        connect_args = driver_connect_args(settings, url, application_name)
        engine = _sa_create_engine(url, connect_args=connect_args, **settings.engine_kwargs())
    except (SQLAlchemyError, ImportError) as e:
        raise DatabaseConnectionError(
            f"Could not create database engine: {e}",
            context=ErrorContext(config_key=f"{DATABASE_PREFIX}.url"),
            cause=e,
        ) from e

    logger.info(
        "database.engine_created",
        url=settings.safe_url(),
        **settings.engine_kwargs(),
    )
    return engine


class ConnectionPool:
    """The adapter's view of the SQLAlchemy pool.

    ``connect()`` checks a connection out; closing it (a ``with`` block)
    returns it and rolls back anything left open.
    """

    def __init__(self, settings: PoolSettings, engine: Engine):
        self.settings = settings
        self.engine = engine

    @classmethod
    def create(
        cls,
        settings: PoolSettings,
        password: SecretValue | None = None,
        application_name: str | None = None,
    ) -> ConnectionPool:
        return cls(settings, create_lookup_engine(settings, password, application_name))

    def connect(self) -> Connection:
        """Check out a pooled connection. Raises ``SQLAlchemyError`` on failure."""
        return self.engine.connect()

    def _run_test_query(self) -> None:
        with self.connect() as conn:
            conn.execute(text(self.settings.test_query)).close()

    def validate(self, timeout: float = 5.0) -> None:
        """Run the test query within ``timeout`` seconds.

        Raises:
            DatabaseConnectionError: If the query fails or times out
        """
        try:
            run_with_timeout(self._run_test_query, timeout, operation="database.validate")
        except TimeoutExpired as e:
            raise DatabaseConnectionError(
                f"Database validation timed out after {timeout}s",
                category=ErrorCategory.TIMEOUT,
                context=ErrorContext(stage="connection"),
                cause=e,
            ) from e
        except SQLAlchemyError as e:
            raise DatabaseConnectionError(
                f"Database validation failed: {e}",
                context=ErrorContext(stage="connection"),
                cause=e,
            ) from e
        logger.debug("database.validated", url=self.settings.safe_url())

    def ping(self, timeout: float = 5.0) -> bool:
        """True if the test query succeeds within ``timeout``."""
        try:
            self.validate(timeout)
        except DatabaseConnectionError as e:
            logger.warning("database.ping_failed", error=e.message)
            return False
        return True

    def status(self) -> dict[str, Any]:
        pool = self.engine.pool
        info: dict[str, Any] = {
            "url": self.settings.safe_url(),
            "pool_class": type(pool).__name__,
            "status": pool.status(),
        }
        for name in ("size", "checkedin", "checkedout", "overflow"):
            method = getattr(pool, name, None)
            if callable(method):
                info[name] = method()
        return info

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("database.pool_disposed", url=self.settings.safe_url())


__all__ = [
    "ConnectionPool",
    "PoolSettings",
    "create_lookup_engine",
    "driver_connect_args",
]
