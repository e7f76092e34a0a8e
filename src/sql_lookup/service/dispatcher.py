"""
Lookup service: lifecycle, request routing and health.

``LookupService`` is what a host runtime talks to. It owns the connection
pool, the compiled query registry and the health monitor, and turns read
requests into ``LookupResult`` values.

Manifesto:
    - **Two-phase lifecycle:** ``initialize(config) -> Result`` then
      ``shutdown()``; both are serialized by a lifecycle lock and idempotent
    - **Validate before touching the database:** Query id, registration, key
      presence and key type are all checked first
    - **Results, not exceptions:** Every read returns a ``LookupResult``; only
      unsupported operations raise
    - **Health follows reality:** Connection failures degrade the
      ``database`` component, the next good round trip restores it

Architecture:
    ::

        initialize(config)
          WARNING "Service initialising"
          PoolSettings.from_config ─► decrypt password ─► ConnectionPool
          pool.validate(timeout) ─► compile_registry
          HEALTHY  (or FAILED + Err(error), pool disposed)

        handle(request)
          ReadRequest ─────────────► read()
          Create/Update/Delete ────► UnsupportedOperationError

        read(request)
          queryId? registered? key? parses? ──no──► FAILURE (VALIDATION)
                         │ yes
                         ▼
          QueryExecutor.execute(query, typed_key) ─► LookupResult

Examples:
    >>> service = LookupService()
    >>> service.initialize(load_config("lookup.properties")).unwrap()
    QueryRegistry(['user'])
    >>> service.lookup("user", "42").to_dict()
    {'status': 'SUCCESS', 'object_id': '42', 'details': {'state': 'Active'}}
    >>> service.shutdown()

Tags:
    dispatcher, lifecycle, health, lookup-service, sql-lookup

Doc-Types:
    - API Reference
    - Integration Guide
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from sql_lookup.config.tree import ConfigNode
from sql_lookup.core.database import ConnectionPool, PoolSettings
from sql_lookup.core.errors import DatabaseError, SqlLookupError, UnsupportedOperationError
from sql_lookup.core.health import HealthMonitor, HealthPublisher, HealthResult, HealthState
from sql_lookup.core.logging import LogContext, get_logger
from sql_lookup.core.result import Err, Ok, Result
from sql_lookup.core.secrets import PasswordDecryptor, SecretReferenceDecryptor, decrypt_password
from sql_lookup.queries.compiler import compile_registry
from sql_lookup.queries.executor import QueryExecutor
from sql_lookup.queries.models import QueryRegistry
from sql_lookup.queries.results import FailureStage, LookupResult, LookupStatus
from sql_lookup.service.requests import (
    QUERY_ID_PARAM,
    CreateRequest,
    DeleteRequest,
    LookupRequest,
    Operation,
    ReadRequest,
    UpdateRequest,
)

logger = get_logger(__name__)

DATABASE_COMPONENT = "database"
NOT_INITIALISED_MESSAGE = "Service is not initialised"
AD_HOC_MESSAGE = "Ad-hoc searches are not supported"


class LookupService:
    """Keyed single-record lookup service."""

    supported_operations: frozenset[Operation] = frozenset({Operation.READ})

    def __init__(
        self,
        service_id: str = "sql-lookup",
        *,
        decryptor: PasswordDecryptor | None = None,
        publisher: HealthPublisher | None = None,
        validation_timeout: float = 5.0,
    ):
        self.service_id = service_id
        self.decryptor: PasswordDecryptor = decryptor or SecretReferenceDecryptor()
        self.validation_timeout = validation_timeout
        self.health_monitor = HealthMonitor(service_id, publisher)

        self._lifecycle_lock = threading.Lock()
        self._degraded_lock = threading.Lock()
        self._database_degraded = False

        self._pool: ConnectionPool | None = None
        self._executor: QueryExecutor | None = None
        self._registry: QueryRegistry | None = None

    # ── Lifecycle ────────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self._registry is not None

    @property
    def registry(self) -> QueryRegistry | None:
        return self._registry

    @property
    def pool(self) -> ConnectionPool | None:
        return self._pool

    def initialize(self, config: ConfigNode | Mapping[str, Any]) -> Result[QueryRegistry]:
        """Build the pool, validate connectivity and compile every query.

        A second call after a successful one returns the existing registry.
        """
        with self._lifecycle_lock:
            if self._registry is not None:
                return Ok(self._registry)

            self.health_monitor.set_overall(HealthState.WARNING, "Service initialising")
            tree = config if isinstance(config, ConfigNode) else ConfigNode.from_mapping(config)
            pool: ConnectionPool | None = None
            registry: QueryRegistry | None = None
            try:
                settings = PoolSettings.from_config(tree)
                password = decrypt_password(self.decryptor, settings.password.get_secret_value())
                pool = ConnectionPool.create(settings, password, application_name=self.service_id)
                pool.validate(self.validation_timeout)
                registry = compile_registry(tree)
            except SqlLookupError as e:
                logger.error("service.initialize_failed", service_id=self.service_id, error=e.to_dict())
                if isinstance(e, DatabaseError):
                    self.health_monitor.set_component(DATABASE_COMPONENT, HealthState.FAILED, e.message)
                self.health_monitor.set_overall(HealthState.FAILED, e.message)
                return Err(e.with_context(service_id=self.service_id))
            finally:
                if registry is None and pool is not None:
                    pool.dispose()

            self._pool = pool
            self._executor = QueryExecutor(pool)
            self._registry = registry
            self._database_degraded = False

            self.health_monitor.set_metric("queries.registered", len(registry))
            self.health_monitor.update(
                overall=(HealthState.HEALTHY, "Service initialised"),
                components={DATABASE_COMPONENT: (HealthState.HEALTHY, "Connected")},
            )
            logger.info(
                "service.initialized",
                service_id=self.service_id,
                queries=list(registry),
            )
            return Ok(registry)

    def shutdown(self) -> None:
        """Publish the terminal state and release the pool. Safe to call twice."""
        with self._lifecycle_lock:
            if self._registry is None and self._pool is None:
                return
            self.health_monitor.set_overall(HealthState.FAILED, "Service shutting down")
            pool = self._pool
            self._pool = None
            self._executor = None
            self._registry = None
            if pool is not None:
                pool.dispose()
            logger.info("service.shutdown", service_id=self.service_id)

    # ── Routing ──────────────────────────────────────────────────

    def handle(self, request: LookupRequest) -> LookupResult:
        """Route ``request`` by type.

        Raises:
            UnsupportedOperationError: For create, update and delete requests
        """
        if request.operation not in self.supported_operations:
            logger.warning(
                "service.unsupported_operation",
                service_id=self.service_id,
                operation=request.operation.value,
                request_id=request.request_id,
            )
            raise UnsupportedOperationError(request.operation.value)
        return self.read(request)

    def create(self, request: CreateRequest) -> LookupResult:
        raise UnsupportedOperationError(Operation.CREATE.value)

    def update(self, request: UpdateRequest) -> LookupResult:
        raise UnsupportedOperationError(Operation.UPDATE.value)

    def delete(self, request: DeleteRequest) -> LookupResult:
        raise UnsupportedOperationError(Operation.DELETE.value)

    def lookup(self, query_id: str, key: str | None, request_id: str | None = None) -> LookupResult:
        """Shorthand for ``read(ReadRequest.for_query(...))``."""
        return self.read(ReadRequest.for_query(query_id, key, request_id))

    # ── Reads ────────────────────────────────────────────────────

    def read(self, request: LookupRequest) -> LookupResult:
        """Validate ``request`` and run its query.

        Validation failures come back as FAILURE with stage VALIDATION and
        never reach the database.
        """
        with LogContext(service_id=self.service_id, request_id=request.request_id):
            result = self._read(request)
            self.health_monitor.increment(f"lookups.{result.status.value}")
            return result.with_request_id(request.request_id)

    def _read(self, request: LookupRequest) -> LookupResult:
        registry, executor = self._registry, self._executor
        if registry is None or executor is None:
            return self._rejected(NOT_INITIALISED_MESSAGE)

        query_id = request.query_id
        if not query_id:
            return self._rejected(f"Missing required parameter {QUERY_ID_PARAM}")

        query = registry.get(query_id)
        if query is None:
            return self._rejected(f"Unknown query {query_id}")

        if request.key is None or not request.key.strip():
            return self._rejected(AD_HOC_MESSAGE, query_id=query_id)

        try:
            key = query.key_type.codec.parse_key(request.key)
        except ValueError:
            return self._rejected(
                f"Key {request.key!r} is not a valid {query.key_type.value} value for query {query_id}",
                query_id=query_id,
            )

        result = executor.execute(query, key)
        self._track_database(result)
        logger.info(
            "lookup.completed",
            query_id=query_id,
            object_id=result.object_id,
            status=result.status.value,
        )
        return result

    def _rejected(self, message: str, **context: Any) -> LookupResult:
        logger.warning("lookup.rejected", reason=message, **context)
        return LookupResult.failure(message, FailureStage.VALIDATION)

    def _track_database(self, result: LookupResult) -> None:
        connection_failed = (
            result.status is LookupStatus.FAILURE
            and result.failure_stage is FailureStage.CONNECTION
        )
        self._set_database_degraded(connection_failed, result.error_message or "")

    def _set_database_degraded(self, degraded: bool, message: str = "") -> None:
        # Flag and published health change under one lock.
        with self._degraded_lock:
            if degraded == self._database_degraded:
                return
            self._database_degraded = degraded
            if degraded:
                self.health_monitor.update(
                    overall=(HealthState.WARNING, "Database connection failing"),
                    components={DATABASE_COMPONENT: (HealthState.WARNING, message)},
                )
            else:
                self.health_monitor.update(
                    overall=(HealthState.HEALTHY, "Service initialised"),
                    components={DATABASE_COMPONENT: (HealthState.HEALTHY, "Connected")},
                )

    # ── Health ───────────────────────────────────────────────────

    def health(self) -> HealthResult:
        """Current health snapshot (a copy)."""
        return self.health_monitor.snapshot()

    def check_database(self) -> bool:
        """Ping the pool and fold the outcome into component health."""
        pool = self._pool
        if pool is None:
            return False
        healthy = pool.ping(self.validation_timeout)
        self._set_database_degraded(not healthy, "Database ping failed")
        return healthy


__all__ = ["LookupService", "DATABASE_COMPONENT"]
