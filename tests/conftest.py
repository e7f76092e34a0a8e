"""
Shared pytest fixtures for sql-lookup tests.

This module provides:
- A file-backed SQLite database with ``users`` and ``events`` tables
- The reference lookup configuration (flat dotted keys)
- A recording health publisher
- An initialised ``LookupService`` and a database checkout counter

Usage:
    def test_something(service, checkouts):
        result = service.lookup("user", "42")
        assert checkouts.count == 1
"""

import sys
from collections.abc import Generator
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
import structlog
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    event,
)

# Ensure sql_lookup package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sql_lookup.core.health import HealthResult
from sql_lookup.core.secrets import DictSecretBackend, SecretReferenceDecryptor, SecretsResolver
from sql_lookup.core.settings import clear_settings_cache
from sql_lookup.service.dispatcher import LookupService


# =============================================================================
# Database
# =============================================================================


metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", BigInteger),
    Column("status", String(8)),
    Column("name", String(64)),
    Column("created", DateTime),
    Column("balance", Numeric(12, 2)),
)

events = Table(
    "events",
    metadata,
    Column("happened", DateTime),
    Column("label", String(64)),
)

USER_ROWS = [
    {"id": 42, "status": "A", "name": "alice", "created": datetime(2024, 1, 2, 3, 4, 5), "balance": Decimal("10.75")},
    {"id": 7, "status": "S", "name": "bob", "created": datetime(2023, 6, 1, 12, 0, 0), "balance": Decimal("0")},
    {"id": 8, "status": None, "name": "carol", "created": None, "balance": None},
    # Three rows share status "D" and id 99
    {"id": 99, "status": "D", "name": "dup-1", "created": None, "balance": None},
    {"id": 99, "status": "D", "name": "dup-2", "created": None, "balance": None},
    {"id": 99, "status": "D", "name": "dup-3", "created": None, "balance": None},
]

EVENT_ROWS = [
    {"happened": datetime(2024, 5, 6, 7, 8, 9), "label": "launch"},
]


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """File-backed SQLite database populated with the reference rows."""
    url = f"sqlite:///{tmp_path / 'lookup.db'}"
    engine = create_engine(url)
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(users.insert(), USER_ROWS)
        conn.execute(events.insert(), EVENT_ROWS)
    engine.dispose()
    return url


# =============================================================================
# Configuration
# =============================================================================


def make_config(database_url: str, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    """Reference configuration: four queries over ``users`` and ``events``."""
    config: dict[str, Any] = {
        "cloud.database.url": database_url,
        "cloud.database.username": "lookup",
        "cloud.database.password": "secret:dict:db",
        # The documented example
        "query.user.sql": "SELECT id, status FROM users WHERE id = ?",
        "query.user.search-data-type": "number",
        "query.user.column.status.enabled": "true",
        "query.user.column.status.data-type": "text",
        "query.user.column.status.json-field": "state",
        "query.user.column.status.enum.A": "Active",
        # Text key, one column of each type
        "query.by-name.sql": "SELECT name, created, balance FROM users WHERE name = ?",
        "query.by-name.search-data-type": "TEXT",
        "query.by-name.column.name.enabled": "true",
        "query.by-name.column.name.data-type": "text",
        "query.by-name.column.created.enabled": "true",
        "query.by-name.column.created.data-type": "timestamp",
        "query.by-name.column.balance.enabled": "TRUE",
        "query.by-name.column.balance.data-type": "Number",
        "query.by-name.column.balance.json-field": "amount",
        # Timestamp key
        "query.event.sql": "SELECT label FROM events WHERE happened = ?",
        "query.event.search-data-type": "timestamp",
        "query.event.column.label.enabled": "true",
        "query.event.column.label.data-type": "text",
        # Non-unique key
        "query.by-status.sql": "SELECT name FROM users WHERE status = ?",
        "query.by-status.search-data-type": "text",
        "query.by-status.column.name.enabled": "true",
        "query.by-status.column.name.data-type": "text",
    }
    config.update(overrides or {})
    return config


@pytest.fixture
def config(database_url: str) -> dict[str, Any]:
    return make_config(database_url)


@pytest.fixture
def config_factory(database_url: str):
    """Reference configuration with overrides: ``config_factory({"key": "value"})``."""

    def factory(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        return make_config(database_url, overrides)

    return factory


@pytest.fixture
def decryptor() -> SecretReferenceDecryptor:
    return SecretReferenceDecryptor(SecretsResolver([DictSecretBackend({"db": "s3cret"})]))


# =============================================================================
# Health publishing
# =============================================================================


class RecordingPublisher:
    """Health publisher that keeps every snapshot it receives."""

    def __init__(self) -> None:
        self.published: list[tuple[str, HealthResult]] = []

    def publish(self, service_id: str, result: HealthResult) -> None:
        self.published.append((service_id, result))

    @property
    def last(self) -> HealthResult:
        return self.published[-1][1]

    def overall_states(self) -> list[str]:
        return [result.overall.state.value for _, result in self.published]


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


# =============================================================================
# Service
# =============================================================================


@pytest.fixture
def service(
    config: dict[str, Any],
    decryptor: SecretReferenceDecryptor,
    publisher: RecordingPublisher,
) -> Generator[LookupService, None, None]:
    """Initialised service over the reference configuration."""
    svc = LookupService("test-lookup", decryptor=decryptor, publisher=publisher)
    svc.initialize(config).unwrap()
    yield svc
    svc.shutdown()


class CheckoutCounter:
    """Mutable counter bumped by a pool ``checkout`` listener."""

    def __init__(self) -> None:
        self.count = 0


@pytest.fixture
def checkouts(service: LookupService) -> CheckoutCounter:
    """Counts pool checkouts made after initialisation."""
    counter = CheckoutCounter()

    def on_checkout(dbapi_connection: Any, connection_record: Any, connection_proxy: Any) -> None:
        counter.count += 1

    event.listen(service.pool.engine, "checkout", on_checkout)
    return counter


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Isolate tests from cached settings and SQL_LOOKUP_* variables."""
    import os

    for name in list(os.environ):
        if name.startswith("SQL_LOOKUP_"):
            monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()
    # CLI runs point the log sink at a stream that is closed afterwards
    structlog.reset_defaults()
