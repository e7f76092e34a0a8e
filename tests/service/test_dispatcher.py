"""Tests for LookupService: lifecycle, reads, routing and health."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.exc import OperationalError

from sql_lookup.core.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    MissingConfigError,
    UnsupportedOperationError,
)
from sql_lookup.core.health import HealthState
from sql_lookup.core.result import Err, Ok
from sql_lookup.queries.results import FailureStage, LookupStatus
from sql_lookup.service.dispatcher import AD_HOC_MESSAGE, DATABASE_COMPONENT, LookupService
from sql_lookup.service.requests import CreateRequest, DeleteRequest, ReadRequest, UpdateRequest


class TestInitialize:
    """Tests for the initialization sequence."""

    def test_success(self, config, decryptor, publisher):
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        result = service.initialize(config)
        try:
            assert isinstance(result, Ok)
            assert sorted(result.unwrap()) == ["by-name", "by-status", "event", "user"]
            assert service.initialized

            states = publisher.overall_states()
            assert states[0] == "WARNING"
            assert states[-1] == "HEALTHY"
            health = service.health()
            assert health.components[DATABASE_COMPONENT].state == HealthState.HEALTHY
            assert health.metrics["queries.registered"].value == 4
            assert all(service_id == "svc" for service_id, _ in publisher.published)
        finally:
            service.shutdown()

    def test_second_initialize_is_noop(self, service, config, publisher):
        published = len(publisher.published)
        registry = service.registry
        assert service.initialize(config).unwrap() is registry
        assert len(publisher.published) == published

    def test_missing_url(self, config_factory, decryptor, publisher):
        config = config_factory()
        del config["cloud.database.url"]
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)

        result = service.initialize(config)
        assert isinstance(result, Err)
        assert isinstance(result.error, MissingConfigError)
        assert result.error.context.service_id == "svc"
        assert not service.initialized
        assert publisher.last.overall.state == HealthState.FAILED

    def test_blank_decrypted_password(self, config, publisher):
        class Blank:
            def decrypt(self, ciphertext):
                return ""

        service = LookupService("svc", decryptor=Blank(), publisher=publisher)
        result = service.initialize(config)
        assert result.is_err()
        assert isinstance(result.error, ConfigurationError)
        assert publisher.last.overall.state == HealthState.FAILED

    def test_failed_validation(self, config_factory, decryptor, publisher):
        config = config_factory({"cloud.database.pool.test-query": "SELECT * FROM nowhere"})
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)

        result = service.initialize(config)
        assert isinstance(result.error, DatabaseConnectionError)
        health = service.health()
        assert health.overall.state == HealthState.FAILED
        assert health.components[DATABASE_COMPONENT].state == HealthState.FAILED
        assert service.pool is None

    def test_bad_query_fails_startup(self, config_factory, decryptor, publisher):
        config = config_factory({"query.user.search-data-type": "BLOB"})
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        result = service.initialize(config)
        assert result.is_err()
        assert result.error.context.query_id == "user"
        assert service.lookup("by-name", "alice").failure_stage is FailureStage.VALIDATION

    def test_retry_after_failure(self, config_factory, config, decryptor, publisher):
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        broken = config_factory({"query.user.sql": "SELECT 1"})
        assert service.initialize(broken).is_err()
        try:
            assert service.initialize(config).is_ok()
        finally:
            service.shutdown()


class TestShutdown:
    """Tests for shutdown."""

    def test_shutdown_publishes_failed(self, config, decryptor, publisher):
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        service.initialize(config).unwrap()
        service.shutdown()

        assert publisher.last.overall.state == HealthState.FAILED
        assert publisher.last.overall.message == "Service shutting down"
        assert service.pool is None
        assert not service.initialized

    def test_shutdown_is_idempotent(self, config, decryptor, publisher):
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        service.initialize(config).unwrap()
        service.shutdown()
        published = len(publisher.published)
        service.shutdown()
        assert len(publisher.published) == published

    def test_shutdown_before_initialize(self, publisher):
        LookupService("svc", publisher=publisher).shutdown()
        assert publisher.published == []

    def test_lookup_after_shutdown(self, config, decryptor, publisher):
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        service.initialize(config).unwrap()
        service.shutdown()
        result = service.lookup("user", "42")
        assert result.failure_stage is FailureStage.VALIDATION


class TestRead:
    """Tests for read requests."""

    def test_documented_example(self, service):
        result = service.lookup("user", "42", request_id="r-1")
        assert result.to_dict() == {
            "status": "SUCCESS",
            "object_id": "42",
            "details": {"state": "Active"},
            "request_id": "r-1",
        }

    def test_handle_routes_reads(self, service):
        result = service.handle(ReadRequest(key="42", parameters={"queryId": ["user"]}))
        assert result.ok

    def test_not_found(self, service):
        result = service.lookup("user", "1000")
        assert result.status is LookupStatus.RECORD_NOT_FOUND
        assert result.object_id == "1000"

    def test_multiple(self, service):
        assert service.lookup("user", "99").status is LookupStatus.MULTIPLE_RECORDS
        assert service.lookup("by-status", "D").status is LookupStatus.MULTIPLE_RECORDS

    def test_timestamp_key(self, service):
        result = service.lookup("event", "2024-05-06T07:08:09")
        assert result.ok
        assert dict(result.details) == {"label": "launch"}

    def test_key_is_normalised(self, service):
        """The object id is the canonical form of the parsed key."""
        assert service.lookup("user", " 042 ").object_id == "42"

    def test_metrics_counted(self, service):
        service.lookup("user", "42")
        service.lookup("user", "1000")
        service.lookup("nope", "1")
        metrics = service.health().metrics
        assert metrics["lookups.SUCCESS"].value == 1
        assert metrics["lookups.RECORD_NOT_FOUND"].value == 1
        assert metrics["lookups.FAILURE"].value == 1

    def test_concurrent_reads_are_isolated(self, service):
        jobs = [("user", "42"), ("by-name", "alice"), ("user", "1000"), ("by-name", "bob")] * 10

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda job: service.lookup(*job), jobs))

        for (query_id, key), result in zip(jobs, results):
            if (query_id, key) == ("user", "42"):
                assert dict(result.details) == {"state": "Active"}
            elif (query_id, key) == ("by-name", "alice"):
                assert dict(result.details)["name"] == "alice"
            elif (query_id, key) == ("by-name", "bob"):
                assert dict(result.details) == {"amount": "0", "created": "2023-06-01T12:00", "name": "bob"}
            else:
                assert result.status is LookupStatus.RECORD_NOT_FOUND
        assert service.pool.engine.pool.checkedout() == 0


class TestValidation:
    """Validation failures never touch the database."""

    @pytest.mark.parametrize(("request_", "message"), [
        (ReadRequest(key="42"), "Missing required parameter queryId"),
        (ReadRequest(key="42", parameters={"queryId": ""}), "Missing required parameter queryId"),
        (ReadRequest.for_query("nope", "42"), "Unknown query nope"),
        (ReadRequest.for_query("user", None), AD_HOC_MESSAGE),
        (ReadRequest.for_query("user", "   "), AD_HOC_MESSAGE),
        (ReadRequest.for_query("user", "abc"), "Key 'abc' is not a valid NUMBER value for query user"),
        (ReadRequest.for_query("event", "noon"), "Key 'noon' is not a valid TIMESTAMP value for query event"),
    ])
    def test_rejected(self, service, checkouts, request_, message):
        result = service.read(request_)
        assert result.status is LookupStatus.FAILURE
        assert result.failure_stage is FailureStage.VALIDATION
        assert result.error_message == message
        assert checkouts.count == 0

    def test_not_initialised(self, publisher):
        result = LookupService("svc", publisher=publisher).lookup("user", "42")
        assert result.failure_stage is FailureStage.VALIDATION
        assert result.error_message == "Service is not initialised"

    def test_request_id_echoed_on_rejection(self, service):
        assert service.lookup("nope", "1", request_id="r-9").request_id == "r-9"

    def test_valid_read_checks_out_once(self, service, checkouts):
        service.lookup("user", "42")
        assert checkouts.count == 1


class TestUnsupportedOperations:
    """Create, update and delete are rejected."""

    @pytest.mark.parametrize("request_", [
        CreateRequest(key="1", payload={"status": "A"}),
        UpdateRequest(key="1", payload={"status": "A"}),
        DeleteRequest(key="1"),
    ])
    def test_handle_raises(self, service, checkouts, request_):
        with pytest.raises(UnsupportedOperationError):
            service.handle(request_)
        assert checkouts.count == 0

    def test_direct_methods_raise(self, service):
        with pytest.raises(NotImplementedError):
            service.create(CreateRequest(key="1"))
        with pytest.raises(NotImplementedError):
            service.update(UpdateRequest(key="1"))
        with pytest.raises(NotImplementedError):
            service.delete(DeleteRequest(key="1"))


class TestDatabaseHealth:
    """Connection failures degrade health, a good round trip restores it."""

    def test_degrade_and_recover(self, service, publisher, monkeypatch):
        def refuse():
            raise OperationalError("connect", {}, Exception("connection refused"))

        monkeypatch.setattr(service.pool, "connect", refuse)
        result = service.lookup("user", "42")
        assert result.failure_stage is FailureStage.CONNECTION

        health = service.health()
        assert health.overall.state == HealthState.WARNING
        assert health.components[DATABASE_COMPONENT].state == HealthState.WARNING

        published = len(publisher.published)
        service.lookup("user", "42")
        degraded_updates = [r for _, r in publisher.published[published:] if r.overall.state != HealthState.WARNING]
        assert degraded_updates == []

        monkeypatch.undo()
        assert service.lookup("user", "42").ok
        health = service.health()
        assert health.overall.state == HealthState.HEALTHY
        assert health.components[DATABASE_COMPONENT].state == HealthState.HEALTHY

    def test_statement_failure_keeps_health(self, config_factory, decryptor, publisher):
        config = config_factory({"query.user.sql": "SELECT status FROM missing_table WHERE id = ?"})
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        service.initialize(config).unwrap()
        try:
            assert service.lookup("user", "42").failure_stage is FailureStage.STATEMENT
            assert service.health().overall.state == HealthState.HEALTHY
        finally:
            service.shutdown()

    def test_check_database(self, service):
        assert service.check_database() is True
        assert service.health().components[DATABASE_COMPONENT].state == HealthState.HEALTHY

    def test_check_database_failure(self, service, monkeypatch):
        monkeypatch.setattr(service.pool, "ping", lambda timeout=5.0: False)
        assert service.check_database() is False
        assert service.health().overall.state == HealthState.WARNING

    def test_check_database_uninitialised(self, publisher):
        assert LookupService("svc", publisher=publisher).check_database() is False

    def test_recovery_racing_a_failure_ends_healthy(self, config, decryptor, monkeypatch):
        """A recovery that overlaps a failure's publish still wins once it completes."""
        publisher = HoldingPublisher()
        service = LookupService("svc", decryptor=decryptor, publisher=publisher)
        service.initialize(config).unwrap()
        try:
            real_connect = service.pool.connect

            def connect():
                if threading.current_thread().name == "failing":
                    raise OperationalError("connect", {}, Exception("connection refused"))
                return real_connect()

            monkeypatch.setattr(service.pool, "connect", connect)
            failing = threading.Thread(target=service.lookup, args=("user", "42"), name="failing")
            failing.start()
            assert publisher.entered.wait(timeout=5)

            recovering = threading.Thread(target=service.lookup, args=("user", "42"), name="recovering")
            recovering.start()
            recovering.join(timeout=0.1)
            publisher.release.set()
            failing.join(timeout=5)
            recovering.join(timeout=5)

            health = service.health()
            assert health.overall.state == HealthState.HEALTHY
            assert health.components[DATABASE_COMPONENT].state == HealthState.HEALTHY
            assert publisher.last.overall.state == HealthState.HEALTHY
            assert service.lookup("user", "42").ok
        finally:
            publisher.release.set()
            service.shutdown()


class HoldingPublisher:
    """Records snapshots and blocks on the first degraded database component."""

    def __init__(self):
        self.published = []
        self.entered = threading.Event()
        self.release = threading.Event()

    def publish(self, service_id, result):
        database = result.components.get(DATABASE_COMPONENT)
        if database is not None and database.state == HealthState.WARNING and not self.entered.is_set():
            self.entered.set()
            self.release.wait(timeout=5)
        self.published.append(result)

    @property
    def last(self):
        return self.published[-1]
