"""Health reporting for the lookup service.

Provides:

- **Models** - ``HealthState``, ``HealthStatus``, ``HealthMetric`` and the
  ``HealthResult`` snapshot envelope (pydantic).
- **``HealthPublisher``** - the host-side sink that receives every snapshot.
- **``HealthMonitor``** - lock-guarded mutable state (overall status,
  component map, metrics) that pushes a complete snapshot to the publisher
  after every change.

Quick start::

    monitor = HealthMonitor("sql-lookup", publisher=LoggingHealthPublisher())
    monitor.set_overall(HealthState.WARNING, "Service initialising")
    monitor.set_component("database", HealthState.HEALTHY, "Connected")
    monitor.update(overall=(HealthState.HEALTHY, "Service initialised"))
    monitor.increment("lookups.SUCCESS")
    monitor.snapshot().overall.state        # HealthState.HEALTHY
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from sql_lookup.core.logging import get_logger

logger = get_logger(__name__)

_START_TIME = time.monotonic()


def _now() -> str:
    return datetime.now(UTC).isoformat()


# ── Models ───────────────────────────────────────────────────────────────


class HealthState(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


class HealthStatus(BaseModel):
    """State of the service or of one component, with a human message."""

    state: HealthState = HealthState.UNKNOWN
    message: str = ""
    updated_at: str = Field(default_factory=_now)


class HealthMetric(BaseModel):
    """A named numeric metric (counters and gauges alike)."""

    name: str
    value: float = 0


class HealthResult(BaseModel):
    """Complete health snapshot pushed to the publisher.

    Fields
    ──────
    service_id : Identifier of the lookup service instance
    overall    : Service-level status
    components : Per-component status (``database``)
    metrics    : Metric name -> HealthMetric
    uptime_s   : Seconds since the module was imported
    timestamp  : ISO-8601 UTC time the snapshot was taken
    """

    service_id: str
    overall: HealthStatus = Field(default_factory=HealthStatus)
    components: dict[str, HealthStatus] = Field(default_factory=dict)
    metrics: dict[str, HealthMetric] = Field(default_factory=dict)
    uptime_s: float = Field(default_factory=lambda: round(time.monotonic() - _START_TIME, 1))
    timestamp: str = Field(default_factory=_now)


# ── Publishers ───────────────────────────────────────────────────────────


@runtime_checkable
class HealthPublisher(Protocol):
    """Host-side sink for health snapshots."""

    def publish(self, service_id: str, result: HealthResult) -> None: ...


class LoggingHealthPublisher:
    """Default publisher: emit each snapshot as a ``health.published`` log event."""

    def publish(self, service_id: str, result: HealthResult) -> None:
        logger.debug(
            "health.published",
            service_id=service_id,
            state=result.overall.state.value,
            message=result.overall.message,
            components={k: v.state.value for k, v in result.components.items()},
        )


# ── Monitor ──────────────────────────────────────────────────────────────


class HealthMonitor:
    """Lock-guarded health state with push-on-change.

    Every mutator updates the state under the lock, takes a deep snapshot and
    publishes it after releasing the lock. A separate publish lock is held
    from mutation to delivery, so the publisher sees snapshots in the order
    the state changed. Readers only ever see copies.
    """

    def __init__(self, service_id: str, publisher: HealthPublisher | None = None):
        self.service_id = service_id
        self.publisher: HealthPublisher = publisher or LoggingHealthPublisher()
        self._lock = threading.Lock()
        self._publish_lock = threading.RLock()
        self._state = HealthResult(service_id=service_id)

    def set_overall(self, state: HealthState, message: str = "") -> None:
        self.update(overall=(state, message))

    def set_component(self, name: str, state: HealthState, message: str = "") -> None:
        self.update(components={name: (state, message)})

    def update(
        self,
        overall: tuple[HealthState, str] | None = None,
        components: Mapping[str, tuple[HealthState, str]] | None = None,
    ) -> None:
        """Apply overall and component changes as one mutation and one publish."""

        def change(state: HealthResult) -> None:
            for name, (component_state, message) in (components or {}).items():
                state.components[name] = HealthStatus(state=component_state, message=message)
            if overall is not None:
                state.overall = HealthStatus(state=overall[0], message=overall[1])

        self._apply(change)

    def set_metric(self, name: str, value: float) -> None:
        def change(state: HealthResult) -> None:
            state.metrics[name] = HealthMetric(name=name, value=value)

        self._apply(change)

    def increment(self, name: str, by: float = 1) -> None:
        def change(state: HealthResult) -> None:
            current = state.metrics.get(name)
            state.metrics[name] = HealthMetric(name=name, value=(current.value if current else 0) + by)

        self._apply(change)

    def snapshot(self) -> HealthResult:
        """Return a deep copy of the current health state."""
        with self._lock:
            return self._snapshot_locked()

    def _apply(self, change: Callable[[HealthResult], None]) -> None:
        with self._publish_lock:
            with self._lock:
                change(self._state)
                snapshot = self._snapshot_locked()
            self._publish(snapshot)

    def _snapshot_locked(self) -> HealthResult:
        return self._state.model_copy(
            deep=True,
            update={
                "uptime_s": round(time.monotonic() - _START_TIME, 1),
                "timestamp": _now(),
            },
        )

    def _publish(self, snapshot: HealthResult) -> None:
        try:
            self.publisher.publish(self.service_id, snapshot)
        except Exception:  # noqa: BLE001
            logger.exception("health.publish_failed", service_id=self.service_id)


__all__ = [
    "HealthState",
    "HealthStatus",
    "HealthMetric",
    "HealthResult",
    "HealthPublisher",
    "LoggingHealthPublisher",
    "HealthMonitor",
]
