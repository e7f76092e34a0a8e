"""Bounded execution for blocking calls.

The startup connectivity check and ``ConnectionPool.ping`` must not hang the
host when the database is unreachable. ``run_with_timeout`` runs the call on
a worker thread and stops waiting after the deadline.

Lookups themselves are unbounded; only lifecycle checks go through here.

Examples:
    >>> from sql_lookup.core.timeout import run_with_timeout, TimeoutExpired
    >>> run_with_timeout(lambda: 42, 1.0)
    42

Tags:
    timeout, deadline, resilience, sql-lookup

Doc-Types:
    api-reference
"""

from __future__ import annotations

import concurrent.futures
import time
from collections.abc import Callable
from typing import Any, TypeVar

T = TypeVar("T")


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the caller waited before giving up
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (waited {elapsed:.2f}s)"

        super().__init__(msg)


def run_with_timeout(
    func: Callable[..., T],
    timeout_seconds: float,
    operation: str | None = None,
    args: tuple[Any, ...] | None = None,
    kwargs: dict[str, Any] | None = None,
) -> T:
    """Run a callable with a timeout on a dedicated worker thread.

    The worker is abandoned on timeout (threads cannot be killed); it finishes
    in the background and its result is discarded.

    Raises:
        ValueError: If ``timeout_seconds`` is not positive
        TimeoutExpired: If execution exceeds the timeout
        Exception: Any exception raised by func
    """
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix="sql-lookup-timeout"
    )
    try:
        future = executor.submit(func, *(args or ()), **(kwargs or {}))
        try:
            return future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            raise TimeoutExpired(
                timeout=timeout_seconds,
                elapsed=time.monotonic() - start,
                operation=operation or getattr(func, "__name__", "unknown"),
            ) from None
    finally:
        # Do not join a hung worker.
        executor.shutdown(wait=False)


__all__ = ["TimeoutExpired", "run_with_timeout"]
