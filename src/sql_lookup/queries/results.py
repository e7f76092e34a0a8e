"""Lookup outcomes.

Cardinality is an outcome, not an error: zero and multiple rows come back
as ``RECORD_NOT_FOUND`` and ``MULTIPLE_RECORDS`` with no details. Only
``FAILURE`` carries a ``failure_stage`` saying which step broke.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any

RECORD_NOT_FOUND_MESSAGE = "Record was not found"
MULTIPLE_RECORDS_MESSAGE = "More than one record was found"


class LookupStatus(str, Enum):
    SUCCESS = "SUCCESS"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"
    MULTIPLE_RECORDS = "MULTIPLE_RECORDS"
    FAILURE = "FAILURE"


class FailureStage(str, Enum):
    VALIDATION = "VALIDATION"   # Request rejected before any database access
    CONNECTION = "CONNECTION"   # Pool checkout
    STATEMENT = "STATEMENT"     # Prepare, bind, execute
    RESULT = "RESULT"           # Fetch and column extraction


@dataclass(frozen=True)
class LookupResult:
    """Response to one read request.

    Attributes:
        status: Outcome of the lookup
        error_message: Human-readable reason for any non-SUCCESS status
        object_id: Canonical string form of the key that was looked up
        details: Output field -> value; only present on SUCCESS
        request_id: Echo of the caller's request identifier
        failure_stage: Which step failed; only present on FAILURE
    """

    status: LookupStatus
    error_message: str | None = None
    object_id: str | None = None
    details: Mapping[str, str | None] | None = None
    request_id: str | None = None
    failure_stage: FailureStage | None = None

    def __post_init__(self) -> None:
        if self.details is not None:
            object.__setattr__(self, "details", MappingProxyType(dict(self.details)))

    # ── Constructors ─────────────────────────────────────────────

    @classmethod
    def success(cls, object_id: str, details: Mapping[str, str | None]) -> LookupResult:
        return cls(LookupStatus.SUCCESS, object_id=object_id, details=details)

    @classmethod
    def not_found(cls, object_id: str | None = None) -> LookupResult:
        return cls(
            LookupStatus.RECORD_NOT_FOUND,
            error_message=RECORD_NOT_FOUND_MESSAGE,
            object_id=object_id,
        )

    @classmethod
    def multiple(cls, object_id: str | None = None) -> LookupResult:
        return cls(
            LookupStatus.MULTIPLE_RECORDS,
            error_message=MULTIPLE_RECORDS_MESSAGE,
            object_id=object_id,
        )

    @classmethod
    def failure(
        cls,
        message: str,
        stage: FailureStage,
        object_id: str | None = None,
    ) -> LookupResult:
        return cls(
            LookupStatus.FAILURE,
            error_message=message,
            object_id=object_id,
            failure_stage=stage,
        )

    # ── Helpers ──────────────────────────────────────────────────

    @property
    def ok(self) -> bool:
        return self.status is LookupStatus.SUCCESS

    def with_request_id(self, request_id: str | None) -> LookupResult:
        return replace(self, request_id=request_id)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.error_message is not None:
            result["error_message"] = self.error_message
        if self.object_id is not None:
            result["object_id"] = self.object_id
        if self.details is not None:
            result["details"] = dict(self.details)
        if self.request_id is not None:
            result["request_id"] = self.request_id
        if self.failure_stage is not None:
            result["failure_stage"] = self.failure_stage.value
        return result


__all__ = [
    "FailureStage",
    "LookupResult",
    "LookupStatus",
    "MULTIPLE_RECORDS_MESSAGE",
    "RECORD_NOT_FOUND_MESSAGE",
]
