"""Inbound request types.

The host protocol hands the service one of four request kinds. Only reads
are served; the others exist so the dispatcher can reject them explicitly.
Request parameters may be single strings or lists of strings (the first
value wins), mirroring query-string style parameter maps.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

QUERY_ID_PARAM = "queryId"


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class LookupRequest:
    """Base request: a key, a parameter map and an optional request id."""

    operation: ClassVar[Operation]

    key: str | None = None
    parameters: Mapping[str, str | Sequence[str]] = field(default_factory=dict)
    request_id: str | None = None

    def parameter(self, name: str) -> str | None:
        """First value of parameter ``name``, or None."""
        value = self.parameters.get(name)
        if value is None or isinstance(value, str):
            return value
        for item in value:
            return item
        return None

    @property
    def query_id(self) -> str | None:
        return self.parameter(QUERY_ID_PARAM)


@dataclass(frozen=True)
class ReadRequest(LookupRequest):
    operation: ClassVar[Operation] = Operation.READ

    @classmethod
    def for_query(cls, query_id: str, key: str | None, request_id: str | None = None) -> ReadRequest:
        return cls(key=key, parameters={QUERY_ID_PARAM: query_id}, request_id=request_id)


@dataclass(frozen=True)
class CreateRequest(LookupRequest):
    operation: ClassVar[Operation] = Operation.CREATE

    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpdateRequest(LookupRequest):
    operation: ClassVar[Operation] = Operation.UPDATE

    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteRequest(LookupRequest):
    operation: ClassVar[Operation] = Operation.DELETE


__all__ = [
    "QUERY_ID_PARAM",
    "Operation",
    "LookupRequest",
    "ReadRequest",
    "CreateRequest",
    "UpdateRequest",
    "DeleteRequest",
]
