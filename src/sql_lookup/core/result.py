"""
Result envelope for lifecycle operations.

``LookupService.initialize`` reports its outcome as ``Ok(registry)`` or
``Err(error)`` instead of raising, so hosts can branch on the outcome without
a try/except around startup. Per-request outcomes use ``LookupResult``
statuses and do not go through this type.

Manifesto:
    - **Explicit over implicit:** Startup failure is a value the host must
      look at
    - **Rich errors:** ``Err`` carries a ``SqlLookupError`` whose
      ``to_dict()`` ends up in logs and CLI output
    - **Pattern matching:** ``match result: case Ok(v): ... case Err(e): ...``

Examples:
    >>> from sql_lookup.core.result import Ok, Err
    >>> Ok(3).unwrap()
    3
    >>> Err(ValueError("boom")).unwrap_or("fallback")
    'fallback'
    >>> match Ok("registry"):
    ...     case Ok(value):
    ...         print(value)
    ...     case Err(error):
    ...         print(error)
    registry

Tags:
    result-pattern, error-handling, lifecycle, sql-lookup

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from sql_lookup.core.errors import SqlLookupError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    Failed result containing an error.

    ``unwrap()`` re-raises the wrapped error, so ``service.initialize(cfg).unwrap()``
    is the one-liner for hosts that prefer exceptions.
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.error, SqlLookupError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {"error_type": type(self.error).__name__, "message": str(self.error)},
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


__all__ = [
    "Result",
    "Ok",
    "Err",
]
