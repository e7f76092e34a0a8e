"""Lookup service: lifecycle, routing and health."""

from sql_lookup.service.dispatcher import LookupService
from sql_lookup.service.requests import (
    CreateRequest,
    DeleteRequest,
    LookupRequest,
    Operation,
    ReadRequest,
    UpdateRequest,
)

__all__ = [
    "CreateRequest",
    "DeleteRequest",
    "LookupRequest",
    "LookupService",
    "Operation",
    "ReadRequest",
    "UpdateRequest",
]
