"""
sql-lookup - keyed single-record lookups against a SQL database.

A read-only adapter: given a pre-registered query and one key, fetch at most
one matching row and return it as a field-name/value map, with declarative
type coercion and value substitution.

Quick start::

    from sql_lookup import LookupService, load_config

    service = LookupService()
    service.initialize(load_config("lookup.properties")).unwrap()
    result = service.lookup("user", "42")
    service.shutdown()
"""

__version__ = "0.1.0"

from sql_lookup.config.loader import load_config
from sql_lookup.config.tree import ConfigNode
from sql_lookup.queries.results import FailureStage, LookupResult, LookupStatus
from sql_lookup.service.dispatcher import LookupService
from sql_lookup.service.requests import ReadRequest

__all__ = [
    "ConfigNode",
    "FailureStage",
    "LookupResult",
    "LookupService",
    "LookupStatus",
    "ReadRequest",
    "load_config",
]
