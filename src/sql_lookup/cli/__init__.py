"""
CLI layer for sql-lookup.

Typer application; all behaviour lives in the service and query packages,
this package only handles argument parsing and rich output.

Entry point::

    sql-lookup --help
"""

from sql_lookup.cli.app import app

__all__ = ["app"]
