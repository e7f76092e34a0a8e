"""
CLI utility helpers: configuration sources and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from sql_lookup.config.loader import load_config
from sql_lookup.config.tree import ConfigNode
from sql_lookup.core.errors import SqlLookupError
from sql_lookup.core.logging import configure_logging
from sql_lookup.core.settings import LookupSettings, get_settings

console = Console()
err_console = Console(stderr=True)


# ── Setup helpers ────────────────────────────────────────────────────────


def prepare(config_files: list[Path] | None) -> tuple[LookupSettings, ConfigNode]:
    """Configure logging and load configuration for a command.

    Files given on the command line win over ``SQL_LOOKUP_CONFIG_FILES``.
    """
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.json_logs,
        service=settings.service_id,
    )
    paths = list(config_files or settings.config_paths)
    if not paths:
        err_console.print(
            "[bold red]Error[/bold red]: no configuration files "
            "(use --config or SQL_LOOKUP_CONFIG_FILES)"
        )
        raise typer.Exit(code=2)
    try:
        return settings, load_config(*paths)
    except SqlLookupError as e:
        fail(e)


def fail(error: SqlLookupError, *, as_json: bool = False) -> NoReturn:
    """Print ``error`` and exit with status 1."""
    if as_json:
        console.print_json(json.dumps({"ok": False, "error": error.to_dict()}, default=str))
    else:
        err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {escape(error.message)}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a to_dict()-able object / pydantic model / dataclass / mapping to a dict."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "__dataclass_fields__"):
        return asdict(obj)
    if isinstance(obj, Mapping):
        return dict(obj)
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render one object or a list of objects."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else _to_dict(data)
        console.print_json(json.dumps(payload, default=str))
        return

    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        print_table([_to_dict(d) for d in data], title=title)
    else:
        print_dict(_to_dict(data), title=title)


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*(escape(str(v)) for v in row.values()))
    console.print(table)


def print_dict(data: Mapping[str, Any], *, title: str = "", indent: int = 2) -> None:
    """Render a dict as key-value pairs, nesting one level per sub-mapping."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    pad = " " * indent
    for k, v in data.items():
        if isinstance(v, Mapping) and v:
            console.print(f"{pad}[cyan]{k}[/cyan]:")
            print_dict(v, indent=indent + 2)
        else:
            console.print(f"{pad}[cyan]{k}[/cyan]: {escape(str(v))}")
