"""
Root Typer application for the sql-lookup CLI.

Commands::

    sql-lookup queries -c lookup.properties            # compile only, no database
    sql-lookup lookup user 42 -c lookup.properties     # one lookup
    sql-lookup health -c lookup.properties --json      # health snapshot
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from typer import Typer

from sql_lookup.cli.utils import console, err_console, fail, output, prepare, print_dict
from sql_lookup.core.errors import SqlLookupError
from sql_lookup.core.result import Err, Ok
from sql_lookup.core.settings import LookupSettings
from sql_lookup.queries.compiler import compile_registry
from sql_lookup.queries.results import LookupStatus
from sql_lookup.service.dispatcher import LookupService

app = Typer(
    name="sql-lookup",
    help="sql-lookup: keyed single-record lookups against a SQL database.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Configuration file (.properties or .yaml). Repeat to layer files.",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("sql-lookup")
        except PackageNotFoundError:
            v = "0.1.0"
        typer.echo(f"sql-lookup {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """sql-lookup CLI: inspect compiled queries, run lookups, check health."""


def _service(settings: LookupSettings) -> LookupService:
    return LookupService(settings.service_id, validation_timeout=settings.validation_timeout)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("queries")
def list_queries(
    config: list[Path] | None = ConfigOption,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Compile the configuration and list registered queries."""
    _, tree = prepare(config)
    try:
        registry = compile_registry(tree)
    except SqlLookupError as e:
        fail(e, as_json=json_out)

    if json_out:
        output([query.to_dict() for query in registry.values()], as_json=True)
        return

    rows = [
        {
            "query": query.query_id,
            "key type": query.key_type.value,
            "columns": ", ".join(
                f"{c.name}->{c.output_field}:{c.data_type.value}" for c in query.columns.values()
            )
            or "-",
        }
        for query in registry.values()
    ]
    output(rows, title="Registered queries")


@app.command("lookup")
def lookup(
    query_id: str = typer.Argument(..., help="Registered query id"),
    key: str = typer.Argument(..., help="Lookup key"),
    config: list[Path] | None = ConfigOption,
    request_id: str | None = typer.Option(None, "--request-id", help="Request id to echo"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run one keyed lookup and print the result."""
    settings, tree = prepare(config)
    service = _service(settings)
    try:
        match service.initialize(tree):
            case Err(error):
                fail(error, as_json=json_out)
            case Ok(_):
                pass
        result = service.lookup(query_id, key, request_id)
    finally:
        service.shutdown()

    output(result, as_json=json_out, title=f"Lookup {query_id}")
    if result.status is LookupStatus.FAILURE:
        raise typer.Exit(code=1)


@app.command("health")
def health(
    config: list[Path] | None = ConfigOption,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Initialise the service and print its health snapshot."""
    settings, tree = prepare(config)
    service = _service(settings)
    try:
        initialized = service.initialize(tree).is_ok()
        if initialized:
            service.check_database()
        snapshot = service.health()
    finally:
        service.shutdown()

    if json_out:
        output(snapshot, as_json=True)
    else:
        style = {"HEALTHY": "green", "WARNING": "yellow"}.get(snapshot.overall.state.value, "red")
        console.print(
            f"[bold]{snapshot.service_id}[/bold]: "
            f"[{style}]{snapshot.overall.state.value}[/{style}] {escape(snapshot.overall.message)}"
        )
        for name, status in snapshot.components.items():
            console.print(f"  [cyan]{name}[/cyan]: {status.state.value} {escape(status.message)}")
        if snapshot.metrics:
            print_dict({name: metric.value for name, metric in snapshot.metrics.items()}, title="Metrics")

    if not initialized:
        err_console.print("[bold red]Service failed to initialise[/bold red]")
        raise typer.Exit(code=1)
