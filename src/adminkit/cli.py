"""
adminkit command line interface.

Inspect table schemas, run searches and serve the JSON API against the
configured storage (``ADMINKIT_DATABASE_URL`` or ``ADMINKIT_DB_PATH``).
"""

from __future__ import annotations

import importlib
import json
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from adminkit.runtime.config import AdminConfig, get_config
from adminkit.runtime.errors import AdminKitError
from adminkit.runtime.storage import Storage, create_storage

app = typer.Typer(
    help="Generic CRUD administration over relational tables",
    no_args_is_help=True,
)

console = Console()


def _open_storage(db_path: str | None) -> tuple[AdminConfig, Storage]:
    config = get_config()
    if db_path:
        config = replace(config, database_url=None, db_path=Path(db_path))
    return config, create_storage(config)


def _parse_where(where: list[str] | None) -> dict[str, Any]:
    criteria: dict[str, Any] = {}
    for item in where or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--where")
        criteria[key.strip()] = value
    return criteria


# =============================================================================
# Commands
# =============================================================================


@app.command()
def columns(
    table: Annotated[str, typer.Argument(help="Table to describe")],
    db: Annotated[str | None, typer.Option("--db", help="SQLite database file")] = None,
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show the columns of a table."""
    from adminkit.runtime.schema_cache import get_schema_cache

    _, storage = _open_storage(db)
    try:
        descriptors = get_schema_cache(storage).columns_of(table)
    except AdminKitError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e
    finally:
        storage.close()

    if output_json:
        dumped = [column.model_dump() for column in descriptors.values()]
        typer.echo(json.dumps(dumped, indent=2, default=str))
        return

    grid = Table(title=table)
    grid.add_column("Name", style="cyan")
    grid.add_column("Type")
    grid.add_column("Default")
    grid.add_column("Nullable")
    grid.add_column("Key")
    for column in descriptors.values():
        grid.add_row(
            column.name,
            column.type,
            "" if column.default is None else repr(column.default),
            "yes" if column.nullable else "no",
            "PK" if column.primary_key else "",
        )
    console.print(grid)


@app.command()
def search(
    table: Annotated[str, typer.Argument(help="Table to search")],
    where: Annotated[
        list[str] | None,
        typer.Option("--where", "-w", help="Criterion as KEY=VALUE (KEY may carry __op)"),
    ] = None,
    order: Annotated[str | None, typer.Option("--order", "-o", help="Sort columns")] = None,
    db: Annotated[str | None, typer.Option("--db", help="SQLite database file")] = None,
) -> None:
    """Search a table and print the matching rows as JSON."""
    from adminkit.runtime.record_registry import search_records

    _, storage = _open_storage(db)
    try:
        rows = search_records(table, storage, _parse_where(where), order).get_all()
    except AdminKitError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from e
    finally:
        storage.close()

    typer.echo(json.dumps(rows, indent=2, default=str))


@app.command()
def serve(
    module: Annotated[
        list[str] | None,
        typer.Option("--module", "-m", help="Module registering controllers (repeatable)"),
    ] = None,
    host: Annotated[str, typer.Option("--host", help="Host to bind")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind")] = 8000,
    db: Annotated[str | None, typer.Option("--db", help="SQLite database file")] = None,
) -> None:
    """Serve the JSON API."""
    import uvicorn

    from adminkit.runtime.api import ApiApp, create_api_app
    from adminkit.runtime.logging import setup_logging

    config, storage = _open_storage(db)
    setup_logging(config)

    for name in module or []:
        importlib.import_module(name)

    api = create_api_app(ApiApp(storage, config=config))
    console.print(f"[green]adminkit API on http://{host}:{port}[/green]")
    uvicorn.run(api, host=host, port=port)


@app.command()
def logs(
    count: Annotated[int, typer.Option("--count", "-n", help="Number of entries")] = 20,
    level: Annotated[str | None, typer.Option("--level", help="Only this level")] = None,
) -> None:
    """Show recent JSONL log entries."""
    from adminkit.runtime.logging import get_recent_logs, setup_logging

    setup_logging(get_config())
    entries = get_recent_logs(count, level)
    if not entries:
        console.print("[yellow]No log entries[/yellow]")
        return

    for entry in entries:
        console.print(
            f"{entry.get('timestamp', '')} {entry.get('level', '')} "
            f"[{entry.get('component', '')}] {entry.get('message', '')}",
            markup=False,
        )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
