"""Wormhole CLI - run and maintain the shared agent timeline."""

import logging
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from wormhole import __version__, config
from wormhole.log import configure_logging

app = typer.Typer(
    name="wormhole",
    help="Shared activity timeline for AI coding agents.",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"wormhole {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", help="Show debug logging on stderr")
    ] = False,
) -> None:
    """Wormhole - shared activity timeline for AI coding agents."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)
    config.ensure_dirs()


@app.command("serve")
def serve() -> None:
    """Start the MCP server (stdio transport)."""
    from wormhole.mcp.server import serve as run_server

    run_server()


@app.command("status")
def status() -> None:
    """Show database location, size and event count."""
    from wormhole.timeline.store import TimelineStore

    store = TimelineStore(db_path=config.DB_PATH, archive_dir=config.ARCHIVE_DIR)
    try:
        table = Table(title="Wormhole")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")
        table.add_row("database", str(store.db_path))
        table.add_row("events", str(store.event_count()))
        table.add_row("size", f"{round(store.database_size() / 1024)}KB")
        table.add_row("config", str(config.CONFIG_PATH))
        console.print(table)
    finally:
        store.close()


@app.command("cleanup")
def cleanup(
    scope: Annotated[
        Optional[str],
        typer.Option("--scope", "-s", help="Delete a whole scope: all, project or session"),
    ] = None,
    project_path: Annotated[
        Optional[str], typer.Option("--project", "-p", help="Project path for project scope")
    ] = None,
    session_id: Annotated[
        Optional[str], typer.Option("--session", help="Session id for session scope")
    ] = None,
    archive: Annotated[
        bool, typer.Option("--archive", help="Archive events before deleting")
    ] = False,
) -> None:
    """Delete expired events, or every event in a scope."""
    from wormhole.timeline.store import TimelineStore

    store = TimelineStore(db_path=config.DB_PATH, archive_dir=config.ARCHIVE_DIR)
    try:
        if scope is None:
            cfg = config.load_config()
            deleted = store.cleanup_old_events(
                cfg.retention_hours, archive=archive or cfg.archive_before_delete
            )
        elif scope in ("all", "project", "session"):
            try:
                deleted = store.cleanup_by_scope(scope, project_path, session_id, archive=archive)  # type: ignore[arg-type]
            except ValueError as exc:
                console.print(f"[red]Error:[/red] {exc}")
                raise typer.Exit(1)
        else:
            console.print(f"[red]Unknown scope:[/red] {scope}")
            raise typer.Exit(1)
    finally:
        store.close()

    console.print(f"[green]Cleaned:[/green] {deleted} events")


@app.command("config")
def show_config() -> None:
    """Print the effective configuration."""
    cfg = config.load_config()
    table = Table(title=str(config.CONFIG_PATH))
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in cfg.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)
    console.print(f"[dim]Database: {config.DB_PATH}[/dim]")
