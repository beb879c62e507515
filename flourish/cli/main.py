"""Flourish CLI using Typer."""

import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from flourish import __version__
from flourish.cli.ingest import ingest_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="flourish",
    help="Flourish - plant catalog ingestion, search and watering schedules",
    add_completion=False,
)
snapshot_app = typer.Typer(help="Catalog snapshot commands")

app.add_typer(ingest_app, name="ingest")
app.add_typer(snapshot_app, name="snapshot")

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO; keep it for --verbose only
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.command()
def init_db() -> None:
    """Initialize the database (create tables)."""
    from flourish.db.store import StoreUnavailable, open_store

    typer.echo("Initializing database...")
    try:
        open_store().close()
    except StoreUnavailable as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Flourish version."""
    typer.echo(f"Flourish v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from flourish.db.engine import get_database_url
    from flourish.ingestion.registry import default_config_path, load_registry

    typer.echo("Flourish Configuration")
    typer.echo("=" * 40)

    # Check .env file
    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    # Check sources
    config_path = default_config_path()
    if config_path.exists():
        registry = load_registry(config_path)
        typer.echo(f"  Sources file: {config_path}")
        for source in registry.list_sources():
            token = "token set" if source.api_token else "token missing"
            typer.echo(f"    {source.name}: {source.base_url} ({token})")
        typer.echo(f"  Snapshots: {registry.global_config.snapshot_path}")
    else:
        typer.echo(f"  Sources file: Not found ({config_path})")

    # Check database
    typer.echo(f"  Database: {get_database_url()}")


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to look for in plant names"),
    snapshot: Optional[Path] = typer.Option(
        None, "--snapshot", help="Entries snapshot file (default: configured snapshot path)"
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results to show"),
) -> None:
    """
    Search the catalog snapshot by common, scientific or other name.

    Examples:
        flourish search rose
        flourish search "monstera" --limit 5
    """
    from flourish.ingestion.registry import load_registry
    from flourish.ingestion.snapshot import ENTRIES_FILE, SnapshotError
    from flourish.search.index import SearchIndex

    if snapshot is None:
        snapshot = Path(load_registry().global_config.snapshot_path).expanduser() / ENTRIES_FILE

    index = SearchIndex()
    try:
        index.load(snapshot)
    except SnapshotError as e:
        rprint(f"[red]Error:[/red] {e}")
        rprint("\nExport a snapshot first with:")
        rprint("  flourish snapshot export")
        raise typer.Exit(1)

    page = index.search_page(query, limit=limit)
    if not page.entries:
        rprint(f"[yellow]No plants match '{query}'[/yellow]")
        return

    table = Table(title=f"Plants matching '{query}'")
    table.add_column("ID", justify="right")
    table.add_column("Common name", style="bold")
    table.add_column("Scientific name", style="italic")
    table.add_column("Other names")
    for entry in page.entries:
        table.add_row(str(entry.id), entry.common_name, entry.scientific_name, entry.other_names_text)
    console.print(table)

    if page.has_more:
        rprint(f"[dim]Showing {len(page.entries)} of {page.total_count} results[/dim]")


@snapshot_app.command("export")
def snapshot_export(
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Directory to write snapshots to (default: configured snapshot path)",
    ),
) -> None:
    """
    Export the stored catalog to JSON snapshot files.

    Examples:
        flourish snapshot export
        flourish snapshot export -o ./snapshots
    """
    from flourish.db.store import StoreUnavailable, open_store
    from flourish.ingestion.registry import load_registry
    from flourish.ingestion.snapshot import SnapshotError, export_catalog

    if output_dir is None:
        output_dir = Path(load_registry().global_config.snapshot_path).expanduser()

    try:
        with open_store() as store:
            written = export_catalog(store, output_dir)
    except (StoreUnavailable, SnapshotError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    for info in written:
        rprint(f"[green]Wrote[/green] {info.record_count} records to {info.path}")


if __name__ == "__main__":
    app()
