"""
printstore Command Line Interface (CLI)

Command-line utilities for inspecting and maintaining a fingerprint database:
creating the schema, checking readiness, showing, importing and deleting
fingerprints for the current instance.
"""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from printstore.core.database import Database
from printstore.core.identity import InstanceIdentity
from printstore.core.schema import DatabaseSchemaLoader
from printstore.core.settings import PrintstoreSettings
from printstore.core.storage import FingerprintStorage
from printstore.errors import CodecError, FingerprintStoreError
from printstore.models.fingerprint import Fingerprint
from printstore.protocols import PayloadCodec

app = typer.Typer(rich_markup_mode="markdown")
console = Console()

DB_URL_HELP = "SQLAlchemy URL of the fingerprint database (default: $PRINTSTORE_DB_URL)."
KEY_PATH_HELP = "PEM key the instance identity is derived from (default: $PRINTSTORE_IDENTITY_KEY)."


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
) -> None:
    """Inspect and maintain relational fingerprint storage."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def get_storage(
    db_url: Optional[str] = None, key_path: Optional[str] = None
) -> FingerprintStorage:
    """Builds a storage facade from CLI options, falling back to the environment."""
    settings = PrintstoreSettings.from_env()
    database = Database.from_settings(settings)
    if db_url:
        database = Database(
            db_url,
            echo=settings.db_echo,
            pool_pre_ping=settings.db_pool_pre_ping,
            connect_timeout=settings.db_connect_timeout,
        )
    identity = InstanceIdentity.from_key_file(key_path or settings.identity_key_path)
    return FingerprintStorage(database=database, identity=identity)


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _render_fingerprint(fingerprint: Fingerprint, codec: PayloadCodec) -> None:
    original = str(fingerprint.original) if fingerprint.original else "[dim]unknown[/dim]"
    console.print(
        Panel(
            f"[bold]File:[/bold] {fingerprint.file_name}\n"
            f"[bold]Recorded:[/bold] {fingerprint.timestamp:%Y-%m-%d %H:%M:%S %Z}\n"
            f"[bold]Original:[/bold] {original}",
            title=f"Fingerprint [cyan]{fingerprint.hash_string}[/cyan]",
        )
    )

    usages = Table(title="Usages")
    usages.add_column("Job", style="green")
    usages.add_column("Builds", style="magenta")
    for job in fingerprint.jobs:
        usages.add_row(job, str(fingerprint.usages[job]))
    console.print(usages)

    facets = Table(title="Facets")
    facets.add_column("Type", style="cyan")
    facets.add_column("Blocks deletion")
    facets.add_column("Payload", style="dim")
    for facet in fingerprint.facets:
        facets.add_row(
            facet.facet_name(),
            "[red]yes[/red]" if facet.is_fingerprint_deletion_blocked() else "no",
            json.dumps(json.loads(codec.encode(facet))[facet.facet_name()]),
        )
    console.print(facets)


@app.command()
def migrate(
    db_url: Optional[str] = typer.Option(None, help=DB_URL_HELP),
) -> None:
    """Create any missing fingerprint tables."""
    settings = PrintstoreSettings.from_env()
    database = Database(db_url) if db_url else Database.from_settings(settings)
    try:
        DatabaseSchemaLoader.migrate_schema(database.get_data_source(), force=True)
    except Exception as e:
        _fail(f"Schema migration failed: {e}")
    finally:
        database.dispose()
    console.print(f"[green]Fingerprint schema is ready on {database!r}[/green]")


@app.command()
def status(
    db_url: Optional[str] = typer.Option(None, help=DB_URL_HELP),
    key_path: Optional[str] = typer.Option(None, help=KEY_PATH_HELP),
) -> None:
    """Show the instance id, readiness and fingerprint count."""
    with get_storage(db_url, key_path) as storage:
        ready = storage.is_ready()
        table = Table(title="Fingerprint Storage")
        table.add_column("Property", style="cyan")
        table.add_column("Value")
        table.add_row("Instance", storage.instance_id)
        table.add_row("Ready", "[green]yes[/green]" if ready else "[yellow]no[/yellow]")
        if ready:
            table.add_row("Fingerprints", str(storage.count()))
        console.print(table)


@app.command()
def show(
    fingerprint_id: str = typer.Argument(..., help="Hash of the fingerprint to show."),
    db_url: Optional[str] = typer.Option(None, help=DB_URL_HELP),
    key_path: Optional[str] = typer.Option(None, help=KEY_PATH_HELP),
    json_output: bool = typer.Option(
        False, "--json", help="Print the fingerprint document as JSON."
    ),
) -> None:
    """Display one fingerprint with its usages and facets."""
    with get_storage(db_url, key_path) as storage:
        try:
            fingerprint = storage.load(fingerprint_id)
        except FingerprintStoreError as e:
            _fail(f"Failed to load fingerprint: {e}")
        if fingerprint is None:
            _fail(f"Fingerprint '{fingerprint_id}' not found.")
        if json_output:
            print(json.dumps(json.loads(storage.codec.encode(fingerprint)), indent=2))
        else:
            _render_fingerprint(fingerprint, storage.codec)


@app.command()
def delete(
    fingerprint_id: str = typer.Argument(..., help="Hash of the fingerprint to delete."),
    db_url: Optional[str] = typer.Option(None, help=DB_URL_HELP),
    key_path: Optional[str] = typer.Option(None, help=KEY_PATH_HELP),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete one fingerprint and everything attached to it."""
    with get_storage(db_url, key_path) as storage:
        try:
            fingerprint = storage.load(fingerprint_id)
        except FingerprintStoreError as e:
            _fail(f"Failed to load fingerprint: {e}")
        if fingerprint is None:
            _fail(f"Fingerprint '{fingerprint_id}' not found.")
        if not yes:
            typer.confirm(f"Delete fingerprint {fingerprint_id}?", abort=True)
        try:
            storage.delete(fingerprint_id)
        except FingerprintStoreError as e:
            _fail(f"Failed to delete fingerprint: {e}")
        console.print(f"[green]Deleted fingerprint {fingerprint_id}[/green]")


@app.command(name="import")
def import_fingerprint(
    path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON fingerprint document to import."
    ),
    db_url: Optional[str] = typer.Option(None, help=DB_URL_HELP),
    key_path: Optional[str] = typer.Option(None, help=KEY_PATH_HELP),
) -> None:
    """Save a fingerprint document, replacing any stored copy."""
    with get_storage(db_url, key_path) as storage:
        try:
            fingerprint = storage.codec.decode(path.read_text(encoding="utf-8"))
        except CodecError as e:
            _fail(f"Invalid fingerprint document: {e}")
        if not isinstance(fingerprint, Fingerprint):
            _fail(f"{path} does not contain a fingerprint document.")
        try:
            storage.save(fingerprint)
        except FingerprintStoreError as e:
            _fail(f"Failed to save fingerprint: {e}")
        console.print(
            f"[green]Imported fingerprint {fingerprint.hash_string} "
            f"({len(fingerprint.jobs)} jobs, {len(fingerprint.facets)} facets)[/green]"
        )


if __name__ == "__main__":
    app()
