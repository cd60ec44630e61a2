"""Main CLI for Semfora Store."""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import StoreSettings, create_store_config, resolve_settings
from .db.schema import SCHEMA_VERSION, get_schema_version
from .errors import PersistenceLockedError
from .persistence import SQLitePersistence

app = typer.Typer(
    name="semfora-store",
    help="Semfora Store - local offline persistence management",
)
console = Console()


def get_settings(
    path: Optional[Path],
    project: Optional[str],
    database: Optional[str],
    key: Optional[str],
    data_dir: Optional[Path],
) -> StoreSettings:
    """Resolve settings for ``path`` and apply command-line overrides."""
    settings = resolve_settings(path)
    if project:
        settings.project_id = project
    if database:
        settings.database_id = database
    if key:
        settings.persistence_key = key
    if data_dir:
        settings.data_dir = str(data_dir)
    return settings


def read_schema_version(db_path: Path) -> Optional[int]:
    """Read the recorded schema version without opening for writes."""
    if not db_path.exists():
        return None
    conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
    try:
        return get_schema_version(conn)
    finally:
        conn.close()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("name")
def show_name(
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Directory to resolve config from"),
    project: Optional[str] = typer.Option(None, "--project", help="Project ID"),
    database: Optional[str] = typer.Option(None, "--database", help="Database ID"),
    key: Optional[str] = typer.Option(None, "--key", help="Persistence key"),
):
    """Print the database name derived from key, project and database."""
    settings = get_settings(path, project, database, key, None)
    console.print(settings.database_name, highlight=False)


@app.command("info")
def show_info(
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Directory to resolve config from"),
    project: Optional[str] = typer.Option(None, "--project", help="Project ID"),
    database: Optional[str] = typer.Option(None, "--database", help="Database ID"),
    key: Optional[str] = typer.Option(None, "--key", help="Persistence key"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Directory holding the database"),
):
    """Show where the database lives and which schema version it records."""
    settings = get_settings(path, project, database, key, data_dir)
    db_path = settings.get_db_path()

    try:
        version = read_schema_version(db_path)
    except sqlite3.OperationalError as e:
        console.print(f"[red]Error:[/red] Could not read {db_path}: {e}")
        raise typer.Exit(1)

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Config", str(settings.config_path or "none"))
    table.add_row("Name", settings.database_name)
    table.add_row("Path", str(db_path))
    table.add_row("Schema version", "not created" if version is None else str(version))
    table.add_row("Supported version", str(SCHEMA_VERSION))
    console.print(table)


@app.command("migrate")
def migrate(
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Directory to resolve config from"),
    project: Optional[str] = typer.Option(None, "--project", help="Project ID"),
    database: Optional[str] = typer.Option(None, "--database", help="Database ID"),
    key: Optional[str] = typer.Option(None, "--key", help="Persistence key"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Directory holding the database"),
):
    """Open the database once, applying any pending schema migrations."""
    settings = get_settings(path, project, database, key, data_dir)
    persistence = SQLitePersistence(settings)

    try:
        persistence.start()
    except PersistenceLockedError as e:
        console.print(f"[red]Locked:[/red] {e}")
        raise typer.Exit(1)

    try:
        version = persistence.schema_version
    finally:
        persistence.shutdown()

    console.print(f"[green]✓[/green] {persistence.path} at schema version {version}")


@app.command("init")
def init_config(
    project: str = typer.Option(..., "--project", help="Project ID"),
    path: Optional[Path] = typer.Option(None, "--path", "-p", help="Directory to initialize"),
    database: str = typer.Option("(default)", "--database", help="Database ID"),
    key: str = typer.Option("[DEFAULT]", "--key", help="Persistence key"),
    data_dir: Optional[str] = typer.Option(None, "--data-dir", help="Directory holding the database"),
):
    """Initialize .store/config.json in current or specified directory."""
    target_path = Path(path) if path else Path.cwd()

    if not target_path.exists():
        console.print(f"[red]Error:[/red] Directory not found: {target_path}")
        raise typer.Exit(1)

    config_path = create_store_config(
        target_path,
        project_id=project,
        database_id=database,
        persistence_key=key,
        data_dir=data_dir,
    )
    console.print(f"[green]✓[/green] Created {config_path}")


if __name__ == "__main__":
    app()
