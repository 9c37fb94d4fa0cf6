"""Trivia Ingest CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from trivia_ingest.cli.ingest import cities_app, ingest_app, photos_app, sources_app

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
    name="trivia-ingest",
    help="Trivia Ingest - discover quiz venues and reconcile them into events",
    add_completion=False,
)
app.add_typer(ingest_app, name="ingest")
app.add_typer(sources_app, name="sources")
app.add_typer(photos_app, name="photos")
app.add_typer(cities_app, name="cities")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def init_db() -> None:
    """Initialize the database (create tables)."""
    from trivia_ingest.db.engine import init_db as db_init

    typer.echo("Initializing database...")
    db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Trivia Ingest version."""
    typer.echo("Trivia Ingest v0.1.0")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from trivia_ingest.db.engine import get_database_url
    from trivia_ingest.ingestion.registry import get_default_registry

    typer.echo("Trivia Ingest Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    registry = get_default_registry()
    typer.echo(f"  Sources config: {registry.config_path or 'Not found'}")
    typer.echo(f"  Sources: {len(registry.list_enabled_sources())} enabled")
    typer.echo(f"  Database: {get_database_url()}")

    for key in ("GOOGLE_MAPS_API_KEY", "ZYTE_API_KEY"):
        state = "configured" if os.environ.get(key) else "Not configured"
        typer.echo(f"  {key}: {state}")
    typer.echo(
        f"  Redis: {os.environ.get('REDIS_HOST', 'localhost')}:"
        f"{os.environ.get('REDIS_PORT', '6379')}"
    )


if __name__ == "__main__":
    app()
