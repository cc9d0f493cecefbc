"""Booth Beacon CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.logging import RichHandler

from booth_beacon import __version__
from booth_beacon.cli.crawl import crawl_app

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
    name="booth-beacon",
    help="Booth Beacon - crawl, extract and deduplicate analog photo booth locations",
    add_completion=False,
)
app.add_typer(crawl_app, name="crawl")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


def _check_ai_config() -> None:
    """Check and display AI configuration status."""
    anthropic_key = os.environ.get("ANTHROPIC_API_KEY", "")
    openai_key = os.environ.get("OPENAI_API_KEY", "")
    provider = os.environ.get("AI_PROVIDER", "anthropic")

    if provider == "anthropic" and anthropic_key:
        typer.echo("  AI Provider: Anthropic (configured)")
    elif provider == "openai" and openai_key:
        typer.echo("  AI Provider: OpenAI (configured)")
    else:
        typer.echo("  AI Provider: Not configured (generic extraction unavailable)")
        typer.echo("  Tip: Set ANTHROPIC_API_KEY in .env file to enable LLM extraction")


@app.command()
def init_db(
    migrate: bool = typer.Option(
        False, "--migrate", help="Apply Alembic migrations instead of create_all"
    ),
) -> None:
    """Initialize the database (create tables)."""
    from booth_beacon.db.engine import init_db as db_init
    from booth_beacon.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Booth Beacon version."""
    typer.echo(f"Booth Beacon v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    typer.echo("Booth Beacon Configuration")
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

    # Check AI config
    _check_ai_config()

    typer.echo(f"  Scraper: {os.environ.get('SCRAPER', 'from sources.yaml')}")

    # Check sources
    from booth_beacon.ingestion.config import get_default_config

    config = get_default_config()
    typer.echo(f"  Sources file: {config.config_path or 'Not found'}")
    typer.echo(f"  Configured sources: {len(config.sources)}")

    # Check database
    from booth_beacon.db.engine import get_database_url

    db_url = get_database_url()
    typer.echo(f"  Database: {db_url}")


if __name__ == "__main__":
    app()
