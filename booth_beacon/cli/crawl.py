"""
Crawl CLI Commands
==================

CLI commands for running crawls and managing sources and learned patterns.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from booth_beacon.core.enums import ProgressEventType, RunStage, SourceStatus
from booth_beacon.core.errors import RegistryError, SourceNotFoundError
from booth_beacon.core.schema import ProgressEvent
from booth_beacon.db.engine import get_session, init_db
from booth_beacon.ingestion.config import get_default_config
from booth_beacon.ingestion.extractors import get_extractor_info, list_extractors
from booth_beacon.ingestion.patterns import PatternLearner
from booth_beacon.ingestion.registry import SourceRegistry
from booth_beacon.ingestion.runner import run_source

console = Console()
crawl_app = typer.Typer(help="Crawl pipeline commands")
sources_app = typer.Typer(help="Source management commands")
patterns_app = typer.Typer(help="Learned extraction pattern commands")

crawl_app.add_typer(sources_app, name="sources")
crawl_app.add_typer(patterns_app, name="patterns")

STAGE_COLORS = {
    RunStage.SUCCEEDED.value: "green",
    RunStage.PARTIAL.value: "yellow",
    RunStage.FAILED.value: "red",
}


def _print_event(event: ProgressEvent) -> None:
    time = event.timestamp.strftime("%H:%M:%S")
    if event.type == ProgressEventType.STAGE:
        rprint(f"[dim]{time}[/dim] [bold blue]{event.stage.value}[/bold blue] {event.message}")
    elif event.type == ProgressEventType.LOG:
        rprint(f"[dim]{time}   {event.message}[/dim]")
    elif event.type == ProgressEventType.COMPLETE:
        rprint(f"[dim]{time}[/dim] [green]complete[/green] {event.message}")
    else:
        rprint(f"[dim]{time}[/dim] [red]error[/red] {event.message}")


@crawl_app.command("run")
def run_crawl(
    source: str = typer.Option(..., "--source", "-s", help="Source name or id to crawl"),
    force_refresh: bool = typer.Option(
        False, "--force-refresh", "-f", help="Ignore the content cache freshness window"
    ),
    deadline: Optional[float] = typer.Option(
        None, "--deadline", "-d", help="Run deadline in seconds"
    ),
) -> None:
    """
    Crawl one source and stream progress.

    Examples:
        booth-beacon crawl run --source photobooth.net
        booth-beacon crawl run -s autophoto --force-refresh --deadline 60
    """
    rprint(f"\n[bold]Starting crawl for source:[/bold] {source}\n")

    async def stream() -> ProgressEvent | None:
        last: ProgressEvent | None = None
        async for event in run_source(
            source, force_refresh=force_refresh, deadline_seconds=deadline
        ):
            _print_event(event)
            last = event
        return last

    terminal = asyncio.run(stream())

    if terminal is None or terminal.type == ProgressEventType.ERROR:
        if terminal is not None and "not found" in terminal.message:
            rprint("\nRegister configured sources with:")
            rprint("  booth-beacon crawl sources sync")
        raise typer.Exit(1)

    if terminal.counts:
        _display_counts(terminal.stage, terminal.counts)


def _display_counts(stage: RunStage | None, counts: dict[str, int]) -> None:
    """Display run counts in a formatted block."""
    status = stage.value if stage else "unknown"
    color = STAGE_COLORS.get(status, "white")

    rprint("\n[bold]Results:[/bold]")
    rprint(f"  Status: [{color}]{status}[/{color}]")

    rprint("\n[bold]Statistics:[/bold]")
    rprint(f"  Pages: {counts.get('fetched', 0)}/{counts.get('pages', 0)} fetched")
    rprint(f"  Cache hits: {counts.get('cache_hits', 0)}")
    rprint(f"  Candidates: {counts.get('candidates', 0)}")
    rprint(f"  Valid: {counts.get('valid', 0)} (rejected {counts.get('rejected', 0)})")
    rprint(f"  Booths added: {counts.get('added', 0)}")
    rprint(f"  Booths updated: {counts.get('updated', 0)}")


# Sources subcommands


@sources_app.command("list")
def list_sources(
    all_sources: bool = typer.Option(False, "--all", "-a", help="Show disabled sources too"),
) -> None:
    """
    List registered crawl sources.

    Examples:
        booth-beacon crawl sources list
        booth-beacon crawl sources list --all
    """
    with get_session() as session:
        try:
            sources = SourceRegistry(session).list_sources(enabled_only=not all_sources)
        except RegistryError as e:
            rprint(f"[red]Error:[/red] {e}")
            rprint("\nInitialize the database with: booth-beacon init-db")
            raise typer.Exit(1)

    if not sources:
        rprint("[yellow]No sources registered[/yellow]")
        rprint("\nAdd sources to config/sources.yaml and run: booth-beacon crawl sources sync")
        return

    table = Table(title="Crawl Sources")
    table.add_column("Name", style="bold")
    table.add_column("Type")
    table.add_column("Extractor")
    table.add_column("Priority", justify="right")
    table.add_column("Enabled")
    table.add_column("Status")
    table.add_column("Found", justify="right")
    table.add_column("Last crawled")

    for source in sources:
        enabled = "[green]yes[/green]" if source.enabled else "[yellow]no[/yellow]"
        color = {"success": "green", "partial": "yellow", "failed": "red"}.get(
            source.status.value, "white"
        )
        last = source.last_crawled_at.strftime("%Y-%m-%d %H:%M") if source.last_crawled_at else "-"
        table.add_row(
            source.name,
            source.source_type.value,
            source.extractor_type,
            str(source.priority),
            enabled,
            f"[{color}]{source.status.value}[/{color}]",
            str(source.total_found),
            last,
        )

    console.print(table)


@sources_app.command("show")
def show_source(
    name: str = typer.Argument(..., help="Source name or id"),
) -> None:
    """
    Show detailed information about a source.

    Examples:
        booth-beacon crawl sources show photobooth.net
    """
    with get_session() as session:
        try:
            source = SourceRegistry(session).load_source(name)
        except (SourceNotFoundError, RegistryError) as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        pattern = PatternLearner(session).active_pattern(source.id)

    enabled = "[green]enabled[/green]" if source.enabled else "[yellow]disabled[/yellow]"

    rprint(f"\n[bold]Source: {source.name}[/bold]")
    rprint(f"  ID: {source.id}")
    rprint(f"  Enabled: {enabled}")
    rprint(f"  Type: {source.source_type.value}")
    rprint(f"  Extractor: {source.extractor_type}")
    rprint(f"  Priority: {source.priority}")

    rprint("\n[bold]URLs:[/bold]")
    for url in source.urls:
        rprint(f"  • {url}")

    rprint("\n[bold]Runs:[/bold]")
    rprint(f"  Status: {source.status.value}")
    rprint(f"  Last crawled: {source.last_crawled_at or '-'}")
    rprint(f"  Last success: {source.last_success_at or '-'}")
    rprint(f"  Consecutive failures: {source.consecutive_failures}")
    rprint(
        f"  Totals: {source.total_found} found, {source.total_added} added, "
        f"{source.total_updated} updated"
    )
    if source.last_error:
        rprint(f"  Last error: [red]{source.last_error}[/red]")

    extractor_info = get_extractor_info(source.extractor_type)
    if extractor_info:
        rprint("\n[bold]Extractor Info:[/bold]")
        rprint(f"  Name: {extractor_info['name']}")
        rprint(f"  Version: {extractor_info['version']}")
        rprint(f"  Description: {extractor_info['description']}")
    elif pattern is not None:
        rprint("\n[bold]Learned Pattern:[/bold]")
        rprint(f"  Signature: {pattern.signature[:12]}")
        rprint(f"  Confidence: {pattern.confidence:.2f} ({'usable' if pattern.usable else 'not usable'})")


@sources_app.command("sync")
def sync_sources() -> None:
    """
    Register or update sources from config/sources.yaml.

    Examples:
        booth-beacon crawl sources sync
    """
    config = get_default_config()
    if not config.sources:
        rprint("[yellow]No sources configured[/yellow]")
        raise typer.Exit(1)

    init_db()
    with get_session() as session:
        try:
            synced = SourceRegistry(session).sync_from_config(config)
        except RegistryError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    rprint(f"[green]Synced {len(synced)} source(s)[/green] from {config.config_path}")


def _set_enabled(name: str, enabled: bool) -> None:
    with get_session() as session:
        try:
            SourceRegistry(session).set_enabled(name, enabled)
        except (SourceNotFoundError, RegistryError) as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)


@sources_app.command("enable")
def enable_source(
    name: str = typer.Argument(..., help="Source name or id"),
) -> None:
    """
    Enable a source.

    Note: The next sources sync resets this to the YAML value.

    Examples:
        booth-beacon crawl sources enable reddit-analog-booths
    """
    _set_enabled(name, True)
    rprint(f"[green]Source '{name}' enabled[/green]")


@sources_app.command("disable")
def disable_source(
    name: str = typer.Argument(..., help="Source name or id"),
) -> None:
    """
    Disable a source.

    Note: The next sources sync resets this to the YAML value.

    Examples:
        booth-beacon crawl sources disable timeout-chicago
    """
    _set_enabled(name, False)
    rprint(f"[yellow]Source '{name}' disabled[/yellow]")


@sources_app.command("unlock")
def unlock_source(
    name: str = typer.Argument(..., help="Source name or id"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """
    Release a run lock left behind by a crashed run.

    The run is recorded as failed. Stale locks are also reclaimed
    automatically after global.stale_lock_minutes.

    Examples:
        booth-beacon crawl sources unlock photobooth.net
    """
    with get_session() as session:
        registry = SourceRegistry(session)
        try:
            found = registry.load_source(name)
            if found.status != SourceStatus.RUNNING:
                rprint(f"[yellow]Source '{found.name}' is not running[/yellow]")
                return
            if not force and not typer.confirm(f"Release the run lock on '{found.name}'?"):
                raise typer.Exit(0)
            registry.release_run(found.id, SourceStatus.FAILED, "run lock released manually")
        except (SourceNotFoundError, RegistryError) as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    rprint(f"[green]Run lock on '{found.name}' released[/green]")


@sources_app.command("extractors")
def list_source_extractors() -> None:
    """
    List available specialized extractors.

    Examples:
        booth-beacon crawl sources extractors
    """
    table = Table(title="Specialized Extractors")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Description")

    for extractor_name in list_extractors():
        info = get_extractor_info(extractor_name)
        if info:
            table.add_row(info["name"], info["version"], info["description"])

    console.print(table)


# Patterns subcommands


@patterns_app.command("show")
def show_patterns(
    name: str = typer.Argument(..., help="Source name or id"),
) -> None:
    """
    Show learned extraction patterns for a source.

    Examples:
        booth-beacon crawl patterns show timeout-chicago
    """
    with get_session() as session:
        try:
            source = SourceRegistry(session).load_source(name)
            patterns = PatternLearner(session).history(source.id)
        except (SourceNotFoundError, RegistryError) as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    if not patterns:
        rprint(f"[yellow]No patterns learned for '{source.name}'[/yellow]")
        return

    table = Table(title=f"Extraction Patterns: {source.name}")
    table.add_column("Signature", style="bold")
    table.add_column("Container")
    table.add_column("Fields")
    table.add_column("Confidence", justify="right")
    table.add_column("State")
    table.add_column("OK/Fail", justify="right")
    table.add_column("Learned")

    for pattern in patterns:
        if pattern.active and pattern.usable:
            state = "[green]active[/green]"
        elif pattern.active:
            state = "[yellow]below floor[/yellow]"
        else:
            state = "[dim]retired[/dim]"
        table.add_row(
            pattern.signature[:12],
            pattern.container_selector,
            ", ".join(f"{k}={v}" for k, v in pattern.field_selectors.items()),
            f"{pattern.confidence:.2f}",
            state,
            f"{pattern.success_count}/{pattern.failure_count}",
            pattern.learned_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@patterns_app.command("reset")
def reset_patterns(
    name: str = typer.Argument(..., help="Source name or id"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """
    Retire all learned patterns for a source.

    The next run uses the LLM and learns afresh.

    Examples:
        booth-beacon crawl patterns reset timeout-chicago
    """
    if not force and not typer.confirm(f"Retire all patterns for '{name}'?"):
        raise typer.Exit(0)

    with get_session() as session:
        try:
            source = SourceRegistry(session).load_source(name)
            changed = PatternLearner(session).reset(source.id)
        except (SourceNotFoundError, RegistryError) as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    rprint(f"[green]Retired {changed} pattern(s) for '{source.name}'[/green]")
