"""
Health Exporter CLI: incremental health data exports.

Usage:
    health-exporter run --provider-url http://localhost:8080 --format json --format sqlite
    health-exporter schedule --interval 30 --tolerance 15
    health-exporter status --state-dir ./state
    health-exporter reset --state-dir ./state --yes
    health-exporter types

Exit codes: 0 success, 2 permission denied, 3 provider or delivery failure
(retry later).
"""

import asyncio
import logging
import sys

import click
from rich.console import Console
from rich.table import Table

from health_exporter.config import Settings, parse_sources
from health_exporter.core.errors import ConfigError, ExportError, PermissionDeniedError

EXIT_PERMISSION_DENIED = 2
EXIT_RETRY_LATER = 3

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _state_option(func):
    return click.option(
        "--state-dir",
        type=click.Path(file_okay=False),
        default=None,
        help="Directory holding the change cursor. [env: HEALTH_EXPORTER_STATE_DIR]",
    )(func)


EXPORT_OPTIONS = [
    click.option("--provider-url", default=None, help="Provider bridge base URL. [env: HEALTH_PROVIDER_URL]"),
    click.option("--token", "-t", default=None, help="Provider bearer token. [env: HEALTH_PROVIDER_TOKEN]"),
    _state_option,
    click.option(
        "--output-dir",
        "-o",
        type=click.Path(file_okay=False),
        default=None,
        help="Where export documents are delivered. [env: HEALTH_EXPORTER_OUTPUT_DIR]",
    ),
    click.option(
        "--format",
        "-f",
        "formats",
        multiple=True,
        default=["json"],
        type=click.Choice(["json", "sqlite"]),
        help="Delivery sink(s). Repeat for several.",
    ),
    click.option("--lookback-days", type=int, default=None, help="Window of the full export."),
    click.option("--min-exercise-minutes", type=int, default=None, help="Drop shorter exercise sessions."),
    click.option("--sources", default=None, help="Comma-separated allow-list of source packages."),
    click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging."),
]


def export_options(func):
    """Options shared by ``run`` and ``schedule``."""
    for option in reversed(EXPORT_OPTIONS):
        func = option(func)
    return func


def _settings(**overrides) -> Settings:
    if overrides.get("allowed_sources") is not None:
        overrides["allowed_sources"] = parse_sources(overrides["allowed_sources"])
    try:
        return Settings.from_env().override(**overrides)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def _print_report(report) -> None:
    table = Table(title=f"{report.outcome.value.upper()} export ({report.trigger})")
    table.add_column("Type", style="cyan")
    table.add_column("Records", justify="right")
    for name, count in report.counts.items():
        table.add_row(name, str(count))
    if report.deletions:
        table.add_row("[red]deletions[/red]", str(report.deletions))
    console.print(table)

    if report.fell_back:
        console.print("[yellow]Change cursor had expired; a full export was produced instead.[/yellow]")
    if report.failed_types:
        console.print(f"[yellow]Failed types (exported empty): {', '.join(report.failed_types)}[/yellow]")
    if report.skipped_categories:
        console.print(f"[dim]Skipped untracked categories: {', '.join(report.skipped_categories)}[/dim]")
    console.print(f"[green]Done in {report.duration_seconds:.1f}s[/green]")


async def _with_engine(settings: Settings, formats, action):
    """Wire provider, registry, store and sinks, run ``action(orchestrator)``, clean up."""
    from health_exporter.core.cursor_store import CursorStore
    from health_exporter.core.orchestrator import ExportOrchestrator
    from health_exporter.provider.http import HttpHealthProvider
    from health_exporter.readers import default_registry
    from health_exporter.sinks import get_sink

    provider = HttpHealthProvider(
        settings.require_provider(), token=settings.token, timeout=settings.request_timeout
    )
    sinks = [get_sink(fmt, settings.output_dir) for fmt in dict.fromkeys(formats)]
    try:
        orchestrator = ExportOrchestrator(
            provider=provider,
            registry=default_registry(provider, settings),
            cursor_store=CursorStore(settings.cursor_path),
            sinks=sinks,
            settings=settings,
        )
        return await action(orchestrator)
    finally:
        for sink in sinks:
            await sink.close()
        await provider.close()


def _exit_for(error: ExportError) -> None:
    if isinstance(error, PermissionDeniedError):
        console.print(f"[red]Permission denied:[/red] {error}")
        sys.exit(EXIT_PERMISSION_DENIED)
    if isinstance(error, ConfigError):
        raise click.ClickException(str(error))
    if error.retryable:
        console.print(f"[red]Export failed, retry later:[/red] {error}")
        sys.exit(EXIT_RETRY_LATER)
    console.print(f"[red]Export failed:[/red] {error}")
    sys.exit(1)


@click.group()
@click.version_option(package_name="health-exporter")
def cli():
    """Health Exporter: incremental exports of health records."""
    pass


@cli.command()
@export_options
def run(provider_url, token, state_dir, output_dir, formats, lookback_days, min_exercise_minutes, sources, verbose):
    """Run one export now (full on first run, differential afterwards)."""
    _configure_logging(verbose)
    settings = _settings(
        provider_url=provider_url,
        token=token,
        state_dir=state_dir,
        output_dir=output_dir,
        lookback_days=lookback_days,
        min_exercise_minutes=min_exercise_minutes,
        allowed_sources=sources,
    )

    try:
        report = asyncio.run(_with_engine(settings, formats, lambda o: o.run("manual")))
    except ExportError as e:
        _exit_for(e)
    _print_report(report)


@cli.command()
@export_options
@click.option("--interval", type=int, default=None, help="Minutes between exports.")
@click.option("--tolerance", type=int, default=None, help="Flex window in minutes at the end of each interval.")
@click.option("--max-runs", type=int, default=None, hidden=True)
def schedule(
    provider_url,
    token,
    state_dir,
    output_dir,
    formats,
    lookback_days,
    min_exercise_minutes,
    sources,
    verbose,
    interval,
    tolerance,
    max_runs,
):
    """Export periodically until interrupted or permission is revoked."""
    from health_exporter.core.scheduler import ExportScheduler, SchedulerStatus

    _configure_logging(verbose)
    settings = _settings(
        provider_url=provider_url,
        token=token,
        state_dir=state_dir,
        output_dir=output_dir,
        lookback_days=lookback_days,
        min_exercise_minutes=min_exercise_minutes,
        allowed_sources=sources,
        interval_minutes=interval,
        tolerance_minutes=tolerance,
    )

    async def loop(orchestrator):
        scheduler = ExportScheduler(
            orchestrator,
            interval_minutes=settings.interval_minutes,
            tolerance_minutes=settings.tolerance_minutes,
        )
        await scheduler.run_forever(max_runs=max_runs)
        return scheduler

    console.print(
        f"[cyan]Exporting every {settings.interval_minutes} min "
        f"(tolerance {settings.tolerance_minutes} min). Ctrl+C to stop.[/cyan]"
    )
    try:
        scheduler = asyncio.run(_with_engine(settings, formats, loop))
    except KeyboardInterrupt:
        console.print("[yellow]Stopped.[/yellow]")
        return
    except ExportError as e:
        _exit_for(e)

    if scheduler.status is SchedulerStatus.STOPPED:
        _exit_for(scheduler.last_error)
    console.print(f"[green]{scheduler.runs} runs, {scheduler.dropped} dropped triggers[/green]")


@cli.command()
@_state_option
def status(state_dir):
    """Show cursor state and the time of the last successful export."""
    from health_exporter.core.cursor_store import CursorStore

    settings = _settings(state_dir=state_dir)
    store = CursorStore(settings.cursor_path)
    cursor = store.load()

    table = Table(title="Export state")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("cursor file", str(store.path))
    table.add_row("state", "steady" if cursor else "uninitialized")
    table.add_row("cursor", f"{cursor[:16]}…" if cursor and len(cursor) > 16 else (cursor or "-"))
    saved_at = store.last_saved_at
    table.add_row("last saved", saved_at.isoformat() if saved_at else "-")
    console.print(table)


@cli.command()
@_state_option
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
def reset(state_dir, yes):
    """Forget the stored cursor so the next run produces a full export."""
    from health_exporter.core.cursor_store import CursorStore

    settings = _settings(state_dir=state_dir)
    if not yes:
        click.confirm("Clear the stored cursor? The next export will be a full export", abort=True)
    CursorStore(settings.cursor_path).clear()
    console.print("[green]Cursor cleared.[/green]")


@cli.command(name="types")
def list_types():
    """List tracked record types and their document keys."""
    from health_exporter.models.record import TrackedRecordType

    for record_type in TrackedRecordType:
        click.echo(f"{record_type.value:<22} {record_type.records_key:<30} {record_type.changes_key}")


if __name__ == "__main__":
    cli()
