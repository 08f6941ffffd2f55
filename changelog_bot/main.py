#!/usr/bin/env python3
"""
Main entry point for the changelog monitor bot.

Wires the database, ledger, pipeline and scheduler together and exposes
them as a click command group:

    changelog-bot run             # monitor on the configured interval
    changelog-bot check           # one sweep over all active sources
    changelog-bot sources add NAME URL
"""

import logging
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .analyzer import AnalysisCache, AnalysisError
from .changelog_parser import parse_changelog, parse_latest_version
from .categorizer import count_by_kind
from .config import Config, ConfigError, load_config
from .database import DatabaseConnection
from .email_client import EmailError
from .fetcher import FetchError, fetch_changelog
from .ledger import VersionLedger
from .pipeline import NotificationPipeline, ParseError
from .scheduler import SETTINGS_POLL_SECONDS, MonitorScheduler, interval_to_trigger
from .settings_store import (
    EMAIL_NOTIFICATIONS_ENABLED,
    NOTIFICATION_CHECK_INTERVAL,
    SettingsStore,
)
from .sources import SourceError, SourceRepository


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_log_handlers: list[logging.Handler] = []


def _setup_logging(level: int = logging.INFO) -> Path:
    """
    Send log records to stderr and to logs/monitor_<timestamp>.log.

    Calling it again replaces (and closes) the handlers from the previous
    call. Returns the log file path.
    """
    log_file = Path("logs") / f"monitor_{datetime.now():%Y%m%d_%H%M%S}.log"
    log_file.parent.mkdir(exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    while _log_handlers:
        old = _log_handlers.pop()
        root.removeHandler(old)
        old.close()

    formatter = logging.Formatter(LOG_FORMAT, "%Y-%m-%d %H:%M:%S")
    for handler in (logging.StreamHandler(sys.stderr), logging.FileHandler(log_file, encoding="utf-8")):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _log_handlers.append(handler)

    return log_file


@dataclass
class App:
    """Wired application components."""

    config: Config
    db: DatabaseConnection
    settings: SettingsStore
    sources: SourceRepository
    ledger: VersionLedger
    pipeline: NotificationPipeline
    monitor: MonitorScheduler


def create_app(config: Config) -> App:
    """Build all components from configuration."""
    db = DatabaseConnection(config.database_path, default_source_url=config.default_changelog_url)
    settings = SettingsStore(db)
    sources = SourceRepository(db)
    ledger = VersionLedger(db)
    pipeline = NotificationPipeline(
        config=config,
        ledger=ledger,
        settings=settings,
        sources=sources,
        analysis_cache=AnalysisCache(db),
    )
    monitor = MonitorScheduler(
        pipeline=pipeline,
        sources=sources,
        ledger=ledger,
        settings=settings,
        timezone_name=config.scheduler_timezone,
    )
    return App(
        config=config,
        db=db,
        settings=settings,
        sources=sources,
        ledger=ledger,
        pipeline=pipeline,
        monitor=monitor,
    )


pass_app = click.make_pass_decorator(App)


@click.group()
@click.version_option(__version__)
@click.option("--env-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Path to a .env file.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, env_file: Optional[Path], verbose: bool) -> None:
    """Monitor software changelogs and email AI summaries of new releases."""
    log_file = _setup_logging(logging.DEBUG if verbose else logging.INFO)
    logger.debug(f"Log file: {log_file.absolute()}")

    try:
        config = load_config(env_file)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    ctx.obj = create_app(config)


# =============================================================================
# Monitoring
# =============================================================================

@cli.command()
@click.option("--interval", "interval_ms", type=int, default=None,
              help="Check interval in milliseconds (overrides and persists the setting).")
@pass_app
def run(app: App, interval_ms: Optional[int]) -> None:
    """Run the monitor until interrupted."""
    if interval_ms is not None:
        app.settings.set(NOTIFICATION_CHECK_INTERVAL, str(interval_ms))

    app.monitor.apply_settings()
    if not app.monitor.is_running:
        logger.error(
            "Monitoring is not enabled: set emailNotificationsEnabled=true "
            "and a positive notificationCheckInterval"
        )
        sys.exit(1)

    app.monitor.watch_settings()
    logger.info(f"Monitor running ({app.monitor.trigger_expression}); press Ctrl+C to stop")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        app.monitor.shutdown()


@cli.command()
@pass_app
def check(app: App) -> None:
    """Check all active sources once."""
    results = app.monitor.check_now()
    for result in results:
        line = f"{result.source_name}: {result.outcome.value}"
        if result.version:
            line += f" ({result.version})"
        if result.error:
            line += f" - {result.error}"
        click.echo(line)


@cli.command()
@pass_app
def status(app: App) -> None:
    """
    Show monitor settings and the last known version.

    The trigger shown is the one the stored settings select; a `run`
    process picks it up within its settings poll.
    """
    current = app.monitor.status()
    trigger = interval_to_trigger(current.interval) if current.enabled else None
    click.echo(f"Enabled:            {current.enabled}")
    click.echo(f"Interval (ms):      {current.interval}")
    click.echo(f"Last known version: {current.last_known_version or '-'}")
    click.echo(f"Configured trigger: {trigger or '-'}")


@cli.command()
@click.option("--limit", default=20, show_default=True)
@pass_app
def history(app: App, limit: int) -> None:
    """Show recently detected versions."""
    for record in app.ledger.history(limit):
        flag = "notified" if record.notified else "pending"
        click.echo(f"{record.detected_at}  {record.source_id}  {record.version}  {flag}")


@cli.command()
@click.option("--source-id", default=None, help="Source to use (default: first active source).")
@click.option("--voice", default=None, help="TTS speaker for the audio summary.")
@pass_app
def demo(app: App, source_id: Optional[str], voice: Optional[str]) -> None:
    """Send a notification for a source's current version now."""
    try:
        version = app.pipeline.send_demo(source_id=source_id, voice=voice)
    except (SourceError, FetchError, ParseError, AnalysisError, EmailError) as e:
        logger.error(f"Demo email failed: {e}")
        sys.exit(1)
    click.echo(f"Sent demo email for {version}")


# =============================================================================
# Settings
# =============================================================================

@cli.group()
def settings() -> None:
    """Read and write runtime settings."""


@settings.command("list")
@pass_app
def settings_list(app: App) -> None:
    """List all settings."""
    for key, value in sorted(app.settings.get_all().items()):
        click.echo(f"{key}={value}")


@settings.command("set")
@click.argument("key")
@click.argument("value")
@pass_app
def settings_set(app: App, key: str, value: str) -> None:
    """Set a setting (e.g. emailNotificationsEnabled true)."""
    app.settings.set(key, value)
    click.echo(f"{key}={value}")
    if key in (EMAIL_NOTIFICATIONS_ENABLED, NOTIFICATION_CHECK_INTERVAL):
        click.echo(f"A running monitor applies this within {SETTINGS_POLL_SECONDS}s.")


# =============================================================================
# Sources
# =============================================================================

@cli.group()
def sources() -> None:
    """Manage monitored changelog sources."""


@sources.command("list")
@pass_app
def sources_list(app: App) -> None:
    """List all sources."""
    for source in app.sources.list_all():
        state = "active" if source.is_active else "inactive"
        click.echo(
            f"{source.id}  {source.name}  [{state}]  "
            f"last={source.last_version or '-'}  {source.url}"
        )


@sources.command("add")
@click.argument("name")
@click.argument("url")
@pass_app
def sources_add(app: App, name: str, url: str) -> None:
    """Register a new source."""
    try:
        source = app.sources.create(name, url)
    except SourceError as e:
        raise click.ClickException(str(e))
    click.echo(f"Added {source.id}")


@sources.command("update")
@click.argument("source_id")
@click.option("--name", default=None)
@click.option("--url", default=None)
@pass_app
def sources_update(app: App, source_id: str, name: Optional[str], url: Optional[str]) -> None:
    """Rename a source or change its URL."""
    try:
        app.sources.update(source_id, name=name, url=url)
    except (SourceError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"Updated {source_id}")


@sources.command("activate")
@click.argument("source_id")
@pass_app
def sources_activate(app: App, source_id: str) -> None:
    """Resume monitoring a source."""
    try:
        app.sources.activate(source_id)
    except SourceError as e:
        raise click.ClickException(str(e))
    click.echo(f"Activated {source_id}")


@sources.command("deactivate")
@click.argument("source_id")
@pass_app
def sources_deactivate(app: App, source_id: str) -> None:
    """Stop monitoring a source (history is kept)."""
    try:
        app.sources.deactivate(source_id)
    except SourceError as e:
        raise click.ClickException(str(e))
    click.echo(f"Deactivated {source_id}")


@sources.command("remove")
@click.argument("source_id")
@click.confirmation_option(prompt="Delete this source and its version history?")
@pass_app
def sources_remove(app: App, source_id: str) -> None:
    """Delete a source and its version history."""
    try:
        app.sources.delete(source_id)
    except SourceError as e:
        raise click.ClickException(str(e))
    click.echo(f"Removed {source_id}")


# Characters of the newest section shown by "sources test"
PREVIEW_CHARS = 500


@sources.command("test")
@click.argument("url")
@click.option("--all-versions", is_flag=True, help="Summarize every version, not just the latest.")
@pass_app
def sources_test(app: App, url: str, all_versions: bool) -> None:
    """Fetch a URL and show what the parser finds."""
    try:
        markdown = fetch_changelog(url, retries=app.config.fetch_retries)
    except FetchError as e:
        raise click.ClickException(f"Failed to fetch URL: {e}")

    versions = parse_changelog(markdown)
    if not versions:
        raise click.ClickException(
            'Could not parse version from this URL. Make sure it contains '
            'markdown with version headers like "## 1.0.0"'
        )

    shown = versions if all_versions else versions[:1]
    for version in shown:
        counts = count_by_kind(version.items)
        summary = ", ".join(f"{kind}={n}" for kind, n in counts.items() if n)
        click.echo(f"{version.version}  {version.date or '-'}  {summary or 'no items'}")

    latest = parse_latest_version(markdown)
    if latest:
        preview = latest.content[:PREVIEW_CHARS]
        if len(latest.content) > PREVIEW_CHARS:
            preview += "..."
        click.echo(f"\n{preview}")


def main() -> None:
    """CLI entry point."""
    cli(prog_name="changelog-bot")


if __name__ == "__main__":
    main()
