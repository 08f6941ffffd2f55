"""
Monitor scheduler - recurring changelog sweeps via APScheduler.

A MonitorScheduler owns exactly one sweep job, plus an optional job
that watches the schedule settings. Reconfiguring always removes the
previous sweep job first, so there is never more than one live trigger.
Manual sweeps (check_now) run on the caller's thread and take no lock;
they can overlap a scheduled sweep.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .ledger import VersionLedger
from .pipeline import CheckOutcome, NotificationPipeline, SourceCheckResult
from .settings_store import EMAIL_NOTIFICATIONS_ENABLED, SettingsStore
from .sources import SourceRepository


logger = logging.getLogger(__name__)


SWEEP_JOB_ID = "changelog_sweep"
SETTINGS_WATCH_JOB_ID = "settings_watch"
SETTINGS_POLL_SECONDS = 30

# Canonical periods (in minutes) and their crontab expressions
CANONICAL_TRIGGERS = {
    1: "* * * * *",
    5: "*/5 * * * *",
    15: "*/15 * * * *",
    30: "*/30 * * * *",
    60: "0 * * * *",
    360: "0 */6 * * *",
    720: "0 */12 * * *",
    1440: "0 0 * * *",
    10080: "0 0 * * sun",
    20160: "0 0 1,15 * *",
}


def interval_to_trigger(interval_ms: int) -> Optional[str]:
    """
    Convert a millisecond period into a trigger expression.

    Canonical periods map to minute/hour/day/week/biweekly crontab
    expressions; anything else becomes "every N minutes" with N the
    rounded minute count (at least 1). Returns None for ms <= 0.
    """
    minutes = interval_ms / 60000
    if minutes <= 0:
        return None
    if minutes in CANONICAL_TRIGGERS:
        return CANONICAL_TRIGGERS[int(minutes)]
    return f"*/{max(1, round(minutes))} * * * *"


def build_trigger(interval_ms: int, tz: str = "UTC") -> Optional[Union[CronTrigger, IntervalTrigger]]:
    """
    Build the APScheduler trigger for an interval.

    Non-canonical periods use an IntervalTrigger, since a crontab minute
    step cannot exceed 59.
    """
    expression = interval_to_trigger(interval_ms)
    if expression is None:
        return None
    minutes = interval_ms / 60000
    if minutes in CANONICAL_TRIGGERS:
        return CronTrigger.from_crontab(expression, timezone=tz)
    return IntervalTrigger(minutes=max(1, round(minutes)), timezone=tz)


@dataclass
class MonitorStatus:
    """Snapshot of the monitor for status views."""

    enabled: bool
    interval: int
    last_known_version: Optional[str]
    is_running: bool
    trigger_expression: Optional[str]


def _job_error_listener(event):
    """Log APScheduler EVENT_JOB_ERROR events."""
    logger.error(f"Scheduled job '{event.job_id}' failed: {event.exception}\n{event.traceback or ''}")


class MonitorScheduler:
    """
    Owns the recurring sweep job and runs sweeps over active sources.

    Sources in a sweep are processed strictly one after another; a failing
    source is logged and the sweep continues.
    """

    def __init__(
        self,
        pipeline: NotificationPipeline,
        sources: SourceRepository,
        ledger: VersionLedger,
        settings: SettingsStore,
        scheduler: Optional[BaseScheduler] = None,
        timezone_name: str = "UTC",
    ):
        self.pipeline = pipeline
        self.sources = sources
        self.ledger = ledger
        self.settings = settings
        self.timezone_name = timezone_name
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone_name)
        self._scheduler.add_listener(_job_error_listener, EVENT_JOB_ERROR)
        self._job = None
        self._trigger_expression: Optional[str] = None
        self._applied_settings: Optional[tuple[bool, int]] = None

    @property
    def is_running(self) -> bool:
        return self._job is not None

    @property
    def trigger_expression(self) -> Optional[str]:
        return self._trigger_expression

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def set_interval(self, interval_ms: int, run_immediately: bool = True) -> None:
        """
        (Re)start monitoring with a new period.

        The previous job is cancelled before anything else. ``interval_ms``
        <= 0 leaves monitoring stopped.

        Args:
            interval_ms: Period in milliseconds.
            run_immediately: Also run one sweep right away (on the
                scheduler's worker thread).
        """
        self.stop()

        trigger = build_trigger(interval_ms, self.timezone_name)
        if trigger is None:
            logger.info("Monitoring disabled (no valid interval)")
            return

        expression = interval_to_trigger(interval_ms)
        logger.info(f"Starting monitor: \"{expression}\" (every {interval_ms / 60000:g} minutes)")

        if not self._scheduler.running:
            self._scheduler.start()

        job_kwargs = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)

        self._job = self._scheduler.add_job(
            self._run_scheduled_sweep,
            trigger,
            id=SWEEP_JOB_ID,
            name="Changelog Sweep",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
            replace_existing=True,
            **job_kwargs,
        )
        self._trigger_expression = expression
        logger.info("Monitor started successfully")

    def stop(self) -> None:
        """Cancel and clear the current job, if any."""
        if self._job is None:
            return
        try:
            self._scheduler.remove_job(SWEEP_JOB_ID)
        except LookupError:
            logger.debug("Sweep job already removed")
        self._job = None
        self._trigger_expression = None
        logger.info("Monitor stopped")

    def shutdown(self) -> None:
        """Stop monitoring and shut the underlying scheduler down."""
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def apply_settings(self) -> None:
        """
        Start or stop monitoring from the persisted settings.

        Called at process start and whenever emailNotificationsEnabled or
        notificationCheckInterval changes (see watch_settings).
        """
        enabled, interval_ms = self._applied_settings = self._read_settings()

        if enabled and interval_ms > 0:
            self.set_interval(interval_ms)
        else:
            self.stop()

    def watch_settings(self, poll_seconds: int = SETTINGS_POLL_SECONDS) -> None:
        """
        Follow schedule changes written by other processes.

        Adds a job that re-reads emailNotificationsEnabled and
        notificationCheckInterval every ``poll_seconds`` and calls
        apply_settings() when the pair differs from what was last applied.
        The watch job survives stop(); shutdown() ends it.
        """
        if not self._scheduler.running:
            self._scheduler.start()

        self._scheduler.add_job(
            self._reapply_if_changed,
            IntervalTrigger(seconds=poll_seconds, timezone=self.timezone_name),
            id=SETTINGS_WATCH_JOB_ID,
            name="Settings Watch",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.debug(f"Watching monitor settings every {poll_seconds}s")

    def _read_settings(self) -> tuple[bool, int]:
        return self.settings.is_true(EMAIL_NOTIFICATIONS_ENABLED), self.settings.get_interval_ms()

    def _reapply_if_changed(self) -> None:
        current = self._read_settings()
        if current == self._applied_settings:
            return
        logger.info(f"Monitor settings changed (enabled={current[0]}, interval={current[1]}ms), re-applying")
        self.apply_settings()

    # -------------------------------------------------------------------------
    # Sweeps
    # -------------------------------------------------------------------------

    def _run_scheduled_sweep(self) -> None:
        logger.info(f"Running scheduled check at {datetime.now(timezone.utc).isoformat()}")
        self.check_now()

    def check_now(self) -> list[SourceCheckResult]:
        """
        Run one full sweep over all active sources, synchronously.

        Returns:
            One result per active source, in source order.
        """
        logger.info("Starting changelog check for all active sources...")

        sources = self.sources.list_active()
        if not sources:
            logger.info("No active sources configured")
            return []

        logger.info(f"Checking {len(sources)} source(s)")

        results: list[SourceCheckResult] = []
        for source in sources:
            try:
                result = self.pipeline.check_source(source)
            except Exception as e:
                logger.exception(f"Error checking {source.name}: {e}")
                result = SourceCheckResult(
                    source_id=source.id,
                    source_name=source.name,
                    outcome=CheckOutcome.ERROR,
                    error=str(e),
                )
            results.append(result)

        failed = sum(1 for r in results if not r.ok)
        notified = sum(1 for r in results if r.outcome == CheckOutcome.NOTIFIED)
        logger.info(
            f"Finished checking all sources: {notified} notified, {failed} failed"
        )
        return results

    def status(self) -> MonitorStatus:
        """Current monitor status for display."""
        return MonitorStatus(
            enabled=self.settings.is_true(EMAIL_NOTIFICATIONS_ENABLED),
            interval=self.settings.get_interval_ms(),
            last_known_version=self.ledger.last_known_version(),
            is_running=self.is_running,
            trigger_expression=self._trigger_expression,
        )
