"""
Per-source notification pipeline.

For one source: fetch -> parse latest -> compare with the ledger ->
analyze -> synthesize audio -> email -> mark notified. Every step's
failure is turned into a SourceCheckResult instead of propagating, so a
sweep can log it and move on to the next source.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .analyzer import AnalysisCache, AnalysisError, ChangelogAnalysis, analyze_changelog
from .changelog_parser import LatestSection, parse_latest_version
from .config import Config
from .email_client import (
    EmailError,
    attachment_filename,
    build_changelog_email_html,
    build_subject,
    send_email,
)
from .fetcher import FetchError, fetch_changelog
from .ledger import VersionLedger
from .settings_store import (
    ALWAYS_SEND_EMAIL,
    EMAIL_NOTIFICATIONS_ENABLED,
    NOTIFICATION_VOICE,
    SettingsStore,
)
from .sources import Source, SourceNotFoundError, SourceRepository
from .tts_engine import AudioClip, TTSConfig, TTSEngine, TTSEngineError, synthesize_audio


logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when a changelog has no recognizable version header."""
    pass


class CheckOutcome(str, Enum):
    """How a single source check ended."""

    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"
    RECORDED_ONLY = "recorded_only"      # notifications disabled
    UNCHANGED = "unchanged"
    ANALYSIS_FAILED = "analysis_failed"
    SEND_FAILED = "send_failed"
    NOTIFIED = "notified"
    ERROR = "error"                      # unexpected exception, set by the sweep loop


@dataclass
class SourceCheckResult:
    """Result of checking one source."""

    source_id: str
    source_name: str
    outcome: CheckOutcome
    version: Optional[str] = None
    is_new: bool = False
    audio_attached: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome in (CheckOutcome.RECORDED_ONLY, CheckOutcome.UNCHANGED, CheckOutcome.NOTIFIED)


class NotificationPipeline:
    """Runs the fetch/diff/notify sequence for a single source."""

    def __init__(
        self,
        config: Config,
        ledger: VersionLedger,
        settings: SettingsStore,
        sources: SourceRepository,
        analysis_cache: Optional[AnalysisCache] = None,
        tts_engine: Optional[TTSEngine] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.settings = settings
        self.sources = sources
        self.analysis_cache = analysis_cache
        self._tts_engine = tts_engine

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def fetch_latest(self, url: str) -> LatestSection:
        """
        Fetch a changelog and extract its newest section.

        Raises:
            FetchError: If fetching fails after retries.
            ParseError: If no version header is present.
        """
        markdown = fetch_changelog(url, retries=self.config.fetch_retries)
        latest = parse_latest_version(markdown)
        if latest is None:
            raise ParseError(f"Could not parse a version header from {url}")
        return latest

    def analyze(self, latest: LatestSection, display_version: str) -> ChangelogAnalysis:
        """
        Analyze a release, using the cache when available.

        Raises:
            AnalysisError: If the analysis service fails.
        """
        if self.analysis_cache:
            cached = self.analysis_cache.get(display_version)
            if cached:
                logger.info(f"Using cached analysis for {display_version}")
                return cached

        analysis = analyze_changelog(
            latest.content,
            model=self.config.ollama_model,
            base_url=self.config.ollama_base_url,
        )
        analysis.version = display_version

        if self.analysis_cache:
            self.analysis_cache.save(analysis)
        return analysis

    def _get_tts_engine(self) -> Optional[TTSEngine]:
        if not self.config.tts_enabled:
            return None
        if self._tts_engine is None:
            try:
                self._tts_engine = TTSEngine(TTSConfig(
                    model_name=self.config.tts_model,
                    language=self.config.tts_language,
                    speaker=self.config.tts_voice,
                    speed=self.config.tts_speed,
                    output_dir=self.config.tts_output_dir,
                    use_cuda=self.config.tts_use_cuda,
                ))
            except (TTSEngineError, OSError) as e:
                logger.error(f"TTS engine initialization failed: {e}")
                return None
        return self._tts_engine

    def synthesize(self, text: str, voice: Optional[str] = None) -> Optional[AudioClip]:
        """Best-effort audio summary; None when disabled or failed."""
        engine = self._get_tts_engine()
        if engine is None:
            logger.info("TTS is disabled, skipping audio generation")
            return None
        return synthesize_audio(engine, text, voice=voice or self.settings.get(NOTIFICATION_VOICE))

    def send(self, analysis: ChangelogAnalysis, audio: Optional[AudioClip]) -> None:
        """
        Email the analysis.

        Raises:
            EmailError: If sending fails.
        """
        html = build_changelog_email_html(analysis, has_audio=audio is not None)
        send_email(
            self.config,
            build_subject(analysis),
            html,
            attachment=audio,
            attachment_name=attachment_filename(analysis.version, audio.extension) if audio else None,
        )

    # -------------------------------------------------------------------------
    # Orchestration
    # -------------------------------------------------------------------------

    def check_source(self, source: Source) -> SourceCheckResult:
        """
        Check one source and notify if warranted.

        Args:
            source: The source to check.

        Returns:
            SourceCheckResult describing where the pipeline stopped.
        """
        def result(outcome: CheckOutcome, **kwargs) -> SourceCheckResult:
            return SourceCheckResult(source_id=source.id, source_name=source.name, outcome=outcome, **kwargs)

        logger.info(f"Checking source: {source.name} ({source.url})")

        try:
            latest = self.fetch_latest(source.url)
        except FetchError as e:
            logger.error(f"{source.name}: {e}")
            return result(CheckOutcome.FETCH_FAILED, error=str(e))
        except ParseError as e:
            logger.warning(f"{source.name}: {e}")
            return result(CheckOutcome.PARSE_FAILED, error=str(e))

        last_known = self.ledger.last_known_version(source.id)
        is_new = last_known != latest.version
        logger.info(f"{source.name}: latest {latest.version}, last known {last_known}")

        if not self.settings.is_true(EMAIL_NOTIFICATIONS_ENABLED):
            logger.info(f"Email notifications disabled, recording {source.name} {latest.version} only")
            self.ledger.record_if_new(latest.version, source.id)
            return result(CheckOutcome.RECORDED_ONLY, version=latest.version, is_new=is_new)

        if not is_new and not self.settings.is_true(ALWAYS_SEND_EMAIL):
            logger.info(f"{source.name}: no new version and always-send disabled")
            self.ledger.touch(source.id)
            return result(CheckOutcome.UNCHANGED, version=latest.version)

        if is_new:
            logger.info(f"{source.name}: new version detected: {latest.version}")
            # Recorded before analysis so a crash later does not redetect it
            self.ledger.record_if_new(latest.version, source.id)
        else:
            logger.info(f"{source.name}: sending scheduled email for current version")

        display_version = f"{source.name} {latest.version}"
        try:
            analysis = self.analyze(latest, display_version)
        except AnalysisError as e:
            logger.error(f"Failed to analyze changelog for {source.name}: {e}")
            return result(CheckOutcome.ANALYSIS_FAILED, version=latest.version, is_new=is_new, error=str(e))

        audio = self.synthesize(analysis.tldr)

        try:
            self.send(analysis, audio)
        except EmailError as e:
            # Not retried: the version is already recorded, so the next
            # sweep sees it as known unless alwaysSendEmail is on.
            logger.error(f"Failed to send notification for {source.name}: {e}")
            return result(
                CheckOutcome.SEND_FAILED,
                version=latest.version,
                is_new=is_new,
                audio_attached=audio is not None,
                error=str(e),
            )

        self.ledger.mark_notified(latest.version, source.id)
        logger.info(f"Notification sent for {source.name} {latest.version}")
        return result(
            CheckOutcome.NOTIFIED,
            version=latest.version,
            is_new=is_new,
            audio_attached=audio is not None,
        )

    def send_demo(self, source_id: Optional[str] = None, voice: Optional[str] = None) -> str:
        """
        Send a notification for a source's current version on demand.

        Uses the given source, else the first active one, else the
        configured default URL. The ledger is not touched.

        Returns:
            The version that was sent.

        Raises:
            SourceNotFoundError, FetchError, ParseError, AnalysisError, EmailError
        """
        if source_id:
            source = self.sources.get(source_id)
            if source is None:
                raise SourceNotFoundError(f"Source not found: {source_id}")
            name, url = source.name, source.url
        else:
            active = self.sources.list_active()
            if active:
                name, url = active[0].name, active[0].url
            else:
                name, url = "Claude Code", self.config.default_changelog_url

        logger.info(f"[Demo] Fetching changelog from {name}...")
        latest = self.fetch_latest(url)

        logger.info(f"[Demo] Analyzing {name} version {latest.version}...")
        analysis = self.analyze(latest, f"{name} {latest.version}")

        audio = self.synthesize(analysis.tldr, voice=voice)
        self.send(analysis, audio)
        logger.info("[Demo] Demo email sent successfully!")
        return latest.version
