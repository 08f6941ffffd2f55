"""
Changelog analysis using Ollama (local LLM).

Turns the newest changelog section into a structured summary (TL;DR,
categorized highlights, action items, sentiment) that drives the
notification email and the audio summary.
"""

import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import requests

from .database import DatabaseConnection


logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Raised when the analysis service fails or returns unusable output."""
    pass


@dataclass
class Removal:
    """A removed feature with its impact."""

    feature: str
    severity: str = ""
    why: str = ""


@dataclass
class AnalysisCategories:
    """Categorized highlights of a release."""

    critical_breaking_changes: list[str] = field(default_factory=list)
    removals: list[Removal] = field(default_factory=list)
    major_features: list[str] = field(default_factory=list)
    important_fixes: list[str] = field(default_factory=list)
    new_slash_commands: list[str] = field(default_factory=list)
    terminal_improvements: list[str] = field(default_factory=list)
    api_changes: list[str] = field(default_factory=list)


@dataclass
class ChangelogAnalysis:
    """Structured summary of one release."""

    version: str
    tldr: str
    categories: AnalysisCategories = field(default_factory=AnalysisCategories)
    action_items: list[str] = field(default_factory=list)
    sentiment: str = "neutral"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Trace logging
# =============================================================================

_trace_loggers: dict[str, logging.Logger] = {}


def _trace_logger_for(model: str) -> logging.Logger:
    """
    File logger that records every prompt/response pair for a model.

    One file per model per process, under logs/ as
    <model>_trace_<YYYYmmdd_HHMMSS>.log. Trace records do not reach the
    console.
    """
    if model in _trace_loggers:
        return _trace_loggers[model]

    slug = re.sub(r"[^\w.-]", "_", model)
    Path("logs").mkdir(exist_ok=True)
    trace_path = Path("logs") / f"{slug}_trace_{datetime.now():%Y%m%d_%H%M%S}.log"

    handler = logging.FileHandler(trace_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s\n%(message)s\n", datefmt="%Y-%m-%d %H:%M:%S"))

    trace = logging.getLogger(f"changelog_bot.trace.{slug}")
    trace.setLevel(logging.DEBUG)
    trace.propagate = False
    trace.addHandler(handler)

    logger.info(f"Recording {model} prompts and responses in {trace_path}")
    _trace_loggers[model] = trace
    return trace


def _record_exchange(trace: logging.Logger, model: str, prompt: str, reply: str, elapsed_ms: float) -> None:
    rule = "-" * 72
    trace.debug(
        f"{rule}\n{model} answered in {elapsed_ms:.0f}ms\n{rule}\n"
        f"[prompt]\n{prompt}\n\n[reply]\n{reply}\n"
    )


PROMPT_TEMPLATE = """Analyze this changelog and return JSON:
{{
  "tldr": "150-200 word summary",
  "categories": {{
    "critical_breaking_changes": [],
    "removals": [{{"feature": "", "severity": "", "why": ""}}],
    "major_features": [],
    "important_fixes": [],
    "new_slash_commands": [],
    "terminal_improvements": [],
    "api_changes": []
  }},
  "action_items": [],
  "sentiment": "positive|neutral|critical"
}}

Changelog:
{changelog}"""


# =============================================================================
# Response parsing
# =============================================================================

def _extract_json(text: str) -> dict[str, Any]:
    """
    Parse model output as JSON, falling back to the outermost {...} block.

    Raises:
        AnalysisError: If no JSON object can be recovered.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", text)
        if not match:
            raise AnalysisError("Analysis response contained no JSON object")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise AnalysisError(f"Analysis response is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise AnalysisError("Analysis response is not a JSON object")
    return data


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item]


def _parse_removals(value: Any) -> list[Removal]:
    if not isinstance(value, list):
        return []
    removals = []
    for item in value:
        if isinstance(item, dict) and item.get("feature"):
            removals.append(Removal(
                feature=str(item["feature"]),
                severity=str(item.get("severity", "")),
                why=str(item.get("why", "")),
            ))
    return removals


def analysis_from_dict(data: dict[str, Any], version: str = "") -> ChangelogAnalysis:
    """
    Build a ChangelogAnalysis from a decoded JSON payload.

    Missing list fields default to empty.

    Raises:
        AnalysisError: If the payload has no usable tldr.
    """
    tldr = data.get("tldr")
    if not isinstance(tldr, str) or not tldr.strip():
        raise AnalysisError("Analysis response is missing a tldr")

    raw_categories = data.get("categories")
    if not isinstance(raw_categories, dict):
        raw_categories = {}

    categories = AnalysisCategories(
        critical_breaking_changes=_string_list(raw_categories.get("critical_breaking_changes")),
        removals=_parse_removals(raw_categories.get("removals")),
        major_features=_string_list(raw_categories.get("major_features")),
        important_fixes=_string_list(raw_categories.get("important_fixes")),
        new_slash_commands=_string_list(raw_categories.get("new_slash_commands")),
        terminal_improvements=_string_list(raw_categories.get("terminal_improvements")),
        api_changes=_string_list(raw_categories.get("api_changes")),
    )

    return ChangelogAnalysis(
        version=str(data.get("version") or version),
        tldr=tldr.strip(),
        categories=categories,
        action_items=_string_list(data.get("action_items")),
        sentiment=str(data.get("sentiment") or "neutral"),
    )


# =============================================================================
# Ollama client
# =============================================================================

def analyze_changelog(
    changelog_text: str,
    model: str,
    base_url: str,
    timeout: int = 180,
) -> ChangelogAnalysis:
    """
    Analyze a changelog section using Ollama.

    Args:
        changelog_text: Verbatim section text of the release.
        model: Ollama model name (e.g., "llama3").
        base_url: Ollama API base URL.
        timeout: Request timeout in seconds.

    Returns:
        Structured analysis. The version field is left empty for the
        caller to fill in.

    Raises:
        AnalysisError: If the request fails or the output is unusable.
    """
    trace = _trace_logger_for(model)
    prompt = PROMPT_TEMPLATE.format(changelog=changelog_text)

    started = time.monotonic()
    try:
        response = requests.post(
            f"{base_url.rstrip('/')}/api/generate",
            json={
                "model": model,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {"temperature": 0.2},
            },
            timeout=timeout,
        )
        response.raise_for_status()
    except requests.Timeout:
        raise AnalysisError(f"Ollama request timed out after {timeout}s")
    except requests.RequestException as e:
        raise AnalysisError(f"Failed to connect to Ollama: {e}")
    elapsed_ms = (time.monotonic() - started) * 1000

    try:
        reply = response.json().get("response", "")
    except ValueError as e:
        raise AnalysisError(f"Ollama returned a non-JSON body: {e}")

    _record_exchange(trace, model, prompt, reply, elapsed_ms)

    if not reply:
        raise AnalysisError("Ollama returned empty response")

    analysis = analysis_from_dict(_extract_json(reply))
    logger.info(f"Changelog analyzed in {elapsed_ms:.0f}ms (sentiment: {analysis.sentiment})")
    return analysis


# =============================================================================
# Analysis cache
# =============================================================================

class AnalysisCache:
    """Stores analyses keyed by display version (e.g. "Claude Code 1.0.50")."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def get(self, version: str) -> Optional[ChangelogAnalysis]:
        """Return the cached analysis, or None if absent or unreadable."""
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT analysis_json FROM analysis_cache WHERE version = ?", (version,)
            ).fetchone()
        if not row:
            return None
        try:
            return analysis_from_dict(json.loads(row["analysis_json"]), version=version)
        except (json.JSONDecodeError, AnalysisError) as e:
            logger.warning(f"Ignoring corrupt cached analysis for {version}: {e}")
            return None

    def save(self, analysis: ChangelogAnalysis) -> None:
        """Insert or replace the analysis for its version."""
        with self._db.conn() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO analysis_cache (version, analysis_json, created_at)
                   VALUES (?, ?, ?)""",
                (analysis.version, json.dumps(analysis.to_dict()), datetime.now(timezone.utc).isoformat()),
            )

    def list_versions(self) -> list[str]:
        """Cached versions, newest first."""
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT version FROM analysis_cache ORDER BY created_at DESC"
            ).fetchall()
        return [row["version"] for row in rows]
