"""
Changelog Markdown parsing.

Turns raw changelog Markdown into ordered version records with
categorized items. Two header styles are common in the wild and both
are accepted:

    ## 1.0.50 - 2024-01-12              (Claude Code style)
    # [2.3.0](https://...) (2026-01-05)  (n8n style, single '#')

Only the bullet's own line is captured; continuation prose under a
bullet is ignored.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .categorizer import ItemKind, classify_item


logger = logging.getLogger(__name__)


VERSION_HEADER_PATTERN = re.compile(r"^#{1,2}\s+\[?(\d+\.\d+\.\d+(?:-[a-zA-Z0-9.]+)?)\]?")

# Date in parentheses at the end of the line: "(2026-01-05)"
DATE_IN_PARENS_PATTERN = re.compile(r"\((\d{4}-\d{2}-\d{2})\)\s*$")

# Date after a hyphen or en-dash: "- 2024-01-12" or "– January 12, 2024"
DATE_AFTER_DASH_PATTERN = re.compile(r"[-–]\s*(\d{4}-\d{2}-\d{2}|\w+\s+\d+,?\s*\d{4})")

BULLET_PREFIXES = ("- ", "* ")

UNKNOWN_VERSION = "Unknown"


@dataclass(frozen=True)
class ChangelogItem:
    """A single classified changelog bullet."""

    kind: ItemKind
    content: str


@dataclass
class ParsedVersion:
    """One version section of a changelog."""

    version: str
    date: str = ""
    items: list[ChangelogItem] = field(default_factory=list)
    source_id: Optional[str] = None
    source_name: Optional[str] = None


@dataclass
class LatestSection:
    """The newest version section, kept verbatim for the analysis prompt."""

    version: str
    content: str
    date: str = ""


def extract_header_date(line: str) -> str:
    """
    Extract a release date from a version header line.

    Tries a parenthesized ISO date at the end of the line first, then a
    date following a hyphen/en-dash. Returns "" when neither matches.
    """
    match = DATE_IN_PARENS_PATTERN.search(line)
    if match:
        return match.group(1)

    match = DATE_AFTER_DASH_PATTERN.search(line)
    if match:
        return match.group(1).strip()

    return ""


def match_version_header(line: str) -> Optional[str]:
    """Return the version string if ``line`` is a version header."""
    match = VERSION_HEADER_PATTERN.match(line)
    return match.group(1) if match else None


def parse_changelog(
    markdown: str,
    source_id: Optional[str] = None,
    source_name: Optional[str] = None,
    release_dates: Optional[dict[str, str]] = None,
) -> list[ParsedVersion]:
    """
    Parse a changelog document into version records.

    Versions are returned in document order; nothing is reordered.
    Headers that are not a MAJOR.MINOR.PATCH triplet (e.g. "## Unreleased")
    are skipped along with their bullets.

    Args:
        markdown: Raw changelog text.
        source_id: Optional source id stamped on each version.
        source_name: Optional source name stamped on each version.
        release_dates: Optional version -> date lookup used when the
            header line carries no date (e.g. from GitHub Releases).

    Returns:
        List of ParsedVersion objects, empty if no header matched.
    """
    versions: list[ParsedVersion] = []
    current: Optional[ParsedVersion] = None

    for line in markdown.split("\n"):
        version_number = match_version_header(line)

        if version_number:
            if current:
                versions.append(current)

            date = extract_header_date(line)
            if not date and release_dates:
                date = release_dates.get(version_number, "")

            current = ParsedVersion(
                version=version_number,
                date=date,
                source_id=source_id,
                source_name=source_name,
            )
            continue

        if current and line.startswith(BULLET_PREFIXES):
            content = line[2:].strip()
            current.items.append(ChangelogItem(kind=classify_item(content), content=content))

    if current:
        versions.append(current)

    logger.debug(f"Parsed {len(versions)} version(s) from changelog")
    return versions


def parse_latest_version(markdown: str) -> Optional[LatestSection]:
    """
    Extract only the newest version section.

    Stops scanning at the second version header, so the rest of the
    document is never examined.

    Args:
        markdown: Raw changelog text.

    Returns:
        LatestSection with the header-to-next-header text, or None if no
        version header was found.
    """
    version = ""
    date = ""
    content: list[str] = []

    for line in markdown.split("\n"):
        version_number = match_version_header(line)
        if version_number:
            if version:
                break
            version = version_number
            date = extract_header_date(line)
            content.append(line)
        elif version:
            content.append(line)

    if not version:
        return None

    return LatestSection(version=version, content="\n".join(content), date=date)


def get_latest_version(versions: list[ParsedVersion]) -> str:
    """Return the first (newest) version id, or "Unknown" for an empty list."""
    return versions[0].version if versions else UNKNOWN_VERSION
