"""
Changelog source repository - CRUD for monitored changelog origins.
"""

import logging
import random
import sqlite3
import string
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from .database import DatabaseConnection


logger = logging.getLogger(__name__)


class SourceError(Exception):
    """Base error for source operations."""
    pass


class SourceNotFoundError(SourceError):
    """Raised when a source id does not exist."""
    pass


class DuplicateSourceError(SourceError):
    """Raised when a source with the same URL already exists."""
    pass


class InvalidSourceURLError(SourceError):
    """Raised when a source URL is malformed."""
    pass


@dataclass
class Source:
    """A monitored changelog origin."""

    id: str
    name: str
    url: str
    is_active: bool = True
    last_version: Optional[str] = None
    last_checked_at: Optional[str] = None


def validate_url(url: str) -> None:
    """Raise InvalidSourceURLError unless ``url`` has a scheme and host."""
    parsed = urlparse(url or "")
    if not parsed.scheme or not parsed.netloc:
        raise InvalidSourceURLError(f"Invalid URL format: {url}")


def generate_source_id() -> str:
    """Generate an id like ``src_1700000000000_k3j9x0abc``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"src_{int(time.time() * 1000)}_{suffix}"


def _row_to_source(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        url=row["url"],
        is_active=bool(row["is_active"]),
        last_version=row["last_version"],
        last_checked_at=row["last_checked_at"],
    )


class SourceRepository:
    """Repository for changelog sources."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def list_all(self) -> list[Source]:
        """All sources, oldest first."""
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT * FROM changelog_sources ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
            return [_row_to_source(row) for row in rows]

    def list_active(self) -> list[Source]:
        """Sources with monitoring enabled, oldest first."""
        with self._db.conn() as conn:
            rows = conn.execute(
                "SELECT * FROM changelog_sources WHERE is_active = 1 ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
            return [_row_to_source(row) for row in rows]

    def get(self, source_id: str) -> Optional[Source]:
        """Get a source by id, or None."""
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT * FROM changelog_sources WHERE id = ?", (source_id,)
            ).fetchone()
            return _row_to_source(row) if row else None

    def create(self, name: str, url: str) -> Source:
        """
        Register a new active source.

        Raises:
            InvalidSourceURLError: If name is empty or the URL is malformed.
            DuplicateSourceError: If the URL is already registered.
        """
        if not name or not url:
            raise InvalidSourceURLError("Name and URL are required")
        validate_url(url)

        source = Source(id=generate_source_id(), name=name, url=url)
        try:
            with self._db.conn() as conn:
                conn.execute(
                    "INSERT INTO changelog_sources (id, name, url, is_active) VALUES (?, ?, ?, 1)",
                    (source.id, source.name, source.url),
                )
        except sqlite3.IntegrityError:
            raise DuplicateSourceError(f"A source with this URL already exists: {url}")

        logger.info(f"Created source {source.id}: {name} ({url})")
        return source

    def update(
        self,
        source_id: str,
        name: Optional[str] = None,
        url: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> None:
        """
        Update the given fields of a source.

        Raises:
            ValueError: If no field was given.
            InvalidSourceURLError: If the new URL is malformed.
            DuplicateSourceError: If the new URL belongs to another source.
            SourceNotFoundError: If the source does not exist.
        """
        updates: list[str] = []
        values: list = []

        if name is not None:
            updates.append("name = ?")
            values.append(name)
        if url is not None:
            validate_url(url)
            updates.append("url = ?")
            values.append(url)
        if is_active is not None:
            updates.append("is_active = ?")
            values.append(1 if is_active else 0)

        if not updates:
            raise ValueError("No updates provided")

        values.append(source_id)
        try:
            with self._db.conn() as conn:
                cursor = conn.execute(
                    f"UPDATE changelog_sources SET {', '.join(updates)} WHERE id = ?",
                    values,
                )
        except sqlite3.IntegrityError:
            raise DuplicateSourceError(f"A source with this URL already exists: {url}")

        if cursor.rowcount == 0:
            raise SourceNotFoundError(f"Source not found: {source_id}")

    def deactivate(self, source_id: str) -> None:
        """Stop monitoring a source without deleting it."""
        self.update(source_id, is_active=False)
        logger.info(f"Deactivated source {source_id}")

    def activate(self, source_id: str) -> None:
        """Resume monitoring a source."""
        self.update(source_id, is_active=True)
        logger.info(f"Activated source {source_id}")

    def delete(self, source_id: str) -> None:
        """
        Delete a source and its version history.

        Raises:
            SourceNotFoundError: If the source does not exist.
        """
        with self._db.conn() as conn:
            conn.execute("DELETE FROM changelog_history WHERE source_id = ?", (source_id,))
            cursor = conn.execute("DELETE FROM changelog_sources WHERE id = ?", (source_id,))

        if cursor.rowcount == 0:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        logger.info(f"Deleted source {source_id}")
