"""
Version ledger - durable record of detected and notified versions.

The ledger is the authority for "is this release new?". Each source moves
Unknown -> Known(v) -> Known(v') as checks observe versions; every
recorded version carries a notified flag that only ever goes from
false to true.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .database import DatabaseConnection


logger = logging.getLogger(__name__)


@dataclass
class VersionRecord:
    """One detected version of one source."""

    version: str
    source_id: str
    detected_at: str
    notified: bool = False


class VersionLedger:
    """Repository for changelog_history plus the sources' heartbeat fields."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def last_known_version(self, source_id: Optional[str] = None) -> Optional[str]:
        """
        Most recently detected version for a source.

        Without a source id, returns the most recent version across all
        sources (used by the status view).
        """
        with self._db.conn() as conn:
            if source_id:
                row = conn.execute(
                    """SELECT version FROM changelog_history WHERE source_id = ?
                       ORDER BY detected_at DESC, rowid DESC LIMIT 1""",
                    (source_id,),
                ).fetchone()
            else:
                row = conn.execute(
                    """SELECT version FROM changelog_history
                       ORDER BY detected_at DESC, rowid DESC LIMIT 1"""
                ).fetchone()
            return row["version"] if row else None

    def record_if_new(self, version: str, source_id: str) -> None:
        """
        Insert a version record unless it already exists.

        Always refreshes the source's last_version/last_checked_at, even
        when the version was already known. The two writes are separate
        statements, not one transaction.
        """
        now = datetime.now(timezone.utc).isoformat()
        with self._db.conn() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO changelog_history (source_id, version, detected_at)
                   VALUES (?, ?, ?)""",
                (source_id, version, now),
            )
        with self._db.conn() as conn:
            conn.execute(
                "UPDATE changelog_sources SET last_version = ?, last_checked_at = ? WHERE id = ?",
                (version, now, source_id),
            )

    def touch(self, source_id: str) -> None:
        """Update only the source's last_checked_at heartbeat."""
        with self._db.conn() as conn:
            conn.execute(
                "UPDATE changelog_sources SET last_checked_at = ? WHERE id = ?",
                (datetime.now(timezone.utc).isoformat(), source_id),
            )

    def mark_notified(self, version: str, source_id: str) -> None:
        """Flag a version as notified. No-op if the record does not exist."""
        with self._db.conn() as conn:
            cursor = conn.execute(
                "UPDATE changelog_history SET notified = 1 WHERE version = ? AND source_id = ?",
                (version, source_id),
            )
        if cursor.rowcount == 0:
            logger.debug(f"mark_notified: no record for {source_id} {version}")

    def get_record(self, version: str, source_id: str) -> Optional[VersionRecord]:
        """Get a single version record, or None."""
        with self._db.conn() as conn:
            row = conn.execute(
                """SELECT version, source_id, detected_at, notified FROM changelog_history
                   WHERE version = ? AND source_id = ?""",
                (version, source_id),
            ).fetchone()
        if not row:
            return None
        return VersionRecord(
            version=row["version"],
            source_id=row["source_id"],
            detected_at=row["detected_at"],
            notified=bool(row["notified"]),
        )

    def history(self, limit: int = 20) -> list[VersionRecord]:
        """Most recently detected versions across all sources, newest first."""
        with self._db.conn() as conn:
            rows = conn.execute(
                """SELECT version, source_id, detected_at, notified FROM changelog_history
                   ORDER BY detected_at DESC, rowid DESC LIMIT ?""",
                (limit,),
            ).fetchall()
        return [
            VersionRecord(
                version=row["version"],
                source_id=row["source_id"],
                detected_at=row["detected_at"],
                notified=bool(row["notified"]),
            )
            for row in rows
        ]
