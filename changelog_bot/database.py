"""
Database connection management and schema initialization.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .config import DEFAULT_CHANGELOG_URL


logger = logging.getLogger(__name__)


DEFAULT_SOURCE_ID = "src_claude_code"
DEFAULT_SOURCE_NAME = "Claude Code"


class DatabaseConnection:
    """Manages database connection and schema."""

    def __init__(self, db_path: Path, default_source_url: str = DEFAULT_CHANGELOG_URL):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()
        self._seed_default_source(default_source_url)

    @contextmanager
    def conn(self) -> Iterator[sqlite3.Connection]:
        """Get database connection with row factory."""
        connection = sqlite3.connect(self.db_path)
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON")
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _init_schema(self):
        """Initialize database schema."""
        with self.conn() as connection:
            connection.executescript("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS changelog_sources (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    url TEXT NOT NULL UNIQUE,
                    is_active INTEGER DEFAULT 1,
                    last_version TEXT,
                    last_checked_at TIMESTAMP,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS changelog_history (
                    source_id TEXT NOT NULL REFERENCES changelog_sources(id) ON DELETE CASCADE,
                    version TEXT NOT NULL,
                    detected_at TIMESTAMP NOT NULL,
                    notified INTEGER DEFAULT 0,
                    PRIMARY KEY (source_id, version)
                );

                CREATE TABLE IF NOT EXISTS analysis_cache (
                    version TEXT PRIMARY KEY,
                    analysis_json TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_changelog_sources_active ON changelog_sources(is_active);
                CREATE INDEX IF NOT EXISTS idx_changelog_history_detected ON changelog_history(detected_at DESC);
            """)

    def _seed_default_source(self, url: str):
        """Insert the default source when no sources exist yet."""
        with self.conn() as connection:
            count = connection.execute("SELECT COUNT(*) FROM changelog_sources").fetchone()[0]
            if count == 0:
                connection.execute(
                    "INSERT INTO changelog_sources (id, name, url, is_active) VALUES (?, ?, ?, 1)",
                    (DEFAULT_SOURCE_ID, DEFAULT_SOURCE_NAME, url),
                )
                logger.info(f"Seeded default changelog source: {DEFAULT_SOURCE_NAME} ({url})")
