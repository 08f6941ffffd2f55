"""
Settings store - key/value operations for runtime settings.
"""

from datetime import datetime, timezone
from typing import Optional

from .database import DatabaseConnection


EMAIL_NOTIFICATIONS_ENABLED = "emailNotificationsEnabled"
ALWAYS_SEND_EMAIL = "alwaysSendEmail"
NOTIFICATION_CHECK_INTERVAL = "notificationCheckInterval"
NOTIFICATION_VOICE = "notificationVoice"


class SettingsStore:
    """Repository for runtime settings stored as strings."""

    def __init__(self, db: DatabaseConnection):
        self._db = db

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a setting value."""
        with self._db.conn() as conn:
            row = conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
            return row["value"] if row else default

    def set(self, key: str, value: str):
        """Set a setting value."""
        with self._db.conn() as conn:
            conn.execute(
                """INSERT INTO settings (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value, updated_at = excluded.updated_at""",
                (key, value, datetime.now(timezone.utc).isoformat())
            )

    def get_all(self) -> dict[str, str]:
        """Get all settings as a dictionary."""
        with self._db.conn() as conn:
            rows = conn.execute("SELECT key, value FROM settings").fetchall()
            return {row["key"]: row["value"] for row in rows}

    def is_true(self, key: str) -> bool:
        """Settings flags are enabled only by the exact string "true"."""
        return self.get(key) == "true"

    def get_interval_ms(self) -> int:
        """Stored check interval in milliseconds; 0 when unset or malformed."""
        value = self.get(NOTIFICATION_CHECK_INTERVAL) or "0"
        try:
            return int(value)
        except ValueError:
            return 0
