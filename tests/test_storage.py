"""Tests for the database, settings store, source repository and version ledger."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from changelog_bot.database import DEFAULT_SOURCE_ID, DEFAULT_SOURCE_NAME, DatabaseConnection
from changelog_bot.settings_store import (
    EMAIL_NOTIFICATIONS_ENABLED,
    NOTIFICATION_CHECK_INTERVAL,
    SettingsStore,
)
from changelog_bot.sources import (
    DuplicateSourceError,
    InvalidSourceURLError,
    SourceNotFoundError,
    SourceRepository,
    generate_source_id,
    validate_url,
)


class TestDatabaseConnection:
    """Tests for schema creation and default source seeding."""

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "bot.db"

        DatabaseConnection(db_path)

        assert db_path.exists()

    def test_seeds_default_source(self, db):
        with db.conn() as conn:
            rows = conn.execute("SELECT id, name, url, is_active FROM changelog_sources").fetchall()

        assert len(rows) == 1
        assert rows[0]["id"] == DEFAULT_SOURCE_ID
        assert rows[0]["name"] == DEFAULT_SOURCE_NAME
        assert rows[0]["url"] == "https://example.com/CHANGELOG.md"
        assert rows[0]["is_active"] == 1

    def test_reopening_does_not_reseed(self, tmp_path):
        db_path = tmp_path / "bot.db"
        DatabaseConnection(db_path)

        DatabaseConnection(db_path, default_source_url="https://other.example.com/CHANGELOG.md")

        with DatabaseConnection(db_path).conn() as conn:
            count = conn.execute("SELECT COUNT(*) FROM changelog_sources").fetchone()[0]
        assert count == 1

    def test_no_reseed_after_sources_replaced(self, tmp_path):
        db_path = tmp_path / "bot.db"
        repo = SourceRepository(DatabaseConnection(db_path))
        repo.create("n8n", "https://example.com/n8n/CHANGELOG.md")
        repo.delete(DEFAULT_SOURCE_ID)

        repo = SourceRepository(DatabaseConnection(db_path))

        assert [s.name for s in repo.list_all()] == ["n8n"]

    def test_history_requires_existing_source(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            with db.conn() as conn:
                conn.execute(
                    "INSERT INTO changelog_history (source_id, version, detected_at) VALUES (?, ?, ?)",
                    ("src_missing", "1.0.0", "2024-01-01T00:00:00"),
                )


class TestSettingsStore:
    """Tests for SettingsStore."""

    def test_get_missing_returns_default(self, settings):
        assert settings.get("nope") is None
        assert settings.get("nope", "fallback") == "fallback"

    def test_set_and_get(self, settings):
        settings.set(EMAIL_NOTIFICATIONS_ENABLED, "true")

        assert settings.get(EMAIL_NOTIFICATIONS_ENABLED) == "true"

    def test_set_overwrites(self, settings):
        settings.set("notificationVoice", "Ana Florence")
        settings.set("notificationVoice", "Claribel Dervla")

        assert settings.get("notificationVoice") == "Claribel Dervla"
        assert settings.get_all() == {"notificationVoice": "Claribel Dervla"}

    def test_is_true_requires_exact_string(self, settings):
        for value, expected in [("true", True), ("True", False), ("1", False), ("yes", False)]:
            settings.set(EMAIL_NOTIFICATIONS_ENABLED, value)
            assert settings.is_true(EMAIL_NOTIFICATIONS_ENABLED) is expected

    def test_is_true_unset(self, settings):
        assert settings.is_true(EMAIL_NOTIFICATIONS_ENABLED) is False

    def test_interval_parsing(self, settings):
        assert settings.get_interval_ms() == 0

        settings.set(NOTIFICATION_CHECK_INTERVAL, "3600000")
        assert settings.get_interval_ms() == 3600000

        settings.set(NOTIFICATION_CHECK_INTERVAL, "hourly")
        assert settings.get_interval_ms() == 0

    def test_settings_persist_across_connections(self, tmp_path):
        db_path = tmp_path / "bot.db"
        SettingsStore(DatabaseConnection(db_path)).set("alwaysSendEmail", "true")

        reopened = SettingsStore(DatabaseConnection(db_path))

        assert reopened.is_true("alwaysSendEmail")


class TestSourceHelpers:
    """Tests for URL validation and id generation."""

    @pytest.mark.parametrize(
        "url",
        ["https://raw.githubusercontent.com/x/y/main/CHANGELOG.md", "http://localhost:8000/c.md"],
    )
    def test_valid_urls(self, url):
        validate_url(url)

    @pytest.mark.parametrize("url", ["not a url", "example.com/CHANGELOG.md", "", "https://"])
    def test_invalid_urls(self, url):
        with pytest.raises(InvalidSourceURLError):
            validate_url(url)

    def test_generated_id_shape(self):
        source_id = generate_source_id()
        prefix, millis, suffix = source_id.split("_")

        assert prefix == "src"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_generated_ids_differ(self):
        assert generate_source_id() != generate_source_id()


class TestSourceRepository:
    """Tests for SourceRepository."""

    def test_create_and_get(self, sources):
        created = sources.create("n8n", "https://example.com/n8n/CHANGELOG.md")

        fetched = sources.get(created.id)

        assert fetched.name == "n8n"
        assert fetched.url == "https://example.com/n8n/CHANGELOG.md"
        assert fetched.is_active is True
        assert fetched.last_version is None

    def test_get_missing(self, sources):
        assert sources.get("src_missing") is None

    def test_create_requires_name_and_url(self, sources):
        with pytest.raises(InvalidSourceURLError):
            sources.create("", "https://example.com/a.md")
        with pytest.raises(InvalidSourceURLError):
            sources.create("A", "")

    def test_create_rejects_malformed_url(self, sources):
        with pytest.raises(InvalidSourceURLError):
            sources.create("A", "ftp//broken")

    def test_create_rejects_duplicate_url(self, sources):
        with pytest.raises(DuplicateSourceError):
            sources.create("Copy", "https://example.com/CHANGELOG.md")

    def test_list_all_oldest_first(self, sources):
        sources.create("Second", "https://example.com/2.md")
        sources.create("Third", "https://example.com/3.md")

        names = [s.name for s in sources.list_all()]

        assert names == [DEFAULT_SOURCE_NAME, "Second", "Third"]

    def test_deactivate_hides_from_active(self, sources):
        other = sources.create("Other", "https://example.com/other.md")

        sources.deactivate(DEFAULT_SOURCE_ID)

        assert [s.id for s in sources.list_active()] == [other.id]
        assert len(sources.list_all()) == 2

    def test_activate(self, sources):
        sources.deactivate(DEFAULT_SOURCE_ID)
        sources.activate(DEFAULT_SOURCE_ID)

        assert sources.get(DEFAULT_SOURCE_ID).is_active is True

    def test_update_name_and_url(self, sources):
        sources.update(DEFAULT_SOURCE_ID, name="Renamed", url="https://example.com/new.md")

        source = sources.get(DEFAULT_SOURCE_ID)
        assert source.name == "Renamed"
        assert source.url == "https://example.com/new.md"

    def test_update_requires_fields(self, sources):
        with pytest.raises(ValueError, match="No updates provided"):
            sources.update(DEFAULT_SOURCE_ID)

    def test_update_missing_source(self, sources):
        with pytest.raises(SourceNotFoundError):
            sources.update("src_missing", name="x")

    def test_update_to_taken_url(self, sources):
        other = sources.create("Other", "https://example.com/other.md")

        with pytest.raises(DuplicateSourceError):
            sources.update(other.id, url="https://example.com/CHANGELOG.md")

    def test_delete_removes_history(self, sources, ledger):
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)

        sources.delete(DEFAULT_SOURCE_ID)

        assert sources.get(DEFAULT_SOURCE_ID) is None
        assert ledger.history() == []

    def test_delete_missing(self, sources):
        with pytest.raises(SourceNotFoundError):
            sources.delete("src_missing")


class TestVersionLedger:
    """Tests for VersionLedger."""

    def test_unknown_source_has_no_version(self, ledger):
        assert ledger.last_known_version(DEFAULT_SOURCE_ID) is None
        assert ledger.last_known_version() is None

    def test_record_and_read_back(self, ledger, sources):
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)

        assert ledger.last_known_version(DEFAULT_SOURCE_ID) == "1.0.0"
        record = ledger.get_record("1.0.0", DEFAULT_SOURCE_ID)
        assert record.notified is False
        assert record.detected_at

        source = sources.get(DEFAULT_SOURCE_ID)
        assert source.last_version == "1.0.0"
        assert source.last_checked_at is not None

    def test_record_is_idempotent(self, ledger):
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)
        first = ledger.get_record("1.0.0", DEFAULT_SOURCE_ID)

        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)

        assert len(ledger.history()) == 1
        assert ledger.get_record("1.0.0", DEFAULT_SOURCE_ID).detected_at == first.detected_at

    def test_latest_wins(self, ledger):
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)
        ledger.record_if_new("1.0.1", DEFAULT_SOURCE_ID)

        assert ledger.last_known_version(DEFAULT_SOURCE_ID) == "1.0.1"

    def test_versions_are_per_source(self, ledger, sources):
        other = sources.create("Other", "https://example.com/other.md")
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)
        ledger.record_if_new("1.0.0", other.id)
        ledger.record_if_new("5.0.0", other.id)

        assert ledger.last_known_version(DEFAULT_SOURCE_ID) == "1.0.0"
        assert ledger.last_known_version(other.id) == "5.0.0"
        assert ledger.last_known_version() == "5.0.0"

    def test_mark_notified(self, ledger):
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)

        ledger.mark_notified("1.0.0", DEFAULT_SOURCE_ID)

        assert ledger.get_record("1.0.0", DEFAULT_SOURCE_ID).notified is True

    def test_mark_notified_missing_is_noop(self, ledger):
        ledger.mark_notified("9.9.9", DEFAULT_SOURCE_ID)

        assert ledger.get_record("9.9.9", DEFAULT_SOURCE_ID) is None

    def test_notified_stays_true_after_rerecord(self, ledger):
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)
        ledger.mark_notified("1.0.0", DEFAULT_SOURCE_ID)

        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)

        assert ledger.get_record("1.0.0", DEFAULT_SOURCE_ID).notified is True

    def test_touch_only_updates_heartbeat(self, ledger, sources):
        ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)
        before = sources.get(DEFAULT_SOURCE_ID)

        ledger.touch(DEFAULT_SOURCE_ID)

        after = sources.get(DEFAULT_SOURCE_ID)
        assert after.last_version == "1.0.0"
        assert after.last_checked_at >= before.last_checked_at
        assert len(ledger.history()) == 1

    def test_history_newest_first_with_limit(self, ledger):
        for version in ["1.0.0", "1.0.1", "1.0.2"]:
            ledger.record_if_new(version, DEFAULT_SOURCE_ID)

        assert [r.version for r in ledger.history()] == ["1.0.2", "1.0.1", "1.0.0"]
        assert [r.version for r in ledger.history(limit=2)] == ["1.0.2", "1.0.1"]

    def test_latest_wins_across_daylight_saving_fallback(self, ledger):
        """Wall clock repeats 01:00-02:00 local, UTC keeps moving forward."""
        moments = iter([
            datetime(2026, 11, 1, 1, 30, tzinfo=timezone(timedelta(hours=-4))),  # EDT
            datetime(2026, 11, 1, 1, 10, tzinfo=timezone(timedelta(hours=-5))),  # EST
        ])

        def fake_now(tz=None):
            moment = next(moments)
            return moment.astimezone(tz) if tz else moment.replace(tzinfo=None)

        with patch("changelog_bot.ledger.datetime") as mock_datetime:
            mock_datetime.now.side_effect = fake_now
            ledger.record_if_new("1.0.0", DEFAULT_SOURCE_ID)
            ledger.record_if_new("1.1.0", DEFAULT_SOURCE_ID)

        assert ledger.last_known_version(DEFAULT_SOURCE_ID) == "1.1.0"
        assert [r.version for r in ledger.history()] == ["1.1.0", "1.0.0"]
        assert ledger.get_record("1.1.0", DEFAULT_SOURCE_ID).detected_at.endswith("+00:00")
