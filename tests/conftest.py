"""Shared fixtures for changelog bot tests."""

import pytest

from changelog_bot.config import Config
from changelog_bot.database import DatabaseConnection
from changelog_bot.ledger import VersionLedger
from changelog_bot.settings_store import SettingsStore
from changelog_bot.sources import SourceRepository


@pytest.fixture
def mock_config(tmp_path):
    """Create a config for testing with a temporary database."""
    return Config(
        smtp_host="smtp.test.com",
        smtp_port=587,
        smtp_user="sender@test.com",
        smtp_password="secret123",
        recipient_email="recipient@test.com",
        ollama_base_url="http://localhost:11434",
        ollama_model="llama3",
        database_path=tmp_path / "test.db",
        tts_enabled=False,
        tts_output_dir=str(tmp_path / "audio"),
    )


@pytest.fixture
def db(tmp_path):
    """Fresh database with the default source seeded."""
    return DatabaseConnection(tmp_path / "test.db", default_source_url="https://example.com/CHANGELOG.md")


@pytest.fixture
def settings(db):
    return SettingsStore(db)


@pytest.fixture
def sources(db):
    return SourceRepository(db)


@pytest.fixture
def ledger(db):
    return VersionLedger(db)
