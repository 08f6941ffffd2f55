"""
Process configuration for the changelog monitor.

Static settings (mail server, Ollama, database location, speech model)
come from the environment, optionally seeded from a .env file. Runtime
toggles such as the check interval live in the database instead; see
settings_store.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_CHANGELOG_URL = "https://raw.githubusercontent.com/anthropics/claude-code/main/CHANGELOG.md"

TRUTHY = ("true", "1", "yes", "on")


class ConfigError(Exception):
    """Raised when a required variable is missing or a value is malformed."""
    pass


@dataclass
class Config:
    """Settings read once at startup."""

    # Outgoing mail
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    recipient_email: str

    # Release analysis
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "llama3"

    # Storage and fetching
    database_path: Path = Path("data/changelog.db")
    default_changelog_url: str = DEFAULT_CHANGELOG_URL
    fetch_retries: int = 3

    # Audio summary (Coqui TTS)
    tts_enabled: bool = True
    tts_model: str = "tts_models/multilingual/multi-dataset/xtts_v2"
    tts_language: str = "en"
    tts_voice: str = "Claribel Dervla"  # used when notificationVoice is unset
    tts_speed: float = 1.0
    tts_output_dir: str = "audio_output"
    tts_use_cuda: bool = False

    scheduler_timezone: str = "UTC"

    def __post_init__(self):
        self.database_path = Path(self.database_path)


def _require(key: str) -> str:
    value = os.environ.get(key)
    if not value:
        raise ConfigError(f"Missing required environment variable: {key}")
    return value


def _env(key: str, default: str) -> str:
    return os.environ.get(key, default)


def _flag(key: str, default: bool) -> bool:
    """true/1/yes/on (any case) enable a flag; anything else disables it."""
    raw = os.environ.get(key)
    return default if raw is None else raw.strip().lower() in TRUTHY


def _number(key: str, default, kind):
    raw = _env(key, str(default))
    try:
        return kind(raw)
    except ValueError:
        label = "an integer" if kind is int else "a number"
        raise ConfigError(f"{key} must be {label}, got: {raw}")


def load_config(env_path: Optional[Path] = None) -> Config:
    """
    Build a Config from the environment.

    Args:
        env_path: .env file to load first. Without it, python-dotenv looks
            for a .env next to the caller and in parent directories.
            Variables already set in the environment win over the file.

    Raises:
        ConfigError: On a missing SMTP/recipient variable or a
            non-numeric port, retry count or speed.
    """
    if env_path:
        load_dotenv(env_path)
    else:
        load_dotenv()

    fetch_retries = _number("FETCH_RETRIES", 3, int)
    if fetch_retries < 1:
        raise ConfigError(f"FETCH_RETRIES must be at least 1, got: {fetch_retries}")

    return Config(
        smtp_host=_require("SMTP_HOST"),
        smtp_port=_number("SMTP_PORT", 587, int),
        smtp_user=_require("SMTP_USER"),
        smtp_password=_require("SMTP_PASSWORD"),
        recipient_email=_require("RECIPIENT_EMAIL"),
        ollama_base_url=_env("OLLAMA_BASE_URL", "http://localhost:11434"),
        ollama_model=_env("OLLAMA_MODEL", "llama3"),
        database_path=Path(_env("DATABASE_PATH", "data/changelog.db")),
        default_changelog_url=_env("DEFAULT_CHANGELOG_URL", DEFAULT_CHANGELOG_URL),
        fetch_retries=fetch_retries,
        tts_enabled=_flag("TTS_ENABLED", True),
        tts_model=_env("TTS_MODEL", "tts_models/multilingual/multi-dataset/xtts_v2"),
        tts_language=_env("TTS_LANGUAGE", "en"),
        tts_voice=_env("TTS_VOICE", "Claribel Dervla"),
        tts_speed=_number("TTS_SPEED", 1.0, float),
        tts_output_dir=_env("TTS_OUTPUT_DIR", "audio_output"),
        tts_use_cuda=_flag("TTS_USE_CUDA", False),
        scheduler_timezone=_env("SCHEDULER_TIMEZONE", "UTC"),
    )
