"""
Audio release summaries via Coqui TTS.

The engine speaks a release TL;DR and hands back encoded bytes for the
mailer to attach. WAV output from Coqui is rendered into a scratch file
that is removed straight away; MP3 encoding happens in memory.
"""

import io
import logging
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class TTSConfig:
    """Model and voice settings for audio summaries."""

    model_name: str = "tts_models/multilingual/multi-dataset/xtts_v2"
    language: str = "en"
    speaker: Optional[str] = "Claribel Dervla"  # used when no notificationVoice is set
    speed: float = 1.0
    output_dir: Path = Path("audio_output")  # scratch space for rendered WAVs
    use_cuda: bool = False

    def __post_init__(self):
        self.output_dir = Path(self.output_dir)

    @property
    def is_xtts_model(self) -> bool:
        """XTTS is multi-speaker and multilingual; it needs speaker + language."""
        return "xtts" in self.model_name.lower()


class TTSEngineError(Exception):
    """Raised when the speech model cannot load or render audio."""
    pass


# Spoken forms for terms that read badly letter-by-letter or as words
SPOKEN_TERMS = [
    (re.compile(r"\bAPIs\b"), "A P Is"),
    (re.compile(r"\b(CLI|API|SDK|MCP|IDE|UI|URL|WSL|SSH|AI|LLM)\b"), lambda m: " ".join(m.group(1))),
    (re.compile(r"\bnpm\b"), "N P M"),
    (re.compile(r"\bJSON\b"), "jason"),
    (re.compile(r"\bYAML\b"), "yammel"),
    (re.compile(r"\be\.g\."), "for example"),
    (re.compile(r"\bi\.e\."), "that is"),
]

CODE_SPAN = re.compile(r"`([^`]*)`")
BOLD = re.compile(r"\*\*([^*]+)\*\*")
MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
SLASH_COMMAND = re.compile(r"(?<![\w/])/([a-z][\w-]*)")
SEMVER = re.compile(r"\bv?(\d+)\.(\d+)\.(\d+)\b")
ELLIPSIS = re.compile(r"\.{3,}")


def speakable(text: str) -> str:
    """
    Rewrite summary text so it reads naturally aloud.

    Drops Markdown markup, says "/compact" as "slash compact" and
    "1.0.50" as "1 point 0 point 50", spells out acronyms, and collapses
    whitespace. LLM output sometimes carries escaped quotes; those are
    unescaped first.
    """
    text = text.replace("\\'", "'").replace('\\"', '"')

    text = CODE_SPAN.sub(r"\1", text)
    text = BOLD.sub(r"\1", text)
    text = MARKDOWN_LINK.sub(r"\1", text)

    text = SLASH_COMMAND.sub(r"slash \1", text)
    text = SEMVER.sub(r"\1 point \2 point \3", text)
    text = ELLIPSIS.sub(", ", text)

    for pattern, spoken in SPOKEN_TERMS:
        text = pattern.sub(spoken, text)

    return " ".join(text.split())


class TTSEngine:
    """
    Coqui TTS wrapper that renders text to WAV bytes.

    The model is loaded on first use; loading XTTS takes several seconds
    and a few GB of memory.
    """

    def __init__(self, config: Optional[TTSConfig] = None):
        self.config = config or TTSConfig()
        self._tts = None
        self.config.output_dir.mkdir(parents=True, exist_ok=True)

    def load(self) -> None:
        """Import Coqui and load the model, once."""
        if self._tts is not None:
            return

        try:
            from TTS.api import TTS
        except ImportError:
            raise TTSEngineError("Coqui TTS is not installed (pip install 'changelog-bot[tts]')")

        # PyTorch 2.6+ refuses to unpickle XTTS configs unless allowlisted
        try:
            import torch
            from TTS.tts.configs.xtts_config import XttsConfig
            if hasattr(torch.serialization, "add_safe_globals"):
                torch.serialization.add_safe_globals([XttsConfig])
        except ImportError as e:
            logger.debug(f"Skipping torch safe globals: {e}")

        started = time.monotonic()
        logger.info(f"Loading speech model {self.config.model_name} (cuda={self.config.use_cuda})")
        try:
            self._tts = TTS(model_name=self.config.model_name, progress_bar=False, gpu=self.config.use_cuda)
        except Exception as e:
            raise TTSEngineError(f"Could not load speech model {self.config.model_name}: {e}")
        logger.info(f"Speech model ready after {time.monotonic() - started:.1f}s")

    def render_wav(self, text: str, voice: Optional[str] = None) -> bytes:
        """
        Speak ``text`` and return the WAV file contents.

        Args:
            text: Summary text; cleaned with speakable() first.
            voice: Speaker name for multi-speaker models. Falls back to
                the configured speaker.

        Raises:
            TTSEngineError: If the text is blank or rendering fails.
        """
        spoken = speakable(text or "")
        if not spoken:
            raise TTSEngineError("Nothing to speak: summary text is empty")

        self.load()

        options = {"speed": self.config.speed}
        if self.config.is_xtts_model:
            options["language"] = self.config.language
            options["speaker"] = voice or self.config.speaker

        with tempfile.TemporaryDirectory(dir=self.config.output_dir) as scratch:
            wav_path = Path(scratch) / "summary.wav"
            started = time.monotonic()
            try:
                self._tts.tts_to_file(text=spoken, file_path=str(wav_path), **options)
                wav = wav_path.read_bytes()
            except Exception as e:
                raise TTSEngineError(f"Speech rendering failed: {e}")

        logger.info(
            f"Rendered {len(spoken)} chars to {len(wav) / 1024:.0f} KB of WAV "
            f"in {time.monotonic() - started:.1f}s"
        )
        return wav


def wav_to_mp3(wav: bytes, bitrate: str = "192k") -> bytes:
    """
    Encode WAV bytes as MP3 with pydub (needs ffmpeg on PATH).

    Raises:
        TTSEngineError: If pydub is missing or encoding fails.
    """
    try:
        from pydub import AudioSegment
    except ImportError:
        raise TTSEngineError("pydub is not installed (pip install 'changelog-bot[tts]')")

    buffer = io.BytesIO()
    try:
        AudioSegment.from_wav(io.BytesIO(wav)).export(buffer, format="mp3", bitrate=bitrate)
    except Exception as e:
        raise TTSEngineError(f"MP3 encoding failed: {e}")
    return buffer.getvalue()


@dataclass
class AudioClip:
    """Encoded audio ready to attach to an email."""

    data: bytes
    extension: str  # "mp3" or "wav"


def synthesize_audio(engine: TTSEngine, text: str, voice: Optional[str] = None) -> Optional[AudioClip]:
    """
    Best-effort audio summary.

    Returns an MP3 clip, or the raw WAV when MP3 encoding is unavailable.
    Rendering failures are logged and yield None so the notification
    still goes out without an attachment.
    """
    try:
        wav = engine.render_wav(text, voice=voice)
    except TTSEngineError as e:
        logger.error(f"Audio summary skipped: {e}")
        return None

    try:
        return AudioClip(data=wav_to_mp3(wav), extension="mp3")
    except TTSEngineError as e:
        logger.warning(f"Attaching WAV instead of MP3: {e}")
        return AudioClip(data=wav, extension="wav")
