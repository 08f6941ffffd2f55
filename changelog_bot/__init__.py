"""
Changelog Monitor Bot

Watches software changelogs for new releases, summarizes them with a
local LLM (Ollama), and emails the summary with a TTS audio attachment.
"""

__version__ = "1.0.0"
