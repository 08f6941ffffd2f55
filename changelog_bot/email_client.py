"""
Release notification emails.

Builds the release notification email and sends it using the configured
SMTP server, optionally with the audio summary attached.
"""

import logging
import re
import smtplib
from email.mime.audio import MIMEAudio
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

from .analyzer import ChangelogAnalysis
from .config import Config
from .tts_engine import AudioClip


logger = logging.getLogger(__name__)


SENTIMENT_EMOJI = {
    "positive": "🎉",
    "critical": "⚠️",
}


EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            line-height: 1.6;
            color: #333;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
        }}
        h1 {{ color: #d97706; }}
        h2 {{ color: #374151; margin-top: 24px; }}
        .tldr {{ background: #fef3c7; padding: 16px; border-radius: 8px; margin-bottom: 24px; }}
        .section {{ margin-bottom: 20px; }}
        .breaking {{ border-left: 4px solid #ef4444; background: #fef2f2; padding: 12px; border-radius: 0 8px 8px 0; }}
        .feature {{ border-left: 4px solid #14b8a6; padding-left: 12px; }}
        .fix {{ border-left: 4px solid #6b7280; padding-left: 12px; }}
        ul {{ padding-left: 20px; }}
        li {{ margin-bottom: 8px; }}
        .audio-note {{ background: #e0f2fe; padding: 12px; border-radius: 8px; margin-top: 16px; }}
        .footer {{ margin-top: 32px; padding-top: 16px; border-top: 1px solid #e5e7eb; font-size: 14px; color: #6b7280; }}
    </style>
</head>
<body>
    <h1>{emoji} {version} Released</h1>

    <div class="tldr">
        <strong>TL;DR:</strong> {tldr}
    </div>

    {sections_html}

    {audio_html}

    <div class="footer">
        <p>This email was automatically sent by Changelog Bot</p>
    </div>
</body>
</html>
"""

SECTION_TEMPLATE = """
<div class="section {css_class}">
    <h2>{title}</h2>
    <ul>
        {items_html}
    </ul>
</div>
"""

AUDIO_NOTE_HTML = """<div class="audio-note">
        🎧 <strong>Audio summary attached!</strong> Listen to the changelog summary on the go.
    </div>"""


class EmailError(Exception):
    """Raised when email sending fails."""
    pass


def _render_section(title: str, items: list[str], css_class: str = "") -> str:
    """Render a titled bullet list, or "" when there are no items."""
    if not items:
        return ""
    items_html = "".join(f"<li>{escape(item)}</li>" for item in items)
    return SECTION_TEMPLATE.format(css_class=css_class, title=title, items_html=items_html)


def build_changelog_email_html(analysis: ChangelogAnalysis, has_audio: bool = False) -> str:
    """
    Build the HTML notification for a release analysis.

    Empty categories are omitted entirely.

    Args:
        analysis: Structured analysis (version already set to the display name).
        has_audio: Whether an audio summary is attached.

    Returns:
        The full HTML document.
    """
    categories = analysis.categories

    removals = [
        f"{r.feature} ({r.severity}): {r.why}" if r.severity or r.why else r.feature
        for r in categories.removals
    ]

    sections = [
        _render_section("🚨 Critical Breaking Changes", categories.critical_breaking_changes, "breaking"),
        _render_section("⚠️ Removals", removals),
        _render_section("✨ Major Features", categories.major_features, "feature"),
        _render_section("🔧 Important Fixes", categories.important_fixes, "fix"),
        _render_section("⌨️ New Slash Commands", categories.new_slash_commands),
        _render_section("🖥️ Terminal Improvements", categories.terminal_improvements),
        _render_section("🔌 API Changes", categories.api_changes),
        _render_section("📋 Action Items", analysis.action_items),
    ]

    return EMAIL_TEMPLATE.format(
        emoji=SENTIMENT_EMOJI.get(analysis.sentiment, "📋"),
        version=escape(analysis.version),
        tldr=escape(analysis.tldr),
        sections_html="\n".join(s for s in sections if s),
        audio_html=AUDIO_NOTE_HTML if has_audio else "",
    )


def build_subject(analysis: ChangelogAnalysis) -> str:
    """Subject line like "🆕 Claude Code 1.0.50 Released"."""
    return f"🆕 {analysis.version} Released"


def attachment_filename(version: str, extension: str) -> str:
    """Filesystem-safe attachment name like "claude-code-1.0.50-summary.mp3"."""
    slug = re.sub(r"[^a-z0-9.]+", "-", version.lower()).strip("-")
    return f"{slug or 'changelog'}-summary.{extension}"


def send_email(
    config: Config,
    subject: str,
    html_body: str,
    attachment: Optional[AudioClip] = None,
    attachment_name: Optional[str] = None,
) -> None:
    """
    Deliver a notification to config.recipient_email over STARTTLS.

    Args:
        config: Supplies the SMTP host, port and login.
        subject: Subject header.
        html_body: Rendered notification HTML.
        attachment: Audio summary, sent as audio/mpeg or audio/wav.
        attachment_name: Overrides the default "summary.<ext>" filename.

    Raises:
        EmailError: If sending fails.
    """
    msg = MIMEMultipart("mixed" if attachment else "alternative")
    msg["Subject"] = subject
    msg["From"] = config.smtp_user
    msg["To"] = config.recipient_email

    msg.attach(MIMEText(html_body, "html"))

    if attachment:
        subtype = "mpeg" if attachment.extension == "mp3" else "wav"
        filename = attachment_name or f"summary.{attachment.extension}"
        audio_part = MIMEAudio(attachment.data, _subtype=subtype)
        audio_part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(audio_part)
        logger.info(f"Attached audio file: {filename}")

    try:
        with smtplib.SMTP(config.smtp_host, config.smtp_port) as server:
            server.starttls()
            server.login(config.smtp_user, config.smtp_password)
            server.sendmail(config.smtp_user, [config.recipient_email], msg.as_string())
        logger.info(f"Email sent to {config.recipient_email}")

    except smtplib.SMTPAuthenticationError as e:
        raise EmailError(f"SMTP authentication failed: {e}")
    except smtplib.SMTPException as e:
        raise EmailError(f"Failed to send email: {e}")
    except OSError as e:
        raise EmailError(f"Could not connect to SMTP server: {e}")
