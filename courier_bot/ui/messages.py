# courier_bot/ui/messages.py

from __future__ import annotations

from typing import Sequence

from telegram.helpers import escape_markdown

from ..services.link_data import SearchCandidate


def _escape(text: str) -> str:
    return escape_markdown(text, version=2)


def _numbered(lines: Sequence[str]) -> str:
    return "\n".join(f"{i}\\. {_escape(line)}" for i, line in enumerate(lines, start=1))


def get_help_message_text() -> str:
    """Returns the MarkdownV2 help menu shown for unrecognized input."""
    return r"""👋 *Bot Menu*

📥 *Media Downloads*
• Send a YouTube/Instagram/TikTok/Twitter link
• Add "audio" or "mp3" for audio\-only

🎨 *Stickers*
• Send a GIF → auto\-converts to sticker
• Send an image with caption "sticker" or "s"

🖼️ *Image Tools*
• Send an image with caption "removebg" or "nobg"

🎬 *Movies*
• Type `search <movie name>`"""


# --- Search flow ---

SEARCH_USAGE = r"Usage: `search <movie name>`"
NO_RESULTS = "❌ No results found\\."
NO_LINKS = "❌ No download links found\\."
INVALID_SELECTION = "Invalid selection\\."
DELIVERY_CHOICE_REMINDER = "Please reply with *1* for the link or *2* for the file\\."


def format_searching(query: str, site_name: str) -> str:
    return f'🔍 Searching for "{_escape(query)}" on {_escape(site_name)}\\.\\.\\.'


def format_results_menu(candidates: Sequence[SearchCandidate]) -> str:
    return (
        "🍿 *Results:*\n\n"
        f"{_numbered([c.title for c in candidates])}\n\n"
        "Reply with the *number* to see episodes/links\\."
    )


def format_opening(title: str) -> str:
    return f"🎞️ Opening *{_escape(title)}*\\.\\.\\."


def format_links_menu(title: str, labels: Sequence[str]) -> str:
    return (
        f"📂 *{_escape(title)}*\n\n"
        f"{_numbered(labels)}\n\n"
        "Reply with the *number* to choose a link\\."
    )


def format_delivery_menu(label: str) -> str:
    return (
        f'❓ *How would you like to receive "{_escape(label)}"?*\n\n'
        "1\\. *Get Direct Link* \\(Fastest, no waiting\\)\n"
        "2\\. *Send as File* \\(⚠️ Risky & Not reliable\\)\n\n"
        "Reply with *1* or *2*\\."
    )


def format_direct_link(url: str) -> str:
    return _escape(url)


# --- File delivery ---


def format_transfer_started(label: str) -> str:
    return f"🚀 Starting download: *{_escape(label)}*\nPlease wait\\.\\.\\."


def format_transfer_progress(percent: int) -> str:
    return f"⏳ Download progress: {percent}%\\.\\.\\."


TRANSFER_COMPLETE = "✅ Download complete\\! Sending to you now\\.\\.\\."
TRANSFER_FAILED = (
    "❌ Failed to download or send the file\\. "
    "The file might be too large or the link expired\\."
)


def format_too_large(size_label: str, limit_label: str, url: str) -> str:
    return (
        f"⚠️ The file is {_escape(size_label)}, over the {_escape(limit_label)} "
        "upload limit\\. Here is the direct link instead:\n"
        f"{_escape(url)}"
    )


def format_file_caption(label: str) -> str:
    """Plain-text caption for a delivered file."""
    return f"Here is your movie: {label}"


# --- Media tools ---

STICKER_CONVERTING = "🎨 Converting to sticker\\.\\.\\."
STICKER_FAILED = "❌ Error converting to sticker\\."
BACKGROUND_REMOVING = "🔄 Removing background\\.\\.\\.\nThis may take a moment\\."
BACKGROUND_REMOVED_CAPTION = "✅ Background removed!"


def format_tool_error(error: str | None, default: str) -> str:
    return f"❌ {_escape(error or default)}"


def format_media_fetching(emoji: str, platform_name: str, audio_only: bool) -> str:
    suffix = " \\(audio only\\)" if audio_only else ""
    return (
        f"{emoji} Downloading from {_escape(platform_name)}\\.\\.\\.{suffix}\n"
        "This may take a moment\\."
    )


def format_media_ready(title: str, size_label: str) -> str:
    return (
        f"✅ Downloaded: *{_escape(title)}*\n"
        f"📁 Size: {_escape(size_label)}\n"
        "Sending now\\.\\.\\."
    )
