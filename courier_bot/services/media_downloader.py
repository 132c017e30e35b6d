# courier_bot/services/media_downloader.py

import asyncio
import re
import time
from enum import Enum
from pathlib import Path
from typing import Any

import yt_dlp
from yt_dlp.utils import DownloadError

from ..config import MAX_MEDIA_MB, logger
from .media_tools import MediaToolResult

SOCKET_TIMEOUT_SECONDS = 30
ERROR_DETAIL_LIMIT = 200


class Platform(str, Enum):
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    TWITTER = "twitter"
    UNKNOWN = "unknown"


_PLATFORM_HOSTS = [
    (Platform.YOUTUBE, re.compile(r"^https?://(www\.)?(youtube\.com|youtu\.be)/", re.I)),
    (Platform.INSTAGRAM, re.compile(r"^https?://(www\.)?(instagram\.com|instagr\.am)/", re.I)),
    (Platform.TIKTOK, re.compile(r"^https?://(www\.)?(tiktok\.com|vm\.tiktok\.com)/", re.I)),
    (Platform.TWITTER, re.compile(r"^https?://(www\.)?(twitter\.com|x\.com)/", re.I)),
]

# Only links that point at a single post or video are accepted.
_MEDIA_URL_PATTERNS = [
    re.compile(r"https?://(www\.)?(youtube\.com/watch\?v=[\w-]+|youtu\.be/[\w-]+)\S*", re.I),
    re.compile(r"https?://(www\.)?instagram\.com/(p|reel|tv)/[\w-]+\S*", re.I),
    re.compile(r"https?://(www\.)?(tiktok\.com/@[\w.]+/video/\d+|vm\.tiktok\.com/\w+)\S*", re.I),
    re.compile(r"https?://(www\.)?(twitter\.com|x\.com)/\w+/status/\d+\S*", re.I),
]

_PLATFORM_EMOJI = {
    Platform.YOUTUBE: "📺",
    Platform.INSTAGRAM: "📸",
    Platform.TIKTOK: "🎵",
    Platform.TWITTER: "🐦",
}

_AUDIO_INTENT = re.compile(r"\b(audio|mp3|music)\b", re.I)


def detect_platform(url: str) -> Platform:
    for platform, pattern in _PLATFORM_HOSTS:
        if pattern.match(url):
            return platform
    return Platform.UNKNOWN


def extract_media_url(text: str) -> tuple[str, Platform] | None:
    """Returns the first supported post/video URL in ``text`` and its platform."""
    if not text:
        return None
    for pattern in _MEDIA_URL_PATTERNS:
        match = pattern.search(text)
        if match:
            url = match.group(0)
            return url, detect_platform(url)
    return None


def wants_audio_only(text: str) -> bool:
    return bool(text and _AUDIO_INTENT.search(text))


def platform_emoji(platform: Platform) -> str:
    return _PLATFORM_EMOJI.get(platform, "📥")


def classify_download_error(details: str) -> str:
    """Maps a yt-dlp error message to a message fit for the user."""
    lowered = details.lower()
    if "ffmpeg" in lowered and ("not found" in lowered or "not installed" in lowered):
        return "ffmpeg is not installed. Please install it."
    if "Private" in details or "protected" in details:
        return "This content is private or protected."
    if "unavailable" in details or "deleted" in details:
        return "This content is unavailable or has been deleted."
    if "age" in details:
        return "This content is age-restricted."
    if "copyright" in details:
        return "This content is blocked due to copyright."
    return details[:ERROR_DETAIL_LIMIT] or "Failed to download"


def build_ydl_options(output_template: str, audio_only: bool) -> dict[str, Any]:
    options: dict[str, Any] = {
        "outtmpl": output_template,
        "quiet": True,
        "no_warnings": True,
        "noplaylist": True,
        "socket_timeout": SOCKET_TIMEOUT_SECONDS,
    }
    if audio_only:
        options["format"] = "bestaudio/best"
        options["postprocessors"] = [
            {
                "key": "FFmpegExtractAudio",
                "preferredcodec": "mp3",
                "preferredquality": "0",
            }
        ]
    else:
        options["format"] = "bestvideo[height<=720]+bestaudio/best[height<=720]/best"
        options["merge_output_format"] = "mp4"
    return options


def _downloaded_path(ydl: yt_dlp.YoutubeDL, info: dict[str, Any]) -> Path | None:
    # Post-processed files (merged mp4, extracted mp3) are listed here.
    for entry in info.get("requested_downloads") or []:
        filepath = entry.get("filepath")
        if filepath and Path(filepath).exists():
            return Path(filepath)
    prepared = Path(ydl.prepare_filename(info))
    return prepared if prepared.exists() else None


def _run_download(url: str, options: dict[str, Any]) -> tuple[str | None, Path | None]:
    with yt_dlp.YoutubeDL(options) as ydl:
        info = ydl.extract_info(url, download=True)
        if not info:
            return None, None
        return info.get("title"), _downloaded_path(ydl, info)


def _remove_staged(staging_dir: Path, stem: str) -> None:
    # yt-dlp leaves .part and per-format fragments next to the final file.
    for leftover in staging_dir.glob(f"{stem}*"):
        leftover.unlink(missing_ok=True)


async def download_media(
    url: str,
    audio_only: bool = False,
    *,
    staging_dir: Path,
    max_bytes: int = MAX_MEDIA_MB * 1024 * 1024,
) -> MediaToolResult:
    """
    Fetches a social-media post with ``yt-dlp``.

    Video is capped at 720p and merged to mp4; audio-only runs extract mp3.
    Files above ``max_bytes`` are deleted and reported as too large. Every
    failure comes back as an unsuccessful result with a classified message,
    and nothing is left in ``staging_dir``.
    """
    platform = detect_platform(url)
    prefix = "media" if platform is Platform.UNKNOWN else platform.value
    stem = f"{prefix}_{time.time_ns()}"
    options = build_ydl_options(str(staging_dir / f"{stem}.%(ext)s"), audio_only)

    try:
        staging_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[MEDIA] Downloading from {platform.value}: {url}")
        title, file_path = await asyncio.to_thread(_run_download, url, options)
    except DownloadError as e:
        _remove_staged(staging_dir, stem)
        logger.error(f"[MEDIA] {platform.value} download failed: {e}")
        return MediaToolResult(success=False, error=classify_download_error(str(e)))
    except OSError as e:
        _remove_staged(staging_dir, stem)
        logger.error(f"[MEDIA] {platform.value} download did not complete: {e}")
        return MediaToolResult(success=False, error=classify_download_error(str(e)))

    if file_path is None:
        _remove_staged(staging_dir, stem)
        return MediaToolResult(
            success=False, error="Download completed but file not found"
        )

    size_bytes = file_path.stat().st_size
    size_mb = size_bytes / (1024 * 1024)
    if size_bytes > max_bytes:
        _remove_staged(staging_dir, stem)
        file_path.unlink(missing_ok=True)
        return MediaToolResult(
            success=False,
            error=(
                f"File too large ({size_mb:.1f}MB). Maximum is "
                f"{max_bytes // (1024 * 1024)}MB. Try audio-only for music."
            ),
        )

    title = (title or "").strip()[:100] or f"{platform.value.capitalize()} Video"
    logger.info(f"[MEDIA] Downloaded: {title} ({size_mb:.2f}MB)")
    return MediaToolResult(
        success=True, file_path=file_path, title=title, is_audio=audio_only
    )
