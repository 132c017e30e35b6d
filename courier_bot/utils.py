# courier_bot/utils.py

import asyncio
import math
import re
from collections.abc import Awaitable, Callable
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeVar
from urllib.parse import unquote, urlsplit

from telegram import Bot, Message
from telegram.error import BadRequest, NetworkError, RetryAfter, TimedOut

T = TypeVar("T")

_SELECTION_PATTERN = re.compile(r"^[+-]?\d+$")
_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def format_bytes(size_bytes: int) -> str:
    """Converts bytes into a human-readable string (e.g., KB, MB, GB)."""
    if size_bytes <= 0:
        return "0B"
    size_name = ("B", "KB", "MB", "GB", "TB")
    i = min(int(math.floor(math.log(size_bytes, 1024))), len(size_name) - 1)
    p = math.pow(1024, i)
    s = round(size_bytes / p, 2)
    return f"{s} {size_name[i]}"


def parse_selection(text: str) -> int | None:
    """
    Parses a menu reply such as ``"3"``. Zero and negative numbers are returned
    as-is so the caller can reject them as out of range.
    """
    if not text:
        return None
    stripped = text.strip()
    if not _SELECTION_PATTERN.match(stripped):
        return None
    return int(stripped)


def filename_from_url(url: str, *, decode: bool = True) -> str:
    """
    Returns the last path segment of ``url`` without its query string.

    Examples:
        - "https://cdn.example/file123.mp4?sig=xyz" -> "file123.mp4"
        - "https://cdn.example/dir/" -> ""
    """
    if not url:
        return ""
    try:
        path = urlsplit(url).path
    except ValueError:
        path = url.split("?", 1)[0]
    tail = path.rsplit("/", 1)[-1]
    return unquote(tail) if decode else tail


def sanitize_filename(name: str, fallback: str = "download") -> str:
    """Strips characters that are unsafe in file names on common filesystems."""
    cleaned = _INVALID_FILENAME_CHARS.sub("", name or "").strip().strip(".")
    cleaned = re.sub(r"\s+", " ", cleaned)
    return cleaned or fallback


def _retry_after_seconds(exc: RetryAfter, default: float) -> float:
    ra = getattr(exc, "retry_after", None)
    if isinstance(ra, timedelta):
        return ra.total_seconds()
    try:
        return float(ra) if ra is not None else default
    except (TypeError, ValueError):
        return default


async def call_with_retries(
    send: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.6,
) -> T:
    """
    Awaits ``send()`` until it succeeds, retrying on transient Telegram/network
    errors. Flood-control waits from the server are honored; other transient
    failures back off exponentially. Raises the last exception once attempts
    are exhausted.
    """
    attempt = 0
    delay = base_delay
    last_exc: Exception | None = None

    while attempt < max_attempts:
        try:
            return await send()
        except RetryAfter as e:  # Respect server backoff
            await asyncio.sleep(_retry_after_seconds(e, delay) + 0.1)
            last_exc = e
        except BadRequest:
            # A subclass of NetworkError, but the same request will fail again.
            raise
        except (TimedOut, NetworkError) as e:
            await asyncio.sleep(delay)
            delay *= 2
            last_exc = e
        attempt += 1

    # Exhausted retries
    assert last_exc is not None
    raise last_exc


async def safe_send_message(
    bot_or_message: Bot | Message | Any,
    /,
    chat_id: int | str | None = None,
    text: str | None = None,
    *,
    max_attempts: int = 3,
    base_delay: float = 0.6,
    **kwargs: Any,
) -> Message:
    """
    Sends a message with retries on transient Telegram/network errors.

    Accepts a Bot instance, or a Message (from which a Bot can be obtained).
    Returns the sent Message on success, or raises the last exception.
    """
    if text is None:
        raise ValueError("safe_send_message requires 'text'.")

    if isinstance(bot_or_message, Message):
        bot: Bot = bot_or_message.get_bot()
        if chat_id is None:
            chat_id = bot_or_message.chat_id
    else:
        bot = bot_or_message  # type: ignore[assignment]

    if chat_id is None:
        raise ValueError("safe_send_message requires 'chat_id'.")

    return await call_with_retries(
        lambda: bot.send_message(chat_id=chat_id, text=text, **kwargs),
        max_attempts=max_attempts,
        base_delay=base_delay,
    )


async def safe_send_attachment(
    bot: Bot | Any,
    method_name: str,
    field: str,
    payload: bytes | Path,
    /,
    chat_id: int | str,
    *,
    max_attempts: int = 3,
    base_delay: float = 0.6,
    **kwargs: Any,
) -> Message:
    """
    Uploads ``payload`` through ``bot.<method_name>`` (e.g. ``send_document``)
    with the same retry policy as :func:`safe_send_message`. Paths are reopened
    on every attempt so a retried upload starts from the first byte.
    """
    method = getattr(bot, method_name)

    async def _send() -> Message:
        if isinstance(payload, Path):
            with payload.open("rb") as fh:
                return await method(chat_id=chat_id, **{field: fh}, **kwargs)
        return await method(chat_id=chat_id, **{field: payload}, **kwargs)

    return await call_with_retries(
        _send, max_attempts=max_attempts, base_delay=base_delay
    )
