# courier_bot/services/download_manager.py

import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

import httpx

from ..config import (
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_TIMEOUT_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    logger,
)
from ..errors import TransferError
from ..utils import filename_from_url, format_bytes, sanitize_filename
from .link_data import TransferResult
from .scraping_service import build_http_client

VIDEO_EXTENSIONS = (".mp4", ".mkv", ".avi", ".mov", ".webm", ".m4v")
DEFAULT_EXTENSION = ".mp4"
USER_PROGRESS_STEP = 25
LOG_PROGRESS_STEP = 10
UNSIZED_LOG_STEP_BYTES = 10 * 1024 * 1024

ProgressCallback = Callable[[int], None]


class ProgressTracker:
    """
    Turns a stream of chunk sizes into throttled progress signals.

    With a known total, ``on_progress`` receives the highest newly crossed
    quarter (25, 50, 75) and a log line is written for each new 10% step.
    Without a total only the log fires, once per 10 MB received. The callback
    must not block; anything it raises is logged and ignored.
    """

    def __init__(
        self,
        label: str,
        total_bytes: int | None,
        on_progress: ProgressCallback | None = None,
    ):
        self.label = label
        self.total_bytes = total_bytes
        self.on_progress = on_progress
        self.bytes_done = 0
        self._last_quarter = 0
        self._last_decile = 0
        self._last_block = 0

    @property
    def percent(self) -> int | None:
        if not self.total_bytes:
            return None
        return min(100, self.bytes_done * 100 // self.total_bytes)

    def update(self, chunk_size: int) -> None:
        self.bytes_done += chunk_size
        percent = self.percent

        if percent is None:
            block = self.bytes_done // UNSIZED_LOG_STEP_BYTES
            if block > self._last_block:
                self._last_block = block
                logger.info(
                    f"[TRANSFER] {self.label}: {format_bytes(self.bytes_done)} received"
                )
            return

        decile = percent // LOG_PROGRESS_STEP
        if decile > self._last_decile:
            self._last_decile = decile
            logger.info(f"[TRANSFER] {self.label}: {percent}%")

        # 100 is never reported; completion has its own notice.
        quarter = min(percent // USER_PROGRESS_STEP, 3)
        if quarter > self._last_quarter:
            self._last_quarter = quarter
            self._notify(quarter * USER_PROGRESS_STEP)

    def _notify(self, value: int) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(value)
        except Exception as e:
            logger.warning(
                f"[TRANSFER] Progress callback failed for {self.label}: {e}",
                exc_info=True,
            )


def build_transfer_filename(url: str, display_label: str) -> str:
    """
    Derives the delivered file name from the URL path tail.

    Examples:
        - ("https://cdn.example/Movie%20One.mkv?sig=1", "x") -> "Movie One.mkv"
        - ("https://cdn.example/file123", "x") -> "file123.mp4"
        - ("https://cdn.example/", "Inception") -> "Inception.mp4"
    """
    tail = sanitize_filename(filename_from_url(url), fallback="")
    if not tail:
        return f"{sanitize_filename(display_label)}{DEFAULT_EXTENSION}"
    if not tail.lower().endswith(VIDEO_EXTENSIONS):
        return f"{tail}{DEFAULT_EXTENSION}"
    return tail


def _content_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("content-length")
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


def _default_staging_dir() -> Path:
    return Path(tempfile.gettempdir()) / "courier_bot"


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.error(f"[TRANSFER] Could not delete staging file {path}: {e}")


async def transfer(
    url: str,
    display_label: str,
    on_progress: ProgressCallback | None = None,
    *,
    staging_dir: Path | None = None,
    client: httpx.AsyncClient | None = None,
    max_bytes: int | None = None,
) -> TransferResult:
    """
    Streams ``url`` into the staging directory.

    The body is written to ``transfer_<time_ns>.part`` and renamed to
    ``<time_ns>_<filename>`` once complete. With ``max_bytes`` set, a file whose
    ``Content-Length`` is over the cap is not fetched at all, and a stream
    without one is abandoned once it passes the cap; both come back as
    ``TransferResult.oversized``. Failures are returned as a
    ``TransferResult`` carrying a ``TransferError``; the partial file is
    removed on every path where it is not handed to the caller, including
    cancellation.
    """
    staging_dir = Path(staging_dir) if staging_dir else _default_staging_dir()
    stamp = time.time_ns()
    part_path = staging_dir / f"transfer_{stamp}.part"
    handed_over = False

    owns_client = client is None
    if client is None:
        client = build_http_client(
            timeout=httpx.Timeout(REQUEST_TIMEOUT_SECONDS, read=DOWNLOAD_TIMEOUT_SECONDS)
        )

    logger.info(f"[TRANSFER] Starting '{display_label}' from {url}")
    try:
        staging_dir.mkdir(parents=True, exist_ok=True)
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            expected = _content_length(response)
            if max_bytes is not None and expected is not None and expected > max_bytes:
                logger.info(
                    f"[TRANSFER] Skipping '{display_label}': {format_bytes(expected)} "
                    f"is over the {format_bytes(max_bytes)} limit."
                )
                return TransferResult.oversized(expected)

            tracker = ProgressTracker(display_label, expected, on_progress)
            with part_path.open("wb") as fh:
                async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                    fh.write(chunk)
                    tracker.update(len(chunk))
                    if max_bytes is not None and tracker.bytes_done > max_bytes:
                        logger.info(
                            f"[TRANSFER] Abandoning '{display_label}' after "
                            f"{format_bytes(tracker.bytes_done)}; over the size limit."
                        )
                        return TransferResult.oversized(tracker.bytes_done)

        filename = build_transfer_filename(url, display_label)
        final_path = staging_dir / f"{stamp}_{filename}"
        os.replace(part_path, final_path)
        handed_over = True

        logger.info(
            f"[TRANSFER] Finished '{display_label}': {format_bytes(tracker.bytes_done)} "
            f"-> {final_path}"
        )
        return TransferResult(
            ok=True,
            local_path=final_path,
            filename=filename,
            bytes_total=tracker.bytes_done,
        )

    except httpx.HTTPError as e:
        logger.error(f"[TRANSFER] Download of {url} failed: {e}")
        return TransferResult.failure(TransferError(f"Download failed: {e}"))
    except OSError as e:
        logger.error(f"[TRANSFER] Could not write staging file for {url}: {e}")
        return TransferResult.failure(TransferError(f"Could not save file: {e}"))
    finally:
        if not handed_over:
            _remove_quietly(part_path)
        if owns_client:
            await client.aclose()
