# courier_bot/services/media_tools.py

import asyncio
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from ..config import logger
from ..errors import MediaToolError

STICKER_FILTER = (
    "scale=512:512:force_original_aspect_ratio=decrease,format=rgba,"
    "pad=512:512:(ow-iw)/2:(oh-ih)/2:color=#00000000"
)
FFMPEG_TIMEOUT_SECONDS = 120
REMBG_TIMEOUT_SECONDS = 120
REMBG_CPU_TIMEOUT_SECONDS = 180
REMBG_PROBE_TIMEOUT_SECONDS = 5


@dataclass
class MediaToolResult:
    """Outcome of an external media tool run.

    On success ``file_path`` points at a staging file the caller must delete.
    """

    success: bool
    file_path: Path | None = None
    title: str | None = None
    is_audio: bool = False
    error: str | None = None


async def run_tool(command: list[str], timeout: float) -> subprocess.CompletedProcess:
    """Runs an external command off the event loop, raising on a non-zero exit."""
    logger.info(f"[MEDIA] Executing: {' '.join(command)}")
    return await asyncio.to_thread(
        subprocess.run,
        command,
        check=True,
        capture_output=True,
        text=True,
        timeout=timeout,
    )


def _process_output(e: subprocess.CalledProcessError) -> str:
    return (e.stderr or e.stdout or str(e)).strip()


def build_sticker_command(
    input_path: Path, output_path: Path, animated: bool
) -> list[str]:
    if animated:
        return [
            "ffmpeg", "-y", "-i", str(input_path),
            "-vcodec", "libwebp",
            "-vf", STICKER_FILTER,
            "-lossless", "0", "-compression_level", "6", "-q:v", "50",
            "-loop", "0", "-preset", "default", "-an", "-vsync", "0",
            str(output_path),
        ]  # fmt: skip
    return [
        "ffmpeg", "-y", "-i", str(input_path),
        "-vf", STICKER_FILTER,
        "-c:v", "libwebp",
        "-lossless", "0", "-compression_level", "6", "-q:v", "80",
        str(output_path),
    ]  # fmt: skip


async def convert_to_sticker(data: bytes, animated: bool, *, staging_dir: Path) -> bytes:
    """
    Transcodes an image (or a GIF-style animation) to a 512x512 WebP sticker.

    Raises:
        MediaToolError: ffmpeg is missing, failed, or produced no output.
    """
    stamp = time.time_ns()
    input_path = staging_dir / f"sticker_in_{stamp}.{'mp4' if animated else 'png'}"
    output_path = staging_dir / f"sticker_out_{stamp}.webp"

    try:
        staging_dir.mkdir(parents=True, exist_ok=True)
        input_path.write_bytes(data)
        await run_tool(
            build_sticker_command(input_path, output_path, animated),
            FFMPEG_TIMEOUT_SECONDS,
        )
        return output_path.read_bytes()
    except FileNotFoundError as e:
        # Raised both for a missing ffmpeg binary and a missing output file.
        raise MediaToolError(f"Sticker conversion failed: {e}") from e
    except subprocess.CalledProcessError as e:
        logger.error(f"[MEDIA] ffmpeg failed: {_process_output(e)}")
        raise MediaToolError("Sticker conversion failed.") from e
    except (subprocess.TimeoutExpired, OSError) as e:
        raise MediaToolError(f"Sticker conversion failed: {e}") from e
    finally:
        for path in (input_path, output_path):
            path.unlink(missing_ok=True)


async def _rembg_available() -> bool:
    try:
        await run_tool(["rembg", "--version"], REMBG_PROBE_TIMEOUT_SECONDS)
    except (OSError, subprocess.SubprocessError):
        return False
    return True


async def remove_background(input_path: Path, *, staging_dir: Path) -> MediaToolResult:
    """
    Cuts the background out of ``input_path`` with ``rembg``.

    A failure mentioning CUDA or GPU is retried once with ``--force-cpu``.
    Failures are returned as an unsuccessful result with a readable error and
    leave no output file behind.
    """
    if not await _rembg_available():
        return MediaToolResult(
            success=False,
            error="rembg is not installed. Please install it: pip install rembg[cli]",
        )

    output_path = staging_dir / f"nobg_{time.time_ns()}.png"
    command = ["rembg", "i", str(input_path), str(output_path)]
    error: str | None = None

    try:
        await run_tool(command, REMBG_TIMEOUT_SECONDS)
    except subprocess.CalledProcessError as e:
        details = _process_output(e)
        if "CUDA" not in details and "GPU" not in details:
            logger.error(f"[MEDIA] rembg failed: {details}")
            error = details or "Failed to remove background"
        else:
            logger.warning("[MEDIA] rembg GPU failure; retrying with --force-cpu.")
            output_path.unlink(missing_ok=True)
            try:
                await run_tool(
                    ["rembg", "i", "--force-cpu", str(input_path), str(output_path)],
                    REMBG_CPU_TIMEOUT_SECONDS,
                )
            except subprocess.CalledProcessError as cpu_error:
                details = _process_output(cpu_error)
                logger.error(f"[MEDIA] rembg CPU fallback failed: {details}")
                error = details or "Failed with CPU fallback"
            except (subprocess.TimeoutExpired, OSError) as cpu_error:
                logger.error(f"[MEDIA] rembg CPU fallback did not complete: {cpu_error}")
                error = str(cpu_error)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.error(f"[MEDIA] rembg did not complete: {e}")
        error = str(e)

    if error is not None:
        output_path.unlink(missing_ok=True)
        return MediaToolResult(success=False, error=error)

    if not output_path.exists():
        return MediaToolResult(
            success=False, error="Background removal completed but output not found"
        )

    logger.info(f"[MEDIA] Background removed: {output_path}")
    return MediaToolResult(success=True, file_path=output_path)
