# courier_bot/config.py

import configparser
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

# --- Constants ---
SEARCH_RESULTS_LIMIT = 10
SESSION_TTL_SECONDS = 15 * 60
SESSION_SWEEP_INTERVAL_SECONDS = 60
REQUEST_TIMEOUT_SECONDS = 30
DOWNLOAD_TIMEOUT_SECONDS = 120
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
MAX_UPLOAD_MB = 50
MAX_MEDIA_MB = 64
SITE_CONFIG_NAME = "thenkiri.yaml"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/110.0.0.0 Safari/537.36"
)

# Setup basic logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass(frozen=True)
class BotSettings:
    """Runtime settings read from ``config.ini``."""

    token: str
    staging_dir: Path
    session_ttl_seconds: int = SESSION_TTL_SECONDS
    max_upload_bytes: int = MAX_UPLOAD_MB * 1024 * 1024
    max_media_bytes: int = MAX_MEDIA_MB * 1024 * 1024


def get_configuration(config_path: str = "config.ini") -> BotSettings:
    """
    Reads the bot token, staging path, session TTL and size limits from
    ``config.ini``. Exits the process when the file or the token is missing.
    """
    if not os.path.exists(config_path):
        logger.critical(
            f"Configuration file '{config_path}' not found. Please create it."
        )
        sys.exit(1)

    parser = configparser.ConfigParser()
    with open(config_path, encoding="utf-8") as f:
        parser.read_string(f.read())

    token = parser.get("telegram", "bot_token", fallback=None)
    if not token or token == "PLACE_TOKEN_HERE":
        logger.critical(f"Bot token not found or not set in '{config_path}'.")
        sys.exit(1)

    staging_dir = _load_staging_dir(parser)

    ttl_minutes = parser.getint(
        "session", "ttl_minutes", fallback=SESSION_TTL_SECONDS // 60
    )
    if ttl_minutes <= 0:
        raise ValueError("'ttl_minutes' must be a positive number of minutes.")

    max_upload_mb = parser.getint("limits", "max_upload_mb", fallback=MAX_UPLOAD_MB)
    max_media_mb = parser.getint("limits", "max_media_mb", fallback=MAX_MEDIA_MB)

    logger.info(
        f"[CONFIG] Session TTL: {ttl_minutes} min, upload cap: {max_upload_mb} MB, "
        f"media cap: {max_media_mb} MB."
    )
    return BotSettings(
        token=token.strip(),
        staging_dir=staging_dir,
        session_ttl_seconds=ttl_minutes * 60,
        max_upload_bytes=max_upload_mb * 1024 * 1024,
        max_media_bytes=max_media_mb * 1024 * 1024,
    )


def _load_staging_dir(config: configparser.ConfigParser) -> Path:
    """
    Resolves the staging directory used for in-flight downloads and tool
    output. Falls back to the system temp dir and creates the path if needed.
    """
    raw_path = config.get("host", "staging_path", fallback=None)
    if raw_path and raw_path.strip():
        staging_dir = Path(os.path.expanduser(raw_path.strip()))
    else:
        staging_dir = Path(tempfile.gettempdir()) / "courier_bot"

    logger.info(f"[CONFIG] Resolved staging path: {staging_dir}")
    if not staging_dir.exists():
        logger.info(f"Path '{staging_dir}' not found. Creating it.")
        os.makedirs(staging_dir)
    return staging_dir
