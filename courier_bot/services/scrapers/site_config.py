from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from ...config import SITE_CONFIG_NAME

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "scrapers" / "configs"

# Parsed site descriptions keyed by absolute path.
_config_cache: dict[Path, dict[str, Any]] = {}

_REQUIRED_KEYS = {
    "site_name",
    "base_url",
    "search_path",
    "search_selectors",
    "detail_selectors",
    "gateway_form",
    "direct_hosts",
    "gateway_hosts",
}

_HOST_LIST_KEYS = ("direct_hosts", "gateway_hosts")


def _validated(data: Any, source: Path) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{source.name}: expected a mapping at the top level")

    missing = sorted(_REQUIRED_KEYS.difference(data))
    if missing:
        raise ValueError(f"{source.name}: missing keys {', '.join(missing)}")

    for key in _HOST_LIST_KEYS:
        hosts = data[key]
        if not isinstance(hosts, list) or not hosts:
            raise ValueError(f"{source.name}: '{key}' must be a non-empty list")
        # Host matching compares against lowercased URL netlocs.
        data[key] = [str(host).strip().lower() for host in hosts]
    return data


def load_site_config(config_path: Path) -> dict[str, Any]:
    """
    Reads a YAML site description and checks the keys the resolver relies on.

    The parsed result is kept per path for the life of the process.

    Raises:
        FileNotFoundError: ``config_path`` does not exist.
        ValueError: the document is not a mapping, lacks a required key, or
            has an empty host allow-list.
    """
    key = config_path.resolve()
    if key in _config_cache:
        return _config_cache[key]

    if not key.is_file():
        raise FileNotFoundError(f"Site config not found: {key}")

    config = _validated(yaml.safe_load(key.read_text(encoding="utf-8")), key)
    _config_cache[key] = config
    return config


def default_site_config() -> dict[str, Any]:
    """Returns the bundled configuration for the default search site."""
    return load_site_config(CONFIG_DIR / SITE_CONFIG_NAME)
