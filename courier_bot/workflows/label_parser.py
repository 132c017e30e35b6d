from __future__ import annotations

import re

# A season/episode letter must not follow another letter, so "Episodes 10"
# is not read as season 10 while "S01E03" still splits into both tokens.
SEASON_PATTERN = re.compile(r"(?<![a-z])s(?:eason)?\s*(\d+)", re.IGNORECASE)
EPISODE_PATTERN = re.compile(r"(?<![a-z])e(?:pisode)?\s*(\d+)", re.IGNORECASE)
EMBEDDED_SEASON_PATTERN = re.compile(r"\s*\bs(?:eason)?\s*\d+.*$", re.IGNORECASE)
DOWNLOAD_WORD_PATTERN = re.compile(r"download", re.IGNORECASE)
NOISE_PATTERN = re.compile(r"\.(?:mkv|mp4|html|nkiri|com)", re.IGNORECASE)
SEPARATOR_PATTERN = re.compile(r"[._-]")
WHITESPACE_PATTERN = re.compile(r"\s+")


def _collapse(value: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", value).strip()


def normalize_link_label(raw_label: str, position: int, parent_title: str) -> str:
    """
    Turns a scraped link label into a menu entry.

    ``position`` is the zero-based index of the link in the menu. Episode
    links become ``"<Show> S<season> Episode <position+1>"``; anything else is
    stripped of download/extension noise and prefixed with the parent title
    when it does not already mention it. The result is never empty.
    """
    raw_label = raw_label or ""
    parent_title = (parent_title or "").strip()
    ordinal = position + 1

    episode_match = EPISODE_PATTERN.search(raw_label)
    if episode_match:
        season_match = SEASON_PATTERN.search(raw_label)
        show_title = EMBEDDED_SEASON_PATTERN.sub("", parent_title).strip()
        season_part = f"S{int(season_match.group(1))}" if season_match else ""
        label = _collapse(f"{show_title} {season_part} Episode {ordinal}")
    else:
        cleaned = DOWNLOAD_WORD_PATTERN.sub("", raw_label)
        cleaned = NOISE_PATTERN.sub(" ", cleaned)
        cleaned = _collapse(SEPARATOR_PATTERN.sub(" ", cleaned))
        if parent_title and parent_title.lower() not in cleaned.lower():
            cleaned = _collapse(f"{parent_title} - {cleaned} {ordinal}")
        label = cleaned

    if label:
        return label
    return raw_label.strip() or f"Link {ordinal}"
