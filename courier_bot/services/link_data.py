from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..errors import TransferError


@dataclass(frozen=True)
class SearchCandidate:
    """A title found on the search index.

    Attributes:
        title: Display title taken from the listing.
        detail_url: Absolute URL of the title's detail page.
    """

    title: str
    detail_url: str


@dataclass(frozen=True)
class ResolvedLink:
    """A final, directly fetchable download location.

    Attributes:
        label: Human-facing label scraped next to the link.
        url: The post-redirect URL of the file itself.
    """

    label: str
    url: str


@dataclass
class TransferResult:
    """Outcome of one streaming download.

    On success the caller owns ``local_path`` and must remove it once the file
    has been forwarded.
    """

    ok: bool
    local_path: Optional[Path] = None
    filename: Optional[str] = None
    bytes_total: Optional[int] = None
    error: Optional[TransferError] = None
    too_large: bool = False

    @classmethod
    def failure(cls, error: TransferError) -> "TransferResult":
        return cls(ok=False, error=error)

    @classmethod
    def oversized(cls, size: int) -> "TransferResult":
        """Transfer stopped because the file is larger than the caller allows."""
        return cls(
            ok=False,
            bytes_total=size,
            error=TransferError(f"File of {size} bytes is over the size limit"),
            too_large=True,
        )
