# courier_bot/errors.py

from __future__ import annotations


class CourierError(Exception):
    """Base class for failures raised inside the bot's own services."""


class FetchError(CourierError):
    """An outbound HTTP request failed (connect, timeout or bad status)."""


class ParseError(CourierError):
    """A scraped page did not have the structure the parser expects."""


class UpstreamRedirectMissing(CourierError):
    """A gateway accepted the form replay but answered without a Location."""


class TransferError(CourierError):
    """Streaming a remote file into the staging area failed."""


class DeliveryError(CourierError):
    """Forwarding a finished artifact through the chat transport failed."""


class MediaToolError(CourierError):
    """An external media tool (ffmpeg, rembg) failed."""


class InvalidSelection(CourierError):
    """A numeric reply fell outside the menu the user was shown."""

    def __init__(self, selection: int, upper_bound: int):
        super().__init__(f"Selection {selection} is outside 1..{upper_bound}")
        self.selection = selection
        self.upper_bound = upper_bound
