from __future__ import annotations

from typing import Optional


class ConfigurationError(ValueError):
    """Raised when pipeline settings or the compression basis are inconsistent."""


class MalformedRowError(ValueError):
    """
    Raised when an incoming row cannot be processed.

    The pipeline never skips or resynchronizes after this error: per-channel
    filter memory, running statistics and cooldown counters are tied to the
    sample index, so the run is aborted instead.
    """

    def __init__(self, message: str, *, row_index: int, channel: Optional[int] = None) -> None:
        self.row_index = int(row_index)
        self.channel = channel
        location = f"row {self.row_index}"
        if channel is not None:
            location += f", channel {channel}"
        super().__init__(f"{message} ({location})")


__all__ = ["ConfigurationError", "MalformedRowError"]
