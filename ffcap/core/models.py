"""
core/models.py
--------------
Plain data objects shared across the capture subsystem.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import numpy as np

BYTES_PER_PIXEL = 3
"""BGR24: one byte per channel, no padding."""


@dataclass(frozen=True)
class Resolution:
    """A supported capture size in pixels."""

    width: int
    height: int

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def frame_size(self) -> int:
        """Byte length of one BGR24 frame at this resolution."""
        return self.width * self.height * BYTES_PER_PIXEL


class LifecycleState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    DISPOSED = "disposed"


@dataclass
class RawFrame:
    """A single decoded frame as delivered by a FrameProvider."""

    frame_id: int
    """Zero-based index of the frame since the device was opened."""

    timestamp_ms: float
    """Wall-clock capture time in milliseconds since the epoch."""

    image: np.ndarray
    """BGR image array, shape (H, W, 3), dtype uint8."""

    source: str = ""
    """Device identifier the frame came from."""
