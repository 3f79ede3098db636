"""
ingestion/base.py
-----------------
Abstract base class for frame providers.

Concrete implementations must implement ``open()``, ``close()`` and
``next_frame()``; iteration and the context manager protocol come for free.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

from ffcap.core.models import RawFrame


class FrameProvider(ABC):
    """Interface contract for anything that yields :class:`RawFrame` objects."""

    @abstractmethod
    def open(self) -> None:
        """Start the source. Safe to call when already open."""

    @abstractmethod
    def close(self) -> None:
        """Release resources held by the provider. Safe to call twice."""

    @abstractmethod
    def next_frame(self) -> RawFrame | None:
        """Return the next :class:`RawFrame`, or ``None`` when not available."""

    # ------------------------------------------------------------------
    # Convenience: iterable + context manager
    # ------------------------------------------------------------------

    def frames(self, limit: int = -1) -> Iterator[RawFrame]:
        """Yield frames until the source stops (or *limit* frames, if >= 0)."""
        count = 0
        while limit < 0 or count < limit:
            frame = self.next_frame()
            if frame is None:
                return
            yield frame
            count += 1

    def __enter__(self) -> "FrameProvider":
        self.open()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    @property
    def source_id(self) -> str:
        """Human-readable source identifier."""
        return ""
