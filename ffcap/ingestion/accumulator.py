"""
ingestion/accumulator.py
------------------------
Turns an unbounded byte stream into fixed-size frames.

The raw stream has no headers or markers; a frame is exactly
``width * height * 3`` bytes and framing is purely by count.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from ffcap.core.exceptions import StreamError

logger = logging.getLogger(__name__)

_IDLE_WAIT_S = 0.005


class ByteSource(Protocol):
    def readinto(self, buffer: memoryview) -> Optional[int]: ...


def read_frame(
    source: ByteSource,
    frame_size: int,
    is_alive: Callable[[], bool],
) -> bytearray:
    """Block until *frame_size* bytes have been read from *source*.

    Partial reads are re-requested for the remaining count. The loop stops
    early on end-of-stream, or when a read yields nothing and the producer
    is no longer alive. In that case the returned buffer is still
    *frame_size* long, with its unread tail left zeroed.

    Raises:
        StreamError: If reading fails for any reason other than end-of-stream.
    """
    buffer = bytearray(frame_size)
    view = memoryview(buffer)
    cursor = 0

    while cursor < frame_size:
        try:
            n = source.readinto(view[cursor:])
        except (OSError, ValueError) as exc:
            raise StreamError(f"Frame read failed after {cursor}/{frame_size} bytes: {exc}") from exc

        if n:
            cursor += n
            continue
        if n == 0 or not is_alive():
            break
        # non-blocking source with nothing buffered yet
        time.sleep(_IDLE_WAIT_S)

    if cursor < frame_size:
        logger.warning("Short frame: got %d of %d bytes", cursor, frame_size)
    return buffer
