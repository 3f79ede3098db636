"""
ingestion/device.py
-------------------
A camera read through an external ffmpeg process.

Lifecycle::

    CLOSED --open()--> OPEN --close()--> CLOSED
    any    --dispose()--> DISPOSED   (terminal)

All state changes go through :meth:`CaptureDevice._compare_and_set`, so when
several threads call ``open()`` at once exactly one of them launches ffmpeg.

Frame reads are *not* synchronised with ``close()``: closing a device while
another thread is inside ``get_frame()`` is a caller error and the read may
fail with :class:`StreamError`. Only one thread may read frames at a time.
There is no read timeout; a stalled ffmpeg stalls the reader.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO, Sequence

import numpy as np

from ffcap.core.exceptions import CaptureStartError, ClosedDeviceError, ConfigError
from ffcap.core.models import LifecycleState, RawFrame, Resolution
from ffcap.ingestion import toolchain
from ffcap.ingestion.accumulator import read_frame
from ffcap.ingestion.base import FrameProvider
from ffcap.ingestion.channel import FrameChannel, make_channel
from ffcap.ingestion.process import CaptureProcess, ProcessHandle
from ffcap.ingestion.resolutions import parse_resolution, parse_resolutions

if TYPE_CHECKING:
    from ffcap.core.config import AppConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Session:
    """The running ffmpeg process and the stream its frames arrive on."""

    handle: ProcessHandle
    source: BinaryIO


class CaptureDevice(FrameProvider):
    """Serves BGR24 frames from one camera."""

    def __init__(
        self,
        name: str,
        resolutions: str | Sequence[Resolution],
        channel: FrameChannel,
        process: CaptureProcess,
    ) -> None:
        """
        Args:
            name:        Device path (``/dev/video0``) or DirectShow friendly name.
            resolutions: Supported sizes, as a ``"WxH WxH"`` string or a sequence.
                         The first entry is the default.
            channel:     Transport ffmpeg writes frames into.
            process:     Builds and controls the ffmpeg process.
        """
        if isinstance(resolutions, str):
            self._resolutions = parse_resolutions(resolutions)
        else:
            self._resolutions = tuple(resolutions)
            if not self._resolutions:
                raise ConfigError("Resolution list is empty")
        self._name = name
        self._channel = channel
        self._process = process
        self._resolution: Resolution | None = None

        self._state = LifecycleState.CLOSED
        self._state_lock = threading.Lock()
        # Serialises the open/close bodies so a close never misses a session
        self._lifecycle_lock = threading.RLock()
        self._session: _Session | None = None
        self._frame_id = 0

    @classmethod
    def from_config(cls, name: str, cfg: "AppConfig") -> "CaptureDevice":
        """Wire a device from the ``capture`` section of *cfg*."""
        c = cfg.capture
        process = CaptureProcess(
            executable=toolchain.executable_path(c.ffmpeg_dir),
            capture_driver=c.capture_driver or toolchain.capture_driver(),
            input_framerate=c.input_framerate,
            output_rate=c.output_rate,
            terminate_timeout_s=c.terminate_timeout_s,
        )
        channel = make_channel(c.channel, name, c.fifo_dir)
        return cls(name, c.resolutions, channel, process)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self._name!r}, "
            f"{[str(r) for r in self._resolutions]}, {self._channel!r}, "
            f"resolution={self._resolution}, state={self._state.value})"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _compare_and_set(self, expected: LifecycleState, new: LifecycleState) -> bool:
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is LifecycleState.OPEN

    @property
    def is_disposed(self) -> bool:
        return self._state is LifecycleState.DISPOSED

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def resolutions(self) -> tuple[Resolution, ...]:
        return self._resolutions

    def get_resolution(self) -> Resolution:
        if self._resolution is None:
            self._resolution = self._resolutions[0]
        return self._resolution

    def set_resolution(self, resolution: Resolution | str) -> None:
        """Select the capture size. Takes effect on the next ``open()``."""
        if isinstance(resolution, str):
            resolution = parse_resolution(resolution)
        if self.is_open:
            logger.warning("%s: resolution changed to %s while open; reopen to apply", self._name, resolution)
        self._resolution = resolution

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Start ffmpeg and attach to its frame stream. No-op if already open.

        Raises:
            ClosedDeviceError:  If the device has been disposed.
            CaptureStartError:  If any setup step fails; the device stays closed.
        """
        with self._lifecycle_lock:
            if not self._compare_and_set(LifecycleState.CLOSED, LifecycleState.OPEN):
                if self.is_disposed:
                    raise ClosedDeviceError(f"Device {self._name} has been disposed")
                return

            try:
                self._session = self._start_session()
            except Exception as exc:
                self._compare_and_set(LifecycleState.OPEN, LifecycleState.CLOSED)
                if isinstance(exc, CaptureStartError):
                    raise
                raise CaptureStartError(f"Could not open {self._name}: {exc}") from exc

            self._frame_id = 0
            logger.info("Opened %s at %s via %r", self._name, self.get_resolution(), self._channel)

    def _start_session(self) -> _Session:
        self._channel.prepare()
        handle: ProcessHandle | None = None
        try:
            arguments = self._process.build_arguments(
                self._name, self.get_resolution(), self._channel.output_target,
            )
            stdout, stderr = self._channel.stdio()
            handle = self._process.start(arguments, stdout=stdout, stderr=stderr)
            source = self._channel.open(handle)
        except Exception:
            if handle is not None:
                try:
                    self._process.terminate(handle)
                except Exception:
                    logger.exception("%s: could not stop half-started capture process", self._name)
            self._channel.release()
            raise
        return _Session(handle=handle, source=source)

    def close(self) -> None:
        """Stop ffmpeg and release the channel. No-op unless open.

        Raises:
            FatalError: If the process could not be reaped.
        """
        with self._lifecycle_lock:
            if not self._compare_and_set(LifecycleState.OPEN, LifecycleState.CLOSED):
                return
            session, self._session = self._session, None
            if session is not None:
                self._teardown(session)
            logger.info("Closed %s", self._name)

    def _teardown(self, session: _Session) -> None:
        try:
            session.source.close()
        except OSError:
            logger.warning("%s: error closing frame stream", self._name, exc_info=True)

        try:
            self._process.terminate(session.handle)
        finally:
            self._channel.release()

    def dispose(self) -> None:
        """Close if open, then retire the device for good. Idempotent."""
        while True:
            state = self._state
            if state is LifecycleState.DISPOSED:
                return
            if state is LifecycleState.OPEN:
                self.close()
                continue
            if self._compare_and_set(LifecycleState.CLOSED, LifecycleState.DISPOSED):
                logger.debug("Disposed %s", self._name)
                return

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def _read_frame(self, resolution: Resolution) -> bytearray | None:
        session = self._session
        if not self.is_open or session is None:
            return None
        return read_frame(
            session.source,
            resolution.frame_size,
            lambda: self._process.is_alive(session.handle),
        )

    def get_frame_bytes(self) -> bytearray | None:
        """Read one frame as a new BGR24 buffer, or ``None`` if not open."""
        return self._read_frame(self.get_resolution())

    def get_frame_bytes_into(self, buffer: bytearray | memoryview) -> int | None:
        """Read one frame into *buffer*.

        Returns:
            Number of bytes written, or ``None`` if the device is not open.

        Raises:
            ValueError: If *buffer* is smaller than one frame.
        """
        if not self.is_open:
            return None
        resolution = self.get_resolution()
        size = resolution.frame_size
        if len(buffer) < size:
            raise ValueError(f"Buffer holds {len(buffer)} bytes, frame needs {size}")
        data = self._read_frame(resolution)
        if data is None:
            return None
        memoryview(buffer)[:size] = data
        return size

    def get_frame(self) -> RawFrame | None:
        """Read and decode one frame, or ``None`` if not open."""
        resolution = self.get_resolution()
        data = self._read_frame(resolution)
        if data is None:
            return None
        image = np.frombuffer(data, dtype=np.uint8).reshape(
            (resolution.height, resolution.width, 3)
        )
        frame = RawFrame(
            frame_id=self._frame_id,
            timestamp_ms=time.time() * 1000.0,
            image=image,
            source=self._name,
        )
        self._frame_id += 1
        return frame

    def next_frame(self) -> RawFrame | None:
        return self.get_frame()

    @property
    def source_id(self) -> str:
        return self._name
