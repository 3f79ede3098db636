"""
ingestion/channel.py
--------------------
Byte channels that carry raw frames from ffmpeg to the reader.

Two strategies, chosen once per device:

* :class:`StdoutChannel`    - read ffmpeg's own stdout. No filesystem state,
  but delivery timing follows ffmpeg's stdout buffering.
* :class:`NamedPipeChannel` - ffmpeg writes into a FIFO that we create first.
  Ordering is fixed: ``prepare()`` (mkfifo), launch, ``open()``.
"""

from __future__ import annotations

import atexit
import hashlib
import logging
import os
import select
import stat
import subprocess
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Protocol

from ffcap.core.exceptions import CaptureStartError, ConfigError
from ffcap.ingestion.process import STDOUT_TARGET, CaptureProcess, ProcessHandle

logger = logging.getLogger(__name__)

_WRITER_POLL_S = 0.05


class FrameChannel(Protocol):
    """Where ffmpeg writes and where the reader reads."""

    @property
    def output_target(self) -> str:
        """Value of ffmpeg's output argument."""
        ...

    def stdio(self) -> tuple[Any, Any]:
        """``(stdout, stderr)`` arguments for :func:`subprocess.Popen`."""
        ...

    def prepare(self) -> None:
        """Create any resources that must exist before ffmpeg starts."""
        ...

    def open(self, handle: ProcessHandle) -> BinaryIO:
        """Return the byte source for a freshly started process."""
        ...

    def release(self) -> None:
        """Clean up resources created by :meth:`prepare`."""
        ...


class StdoutChannel:
    """Frames come straight from the process's stdout pipe."""

    @property
    def output_target(self) -> str:
        return STDOUT_TARGET

    def stdio(self) -> tuple[Any, Any]:
        # stderr must not be interleaved with frame bytes
        return subprocess.PIPE, subprocess.DEVNULL

    def prepare(self) -> None:
        pass

    def open(self, handle: ProcessHandle) -> BinaryIO:
        if handle.stdout is None:
            raise CaptureStartError("Capture process was started without a stdout pipe")
        return handle.stdout

    def release(self) -> None:
        pass

    def __repr__(self) -> str:
        return "StdoutChannel()"


def provision_path(device: str, fifo_dir: str | Path | None = None) -> Path:
    """Deterministic FIFO path for *device*.

    The basename keeps the path readable; the digest of the full identifier
    keeps ``/dev/video0`` and ``/other/video0`` apart.
    """
    directory = Path(fifo_dir) if fifo_dir else Path(tempfile.gettempdir())
    base = device.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1] or "device"
    base = "".join(c if c.isalnum() or c in "-_." else "_" for c in base)
    digest = hashlib.sha1(device.encode("utf-8")).hexdigest()[:8]
    return directory / f"{base}-{digest}.raw"


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Could not remove FIFO %s at exit", path)


class NamedPipeChannel:
    """Frames travel through a FIFO on the filesystem."""

    def __init__(self, device: str, fifo_dir: str | Path | None = None) -> None:
        self._path = provision_path(device, fifo_dir)
        logger.debug("Using fifo %s", self._path)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def output_target(self) -> str:
        return str(self._path)

    def stdio(self) -> tuple[Any, Any]:
        # Merge ffmpeg diagnostics into a stdout nobody reads
        return subprocess.DEVNULL, subprocess.STDOUT

    def prepare(self) -> None:
        """Create the FIFO, reusing a stale one left by an earlier run."""
        try:
            mode = self._path.stat().st_mode
        except FileNotFoundError:
            mode = None
        if mode is not None:
            if stat.S_ISFIFO(mode):
                logger.debug("Reusing existing fifo %s", self._path)
                return
            raise CaptureStartError(f"{self._path} exists and is not a FIFO")

        try:
            os.mkfifo(self._path)
        except (OSError, AttributeError) as exc:
            # AttributeError: no os.mkfifo on this platform
            raise CaptureStartError(f"Could not create FIFO {self._path}: {exc}") from exc
        logger.debug("Created fifo %s", self._path)

    def open(self, handle: ProcessHandle) -> BinaryIO:
        """Open the FIFO for reading once ffmpeg has attached as the writer.

        The read end is opened non-blocking so ffmpeg can attach at its own
        pace; the wait ends as soon as the FIFO turns readable, and fails if
        *handle* exits first.

        Raises:
            CaptureStartError: If the FIFO cannot be opened or ffmpeg exits
                before writing to it.
        """
        try:
            fd = os.open(self._path, os.O_RDONLY | os.O_NONBLOCK)
        except (OSError, AttributeError) as exc:
            raise CaptureStartError(f"Could not open FIFO {self._path}: {exc}") from exc

        try:
            while True:
                readable, _, _ = select.select([fd], [], [], _WRITER_POLL_S)
                if readable:
                    break
                if not CaptureProcess.is_alive(handle):
                    raise CaptureStartError(
                        f"Capture process exited with status {handle.poll()} "
                        f"before writing to {self._path}"
                    )
            os.set_blocking(fd, True)
            return os.fdopen(fd, "rb", buffering=0)
        except BaseException:
            os.close(fd)
            raise

    def release(self) -> None:
        """Remove the FIFO; on failure defer removal to interpreter exit."""
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove FIFO %s (%s), deferring to exit", self._path, exc)
            atexit.register(_remove_quietly, self._path)

    def __repr__(self) -> str:
        return f"NamedPipeChannel({self._path})"


def make_channel(kind: str, device: str, fifo_dir: str | Path | None = None) -> FrameChannel:
    """Build the channel strategy named by *kind* (``"pipe"`` or ``"stdout"``)."""
    if kind == "stdout":
        return StdoutChannel()
    if kind == "pipe":
        return NamedPipeChannel(device, fifo_dir)
    raise ConfigError(f"Unknown channel kind: {kind!r}")
