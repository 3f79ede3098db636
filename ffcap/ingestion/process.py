"""
ingestion/process.py
--------------------
Lifecycle of the external ffmpeg capture process.

The argument vector is the wire contract with ffmpeg: raw BGR24 frames at the
selected resolution, written either to ffmpeg's own stdout or to a FIFO path.

Usage::

    proc = CaptureProcess("ffmpeg", "video4linux2")
    args = proc.build_arguments("/dev/video0", Resolution(640, 480), STDOUT_TARGET)
    handle = proc.start(args, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
    ...
    proc.terminate(handle)
"""

from __future__ import annotations

import logging
import subprocess
import sys
from typing import Any, Sequence

from ffcap.core.exceptions import CaptureStartError, FatalError
from ffcap.core.models import Resolution
from ffcap.ingestion.toolchain import is_windows

logger = logging.getLogger(__name__)

STDOUT_TARGET = "pipe:1"
"""ffmpeg output target meaning "write to standard output"."""

ProcessHandle = subprocess.Popen


def quote_device_name(platform: str, name: str) -> str:
    """Return the ``-i`` value for *name* on *platform*.

    DirectShow wants ``video=<friendly name>``; other capture drivers take
    the device path as-is. Quoting of names with spaces is left to
    :func:`subprocess.list2cmdline`, which Popen applies on Windows.
    """
    if is_windows(platform):
        return f"video={name}"
    return name


class CaptureProcess:
    """Builds, starts, polls and stops ffmpeg capture processes."""

    def __init__(
        self,
        executable: str,
        capture_driver: str,
        platform: str = sys.platform,
        input_framerate: str = "1",
        output_rate: str = "1:2",
        terminate_timeout_s: float = 5.0,
    ) -> None:
        """
        Args:
            executable:          Path or name of the ffmpeg binary.
            capture_driver:      ffmpeg input format (``-f``), e.g. ``video4linux2``.
            platform:            ``sys.platform`` value used for device quoting.
            input_framerate:     Frame rate requested from the camera.
            output_rate:         Output frame rate (``-r``), fractions allowed.
            terminate_timeout_s: Grace period before a terminated process is killed.
        """
        self._executable = executable
        self._driver = capture_driver
        self._platform = platform
        self._input_framerate = input_framerate
        self._output_rate = output_rate
        self._terminate_timeout_s = terminate_timeout_s

    # ------------------------------------------------------------------
    # Argument vector
    # ------------------------------------------------------------------

    def build_arguments(
        self,
        device_path: str,
        resolution: Resolution | str,
        output_target: str,
    ) -> list[str]:
        """Return the full ffmpeg command line. Pure; no I/O."""
        return [
            self._executable,
            # General settings
            "-loglevel", "panic",
            "-nostdin",
            "-y",
            # Input
            "-f", self._driver,
            "-s", str(resolution),
            "-framerate", self._input_framerate,
            "-i", quote_device_name(self._platform, device_path),
            # Processing
            "-vcodec", "rawvideo",
            # Output
            "-r", self._output_rate,
            "-f", "rawvideo",
            "-vsync", "vfr",
            "-pix_fmt", "bgr24",
            output_target,
        ]

    # ------------------------------------------------------------------
    # Process control
    # ------------------------------------------------------------------

    def start(self, arguments: Sequence[str], stdout: Any, stderr: Any) -> ProcessHandle:
        """Launch ffmpeg with the given stdio layout.

        Raises:
            CaptureStartError: If the executable cannot be launched.
        """
        logger.debug("Starting capture process: %s", " ".join(arguments))
        try:
            handle = subprocess.Popen(
                list(arguments),
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
            )
        except OSError as exc:
            raise CaptureStartError(f"Could not launch {arguments[0]}: {exc}") from exc
        logger.info("Capture process started (pid %d)", handle.pid)
        return handle

    @staticmethod
    def is_alive(handle: ProcessHandle) -> bool:
        """True until the process has an observable exit status."""
        return handle.poll() is None

    def terminate(self, handle: ProcessHandle) -> int:
        """Ask the process to exit and wait for it.

        A process that ignores the request is killed after the grace period.

        Returns:
            The process exit status.

        Raises:
            FatalError: If the process cannot be reaped.
        """
        handle.terminate()
        try:
            try:
                code = handle.wait(timeout=self._terminate_timeout_s)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Capture process %d ignored terminate after %.1fs, killing",
                    handle.pid, self._terminate_timeout_s,
                )
                handle.kill()
                code = handle.wait(timeout=self._terminate_timeout_s)
        except (subprocess.TimeoutExpired, OSError) as exc:
            raise FatalError(f"Failed waiting for capture process {handle.pid}: {exc}") from exc

        logger.info("Capture process %d exited with status %s", handle.pid, code)
        return code
