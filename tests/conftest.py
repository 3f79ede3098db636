"""
conftest.py
-----------
Shared pytest fixtures for the ffcap test suite.
"""

from __future__ import annotations

import io
import sys
import threading
import time

import pytest

from ffcap.ingestion.channel import StdoutChannel
from ffcap.ingestion.device import CaptureDevice
from ffcap.ingestion.process import CaptureProcess


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeHandle:
    """Stands in for subprocess.Popen; ``stdout`` is any readable stream."""

    def __init__(self, stdout=None, pid: int = 4242) -> None:
        self.stdout = stdout
        self.pid = pid
        self.returncode = None

    def poll(self):
        return self.returncode


class SpyProcess(CaptureProcess):
    """CaptureProcess that never spawns anything and counts launches."""

    def __init__(self, payload: bytes = b"", start_delay_s: float = 0.0) -> None:
        super().__init__("ffmpeg", "video4linux2", platform="linux")
        self.payload = payload
        self.start_delay_s = start_delay_s
        self.launches = 0
        self.terminated: list[FakeHandle] = []
        self.arguments: list[list[str]] = []
        self._lock = threading.Lock()

    def start(self, arguments, stdout, stderr):
        with self._lock:
            self.launches += 1
        self.arguments.append(list(arguments))
        if self.start_delay_s:
            time.sleep(self.start_delay_s)
        return FakeHandle(io.BytesIO(self.payload))

    def terminate(self, handle):
        handle.returncode = -15
        self.terminated.append(handle)
        return -15


class RecordingChannel(StdoutChannel):
    """StdoutChannel that records prepare/release calls."""

    def __init__(self) -> None:
        self.prepared = 0
        self.released = 0

    def prepare(self) -> None:
        self.prepared += 1

    def release(self) -> None:
        self.released += 1


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def spy_process() -> SpyProcess:
    """Serves one all-zero 640x480 frame, then end-of-stream."""
    return SpyProcess(payload=bytes(640 * 480 * 3))


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def make_device(recording_channel):
    """Factory for a CaptureDevice wired to a SpyProcess and RecordingChannel.

    Returns ``(device, process)``.
    """

    def _make(resolutions="640x480 320x240", payload=None, start_delay_s=0.0):
        if payload is None:
            payload = bytes(640 * 480 * 3)
        process = SpyProcess(payload=payload, start_delay_s=start_delay_s)
        device = CaptureDevice("/dev/video0", resolutions, recording_channel, process)
        return device, process

    return _make


@pytest.fixture
def fake_ffmpeg(tmp_path):
    """A Python script named ``ffmpeg`` that mimics raw BGR24 output.

    Writes two frames (filled with 0x00 then 0x01) to the output target
    given as the last argument, then exits. With ``FAKE_FFMPEG_HOLD=1`` in
    the environment it stays alive afterwards until terminated; with
    ``FAKE_FFMPEG_EXIT=1`` it exits at once without touching its output.
    """
    if sys.platform.startswith("win"):
        pytest.skip("stub executable needs a POSIX shebang")

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "ffmpeg"
    script.write_text(
        f"#!{sys.executable}\n"
        "import os, sys, time\n"
        "if os.environ.get('FAKE_FFMPEG_EXIT') == '1':\n"
        "    sys.exit(1)\n"
        "args = sys.argv[1:]\n"
        "w, h = (int(v) for v in args[args.index('-s') + 1].split('x'))\n"
        "target = args[-1]\n"
        "out = sys.stdout.buffer if target == 'pipe:1' else open(target, 'wb')\n"
        "for i in range(2):\n"
        "    out.write(bytes([i]) * (w * h * 3))\n"
        "    out.flush()\n"
        "if os.environ.get('FAKE_FFMPEG_HOLD') == '1':\n"
        "    time.sleep(60)\n"
        "out.close()\n",
        encoding="utf-8",
    )
    script.chmod(0o755)
    return script
