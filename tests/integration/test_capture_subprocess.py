"""tests/integration/test_capture_subprocess.py — Real subprocess + channel round trip.

Uses the ``fake_ffmpeg`` stub from conftest instead of a camera.
"""

from __future__ import annotations

import os
import threading

import cv2
import pytest
from click.testing import CliRunner

from ffcap.cli import main
from ffcap.core.exceptions import CaptureStartError
from ffcap.core.models import LifecycleState
from ffcap.ingestion.channel import NamedPipeChannel, make_channel
from ffcap.ingestion.device import CaptureDevice
from ffcap.ingestion.process import CaptureProcess

pytestmark = pytest.mark.integration

CHANNELS = [
    "stdout",
    pytest.param("pipe", marks=pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="no FIFOs")),
]

FRAME_SIZE = 4 * 2 * 3


def make_device(fake_ffmpeg, kind, fifo_dir) -> CaptureDevice:
    process = CaptureProcess(str(fake_ffmpeg), "fake", platform="linux", terminate_timeout_s=2.0)
    channel = make_channel(kind, "/dev/fake0", fifo_dir)
    return CaptureDevice("/dev/fake0", "4x2 2x2", channel, process)


@pytest.mark.parametrize("kind", CHANNELS)
def test_reads_frames_until_process_exits(fake_ffmpeg, tmp_path, kind):
    device = make_device(fake_ffmpeg, kind, tmp_path)
    device.open()
    try:
        first = device.get_frame_bytes()
        second = device.get_frame_bytes()
        # stub has exited by now: short read, zero padded
        third = device.get_frame_bytes()
    finally:
        device.dispose()

    assert bytes(first) == b"\x00" * FRAME_SIZE
    assert bytes(second) == b"\x01" * FRAME_SIZE
    assert bytes(third) == bytes(FRAME_SIZE)
    assert device.is_disposed


@pytest.mark.parametrize("kind", CHANNELS)
def test_close_terminates_running_process(fake_ffmpeg, tmp_path, kind, monkeypatch):
    monkeypatch.setenv("FAKE_FFMPEG_HOLD", "1")
    device = make_device(fake_ffmpeg, kind, tmp_path)
    device.open()
    handle = device._session.handle

    frame = device.get_frame()
    assert frame.image.shape == (2, 4, 3)
    assert handle.poll() is None

    device.close()
    assert handle.poll() is not None
    assert device.get_frame() is None


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="no FIFOs")
def test_fifo_lifecycle(fake_ffmpeg, tmp_path):
    device = make_device(fake_ffmpeg, "pipe", tmp_path)
    fifo = device._channel
    assert isinstance(fifo, NamedPipeChannel)

    device.open()
    assert fifo.path.exists()
    device.close()
    assert not fifo.path.exists()

    # Same path on reopen
    device.open()
    assert device.get_frame_bytes() == bytearray(FRAME_SIZE)
    device.close()


@pytest.mark.parametrize("kind", CHANNELS)
def test_process_exiting_at_start_fails_open(fake_ffmpeg, tmp_path, kind, monkeypatch):
    monkeypatch.setenv("FAKE_FFMPEG_EXIT", "1")
    device = make_device(fake_ffmpeg, kind, tmp_path)
    errors: list[BaseException] = []

    def opener():
        try:
            device.open()
        except BaseException as exc:
            errors.append(exc)

    t = threading.Thread(target=opener, daemon=True)
    t.start()
    t.join(timeout=10)

    assert not t.is_alive(), "open() hung on a dead capture process"
    if kind == "pipe":
        assert len(errors) == 1 and isinstance(errors[0], CaptureStartError)
        assert device.state is LifecycleState.CLOSED
        assert not device._channel.path.exists()
    device.dispose()
    assert device.is_disposed


def test_missing_executable(tmp_path):
    process = CaptureProcess(str(tmp_path / "nope" / "ffmpeg"), "fake", platform="linux")
    device = CaptureDevice("/dev/fake0", "4x2", make_channel("stdout", "/dev/fake0"), process)
    with pytest.raises(CaptureStartError):
        device.open()
    assert not device.is_open


@pytest.mark.parametrize("kind", CHANNELS)
def test_cli_grab_writes_pngs(fake_ffmpeg, tmp_path, kind):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(
        "capture:\n"
        f"  ffmpeg_dir: '{fake_ffmpeg.parent}'\n"
        "  capture_driver: fake\n"
        "  resolutions: '4x2'\n"
        f"  fifo_dir: '{tmp_path}'\n"
        "  terminate_timeout_s: 2.0\n",
        encoding="utf-8",
    )
    out_dir = tmp_path / "out"

    result = CliRunner().invoke(
        main,
        ["grab", "--device", "/dev/fake0", "--config", str(cfg), "--channel", kind,
         "--count", "2", "--out-dir", str(out_dir), "--log-level", "WARNING"],
    )

    assert result.exit_code == 0, result.output
    pngs = sorted(out_dir.glob("*.png"))
    assert [p.name for p in pngs] == ["frame_00000.png", "frame_00001.png"]
    img = cv2.imread(str(pngs[1]))
    assert img.shape == (2, 4, 3)
    assert int(img.max()) == 1
