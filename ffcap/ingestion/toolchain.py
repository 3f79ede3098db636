"""
ingestion/toolchain.py
----------------------
Host-platform facts about the external ffmpeg executable.

``platform`` arguments use ``sys.platform`` spelling (``win32``, ``darwin``,
``linux`` ...).
"""

from __future__ import annotations

import sys
from pathlib import Path


def is_windows(platform: str = sys.platform) -> bool:
    return platform.startswith("win")


def capture_driver(platform: str = sys.platform) -> str:
    """ffmpeg input format used to read a camera on *platform*."""
    if is_windows(platform):
        return "dshow"
    if platform == "darwin":
        return "avfoundation"
    return "video4linux2"


def executable_path(directory: str | Path | None = None, platform: str = sys.platform) -> str:
    """Return the ffmpeg command, optionally inside *directory*."""
    name = "ffmpeg.exe" if is_windows(platform) else "ffmpeg"
    if not directory:
        return name
    return str(Path(directory) / name)
