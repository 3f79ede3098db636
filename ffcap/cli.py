"""
cli.py
------
Command-line interface for headless frame capture.

Commands:
    ffcap resolutions   Show the parsed resolution catalog
    ffcap grab          Capture N frames from a camera and save them as PNG
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import cv2
from tqdm import tqdm

from ffcap.core.config import load_config
from ffcap.core.exceptions import FFCapError
from ffcap.ingestion.device import CaptureDevice
from ffcap.ingestion.resolutions import parse_resolutions


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )


@click.group()
def main() -> None:
    """ffcap -- raw camera frames through the ffmpeg CLI."""


# ---------------------------------------------------------------------------
# ffcap resolutions
# ---------------------------------------------------------------------------

@main.command("resolutions")
@click.option("--spec", default=None, help='Resolution list, e.g. "640x480 320x240".')
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config (default: config/default.yaml).")
def resolutions_cmd(spec, config_path):
    """Parse a resolution list and print one entry per line."""
    try:
        if spec is None:
            spec = load_config(config_path).capture.resolutions
        catalog = parse_resolutions(spec)
    except FFCapError as e:
        raise click.ClickException(str(e))

    for i, r in enumerate(catalog):
        suffix = "  (default)" if i == 0 else ""
        click.echo(f"{str(r):>12}  {r.frame_size:>10} bytes/frame{suffix}")


# ---------------------------------------------------------------------------
# ffcap grab
# ---------------------------------------------------------------------------

@main.command("grab")
@click.option("--device", required=True, help="Device path (/dev/video0) or DirectShow name.")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config (default: config/default.yaml).")
@click.option("--resolution", default=None, help="Capture size WxH (default: first configured).")
@click.option("--channel", type=click.Choice(["pipe", "stdout"]), default=None, help="Frame transport.")
@click.option("--count", default=1, show_default=True, help="Number of frames to capture.")
@click.option("--out-dir", default="frames", show_default=True, type=click.Path(), help="Where PNGs are written.")
@click.option("--log-level", default=None, help="Logging verbosity (default: from config).")
def grab_cmd(device, config_path, resolution, channel, count, out_dir, log_level):
    """Capture frames from DEVICE and write them as numbered PNG files."""
    try:
        cfg = load_config(config_path)
    except FFCapError as e:
        raise click.ClickException(str(e))
    _setup_logging(log_level or cfg.logging.log_level)
    if channel:
        cfg.capture.channel = channel

    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    cam = CaptureDevice.from_config(device, cfg)
    saved = 0
    try:
        if resolution:
            cam.set_resolution(resolution)
        click.echo(f"\nCapturing {count} frame(s) from {device} at {cam.get_resolution()}")
        cam.open()
        with tqdm(total=count, unit="frame", dynamic_ncols=True) as pbar:
            for frame in cam.frames(limit=count):
                target = out / f"frame_{frame.frame_id:05d}.png"
                if not cv2.imwrite(str(target), frame.image):
                    tqdm.write(f"  [WARN] could not write {target}")
                else:
                    saved += 1
                pbar.update(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted -- stopping capture...")
    except FFCapError as e:
        logging.getLogger(__name__).debug("Capture failed", exc_info=True)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        cam.dispose()

    click.echo(f"Saved {saved} frame(s) to {out}\n")


if __name__ == "__main__":
    main()
