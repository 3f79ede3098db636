"""
core/config.py
--------------
Loads, validates, and exposes the application config from a YAML file.

Usage:
    from ffcap.core.config import load_config, AppConfig
    cfg = load_config()            # loads config/default.yaml
    cfg = load_config("my.yaml")   # loads a custom file
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from ffcap.core.exceptions import ConfigError
from ffcap.ingestion.resolutions import parse_resolutions

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_DEFAULT_CONFIG = _PROJECT_ROOT / "config" / "default.yaml"


# ---------------------------------------------------------------------------
# Pydantic sub-models
# ---------------------------------------------------------------------------

class CaptureConfig(BaseModel):
    ffmpeg_dir: str = ""                    # "" = ffmpeg on PATH
    capture_driver: Optional[str] = None    # None = platform default
    resolutions: str = "640x480 320x240"
    channel: Literal["pipe", "stdout"] = "pipe"
    fifo_dir: Optional[str] = None          # None = system temp dir
    input_framerate: str = "1"
    output_rate: str = "1:2"
    terminate_timeout_s: float = Field(5.0, gt=0)

    @field_validator("resolutions")
    @classmethod
    def must_parse(cls, v: str) -> str:
        try:
            parse_resolutions(v)
        except ConfigError as exc:
            raise ValueError(str(exc)) from exc
        return v


class LoggingConfig(BaseModel):
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Root config model
# ---------------------------------------------------------------------------

class AppConfig(BaseModel):
    capture: CaptureConfig = CaptureConfig()
    logging: LoggingConfig = LoggingConfig()


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(path: str | Path | None = None) -> AppConfig:
    """Load and validate AppConfig from a YAML file.

    Args:
        path: Explicit path to a YAML file. Defaults to ``config/default.yaml``.

    Returns:
        Validated :class:`AppConfig` instance.

    Raises:
        ConfigError: If the file is missing or contains invalid values.
    """
    config_path = Path(path) if path else _DEFAULT_CONFIG

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        raw: dict[str, Any] = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"YAML parse error in {config_path}: {exc}") from exc

    try:
        cfg = AppConfig.model_validate(raw)
    except Exception as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc

    logger.info("Configuration loaded from %s", config_path)
    return cfg
