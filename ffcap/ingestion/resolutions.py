"""
ingestion/resolutions.py
------------------------
Parses the whitespace-separated ``"WxH WxH ..."`` list a device advertises.
"""

from __future__ import annotations

import re

from ffcap.core.exceptions import ConfigError, FormatError
from ffcap.core.models import Resolution

_TOKEN_RE = re.compile(r"^(\d+)x(\d+)$")


def parse_resolution(token: str) -> Resolution:
    """Parse a single ``"WxH"`` token.

    Raises:
        FormatError: If *token* is not two positive integers joined by ``x``.
    """
    match = _TOKEN_RE.match(token)
    if match is None:
        raise FormatError(token)
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        raise FormatError(token, f"Resolution must be positive: {token!r}")
    return Resolution(width, height)


def parse_resolutions(spec: str) -> tuple[Resolution, ...]:
    """Parse a resolution list, preserving order.

    The first entry is the device default.

    Raises:
        FormatError: On the first malformed token.
        ConfigError: If *spec* contains no tokens at all.
    """
    tokens = spec.split()
    if not tokens:
        raise ConfigError("Resolution list is empty")
    return tuple(parse_resolution(t) for t in tokens)
