"""
core/exceptions.py
------------------
Custom exception hierarchy for ffcap.
"""


class FFCapError(Exception):
    """Root exception for all ffcap-specific errors."""


# --- Configuration ---

class ConfigError(FFCapError):
    """Raised when the configuration or a resolution list is missing or invalid."""


class FormatError(ConfigError):
    """Raised when a resolution token does not match ``<int>x<int>``."""

    def __init__(self, token: str, message: str | None = None) -> None:
        self.token = token
        super().__init__(message or f"Malformed resolution token: {token!r}")


# --- Capture ---

class CaptureError(FFCapError):
    """Base class for failures of a running or starting capture."""


class CaptureStartError(CaptureError):
    """Raised when the capture process or its channel cannot be set up."""


class StreamError(CaptureError):
    """Raised on an I/O failure while reading frame bytes."""


class ClosedDeviceError(CaptureError):
    """Raised when ``open()`` is called on a disposed device."""


# --- Process control ---

class FatalError(FFCapError):
    """Raised when waiting on a terminated capture process fails.

    Not recoverable; callers should let it propagate.
    """
