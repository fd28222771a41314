"""Exception hierarchy for flowbench.

Transport failures are fatal to a stream session and are surfaced to the
consumer through the client's error callback. Cancellation never raises
one of these.
"""

from __future__ import annotations


class FlowbenchError(Exception):
    """Base exception for all application-specific errors."""


class StreamTransportError(FlowbenchError):
    """Raised when the stream connection fails (network error, stalled read)."""


class StreamHTTPError(StreamTransportError):
    """Raised when the stream endpoint answers with a non-success status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        self.status_code = status_code
        super().__init__(message or f"HTTP error! status: {status_code}")


class ConfigError(FlowbenchError, ValueError):
    """Raised when a configuration file has an invalid structure."""
