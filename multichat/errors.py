"""
Error hierarchy for the chat adapter.

Configuration problems surface before any network I/O, transport problems carry
the HTTP status and server detail, and cancellation is kept distinct so callers
can treat a user abort as a graceful stop rather than a failure.
"""

from __future__ import annotations


class MultichatError(Exception):
    """Base class for all adapter errors."""


class ConfigurationError(MultichatError):
    """Missing or invalid configuration detected before a request is sent."""


class TransportError(MultichatError):
    """Non-2xx response or connection failure."""

    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class CancellationError(MultichatError):
    """The caller's cancellation token fired while the request was in flight."""

    def __init__(self, message: str = "Request aborted by user") -> None:
        super().__init__(message)


class ParseError(MultichatError):
    """A single stream frame could not be decoded."""

    def __init__(self, message: str, *, payload: str = "") -> None:
        super().__init__(message)
        self.payload = payload
