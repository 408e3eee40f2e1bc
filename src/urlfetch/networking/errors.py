"""Error types raised by the urlfetch networking layer."""

from __future__ import annotations


class TransportError(Exception):
    """Base for transport failures (open, connect, read, HTTP status)."""


class TransportTimeoutError(TransportError):
    """Raised when connecting or reading exceeds the configured timeout."""


class HttpStatusError(TransportError):
    """Raised for a response status that is neither success nor redirect.

    The message is the status text sent by the server.
    """

    def __init__(
        self, message: str, *, status_code: int, url: str | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class InvalidUrlError(ValueError):
    """Raised when a URL or path cannot be resolved, before any I/O."""
