"""Response classification: pass through, follow redirects, or fail."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Mapping

from .errors import HttpStatusError
from .redirects import follow_redirects

if TYPE_CHECKING:
    from .transport import Connection, HttpConnection, Transport

logger = logging.getLogger(__name__)

REDIRECT_CODES = frozenset({301, 302, 303})


def _log_error_body(connection: HttpConnection) -> None:
    """Log the server's error body at DEBUG level; never raises."""
    try:
        stream = connection.error_stream()
        if stream is None:
            return
        with io.TextIOWrapper(
            stream, encoding="utf-8", errors="replace"
        ) as reader:
            body = "".join(line.rstrip("\r\n") for line in reader)
        if body.strip():
            logger.debug("HTTP error, server response: %s", body)
    except Exception:
        logger.debug(
            "could not read error body from %s", connection.url, exc_info=True
        )


def classify_response(
    connection: HttpConnection,
    forward_headers: Mapping[str, str],
    transport: Transport,
) -> Connection:
    """Validate the status of an HTTP connection.

    2xx returns the connection unchanged, 301/302/303 hands off to
    follow_redirects, and anything else raises.

    Raises:
        HttpStatusError: For every other status, with the server status
            message as the error message.
        TransportError: If sending the request fails.
    """
    code = connection.status_code
    if 200 <= code < 300:
        return connection
    if code in REDIRECT_CODES:
        return follow_redirects(connection, forward_headers, transport)

    message = connection.status_message
    logger.warning("http Status %s - %s", code, message)
    if logger.isEnabledFor(logging.DEBUG):
        _log_error_body(connection)
    connection.disconnect()
    raise HttpStatusError(message, status_code=code, url=connection.url)
