"""Connection preparation for HTTP and local file resources.

ConnectionPreparer is the entry point: it opens a connection through the
Transport, applies the caller's ConnectionParameters and the application
identity headers, and for GET requests validates the response (following up
to three redirects) before handing the connection back.
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, BinaryIO, Mapping, cast
from .classifier import classify_response
from .config import ConfigSource, ConnectionParameters
from .errors import InvalidUrlError
from .transport import (
    HTTP_SCHEMES,
    Connection,
    HttpConnection,
    Transport,
    split_url,
)

logger = logging.getLogger(__name__)

USER_AGENT_HEADER = "User-Agent"
USER_HEADER = "Weasis-User"

SUPPORTED_SCHEMES = HTTP_SCHEMES | {"file"}


def resolve_uri(path_or_uri: str) -> str:
    """Turn a readable local path or an absolute URL into a URL string.

    Anything starting with ``http`` is treated as a URL; other strings are
    tried as local paths first.

    Raises:
        InvalidUrlError: If the value is neither a readable path nor an
            absolute URL with a supported scheme.
    """
    if path_or_uri and not path_or_uri.startswith("http"):
        path = Path(path_or_uri).expanduser()
        try:
            if path.exists() and os.access(path, os.R_OK):
                return path.resolve().as_uri()
        except (OSError, ValueError):
            pass

    parts = split_url(path_or_uri)
    scheme = parts.scheme.lower()
    if not scheme:
        raise InvalidUrlError(f"no protocol: {path_or_uri}")
    if scheme not in SUPPORTED_SCHEMES:
        raise InvalidUrlError(f"unknown protocol: {scheme}")
    if scheme in HTTP_SCHEMES and not parts.netloc:
        raise InvalidUrlError(f"missing host in URL: {path_or_uri}")
    return path_or_uri


def read_text(connection: Connection, encoding: str | None = None) -> str:
    """Read the whole body as text with line breaks removed.

    Lines are concatenated without separators. The encoding defaults to the
    response charset, then UTF-8.
    """
    connection.connect()
    charset = encoding or connection.charset or "utf-8"
    with connection.open_stream() as stream, io.TextIOWrapper(
        stream, encoding=charset, errors="replace"
    ) as reader:
        return "".join(line.rstrip("\r\n") for line in reader)


class PreparedConnection:
    """A connection returned by ConnectionPreparer, owned by the caller.

    GET connections are validated and ready to read. POST connections are
    ready to send: call ``send`` with the request body to validate them.
    """

    def __init__(
        self,
        connection: Connection,
        headers: Mapping[str, str],
        transport: Transport,
    ) -> None:
        self.connection = connection
        self.headers = headers
        self._transport = transport

    @property
    def url(self) -> str:
        return self.connection.url

    def open_stream(self) -> BinaryIO:
        return self.connection.open_stream()

    def read_text(self, encoding: str | None = None) -> str:
        return read_text(self.connection, encoding)

    def send(self, data: bytes | str) -> PreparedConnection:
        """Write the request body, then validate the response.

        Returns:
            A new PreparedConnection for the final (possibly redirected)
            connection.

        Raises:
            TransportError: If writing is unsupported, the exchange fails, or
                the status is rejected.
        """
        self.connection.write(data)
        final = classify_response(
            cast(HttpConnection, self.connection),
            self.headers,
            self._transport,
        )
        return PreparedConnection(final, self.headers, self._transport)

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> PreparedConnection:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"PreparedConnection({self.connection!r})"


class ConnectionPreparer:
    """Opens and validates connections.

    All connections go through one Transport; the ConfigSource supplies the
    default timeouts and the identity headers that callers cannot override.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        config: ConfigSource | None = None,
    ) -> None:
        """Create a new ConnectionPreparer.

        Args:
            transport: Transport used to open connections; one sharing
                ``config`` is created when omitted.
            config: Defaults and identity; taken from the transport, or from
                the environment, when omitted.
        """
        if config is None:
            config = (
                transport.config
                if transport is not None
                else ConfigSource.from_env()
            )
        self._config = config
        self._owns_transport = transport is None
        self._transport = (
            transport if transport is not None else Transport(config)
        )

    @property
    def config(self) -> ConfigSource:
        return self._config

    def parameters(self, **overrides: Any) -> ConnectionParameters:
        """Build ConnectionParameters with the configured timeouts set."""
        params = ConnectionParameters(
            connect_timeout_ms=self._config.connect_timeout_ms,
            read_timeout_ms=self._config.read_timeout_ms,
        )
        return replace(params, **overrides)

    def _apply_identity(self, connection: Connection) -> None:
        connection.set_header(USER_AGENT_HEADER, self._config.user_agent)
        connection.set_header(USER_HEADER, self._config.user.strip().upper())

    def prepare(
        self, url: str, params: ConnectionParameters | None = None
    ) -> PreparedConnection:
        """Open ``url`` and apply ``params``.

        GET requests over HTTP are sent and validated before returning; POST
        requests are returned unsent; other schemes are returned as opened.

        Raises:
            InvalidUrlError: If ``url`` cannot be opened by the transport.
            TransportError: If the exchange fails or the status is rejected.
        """
        if params is None:
            params = ConnectionParameters()
        connection = self._transport.open(url)

        for name, value in params.headers.items():
            connection.set_header(name, value)
        self._apply_identity(connection)

        connection.connect_timeout_ms = (
            params.connect_timeout_ms
            if params.connect_timeout_ms is not None
            else self._config.connect_timeout_ms
        )
        connection.read_timeout_ms = (
            params.read_timeout_ms
            if params.read_timeout_ms is not None
            else self._config.read_timeout_ms
        )
        connection.allow_user_interaction = params.allow_user_interaction
        connection.use_caches = params.use_caches
        connection.if_modified_since = params.if_modified_since
        connection.do_input = True
        if params.http_post:
            connection.do_output = True

        if connection.supports_http:
            http_connection = cast(HttpConnection, connection)
            if params.http_post:
                http_connection.request_method = "POST"
            else:
                logger.debug("validating GET %s", url)
                connection = classify_response(
                    http_connection, params.headers, self._transport
                )
        return PreparedConnection(connection, params.headers, self._transport)

    def read(
        self, path_or_uri: str, params: ConnectionParameters | None = None
    ) -> str:
        """Fetch a URL or local path and return its body as text."""
        with self.prepare(resolve_uri(path_or_uri), params) as prepared:
            return prepared.read_text()

    def close(self) -> None:
        if self._owns_transport:
            self._transport.close()

    def __enter__(self) -> ConnectionPreparer:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
