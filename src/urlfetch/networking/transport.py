"""Transport adapter: opens connections for HTTP(S) and local file URLs.

A connection collects request settings (headers, timeouts, flags) until it
is connected. HTTP connections send their request lazily, on first access to
the status, the response headers or the body, and never follow redirects on
their own.
"""

from __future__ import annotations

import io
import mimetypes
from email.utils import formatdate
from pathlib import Path
from typing import Any, BinaryIO, ClassVar
from urllib.parse import SplitResult, urlsplit
from urllib.request import url2pathname

import requests
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from .config import ConfigSource
from .errors import (
    HttpStatusError,
    InvalidUrlError,
    TransportError,
    TransportTimeoutError,
)

HTTP_SCHEMES = frozenset({"http", "https"})


def split_url(url: str) -> SplitResult:
    """Split ``url``, raising InvalidUrlError when it cannot be parsed."""
    try:
        return urlsplit(url)
    except ValueError as exc:
        raise InvalidUrlError(f"malformed URL: {url}") from exc


def _join_values(name: str, values: list[str]) -> str:
    """Combine repeated header values; Cookie pairs are joined with '; '."""
    if name.lower() == "cookie":
        return "; ".join(value for value in values if value)
    return ", ".join(values)


def _seconds(timeout_ms: int) -> float | None:
    """Convert a millisecond timeout; 0 means wait forever."""
    if timeout_ms <= 0:
        return None
    return timeout_ms / 1000


class Connection:
    """A connection to one URL, configured before it is connected.

    ``supports_http`` tells callers whether the status, redirect and
    disconnect operations of HttpConnection are available.
    """

    supports_http: ClassVar[bool] = False

    def __init__(
        self, url: str, *, connect_timeout_ms: int, read_timeout_ms: int
    ) -> None:
        self.url = url
        self.connect_timeout_ms = connect_timeout_ms
        self.read_timeout_ms = read_timeout_ms
        self.allow_user_interaction = False
        self.use_caches = True
        self.if_modified_since = 0
        self.do_input = True
        self.do_output = False
        self._request_headers: CaseInsensitiveDict[list[str]] = (
            CaseInsensitiveDict()
        )

    def set_header(self, name: str, value: str) -> None:
        """Set a request header, replacing any existing values."""
        self._request_headers[name] = [value]

    def add_header(self, name: str, value: str) -> None:
        """Add a request header value without replacing existing ones."""
        self._request_headers.setdefault(name, []).append(value)

    def get_request_header(self, name: str) -> str | None:
        values = self._request_headers.get(name)
        if values is None:
            return None
        return _join_values(name, values)

    @property
    def request_headers(self) -> dict[str, str]:
        return {
            name: _join_values(name, values)
            for name, values in self._request_headers.items()
        }

    @property
    def charset(self) -> str | None:
        return None

    def connect(self) -> None:
        raise NotImplementedError

    def get_header(self, name: str) -> str | None:
        raise NotImplementedError

    def open_stream(self) -> BinaryIO:
        raise NotImplementedError

    def write(self, data: bytes | str) -> None:
        raise TransportError(
            f"{type(self).__name__} does not support writing a request body"
        )

    def close(self) -> None:
        """Release the underlying resource; a no-op by default."""

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.url!r})"


class FileConnection(Connection):
    """Connection to a local file, addressed by a ``file:`` URL."""

    def __init__(
        self,
        url: str,
        path: Path,
        *,
        connect_timeout_ms: int,
        read_timeout_ms: int,
    ) -> None:
        super().__init__(
            url,
            connect_timeout_ms=connect_timeout_ms,
            read_timeout_ms=read_timeout_ms,
        )
        self.path = path
        self._headers: dict[str, str] | None = None

    def connect(self) -> None:
        if self._headers is not None:
            return
        try:
            stat = self.path.stat()
        except OSError as exc:
            raise TransportError(str(exc)) from exc
        content_type, _ = mimetypes.guess_type(self.path.name)
        self._headers = {
            "content-length": str(stat.st_size),
            "content-type": content_type or "application/octet-stream",
            "last-modified": formatdate(stat.st_mtime, usegmt=True),
        }

    def get_header(self, name: str) -> str | None:
        self.connect()
        assert self._headers is not None
        return self._headers.get(name.lower())

    def open_stream(self) -> BinaryIO:
        self.connect()
        try:
            return self.path.open("rb")
        except OSError as exc:
            raise TransportError(str(exc)) from exc


class HttpConnection(Connection):
    """HTTP(S) connection backed by a shared requests.Session.

    The request goes out with ``allow_redirects=False`` and a streamed body;
    the session cookie jar is never merged into it.
    """

    supports_http = True

    def __init__(
        self,
        url: str,
        session: requests.Session,
        *,
        connect_timeout_ms: int,
        read_timeout_ms: int,
    ) -> None:
        super().__init__(
            url,
            connect_timeout_ms=connect_timeout_ms,
            read_timeout_ms=read_timeout_ms,
        )
        self.request_method = "GET"
        self._session = session
        self._body = io.BytesIO()
        self._response: requests.Response | None = None

    @property
    def connected(self) -> bool:
        return self._response is not None

    def write(self, data: bytes | str) -> None:
        if not self.do_output:
            raise TransportError("output is not enabled on this connection")
        if self._response is not None:
            raise TransportError("request already sent")
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._body.write(data)

    def _get_timeout(self) -> tuple[float | None, float | None]:
        return (
            _seconds(self.connect_timeout_ms),
            _seconds(self.read_timeout_ms),
        )

    def _outgoing_headers(self) -> CaseInsensitiveDict[str]:
        headers: CaseInsensitiveDict[str] = CaseInsensitiveDict(
            self.request_headers
        )
        if self.if_modified_since > 0:
            headers.setdefault(
                "If-Modified-Since",
                formatdate(self.if_modified_since / 1000, usegmt=True),
            )
        if not self.use_caches:
            headers.setdefault("Cache-Control", "no-cache")
            headers.setdefault("Pragma", "no-cache")
        return headers

    def connect(self) -> None:
        """Send the request if it has not been sent yet."""
        if self._response is not None:
            return
        body = self._body.getvalue() if self.do_output else None
        try:
            prepared = requests.Request(
                self.request_method,
                self.url,
                headers=self._outgoing_headers(),
                data=body,
            ).prepare()
            settings = self._session.merge_environment_settings(
                prepared.url, {}, True, None, None
            )
            self._response = self._session.send(
                prepared,
                timeout=self._get_timeout(),
                allow_redirects=False,
                **settings,
            )
        except requests.exceptions.Timeout as exc:
            raise TransportTimeoutError(
                f"timeout while fetching {self.url}"
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise TransportError(
                f"http fetch failed for {self.url}: {exc}"
            ) from exc

    @property
    def response(self) -> requests.Response:
        self.connect()
        assert self._response is not None
        return self._response

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def reason(self) -> str | None:
        return self.response.reason

    @property
    def status_message(self) -> str:
        """Server status text, or ``HTTP <code>`` when none was sent."""
        return self.reason or f"HTTP {self.status_code}"

    @property
    def response_headers(self) -> CaseInsensitiveDict[str]:
        return self.response.headers

    @property
    def charset(self) -> str | None:
        return get_encoding_from_headers(self.response.headers)

    def get_header(self, name: str) -> str | None:
        return self.response.headers.get(name)

    def open_stream(self) -> BinaryIO:
        response = self.response
        if response.status_code >= 400:
            raise HttpStatusError(
                self.status_message,
                status_code=response.status_code,
                url=self.url,
            )
        response.raw.decode_content = True
        return response.raw

    def error_stream(self) -> BinaryIO | None:
        """Body of an error response, or None if there is none."""
        if self._response is None or self._response.status_code < 400:
            return None
        self._response.raw.decode_content = True
        return self._response.raw

    def disconnect(self) -> None:
        if self._response is not None:
            self._response.close()

    def close(self) -> None:
        self.disconnect()


def _file_path(parts: SplitResult, url: str) -> Path:
    if parts.netloc not in ("", "localhost"):
        raise InvalidUrlError(f"remote file URLs are not supported: {url}")
    return Path(url2pathname(parts.path))


class Transport:
    """Opens connections for absolute URLs.

    Every connection starts with the ConfigSource default timeouts. HTTP
    connections share one requests.Session, closed with the transport when
    the transport created it.
    """

    def __init__(
        self,
        config: ConfigSource | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = (
            config if config is not None else ConfigSource.from_env()
        )
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()

    @property
    def config(self) -> ConfigSource:
        return self._config

    def open(self, url: str) -> Connection:
        """Open a connection without sending anything.

        Raises:
            InvalidUrlError: If the URL is malformed, has no scheme, an
                unsupported scheme, or no host for HTTP.
        """
        parts = split_url(url)
        scheme = parts.scheme.lower()
        timeouts = {
            "connect_timeout_ms": self._config.connect_timeout_ms,
            "read_timeout_ms": self._config.read_timeout_ms,
        }
        if scheme in HTTP_SCHEMES:
            if not parts.netloc:
                raise InvalidUrlError(f"missing host in URL: {url}")
            return HttpConnection(url, self._session, **timeouts)
        if scheme == "file":
            return FileConnection(url, _file_path(parts, url), **timeouts)
        if not scheme:
            raise InvalidUrlError(f"no protocol: {url}")
        raise InvalidUrlError(f"unknown protocol: {scheme}")

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
