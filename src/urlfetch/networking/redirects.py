"""Manual redirect following with cookie and header forwarding.

Each hop forwards only the ``Set-Cookie`` value of the hop before it as the
new request's ``Cookie`` header; there is no cookie jar. A chain that needs a
cookie set two hops earlier loses it unless the intermediate hop re-emits it.

The forwarded value is the ``Set-Cookie`` header as ``requests`` exposes it:
several ``Set-Cookie`` lines arrive joined into one value, attributes
included. Redirects are only followed to ``http`` and ``https`` targets.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, cast
from urllib.parse import urljoin

from .errors import InvalidUrlError, TransportError
from .transport import HTTP_SCHEMES, Connection, HttpConnection, split_url

if TYPE_CHECKING:
    from .transport import Transport

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 3


@dataclass(frozen=True)
class RedirectState:
    """Position in a redirect chain: current connection and its Location."""

    connection: Connection
    location: str | None
    hops: int = 0

    @property
    def done(self) -> bool:
        return self.hops >= MAX_REDIRECTS or not self.location


def _redirect_target(source_url: str, location: str) -> str:
    """Resolve ``location`` against ``source_url``; only HTTP(S) is followed.

    Raises:
        TransportError: If the target is malformed or leaves HTTP(S), e.g. a
            redirect to a ``file:`` URL.
    """
    try:
        target = urljoin(source_url, location)
        scheme = split_url(target).scheme.lower()
    except (InvalidUrlError, ValueError) as exc:
        raise TransportError(f"invalid redirect to {location}: {exc}") from exc
    if scheme not in HTTP_SCHEMES:
        raise TransportError(
            f"refusing redirect from {source_url} to {scheme or '?'} URL "
            f"{target}"
        )
    return target


def _next_hop(
    state: RedirectState,
    forward_headers: Mapping[str, str],
    transport: Transport,
) -> RedirectState:
    current = state.connection
    assert state.location
    cookie = current.get_header("Set-Cookie")
    if current.supports_http:
        cast(HttpConnection, current).disconnect()

    target = _redirect_target(current.url, state.location)
    logger.debug(
        "redirect hop %d: %s -> %s", state.hops + 1, current.url, target
    )
    try:
        connection = transport.open(target)
    except InvalidUrlError as exc:
        raise TransportError(f"invalid redirect to {target}: {exc}") from exc
    connection.set_header("Cookie", cookie or "")
    for name, value in forward_headers.items():
        connection.add_header(name, value)

    return RedirectState(
        connection=connection,
        location=connection.get_header("Location"),
        hops=state.hops + 1,
    )


def follow_redirects(
    connection: Connection,
    forward_headers: Mapping[str, str],
    transport: Transport,
) -> Connection:
    """Follow ``Location`` headers for at most MAX_REDIRECTS hops.

    Args:
        connection: Connection whose response asked for a redirect.
        forward_headers: Caller headers added to every hop request.
        transport: Opens the connection for each hop.

    Returns:
        The last opened connection. Its status is not checked, and reaching
        the hop limit is not an error.
    """
    state = RedirectState(connection, connection.get_header("Location"))
    while not state.done:
        state = _next_hop(state, forward_headers, transport)

    if state.location:
        logger.debug(
            "stopped after %d redirects, unfollowed Location %s",
            state.hops,
            state.location,
        )
    return state.connection
