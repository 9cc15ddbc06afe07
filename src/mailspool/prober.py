from __future__ import annotations

import errno
import logging
import select
import socket
import threading
import time
from typing import Any, Callable

from .transport_resolver import Destination

LOGGER = logging.getLogger(__name__)

Probe = Callable[[str, int, float], bool]

_IN_PROGRESS = {
    code
    for code in (
        errno.EINPROGRESS,
        errno.EWOULDBLOCK,
        errno.EALREADY,
        getattr(errno, "WSAEWOULDBLOCK", None),
    )
    if code is not None
}


def _resolve_addresses(host: str, port: int, deadline: float) -> list[tuple[Any, ...]] | None:
    """Resolve host:port on a daemon thread, giving up at ``deadline``.

    Returns None on timeout or resolution failure.
    """
    outcome: dict[str, Any] = {}

    def worker() -> None:
        try:
            outcome["infos"] = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except (OSError, UnicodeError) as exc:
            outcome["error"] = exc

    thread = threading.Thread(target=worker, name=f"resolve-{host}", daemon=True)
    thread.start()
    thread.join(max(0.0, deadline - time.monotonic()))
    if thread.is_alive():
        LOGGER.info("Resolving %s:%s timed out", host, port, extra={"category": "probe"})
        return None
    if "error" in outcome:
        LOGGER.info(
            "Cannot resolve %s:%s: %s",
            host,
            port,
            outcome["error"],
            extra={"category": "probe"},
        )
        return None
    return list(outcome.get("infos") or [])


def _wait_for_connect(sock: socket.socket, deadline: float) -> int | None:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        return None
    _, writable, errored = select.select([], [sock], [sock], remaining)
    if not writable and not errored:
        return None
    return sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)


def _try_connect(info: tuple[Any, ...], deadline: float) -> int | None:
    family, socktype, proto, _canonname, address = info
    try:
        sock = socket.socket(family, socktype, proto)
    except OSError as exc:
        return exc.errno or errno.EAFNOSUPPORT
    with sock:
        sock.setblocking(False)
        code: int | None = sock.connect_ex(address)
        if code in _IN_PROGRESS:
            code = _wait_for_connect(sock, deadline)
    return code


def is_reachable(host: str, port: int, timeout: float) -> bool:
    """Return True when a TCP connection to host:port completes within ``timeout``.

    Name resolution and every connect attempt share the same deadline. Each
    resolved address is tried in order until one accepts.
    """
    deadline = time.monotonic() + max(0.0, timeout)
    infos = _resolve_addresses(host, port, deadline)
    if not infos:
        if infos is not None:
            LOGGER.info("No address for %s:%s", host, port, extra={"category": "probe"})
        return False

    code: int | None = None
    for info in infos:
        code = _try_connect(info, deadline)
        if code in (0, errno.EISCONN):
            LOGGER.debug("%s:%s is reachable via %s", host, port, info[4], extra={"category": "probe"})
            return True
        if code is None:
            break

    if code is None:
        LOGGER.info(
            "Probe of %s:%s timed out after %ss",
            host,
            port,
            timeout,
            extra={"category": "probe"},
        )
        return False
    LOGGER.info(
        "%s:%s is unreachable: %s",
        host,
        port,
        errno.errorcode.get(code, code),
        extra={"category": "probe"},
    )
    return False


class ConnectivityCache:
    """Probe each distinct host:port at most once for the cache's lifetime."""

    def __init__(self, probe: Probe, timeout: float) -> None:
        self._probe = probe
        self._timeout = timeout
        self._results: dict[str, bool] = {}

    @property
    def results(self) -> dict[str, bool]:
        return dict(self._results)

    def is_reachable(self, destination: Destination) -> bool:
        cached = self._results.get(destination.key)
        if cached is not None:
            return cached
        reachable = bool(self._probe(destination.host, destination.port, self._timeout))
        self._results[destination.key] = reachable
        return reachable
