"""Duplex relay between an authenticated client and its destination.

After a successful CONNECT the handler thread hands both sockets to
:func:`relay`. One extra thread copies client -> target while the calling
thread copies target -> client. Whichever direction finishes first (EOF
or transport error) closes both sockets, which makes the other direction
fail or see EOF and finish too. Once both are done the traffic ledger is
flushed to disk.

There is no idle timeout: a quiet session lives until one of the peers
closes it.

Example:
    with MeteredConnection(client_sock, "alice", ledger) as client:
        result = relay(client, target_sock, ledger)
"""

import contextlib
import socket
import threading
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from metered_socks_proxy.core.config import DEFAULT_BUFFER_SIZE
from metered_socks_proxy.core.exceptions import PersistenceError
from metered_socks_proxy.core.lib.metered_connection import MeteredConnection
from metered_socks_proxy.core.lib.traffic_ledger import TrafficLedger


class Stream(Protocol):
    def recv(self, bufsize: int) -> bytes: ...

    def sendall(self, data: bytes) -> None: ...


@dataclass
class RelayResult:
    """Bytes copied in each direction of a finished relay."""

    upstream: int = 0  # client -> target
    downstream: int = 0  # target -> client


class RelaySession:
    """Both ends of a relay plus the close operation they share.

    The first direction to finish closes both sockets; later calls are
    no-ops.
    """

    def __init__(self, client: MeteredConnection, target: socket.socket) -> None:
        self.client = client
        self.target = target
        self._close_lock = threading.Lock()
        self._closed = False
        self.upstream_done = threading.Event()
        self.downstream_done = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.client.close()
        with contextlib.suppress(OSError):
            self.target.shutdown(socket.SHUT_RDWR)
        self.target.close()


def _pump(src: Stream, dst: Stream, buffer_size: int, direction: str) -> int:
    """Copy from ``src`` to ``dst`` until EOF or error, returning bytes copied."""
    copied = 0
    try:
        while True:
            data = src.recv(buffer_size)
            if not data:
                break
            dst.sendall(data)
            copied += len(data)
    except OSError as e:
        logger.debug(f"Relay {direction} ended with transport error: {e}")
    return copied


def relay(
    client: MeteredConnection,
    target: socket.socket,
    ledger: TrafficLedger,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
) -> RelayResult:
    """Relay bytes between ``client`` and ``target`` until either side closes.

    Both sockets are closed on return and the ledger has been persisted
    (a persistence failure is logged, not raised).

    Args:
        client: Metered connection of the authenticated client
        target: Connected socket to the requested destination
        ledger: Ledger to flush once the session ends
        buffer_size: Read size for each direction

    Returns:
        RelayResult: Bytes copied per direction
    """
    session = RelaySession(client, target)
    result = RelayResult()

    def upstream() -> None:
        try:
            result.upstream = _pump(client, target, buffer_size, "client->target")
        finally:
            session.upstream_done.set()
            session.close()

    worker = threading.Thread(
        target=upstream,
        name=f"relay-upstream-{client.username}",
        daemon=True,
    )
    worker.start()

    try:
        result.downstream = _pump(target, client, buffer_size, "target->client")
    finally:
        session.downstream_done.set()
        session.close()
        worker.join()

    try:
        ledger.persist()
    except PersistenceError as e:
        logger.error(f"Failed to persist traffic ledger after session for {client.username!r}: {e}")

    return result
