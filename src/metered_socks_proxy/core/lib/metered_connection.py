"""Traffic-metering wrapper around a client socket.

Once a client has authenticated, its socket is wrapped in a
:class:`MeteredConnection`. The wrapper exposes the subset of the socket
API the proxy uses (``recv``, ``send``, ``sendall``, ``close``) and, after
every successful call, adds the number of bytes moved to both its own
counters and the user's entry in the :class:`TrafficLedger`.

Errors from the underlying socket are never caught or rewritten; the
wrapper only adds the accounting side effect.
"""

import contextlib
import socket
import threading

from metered_socks_proxy.core.lib.traffic_ledger import TrafficLedger


class MeteredConnection:
    """Socket wrapper attributing every transferred byte to ``username``."""

    def __init__(self, sock: socket.socket, username: str, ledger: TrafficLedger) -> None:
        self._sock = sock
        self.username = username
        self._ledger = ledger
        self._lock = threading.Lock()
        self._bytes_read = 0
        self._bytes_written = 0
        self._closed = False

    def __enter__(self) -> "MeteredConnection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"<MeteredConnection user={self.username!r} read={self.bytes_read} "
            f"written={self.bytes_written} closed={self.closed}>"
        )

    @property
    def bytes_read(self) -> int:
        with self._lock:
            return self._bytes_read

    @property
    def bytes_written(self) -> int:
        with self._lock:
            return self._bytes_written

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self) -> int:
        return self._sock.fileno()

    def recv(self, bufsize: int) -> bytes:
        """Receive up to ``bufsize`` bytes; ``b""`` signals end of stream."""
        data = self._sock.recv(bufsize)
        self._account_read(len(data))
        return data

    def send(self, data: bytes) -> int:
        """Send some of ``data`` and return how many bytes went out."""
        sent = self._sock.send(data)
        self._account_write(sent)
        return sent

    def sendall(self, data: bytes) -> None:
        """Send all of ``data``.

        Each partial send is metered as it happens, so bytes that made it
        out before an error are still counted.
        """
        view = memoryview(data)
        while view:
            sent = self.send(view)
            view = view[sent:]

    def close(self) -> None:
        """Shut down and close the socket. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # shutdown wakes any thread still blocked in recv on this socket
        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        self._sock.close()

    def _account_read(self, count: int) -> None:
        if not count:
            return
        with self._lock:
            self._bytes_read += count
        self._ledger.record(self.username, count)

    def _account_write(self, count: int) -> None:
        if not count:
            return
        with self._lock:
            self._bytes_written += count
        self._ledger.record(self.username, count)
