"""Threaded SOCKS5 proxy server.

This module implements the listening side of the proxy:
- Thread-per-connection serving on top of ``socketserver``
- Optional cap on concurrently handled sessions
- Transient accept errors logged and skipped, permanent ones fatal
- Startup loading of credentials and the traffic ledger
- Final ledger flush on shutdown
- Periodic diagnostics logging

Example:
    # Serve on the default port with state files in the working directory
    run_server(ProxyConfig())
"""

import contextlib
import errno
import socket
import socketserver
import threading
from typing import Final

from loguru import logger
from rich.console import Console

from metered_socks_proxy.core.config import DEFAULT_BUFFER_SIZE, ProxyConfig
from metered_socks_proxy.core.exceptions import ListenerError, PersistenceError
from metered_socks_proxy.core.lib.credential_store import CredentialStore
from metered_socks_proxy.core.lib.proxy_stats import DiagnosticsMonitor, ProxyStats
from metered_socks_proxy.core.lib.socks_handler import SocksHandler
from metered_socks_proxy.core.lib.traffic_ledger import TrafficLedger

console = Console()

# accept() failures worth retrying; anything else stops the server
TRANSIENT_ACCEPT_ERRNOS: Final = frozenset(
    {
        errno.EAGAIN,
        errno.EWOULDBLOCK,
        errno.EINTR,
        errno.ECONNABORTED,
        errno.EMFILE,
        errno.ENFILE,
        errno.ENOBUFS,
        errno.ENOMEM,
        errno.EPROTO,
        errno.EPERM,
    }
)


class SocksProxy(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """SOCKS proxy server implementation.

    Owns the credential store, the traffic ledger and the session
    statistics; handlers reach them through ``self.server``.
    """

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = 100

    def __init__(
        self,
        server_address: tuple[str, int],
        handler_class: type[socketserver.BaseRequestHandler],
        credentials: CredentialStore,
        ledger: TrafficLedger,
        *,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        max_connections: int | None = None,
        stats: ProxyStats | None = None,
    ) -> None:
        self.credentials = credentials
        self.ledger = ledger
        self.buffer_size = buffer_size
        self.stats = stats if stats is not None else ProxyStats()
        self._slots = threading.BoundedSemaphore(max_connections) if max_connections else None
        super().__init__(server_address, handler_class)

    def server_bind(self) -> None:
        """Bind the server socket with reuse options."""
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        super().server_bind()

    def get_request(self) -> tuple[socket.socket, tuple]:
        """Accept a connection, classifying accept failures.

        ``socketserver`` skips ``OSError`` from here and keeps serving, so
        transient failures are re-raised as-is. Anything else is wrapped in
        :class:`ListenerError`, which propagates out of ``serve_forever``.
        """
        try:
            return super().get_request()
        except OSError as e:
            if e.errno in TRANSIENT_ACCEPT_ERRNOS:
                logger.warning(f"Failed to accept connection: {e}")
                raise
            msg = f"Permanent error accepting connection: {e}"
            logger.error(msg)
            raise ListenerError(msg) from e

    def process_request(self, request, client_address) -> None:
        """Start a handler thread, waiting for a free slot if the server is capped."""
        if self._slots is not None:
            self._slots.acquire()
        try:
            super().process_request(request, client_address)
        except Exception:
            if self._slots is not None:
                self._slots.release()
            raise

    def process_request_thread(self, request, client_address) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            if self._slots is not None:
                self._slots.release()


def load_state(config: ProxyConfig) -> tuple[CredentialStore, TrafficLedger]:
    """Load credentials and traffic from the configured files.

    Raises:
        PersistenceError: If either file is unreadable or malformed
    """
    credentials = CredentialStore(config.users_file)
    credentials.load()
    ledger = TrafficLedger(config.traffic_file)
    ledger.load()
    return credentials, ledger


def create_proxy_server(
    config: ProxyConfig,
    credentials: CredentialStore,
    ledger: TrafficLedger,
) -> SocksProxy:
    """Bind a :class:`SocksProxy` for ``config`` around already loaded state."""
    return SocksProxy(
        (config.host, config.port),
        SocksHandler,
        credentials,
        ledger,
        buffer_size=config.buffer_size,
        max_connections=config.max_connections,
    )


def run_server(config: ProxyConfig) -> int:
    """Load state, serve until interrupted and flush the ledger.

    Args:
        config: Server settings

    Returns:
        int: Process exit code
    """
    try:
        credentials, ledger = load_state(config)
    except PersistenceError as e:
        logger.error(f"Refusing to start with corrupt state: {e}")
        console.print(f"[red]Error: {e}")
        return 1

    if not credentials:
        logger.warning("No users configured, every client will fail authentication")

    try:
        server = create_proxy_server(config, credentials, ledger)
    except OSError as e:
        logger.error(f"Failed to bind to {config.host}:{config.port}: {e}")
        console.print(f"[red]Failed to bind to {config.host}:{config.port}: {e}")
        return 1

    monitor = None
    if config.monitor_interval:
        monitor = DiagnosticsMonitor(server.stats, config.monitor_interval)
        monitor.start()

    exit_code = 0
    host, port = server.server_address[:2]
    logger.info(f"SOCKS5 server listening on {host}:{port}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        console.print("\n[yellow]Shutting down proxy server...")
    except ListenerError as e:
        console.print(f"[red]Listener error: {e}")
        exit_code = 1
    finally:
        if monitor is not None:
            monitor.stop()
        with contextlib.suppress(OSError):
            server.server_close()
        logger.info("Server closed")
        try:
            ledger.persist()
        except PersistenceError as e:
            logger.error(f"Failed to persist traffic ledger on shutdown: {e}")
            exit_code = 1
    return exit_code
