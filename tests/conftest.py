"""Shared fixtures: state files, a live proxy and a threaded echo server."""

import socket
import threading
from collections.abc import Callable, Iterator

import pytest

from metered_socks_proxy.core.lib.credential_store import CredentialStore
from metered_socks_proxy.core.lib.proxy_server import SocksProxy
from metered_socks_proxy.core.lib.socks_handler import SocksHandler
from metered_socks_proxy.core.lib.traffic_ledger import TrafficLedger

CLIENT_TIMEOUT = 5.0


@pytest.fixture
def users_file(tmp_path):
    return tmp_path / "users.json"


@pytest.fixture
def traffic_file(tmp_path):
    return tmp_path / "traffic.json"


@pytest.fixture
def credentials(users_file) -> CredentialStore:
    store = CredentialStore(users_file)
    store.add("test", "pass")
    store.add("alice", "wonderland")
    return store


@pytest.fixture
def ledger(traffic_file) -> TrafficLedger:
    return TrafficLedger(traffic_file)


def _start_server(server: SocksProxy) -> threading.Thread:
    thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
    thread.start()
    return thread


def _stop_server(server: SocksProxy, thread: threading.Thread) -> None:
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


@pytest.fixture
def proxy_server(credentials, ledger) -> Iterator[SocksProxy]:
    server = SocksProxy(("127.0.0.1", 0), SocksHandler, credentials, ledger, buffer_size=4096)
    thread = _start_server(server)
    yield server
    _stop_server(server, thread)


@pytest.fixture
def make_proxy_server(credentials, ledger) -> Iterator[Callable[..., SocksProxy]]:
    started = []

    def factory(**kwargs) -> SocksProxy:
        server = SocksProxy(("127.0.0.1", 0), SocksHandler, credentials, ledger, **kwargs)
        started.append((server, _start_server(server)))
        return server

    yield factory
    for server, thread in started:
        _stop_server(server, thread)


@pytest.fixture
def connect_client() -> Iterator[Callable[[SocksProxy], socket.socket]]:
    clients = []

    def connect(server: SocksProxy) -> socket.socket:
        sock = socket.create_connection(server.server_address[:2], timeout=CLIENT_TIMEOUT)
        clients.append(sock)
        return sock

    yield connect
    for sock in clients:
        sock.close()


@pytest.fixture
def echo_server() -> Iterator[tuple[str, int]]:
    """TCP server echoing every byte back until the peer closes."""
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(0.05)
    stopped = threading.Event()

    def echo(conn: socket.socket) -> None:
        with conn:
            try:
                while data := conn.recv(4096):
                    conn.sendall(data)
            except OSError:
                pass

    def serve() -> None:
        while not stopped.is_set():
            try:
                conn, _ = listener.accept()
            except TimeoutError:
                continue
            except OSError:
                return
            threading.Thread(target=echo, args=(conn,), daemon=True).start()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield listener.getsockname()[:2]
    stopped.set()
    thread.join(timeout=5)
    listener.close()


@pytest.fixture
def closed_port() -> int:
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
