import socket
import threading

import pytest

from metered_socks_proxy.core.lib.metered_connection import MeteredConnection


@pytest.fixture
def pair():
    inner, outer = socket.socketpair()
    inner.settimeout(5)
    outer.settimeout(5)
    yield inner, outer
    inner.close()
    outer.close()


def test_recv_is_metered(pair, ledger):
    inner, outer = pair
    conn = MeteredConnection(inner, "test", ledger)

    outer.sendall(b"hello")
    assert conn.recv(1024) == b"hello"

    assert conn.bytes_read == 5
    assert conn.bytes_written == 0
    assert ledger.usage("test") == 5


def test_sendall_is_metered(pair, ledger):
    inner, outer = pair
    conn = MeteredConnection(inner, "test", ledger)

    conn.sendall(b"payload!")
    assert outer.recv(1024) == b"payload!"

    assert conn.bytes_written == 8
    assert ledger.usage("test") == 8


def test_send_reports_partial_count(pair, ledger):
    inner, outer = pair
    conn = MeteredConnection(inner, "test", ledger)

    sent = conn.send(b"abc")

    assert sent == 3
    assert ledger.usage("test") == sent


def test_reads_and_writes_share_one_ledger_entry(pair, ledger):
    inner, outer = pair
    conn = MeteredConnection(inner, "test", ledger)

    outer.sendall(b"ping")
    conn.recv(4)
    conn.sendall(b"pong!")

    assert ledger.usage("test") == 9


def test_end_of_stream_passes_through_uncounted(pair, ledger):
    inner, outer = pair
    conn = MeteredConnection(inner, "test", ledger)

    outer.shutdown(socket.SHUT_WR)

    assert conn.recv(1024) == b""
    assert ledger.usage("test") == 0


def test_errors_propagate_unchanged(pair, ledger):
    inner, outer = pair
    conn = MeteredConnection(inner, "test", ledger)
    conn.close()

    with pytest.raises(OSError):
        conn.recv(1024)
    with pytest.raises(OSError):
        conn.sendall(b"data")
    assert ledger.usage("test") == 0


def test_close_is_idempotent(pair, ledger):
    inner, outer = pair
    conn = MeteredConnection(inner, "test", ledger)
    outer.sendall(b"xy")
    conn.recv(2)

    conn.close()
    conn.close()

    assert conn.closed
    assert ledger.usage("test") == 2
    assert outer.recv(1) == b""


def test_concurrent_close_from_many_threads(pair, ledger):
    inner, _ = pair
    conn = MeteredConnection(inner, "test", ledger)

    threads = [threading.Thread(target=conn.close) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert conn.closed


def test_close_wakes_blocked_reader(pair, ledger):
    inner, _ = pair
    inner.settimeout(None)
    conn = MeteredConnection(inner, "test", ledger)
    outcome = []

    def reader():
        try:
            outcome.append(conn.recv(1024))
        except OSError as e:
            outcome.append(e)

    thread = threading.Thread(target=reader)
    thread.start()
    thread.join(timeout=0.1)
    assert thread.is_alive()

    conn.close()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert outcome[0] == b"" or isinstance(outcome[0], OSError)


def test_context_manager_closes(pair, ledger):
    inner, outer = pair
    with MeteredConnection(inner, "test", ledger) as conn:
        conn.sendall(b"z")
    assert conn.closed
    assert outer.recv(1) == b"z"
