"""Client-side helpers for talking SOCKS5 to the proxy under test."""

import socket
import struct
import time
from collections.abc import Callable

import pytest

GREETING_USERPASS = bytes.fromhex("050102")
SUCCESS_REPLY = bytes.fromhex("05000001000000000000")


def read_exactly(sock: socket.socket, size: int) -> bytes:
    """Read ``size`` bytes or fail the test if the peer closes early."""
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        assert chunk, f"peer closed after {len(data)} of {size} bytes"
        data += chunk
    return data


def assert_closed(sock: socket.socket) -> None:
    """Assert the peer closed ``sock`` without sending anything more."""
    try:
        assert sock.recv(1024) == b""
    except ConnectionResetError:
        pass


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not met in time")
        time.sleep(0.01)


def auth_message(username: str, password: str) -> bytes:
    user, pwd = username.encode(), password.encode()
    return struct.pack("!BB", 1, len(user)) + user + struct.pack("!B", len(pwd)) + pwd


def ipv4_connect_request(host: str, port: int) -> bytes:
    return bytes.fromhex("05010001") + socket.inet_aton(host) + struct.pack("!H", port)


def domain_connect_request(domain: str, port: int) -> bytes:
    name = domain.encode()
    return bytes.fromhex("05010003") + struct.pack("!B", len(name)) + name + struct.pack("!H", port)


def authenticate(sock: socket.socket, username: str = "test", password: str = "pass") -> None:
    """Run method selection and sub-negotiation, asserting success."""
    sock.sendall(GREETING_USERPASS)
    assert read_exactly(sock, 2) == b"\x05\x02"
    sock.sendall(auth_message(username, password))
    assert read_exactly(sock, 2) == b"\x01\x00"
