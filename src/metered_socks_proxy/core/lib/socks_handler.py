"""SOCKS protocol handler implementation for the proxy server.

This module implements the subset of SOCKS5 (RFC 1928) and its
username/password sub-negotiation (RFC 1929) the proxy speaks:
- Method negotiation, always selecting username/password authentication
- Credential checks against the server's :class:`CredentialStore`
- CONNECT requests for IPv4, domain name and IPv6 destinations
- Replies with a zeroed bind address and port
- Handing the connected pair over to the metered relay

BIND and UDP ASSOCIATE are refused with "command not supported".

Error handling follows three paths:
- Truncated or malformed handshakes (:class:`FramingError`) drop the
  connection without a reply
- Negotiated rejections (no acceptable method, bad credentials,
  unsupported command or address type) send the matching reply and close
- Dial failures send "general failure" and close

Example:
    # The handler is used by the SocksProxy server class
    server = SocksProxy((host, port), SocksHandler, credentials, ledger)
    server.serve_forever()
"""

import ipaddress
import socket
import socketserver
import struct
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final, Protocol

from loguru import logger

from metered_socks_proxy.core.exceptions import FramingError, RequestRejected
from metered_socks_proxy.core.lib.metered_connection import MeteredConnection
from metered_socks_proxy.core.lib.relay import relay

if TYPE_CHECKING:
    from metered_socks_proxy.core.lib.proxy_server import SocksProxy

# SOCKS protocol constants
SOCKS_VERSION: Final = 5
AUTH_NONE: Final = 0
AUTH_USERNAME_PASSWORD: Final = 2
AUTH_NO_ACCEPTABLE: Final = 0xFF
CONNECT_CMD: Final = 1
ADDR_TYPE_IPV4: Final = 1
ADDR_TYPE_DOMAIN: Final = 3
ADDR_TYPE_IPV6: Final = 4

# Username/password sub-negotiation
AUTH_VERSION: Final = 1
AUTH_SUCCESS: Final = 0
AUTH_FAILURE: Final = 1

# Response codes
RESP_SUCCESS: Final = 0
RESP_GENERAL_FAILURE: Final = 5
RESP_CMD_NOT_SUPPORTED: Final = 7
RESP_ADDR_NOT_SUPPORTED: Final = 8

# Bind address reported in every reply
REPLY_BIND_ADDR: Final = "0.0.0.0"
REPLY_BIND_PORT: Final = 0


class NegotiationState(Enum):
    """Where a connection is in the handshake."""

    AWAITING_GREETING = "awaiting greeting"
    AWAITING_SUBNEGOTIATION = "awaiting sub-negotiation"
    AUTHENTICATED = "authenticated"
    AWAITING_REQUEST = "awaiting request"
    RELAYING = "relaying"
    REJECTED = "rejected"
    CLOSED = "closed"


class Readable(Protocol):
    def recv(self, bufsize: int) -> bytes: ...


@dataclass(frozen=True)
class ConnectRequest:
    """Destination of a CONNECT request."""

    host: str
    port: int
    address_type: int

    @property
    def address(self) -> str:
        """``host:port``, with IPv6 hosts in brackets."""
        if self.address_type == ADDR_TYPE_IPV6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def recv_exact(stream: Readable, size: int) -> bytes:
    """Read exactly ``size`` bytes from ``stream``.

    Raises:
        FramingError: If the peer closes before ``size`` bytes arrive
    """
    chunks = []
    remaining = size
    while remaining:
        chunk = stream.recv(remaining)
        if not chunk:
            msg = f"Connection closed after {size - remaining} of {size} bytes"
            raise FramingError(msg)
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def build_reply(status: int) -> bytes:
    """Encode a SOCKS5 reply carrying ``status``."""
    response = struct.pack("!BBBB", SOCKS_VERSION, status, 0, ADDR_TYPE_IPV4)
    return response + socket.inet_aton(REPLY_BIND_ADDR) + struct.pack("!H", REPLY_BIND_PORT)


def read_connect_request(stream: Readable) -> ConnectRequest:
    """Parse a SOCKS5 request header, address and port.

    Only as many bytes as the request declares are consumed.

    Raises:
        RequestRejected: For commands other than CONNECT or unknown address types
        FramingError: If the request is truncated
    """
    _version, cmd, _reserved, addr_type = struct.unpack("!BBBB", recv_exact(stream, 4))

    if cmd != CONNECT_CMD:
        raise RequestRejected(RESP_CMD_NOT_SUPPORTED, f"Unsupported command: {cmd}")

    if addr_type == ADDR_TYPE_IPV4:
        host = str(ipaddress.IPv4Address(recv_exact(stream, 4)))
    elif addr_type == ADDR_TYPE_DOMAIN:
        (domain_len,) = struct.unpack("!B", recv_exact(stream, 1))
        host = recv_exact(stream, domain_len).decode("utf-8", "replace")
    elif addr_type == ADDR_TYPE_IPV6:
        host = str(ipaddress.IPv6Address(recv_exact(stream, 16)))
    else:
        raise RequestRejected(RESP_ADDR_NOT_SUPPORTED, f"Unsupported address type: {addr_type}")

    (port,) = struct.unpack("!H", recv_exact(stream, 2))
    return ConnectRequest(host=host, port=port, address_type=addr_type)


class SocksHandler(socketserver.BaseRequestHandler):
    """Handle incoming SOCKS5 connections."""

    server: "SocksProxy"
    state: NegotiationState

    def _negotiate(self) -> str | None:
        """Perform method selection and username/password authentication.

        Returns:
            str | None: Authenticated username, or ``None`` if the client was rejected
        """
        version, nmethods = struct.unpack("!BB", recv_exact(self.request, 2))
        if version != SOCKS_VERSION:
            msg = f"Unsupported SOCKS version: {version}"
            raise FramingError(msg)

        methods = recv_exact(self.request, nmethods)
        if AUTH_USERNAME_PASSWORD not in methods:
            logger.info(f"{self._peer}: no acceptable authentication method in {list(methods)}")
            self.request.sendall(struct.pack("!BB", SOCKS_VERSION, AUTH_NO_ACCEPTABLE))
            self.state = NegotiationState.REJECTED
            return None

        self.request.sendall(struct.pack("!BB", SOCKS_VERSION, AUTH_USERNAME_PASSWORD))
        self.state = NegotiationState.AWAITING_SUBNEGOTIATION

        # The sub-negotiation version byte is accepted as-is
        _auth_version, username_len = struct.unpack("!BB", recv_exact(self.request, 2))
        username = recv_exact(self.request, username_len).decode("utf-8", "surrogateescape")
        (password_len,) = struct.unpack("!B", recv_exact(self.request, 1))
        password = recv_exact(self.request, password_len).decode("utf-8", "surrogateescape")

        if not self.server.credentials.authenticate(username, password):
            logger.info(f"{self._peer}: authentication failed for {username!r}")
            self.request.sendall(struct.pack("!BB", AUTH_VERSION, AUTH_FAILURE))
            self.state = NegotiationState.REJECTED
            return None

        self.request.sendall(struct.pack("!BB", AUTH_VERSION, AUTH_SUCCESS))
        self.state = NegotiationState.AUTHENTICATED
        return username

    def _send_response(self, conn: MeteredConnection, status: int) -> None:
        """Send SOCKS5 response."""
        conn.sendall(build_reply(status))

    def handle_connect(self, conn: MeteredConnection) -> socket.socket | None:
        """Read the CONNECT request and dial its destination.

        Returns:
            socket.socket | None: Connected target socket, or ``None`` if a
            rejection or failure reply was sent instead
        """
        self.state = NegotiationState.AWAITING_REQUEST
        try:
            request = read_connect_request(conn)
        except RequestRejected as e:
            logger.info(f"{self._peer} ({conn.username}): {e}")
            self._send_response(conn, e.reply_code)
            self.state = NegotiationState.REJECTED
            return None

        logger.debug(f"{self._peer} ({conn.username}): CONNECT {request.address}")
        try:
            remote = socket.create_connection((request.host, request.port))
        except (OSError, UnicodeError) as e:
            logger.info(f"{self._peer} ({conn.username}): failed to connect to {request.address}: {e}")
            self._send_response(conn, RESP_GENERAL_FAILURE)
            self.state = NegotiationState.REJECTED
            return None

        try:
            self._send_response(conn, RESP_SUCCESS)
        except OSError:
            remote.close()
            raise
        return remote

    def handle(self) -> None:
        """Handle incoming SOCKS5 connection."""
        stats = self.server.stats
        stats.connection_started()
        self.state = NegotiationState.AWAITING_GREETING
        conn: MeteredConnection | None = None
        try:
            username = self._negotiate()
            if username is None:
                return

            conn = MeteredConnection(self.request, username, self.server.ledger)
            remote = self.handle_connect(conn)
            if remote is None:
                return

            self.state = NegotiationState.RELAYING
            logger.info(f"{self._peer} ({username}): relaying")
            result = relay(conn, remote, self.server.ledger, self.server.buffer_size)
            logger.info(
                f"{self._peer} ({username}): session closed, "
                f"{result.upstream} bytes up, {result.downstream} bytes down"
            )
        except FramingError as e:
            logger.debug(f"{self._peer}: dropping connection while {self.state.value}: {e}")
        except OSError as e:
            logger.debug(f"{self._peer}: transport error while {self.state.value}: {e}")
        finally:
            if conn is not None:
                conn.close()
            self.state = NegotiationState.CLOSED
            stats.connection_ended()

    @property
    def _peer(self) -> str:
        host, port = self.client_address[:2]
        return f"{host}:{port}"
