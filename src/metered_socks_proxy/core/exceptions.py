"""Custom exceptions for the proxy server.

This module defines custom exceptions used throughout the proxy server implementation.
These exceptions provide more specific error handling for:
- Malformed or truncated SOCKS5 handshakes
- Requests the proxy refuses with a specific reply code
- Invalid credentials supplied to the administrative path
- Unreadable, unwritable or corrupt state files
- Unrecoverable listener failures

Negotiated rejections (no acceptable auth method, bad credentials) are not
errors and never surface as exceptions.

Example:
    try:
        ledger.persist()
    except PersistenceError as e:
        logger.error(f"Failed to persist traffic ledger: {e}")
"""


class ProxyError(Exception):
    """Base exception for proxy errors."""


class FramingError(ProxyError):
    """Raised when the peer sends a truncated or malformed handshake."""


class RequestRejected(ProxyError):
    """Raised when a CONNECT request must be refused with a SOCKS5 reply code."""

    def __init__(self, reply_code: int, message: str) -> None:
        super().__init__(message)
        self.reply_code = reply_code


class CredentialError(ProxyError):
    """Raised when a credential entry cannot be stored."""


class PersistenceError(ProxyError):
    """Raised when a state file cannot be read, parsed or written."""


class ListenerError(ProxyError):
    """Raised when the listening socket fails permanently."""
