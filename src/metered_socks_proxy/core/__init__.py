"""Core proxy server implementation.

This package contains the core components of the SOCKS5 proxy server:
- Protocol handling (negotiation, authentication, CONNECT requests)
- Credential storage and the per-user traffic ledger
- Metered client connections and the duplex relay
- Threaded server implementation and diagnostics
- Exception handling and configuration

The core package provides all the fundamental functionality needed
to run the proxy, while keeping the implementation details separate
from the command-line interface.
"""
