"""Main entry point for the SOCKS proxy server.

This module provides a clean interface to the underlying proxy
implementation by exposing only what the command line needs.

Example:
    from metered_socks_proxy.core.proxy import run_server
    from metered_socks_proxy.core.config import ProxyConfig

    # Serve on 127.0.0.1:1080 with state files in /var/lib/socks
    run_server(ProxyConfig(host="127.0.0.1", users_file=Path("/var/lib/socks/users.json")))
"""

from .lib import CredentialStore, TrafficLedger, run_server

__all__ = ["CredentialStore", "run_server", "TrafficLedger"]
