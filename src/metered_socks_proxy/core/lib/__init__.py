"""Core proxy library components."""

from .credential_store import CredentialStore
from .metered_connection import MeteredConnection
from .proxy_server import SocksProxy, create_proxy_server, load_state, run_server
from .proxy_stats import DiagnosticsMonitor, ProxyStats
from .relay import RelayResult, RelaySession, relay
from .socks_handler import ConnectRequest, NegotiationState, SocksHandler
from .traffic_ledger import TrafficLedger

__all__ = [
    "ConnectRequest",
    "create_proxy_server",
    "CredentialStore",
    "DiagnosticsMonitor",
    "load_state",
    "MeteredConnection",
    "NegotiationState",
    "ProxyStats",
    "relay",
    "RelayResult",
    "RelaySession",
    "run_server",
    "SocksHandler",
    "SocksProxy",
    "TrafficLedger",
]
