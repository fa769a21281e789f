"""Runtime configuration for the proxy server.

The command line builds a :class:`ProxyConfig` from its options (each of
which can also be supplied through a ``METERED_SOCKS_*`` environment
variable) and hands it to the server.

Example:
    config = ProxyConfig(port=1081, users_file=Path("/etc/socks/users.json"))
    run_server(config)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Final

DEFAULT_HOST: Final = "0.0.0.0"
DEFAULT_PORT: Final = 1080
DEFAULT_USERS_FILE: Final = Path("users.json")
DEFAULT_TRAFFIC_FILE: Final = Path("traffic.json")
DEFAULT_BUFFER_SIZE: Final = 64 * 1024  # Bytes per relay direction
DEFAULT_MONITOR_INTERVAL: Final = 5.0  # Seconds

MAX_PORT: Final = 65535


@dataclass(frozen=True)
class ProxyConfig:
    """Proxy server settings.

    Attributes:
        host: Address the listener binds to
        port: TCP port the listener binds to
        users_file: JSON credential file (username -> password)
        traffic_file: JSON traffic ledger file (username -> bytes)
        buffer_size: Read size used by each relay direction
        max_connections: Upper bound on concurrent sessions, ``None`` for unbounded
        monitor_interval: Seconds between diagnostics log lines, ``0`` disables them
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    users_file: Path = DEFAULT_USERS_FILE
    traffic_file: Path = DEFAULT_TRAFFIC_FILE
    buffer_size: int = DEFAULT_BUFFER_SIZE
    max_connections: int | None = None
    monitor_interval: float = DEFAULT_MONITOR_INTERVAL

    def __post_init__(self) -> None:
        if not 0 <= self.port <= MAX_PORT:
            msg = f"port must be between 0 and {MAX_PORT}, got {self.port}"
            raise ValueError(msg)
        if self.buffer_size <= 0:
            msg = f"buffer_size must be positive, got {self.buffer_size}"
            raise ValueError(msg)
        if self.max_connections is not None and self.max_connections <= 0:
            msg = f"max_connections must be positive, got {self.max_connections}"
            raise ValueError(msg)
        if self.monitor_interval < 0:
            msg = f"monitor_interval must not be negative, got {self.monitor_interval}"
            raise ValueError(msg)
