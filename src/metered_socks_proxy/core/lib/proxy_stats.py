"""Session statistics and periodic diagnostics for the SOCKS proxy server.

This module provides:
- Thread-safe counters of active and total sessions
- A background monitor that periodically logs those counters together
  with the process thread count

Each proxy server owns its own :class:`ProxyStats`; handlers reach it
through ``self.server.stats``.

Example:
    stats = ProxyStats()
    stats.connection_started()
    ...
    stats.connection_ended()
"""

import threading
import time

import psutil
from loguru import logger


class ProxyStats:
    """Thread-safe session counters."""

    def __init__(self) -> None:
        self.active_connections = 0
        self.total_connections = 0
        self.start_time = time.monotonic()
        self._lock = threading.Lock()

    def connection_started(self) -> None:
        """Count a newly accepted session."""
        with self._lock:
            self.active_connections += 1
            self.total_connections += 1

    def connection_ended(self) -> None:
        """Count a finished session."""
        with self._lock:
            self.active_connections -= 1

    @property
    def uptime(self) -> float:
        """Seconds since the statistics object was created."""
        return time.monotonic() - self.start_time


class DiagnosticsMonitor(threading.Thread):
    """Daemon thread logging thread and session counts every ``interval`` seconds."""

    def __init__(self, stats: ProxyStats, interval: float) -> None:
        super().__init__(name="diagnostics-monitor", daemon=True)
        self.stats = stats
        self.interval = interval
        self._stopped = threading.Event()
        self._process = psutil.Process()

    def sample(self) -> str:
        """Build a single diagnostics line."""
        return (
            f"Threads: {self._process.num_threads()} | "
            f"active sessions: {self.stats.active_connections} | "
            f"total sessions: {self.stats.total_connections} | "
            f"uptime: {self.stats.uptime:.0f}s"
        )

    def run(self) -> None:
        while not self._stopped.wait(self.interval):
            logger.debug(self.sample())

    def stop(self) -> None:
        self._stopped.set()
