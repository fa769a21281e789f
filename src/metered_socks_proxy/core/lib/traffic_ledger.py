"""Per-user traffic ledger.

The ledger keeps a cumulative byte count for every authenticated user.
Every read and write on a metered client connection lands here through
:meth:`TrafficLedger.record`, so increments come from many threads at
once (two per active session) and are serialized by a single mutex.

Persisting is a separate concern guarded by a reader/writer lock: loads
take the shared side, persists the exclusive side, so a load can never
observe a half-written file and two persists never interleave.

Example:
    ledger = TrafficLedger(Path("traffic.json"))
    ledger.load()
    ledger.record("alice", 512)
    ledger.persist()
"""

import threading
from pathlib import Path

from loguru import logger

from metered_socks_proxy.core.exceptions import PersistenceError
from metered_socks_proxy.core.utils.locks import ReadWriteLock
from metered_socks_proxy.core.utils.state_file import read_json_object, write_json_atomic


class TrafficLedger:
    """Thread-safe ``username -> cumulative bytes`` mapping.

    Counts only ever grow for the lifetime of the process.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._usage: dict[str, int] = {}
        self._lock = threading.Lock()
        self._file_lock = ReadWriteLock()

    def load(self) -> None:
        """Replace the in-memory counts with the contents of ``self.path``.

        A missing file leaves the ledger empty.

        Raises:
            PersistenceError: If the file is unreadable or malformed
        """
        with self._file_lock.read_locked():
            data = read_json_object(self.path)

        if data is None:
            logger.info(f"No traffic file found at {self.path}, starting with an empty traffic record")
            return

        usage: dict[str, int] = {}
        for username, count in data.items():
            # bool is an int subclass but never a valid count
            if isinstance(count, bool) or not isinstance(count, int) or count < 0:
                raise PersistenceError(
                    f"{self.path}: traffic for {username!r} must be a non-negative integer"
                )
            usage[username] = count

        with self._lock:
            self._usage = usage
        logger.info(f"Loaded traffic for {len(usage)} users from {self.path}")

    def record(self, username: str, delta: int) -> None:
        """Add ``delta`` bytes to ``username``'s running total."""
        if delta < 0:
            msg = f"Traffic delta must not be negative, got {delta}"
            raise ValueError(msg)
        with self._lock:
            self._usage[username] = self._usage.get(username, 0) + delta

    def usage(self, username: str) -> int:
        """Return the bytes recorded so far for ``username``."""
        with self._lock:
            return self._usage.get(username, 0)

    def snapshot(self) -> dict[str, int]:
        """Return a copy of all recorded counts."""
        with self._lock:
            return dict(self._usage)

    def persist(self) -> None:
        """Atomically write the current counts to ``self.path``.

        Raises:
            PersistenceError: If the file cannot be written
        """
        with self._file_lock.write_locked():
            # Snapshot inside the file lock so a later persist never writes older counts
            snapshot = self.snapshot()
            write_json_atomic(self.path, snapshot)
        logger.debug(f"Persisted traffic for {len(snapshot)} users to {self.path}")
