"""Administrative commands operating on the proxy's state files.

This module provides the offline counterparts of the server:
- Adding or updating a user in the credential file
- Rendering the traffic ledger as a table

Both read and write the same files the server uses. Run them while the
server is stopped if the ledger must be consistent, since the server
rewrites the traffic file at the end of every session.

Example:
    add_user(Path("users.json"), "alice", "s3cret")
    show_traffic(Path("traffic.json"))
"""

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from metered_socks_proxy.core.lib.credential_store import CredentialStore
from metered_socks_proxy.core.lib.traffic_ledger import TrafficLedger
from metered_socks_proxy.core.utils.utils import format_bytes

console = Console()


def add_user(users_file: Path, username: str, password: str) -> None:
    """Add or overwrite ``username`` in ``users_file``.

    Raises:
        CredentialError: If the credentials are invalid
        PersistenceError: If the file is malformed or cannot be written
    """
    store = CredentialStore(users_file)
    store.load()
    existed = username in store
    store.add(username, password)
    action = "updated" if existed else "added"
    console.print(f"[green]User {escape(username)} {action} successfully")


def build_traffic_table(usage: dict[str, int]) -> Table:
    """Build a table of per-user traffic sorted by username."""
    table = Table(title="Traffic usage", show_footer=len(usage) > 1)
    table.add_column("User", style="cyan", no_wrap=True, footer="Total")
    table.add_column("Bytes", style="green", justify="right", footer=str(sum(usage.values())))
    table.add_column("Size", style="green", justify="right", footer=format_bytes(sum(usage.values())))

    for username in sorted(usage):
        count = usage[username]
        table.add_row(escape(username), str(count), format_bytes(count))
    return table


def show_traffic(traffic_file: Path) -> dict[str, int]:
    """Print the ledger stored in ``traffic_file`` and return its counts.

    Raises:
        PersistenceError: If the file is malformed
    """
    ledger = TrafficLedger(traffic_file)
    ledger.load()
    usage = ledger.snapshot()
    if not usage:
        console.print("[yellow]No traffic recorded yet")
        return usage

    console.print(build_traffic_table(usage))
    return usage
