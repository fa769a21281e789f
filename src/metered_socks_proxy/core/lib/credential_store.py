"""Username/password store backing SOCKS5 sub-negotiation.

Credentials are kept in memory as a flat ``username -> password`` mapping
loaded once at startup from a JSON file. The server only ever reads the
mapping; users are added by a separate administrative invocation which
writes the file and exits, so no locking is needed while serving.

Example:
    store = CredentialStore(Path("users.json"))
    store.load()
    if store.authenticate("alice", "s3cret"):
        ...
"""

import hmac
from pathlib import Path
from typing import Final

from loguru import logger

from metered_socks_proxy.core.exceptions import CredentialError, PersistenceError
from metered_socks_proxy.core.utils.state_file import read_json_object, write_json_atomic

# ULEN and PLEN are single bytes on the wire
MAX_FIELD_LENGTH: Final = 255

# Compared against when the username is unknown so both failure paths do the same work
_DUMMY_PASSWORD: Final = b"\x00" * 32


def encode_field(value: str) -> bytes:
    """Encode a username or password the way it appears on the wire."""
    return value.encode("utf-8", "surrogateescape")


class CredentialStore:
    """In-memory credential mapping persisted as a JSON object."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._users: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, username: object) -> bool:
        return username in self._users

    def load(self) -> None:
        """Populate the store from ``self.path``.

        A missing file leaves the store empty.

        Raises:
            PersistenceError: If the file is unreadable or malformed
        """
        data = read_json_object(self.path)
        if data is None:
            logger.info(f"No users file found at {self.path}, starting with an empty user list")
            self._users = {}
            return

        users: dict[str, str] = {}
        for username, password in data.items():
            if not username:
                raise PersistenceError(f"{self.path} contains an entry with an empty username")
            if not isinstance(password, str):
                raise PersistenceError(f"{self.path}: password for {username!r} must be a string")
            users[username] = password
        self._users = users
        logger.info(f"Loaded {len(users)} users from {self.path}")

    def authenticate(self, username: str, password: str) -> bool:
        """Check a username/password pair.

        Unknown users and wrong passwords both return ``False``.
        """
        stored = self._users.get(username)
        expected = encode_field(stored) if stored is not None else _DUMMY_PASSWORD
        matches = hmac.compare_digest(expected, encode_field(password))
        return stored is not None and matches

    def add(self, username: str, password: str) -> None:
        """Insert or overwrite a user and persist the store.

        Raises:
            CredentialError: If the username is empty or either field is too long
            PersistenceError: If the file cannot be written
        """
        if not username:
            raise CredentialError("Username must not be empty")
        for field, value in (("username", username), ("password", password)):
            if len(encode_field(value)) > MAX_FIELD_LENGTH:
                raise CredentialError(f"The {field} must be at most {MAX_FIELD_LENGTH} bytes")

        users = {**self._users, username: password}
        write_json_atomic(self.path, users)
        self._users = users
        logger.debug(f"Stored credentials for {username!r} in {self.path}")
