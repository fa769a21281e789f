"""JSON persistence helpers shared by the credential store and traffic ledger.

Both state files are flat JSON objects. Reads treat a missing file as
empty and anything unparseable as fatal; writes go to a temporary file in
the same directory which is then renamed over the target, so readers
never observe a partially written document.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from metered_socks_proxy.core.exceptions import PersistenceError

STATE_FILE_MODE = 0o600


def read_json_object(path: Path) -> dict[str, Any] | None:
    """Read a JSON object from ``path``.

    Returns:
        dict | None: Parsed object, or ``None`` if the file does not exist

    Raises:
        PersistenceError: If the file cannot be read or is not a JSON object
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        raise PersistenceError(f"Failed to read {path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Failed to parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise PersistenceError(f"{path} must contain a JSON object, got {type(data).__name__}")
    return data


def write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    """Serialize ``data`` and atomically replace ``path`` with it.

    Raises:
        PersistenceError: If the document cannot be written
    """
    tmp_name = None
    try:
        payload = json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(tmp_name, STATE_FILE_MODE)
        os.replace(tmp_name, path)
    except (OSError, TypeError, ValueError) as e:
        if tmp_name is not None:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
        raise PersistenceError(f"Failed to write {path}: {e}") from e
