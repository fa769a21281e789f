"""Authenticating SOCKS5 proxy with per-user traffic accounting."""

import pathlib
import sys
from importlib import metadata

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def get_version() -> str:
    """Read version from pyproject.toml."""
    current_dir = pathlib.Path(__file__).parent
    # Source checkouts carry pyproject.toml a couple of levels up
    for parent in [current_dir] + list(current_dir.parents):
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.exists():
            with pyproject_path.open("rb") as f:
                pyproject_data = tomllib.load(f)
            project = pyproject_data.get("project", {})
            if project.get("name") == "metered-socks-proxy":
                return project["version"]

    try:
        return metadata.version("metered-socks-proxy")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = get_version()
