"""Utility functions and helpers."""

from metered_socks_proxy.core.utils.locks import ReadWriteLock
from metered_socks_proxy.core.utils.state_file import read_json_object, write_json_atomic
from metered_socks_proxy.core.utils.utils import format_bytes

__all__ = ["format_bytes", "read_json_object", "ReadWriteLock", "write_json_atomic"]
