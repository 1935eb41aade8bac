"""
DB connections, per-name connection pools and the pool registry.

No driver layer beyond pymysql and psycopg; a pool options mapping is enough.
"""

from .driver import (
    DriverEnum,
    DriverResponse,
    ExecResult,
    connect,
    cursor_to_dicts,
    execute,
    fetch_response,
    to_format_paramstyle,
)
from .manager import ConnectionPool, PooledConnection
from .registry import HANDLE_ONLY_KEYS, PoolRegistry, get_registry

__all__ = [
    "DriverEnum",
    "DriverResponse",
    "ExecResult",
    "connect",
    "execute",
    "cursor_to_dicts",
    "fetch_response",
    "to_format_paramstyle",
    "ConnectionPool",
    "PooledConnection",
    "HANDLE_ONLY_KEYS",
    "PoolRegistry",
    "get_registry",
]
