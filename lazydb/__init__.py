"""
lazydb: lazily pooled database handles, bound transactions and batch
statement expansion for MySQL (pymysql) and PostgreSQL (psycopg).
"""

from lazydb.core.exceptions import (
    ConcurrencyError,
    ConfigurationError,
    DbError,
    DriverError,
    ParameterCountMismatch,
    PatternError,
    TooManyRowsError,
)
from lazydb.core.pool import ConnectionPool, ExecResult, PoolRegistry, get_registry
from lazydb.handle import DbHandle, Transactional

__all__ = [
    "ConcurrencyError",
    "ConfigurationError",
    "ConnectionPool",
    "DbError",
    "DbHandle",
    "DriverError",
    "ExecResult",
    "ParameterCountMismatch",
    "PatternError",
    "PoolRegistry",
    "TooManyRowsError",
    "Transactional",
    "get_registry",
]
