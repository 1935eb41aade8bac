"""
Process-wide mapping from logical pool name to ConnectionPool.

The first options registered for a name win; later ``get_or_create`` calls for
the same name reuse the pool and ignore their options.
"""

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from .manager import ConnectionPool

_log = logging.getLogger(__name__)

# Understood by DbHandle only; stripped before the options reach the pool.
HANDLE_ONLY_KEYS = ("name", "must_in_trans")

PoolFactory = Callable[[str, Mapping[str, Any]], Any]


class PoolRegistry:
    """Name -> pool mapping with single-creation under concurrent first access."""

    def __init__(self, pool_factory: PoolFactory = ConnectionPool) -> None:
        self._pool_factory = pool_factory
        self._pools: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str, options: Mapping[str, Any]) -> Any:
        pool = self._pools.get(name)
        if pool is not None:
            return pool
        with self._lock:
            pool = self._pools.get(name)
            if pool is None:
                opts = {k: v for k, v in options.items() if k not in HANDLE_ONLY_KEYS}
                pool = self._pool_factory(name, opts)
                self._pools[name] = pool
                _log.info("Created connection pool %s", name)
        return pool

    def get(self, name: str) -> Any:
        return self._pools.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._pools)

    def __contains__(self, name: object) -> bool:
        return name in self._pools

    def __len__(self) -> int:
        return len(self._pools)

    async def close_all(self) -> None:
        """Drain and forget every pool; the next get_or_create re-creates."""
        with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            await pool.end()


_registry: PoolRegistry | None = None
_registry_lock = threading.Lock()


def get_registry() -> PoolRegistry:
    """Return the default PoolRegistry (thread-safe double-checked locking)."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = PoolRegistry()
    return _registry
