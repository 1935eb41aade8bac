"""
Connection pool for one logical database name.

Reuses connections to avoid open/close on every handle. Includes health-check
on checkout, max-age eviction and an idle-size cap. The pool itself is
blocking and thread-safe; ``acquire``/``put``/``end`` run it in a worker
thread so the event loop is never blocked by a network round trip.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Mapping, Sequence
from typing import Any, NamedTuple

from lazydb.core.config import settings

from . import driver as driver_api
from .driver import DriverResponse, resolve_driver

_log = logging.getLogger(__name__)


class _PoolEntry(NamedTuple):
    conn: Any
    created_at: float  # time.monotonic() when the connection was opened
    last_used: float  # time.monotonic() when last returned to pool


class ConnectionPool:
    """Idle-connection pool keyed by a logical name, with health-check and max-age."""

    def __init__(self, name: str, options: Mapping[str, Any]) -> None:
        self.name = name
        self._options = dict(options)
        self.driver = resolve_driver(self._options.get("driver"))
        self._idle: list[_PoolEntry] = []
        self._opened_at: dict[int, float] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._leased = 0
        self._pool_size = int(self._options.get("pool_size", settings.POOL_SIZE))
        self._max_age = float(
            self._options.get("pool_max_age", settings.POOL_MAX_AGE_SEC)
        )
        self._ping_idle = float(settings.POOL_PING_IDLE_SEC)

    @property
    def closed(self) -> bool:
        return self._closed

    def get_connection(self) -> Any:
        """Get a healthy connection (from pool or freshly opened)."""
        if self._closed:
            raise RuntimeError(f"Pool {self.name!r} is closed")
        now = time.monotonic()
        while True:
            entry = self._pop()
            if entry is None:
                break
            if now - entry.created_at > self._max_age:
                self._discard(entry.conn)
                continue
            idle_sec = now - entry.last_used
            if idle_sec > self._ping_idle and not self._is_alive(entry.conn):
                self._discard(entry.conn)
                continue
            self._mark_leased()
            return entry.conn

        conn = driver_api.connect(self._options)
        with self._lock:
            self._opened_at[id(conn)] = time.monotonic()
            self._leased += 1
        _log.debug("Pool %s opened a new connection", self.name)
        return conn

    def release(self, conn: Any) -> None:
        """Return a connection to the pool (or close it if pool is full or closed)."""
        with self._lock:
            self._leased = max(self._leased - 1, 0)
        try:
            driver_api.rollback(conn)
        except Exception as e:
            _log.warning("Pool %s: rollback on release failed: %s", self.name, e)
            self._discard(conn)
            return

        with self._lock:
            created_at = self._opened_at.get(id(conn), time.monotonic())
            if not self._closed and len(self._idle) < self._pool_size:
                self._idle.append(
                    _PoolEntry(conn=conn, created_at=created_at, last_used=time.monotonic())
                )
                return

        self._discard(conn)

    def close(self) -> None:
        """Close idle connections; connections still leased are closed on release."""
        with self._lock:
            self._closed = True
            entries, self._idle = self._idle, []
        for e in entries:
            self._discard(e.conn)
        _log.info("Pool %s closed (%d idle connections)", self.name, len(entries))

    def stats(self) -> dict[str, int]:
        """Return pool statistics for monitoring."""
        with self._lock:
            return {"idle_connections": len(self._idle), "leased_connections": self._leased}

    async def acquire(self) -> "PooledConnection":
        conn = await asyncio.to_thread(self.get_connection)
        return PooledConnection(self, conn)

    async def put(self, conn: Any) -> None:
        await asyncio.to_thread(self.release, conn)

    async def end(self) -> None:
        await asyncio.to_thread(self.close)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _pop(self) -> _PoolEntry | None:
        with self._lock:
            if self._idle:
                return self._idle.pop()
        return None

    def _is_alive(self, conn: Any) -> bool:
        """Ping with SELECT 1; any failure marks the connection dead."""
        try:
            driver_api.run_statement(conn, "SELECT 1", driver=self.driver)
            return True
        except Exception:
            return False

    def _mark_leased(self) -> None:
        with self._lock:
            self._leased += 1

    def _discard(self, conn: Any) -> None:
        with self._lock:
            self._opened_at.pop(id(conn), None)
        try:
            conn.close()
        except Exception:
            pass


class PooledConnection:
    """One leased driver connection; every call is a thread-offloaded round trip."""

    def __init__(self, pool: ConnectionPool, conn: Any) -> None:
        self.pool = pool
        self.raw = conn

    async def run(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        prepare: bool = False,
    ) -> DriverResponse:
        return await asyncio.to_thread(
            driver_api.run_statement,
            self.raw,
            sql,
            params,
            driver=self.pool.driver,
            prepare=prepare,
        )

    async def begin(self) -> None:
        await asyncio.to_thread(driver_api.begin, self.raw)

    async def commit(self) -> None:
        await asyncio.to_thread(driver_api.commit, self.raw)

    async def rollback(self) -> None:
        await asyncio.to_thread(driver_api.rollback, self.raw)

    async def release(self) -> None:
        await self.pool.put(self.raw)
