"""
DbHandle: lazily acquired pooled connection plus its transaction state.

The connection is leased from the pool only when the first statement runs;
``begin_transaction`` before that only records the intent and the BEGIN is
issued once the connection exists. Handles can bind siblings so that begin,
commit and rollback on the primary are issued on every bound handle too.

Binding coordinates transaction *commands* only: a failure between two bound
commits can leave siblings inconsistent. Use a distributed transaction
solution where that matters.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, TypeVar

from lazydb.core.exceptions import (
    ConcurrencyError,
    ConfigurationError,
    DbError,
    DriverError,
    TooManyRowsError,
)
from lazydb.core.pool import PooledConnection, PoolRegistry, get_registry
from lazydb.engines.sql import (
    MODE_EXECUTE,
    MODE_QUERY,
    normalize_params,
    run_sql,
    summarize_params,
)

_log = logging.getLogger(__name__)

T = TypeVar("T")

LazyInit = Callable[["DbHandle"], Any]


class Transactional(Protocol):
    """What a bound sibling must support."""

    def is_transacting(self) -> bool: ...

    async def begin_transaction(self) -> None: ...

    async def commit(self, keep_open: bool = False, rerun_init: bool = True) -> None: ...

    async def rollback(self) -> None: ...

    async def release(self) -> None: ...


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class DbHandle:
    """Per-use-site database handle. See module docstring."""

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        registry: PoolRegistry | None = None,
    ) -> None:
        name = config.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigurationError(
                "config must contain a non-empty 'name'; handles sharing a name "
                "share the pool built from the first config with that name"
            )
        self._config = dict(config)
        self._registry = registry
        self._conn: PooledConnection | None = None
        self._transacting = False
        self._lazy_init: LazyInit | None = None
        self._current_sql: str | None = None
        self._bound: list[Transactional] = []
        self._init_task: asyncio.Task[Any] | None = None
        self._connect_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return (
            f"<DbHandle name={self.name!r} connected={self.is_connected()} "
            f"transacting={self._transacting}>"
        )

    @property
    def name(self) -> str:
        return self._config["name"]

    @property
    def database(self) -> str | None:
        return self._config.get("database")

    @property
    def must_in_trans(self) -> bool:
        return bool(self._config.get("must_in_trans", False))

    def is_connected(self) -> bool:
        return self._conn is not None

    def is_transacting(self) -> bool:
        return self._transacting

    def current_sql(self) -> str | None:
        return self._current_sql

    def set_lazy_init(self, cb: LazyInit) -> None:
        """Register ``cb(handle)`` to run right after the connection is leased."""
        if self._lazy_init is not None or self._conn is not None:
            raise ConfigurationError("Set too late, lazy init already set or connection open")
        self._lazy_init = cb

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _ensure_connected(self) -> PooledConnection:
        if self._conn is not None:
            return self._conn
        async with self._connect_lock:
            if self._conn is not None:
                return self._conn
            registry = self._registry if self._registry is not None else get_registry()
            pool = registry.get_or_create(self.name, self._config)
            self._conn = await pool.acquire()
            _log.debug("Handle %s leased a connection", self.name)
            if self._transacting:
                await self._conn.begin()
            if self._lazy_init is not None:
                await self._run_lazy_init()
            return self._conn

    async def _run_lazy_init(self) -> None:
        # statements the callback awaits in this task nest inside the one that
        # leased the connection; other tasks still see the in-flight marker
        cb = self._lazy_init
        if cb is None:
            return
        self._init_task = asyncio.current_task()
        try:
            await _maybe_await(cb(self))
        finally:
            self._init_task = None

    def _in_lazy_init(self) -> bool:
        return self._init_task is not None and asyncio.current_task() is self._init_task

    async def release(self) -> None:
        """Roll back anything still open, then hand the connection back. Idempotent."""
        try:
            await self.rollback()
        finally:
            # the pool rolls back on return, so nothing stays open past release
            self._transacting = False
            conn, self._conn = self._conn, None
            if conn is not None:
                await conn.release()
                _log.debug("Handle %s released its connection", self.name)

    async def __aenter__(self) -> DbHandle:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.release()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    async def _exec(
        self,
        mode: str,
        sql: str,
        params: Any = None,
        *,
        fields: bool = False,
        regexp: str | re.Pattern[str] | None = None,
        max_row: int | None = None,
    ) -> Any:
        outer = self._current_sql
        if outer is not None and not self._in_lazy_init():
            raise ConcurrencyError(f"Sql is executing: {outer}")
        if self.must_in_trans and not self._transacting:
            raise ConfigurationError(f"Not executed in a transaction: {sql}")
        self._current_sql = sql
        args = normalize_params(params)
        try:
            conn = await self._ensure_connected()
            return await run_sql(
                conn,
                sql,
                args,
                mode=mode,
                fields=fields,
                regexp=regexp,
                max_row=max_row,
            )
        except DbError as e:
            raise e.with_context(sql, summarize_params(args))
        except Exception as e:
            summary = summarize_params(args)
            _log.error("SQL execution failed: %s. SQL: %s", e, sql, exc_info=True)
            raise DriverError(str(e), sql=sql, params=summary) from e
        finally:
            self._current_sql = outer

    async def query(
        self,
        sql: str,
        params: Any = None,
        *,
        fields: bool = False,
        regexp: str | re.Pattern[str] | None = None,
        max_row: int | None = None,
    ) -> Any:
        """Run *sql* non-prepared. See ``lazydb.engines.sql.pattern`` for batch params."""
        return await self._exec(
            MODE_QUERY, sql, params, fields=fields, regexp=regexp, max_row=max_row
        )

    async def execute(
        self,
        sql: str,
        params: Any = None,
        *,
        fields: bool = False,
        regexp: str | re.Pattern[str] | None = None,
        max_row: int | None = None,
    ) -> Any:
        """Run *sql* as a prepared statement where the driver supports it."""
        return await self._exec(
            MODE_EXECUTE, sql, params, fields=fields, regexp=regexp, max_row=max_row
        )

    @staticmethod
    def _one(rows: Any) -> Any:
        if not isinstance(rows, list):
            return rows
        if len(rows) > 1:
            raise TooManyRowsError(f"More than one record: {len(rows)} rows")
        return rows[0] if rows else None

    async def query_one(self, sql: str, params: Any = None) -> Any:
        """First row, or None; more than one row raises TooManyRowsError."""
        rows = await self.query(sql, params)
        try:
            return self._one(rows)
        except TooManyRowsError as e:
            raise e.with_context(sql, summarize_params(normalize_params(params)))

    async def execute_one(self, sql: str, params: Any = None) -> Any:
        rows = await self.execute(sql, params)
        try:
            return self._one(rows)
        except TooManyRowsError as e:
            raise e.with_context(sql, summarize_params(normalize_params(params)))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def bind(self, sibling: Transactional) -> bool:
        """Issue this handle's transaction commands on *sibling* too. False if already bound."""
        if sibling is self:
            raise ConfigurationError("A handle cannot be bound to itself")
        if any(s is sibling for s in self._bound):
            return False
        self._bound.append(sibling)
        if self._transacting and not sibling.is_transacting():
            await sibling.begin_transaction()
        return True

    def unbind(self, sibling: Transactional) -> bool:
        """Detach *sibling*; its own transaction state is left alone."""
        for i, s in enumerate(self._bound):
            if s is sibling:
                del self._bound[i]
                return True
        return False

    def bound(self) -> list[Transactional]:
        return list(self._bound)

    async def begin_transaction(self) -> None:
        if not self._transacting and self._conn is not None:
            await self._conn.begin()
        self._transacting = True
        for sibling in list(self._bound):
            if not sibling.is_transacting():
                await sibling.begin_transaction()

    async def commit(self, keep_open: bool = False, rerun_init: bool = True) -> None:
        """
        Commit bound siblings (in bind order), then this handle.

        keep_open: start a new transaction on the same connection right away;
        rerun_init then decides whether the lazy-init callback runs again.
        """
        if self._current_sql is not None:
            raise ConcurrencyError(f"Sql is executing: {self._current_sql}")
        for sibling in list(self._bound):
            await sibling.commit(keep_open, rerun_init)
        if self._transacting and self._conn is not None:
            await self._conn.commit()
            _log.debug("Handle %s committed", self.name)
        if keep_open:
            await self._rearm(rerun_init)
        else:
            self._transacting = False

    async def _rearm(self, rerun_init: bool) -> None:
        self._transacting = True
        if self._conn is None:
            # BEGIN and lazy init both happen when the connection is leased
            return
        await self._conn.begin()
        if rerun_init and self._lazy_init is not None:
            await self._run_lazy_init()

    async def rollback(self) -> None:
        """
        Roll back bound siblings, then this handle. A no-op without a transaction.

        A failing sibling does not stop the others or this handle; the first
        sibling error is raised once this handle has rolled back. If this
        handle's own ROLLBACK fails it stays transacting.
        """
        errors: list[Exception] = []
        for sibling in list(self._bound):
            try:
                await sibling.rollback()
            except Exception as e:
                _log.warning("Rollback of bound handle %r failed: %s", sibling, e)
                errors.append(e)
        if self._transacting and self._conn is not None:
            await self._conn.rollback()
            _log.debug("Handle %s rolled back", self.name)
        self._transacting = False
        if errors:
            raise errors[0]

    async def transaction(self, cb: Callable[[DbHandle], Awaitable[T]]) -> T:
        """begin -> cb(handle) -> commit; rollback on failure; always release."""
        try:
            await self.begin_transaction()
            result = await cb(self)
            await self.commit()
            return result
        except Exception:
            await self.rollback()
            raise
        finally:
            await self.release()

    @classmethod
    async def run_in_transaction(
        cls,
        cb: Callable[[DbHandle], Awaitable[T]],
        config: Mapping[str, Any],
        *,
        registry: PoolRegistry | None = None,
    ) -> T:
        return await cls(config, registry=registry).transaction(cb)

    @classmethod
    async def safe_call(
        cls,
        cb: Callable[[DbHandle], Awaitable[T]],
        config: Mapping[str, Any],
        must_in_trans: bool | None = None,
        *,
        registry: PoolRegistry | None = None,
    ) -> T:
        """Run cb(handle) without an automatic transaction; always release.

        must_in_trans, when given, overrides the config's flag.
        """
        options = dict(config)
        if must_in_trans is not None:
            options["must_in_trans"] = bool(must_in_trans)
        db = cls(options, registry=registry)
        try:
            return await cb(db)
        finally:
            await db.release()

    @staticmethod
    async def close_all(registry: PoolRegistry | None = None) -> None:
        """Close every pool of *registry* (default: the process registry)."""
        await (registry if registry is not None else get_registry()).close_all()
