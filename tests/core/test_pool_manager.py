"""Unit tests for core.pool.manager (ConnectionPool) and core.pool.registry (PoolRegistry)."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from lazydb.core.pool import (
    ConnectionPool,
    DriverEnum,
    DriverResponse,
    PooledConnection,
    PoolRegistry,
    get_registry,
)


@pytest.fixture
def driver_api() -> Any:
    with patch("lazydb.core.pool.manager.driver_api") as m:
        m.connect.side_effect = lambda opts: MagicMock(name="conn")
        yield m


# --- ConnectionPool ---


def test_pool_opens_then_reuses(driver_api: MagicMock) -> None:
    pool = ConnectionPool("main", {"host": "db"})
    conn1 = pool.get_connection()
    driver_api.connect.assert_called_once_with({"host": "db"})

    pool.release(conn1)
    driver_api.rollback.assert_called_once_with(conn1)
    conn2 = pool.get_connection()

    assert conn2 is conn1
    assert driver_api.connect.call_count == 1


def test_pool_driver_from_options(driver_api: MagicMock) -> None:
    assert ConnectionPool("pg", {"driver": "postgres"}).driver == DriverEnum.POSTGRES


def test_pool_size_caps_idle_connections(driver_api: MagicMock) -> None:
    pool = ConnectionPool("main", {"pool_size": 1})
    conn1 = pool.get_connection()
    conn2 = pool.get_connection()

    pool.release(conn1)
    pool.release(conn2)

    conn2.close.assert_called_once()
    assert pool.stats() == {"idle_connections": 1, "leased_connections": 0}


def test_expired_connection_is_replaced(driver_api: MagicMock) -> None:
    pool = ConnectionPool("main", {"pool_max_age": -1})
    conn1 = pool.get_connection()
    pool.release(conn1)

    conn2 = pool.get_connection()

    assert conn2 is not conn1
    conn1.close.assert_called_once()


def test_idle_connection_pinged_before_reuse(driver_api: MagicMock) -> None:
    pool = ConnectionPool("pg", {"driver": "postgres"})
    pool._ping_idle = -1
    conn1 = pool.get_connection()
    pool.release(conn1)

    assert pool.get_connection() is conn1
    driver_api.run_statement.assert_called_once_with(
        conn1, "SELECT 1", driver=DriverEnum.POSTGRES
    )


def test_dead_idle_connection_is_replaced(driver_api: MagicMock) -> None:
    pool = ConnectionPool("main", {})
    pool._ping_idle = -1
    conn1 = pool.get_connection()
    pool.release(conn1)
    driver_api.run_statement.side_effect = OSError("server has gone away")

    conn2 = pool.get_connection()

    assert conn2 is not conn1
    conn1.close.assert_called_once()


def test_release_closes_when_rollback_fails(driver_api: MagicMock) -> None:
    pool = ConnectionPool("main", {})
    conn = pool.get_connection()
    driver_api.rollback.side_effect = OSError("gone")

    pool.release(conn)

    conn.close.assert_called_once()
    assert pool.stats()["idle_connections"] == 0


def test_close_drains_and_refuses(driver_api: MagicMock) -> None:
    pool = ConnectionPool("main", {})
    idle = pool.get_connection()
    leased = pool.get_connection()
    pool.release(idle)

    pool.close()

    idle.close.assert_called_once()
    assert pool.closed is True
    with pytest.raises(RuntimeError, match="closed"):
        pool.get_connection()
    pool.release(leased)
    leased.close.assert_called_once()


@pytest.mark.asyncio
async def test_pooled_connection_round_trips(driver_api: MagicMock) -> None:
    driver_api.run_statement.return_value = DriverResponse([{"n": 1}], ["n"])
    pool = ConnectionPool("pg", {"driver": "postgres"})

    lease = await pool.acquire()
    assert isinstance(lease, PooledConnection)
    resp = await lease.run("SELECT ?", [1], prepare=True)
    await lease.begin()
    await lease.commit()
    await lease.release()

    assert resp.rows == [{"n": 1}]
    driver_api.run_statement.assert_called_once_with(
        lease.raw, "SELECT ?", [1], driver=DriverEnum.POSTGRES, prepare=True
    )
    driver_api.begin.assert_called_once_with(lease.raw)
    driver_api.commit.assert_called_once_with(lease.raw)
    assert pool.stats()["idle_connections"] == 1


# --- PoolRegistry ---


def test_registry_strips_handle_keys_and_first_config_wins() -> None:
    factory = MagicMock(side_effect=lambda name, opts: MagicMock(name=name))
    registry = PoolRegistry(pool_factory=factory)

    p1 = registry.get_or_create(
        "main", {"name": "main", "must_in_trans": True, "host": "a"}
    )
    p2 = registry.get_or_create("main", {"name": "main", "host": "b"})

    assert p1 is p2
    factory.assert_called_once_with("main", {"host": "a"})
    assert "main" in registry
    assert len(registry) == 1
    assert registry.names() == ["main"]


def test_registry_single_creation_under_thread_race() -> None:
    created: list[str] = []

    def slow_factory(name: str, opts: dict) -> object:
        time.sleep(0.01)
        created.append(name)
        return object()

    registry = PoolRegistry(pool_factory=slow_factory)
    barrier = threading.Barrier(8)

    def first_access() -> object:
        barrier.wait()
        return registry.get_or_create("shared", {})

    with ThreadPoolExecutor(max_workers=8) as ex:
        pools = list(ex.map(lambda _: first_access(), range(8)))

    assert created == ["shared"]
    assert all(p is pools[0] for p in pools)


@pytest.mark.asyncio
async def test_registry_close_all_then_recreate() -> None:
    pools: list[MagicMock] = []

    def factory(name: str, opts: dict) -> MagicMock:
        pool = MagicMock()
        pool.end = AsyncMock()
        pools.append(pool)
        return pool

    registry = PoolRegistry(pool_factory=factory)
    first = registry.get_or_create("a", {})
    registry.get_or_create("b", {})

    await registry.close_all()

    assert len(registry) == 0
    for pool in pools:
        pool.end.assert_awaited_once()
    again = registry.get_or_create("a", {})
    assert again is not first


def test_get_registry_is_shared() -> None:
    assert get_registry() is get_registry()
