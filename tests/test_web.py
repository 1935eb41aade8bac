"""Tests for the FastAPI glue: per-request handles and pool shutdown."""

from typing import Annotated, Any
from unittest.mock import patch

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from lazydb.core.pool import PoolRegistry
from lazydb.web import HandleSet, db_lifespan, make_handles_dependency
from tests.utils.fakes import FakeBackend

CONFIGS = [{"name": "main", "host": "db"}, {"name": "audit", "host": "db2"}]


def _make_app(registry: PoolRegistry) -> FastAPI:
    app = FastAPI(lifespan=db_lifespan(registry))
    get_db = make_handles_dependency(CONFIGS, registry=registry)
    Handles = Annotated[HandleSet, Depends(get_db)]

    @app.get("/n")
    async def read_n(db: Handles) -> dict[str, Any]:
        return {"row": await db["main"].query_one("SELECT 1 AS n"), "names": list(db)}

    @app.post("/fail")
    async def fail(db: Handles) -> None:
        await db["main"].begin_transaction()
        await db["main"].execute("UPDATE t SET a = ?", [1])
        raise RuntimeError("handler failed")

    return app


def test_request_gets_handles_and_releases(
    backend: FakeBackend, registry: PoolRegistry
) -> None:
    with TestClient(_make_app(registry)) as client:
        resp = client.get("/n")

    assert resp.status_code == 200
    assert resp.json() == {"row": {"n": 1}, "names": ["main", "audit"]}
    # only the handle the route touched was leased
    assert list(backend.pools) == ["main"]
    assert backend.pools["main"].released == 1


def test_failed_request_rolls_back(backend: FakeBackend, registry: PoolRegistry) -> None:
    with TestClient(_make_app(registry), raise_server_exceptions=False) as client:
        resp = client.post("/fail")

    assert resp.status_code == 500
    assert backend.events("rollback") == [("rollback", "main")]
    assert backend.pools["main"].released == 1


def test_lifespan_closes_pools(backend: FakeBackend, registry: PoolRegistry) -> None:
    with TestClient(_make_app(registry)) as client:
        client.get("/n")
        assert backend.pools["main"].closed is False

    assert backend.pools["main"].closed is True
    assert len(registry) == 0


class TestHandleSet:
    def test_mapping(self, registry: PoolRegistry) -> None:
        handles = HandleSet(CONFIGS, registry=registry)

        assert len(handles) == 2
        assert list(handles) == ["main", "audit"]
        assert handles.created() == []
        assert handles["main"] is handles["main"]
        assert handles.created() == [handles["main"]]
        with pytest.raises(KeyError):
            handles["missing"]

    def test_configs_default_to_settings(self, registry: PoolRegistry) -> None:
        with patch("lazydb.web.settings") as mock_settings:
            mock_settings.DATABASES = [{"name": "from_env"}]
            handles = HandleSet(registry=registry)
        assert list(handles) == ["from_env"]

    @pytest.mark.asyncio
    async def test_release_all(self, backend: FakeBackend, registry: PoolRegistry) -> None:
        handles = HandleSet(CONFIGS, registry=registry)
        await handles["main"].query("SELECT 1")
        await handles["audit"].query("SELECT 1")

        await handles.release_all()

        assert handles.created() == []
        assert [p.released for p in backend.pools.values()] == [1, 1]


def test_lifespan_uses_given_empty_registry(backend: FakeBackend) -> None:
    empty = backend.registry()
    app = FastAPI(lifespan=db_lifespan(empty))

    with patch("lazydb.web.get_registry") as mock_default:
        with TestClient(app):
            pass

    mock_default.assert_not_called()
