"""
FastAPI glue: close pools at shutdown and hand each request its named handles.

    app = FastAPI(lifespan=db_lifespan())

    @app.get("/orders/{order_id}")
    async def read_order(order_id: int, db: HandlesDep) -> dict:
        return await db["main"].query_one("SELECT * FROM orders WHERE id = ?", order_id)

Handles are created on first access and released (rolled back first) once
the response has been sent.
"""

import logging
from collections.abc import (
    AsyncGenerator,
    AsyncIterator,
    Callable,
    Iterator,
    Mapping,
    Sequence,
)
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI

from lazydb.core.config import settings
from lazydb.core.pool import PoolRegistry, get_registry
from lazydb.handle import DbHandle

_log = logging.getLogger(__name__)


class HandleSet(Mapping[str, DbHandle]):
    """Per-request handles keyed by database name, built lazily from configs."""

    def __init__(
        self,
        configs: Sequence[Mapping[str, Any]] | None = None,
        *,
        registry: PoolRegistry | None = None,
    ) -> None:
        configs = settings.DATABASES if configs is None else configs
        self._configs = {str(c.get("name", "")): c for c in configs}
        self._registry = registry
        self._handles: dict[str, DbHandle] = {}

    def __getitem__(self, name: str) -> DbHandle:
        handle = self._handles.get(name)
        if handle is None:
            handle = DbHandle(self._configs[name], registry=self._registry)
            self._handles[name] = handle
        return handle

    def __iter__(self) -> Iterator[str]:
        return iter(self._configs)

    def __len__(self) -> int:
        return len(self._configs)

    def created(self) -> list[DbHandle]:
        return list(self._handles.values())

    async def release_all(self) -> None:
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            try:
                await handle.release()
            except Exception as e:
                _log.warning("Releasing handle %s failed: %s", handle.name, e)


def make_handles_dependency(
    configs: Sequence[Mapping[str, Any]] | None = None,
    *,
    registry: PoolRegistry | None = None,
) -> Callable[[], AsyncGenerator[HandleSet, None]]:
    async def get_handles() -> AsyncGenerator[HandleSet, None]:
        handles = HandleSet(configs, registry=registry)
        try:
            yield handles
        finally:
            await handles.release_all()

    return get_handles


get_handles = make_handles_dependency()

HandlesDep = Annotated[HandleSet, Depends(get_handles)]


def db_lifespan(
    registry: PoolRegistry | None = None,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Lifespan that closes every pool of *registry* when the app shuts down."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await (registry if registry is not None else get_registry()).close_all()
            _log.info("All connection pools closed")

    return lifespan
