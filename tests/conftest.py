import pytest

from lazydb.core.pool import PoolRegistry
from tests.utils.fakes import FakeBackend


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def registry(backend: FakeBackend) -> PoolRegistry:
    return backend.registry()
