"""
Model loader: find DataModel classes in a package and build them by name.

Each DataModel subclass defined in a module under the package is registered
as ``"<module path relative to package>.<ClassName>"``, e.g.
``"billing.invoice.InvoiceModel"``. Instances get one attribute per
database handle, named after the database.
"""

import importlib
import logging
import pkgutil
import threading
from collections.abc import Mapping
from types import ModuleType

from lazydb.handle import DbHandle

_log = logging.getLogger(__name__)


class DataModel:
    """Base class for per-request model objects."""

    def __init__(self, handles: Mapping[str, DbHandle]) -> None:
        for name in handles:
            setattr(self, name, handles[name])


class ModelLoader:
    def __init__(self, package: str | ModuleType) -> None:
        self._package = package
        self._models: dict[str, type[DataModel]] | None = None
        self._lock = threading.Lock()

    def load(self) -> dict[str, type[DataModel]]:
        """Scan the package once and return name -> class."""
        if self._models is None:
            with self._lock:
                if self._models is None:
                    self._models = self._scan()
        return self._models

    def names(self) -> list[str]:
        return sorted(self.load())

    def create(self, name: str, handles: Mapping[str, DbHandle]) -> DataModel:
        cls = self.load().get(name)
        if cls is None:
            raise KeyError(f"Unknown model: {name}")
        return cls(handles)

    def _scan(self) -> dict[str, type[DataModel]]:
        pkg = (
            importlib.import_module(self._package)
            if isinstance(self._package, str)
            else self._package
        )
        prefix = pkg.__name__ + "."
        models: dict[str, type[DataModel]] = {}
        for info in pkgutil.walk_packages(pkg.__path__, prefix):
            module = importlib.import_module(info.name)
            rel = info.name[len(prefix) :]
            for obj in vars(module).values():
                if (
                    isinstance(obj, type)
                    and issubclass(obj, DataModel)
                    and obj is not DataModel
                    and obj.__module__ == module.__name__
                ):
                    models[f"{rel}.{obj.__name__}"] = obj
        _log.info("Loaded %d models from %s", len(models), pkg.__name__)
        return models
