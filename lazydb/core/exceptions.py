"""
Error taxonomy for handles, pools and batch expansion.

Every error raised while a statement runs carries the statement and a
size-bounded summary of its parameters, rendered into ``str(exc)`` so log
lines stay diagnostic without dumping whole batches.
"""

from __future__ import annotations

import json
from typing import Any


class DbError(Exception):
    """Base class; optionally carries the failing SQL and a parameter summary."""

    def __init__(
        self,
        message: str = "",
        *,
        sql: str | None = None,
        params: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.sql = sql
        self.params = params

    def with_context(self, sql: str, params: Any) -> DbError:
        """Attach statement context unless already present; returns self."""
        if self.sql is None:
            self.sql = sql
            self.params = params
        return self

    def __str__(self) -> str:
        if self.sql is None:
            return self.message
        summary = json.dumps(self.params, default=str, ensure_ascii=False)
        return f"{self.message}  sql:{self.sql}  params:{summary}"


class ConfigurationError(DbError, ValueError):
    """Missing pool name, late lazy-init registration, or must_in_trans violation."""

    pass


class ConcurrencyError(DbError, RuntimeError):
    """A statement is already in flight on the handle."""

    pass


class PatternError(DbError, ValueError):
    """Batch template absent or malformed."""

    pass


class ParameterCountMismatch(DbError, ValueError):
    """Batch data does not divide into whole placeholder groups."""

    pass


class TooManyRowsError(DbError):
    """A one-row query returned more than one row."""

    pass


class DriverError(DbError):
    """Failure from the underlying driver; the original is ``__cause__``."""

    pass
