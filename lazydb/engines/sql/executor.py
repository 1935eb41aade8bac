"""
Run one logical query/execute call against a leased connection.

Supports:
- Plain statement: returns the rows (list[dict]) or an ExecResult for DML
- Batch statement (a list/tuple parameter): expanded via the pattern module;
  returns one result, or a list of per-chunk results when a row cap applies

``fields=True`` returns the whole DriverResponse (rows + column names) per
execution instead of just the rows.
"""

import logging
import re
from collections.abc import Sequence
from typing import Any

from lazydb.core.pool import DriverResponse, PooledConnection
from lazydb.engines.sql.pattern import find_batch_index, is_sequence, plan_batches

_log = logging.getLogger(__name__)

MODE_QUERY = "query"
MODE_EXECUTE = "execute"

_SUMMARY_MAX_ITEMS = 50
_SUMMARY_MAX_NESTED = 5


def normalize_params(params: Any) -> list[Any]:
    """``None`` -> []; a lone scalar -> [scalar]; sequences are copied."""
    if params is None:
        return []
    if not is_sequence(params):
        return [params]
    return list(params)


def summarize_params(params: Sequence[Any]) -> list[Any]:
    """Size-capped copy of *params* for error messages and logs."""
    summary: list[Any] = []
    for p in params[:_SUMMARY_MAX_ITEMS]:
        if is_sequence(p) and len(p) > _SUMMARY_MAX_NESTED:
            p = list(p[:_SUMMARY_MAX_NESTED]) + [
                f"... {len(p) - _SUMMARY_MAX_NESTED} items ..."
            ]
        summary.append(p)
    if len(params) > _SUMMARY_MAX_ITEMS:
        summary.append(f"... {len(params) - _SUMMARY_MAX_ITEMS} items ...")
    return summary


def _shape(resp: DriverResponse, fields: bool) -> Any:
    return resp if fields else resp.rows


async def run_sql(
    conn: PooledConnection,
    sql: str,
    params: Sequence[Any],
    *,
    mode: str = MODE_QUERY,
    fields: bool = False,
    regexp: str | re.Pattern[str] | None = None,
    max_row: int | None = None,
) -> Any:
    """
    Run *sql* with already-normalized *params* on *conn*.

    mode: "query" (non-prepared) or "execute" (prepared where the driver can).
    """
    if find_batch_index(params) == -1:
        resp = await conn.run(sql, params, prepare=mode == MODE_EXECUTE)
        return _shape(resp, fields)

    plan = plan_batches(sql, params, regexp=regexp, max_row=max_row)
    if not plan.capped:
        only = plan.chunks[0]
        resp = await conn.run(only.sql, only.params, prepare=mode == MODE_EXECUTE)
        return _shape(resp, fields)

    results: list[Any] = []
    for i, chunk in enumerate(plan.chunks):
        chunk_mode = MODE_QUERY if chunk.force_query else mode
        _log.debug(
            "Batch chunk %d/%d: %d groups, mode=%s",
            i + 1,
            len(plan.chunks),
            chunk.groups,
            chunk_mode,
        )
        resp = await conn.run(chunk.sql, chunk.params, prepare=chunk_mode == MODE_EXECUTE)
        results.append(_shape(resp, fields))
    return results
