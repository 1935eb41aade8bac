"""
SQL batch expansion and statement execution.

Exports: plan_batches, parse_pattern, run_sql, summarize_params.
"""

from lazydb.engines.sql.executor import (
    MODE_EXECUTE,
    MODE_QUERY,
    normalize_params,
    run_sql,
    summarize_params,
)
from lazydb.engines.sql.pattern import BatchPlan, Chunk, Pattern, parse_pattern, plan_batches

__all__ = [
    "MODE_EXECUTE",
    "MODE_QUERY",
    "BatchPlan",
    "Chunk",
    "Pattern",
    "normalize_params",
    "parse_pattern",
    "plan_batches",
    "run_sql",
    "summarize_params",
]
