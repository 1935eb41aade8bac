"""
Engines: SQL batch expansion and statement execution.
"""

from lazydb.engines.sql import plan_batches, run_sql, summarize_params

__all__ = [
    "plan_batches",
    "run_sql",
    "summarize_params",
]
