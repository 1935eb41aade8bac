"""
Batch template expansion for statements with a variable-length repeated clause.

A statement carries one template span, by default ``{fragment}separator...``::

    SELECT * FROM t WHERE id = ? OR {(id > ? AND a < ?)} OR ...
    INSERT INTO t (a, b) VALUES {(?, ?)}, ...

The first list/tuple parameter holds the batch data, either flat
(``[1, 2, 3, 4]``, grouped by the fragment's placeholder count) or nested
(``[[1, 2], [3, 4]]``, one inner sequence per group). The span is replaced by
N copies of the fragment joined by the separator and the data is spliced in
place of the batch parameter.

Row cap: INSERT/REPLACE statements default to 1000 groups per execution,
everything else runs as a single statement unless ``max_row`` is given
(``0`` also means a single statement). When groups exceed the cap the data is
run as full chunks followed by one remainder chunk sized to what is left; a
remainder above ``QUERY_MODE_THRESHOLD`` groups is flagged to run
non-prepared so odd-sized statements don't pile up as prepared statements.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from lazydb.core.exceptions import ParameterCountMismatch, PatternError

DEFAULT_PATTERN = re.compile(r"\{(.*)\}(.*)\.\.\.")
DEFAULT_INSERT_MAX_ROW = 1000
QUERY_MODE_THRESHOLD = 10

_INSERT_LIKE = re.compile(r"^\s*(INSERT|REPLACE)", re.IGNORECASE)


def is_sequence(value: Any) -> bool:
    """Batch data is a list or tuple; strings and bytes are scalars."""
    return isinstance(value, (list, tuple))


def is_insert_like(sql: str) -> bool:
    return _INSERT_LIKE.match(sql) is not None


@dataclass(frozen=True)
class Pattern:
    span: str
    fragment: str
    separator: str
    placeholders: int

    def render(self, sql: str, groups: int) -> str:
        """Replace the template span with *groups* copies of the fragment."""
        return sql.replace(self.span, self.separator.join([self.fragment] * groups), 1)


@dataclass(frozen=True)
class Chunk:
    sql: str
    params: list[Any]
    groups: int
    force_query: bool = False


@dataclass(frozen=True)
class BatchPlan:
    chunks: list[Chunk]
    capped: bool

    @property
    def groups(self) -> int:
        return sum(c.groups for c in self.chunks)


def parse_pattern(sql: str, regexp: str | re.Pattern[str] | None = None) -> Pattern:
    """Locate the template span; *regexp* must capture (fragment, separator)."""
    rx = DEFAULT_PATTERN if regexp is None else re.compile(regexp)
    m = rx.search(sql)
    if m is None or len(m.groups()) != 2:
        raise PatternError("Batch template with fragment and separator not found")
    fragment, separator = m.group(1), m.group(2)
    if fragment is None or separator is None:
        raise PatternError("Batch template with fragment and separator not found")
    placeholders = fragment.count("?")
    if placeholders == 0:
        raise PatternError(f"Batch template fragment has no placeholder: {fragment!r}")
    return Pattern(
        span=m.group(0),
        fragment=fragment,
        separator=separator,
        placeholders=placeholders,
    )


def find_batch_index(params: Sequence[Any]) -> int:
    """Index of the first sequence-valued parameter, or -1."""
    for i, p in enumerate(params):
        if is_sequence(p):
            return i
    return -1


def _split_groups(data: Sequence[Any], placeholders: int) -> list[list[Any]]:
    if len(data) > 0 and is_sequence(data[0]):
        groups = [list(g) if is_sequence(g) else [g] for g in data]
        for g in groups:
            if len(g) != placeholders:
                raise ParameterCountMismatch(
                    f"Batch group has {len(g)} values, template expects {placeholders}"
                )
        return groups
    if len(data) == 0 or len(data) % placeholders != 0:
        raise ParameterCountMismatch(
            f"{len(data)} batch values do not fill groups of {placeholders}"
        )
    return [list(data[i : i + placeholders]) for i in range(0, len(data), placeholders)]


def plan_batches(
    sql: str,
    params: Sequence[Any],
    *,
    regexp: str | re.Pattern[str] | None = None,
    max_row: int | None = None,
) -> BatchPlan:
    """Expand *sql* for the batch parameter of *params* into capped chunks."""
    index = find_batch_index(params)
    if index == -1:
        raise ParameterCountMismatch("No batch parameter (list or tuple) given")
    pattern = parse_pattern(sql, regexp)
    groups = _split_groups(params[index], pattern.placeholders)
    left = list(params[:index])
    right = list(params[index + 1 :])
    total = len(groups)

    def chunk(start: int, count: int, *, force_query: bool = False) -> Chunk:
        data = [v for g in groups[start : start + count] for v in g]
        return Chunk(
            sql=pattern.render(sql, count),
            params=left + data + right,
            groups=count,
            force_query=force_query,
        )

    if max_row is None and not is_insert_like(sql):
        return BatchPlan(chunks=[chunk(0, total)], capped=False)

    cap = DEFAULT_INSERT_MAX_ROW if max_row is None else max_row
    if cap <= 0:
        cap = total
    full, rest = divmod(total, cap)
    chunks = [chunk(i * cap, cap) for i in range(full)]
    if rest > 0:
        chunks.append(chunk(full * cap, rest, force_query=rest > QUERY_MODE_THRESHOLD))
    return BatchPlan(chunks=chunks, capped=True)
