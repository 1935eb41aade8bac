"""
Driver layer: open connections and run single statements.

Uses pymysql (MySQL/MariaDB) or psycopg (PostgreSQL) based on ``driver``.
Connections are opened in autocommit mode; transactions are explicit
BEGIN/COMMIT/ROLLBACK statements so the handle decides when one is open.

SQL handed to this layer uses ``?`` placeholders; both drivers speak the
``format`` paramstyle, so statements are rewritten before execution.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple

import psycopg
import pymysql

from lazydb.core.config import settings

_log = logging.getLogger(__name__)

# Consumed by the pool; never forwarded to the driver.
POOL_KEYS = ("driver", "pool_size", "pool_max_age")


class DriverEnum(str, Enum):
    MYSQL = "mysql"
    POSTGRES = "postgres"


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a statement that returns no rows (INSERT/UPDATE/DELETE...)."""

    affected_rows: int
    last_insert_id: int | None = None


class DriverResponse(NamedTuple):
    rows: list[dict[str, Any]] | ExecResult
    fields: list[str]


def resolve_driver(driver: DriverEnum | str | None) -> DriverEnum:
    d = driver or settings.DEFAULT_DRIVER
    if isinstance(d, DriverEnum):
        return d
    try:
        return DriverEnum(str(d).lower())
    except ValueError as e:
        raise ValueError(f"Unsupported driver: {d}") from e


def connect(options: Mapping[str, Any]) -> Any:
    """
    Open a connection from pool options.

    - driver: "mysql" (default from settings) or "postgres".
    - database: schema name; mapped to ``dbname`` for psycopg.
    - username: accepted as an alias of ``user``.
    - everything else is forwarded verbatim to ``pymysql.connect`` /
      ``psycopg.connect``.
    """
    opts = dict(options)
    driver = resolve_driver(opts.get("driver"))
    for key in POOL_KEYS:
        opts.pop(key, None)
    if "username" in opts:
        opts.setdefault("user", opts.pop("username"))
    opts.setdefault("port", settings.DEFAULT_PORTS.get(driver.value))
    opts.setdefault("connect_timeout", settings.CONNECT_TIMEOUT)
    opts["autocommit"] = True

    _log.debug(
        "Opening %s connection to %s:%s", driver.value, opts.get("host"), opts.get("port")
    )
    if driver == DriverEnum.MYSQL:
        return pymysql.connect(**opts)
    if "database" in opts:
        opts.setdefault("dbname", opts.pop("database"))
    return psycopg.connect(**opts)


def _quote_end(sql: str, start: int) -> int:
    """Index just past the quoted literal opening at *start*."""
    quote = sql[start]
    length = len(sql)
    i = start + 1
    while i < length:
        c = sql[i]
        if c == "\\" and i + 1 < length:
            i += 2
            continue
        if c == quote:
            if i + 1 < length and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return length


def to_format_paramstyle(sql: str) -> str:
    """Rewrite ``?`` placeholders to ``%s`` and escape literal ``%``.

    Quoted literals (``'...'``, ``"..."``, backticks, ``$$...$$``) and
    comments keep their ``?`` untouched.
    """
    out: list[str] = []
    i = 0
    length = len(sql)

    while i < length:
        ch = sql[i]

        if ch in ("'", '"', "`"):
            end = _quote_end(sql, i)
        elif sql.startswith("$$", i):
            end = sql.find("$$", i + 2)
            end = length if end == -1 else end + 2
        elif sql.startswith("--", i):
            end = sql.find("\n", i)
            end = length if end == -1 else end + 1
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            end = length if end == -1 else end + 2
        else:
            if ch == "?":
                out.append("%s")
            elif ch == "%":
                out.append("%%")
            else:
                out.append(ch)
            i += 1
            continue

        out.append(sql[i:end].replace("%", "%%"))
        i = end

    return "".join(out)


def execute(
    conn: Any,
    sql: str,
    params: Sequence[Any] | None = None,
    *,
    driver: DriverEnum | None = None,
    prepare: bool = False,
) -> Any:
    """
    Execute one ``?``-style statement and return the cursor.

    prepare: ask psycopg for a server-side prepared statement. pymysql has no
    server-side prepare, so the flag only matters for PostgreSQL.
    """
    query = to_format_paramstyle(sql)
    args = list(params) if params is not None else []
    cur = conn.cursor()
    try:
        if driver == DriverEnum.POSTGRES:
            cur.execute(query, args, prepare=prepare)
        else:
            cur.execute(query, args)
    except Exception:
        cur.close()
        raise
    return cur


def cursor_to_dicts(cursor: Any) -> list[dict[str, Any]]:
    """Convert cursor result to list of dicts. Works for both psycopg and pymysql."""
    desc = cursor.description
    if not desc:
        return []
    names = [d[0] for d in desc]
    return [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]


def fetch_response(cursor: Any) -> DriverResponse:
    """Rows plus column names for SELECT-like statements, else an ExecResult."""
    if cursor.description:
        fields = [d[0] for d in cursor.description]
        return DriverResponse(cursor_to_dicts(cursor), fields)
    rowcount = cursor.rowcount if cursor.rowcount is not None else 0
    last_id = getattr(cursor, "lastrowid", None) or None
    return DriverResponse(ExecResult(max(rowcount, 0), last_id), [])


def run_statement(
    conn: Any,
    sql: str,
    params: Sequence[Any] | None = None,
    *,
    driver: DriverEnum | None = None,
    prepare: bool = False,
) -> DriverResponse:
    """Execute, fetch and close the cursor in one blocking call."""
    cur = execute(conn, sql, params, driver=driver, prepare=prepare)
    try:
        return fetch_response(cur)
    finally:
        cur.close()


def _control(conn: Any, statement: str) -> None:
    cur = conn.cursor()
    try:
        cur.execute(statement)
    finally:
        cur.close()


def begin(conn: Any) -> None:
    _control(conn, "BEGIN")


def commit(conn: Any) -> None:
    _control(conn, "COMMIT")


def rollback(conn: Any) -> None:
    _control(conn, "ROLLBACK")
