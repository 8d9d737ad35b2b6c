"""Row-limiting rewrites for SELECT statements.

Each backend caps result sets differently. The strategies here take a
statement and a row count and return the statement rewritten for one
family of backends:

==================  =======================================  ==========================
Strategy            Rewrite                                  Dialects
==================  =======================================  ==========================
``append_limit``    ``... LIMIT n``                          mysql, postgresql, sqlite
``select_top``      ``SELECT [DISTINCT] TOP n ...``          mssql, sybase
``wrap_rownum``     ``SELECT * FROM (...) WHERE ROWNUM<=n``  oracle
``fetch_first``     ``... FETCH FIRST n ROWS ONLY``          db2, derby
==================  =======================================  ==========================

Every strategy first strips surrounding whitespace and a single trailing
``;``, and leaves a statement alone when it already carries its own limit,
so applying a limiter twice gives the same result as applying it once.
Blank statements are returned unchanged.

Examples:
    >>> append_limit("select * from jspwiki;", 10)
    'select * from jspwiki LIMIT 10'
    >>> select_top("SELECT DISTINCT wikiname FROM jspwiki", 5)
    'SELECT DISTINCT TOP 5 wikiname FROM jspwiki'

Tags:
    sql, dialect, limit, pagination, sqlpages
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlpages.dialect import Dialect

Limiter = Callable[[str, int], str]

_LIMIT_RE = re.compile(r"\blimit\b", re.IGNORECASE)
_TOP_RE = re.compile(r"\btop\b", re.IGNORECASE)
_ROWNUM_RE = re.compile(r"\brownum\b", re.IGNORECASE)
_FETCH_RE = re.compile(r"\bfetch\b", re.IGNORECASE)
_SELECT_HEAD_RE = re.compile(r"^select(\s+distinct)?\s+", re.IGNORECASE)


def _normalize(sql: str) -> str:
    sql = sql.strip()
    if sql.endswith(";"):
        sql = sql[:-1].rstrip()
    return sql


def _is_blank(sql: str | None) -> bool:
    return sql is None or not sql.strip()


def append_limit(sql: str, max_rows: int) -> str:
    """Append ``LIMIT n``."""
    if _is_blank(sql):
        return sql
    sql = _normalize(sql)
    if _LIMIT_RE.search(sql):
        return sql
    return f"{sql} LIMIT {max_rows}"


def select_top(sql: str, max_rows: int) -> str:
    """Insert ``TOP n`` after the leading ``SELECT`` (or ``SELECT DISTINCT``)."""
    if _is_blank(sql):
        return sql
    sql = _normalize(sql)
    if _TOP_RE.search(sql):
        return sql
    match = _SELECT_HEAD_RE.match(sql)
    if match is None:
        return sql
    head = match.group(0).rstrip()
    return f"{head} TOP {max_rows} {sql[match.end():]}"


def wrap_rownum(sql: str, max_rows: int) -> str:
    """Wrap the statement in an outer ``ROWNUM`` filter."""
    if _is_blank(sql):
        return sql
    sql = _normalize(sql)
    if _ROWNUM_RE.search(sql):
        return sql
    return f"SELECT * FROM ({sql}) WHERE ROWNUM <= {max_rows}"


def fetch_first(sql: str, max_rows: int) -> str:
    """Append ``FETCH FIRST n ROWS ONLY``."""
    if _is_blank(sql):
        return sql
    sql = _normalize(sql)
    if _FETCH_RE.search(sql):
        return sql
    return f"{sql} FETCH FIRST {max_rows} ROWS ONLY"


def limit_rows(dialect: Dialect, sql: str, max_rows: int) -> str:
    """Rewrite ``sql`` so it returns at most ``max_rows`` rows on ``dialect``."""
    return dialect.limiter(sql, max_rows)


__all__ = [
    "Limiter",
    "append_limit",
    "select_top",
    "wrap_rownum",
    "fetch_first",
    "limit_rows",
]
