"""SQL dialect registry for the page store.

Every backend quirk the page store has to know about lives in one
:class:`Dialect` descriptor: which DB-API module talks to it, what its URLs
look like, how to ping it, how to cap a result set, how to declare an
auto-incrementing key and which placeholder style its driver expects.

Manifesto:
    Backend differences belong in a table, not in ``if`` chains scattered
    through the store.

    - **One entry per backend:** adding a dialect means adding one row
    - **No driver imports:** descriptors name modules, connectors import
      them lazily
    - **Auto-detection:** a live connection or a URL is enough to find
      the right dialect

Architecture::

    ┌───────────────────────────────────────────────────────────────────┐
    │                          _DIALECTS                                 │
    ├────────────────┬──────────────────┬──────────────┬────────────────┤
    │ name           │ driver           │ url_prefix   │ limiter        │
    ├────────────────┼──────────────────┼──────────────┼────────────────┤
    │ mysql          │ mysql.connector  │ mysql:       │ LIMIT          │
    │ mssql          │ pymssql          │ mssql:       │ TOP            │
    │ postgresql     │ psycopg2         │ postgresql:  │ LIMIT          │
    │ oracle         │ oracledb         │ oracle:      │ ROWNUM         │
    │ db2            │ ibm_db_dbi       │ db2:         │ FETCH FIRST    │
    │ sybase         │ sybpydb          │ sybase:      │ TOP            │
    │ sqlite         │ sqlite3          │ sqlite:      │ LIMIT          │
    │ derby_local    │ jaydebeapi       │ derby:       │ FETCH FIRST    │
    │ derby_network  │ jaydebeapi       │ derby://     │ FETCH FIRST    │
    └────────────────┴──────────────────┴──────────────┴────────────────┘

Examples:
    >>> from sqlpages.dialect import parse_dialect, dialect_for_url
    >>> d = parse_dialect("PostgreSQL")
    >>> d.placeholders(3)
    '%s, %s, %s'
    >>> dialect_for_url("derby://db.example.com:1527/wiki").name
    'derby_network'

Tags:
    dialect, sql, registry, portability, multi-backend, sqlpages

Doc-Types:
    - API Reference
    - Database Portability Guide
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlpages import drivers
from sqlpages.errors import UnknownDialectError
from sqlpages.limits import Limiter, append_limit, fetch_first, select_top, wrap_rownum

Connector = Callable[..., Any]


@dataclass(frozen=True)
class Dialect:
    """Static description of one SQL backend.

    Attributes:
        name: Registry key (``"postgresql"``)
        driver: DB-API module path (``"psycopg2"``)
        url_prefix: Prefix every URL for this backend starts with
        url_template: Example URL, quoted in configuration errors
        validation_query: Cheap statement used to ping a connection
        paramstyle: ``"qmark"``, ``"format"`` or ``"numeric"``
        limiter: Row-limiting rewrite from :mod:`sqlpages.limits`
        id_column: DDL for the surrogate key column
        text_type: Column type for page bodies
        bigint_type: Column type for epoch-millisecond timestamps
        connector: Function from :mod:`sqlpages.drivers`
        on_connect: Statements run on every acquired connection
    """

    name: str
    driver: str
    url_prefix: str
    url_template: str
    validation_query: str
    paramstyle: str
    limiter: Limiter
    id_column: str
    text_type: str
    bigint_type: str
    connector: Connector
    on_connect: tuple[str, ...] = ()

    # -- Placeholder generation --------------------------------------------

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index)."""
        if self.paramstyle == "numeric":
            return f":{index + 1}"
        if self.paramstyle == "format":
            return "%s"
        return "?"

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholder list."""
        return ", ".join(self.placeholder(i) for i in range(count))

    # -- Matching ----------------------------------------------------------

    def limit(self, sql: str, max_rows: int) -> str:
        """Rewrite ``sql`` to return at most ``max_rows`` rows."""
        return self.limiter(sql, max_rows)

    def matches_url(self, url: str) -> bool:
        return url.lower().startswith(self.url_prefix)

    def matches_driver(self, module_name: str) -> bool:
        module_name = module_name.lower()
        return module_name == self.driver or module_name.startswith(self.driver + ".")

    def connect(self, url: str, user: str | None = None, password: str | None = None) -> Any:
        """Open a raw DB-API connection through this dialect's driver."""
        return self.connector(url, user, password)


# =========================================================================
# Registry
# =========================================================================

_DIALECTS: dict[str, Dialect] = {}

_ALIASES = {
    "postgres": "postgresql",
    "derby": "derby_local",
}


def register_dialect(dialect: Dialect) -> None:
    """Register (or replace) a dialect under its name.

    Registration order matters: when two dialects share a driver module,
    the one registered first wins :func:`parse_dialect` and
    :func:`dialect_for_connection`.
    """
    _DIALECTS[dialect.name.lower()] = dialect


for _dialect in (
    Dialect(
        name="mysql",
        driver="mysql.connector",
        url_prefix="mysql:",
        url_template="mysql://hostname:3306/wiki",
        validation_query="SELECT 1",
        paramstyle="format",
        limiter=append_limit,
        id_column="INTEGER PRIMARY KEY AUTO_INCREMENT",
        text_type="LONGTEXT",
        bigint_type="BIGINT",
        connector=drivers.connect_mysql,
    ),
    Dialect(
        name="mssql",
        driver="pymssql",
        url_prefix="mssql:",
        url_template="mssql://hostname:1433/wiki",
        validation_query="SELECT 1",
        paramstyle="format",
        limiter=select_top,
        id_column="INT IDENTITY(1,1) PRIMARY KEY",
        text_type="NVARCHAR(MAX)",
        bigint_type="BIGINT",
        connector=drivers.connect_mssql,
    ),
    Dialect(
        name="postgresql",
        driver="psycopg2",
        url_prefix="postgresql:",
        url_template="postgresql://hostname:5432/wiki",
        validation_query="SELECT 1",
        paramstyle="format",
        limiter=append_limit,
        id_column="SERIAL PRIMARY KEY",
        text_type="TEXT",
        bigint_type="BIGINT",
        connector=drivers.connect_postgresql,
    ),
    Dialect(
        name="oracle",
        driver="oracledb",
        url_prefix="oracle:",
        url_template="oracle://hostname:1521/service_name",
        validation_query="SELECT 1 FROM DUAL",
        paramstyle="numeric",
        limiter=wrap_rownum,
        id_column="NUMBER GENERATED ALWAYS AS IDENTITY PRIMARY KEY",
        text_type="CLOB",
        bigint_type="NUMBER(19)",
        connector=drivers.connect_oracle,
    ),
    Dialect(
        name="db2",
        driver="ibm_db_dbi",
        url_prefix="db2:",
        url_template="db2://hostname:50000/wiki",
        validation_query="SELECT 1 FROM SYSIBM.SYSDUMMY1",
        paramstyle="qmark",
        limiter=fetch_first,
        id_column=(
            "INTEGER NOT NULL GENERATED ALWAYS AS IDENTITY "
            "(START WITH 1, INCREMENT BY 1) PRIMARY KEY"
        ),
        text_type="CLOB",
        bigint_type="BIGINT",
        connector=drivers.connect_db2,
    ),
    Dialect(
        name="sybase",
        driver="sybpydb",
        url_prefix="sybase:",
        url_template="sybase://servername/wiki",
        validation_query="SELECT 1",
        paramstyle="qmark",
        limiter=select_top,
        id_column="NUMERIC(10,0) IDENTITY PRIMARY KEY",
        text_type="TEXT",
        bigint_type="BIGINT",
        connector=drivers.connect_sybase,
    ),
    Dialect(
        name="sqlite",
        driver="sqlite3",
        url_prefix="sqlite:",
        url_template="sqlite:///path/to/wiki.db",
        validation_query="SELECT 1",
        paramstyle="qmark",
        limiter=append_limit,
        id_column="INTEGER PRIMARY KEY AUTOINCREMENT",
        text_type="CLOB",
        bigint_type="BIGINT",
        connector=drivers.connect_sqlite,
        on_connect=("PRAGMA case_sensitive_like = ON",),
    ),
    Dialect(
        name="derby_local",
        driver="jaydebeapi",
        url_prefix="derby:",
        url_template="derby:wiki;create=true",
        validation_query="VALUES 1",
        paramstyle="qmark",
        limiter=fetch_first,
        id_column=(
            "INTEGER PRIMARY KEY GENERATED ALWAYS AS IDENTITY "
            "(START WITH 1, INCREMENT BY 1)"
        ),
        text_type="CLOB",
        bigint_type="BIGINT",
        connector=drivers.connect_derby,
    ),
    Dialect(
        name="derby_network",
        driver="jaydebeapi",
        url_prefix="derby://",
        url_template="derby://hostname:1527/wiki;create=true",
        validation_query="VALUES 1",
        paramstyle="qmark",
        limiter=fetch_first,
        id_column=(
            "INTEGER PRIMARY KEY GENERATED ALWAYS AS IDENTITY "
            "(START WITH 1, INCREMENT BY 1)"
        ),
        text_type="CLOB",
        bigint_type="BIGINT",
        connector=drivers.connect_derby,
    ),
):
    register_dialect(_dialect)


def list_dialects() -> list[Dialect]:
    """Registered dialects in registration order."""
    return list(_DIALECTS.values())


def parse_dialect(value: str) -> Dialect:
    """Find a dialect by name or driver module (case-insensitive).

    Raises:
        UnknownDialectError: If nothing in the registry matches.

    Example:
        >>> parse_dialect("psycopg2").name
        'postgresql'
    """
    key = (value or "").strip().lower()
    key = _ALIASES.get(key, key)
    if key in _DIALECTS:
        return _DIALECTS[key]
    for dialect in _DIALECTS.values():
        if dialect.driver == key:
            return dialect
    raise UnknownDialectError(
        value,
        f"Unknown dialect '{value}'. Supported: {', '.join(_DIALECTS)}",
    )


def normalize_url(url: str) -> str:
    """Strip a JDBC ``jdbc:`` prefix and fold ``postgres:`` into ``postgresql:``."""
    url = url.strip()
    if url.lower().startswith("jdbc:"):
        url = url[len("jdbc:"):]
    if url.lower().startswith("postgres:"):
        url = "postgresql:" + url[len("postgres:"):]
    return url


def dialect_for_url(url: str) -> Dialect | None:
    """Dialect with the longest URL prefix matching ``url``, if any."""
    url = normalize_url(url)
    matches = [d for d in _DIALECTS.values() if d.matches_url(url)]
    if not matches:
        return None
    return max(matches, key=lambda d: len(d.url_prefix))


def _driver_module(conn: Any) -> str:
    # Pool proxies keep the DB-API connection on .dbapi_connection
    raw = getattr(conn, "dbapi_connection", None) or conn
    return type(raw).__module__ or ""


def dialect_for_connection(conn: Any) -> Dialect:
    """Derive the dialect from a live connection's driver module.

    Raises:
        UnknownDialectError: If the driver module is not registered.
    """
    module_name = _driver_module(conn)
    for dialect in _DIALECTS.values():
        if dialect.matches_driver(module_name):
            return dialect
    raise UnknownDialectError(
        module_name,
        f"Could not determine a SQL dialect for driver module '{module_name}'",
    )


__all__ = [
    "Connector",
    "Dialect",
    "register_dialect",
    "list_dialects",
    "parse_dialect",
    "normalize_url",
    "dialect_for_url",
    "dialect_for_connection",
]
