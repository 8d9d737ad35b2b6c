"""DB-API connectors, one per supported driver.

Each connector turns a connection URL plus optional credentials into a live
DB-API 2.0 connection. URLs follow the SQLAlchemy form
(``postgresql://user:pw@host:5432/wiki``) and are parsed with
:func:`sqlalchemy.engine.make_url`; explicit ``user`` / ``password`` values
win over credentials embedded in the URL. Derby is the exception: its URLs
are JDBC URLs without the ``jdbc:`` prefix and are handed to the JVM as-is.

Drivers are import-guarded: a missing driver raises
:class:`~sqlpages.errors.ConfigError` naming the pip extra at connect time,
never at import time.

Install a driver::

    pip install sqlpages[postgresql]   # psycopg2
    pip install sqlpages[mysql]        # mysql-connector-python
    pip install sqlpages[oracle]       # oracledb
    pip install sqlpages[db2]          # ibm-db
    pip install sqlpages[mssql]        # pymssql
    pip install sqlpages[derby]        # JayDeBeApi
"""

from __future__ import annotations

import re
from typing import Any

from sqlalchemy.engine import URL, make_url

from sqlpages.errors import ConfigError, DatabaseConnectionError

# Sybase database names are interpolated into ``USE``.
_DATABASE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")


def _parse(url: str) -> URL:
    try:
        return make_url(url)
    except Exception as e:
        raise ConfigError(f"Could not parse connection URL: {e}", cause=e) from e


def _credentials(parsed: URL, user: str | None, password: str | None) -> tuple[str | None, str | None]:
    return (user if user is not None else parsed.username,
            password if password is not None else parsed.password)


def connect_sqlite(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect with the built-in ``sqlite3`` module."""
    import sqlite3

    path = _parse(url).database or ":memory:"
    try:
        return sqlite3.connect(path, timeout=5.0, check_same_thread=False)
    except sqlite3.Error as e:
        raise DatabaseConnectionError(
            f"Failed to connect to SQLite: {e}",
            cause=e,
        ) from e


def connect_mysql(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect with ``mysql.connector``."""
    try:
        import mysql.connector
    except ImportError:
        raise ConfigError(
            "mysql-connector-python is required for MySQL. "
            "Install with: pip install sqlpages[mysql]"
        ) from None

    parsed = _parse(url)
    user, password = _credentials(parsed, user, password)
    try:
        return mysql.connector.connect(
            host=parsed.host or "localhost",
            port=parsed.port or 3306,
            database=parsed.database,
            user=user,
            password=password,
        )
    except Exception as e:
        raise DatabaseConnectionError(
            f"Failed to connect to MySQL: {e}",
            cause=e,
        ) from e


def connect_postgresql(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect with ``psycopg2``."""
    try:
        import psycopg2
    except ImportError:
        raise ConfigError(
            "psycopg2 is required for PostgreSQL. "
            "Install with: pip install sqlpages[postgresql]"
        ) from None

    parsed = _parse(url)
    user, password = _credentials(parsed, user, password)
    try:
        return psycopg2.connect(
            host=parsed.host or "localhost",
            port=parsed.port or 5432,
            dbname=parsed.database,
            user=user,
            password=password,
        )
    except Exception as e:
        raise DatabaseConnectionError(
            f"Failed to connect to PostgreSQL: {e}",
            cause=e,
        ) from e


def connect_oracle(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect with ``oracledb``; the URL database part is the service name."""
    try:
        import oracledb
    except ImportError:
        raise ConfigError(
            "oracledb is required for Oracle. "
            "Install with: pip install sqlpages[oracle]"
        ) from None

    parsed = _parse(url)
    user, password = _credentials(parsed, user, password)
    try:
        dsn = oracledb.makedsn(
            parsed.host or "localhost",
            parsed.port or 1521,
            service_name=parsed.database,
        )
        return oracledb.connect(user=user, password=password, dsn=dsn)
    except Exception as e:
        raise DatabaseConnectionError(
            f"Failed to connect to Oracle: {e}",
            cause=e,
        ) from e


def connect_db2(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect with ``ibm_db`` and wrap the handle in ``ibm_db_dbi``."""
    try:
        import ibm_db
        import ibm_db_dbi
    except ImportError:
        raise ConfigError(
            "ibm-db is required for DB2. Install with: pip install sqlpages[db2]"
        ) from None

    parsed = _parse(url)
    user, password = _credentials(parsed, user, password)
    try:
        conn_str = (
            f"DATABASE={parsed.database};"
            f"HOSTNAME={parsed.host or 'localhost'};"
            f"PORT={parsed.port or 50000};"
            f"PROTOCOL=TCPIP;"
            f"UID={user or ''};"
            f"PWD={password or ''};"
        )
        return ibm_db_dbi.Connection(ibm_db.connect(conn_str, "", ""))
    except Exception as e:
        raise DatabaseConnectionError(
            f"Failed to connect to DB2: {e}",
            cause=e,
        ) from e


def connect_mssql(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect with ``pymssql``."""
    try:
        import pymssql
    except ImportError:
        raise ConfigError(
            "pymssql is required for MSSQL. Install with: pip install sqlpages[mssql]"
        ) from None

    parsed = _parse(url)
    user, password = _credentials(parsed, user, password)
    try:
        return pymssql.connect(
            server=parsed.host or "localhost",
            port=str(parsed.port or 1433),
            user=user,
            password=password,
            database=parsed.database,
        )
    except Exception as e:
        raise DatabaseConnectionError(
            f"Failed to connect to MSSQL: {e}",
            cause=e,
        ) from e


def connect_sybase(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect with SAP's ``sybpydb``; the URL host is the server name."""
    parsed = _parse(url)
    if parsed.database and not _DATABASE_NAME_RE.match(parsed.database):
        raise ConfigError(f"Invalid Sybase database name: {parsed.database!r}")

    try:
        import sybpydb
    except ImportError:
        raise ConfigError(
            "sybpydb is required for Sybase. "
            "It ships with the SAP ASE Open Client SDK."
        ) from None

    user, password = _credentials(parsed, user, password)
    try:
        conn = sybpydb.connect(user=user, password=password, servername=parsed.host)
        if parsed.database:
            cursor = conn.cursor()
            cursor.execute(f"USE {parsed.database}")
            cursor.close()
        return conn
    except Exception as e:
        raise DatabaseConnectionError(
            f"Failed to connect to Sybase: {e}",
            cause=e,
        ) from e


DERBY_EMBEDDED_DRIVER = "org.apache.derby.jdbc.EmbeddedDriver"
DERBY_CLIENT_DRIVER = "org.apache.derby.jdbc.ClientDriver"


def connect_derby(url: str, user: str | None = None, password: str | None = None) -> Any:
    """Connect to Derby through the JVM with ``jaydebeapi``.

    ``derby://host:1527/wiki`` uses the network client driver; anything else
    (``derby:wiki;create=true``) runs the embedded engine.
    """
    try:
        import jaydebeapi
    except ImportError:
        raise ConfigError(
            "JayDeBeApi is required for Derby. Install with: pip install sqlpages[derby]"
        ) from None

    driver_class = DERBY_CLIENT_DRIVER if url.startswith("derby://") else DERBY_EMBEDDED_DRIVER
    credentials = [user or "", password or ""] if user is not None else None
    try:
        return jaydebeapi.connect(driver_class, f"jdbc:{url}", credentials)
    except Exception as e:
        raise DatabaseConnectionError(
            f"Failed to connect to Derby: {e}",
            cause=e,
        ) from e


__all__ = [
    "connect_sqlite",
    "connect_mysql",
    "connect_postgresql",
    "connect_oracle",
    "connect_db2",
    "connect_mssql",
    "connect_sybase",
    "connect_derby",
    "DERBY_EMBEDDED_DRIVER",
    "DERBY_CLIENT_DRIVER",
]
