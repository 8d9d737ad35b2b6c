"""Idempotent DDL for the page table.

``ensure_schema`` creates the page table and its ``(wikiname, wikiversion)``
unique index using the dialect's column types. Each statement runs on its
own: a failure (typically "already exists") is logged at warning level, the
connection is rolled back, and the next statement still runs. When the table
is already there only the index statement is issued, so a table left without
its index by an earlier start gets one now.
"""

from __future__ import annotations

from typing import Any

from sqlpages.connection import ConnectionSource
from sqlpages.dialect import Dialect
from sqlpages.logging import get_logger
from sqlpages.models import (
    COL_AUTHOR,
    COL_CHANGE_NOTE,
    COL_ID,
    COL_LAST_MODIFIED,
    COL_NAME,
    COL_STATUS,
    COL_TEXT,
    COL_VERSION,
)

logger = get_logger(__name__)


def index_name(table: str) -> str:
    return f"{table}_name_version_idx".replace(".", "_")


def schema_statements(dialect: Dialect, table: str) -> list[str]:
    """``CREATE TABLE`` and ``CREATE UNIQUE INDEX`` for ``table`` on ``dialect``."""
    create_table = (
        f"CREATE TABLE {table} ("
        f"{COL_ID} {dialect.id_column}, "
        f"{COL_NAME} VARCHAR(255) NOT NULL, "
        f"{COL_VERSION} INTEGER NOT NULL, "
        f"{COL_TEXT} {dialect.text_type}, "
        f"{COL_AUTHOR} VARCHAR(255), "
        f"{COL_CHANGE_NOTE} VARCHAR(255), "
        f"{COL_LAST_MODIFIED} {dialect.bigint_type}, "
        f"{COL_STATUS} CHAR(2) NOT NULL"
        f")"
    )
    create_index = (
        f"CREATE UNIQUE INDEX {index_name(table)} ON {table} ({COL_NAME}, {COL_VERSION})"
    )
    return [create_table, create_index]


def _table_exists(conn: Any, table: str) -> bool:
    cursor = conn.cursor()
    try:
        cursor.execute(f"SELECT {COL_ID} FROM {table} WHERE 1 = 0")
        cursor.fetchall()
        return True
    except Exception:
        conn.rollback()
        return False
    finally:
        cursor.close()


def ensure_schema(source: ConnectionSource, dialect: Dialect, table: str) -> list[str]:
    """Create the page table and index if missing.

    Returns:
        The statements that ran successfully.

    Raises:
        DatabaseConnectionError: If no connection could be obtained.
    """
    applied: list[str] = []
    create_table, create_index = schema_statements(dialect, table)
    with source.connect() as conn:
        statements = [create_table, create_index]
        if _table_exists(conn, table):
            logger.debug("schema_table_present", table=table, dialect=dialect.name)
            statements = [create_index]
        for sql in statements:
            cursor = conn.cursor()
            try:
                cursor.execute(sql)
                conn.commit()
                applied.append(sql)
            except Exception as e:
                logger.warning(
                    "schema_statement_failed",
                    table=table,
                    dialect=dialect.name,
                    sql=sql,
                    error=str(e),
                )
                conn.rollback()
            finally:
                cursor.close()
    if applied:
        logger.info("schema_created", table=table, dialect=dialect.name, statements=len(applied))
    return applied


__all__ = [
    "ensure_schema",
    "schema_statements",
    "index_name",
]
