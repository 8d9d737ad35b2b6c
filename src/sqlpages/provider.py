"""
Versioned page store over a single SQL table.

Manifesto:
    A wiki needs page bodies, their history and a handful of queries over
    them. One table and a dialect descriptor are enough to provide all of it
    on any of nine SQL backends.

    - **Append-only history:** every save inserts a new version; deletes only
      flip a status flag, rows are never removed
    - **Connection per call:** each operation borrows a connection and gives
      it back before returning
    - **Parameterized SQL:** only the validated table name is interpolated
    - **Quiet reads, loud writes:** read failures are logged and answered
      with an empty value, write failures raise ``ProviderError`` carrying
      the SQL (``db.strictReads=true`` makes reads raise too)

Architecture:
    ::

        properties ──► validate_properties() ──► ProviderConfig
                                                      │
                                                      ▼
                         create_connection_source() ──► ConnectionSource
                                                      │
                              initialize(): open, ensure_schema, validation query
                                                      │
                                                      ▼
        put_page_text / get_page_text / get_version_history / find_pages ...
              │
              └─ connect() ─► cursor ─► one or more statements ─► release

Versions:
    - Versioned stores number saves 1, 2, 3, ... The next version is one more
      than the highest version ever stored for the name, deleted rows
      included, so a soft-deleted version is never overwritten.
    - Unversioned stores keep one row per page under version ``-1`` and
      update it in place.
    - ``-1`` on a versioned read means "latest".

Examples:
    >>> provider = SQLPageProvider()
    >>> provider.initialize({"db.url": "sqlite:///wiki.db"})
    >>> provider.put_page_text("FrontPage", "Welcome", author="admin")
    1
    >>> provider.get_page_text("FrontPage", LATEST_VERSION)
    'Welcome'

Tags:
    page-store, versioning, sql, multi-backend, wiki, sqlpages

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlpages.config import ProviderConfig, validate_properties
from sqlpages.connection import ConnectionSource, create_connection_source
from sqlpages.datasource import DataSourceRegistry
from sqlpages.dialect import Dialect
from sqlpages.errors import (
    ConfigError,
    DatabaseConnectionError,
    ProviderError,
    SQLPagesError,
)
from sqlpages.logging import get_logger
from sqlpages.models import (
    COL_AUTHOR,
    COL_CHANGE_NOTE,
    COL_LAST_MODIFIED,
    COL_NAME,
    COL_STATUS,
    COL_TEXT,
    COL_VERSION,
    DEFAULT_CHANGE_NOTE,
    LATEST_VERSION,
    PageInfo,
    PageStatus,
    QueryItem,
    SearchResult,
)
from sqlpages.schema import ensure_schema

logger = get_logger(__name__)

T = TypeVar("T")

_INFO_COLUMNS = (
    f"{COL_NAME}, {COL_VERSION}, {COL_AUTHOR}, {COL_TEXT}, "
    f"{COL_CHANGE_NOTE}, {COL_LAST_MODIFIED}"
)


def _now_millis() -> int:
    return int(time.time() * 1000)


def _to_millis(since: datetime | int) -> int:
    if isinstance(since, datetime):
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return int(since.timestamp() * 1000)
    return int(since)


_LIKE_ESCAPE = "!"


def _escape_like(term: str) -> str:
    for char in (_LIKE_ESCAPE, "%", "_"):
        term = term.replace(char, _LIKE_ESCAPE + char)
    return term


def _text(value: Any) -> str:
    if value is None:
        return ""
    # Oracle and Derby hand CLOBs back as LOB objects
    if hasattr(value, "read"):
        value = value.read()
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _row_to_info(row: Sequence[Any]) -> PageInfo:
    name, version, author, text, change_note, last_modified = row
    return PageInfo(
        name=name,
        version=int(version),
        author=author,
        size=len(_text(text)),
        change_note=change_note,
        last_modified=int(last_modified or 0),
    )


class _TrackedCursor:
    """DB-API cursor that remembers the last statement it executed."""

    def __init__(self, cursor: Any):
        self._cursor = cursor
        self.sql: str | None = None

    def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        self.sql = sql
        self._cursor.execute(sql, tuple(params))

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list[Any]:
        return list(self._cursor.fetchall())

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class SQLPageProvider:
    """Page store over one SQL table.

    Construct, then call :meth:`initialize` with ``db.*`` properties. Use as
    a context manager (or call :meth:`close`) to release a connection pool.
    """

    def __init__(self):
        self._config: ProviderConfig | None = None
        self._source: ConnectionSource | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────

    def initialize(
        self,
        properties: Mapping[str, Any],
        *,
        datasources: DataSourceRegistry | None = None,
    ) -> None:
        """Validate ``properties``, connect, create the schema and ping the database.

        Raises:
            ConfigError: Invalid configuration (``NoRequiredPropertyError``
                names the key).
            DatabaseConnectionError: The database could not be reached or the
                validation query failed.
        """
        config = validate_properties(properties, datasources=datasources)
        source = create_connection_source(config, datasources)
        dialect = config.dialect
        sql = dialect.validation_query
        try:
            source.open()
            ensure_schema(source, dialect, config.table_name)
            with source.connect() as conn:
                cursor = conn.cursor()
                try:
                    cursor.execute(sql)
                    cursor.fetchall()
                finally:
                    cursor.close()
        except ConfigError:
            source.close()
            raise
        except Exception as e:
            source.close()
            raise DatabaseConnectionError(
                f"Could not validate the {dialect.name} connection: {e}",
                cause=e,
            ).with_context(dialect=dialect.name, table=config.table_name, sql=sql) from e

        self.close()
        self._config = config
        self._source = source
        logger.info(
            "provider_initialized",
            dialect=dialect.name,
            table=config.table_name,
            source=source.describe(),
            versioning=config.versioning,
        )

    def close(self) -> None:
        """Dispose of the connection source (and its pool, if any)."""
        if self._source is not None:
            self._source.close()
            self._source = None

    def __enter__(self) -> SQLPageProvider:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ── Properties ───────────────────────────────────────────────────────

    @property
    def is_initialized(self) -> bool:
        return self._source is not None

    @property
    def config(self) -> ProviderConfig | None:
        return self._config

    @property
    def dialect(self) -> Dialect:
        return self._require().dialect

    @property
    def table_name(self) -> str:
        return self._require().table_name

    @property
    def is_versioned(self) -> bool:
        return self._require().versioning

    @property
    def provider_info(self) -> str:
        if self._config is None or self._source is None:
            return "SQLPageProvider (not initialized)"
        mode = "versioned" if self._config.versioning else "unversioned"
        return (
            f"SQLPageProvider ({self._config.dialect.name}, table {self._config.table_name}, "
            f"{mode}, {self._source.describe()})"
        )

    # ── Plumbing ─────────────────────────────────────────────────────────

    def _require(self) -> ProviderConfig:
        if self._config is None or self._source is None:
            raise ProviderError("SQLPageProvider has not been initialized")
        return self._config

    def _p(self, index: int) -> str:
        return self._config.dialect.placeholder(index)

    def _limit(self, sql: str) -> str:
        max_results = self._config.max_results
        if max_results <= 0:
            return sql
        return self._config.dialect.limit(sql, max_results)

    def _read(
        self,
        operation: str,
        default: T,
        fn: Callable[[_TrackedCursor], T],
        **context: Any,
    ) -> T:
        config = self._require()
        tracked: _TrackedCursor | None = None
        try:
            with self._source.connect() as conn:
                cursor = conn.cursor()
                tracked = _TrackedCursor(cursor)
                try:
                    return fn(tracked)
                finally:
                    cursor.close()
        except Exception as e:
            sql = tracked.sql if tracked is not None else None
            if config.strict_reads:
                raise ProviderError(
                    f"{operation} failed: {e}", sql=sql, cause=e
                ).with_context(table=config.table_name, dialect=config.dialect.name, **context) from e
            logger.error(
                "read_failed",
                operation=operation,
                sql=sql,
                error=str(e),
                table=config.table_name,
                **context,
            )
            return default

    @contextmanager
    def _write(self, operation: str, **context: Any) -> Iterator[_TrackedCursor]:
        config = self._require()
        tracked: _TrackedCursor | None = None
        try:
            with self._source.connect() as conn:
                cursor = conn.cursor()
                tracked = _TrackedCursor(cursor)
                try:
                    yield tracked
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
                finally:
                    cursor.close()
        except SQLPagesError:
            raise
        except Exception as e:
            sql = tracked.sql if tracked is not None else None
            raise ProviderError(
                f"{operation} failed: {e}", sql=sql, cause=e
            ).with_context(table=config.table_name, dialect=config.dialect.name, **context) from e

    def _resolve(self, name: str, version: int) -> int:
        if self._config.versioning and version == LATEST_VERSION:
            return self.find_latest_version(name)
        return version

    # ── Writes ───────────────────────────────────────────────────────────

    def put_page_text(
        self,
        name: str,
        text: str,
        author: str | None = None,
        change_note: str | None = None,
    ) -> int:
        """Save ``text`` as a new version of ``name`` (or overwrite it when unversioned).

        Returns:
            The version the text was stored under (``-1`` when unversioned).

        Raises:
            ProviderError: The statement failed; ``.sql`` holds it.
        """
        config = self._require()
        t = config.table_name
        note = change_note if change_note is not None else DEFAULT_CHANGE_NOTE
        now = _now_millis()
        insert_sql = (
            f"INSERT INTO {t} ({COL_NAME}, {COL_VERSION}, {COL_TEXT}, {COL_AUTHOR}, "
            f"{COL_CHANGE_NOTE}, {COL_STATUS}, {COL_LAST_MODIFIED}) "
            f"VALUES ({config.dialect.placeholders(7)})"
        )

        with self._write("put_page_text", page=name) as cursor:
            if config.versioning:
                cursor.execute(
                    f"SELECT MAX({COL_VERSION}) FROM {t} WHERE {COL_NAME} = {self._p(0)}",
                    (name,),
                )
                row = cursor.fetchone()
                highest = int(row[0]) if row and row[0] is not None else 0
                version = max(highest, 0) + 1
                cursor.execute(
                    insert_sql,
                    (name, version, text, author, note, PageStatus.ACTIVE.value, now),
                )
            else:
                version = LATEST_VERSION
                cursor.execute(
                    f"SELECT COUNT(*) FROM {t} "
                    f"WHERE {COL_NAME} = {self._p(0)} AND {COL_VERSION} = {self._p(1)}",
                    (name, LATEST_VERSION),
                )
                row = cursor.fetchone()
                if row and int(row[0]) > 0:
                    cursor.execute(
                        f"UPDATE {t} SET {COL_TEXT} = {self._p(0)}, {COL_AUTHOR} = {self._p(1)}, "
                        f"{COL_CHANGE_NOTE} = {self._p(2)}, {COL_STATUS} = {self._p(3)}, "
                        f"{COL_LAST_MODIFIED} = {self._p(4)} "
                        f"WHERE {COL_NAME} = {self._p(5)} AND {COL_VERSION} = {self._p(6)}",
                        (text, author, note, PageStatus.ACTIVE.value, now, name, LATEST_VERSION),
                    )
                else:
                    cursor.execute(
                        insert_sql,
                        (name, version, text, author, note, PageStatus.ACTIVE.value, now),
                    )

        logger.info("page_saved", page=name, version=version, table=t)
        return version

    def delete_version(self, name: str, version: int) -> None:
        """Mark one version of ``name`` as deleted."""
        config = self._require()
        with self._write("delete_version", page=name, version=version) as cursor:
            cursor.execute(
                f"UPDATE {config.table_name} SET {COL_STATUS} = {self._p(0)} "
                f"WHERE {COL_NAME} = {self._p(1)} AND {COL_VERSION} = {self._p(2)}",
                (PageStatus.DELETED.value, name, version),
            )
        logger.info("version_deleted", page=name, version=version, table=config.table_name)

    def delete_page(self, name: str) -> None:
        """Mark every version of ``name`` as deleted. Deleting twice is harmless."""
        config = self._require()
        with self._write("delete_page", page=name) as cursor:
            cursor.execute(
                f"UPDATE {config.table_name} SET {COL_STATUS} = {self._p(0)} "
                f"WHERE {COL_NAME} = {self._p(1)}",
                (PageStatus.DELETED.value, name),
            )
        logger.info("page_deleted", page=name, table=config.table_name)

    def move_page(self, source: str, destination: str) -> None:
        """Rename every row of ``source`` to ``destination``.

        Raises:
            ProviderError: ``destination`` already exists (nothing is changed),
                or the update failed.
        """
        config = self._require()
        if self.page_exists(destination):
            raise ProviderError(
                f"Cannot move {source} to {destination}: destination page already exists"
            ).with_context(page=source, destination=destination)
        with self._write("move_page", page=source, destination=destination) as cursor:
            cursor.execute(
                f"UPDATE {config.table_name} SET {COL_NAME} = {self._p(0)} "
                f"WHERE {COL_NAME} = {self._p(1)}",
                (destination, source),
            )
        logger.info("page_moved", page=source, destination=destination, table=config.table_name)

    # ── Reads ────────────────────────────────────────────────────────────

    def find_latest_version(self, name: str) -> int:
        """Highest ACTIVE version of ``name``; ``-1`` when none or unversioned."""
        config = self._require()
        if not config.versioning:
            return LATEST_VERSION

        def query(cursor: _TrackedCursor) -> int:
            cursor.execute(
                f"SELECT MAX({COL_VERSION}) FROM {config.table_name} "
                f"WHERE {COL_NAME} = {self._p(0)} AND {COL_STATUS} = {self._p(1)}",
                (name, PageStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            if row is None or row[0] is None:
                return LATEST_VERSION
            return int(row[0])

        return self._read("find_latest_version", LATEST_VERSION, query, page=name)

    def page_exists(self, name: str, version: int | None = None) -> bool:
        """Whether a non-deleted row exists for ``name`` (at ``version``, or latest)."""
        config = self._require()
        version = self._resolve(name, LATEST_VERSION if version is None else version)

        def query(cursor: _TrackedCursor) -> bool:
            cursor.execute(
                f"SELECT COUNT(*) FROM {config.table_name} "
                f"WHERE {COL_NAME} = {self._p(0)} AND {COL_VERSION} = {self._p(1)} "
                f"AND {COL_STATUS} = {self._p(2)}",
                (name, version, PageStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            return bool(row and int(row[0]) > 0)

        return self._read("page_exists", False, query, page=name, version=version)

    def get_page_info(self, name: str, version: int) -> PageInfo | None:
        """Metadata for one version of ``name``; ``-1`` means latest when versioned."""
        config = self._require()
        version = self._resolve(name, version)

        def query(cursor: _TrackedCursor) -> PageInfo | None:
            cursor.execute(
                f"SELECT {_INFO_COLUMNS} FROM {config.table_name} "
                f"WHERE {COL_NAME} = {self._p(0)} AND {COL_VERSION} = {self._p(1)} "
                f"AND {COL_STATUS} = {self._p(2)}",
                (name, version, PageStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            return _row_to_info(row) if row else None

        return self._read("get_page_info", None, query, page=name, version=version)

    def get_page_text(self, name: str, version: int) -> str | None:
        """Body of one version of ``name``; ``-1`` means latest when versioned."""
        config = self._require()
        version = self._resolve(name, version)

        def query(cursor: _TrackedCursor) -> str | None:
            cursor.execute(
                f"SELECT {COL_TEXT} FROM {config.table_name} "
                f"WHERE {COL_NAME} = {self._p(0)} AND {COL_VERSION} = {self._p(1)} "
                f"AND {COL_STATUS} = {self._p(2)}",
                (name, version, PageStatus.ACTIVE.value),
            )
            row = cursor.fetchone()
            return _text(row[0]) if row else None

        return self._read("get_page_text", None, query, page=name, version=version)

    def get_version_history(self, name: str) -> list[PageInfo]:
        """All live versions of ``name``, most recent first.

        Unversioned stores answer with the single ``-1`` record, if present.
        """
        config = self._require()
        latest = self.find_latest_version(name)
        if latest == LATEST_VERSION:
            if config.versioning:
                return []
            info = self.get_page_info(name, LATEST_VERSION)
            return [info] if info is not None else []

        def query(cursor: _TrackedCursor) -> list[PageInfo]:
            cursor.execute(
                f"SELECT {_INFO_COLUMNS} FROM {config.table_name} "
                f"WHERE {COL_NAME} = {self._p(0)} AND {COL_STATUS} = {self._p(1)} "
                f"AND {COL_VERSION} >= {self._p(2)} AND {COL_VERSION} <= {self._p(3)} "
                f"ORDER BY {COL_VERSION} DESC",
                (name, PageStatus.ACTIVE.value, 0, latest),
            )
            return [_row_to_info(row) for row in cursor.fetchall()]

        return self._read("get_version_history", [], query, page=name)

    def _distinct_names(self, operation: str, where: str, params: tuple, **context: Any) -> list[str]:
        config = self._require()
        sql = self._limit(
            f"SELECT DISTINCT {COL_NAME} FROM {config.table_name} WHERE {where} "
            f"ORDER BY {COL_NAME}"
        )

        def query(cursor: _TrackedCursor) -> list[str]:
            cursor.execute(sql, params)
            return [row[0] for row in cursor.fetchall()]

        return self._read(operation, [], query, **context)

    def _latest_infos(self, names: list[str]) -> list[PageInfo]:
        infos = []
        for name in names:
            info = self.get_page_info(name, LATEST_VERSION)
            if info is not None:
                infos.append(info)
        return infos

    def find_pages(self, query: Sequence[QueryItem | str]) -> list[SearchResult]:
        """Pages whose live text contains the first query term.

        The term is matched literally: ``%`` and ``_`` in it are escaped, so
        ``"5%"`` finds "5% off" but not "50 off".
        """
        self._require()
        if not query:
            return []
        first = query[0]
        term = first.word if isinstance(first, QueryItem) else str(first)
        names = self._distinct_names(
            "find_pages",
            f"{COL_TEXT} LIKE {self._p(0)} ESCAPE '{_LIKE_ESCAPE}' AND {COL_STATUS} = {self._p(1)}",
            (f"%{_escape_like(term)}%", PageStatus.ACTIVE.value),
            term=term,
        )
        return [SearchResult(page=info) for info in self._latest_infos(names)]

    def get_all_pages(self) -> list[PageInfo]:
        """Latest info of every live page (capped at ``db.maxresults``)."""
        names = self._distinct_names(
            "get_all_pages",
            f"{COL_STATUS} = {self._p(0)}",
            (PageStatus.ACTIVE.value,),
        )
        return self._latest_infos(names)

    def get_all_changed_since(self, since: datetime | int) -> list[PageInfo]:
        """Latest info of every live page saved at or after ``since``.

        ``since`` is an aware (or UTC-naive) datetime, or epoch milliseconds.
        """
        cutoff = _to_millis(since)
        names = self._distinct_names(
            "get_all_changed_since",
            f"{COL_LAST_MODIFIED} >= {self._p(0)} AND {COL_STATUS} = {self._p(1)}",
            (cutoff, PageStatus.ACTIVE.value),
            since=cutoff,
        )
        return self._latest_infos(names)

    def get_page_count(self) -> int:
        """Number of distinct live page names."""
        config = self._require()

        def query(cursor: _TrackedCursor) -> int:
            cursor.execute(
                f"SELECT COUNT(DISTINCT {COL_NAME}) FROM {config.table_name} "
                f"WHERE {COL_STATUS} = {self._p(0)}",
                (PageStatus.ACTIVE.value,),
            )
            row = cursor.fetchone()
            return int(row[0]) if row and row[0] is not None else 0

        return self._read("get_page_count", 0, query)


__all__ = [
    "SQLPageProvider",
]
