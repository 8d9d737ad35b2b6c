"""SQL table plugin: run a read-only query and render the rows as a wiki table.

The plugin shares the page store's dialect registry, connection strategies
and result limiter. Its configuration is split like a wiki plugin call:
site-wide ``properties`` (``db.driver``, ``db.url``, ``db.user``,
``db.password``, ``db.maxresults``) and per-invocation ``params``
(``sql``, ``class``, ``header``, ``db.datasource``).

Output is wiki table markup::

    || StudentID || FirstName
    | 1 | Alice
    | 2 | Bob

passed through an optional ``render`` callable (the host's markup-to-HTML
pipeline) and wrapped in ``<div class='sql-table'>``.

Example:
    >>> plugin = SQLTablePlugin()
    >>> html = plugin.execute(
    ...     {"db.url": "sqlite:///school.db"},
    ...     {"sql": "select FirstName from Students"},
    ... )
"""

from __future__ import annotations

import html
import importlib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlpages.config import Props, is_ascii_printable
from sqlpages.connection import (
    ConnectionSource,
    DataSourceConnectionSource,
    DirectConnectionSource,
)
from sqlpages.datasource import DataSource, DataSourceRegistry, default_registry
from sqlpages.dialect import (
    Dialect,
    dialect_for_connection,
    dialect_for_url,
    normalize_url,
    parse_dialect,
)
from sqlpages.errors import PluginError, SQLPagesError
from sqlpages.logging import get_logger

logger = get_logger(__name__)

PARAM_SQL = "sql"
PARAM_CLASS = "class"
PARAM_HEADER = "header"
PARAM_DATASOURCE = Props.DATASOURCE

DEFAULT_CLASS = "sql-table"
DEFAULT_HEADER = True
DEFAULT_MAX_RESULTS = 50


@dataclass(frozen=True)
class TableQuery:
    """A validated plugin invocation."""

    dialect: Dialect
    sql: str
    css_class: str = DEFAULT_CLASS
    header: bool = DEFAULT_HEADER
    max_results: int = DEFAULT_MAX_RESULTS
    url: str | None = None
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    datasource_name: str | None = None
    datasource: DataSource | None = field(default=None, repr=False, compare=False)


def _value(mapping: Mapping[str, Any], key: str) -> str | None:
    value = mapping.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _printable(key: str, value: str, kind: str = "property") -> str:
    if not is_ascii_printable(value):
        raise PluginError(f"{key} {kind} is not a valid value")
    return value


def format_table(columns: list[str], rows: list[Any], *, header: bool = True) -> str:
    """Rows as wiki table markup, one line per row."""
    lines = []
    if header:
        lines.append(" ".join(f"|| {column}" for column in columns))
    for row in rows:
        lines.append(" ".join(f"| {'' if value is None else value}" for value in row))
    return "\n".join(lines) + "\n"


class SQLTablePlugin:
    """Renders the result of a ``SELECT`` as a wiki table."""

    def validate(
        self,
        properties: Mapping[str, Any],
        params: Mapping[str, Any],
        *,
        datasources: DataSourceRegistry | None = None,
    ) -> TableQuery:
        """Check properties and params in order; the first problem raises.

        Raises:
            PluginError: Naming the offending property or parameter.
        """
        registry = datasources if datasources is not None else default_registry
        dialect: Dialect | None = None

        datasource: DataSource | None = None
        datasource_name = _value(params, PARAM_DATASOURCE)
        if datasource_name is not None:
            _printable(PARAM_DATASOURCE, datasource_name, "parameter")
            datasource = registry.lookup(datasource_name)
            if datasource is None:
                raise PluginError(f"Could not load data source {datasource_name}")
            conn = None
            try:
                conn = datasource.connect()
                dialect = dialect_for_connection(conn)
            except Exception as e:
                raise PluginError(
                    f"{PARAM_DATASOURCE} parameter is not a valid value. {e}", cause=e
                ) from e
            finally:
                if conn is not None:
                    conn.close()

        driver = _value(properties, Props.DRIVER)
        if driver is not None:
            try:
                driver_dialect = parse_dialect(driver)
                importlib.import_module(driver_dialect.driver)
            except (SQLPagesError, ImportError) as e:
                raise PluginError(f"{Props.DRIVER} property is not a valid value. {driver}", cause=e) from e
            if dialect is None:
                dialect = driver_dialect

        url = user = password = None
        if datasource is None:
            raw_url = _value(properties, Props.URL)
            if raw_url is None:
                raise PluginError(f"Neither {PARAM_DATASOURCE} nor {Props.URL} has been configured")
            url = normalize_url(_printable(Props.URL, raw_url))
            url_dialect = dialect_for_url(url)
            if dialect is None or (url_dialect is not None and url_dialect.driver == dialect.driver):
                dialect = url_dialect
            if dialect is None or not dialect.matches_url(url):
                expected = dialect.url_template if dialect else "a supported database URL"
                raise PluginError(f"Error: {Props.URL} property has value {raw_url}. Expected: {expected}")
            user = _value(properties, Props.USER)
            if user is not None:
                _printable(Props.USER, user)
            password = _value(properties, Props.PASSWORD)
            if password is not None:
                _printable(Props.PASSWORD, password)

        max_results = DEFAULT_MAX_RESULTS
        value = _value(properties, Props.MAXRESULTS)
        if value is not None:
            if not value.isascii() or not value.isdigit():
                raise PluginError(f"{Props.MAXRESULTS} property is not a valid value")
            max_results = int(value)

        css_class = _value(params, PARAM_CLASS) or DEFAULT_CLASS
        _printable(PARAM_CLASS, css_class, "parameter")

        sql = _value(params, PARAM_SQL)
        if sql is None:
            raise PluginError(f"{PARAM_SQL} parameter was not defined")
        _printable(PARAM_SQL, sql, "parameter")
        if not sql.lower().startswith("select"):
            raise PluginError(f"{PARAM_SQL} parameter needs to start with 'SELECT'.")

        header = DEFAULT_HEADER
        value = _value(params, PARAM_HEADER)
        if value is not None:
            lowered = value.lower()
            if lowered not in ("true", "false", "1", "0"):
                raise PluginError(f"{PARAM_HEADER} parameter is not a valid boolean")
            header = lowered in ("true", "1")

        return TableQuery(
            dialect=dialect,
            sql=sql,
            css_class=css_class,
            header=header,
            max_results=max_results,
            url=url,
            user=user,
            password=password,
            datasource_name=datasource_name,
            datasource=datasource,
        )

    def _source(self, query: TableQuery) -> ConnectionSource:
        if query.datasource is not None:
            return DataSourceConnectionSource(query.dialect, query.datasource_name, query.datasource)
        return DirectConnectionSource(query.dialect, query.url, query.user, query.password)

    def execute(
        self,
        properties: Mapping[str, Any],
        params: Mapping[str, Any],
        *,
        datasources: DataSourceRegistry | None = None,
        render: Callable[[str], str] | None = None,
    ) -> str:
        """Run the ``sql`` param and return the rendered table.

        Raises:
            PluginError: On invalid input or any database failure.
        """
        query = self.validate(properties, params, datasources=datasources)
        sql = query.sql
        if query.max_results > 0:
            sql = query.dialect.limit(sql, query.max_results)
        try:
            with self._source(query).connect() as conn:
                cursor = conn.cursor()
                try:
                    cursor.execute(sql)
                    columns = [description[0] for description in cursor.description or ()]
                    rows = cursor.fetchall()
                finally:
                    cursor.close()
            markup = format_table(columns, rows, header=query.header)
            result = render(markup) if render is not None else markup
        except Exception as e:
            logger.error("plugin_failed", sql=sql, error=str(e), dialect=query.dialect.name)
            raise PluginError(str(e), cause=e).with_context(dialect=query.dialect.name, sql=sql) from e

        logger.debug("plugin_rendered", sql=sql, rows=len(rows), dialect=query.dialect.name)
        return f"<div class='{html.escape(query.css_class, quote=True)}'>{result}</div>"


__all__ = [
    "SQLTablePlugin",
    "TableQuery",
    "format_table",
    "PARAM_SQL",
    "PARAM_CLASS",
    "PARAM_HEADER",
    "PARAM_DATASOURCE",
]
