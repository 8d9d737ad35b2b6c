"""Named data sources registered by the host application.

A host that already owns its connection management (an application server,
a web framework, a test harness) binds a connection factory under a name;
the page store is then configured with ``db.datasource=<name>`` instead of a
URL and credentials. Anything with a ``connect()`` method returning a DB-API
connection qualifies, including a :class:`sqlalchemy.pool.QueuePool`.

Lookup tries ``jdbc/<name>`` first and then ``<name>``, so a host can bind
either ``jdbc/WikiDatabase`` or ``WikiDatabase``.

Examples:
    >>> from sqlalchemy.pool import QueuePool
    >>> pool = QueuePool(lambda: sqlite3.connect("wiki.db"), pool_size=5)
    >>> bind_datasource("jdbc/WikiDatabase", pool)
    >>> lookup_datasource("WikiDatabase") is pool
    True
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from sqlpages.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class DataSource(Protocol):
    """Anything that hands out DB-API connections."""

    def connect(self) -> Any:
        ...


class DataSourceRegistry:
    """Name → :class:`DataSource` bindings."""

    def __init__(self):
        self._sources: dict[str, DataSource] = {}

    def bind(self, name: str, source: DataSource) -> None:
        """Bind (or rebind) ``source`` under ``name``."""
        if not isinstance(source, DataSource):
            raise TypeError(f"{type(source).__name__} has no connect() method")
        self._sources[name] = source
        logger.debug("datasource_bound", name=name)

    def unbind(self, name: str) -> None:
        self._sources.pop(name, None)

    def lookup(self, name: str) -> DataSource | None:
        """Find a data source by name, trying ``jdbc/<name>`` first."""
        for candidate in (f"jdbc/{name}", name):
            source = self._sources.get(candidate)
            if source is not None:
                return source
        return None

    def names(self) -> list[str]:
        return sorted(self._sources)

    def clear(self) -> None:
        self._sources.clear()

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None


# Global registry
default_registry = DataSourceRegistry()


def bind_datasource(name: str, source: DataSource) -> None:
    """Bind ``source`` in the global registry."""
    default_registry.bind(name, source)


def lookup_datasource(name: str) -> DataSource | None:
    """Look ``name`` up in the global registry."""
    return default_registry.lookup(name)


__all__ = [
    "DataSource",
    "DataSourceRegistry",
    "default_registry",
    "bind_datasource",
    "lookup_datasource",
]
