"""Connection sources for the page store.

Every page store operation borrows one DB-API connection for its duration
and gives it back before returning. Where that connection comes from is the
job of a :class:`ConnectionSource`:

=============================  ==============================================
Strategy                       Behaviour
=============================  ==============================================
``DataSourceConnectionSource``  Borrow from a named, host-bound data source
``PooledConnectionSource``      Borrow from a SQLAlchemy ``QueuePool``
``DirectConnectionSource``      Open a fresh connection, close it afterwards
=============================  ==============================================

:func:`create_connection_source` picks the strategy in that precedence order.

Usage
-----
::

    source = create_connection_source(config)
    source.open()
    with source.connect() as conn:
        cursor = conn.cursor()
        cursor.execute(config.dialect.validation_query)
    source.close()

The ``connect()`` context manager runs the dialect's ``on_connect``
statements on every acquired connection and releases the connection on
every exit path, including exceptions raised inside the ``with`` block.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import QueuePool

from sqlpages.config import Props, ProviderConfig
from sqlpages.datasource import DataSource, DataSourceRegistry, default_registry
from sqlpages.dialect import Dialect
from sqlpages.errors import (
    DatabaseConnectionError,
    MissingConfigurationError,
    SQLPagesError,
)
from sqlpages.logging import get_logger

logger = get_logger(__name__)


def safe_url(url: str | None) -> str | None:
    """``url`` with any embedded password masked."""
    if url is None:
        return None
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        # Derby URLs are not RFC-1738 URLs and carry no credentials
        return url


class ConnectionSource(ABC):
    """Hands out DB-API connections scoped to one ``with`` block."""

    kind: str = "abstract"

    def __init__(self, dialect: Dialect):
        self._dialect = dialect

    @property
    def dialect(self) -> Dialect:
        """SQL dialect of the connections this source hands out."""
        return self._dialect

    def open(self) -> None:
        """Prepare the source (no-op unless the strategy holds resources)."""

    def close(self) -> None:
        """Release everything the source holds."""

    @abstractmethod
    def _acquire(self) -> Any:
        ...

    def _release(self, conn: Any) -> None:
        conn.close()

    @abstractmethod
    def describe(self) -> str:
        ...

    def _prepare(self, conn: Any) -> None:
        if not self._dialect.on_connect:
            return
        cursor = conn.cursor()
        try:
            for statement in self._dialect.on_connect:
                cursor.execute(statement)
        finally:
            cursor.close()

    @contextmanager
    def connect(self) -> Iterator[Any]:
        """Borrow a connection for the duration of the ``with`` block.

        Raises:
            DatabaseConnectionError: If no connection could be obtained.
        """
        try:
            conn = self._acquire()
        except SQLPagesError:
            raise
        except Exception as e:
            raise DatabaseConnectionError(
                f"Failed to obtain a {self._dialect.name} connection from {self.describe()}: {e}",
                cause=e,
            ).with_context(dialect=self._dialect.name) from e
        try:
            self._prepare(conn)
            yield conn
        finally:
            self._release(conn)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.describe()})"


class DirectConnectionSource(ConnectionSource):
    """One physical connection per ``connect()``, closed on exit."""

    kind = "direct"

    def __init__(
        self,
        dialect: Dialect,
        url: str,
        user: str | None = None,
        password: str | None = None,
    ):
        super().__init__(dialect)
        self._url = url
        self._user = user
        self._password = password

    def _acquire(self) -> Any:
        return self._dialect.connect(self._url, self._user, self._password)

    def describe(self) -> str:
        return f"direct {self._dialect.name} {safe_url(self._url)}"


class PooledConnectionSource(ConnectionSource):
    """Connections borrowed from a SQLAlchemy :class:`~sqlalchemy.pool.QueuePool`.

    ``min_size`` becomes the pool's resident size and ``max_size - min_size``
    its overflow; ``open()`` warms the pool with ``increment`` connections.
    """

    kind = "pooled"

    def __init__(
        self,
        dialect: Dialect,
        url: str,
        user: str | None = None,
        password: str | None = None,
        *,
        min_size: int = 5,
        increment: int = 5,
        max_size: int = 40,
        timeout: float = 30.0,
    ):
        super().__init__(dialect)
        self._url = url
        self._user = user
        self._password = password
        self._min_size = min_size
        self._increment = increment
        self._max_size = max_size
        self._timeout = timeout
        self._pool: QueuePool | None = None

    @property
    def pool(self) -> QueuePool | None:
        return self._pool

    def _create(self) -> Any:
        return self._dialect.connect(self._url, self._user, self._password)

    def open(self) -> None:
        if self._pool is not None:
            return
        # QueuePool treats pool_size=0 as unbounded
        pool_size = max(self._min_size, 1)
        self._pool = QueuePool(
            self._create,
            pool_size=pool_size,
            max_overflow=max(self._max_size - pool_size, 0),
            timeout=self._timeout,
        )
        warm = [self._pool.connect() for _ in range(min(self._increment, pool_size))]
        for conn in warm:
            conn.close()
        logger.info(
            "pool_opened",
            dialect=self._dialect.name,
            pool_size=pool_size,
            max_size=self._max_size,
            warmed=len(warm),
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.dispose()
            self._pool = None
            logger.info("pool_closed", dialect=self._dialect.name)

    def _acquire(self) -> Any:
        if self._pool is None:
            self.open()
        return self._pool.connect()

    def describe(self) -> str:
        return (
            f"pooled {self._dialect.name} {safe_url(self._url)} "
            f"(min={self._min_size}, increment={self._increment}, max={self._max_size})"
        )


class DataSourceConnectionSource(ConnectionSource):
    """Connections borrowed from a host-bound :class:`DataSource`."""

    kind = "datasource"

    def __init__(self, dialect: Dialect, name: str, source: DataSource):
        super().__init__(dialect)
        self._name = name
        self._source = source

    def _acquire(self) -> Any:
        return self._source.connect()

    def describe(self) -> str:
        return f"datasource {self._name} ({self._dialect.name})"


def create_connection_source(
    config: ProviderConfig,
    datasources: DataSourceRegistry | None = None,
) -> ConnectionSource:
    """Pick the connection strategy for ``config``.

    Precedence: data source, then pool, then direct connections.

    Raises:
        MissingConfigurationError: Neither a data source nor a URL is set.
    """
    if config.datasource_name is not None:
        source = config.datasource
        if source is None:
            registry = datasources if datasources is not None else default_registry
            source = registry.lookup(config.datasource_name)
        if source is not None:
            return DataSourceConnectionSource(config.dialect, config.datasource_name, source)

    if config.url is None:
        raise MissingConfigurationError(
            Props.URL,
            f"Neither {Props.DATASOURCE} nor {Props.URL} has been configured",
        )

    if config.pooling_enabled:
        return PooledConnectionSource(
            config.dialect,
            config.url,
            config.user,
            config.password,
            min_size=config.pool_min_size,
            increment=config.pool_increment,
            max_size=config.pool_max_size,
        )
    return DirectConnectionSource(config.dialect, config.url, config.user, config.password)


__all__ = [
    "ConnectionSource",
    "DirectConnectionSource",
    "PooledConnectionSource",
    "DataSourceConnectionSource",
    "create_connection_source",
    "safe_url",
]
