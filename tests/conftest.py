"""
Shared pytest fixtures for sqlpages tests.

Every provider fixture runs against a file-backed SQLite database under
``tmp_path``. ``provider`` is parametrized over the four store
configurations the tests care about:

- ``direct_versioned``      one connection per call, versioning on
- ``direct_unversioned``    one connection per call, versioning off
- ``pooled_versioned``      SQLAlchemy QueuePool, versioning on
- ``datasource_versioned``  host-bound data source, versioning on
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.pool import QueuePool

from sqlpages.config import Props
from sqlpages.datasource import DataSourceRegistry
from sqlpages.provider import SQLPageProvider

DATASOURCE_NAME = "WikiDatabase"


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "wiki.db"


@pytest.fixture
def sqlite_url(db_path: Path) -> str:
    return f"sqlite:///{db_path}"


@pytest.fixture
def registry() -> DataSourceRegistry:
    """Fresh data-source registry per test."""
    return DataSourceRegistry()


@pytest.fixture
def sqlite_pool(db_path: Path) -> Iterator[QueuePool]:
    """A QueuePool over the test database, usable as a data source."""
    pool = QueuePool(
        lambda: sqlite3.connect(str(db_path), check_same_thread=False),
        pool_size=2,
        max_overflow=3,
    )
    yield pool
    pool.dispose()


@pytest.fixture
def bound_registry(registry: DataSourceRegistry, sqlite_pool: QueuePool) -> DataSourceRegistry:
    registry.bind(f"jdbc/{DATASOURCE_NAME}", sqlite_pool)
    return registry


def _properties(mode: str, url: str) -> dict[str, str]:
    if mode == "direct_versioned":
        return {Props.URL: url}
    if mode == "direct_unversioned":
        return {Props.URL: url, Props.VERSIONING: "false"}
    if mode == "pooled_versioned":
        return {
            Props.URL: url,
            Props.POOLING_ENABLED: "true",
            Props.POOL_MIN_SIZE: "2",
            Props.POOL_INCREMENT: "1",
            Props.POOL_MAX_SIZE: "5",
        }
    if mode == "datasource_versioned":
        return {Props.DATASOURCE: DATASOURCE_NAME}
    raise ValueError(mode)


def _make_provider(
    mode: str,
    url: str,
    registry: DataSourceRegistry,
    extra: dict[str, str] | None = None,
) -> SQLPageProvider:
    provider = SQLPageProvider()
    provider.initialize({**_properties(mode, url), **(extra or {})}, datasources=registry)
    return provider


@pytest.fixture(
    params=[
        "direct_versioned",
        "direct_unversioned",
        "pooled_versioned",
        "datasource_versioned",
    ]
)
def provider(
    request: pytest.FixtureRequest,
    sqlite_url: str,
    bound_registry: DataSourceRegistry,
) -> Iterator[SQLPageProvider]:
    """Initialized provider in every store configuration."""
    p = _make_provider(request.param, sqlite_url, bound_registry)
    yield p
    p.close()


@pytest.fixture(params=["direct_versioned", "pooled_versioned", "datasource_versioned"])
def versioned_provider(
    request: pytest.FixtureRequest,
    sqlite_url: str,
    bound_registry: DataSourceRegistry,
) -> Iterator[SQLPageProvider]:
    p = _make_provider(request.param, sqlite_url, bound_registry)
    yield p
    p.close()


@pytest.fixture
def unversioned_provider(sqlite_url: str, registry: DataSourceRegistry) -> Iterator[SQLPageProvider]:
    p = _make_provider("direct_unversioned", sqlite_url, registry)
    yield p
    p.close()


@pytest.fixture
def make_provider(sqlite_url: str, bound_registry: DataSourceRegistry):
    """Factory for providers with extra properties; closed on teardown."""
    created: list[SQLPageProvider] = []

    def factory(mode: str = "direct_versioned", extra: dict[str, str] | None = None) -> SQLPageProvider:
        p = _make_provider(mode, sqlite_url, bound_registry, extra)
        created.append(p)
        return p

    yield factory
    for p in created:
        p.close()


@pytest.fixture
def drop_table(db_path: Path):
    """Drop the page table behind the provider's back."""

    def drop(table: str = "jspwiki") -> None:
        conn = sqlite3.connect(str(db_path))
        try:
            conn.execute(f"DROP TABLE {table}")
            conn.commit()
        finally:
            conn.close()

    return drop
