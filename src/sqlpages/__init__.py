"""sqlpages -- Versioned wiki page store on relational databases.

Manifesto:
    A wiki's pages, their full history and the queries over them fit in one
    SQL table. ``sqlpages`` keeps that table on whichever database the host
    already runs, and hides the differences between backends behind a
    dialect registry.

    - **Nine dialects:** MySQL, MSSQL, PostgreSQL, Oracle, DB2, Sybase,
      SQLite, Derby (embedded and network)
    - **Three connection strategies:** direct driver, client-side pool,
      host-bound data source
    - **Append-only history:** saves add versions, deletes flip a status

Architecture::

    Layer 1 -- Types & Errors
        errors.py          Structured error hierarchy (SQLPagesError)
        models.py          PageInfo, PageStatus, QueryItem, SearchResult
        logging.py         structlog configuration

    Layer 2 -- Backends
        limits.py          Row-limiting rewrites (LIMIT / TOP / ROWNUM / FETCH)
        drivers.py         Import-guarded DB-API connectors
        dialect.py         Dialect registry
        datasource.py      Host-bound named data sources

    Layer 3 -- Store
        config.py          Property validation + PageStoreSettings
        connection.py      Direct / pooled / data-source connection sources
        schema.py          Idempotent DDL
        provider.py        SQLPageProvider

    Layer 4 -- Surfaces
        plugin.py          SQL table plugin
        cli.py             ``sqlpages`` command line
"""

__version__ = "0.1.0"

from sqlpages.config import PageStoreSettings, Props, ProviderConfig, validate_properties
from sqlpages.datasource import DataSourceRegistry, bind_datasource, default_registry, lookup_datasource
from sqlpages.dialect import Dialect, dialect_for_url, list_dialects, parse_dialect, register_dialect
from sqlpages.errors import (
    ConfigError,
    DatabaseConnectionError,
    InvalidDialectError,
    MissingConfigurationError,
    NoRequiredPropertyError,
    PluginError,
    ProviderError,
    SQLPagesError,
    UnknownDialectError,
)
from sqlpages.models import LATEST_VERSION, PageInfo, PageStatus, QueryItem, SearchResult
from sqlpages.plugin import SQLTablePlugin
from sqlpages.provider import SQLPageProvider

__all__ = [
    "__version__",
    # Store
    "SQLPageProvider",
    "SQLTablePlugin",
    # Config
    "Props",
    "ProviderConfig",
    "PageStoreSettings",
    "validate_properties",
    # Dialects
    "Dialect",
    "parse_dialect",
    "dialect_for_url",
    "list_dialects",
    "register_dialect",
    # Data sources
    "DataSourceRegistry",
    "default_registry",
    "bind_datasource",
    "lookup_datasource",
    # Models
    "LATEST_VERSION",
    "PageInfo",
    "PageStatus",
    "QueryItem",
    "SearchResult",
    # Errors
    "SQLPagesError",
    "ConfigError",
    "NoRequiredPropertyError",
    "MissingConfigurationError",
    "InvalidDialectError",
    "UnknownDialectError",
    "DatabaseConnectionError",
    "ProviderError",
    "PluginError",
]
