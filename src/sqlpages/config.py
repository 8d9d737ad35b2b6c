"""
Page store configuration: property keys, validation and settings.

The store is configured with a flat ``key -> value`` mapping using the same
``db.*`` keys a wiki's properties file would carry. :func:`validate_properties`
checks that mapping in a fixed order and turns it into a frozen
:class:`ProviderConfig`; :class:`PageStoreSettings` builds the mapping from
``SQLPAGES_*`` environment variables and ``.env`` files.

Manifesto:
    A misconfigured page store must refuse to start, and say which key
    is wrong.

    - **Fixed order:** checks run in the same order every time and stop at
      the first failure
    - **Named keys:** every failure is a ``NoRequiredPropertyError`` whose
      ``key`` is the offending property
    - **No secrets in logs:** password values are never logged

Validation order:
    1. ``db.datasource``  - lookup; dialect from a live connection
    2. ``db.driver``      - dialect name or DB-API module; importable
    3. ``db.url``         - required without a data source; dialect prefix
    4. ``db.user`` / ``db.password``
    5. ``db.tablename``
    6. ``db.maxresults``
    7. ``db.versioning``
    8. ``db.poolingEnabled`` (+ ``db.pool.*`` sizes)
    9. ``db.strictReads``

Examples:
    >>> config = validate_properties({"db.url": "sqlite:///wiki.db"})
    >>> config.dialect.name, config.table_name, config.max_results
    ('sqlite', 'jspwiki', 500)

Tags:
    configuration, validation, pydantic, settings, sqlpages

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

import importlib
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqlpages.datasource import DataSource, DataSourceRegistry, default_registry
from sqlpages.dialect import (
    Dialect,
    dialect_for_connection,
    dialect_for_url,
    normalize_url,
    parse_dialect,
)
from sqlpages.errors import (
    InvalidDialectError,
    MissingConfigurationError,
    NoRequiredPropertyError,
    UnknownDialectError,
)
from sqlpages.logging import get_logger

logger = get_logger(__name__)


class Props:
    """Property keys understood by the page store."""

    DATASOURCE = "db.datasource"
    DRIVER = "db.driver"
    URL = "db.url"
    USER = "db.user"
    PASSWORD = "db.password"
    TABLENAME = "db.tablename"
    MAXRESULTS = "db.maxresults"
    VERSIONING = "db.versioning"
    POOLING_ENABLED = "db.poolingEnabled"
    POOL_MIN_SIZE = "db.pool.minsize"
    POOL_INCREMENT = "db.pool.increment"
    POOL_MAX_SIZE = "db.pool.maxsize"
    STRICT_READS = "db.strictReads"


# ── Defaults ─────────────────────────────────────────────────────────────

DEFAULT_TABLE_NAME = "jspwiki"
DEFAULT_MAX_RESULTS = 500
DEFAULT_VERSIONING = True
DEFAULT_POOLING_ENABLED = False
DEFAULT_POOL_MIN_SIZE = 5
DEFAULT_POOL_INCREMENT = 5
DEFAULT_POOL_MAX_SIZE = 40
DEFAULT_STRICT_READS = False

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$.]*$")


@dataclass(frozen=True)
class ProviderConfig:
    """Validated page store configuration."""

    dialect: Dialect
    table_name: str = DEFAULT_TABLE_NAME
    max_results: int = DEFAULT_MAX_RESULTS
    versioning: bool = DEFAULT_VERSIONING
    url: str | None = None
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    datasource_name: str | None = None
    datasource: DataSource | None = field(default=None, repr=False, compare=False)
    pooling_enabled: bool = DEFAULT_POOLING_ENABLED
    pool_min_size: int = DEFAULT_POOL_MIN_SIZE
    pool_increment: int = DEFAULT_POOL_INCREMENT
    pool_max_size: int = DEFAULT_POOL_MAX_SIZE
    strict_reads: bool = DEFAULT_STRICT_READS


# ── Value checks ─────────────────────────────────────────────────────────


def _get(properties: Mapping[str, Any], key: str) -> str | None:
    value = properties.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        value = "true" if value else "false"
    value = str(value).strip()
    return value or None


def is_ascii_printable(value: str) -> bool:
    return all(" " <= ch <= "~" for ch in value)


def _require_printable(key: str, value: str) -> str:
    if not is_ascii_printable(value):
        raise NoRequiredPropertyError(key, f"{key} property is not a valid value")
    return value


def _require_digits(key: str, value: str) -> int:
    if not value.isascii() or not value.isdigit():
        raise NoRequiredPropertyError(key, f"{key} property is not a valid value")
    return int(value)


def parse_bool(key: str, value: str) -> bool:
    """Parse ``true/false/1/0`` (case-insensitive) or fail naming ``key``."""
    lowered = value.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise NoRequiredPropertyError(key, f"{key} property is not true or false")


def _dialect_from_datasource(name: str, source: DataSource) -> Dialect:
    try:
        conn = source.connect()
    except Exception as e:
        raise NoRequiredPropertyError(
            Props.DATASOURCE,
            f"{Props.DATASOURCE} property is not a valid value. "
            f"Could not connect to data source {name}: {e}",
            cause=e,
        ) from e
    try:
        return dialect_for_connection(conn)
    except UnknownDialectError as e:
        raise NoRequiredPropertyError(
            Props.DATASOURCE,
            f"{Props.DATASOURCE} property is not a valid value. {e.message}",
            cause=e,
        ) from e
    finally:
        conn.close()


# ── Validation ───────────────────────────────────────────────────────────


def validate_properties(
    properties: Mapping[str, Any],
    *,
    datasources: DataSourceRegistry | None = None,
) -> ProviderConfig:
    """Validate a property mapping into a :class:`ProviderConfig`.

    Args:
        properties: ``db.*`` keys to values (strings, or ints/bools)
        datasources: Registry to resolve ``db.datasource`` against
            (default: :data:`sqlpages.datasource.default_registry`)

    Raises:
        NoRequiredPropertyError: First invalid property, in validation order.
    """
    registry = datasources if datasources is not None else default_registry
    dialect: Dialect | None = None

    # 1. Data source
    datasource: DataSource | None = None
    datasource_name = _get(properties, Props.DATASOURCE)
    if datasource_name is not None:
        _require_printable(Props.DATASOURCE, datasource_name)
        datasource = registry.lookup(datasource_name)
        if datasource is None:
            raise NoRequiredPropertyError(
                Props.DATASOURCE,
                f"No data source is bound as jdbc/{datasource_name} or {datasource_name}",
            )
        dialect = _dialect_from_datasource(datasource_name, datasource)
        logger.info("datasource_resolved", name=datasource_name, dialect=dialect.name)

    # 2. Driver
    driver = _get(properties, Props.DRIVER)
    if driver is not None:
        try:
            driver_dialect = parse_dialect(driver)
        except UnknownDialectError as e:
            raise InvalidDialectError(
                Props.DRIVER,
                f"{Props.DRIVER} property is not a valid value. {driver}",
                cause=e,
            ) from e
        try:
            importlib.import_module(driver_dialect.driver)
        except ImportError as e:
            raise NoRequiredPropertyError(
                Props.DRIVER,
                f"Error: unable to load driver {driver_dialect.driver}! {e}",
                cause=e,
            ) from e
        if dialect is None:
            dialect = driver_dialect
        else:
            logger.info(
                "driver_ignored",
                driver=driver,
                dialect=dialect.name,
                reason="data source determines the dialect",
            )

    # 3. URL
    url: str | None = None
    if datasource is None:
        raw_url = _get(properties, Props.URL)
        if raw_url is None:
            raise MissingConfigurationError(
                Props.URL,
                f"Neither {Props.DATASOURCE} nor {Props.URL} has been configured",
            )
        _require_printable(Props.URL, raw_url)
        url = normalize_url(raw_url)
        url_dialect = dialect_for_url(url)
        if dialect is None:
            dialect = url_dialect
        elif url_dialect is not None and url_dialect.driver == dialect.driver:
            dialect = url_dialect
        if dialect is None:
            raise NoRequiredPropertyError(
                Props.URL,
                f"Error: {Props.URL} property has value {raw_url}. "
                f"No supported SQL dialect uses this URL",
            )
        if not dialect.matches_url(url):
            raise NoRequiredPropertyError(
                Props.URL,
                f"Error: {Props.URL} property has value {raw_url}. "
                f"Expected: {dialect.url_template}",
            )

    # 4. Credentials
    user = _get(properties, Props.USER)
    if user is not None:
        _require_printable(Props.USER, user)
    password = _get(properties, Props.PASSWORD)
    if password is not None:
        _require_printable(Props.PASSWORD, password)

    # 5. Table name
    table_name = _get(properties, Props.TABLENAME) or DEFAULT_TABLE_NAME
    _require_printable(Props.TABLENAME, table_name)
    if not _TABLE_NAME_RE.match(table_name):
        raise NoRequiredPropertyError(
            Props.TABLENAME, f"{Props.TABLENAME} property is not a valid value"
        )

    # 6. Max results
    max_results = DEFAULT_MAX_RESULTS
    value = _get(properties, Props.MAXRESULTS)
    if value is not None:
        max_results = _require_digits(Props.MAXRESULTS, value)

    # 7. Versioning
    versioning = DEFAULT_VERSIONING
    value = _get(properties, Props.VERSIONING)
    if value is not None:
        versioning = parse_bool(Props.VERSIONING, value)

    # 8. Pooling
    pooling_enabled = DEFAULT_POOLING_ENABLED
    pool_min_size = DEFAULT_POOL_MIN_SIZE
    pool_increment = DEFAULT_POOL_INCREMENT
    pool_max_size = DEFAULT_POOL_MAX_SIZE
    value = _get(properties, Props.POOLING_ENABLED)
    if value is not None:
        pooling_enabled = parse_bool(Props.POOLING_ENABLED, value)
    if pooling_enabled:
        value = _get(properties, Props.POOL_MIN_SIZE)
        if value is not None:
            pool_min_size = _require_digits(Props.POOL_MIN_SIZE, value)
        value = _get(properties, Props.POOL_INCREMENT)
        if value is not None:
            pool_increment = _require_digits(Props.POOL_INCREMENT, value)
        value = _get(properties, Props.POOL_MAX_SIZE)
        if value is not None:
            pool_max_size = _require_digits(Props.POOL_MAX_SIZE, value)
        if pool_max_size < 1 or pool_max_size < pool_min_size:
            raise NoRequiredPropertyError(
                Props.POOL_MAX_SIZE,
                f"{Props.POOL_MAX_SIZE} must be at least 1 and at least {Props.POOL_MIN_SIZE}",
            )

    # 9. Strict reads
    strict_reads = DEFAULT_STRICT_READS
    value = _get(properties, Props.STRICT_READS)
    if value is not None:
        strict_reads = parse_bool(Props.STRICT_READS, value)

    config = ProviderConfig(
        dialect=dialect,
        table_name=table_name,
        max_results=max_results,
        versioning=versioning,
        url=url,
        user=user,
        password=password,
        datasource_name=datasource_name,
        datasource=datasource,
        pooling_enabled=pooling_enabled,
        pool_min_size=pool_min_size,
        pool_increment=pool_increment,
        pool_max_size=pool_max_size,
        strict_reads=strict_reads,
    )
    logger.debug(
        "properties_validated",
        dialect=dialect.name,
        table=table_name,
        url=url,
        user=user,
        password_set=password is not None,
        datasource=datasource_name,
        max_results=max_results,
        versioning=versioning,
        pooling=pooling_enabled,
        strict_reads=strict_reads,
    )
    return config


# ── Environment-driven settings ──────────────────────────────────────────


class PageStoreSettings(BaseSettings):
    """Page store settings read from ``SQLPAGES_*`` variables and ``.env``.

    ``to_properties()`` turns the settings into the ``db.*`` mapping that
    :func:`validate_properties` and :meth:`SQLPageProvider.initialize` take.
    """

    model_config = SettingsConfigDict(
        env_prefix="SQLPAGES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Connection ───────────────────────────────────────────────
    datasource: str | None = Field(default=None)
    driver: str | None = Field(default=None)
    url: str | None = Field(default=None, description="e.g. sqlite:///wiki.db")
    user: str | None = Field(default=None)
    password: SecretStr | None = Field(default=None)

    # ── Store ────────────────────────────────────────────────────
    tablename: str = Field(default=DEFAULT_TABLE_NAME)
    maxresults: int = Field(default=DEFAULT_MAX_RESULTS)
    versioning: bool = Field(default=DEFAULT_VERSIONING)
    strict_reads: bool = Field(default=DEFAULT_STRICT_READS)

    # ── Pooling ──────────────────────────────────────────────────
    pooling_enabled: bool = Field(default=DEFAULT_POOLING_ENABLED)
    pool_minsize: int = Field(default=DEFAULT_POOL_MIN_SIZE)
    pool_increment: int = Field(default=DEFAULT_POOL_INCREMENT)
    pool_maxsize: int = Field(default=DEFAULT_POOL_MAX_SIZE)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="ERROR")
    log_format: str = Field(default="console")

    def to_properties(self) -> dict[str, str]:
        """The settings as ``db.*`` properties (unset keys omitted)."""
        values: dict[str, Any] = {
            Props.DATASOURCE: self.datasource,
            Props.DRIVER: self.driver,
            Props.URL: self.url,
            Props.USER: self.user,
            Props.PASSWORD: self.password.get_secret_value() if self.password else None,
            Props.TABLENAME: self.tablename,
            Props.MAXRESULTS: self.maxresults,
            Props.VERSIONING: self.versioning,
            Props.POOLING_ENABLED: self.pooling_enabled,
            Props.POOL_MIN_SIZE: self.pool_minsize,
            Props.POOL_INCREMENT: self.pool_increment,
            Props.POOL_MAX_SIZE: self.pool_maxsize,
            Props.STRICT_READS: self.strict_reads,
        }
        properties = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            properties[key] = str(value)
        return properties


__all__ = [
    "Props",
    "ProviderConfig",
    "PageStoreSettings",
    "validate_properties",
    "parse_bool",
    "is_ascii_printable",
    "DEFAULT_TABLE_NAME",
    "DEFAULT_MAX_RESULTS",
]
