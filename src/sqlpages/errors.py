"""
Structured error types for sqlpages.

Every failure the page store can raise carries a category, a retry hint,
structured context and the chained driver exception, so the wiki engine can
tell a broken configuration apart from a flaky database and a failed save.

Manifesto:
    - **Typed hierarchy:** configuration, connection and provider failures
      are different classes, not different message strings
    - **Named keys:** every configuration failure names the property that
      caused it
    - **Diagnosable writes:** a failed write carries the SQL statement that
      triggered it
    - **Chained causes:** the DB-API exception is kept as ``__cause__``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        SQLPagesError                          │
        │          (category, retryable, context, cause)                │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError                 DatabaseConnectionError          │
        │  (CONFIG)                    (DATABASE, retryable)            │
        │     │                                                         │
        │  NoRequiredPropertyError     ProviderError                    │
        │  (key)                       (DATABASE, sql)                  │
        │     │                                                         │
        │  MissingConfigurationError   PluginError                      │
        │  InvalidDialectError         (PLUGIN)                         │
        │                                                               │
        │  UnknownDialectError (CONFIG)                                 │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = NoRequiredPropertyError("db.url", "db.url property is not a valid value")
    >>> err.key
    'db.url'
    >>> ProviderError("insert failed", sql="INSERT INTO jspwiki ...").sql
    'INSERT INTO jspwiki ...'

Tags:
    error-handling, exception-hierarchy, configuration, sqlpages

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    DATABASE = "DATABASE"         # Connection, query, DDL

    # Configuration errors (never retryable)
    CONFIG = "CONFIG"             # Missing or invalid properties

    # Application errors
    PLUGIN = "PLUGIN"             # SQL table plugin failures

    # Internal errors
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"           # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only the fields that are set end up in :meth:`to_dict`, so log lines stay
    short. Anything that has no dedicated field goes into ``metadata``.

    Attributes:
        page: Wiki page name the operation was working on
        version: Page version, if the operation targeted one
        dialect: Name of the active SQL dialect
        table: Page table name
        metadata: Additional key-value pairs
    """

    page: str | None = None
    version: int | None = None
    dialect: str | None = None
    table: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["page", "version", "dialect", "table"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SQLPagesError(Exception):
    """
    Base exception for all sqlpages errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    can still override both per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SQLPagesError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ProviderError("insert failed", sql=sql).with_context(
                page="FrontPage", dialect="sqlite"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(SQLPagesError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class NoRequiredPropertyError(ConfigError):
    """A required property is missing or holds an invalid value."""

    def __init__(self, key: str, message: str | None = None, **kwargs: Any):
        self.key = key
        super().__init__(message or f"{key} property is not a valid value", **kwargs)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["key"] = self.key
        return result


class MissingConfigurationError(NoRequiredPropertyError):
    """Neither a data source nor a connection URL is configured."""

    pass


class InvalidDialectError(NoRequiredPropertyError):
    """The configured driver does not name a supported dialect."""

    pass


class UnknownDialectError(ConfigError):
    """No dialect in the registry matches a name or driver module."""

    def __init__(self, value: str, message: str | None = None):
        self.value = value
        super().__init__(message or f"Could not find a SQL dialect matching: {value}")


# =============================================================================
# DATABASE ERRORS
# =============================================================================


class DatabaseConnectionError(SQLPagesError):
    """A connection could not be obtained from the configured source."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True


class ProviderError(SQLPagesError):
    """
    A statement issued by the page store failed.

    ``sql`` holds the statement that triggered the failure.
    """

    default_category = ErrorCategory.DATABASE
    default_retryable = False

    def __init__(self, message: str, *, sql: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.sql = sql

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.sql:
            result["sql"] = self.sql
        return result


class PluginError(SQLPagesError):
    """SQL table plugin failure."""

    default_category = ErrorCategory.PLUGIN
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SQLPagesError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SQLPagesError):
        return error.category
    if isinstance(error, (KeyError, ValueError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SQLPagesError",
    "ConfigError",
    "NoRequiredPropertyError",
    "MissingConfigurationError",
    "InvalidDialectError",
    "UnknownDialectError",
    "DatabaseConnectionError",
    "ProviderError",
    "PluginError",
    "is_retryable",
    "categorize_error",
]
