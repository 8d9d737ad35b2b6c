"""Tests for the sqlpages error hierarchy."""

from __future__ import annotations

import sqlite3

import pytest

from sqlpages.errors import (
    ConfigError,
    DatabaseConnectionError,
    ErrorCategory,
    ErrorContext,
    InvalidDialectError,
    MissingConfigurationError,
    NoRequiredPropertyError,
    PluginError,
    ProviderError,
    SQLPagesError,
    UnknownDialectError,
    categorize_error,
    is_retryable,
)

pytestmark = pytest.mark.unit


class TestHierarchy:
    @pytest.mark.parametrize(
        "error,category,retryable",
        [
            (ConfigError("bad"), ErrorCategory.CONFIG, False),
            (NoRequiredPropertyError("db.url"), ErrorCategory.CONFIG, False),
            (UnknownDialectError("informix"), ErrorCategory.CONFIG, False),
            (DatabaseConnectionError("down"), ErrorCategory.DATABASE, True),
            (ProviderError("insert failed"), ErrorCategory.DATABASE, False),
            (PluginError("bad sql"), ErrorCategory.PLUGIN, False),
            (SQLPagesError("?"), ErrorCategory.INTERNAL, False),
        ],
    )
    def test_defaults(self, error: SQLPagesError, category: ErrorCategory, retryable: bool) -> None:
        assert error.category is category
        assert error.retryable is retryable
        assert is_retryable(error) is retryable
        assert categorize_error(error) is category

    def test_subclasses(self) -> None:
        assert issubclass(MissingConfigurationError, NoRequiredPropertyError)
        assert issubclass(InvalidDialectError, NoRequiredPropertyError)
        assert issubclass(NoRequiredPropertyError, ConfigError)
        assert issubclass(UnknownDialectError, ConfigError)

    def test_overrides(self) -> None:
        error = ProviderError("deadlock", retryable=True, category=ErrorCategory.INTERNAL)
        assert error.retryable is True
        assert error.category is ErrorCategory.INTERNAL


class TestFields:
    def test_key(self) -> None:
        error = NoRequiredPropertyError("db.tablename")
        assert error.key == "db.tablename"
        assert error.message == "db.tablename property is not a valid value"
        assert error.to_dict()["key"] == "db.tablename"

    def test_sql(self) -> None:
        error = ProviderError("insert failed", sql="INSERT INTO jspwiki VALUES (?)")
        assert error.sql == "INSERT INTO jspwiki VALUES (?)"
        assert error.to_dict()["sql"] == "INSERT INTO jspwiki VALUES (?)"

    def test_unknown_dialect_value(self) -> None:
        error = UnknownDialectError("informix")
        assert error.value == "informix"
        assert "informix" in error.message

    def test_cause_chained(self) -> None:
        cause = sqlite3.OperationalError("no such table: jspwiki")
        error = ProviderError("read failed", cause=cause)
        assert error.__cause__ is cause
        assert error.to_dict()["cause"] == "no such table: jspwiki"


class TestContext:
    def test_with_context(self) -> None:
        error = ProviderError("failed").with_context(page="FrontPage", version=3, destination="Other")
        assert error.context.page == "FrontPage"
        assert error.context.version == 3
        assert error.context.metadata == {"destination": "Other"}

    def test_to_dict(self) -> None:
        error = DatabaseConnectionError("down").with_context(dialect="sqlite", table="jspwiki")
        assert error.to_dict() == {
            "error_type": "DatabaseConnectionError",
            "message": "down",
            "category": "DATABASE",
            "retryable": True,
            "context": {"dialect": "sqlite", "table": "jspwiki"},
        }

    def test_empty_context_omitted(self) -> None:
        assert ErrorContext().to_dict() == {}
        assert "context" not in PluginError("x").to_dict()


class TestUtilities:
    def test_builtin_errors(self) -> None:
        assert is_retryable(ConnectionError()) is True
        assert is_retryable(ValueError()) is False
        assert categorize_error(KeyError("x")) is ErrorCategory.CONFIG
        assert categorize_error(RuntimeError()) is ErrorCategory.UNKNOWN

    def test_repr(self) -> None:
        assert repr(ConfigError("bad")) == "ConfigError('bad', category=CONFIG)"
