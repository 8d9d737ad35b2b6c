"""Tests for sqlpages.provider: the versioned page store on SQLite."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from sqlpages.config import Props
from sqlpages.errors import (
    DatabaseConnectionError,
    MissingConfigurationError,
    ProviderError,
)
from sqlpages.models import LATEST_VERSION, PageInfo, QueryItem, SearchResult
from sqlpages.provider import SQLPageProvider, _TrackedCursor

pytestmark = pytest.mark.integration


# =========================================================================
# Lifecycle
# =========================================================================


class TestLifecycle:
    def test_initialize(self, provider: SQLPageProvider) -> None:
        assert provider.is_initialized
        assert provider.dialect.name == "sqlite"
        assert provider.table_name == "jspwiki"

    def test_provider_info(self, provider: SQLPageProvider) -> None:
        info = provider.provider_info
        assert "sqlite" in info
        assert "jspwiki" in info

    def test_not_initialized(self) -> None:
        provider = SQLPageProvider()
        assert not provider.is_initialized
        assert "not initialized" in provider.provider_info
        with pytest.raises(ProviderError):
            provider.get_page_text("FrontPage", 1)
        with pytest.raises(ProviderError):
            provider.put_page_text("FrontPage", "text")

    def test_missing_url_propagates_config_error(self) -> None:
        provider = SQLPageProvider()
        with pytest.raises(MissingConfigurationError) as exc_info:
            provider.initialize({})
        assert exc_info.value.key == Props.URL
        assert not provider.is_initialized

    def test_unreachable_database(self, tmp_path) -> None:
        url = f"sqlite:///{tmp_path / 'missing' / 'dir' / 'wiki.db'}"
        provider = SQLPageProvider()
        with pytest.raises(DatabaseConnectionError):
            provider.initialize({Props.URL: url})
        assert not provider.is_initialized

    def test_context_manager_closes(self, sqlite_url: str) -> None:
        with SQLPageProvider() as provider:
            provider.initialize({Props.URL: sqlite_url, Props.POOLING_ENABLED: "true"})
            assert provider.is_initialized
        assert not provider.is_initialized

    def test_reinitialize_reuses_table(self, sqlite_url: str) -> None:
        with SQLPageProvider() as first:
            first.initialize({Props.URL: sqlite_url})
            first.put_page_text("FrontPage", "kept")
        with SQLPageProvider() as second:
            second.initialize({Props.URL: sqlite_url})
            assert second.get_page_text("FrontPage", LATEST_VERSION) == "kept"

    def test_custom_table_name(self, make_provider) -> None:
        provider = make_provider(extra={Props.TABLENAME: "wiki_pages"})
        assert provider.table_name == "wiki_pages"
        provider.put_page_text("FrontPage", "hello")
        assert provider.get_page_text("FrontPage", LATEST_VERSION) == "hello"


# =========================================================================
# Every store configuration
# =========================================================================


class TestRoundTrip:
    def test_text_round_trips(self, provider: SQLPageProvider) -> None:
        text = "Grüße, wiki!\n\tSecond line with 'quotes' and \"doubles\" ✓"
        version = provider.put_page_text("Unicode", text)
        assert provider.get_page_text("Unicode", version) == text

    def test_front_page(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("FrontPage", "Welcome to the test wiki!")
        assert provider.page_exists("FrontPage")
        history = provider.get_version_history("FrontPage")
        assert len(history) == 1
        expected = 1 if provider.is_versioned else LATEST_VERSION
        assert history[0].version == expected
        assert provider.get_page_text("FrontPage", expected) == "Welcome to the test wiki!"

    def test_page_info(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("FrontPage", "Welcome", author="admin", change_note="first")
        info = provider.get_page_info("FrontPage", LATEST_VERSION)
        assert isinstance(info, PageInfo)
        assert info.name == "FrontPage"
        assert info.author == "admin"
        assert info.change_note == "first"
        assert info.size == len("Welcome")
        assert info.last_modified > 0

    def test_default_change_note(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("FrontPage", "Welcome")
        info = provider.get_page_info("FrontPage", LATEST_VERSION)
        assert info.change_note == "new page"
        assert info.author is None

    def test_empty_change_note_kept(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("FrontPage", "Welcome", change_note="")
        assert provider.get_page_info("FrontPage", LATEST_VERSION).change_note == ""

    def test_missing_page(self, provider: SQLPageProvider) -> None:
        assert not provider.page_exists("Nowhere")
        assert provider.get_page_text("Nowhere", LATEST_VERSION) is None
        assert provider.get_page_info("Nowhere", LATEST_VERSION) is None
        assert provider.get_version_history("Nowhere") == []

    def test_delete_page_twice(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Doomed", "bye")
        provider.delete_page("Doomed")
        provider.delete_page("Doomed")
        assert not provider.page_exists("Doomed")
        assert provider.get_page_text("Doomed", LATEST_VERSION) is None

    def test_delete_unknown_page(self, provider: SQLPageProvider) -> None:
        provider.delete_page("NeverSaved")
        assert not provider.page_exists("NeverSaved")

    def test_put_after_delete_page(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Phoenix", "first life")
        provider.delete_page("Phoenix")
        provider.put_page_text("Phoenix", "second life")
        assert provider.page_exists("Phoenix")
        assert provider.get_page_text("Phoenix", LATEST_VERSION) == "second life"

    def test_move_page(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("OldName", "content")
        provider.move_page("OldName", "NewName")
        assert not provider.page_exists("OldName")
        assert provider.page_exists("NewName")
        assert provider.get_page_text("NewName", LATEST_VERSION) == "content"

    def test_move_onto_existing_page_fails(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Source", "source text")
        provider.put_page_text("Target", "target text")
        with pytest.raises(ProviderError):
            provider.move_page("Source", "Target")
        assert provider.get_page_text("Source", LATEST_VERSION) == "source text"
        assert provider.get_page_text("Target", LATEST_VERSION) == "target text"
        assert len(provider.get_version_history("Source")) == 1
        assert len(provider.get_version_history("Target")) == 1

    def test_find_pages(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Fruit", "An orange a day")
        provider.put_page_text("Vegetables", "Carrots and peas")
        results = provider.find_pages([QueryItem(word="orange")])
        assert len(results) == 1
        assert isinstance(results[0], SearchResult)
        assert results[0].page.name == "Fruit"

    def test_find_pages_is_case_sensitive(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Fruit", "An orange a day")
        assert provider.find_pages([QueryItem(word="Orange")]) == []

    def test_find_pages_uses_first_term(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Fruit", "An orange a day")
        provider.put_page_text("Vegetables", "Carrots and peas")
        results = provider.find_pages(["Carrots", "orange"])
        assert [r.page.name for r in results] == ["Vegetables"]

    def test_find_pages_empty_query(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Fruit", "An orange a day")
        assert provider.find_pages([]) == []

    def test_find_pages_skips_deleted(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Fruit", "An orange a day")
        provider.delete_page("Fruit")
        assert provider.find_pages(["orange"]) == []

    def test_find_pages_matches_wildcards_literally(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Sale", "Take 5% off")
        provider.put_page_text("Rate", "About 50 off")
        provider.put_page_text("Snake", "snake_case names")
        provider.put_page_text("Plain", "snakeXcase names!")
        assert [r.page.name for r in provider.find_pages(["5%"])] == ["Sale"]
        assert [r.page.name for r in provider.find_pages(["snake_case"])] == ["Snake"]
        assert [r.page.name for r in provider.find_pages(["names!"])] == ["Plain"]

    def test_all_pages_and_count(self, provider: SQLPageProvider) -> None:
        for name in ("Alpha", "Beta", "Gamma"):
            provider.put_page_text(name, f"{name} text")
        provider.put_page_text("Alpha", "Alpha again")
        provider.delete_page("Gamma")
        pages = provider.get_all_pages()
        assert [p.name for p in pages] == ["Alpha", "Beta"]
        assert provider.get_page_count() == 2

    def test_all_pages_report_latest(self, versioned_provider: SQLPageProvider) -> None:
        versioned_provider.put_page_text("Alpha", "one")
        versioned_provider.put_page_text("Alpha", "two")
        (page,) = versioned_provider.get_all_pages()
        assert page.version == 2
        assert page.size == len("two")

    def test_changed_since_datetime(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Recent", "fresh")
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        future = datetime.now(timezone.utc) + timedelta(days=1)
        assert [p.name for p in provider.get_all_changed_since(past)] == ["Recent"]
        assert provider.get_all_changed_since(future) == []

    def test_changed_since_naive_and_millis(self, provider: SQLPageProvider) -> None:
        provider.put_page_text("Recent", "fresh")
        assert len(provider.get_all_changed_since(datetime(2000, 1, 1))) == 1
        assert len(provider.get_all_changed_since(0)) == 1


# =========================================================================
# Versioned stores
# =========================================================================


class TestVersioned:
    def test_versions_are_gapless(self, versioned_provider: SQLPageProvider) -> None:
        versions = [versioned_provider.put_page_text("Counter", f"v{i}") for i in range(1, 6)]
        assert versions == [1, 2, 3, 4, 5]
        assert versioned_provider.find_latest_version("Counter") == 5

    def test_history_most_recent_first(self, versioned_provider: SQLPageProvider) -> None:
        for text in ("v1", "v2", "v3"):
            versioned_provider.put_page_text("VersionedPage", text)
        history = versioned_provider.get_version_history("VersionedPage")
        assert [h.version for h in history] == [3, 2, 1]
        texts = [versioned_provider.get_page_text("VersionedPage", h.version) for h in history]
        assert texts == ["v3", "v2", "v1"]

    def test_latest_resolves_minus_one(self, versioned_provider: SQLPageProvider) -> None:
        versioned_provider.put_page_text("Page", "old")
        versioned_provider.put_page_text("Page", "new")
        assert versioned_provider.get_page_text("Page", LATEST_VERSION) == "new"
        assert versioned_provider.get_page_text("Page", 1) == "old"
        assert versioned_provider.get_page_info("Page", LATEST_VERSION).version == 2

    def test_page_exists_with_version(self, versioned_provider: SQLPageProvider) -> None:
        versioned_provider.put_page_text("Page", "one")
        assert versioned_provider.page_exists("Page", 1)
        assert not versioned_provider.page_exists("Page", 2)

    def test_delete_latest_version(self, versioned_provider: SQLPageProvider) -> None:
        for text in ("v1", "v2", "v3"):
            versioned_provider.put_page_text("VersionedPage", text)
        latest = versioned_provider.find_latest_version("VersionedPage")
        versioned_provider.delete_version("VersionedPage", latest)

        history = versioned_provider.get_version_history("VersionedPage")
        assert [h.version for h in history] == [2, 1]
        assert versioned_provider.get_page_text("VersionedPage", 1) == "v1"
        assert versioned_provider.get_page_text("VersionedPage", 2) == "v2"
        assert versioned_provider.get_page_text("VersionedPage", 3) is None

    def test_deleted_version_number_not_reused(self, versioned_provider: SQLPageProvider) -> None:
        for text in ("v1", "v2", "v3"):
            versioned_provider.put_page_text("Page", text)
        versioned_provider.delete_version("Page", 3)
        assert versioned_provider.put_page_text("Page", "v4") == 4

    def test_delete_middle_version_leaves_gap(self, versioned_provider: SQLPageProvider) -> None:
        for text in ("v1", "v2", "v3"):
            versioned_provider.put_page_text("Page", text)
        versioned_provider.delete_version("Page", 2)
        history = versioned_provider.get_version_history("Page")
        assert [h.version for h in history] == [3, 1]

    def test_put_after_delete_continues_numbering(self, versioned_provider: SQLPageProvider) -> None:
        versioned_provider.put_page_text("Phoenix", "one")
        versioned_provider.delete_page("Phoenix")
        assert versioned_provider.put_page_text("Phoenix", "two") == 2
        assert [h.version for h in versioned_provider.get_version_history("Phoenix")] == [2]

    def test_move_keeps_history(self, versioned_provider: SQLPageProvider) -> None:
        versioned_provider.put_page_text("OldName", "one")
        versioned_provider.put_page_text("OldName", "two")
        versioned_provider.move_page("OldName", "NewName")
        assert [h.version for h in versioned_provider.get_version_history("NewName")] == [2, 1]
        assert versioned_provider.get_version_history("OldName") == []


# =========================================================================
# Unversioned stores
# =========================================================================


class TestUnversioned:
    def test_put_returns_sentinel(self, unversioned_provider: SQLPageProvider) -> None:
        assert unversioned_provider.put_page_text("Page", "one") == LATEST_VERSION
        assert unversioned_provider.put_page_text("Page", "two") == LATEST_VERSION

    def test_second_put_updates_in_place(self, unversioned_provider: SQLPageProvider) -> None:
        unversioned_provider.put_page_text("Page", "one", author="alice")
        unversioned_provider.put_page_text("Page", "two", author="bob")
        history = unversioned_provider.get_version_history("Page")
        assert len(history) == 1
        assert history[0].version == LATEST_VERSION
        assert history[0].author == "bob"
        assert unversioned_provider.get_page_text("Page", LATEST_VERSION) == "two"

    def test_history_always_single(self, unversioned_provider: SQLPageProvider) -> None:
        for i in range(4):
            unversioned_provider.put_page_text("Page", f"edit {i}")
            assert len(unversioned_provider.get_version_history("Page")) == 1

    def test_single_row_stored(self, unversioned_provider: SQLPageProvider, db_path) -> None:
        unversioned_provider.put_page_text("Page", "one")
        unversioned_provider.put_page_text("Page", "two")
        conn = sqlite3.connect(str(db_path))
        try:
            (rows,) = conn.execute("SELECT COUNT(*) FROM jspwiki WHERE wikiname = 'Page'").fetchone()
        finally:
            conn.close()
        assert rows == 1

    def test_latest_version_is_sentinel(self, unversioned_provider: SQLPageProvider) -> None:
        unversioned_provider.put_page_text("Page", "one")
        assert unversioned_provider.find_latest_version("Page") == LATEST_VERSION


# =========================================================================
# Result limits
# =========================================================================


class TestMaxResults:
    @pytest.fixture
    def names(self) -> list[str]:
        return ["Alpha", "Beta", "Gamma"]

    def test_limit_applies(self, make_provider, names: list[str]) -> None:
        provider = make_provider(extra={Props.MAXRESULTS: "2"})
        for name in names:
            provider.put_page_text(name, "shared word")
        assert [p.name for p in provider.get_all_pages()] == ["Alpha", "Beta"]
        assert len(provider.find_pages(["shared"])) == 2
        assert provider.get_page_count() == 3

    def test_zero_means_unlimited(self, make_provider, names: list[str]) -> None:
        provider = make_provider(extra={Props.MAXRESULTS: "0"})
        for name in names:
            provider.put_page_text(name, "shared word")
        assert len(provider.get_all_pages()) == 3


# =========================================================================
# Failures
# =========================================================================


class TestFailures:
    def test_reads_are_quiet_by_default(self, make_provider, drop_table) -> None:
        provider = make_provider()
        provider.put_page_text("FrontPage", "Welcome")
        drop_table()
        assert provider.get_page_text("FrontPage", 1) is None
        assert provider.get_page_info("FrontPage", 1) is None
        assert provider.page_exists("FrontPage") is False
        assert provider.find_latest_version("FrontPage") == LATEST_VERSION
        assert provider.get_version_history("FrontPage") == []
        assert provider.get_all_pages() == []
        assert provider.find_pages(["Welcome"]) == []
        assert provider.get_page_count() == 0

    def test_strict_reads_raise(self, make_provider, drop_table) -> None:
        provider = make_provider(extra={Props.STRICT_READS: "true"})
        provider.put_page_text("FrontPage", "Welcome")
        drop_table()
        with pytest.raises(ProviderError) as exc_info:
            provider.get_page_text("FrontPage", 1)
        assert "jspwiki" in exc_info.value.sql
        with pytest.raises(ProviderError):
            provider.get_page_count()

    def test_write_failure_carries_sql(self, make_provider, drop_table) -> None:
        provider = make_provider()
        drop_table()
        with pytest.raises(ProviderError) as exc_info:
            provider.put_page_text("FrontPage", "Welcome")
        error = exc_info.value
        assert "jspwiki" in error.sql
        assert isinstance(error.__cause__, sqlite3.Error)
        assert error.context.page == "FrontPage"

    def test_delete_failure_raises(self, make_provider, drop_table) -> None:
        provider = make_provider()
        drop_table()
        with pytest.raises(ProviderError) as exc_info:
            provider.delete_page("FrontPage")
        assert exc_info.value.sql.startswith("UPDATE jspwiki")

    def test_duplicate_version_rejected_by_index(self, make_provider, db_path) -> None:
        provider = make_provider()
        provider.put_page_text("Race", "mine")
        conn = sqlite3.connect(str(db_path))
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO jspwiki (wikiname, wikiversion, wikitext, wikistatus, "
                    "wikilastmodified) VALUES ('Race', 1, 'theirs', 'AC', 0)"
                )
        finally:
            conn.close()
        assert provider.get_page_text("Race", 1) == "mine"

    def test_concurrent_writer_surfaces_provider_error(self, make_provider, monkeypatch) -> None:
        first = make_provider()
        second = make_provider()
        first.put_page_text("Race", "v1")

        original = _TrackedCursor.fetchone
        raced: list[str] = []

        def fetchone(cursor: _TrackedCursor):
            row = original(cursor)
            if not raced and cursor.sql and cursor.sql.startswith("SELECT MAX"):
                raced.append(cursor.sql)
                assert second.put_page_text("Race", "theirs") == 2
            return row

        monkeypatch.setattr(_TrackedCursor, "fetchone", fetchone)
        with pytest.raises(ProviderError) as exc_info:
            first.put_page_text("Race", "mine")

        assert raced
        assert exc_info.value.sql.startswith("INSERT INTO jspwiki")
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
        assert first.get_page_text("Race", LATEST_VERSION) == "theirs"
        assert [info.version for info in first.get_version_history("Race")] == [2, 1]
