"""Page records, statuses and search types exchanged with the wiki engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Versioned reads use this to mean "whatever is newest"; unversioned stores
# keep their single row under it.
LATEST_VERSION = -1

DEFAULT_CHANGE_NOTE = "new page"

# ── Column names ─────────────────────────────────────────────────────────

COL_ID = "wikiid"
COL_NAME = "wikiname"
COL_VERSION = "wikiversion"
COL_TEXT = "wikitext"
COL_AUTHOR = "wikiauthor"
COL_CHANGE_NOTE = "wikichangenote"
COL_LAST_MODIFIED = "wikilastmodified"
COL_STATUS = "wikistatus"


class PageStatus(str, Enum):
    """Lifecycle state of one stored page version."""

    ACTIVE = "AC"
    DELETED = "DL"


@dataclass
class PageInfo:
    """Metadata about one page version, without its text."""

    name: str
    version: int
    author: str | None = None
    size: int = 0
    change_note: str | None = None
    last_modified: int = 0

    @property
    def last_modified_at(self) -> datetime:
        """``last_modified`` as an aware UTC datetime."""
        return datetime.fromtimestamp(self.last_modified / 1000, tz=timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_modified_at"] = self.last_modified_at.isoformat()
        return data


class QueryItemType(str, Enum):
    REQUIRED = "REQUIRED"
    REQUESTED = "REQUESTED"
    FORBIDDEN = "FORBIDDEN"


@dataclass(frozen=True)
class QueryItem:
    """One search term. Only the word of the first item is used."""

    word: str
    type: QueryItemType = QueryItemType.REQUIRED


@dataclass(frozen=True)
class SearchResult:
    """A page matched by :meth:`SQLPageProvider.find_pages`."""

    page: PageInfo
    score: int = 1
    contexts: tuple[str, ...] = field(default_factory=tuple)


__all__ = [
    "LATEST_VERSION",
    "DEFAULT_CHANGE_NOTE",
    "COL_ID",
    "COL_NAME",
    "COL_VERSION",
    "COL_TEXT",
    "COL_AUTHOR",
    "COL_CHANGE_NOTE",
    "COL_LAST_MODIFIED",
    "COL_STATUS",
    "PageStatus",
    "PageInfo",
    "QueryItemType",
    "QueryItem",
    "SearchResult",
]
