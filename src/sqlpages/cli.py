"""
Command-line interface for the page store.

Properties come from ``SQLPAGES_*`` environment variables / ``.env``
(:class:`~sqlpages.config.PageStoreSettings`) and can be overridden per call
with repeated ``--prop key=value``::

    sqlpages --prop db.url=sqlite:///wiki.db init
    sqlpages --prop db.url=sqlite:///wiki.db put FrontPage --text "Welcome"
    sqlpages --prop db.url=sqlite:///wiki.db history FrontPage --json

Exit codes: ``2`` for configuration errors (the message names the key),
``1`` for database / provider errors and missing pages.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from sqlpages.config import PageStoreSettings
from sqlpages.dialect import list_dialects
from sqlpages.errors import ConfigError, NoRequiredPropertyError, SQLPagesError
from sqlpages.logging import LogContext, configure_logging, get_logger
from sqlpages.models import LATEST_VERSION, PageInfo
from sqlpages.provider import SQLPageProvider

logger = get_logger(__name__)

app = typer.Typer(
    name="sqlpages",
    help="sqlpages: versioned wiki page store on SQL databases.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("sqlpages")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"sqlpages {v}")
        raise typer.Exit()


def _parse_props(values: list[str]) -> dict[str, str]:
    props = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"expected key=value, got {item!r}", param_hint="--prop")
        props[key.strip()] = value
    return props


@app.callback()
def main(
    ctx: typer.Context,
    prop: list[str] | None = typer.Option(
        None,
        "--prop",
        "-p",
        help="Override a property, e.g. [cyan]db.url=sqlite:///wiki.db[/cyan]. Repeatable.",
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (default from settings)."),
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Inspect and edit a SQL-backed wiki page store."""
    settings = PageStoreSettings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
        service="sqlpages",
    )
    properties = settings.to_properties()
    properties.update(_parse_props(prop or []))
    ctx.obj = {"properties": properties}


# ── Helpers ──────────────────────────────────────────────────────────────


@contextmanager
def _provider(ctx: typer.Context) -> Iterator[SQLPageProvider]:
    """Initialized provider for one command; maps errors to exit codes."""
    provider = SQLPageProvider()
    with LogContext(command=ctx.info_name):
        try:
            provider.initialize(ctx.obj["properties"])
            yield provider
        except ConfigError as e:
            key = f" ({e.key})" if isinstance(e, NoRequiredPropertyError) else ""
            err_console.print(f"[bold red]Configuration error[/bold red]{key}: {e.message}")
            raise typer.Exit(code=2) from e
        except SQLPagesError as e:
            err_console.print(f"[bold red]Error[/bold red]: {e.message}")
            raise typer.Exit(code=1) from e
        finally:
            provider.close()


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _print_infos(infos: list[PageInfo], *, as_json: bool, title: str) -> None:
    if as_json:
        _echo_json([info.to_dict() for info in infos])
        return
    if not infos:
        console.print("[dim]No pages.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for column in ("name", "version", "author", "size", "change note", "last modified"):
        table.add_column(column, overflow="fold")
    for info in infos:
        table.add_row(
            info.name,
            str(info.version),
            info.author or "",
            str(info.size),
            info.change_note or "",
            info.last_modified_at.isoformat(timespec="seconds"),
        )
    console.print(table)


def _not_found(message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def init(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Validate configuration, create the page table and test the connection."""
    with _provider(ctx) as provider:
        if json_out:
            _echo_json({"initialized": True, "provider": provider.provider_info})
        else:
            console.print(f"[green]✓[/green] {provider.provider_info}")


@app.command()
def info(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show the active dialect, table and page count."""
    with _provider(ctx) as provider:
        data = {
            "provider": provider.provider_info,
            "dialect": provider.dialect.name,
            "table": provider.table_name,
            "versioning": provider.is_versioned,
            "pages": provider.get_page_count(),
        }
        if json_out:
            _echo_json(data)
            return
        for key, value in data.items():
            console.print(f"  [cyan]{key}[/cyan]: {value}")


@app.command()
def put(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Page name"),
    text: str | None = typer.Option(None, "--text", "-t", help="Page text"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Read page text from a file", exists=True, dir_okay=False),
    author: str | None = typer.Option(None, "--author", "-a"),
    note: str | None = typer.Option(None, "--note", "-n", help="Change note"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Save a new version of a page."""
    if (text is None) == (file is None):
        raise typer.BadParameter("give exactly one of --text or --file")
    body = text if text is not None else file.read_text(encoding="utf-8")
    with _provider(ctx) as provider:
        version = provider.put_page_text(name, body, author=author, change_note=note)
        if json_out:
            _echo_json({"name": name, "version": version})
        else:
            console.print(f"[green]✓[/green] Saved {name} (version {version})")


@app.command()
def get(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Page name"),
    version: int = typer.Option(LATEST_VERSION, "--version", "-v", help="Version (-1 = latest)"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Print the text of a page."""
    with _provider(ctx) as provider:
        page = provider.get_page_info(name, version)
        text = provider.get_page_text(name, version)
        if page is None or text is None:
            _not_found(f"Page {name} not found")
        if json_out:
            _echo_json({**page.to_dict(), "text": text})
        else:
            typer.echo(text)


@app.command()
def history(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Page name"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List the versions of a page, newest first."""
    with _provider(ctx) as provider:
        _print_infos(provider.get_version_history(name), as_json=json_out, title=f"History of {name}")


@app.command("list")
def list_pages(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List every live page."""
    with _provider(ctx) as provider:
        _print_infos(provider.get_all_pages(), as_json=json_out, title="Pages")


@app.command()
def search(
    ctx: typer.Context,
    term: str = typer.Argument(..., help="Text to look for"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Find pages whose text contains TERM."""
    with _provider(ctx) as provider:
        results = provider.find_pages([term])
        _print_infos([r.page for r in results], as_json=json_out, title=f"Pages containing {term!r}")


@app.command("changed-since")
def changed_since(
    ctx: typer.Context,
    since: str = typer.Argument(..., help="ISO-8601 timestamp (UTC when no offset is given)"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List pages saved at or after a point in time."""
    try:
        cutoff = datetime.fromisoformat(since)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="SINCE") from e
    with _provider(ctx) as provider:
        _print_infos(provider.get_all_changed_since(cutoff), as_json=json_out, title=f"Changed since {since}")


@app.command()
def delete(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Page name"),
    version: int | None = typer.Option(None, "--version", "-v", help="Delete only this version"),
) -> None:
    """Delete a page, or one version of it."""
    with _provider(ctx) as provider:
        if version is None:
            provider.delete_page(name)
            console.print(f"[green]✓[/green] Deleted {name}")
        else:
            provider.delete_version(name, version)
            console.print(f"[green]✓[/green] Deleted {name} version {version}")


@app.command()
def move(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Current page name"),
    destination: str = typer.Argument(..., help="New page name"),
) -> None:
    """Rename a page, all versions included."""
    with _provider(ctx) as provider:
        provider.move_page(source, destination)
        console.print(f"[green]✓[/green] Moved {source} → {destination}")


@app.command()
def count(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Print the number of live pages."""
    with _provider(ctx) as provider:
        total = provider.get_page_count()
        if json_out:
            _echo_json({"pages": total})
        else:
            typer.echo(str(total))


@app.command()
def dialects(
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """List the supported SQL dialects."""
    rows = [
        {
            "name": d.name,
            "driver": d.driver,
            "url_prefix": d.url_prefix,
            "validation_query": d.validation_query,
            "limiter": d.limiter.__name__,
        }
        for d in list_dialects()
    ]
    if json_out:
        _echo_json(rows)
        return
    table = Table(title="SQL dialects", pad_edge=False)
    for column in rows[0]:
        table.add_column(column, overflow="fold")
    for row in rows:
        table.add_row(*row.values())
    console.print(table)


__all__ = ["app"]
