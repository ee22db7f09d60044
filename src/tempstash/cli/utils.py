"""
CLI utility helpers: stash construction and output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.table import Table

from tempstash.core.errors import StashError
from tempstash.core.settings import StashSettings
from tempstash.models import Record
from tempstash.stash import Stash

console = Console()
err_console = Console(stderr=True)


@contextmanager
def open_stash(url: str | None, settings: StashSettings) -> Iterator[Stash]:
    """Connect for the duration of one command; exit 1 on any stash error."""
    if not (url or settings.url):
        err_console.print("[bold red]Error[/bold red]: set TEMPSTASH_URL or pass --url")
        raise typer.Exit(code=1)
    try:
        with Stash.connect(url, settings=settings) as stash:
            yield stash
    except StashError as exc:
        fail(exc)


def fail(exc: StashError) -> None:
    err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
    raise typer.Exit(code=1)


def output_records(records: list[Record], *, as_json: bool = False, title: str = "Records") -> None:
    """Render records as a rich table, or JSON lines when *as_json*."""
    if as_json:
        console.print_json(json.dumps([r.to_dict() for r in records]))
        return

    if not records:
        console.print("[dim]No records.[/dim]")
        return

    table = Table(title=title)
    for column in ("created_at", "namespace", "name", "key", "id", "data"):
        table.add_column(column, overflow="fold")
    for r in records:
        preview = r.data if len(r.data) <= 80 else r.data[:77] + "..."
        table.add_row(r.created_at.isoformat(), r.namespace, r.name, r.key, r.id, preview)
    console.print(table)
