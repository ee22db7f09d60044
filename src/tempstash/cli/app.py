"""
Root Typer application for the ``tempstash`` CLI.

    tempstash put NAMESPACE --key K --data '{"a": 1}'
    tempstash query --namespace NAMESPACE --since-minutes 10
    tempstash drop NAMESPACE --yes
    tempstash demo
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import typer
from rich.markup import escape

from tempstash.cli.utils import console, err_console, open_stash, output_records
from tempstash.core.logging import configure_logging
from tempstash.core.settings import StashSettings, get_settings
from tempstash.core.timestamps import utc_now
from tempstash.models import QueryFilter, StashedItem

app = typer.Typer(
    name="tempstash",
    help="tempstash: namespaced scratch storage in a relational backend.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        from tempstash import __version__

        typer.echo(f"tempstash {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    url: str | None = typer.Option(None, "--url", "-u", help="Database URL (default: $TEMPSTASH_URL)."),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Stash, query and drop namespaced payloads."""
    try:
        settings = StashSettings(log_level=log_level) if log_level else get_settings()
    except ValueError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    ctx.obj = {"url": url, "settings": settings}


@app.command()
def put(
    ctx: typer.Context,
    namespace: str = typer.Argument(..., help="Target namespace."),
    name: str = typer.Option("", "--name", "-n", help="Free-form label."),
    key: str = typer.Option("", "--key", "-k", help="Lookup key."),
    data: str | None = typer.Option(None, "--data", help="Payload text."),
    file: Path | None = typer.Option(None, "--file", "-f", exists=True, dir_okay=False, help="Read payload from file."),
) -> None:
    """Store one payload and print its id."""
    if (data is None) == (file is None):
        err_console.print("[bold red]Error[/bold red]: pass exactly one of --data or --file")
        raise typer.Exit(code=2)

    payload = data if data is not None else file.read_text(encoding="utf-8")
    with open_stash(ctx.obj["url"], ctx.obj["settings"]) as stash:
        record_id = stash.put_sync(StashedItem(namespace=namespace, name=name, key=key, data=payload))
    console.print(record_id)


@app.command()
def query(
    ctx: typer.Context,
    namespace: str | None = typer.Option(None, "--namespace", "-n"),
    key: str | None = typer.Option(None, "--key", "-k"),
    since_minutes: float | None = typer.Option(None, "--since-minutes", min=0, help="Only records newer than N minutes."),
    limit: int = typer.Option(0, "--limit", "-l", help="Maximum rows (0 = default of 100)."),
    json_out: bool = typer.Option(False, "--json", help="JSON output."),
) -> None:
    """List records, newest first."""
    since = utc_now() - timedelta(minutes=since_minutes) if since_minutes is not None else None
    with open_stash(ctx.obj["url"], ctx.obj["settings"]) as stash:
        records = stash.query(QueryFilter(namespace=namespace, key=key, since=since, limit=limit))
    output_records(records, as_json=json_out, title=f"Records ({namespace or 'all namespaces'})")


@app.command()
def drop(
    ctx: typer.Context,
    namespace: str | None = typer.Argument(None, help="Namespace to delete."),
    all_: bool = typer.Option(False, "--all", help="Delete every record in the store."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a namespace, or everything with --all."""
    if not namespace and not all_:
        err_console.print("[bold red]Error[/bold red]: give a NAMESPACE or --all")
        raise typer.Exit(code=2)
    if namespace and all_:
        err_console.print("[bold red]Error[/bold red]: NAMESPACE and --all are exclusive")
        raise typer.Exit(code=2)

    target = "every record" if all_ else f"namespace {namespace!r}"
    if not yes:
        typer.confirm(f"Delete {target}?", abort=True)

    with open_stash(ctx.obj["url"], ctx.obj["settings"]) as stash:
        deleted = stash.drop(None if all_ else namespace)
    console.print(f"Deleted {deleted} record(s).")


@app.command()
def demo(
    ctx: typer.Context,
    file: Path = typer.Option(
        Path(__file__), "--file", "-f", exists=True, dir_okay=False, help="File to stash (default: this module)."
    ),
) -> None:
    """Stash a file into namespace 'examples' and read back the last minute."""
    item = StashedItem(namespace="examples", name="self-stash", key=file.name, data=file.read_text(encoding="utf-8"))
    with open_stash(ctx.obj["url"], ctx.obj["settings"]) as stash:
        record_id = stash.put_sync(item)
        console.print(f"stashed: {record_id}")
        records = stash.query(QueryFilter(namespace="examples", since=utc_now() - timedelta(minutes=1)))

    for r in records:
        console.rule(escape(f"{r.name} [{r.key}] {r.created_at.isoformat(timespec='seconds')}"))
        console.print(r.data, markup=False, highlight=False)
