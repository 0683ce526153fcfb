"""Catalog commands: scan, search, details, files, readme, pull, bookmark, config."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from icebreaker import hub
from icebreaker.cli_helpers import echo_table, parse_endpoint, run
from icebreaker.library import Library
from icebreaker.models import File, Id, ModelOnline
from icebreaker.settings import Settings
from icebreaker.transfer import download


def register(cli: click.Group) -> None:
    cli.add_command(scan)
    cli.add_command(search)
    cli.add_command(details)
    cli.add_command(files)
    cli.add_command(readme)
    cli.add_command(pull)
    cli.add_command(bookmark)
    cli.add_command(config_cmd)


@click.command()
@click.pass_obj
def scan(settings: Settings) -> None:
    """List the models in the library."""
    library = run(Library.scan(settings))
    click.echo(f"Library: {library.directory}")
    if not library.files:
        click.echo("  No models yet. Find some with `icebreaker search`.")
        return
    rows = []
    for endpoint_id, entry in sorted(library.files.items(), key=lambda kv: kv[0].key()):
        mark = "*" if library.is_bookmarked(endpoint_id) else " "
        if isinstance(entry, File):
            rows.append((mark, endpoint_id.key(), entry.name, entry.size_display))
        else:
            rows.append((mark, endpoint_id.key(), "api", entry.status.get().value))
    echo_table(rows)


@click.command()
@click.argument("query", default="")
@click.option("--limit", "-n", default=20, show_default=True, help="Results to show.")
def search(query: str, limit: int) -> None:
    """Search the hub for GGUF text-generation models."""
    models = run(hub.search(query))
    if not models:
        click.echo("  No models found.")
        return
    echo_table(
        [
            (m.id, m.downloads_display, m.likes, m.last_modified.date().isoformat())
            for m in models[:limit]
        ]
    )


@click.command()
@click.argument("model_id")
def details(model_id: str) -> None:
    """Show hub metadata of MODEL_ID."""
    endpoint_id = parse_endpoint(model_id)
    if not endpoint_id.is_local:
        raise click.BadParameter("details are only available for hub models", param_hint="MODEL_ID")
    info = run(hub.fetch_details(endpoint_id))
    click.echo(f"  Architecture: {info.architecture or 'unknown'}")
    click.echo(f"  Parameters:   {info.parameters_display}")
    click.echo(f"  Downloads:    {info.downloads}")
    click.echo(f"  Likes:        {info.likes}")
    click.echo(f"  Updated:      {info.last_modified.isoformat()}")


@click.command()
@click.argument("model_id")
def files(model_id: str) -> None:
    """List the weight files of MODEL_ID by precision."""
    groups = run(hub.list_files(Id(model_id)))
    if not groups:
        click.echo("  No GGUF files found.")
        return
    for bits, variants in groups.items():
        click.secho(f"  {bits}", bold=True)
        for file in variants:
            click.echo(f"    {file.name}  ({file.size_display})")


@click.command()
@click.argument("model_id")
def readme(model_id: str) -> None:
    """Print the README of MODEL_ID."""
    click.echo(run(hub.fetch_readme(Id(model_id))).markdown)


async def _pull(settings: Settings, model_id: str, filename: str) -> Optional[str]:
    groups = await hub.list_files(Id(model_id))
    match = next(
        (f for variants in groups.values() for f in variants if f.name == filename),
        None,
    )
    if match is None:
        return None

    transfer = download(
        match, settings.library, legacy_directory=settings.legacy_directory
    )
    with click.progressbar(length=match.size or 0, label=f"  {filename}") as bar:
        seen = 0
        async for progress in transfer:
            bar.update(progress.downloaded - seen)
            seen = progress.downloaded
    path = await transfer
    return str(path)


@click.command()
@click.argument("model_id")
@click.argument("filename")
@click.pass_obj
def pull(settings: Settings, model_id: str, filename: str) -> None:
    """Download FILENAME of MODEL_ID into the library."""
    path = run(_pull(settings, model_id, filename))
    if path is None:
        click.echo(f"Error: {model_id} has no GGUF file named {filename}", err=True)
        sys.exit(1)
    click.echo(click.style(f"\n  Done: {path}", fg="green"))


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------


@click.group()
def bookmark() -> None:
    """Manage bookmarked models."""


@bookmark.command("add")
@click.argument("endpoint")
@click.pass_obj
def bookmark_add(settings: Settings, endpoint: str) -> None:
    """Bookmark ENDPOINT (author/name or an endpoint key)."""
    endpoint_id = parse_endpoint(endpoint)

    async def _add() -> Library:
        library = await Library.scan(settings)
        return await library.with_bookmark(endpoint_id).save_bookmarks(settings)

    run(_add())
    click.echo(f"  Bookmarked {endpoint_id}")


@bookmark.command("remove")
@click.argument("endpoint")
@click.pass_obj
def bookmark_remove(settings: Settings, endpoint: str) -> None:
    """Remove the bookmark on ENDPOINT."""
    endpoint_id = parse_endpoint(endpoint)

    async def _remove() -> Library:
        library = await Library.scan(settings)
        return await library.without_bookmark(endpoint_id).save_bookmarks(settings)

    run(_remove())
    click.echo(f"  Removed bookmark {endpoint_id}")


@bookmark.command("list")
@click.pass_obj
def bookmark_list(settings: Settings) -> None:
    """List bookmarks in the order they were added."""
    library = run(Library.scan(settings))
    if not library.bookmarks:
        click.echo("  No bookmarks.")
        return
    rows = []
    for endpoint_id, entry in library.bookmarked_entries():
        if entry is None:
            state = "not installed"
        elif isinstance(entry, ModelOnline):
            state = "api"
        else:
            state = entry.name
        rows.append((endpoint_id.key(), state))
    echo_table(rows)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@click.command("config")
@click.option("--library", "library_dir", type=click.Path(path_type=Path), default=None,
              help="Set the library root.")
@click.pass_obj
def config_cmd(settings: Settings, library_dir: Optional[Path]) -> None:
    """Show or change persisted settings."""
    if library_dir is not None:
        settings.library = library_dir.expanduser().resolve()
        settings.save()
        click.echo(f"  Library set to {settings.library}")
        return
    click.echo(f"  Library:   {settings.library}")
    click.echo(f"  Bookmarks: {settings.bookmarks()}")
    click.echo(f"  Legacy:    {settings.legacy_directory}")
