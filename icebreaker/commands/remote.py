"""Remote provider commands: provider add/remove/models, install, status."""

from __future__ import annotations

import sys
from typing import Optional

import click

from icebreaker import providers
from icebreaker.cli_helpers import echo_table, parse_endpoint, run
from icebreaker.library import Library, check_statuses
from icebreaker.models import APIAccess, APIType, ModelOnline, OpenAIConfig
from icebreaker.settings import Settings
from icebreaker.transfer import install_descriptor


def register(cli: click.Group) -> None:
    cli.add_command(provider)
    cli.add_command(install)
    cli.add_command(status)


@click.group()
def provider() -> None:
    """Configure remote inference providers."""


@provider.command("add")
@click.argument("kind")
@click.option("--api-key", required=True, help="Provider API key.")
@click.option("--api-base", default=None, help="Override the provider base URL.")
@click.pass_obj
def provider_add(
    settings: Settings, kind: str, api_key: str, api_base: Optional[str]
) -> None:
    """Store credentials for provider KIND (e.g. nanogpt)."""
    access = APIAccess(
        kind=_parse_kind(kind),
        openai_compat=OpenAIConfig(api_base=api_base, api_key=api_key),
    )

    async def _add() -> Library:
        library = await Library.scan(settings)
        return await library.with_api_source(access).save_bookmarks(settings)

    run(_add())
    click.echo(f"  Configured {access.kind.value}")


@provider.command("remove")
@click.argument("kind")
@click.pass_obj
def provider_remove(settings: Settings, kind: str) -> None:
    """Forget the credentials of provider KIND."""
    api_type = _parse_kind(kind)

    async def _remove() -> Library:
        library = await Library.scan(settings)
        return await library.without_api_source(api_type).save_bookmarks(settings)

    run(_remove())
    click.echo(f"  Removed {api_type.value}")


@provider.command("models")
@click.pass_obj
def provider_models(settings: Settings) -> None:
    """List models offered by the configured providers."""

    async def _list() -> dict:
        library = await Library.scan(settings)
        return await providers.list_provider_models(library.api_src)

    models = run(_list())
    if not models:
        click.echo("  No providers configured. Add one with `icebreaker provider add`.")
        return
    rows = []
    for endpoint_id, model in sorted(models.items(), key=lambda kv: kv[0].key()):
        if model.cost is None:
            price = "-"
        else:
            price = f"${model.cost.prompt} / ${model.cost.completion} per 1M"
        rows.append((endpoint_id.key(), price))
    echo_table(rows)


@click.command()
@click.argument("endpoint")
@click.pass_obj
def install(settings: Settings, endpoint: str) -> None:
    """Install a provider model (remote:<Kind>:<id>) into the library."""
    endpoint_id = parse_endpoint(endpoint)
    if not endpoint_id.is_remote:
        raise click.BadParameter("expected remote:<Kind>:<id>", param_hint="ENDPOINT")

    async def _install() -> str:
        library = await Library.scan(settings)
        offered = await providers.list_provider_models(library.api_src)
        model = offered.get(endpoint_id)
        if model is None:
            return ""
        path = await install_descriptor(model, library.directory)
        await library.with_api_model(model).save_bookmarks(settings)
        return str(path)

    path = run(_install())
    if not path:
        click.echo(f"Error: no configured provider offers {endpoint_id}", err=True)
        sys.exit(1)
    click.echo(click.style(f"  Installed {endpoint_id}: {path}", fg="green"))


@click.command()
@click.pass_obj
def status(settings: Settings) -> None:
    """Probe installed API models and bookmarks."""

    async def _probe() -> list[tuple[str, str]]:
        library = await Library.scan(settings)
        ids = list(library.bookmarks) + [m.endpoint_id for m in library.api_models()]
        await check_statuses(library, ids)
        return [
            (model.endpoint_id.key(), model.status.get().value)
            for model in library.api_models()
        ]

    rows = run(_probe())
    if not rows:
        click.echo("  No API models installed.")
        return
    echo_table(rows)


def _parse_kind(kind: str) -> APIType:
    try:
        return APIType.parse(kind)
    except ValueError as exc:
        choices = ", ".join(t.value for t in APIType)
        raise click.BadParameter(f"{exc} (choose from {choices})", param_hint="KIND")
