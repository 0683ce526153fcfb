"""Shared helpers for CLI commands."""

from __future__ import annotations

import asyncio
import sys
from typing import Any, Awaitable, TypeVar

import click

from icebreaker.errors import DecodeError, IcebreakerError
from icebreaker.models import EndpointId

_T = TypeVar("_T")


def run(awaitable: Awaitable[_T]) -> _T:
    """Run a coroutine to completion, turning library errors into exit 1."""
    try:
        return asyncio.run(_await(awaitable))
    except (IcebreakerError, OSError) as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


async def _await(awaitable: Awaitable[_T]) -> _T:
    return await awaitable


def parse_endpoint(raw: str) -> EndpointId:
    """Accept ``author/name`` for hub models or an endpoint key.

    Endpoint keys look like ``local:author/name`` or
    ``remote:NanoGPT:author/name``.
    """
    if raw.startswith(("local:", "remote:")):
        try:
            return EndpointId.from_key(raw)
        except DecodeError as exc:
            raise click.BadParameter(str(exc)) from exc
    return EndpointId.local(raw)


def echo_table(rows: list[tuple[Any, ...]]) -> None:
    """Print rows as left-aligned columns."""
    if not rows:
        return
    widths = [max(len(str(row[i])) for row in rows) for i in range(len(rows[0]))]
    for row in rows:
        cells = [str(cell).ljust(width) for cell, width in zip(row, widths)]
        click.echo("  " + "  ".join(cells).rstrip())
