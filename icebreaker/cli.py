"""
Icebreaker command-line interface.

Usage::

    icebreaker scan
    icebreaker search llama --limit 10
    icebreaker files bartowski/Llama-3.2-3B-Instruct-GGUF
    icebreaker pull bartowski/Llama-3.2-3B-Instruct-GGUF Llama-3.2-3B-Instruct-Q4_K_M.gguf
    icebreaker bookmark add bartowski/Llama-3.2-3B-Instruct-GGUF
    icebreaker provider add nanogpt --api-key sk-...
    icebreaker provider models
    icebreaker install remote:NanoGPT:openai/gpt-4o-mini
    icebreaker status
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click

from icebreaker import __version__
from icebreaker.settings import Settings


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="icebreaker")
@click.option("--library", type=click.Path(path_type=Path), default=None,
              help="Library root (default: from settings).")
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr.")
@click.pass_context
def main(ctx: click.Context, library: Optional[Path], verbose: bool) -> None:
    """Icebreaker: browse, bookmark and download GGUF models."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.fetch()
    if library is not None:
        settings.library = library
    ctx.obj = settings


# ---------------------------------------------------------------------------
# Register command modules
# ---------------------------------------------------------------------------

from icebreaker.commands import catalog, remote  # noqa: E402

for _mod in [catalog, remote]:
    _mod.register(main)
