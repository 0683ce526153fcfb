"""Read-only client for the model hosting service.

Every call is a single request/response with no caching; callers that want
to keep results (the presentation layer) hold on to them themselves.

Usage::

    from icebreaker import hub

    models = await hub.search("llama")
    files = await hub.list_files(models[0].id)
    for bits, variants in files.items():
        print(bits, [f.name for f in variants])
"""

from __future__ import annotations

import contextlib
import logging
import os
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

import httpx

from icebreaker.errors import RemoteError
from icebreaker.models import (
    WEIGHT_EXTENSION,
    Bits,
    Details,
    EndpointId,
    File,
    HFModel,
    Id,
    Readme,
    group_by_bits,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HF_URL = "https://huggingface.co"
SEARCH_LIMIT = 100
DEFAULT_TIMEOUT = 30.0


def hf_url() -> str:
    """Base URL of the hosting service (``ICEBREAKER_HF_ENDPOINT`` overrides)."""
    return os.environ.get("ICEBREAKER_HF_ENDPOINT", HF_URL).rstrip("/")


def api_url() -> str:
    return f"{hf_url()}/api"


def download_url(file: File) -> str:
    """Direct download URL of a weight file."""
    return (
        f"{hf_url()}/{file.model.value}/resolve/main/"
        f"{quote(file.name)}?download=true"
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


@contextlib.asynccontextmanager
async def open_client(
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> AsyncIterator[httpx.AsyncClient]:
    """Yield ``client`` as-is, or a private client closed on exit."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
        yield owned


async def _get(
    client: httpx.AsyncClient,
    url: str,
    params: Any = None,
) -> httpx.Response:
    try:
        resp = await client.get(url, params=params)
    except httpx.HTTPError as exc:
        raise RemoteError(f"request to {url} failed: {exc}", url=url) from exc
    if resp.status_code >= 400:
        raise RemoteError(
            f"{url} answered HTTP {resp.status_code}",
            url=url,
            status_code=resp.status_code,
        )
    return resp


def _json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError as exc:
        raise RemoteError(
            f"unreadable response from {resp.request.url}", url=str(resp.request.url)
        ) from exc


def parse_timestamp(raw: Any) -> datetime:
    """Parse the hosting service's ISO-8601 timestamps (``...Z``)."""
    if not isinstance(raw, str):
        raise ValueError(f"not a timestamp: {raw!r}")
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def is_gated(raw: Any) -> bool:
    """Whether a ``gated`` field marks the model as access-gated.

    The field is either a boolean or a string such as ``"auto"`` or
    ``"manual"``.  Only ``True`` counts as gated.
    """
    return raw is True


def _count(entry: dict[str, Any], key: str) -> int:
    value = entry.get(key, 0)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValueError(f"field {key!r} is not an integer")
    return value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def search(
    query: str, client: Optional[httpx.AsyncClient] = None
) -> list[HFModel]:
    """Search text-generation GGUF models matching ``query``."""
    params = [
        ("search", query),
        ("filter", "text-generation"),
        ("filter", "gguf"),
        ("limit", str(SEARCH_LIMIT)),
        ("full", "true"),
    ]
    url = f"{api_url()}/models"
    async with open_client(client) as http:
        data = _json(await _get(http, url, params=params))

    if not isinstance(data, list):
        raise RemoteError("search response is not a list", url=url)

    models: list[HFModel] = []
    try:
        for entry in data:
            if is_gated(entry.get("gated", False)):
                continue
            models.append(
                HFModel(
                    id=Id(str(entry["id"])),
                    last_modified=parse_timestamp(entry["lastModified"]),
                    downloads=_count(entry, "downloads"),
                    likes=_count(entry, "likes"),
                )
            )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise RemoteError(f"malformed search result: {exc}", url=url) from exc

    logger.debug("search %r returned %d models", query, len(models))
    return models


async def list_models(client: Optional[httpx.AsyncClient] = None) -> list[HFModel]:
    """Most relevant models with no search term."""
    return await search("", client=client)


async def fetch_details(
    endpoint_id: EndpointId, client: Optional[httpx.AsyncClient] = None
) -> Details:
    """Fetch metadata of a hub-hosted model.

    Only local endpoints name hub repositories; routing a remote endpoint
    here is a caller bug and raises ``ValueError`` before any request.
    """
    if not endpoint_id.is_local:
        raise ValueError(f"details are only available for hub models, got {endpoint_id}")

    url = f"{api_url()}/models/{endpoint_id.slash_id().value}"
    async with open_client(client) as http:
        data = _json(await _get(http, url))

    try:
        gguf = data["gguf"]
        architecture = gguf.get("architecture")
        total = gguf["total"]
        if not isinstance(total, int) or isinstance(total, bool):
            raise ValueError("gguf.total is not an integer")
        return Details(
            last_modified=parse_timestamp(data["lastModified"]),
            downloads=_count(data, "downloads"),
            likes=_count(data, "likes"),
            architecture=architecture if isinstance(architecture, str) else None,
            parameters=total,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise RemoteError(f"malformed model details: {exc}", url=url) from exc


async def list_files(
    id: Id, client: Optional[httpx.AsyncClient] = None
) -> dict[Bits, list[File]]:
    """List a repository's weight files grouped by bit width."""
    url = f"{api_url()}/models/{id.value}/tree/main"
    async with open_client(client) as http:
        data = _json(await _get(http, url))

    if not isinstance(data, list):
        raise RemoteError("file tree response is not a list", url=url)

    files: list[File] = []
    try:
        for entry in data:
            path = entry["path"]
            if entry.get("type") != "file" or not path.endswith(WEIGHT_EXTENSION):
                continue
            size = entry.get("size")
            files.append(
                File(model=id, name=path, size=size if isinstance(size, int) else None)
            )
    except (KeyError, TypeError, AttributeError) as exc:
        raise RemoteError(f"malformed file tree entry: {exc}", url=url) from exc

    return group_by_bits(files)


async def fetch_readme(id: Id, client: Optional[httpx.AsyncClient] = None) -> Readme:
    """Fetch the repository README as markdown text."""
    url = f"{hf_url()}/{id.value}/raw/main/README.md"
    async with open_client(client) as http:
        resp = await _get(http, url)
    return Readme(markdown=resp.text)
