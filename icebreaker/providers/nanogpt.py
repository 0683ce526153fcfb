"""NanoGPT provider adapter.

NanoGPT exposes an OpenAI-style ``GET /models`` listing.  With
``detailed=true`` each entry carries ``pricing.prompt`` and
``pricing.completion`` in USD per million tokens.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from icebreaker.errors import ConfigurationError, RemoteError
from icebreaker.models import (
    APIAccess,
    APIType,
    Cost,
    EndpointId,
    ModelOnline,
    Quantity,
)

from .base import ProviderAdapter, bearer_headers

logger = logging.getLogger(__name__)

NANOGPT_API_BASE = "https://nano-gpt.com/api/v1"


def _cost(pricing: Any) -> Optional[Cost]:
    if not isinstance(pricing, dict):
        return None
    prompt = pricing.get("prompt")
    completion = pricing.get("completion")
    if not isinstance(prompt, (int, float)) or not isinstance(completion, (int, float)):
        return None
    return Cost(
        prompt=Quantity.usd_per_1m(prompt),
        completion=Quantity.usd_per_1m(completion),
    )


class NanoGPTProvider(ProviderAdapter):
    """List and probe models served by NanoGPT."""

    api_type = APIType.NanoGPT

    def _base_url(self, access: APIAccess) -> str:
        if access.openai_compat is None:
            raise ConfigurationError("NanoGPT provider needs an openai_compat config")
        return (access.openai_compat.api_base or NANOGPT_API_BASE).rstrip("/")

    async def list_models(
        self, access: APIAccess, client: httpx.AsyncClient
    ) -> list[ModelOnline]:
        url = f"{self._base_url(access)}/models"
        assert access.openai_compat is not None
        headers = bearer_headers(access.openai_compat.api_key)
        try:
            resp = await client.get(url, params={"detailed": "true"}, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteError(f"request to {url} failed: {exc}", url=url) from exc
        if resp.status_code >= 400:
            raise RemoteError(
                f"{url} answered HTTP {resp.status_code}",
                url=url,
                status_code=resp.status_code,
            )

        try:
            entries = resp.json()["data"]
            models = [
                ModelOnline(
                    endpoint_id=EndpointId.remote(APIType.NanoGPT, str(entry["id"])),
                    config=access,
                    cost=_cost(entry.get("pricing")),
                )
                for entry in entries
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise RemoteError(f"malformed model listing from {url}: {exc}", url=url) from exc

        logger.debug("NanoGPT lists %d models", len(models))
        return models
