"""Remote inference providers.

Each configured provider type is served by one adapter.  Provider types
without an adapter fail loudly with ``ProviderNotImplementedError``; adapters
are added one provider at a time.

Usage::

    from icebreaker.providers import list_provider_models

    models = await list_provider_models(library.api_src)
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import httpx

from icebreaker.errors import ProviderNotImplementedError
from icebreaker.hub import open_client
from icebreaker.models import APIAccess, APIType, EndpointId, ModelOnline

from .base import ProviderAdapter
from .nanogpt import NanoGPTProvider

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 5.0

_ADAPTERS: dict[APIType, ProviderAdapter] = {
    APIType.NanoGPT: NanoGPTProvider(),
}


def get_adapter(api_type: APIType) -> ProviderAdapter:
    """Return the adapter for ``api_type``."""
    adapter = _ADAPTERS.get(api_type)
    if adapter is None:
        raise ProviderNotImplementedError(
            f"no adapter for {api_type.value} providers yet"
        )
    return adapter


async def list_provider_models(
    api_src: Mapping[APIType, APIAccess],
    client: Optional[httpx.AsyncClient] = None,
) -> dict[EndpointId, ModelOnline]:
    """List the models of every configured provider, keyed by endpoint."""
    result: dict[EndpointId, ModelOnline] = {}
    async with open_client(client) as http:
        for api_type, access in api_src.items():
            adapter = get_adapter(api_type)
            models = await adapter.list_models(access, http)
            logger.info("%s provides %d models", api_type.value, len(models))
            for model in models:
                result[model.endpoint_id] = model
    return result


async def probe(model: ModelOnline, client: Optional[httpx.AsyncClient] = None) -> bool:
    """Return True when the model's provider currently serves it."""
    adapter = get_adapter(model.config.kind)
    async with open_client(client, timeout=PROBE_TIMEOUT) as http:
        return await adapter.probe(model.config, model, http)


__all__ = [
    "NanoGPTProvider",
    "ProviderAdapter",
    "get_adapter",
    "list_provider_models",
    "probe",
]
