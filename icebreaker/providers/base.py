"""Base class for remote inference provider adapters."""

from __future__ import annotations

from typing import Optional

import httpx

from icebreaker.models import APIAccess, APIType, ModelOnline


class ProviderAdapter:
    """Base class for provider adapters.

    Subclasses implement ``list_models()`` and may override ``probe()``.
    """

    api_type: APIType = APIType.OpenAICompatible

    async def list_models(
        self, access: APIAccess, client: httpx.AsyncClient
    ) -> list[ModelOnline]:
        """List the models the provider serves, as catalog entries.

        Parameters
        ----------
        access:
            Provider credentials as configured in the library.
        client:
            HTTP client to issue requests with.
        """
        raise NotImplementedError

    async def probe(
        self,
        access: APIAccess,
        model: ModelOnline,
        client: httpx.AsyncClient,
    ) -> bool:
        """Return True when the provider currently serves ``model``."""
        models = await self.list_models(access, client)
        return any(m.endpoint_id == model.endpoint_id for m in models)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.api_type.value})"


def bearer_headers(api_key: Optional[str]) -> dict[str, str]:
    if not api_key:
        return {}
    return {"Authorization": f"Bearer {api_key}"}
