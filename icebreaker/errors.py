"""Error types shared by the catalog, the hub client and the transfer pipeline.

Filesystem failures are not wrapped: they surface as the builtin ``OSError``
so callers can tell a missing library root from a remote failure.
"""

from __future__ import annotations

from typing import Optional


class IcebreakerError(RuntimeError):
    """Base class for every error raised by this package."""


class RemoteError(IcebreakerError):
    """A remote endpoint answered with a failure or an unreadable body."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class DecodeError(IcebreakerError, ValueError):
    """Persisted JSON could not be turned back into catalog values."""


class ConfigurationError(IcebreakerError):
    """A provider is configured without the settings its adapter needs."""


class ProviderNotImplementedError(IcebreakerError, NotImplementedError):
    """No adapter exists yet for the requested provider type."""
