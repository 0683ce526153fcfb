"""
Icebreaker model catalog.

Catalogs local GGUF model files and remote API-served models, keeps the
user's bookmarks, and downloads model files from the hosting service.
"""

from __future__ import annotations

__version__ = "0.3.0"

from .errors import (
    ConfigurationError,
    DecodeError,
    IcebreakerError,
    ProviderNotImplementedError,
    RemoteError,
)
from .library import Library, LibraryStore, check_statuses, list_installed
from .models import (
    APIAccess,
    APIType,
    Bits,
    EndpointId,
    File,
    FileAndAPI,
    Id,
    ModelOnline,
    StatusCheck,
)
from .settings import Settings
from .transfer import Download, Progress, download, download_file

__all__ = [
    "APIAccess",
    "APIType",
    "Bits",
    "ConfigurationError",
    "DecodeError",
    "Download",
    "EndpointId",
    "File",
    "FileAndAPI",
    "IcebreakerError",
    "Id",
    "Library",
    "LibraryStore",
    "ModelOnline",
    "Progress",
    "ProviderNotImplementedError",
    "RemoteError",
    "Settings",
    "StatusCheck",
    "__version__",
    "check_statuses",
    "download",
    "download_file",
    "list_installed",
]
