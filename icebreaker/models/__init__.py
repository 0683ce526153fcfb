"""Catalog value types: identities, precision buckets, files and API models."""

from __future__ import annotations

from ._types import (
    APIAccess,
    Cost,
    Currency,
    Details,
    File,
    FileAndAPI,
    FileOrAPI,
    HFModel,
    ModelOnline,
    OpenAIConfig,
    Quantity,
    Readme,
    entry_from_dict,
    entry_to_dict,
    format_count,
    format_parameters,
    format_size,
)
from .identity import APIType, EndpointId, Id
from .precision import WEIGHT_EXTENSION, Bits, classify, group_by_bits, variant_of
from .status import StatusCell, StatusCheck

__all__ = [
    "APIAccess",
    "APIType",
    "Bits",
    "Cost",
    "Currency",
    "Details",
    "EndpointId",
    "File",
    "FileAndAPI",
    "FileOrAPI",
    "HFModel",
    "Id",
    "ModelOnline",
    "OpenAIConfig",
    "Quantity",
    "Readme",
    "StatusCell",
    "StatusCheck",
    "WEIGHT_EXTENSION",
    "classify",
    "entry_from_dict",
    "entry_to_dict",
    "format_count",
    "format_parameters",
    "format_size",
    "group_by_bits",
    "variant_of",
]
