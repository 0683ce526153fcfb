"""Catalog value types: files, remote API models, pricing and hub metadata."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Optional, Union

from icebreaker.errors import DecodeError

from .identity import APIType, EndpointId, Id
from .precision import variant_of
from .status import StatusCell, StatusCheck


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_count(n: int) -> str:
    """Compact download/like counter: ``950``, ``12.35k``, ``1.20M``."""
    if n >= 1_000_000:
        return f"{n / 1_000_000:.2f}M"
    if n >= 1_000:
        return f"{n / 1_000:.2f}k"
    return str(n)


def _magnitude(n: int) -> int:
    return len(str(n)) - 1 if n > 0 else 0


def format_parameters(n: int) -> str:
    """Parameter count with a unit suffix: ``7B``, ``350M``."""
    digits = _magnitude(n)
    if digits < 3:
        return str(n)
    if digits < 6:
        return f"{n // 1_000}K"
    if digits < 9:
        return f"{n // 1_000_000}M"
    if digits < 12:
        return f"{n // 1_000_000_000}B"
    return f"{n // 1_000_000_000_000}T"


def format_size(n: int) -> str:
    """Byte count in decimal units: ``512 B``, ``4 GB``."""
    digits = _magnitude(n)
    if digits < 3:
        return f"{n} B"
    if digits < 6:
        return f"{n // 1_000} KB"
    if digits < 9:
        return f"{n // 1_000_000} MB"
    if digits < 12:
        return f"{n // 1_000_000_000} GB"
    return f"{n // 1_000_000_000_000} TB"


def _require(data: Any, key: str, kind: Any) -> Any:
    if not isinstance(data, dict):
        raise DecodeError(f"expected an object, got {type(data).__name__}")
    if key not in data:
        raise DecodeError(f"missing field {key!r}")
    value = data[key]
    if not isinstance(value, kind) or isinstance(value, bool) and kind is not bool:
        raise DecodeError(f"field {key!r} has the wrong type")
    return value


def _optional_str(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise DecodeError(f"field {key!r} has the wrong type")
    return value


# ---------------------------------------------------------------------------
# Local files
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class File:
    """A concrete weight file belonging to a model."""

    model: Id
    name: str
    size: Optional[int] = None

    @property
    def endpoint_id(self) -> EndpointId:
        return EndpointId.local(self.model)

    def slash_id(self) -> Id:
        return self.model

    def variant(self) -> str:
        return variant_of(self.name)

    def relative_path(self) -> PurePosixPath:
        """Storage path below the library root: ``author/model/file``."""
        return PurePosixPath(self.model.value) / self.name

    @property
    def size_display(self) -> str:
        return format_size(self.size) if self.size is not None else "?"

    def to_dict(self) -> dict[str, Any]:
        return {"model": self.model.value, "name": self.name, "size": self.size}

    @classmethod
    def from_dict(cls, data: Any) -> "File":
        size = data.get("size") if isinstance(data, dict) else None
        if size is not None and (not isinstance(size, int) or isinstance(size, bool)):
            raise DecodeError("field 'size' has the wrong type")
        return cls(
            model=Id(_require(data, "model", str)),
            name=_require(data, "name", str),
            size=size,
        )

    def __str__(self) -> str:
        return self.name


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class Currency(enum.Enum):
    USD = "USD"


@dataclass(frozen=True)
class Quantity:
    """``num`` units of ``unit`` per ``denom`` tokens."""

    num: float
    unit: Currency = Currency.USD
    denom: float = 1e6

    @classmethod
    def usd_per_1m(cls, n: float) -> "Quantity":
        return cls(num=float(n), unit=Currency.USD, denom=1e6)

    def to_dict(self) -> dict[str, Any]:
        return {"num": self.num, "unit": self.unit.value, "denom": self.denom}

    @classmethod
    def from_dict(cls, data: Any) -> "Quantity":
        try:
            return cls(
                num=float(_require(data, "num", (int, float))),
                unit=Currency(data.get("unit", "USD")),
                denom=float(data.get("denom", 1e6)),
            )
        except (TypeError, ValueError) as exc:
            raise DecodeError(f"malformed quantity: {data!r}") from exc

    def __str__(self) -> str:
        return f"{self.num:.2f}"


@dataclass(frozen=True)
class Cost:
    prompt: Quantity
    completion: Quantity

    def to_dict(self) -> dict[str, Any]:
        return {"prompt": self.prompt.to_dict(), "completion": self.completion.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "Cost":
        return cls(
            prompt=Quantity.from_dict(_require(data, "prompt", dict)),
            completion=Quantity.from_dict(_require(data, "completion", dict)),
        )


# ---------------------------------------------------------------------------
# Remote API access
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OpenAIConfig:
    """Credentials of an OpenAI-style endpoint, carried opaquely."""

    api_base: Optional[str] = None
    api_key: Optional[str] = None
    org_id: Optional[str] = None
    project_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "api_base": self.api_base,
            "api_key": self.api_key,
            "org_id": self.org_id,
            "project_id": self.project_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "OpenAIConfig":
        if not isinstance(data, dict):
            raise DecodeError("openai_compat must be an object")
        return cls(
            api_base=_optional_str(data, "api_base"),
            api_key=_optional_str(data, "api_key"),
            org_id=_optional_str(data, "org_id"),
            project_id=_optional_str(data, "project_id"),
        )

    def __repr__(self) -> str:
        # Keep API keys out of logs and tracebacks.
        return f"OpenAIConfig(api_base={self.api_base!r}, api_key='***')"


@dataclass(frozen=True)
class APIAccess:
    """Everything needed to talk to one provider."""

    kind: APIType = field(default_factory=APIType.default)
    openai_compat: Optional[OpenAIConfig] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "openai_compat": self.openai_compat.to_dict() if self.openai_compat else None,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "APIAccess":
        compat = data.get("openai_compat") if isinstance(data, dict) else None
        return cls(
            kind=APIType.parse(_require(data, "kind", str)),
            openai_compat=OpenAIConfig.from_dict(compat) if compat is not None else None,
        )


@dataclass(eq=False)
class ModelOnline:
    """A model served by a configured remote provider.

    Identity is the endpoint alone: two descriptors of the same endpoint
    compare equal even if their pricing or status differ.
    """

    endpoint_id: EndpointId
    config: APIAccess
    cost: Optional[Cost] = None
    status: StatusCell = field(default_factory=StatusCell)

    def slash_id(self) -> Id:
        return self.endpoint_id.slash_id()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModelOnline):
            return NotImplemented
        return self.endpoint_id == other.endpoint_id

    def __hash__(self) -> int:
        return hash(self.endpoint_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint_id": self.endpoint_id.to_json(),
            "cost": self.cost.to_dict() if self.cost else None,
            "config": self.config.to_dict(),
            "state_check": self.status.get().value,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ModelOnline":
        """Decode a descriptor.

        The persisted ``state_check`` is not trusted: a loaded model always
        starts ``Unchecked``.
        """
        cost = data.get("cost") if isinstance(data, dict) else None
        return cls(
            endpoint_id=EndpointId.from_json(_require(data, "endpoint_id", dict)),
            config=APIAccess.from_dict(_require(data, "config", dict)),
            cost=Cost.from_dict(cost) if cost is not None else None,
            status=StatusCell(StatusCheck.Unchecked),
        )


FileOrAPI = Union[File, ModelOnline]

_ENTRY_FILE = "File"
_ENTRY_API = "API"


def entry_to_dict(entry: FileOrAPI) -> dict[str, Any]:
    """Tagged form of a catalog entry: ``{"File": {...}}`` or ``{"API": {...}}``."""
    if isinstance(entry, File):
        return {_ENTRY_FILE: entry.to_dict()}
    return {_ENTRY_API: entry.to_dict()}


def entry_from_dict(data: Any) -> FileOrAPI:
    if not isinstance(data, dict) or len(data) != 1:
        raise DecodeError(f"malformed catalog entry: {data!r}")
    (tag, body), = data.items()
    if tag == _ENTRY_FILE:
        return File.from_dict(body)
    if tag == _ENTRY_API:
        return ModelOnline.from_dict(body)
    raise DecodeError(f"unknown catalog entry kind: {tag!r}")


@dataclass(frozen=True)
class FileAndAPI:
    """Something the user chose to download or open.

    At most one side is populated.
    """

    file: Optional[File] = None
    api: Optional[ModelOnline] = None

    def __post_init__(self) -> None:
        if self.file is not None and self.api is not None:
            raise ValueError("FileAndAPI holds either a file or an API model, not both")

    @classmethod
    def from_entry(cls, entry: FileOrAPI) -> "FileAndAPI":
        if isinstance(entry, File):
            return cls(file=entry)
        return cls(api=entry)

    @property
    def is_empty(self) -> bool:
        return self.file is None and self.api is None

    def slash_id(self) -> Id:
        if self.file is not None:
            return self.file.model
        if self.api is not None:
            return self.api.slash_id()
        raise ValueError("FileAndAPI is empty")


# ---------------------------------------------------------------------------
# Hub metadata snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HFModel:
    """A search hit on the model hosting service."""

    id: Id
    last_modified: datetime
    downloads: int
    likes: int

    @property
    def endpoint_id(self) -> EndpointId:
        return EndpointId.local(self.id)

    @property
    def downloads_display(self) -> str:
        return format_count(self.downloads)

    def __str__(self) -> str:
        return self.id.value


@dataclass(frozen=True)
class Details:
    """Per-model metadata fetched when a model is selected."""

    last_modified: datetime
    downloads: int
    likes: int
    architecture: Optional[str]
    parameters: int

    @property
    def parameters_display(self) -> str:
        return format_parameters(self.parameters)


@dataclass(frozen=True)
class Readme:
    markdown: str
