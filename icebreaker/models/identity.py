"""Identity and addressing of models.

``Id`` names a model (``author/name``).  ``EndpointId`` says where a model's
content lives: a directory in the local library, or a model served by a
configured remote provider.  ``EndpointId`` is the key of the catalog.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

from icebreaker.errors import DecodeError


@dataclass(frozen=True)
class Id:
    """Model identifier of the form ``author/name``."""

    value: str

    def author(self) -> str:
        author, sep, _name = self.value.partition("/")
        return author if sep else self.value

    def name(self) -> str:
        _author, sep, name = self.value.partition("/")
        return name if sep else self.value

    def sanitized(self) -> str:
        """Return the id with slashes replaced, usable as a file name."""
        return self.value.replace("/", "_")

    def __str__(self) -> str:
        return self.value


class APIType(enum.Enum):
    """Remote inference providers a model can be served by."""

    NanoGPT = "NanoGPT"
    OpenAI = "OpenAI"
    OpenAICompatible = "OpenAICompatible"

    @classmethod
    def default(cls) -> "APIType":
        return cls.OpenAICompatible

    @classmethod
    def parse(cls, raw: Any) -> "APIType":
        try:
            return cls(raw)
        except ValueError:
            pass
        if isinstance(raw, str):
            for member in cls:
                if member.value.lower() == raw.lower():
                    return member
        raise DecodeError(f"unknown API type: {raw!r}")


_LOCAL = "Local"
_REMOTE = "Remote"


@dataclass(frozen=True)
class EndpointId:
    """Either ``Local(id)`` or ``Remote(api_type, id)``.

    Build instances with :meth:`local` and :meth:`remote`.  Equality and
    hashing are structural, so a local and a remote endpoint sharing the
    same :class:`Id` are different keys.
    """

    kind: str
    id: Id
    api_type: Optional[APIType] = None

    def __post_init__(self) -> None:
        if self.kind == _LOCAL and self.api_type is not None:
            raise ValueError("local endpoints carry no API type")
        if self.kind == _REMOTE and self.api_type is None:
            raise ValueError("remote endpoints need an API type")
        if self.kind not in (_LOCAL, _REMOTE):
            raise ValueError(f"unknown endpoint kind: {self.kind!r}")

    @classmethod
    def local(cls, id: Id | str) -> "EndpointId":
        return cls(_LOCAL, _as_id(id))

    @classmethod
    def remote(cls, api_type: APIType, id: Id | str) -> "EndpointId":
        return cls(_REMOTE, _as_id(id), api_type)

    @property
    def is_local(self) -> bool:
        return self.kind == _LOCAL

    @property
    def is_remote(self) -> bool:
        return self.kind == _REMOTE

    def slash_id(self) -> Id:
        """Return the underlying ``author/name`` id regardless of kind."""
        return self.id

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self) -> dict[str, Any]:
        """Tagged-union form used wherever the endpoint is a JSON value."""
        if self.is_local:
            return {_LOCAL: self.id.value}
        assert self.api_type is not None
        return {_REMOTE: {"api_type": self.api_type.value, "id": self.id.value}}

    @classmethod
    def from_json(cls, data: Any) -> "EndpointId":
        if not isinstance(data, dict) or len(data) != 1:
            raise DecodeError(f"malformed endpoint id: {data!r}")
        (tag, body), = data.items()
        if tag == _LOCAL and isinstance(body, str):
            return cls.local(body)
        if tag == _REMOTE and isinstance(body, dict):
            try:
                return cls.remote(APIType.parse(body["api_type"]), str(body["id"]))
            except KeyError as exc:
                raise DecodeError(f"remote endpoint missing {exc}") from exc
        raise DecodeError(f"malformed endpoint id: {data!r}")

    def key(self) -> str:
        """String form used where the endpoint is a JSON object key.

        ``local:author/name`` or ``remote:<ApiType>:author/name``.
        """
        if self.is_local:
            return f"local:{self.id.value}"
        assert self.api_type is not None
        return f"remote:{self.api_type.value}:{self.id.value}"

    @classmethod
    def from_key(cls, key: str) -> "EndpointId":
        kind, sep, rest = key.partition(":")
        if not sep:
            raise DecodeError(f"malformed endpoint key: {key!r}")
        if kind == "local":
            return cls.local(rest)
        if kind == "remote":
            api_type, sep, model = rest.partition(":")
            if sep and model:
                return cls.remote(APIType.parse(api_type), model)
        raise DecodeError(f"malformed endpoint key: {key!r}")

    def __str__(self) -> str:
        if self.is_local:
            return self.id.value
        assert self.api_type is not None
        return f"{self.id.value} ({self.api_type.value})"


def _as_id(id: Id | str) -> Id:
    return id if isinstance(id, Id) else Id(id)
