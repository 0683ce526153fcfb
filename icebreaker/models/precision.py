"""Precision classification of quantized weight files.

A weight file name carries its quantization tag as the last ``-`` or ``.``
delimited token before the extension (``Llama-3-8B-Q4_K_M.gguf`` →
``Q4_K_M``).  The numeric part of that tag is the bit width used to group
files.  Files without a numeric tag (``mmproj``, ``draft``) are not
quantization variants and are skipped when grouping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, TypeVar

WEIGHT_EXTENSION = ".gguf"

# Checked in order, at most one is removed.
_QUANT_PREFIXES = ("IQ", "Q", "BF", "F")

_VARIANT_SPLIT = re.compile(r"[-.]")


@dataclass(frozen=True, order=True)
class Bits:
    """Bit-width bucket, e.g. ``Bits(4)`` for every 4-bit quantization."""

    value: int

    def __str__(self) -> str:
        return f"{self.value}-bit"


def _strip_extension(name: str) -> str:
    if name.endswith(WEIGHT_EXTENSION):
        return name[: -len(WEIGHT_EXTENSION)]
    return name


def variant_of(name: str) -> str:
    """Return the quantization tag embedded in ``name``."""
    stem = _strip_extension(name)
    return _VARIANT_SPLIT.split(stem)[-1]


def classify(name: str) -> Optional[Bits]:
    """Derive the bit-width bucket of a weight file, or ``None``.

    Examples::

        classify("model-Q4_K_M.gguf")  -> Bits(4)
        classify("model.IQ2_XS.gguf")  -> Bits(2)
        classify("model-BF16.gguf")    -> Bits(16)
        classify("model-draft.gguf")   -> None
    """
    token = variant_of(name).split("_", 1)[0]
    for prefix in _QUANT_PREFIXES:
        if token.startswith(prefix):
            token = token[len(prefix) :]
            break
    if not token or not (token.isascii() and token.isdigit()):
        return None
    return Bits(int(token))


class _Named(Protocol):
    name: str


_T = TypeVar("_T", bound=_Named)


def group_by_bits(files: Iterable[_T]) -> dict[Bits, list[_T]]:
    """Group files by bit width, ascending; unclassifiable files are dropped."""
    groups: dict[Bits, list[_T]] = {}
    for file in files:
        bits = classify(file.name)
        if bits is None:
            continue
        groups.setdefault(bits, []).append(file)
    return dict(sorted(groups.items()))
