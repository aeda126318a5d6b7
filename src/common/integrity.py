from __future__ import annotations

from typing import Any, Iterator, Optional

from .codec import CanonicalJson


_DEFAULT_SERIALIZER = CanonicalJson()


def _utf16_units(text: str) -> Iterator[int]:
    # Hash over UTF-16 code units so astral characters fold as surrogate pairs
    for ch in text:
        cp = ord(ch)
        if cp > 0xFFFF:
            cp -= 0x10000
            yield 0xD800 + (cp >> 10)
            yield 0xDC00 + (cp & 0x3FF)
        else:
            yield cp


def rolling_hash(text: str) -> int:
    """Signed 32-bit rolling hash: h = h * 31 + unit, wrapping on overflow.

    Non-cryptographic; collisions are easy to construct.
    """
    h = 0
    for unit in _utf16_units(text):
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


def digest(record: Any, serializer: Optional[CanonicalJson] = None) -> str:
    """Lowercase hex of |rolling_hash| over the canonical form of `record`."""
    text = (serializer or _DEFAULT_SERIALIZER).dumps(record)
    return format(abs(rolling_hash(text)), "x")


def verify(record: Any, expected: str, serializer: Optional[CanonicalJson] = None) -> bool:
    return digest(record, serializer) == expected


__all__ = ["rolling_hash", "digest", "verify"]
