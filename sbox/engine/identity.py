"""
Identity Resolver - stable string key per inbox row.

Priority:
1. Explicit identifier attribute on the row (data-legacy-thread-id, data-thread-id, id)
2. The same attribute on a descendant
3. Content hash over the row's visible text, prefixed with ``sbox-``

Hash schemes:
- ``fnv1a``: 32-bit FNV-1a over UTF-8 bytes, 8 hex digits (default)
- ``legacy31``: multiply-by-31 accumulation over UTF-16 code units wrapped to
  signed 32-bit, absolute value in decimal. Matches identities written by the
  browser extension.

Collision risk: both schemes are 32 bits wide. Two different rows with colliding
text hashes share processed state; the engine accepts that (at worst one row
is annotated late, on the next invalidation).
"""

from __future__ import annotations

from collections.abc import Callable

from sbox.config import ANNOTATION_CLASS, IDENTITY_HASH_SCHEME, IDENTITY_TAG
from sbox.surface.base import Node
from sbox.surface.profile import SurfaceProfile

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_MASK32 = 0xFFFFFFFF


def fnv1a_32(text: str) -> str:
    """
    FNV-1a (32-bit) of ``text`` as 8 lowercase hex digits.

    Side Effects:
        None (pure function)
    """
    value = _FNV_OFFSET
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK32
    return f"{value:08x}"


def legacy31(text: str) -> str:
    """Rolling ``h * 31 + unit`` over UTF-16 code units, signed 32-bit wrap, abs."""
    value = 0
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        value = (value * 31 + unit) & _MASK32
    if value >= 0x80000000:
        value -= 0x100000000
    return str(abs(value))


HASH_SCHEMES: dict[str, Callable[[str], str]] = {
    "fnv1a": fnv1a_32,
    "legacy31": legacy31,
}


class IdentityResolver:
    def __init__(self, profile: SurfaceProfile, scheme: str = IDENTITY_HASH_SCHEME) -> None:
        if scheme not in HASH_SCHEMES:
            raise ValueError(f"unknown identity hash scheme {scheme!r}, expected one of {sorted(HASH_SCHEMES)}")
        self.profile = profile
        self.scheme = scheme
        self._hash = HASH_SCHEMES[scheme]

    def resolve(self, item: Node) -> str:
        for attribute in self.profile.identity_attributes:
            value = item.get_attribute(attribute)
            if value:
                return value

        descendant = item.select_one(self.profile.identity_descendant_selector)
        if descendant is not None:
            for attribute in self.profile.identity_attributes:
                value = descendant.get_attribute(attribute)
                if value:
                    return value

        return self.content_identity(item.text(skip=f".{ANNOTATION_CLASS}"))

    def content_identity(self, text: str) -> str:
        return f"{IDENTITY_TAG}{self._hash(text)}"
