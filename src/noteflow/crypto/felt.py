# src/noteflow/crypto/felt.py
"""Field elements, words and the commitment hash.

Field: the 64-bit prime field with modulus P = 2^64 - 2^32 + 1.

A word is an ordered 4-tuple of field elements. Words are used for storage
values, storage map keys, identifiers and commitments.

Hashing:
  hash_elements() is sha256 over 8-byte little-endian element encodings; the
  32-byte digest is split into four 8-byte limbs, each reduced mod P. It is
  deterministic across processes and platforms.
"""

from __future__ import annotations

import hashlib
import struct
from typing import Iterable, List, Sequence

P = 2**64 - 2**32 + 1

WORD_SIZE = 4


def felt(v: int) -> int:
    """Validate a field element. Out-of-range values are rejected, never reduced."""
    if isinstance(v, bool):
        raise ValueError("bool is not a field element")
    try:
        i = int(v)
    except Exception as e:
        raise ValueError(f"not a field element: {v!r}") from e
    if i < 0 or i >= P:
        raise ValueError(f"field element out of range: {i}")
    return i


class Word(tuple):
    """Immutable 4-tuple of field elements."""

    __slots__ = ()

    def __new__(cls, elems: Iterable[int] = (0, 0, 0, 0)) -> "Word":
        items = tuple(felt(e) for e in elems)
        if len(items) != WORD_SIZE:
            raise ValueError(f"word must have {WORD_SIZE} elements (got {len(items)})")
        return super().__new__(cls, items)

    @classmethod
    def from_ints(cls, a: int, b: int, c: int, d: int) -> "Word":
        return cls((a, b, c, d))

    def to_hex(self) -> str:
        return "0x" + b"".join(struct.pack("<Q", e) for e in self).hex()

    @classmethod
    def from_hex(cls, s: str) -> "Word":
        raw = str(s or "").strip()
        if raw.startswith("0x"):
            raw = raw[2:]
        try:
            b = bytes.fromhex(raw)
        except ValueError as e:
            raise ValueError(f"invalid word hex: {s!r}") from e
        if len(b) != 32:
            raise ValueError(f"word hex must encode 32 bytes (got {len(b)})")
        return cls(struct.unpack("<4Q", b))

    def to_json(self) -> List[int]:
        return [int(e) for e in self]

    @classmethod
    def from_json(cls, j: Sequence[int]) -> "Word":
        if isinstance(j, str):
            return cls.from_hex(j)
        return cls(j)

    def __repr__(self) -> str:
        return f"Word({', '.join(str(e) for e in self)})"


Word.ZERO = Word((0, 0, 0, 0))  # type: ignore[attr-defined]
ZERO_WORD: Word = Word.ZERO  # type: ignore[attr-defined]


def _digest_to_word(d: bytes) -> Word:
    return Word(int.from_bytes(d[i : i + 8], "little") % P for i in range(0, 32, 8))


def hash_elements(elems: Iterable[int]) -> Word:
    h = hashlib.sha256()
    n = 0
    for e in elems:
        h.update(struct.pack("<Q", felt(e)))
        n += 1
    # Length suffix keeps [] and [0] (and other zero-padded inputs) distinct.
    h.update(struct.pack("<Q", n))
    return _digest_to_word(h.digest())


def merge(a: Sequence[int], b: Sequence[int]) -> Word:
    return hash_elements(list(a) + list(b))


def hash_bytes(data: bytes) -> Word:
    return _digest_to_word(hashlib.sha256(b"noteflow:bytes:" + bytes(data)).digest())


def words_to_elements(words: Iterable[Sequence[int]]) -> List[int]:
    out: List[int] = []
    for w in words:
        out.extend(int(e) for e in w)
    return out
