# src/noteflow/crypto/rng.py
from __future__ import annotations

import secrets
from typing import Callable, Optional

from noteflow.crypto.felt import P, Word


class FeltRng:
    """Cryptographically secure generator owned by exactly one client instance.

    Serial numbers and account seeds are drawn here. Distinct client instances
    hold distinct generators; nothing is shared through module state.

    `source` exists for tests that need a scripted byte stream; production code
    never passes it.
    """

    def __init__(self, source: Optional[Callable[[int], bytes]] = None) -> None:
        self._source = source or secrets.token_bytes

    def fill_bytes(self, n: int) -> bytes:
        n = int(n)
        if n < 0:
            raise ValueError("n must be >= 0")
        out = self._source(n)
        if len(out) != n:
            raise ValueError("random source returned the wrong number of bytes")
        return out

    def draw_felt(self) -> int:
        # Rejection sampling keeps the draw uniform in [0, P).
        while True:
            v = int.from_bytes(self.fill_bytes(8), "little")
            if v < P:
                return v

    def draw_word(self) -> Word:
        return Word(self.draw_felt() for _ in range(4))
