# src/noteflow/objects/block.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable

from noteflow.crypto.felt import Word, hash_bytes, hash_elements, words_to_elements

Json = Dict[str, Any]


@dataclass(frozen=True)
class BlockHeader:
    block_num: int
    prev_commitment: Word
    chain_commitment: Word
    tx_commitment: Word
    note_root: Word
    nullifier_root: Word
    timestamp_ms: int

    def commitment(self) -> Word:
        return hash_elements(
            [int(self.block_num), int(self.timestamp_ms) % (1 << 63), 0, 0]
            + list(self.prev_commitment)
            + list(self.chain_commitment)
            + list(self.tx_commitment)
            + list(self.note_root)
            + list(self.nullifier_root)
        )

    def to_json(self) -> Json:
        return {
            "block_num": int(self.block_num),
            "prev_commitment": self.prev_commitment.to_hex(),
            "chain_commitment": self.chain_commitment.to_hex(),
            "tx_commitment": self.tx_commitment.to_hex(),
            "note_root": self.note_root.to_hex(),
            "nullifier_root": self.nullifier_root.to_hex(),
            "timestamp_ms": int(self.timestamp_ms),
            "commitment": self.commitment().to_hex(),
        }

    @classmethod
    def from_json(cls, j: Json) -> "BlockHeader":
        h = cls(
            block_num=int(j.get("block_num", 0)),
            prev_commitment=Word.from_hex(str(j.get("prev_commitment") or "")),
            chain_commitment=Word.from_hex(str(j.get("chain_commitment") or "")),
            tx_commitment=Word.from_hex(str(j.get("tx_commitment") or "")),
            note_root=Word.from_hex(str(j.get("note_root") or "")),
            nullifier_root=Word.from_hex(str(j.get("nullifier_root") or "")),
            timestamp_ms=int(j.get("timestamp_ms", 0)),
        )
        claimed = j.get("commitment")
        if claimed is not None and Word.from_hex(str(claimed)) != h.commitment():
            raise ValueError("block header commitment does not match its fields")
        return h


def chain_commitment(chain_id: str) -> Word:
    return hash_bytes(f"chain:{chain_id}".encode("utf-8"))


def words_root(words: Iterable[Word]) -> Word:
    return hash_elements(words_to_elements(words))
