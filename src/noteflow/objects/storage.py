# src/noteflow/objects/storage.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from noteflow.crypto.felt import Word, hash_elements, words_to_elements

Json = Dict[str, Any]

MAX_NUM_STORAGE_SLOTS = 255


class StorageSlotKind(str, Enum):
    VALUE = "value"
    MAP = "map"


@dataclass(frozen=True)
class StorageMap:
    """Immutable key -> value word map. Entries are kept sorted by key."""

    entries: Tuple[Tuple[Word, Word], ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        seen: Dict[Word, Word] = {}
        for k, v in self.entries:
            seen[Word(k)] = Word(v)
        object.__setattr__(self, "entries", tuple(sorted(seen.items())))

    @classmethod
    def with_entries(cls, items: Iterable[Tuple[Iterable[int], Iterable[int]]] | Mapping[Any, Any]) -> "StorageMap":
        pairs = items.items() if isinstance(items, Mapping) else items
        return cls(tuple((Word(k), Word(v)) for k, v in pairs))

    def get(self, key: Iterable[int]) -> Word:
        k = Word(key)
        for ek, ev in self.entries:
            if ek == k:
                return ev
        return Word.ZERO  # type: ignore[attr-defined]

    def set(self, key: Iterable[int], value: Iterable[int]) -> "StorageMap":
        k = Word(key)
        kept = [(ek, ev) for ek, ev in self.entries if ek != k]
        return StorageMap(tuple(kept) + ((k, Word(value)),))

    def __iter__(self) -> Iterator[Tuple[Word, Word]]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def root(self) -> Word:
        return hash_elements(words_to_elements(w for kv in self.entries for w in kv))

    def to_json(self) -> List[List[List[int]]]:
        return [[k.to_json(), v.to_json()] for k, v in self.entries]

    @classmethod
    def from_json(cls, j: Any) -> "StorageMap":
        if not isinstance(j, list):
            raise ValueError("storage map must be a list of [key, value] pairs")
        return cls(tuple((Word(k), Word(v)) for k, v in j))


@dataclass(frozen=True)
class StorageSlot:
    """Either a single word or a key -> word map."""

    kind: StorageSlotKind
    value: Optional[Word] = None
    map: Optional[StorageMap] = None

    @classmethod
    def value_slot(cls, word: Iterable[int] = (0, 0, 0, 0)) -> "StorageSlot":
        return cls(kind=StorageSlotKind.VALUE, value=Word(word))

    @classmethod
    def map_slot(cls, storage_map: Optional[StorageMap] = None) -> "StorageSlot":
        return cls(kind=StorageSlotKind.MAP, map=storage_map or StorageMap())

    def commitment(self) -> Word:
        if self.kind is StorageSlotKind.VALUE:
            return self.value  # type: ignore[return-value]
        return self.map.root()  # type: ignore[union-attr]

    def to_json(self) -> Json:
        if self.kind is StorageSlotKind.VALUE:
            return {"kind": "value", "value": self.value.to_json()}  # type: ignore[union-attr]
        return {"kind": "map", "entries": self.map.to_json()}  # type: ignore[union-attr]

    @classmethod
    def from_json(cls, j: Json) -> "StorageSlot":
        kind = str(j.get("kind") or "")
        if kind == "value":
            return cls.value_slot(j.get("value") or (0, 0, 0, 0))
        if kind == "map":
            return cls.map_slot(StorageMap.from_json(j.get("entries") or []))
        raise ValueError(f"unknown storage slot kind: {kind!r}")


class StorageAccessError(ValueError):
    pass


@dataclass(frozen=True)
class AccountStorage:
    slots: Tuple[StorageSlot, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if len(self.slots) > MAX_NUM_STORAGE_SLOTS:
            raise ValueError(f"too many storage slots: {len(self.slots)} > {MAX_NUM_STORAGE_SLOTS}")

    def _slot(self, index: int, kind: StorageSlotKind) -> StorageSlot:
        if index < 0 or index >= len(self.slots):
            raise StorageAccessError(f"storage slot {index} out of range ({len(self.slots)} slots)")
        slot = self.slots[index]
        if slot.kind is not kind:
            raise StorageAccessError(f"storage slot {index} is a {slot.kind.value} slot, not {kind.value}")
        return slot

    def get_item(self, index: int) -> Word:
        return self._slot(index, StorageSlotKind.VALUE).value  # type: ignore[return-value]

    def get_map_item(self, index: int, key: Iterable[int]) -> Word:
        return self._slot(index, StorageSlotKind.MAP).map.get(key)  # type: ignore[union-attr]

    def set_item(self, index: int, value: Iterable[int]) -> "AccountStorage":
        self._slot(index, StorageSlotKind.VALUE)
        slots = list(self.slots)
        slots[index] = StorageSlot.value_slot(value)
        return AccountStorage(tuple(slots))

    def set_map_item(self, index: int, key: Iterable[int], value: Iterable[int]) -> "AccountStorage":
        slot = self._slot(index, StorageSlotKind.MAP)
        slots = list(self.slots)
        slots[index] = StorageSlot.map_slot(slot.map.set(key, value))  # type: ignore[union-attr]
        return AccountStorage(tuple(slots))

    def commitment(self) -> Word:
        return hash_elements(words_to_elements(s.commitment() for s in self.slots))

    def to_json(self) -> List[Json]:
        return [s.to_json() for s in self.slots]

    @classmethod
    def from_json(cls, j: Any) -> "AccountStorage":
        if not isinstance(j, list):
            raise ValueError("account storage must be a list of slots")
        return cls(tuple(StorageSlot.from_json(s) for s in j))
