# src/noteflow/objects/asset.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from noteflow.crypto.felt import Word, hash_elements
from noteflow.objects.account_id import AccountId, AccountType

Json = Dict[str, Any]

MAX_FUNGIBLE_AMOUNT = 2**63 - 2**31
MAX_ASSETS_PER_NOTE = 255

_SYMBOL_RE = re.compile(r"^[A-Z]{1,6}$")


@dataclass(frozen=True)
class TokenSymbol:
    value: str

    def __post_init__(self) -> None:
        if not _SYMBOL_RE.match(self.value or ""):
            raise ValueError(f"token symbol must be 1-6 upper-case letters (got {self.value!r})")

    def to_felt(self) -> int:
        # base-26 packing, stable for 1-6 letters
        v = 0
        for ch in self.value:
            v = v * 26 + (ord(ch) - ord("A"))
        return v * 8 + len(self.value)

    @classmethod
    def from_felt(cls, v: int) -> "TokenSymbol":
        n = int(v) % 8
        rest = int(v) // 8
        chars = []
        for _ in range(n):
            chars.append(chr(ord("A") + rest % 26))
            rest //= 26
        return cls("".join(reversed(chars)))


@dataclass(frozen=True)
class FungibleAsset:
    faucet_id: AccountId
    amount: int

    def __post_init__(self) -> None:
        if self.faucet_id.account_type is not AccountType.FUNGIBLE_FAUCET:
            raise ValueError("fungible asset must be issued by a fungible faucet")
        if isinstance(self.amount, bool) or int(self.amount) < 0 or int(self.amount) > MAX_FUNGIBLE_AMOUNT:
            raise ValueError(f"fungible amount out of range: {self.amount}")

    def to_word(self) -> Word:
        return Word((int(self.amount), 0, self.faucet_id.suffix, self.faucet_id.prefix))

    def to_json(self) -> Json:
        return {"faucet_id": self.faucet_id.to_hex(), "amount": int(self.amount)}

    @classmethod
    def from_json(cls, j: Json) -> "FungibleAsset":
        return cls(faucet_id=AccountId.from_hex(str(j.get("faucet_id") or "")), amount=int(j.get("amount", 0)))


def _merge(assets: Iterable[FungibleAsset]) -> Tuple[FungibleAsset, ...]:
    totals: Dict[AccountId, int] = {}
    order: List[AccountId] = []
    for a in assets:
        if a.faucet_id not in totals:
            totals[a.faucet_id] = 0
            order.append(a.faucet_id)
        totals[a.faucet_id] += int(a.amount)
    return tuple(FungibleAsset(f, totals[f]) for f in order)


@dataclass(frozen=True)
class NoteAssets:
    """Assets carried by a note. Same-faucet entries are merged; order follows first appearance."""

    assets: Tuple[FungibleAsset, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        merged = _merge(self.assets)
        if len(merged) > MAX_ASSETS_PER_NOTE:
            raise ValueError(f"too many assets in note: {len(merged)} > {MAX_ASSETS_PER_NOTE}")
        object.__setattr__(self, "assets", merged)

    @classmethod
    def of(cls, *assets: FungibleAsset) -> "NoteAssets":
        return cls(tuple(assets))

    def is_empty(self) -> bool:
        return not self.assets

    def __iter__(self):
        return iter(self.assets)

    def __len__(self) -> int:
        return len(self.assets)

    def commitment(self) -> Word:
        elems: List[int] = []
        for a in self.assets:
            elems.extend(a.to_word())
        return hash_elements(elems)

    def to_json(self) -> List[Json]:
        return [a.to_json() for a in self.assets]

    @classmethod
    def from_json(cls, j: Any) -> "NoteAssets":
        if not isinstance(j, list):
            return cls()
        return cls(tuple(FungibleAsset.from_json(x) for x in j if isinstance(x, dict)))


class InsufficientAssets(ValueError):
    pass


@dataclass(frozen=True)
class AssetVault:
    """Fungible balances keyed by faucet id. Immutable; updates return a new vault."""

    balances: Tuple[Tuple[AccountId, int], ...] = field(default_factory=tuple)

    def balance(self, faucet_id: AccountId) -> int:
        for f, amt in self.balances:
            if f == faucet_id:
                return int(amt)
        return 0

    def _with(self, faucet_id: AccountId, amount: int) -> "AssetVault":
        rest = {f: a for f, a in self.balances if f != faucet_id}
        if amount:
            rest[faucet_id] = int(amount)
        return AssetVault(tuple(sorted(rest.items())))

    def add(self, asset: FungibleAsset) -> "AssetVault":
        total = self.balance(asset.faucet_id) + int(asset.amount)
        if total > MAX_FUNGIBLE_AMOUNT:
            raise ValueError("vault balance overflow")
        return self._with(asset.faucet_id, total)

    def remove(self, asset: FungibleAsset) -> "AssetVault":
        have = self.balance(asset.faucet_id)
        if have < int(asset.amount):
            raise InsufficientAssets(f"insufficient balance for {asset.faucet_id}: have {have}, need {asset.amount}")
        return self._with(asset.faucet_id, have - int(asset.amount))

    def commitment(self) -> Word:
        elems: List[int] = []
        for f, amt in self.balances:
            elems.extend(FungibleAsset(f, amt).to_word())
        return hash_elements(elems)

    def to_json(self) -> List[Json]:
        return [{"faucet_id": f.to_hex(), "amount": int(a)} for f, a in self.balances]

    @classmethod
    def from_json(cls, j: Any) -> "AssetVault":
        out = AssetVault()
        for x in j if isinstance(j, list) else []:
            out = out.add(FungibleAsset.from_json(x))
        return out
