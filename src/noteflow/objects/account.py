# src/noteflow/objects/account.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from noteflow.crypto.felt import P, Word, hash_elements, words_to_elements
from noteflow.objects.account_id import AccountId, AccountStorageMode, AccountType
from noteflow.objects.asset import AssetVault, FungibleAsset
from noteflow.objects.component import AccountComponent, ComponentKind
from noteflow.objects.storage import AccountStorage

Json = Dict[str, Any]


@dataclass(frozen=True)
class ProcedureInfo:
    component_index: int
    storage_offset: int
    storage_size: int


@dataclass(frozen=True)
class AccountCode:
    """Ordered components. Storage of component i starts after the slots of components 0..i-1."""

    components: Tuple[AccountComponent, ...]

    def commitment(self) -> Word:
        roots: List[Word] = []
        for c in self.components:
            roots.extend(c.procedure_roots()[q] for q in sorted(c.procedure_roots()))
        return hash_elements(words_to_elements(roots))

    def storage_offsets(self) -> List[int]:
        out: List[int] = []
        off = 0
        for c in self.components:
            out.append(off)
            off += len(c.storage_slots)
        return out

    def procedures(self) -> Dict[str, ProcedureInfo]:
        out: Dict[str, ProcedureInfo] = {}
        for i, (c, off) in enumerate(zip(self.components, self.storage_offsets())):
            for qualified in c.procedure_roots():
                out[qualified] = ProcedureInfo(component_index=i, storage_offset=off, storage_size=len(c.storage_slots))
        return out

    def auth_component(self) -> AccountComponent:
        # The builder always places auth first.
        return self.components[0]

    def has_component(self, kind: ComponentKind) -> bool:
        return any(c.kind is kind for c in self.components)

    def to_json(self) -> List[Json]:
        return [c.to_json() for c in self.components]

    @classmethod
    def from_json(cls, j: Any) -> "AccountCode":
        if not isinstance(j, list) or not j:
            raise ValueError("account code must be a non-empty list of components")
        return cls(components=tuple(AccountComponent.from_json(c) for c in j))


@dataclass(frozen=True)
class AccountDelta:
    """State change produced by one transaction against one account."""

    storage_values: Tuple[Tuple[int, Word], ...] = ()
    storage_maps: Tuple[Tuple[int, Word, Word], ...] = ()
    vault_added: Tuple[FungibleAsset, ...] = ()
    vault_removed: Tuple[FungibleAsset, ...] = ()
    nonce_increment: int = 0

    def is_empty(self) -> bool:
        return not (self.storage_values or self.storage_maps or self.vault_added or self.vault_removed or self.nonce_increment)

    def changes_state(self) -> bool:
        return bool(self.storage_values or self.storage_maps or self.vault_added or self.vault_removed)

    def to_json(self) -> Json:
        return {
            "storage_values": [[i, w.to_json()] for i, w in self.storage_values],
            "storage_maps": [[i, k.to_json(), v.to_json()] for i, k, v in self.storage_maps],
            "vault_added": [a.to_json() for a in self.vault_added],
            "vault_removed": [a.to_json() for a in self.vault_removed],
            "nonce_increment": int(self.nonce_increment),
        }

    @classmethod
    def from_json(cls, j: Json) -> "AccountDelta":
        return cls(
            storage_values=tuple((int(i), Word(w)) for i, w in j.get("storage_values") or []),
            storage_maps=tuple((int(i), Word(k), Word(v)) for i, k, v in j.get("storage_maps") or []),
            vault_added=tuple(FungibleAsset.from_json(a) for a in j.get("vault_added") or []),
            vault_removed=tuple(FungibleAsset.from_json(a) for a in j.get("vault_removed") or []),
            nonce_increment=int(j.get("nonce_increment", 0)),
        )


@dataclass(frozen=True)
class Account:
    """Account state. Immutable: every update goes through apply_delta()."""

    id: AccountId
    code: AccountCode
    storage: AccountStorage
    vault: AssetVault = field(default_factory=AssetVault)
    nonce: int = 0

    @property
    def account_type(self) -> AccountType:
        return self.id.account_type

    @property
    def storage_mode(self) -> AccountStorageMode:
        return self.id.storage_mode

    @property
    def is_new(self) -> bool:
        return self.nonce == 0

    def is_public(self) -> bool:
        return self.id.is_public()

    def commitment(self) -> Word:
        elems = [self.id.prefix, self.id.suffix, 0, int(self.nonce)]
        return hash_elements(
            elems + list(self.vault.commitment()) + list(self.storage.commitment()) + list(self.code.commitment())
        )

    def apply_delta(self, delta: AccountDelta) -> "Account":
        storage = self.storage
        for idx, value in delta.storage_values:
            storage = storage.set_item(idx, value)
        for idx, key, value in delta.storage_maps:
            storage = storage.set_map_item(idx, key, value)
        vault = self.vault
        for a in delta.vault_removed:
            vault = vault.remove(a)
        for a in delta.vault_added:
            vault = vault.add(a)
        nonce = int(self.nonce) + int(delta.nonce_increment)
        if nonce >= P:
            raise ValueError("account nonce overflow")
        return Account(id=self.id, code=self.code, storage=storage, vault=vault, nonce=nonce)

    def to_json(self) -> Json:
        return {
            "id": self.id.to_hex(),
            "code": self.code.to_json(),
            "storage": self.storage.to_json(),
            "vault": self.vault.to_json(),
            "nonce": int(self.nonce),
        }

    @classmethod
    def from_json(cls, j: Json) -> "Account":
        return cls(
            id=AccountId.from_hex(str(j.get("id") or "")),
            code=AccountCode.from_json(j.get("code")),
            storage=AccountStorage.from_json(j.get("storage") or []),
            vault=AssetVault.from_json(j.get("vault") or []),
            nonce=int(j.get("nonce", 0)),
        )
