# src/noteflow/objects/component.py
"""Account components.

A component is a library of procedures plus the storage slots those
procedures expect, restricted to the account types it supports. The set of
component kinds is closed; user code arrives as CUSTOM (or AUTH_CUSTOM) and
the rest are built in.

Component metadata ships inside library packages as a JSON blob validated
with pydantic. Storage entries must occupy slots 0..n-1 without gaps.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from noteflow.crypto.felt import Word
from noteflow.objects.account_id import ALL_ACCOUNT_TYPES, REGULAR_ACCOUNT_TYPES, AccountType
from noteflow.objects.asset import TokenSymbol
from noteflow.objects.storage import StorageMap, StorageSlot, StorageSlotKind
from noteflow.package import Library, MastForest

Json = Dict[str, Any]


class ComponentKind(str, Enum):
    AUTH_ED25519 = "auth_ed25519"
    AUTH_NONE = "auth_none"
    AUTH_CUSTOM = "auth_custom"
    BASIC_WALLET = "basic_wallet"
    BASIC_FUNGIBLE_FAUCET = "basic_fungible_faucet"
    CUSTOM = "custom"

    def is_auth(self) -> bool:
        return self in (ComponentKind.AUTH_ED25519, ComponentKind.AUTH_NONE, ComponentKind.AUTH_CUSTOM)

    def is_standard(self) -> bool:
        return self in (ComponentKind.BASIC_WALLET, ComponentKind.BASIC_FUNGIBLE_FAUCET)


# ---------------------------------------------------------------------------
# Metadata (decoded from package blobs)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class StorageEntry(_StrictModel):
    name: str = Field(..., min_length=1)
    slot: int = Field(..., ge=0, le=254)
    kind: Literal["value", "map"] = "value"
    description: str = ""
    # Initial contents. Value slots take one word; map slots take [key, value] pairs.
    value: Optional[List[int]] = None
    entries: List[Tuple[List[int], List[int]]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _shape(self) -> "StorageEntry":
        if self.kind == "map" and self.value is not None:
            raise ValueError(f"map entry {self.name!r} cannot carry a value")
        if self.kind == "value" and self.entries:
            raise ValueError(f"value entry {self.name!r} cannot carry map entries")
        return self

    def default_slot(self) -> StorageSlot:
        if self.kind == "map":
            return StorageSlot.map_slot(StorageMap.with_entries(self.entries))
        return StorageSlot.value_slot(self.value or (0, 0, 0, 0))


class AccountComponentMetadata(_StrictModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    version: str = "0.1.0"
    supported_types: List[AccountType] = Field(default_factory=list)
    storage: List[StorageEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _layout(self) -> "AccountComponentMetadata":
        slots = sorted(e.slot for e in self.storage)
        if slots != list(range(len(slots))):
            raise ValueError(f"storage slots must be 0..n-1 without gaps (got {slots})")
        names = [e.name for e in self.storage]
        if len(set(names)) != len(names):
            raise ValueError("storage entry names must be unique")
        return self

    @classmethod
    def from_bytes(cls, data: bytes) -> "AccountComponentMetadata":
        """Raises pydantic.ValidationError on any malformed blob."""
        return cls.model_validate_json(bytes(data))

    def to_bytes(self) -> bytes:
        return self.model_dump_json(exclude_defaults=True).encode("utf-8")

    def ordered_storage(self) -> List[StorageEntry]:
        return sorted(self.storage, key=lambda e: e.slot)


@dataclass(frozen=True)
class AccountComponentTemplate:
    """Metadata paired with the library it describes."""

    metadata: AccountComponentMetadata
    library: Library

    def default_storage(self) -> Tuple[StorageSlot, ...]:
        return tuple(e.default_slot() for e in self.metadata.ordered_storage())


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountComponent:
    kind: ComponentKind
    library: Library
    storage_slots: Tuple[StorageSlot, ...] = ()
    supported_types: FrozenSet[AccountType] = field(default_factory=lambda: ALL_ACCOUNT_TYPES)
    storage_names: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.supported_types:
            raise ValueError("component must support at least one account type")
        if self.storage_names and len(self.storage_names) != len(self.storage_slots):
            raise ValueError("storage_names must name every slot")

    @property
    def name(self) -> str:
        return self.library.namespace

    def with_supported_types(self, types: Iterable[AccountType]) -> "AccountComponent":
        return replace(self, supported_types=frozenset(types))

    def supports_type(self, account_type: AccountType) -> bool:
        return account_type in self.supported_types

    def procedure_roots(self) -> Dict[str, Word]:
        return self.library.export_roots()

    def auth_procedure(self) -> Optional[str]:
        """Qualified name of the auth procedure (first export), for auth components only."""
        if not self.kind.is_auth() or not self.library.exports:
            return None
        return self.library.qualified(self.library.exports[0])

    def to_json(self) -> Json:
        return {
            "kind": self.kind.value,
            "library": self.library.to_json(),
            "storage_slots": [s.to_json() for s in self.storage_slots],
            "supported_types": sorted(t.value for t in self.supported_types),
            "storage_names": list(self.storage_names),
        }

    @classmethod
    def from_json(cls, j: Json) -> "AccountComponent":
        return cls(
            kind=ComponentKind(str(j.get("kind") or "")),
            library=Library.from_json(j.get("library") or {}),
            storage_slots=tuple(StorageSlot.from_json(s) for s in j.get("storage_slots") or []),
            supported_types=frozenset(AccountType(t) for t in j.get("supported_types") or []),
            storage_names=tuple(str(n) for n in j.get("storage_names") or []),
        )


def _builtin_library(namespace: str, procs: Dict[str, List[List[Any]]]) -> Library:
    return Library(namespace=namespace, forest=MastForest.from_json(procs), exports=tuple(procs))


# Built-in procedures bind to kernel natives; the library only gives them names and roots.


def auth_ed25519(pub_commitment: Word) -> AccountComponent:
    lib = _builtin_library("auth_ed25519", {"auth_tx": [["native", "auth_ed25519"]]})
    return AccountComponent(
        kind=ComponentKind.AUTH_ED25519,
        library=lib,
        storage_slots=(StorageSlot.value_slot(pub_commitment),),
        storage_names=("auth_ed25519::public_key",),
    )


def no_auth() -> AccountComponent:
    lib = _builtin_library("no_auth", {"auth_tx": [["native", "auth_none"]]})
    return AccountComponent(kind=ComponentKind.AUTH_NONE, library=lib)


def basic_wallet() -> AccountComponent:
    lib = _builtin_library(
        "basic_wallet",
        {
            "receive_asset": [["native", "wallet_receive_asset"]],
            "move_asset_to_note": [["native", "wallet_move_asset_to_note"]],
        },
    )
    return AccountComponent(kind=ComponentKind.BASIC_WALLET, library=lib, supported_types=REGULAR_ACCOUNT_TYPES)


MAX_FAUCET_DECIMALS = 12


def basic_fungible_faucet(symbol: TokenSymbol | str, decimals: int, max_supply: int) -> AccountComponent:
    sym = symbol if isinstance(symbol, TokenSymbol) else TokenSymbol(str(symbol))
    if not (0 <= int(decimals) <= MAX_FAUCET_DECIMALS):
        raise ValueError(f"decimals must be in 0..{MAX_FAUCET_DECIMALS}")
    if int(max_supply) <= 0:
        raise ValueError("max_supply must be positive")
    lib = _builtin_library(
        "basic_fungible_faucet",
        {
            "distribute": [["native", "faucet_distribute"]],
            "burn": [["native", "faucet_burn"]],
        },
    )
    # Metadata slot layout: [max_supply, decimals, symbol, issued]
    meta = StorageSlot.value_slot((int(max_supply), int(decimals), sym.to_felt(), 0))
    return AccountComponent(
        kind=ComponentKind.BASIC_FUNGIBLE_FAUCET,
        library=lib,
        storage_slots=(meta,),
        supported_types=frozenset({AccountType.FUNGIBLE_FAUCET}),
        storage_names=("basic_fungible_faucet::metadata",),
    )


def custom_component(
    template: AccountComponentTemplate,
    storage_slots: Iterable[StorageSlot],
    supported_types: Iterable[AccountType],
    *,
    kind: ComponentKind = ComponentKind.CUSTOM,
) -> AccountComponent:
    slots = tuple(storage_slots)
    names = tuple(f"{template.library.namespace}::{e.name}" for e in template.metadata.ordered_storage())
    return AccountComponent(
        kind=kind,
        library=template.library,
        storage_slots=slots,
        supported_types=frozenset(supported_types),
        storage_names=names,
    )


def slot_kinds(slots: Iterable[StorageSlot]) -> List[StorageSlotKind]:
    return [s.kind for s in slots]
