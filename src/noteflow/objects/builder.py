# src/noteflow/objects/builder.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from noteflow.crypto.felt import Word
from noteflow.errors import AccountBuildFailure
from noteflow.objects.account import Account, AccountCode
from noteflow.objects.account_id import AccountId, AccountStorageMode, AccountType
from noteflow.objects.component import AccountComponent
from noteflow.objects.storage import MAX_NUM_STORAGE_SLOTS, AccountStorage

ACCOUNT_SEED_LEN = 32


@dataclass(frozen=True)
class BlockAnchor:
    """Block an account id is anchored to (the synced chain tip at creation time)."""

    block_num: int
    commitment: Word


class AccountBuilder:
    """Compose components into a new account.

    Composition order is fixed: auth, then standard components, then custom
    ones. Within a group, insertion order is kept.

    Policy:
      - build() never returns a partially valid account
      - every failure raises AccountBuildFailure with the offending detail
    """

    def __init__(self, init_seed: bytes) -> None:
        self._seed = bytes(init_seed)
        self._account_type = AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE
        self._storage_mode = AccountStorageMode.PRIVATE
        self._anchor: Optional[BlockAnchor] = None
        self._auth: Optional[AccountComponent] = None
        self._standard: List[AccountComponent] = []
        self._custom: List[AccountComponent] = []

    def account_type(self, t: AccountType) -> "AccountBuilder":
        self._account_type = AccountType(t)
        return self

    def storage_mode(self, m: AccountStorageMode) -> "AccountBuilder":
        self._storage_mode = AccountStorageMode(m)
        return self

    def anchor(self, anchor: BlockAnchor) -> "AccountBuilder":
        self._anchor = anchor
        return self

    def with_auth_component(self, component: AccountComponent) -> "AccountBuilder":
        if not component.kind.is_auth():
            raise AccountBuildFailure("not an auth component", {"kind": component.kind.value})
        if self._auth is not None:
            raise AccountBuildFailure("auth component already set", {"existing": self._auth.name})
        self._auth = component
        return self

    def with_component(self, component: AccountComponent) -> "AccountBuilder":
        if component.kind.is_auth():
            raise AccountBuildFailure("auth components go through with_auth_component", {"kind": component.kind.value})
        if component.kind.is_standard():
            self._standard.append(component)
        else:
            self._custom.append(component)
        return self

    def _components(self) -> Tuple[AccountComponent, ...]:
        if self._auth is None:
            raise AccountBuildFailure("account has no auth component")
        return (self._auth, *self._standard, *self._custom)

    def _validate(self, components: Tuple[AccountComponent, ...]) -> None:
        for c in components:
            if not c.supports_type(self._account_type):
                raise AccountBuildFailure(
                    "component does not support account type",
                    {
                        "component": c.name,
                        "account_type": self._account_type.value,
                        "supported_types": sorted(t.value for t in c.supported_types),
                    },
                )

        total = sum(len(c.storage_slots) for c in components)
        if total > MAX_NUM_STORAGE_SLOTS:
            raise AccountBuildFailure("too many storage slots", {"slots": total, "max": MAX_NUM_STORAGE_SLOTS})

        roots: Dict[Word, str] = {}
        for c in components:
            for qualified, root in c.procedure_roots().items():
                if root in roots:
                    raise AccountBuildFailure(
                        "duplicate procedure across components", {"procedure": qualified, "conflicts_with": roots[root]}
                    )
                roots[root] = qualified

        names: Dict[str, str] = {}
        for c in components:
            for n in c.storage_names:
                if n in names:
                    raise AccountBuildFailure("conflicting storage entry", {"entry": n, "component": c.name})
                names[n] = c.name

    def build(self) -> Tuple[Account, bytes]:
        if len(self._seed) != ACCOUNT_SEED_LEN:
            raise AccountBuildFailure("account seed must be 32 bytes", {"len": len(self._seed)})
        if self._anchor is None:
            raise AccountBuildFailure("account has no anchor block")

        components = self._components()
        self._validate(components)

        code = AccountCode(components=components)
        storage = AccountStorage(tuple(s for c in components for s in c.storage_slots))
        account_id = AccountId.derive(
            seed=self._seed,
            account_type=self._account_type,
            storage_mode=self._storage_mode,
            code_commitment=code.commitment(),
            storage_commitment=storage.commitment(),
            anchor_block_num=self._anchor.block_num,
            anchor_commitment=self._anchor.commitment,
        )
        return Account(id=account_id, code=code, storage=storage), self._seed
