# src/noteflow/objects/account_id.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List

from noteflow.crypto.felt import P, Word, hash_elements

ACCOUNT_ID_VERSION = 0

_PREFIX_MASK = 0x7FFF_FFFF_FFFF_FF00
_SUFFIX_MASK = 0x7FFF_FFFF_FFFF_FF00
_SUFFIX_HASH_MASK = 0x7FFF_FF00_0000_0000
MAX_ANCHOR_BLOCK = 0xFFFF_FFFF


class AccountType(str, Enum):
    REGULAR_ACCOUNT_IMMUTABLE_CODE = "regular_account_immutable_code"
    REGULAR_ACCOUNT_UPDATABLE_CODE = "regular_account_updatable_code"
    FUNGIBLE_FAUCET = "fungible_faucet"
    NON_FUNGIBLE_FAUCET = "non_fungible_faucet"

    @property
    def bits(self) -> int:
        return _TYPE_BITS[self]

    def is_faucet(self) -> bool:
        return self in (AccountType.FUNGIBLE_FAUCET, AccountType.NON_FUNGIBLE_FAUCET)

    def is_regular(self) -> bool:
        return not self.is_faucet()


_TYPE_BITS = {
    AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE: 0,
    AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE: 1,
    AccountType.FUNGIBLE_FAUCET: 2,
    AccountType.NON_FUNGIBLE_FAUCET: 3,
}
_TYPE_BY_BITS = {v: k for k, v in _TYPE_BITS.items()}

ALL_ACCOUNT_TYPES = frozenset(AccountType)
REGULAR_ACCOUNT_TYPES = frozenset(t for t in AccountType if t.is_regular())


class AccountStorageMode(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"

    @property
    def bits(self) -> int:
        return 0 if self is AccountStorageMode.PUBLIC else 2


_MODE_BY_BITS = {0: AccountStorageMode.PUBLIC, 2: AccountStorageMode.PRIVATE}


def seed_to_elements(seed: bytes) -> List[int]:
    if len(seed) != 32:
        raise ValueError("account seed must be 32 bytes")
    return [int.from_bytes(seed[i : i + 8], "little") % P for i in range(0, 32, 8)]


@dataclass(frozen=True, order=True)
class AccountId:
    """Two-element account identifier.

    The low byte of `prefix` carries metadata:
      bits 0-3 version, bits 4-5 account type, bits 6-7 storage mode.
    Bits 8-39 of `suffix` carry the anchor block number; the rest of both
    elements comes from the derivation hash.
    """

    prefix: int
    suffix: int

    def __post_init__(self) -> None:
        if self.prefix & ~0xFF & ~_PREFIX_MASK:
            raise ValueError("account id prefix has reserved bits set")
        if self.suffix & ~_SUFFIX_MASK:
            raise ValueError("account id suffix has reserved bits set")
        if (self.prefix >> 4) & 0b11 not in _TYPE_BY_BITS:
            raise ValueError("account id has unknown type bits")
        if (self.prefix >> 6) & 0b11 not in _MODE_BY_BITS:
            raise ValueError("account id has unknown storage mode bits")

    @classmethod
    def derive(
        cls,
        *,
        seed: bytes,
        account_type: AccountType,
        storage_mode: AccountStorageMode,
        code_commitment: Word,
        storage_commitment: Word,
        anchor_block_num: int,
        anchor_commitment: Word,
    ) -> "AccountId":
        if not (0 <= int(anchor_block_num) <= MAX_ANCHOR_BLOCK):
            raise ValueError(f"anchor block out of range: {anchor_block_num}")
        digest = hash_elements(
            seed_to_elements(seed) + list(code_commitment) + list(storage_commitment) + list(anchor_commitment)
        )
        meta = (storage_mode.bits << 6) | (account_type.bits << 4) | ACCOUNT_ID_VERSION
        return cls(prefix=(digest[0] & _PREFIX_MASK) | meta, suffix=(digest[1] & _SUFFIX_HASH_MASK) | (int(anchor_block_num) << 8))

    @property
    def anchor_block_num(self) -> int:
        return (self.suffix >> 8) & MAX_ANCHOR_BLOCK

    @property
    def account_type(self) -> AccountType:
        return _TYPE_BY_BITS[(self.prefix >> 4) & 0b11]

    @property
    def storage_mode(self) -> AccountStorageMode:
        return _MODE_BY_BITS[(self.prefix >> 6) & 0b11]

    def is_faucet(self) -> bool:
        return self.account_type.is_faucet()

    def is_public(self) -> bool:
        return self.storage_mode is AccountStorageMode.PUBLIC

    def elements(self) -> List[int]:
        return [self.prefix, self.suffix]

    def to_hex(self) -> str:
        return f"0x{self.prefix:016x}{self.suffix >> 8:014x}"

    @classmethod
    def from_hex(cls, s: str) -> "AccountId":
        raw = str(s or "").strip().lower()
        if raw.startswith("0x"):
            raw = raw[2:]
        if len(raw) != 30:
            raise ValueError(f"account id hex must be 30 digits (got {len(raw)})")
        try:
            return cls(prefix=int(raw[:16], 16), suffix=int(raw[16:], 16) << 8)
        except ValueError as e:
            raise ValueError(f"invalid account id hex: {s!r}") from e

    def to_json(self) -> str:
        return self.to_hex()

    @classmethod
    def from_json(cls, j: str) -> "AccountId":
        return cls.from_hex(j)

    def __str__(self) -> str:
        return self.to_hex()
