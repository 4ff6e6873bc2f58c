# src/noteflow/rpc/api.py
"""Ledger endpoint interface and its wire types.

Every method is a single request/response exchange. Implementations never
retry; failures surface as RpcFailure (transport) or as the error class the
node's error code maps to (see rpc.errors).
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from noteflow.crypto.felt import Word
from noteflow.objects.account import Account
from noteflow.objects.account_id import AccountId
from noteflow.objects.block import BlockHeader
from noteflow.objects.note import Note, NoteInclusionProof, NoteTag
from noteflow.objects.transaction import TransactionInputs, TransactionResult

Json = Dict[str, Any]

DEFAULT_TIMEOUT_MS = 10_000


@dataclass(frozen=True)
class Endpoint:
    protocol: str
    host: str
    port: Optional[int] = None

    @classmethod
    def localhost(cls) -> "Endpoint":
        return cls("http", "127.0.0.1", 57291)

    @classmethod
    def parse(cls, url: str) -> "Endpoint":
        raw = str(url or "").strip()
        if raw == "localhost":
            return cls.localhost()
        u = urlparse(raw)
        if u.scheme not in ("http", "https") or not u.hostname:
            raise ValueError(f"endpoint must be an http(s) URL (got {url!r})")
        if u.path not in ("", "/") or u.query or u.fragment:
            raise ValueError("endpoint URL must not carry a path, query or fragment")
        return cls(u.scheme, u.hostname, u.port)

    def base_url(self) -> str:
        if self.port is None:
            return f"{self.protocol}://{self.host}"
        return f"{self.protocol}://{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.base_url()


@dataclass(frozen=True)
class CommittedNote:
    note: Note
    proof: NoteInclusionProof

    def to_json(self) -> Json:
        return {"note": self.note.to_json(), "proof": self.proof.to_json()}

    @classmethod
    def from_json(cls, j: Json) -> "CommittedNote":
        return cls(note=Note.from_json(j.get("note") or {}), proof=NoteInclusionProof.from_json(j.get("proof") or {}))


@dataclass(frozen=True)
class AccountUpdate:
    """On-chain account state change. `account` is only present for public accounts."""

    account_id: AccountId
    commitment: Word
    block_num: int
    account: Optional[Account] = None

    def to_json(self) -> Json:
        return {
            "account_id": self.account_id.to_hex(),
            "commitment": self.commitment.to_hex(),
            "block_num": int(self.block_num),
            "account": None if self.account is None else self.account.to_json(),
        }

    @classmethod
    def from_json(cls, j: Json) -> "AccountUpdate":
        acct = j.get("account")
        return cls(
            account_id=AccountId.from_hex(str(j.get("account_id") or "")),
            commitment=Word.from_hex(str(j.get("commitment") or "")),
            block_num=int(j.get("block_num", 0)),
            account=Account.from_json(acct) if isinstance(acct, dict) else None,
        )


@dataclass(frozen=True)
class CommittedTransaction:
    id: Word
    account_id: AccountId
    block_num: int

    def to_json(self) -> Json:
        return {"id": self.id.to_hex(), "account_id": self.account_id.to_hex(), "block_num": int(self.block_num)}

    @classmethod
    def from_json(cls, j: Json) -> "CommittedTransaction":
        return cls(
            id=Word.from_hex(str(j.get("id") or "")),
            account_id=AccountId.from_hex(str(j.get("account_id") or "")),
            block_num=int(j.get("block_num", 0)),
        )


@dataclass(frozen=True)
class SyncStateResponse:
    chain_tip: BlockHeader
    notes: Tuple[CommittedNote, ...] = ()
    nullifiers: Tuple[Tuple[Word, int], ...] = ()
    accounts: Tuple[AccountUpdate, ...] = ()
    transactions: Tuple[CommittedTransaction, ...] = ()
    block_headers: Tuple[BlockHeader, ...] = field(default_factory=tuple)

    def to_json(self) -> Json:
        return {
            "chain_tip": self.chain_tip.to_json(),
            "notes": [n.to_json() for n in self.notes],
            "nullifiers": [[n.to_hex(), int(b)] for n, b in self.nullifiers],
            "accounts": [a.to_json() for a in self.accounts],
            "transactions": [t.to_json() for t in self.transactions],
            "block_headers": [h.to_json() for h in self.block_headers],
        }

    @classmethod
    def from_json(cls, j: Json) -> "SyncStateResponse":
        return cls(
            chain_tip=BlockHeader.from_json(j.get("chain_tip") or {}),
            notes=tuple(CommittedNote.from_json(n) for n in j.get("notes") or []),
            nullifiers=tuple((Word.from_hex(str(n)), int(b)) for n, b in j.get("nullifiers") or []),
            accounts=tuple(AccountUpdate.from_json(a) for a in j.get("accounts") or []),
            transactions=tuple(CommittedTransaction.from_json(t) for t in j.get("transactions") or []),
            block_headers=tuple(BlockHeader.from_json(h) for h in j.get("block_headers") or []),
        )


@dataclass(frozen=True)
class AccountDetails:
    account_id: AccountId
    commitment: Word
    block_num: int
    account: Optional[Account] = None

    def to_json(self) -> Json:
        return {
            "account_id": self.account_id.to_hex(),
            "commitment": self.commitment.to_hex(),
            "block_num": int(self.block_num),
            "account": None if self.account is None else self.account.to_json(),
        }

    @classmethod
    def from_json(cls, j: Json) -> "AccountDetails":
        acct = j.get("account")
        return cls(
            account_id=AccountId.from_hex(str(j.get("account_id") or "")),
            commitment=Word.from_hex(str(j.get("commitment") or "")),
            block_num=int(j.get("block_num", 0)),
            account=Account.from_json(acct) if isinstance(acct, dict) else None,
        )


@dataclass(frozen=True)
class SubmitResult:
    tx_id: Word
    block_num: int

    def to_json(self) -> Json:
        return {"tx_id": self.tx_id.to_hex(), "block_num": int(self.block_num)}

    @classmethod
    def from_json(cls, j: Json) -> "SubmitResult":
        return cls(tx_id=Word.from_hex(str(j.get("tx_id") or "")), block_num=int(j.get("block_num", 0)))


class NodeRpcApi(abc.ABC):
    """Ledger endpoint used by the client."""

    @abc.abstractmethod
    def sync_state(
        self,
        block_num: int,
        account_ids: Sequence[AccountId],
        note_tags: Sequence[NoteTag],
        note_ids: Sequence[Word] = (),
    ) -> SyncStateResponse: ...

    @abc.abstractmethod
    def execute_transaction(self, inputs: TransactionInputs) -> TransactionResult: ...

    @abc.abstractmethod
    def submit_transaction(self, inputs: TransactionInputs, tx_id: Word) -> SubmitResult: ...

    @abc.abstractmethod
    def get_block_header(self, block_num: Optional[int] = None) -> BlockHeader: ...

    @abc.abstractmethod
    def get_account_details(self, account_id: AccountId) -> AccountDetails: ...


def sync_request_json(
    block_num: int, account_ids: Sequence[AccountId], note_tags: Sequence[NoteTag], note_ids: Sequence[Word]
) -> Json:
    return {
        "block_num": int(block_num),
        "account_ids": [a.to_hex() for a in account_ids],
        "note_tags": [int(t) for t in note_tags],
        "note_ids": [n.to_hex() for n in note_ids],
    }


def parse_sync_request(j: Json) -> Tuple[int, List[AccountId], List[NoteTag], List[Word]]:
    return (
        int(j.get("block_num", 0)),
        [AccountId.from_hex(str(a)) for a in j.get("account_ids") or []],
        [NoteTag(int(t)) for t in j.get("note_tags") or []],
        [Word.from_hex(str(n)) for n in j.get("note_ids") or []],
    )
