# src/noteflow/objects/transaction.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from noteflow.crypto.felt import Word, hash_elements, words_to_elements
from noteflow.crypto.sig import AuthSignature
from noteflow.errors import TransactionBuildFailure
from noteflow.objects.account import Account, AccountDelta
from noteflow.objects.account_id import AccountId
from noteflow.objects.note import Note, NoteInclusionProof

Json = Dict[str, Any]


@dataclass(frozen=True)
class OutputNote:
    """A note the transaction creates. Only full notes (all details public to the ledger) are supported."""

    note: Note
    mode: str = "full"

    @classmethod
    def full(cls, note: Note) -> "OutputNote":
        return cls(note=note, mode="full")

    def id(self) -> Word:
        return self.note.id()

    def to_json(self) -> Json:
        return {"mode": self.mode, "note": self.note.to_json()}

    @classmethod
    def from_json(cls, j: Json) -> "OutputNote":
        mode = str(j.get("mode") or "full")
        if mode != "full":
            raise ValueError(f"unsupported output note mode: {mode!r}")
        return cls(note=Note.from_json(j.get("note") or {}), mode=mode)


@dataclass(frozen=True)
class InputNote:
    note: Note
    proof: Optional[NoteInclusionProof] = None

    def to_json(self) -> Json:
        return {"note": self.note.to_json(), "proof": None if self.proof is None else self.proof.to_json()}

    @classmethod
    def from_json(cls, j: Json) -> "InputNote":
        proof = j.get("proof")
        return cls(
            note=Note.from_json(j.get("note") or {}),
            proof=NoteInclusionProof.from_json(proof) if isinstance(proof, dict) else None,
        )


@dataclass(frozen=True)
class TransactionRequest:
    own_output_notes: Tuple[OutputNote, ...] = ()
    unauthenticated_input_notes: Tuple[InputNote, ...] = ()
    expiration_delta: Optional[int] = None

    def input_notes(self) -> Tuple[Note, ...]:
        return tuple(i.note for i in self.unauthenticated_input_notes)

    def output_notes(self) -> Tuple[Note, ...]:
        return tuple(o.note for o in self.own_output_notes)

    def commitment(self) -> Word:
        elems = words_to_elements(n.commitment() for n in self.input_notes())
        elems += [0, 0, 0, 0]
        elems += words_to_elements(n.commitment() for n in self.output_notes())
        return hash_elements(elems)

    def to_json(self) -> Json:
        return {
            "own_output_notes": [o.to_json() for o in self.own_output_notes],
            "unauthenticated_input_notes": [i.to_json() for i in self.unauthenticated_input_notes],
            "expiration_delta": self.expiration_delta,
        }

    @classmethod
    def from_json(cls, j: Json) -> "TransactionRequest":
        exp = j.get("expiration_delta")
        return cls(
            own_output_notes=tuple(OutputNote.from_json(o) for o in j.get("own_output_notes") or []),
            unauthenticated_input_notes=tuple(InputNote.from_json(i) for i in j.get("unauthenticated_input_notes") or []),
            expiration_delta=None if exp is None else int(exp),
        )


class TransactionRequestBuilder:
    def __init__(self) -> None:
        self._outputs: List[OutputNote] = []
        self._inputs: List[InputNote] = []
        self._expiration_delta: Optional[int] = None

    def own_output_notes(self, notes: List[OutputNote]) -> "TransactionRequestBuilder":
        self._outputs.extend(notes)
        return self

    def unauthenticated_input_notes(
        self, notes: List[Tuple[Note, Optional[NoteInclusionProof]]]
    ) -> "TransactionRequestBuilder":
        self._inputs.extend(InputNote(note=n, proof=p) for n, p in notes)
        return self

    def expiration_delta(self, blocks: int) -> "TransactionRequestBuilder":
        if not (1 <= int(blocks) <= 0xFFFF):
            raise TransactionBuildFailure("expiration delta out of range", {"blocks": blocks})
        self._expiration_delta = int(blocks)
        return self

    def build(self) -> TransactionRequest:
        if not self._outputs and not self._inputs:
            raise TransactionBuildFailure("transaction request has no input or output notes")

        seen: Dict[Word, str] = {}
        for label, note in [("output", o.note) for o in self._outputs] + [("input", i.note) for i in self._inputs]:
            nid = note.id()
            if nid in seen:
                raise TransactionBuildFailure(
                    "duplicate note in transaction request", {"note_id": nid.to_hex(), "as": [seen[nid], label]}
                )
            seen[nid] = label

        return TransactionRequest(
            own_output_notes=tuple(self._outputs),
            unauthenticated_input_notes=tuple(self._inputs),
            expiration_delta=self._expiration_delta,
        )


def auth_message(account: Account, request: TransactionRequest) -> Word:
    """Message an Ed25519-authenticated account signs: binds its current state to the request."""
    return hash_elements(account.id.elements() + [0, 0] + list(account.commitment()) + list(request.commitment()))


def compute_transaction_id(
    initial_commitment: Word, final_commitment: Word, input_nullifiers: Tuple[Word, ...], output_note_ids: Tuple[Word, ...]
) -> Word:
    return hash_elements(
        list(initial_commitment)
        + list(final_commitment)
        + list(hash_elements(words_to_elements(input_nullifiers)))
        + list(hash_elements(words_to_elements(output_note_ids)))
    )


@dataclass(frozen=True)
class ExecutedTransaction:
    """Outcome of executing a request against one account at a reference block."""

    account_id: AccountId
    initial_commitment: Word
    final_commitment: Word
    delta: AccountDelta
    input_nullifiers: Tuple[Word, ...]
    input_note_ids: Tuple[Word, ...]
    output_notes: Tuple[OutputNote, ...]
    block_ref: int
    expiration_block: Optional[int] = None

    def id(self) -> Word:
        return compute_transaction_id(
            self.initial_commitment,
            self.final_commitment,
            self.input_nullifiers,
            tuple(o.id() for o in self.output_notes),
        )

    def to_json(self) -> Json:
        return {
            "id": self.id().to_hex(),
            "account_id": self.account_id.to_hex(),
            "initial_commitment": self.initial_commitment.to_hex(),
            "final_commitment": self.final_commitment.to_hex(),
            "delta": self.delta.to_json(),
            "input_nullifiers": [n.to_hex() for n in self.input_nullifiers],
            "input_note_ids": [n.to_hex() for n in self.input_note_ids],
            "output_notes": [o.to_json() for o in self.output_notes],
            "block_ref": int(self.block_ref),
            "expiration_block": self.expiration_block,
        }

    @classmethod
    def from_json(cls, j: Json) -> "ExecutedTransaction":
        exp = j.get("expiration_block")
        tx = cls(
            account_id=AccountId.from_hex(str(j.get("account_id") or "")),
            initial_commitment=Word.from_hex(str(j.get("initial_commitment") or "")),
            final_commitment=Word.from_hex(str(j.get("final_commitment") or "")),
            delta=AccountDelta.from_json(j.get("delta") or {}),
            input_nullifiers=tuple(Word.from_hex(str(n)) for n in j.get("input_nullifiers") or []),
            input_note_ids=tuple(Word.from_hex(str(n)) for n in j.get("input_note_ids") or []),
            output_notes=tuple(OutputNote.from_json(o) for o in j.get("output_notes") or []),
            block_ref=int(j.get("block_ref", 0)),
            expiration_block=None if exp is None else int(exp),
        )
        claimed = j.get("id")
        if claimed is not None and Word.from_hex(str(claimed)) != tx.id():
            raise ValueError("executed transaction id does not match its contents")
        return tx


@dataclass(frozen=True)
class TransactionInputs:
    """Everything needed to (re-)execute a transaction: the submission payload."""

    account: Account
    request: TransactionRequest
    account_seed: Optional[bytes] = None
    signature: Optional[AuthSignature] = None

    def to_json(self) -> Json:
        return {
            "account": self.account.to_json(),
            "request": self.request.to_json(),
            "account_seed": None if self.account_seed is None else bytes(self.account_seed).hex(),
            "signature": None if self.signature is None else self.signature.to_json(),
        }

    @classmethod
    def from_json(cls, j: Json) -> "TransactionInputs":
        seed = j.get("account_seed")
        sig = j.get("signature")
        return cls(
            account=Account.from_json(j.get("account") or {}),
            request=TransactionRequest.from_json(j.get("request") or {}),
            account_seed=bytes.fromhex(str(seed)) if seed else None,
            signature=AuthSignature.from_json(sig) if isinstance(sig, dict) else None,
        )


@dataclass(frozen=True)
class TransactionResult:
    """Executed transaction, the inputs it ran on, and the account state it leads to."""

    executed_transaction: ExecutedTransaction
    inputs: TransactionInputs
    final_account: Account

    @property
    def id(self) -> Word:
        return self.executed_transaction.id()

    @property
    def account_id(self) -> AccountId:
        return self.executed_transaction.account_id

    @property
    def account_delta(self) -> AccountDelta:
        return self.executed_transaction.delta

    @property
    def created_notes(self) -> Tuple[Note, ...]:
        return tuple(o.note for o in self.executed_transaction.output_notes)

    @property
    def consumed_notes(self) -> Tuple[Note, ...]:
        return self.inputs.request.input_notes()

    def to_json(self) -> Json:
        return {
            "executed_transaction": self.executed_transaction.to_json(),
            "inputs": self.inputs.to_json(),
            "final_account": self.final_account.to_json(),
        }

    @classmethod
    def from_json(cls, j: Json) -> "TransactionResult":
        return cls(
            executed_transaction=ExecutedTransaction.from_json(j.get("executed_transaction") or {}),
            inputs=TransactionInputs.from_json(j.get("inputs") or {}),
            final_account=Account.from_json(j.get("final_account") or {}),
        )
