# src/noteflow/objects/note.py
"""Notes: the unit of value and message transfer between accounts.

Commitment scheme:

  recipient digest = hash(hash(hash(serial, ZERO), script_root), inputs_commitment)
  note id          = hash(recipient digest, asset_commitment)
  note commitment  = hash(note id, metadata word)
  nullifier        = hash(serial, script_root, inputs_commitment, asset_commitment)

A note is fully determined by (serial, script, inputs, assets, metadata); it
is immutable once built.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from noteflow.crypto.felt import P, Word, felt, hash_elements, merge
from noteflow.errors import TooManyInputs
from noteflow.objects.account_id import AccountId
from noteflow.objects.asset import NoteAssets
from noteflow.package import MastForest, Program

Json = Dict[str, Any]

MAX_INPUTS_PER_NOTE = 128

MAX_USE_CASE = (1 << 14) - 1
MAX_TAG_PAYLOAD = (1 << 16) - 1


class NoteType(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"

    @property
    def bits(self) -> int:
        return 1 if self is NoteType.PUBLIC else 2


# ---------------------------------------------------------------------------
# Tag
# ---------------------------------------------------------------------------

# Top two bits of a tag select the execution mode.
_TAG_NETWORK = 0b00
_TAG_PUBLIC_USE_CASE = 0b10
_TAG_LOCAL = 0b11


@dataclass(frozen=True, order=True)
class NoteTag:
    """32-bit routing tag used by sync to select notes of interest."""

    value: int

    def __post_init__(self) -> None:
        if not (0 <= int(self.value) < (1 << 32)):
            raise ValueError(f"note tag must be a u32 (got {self.value})")

    @property
    def mode(self) -> int:
        return (int(self.value) >> 30) & 0b11

    @classmethod
    def for_local_use_case(cls, use_case: int, payload: int) -> "NoteTag":
        _check_use_case(use_case, payload)
        return cls((_TAG_LOCAL << 30) | (int(use_case) << 16) | int(payload))

    @classmethod
    def for_public_use_case(cls, use_case: int, payload: int, note_type: NoteType) -> "NoteTag":
        if note_type is not NoteType.PUBLIC:
            raise ValueError("public use-case tags require a public note")
        _check_use_case(use_case, payload)
        return cls((_TAG_PUBLIC_USE_CASE << 30) | (int(use_case) << 16) | int(payload))

    @classmethod
    def from_account_id(cls, account_id: AccountId, note_type: NoteType) -> "NoteTag":
        if note_type is NoteType.PUBLIC and account_id.is_public():
            return cls((_TAG_NETWORK << 30) | ((account_id.prefix >> 33) & 0x3FFF_FFFF))
        return cls((_TAG_LOCAL << 30) | (((account_id.prefix >> 49) & MAX_USE_CASE) << 16))

    def validate(self, note_type: NoteType) -> "NoteTag":
        if self.mode in (_TAG_NETWORK, _TAG_PUBLIC_USE_CASE) and note_type is not NoteType.PUBLIC:
            raise ValueError(f"tag 0x{self.value:08x} requires a public note")
        return self

    def __int__(self) -> int:
        return int(self.value)


def _check_use_case(use_case: int, payload: int) -> None:
    if not (0 <= int(use_case) <= MAX_USE_CASE):
        raise ValueError(f"use case must be < 2^14 (got {use_case})")
    if not (0 <= int(payload) <= MAX_TAG_PAYLOAD):
        raise ValueError(f"tag payload must be < 2^16 (got {payload})")


# ---------------------------------------------------------------------------
# Execution hint
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoteExecutionHint:
    kind: str
    block_num: int = 0

    NONE = "none"
    ALWAYS = "always"
    AFTER_BLOCK = "after_block"

    @classmethod
    def none(cls) -> "NoteExecutionHint":
        return cls(cls.NONE)

    @classmethod
    def always(cls) -> "NoteExecutionHint":
        return cls(cls.ALWAYS)

    @classmethod
    def after_block(cls, block_num: int) -> "NoteExecutionHint":
        if not (0 <= int(block_num) < (1 << 32)):
            raise ValueError(f"block number out of range: {block_num}")
        return cls(cls.AFTER_BLOCK, int(block_num))

    def can_be_consumed(self, block_num: int) -> Optional[bool]:
        """None means the hint carries no information."""
        if self.kind == self.NONE:
            return None
        if self.kind == self.ALWAYS:
            return True
        return int(block_num) >= self.block_num

    def to_felt(self) -> int:
        tag = {self.NONE: 0, self.ALWAYS: 1, self.AFTER_BLOCK: 2}[self.kind]
        return (self.block_num << 8) | tag

    @classmethod
    def from_felt(cls, v: int) -> "NoteExecutionHint":
        tag, payload = int(v) & 0xFF, int(v) >> 8
        if tag == 0:
            return cls.none()
        if tag == 1:
            return cls.always()
        if tag == 2:
            return cls.after_block(payload)
        raise ValueError(f"unknown execution hint tag: {tag}")


# ---------------------------------------------------------------------------
# Inputs / script / recipient
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoteInputs:
    values: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        vals = tuple(felt(v) for v in self.values)
        if len(vals) > MAX_INPUTS_PER_NOTE:
            raise TooManyInputs("too many note inputs", {"count": len(vals), "max": MAX_INPUTS_PER_NOTE})
        object.__setattr__(self, "values", vals)

    def __len__(self) -> int:
        return len(self.values)

    def commitment(self) -> Word:
        return hash_elements(self.values)


@dataclass(frozen=True)
class NoteScript:
    forest: MastForest
    entrypoint: str

    @classmethod
    def from_program(cls, program: Program) -> "NoteScript":
        return cls(forest=program.forest, entrypoint=program.entrypoint)

    def root(self) -> Word:
        return merge(self.forest.procedure_root(self.entrypoint), self.forest.commitment())

    def to_json(self) -> Json:
        return {"entrypoint": self.entrypoint, "forest": self.forest.to_json()}

    @classmethod
    def from_json(cls, j: Json) -> "NoteScript":
        return cls(forest=MastForest.from_json(j.get("forest")), entrypoint=str(j.get("entrypoint") or ""))


@dataclass(frozen=True)
class NoteRecipient:
    serial_num: Word
    script: NoteScript
    inputs: NoteInputs

    def digest(self) -> Word:
        serial_hash = merge(self.serial_num, Word.ZERO)  # type: ignore[attr-defined]
        return merge(merge(serial_hash, self.script.root()), self.inputs.commitment())

    def to_json(self) -> Json:
        return {
            "serial_num": self.serial_num.to_json(),
            "script": self.script.to_json(),
            "inputs": list(self.inputs.values),
        }

    @classmethod
    def from_json(cls, j: Json) -> "NoteRecipient":
        return cls(
            serial_num=Word(j.get("serial_num") or ()),
            script=NoteScript.from_json(j.get("script") or {}),
            inputs=NoteInputs(tuple(j.get("inputs") or ())),
        )


@dataclass(frozen=True)
class NoteMetadata:
    sender: AccountId
    note_type: NoteType
    tag: NoteTag
    execution_hint: NoteExecutionHint = NoteExecutionHint.always()
    aux: int = 0

    def __post_init__(self) -> None:
        self.tag.validate(self.note_type)
        felt(self.aux)

    def to_word(self) -> Word:
        type_and_tag = (self.note_type.bits << 32) | int(self.tag)
        return Word((self.sender.prefix, self.sender.suffix, type_and_tag, self.execution_hint.to_felt() % P))

    def to_json(self) -> Json:
        return {
            "sender": self.sender.to_hex(),
            "note_type": self.note_type.value,
            "tag": int(self.tag),
            "execution_hint": {"kind": self.execution_hint.kind, "block_num": self.execution_hint.block_num},
            "aux": int(self.aux),
        }

    @classmethod
    def from_json(cls, j: Json) -> "NoteMetadata":
        hint = j.get("execution_hint") or {}
        return cls(
            sender=AccountId.from_hex(str(j.get("sender") or "")),
            note_type=NoteType(str(j.get("note_type") or "")),
            tag=NoteTag(int(j.get("tag", 0))),
            execution_hint=NoteExecutionHint(str(hint.get("kind") or "none"), int(hint.get("block_num", 0))),
            aux=int(j.get("aux", 0)),
        )


# ---------------------------------------------------------------------------
# Note
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Note:
    assets: NoteAssets
    metadata: NoteMetadata
    recipient: NoteRecipient

    def id(self) -> Word:
        return merge(self.recipient.digest(), self.assets.commitment())

    def commitment(self) -> Word:
        return merge(self.id(), self.metadata.to_word())

    def nullifier(self) -> Word:
        return hash_elements(
            list(self.recipient.serial_num)
            + list(self.recipient.script.root())
            + list(self.recipient.inputs.commitment())
            + list(self.assets.commitment())
        )

    @property
    def serial_num(self) -> Word:
        return self.recipient.serial_num

    @property
    def script(self) -> NoteScript:
        return self.recipient.script

    @property
    def inputs(self) -> NoteInputs:
        return self.recipient.inputs

    def to_json(self) -> Json:
        return {
            "assets": self.assets.to_json(),
            "metadata": self.metadata.to_json(),
            "recipient": self.recipient.to_json(),
        }

    @classmethod
    def from_json(cls, j: Json) -> "Note":
        return cls(
            assets=NoteAssets.from_json(j.get("assets") or []),
            metadata=NoteMetadata.from_json(j.get("metadata") or {}),
            recipient=NoteRecipient.from_json(j.get("recipient") or {}),
        )


@dataclass(frozen=True)
class NoteInclusionProof:
    """Where a note was committed. Only the block and index are tracked."""

    block_num: int
    note_index: int

    def to_json(self) -> Json:
        return {"block_num": int(self.block_num), "note_index": int(self.note_index)}

    @classmethod
    def from_json(cls, j: Json) -> "NoteInclusionProof":
        return cls(block_num=int(j.get("block_num", 0)), note_index=int(j.get("note_index", 0)))


def note_ids(notes: Iterable[Note]) -> Tuple[Word, ...]:
    return tuple(n.id() for n in notes)
