# src/noteflow/notes.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence, Tuple

from noteflow.client.client import Client
from noteflow.errors import TransactionBuildFailure
from noteflow.objects.account_id import AccountId
from noteflow.objects.asset import NoteAssets
from noteflow.objects.note import (
    Note,
    NoteExecutionHint,
    NoteInputs,
    NoteMetadata,
    NoteRecipient,
    NoteScript,
    NoteTag,
    NoteType,
)
from noteflow.package import Package


@dataclass(frozen=True)
class NoteCreationConfig:
    note_type: NoteType = NoteType.PUBLIC
    tag: NoteTag = field(default_factory=lambda: NoteTag.for_local_use_case(0, 0))
    assets: NoteAssets = field(default_factory=NoteAssets)
    inputs: Tuple[int, ...] = ()
    execution_hint: NoteExecutionHint = field(default_factory=NoteExecutionHint.always)
    aux: int = 0

    def with_inputs(self, inputs: Sequence[int]) -> "NoteCreationConfig":
        return NoteCreationConfig(
            note_type=self.note_type,
            tag=self.tag,
            assets=self.assets,
            inputs=tuple(inputs),
            execution_hint=self.execution_hint,
            aux=self.aux,
        )


def create_note_from_package(
    client: Client,
    package: Package,
    sender_id: AccountId,
    config: NoteCreationConfig,
) -> Note:
    """Build a note whose script is the package's program.

    The serial number comes from the client's rng, so notes built from the
    same script and inputs still get distinct ids. Input order is kept. Raises
    TooManyInputs past MAX_INPUTS_PER_NOTE.
    """
    script = NoteScript.from_program(package.unwrap_program())
    serial_num = client.rng().draw_word()
    try:
        inputs = NoteInputs(tuple(config.inputs))
    except ValueError as e:
        raise TransactionBuildFailure("invalid note inputs", {"error": str(e)}) from e
    recipient = NoteRecipient(serial_num=serial_num, script=script, inputs=inputs)
    try:
        metadata = NoteMetadata(
            sender=sender_id,
            note_type=config.note_type,
            tag=config.tag,
            execution_hint=config.execution_hint,
            aux=config.aux,
        )
    except ValueError as e:
        raise TransactionBuildFailure("invalid note metadata", {"error": str(e)}) from e
    return Note(assets=config.assets, metadata=metadata, recipient=recipient)
