# src/noteflow/orchestrator.py
"""Publish/consume sequencing for notes.

Per note:

  IDLE -> BUILT -> SUBMITTED -> SYNCED -> CONSUMABLE
                                       `-> (stays SYNCED until the note is seen committed)
  CONSUMABLE -> CONSUME_BUILT -> CONSUME_SUBMITTED -> CONSUME_SYNCED -> DONE

Any publish failure before submission completes moves the flow to FAILED.
Consumption is only reachable from CONSUMABLE, so a note can never be
consumed before the sync that follows its publication. A consume that fails
while building or executing goes back to CONSUMABLE. One that fails during
submission stays at CONSUME_BUILT until refresh() sees whether the ledger
consumed the note (DONE) or not (CONSUMABLE). Nothing is retried; callers
re-invoke publish(), refresh() or consume().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

from noteflow.client.client import Client
from noteflow.crypto.felt import Word
from noteflow.errors import ConsumptionFailure, NoteflowError, SubmissionFailure
from noteflow.objects.account_id import AccountId
from noteflow.objects.note import Note
from noteflow.objects.transaction import OutputNote, TransactionRequestBuilder, TransactionResult
from noteflow.structured_logging import log_event

log = logging.getLogger("noteflow.orchestrator")


class Phase(str, Enum):
    IDLE = "idle"
    BUILT = "built"
    SUBMITTED = "submitted"
    SYNCED = "synced"
    CONSUMABLE = "consumable"
    FAILED = "failed"
    CONSUME_BUILT = "consume_built"
    CONSUME_SUBMITTED = "consume_submitted"
    CONSUME_SYNCED = "consume_synced"
    DONE = "done"


@dataclass
class NoteFlow:
    note: Note
    sender_id: Optional[AccountId]
    phase: Phase = Phase.IDLE
    publish_tx_id: Optional[Word] = None
    consume_tx_id: Optional[Word] = None
    consumer_id: Optional[AccountId] = None
    error: Optional[str] = None

    @property
    def note_id(self) -> Word:
        return self.note.id()


class TransactionOrchestrator:
    def __init__(self, client: Client) -> None:
        self.client = client
        self._flows: Dict[Word, NoteFlow] = {}

    # ----------------------------
    # Accessors
    # ----------------------------

    def flow(self, note_id: Word) -> Optional[NoteFlow]:
        return self._flows.get(note_id)

    def phase(self, note_id: Word) -> Phase:
        f = self._flows.get(note_id)
        return Phase.IDLE if f is None else f.phase

    def _set_phase(self, flow: NoteFlow, phase: Phase, **fields) -> None:
        prev = flow.phase
        flow.phase = phase
        log_event(
            log,
            "orchestrator_transition",
            note_id=flow.note_id.to_hex(),
            from_phase=prev.value,
            to_phase=phase.value,
            **fields,
        )

    def _note_committed_locally(self, note_id: Word) -> bool:
        rec = self.client.get_input_note(note_id)
        return rec is not None and rec.is_committed()

    def _note_consumed_locally(self, note_id: Word) -> bool:
        rec = self.client.get_input_note(note_id)
        return rec is not None and rec.is_consumed()

    # ----------------------------
    # Publish
    # ----------------------------

    def publish(self, sender_id: AccountId, note: Note) -> NoteFlow:
        """Create `note` as a full output of `sender_id`, submit it, then sync."""
        existing = self._flows.get(note.id())
        if existing is not None and existing.phase not in (Phase.IDLE, Phase.FAILED):
            raise SubmissionFailure(
                "note was already published", {"note_id": note.id().to_hex(), "phase": existing.phase.value}
            )

        flow = NoteFlow(note=note, sender_id=sender_id)
        self._flows[note.id()] = flow
        try:
            request = TransactionRequestBuilder().own_output_notes([OutputNote.full(note)]).build()
            self._set_phase(flow, Phase.BUILT, sender_id=sender_id.to_hex())
            result = self.client.new_transaction(sender_id, request)
            self.client.submit_transaction(result)
        except NoteflowError as e:
            flow.error = str(e)
            self._set_phase(flow, Phase.FAILED, error=flow.error)
            raise

        flow.publish_tx_id = result.id
        self._set_phase(flow, Phase.SUBMITTED, tx_id=result.id.to_hex())
        return self.refresh(note.id())

    def refresh(self, note_id: Word) -> NoteFlow:
        """Sync, then advance a submitted flow as far as the local store allows."""
        flow = self._flows.get(note_id)
        if flow is None:
            raise ConsumptionFailure("note not found", {"note_id": note_id.to_hex()})
        if flow.phase not in (Phase.SUBMITTED, Phase.SYNCED, Phase.CONSUME_BUILT, Phase.CONSUME_SUBMITTED):
            return flow

        self.client.sync_state()
        if flow.phase is Phase.CONSUME_BUILT:
            # Submission failed on our side; the ledger decides which way it went.
            if not self._note_consumed_locally(note_id):
                self._set_phase(flow, Phase.CONSUMABLE)
                return flow
            self._set_phase(flow, Phase.CONSUME_SUBMITTED)
        if flow.phase is Phase.CONSUME_SUBMITTED:
            self._set_phase(flow, Phase.CONSUME_SYNCED)
            self._set_phase(flow, Phase.DONE)
            return flow

        if flow.phase is Phase.SUBMITTED:
            self._set_phase(flow, Phase.SYNCED)
        if self._note_committed_locally(note_id):
            self._set_phase(flow, Phase.CONSUMABLE)
        return flow

    # ----------------------------
    # Consume
    # ----------------------------

    def _resolve(self, flow_or_note_id: Union[NoteFlow, Word]) -> NoteFlow:
        note_id = flow_or_note_id.note_id if isinstance(flow_or_note_id, NoteFlow) else flow_or_note_id
        flow = self._flows.get(note_id)
        if flow is not None:
            return flow

        # A note this orchestrator did not publish is consumable once sync has committed it.
        rec = self.client.get_input_note(note_id)
        if rec is None or not rec.is_committed():
            raise ConsumptionFailure("note not found", {"note_id": note_id.to_hex()})
        flow = NoteFlow(note=rec.note, sender_id=rec.note.metadata.sender, phase=Phase.CONSUMABLE)
        self._flows[note_id] = flow
        return flow

    def consume(self, flow_or_note_id: Union[NoteFlow, Word], account_id: AccountId) -> TransactionResult:
        """Consume a CONSUMABLE note as an unauthenticated input of `account_id`, submit, then sync."""
        flow = self._resolve(flow_or_note_id)
        note_id = flow.note_id
        if flow.phase is not Phase.CONSUMABLE or not self._note_committed_locally(note_id):
            raise ConsumptionFailure("note not found", {"note_id": note_id.to_hex(), "phase": flow.phase.value})

        try:
            request = TransactionRequestBuilder().unauthenticated_input_notes([(flow.note, None)]).build()
            self._set_phase(flow, Phase.CONSUME_BUILT, account_id=account_id.to_hex())
            result = self.client.new_transaction(account_id, request)
        except NoteflowError as e:
            flow.error = str(e)
            self._set_phase(flow, Phase.CONSUMABLE, error=flow.error)
            raise

        flow.consume_tx_id = result.id
        flow.consumer_id = account_id
        try:
            self.client.submit_transaction(result)
        except NoteflowError as e:
            # The ledger may have accepted it anyway; refresh() settles the phase.
            flow.error = str(e)
            log_event(
                log,
                "orchestrator_submit_unresolved",
                note_id=note_id.to_hex(),
                tx_id=result.id.to_hex(),
                phase=flow.phase.value,
                error=flow.error,
            )
            raise

        self._set_phase(flow, Phase.CONSUME_SUBMITTED, tx_id=result.id.to_hex())
        self.refresh(note_id)
        return result
