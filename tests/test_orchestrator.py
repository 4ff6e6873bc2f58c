from __future__ import annotations

from typing import Callable, Tuple

import pytest

from noteflow.assembler import AccountCreationConfig
from noteflow.client.client import Client
from noteflow.crypto.felt import Word
from noteflow.errors import ConsumptionFailure, RpcFailure, SubmissionFailure
from noteflow.examples import COUNTER_KEY, counter_package, increment_note_package
from noteflow.factory import create_account_from_package, create_basic_wallet_account
from noteflow.notes import NoteCreationConfig, create_note_from_package
from noteflow.objects.account import Account
from noteflow.objects.account_id import AccountId, AccountStorageMode, AccountType
from noteflow.objects.note import Note
from noteflow.objects.storage import StorageMap, StorageSlot
from noteflow.objects.transaction import OutputNote, TransactionRequestBuilder
from noteflow.orchestrator import Phase, TransactionOrchestrator
from noteflow.session import ClientSetup
from noteflow.store.sqlite_store import InputNoteStatus, TransactionStatus

COUNTER_CFG = AccountCreationConfig.immutable(
    [StorageSlot.map_slot(StorageMap.with_entries([(COUNTER_KEY, (0, 0, 0, 0))]))]
)


def _setup(setup: ClientSetup) -> Tuple[Client, Account, Account, Note]:
    client = setup.client
    wallet, _ = create_basic_wallet_account(client, setup.keystore)
    counter, _ = create_account_from_package(client, counter_package(), COUNTER_CFG)
    note = create_note_from_package(client, increment_note_package(), wallet.id, NoteCreationConfig())
    return client, wallet, counter, note


def _count(client: Client, account_id: AccountId) -> Word:
    rec = client.get_account(account_id)
    assert rec is not None
    return rec.account.storage.get_map_item(0, COUNTER_KEY)


def test_publish_then_consume_reaches_done(make_client: Callable[..., ClientSetup]) -> None:
    client, wallet, counter, note = _setup(make_client())
    orch = TransactionOrchestrator(client)

    flow = orch.publish(wallet.id, note)
    assert flow.phase is Phase.CONSUMABLE
    assert flow.publish_tx_id is not None
    assert client.get_input_note(note.id()).status is InputNoteStatus.COMMITTED

    result = orch.consume(flow, counter.id)
    assert flow.phase is Phase.DONE
    assert flow.consume_tx_id == result.id
    assert flow.consumer_id == counter.id

    assert _count(client, counter.id) == Word((0, 0, 0, 1))
    assert client.get_input_note(note.id()).status is InputNoteStatus.CONSUMED
    assert all(t.status is TransactionStatus.COMMITTED for t in client.get_transactions())


def test_consume_before_sync_is_refused(make_client: Callable[..., ClientSetup]) -> None:
    client, wallet, counter, note = _setup(make_client())

    # Publish by hand so no sync follows the submission.
    request = TransactionRequestBuilder().own_output_notes([OutputNote.full(note)]).build()
    client.submit_transaction(client.new_transaction(wallet.id, request))
    assert client.get_input_note(note.id()).status is InputNoteStatus.EXPECTED

    orch = TransactionOrchestrator(client)
    with pytest.raises(ConsumptionFailure):
        orch.consume(note.id(), counter.id)

    client.sync_state()
    orch.consume(note.id(), counter.id)
    assert orch.phase(note.id()) is Phase.DONE
    assert _count(client, counter.id) == Word((0, 0, 0, 1))


def test_failed_consume_returns_to_consumable(make_client: Callable[..., ClientSetup]) -> None:
    client, wallet, counter, note = _setup(make_client())
    orch = TransactionOrchestrator(client)
    flow = orch.publish(wallet.id, note)

    # The wallet has no counter procedure, so executing the note script fails.
    with pytest.raises(SubmissionFailure) as ei:
        orch.consume(flow, wallet.id)
    assert ei.value.details["node_code"] == "execution_failed"
    assert flow.phase is Phase.CONSUMABLE
    assert flow.error

    stranger = AccountId.derive(
        seed=b"\x44" * 32,
        account_type=AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE,
        storage_mode=AccountStorageMode.PUBLIC,
        code_commitment=Word((1, 1, 1, 1)),
        storage_commitment=Word((2, 2, 2, 2)),
        anchor_block_num=0,
        anchor_commitment=Word((3, 3, 3, 3)),
    )
    with pytest.raises(SubmissionFailure):
        orch.consume(flow, stranger)
    assert flow.phase is Phase.CONSUMABLE

    orch.consume(flow, counter.id)
    assert flow.phase is Phase.DONE


def test_timeout_after_acceptance_is_settled_by_refresh(
    make_client: Callable[..., ClientSetup], monkeypatch: pytest.MonkeyPatch
) -> None:
    client, wallet, counter, note = _setup(make_client())
    orch = TransactionOrchestrator(client)
    flow = orch.publish(wallet.id, note)
    submit = client.submit_transaction

    def _accepted_then_timeout(result):
        submit(result)
        raise RpcFailure("timed out", {"code": "timeout"})

    with monkeypatch.context() as mp:
        mp.setattr(client, "submit_transaction", _accepted_then_timeout)
        with pytest.raises(RpcFailure):
            orch.consume(flow, counter.id)

    assert flow.phase is Phase.CONSUME_BUILT
    assert flow.error
    assert flow.consume_tx_id is not None
    with pytest.raises(ConsumptionFailure):
        orch.consume(flow, counter.id)

    orch.refresh(note.id())
    assert flow.phase is Phase.DONE
    assert _count(client, counter.id) == Word((0, 0, 0, 1))


def test_submission_that_never_landed_can_be_retried(
    make_client: Callable[..., ClientSetup], monkeypatch: pytest.MonkeyPatch
) -> None:
    client, wallet, counter, note = _setup(make_client())
    orch = TransactionOrchestrator(client)
    flow = orch.publish(wallet.id, note)

    def _refused(result):
        raise RpcFailure("connection refused", {"code": "url_error"})

    with monkeypatch.context() as mp:
        mp.setattr(client, "submit_transaction", _refused)
        with pytest.raises(RpcFailure):
            orch.consume(flow, counter.id)
    assert flow.phase is Phase.CONSUME_BUILT

    orch.refresh(note.id())
    assert flow.phase is Phase.CONSUMABLE

    orch.consume(flow, counter.id)
    assert flow.phase is Phase.DONE
    assert _count(client, counter.id) == Word((0, 0, 0, 1))


def test_note_cannot_be_published_twice(make_client: Callable[..., ClientSetup]) -> None:
    client, wallet, _, note = _setup(make_client())
    orch = TransactionOrchestrator(client)
    orch.publish(wallet.id, note)

    with pytest.raises(SubmissionFailure):
        orch.publish(wallet.id, note)


def test_publish_failure_marks_flow_failed(make_client: Callable[..., ClientSetup]) -> None:
    client, wallet, counter, note = _setup(make_client())
    orch = TransactionOrchestrator(client)

    # The counter is not the note's sender.
    with pytest.raises(SubmissionFailure):
        orch.publish(counter.id, note)
    assert orch.phase(note.id()) is Phase.FAILED

    # A failed flow may be published again.
    flow = orch.publish(wallet.id, note)
    assert flow.phase is Phase.CONSUMABLE


def test_unknown_note_is_not_found(make_client: Callable[..., ClientSetup]) -> None:
    client, _, counter, _ = _setup(make_client())
    orch = TransactionOrchestrator(client)

    with pytest.raises(ConsumptionFailure):
        orch.consume(Word((9, 9, 9, 9)), counter.id)
    with pytest.raises(ConsumptionFailure):
        orch.refresh(Word((9, 9, 9, 9)))
    assert orch.phase(Word((9, 9, 9, 9))) is Phase.IDLE
