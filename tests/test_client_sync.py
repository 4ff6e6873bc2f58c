from __future__ import annotations

import sqlite3
from typing import Callable

import pytest

from noteflow.assembler import AccountCreationConfig
from noteflow.errors import SubmissionFailure, SyncFailure
from noteflow.examples import COUNTER_KEY, counter_package, increment_note_package
from noteflow.factory import create_account_from_package, create_basic_wallet_account
from noteflow.notes import NoteCreationConfig, create_note_from_package
from noteflow.objects.account_id import AccountStorageMode
from noteflow.objects.storage import StorageMap, StorageSlot
from noteflow.objects.transaction import OutputNote, TransactionRequestBuilder
from noteflow.orchestrator import TransactionOrchestrator
from noteflow.session import ClientSetup
from noteflow.store.sqlite_store import AccountStatus, InputNoteStatus, TransactionStatus


def _counter_cfg(mode: AccountStorageMode) -> AccountCreationConfig:
    return AccountCreationConfig.immutable(
        [StorageSlot.map_slot(StorageMap.with_entries([(COUNTER_KEY, (0, 0, 0, 0))]))], storage_mode=mode
    )


def test_sync_failure_changes_nothing(make_client: Callable[..., ClientSetup], monkeypatch: pytest.MonkeyPatch) -> None:
    setup = make_client()
    client = setup.client
    wallet, _ = create_basic_wallet_account(client, setup.keystore)
    note = create_note_from_package(client, increment_note_package(), wallet.id, NoteCreationConfig())
    request = TransactionRequestBuilder().own_output_notes([OutputNote.full(note)]).build()
    result = client.new_transaction(wallet.id, request)
    client.submit_transaction(result)

    def _disk_full(con, height):
        raise sqlite3.OperationalError("database or disk is full")

    with monkeypatch.context() as mp:
        mp.setattr(client.store, "set_sync_height", _disk_full)
        with pytest.raises(SyncFailure):
            client.sync_state()

    assert client.get_sync_height() == 0
    assert client.get_input_note(note.id()).status is InputNoteStatus.EXPECTED
    assert [t.status for t in client.get_transactions()] == [TransactionStatus.PENDING]
    assert client.store.get_transaction(result.id).status is TransactionStatus.PENDING

    summary = client.sync_state()
    assert summary.block_num == 1
    assert summary.committed_notes == [note.id()]
    assert summary.committed_transactions == [client.get_transactions()[0].id]
    assert client.get_account(wallet.id).account.nonce == 1
    assert client.store.get_transaction(result.id).status is TransactionStatus.COMMITTED


def test_sync_is_a_no_op_at_the_tip(make_client: Callable[..., ClientSetup]) -> None:
    client = make_client().client
    first = client.sync_state()
    assert first.block_num == 0
    assert client.sync_state().is_empty()


def _spend_on(owner: ClientSetup, counter_id) -> None:
    wallet, _ = create_basic_wallet_account(owner.client, owner.keystore)
    note = create_note_from_package(owner.client, increment_note_package(), wallet.id, NoteCreationConfig())
    orch = TransactionOrchestrator(owner.client)
    orch.consume(orch.publish(wallet.id, note), counter_id)


def test_public_account_changed_elsewhere_is_refreshed(make_client: Callable[..., ClientSetup]) -> None:
    alice, bob = make_client("alice"), make_client("bob")
    counter, seed = create_account_from_package(alice.client, counter_package(), _counter_cfg(AccountStorageMode.PUBLIC))
    bob.client.add_account(counter, seed)

    _spend_on(alice, counter.id)

    summary = bob.client.sync_state()
    assert summary.updated_accounts == [counter.id]
    rec = bob.client.get_account(counter.id)
    assert rec.status is AccountStatus.COMMITTED
    assert rec.account.storage.get_map_item(0, COUNTER_KEY)[3] == 1


def test_private_account_changed_elsewhere_is_locked(make_client: Callable[..., ClientSetup]) -> None:
    alice, bob = make_client("alice"), make_client("bob")
    counter, seed = create_account_from_package(alice.client, counter_package(), _counter_cfg(AccountStorageMode.PRIVATE))
    bob.client.add_account(counter, seed)

    _spend_on(alice, counter.id)

    summary = bob.client.sync_state()
    assert summary.locked_accounts == [counter.id]
    assert bob.client.get_account(counter.id).status is AccountStatus.LOCKED

    request = TransactionRequestBuilder().own_output_notes(
        [OutputNote.full(create_note_from_package(bob.client, increment_note_package(), counter.id, NoteCreationConfig()))]
    ).build()
    with pytest.raises(SubmissionFailure):
        bob.client.new_transaction(counter.id, request)
