from __future__ import annotations

from typing import Callable

from noteflow.assembler import AccountCreationConfig
from noteflow.crypto.felt import Word
from noteflow.examples import COUNTER_KEY, counter_package, increment_note_package
from noteflow.factory import create_account_from_package, create_basic_wallet_account
from noteflow.notes import NoteCreationConfig, create_note_from_package
from noteflow.objects.note import NoteTag
from noteflow.objects.storage import StorageMap, StorageSlot
from noteflow.orchestrator import Phase, TransactionOrchestrator
from noteflow.session import ClientSetup
from noteflow.store.sqlite_store import InputNoteStatus

NOTE_TAG = NoteTag.for_local_use_case(0, 0)


def test_clients_keep_separate_state(make_client: Callable[..., ClientSetup]) -> None:
    alice = make_client("alice")
    bob = make_client("bob")

    wallet, _ = create_basic_wallet_account(alice.client, alice.keystore)

    assert bob.client.get_account_ids() == []
    assert bob.keystore.list_commitments() == []
    assert alice.client.get_account_ids() == [wallet.id]
    assert alice.client.rng() is not bob.client.rng()


def test_note_published_by_one_client_is_consumed_by_another(make_client: Callable[..., ClientSetup]) -> None:
    alice = make_client("alice")
    bob = make_client("bob")

    # Bob follows the tag before his first sync so the note is picked up.
    assert bob.client.add_note_tag(NOTE_TAG) is True

    wallet, _ = create_basic_wallet_account(alice.client, alice.keystore)
    counter_cfg = AccountCreationConfig.immutable(
        [StorageSlot.map_slot(StorageMap.with_entries([(COUNTER_KEY, (0, 0, 0, 0))]))]
    )
    counter, _ = create_account_from_package(bob.client, counter_package(), counter_cfg)

    note = create_note_from_package(
        alice.client, increment_note_package(), wallet.id, NoteCreationConfig(tag=NOTE_TAG)
    )
    flow = TransactionOrchestrator(alice.client).publish(wallet.id, note)
    assert flow.phase is Phase.CONSUMABLE

    # Bob has never seen the note until he syncs.
    assert bob.client.get_input_note(note.id()) is None
    summary = bob.client.sync_state()
    assert note.id() in summary.committed_notes

    bob_orch = TransactionOrchestrator(bob.client)
    bob_orch.consume(note.id(), counter.id)
    assert bob_orch.phase(note.id()) is Phase.DONE

    rec = bob.client.get_account(counter.id)
    assert rec is not None
    assert rec.account.storage.get_map_item(0, COUNTER_KEY) == Word((0, 0, 0, 1))

    # Alice learns about the spend from the nullifier on her next sync.
    alice.client.sync_state()
    assert alice.client.get_input_note(note.id()).status is InputNoteStatus.CONSUMED
    assert bob.client.get_input_note(note.id()).status is InputNoteStatus.CONSUMED
