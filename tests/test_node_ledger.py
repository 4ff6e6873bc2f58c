from __future__ import annotations

from pathlib import Path
from typing import Tuple

import pytest

from noteflow.crypto.felt import ZERO_WORD, Word
from noteflow.examples import COUNTER_KEY, counter_package, increment_note_package
from noteflow.assembler import AccountCreationConfig, account_component_from_package
from noteflow.node.errors import NodeError
from noteflow.node.ledger import LocalNode
from noteflow.objects.account import Account
from noteflow.objects.account_id import AccountStorageMode, AccountType
from noteflow.objects.asset import NoteAssets
from noteflow.objects.builder import AccountBuilder, BlockAnchor
from noteflow.objects.component import basic_wallet, no_auth
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
from noteflow.objects.storage import StorageMap, StorageSlot
from noteflow.objects.transaction import OutputNote, TransactionInputs, TransactionRequestBuilder
from noteflow.package import MastForest, Program

TAG = NoteTag.for_local_use_case(0, 0)


def _anchor(node: LocalNode) -> BlockAnchor:
    h = node.get_block_header(0)
    return BlockAnchor(block_num=h.block_num, commitment=h.commitment())


def _wallet(node: LocalNode, seed: bytes = b"\x01" * 32, mode: AccountStorageMode = AccountStorageMode.PUBLIC) -> Tuple[Account, bytes]:
    return (
        AccountBuilder(seed)
        .storage_mode(mode)
        .anchor(_anchor(node))
        .with_auth_component(no_auth())
        .with_component(basic_wallet())
        .build()
    )


def _counter(node: LocalNode, seed: bytes = b"\x02" * 32) -> Tuple[Account, bytes]:
    cfg = AccountCreationConfig.immutable(
        [StorageSlot.map_slot(StorageMap.with_entries([(COUNTER_KEY, (0, 0, 0, 0))]))]
    )
    component = account_component_from_package(
        counter_package(), cfg, default_type=AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE
    )
    return (
        AccountBuilder(seed)
        .account_type(AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE)
        .storage_mode(AccountStorageMode.PUBLIC)
        .anchor(_anchor(node))
        .with_auth_component(no_auth())
        .with_component(component)
        .build()
    )


def _note(sender: Account, serial: int = 1, script: NoteScript | None = None, hint: NoteExecutionHint | None = None) -> Note:
    return Note(
        assets=NoteAssets(),
        metadata=NoteMetadata(
            sender=sender.id,
            note_type=NoteType.PUBLIC,
            tag=TAG,
            execution_hint=hint or NoteExecutionHint.always(),
        ),
        recipient=NoteRecipient(
            serial_num=Word((serial, 0, 0, 0)),
            script=script or NoteScript.from_program(increment_note_package().unwrap_program()),
            inputs=NoteInputs(),
        ),
    )


def _publish(node: LocalNode, account: Account, seed: bytes, note: Note) -> Account:
    request = TransactionRequestBuilder().own_output_notes([OutputNote.full(note)]).build()
    inputs = TransactionInputs(account=account, request=request, account_seed=seed if account.is_new else None)
    result = node.execute_transaction(inputs)
    node.submit_transaction(inputs, result.id)
    return result.final_account


def _consume_inputs(account: Account, seed: bytes, note: Note) -> TransactionInputs:
    request = TransactionRequestBuilder().unauthenticated_input_notes([(note, None)]).build()
    return TransactionInputs(account=account, request=request, account_seed=seed if account.is_new else None)


def test_genesis_block(node: LocalNode) -> None:
    assert node.tip() == 0
    genesis = node.get_block_header()
    assert genesis.block_num == 0
    assert genesis.prev_commitment == ZERO_WORD
    assert node.status()["tip"] == 0


def test_reopen_keeps_chain_and_refuses_other_chain_id(tmp_path: Path) -> None:
    path = str(tmp_path / "ledger.sqlite3")
    first = LocalNode(db_path=path, chain_id="alpha")
    genesis = first.get_block_header(0).commitment()

    again = LocalNode(db_path=path, chain_id="alpha")
    assert again.get_block_header(0).commitment() == genesis

    with pytest.raises(NodeError) as ei:
        LocalNode(db_path=path, chain_id="beta")
    assert ei.value.code == "chain_id_mismatch"


def test_publish_seals_one_block_and_links_headers(node: LocalNode) -> None:
    wallet, seed = _wallet(node)
    note = _note(wallet)
    final = _publish(node, wallet, seed, note)

    assert node.tip() == 1
    assert final.nonce == 1
    h1 = node.get_block_header(1)
    assert h1.prev_commitment == node.get_block_header(0).commitment()

    details = node.get_account_details(wallet.id)
    assert details.commitment == final.commitment()
    assert details.account is not None and details.account.nonce == 1

    resp = node.sync_state(0, [wallet.id], [TAG])
    assert [cn.note.id() for cn in resp.notes] == [note.id()]
    assert resp.notes[0].proof.block_num == 1
    assert [h.block_num for h in resp.block_headers] == [1]
    assert resp.chain_tip.block_num == 1
    assert len(resp.transactions) == 1

    # Nothing new past the tip.
    assert node.sync_state(1, [wallet.id], [TAG]).notes == ()


def test_sync_filters_by_tag_or_note_id(node: LocalNode) -> None:
    wallet, seed = _wallet(node)
    note = _note(wallet)
    _publish(node, wallet, seed, note)

    other_tag = NoteTag.for_local_use_case(9, 9)
    assert node.sync_state(0, [], [other_tag]).notes == ()
    assert len(node.sync_state(0, [], [other_tag], [note.id()]).notes) == 1


def test_sync_beyond_tip_is_rejected(node: LocalNode) -> None:
    with pytest.raises(NodeError) as ei:
        node.sync_state(5, [], [])
    assert ei.value.code == "sync_ahead_of_chain"


def test_new_account_needs_valid_seed(node: LocalNode) -> None:
    wallet, seed = _wallet(node)
    request = TransactionRequestBuilder().own_output_notes([OutputNote.full(_note(wallet))]).build()

    with pytest.raises(NodeError) as ei:
        node.execute_transaction(TransactionInputs(account=wallet, request=request))
    assert ei.value.code == "account_seed_missing"

    with pytest.raises(NodeError) as ei:
        node.execute_transaction(TransactionInputs(account=wallet, request=request, account_seed=b"\x09" * 32))
    assert ei.value.code == "invalid_account_seed"


def test_submit_requires_matching_tx_id(node: LocalNode) -> None:
    wallet, seed = _wallet(node)
    request = TransactionRequestBuilder().own_output_notes([OutputNote.full(_note(wallet))]).build()
    inputs = TransactionInputs(account=wallet, request=request, account_seed=seed)

    with pytest.raises(NodeError) as ei:
        node.submit_transaction(inputs, Word((1, 2, 3, 4)))
    assert ei.value.code == "tx_mismatch"
    assert node.tip() == 0


def test_stale_account_state_is_rejected(node: LocalNode) -> None:
    wallet, seed = _wallet(node)
    _publish(node, wallet, seed, _note(wallet, serial=1))

    # Same pre-state again: the chain has moved on.
    request = TransactionRequestBuilder().own_output_notes([OutputNote.full(_note(wallet, serial=2))]).build()
    with pytest.raises(NodeError) as ei:
        node.execute_transaction(TransactionInputs(account=wallet, request=request, account_seed=seed))
    assert ei.value.code == "account_state_mismatch"


def test_republishing_a_note_is_rejected(node: LocalNode) -> None:
    wallet, seed = _wallet(node)
    note = _note(wallet)
    final = _publish(node, wallet, seed, note)

    with pytest.raises(NodeError) as ei:
        _publish(node, final, seed, note)
    assert ei.value.code == "duplicate_note"
    assert node.tip() == 1


def test_consume_increments_counter_and_blocks_double_spend(node: LocalNode) -> None:
    wallet, wseed = _wallet(node)
    note = _note(wallet)
    _publish(node, wallet, wseed, note)

    counter, cseed = _counter(node)
    inputs = _consume_inputs(counter, cseed, note)
    result = node.execute_transaction(inputs)
    assert result.final_account.storage.get_map_item(0, COUNTER_KEY) == Word((0, 0, 0, 1))
    assert result.final_account.nonce == 1
    assert result.account_delta.storage_maps == ((0, Word(COUNTER_KEY), Word((0, 0, 0, 1))),)
    node.submit_transaction(inputs, result.id)

    resp = node.sync_state(1, [], [])
    assert [n for n, _ in resp.nullifiers] == [note.nullifier()]

    other, oseed = _counter(node, seed=b"\x03" * 32)
    with pytest.raises(NodeError) as ei:
        node.execute_transaction(_consume_inputs(other, oseed, note))
    assert ei.value.code == "note_already_consumed"


def test_consuming_unknown_or_altered_note(node: LocalNode) -> None:
    wallet, wseed = _wallet(node)
    counter, cseed = _counter(node)

    note = _note(wallet)
    with pytest.raises(NodeError) as ei:
        node.execute_transaction(_consume_inputs(counter, cseed, note))
    assert ei.value.code == "note_not_found"

    _publish(node, wallet, wseed, note)
    altered = Note(
        assets=note.assets,
        metadata=NoteMetadata(sender=wallet.id, note_type=NoteType.PUBLIC, tag=NoteTag.for_local_use_case(0, 1)),
        recipient=note.recipient,
    )
    with pytest.raises(NodeError) as ei:
        node.execute_transaction(_consume_inputs(counter, cseed, altered))
    assert ei.value.code == "note_mismatch"


def test_note_after_block_hint(node: LocalNode) -> None:
    wallet, wseed = _wallet(node)
    note = _note(wallet, hint=NoteExecutionHint.after_block(50))
    _publish(node, wallet, wseed, note)

    counter, cseed = _counter(node)
    with pytest.raises(NodeError) as ei:
        node.execute_transaction(_consume_inputs(counter, cseed, note))
    assert ei.value.code == "note_not_consumable"


def test_unbound_native_procedure_fails_execution(node: LocalNode) -> None:
    wallet, wseed = _wallet(node)
    script = NoteScript.from_program(
        Program(forest=MastForest.from_json({"main": [["call", "basic_wallet::move_asset_to_note"]]}), entrypoint="main")
    )
    note = _note(wallet, script=script)
    final = _publish(node, wallet, wseed, note)

    with pytest.raises(NodeError) as ei:
        node.execute_transaction(_consume_inputs(final, wseed, note))
    assert ei.value.code == "execution_failed"
    assert ei.value.details["vm_code"] == "unsupported_native"


def test_note_script_cannot_touch_storage_directly(node: LocalNode) -> None:
    wallet, wseed = _wallet(node)
    script = NoteScript.from_program(Program(forest=MastForest.from_json({"main": [["get_item", 0]]}), entrypoint="main"))
    note = _note(wallet, script=script)
    _publish(node, wallet, wseed, note)

    counter, cseed = _counter(node)
    with pytest.raises(NodeError) as ei:
        node.execute_transaction(_consume_inputs(counter, cseed, note))
    assert ei.value.details["vm_code"] == "storage_outside_account"


def test_private_account_stored_by_commitment_only(node: LocalNode) -> None:
    wallet, seed = _wallet(node, mode=AccountStorageMode.PRIVATE)
    final = _publish(node, wallet, seed, _note(wallet))

    details = node.get_account_details(wallet.id)
    assert details.account is None
    assert details.commitment == final.commitment()


def test_failed_commit_leaves_no_partial_block(node: LocalNode, monkeypatch: pytest.MonkeyPatch) -> None:
    import noteflow.node.ledger as ledger_mod

    wallet, seed = _wallet(node)
    note = _note(wallet)
    request = TransactionRequestBuilder().own_output_notes([OutputNote.full(note)]).build()
    inputs = TransactionInputs(account=wallet, request=request, account_seed=seed)
    tx_id = node.execute_transaction(inputs).id

    def _boom(words):
        raise RuntimeError("simulated crash while sealing")

    # Header roots are computed after notes and account rows are written.
    with monkeypatch.context() as mp:
        mp.setattr(ledger_mod, "words_root", _boom)
        with pytest.raises(RuntimeError):
            node.submit_transaction(inputs, tx_id)

    assert node.tip() == 0
    assert node.sync_state(0, [wallet.id], [TAG]).notes == ()
    with pytest.raises(NodeError):
        node.get_account_details(wallet.id)

    # The same submission goes through once the fault is gone.
    assert node.submit_transaction(inputs, tx_id).block_num == 1
