from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from noteflow.assembler import AccountCreationConfig
from noteflow.cli import run_increment_count
from noteflow.crypto.felt import Word
from noteflow.errors import AccountBuildFailure, MissingComponentMetadata, StorageLayoutMismatch, SubmissionFailure
from noteflow.examples import COUNTER_KEY, counter_package, increment_note_package
from noteflow.factory import (
    create_account_from_package,
    create_account_with_component,
    create_account_with_component_and_auth_package,
    create_basic_faucet_account,
    create_basic_wallet_account,
    find_accounts_missing_keys,
)
from noteflow.keystore import FilesystemKeyStore
from noteflow.notes import NoteCreationConfig, create_note_from_package
from noteflow.objects.account_id import AccountType
from noteflow.objects.asset import FungibleAsset, NoteAssets
from noteflow.objects.storage import StorageMap, StorageSlot
from noteflow.orchestrator import Phase, TransactionOrchestrator
from noteflow.objects.component import AccountComponentMetadata, ComponentKind, StorageEntry
from noteflow.package import Library, MastForest, Package, Program
from noteflow.rpc.local import LocalNodeRpc
from noteflow.session import ClientSetup, setup_client

COUNTER_CFG = AccountCreationConfig.immutable(
    [StorageSlot.map_slot(StorageMap.with_entries([(COUNTER_KEY, (0, 0, 0, 0))]))]
)

RECEIVE_NOTE = Package.from_program(
    "receive_note",
    Program(forest=MastForest.from_json({"main": [["call", "basic_wallet::receive_asset"]]}), entrypoint="main"),
)


def test_increment_count_reference_flow(tmp_path: Path, rpc: LocalNodeRpc) -> None:
    with setup_client(rpc=rpc, workdir=tmp_path / "session") as setup:
        out = run_increment_count(setup.client, setup.keystore, counter_package(), increment_note_package())

    assert out["count"] == [0, 0, 0, 1]
    assert out["phase"] == "done"
    assert out["delta"]["storage_maps"] == [[0, list(COUNTER_KEY), [0, 0, 0, 1]]]
    assert out["delta"]["nonce_increment"] == 1
    assert (tmp_path / "session" / "store.sqlite3").exists()


def test_temporary_session_is_removed(rpc: LocalNodeRpc) -> None:
    with setup_client(rpc=rpc) as setup:
        store_path = Path(setup.client.store.db.path)
        assert store_path.exists()
    assert not store_path.exists()


def test_counter_counts_each_consumed_note(make_client: Callable[..., ClientSetup]) -> None:
    setup = make_client()
    client = setup.client
    wallet, _ = create_basic_wallet_account(client, setup.keystore)
    counter, _ = create_account_from_package(client, counter_package(), COUNTER_CFG)
    orch = TransactionOrchestrator(client)

    for _ in range(2):
        note = create_note_from_package(client, increment_note_package(), wallet.id, NoteCreationConfig())
        orch.consume(orch.publish(wallet.id, note), counter.id)

    rec = client.get_account(counter.id)
    assert rec is not None
    assert rec.account.storage.get_map_item(0, COUNTER_KEY) == Word((0, 0, 0, 2))
    assert rec.account.nonce == 2


def test_package_without_metadata_leaves_nothing_behind(make_client: Callable[..., ClientSetup]) -> None:
    setup = make_client()
    with pytest.raises(MissingComponentMetadata):
        create_account_from_package(setup.client, increment_note_package(), COUNTER_CFG)
    with pytest.raises(StorageLayoutMismatch):
        create_account_with_component(setup.client, setup.keystore, counter_package(), AccountCreationConfig())

    assert setup.client.get_account_ids() == []
    assert setup.keystore.list_commitments() == []


def test_unsupported_account_type_leaves_registry_unchanged(make_client: Callable[..., ClientSetup]) -> None:
    setup = make_client()
    cfg = AccountCreationConfig(
        account_type=AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE,
        storage_slots=COUNTER_CFG.storage_slots,
        supported_types=frozenset({AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE}),
        include_standard_wallet=False,
    )
    with pytest.raises(AccountBuildFailure) as ei:
        create_account_with_component(setup.client, setup.keystore, counter_package(), cfg)
    assert ei.value.details["account_type"] == AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE.value

    assert setup.client.get_account_ids() == []
    assert setup.keystore.list_commitments() == []


def test_non_default_account_type_must_be_requested(make_client: Callable[..., ClientSetup]) -> None:
    setup = make_client()
    faucet_cfg = AccountCreationConfig(
        account_type=AccountType.FUNGIBLE_FAUCET,
        storage_slots=COUNTER_CFG.storage_slots,
        include_standard_wallet=False,
    )
    with pytest.raises(AccountBuildFailure) as ei:
        create_account_with_component(setup.client, setup.keystore, counter_package(), faucet_cfg)
    assert ei.value.details["account_type"] == AccountType.FUNGIBLE_FAUCET.value
    assert setup.client.get_account_ids() == []

    explicit = AccountCreationConfig(
        account_type=AccountType.FUNGIBLE_FAUCET,
        storage_slots=COUNTER_CFG.storage_slots,
        supported_types=frozenset({AccountType.FUNGIBLE_FAUCET}),
        include_standard_wallet=False,
    )
    account, _ = create_account_with_component(setup.client, setup.keystore, counter_package(), explicit)
    assert account.id.is_faucet()


def test_counter_from_default_config(make_client: Callable[..., ClientSetup]) -> None:
    setup = make_client()
    client = setup.client
    counter, _ = create_account_from_package(
        client, counter_package(), AccountCreationConfig().with_storage_slots(*COUNTER_CFG.storage_slots)
    )
    assert counter.account_type is AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE
    assert [c.kind for c in counter.code.components] == [ComponentKind.AUTH_NONE, ComponentKind.CUSTOM]

    wallet, _ = create_basic_wallet_account(client, setup.keystore)
    orch = TransactionOrchestrator(client)
    note = create_note_from_package(client, increment_note_package(), wallet.id, NoteCreationConfig())
    orch.consume(orch.publish(wallet.id, note), counter.id)

    rec = client.get_account(counter.id)
    assert rec is not None
    assert rec.account.storage.get_map_item(0, COUNTER_KEY) == Word((0, 0, 0, 1))


def test_accounts_missing_keys_are_reported(make_client: Callable[..., ClientSetup], tmp_path: Path) -> None:
    setup = make_client()
    wallet, _ = create_basic_wallet_account(setup.client, setup.keystore)
    create_account_from_package(setup.client, counter_package(), COUNTER_CFG)

    assert find_accounts_missing_keys(setup.client, setup.keystore) == []
    assert find_accounts_missing_keys(setup.client, FilesystemKeyStore(tmp_path / "empty")) == [wallet.id]


def test_faucet_distributes_to_wallet(make_client: Callable[..., ClientSetup]) -> None:
    setup = make_client()
    client = setup.client
    faucet, _ = create_basic_faucet_account(client, setup.keystore, "TOK", 6, 1_000)
    wallet, _ = create_basic_wallet_account(client, setup.keystore)
    orch = TransactionOrchestrator(client)

    cfg = NoteCreationConfig(assets=NoteAssets.of(FungibleAsset(faucet.id, 100)))
    note = create_note_from_package(client, RECEIVE_NOTE, faucet.id, cfg)
    orch.consume(orch.publish(faucet.id, note), wallet.id)

    rec = client.get_account(wallet.id)
    assert rec is not None
    assert rec.account.vault.balance(faucet.id) == 100

    faucet_rec = client.get_account(faucet.id)
    assert faucet_rec is not None
    # Metadata slot follows the auth key slot: [max_supply, decimals, symbol, issued]
    assert faucet_rec.account.storage.get_item(1)[3] == 100


def test_faucet_cannot_exceed_max_supply(make_client: Callable[..., ClientSetup]) -> None:
    setup = make_client()
    client = setup.client
    faucet, _ = create_basic_faucet_account(client, setup.keystore, "TOK", 6, 50)
    orch = TransactionOrchestrator(client)

    cfg = NoteCreationConfig(assets=NoteAssets.of(FungibleAsset(faucet.id, 51)))
    note = create_note_from_package(client, RECEIVE_NOTE, faucet.id, cfg)
    with pytest.raises(SubmissionFailure) as ei:
        orch.publish(faucet.id, note)
    assert ei.value.details["node_code"] == "max_supply_exceeded"
    assert orch.phase(note.id()) is Phase.FAILED


def test_custom_auth_package_guards_the_counter(make_client: Callable[..., ClientSetup]) -> None:
    guard = Package.from_library(
        "guard",
        Library(namespace="guard", forest=MastForest.from_json({"auth_tx": [["incr_nonce"]]}), exports=("auth_tx",)),
        AccountComponentMetadata(name="guard", storage=[StorageEntry(name="epoch", slot=0)]).to_bytes(),
    )
    setup = make_client()
    client = setup.client
    wallet, _ = create_basic_wallet_account(client, setup.keystore)
    counter, _ = create_account_with_component_and_auth_package(client, counter_package(), guard, COUNTER_CFG)
    assert counter.code.auth_component().kind is ComponentKind.AUTH_CUSTOM
    assert counter.code.components[0].kind is ComponentKind.AUTH_CUSTOM

    orch = TransactionOrchestrator(client)
    note = create_note_from_package(client, increment_note_package(), wallet.id, NoteCreationConfig())
    orch.consume(orch.publish(wallet.id, note), counter.id)

    rec = client.get_account(counter.id)
    assert rec is not None
    # The guard's epoch slot comes first, so the counter map sits at slot 1.
    assert rec.account.storage.get_map_item(1, COUNTER_KEY) == Word((0, 0, 0, 1))
    assert rec.account.nonce == 1
