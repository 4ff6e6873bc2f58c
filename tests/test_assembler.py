from __future__ import annotations

import pytest

from noteflow.assembler import (
    AccountCreationConfig,
    account_component_from_package,
    component_template_from_package,
)
from noteflow.errors import AccountBuildFailure, MissingComponentMetadata, StorageLayoutMismatch
from noteflow.examples import COUNTER_KEY, counter_package, increment_note_package
from noteflow.objects.account_id import AccountType
from noteflow.objects.component import ComponentKind
from noteflow.objects.storage import StorageMap, StorageSlot
from noteflow.package import Package


def _counter_slots() -> list:
    return [StorageSlot.map_slot(StorageMap.with_entries([(COUNTER_KEY, (0, 0, 0, 0))]))]


def test_template_reads_metadata_from_library_package() -> None:
    template = component_template_from_package(counter_package())
    assert template.metadata.name == "counter"
    assert [e.name for e in template.metadata.ordered_storage()] == ["count_map"]
    assert template.library.namespace == "counter"


def test_program_package_has_no_component_metadata() -> None:
    with pytest.raises(MissingComponentMetadata):
        component_template_from_package(increment_note_package())


def test_library_without_metadata_is_rejected() -> None:
    lib = counter_package().unwrap_library()
    with pytest.raises(MissingComponentMetadata):
        component_template_from_package(Package.from_library("bare", lib))


@pytest.mark.parametrize(
    "blob",
    [
        b"not json",
        b'{"description": "no name"}',
        b'{"name": "gappy", "storage": [{"name": "a", "slot": 1}]}',
        b'{"name": "x", "unknown_field": 1}',
    ],
)
def test_unreadable_metadata_is_missing_metadata(blob: bytes) -> None:
    lib = counter_package().unwrap_library()
    with pytest.raises(MissingComponentMetadata):
        component_template_from_package(Package.from_library("broken", lib, blob))


def test_storage_must_match_declared_layout() -> None:
    pkg = counter_package()
    with pytest.raises(StorageLayoutMismatch) as ei:
        account_component_from_package(pkg, AccountCreationConfig.immutable([]))
    assert ei.value.details["expected"] == 1

    with pytest.raises(StorageLayoutMismatch) as ei:
        account_component_from_package(pkg, AccountCreationConfig.immutable([StorageSlot.value_slot()]))
    assert ei.value.details["slot"] == 0


def test_supported_types_default_and_override() -> None:
    pkg = counter_package()
    cfg = AccountCreationConfig.immutable(_counter_slots())

    c = account_component_from_package(pkg, cfg)
    assert c.supported_types == frozenset({AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE})
    assert c.kind is ComponentKind.CUSTOM

    c = account_component_from_package(pkg, AccountCreationConfig(storage_slots=tuple(_counter_slots())))
    assert c.supported_types == frozenset({AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE})

    # A faucet build still gets the updatable default and has to opt in explicitly.
    faucet_cfg = AccountCreationConfig(account_type=AccountType.FUNGIBLE_FAUCET, storage_slots=tuple(_counter_slots()))
    c = account_component_from_package(pkg, faucet_cfg)
    assert c.supported_types == frozenset({AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE})

    c = account_component_from_package(pkg, cfg, default_type=AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE)
    assert c.supported_types == frozenset({AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE})

    wide = AccountCreationConfig(
        storage_slots=tuple(_counter_slots()),
        supported_types=frozenset({AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE, AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE}),
    )
    c = account_component_from_package(pkg, wide)
    assert c.supported_types == wide.supported_types

    with pytest.raises(AccountBuildFailure):
        account_component_from_package(pkg, AccountCreationConfig(storage_slots=tuple(_counter_slots()), supported_types=frozenset()))


def test_same_inputs_give_equal_components() -> None:
    cfg = AccountCreationConfig.immutable(_counter_slots())
    a = account_component_from_package(counter_package(), cfg)
    b = account_component_from_package(counter_package(), cfg)
    assert a.to_json() == b.to_json()
    assert a.procedure_roots() == b.procedure_roots()
    assert a.storage_names == ("counter::count_map",)


def test_with_storage_slots_keeps_other_settings() -> None:
    cfg = AccountCreationConfig.immutable()
    cfg2 = cfg.with_storage_slots(*_counter_slots())
    assert cfg2.account_type is AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE
    assert cfg2.include_standard_wallet is False
    assert len(cfg2.storage_slots) == 1
