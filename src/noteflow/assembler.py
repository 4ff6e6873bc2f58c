# src/noteflow/assembler.py
"""Package -> account component.

Turns a library package carrying component metadata into an AccountComponent
bound to caller-supplied storage. Pure: no network, no storage, no randomness.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Sequence, Tuple

from pydantic import ValidationError

from noteflow.errors import AccountBuildFailure, MissingComponentMetadata, PackageFormatError, StorageLayoutMismatch
from noteflow.objects.account_id import AccountStorageMode, AccountType
from noteflow.objects.component import (
    AccountComponent,
    AccountComponentMetadata,
    AccountComponentTemplate,
    ComponentKind,
    custom_component,
    slot_kinds,
)
from noteflow.objects.storage import StorageSlot, StorageSlotKind
from noteflow.package import Package


@dataclass(frozen=True)
class AccountCreationConfig:
    account_type: AccountType = AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE
    storage_mode: AccountStorageMode = AccountStorageMode.PUBLIC
    storage_slots: Tuple[StorageSlot, ...] = field(default_factory=tuple)
    supported_types: Optional[FrozenSet[AccountType]] = None
    include_standard_wallet: bool = True

    @classmethod
    def immutable(
        cls,
        storage_slots: Sequence[StorageSlot] = (),
        *,
        storage_mode: AccountStorageMode = AccountStorageMode.PUBLIC,
        include_standard_wallet: bool = False,
    ) -> "AccountCreationConfig":
        """Preset for contract-style accounts whose code never changes."""
        return cls(
            account_type=AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE,
            storage_mode=storage_mode,
            storage_slots=tuple(storage_slots),
            include_standard_wallet=include_standard_wallet,
        )

    def with_storage_slots(self, *slots: StorageSlot) -> "AccountCreationConfig":
        return AccountCreationConfig(
            account_type=self.account_type,
            storage_mode=self.storage_mode,
            storage_slots=tuple(slots),
            supported_types=self.supported_types,
            include_standard_wallet=self.include_standard_wallet,
        )


def component_template_from_package(package: Package) -> AccountComponentTemplate:
    blob = package.account_component_metadata_bytes
    if blob is None:
        raise MissingComponentMetadata("package carries no account component metadata", {"package": package.name})
    try:
        metadata = AccountComponentMetadata.from_bytes(blob)
    except ValidationError as e:
        raise MissingComponentMetadata(
            "account component metadata is unreadable",
            {"package": package.name, "errors": e.error_count()},
        ) from e
    try:
        library = package.unwrap_library()
    except PackageFormatError as e:
        raise MissingComponentMetadata("component metadata must ship with a library", {"package": package.name}) from e
    return AccountComponentTemplate(metadata=metadata, library=library)


def bind_storage(template: AccountComponentTemplate, slots: Sequence[StorageSlot]) -> Tuple[StorageSlot, ...]:
    """Check caller slots against the template's declared layout, slot by slot."""
    declared = [StorageSlotKind(e.kind) for e in template.metadata.ordered_storage()]
    given = slot_kinds(slots)
    if len(given) != len(declared):
        raise StorageLayoutMismatch(
            "storage slot count does not match component template",
            {"component": template.metadata.name, "expected": len(declared), "given": len(given)},
        )
    for i, (want, got) in enumerate(zip(declared, given)):
        if want is not got:
            raise StorageLayoutMismatch(
                "storage slot kind does not match component template",
                {"component": template.metadata.name, "slot": i, "expected": want.value, "given": got.value},
            )
    return tuple(slots)


def default_supported_type(config: AccountCreationConfig) -> AccountType:
    """Immutable-code builds default to immutable code; everything else to updatable code."""
    if config.account_type is AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE:
        return AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE
    return AccountType.REGULAR_ACCOUNT_UPDATABLE_CODE


def resolve_supported_types(
    config: AccountCreationConfig, default_type: Optional[AccountType] = None
) -> FrozenSet[AccountType]:
    if config.supported_types is not None:
        return frozenset(config.supported_types)
    return frozenset({default_supported_type(config) if default_type is None else default_type})


def account_component_from_package(
    package: Package,
    config: AccountCreationConfig,
    *,
    default_type: Optional[AccountType] = None,
    kind: ComponentKind = ComponentKind.CUSTOM,
) -> AccountComponent:
    """Build the component described by `package`, bound to `config.storage_slots`.

    Supported types are `config.supported_types` verbatim when given, else
    just `default_type` (by default `default_supported_type(config)`). Any
    other account type has to be asked for explicitly. The metadata's own
    supported_types list is advisory and never widens the result.
    """
    template = component_template_from_package(package)
    slots = bind_storage(template, config.storage_slots)
    types = resolve_supported_types(config, default_type)
    if not types:
        raise AccountBuildFailure("component must support at least one account type", {"component": template.metadata.name})
    return custom_component(template, slots, types, kind=kind)
