# src/noteflow/factory.py
"""Account creation helpers.

Each helper follows the same sequence:

  1. draw a 32-byte seed (and, for Ed25519 auth, a key pair) from the client rng
  2. sync, so the account is anchored to the current chain tip
  3. build: auth component, then standard components, then custom ones
  4. register: secret key first, then the account

Registration order means the only partial state a failure can leave is an
orphan key in the key store, which nothing references. Stores written by
other tools can still hold accounts without keys; find_accounts_missing_keys()
reports them.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from noteflow.assembler import (
    AccountCreationConfig,
    account_component_from_package,
    component_template_from_package,
    resolve_supported_types,
)
from noteflow.client.client import Client
from noteflow.crypto.sig import AuthSecretKey, SecretKey
from noteflow.errors import AccountBuildFailure, NoteflowError
from noteflow.keystore import FilesystemKeyStore
from noteflow.objects.account import Account
from noteflow.objects.account_id import AccountId, AccountStorageMode, AccountType
from noteflow.objects.asset import TokenSymbol
from noteflow.objects.builder import ACCOUNT_SEED_LEN, AccountBuilder, BlockAnchor
from noteflow.objects.component import (
    AccountComponent,
    ComponentKind,
    auth_ed25519,
    basic_fungible_faucet,
    basic_wallet,
    custom_component,
    no_auth,
)
from noteflow.package import Package
from noteflow.structured_logging import log_event

log = logging.getLogger("noteflow.factory")


def _draw_seed(client: Client) -> bytes:
    return client.rng().fill_bytes(ACCOUNT_SEED_LEN)


def _new_ed25519_key(client: Client) -> AuthSecretKey:
    return AuthSecretKey.ed25519(SecretKey.with_rng(client.rng()))


def _synced_anchor(client: Client) -> BlockAnchor:
    client.sync_state()
    header = client.get_sync_header()
    if header is None:
        raise AccountBuildFailure("no chain tip known after sync")
    return BlockAnchor(block_num=header.block_num, commitment=header.commitment())


def _build(
    seed: bytes,
    anchor: BlockAnchor,
    account_type: AccountType,
    storage_mode: AccountStorageMode,
    auth: AccountComponent,
    components: List[AccountComponent],
) -> Tuple[Account, bytes]:
    builder = (
        AccountBuilder(seed).account_type(account_type).storage_mode(storage_mode).anchor(anchor).with_auth_component(auth)
    )
    for c in components:
        builder.with_component(c)
    return builder.build()


def register_account(
    client: Client,
    keystore: Optional[FilesystemKeyStore],
    account: Account,
    seed: bytes,
    secret: Optional[AuthSecretKey] = None,
) -> None:
    """Make a built account usable: key store first, then the client's account registry."""
    if secret is not None:
        if keystore is None:
            raise AccountBuildFailure("account needs a key store for its secret key", {"account_id": account.id.to_hex()})
        keystore.add_key(secret)

    try:
        client.add_account(account, seed)
    except NoteflowError:
        if secret is not None:
            log_event(
                log,
                "factory_orphan_key",
                account_id=account.id.to_hex(),
                pub_commitment=secret.public_key().commitment().to_hex(),
            )
        raise

    log_event(
        log,
        "factory_account_registered",
        account_id=account.id.to_hex(),
        account_type=account.account_type.value,
        storage_mode=account.storage_mode.value,
        components=[c.name for c in account.code.components],
        anchor_block=account.id.anchor_block_num,
    )


def find_accounts_missing_keys(client: Client, keystore: FilesystemKeyStore) -> List[AccountId]:
    """Tracked Ed25519 accounts whose secret key is absent from `keystore`."""
    missing: List[AccountId] = []
    for rec in client.store.get_accounts():
        account = rec.account
        if account.code.auth_component().kind is not ComponentKind.AUTH_ED25519:
            continue
        if not keystore.has_key(account.storage.get_item(0)):
            missing.append(account.id)
    return missing


def create_account_with_component(
    client: Client,
    keystore: FilesystemKeyStore,
    package: Package,
    config: AccountCreationConfig,
) -> Tuple[Account, bytes]:
    """Ed25519 auth + optional basic wallet + the package's component."""
    component = account_component_from_package(package, config)
    seed = _draw_seed(client)
    secret = _new_ed25519_key(client)
    anchor = _synced_anchor(client)

    extra = [basic_wallet()] if config.include_standard_wallet else []
    account, seed = _build(
        seed,
        anchor,
        config.account_type,
        config.storage_mode,
        auth_ed25519(secret.public_key().commitment()),
        extra + [component],
    )
    register_account(client, keystore, account, seed, secret)
    return account, seed


def create_account_from_package(
    client: Client,
    package: Package,
    config: AccountCreationConfig,
) -> Tuple[Account, bytes]:
    """No-op auth + the package's component. Suits contract-style accounts anyone may call.

    No standard wallet is added: with no-op auth anyone could move its assets.
    """
    component = account_component_from_package(package, config)
    seed = _draw_seed(client)
    anchor = _synced_anchor(client)

    account, seed = _build(seed, anchor, config.account_type, config.storage_mode, no_auth(), [component])
    register_account(client, None, account, seed)
    return account, seed


def create_basic_wallet_account(
    client: Client,
    keystore: FilesystemKeyStore,
    config: Optional[AccountCreationConfig] = None,
) -> Tuple[Account, bytes]:
    cfg = config or AccountCreationConfig()
    seed = _draw_seed(client)
    secret = _new_ed25519_key(client)
    anchor = _synced_anchor(client)

    account, seed = _build(
        seed,
        anchor,
        cfg.account_type,
        cfg.storage_mode,
        auth_ed25519(secret.public_key().commitment()),
        [basic_wallet()],
    )
    register_account(client, keystore, account, seed, secret)
    return account, seed


def create_account_with_component_and_auth_package(
    client: Client,
    package: Package,
    auth_package: Package,
    config: AccountCreationConfig,
) -> Tuple[Account, bytes]:
    """Custom auth (first export of `auth_package`, default storage) + the package's component."""
    component = account_component_from_package(package, config)
    auth_template = component_template_from_package(auth_package)
    auth_types = resolve_supported_types(config)
    auth = custom_component(auth_template, auth_template.default_storage(), auth_types, kind=ComponentKind.AUTH_CUSTOM)

    seed = _draw_seed(client)
    anchor = _synced_anchor(client)

    extra = [basic_wallet()] if config.include_standard_wallet else []
    account, seed = _build(seed, anchor, config.account_type, config.storage_mode, auth, extra + [component])
    register_account(client, None, account, seed)
    return account, seed


def create_basic_faucet_account(
    client: Client,
    keystore: FilesystemKeyStore,
    symbol: TokenSymbol | str,
    decimals: int,
    max_supply: int,
    storage_mode: AccountStorageMode = AccountStorageMode.PUBLIC,
) -> Tuple[Account, bytes]:
    try:
        faucet = basic_fungible_faucet(symbol, decimals, max_supply)
    except ValueError as e:
        raise AccountBuildFailure("invalid faucet parameters", {"error": str(e)}) from e

    seed = _draw_seed(client)
    secret = _new_ed25519_key(client)
    anchor = _synced_anchor(client)

    account, seed = _build(
        seed,
        anchor,
        AccountType.FUNGIBLE_FAUCET,
        storage_mode,
        auth_ed25519(secret.public_key().commitment()),
        [faucet],
    )
    register_account(client, keystore, account, seed, secret)
    return account, seed
