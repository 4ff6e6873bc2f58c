# src/noteflow/client/client.py
from __future__ import annotations

import logging
from typing import List, Optional

from noteflow.client.sync import SyncSummary, sync_state
from noteflow.crypto.felt import Word
from noteflow.crypto.rng import FeltRng
from noteflow.crypto.sig import AuthSignature, sign_message
from noteflow.errors import KeyStoreFailure, StoreError, SubmissionFailure
from noteflow.keystore import FilesystemKeyStore
from noteflow.objects.account import Account
from noteflow.objects.account_id import AccountId
from noteflow.objects.block import BlockHeader
from noteflow.objects.component import ComponentKind
from noteflow.objects.note import NoteTag, NoteType
from noteflow.objects.transaction import (
    TransactionInputs,
    TransactionRequest,
    TransactionResult,
    auth_message,
)
from noteflow.rpc.api import NodeRpcApi, SubmitResult
from noteflow.store.sqlite_store import (
    AccountRecord,
    AccountStatus,
    InputNoteRecord,
    InputNoteStatus,
    OutputNoteRecord,
    SqliteStore,
    TransactionRecord,
)
from noteflow.structured_logging import log_event

log = logging.getLogger("noteflow.client")


class Client:
    """Ledger client: local store + ledger endpoint + key store + randomness.

    Single-threaded: at most one ledger call is in flight at a time. Nothing
    here retries; failures surface to the caller as NoteflowError subclasses.
    """

    def __init__(
        self,
        *,
        rpc: NodeRpcApi,
        store: SqliteStore,
        keystore: Optional[FilesystemKeyStore] = None,
        rng: Optional[FeltRng] = None,
        debug: bool = False,
    ) -> None:
        self._rpc = rpc
        self._store = store
        self._keystore = keystore
        self._rng = rng or FeltRng()
        self.debug = bool(debug)

    # ----------------------------
    # Accessors
    # ----------------------------

    def rng(self) -> FeltRng:
        return self._rng

    @property
    def store(self) -> SqliteStore:
        return self._store

    @property
    def rpc(self) -> NodeRpcApi:
        return self._rpc

    @property
    def keystore(self) -> Optional[FilesystemKeyStore]:
        return self._keystore

    # ----------------------------
    # Sync
    # ----------------------------

    def sync_state(self) -> SyncSummary:
        return sync_state(self._store, self._rpc)

    def get_sync_height(self) -> int:
        return self._store.get_sync_height()

    def get_sync_header(self) -> Optional[BlockHeader]:
        """Chain tip as of the last sync."""
        return self._store.latest_block_header()

    # ----------------------------
    # Accounts and tags
    # ----------------------------

    def add_account(self, account: Account, seed: Optional[bytes], *, overwrite: bool = False) -> None:
        if account.is_new and seed is None:
            raise StoreError("new accounts must be stored with their seed", {"account_id": account.id.to_hex()})
        self._store.insert_account(account, seed, overwrite=overwrite)
        tag = NoteTag.from_account_id(account.id, NoteType.PUBLIC if account.is_public() else NoteType.PRIVATE)
        self._store.add_note_tag(tag, source="account")
        log_event(
            log,
            "client_account_added",
            account_id=account.id.to_hex(),
            account_type=account.account_type.value,
            storage_mode=account.storage_mode.value,
        )

    def get_account(self, account_id: AccountId) -> Optional[AccountRecord]:
        return self._store.get_account(account_id)

    def get_account_ids(self) -> List[AccountId]:
        return self._store.get_account_ids()

    def add_note_tag(self, tag: NoteTag) -> bool:
        return self._store.add_note_tag(tag)

    def get_note_tags(self) -> List[NoteTag]:
        return self._store.get_note_tags()

    # ----------------------------
    # Notes and transactions
    # ----------------------------

    def get_input_notes(self, status: Optional[InputNoteStatus] = None) -> List[InputNoteRecord]:
        return self._store.get_input_notes(status)

    def get_input_note(self, note_id: Word) -> Optional[InputNoteRecord]:
        return self._store.get_input_note(note_id)

    def get_output_notes(self) -> List[OutputNoteRecord]:
        return self._store.get_output_notes()

    def get_transactions(self) -> List[TransactionRecord]:
        return self._store.get_transactions()

    def _sign(self, account: Account, request: TransactionRequest) -> Optional[AuthSignature]:
        auth = account.code.auth_component()
        if auth.kind is not ComponentKind.AUTH_ED25519:
            return None
        pub_commitment = account.storage.get_item(0)
        if self._keystore is None:
            raise KeyStoreFailure("no key store configured", {"account_id": account.id.to_hex()})
        secret = self._keystore.get_key(pub_commitment)
        if secret is None:
            raise KeyStoreFailure(
                "no key for account auth component",
                {"account_id": account.id.to_hex(), "pub_commitment": pub_commitment.to_hex()},
            )
        return sign_message(secret, auth_message(account, request))

    def new_transaction(self, account_id: AccountId, request: TransactionRequest) -> TransactionResult:
        """Execute `request` against the tracked account. Nothing is submitted or stored."""
        rec = self._store.get_account(account_id)
        if rec is None:
            raise SubmissionFailure("account is not tracked by this client", {"account_id": account_id.to_hex()})
        if rec.status is AccountStatus.LOCKED:
            raise SubmissionFailure("account state diverged from the ledger", {"account_id": account_id.to_hex()})

        account = rec.account
        inputs = TransactionInputs(
            account=account,
            request=request,
            account_seed=rec.seed if account.is_new else None,
            signature=self._sign(account, request),
        )
        result = self._rpc.execute_transaction(inputs)
        if result.final_account.commitment() != result.executed_transaction.final_commitment:
            raise SubmissionFailure("executed transaction does not match its final account", {"tx_id": result.id.to_hex()})

        log_event(
            log,
            "client_tx_executed",
            tx_id=result.id.to_hex(),
            account_id=account_id.to_hex(),
            notes_created=len(result.created_notes),
            notes_consumed=len(result.consumed_notes),
        )
        if self.debug:
            log_event(log, "client_tx_delta", tx_id=result.id.to_hex(), delta=result.account_delta.to_json())
        return result

    def submit_transaction(self, result: TransactionResult) -> SubmitResult:
        """Submit to the ledger, then record it as pending. The account is updated by the next sync."""
        submitted = self._rpc.submit_transaction(result.inputs, result.id)
        self._store.insert_transaction(result)
        log_event(
            log,
            "client_tx_submitted",
            tx_id=result.id.to_hex(),
            account_id=result.account_id.to_hex(),
            block_num=submitted.block_num,
        )
        return submitted
