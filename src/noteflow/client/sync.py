# src/noteflow/client/sync.py
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List

from noteflow.crypto.felt import Word
from noteflow.errors import SyncFailure
from noteflow.objects.account_id import AccountId
from noteflow.objects.note import NoteTag
from noteflow.rpc.api import NodeRpcApi, SyncStateResponse
from noteflow.store.sqlite_store import AccountStatus, SqliteStore
from noteflow.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("noteflow.sync")


@dataclass
class SyncSummary:
    block_num: int
    committed_notes: List[Word] = field(default_factory=list)
    consumed_notes: List[Word] = field(default_factory=list)
    updated_accounts: List[AccountId] = field(default_factory=list)
    locked_accounts: List[AccountId] = field(default_factory=list)
    committed_transactions: List[Word] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.committed_notes
            or self.consumed_notes
            or self.updated_accounts
            or self.locked_accounts
            or self.committed_transactions
        )

    def to_json(self) -> Json:
        return {
            "block_num": int(self.block_num),
            "committed_notes": [n.to_hex() for n in self.committed_notes],
            "consumed_notes": [n.to_hex() for n in self.consumed_notes],
            "updated_accounts": [a.to_hex() for a in self.updated_accounts],
            "locked_accounts": [a.to_hex() for a in self.locked_accounts],
            "committed_transactions": [t.to_hex() for t in self.committed_transactions],
        }


def _tracked_tags(store: SqliteStore) -> List[NoteTag]:
    tags = {int(t): t for t in store.get_note_tags()}
    for t in store.expected_note_tags():
        tags.setdefault(int(t), t)
    return [tags[k] for k in sorted(tags)]


def sync_state(store: SqliteStore, rpc: NodeRpcApi) -> SyncSummary:
    """Bring the local store up to the chain tip in one request.

    Policy:
      - everything learned from one response is written in one transaction
      - a response behind the local height is a SyncFailure, not a rollback
      - pending transactions are applied only once the ledger reports them committed
    """
    height = store.get_sync_height()
    account_ids = store.get_account_ids()
    tags = _tracked_tags(store)
    expected = store.expected_note_ids()

    resp = rpc.sync_state(height, account_ids, tags, expected)
    if resp.chain_tip.block_num < height:
        raise SyncFailure(
            "ledger tip is behind the local sync height", {"tip": resp.chain_tip.block_num, "local": height}
        )

    try:
        with store.db.write_tx() as con:
            summary = _apply(store, con, resp, account_ids)
    except (sqlite3.Error, ValueError) as e:
        raise SyncFailure("cannot apply sync response", {"error": str(e), "block_num": resp.chain_tip.block_num}) from e

    log_event(log, "client_synced", from_block=height, **summary.to_json())
    return summary


def _apply(store: SqliteStore, con: sqlite3.Connection, resp: SyncStateResponse, account_ids: List[AccountId]) -> SyncSummary:
    summary = SyncSummary(block_num=resp.chain_tip.block_num)

    store.put_block_header(con, resp.chain_tip)
    for h in resp.block_headers:
        store.put_block_header(con, h)

    for cn in resp.notes:
        if store.mark_note_committed(con, cn.note, cn.proof):
            summary.committed_notes.append(cn.note.id())

    for nullifier, _block in resp.nullifiers:
        summary.consumed_notes.extend(store.mark_nullifier_consumed(con, nullifier))

    pending = store.pending_transactions(con)
    applied: Dict[str, Word] = {}
    for ctx in resp.transactions:
        rec = pending.get(ctx.id.to_hex())
        if rec is None:
            continue
        store.mark_transaction_committed(con, ctx.id, ctx.block_num)
        store.update_account(con, rec.result.final_account, AccountStatus.COMMITTED)
        applied[rec.account_id.to_hex()] = rec.result.final_account.commitment()
        summary.committed_transactions.append(ctx.id)

    tracked = store.tracked_accounts(con, account_ids)
    for upd in resp.accounts:
        key = upd.account_id.to_hex()
        rec = tracked.get(key)
        if rec is None:
            continue
        local_commitment = applied.get(key, rec.account.commitment())
        if local_commitment == upd.commitment:
            if key in applied:
                summary.updated_accounts.append(upd.account_id)
            continue
        # Changed on chain by something this client did not submit.
        if upd.account is not None and upd.account.commitment() == upd.commitment:
            store.update_account(con, upd.account, AccountStatus.COMMITTED)
            summary.updated_accounts.append(upd.account_id)
        else:
            store.set_account_status(con, upd.account_id, AccountStatus.LOCKED)
            summary.locked_accounts.append(upd.account_id)
            log_event(log, "client_account_locked", account_id=key, chain_commitment=upd.commitment.to_hex())

    store.set_sync_height(con, resp.chain_tip.block_num)
    return summary
