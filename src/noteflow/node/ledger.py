# src/noteflow/node/ledger.py
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from noteflow.crypto.felt import ZERO_WORD, Word
from noteflow.objects.account import Account
from noteflow.objects.account_id import AccountId
from noteflow.objects.block import BlockHeader, chain_commitment, words_root
from noteflow.objects.note import Note, NoteInclusionProof, NoteTag
from noteflow.objects.transaction import ExecutedTransaction, TransactionInputs, TransactionResult
from noteflow.node.errors import NodeError
from noteflow.node.executor import TransactionExecutor
from noteflow.rpc.api import (
    AccountDetails,
    AccountUpdate,
    CommittedNote,
    CommittedTransaction,
    SubmitResult,
    SyncStateResponse,
)
from noteflow.store.sqlite_db import SqliteDB, canon_json
from noteflow.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("noteflow.node")


def _now_ms() -> int:
    return int(time.time() * 1000)


class LedgerDB(SqliteDB):
    SCHEMA_VERSION = 1
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS blocks (
          block_num INTEGER PRIMARY KEY,
          commitment TEXT NOT NULL,
          header_json TEXT NOT NULL,
          tx_ids_json TEXT NOT NULL,
          created_ts_ms INTEGER NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS accounts (
          account_id TEXT PRIMARY KEY,
          commitment TEXT NOT NULL,
          account_json TEXT,
          block_num INTEGER NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS notes (
          note_id TEXT PRIMARY KEY,
          note_json TEXT NOT NULL,
          commitment TEXT NOT NULL,
          tag INTEGER NOT NULL,
          nullifier TEXT NOT NULL,
          block_num INTEGER NOT NULL,
          note_index INTEGER NOT NULL
        );
        """,
        "CREATE INDEX IF NOT EXISTS idx_notes_tag ON notes(tag, block_num);",
        """
        CREATE TABLE IF NOT EXISTS nullifiers (
          nullifier TEXT PRIMARY KEY,
          block_num INTEGER NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS transactions (
          tx_id TEXT PRIMARY KEY,
          account_id TEXT NOT NULL,
          block_num INTEGER NOT NULL,
          tx_json TEXT NOT NULL
        );
        """,
        "CREATE INDEX IF NOT EXISTS idx_txs_account ON transactions(account_id, block_num);",
    )


class LocalNode:
    """Development ledger: accepts transactions and seals one block per transaction.

    Stands in for the real network in tests and local runs. Proof verification
    is replaced by re-execution: submit_transaction() runs the inputs again and
    requires the same transaction id.

    Policy:
      - refuse to open a database created for another chain_id
      - each accepted transaction is committed atomically with its block
      - private accounts are stored by commitment only
    """

    def __init__(self, *, db_path: str, chain_id: str = "noteflow-dev") -> None:
        self.chain_id = str(chain_id)
        self.db_path = str(db_path)
        self._db = LedgerDB(path=self.db_path)
        self._db.init_schema()
        self._executor = TransactionExecutor()

        stored = self._db.get_meta("chain_id")
        if stored is not None and stored != self.chain_id:
            raise NodeError.internal(
                "chain_id_mismatch", "database belongs to another chain", {"db": stored, "node": self.chain_id}
            )
        if stored is None:
            self._init_genesis()

    def _init_genesis(self) -> None:
        header = BlockHeader(
            block_num=0,
            prev_commitment=ZERO_WORD,
            chain_commitment=chain_commitment(self.chain_id),
            tx_commitment=words_root([]),
            note_root=words_root([]),
            nullifier_root=words_root([]),
            timestamp_ms=_now_ms(),
        )
        with self._db.write_tx() as con:
            con.execute("INSERT INTO meta(key, value) VALUES('chain_id', ?);", (self.chain_id,))
            con.execute(
                "INSERT INTO blocks(block_num, commitment, header_json, tx_ids_json, created_ts_ms) VALUES(0,?,?,?,?);",
                (header.commitment().to_hex(), canon_json(header.to_json()), "[]", _now_ms()),
            )
        log_event(log, "node_genesis", chain_id=self.chain_id, commitment=header.commitment().to_hex())

    # ----------------------------
    # Reads
    # ----------------------------

    def tip(self) -> int:
        with self._db.connection() as con:
            row = con.execute("SELECT MAX(block_num) AS h FROM blocks;").fetchone()
            return int(row["h"]) if row is not None and row["h"] is not None else 0

    def get_block_header(self, block_num: Optional[int] = None) -> BlockHeader:
        n = self.tip() if block_num is None else int(block_num)
        with self._db.connection() as con:
            row = con.execute("SELECT header_json FROM blocks WHERE block_num=? LIMIT 1;", (n,)).fetchone()
        if row is None:
            raise NodeError.not_found("block_not_found", "no such block", {"block_num": n})
        return BlockHeader.from_json(json.loads(str(row["header_json"])))

    def get_account_details(self, account_id: AccountId) -> AccountDetails:
        with self._db.connection() as con:
            row = con.execute(
                "SELECT commitment, account_json, block_num FROM accounts WHERE account_id=? LIMIT 1;",
                (account_id.to_hex(),),
            ).fetchone()
        if row is None:
            raise NodeError.not_found("account_not_found", "account is not on chain", {"account_id": account_id.to_hex()})
        acct = row["account_json"]
        return AccountDetails(
            account_id=account_id,
            commitment=Word.from_hex(str(row["commitment"])),
            block_num=int(row["block_num"]),
            account=Account.from_json(json.loads(str(acct))) if acct else None,
        )

    def sync_state(
        self,
        block_num: int,
        account_ids: Sequence[AccountId],
        note_tags: Sequence[NoteTag],
        note_ids: Sequence[Word] = (),
    ) -> SyncStateResponse:
        since = int(block_num)
        tip = self.get_block_header()
        if since > tip.block_num:
            raise NodeError.bad_request(
                "sync_ahead_of_chain", "requested block is beyond the chain tip", {"block_num": since, "tip": tip.block_num}
            )

        tags = sorted({int(t) for t in note_tags})
        wanted_ids = {n.to_hex() for n in note_ids}
        acct_ids = [a.to_hex() for a in account_ids]

        notes: List[CommittedNote] = []
        note_blocks: set[int] = set()
        with self._db.connection() as con:
            for row in con.execute(
                "SELECT note_id, note_json, tag, block_num, note_index FROM notes WHERE block_num > ? ORDER BY block_num, note_index;",
                (since,),
            ):
                if int(row["tag"]) not in tags and str(row["note_id"]) not in wanted_ids:
                    continue
                notes.append(
                    CommittedNote(
                        note=Note.from_json(json.loads(str(row["note_json"]))),
                        proof=NoteInclusionProof(block_num=int(row["block_num"]), note_index=int(row["note_index"])),
                    )
                )
                note_blocks.add(int(row["block_num"]))

            nullifiers = tuple(
                (Word.from_hex(str(r["nullifier"])), int(r["block_num"]))
                for r in con.execute(
                    "SELECT nullifier, block_num FROM nullifiers WHERE block_num > ? ORDER BY block_num;", (since,)
                )
            )

            accounts: List[AccountUpdate] = []
            txs: List[CommittedTransaction] = []
            for aid in acct_ids:
                row = con.execute(
                    "SELECT commitment, account_json, block_num FROM accounts WHERE account_id=? AND block_num > ? LIMIT 1;",
                    (aid, since),
                ).fetchone()
                if row is not None:
                    acct = row["account_json"]
                    accounts.append(
                        AccountUpdate(
                            account_id=AccountId.from_hex(aid),
                            commitment=Word.from_hex(str(row["commitment"])),
                            block_num=int(row["block_num"]),
                            account=Account.from_json(json.loads(str(acct))) if acct else None,
                        )
                    )
                for r in con.execute(
                    "SELECT tx_id, block_num FROM transactions WHERE account_id=? AND block_num > ? ORDER BY block_num;",
                    (aid, since),
                ):
                    txs.append(
                        CommittedTransaction(
                            id=Word.from_hex(str(r["tx_id"])), account_id=AccountId.from_hex(aid), block_num=int(r["block_num"])
                        )
                    )

        headers = tuple(self.get_block_header(b) for b in sorted(note_blocks))
        return SyncStateResponse(
            chain_tip=tip,
            notes=tuple(notes),
            nullifiers=nullifiers,
            accounts=tuple(accounts),
            transactions=tuple(txs),
            block_headers=headers,
        )

    # ----------------------------
    # Execution
    # ----------------------------

    def _check_account(self, inputs: TransactionInputs) -> None:
        account = inputs.account
        aid = account.id.to_hex()
        with self._db.connection() as con:
            row = con.execute("SELECT commitment FROM accounts WHERE account_id=? LIMIT 1;", (aid,)).fetchone()

        if row is not None:
            if Word.from_hex(str(row["commitment"])) != account.commitment():
                raise NodeError.conflict(
                    "account_state_mismatch",
                    "account state does not match the chain",
                    {"account_id": aid, "chain": str(row["commitment"]), "given": account.commitment().to_hex()},
                )
            return

        if not account.is_new:
            raise NodeError.not_found("account_not_found", "account is not on chain", {"account_id": aid})
        if inputs.account_seed is None:
            raise NodeError.bad_request("account_seed_missing", "new accounts must carry their seed", {"account_id": aid})

        anchor = self.get_block_header(account.id.anchor_block_num)
        try:
            derived = AccountId.derive(
                seed=inputs.account_seed,
                account_type=account.account_type,
                storage_mode=account.storage_mode,
                code_commitment=account.code.commitment(),
                storage_commitment=account.storage.commitment(),
                anchor_block_num=anchor.block_num,
                anchor_commitment=anchor.commitment(),
            )
        except ValueError as e:
            raise NodeError.bad_request("invalid_account_seed", str(e), {"account_id": aid}) from e
        if derived != account.id:
            raise NodeError.bad_request(
                "invalid_account_seed", "account id does not derive from seed and anchor", {"account_id": aid}
            )

    def _check_input_notes(self, inputs: TransactionInputs) -> None:
        with self._db.connection() as con:
            for note in inputs.request.input_notes():
                nid = note.id().to_hex()
                row = con.execute("SELECT commitment, nullifier FROM notes WHERE note_id=? LIMIT 1;", (nid,)).fetchone()
                if row is None:
                    raise NodeError.not_found("note_not_found", "input note is not committed", {"note_id": nid})
                if str(row["commitment"]) != note.commitment().to_hex():
                    raise NodeError.bad_request("note_mismatch", "input note differs from the committed note", {"note_id": nid})
                spent = con.execute(
                    "SELECT 1 FROM nullifiers WHERE nullifier=? LIMIT 1;", (str(row["nullifier"]),)
                ).fetchone()
                if spent is not None:
                    raise NodeError.conflict("note_already_consumed", "input note was already consumed", {"note_id": nid})

    def execute_transaction(self, inputs: TransactionInputs) -> TransactionResult:
        self._check_account(inputs)
        self._check_input_notes(inputs)
        executed, final = self._executor.execute(
            inputs.account, inputs.request, block_num=self.tip(), signature=inputs.signature
        )
        return TransactionResult(executed_transaction=executed, inputs=inputs, final_account=final)

    def submit_transaction(self, inputs: TransactionInputs, tx_id: Word) -> SubmitResult:
        result = self.execute_transaction(inputs)
        executed = result.executed_transaction
        if executed.id() != tx_id:
            raise NodeError.bad_request(
                "tx_mismatch",
                "re-execution produced a different transaction",
                {"claimed": tx_id.to_hex(), "actual": executed.id().to_hex()},
            )
        block_num = self._commit(executed, result.final_account)
        log_event(
            log,
            "node_tx_committed",
            tx_id=executed.id().to_hex(),
            account_id=executed.account_id.to_hex(),
            block_num=block_num,
            notes_created=len(executed.output_notes),
            notes_consumed=len(executed.input_nullifiers),
        )
        return SubmitResult(tx_id=executed.id(), block_num=block_num)

    def _commit(self, executed: ExecutedTransaction, final: Account) -> int:
        """Seal one block holding this transaction. Block row, notes, nullifiers and account go in one write."""
        tx_id = executed.id().to_hex()
        with self._db.write_tx() as con:
            if con.execute("SELECT 1 FROM transactions WHERE tx_id=? LIMIT 1;", (tx_id,)).fetchone() is not None:
                raise NodeError.conflict("duplicate_transaction", "transaction already committed", {"tx_id": tx_id})

            row = con.execute("SELECT block_num, header_json FROM blocks ORDER BY block_num DESC LIMIT 1;").fetchone()
            prev = BlockHeader.from_json(json.loads(str(row["header_json"])))
            block_num = prev.block_num + 1
            if executed.expiration_block is not None and block_num > executed.expiration_block:
                raise NodeError.bad_request(
                    "transaction_expired", "transaction expired", {"expiration_block": executed.expiration_block}
                )

            for n in executed.input_nullifiers:
                if con.execute("SELECT 1 FROM nullifiers WHERE nullifier=? LIMIT 1;", (n.to_hex(),)).fetchone():
                    raise NodeError.conflict("note_already_consumed", "input note was already consumed", {"nullifier": n.to_hex()})
                con.execute("INSERT INTO nullifiers(nullifier, block_num) VALUES(?, ?);", (n.to_hex(), block_num))

            out_notes = [o.note for o in executed.output_notes]
            for idx, note in enumerate(out_notes):
                if con.execute("SELECT 1 FROM notes WHERE note_id=? LIMIT 1;", (note.id().to_hex(),)).fetchone():
                    raise NodeError.conflict("duplicate_note", "note already committed", {"note_id": note.id().to_hex()})
                con.execute(
                    """
                    INSERT INTO notes(note_id, note_json, commitment, tag, nullifier, block_num, note_index)
                    VALUES(?,?,?,?,?,?,?);
                    """,
                    (
                        note.id().to_hex(),
                        canon_json(note.to_json()),
                        note.commitment().to_hex(),
                        int(note.metadata.tag),
                        note.nullifier().to_hex(),
                        block_num,
                        idx,
                    ),
                )

            con.execute(
                """
                INSERT INTO accounts(account_id, commitment, account_json, block_num) VALUES(?,?,?,?)
                ON CONFLICT(account_id) DO UPDATE SET
                  commitment=excluded.commitment,
                  account_json=excluded.account_json,
                  block_num=excluded.block_num;
                """,
                (
                    final.id.to_hex(),
                    final.commitment().to_hex(),
                    canon_json(final.to_json()) if final.is_public() else None,
                    block_num,
                ),
            )
            con.execute(
                "INSERT INTO transactions(tx_id, account_id, block_num, tx_json) VALUES(?,?,?,?);",
                (tx_id, executed.account_id.to_hex(), block_num, canon_json(executed.to_json())),
            )

            header = BlockHeader(
                block_num=block_num,
                prev_commitment=prev.commitment(),
                chain_commitment=prev.chain_commitment,
                tx_commitment=words_root([executed.id()]),
                note_root=words_root([n.commitment() for n in out_notes]),
                nullifier_root=words_root(executed.input_nullifiers),
                timestamp_ms=max(_now_ms(), prev.timestamp_ms),
            )
            con.execute(
                "INSERT INTO blocks(block_num, commitment, header_json, tx_ids_json, created_ts_ms) VALUES(?,?,?,?,?);",
                (block_num, header.commitment().to_hex(), canon_json(header.to_json()), canon_json([tx_id]), _now_ms()),
            )
        return block_num

    def status(self) -> Json:
        tip = self.get_block_header()
        return {"chain_id": self.chain_id, "tip": tip.block_num, "tip_commitment": tip.commitment().to_hex()}


def decode_tx_inputs(payload: Any) -> Tuple[TransactionInputs, Optional[Word]]:
    """Parse an execute/submit request body. tx_id is present only for submissions."""
    if not isinstance(payload, dict):
        raise NodeError.bad_request("bad_request", "request body must be an object")
    try:
        inputs = TransactionInputs.from_json(payload.get("inputs") or {})
        raw_id = payload.get("tx_id")
        tx_id = Word.from_hex(str(raw_id)) if raw_id is not None else None
    except (ValueError, TypeError, KeyError) as e:
        raise NodeError.bad_request("bad_request", f"malformed transaction inputs: {e}") from e
    return inputs, tx_id
