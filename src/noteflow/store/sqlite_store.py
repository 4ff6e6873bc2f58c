# src/noteflow/store/sqlite_store.py
from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from noteflow.crypto.felt import Word
from noteflow.errors import StoreError
from noteflow.objects.account import Account
from noteflow.objects.account_id import AccountId
from noteflow.objects.block import BlockHeader
from noteflow.objects.note import Note, NoteInclusionProof, NoteTag
from noteflow.objects.transaction import TransactionResult
from noteflow.store.sqlite_db import SchemaVersionMismatch, SqliteDB, _now_ms, canon_json

Json = Dict[str, Any]


class AccountStatus(str, Enum):
    NEW = "new"  # built locally, not yet on chain
    COMMITTED = "committed"
    LOCKED = "locked"  # local state diverged from chain and cannot be recovered


class InputNoteStatus(str, Enum):
    EXPECTED = "expected"
    COMMITTED = "committed"
    PROCESSING = "processing"  # consumed by a submitted, not yet committed transaction
    CONSUMED = "consumed"


class OutputNoteStatus(str, Enum):
    EXPECTED = "expected"
    COMMITTED = "committed"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"


@dataclass(frozen=True)
class AccountRecord:
    account: Account
    seed: Optional[bytes]
    status: AccountStatus


@dataclass(frozen=True)
class InputNoteRecord:
    note: Note
    status: InputNoteStatus
    proof: Optional[NoteInclusionProof] = None
    consumer_tx: Optional[Word] = None

    def id(self) -> Word:
        return self.note.id()

    def is_committed(self) -> bool:
        return self.status is InputNoteStatus.COMMITTED

    def is_consumed(self) -> bool:
        return self.status is InputNoteStatus.CONSUMED


@dataclass(frozen=True)
class OutputNoteRecord:
    note: Note
    status: OutputNoteStatus
    tx_id: Word
    block_num: Optional[int] = None


@dataclass(frozen=True)
class TransactionRecord:
    id: Word
    account_id: AccountId
    status: TransactionStatus
    result: TransactionResult
    block_num: Optional[int] = None


class ClientDB(SqliteDB):
    SCHEMA_VERSION = 1
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS accounts (
          account_id TEXT PRIMARY KEY,
          account_json TEXT NOT NULL,
          seed_hex TEXT,
          commitment TEXT NOT NULL,
          status TEXT NOT NULL,
          updated_ts_ms INTEGER NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS input_notes (
          note_id TEXT PRIMARY KEY,
          note_json TEXT NOT NULL,
          status TEXT NOT NULL,
          tag INTEGER NOT NULL,
          nullifier TEXT NOT NULL,
          proof_json TEXT,
          consumer_tx TEXT,
          updated_ts_ms INTEGER NOT NULL
        );
        """,
        "CREATE INDEX IF NOT EXISTS idx_input_notes_nullifier ON input_notes(nullifier);",
        """
        CREATE TABLE IF NOT EXISTS output_notes (
          note_id TEXT PRIMARY KEY,
          note_json TEXT NOT NULL,
          status TEXT NOT NULL,
          tx_id TEXT NOT NULL,
          block_num INTEGER
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS note_tags (
          tag INTEGER PRIMARY KEY,
          source TEXT NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS transactions (
          tx_id TEXT PRIMARY KEY,
          account_id TEXT NOT NULL,
          status TEXT NOT NULL,
          result_json TEXT NOT NULL,
          block_num INTEGER,
          submitted_ts_ms INTEGER NOT NULL
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS block_headers (
          block_num INTEGER PRIMARY KEY,
          header_json TEXT NOT NULL
        );
        """,
    )


def _loads(raw: Any) -> Any:
    return json.loads(str(raw))


class SqliteStore:
    """Client-side persistence: tracked accounts, notes, tags, transactions and block headers.

    Every multi-row update runs in one write_tx(); a failed sync or registration
    leaves the file as it was. SQLite failures surface as StoreError.
    """

    def __init__(self, path: str) -> None:
        self.path = str(path)
        self._db = ClientDB(path=self.path)
        try:
            self._db.init_schema()
        except (sqlite3.Error, SchemaVersionMismatch) as e:
            raise StoreError("cannot open client store", {"path": self.path, "error": str(e)}) from e

    @property
    def db(self) -> ClientDB:
        return self._db

    # ----------------------------
    # Sync height / headers
    # ----------------------------

    def get_sync_height(self) -> int:
        raw = self._db.get_meta("sync_height")
        return 0 if raw is None else int(raw)

    def set_sync_height(self, con: sqlite3.Connection, height: int) -> None:
        con.execute(
            "INSERT INTO meta(key, value) VALUES('sync_height', ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (str(int(height)),),
        )

    def put_block_header(self, con: sqlite3.Connection, header: BlockHeader) -> None:
        con.execute(
            "INSERT OR REPLACE INTO block_headers(block_num, header_json) VALUES(?, ?);",
            (int(header.block_num), canon_json(header.to_json())),
        )

    def get_block_header(self, block_num: int) -> Optional[BlockHeader]:
        with self._db.connection() as con:
            row = con.execute("SELECT header_json FROM block_headers WHERE block_num=? LIMIT 1;", (int(block_num),)).fetchone()
        return None if row is None else BlockHeader.from_json(_loads(row["header_json"]))

    def latest_block_header(self) -> Optional[BlockHeader]:
        with self._db.connection() as con:
            row = con.execute("SELECT header_json FROM block_headers ORDER BY block_num DESC LIMIT 1;").fetchone()
        return None if row is None else BlockHeader.from_json(_loads(row["header_json"]))

    # ----------------------------
    # Accounts
    # ----------------------------

    def insert_account(self, account: Account, seed: Optional[bytes], *, overwrite: bool = False) -> None:
        aid = account.id.to_hex()
        status = AccountStatus.NEW if account.is_new else AccountStatus.COMMITTED
        try:
            with self._db.write_tx() as con:
                exists = con.execute("SELECT 1 FROM accounts WHERE account_id=? LIMIT 1;", (aid,)).fetchone()
                if exists is not None and not overwrite:
                    raise StoreError("account already tracked", {"account_id": aid})
                con.execute(
                    """
                    INSERT OR REPLACE INTO accounts(account_id, account_json, seed_hex, commitment, status, updated_ts_ms)
                    VALUES(?,?,?,?,?,?);
                    """,
                    (
                        aid,
                        canon_json(account.to_json()),
                        None if seed is None else bytes(seed).hex(),
                        account.commitment().to_hex(),
                        status.value,
                        _now_ms(),
                    ),
                )
        except sqlite3.Error as e:
            raise StoreError("cannot write account", {"account_id": aid, "error": str(e)}) from e

    def update_account(self, con: sqlite3.Connection, account: Account, status: AccountStatus) -> None:
        con.execute(
            "UPDATE accounts SET account_json=?, commitment=?, status=?, updated_ts_ms=? WHERE account_id=?;",
            (canon_json(account.to_json()), account.commitment().to_hex(), status.value, _now_ms(), account.id.to_hex()),
        )

    def set_account_status(self, con: sqlite3.Connection, account_id: AccountId, status: AccountStatus) -> None:
        con.execute(
            "UPDATE accounts SET status=?, updated_ts_ms=? WHERE account_id=?;",
            (status.value, _now_ms(), account_id.to_hex()),
        )

    def get_account(self, account_id: AccountId) -> Optional[AccountRecord]:
        with self._db.connection() as con:
            row = con.execute(
                "SELECT account_json, seed_hex, status FROM accounts WHERE account_id=? LIMIT 1;", (account_id.to_hex(),)
            ).fetchone()
        if row is None:
            return None
        seed = row["seed_hex"]
        return AccountRecord(
            account=Account.from_json(_loads(row["account_json"])),
            seed=bytes.fromhex(str(seed)) if seed else None,
            status=AccountStatus(str(row["status"])),
        )

    def get_account_ids(self) -> List[AccountId]:
        with self._db.connection() as con:
            rows = con.execute("SELECT account_id FROM accounts ORDER BY account_id;").fetchall()
        return [AccountId.from_hex(str(r["account_id"])) for r in rows]

    def get_accounts(self) -> List[AccountRecord]:
        out: List[AccountRecord] = []
        for aid in self.get_account_ids():
            rec = self.get_account(aid)
            if rec is not None:
                out.append(rec)
        return out

    # ----------------------------
    # Tags
    # ----------------------------

    def add_note_tag(self, tag: NoteTag, source: str = "user") -> bool:
        with self._db.write_tx() as con:
            cur = con.execute("INSERT OR IGNORE INTO note_tags(tag, source) VALUES(?, ?);", (int(tag), str(source)))
            return cur.rowcount > 0

    def get_note_tags(self) -> List[NoteTag]:
        with self._db.connection() as con:
            rows = con.execute("SELECT tag FROM note_tags ORDER BY tag;").fetchall()
        return [NoteTag(int(r["tag"])) for r in rows]

    # ----------------------------
    # Notes
    # ----------------------------

    def _input_note_from_row(self, row: sqlite3.Row) -> InputNoteRecord:
        proof = row["proof_json"]
        consumer = row["consumer_tx"]
        return InputNoteRecord(
            note=Note.from_json(_loads(row["note_json"])),
            status=InputNoteStatus(str(row["status"])),
            proof=NoteInclusionProof.from_json(_loads(proof)) if proof else None,
            consumer_tx=Word.from_hex(str(consumer)) if consumer else None,
        )

    def upsert_input_note(
        self,
        con: sqlite3.Connection,
        note: Note,
        status: InputNoteStatus,
        proof: Optional[NoteInclusionProof] = None,
    ) -> None:
        con.execute(
            """
            INSERT INTO input_notes(note_id, note_json, status, tag, nullifier, proof_json, consumer_tx, updated_ts_ms)
            VALUES(?,?,?,?,?,?,NULL,?)
            ON CONFLICT(note_id) DO UPDATE SET
              status=excluded.status,
              proof_json=COALESCE(excluded.proof_json, input_notes.proof_json),
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (
                note.id().to_hex(),
                canon_json(note.to_json()),
                status.value,
                int(note.metadata.tag),
                note.nullifier().to_hex(),
                None if proof is None else canon_json(proof.to_json()),
                _now_ms(),
            ),
        )

    def get_input_note(self, note_id: Word) -> Optional[InputNoteRecord]:
        with self._db.connection() as con:
            row = con.execute("SELECT * FROM input_notes WHERE note_id=? LIMIT 1;", (note_id.to_hex(),)).fetchone()
        return None if row is None else self._input_note_from_row(row)

    def get_input_notes(self, status: Optional[InputNoteStatus] = None) -> List[InputNoteRecord]:
        with self._db.connection() as con:
            if status is None:
                rows = con.execute("SELECT * FROM input_notes ORDER BY updated_ts_ms, note_id;").fetchall()
            else:
                rows = con.execute(
                    "SELECT * FROM input_notes WHERE status=? ORDER BY updated_ts_ms, note_id;", (status.value,)
                ).fetchall()
        return [self._input_note_from_row(r) for r in rows]

    def get_output_notes(self) -> List[OutputNoteRecord]:
        with self._db.connection() as con:
            rows = con.execute("SELECT * FROM output_notes ORDER BY rowid;").fetchall()
        return [
            OutputNoteRecord(
                note=Note.from_json(_loads(r["note_json"])),
                status=OutputNoteStatus(str(r["status"])),
                tx_id=Word.from_hex(str(r["tx_id"])),
                block_num=None if r["block_num"] is None else int(r["block_num"]),
            )
            for r in rows
        ]

    def expected_note_ids(self) -> List[Word]:
        with self._db.connection() as con:
            rows = con.execute(
                """
                SELECT note_id FROM input_notes WHERE status=?
                UNION
                SELECT note_id FROM output_notes WHERE status=?
                ORDER BY note_id;
                """,
                (InputNoteStatus.EXPECTED.value, OutputNoteStatus.EXPECTED.value),
            ).fetchall()
        return [Word.from_hex(str(r["note_id"])) for r in rows]

    def expected_note_tags(self) -> List[NoteTag]:
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT DISTINCT tag FROM input_notes WHERE status=? ORDER BY tag;", (InputNoteStatus.EXPECTED.value,)
            ).fetchall()
        return [NoteTag(int(r["tag"])) for r in rows]

    def mark_note_committed(self, con: sqlite3.Connection, note: Note, proof: NoteInclusionProof) -> bool:
        """Record a committed note. Returns True if a tracked input note changed state."""
        nid = note.id().to_hex()
        con.execute(
            "UPDATE output_notes SET status=?, block_num=? WHERE note_id=?;",
            (OutputNoteStatus.COMMITTED.value, int(proof.block_num), nid),
        )
        row = con.execute("SELECT status FROM input_notes WHERE note_id=? LIMIT 1;", (nid,)).fetchone()
        if row is not None and str(row["status"]) != InputNoteStatus.EXPECTED.value:
            return False
        self.upsert_input_note(con, note, InputNoteStatus.COMMITTED, proof)
        return True

    def mark_nullifier_consumed(self, con: sqlite3.Connection, nullifier: Word) -> List[Word]:
        rows = con.execute(
            "SELECT note_id FROM input_notes WHERE nullifier=? AND status<>?;",
            (nullifier.to_hex(), InputNoteStatus.CONSUMED.value),
        ).fetchall()
        con.execute(
            "UPDATE input_notes SET status=?, updated_ts_ms=? WHERE nullifier=?;",
            (InputNoteStatus.CONSUMED.value, _now_ms(), nullifier.to_hex()),
        )
        return [Word.from_hex(str(r["note_id"])) for r in rows]

    # ----------------------------
    # Transactions
    # ----------------------------

    def insert_transaction(self, result: TransactionResult) -> None:
        """Record a submitted transaction with its output notes and the notes it consumes, atomically."""
        tx_id = result.id.to_hex()
        try:
            with self._db.write_tx() as con:
                con.execute(
                    """
                    INSERT INTO transactions(tx_id, account_id, status, result_json, block_num, submitted_ts_ms)
                    VALUES(?,?,?,?,NULL,?);
                    """,
                    (tx_id, result.account_id.to_hex(), TransactionStatus.PENDING.value, canon_json(result.to_json()), _now_ms()),
                )
                for note in result.created_notes:
                    con.execute(
                        "INSERT OR IGNORE INTO output_notes(note_id, note_json, status, tx_id, block_num) VALUES(?,?,?,?,NULL);",
                        (note.id().to_hex(), canon_json(note.to_json()), OutputNoteStatus.EXPECTED.value, tx_id),
                    )
                    # The creator knows the full note, so it can also consume it.
                    con.execute(
                        """
                        INSERT OR IGNORE INTO input_notes(note_id, note_json, status, tag, nullifier, proof_json, consumer_tx, updated_ts_ms)
                        VALUES(?,?,?,?,?,NULL,NULL,?);
                        """,
                        (
                            note.id().to_hex(),
                            canon_json(note.to_json()),
                            InputNoteStatus.EXPECTED.value,
                            int(note.metadata.tag),
                            note.nullifier().to_hex(),
                            _now_ms(),
                        ),
                    )
                for note in result.consumed_notes:
                    con.execute(
                        "UPDATE input_notes SET status=?, consumer_tx=?, updated_ts_ms=? WHERE note_id=? AND status<>?;",
                        (
                            InputNoteStatus.PROCESSING.value,
                            tx_id,
                            _now_ms(),
                            note.id().to_hex(),
                            InputNoteStatus.CONSUMED.value,
                        ),
                    )
        except sqlite3.IntegrityError as e:
            raise StoreError("transaction already recorded", {"tx_id": tx_id}) from e

    def _tx_from_row(self, row: sqlite3.Row) -> TransactionRecord:
        return TransactionRecord(
            id=Word.from_hex(str(row["tx_id"])),
            account_id=AccountId.from_hex(str(row["account_id"])),
            status=TransactionStatus(str(row["status"])),
            result=TransactionResult.from_json(_loads(row["result_json"])),
            block_num=None if row["block_num"] is None else int(row["block_num"]),
        )

    def get_transaction(self, tx_id: Word) -> Optional[TransactionRecord]:
        with self._db.connection() as con:
            row = con.execute("SELECT * FROM transactions WHERE tx_id=? LIMIT 1;", (tx_id.to_hex(),)).fetchone()
        return None if row is None else self._tx_from_row(row)

    def get_transactions(self, status: Optional[TransactionStatus] = None) -> List[TransactionRecord]:
        with self._db.connection() as con:
            if status is None:
                rows = con.execute("SELECT * FROM transactions ORDER BY submitted_ts_ms, tx_id;").fetchall()
            else:
                rows = con.execute(
                    "SELECT * FROM transactions WHERE status=? ORDER BY submitted_ts_ms, tx_id;", (status.value,)
                ).fetchall()
        return [self._tx_from_row(r) for r in rows]

    def pending_transactions(self, con: sqlite3.Connection) -> Dict[str, TransactionRecord]:
        rows = con.execute(
            "SELECT * FROM transactions WHERE status=? ORDER BY submitted_ts_ms, tx_id;", (TransactionStatus.PENDING.value,)
        ).fetchall()
        return {str(r["tx_id"]): self._tx_from_row(r) for r in rows}

    def mark_transaction_committed(self, con: sqlite3.Connection, tx_id: Word, block_num: int) -> None:
        con.execute(
            "UPDATE transactions SET status=?, block_num=? WHERE tx_id=?;",
            (TransactionStatus.COMMITTED.value, int(block_num), tx_id.to_hex()),
        )

    def tracked_accounts(self, con: sqlite3.Connection, ids: Iterable[AccountId]) -> Dict[str, AccountRecord]:
        out: Dict[str, AccountRecord] = {}
        for aid in ids:
            row = con.execute(
                "SELECT account_json, seed_hex, status FROM accounts WHERE account_id=? LIMIT 1;", (aid.to_hex(),)
            ).fetchone()
            if row is None:
                continue
            seed = row["seed_hex"]
            out[aid.to_hex()] = AccountRecord(
                account=Account.from_json(_loads(row["account_json"])),
                seed=bytes.fromhex(str(seed)) if seed else None,
                status=AccountStatus(str(row["status"])),
            )
        return out


