from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from noteflow.store.sqlite_store import ClientDB


def _pragma(con: sqlite3.Connection, name: str) -> int | str:
    row = con.execute(f"PRAGMA {name};").fetchone()
    if row is None:
        raise AssertionError(f"missing pragma: {name}")
    # sqlite3.Row behaves like a tuple for PRAGMA single-value results
    return row[0]


def test_sqlite_operational_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTEFLOW_MODE", "prod")
    monkeypatch.delenv("NOTEFLOW_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("NOTEFLOW_SQLITE_BUSY_TIMEOUT_MS", "1234")

    db = ClientDB(path=str(tmp_path / "client.db"))
    db.init_schema()

    with db.connection() as con:
        assert str(_pragma(con, "journal_mode")).lower() == "wal"

        # FULL is the prod default.
        assert int(_pragma(con, "synchronous")) == 2

        assert int(_pragma(con, "foreign_keys")) == 1

        # MEMORY corresponds to 2
        assert int(_pragma(con, "temp_store")) == 2

        assert int(_pragma(con, "busy_timeout")) == 1234


def test_dev_mode_defaults_to_normal_sync(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTEFLOW_MODE", "dev")
    monkeypatch.delenv("NOTEFLOW_SQLITE_SYNCHRONOUS", raising=False)

    db = ClientDB(path=str(tmp_path / "client.db"))
    db.init_schema()
    with db.connection() as con:
        assert int(_pragma(con, "synchronous")) == 1


def test_synchronous_override_ignores_garbage(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTEFLOW_MODE", "prod")
    monkeypatch.setenv("NOTEFLOW_SQLITE_SYNCHRONOUS", "sometimes")

    db = ClientDB(path=str(tmp_path / "client.db"))
    db.init_schema()
    with db.connection() as con:
        assert int(_pragma(con, "synchronous")) == 2
