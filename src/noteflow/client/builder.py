# src/noteflow/client/builder.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

from noteflow.client.client import Client
from noteflow.crypto.rng import FeltRng
from noteflow.errors import NoteflowError
from noteflow.keystore import FilesystemKeyStore
from noteflow.rpc.api import NodeRpcApi
from noteflow.store.sqlite_store import SqliteStore


class ClientBuildError(NoteflowError):
    code = "client_build_error"


class ClientBuilder:
    """Fluent construction of a Client. rpc() and sqlite_store() are required."""

    def __init__(self) -> None:
        self._rpc: Optional[NodeRpcApi] = None
        self._store_path: Optional[str] = None
        self._keystore: Optional[FilesystemKeyStore] = None
        self._rng: Optional[FeltRng] = None
        self._debug = False

    def rpc(self, api: NodeRpcApi) -> "ClientBuilder":
        self._rpc = api
        return self

    def sqlite_store(self, path: str | Path) -> "ClientBuilder":
        self._store_path = str(path)
        return self

    def authenticator(self, keystore: FilesystemKeyStore) -> "ClientBuilder":
        self._keystore = keystore
        return self

    def in_debug_mode(self, debug: bool) -> "ClientBuilder":
        self._debug = bool(debug)
        return self

    def rng(self, rng: FeltRng) -> "ClientBuilder":
        self._rng = rng
        return self

    def build(self) -> Client:
        if self._rpc is None:
            raise ClientBuildError("no ledger endpoint configured")
        if self._store_path is None:
            raise ClientBuildError("no store path configured")
        return Client(
            rpc=self._rpc,
            store=SqliteStore(self._store_path),
            keystore=self._keystore,
            rng=self._rng,
            debug=self._debug,
        )
