# src/noteflow/session.py
"""Client session setup.

A session owns one Client (with its own rng, store and key store). Two
sessions never share keys or accounts unless pointed at the same paths.
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from noteflow.client.builder import ClientBuilder
from noteflow.client.client import Client
from noteflow.config import ClientConfig, load_client_config
from noteflow.keystore import FilesystemKeyStore
from noteflow.rpc.api import NodeRpcApi
from noteflow.rpc.http import HttpRpcClient
from noteflow.structured_logging import log_event

log = logging.getLogger("noteflow.session")

KEYSTORE_DIRNAME = "keystore"
STORE_FILENAME = "store.sqlite3"


@dataclass(frozen=True)
class ClientSetup:
    client: Client
    keystore: FilesystemKeyStore


def _build(cfg: ClientConfig, rpc: Optional[NodeRpcApi], keystore_path: Path, store_path: Path) -> ClientSetup:
    keystore = FilesystemKeyStore(keystore_path)
    api = rpc if rpc is not None else HttpRpcClient(cfg.endpoint, timeout_ms=cfg.timeout_ms)
    client = (
        ClientBuilder()
        .rpc(api)
        .sqlite_store(store_path)
        .authenticator(keystore)
        .in_debug_mode(cfg.debug)
        .build()
    )
    log_event(log, "session_opened", store=str(store_path), keystore=str(keystore_path), debug=cfg.debug)
    return ClientSetup(client=client, keystore=keystore)


def open_client(config: Optional[ClientConfig] = None, *, rpc: Optional[NodeRpcApi] = None) -> ClientSetup:
    """Client persisted at the configured keystore and store paths."""
    cfg = config or load_client_config()
    return _build(cfg, rpc, Path(cfg.keystore_path), Path(cfg.store_path))


@contextmanager
def setup_client(
    config: Optional[ClientConfig] = None,
    *,
    rpc: Optional[NodeRpcApi] = None,
    workdir: Optional[str | Path] = None,
) -> Iterator[ClientSetup]:
    """Client whose key store and store live under `workdir`.

    With workdir=None they live in a temporary directory that is removed on
    exit, whether or not the body raised.
    """
    cfg = config or load_client_config()
    if workdir is not None:
        root = Path(workdir)
        yield _build(cfg, rpc, root / KEYSTORE_DIRNAME, root / STORE_FILENAME)
        return

    with tempfile.TemporaryDirectory(prefix="noteflow-") as tmp:
        root = Path(tmp)
        yield _build(cfg, rpc, root / KEYSTORE_DIRNAME, root / STORE_FILENAME)
