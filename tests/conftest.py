from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

# Ensure local "src/" takes precedence over any globally-installed "noteflow" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from noteflow.config import ClientConfig  # noqa: E402
from noteflow.node.ledger import LocalNode  # noqa: E402
from noteflow.rpc.api import DEFAULT_TIMEOUT_MS, Endpoint, NodeRpcApi  # noqa: E402
from noteflow.rpc.local import LocalNodeRpc  # noqa: E402
from noteflow.session import ClientSetup, open_client  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Never pick up a developer's .env or endpoint while testing.
    monkeypatch.setenv("NOTEFLOW_DOTENV_PATH", str(tmp_path / "absent.env"))
    for name in (
        "NOTEFLOW_RPC_ENDPOINT",
        "NOTEFLOW_RPC_TIMEOUT_MS",
        "NOTEFLOW_KEYSTORE_PATH",
        "NOTEFLOW_STORE_PATH",
        "NOTEFLOW_DEBUG_MODE",
        "NOTEFLOW_MODE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def node(tmp_path: Path) -> LocalNode:
    return LocalNode(db_path=str(tmp_path / "node" / "ledger.sqlite3"))


@pytest.fixture
def rpc(node: LocalNode) -> LocalNodeRpc:
    return LocalNodeRpc(node)


@pytest.fixture
def make_client(tmp_path: Path, rpc: LocalNodeRpc) -> Callable[..., ClientSetup]:
    """Factory for independent clients (own store, key store and rng) sharing one ledger."""

    def _make(name: str = "alice", *, rpc_api: Optional[NodeRpcApi] = None, debug: bool = False) -> ClientSetup:
        root = tmp_path / "clients" / name
        cfg = ClientConfig(
            endpoint=Endpoint.localhost(),
            timeout_ms=DEFAULT_TIMEOUT_MS,
            keystore_path=str(root / "keystore"),
            store_path=str(root / "store.sqlite3"),
            debug=debug,
            log_level="INFO",
        )
        return open_client(cfg, rpc=rpc_api or rpc)

    return _make
