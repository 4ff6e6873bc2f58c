# src/noteflow/node/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from noteflow.node.ledger import LocalNode


@dataclass(frozen=True)
class NodeConfig:
    db_path: str
    chain_id: str
    host: str
    port: int
    mode: str  # "dev" | "prod"


def node_config_from_env() -> NodeConfig:
    raw_port = (os.environ.get("NOTEFLOW_NODE_PORT") or "57291").strip()
    try:
        port = int(raw_port)
    except ValueError as e:
        raise ValueError(f"NOTEFLOW_NODE_PORT must be an integer (got {raw_port!r})") from e

    return NodeConfig(
        db_path=os.environ.get("NOTEFLOW_NODE_DB_PATH", "./data/noteflow-node.sqlite3"),
        chain_id=os.environ.get("NOTEFLOW_CHAIN_ID", "noteflow-dev"),
        host=os.environ.get("NOTEFLOW_NODE_HOST", "127.0.0.1"),
        port=port,
        mode=(os.environ.get("NOTEFLOW_MODE") or "dev").strip().lower(),
    )


def build_node(cfg: Optional[NodeConfig] = None) -> LocalNode:
    """Build a LocalNode from an explicit config or, if omitted, from environment variables."""
    c = cfg or node_config_from_env()
    return LocalNode(db_path=c.db_path, chain_id=c.chain_id)
