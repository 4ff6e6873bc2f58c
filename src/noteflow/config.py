# src/noteflow/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

from noteflow.rpc.api import DEFAULT_TIMEOUT_MS, Endpoint


def _is_truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class ClientConfig:
    endpoint: Endpoint
    timeout_ms: int
    keystore_path: str
    store_path: str
    debug: bool
    log_level: str


def load_client_config() -> ClientConfig:
    """Read NOTEFLOW_* client settings. Call load_dotenv_if_present() first to honour a .env file."""
    raw_timeout = (os.getenv("NOTEFLOW_RPC_TIMEOUT_MS") or str(DEFAULT_TIMEOUT_MS)).strip()
    try:
        timeout_ms = int(raw_timeout)
    except ValueError as e:
        raise ValueError(f"NOTEFLOW_RPC_TIMEOUT_MS must be an integer (got {raw_timeout!r})") from e
    if timeout_ms <= 0:
        raise ValueError("NOTEFLOW_RPC_TIMEOUT_MS must be positive")

    return ClientConfig(
        endpoint=Endpoint.parse(os.getenv("NOTEFLOW_RPC_ENDPOINT", "localhost")),
        timeout_ms=timeout_ms,
        keystore_path=os.getenv("NOTEFLOW_KEYSTORE_PATH", "./keystore"),
        store_path=os.getenv("NOTEFLOW_STORE_PATH", "./store.sqlite3"),
        debug=_is_truthy(os.getenv("NOTEFLOW_DEBUG_MODE")),
        log_level=(os.getenv("NOTEFLOW_LOG_LEVEL") or "INFO").strip().upper(),
    )
