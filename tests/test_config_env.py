from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import pytest

from noteflow.config import load_client_config
from noteflow.env import load_dotenv_if_present, reset_dotenv_state
from noteflow.node.config import node_config_from_env
from noteflow.rpc.api import DEFAULT_TIMEOUT_MS, Endpoint
from noteflow.structured_logging import log_event


def test_client_config_defaults() -> None:
    cfg = load_client_config()
    assert cfg.endpoint == Endpoint.localhost()
    assert cfg.timeout_ms == DEFAULT_TIMEOUT_MS
    assert cfg.debug is False
    assert cfg.keystore_path == "./keystore"
    assert cfg.store_path == "./store.sqlite3"


def test_client_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTEFLOW_RPC_ENDPOINT", "https://rpc.example.org:8443")
    monkeypatch.setenv("NOTEFLOW_RPC_TIMEOUT_MS", "2500")
    monkeypatch.setenv("NOTEFLOW_DEBUG_MODE", "yes")
    monkeypatch.setenv("NOTEFLOW_LOG_LEVEL", "debug")

    cfg = load_client_config()
    assert cfg.endpoint == Endpoint("https", "rpc.example.org", 8443)
    assert cfg.timeout_ms == 2500
    assert cfg.debug is True
    assert cfg.log_level == "DEBUG"


@pytest.mark.parametrize("raw", ["soon", "0", "-5"])
def test_client_config_rejects_bad_timeout(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    monkeypatch.setenv("NOTEFLOW_RPC_TIMEOUT_MS", raw)
    with pytest.raises(ValueError):
        load_client_config()


def test_node_config(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("NOTEFLOW_NODE_PORT", "NOTEFLOW_NODE_HOST", "NOTEFLOW_CHAIN_ID", "NOTEFLOW_NODE_DB_PATH"):
        monkeypatch.delenv(name, raising=False)
    cfg = node_config_from_env()
    assert (cfg.host, cfg.port, cfg.chain_id, cfg.mode) == ("127.0.0.1", 57291, "noteflow-dev", "dev")

    monkeypatch.setenv("NOTEFLOW_NODE_PORT", "http")
    with pytest.raises(ValueError):
        node_config_from_env()


def test_dotenv_loads_once_and_never_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("NOTEFLOW_TEST_FROM_FILE=file\nNOTEFLOW_TEST_PRESET=file\n", encoding="utf-8")

    # Registered with monkeypatch so both are removed again afterwards.
    monkeypatch.setenv("NOTEFLOW_TEST_FROM_FILE", "x")
    monkeypatch.delenv("NOTEFLOW_TEST_FROM_FILE")
    monkeypatch.setenv("NOTEFLOW_TEST_PRESET", "process")

    reset_dotenv_state()
    try:
        assert load_dotenv_if_present(str(env_file)) is True
        assert os.environ["NOTEFLOW_TEST_FROM_FILE"] == "file"
        assert os.environ["NOTEFLOW_TEST_PRESET"] == "process"
        assert load_dotenv_if_present(str(env_file)) is False
    finally:
        reset_dotenv_state()


def test_dotenv_missing_file(tmp_path: Path) -> None:
    reset_dotenv_state()
    try:
        assert load_dotenv_if_present(str(tmp_path / "nope.env")) is False
    finally:
        reset_dotenv_state()


def test_log_event_is_one_json_line(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("noteflow.test")
    caplog.set_level(logging.INFO, logger="noteflow.test")

    log_event(logger, "thing_happened", account_id="0xabc", count=2)
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "thing_happened"
    assert payload["count"] == 2
    assert isinstance(payload["ts_ms"], int)

    log_event(logger, "odd_fields", blob=object())
    assert caplog.records[-1].getMessage().startswith("event=odd_fields")
