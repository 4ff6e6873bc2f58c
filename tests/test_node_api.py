from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from noteflow.node.app import create_app
from noteflow.node.ledger import LocalNode


@pytest.fixture()
def api(node: LocalNode) -> TestClient:
    return TestClient(create_app(node=node))


def test_health_and_status(api: TestClient, node: LocalNode) -> None:
    r = api.get("/v1/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}

    r = api.get("/v1/status")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["result"]["tip"] == 0
    assert body["result"]["chain_id"] == node.chain_id
    assert r.headers.get("x-request-id")


def test_request_id_is_echoed(api: TestClient) -> None:
    r = api.get("/v1/health", headers={"x-request-id": "abc123"})
    assert r.headers["x-request-id"] == "abc123"


def test_block_lookup(api: TestClient, node: LocalNode) -> None:
    r = api.get("/v1/blocks/0")
    assert r.status_code == 200
    assert r.json()["result"]["commitment"] == node.get_block_header(0).commitment().to_hex()

    r = api.post("/v1/rpc/get_block_header", json={"block_num": 5})
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "block_not_found"


def test_unknown_rpc_method(api: TestClient) -> None:
    r = api.post("/v1/rpc/mint_everything", json={})
    assert r.status_code == 404
    body = r.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "unknown_method"


def test_sync_state_over_http(api: TestClient) -> None:
    r = api.post("/v1/rpc/sync_state", json={"block_num": 0, "account_ids": [], "note_tags": [], "note_ids": []})
    assert r.status_code == 200
    result = r.json()["result"]
    assert result["chain_tip"]["block_num"] == 0
    assert result["notes"] == []

    r = api.post("/v1/rpc/sync_state", json={"block_num": 3})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "sync_ahead_of_chain"


def test_malformed_requests_are_400(api: TestClient) -> None:
    r = api.get("/v1/accounts/not-an-account")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "bad_request"

    r = api.post("/v1/rpc/submit_transaction", json={"inputs": {"account": {}}})
    assert r.status_code == 400

    r = api.post("/v1/rpc/sync_state", content=b"[1,2]", headers={"content-type": "application/json"})
    assert r.status_code == 400
