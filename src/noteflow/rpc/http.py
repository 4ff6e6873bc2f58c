# src/noteflow/rpc/http.py
from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

from noteflow.crypto.felt import Word
from noteflow.errors import RpcFailure
from noteflow.objects.account_id import AccountId
from noteflow.objects.block import BlockHeader
from noteflow.objects.note import NoteTag
from noteflow.objects.transaction import TransactionInputs, TransactionResult
from noteflow.rpc.api import (
    DEFAULT_TIMEOUT_MS,
    AccountDetails,
    Endpoint,
    NodeRpcApi,
    SubmitResult,
    SyncStateResponse,
    sync_request_json,
)
from noteflow.rpc.errors import malformed_result_error, map_node_error
from noteflow.structured_logging import log_event

Json = Dict[str, Any]

T = TypeVar("T")

log = logging.getLogger("noteflow.rpc")


def _http_json(method: str, url: str, body: Optional[Json] = None, timeout_s: float = 10.0) -> Json:
    """One JSON request. Transport failures come back as {"ok": False, "error": {...}} with a transport code."""
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    data = None if body is None else json.dumps(body, separators=(",", ":")).encode("utf-8")
    req = urllib.request.Request(url, data=data, headers=headers, method=method.upper().strip())

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        raw = e.read().decode("utf-8", errors="replace")
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and "ok" in parsed:
            parsed.setdefault("status", int(e.code))
            return parsed
        return {"ok": False, "status": int(e.code), "error": {"code": "http_error", "message": raw[:200]}}
    except urllib.error.URLError as e:
        return {"ok": False, "error": {"code": "url_error", "message": str(getattr(e, "reason", e))}}
    except TimeoutError as e:
        return {"ok": False, "error": {"code": "timeout", "message": str(e)}}

    try:
        return json.loads(raw)
    except ValueError:
        return {"ok": False, "error": {"code": "bad_json", "message": raw[:200]}}


_TRANSPORT_CODES = frozenset({"url_error", "timeout", "bad_json", "http_error"})


class HttpRpcClient(NodeRpcApi):
    """JSON-over-HTTP client for the development node (`noteflow.node.app`).

    Each call is one POST to /v1/rpc/{method}. Nothing is retried here.
    """

    def __init__(self, endpoint: Endpoint, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> None:
        if int(timeout_ms) <= 0:
            raise ValueError("timeout_ms must be positive")
        self.endpoint = endpoint
        self.timeout_ms = int(timeout_ms)

    def _call(self, method: str, body: Json) -> Any:
        url = f"{self.endpoint.base_url()}/v1/rpc/{method}"
        resp = _http_json("POST", url, body, timeout_s=self.timeout_ms / 1000.0)
        if resp.get("ok") is True:
            return resp.get("result")

        err = resp.get("error")
        if not isinstance(err, dict):
            err = {"code": "bad_response", "message": "node returned an unexpected payload"}
        code = str(err.get("code") or "")
        log_event(log, "rpc_error", method=method, endpoint=str(self.endpoint), code=code, status=resp.get("status"))
        if code in _TRANSPORT_CODES or code == "bad_response":
            raise RpcFailure(str(err.get("message") or code), {"method": method, "code": code, "endpoint": str(self.endpoint)})
        raise map_node_error(method, err, status=resp.get("status"))

    def _decode(self, method: str, decode: Callable[[Any], T], result: Any) -> T:
        try:
            return decode(result)
        except (TypeError, ValueError, KeyError, IndexError, AttributeError) as e:
            log_event(log, "rpc_malformed_result", method=method, endpoint=str(self.endpoint), error=type(e).__name__)
            raise malformed_result_error(method, e) from e

    def sync_state(
        self,
        block_num: int,
        account_ids: Sequence[AccountId],
        note_tags: Sequence[NoteTag],
        note_ids: Sequence[Word] = (),
    ) -> SyncStateResponse:
        result = self._call("sync_state", sync_request_json(block_num, account_ids, note_tags, note_ids))
        return self._decode("sync_state", SyncStateResponse.from_json, result)

    def execute_transaction(self, inputs: TransactionInputs) -> TransactionResult:
        result = self._call("execute_transaction", {"inputs": inputs.to_json()})
        return self._decode("execute_transaction", TransactionResult.from_json, result)

    def submit_transaction(self, inputs: TransactionInputs, tx_id: Word) -> SubmitResult:
        result = self._call("submit_transaction", {"inputs": inputs.to_json(), "tx_id": tx_id.to_hex()})
        return self._decode("submit_transaction", SubmitResult.from_json, result)

    def get_block_header(self, block_num: Optional[int] = None) -> BlockHeader:
        result = self._call("get_block_header", {"block_num": block_num})
        return self._decode("get_block_header", BlockHeader.from_json, result)

    def get_account_details(self, account_id: AccountId) -> AccountDetails:
        result = self._call("get_account_details", {"account_id": account_id.to_hex()})
        return self._decode("get_account_details", AccountDetails.from_json, result)
