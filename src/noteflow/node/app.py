# src/noteflow/node/app.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from noteflow.node.config import build_node
from noteflow.node.errors import NodeError
from noteflow.node.ledger import LocalNode, decode_tx_inputs
from noteflow.objects.account_id import AccountId
from noteflow.rpc.api import parse_sync_request
from noteflow.structured_logging import log_event

Json = Dict[str, Any]


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Structured request logging middleware.

    Controls:
      - NOTEFLOW_LOG_REQUESTS=0 to disable (default on)
      - NOTEFLOW_LOG_REQUEST_HEADERS=1 to include a small header subset
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("NOTEFLOW_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._log_headers = _truthy(os.environ.get("NOTEFLOW_LOG_REQUEST_HEADERS"))
        self._logger = logging.getLogger("noteflow.http")

    def _header_subset(self, request: Request) -> Json:
        if not self._log_headers:
            return {}
        out: Json = {}
        for k in ["user-agent", "content-type", "content-length"]:
            v = request.headers.get(k)
            if v:
                out[k] = v
        return out

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        status = 500
        err: Optional[str] = None
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            status = int(response.status_code)
            return response
        except Exception as e:
            err = str(e)
            raise
        finally:
            log_event(
                self._logger,
                "http_request",
                request_id=request_id,
                method=request.method,
                path=str(request.url.path or ""),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
                headers=self._header_subset(request),
                error=err,
            )
            if response is not None:
                response.headers.setdefault("x-request-id", request_id)


def _node(request: Request) -> LocalNode:
    node = getattr(request.app.state, "node", None)
    if node is None:
        raise NodeError(503, "node_unavailable", "ledger node is not attached")
    return node


def _ok(result: Any) -> Json:
    return {"ok": True, "result": result}


def _rpc_sync_state(node: LocalNode, body: Json) -> Json:
    try:
        block_num, account_ids, tags, note_ids = parse_sync_request(body)
    except (ValueError, TypeError) as e:
        raise NodeError.bad_request("bad_request", f"malformed sync request: {e}") from e
    return node.sync_state(block_num, account_ids, tags, note_ids).to_json()


def _rpc_execute_transaction(node: LocalNode, body: Json) -> Json:
    inputs, _ = decode_tx_inputs(body)
    return node.execute_transaction(inputs).to_json()


def _rpc_submit_transaction(node: LocalNode, body: Json) -> Json:
    inputs, tx_id = decode_tx_inputs(body)
    if tx_id is None:
        raise NodeError.bad_request("bad_request", "submit_transaction requires tx_id")
    return node.submit_transaction(inputs, tx_id).to_json()


def _rpc_get_block_header(node: LocalNode, body: Json) -> Json:
    raw = body.get("block_num")
    try:
        block_num = None if raw is None else int(raw)
    except (ValueError, TypeError) as e:
        raise NodeError.bad_request("bad_request", "block_num must be an integer") from e
    return node.get_block_header(block_num).to_json()


def _rpc_get_account_details(node: LocalNode, body: Json) -> Json:
    try:
        account_id = AccountId.from_hex(str(body.get("account_id") or ""))
    except ValueError as e:
        raise NodeError.bad_request("bad_request", str(e)) from e
    return node.get_account_details(account_id).to_json()


RPC_METHODS: Dict[str, Callable[[LocalNode, Json], Json]] = {
    "sync_state": _rpc_sync_state,
    "execute_transaction": _rpc_execute_transaction,
    "submit_transaction": _rpc_submit_transaction,
    "get_block_header": _rpc_get_block_header,
    "get_account_details": _rpc_get_account_details,
}


router = APIRouter(prefix="/v1")


@router.get("/health")
def health() -> Json:
    return {"ok": True}


@router.get("/status")
def status(request: Request) -> Json:
    return _ok(_node(request).status())


@router.get("/blocks/{block_num}")
def block(block_num: int, request: Request) -> Json:
    return _ok(_node(request).get_block_header(block_num).to_json())


@router.get("/accounts/{account_id}")
def account(account_id: str, request: Request) -> Json:
    return _ok(_rpc_get_account_details(_node(request), {"account_id": account_id}))


@router.post("/rpc/{method}")
async def rpc(method: str, request: Request) -> Json:
    handler = RPC_METHODS.get(method)
    if handler is None:
        raise NodeError.not_found("unknown_method", f"unknown rpc method: {method}")
    try:
        body = await request.json()
    except ValueError as e:
        raise NodeError.bad_request("bad_request", "request body must be JSON") from e
    if not isinstance(body, dict):
        raise NodeError.bad_request("bad_request", "request body must be an object")
    return _ok(handler(_node(request), body))


async def _node_error_handler(request: Request, exc: NodeError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.to_json()})


def create_app(node: Optional[LocalNode] = None) -> FastAPI:
    """Create the development node API.

    node:
      - given: attach it as-is (tests pass a LocalNode on tmp_path)
      - None: build one from NOTEFLOW_NODE_* environment variables
    """
    mode = os.environ.get("NOTEFLOW_MODE", "dev").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="noteflow development node", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="noteflow development node")

    app.state.node = node if node is not None else build_node()

    app.add_middleware(RequestLogMiddleware)
    app.add_exception_handler(NodeError, _node_error_handler)  # type: ignore[arg-type]
    app.include_router(router)
    return app
