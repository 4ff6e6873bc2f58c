# src/noteflow/rpc/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional, Type

from noteflow.errors import (
    ConsumptionFailure,
    NoteflowError,
    RpcFailure,
    SubmissionFailure,
    SyncFailure,
    TransactionBuildFailure,
    error_class_for_code,
)

# Default client error per RPC method when the node rejects a call.
_METHOD_FAILURE: Dict[str, Type[NoteflowError]] = {
    "sync_state": SyncFailure,
    "execute_transaction": SubmissionFailure,
    "submit_transaction": SubmissionFailure,
    "get_block_header": RpcFailure,
    "get_account_details": RpcFailure,
}

# Node codes that mean the input note is unusable, whatever the method.
_NOTE_CODES = frozenset({"note_not_found", "note_already_consumed", "note_not_consumable", "note_mismatch"})


def map_node_error(method: str, error: Dict[str, Any], *, status: Optional[int] = None) -> NoteflowError:
    """Turn a node error payload {"code", "message", "details"} into a client exception."""
    code = str(error.get("code") or "node_error")
    message = str(error.get("message") or code)
    details: Dict[str, Any] = {"node_code": code, "method": method}
    if status is not None:
        details["status"] = int(status)
    extra = error.get("details")
    if isinstance(extra, dict) and extra:
        details["node_details"] = extra

    cls = error_class_for_code(code)
    if cls is None:
        cls = ConsumptionFailure if code in _NOTE_CODES else _METHOD_FAILURE.get(method, RpcFailure)
    return cls(message, details)


# Client error per RPC method when an accepted reply cannot be decoded.
_DECODE_FAILURE: Dict[str, Type[NoteflowError]] = {
    "sync_state": SyncFailure,
    "execute_transaction": TransactionBuildFailure,
    "submit_transaction": SubmissionFailure,
}


def malformed_result_error(method: str, error: Exception) -> NoteflowError:
    cls = _DECODE_FAILURE.get(method, RpcFailure)
    return cls("node returned a malformed result", {"method": method, "error": f"{type(error).__name__}: {error}"})
