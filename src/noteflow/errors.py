# src/noteflow/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Type


@dataclass
class NoteflowError(Exception):
    """Canonical error type for client-side build, sync and submission failures.

    Subclasses only pin `code`; the payload is always (reason, details).
    """

    reason: str
    details: Any | None = None

    code: ClassVar[str] = "noteflow_error"

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


# ---- build-time validation (fail fast, no partial object) ----


class MissingComponentMetadata(NoteflowError):
    code = "missing_component_metadata"


class StorageLayoutMismatch(NoteflowError):
    code = "storage_layout_mismatch"


class AccountBuildFailure(NoteflowError):
    code = "account_build_failure"


class TooManyInputs(NoteflowError):
    code = "too_many_inputs"


class TransactionBuildFailure(NoteflowError):
    code = "transaction_build_failure"


class PackageFormatError(NoteflowError):
    code = "package_format_error"


# ---- local persistence ----


class KeyStoreFailure(NoteflowError):
    code = "keystore_failure"


class StoreError(NoteflowError):
    code = "store_error"


# ---- ledger-facing (surfaced as-is, never retried here) ----


class RpcFailure(NoteflowError):
    code = "rpc_failure"


class SyncFailure(NoteflowError):
    code = "sync_failure"


class SubmissionFailure(NoteflowError):
    code = "submission_failure"


class ConsumptionFailure(NoteflowError):
    code = "consumption_failure"


_BY_CODE: Dict[str, Type[NoteflowError]] = {
    cls.code: cls
    for cls in (
        MissingComponentMetadata,
        StorageLayoutMismatch,
        AccountBuildFailure,
        TooManyInputs,
        TransactionBuildFailure,
        PackageFormatError,
        KeyStoreFailure,
        StoreError,
        RpcFailure,
        SyncFailure,
        SubmissionFailure,
        ConsumptionFailure,
    )
}


def error_class_for_code(code: str) -> Optional[Type[NoteflowError]]:
    return _BY_CODE.get(str(code or "").strip())
