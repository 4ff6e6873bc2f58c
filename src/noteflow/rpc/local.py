# src/noteflow/rpc/local.py
from __future__ import annotations

from typing import Optional, Sequence

from noteflow.crypto.felt import Word
from noteflow.node.errors import NodeError
from noteflow.node.ledger import LocalNode
from noteflow.objects.account_id import AccountId
from noteflow.objects.block import BlockHeader
from noteflow.objects.note import NoteTag
from noteflow.objects.transaction import TransactionInputs, TransactionResult
from noteflow.rpc.api import AccountDetails, NodeRpcApi, SubmitResult, SyncStateResponse
from noteflow.rpc.errors import map_node_error


class LocalNodeRpc(NodeRpcApi):
    """In-process transport: calls a LocalNode directly, with the same error mapping as HTTP."""

    def __init__(self, node: LocalNode) -> None:
        self.node = node

    def sync_state(
        self,
        block_num: int,
        account_ids: Sequence[AccountId],
        note_tags: Sequence[NoteTag],
        note_ids: Sequence[Word] = (),
    ) -> SyncStateResponse:
        try:
            return self.node.sync_state(block_num, account_ids, note_tags, note_ids)
        except NodeError as e:
            raise map_node_error("sync_state", e.to_json(), status=e.status_code) from e

    def execute_transaction(self, inputs: TransactionInputs) -> TransactionResult:
        try:
            return self.node.execute_transaction(inputs)
        except NodeError as e:
            raise map_node_error("execute_transaction", e.to_json(), status=e.status_code) from e

    def submit_transaction(self, inputs: TransactionInputs, tx_id: Word) -> SubmitResult:
        try:
            return self.node.submit_transaction(inputs, tx_id)
        except NodeError as e:
            raise map_node_error("submit_transaction", e.to_json(), status=e.status_code) from e

    def get_block_header(self, block_num: Optional[int] = None) -> BlockHeader:
        try:
            return self.node.get_block_header(block_num)
        except NodeError as e:
            raise map_node_error("get_block_header", e.to_json(), status=e.status_code) from e

    def get_account_details(self, account_id: AccountId) -> AccountDetails:
        try:
            return self.node.get_account_details(account_id)
        except NodeError as e:
            raise map_node_error("get_account_details", e.to_json(), status=e.status_code) from e
