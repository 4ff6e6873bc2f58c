# src/noteflow/node/executor.py
from __future__ import annotations

from typing import Dict, Optional, Tuple

from noteflow.crypto.felt import Word
from noteflow.crypto.sig import AuthSignature, verify_signature
from noteflow.objects.account import Account
from noteflow.objects.asset import FungibleAsset, InsufficientAssets
from noteflow.objects.component import ComponentKind
from noteflow.objects.note import Note
from noteflow.objects.transaction import ExecutedTransaction, TransactionRequest, auth_message
from noteflow.node.errors import NodeError
from noteflow.node.vm import AccountWorkspace, Frame, NativeFn, StackVM, VmError

# Faucet metadata word: [max_supply, decimals, symbol, issued]
_FAUCET_ISSUED = 3


class TransactionExecutor:
    """Execute a request against one account at a reference block.

    Order: input note scripts (request order), output note asset moves, then
    the account's auth procedure. A transaction that changes state must leave
    the nonce incremented.

    The executor is pure with respect to the ledger: note existence, nullifier
    and account-state checks belong to the caller.
    """

    def execute(
        self,
        account: Account,
        request: TransactionRequest,
        *,
        block_num: int,
        signature: Optional[AuthSignature] = None,
    ) -> Tuple[ExecutedTransaction, Account]:
        ws = AccountWorkspace(account)
        message = auth_message(account, request)
        natives = self._natives(message, signature)

        for inp in request.unauthenticated_input_notes:
            self._consume(ws, inp.note, natives, block_num)

        for out in request.own_output_notes:
            if out.note.metadata.sender != account.id:
                raise NodeError.bad_request(
                    "output_note_sender_mismatch",
                    "output note sender is not the executing account",
                    {"note_id": out.id().to_hex(), "sender": out.note.metadata.sender.to_hex()},
                )
            for asset in out.note.assets:
                self._move_out(ws, asset)

        auth_proc = account.code.auth_component().auth_procedure()
        if auth_proc is None:
            raise NodeError.bad_request("auth_failed", "account has no auth procedure")
        try:
            StackVM(ws, natives=natives).call_account_procedure(auth_proc)
        except VmError as e:
            raise _vm_to_node_error(e) from e

        if (ws.changes_state() or account.is_new) and ws.nonce_increment == 0:
            raise NodeError.bad_request("nonce_not_incremented", "state changed without a nonce increment")

        delta = ws.delta()
        final = account.apply_delta(delta)
        expiration = None if request.expiration_delta is None else int(block_num) + int(request.expiration_delta)
        executed = ExecutedTransaction(
            account_id=account.id,
            initial_commitment=account.commitment(),
            final_commitment=final.commitment(),
            delta=delta,
            input_nullifiers=tuple(n.nullifier() for n in request.input_notes()),
            input_note_ids=tuple(n.id() for n in request.input_notes()),
            output_notes=request.own_output_notes,
            block_ref=int(block_num),
            expiration_block=expiration,
        )
        return executed, final

    def _consume(self, ws: AccountWorkspace, note: Note, natives: Dict[str, NativeFn], block_num: int) -> None:
        hint = note.metadata.execution_hint
        if hint.can_be_consumed(block_num) is False:
            raise NodeError.bad_request(
                "note_not_consumable",
                "note cannot be consumed at this block",
                {"note_id": note.id().to_hex(), "block_num": int(block_num), "after_block": hint.block_num},
            )

        vm = StackVM(ws, note=note, natives=natives)
        try:
            vm.run(note.script.forest, note.script.entrypoint)
        except VmError as e:
            raise _vm_to_node_error(e, note_id=note.id().to_hex()) from e

        if not note.assets.is_empty() and not vm.assets_received:
            raise NodeError.bad_request(
                "note_assets_unclaimed", "note script did not move the note assets", {"note_id": note.id().to_hex()}
            )

    def _move_out(self, ws: AccountWorkspace, asset: FungibleAsset) -> None:
        account = ws.account
        code = account.code
        if code.has_component(ComponentKind.BASIC_WALLET):
            try:
                ws.send(asset)
            except InsufficientAssets as e:
                raise NodeError.bad_request("insufficient_assets", str(e), {"faucet_id": asset.faucet_id.to_hex()}) from e
            return

        if code.has_component(ComponentKind.BASIC_FUNGIBLE_FAUCET) and asset.faucet_id == account.id:
            idx = next(
                off
                for c, off in zip(code.components, code.storage_offsets())
                if c.kind is ComponentKind.BASIC_FUNGIBLE_FAUCET
            )
            meta = list(ws.get_item(idx))
            issued = meta[_FAUCET_ISSUED] + int(asset.amount)
            if issued > meta[0]:
                raise NodeError.bad_request(
                    "max_supply_exceeded", "distribution exceeds faucet max supply", {"max_supply": meta[0], "issued": issued}
                )
            meta[_FAUCET_ISSUED] = issued
            ws.set_item(idx, Word(meta))
            return

        raise NodeError.bad_request(
            "cannot_send_assets", "account can neither send nor issue this asset", {"faucet_id": asset.faucet_id.to_hex()}
        )

    @staticmethod
    def _natives(message: Word, signature: Optional[AuthSignature]) -> Dict[str, NativeFn]:
        def auth_ed25519(vm: StackVM, frame: Frame) -> None:
            if not frame.in_account():
                raise VmError("auth_outside_account", "auth procedure must run as account code")
            pub_commitment = vm.ws.get_item(int(frame.storage_offset))  # type: ignore[arg-type]
            if signature is None:
                raise VmError("auth_signature_missing", "transaction requires an ed25519 signature")
            if not verify_signature(signature=signature, message=message, pub_commitment=pub_commitment):
                raise VmError("auth_signature_invalid", "signature does not verify under the account key")
            vm.ws.nonce_increment += 1

        def auth_none(vm: StackVM, frame: Frame) -> None:
            if vm.ws.changes_state() or vm.ws.account.is_new:
                vm.ws.nonce_increment += 1

        def wallet_receive_asset(vm: StackVM, frame: Frame) -> None:
            if not frame.in_account():
                raise VmError("wallet_outside_account", "receive_asset must run as account code")
            if vm.note is None:
                raise VmError("no_note_context", "receive_asset needs a note being consumed")
            if vm.assets_received:
                return
            for asset in vm.note.assets:
                vm.ws.receive(asset)
            vm.assets_received = True

        return {
            "auth_ed25519": auth_ed25519,
            "auth_none": auth_none,
            "wallet_receive_asset": wallet_receive_asset,
        }


def _vm_to_node_error(e: VmError, *, note_id: Optional[str] = None) -> NodeError:
    details = {"vm_code": e.code, **e.details}
    if note_id is not None:
        details["note_id"] = note_id
    code = "auth_failed" if e.code.startswith("auth_") else "execution_failed"
    return NodeError.bad_request(code, e.message, details)
