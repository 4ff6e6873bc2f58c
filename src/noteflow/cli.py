# src/noteflow/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from noteflow.assembler import AccountCreationConfig
from noteflow.client.client import Client
from noteflow.config import load_client_config
from noteflow.env import load_dotenv_if_present
from noteflow.errors import NoteflowError
from noteflow.examples import COUNTER_KEY, build_examples
from noteflow.factory import create_account_from_package, create_basic_wallet_account
from noteflow.keystore import FilesystemKeyStore
from noteflow.node.ledger import LocalNode
from noteflow.notes import NoteCreationConfig, create_note_from_package
from noteflow.objects.storage import StorageMap, StorageSlot
from noteflow.orchestrator import TransactionOrchestrator
from noteflow.package import Package, load_package
from noteflow.rpc.api import NodeRpcApi
from noteflow.rpc.local import LocalNodeRpc
from noteflow.session import open_client, setup_client
from noteflow.structured_logging import configure_structured_logging, log_event

Json = Dict[str, Any]

log = logging.getLogger("noteflow.cli")


def run_increment_count(client: Client, keystore: FilesystemKeyStore, counter: Package, note_script: Package) -> Json:
    """Reference flow: counter account + wallet sender, publish an increment note, consume it."""
    counter_cfg = AccountCreationConfig.immutable(
        [StorageSlot.map_slot(StorageMap.with_entries([(COUNTER_KEY, (0, 0, 0, 0))]))]
    )
    counter_account, _ = create_account_from_package(client, counter, counter_cfg)
    sender, _ = create_basic_wallet_account(client, keystore)

    note = create_note_from_package(client, note_script, sender.id, NoteCreationConfig())
    orch = TransactionOrchestrator(client)
    flow = orch.publish(sender.id, note)
    result = orch.consume(flow, counter_account.id)

    rec = client.get_account(counter_account.id)
    count = None if rec is None else rec.account.storage.get_map_item(0, COUNTER_KEY)
    return {
        "counter_account": counter_account.id.to_hex(),
        "sender_account": sender.id.to_hex(),
        "note_id": note.id().to_hex(),
        "publish_tx": None if flow.publish_tx_id is None else flow.publish_tx_id.to_hex(),
        "consume_tx": result.id.to_hex(),
        "delta": result.account_delta.to_json(),
        "count": None if count is None else list(count),
        "phase": flow.phase.value,
    }


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="noteflow", description="noteflow client")
    ap.add_argument("--log-level", dest="log_level", default=None)
    ap.add_argument(
        "--local-node",
        dest="local_node",
        default="",
        help="run against an in-process development node stored at this path instead of NOTEFLOW_RPC_ENDPOINT",
    )
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("sync", help="sync the configured client store with the ledger")

    inc = sub.add_parser("increment-count", help="run the counter example end to end in a temporary session")
    inc.add_argument("--counter-package", dest="counter_package", required=True)
    inc.add_argument("--note-package", dest="note_package", required=True)
    inc.add_argument("--workdir", dest="workdir", default=None)

    ex = sub.add_parser("build-examples", help="write the counter and increment-note packages")
    ex.add_argument("out_dir")

    return ap.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv_if_present()
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    configure_structured_logging(args.log_level)

    if args.command == "build-examples":
        paths = build_examples(args.out_dir)
        print(json.dumps({k: str(v) for k, v in paths.items()}, indent=2))
        return 0

    rpc: Optional[NodeRpcApi] = None
    if args.local_node:
        rpc = LocalNodeRpc(LocalNode(db_path=args.local_node))

    try:
        cfg = load_client_config()
        if args.command == "sync":
            setup = open_client(cfg, rpc=rpc)
            print(json.dumps(setup.client.sync_state().to_json(), indent=2))
            return 0

        counter = load_package(args.counter_package)
        note_script = load_package(args.note_package)
        with setup_client(cfg, rpc=rpc, workdir=args.workdir) as setup:
            out = run_increment_count(setup.client, setup.keystore, counter, note_script)
        print(json.dumps(out, indent=2))
        return 0
    except NoteflowError as e:
        log_event(log, "cli_failed", command=args.command, code=e.code, reason=e.reason)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
