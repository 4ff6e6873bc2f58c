"""
Development ledger node.

Stands in for the network: executes transactions on a small stack VM,
accepts them by re-execution and seals one block per transaction.
"""

from __future__ import annotations

from noteflow.node.errors import NodeError
from noteflow.node.executor import TransactionExecutor
from noteflow.node.ledger import LocalNode

__all__ = ["LocalNode", "NodeError", "TransactionExecutor"]
