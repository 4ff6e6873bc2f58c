"""
Ledger client: local store, sync and transaction execution/submission.
"""

from __future__ import annotations

from noteflow.client.builder import ClientBuilder
from noteflow.client.client import Client
from noteflow.client.sync import SyncSummary

__all__ = ["Client", "ClientBuilder", "SyncSummary"]
