# src/noteflow/objects/__init__.py
"""
Ledger object model.

  - account_id / storage / asset: identifiers, storage slots and maps, vaults
  - component: component kinds, package metadata, standard components
  - account / builder: account state, deltas and composition
  - note: tags, hints, inputs, scripts, recipients, notes
  - transaction: requests, executed transactions, results

Objects are immutable and round-trip through to_json()/from_json().
"""

from __future__ import annotations

__all__ = [
    "account_id",
    "storage",
    "asset",
    "component",
    "account",
    "builder",
    "note",
    "transaction",
]
