# src/noteflow/examples.py
"""Reference packages for the counter flow.

  counter         library "counter" with increment_count, one map slot;
                  the count lives at key (0,0,0,1)
  increment_note  program whose entrypoint calls counter::increment_count
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict

from noteflow.objects.account_id import AccountType
from noteflow.objects.component import AccountComponentMetadata, StorageEntry
from noteflow.package import Library, MastForest, Package, Program, write_package

COUNTER_KEY = (0, 0, 0, 1)

COUNTER_PACKAGE_FILE = "counter.nfpk"
INCREMENT_NOTE_PACKAGE_FILE = "increment_note.nfpk"


def counter_package() -> Package:
    forest = MastForest.from_json(
        {
            "get_count": [
                ["push_word", list(COUNTER_KEY)],
                ["get_map_item", 0],
            ],
            "increment_count": [
                ["push_word", list(COUNTER_KEY)],
                ["get_map_item", 0],
                ["push", 1],
                ["add"],
                ["push_word", list(COUNTER_KEY)],
                ["set_map_item", 0],
            ],
        }
    )
    library = Library(namespace="counter", forest=forest, exports=("get_count", "increment_count"))
    metadata = AccountComponentMetadata(
        name="counter",
        description="Single counter kept in a storage map",
        version="0.1.0",
        supported_types=[AccountType.REGULAR_ACCOUNT_IMMUTABLE_CODE],
        storage=[StorageEntry(name="count_map", slot=0, kind="map", description="counter value at key (0,0,0,1)")],
    )
    return Package.from_library("counter", library, metadata.to_bytes())


def increment_note_package() -> Package:
    forest = MastForest.from_json({"main": [["call", "counter::increment_count"]]})
    return Package.from_program("increment_note", Program(forest=forest, entrypoint="main"))


def build_examples(out_dir: str | Path) -> Dict[str, Path]:
    out = Path(out_dir)
    return {
        "counter": write_package(counter_package(), out / COUNTER_PACKAGE_FILE),
        "increment_note": write_package(increment_note_package(), out / INCREMENT_NOTE_PACKAGE_FILE),
    }
