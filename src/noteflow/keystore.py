# src/noteflow/keystore.py
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from noteflow.crypto.felt import Word
from noteflow.crypto.sig import AuthSecretKey
from noteflow.errors import KeyStoreFailure
from noteflow.structured_logging import log_event

log = logging.getLogger("noteflow.keystore")


class FilesystemKeyStore:
    """Directory-backed secret key store keyed by public-key commitment.

    Layout:
      <root>/<pubkey-commitment-hex>.json   {"scheme": ..., "secret": ...}

    Policy:
      - one file per key, written atomically (tmp file + os.replace)
      - add_key is idempotent for the same key
      - no delete / rotate
      - secrets never reach the log; only the commitment does
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise KeyStoreFailure("cannot create keystore directory", {"path": str(self.path), "error": str(e)}) from e

    def _key_path(self, pub_commitment: Word) -> Path:
        return self.path / f"{pub_commitment.to_hex()[2:]}.json"

    def add_key(self, key: AuthSecretKey) -> Word:
        commitment = key.public_key().commitment()
        dest = self._key_path(commitment)
        tmp = dest.with_suffix(".json.tmp")
        try:
            tmp.write_text(json.dumps(key.to_json(), sort_keys=True), encoding="utf-8")
            os.chmod(tmp, 0o600)
            os.replace(tmp, dest)
        except OSError as e:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise KeyStoreFailure("cannot write key", {"pub_commitment": commitment.to_hex(), "error": str(e)}) from e

        log_event(log, "keystore_add_key", pub_commitment=commitment.to_hex(), scheme=key.scheme)
        return commitment

    def has_key(self, pub_commitment: Word) -> bool:
        return self._key_path(pub_commitment).is_file()

    def get_key(self, pub_commitment: Word) -> Optional[AuthSecretKey]:
        p = self._key_path(pub_commitment)
        if not p.is_file():
            return None
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
            key = AuthSecretKey.from_json(data if isinstance(data, dict) else {})
        except (OSError, ValueError) as e:
            raise KeyStoreFailure("cannot read key", {"pub_commitment": pub_commitment.to_hex(), "error": str(e)}) from e

        if key.public_key().commitment() != pub_commitment:
            raise KeyStoreFailure("key file does not match its commitment", {"pub_commitment": pub_commitment.to_hex()})
        return key

    def list_commitments(self) -> List[Word]:
        out: List[Word] = []
        for p in sorted(self.path.glob("*.json")):
            try:
                out.append(Word.from_hex(p.stem))
            except ValueError:
                continue
        return out
