# src/noteflow/package.py
"""Compiled package artifacts.

A package is either an executable program (entrypoint + code forest) or a
library (namespace + forest + exported procedures), optionally followed by an
account-component metadata blob. The client decodes only the container and the
metadata blob; procedure bodies stay opaque and are identified by digest.

Binary layout (version 1, big-endian):

  magic     4s   b"NFPK"
  version   u8
  kind      u8   0 = program, 1 = library
  name      u16 length + utf-8
  body      u32 length + canonical JSON
  has_meta  u8
  meta      u32 length + bytes      (only when has_meta == 1)
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from noteflow.crypto.felt import Word, hash_bytes, hash_elements, words_to_elements
from noteflow.errors import PackageFormatError

Json = Dict[str, Any]

PACKAGE_MAGIC = b"NFPK"
PACKAGE_VERSION = 1


def canon_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class PackageKind(IntEnum):
    PROGRAM = 0
    LIBRARY = 1


def _freeze_proc(body: Sequence[Sequence[Any]]) -> Tuple[Tuple[Any, ...], ...]:
    out = []
    for ins in body:
        if not isinstance(ins, (list, tuple)) or not ins or not isinstance(ins[0], str):
            raise PackageFormatError("malformed instruction", {"instruction": ins})
        out.append(tuple(tuple(a) if isinstance(a, list) else a for a in ins))
    return tuple(out)


def _thaw(ins: Tuple[Any, ...]) -> List[Any]:
    return [list(a) if isinstance(a, tuple) else a for a in ins]


@dataclass(frozen=True)
class MastForest:
    """Named procedures; bodies are instruction tuples."""

    procedures: Mapping[str, Tuple[Tuple[Any, ...], ...]]

    @classmethod
    def from_json(cls, j: Any) -> "MastForest":
        if not isinstance(j, dict):
            raise PackageFormatError("forest must be an object", {"type": type(j).__name__})
        procs = {}
        for name, body in j.items():
            if not isinstance(name, str) or not name:
                raise PackageFormatError("procedure name must be a non-empty string", {"name": name})
            if not isinstance(body, list):
                raise PackageFormatError("procedure body must be a list", {"procedure": name})
            procs[name] = _freeze_proc(body)
        return cls(procedures=MappingProxyType(procs))

    def to_json(self) -> Json:
        return {name: [_thaw(i) for i in body] for name, body in self.procedures.items()}

    def procedure(self, name: str) -> Tuple[Tuple[Any, ...], ...]:
        try:
            return self.procedures[name]
        except KeyError:
            raise PackageFormatError("unknown procedure", {"procedure": name}) from None

    def procedure_root(self, name: str) -> Word:
        body = [_thaw(i) for i in self.procedure(name)]
        return hash_bytes(canon_json({"proc": body}).encode("utf-8"))

    def commitment(self) -> Word:
        roots = [self.procedure_root(n) for n in sorted(self.procedures)]
        return hash_elements(words_to_elements(roots))


@dataclass(frozen=True)
class Program:
    forest: MastForest
    entrypoint: str

    def __post_init__(self) -> None:
        if self.entrypoint not in self.forest.procedures:
            raise PackageFormatError("entrypoint not in forest", {"entrypoint": self.entrypoint})

    def to_json(self) -> Json:
        return {"entrypoint": self.entrypoint, "forest": self.forest.to_json()}

    @classmethod
    def from_json(cls, j: Json) -> "Program":
        return cls(forest=MastForest.from_json(j.get("forest")), entrypoint=str(j.get("entrypoint") or ""))


@dataclass(frozen=True)
class Library:
    namespace: str
    forest: MastForest
    exports: Tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.namespace or "::" in self.namespace:
            raise PackageFormatError("invalid library namespace", {"namespace": self.namespace})
        missing = [e for e in self.exports if e not in self.forest.procedures]
        if missing:
            raise PackageFormatError("exported procedures missing from forest", {"missing": missing})

    def qualified(self, proc: str) -> str:
        return f"{self.namespace}::{proc}"

    def export_roots(self) -> Dict[str, Word]:
        return {self.qualified(e): self.forest.procedure_root(e) for e in self.exports}

    def to_json(self) -> Json:
        return {"namespace": self.namespace, "exports": list(self.exports), "forest": self.forest.to_json()}

    @classmethod
    def from_json(cls, j: Json) -> "Library":
        exports = j.get("exports")
        if not isinstance(exports, list):
            raise PackageFormatError("library exports must be a list", {})
        return cls(
            namespace=str(j.get("namespace") or ""),
            forest=MastForest.from_json(j.get("forest")),
            exports=tuple(str(e) for e in exports),
        )


@dataclass(frozen=True)
class Package:
    """Immutable, shareable compiled artifact."""

    name: str
    kind: PackageKind
    program: Optional[Program] = None
    library: Optional[Library] = None
    account_component_metadata_bytes: Optional[bytes] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.kind == PackageKind.PROGRAM and self.program is None:
            raise PackageFormatError("program package without program", {"name": self.name})
        if self.kind == PackageKind.LIBRARY and self.library is None:
            raise PackageFormatError("library package without library", {"name": self.name})

    @classmethod
    def from_program(cls, name: str, program: Program) -> "Package":
        return cls(name=name, kind=PackageKind.PROGRAM, program=program)

    @classmethod
    def from_library(cls, name: str, library: Library, metadata: Optional[bytes] = None) -> "Package":
        return cls(name=name, kind=PackageKind.LIBRARY, library=library, account_component_metadata_bytes=metadata)

    def unwrap_program(self) -> Program:
        if self.program is None:
            raise PackageFormatError("package is not a program", {"name": self.name, "kind": self.kind.name})
        return self.program

    def unwrap_library(self) -> Library:
        if self.library is None:
            raise PackageFormatError("package is not a library", {"name": self.name, "kind": self.kind.name})
        return self.library

    def digest(self) -> Word:
        return hash_bytes(self.to_bytes())

    # ---- binary codec ----

    def to_bytes(self) -> bytes:
        body = self.program.to_json() if self.kind == PackageKind.PROGRAM else self.library.to_json()  # type: ignore[union-attr]
        name_b = self.name.encode("utf-8")
        body_b = canon_json(body).encode("utf-8")
        out = [
            struct.pack(">4sBB", PACKAGE_MAGIC, PACKAGE_VERSION, int(self.kind)),
            struct.pack(">H", len(name_b)),
            name_b,
            struct.pack(">I", len(body_b)),
            body_b,
        ]
        meta = self.account_component_metadata_bytes
        if meta is None:
            out.append(struct.pack(">B", 0))
        else:
            out.append(struct.pack(">BI", 1, len(meta)))
            out.append(bytes(meta))
        return b"".join(out)

    @classmethod
    def read_from_bytes(cls, data: bytes) -> "Package":
        r = _Reader(bytes(data))
        magic, version, kind_raw = r.unpack(">4sBB")
        if magic != PACKAGE_MAGIC:
            raise PackageFormatError("bad package magic", {"magic": magic.hex()})
        if version != PACKAGE_VERSION:
            raise PackageFormatError("unsupported package version", {"version": version})
        try:
            kind = PackageKind(kind_raw)
        except ValueError:
            raise PackageFormatError("unknown package kind", {"kind": kind_raw}) from None

        (name_len,) = r.unpack(">H")
        name = r.take(name_len).decode("utf-8", errors="strict")
        (body_len,) = r.unpack(">I")
        try:
            body = json.loads(r.take(body_len).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PackageFormatError("package body is not valid JSON", {"error": str(e)}) from e
        if not isinstance(body, dict):
            raise PackageFormatError("package body must be an object", {})

        (has_meta,) = r.unpack(">B")
        meta: Optional[bytes] = None
        if has_meta == 1:
            (meta_len,) = r.unpack(">I")
            meta = r.take(meta_len)
        elif has_meta != 0:
            raise PackageFormatError("bad metadata flag", {"flag": has_meta})
        if not r.at_end():
            raise PackageFormatError("trailing bytes after package", {"remaining": r.remaining()})

        if kind == PackageKind.PROGRAM:
            return cls(name=name, kind=kind, program=Program.from_json(body), account_component_metadata_bytes=meta)
        return cls(name=name, kind=kind, library=Library.from_json(body), account_component_metadata_bytes=meta)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def take(self, n: int) -> bytes:
        if self._pos + n > len(self._data):
            raise PackageFormatError("truncated package", {"need": n, "remaining": self.remaining()})
        out = self._data[self._pos : self._pos + n]
        self._pos += n
        return out

    def unpack(self, fmt: str) -> Tuple[Any, ...]:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))

    def remaining(self) -> int:
        return len(self._data) - self._pos

    def at_end(self) -> bool:
        return self._pos == len(self._data)


def load_package(path: str | Path) -> Package:
    p = Path(path)
    try:
        data = p.read_bytes()
    except OSError as e:
        raise PackageFormatError("cannot read package file", {"path": str(p), "error": str(e)}) from e
    return Package.read_from_bytes(data)


def write_package(package: Package, path: str | Path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(package.to_bytes())
    return p
