# src/noteflow/node/vm.py
"""Word-stack machine for note scripts and account procedures.

The stack holds field elements; its top is the end of the list. A word pushed
with push_word (a, b, c, d) leaves d on top, and popping a word restores the
original order.

Instruction set:

  push n              push one element
  push_word [a,b,c,d] push a word
  add / sub / mul     pop b, pop a, push a op b (mod P)
  eq                  pop b, pop a, push 1 if a == b else 0
  assert_eq           pop b, pop a, fail unless a == b
  drop / dup / swap
  get_item i          push the word in slot i
  set_item i          pop a word into slot i
  get_map_item i      pop key word, push the value word of map slot i
  set_map_item i      pop key word, pop value word, store into map slot i
  note_input i        push input i of the note being consumed
  num_note_inputs     push the number of inputs of that note
  incr_nonce          request a nonce increment (auth procedures)
  call name           "ns::proc" enters account code; a bare name calls within the current forest
  native name         kernel procedure bound by the executor

Storage instructions are legal only inside account code, and slot indices are
relative to the calling component.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from noteflow.crypto.felt import P, Word, felt
from noteflow.objects.account import Account, AccountDelta
from noteflow.objects.asset import AssetVault, FungibleAsset
from noteflow.objects.note import Note
from noteflow.objects.storage import AccountStorage, StorageAccessError
from noteflow.package import MastForest

MAX_CALL_DEPTH = 64
MAX_STEPS = 100_000


class VmError(Exception):
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message
        self.details = details or {}


class AccountWorkspace:
    """Mutable view of one account during execution. Produces an AccountDelta at the end."""

    def __init__(self, account: Account) -> None:
        self.account = account
        self.storage: AccountStorage = account.storage
        self.vault: AssetVault = account.vault
        self.nonce_increment = 0
        self._values: Dict[int, Word] = {}
        self._maps: Dict[Tuple[int, Word], Word] = {}
        self._added: List[FungibleAsset] = []
        self._removed: List[FungibleAsset] = []

    def get_item(self, index: int) -> Word:
        return self.storage.get_item(index)

    def set_item(self, index: int, value: Word) -> None:
        value = Word(value)
        self.storage = self.storage.set_item(index, value)
        self._values[index] = value

    def get_map_item(self, index: int, key: Word) -> Word:
        return self.storage.get_map_item(index, key)

    def set_map_item(self, index: int, key: Word, value: Word) -> None:
        key, value = Word(key), Word(value)
        self.storage = self.storage.set_map_item(index, key, value)
        self._maps[(index, key)] = value

    def receive(self, asset: FungibleAsset) -> None:
        self.vault = self.vault.add(asset)
        self._added.append(asset)

    def send(self, asset: FungibleAsset) -> None:
        self.vault = self.vault.remove(asset)
        self._removed.append(asset)

    def changes_state(self) -> bool:
        return bool(self._values or self._maps or self._added or self._removed)

    def delta(self) -> AccountDelta:
        return AccountDelta(
            storage_values=tuple(sorted(self._values.items())),
            storage_maps=tuple(sorted((i, k, v) for (i, k), v in self._maps.items())),
            vault_added=tuple(self._added),
            vault_removed=tuple(self._removed),
            nonce_increment=self.nonce_increment,
        )


@dataclass(frozen=True)
class Frame:
    forest: MastForest
    storage_offset: Optional[int] = None  # None: not account code
    storage_size: int = 0

    def in_account(self) -> bool:
        return self.storage_offset is not None


NativeFn = Callable[["StackVM", Frame], None]


class StackVM:
    def __init__(
        self,
        workspace: AccountWorkspace,
        *,
        note: Optional[Note] = None,
        natives: Optional[Dict[str, NativeFn]] = None,
    ) -> None:
        self.ws = workspace
        self.note = note
        self.natives = dict(natives or {})
        self.stack: List[int] = []
        self._steps = 0
        self.assets_received = False
        self._procedures = workspace.account.code.procedures()

    # ---- stack helpers ----

    def push(self, v: int) -> None:
        self.stack.append(felt(v))

    def pop(self) -> int:
        if not self.stack:
            raise VmError("stack_underflow", "pop from empty stack")
        return self.stack.pop()

    def push_word(self, w: Sequence[int]) -> None:
        for e in Word(w):
            self.stack.append(e)

    def pop_word(self) -> Word:
        if len(self.stack) < 4:
            raise VmError("stack_underflow", "word pop needs 4 elements", {"depth": len(self.stack)})
        elems = self.stack[-4:]
        del self.stack[-4:]
        return Word(elems)

    # ---- execution ----

    def run(self, forest: MastForest, entrypoint: str) -> List[int]:
        self._exec(Frame(forest=forest), entrypoint, depth=0)
        return list(self.stack)

    def call_account_procedure(self, qualified: str) -> None:
        self._call_account(qualified, depth=0)

    def _call_account(self, qualified: str, *, depth: int) -> None:
        info = self._procedures.get(qualified)
        if info is None:
            raise VmError("unknown_procedure", f"account has no procedure {qualified}", {"procedure": qualified})
        component = self.ws.account.code.components[info.component_index]
        frame = Frame(forest=component.library.forest, storage_offset=info.storage_offset, storage_size=info.storage_size)
        self._exec(frame, qualified.split("::", 1)[1], depth=depth + 1)

    def _slot(self, frame: Frame, index: Any) -> int:
        if not frame.in_account():
            raise VmError("storage_outside_account", "storage access is only legal inside account code")
        i = int(index)
        if i < 0 or i >= frame.storage_size:
            raise VmError("slot_out_of_range", f"component slot {i} out of range", {"slots": frame.storage_size})
        return int(frame.storage_offset) + i  # type: ignore[arg-type]

    def _exec(self, frame: Frame, proc: str, *, depth: int) -> None:
        if depth > MAX_CALL_DEPTH:
            raise VmError("call_depth_exceeded", "call depth limit reached", {"max": MAX_CALL_DEPTH})
        try:
            body = frame.forest.procedures[proc]
        except KeyError:
            raise VmError("unknown_procedure", f"no procedure {proc}", {"procedure": proc}) from None

        for ins in body:
            self._steps += 1
            if self._steps > MAX_STEPS:
                raise VmError("step_limit", "execution step limit reached", {"max": MAX_STEPS})
            op, args = ins[0], ins[1:]
            try:
                self._step(frame, op, args, depth)
            except StorageAccessError as e:
                raise VmError("storage_access", str(e), {"op": op}) from e
            except (ValueError, IndexError, TypeError) as e:
                raise VmError("bad_instruction", str(e), {"op": op, "args": list(args)}) from e

    def _step(self, frame: Frame, op: str, args: Tuple[Any, ...], depth: int) -> None:
        if op == "push":
            self.push(args[0])
        elif op == "push_word":
            self.push_word(args[0])
        elif op in ("add", "sub", "mul"):
            b, a = self.pop(), self.pop()
            if op == "add":
                self.stack.append((a + b) % P)
            elif op == "sub":
                self.stack.append((a - b) % P)
            else:
                self.stack.append((a * b) % P)
        elif op == "eq":
            b, a = self.pop(), self.pop()
            self.stack.append(1 if a == b else 0)
        elif op == "assert_eq":
            b, a = self.pop(), self.pop()
            if a != b:
                raise VmError("assertion_failed", f"assert_eq failed: {a} != {b}")
        elif op == "drop":
            self.pop()
        elif op == "dup":
            v = self.pop()
            self.stack.extend((v, v))
        elif op == "swap":
            b, a = self.pop(), self.pop()
            self.stack.extend((b, a))
        elif op == "get_item":
            self.push_word(self.ws.get_item(self._slot(frame, args[0])))
        elif op == "set_item":
            idx = self._slot(frame, args[0])
            self.ws.set_item(idx, self.pop_word())
        elif op == "get_map_item":
            idx = self._slot(frame, args[0])
            self.push_word(self.ws.get_map_item(idx, self.pop_word()))
        elif op == "set_map_item":
            idx = self._slot(frame, args[0])
            key = self.pop_word()
            value = self.pop_word()
            self.ws.set_map_item(idx, key, value)
        elif op == "note_input":
            values = self._note().inputs.values
            i = int(args[0])
            if i < 0 or i >= len(values):
                raise VmError("note_input_out_of_range", f"note has {len(values)} inputs", {"index": i})
            self.push(values[i])
        elif op == "num_note_inputs":
            self.push(len(self._note().inputs))
        elif op == "incr_nonce":
            if not frame.in_account():
                raise VmError("nonce_outside_account", "incr_nonce is only legal inside account code")
            self.ws.nonce_increment += 1
        elif op == "call":
            target = str(args[0])
            if "::" in target:
                self._call_account(target, depth=depth)
            else:
                self._exec(frame, target, depth=depth + 1)
        elif op == "native":
            name = str(args[0])
            fn = self.natives.get(name)
            if fn is None:
                raise VmError("unsupported_native", f"native procedure {name} is not available here", {"native": name})
            fn(self, frame)
        else:
            raise VmError("unknown_instruction", f"unknown instruction {op!r}", {"op": op})

    def _note(self) -> Note:
        if self.note is None:
            raise VmError("no_note_context", "note instructions need a note being consumed")
        return self.note
