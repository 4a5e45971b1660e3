"""Hooks: patches that branch into, or write data over, the game's code."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Dict, Optional

from .files import FileBase
from .symtable import SymTable

CODE_BASE = 0x00100000
"""Virtual address at which the code binary is loaded."""

_PUSH_ALL = 0xE92D5FFF  # push {r0-r12, r14}
_POP_ALL = 0xE8BD5FFF  # pop {r0-r12, r14}
_WORD = 0xFFFFFFFF

_DECIMAL = re.compile(r"[0-9]+")
_HEXADECIMAL = re.compile(r"[0-9a-fA-F]+")
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


@dataclass
class HookInfo:
    """One entry of a hook file: its name, where it was defined and its key/value pairs."""

    name: str = ""
    path: str = ""
    line: int = 0
    values: Dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str:
        """Return the value of ``key``, or an empty string if it is missing."""
        return self.values.get(key, "")

    def has(self, key: str) -> bool:
        return key in self.values

    def get_bool(self, key: str) -> bool:
        """Return whether the value of ``key`` is "true", in any case."""
        return self.get(key).lower() == "true"

    def get_uint(self, key: str) -> int:
        """Parse the value of ``key`` as a 32-bit unsigned number; "0x" marks hex.

        Raises ValueError if the value is missing or not such a number.
        """
        value = self.get(key).strip()
        if value.startswith("0x"):
            digits, base, pattern = value[2:], 16, _HEXADECIMAL
        else:
            digits, base, pattern = value, 10, _DECIMAL
        if not pattern.fullmatch(digits):
            raise ValueError(f"{key}: not a number: {value!r}")
        result = int(digits, base)
        if result > _WORD:
            raise ValueError(f"{key}: out of range: {value!r}")
        return result


class HookError(Exception):
    """A hook entry is incomplete or invalid."""

    def __init__(self, info: HookInfo, msg: str) -> None:
        super().__init__(msg)
        self.info = info
        self.msg = msg


class OpcodePosition(enum.Enum):
    """Where a soft branch re-executes the instruction it replaced."""

    IGNORE = "ignore"
    PRE = "pre"
    POST = "post"


def make_branch_opcode(src: int, dest: int, link: bool) -> int:
    """Encode an ARM ``b`` (or ``bl``) at ``src`` jumping to ``dest``."""
    opcode = 0xEA000000
    if link:
        opcode |= 0x01000000
    offset = ((dest & _WORD) // 4 - (src & _WORD) // 4 - 2) & 0x00FFFFFF
    return opcode | offset


def offset_opcode(opcode: int, org_position: int, new_position: int) -> int:
    """Re-target a branch instruction moved from ``org_position`` to ``new_position``.

    Instructions other than B/BL are returned unchanged.
    """
    condition_and_kind = (opcode >> 24) & 0xF
    if not 0xA <= condition_and_kind <= 0xB:
        return opcode
    old_offset = ((opcode & 0x00FFFFFF) + 2) * 4
    dest = (org_position + old_offset) & _WORD
    new_offset = (dest // 4 - (new_position & _WORD) // 4 - 2) & _WORD
    return (opcode & 0xFF000000) | (new_offset & 0x00FFFFFF)


class Hook:
    """A change to the code binary described by a hook entry."""

    def __init__(self, info: HookInfo, sym_table: Optional[SymTable] = None) -> None:
        self.info = info
        self.name = info.name
        self.sym_table = sym_table

        if not info.has("addr"):
            raise HookError(info, "No address given")
        try:
            self.address = info.get_uint("addr")
        except ValueError:
            self.address = 0
        if self.address < CODE_BASE:
            raise HookError(info, f'Invalid address "{info.get("addr")}"')

    def write_data(self, file: FileBase, extra_data_ptr: int) -> None:
        """Apply the hook to ``file``; ``extra_data_ptr`` is where its extra code goes."""

    def extra_data_size(self) -> int:
        """Bytes of extra code this hook needs outside its own address."""
        return 0

    def _require_sym_table(self) -> SymTable:
        if self.sym_table is None:
            raise HookError(self.info, "Invalid SymTable")
        return self.sym_table

    def _resolve_destination(self) -> int:
        info = self.info
        if info.has("func"):
            function = info.get("func")
            destination = self._require_sym_table().find(function)
            if destination is None:
                raise HookError(info, f'Function name "{function}" not found')
            return destination
        if not info.has("dest"):
            raise HookError(info, "No branch destination given")
        try:
            return info.get_uint("dest")
        except ValueError:
            raise HookError(
                info, f'Invalid branch destination "{info.get("dest")}"'
            ) from None


class BranchHook(Hook):
    """Replace the instruction at the address with a branch."""

    def __init__(self, info: HookInfo, sym_table: Optional[SymTable] = None) -> None:
        super().__init__(info, sym_table)
        if not info.has("link"):
            raise HookError(info, "Invalid branch link type")
        self.link = info.get_bool("link")
        self.destination = self._resolve_destination()

    def write_data(self, file: FileBase, extra_data_ptr: int) -> None:
        file.seek(self.address - CODE_BASE)
        file.write32(make_branch_opcode(self.address, self.destination, self.link))


class SoftBranchHook(Hook):
    """Call a function from the address, saving all registers around the call."""

    def __init__(self, info: HookInfo, sym_table: Optional[SymTable] = None) -> None:
        super().__init__(info, sym_table)
        self.destination = self._resolve_destination()
        if info.has("opcode"):
            try:
                self.opcode_position = OpcodePosition(info.get("opcode").lower())
            except ValueError:
                raise HookError(
                    info, f'Invalid softHook opcode position "{info.get("opcode")}"'
                ) from None
        else:
            self.opcode_position = OpcodePosition.IGNORE

    def extra_data_size(self) -> int:
        return 5 * 4

    def write_data(self, file: FileBase, extra_data_ptr: int) -> None:
        file.seek(self.address - CODE_BASE)
        original = file.read32()
        file.seek(self.address - CODE_BASE)
        file.write32(make_branch_opcode(self.address, extra_data_ptr, False))

        file.seek(extra_data_ptr - CODE_BASE)
        if self.opcode_position is OpcodePosition.PRE:
            file.write32(offset_opcode(original, self.address, file.pos() + CODE_BASE))
        file.write32(_PUSH_ALL)
        file.write32(make_branch_opcode(file.pos() + CODE_BASE, self.destination, True))
        file.write32(_POP_ALL)
        if self.opcode_position is OpcodePosition.POST:
            file.write32(offset_opcode(original, self.address, file.pos() + CODE_BASE))
        file.write32(make_branch_opcode(file.pos() + CODE_BASE, self.address + 4, False))


def _from_hex(text: str) -> bytes:
    digits = "".join(char for char in text if char in _HEX_DIGITS)
    if len(digits) % 2:
        digits = "0" + digits
    return bytes.fromhex(digits)


class PatchHook(Hook):
    """Overwrite bytes at the address, from literal hex or from a linked symbol."""

    def __init__(self, info: HookInfo, sym_table: Optional[SymTable] = None) -> None:
        super().__init__(info, sym_table)
        self.patch_data = b""
        self.src = 0
        self.length = 0

        if info.has("data"):
            self.from_binary = False
            text = info.get("data").lower()
            if text.startswith("0x"):
                text = text[2:]
            self.patch_data = _from_hex(text.replace(" ", "").replace("\t", ""))
        elif info.has("src") and info.has("len"):
            self.from_binary = True
            source = self._require_sym_table().find(info.get("src"))
            if source is None:
                raise HookError(info, "Invalid src symbol")
            self.src = source
            try:
                self.length = info.get_uint("len")
            except ValueError:
                raise HookError(info, "Invalid length") from None
        else:
            raise HookError(info, "No patch data given")

    def write_data(self, file: FileBase, extra_data_ptr: int) -> None:
        if self.from_binary:
            file.seek(self.src - CODE_BASE)
            data = file.read_data(self.length)
        else:
            data = self.patch_data
        file.seek(self.address - CODE_BASE)
        file.write_data(data)


class SymbolAddrPatchHook(Hook):
    """Write the address of a symbol at the hook's address."""

    def __init__(self, info: HookInfo, sym_table: Optional[SymTable] = None) -> None:
        super().__init__(info, sym_table)
        if not info.has("sym"):
            raise HookError(info, "No symbol given")
        symbol = info.get("sym")
        destination = self._require_sym_table().find(symbol)
        if destination is None:
            raise HookError(info, f'Symbol name "{symbol}" not found')
        self.destination = destination

    def write_data(self, file: FileBase, extra_data_ptr: int) -> None:
        file.seek(self.address - CODE_BASE)
        file.write32(self.destination)