"""Symbol tables read from ``objdump -t`` output."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from .demangle import DemangleError, demangle

_INT_MAX = 0x7FFFFFFF


def _parse_hex(text: str) -> Optional[int]:
    if text.startswith(("-", "+")):
        return None
    try:
        value = int(text, 16)
    except ValueError:
        return None
    return value if value <= _INT_MAX else None


@dataclass(frozen=True)
class Symbol:
    """One entry of the symbol table."""

    offset: int
    size: int
    was_mangled: bool = False


class SymTable:
    """Symbol addresses keyed by (demangled) name."""

    def __init__(self) -> None:
        self.symbols: Dict[str, Symbol] = {}

    def load(self, path: Union[str, os.PathLike]) -> None:
        """Add the symbols of an objdump table file; a missing file adds nothing."""
        file = Path(path)
        if not file.is_file():
            return
        with open(file, encoding="latin-1") as handle:
            for line in handle:
                self.parse_line(line.rstrip("\r\n"))

    def parse_line(self, line: str) -> Optional[Tuple[str, Symbol]]:
        """Add the symbol on one table line and return it, or None if there is none."""
        segments = line.replace("\t", " ").split()
        if len(segments) < 3:
            return None
        offset = _parse_hex(segments[0])
        if offset is None:
            return None
        size = _parse_hex(segments[-2])
        if size is None:
            return None
        name = segments[-1]
        mangled = False
        if name.startswith("_Z"):
            try:
                name = demangle(name)
            except DemangleError:
                return None
            mangled = True
        symbol = Symbol(offset, size, mangled)
        self.symbols[name] = symbol
        return name, symbol

    def get(self, name: str) -> int:
        """Return the address of ``name``; raise KeyError if it is unknown."""
        try:
            return self.symbols[name].offset
        except KeyError:
            raise KeyError(f"symbol {name!r} not found") from None

    def find(self, name: str) -> Optional[int]:
        """Return the address of ``name``, or None if it is unknown."""
        symbol = self.symbols.get(name)
        return symbol.offset if symbol is not None else None

    def clear(self) -> None:
        self.symbols.clear()

    def __contains__(self, name: object) -> bool:
        return name in self.symbols

    def __len__(self) -> int:
        return len(self.symbols)