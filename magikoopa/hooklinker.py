"""Reading hook files and applying their hooks to the code binary."""

from __future__ import annotations

import enum
import logging
import os
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Type, Union

from .files import FileBase
from .hooks import (
    BranchHook,
    Hook,
    HookError,
    HookInfo,
    PatchHook,
    SoftBranchHook,
    SymbolAddrPatchHook,
)
from .symtable import SymTable

_log = logging.getLogger(__name__)

HOOK_SUFFIX = "hks"

_HOOK_TYPES: Dict[str, Type[Hook]] = {
    "branch": BranchHook,
    "softbranch": SoftBranchHook,
    "soft_branch": SoftBranchHook,
    "patch": PatchHook,
    "symbol": SymbolAddrPatchHook,
    "symptr": SymbolAddrPatchHook,
    "sym_ptr": SymbolAddrPatchHook,
}

_INDENT = " \t"


class LoadMode(enum.Enum):
    """What a path given to :meth:`HookLinker.load_hooks` names."""

    FILE = "file"
    DIR = "dir"
    SUBDIRS = "subdirs"


def parse_hook_file(text: str, path: str = "") -> List[HookInfo]:
    """Split the text of a hook file into its entries.

    An unindented line with a colon starts an entry; indented ``key: value``
    lines below it add values. ``#`` starts a comment.
    """
    entries: List[HookInfo] = []
    current: Optional[HookInfo] = None
    for number, line in enumerate(text.replace("\r\n", "\n").split("\n"), start=1):
        line = line.partition("#")[0]
        if ":" not in line:
            continue
        if not line.startswith((" ", "\t")):
            current = HookInfo(line[: line.index(":")], path, number)
            entries.append(current)
            continue
        if current is None:
            continue
        label, _, value = line.lstrip(_INDENT).partition(":")
        current.values[label] = value.strip(_INDENT)
    return entries


def _hook_files(directory: Path, recursive: bool) -> Iterator[Path]:
    def is_hook_file(entry: Path) -> bool:
        return entry.is_file() and "." in entry.name and entry.name.rpartition(".")[2] == HOOK_SUFFIX

    if recursive:
        for root, dirs, names in os.walk(directory):
            dirs.sort()
            for name in sorted(names):
                candidate = Path(root) / name
                if is_hook_file(candidate):
                    yield candidate
    else:
        for candidate in sorted(directory.iterdir()):
            if is_hook_file(candidate):
                yield candidate


class HookLinker:
    """Collects hooks from hook files and writes them into a code file."""

    def __init__(
        self,
        sym_table: Optional[SymTable] = None,
        output: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.sym_table = sym_table
        self.output: Callable[[str], None] = output if output is not None else _log.error
        self.extra_data_ptr = 0
        self.hooks: List[Hook] = []

    def hook_from_info(self, info: HookInfo) -> Hook:
        """Build the hook an entry describes; raise HookError if it is invalid."""
        if not info.has("type"):
            raise HookError(info, "No type given")
        kind = info.get("type").lower()
        hook_class = _HOOK_TYPES.get(kind)
        if hook_class is None:
            raise HookError(info, f'Invalid type "{kind}"')
        return hook_class(info, self.sym_table)

    def load_hooks(
        self, path: Union[str, os.PathLike], mode: LoadMode = LoadMode.DIR
    ) -> None:
        """Load one hook file, or the hook files of a directory (and its subdirectories)."""
        if mode is LoadMode.FILE:
            self.load_hooks_from_file(path)
            return
        directory = Path(path)
        if not directory.is_dir():
            return
        for hook_file in _hook_files(directory, mode is LoadMode.SUBDIRS):
            self.load_hooks_from_file(hook_file)

    def load_hooks_from_file(self, path: Union[str, os.PathLike]) -> None:
        """Add the hooks of one file; invalid entries are reported through ``output``."""
        name = os.fspath(path)
        try:
            with open(name, encoding="utf-8", errors="replace") as handle:
                text = handle.read()
        except OSError:
            return
        for info in parse_hook_file(text, name):
            try:
                self.hooks.append(self.hook_from_info(info))
            except HookError as error:
                self.output(f"{error.info.path}:{error.info.line}: error: Hook: {error.msg}")

    def extra_data_size(self) -> int:
        """Total extra code the hooks need."""
        return sum(hook.extra_data_size() for hook in self.hooks)

    def apply_to(self, file: FileBase) -> None:
        """Write every hook into ``file``, laying their extra code out from ``extra_data_ptr``."""
        pointer = self.extra_data_ptr
        for hook in self.hooks:
            hook.write_data(file, pointer)
            pointer += hook.extra_data_size()

    def clear(self) -> None:
        self.hooks.clear()