"""Inserting compiled code, its loader and its hooks into a game's code binary."""

from __future__ import annotations

import argparse
import configparser
import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from .exheader import Exheader
from .files import ExternalFile, FileBase
from .hooklinker import HookLinker
from .hooks import CODE_BASE
from .symtable import SymTable

_log = logging.getLogger(__name__)

REQUIRED_FILES = ("Makefile", "loader/Makefile", "code.bin", "exheader.bin")
PAGE_SIZE = 0x1000
KERNEL_DESCRIPTOR_COUNT = 28
SVC_CONTROL_PROCESS_MEMORY = 0x70

_WORD = 0xFFFFFFFF

Output = Callable[[str, str], None]


def align(value: int, alignment: int) -> int:
    """Round ``value`` up to a multiple of the power-of-two ``alignment``."""
    return (value + alignment - 1) & ~(alignment - 1)


def merge_kernel_caps(descriptors: Iterable[int]) -> List[int]:
    """Rebuild ARM11 kernel capability descriptors with SVC 0x70 allowed.

    System call masks are merged into one descriptor per table, followed by the
    other capabilities in their order; the rest is filled with 0xFFFFFFFF.
    Raises PatchError if the result does not fit in 28 descriptors.
    """
    svcs = set()
    other_caps: List[int] = []
    for cap in descriptors:
        if cap & 0xF8000000 == 0xF0000000:
            mask = cap & 0x00FFFFFF
            table_index = (cap & 0x03000000) >> 24
            for bit in range(24):
                if mask & (1 << bit):
                    svc = table_index * 24 + bit
                    if svc < 0x100:
                        svcs.add(svc)
        elif cap != _WORD:
            other_caps.append(cap)

    svcs.add(SVC_CONTROL_PROCESS_MEMORY)

    caps: List[int] = []
    for table in range(8):
        bits = 0
        for bit in range(24):
            if table * 24 + bit in svcs:
                bits |= 1 << bit
        if bits:
            caps.append(0xF0000000 | (table << 24) | bits)
    caps.extend(other_caps)

    if len(caps) > KERNEL_DESCRIPTOR_COUNT:
        raise PatchError("Setting ARM11 LSCs failed")
    return caps + [_WORD] * (KERNEL_DESCRIPTOR_COUNT - len(caps))


class PatchError(Exception):
    """A patching step could not be carried out."""


@dataclass(frozen=True)
class PatchLayout:
    """Where the loader and the new code go, worked out from the original exheader."""

    title: str
    loader_offset: int
    loader_max_size: int
    new_code_offset: int

    @classmethod
    def from_exheader(cls, exheader: Exheader) -> "PatchLayout":
        sci = exheader.sci
        loader_offset = align(sci.text.size + CODE_BASE, 0x10)
        loader_max_size = (sci.read_only.address - loader_offset) & _WORD
        new_code_offset = (
            sci.data.address
            + (sci.data.physical_region_size << 12)
            + align(sci.bss_size, PAGE_SIZE)
        ) & _WORD
        return cls(sci.title, loader_offset, loader_max_size, new_code_offset)


def _read_exheader(path: Path) -> Exheader:
    file = ExternalFile(str(path))
    with file:
        return Exheader(file)


def _zero_fill(file: FileBase, end: int) -> None:
    count = end - file.pos()
    if count > 0:
        file.write_data(bytes(count))


class PatchMaker:
    """Works on a project directory holding the game's code.bin and exheader.bin."""

    def __init__(self, output: Optional[Output] = None) -> None:
        self.output: Output = output if output is not None else self._log_output
        self.path: Optional[Path] = None
        self.layout: Optional[PatchLayout] = None
        self.loader_data_offset = 0
        self.status = ""

        self.sym_table = SymTable()
        self.loader_sym_table = SymTable()
        self.hook_linker = HookLinker(
            self.sym_table, lambda text: self.output("Hook Linker", text)
        )
        self.loader_hook_linker = HookLinker(
            self.loader_sym_table, lambda text: self.output("Loader Hook Linker", text)
        )

    @staticmethod
    def _log_output(category: str, text: str) -> None:
        _log.info("[%s] %s", category, text.rstrip("\n"))

    def _set_status(self, status: str) -> None:
        self.status = status
        _log.debug("status: %s", status)

    def _require_path(self) -> Path:
        if self.path is None or self.layout is None:
            raise PatchError("No valid working directory set")
        return self.path

    def set_path(self, path: Union[str, Path]) -> PatchLayout:
        """Use ``path`` as the project directory; back it up and read its layout."""
        new_path = Path(path)
        missing = [name for name in REQUIRED_FILES if not (new_path / name).exists()]
        if missing:
            listing = "".join(f"\n - /{name}" for name in missing)
            raise PatchError(
                "The working directory is invalid. The following files are missing:\n"
                + listing
            )

        self.path = new_path
        self.check_backup()

        layout = PatchLayout.from_exheader(_read_exheader(new_path / "bak" / "exheader.bin"))
        self.layout = layout

        self.output("Info", f"Game Name:           {layout.title}")
        self.output("Info", f"Loader Offset:       {layout.loader_offset:08x}")
        self.output("Info", f"Loader maximum Size: {layout.loader_max_size:08x}")
        self.output("Info", f"New Code Offset:     {layout.new_code_offset:08x}")
        self._set_status("Ready")
        return layout

    def check_backup(self) -> None:
        """Keep the original code.bin and exheader.bin in bak/, once."""
        if self.path is None:
            raise PatchError("No valid working directory set")
        backup = self.path / "bak"
        backup.mkdir(exist_ok=True)
        for name in ("code.bin", "exheader.bin"):
            if not (backup / name).exists():
                shutil.copyfile(self.path / name, backup / name)

    def restore_from_backup(self) -> None:
        """Put the backed-up originals back in place."""
        if self.path is None:
            raise PatchError("No valid working directory set")
        for name in ("code.bin", "exheader.bin"):
            saved = self.path / "bak" / name
            if saved.exists():
                target = self.path / name
                target.unlink(missing_ok=True)
                shutil.copyfile(saved, target)

    def link_newcode(self) -> None:
        """Read the new code's symbols and hooks after it has been built."""
        path = self._require_path()
        self.sym_table.clear()
        self.sym_table.load(path / "newcode.sym")
        self.hook_linker.clear()
        self.hook_linker.sym_table = self.sym_table
        self.hook_linker.load_hooks(path / "source")
        self.hook_linker.load_hooks(path / "hooks")

    def write_newcode_info(self) -> Path:
        """Write loader/source/newcodeinfo.h and work out the loader data offset."""
        path = self._require_path()
        assert self.layout is not None
        new_code = path / "newcode.bin"
        if not new_code.exists():
            raise PatchError("newcode.bin is missing")
        aligned_size = align(new_code.stat().st_size, 0x10)
        extra = self.hook_linker.extra_data_size()

        header = path / "loader" / "source" / "newcodeinfo.h"
        header.parent.mkdir(parents=True, exist_ok=True)
        header.write_text(
            "#ifndef NEWCODEINFO_H\n"
            "#define NEWCODEINFO_H\n"
            "\n"
            f"#define NEWCODE_OFFSET 0x{self.layout.new_code_offset:08x}\n"
            f"#define NEWCODE_SIZE 0x{aligned_size + extra:08x}\n"
            "\n"
            "#endif // NEWCODEINFO_H\n",
            encoding="ascii",
        )
        _log.debug("Hook size: %08x", extra)

        self.loader_data_offset = self.layout.new_code_offset + aligned_size
        return header

    def link_loader(self) -> None:
        """Read the loader's symbols and hooks and check that it fits."""
        path = self._require_path()
        assert self.layout is not None
        self.loader_sym_table.clear()
        self.loader_sym_table.load(path / "loader" / "loader.sym")
        self.loader_hook_linker.clear()
        self.loader_hook_linker.sym_table = self.loader_sym_table
        self.loader_hook_linker.load_hooks(path / "loader" / "source")
        self.loader_hook_linker.load_hooks(path / "loader" / "hooks")

        text_end = self.loader_sym_table.find("__text_end")
        text_start = self.loader_sym_table.find("__text_start")
        if text_end is None or text_start is None:
            raise PatchError("Parsing Loader sections failed")
        insert_size = text_end - text_start + self.loader_hook_linker.extra_data_size()
        if insert_size > self.layout.loader_max_size:
            self._set_status("Loader text size exceeds maximum")
            raise PatchError("Loader text size exceeds maximum")

    def insert(self) -> None:
        """Write loader, new code and hooks into code.bin, then fix the exheader."""
        path = self._require_path()
        assert self.layout is not None
        layout = self.layout
        self._set_status("Inserting...")

        try:
            loader_text_end = self.loader_sym_table.get("__text_end")
            loader_data_start = self.loader_sym_table.get("__data_start")
            loader_data_end = self.loader_sym_table.get("__data_end")
        except KeyError:
            self._set_status("Parsing Loader sections failed")
            raise PatchError("Parsing Loader sections failed") from None

        loader = (path / "loader" / "loader.bin").read_bytes()
        new_code = (path / "newcode.bin").read_bytes()

        hook_data_end = loader_data_end + self.hook_linker.extra_data_size()
        loader_text = loader[: loader_text_end - layout.loader_offset]
        data_from = loader_data_start - layout.loader_offset
        loader_data = loader[data_from:data_from + loader_data_end - loader_data_start]

        code = ExternalFile(str(path / "code.bin"))
        with code:
            old_code_size = code.size()
            code.resize(align(hook_data_end, PAGE_SIZE) - CODE_BASE)

            code.seek(layout.loader_offset - CODE_BASE)
            code.write_data(loader_text)

            code.seek(old_code_size)
            _zero_fill(code, layout.new_code_offset - CODE_BASE)

            code.seek(layout.new_code_offset - CODE_BASE)
            code.write_data(new_code)
            _zero_fill(code, loader_data_start - CODE_BASE)

            code.seek(loader_data_start - CODE_BASE)
            code.write_data(loader_data)
            _zero_fill(code, align(code.pos(), PAGE_SIZE))

            _log.debug("Loader text %08x-%08x, data %08x-%08x", layout.loader_offset,
                       loader_text_end, loader_data_start, loader_data_end)
            _log.debug("New code %08x-%08x", layout.new_code_offset,
                       layout.new_code_offset + len(new_code))

            self._set_status("Hooking...")
            self.hook_linker.extra_data_ptr = loader_data_end
            self.loader_hook_linker.extra_data_ptr = loader_text_end
            self.hook_linker.apply_to(code)
            self.loader_hook_linker.apply_to(code)

            code.seek(hook_data_end - CODE_BASE)
            _zero_fill(code, code.size())
            code.save()

        self._set_status("Fixing Exheader")
        self.fix_exheader(hook_data_end - layout.new_code_offset)

    def fix_exheader(self, new_code_size: int) -> None:
        """Grow the data segment over BSS and new code and allow SVC 0x70."""
        path = self._require_path()
        file = ExternalFile(str(path / "exheader.bin"))
        with file:
            exheader = Exheader(file)
            sci = exheader.sci
            sci.text.size = (sci.text.physical_region_size << 12) & _WORD
            sci.data.physical_region_size += align(sci.bss_size, PAGE_SIZE) >> 12
            sci.data.physical_region_size += align(new_code_size, PAGE_SIZE) >> 12
            sci.data.size = (sci.data.physical_region_size << 12) & _WORD
            sci.bss_size = 0

            try:
                exheader.aci1.kernel_descriptors = merge_kernel_caps(
                    exheader.aci1.kernel_descriptors
                )
            except PatchError:
                self._set_status("Setting ARM11 LSCs failed")
                raise
            exheader.save()

        self.post_hook()

    def post_hook(self) -> None:
        """Copy the results where the project's user settings ask for them."""
        path = self._require_path()
        project = path.resolve().name.split(".", 1)[0]
        settings = path / f"{project}.mkproj.user"

        parser = configparser.ConfigParser(interpolation=None)
        parser.optionxform = str  # type: ignore[assignment]
        if settings.exists():
            parser.read(settings, encoding="utf-8")
        section = parser["CopyPaths"] if parser.has_section("CopyPaths") else {}

        for key, name in (("Code", "code.bin"), ("Exheader", "exheader.bin")):
            destination = section.get(key, "")
            if destination:
                target = Path(destination)
                target.unlink(missing_ok=True)
                shutil.copyfile(path / name, target)

        self._set_status("All done")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run one patching step on a project directory."""
    parser = argparse.ArgumentParser(
        prog="magikoopa", description="Insert custom code into a game's code binary."
    )
    parser.add_argument("path", help="project directory")
    parser.add_argument(
        "command",
        choices=("info", "restore", "prepare", "newcode", "insert"),
        help="info: show the layout; restore: restore the originals; "
        "prepare: restore and print the make variables for the new code; "
        "newcode: link the built new code and print the loader's make variables; "
        "insert: link everything and patch code.bin and exheader.bin",
    )
    args = parser.parse_args(argv)

    def show(category: str, text: str) -> None:
        print(f"[{category}] {text.rstrip()}")

    maker = PatchMaker(show)
    try:
        layout = maker.set_path(args.path)
        if args.command == "restore":
            maker.restore_from_backup()
        elif args.command == "prepare":
            maker.restore_from_backup()
            print(f"CODEADDR=0x{layout.new_code_offset:08x}")
        elif args.command == "newcode":
            maker.link_newcode()
            maker.write_newcode_info()
            print(f"CODEADDR=0x{layout.loader_offset:08x} "
                  f"DATAADDR=0x{maker.loader_data_offset:08x}")
        elif args.command == "insert":
            maker.link_newcode()
            maker.write_newcode_info()
            maker.link_loader()
            maker.insert()
            print(maker.status)
    except (PatchError, OSError) as error:
        print(f"error: {error}", file=sys.stderr)
        return 1
    return 0