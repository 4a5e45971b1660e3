import pytest

from magikoopa.files import MemoryFile
from magikoopa.hooklinker import HookLinker, LoadMode, parse_hook_file
from magikoopa.hooks import (
    BranchHook,
    HookError,
    HookInfo,
    PatchHook,
    SoftBranchHook,
    SymbolAddrPatchHook,
    make_branch_opcode,
)
from magikoopa.symtable import SymTable

HOOKS = """\
# leading comment
first:
  type: branch   # trailing comment
  link: true
\taddr:\t0x100010 \t
  dest: 0x100000

second:
  type: softbranch
  addr: 0x100020
  dest: 0x100000
"""


def make_file(size=0x100):
    file = MemoryFile(None)
    file.write_data(bytes(size))
    file.seek(0)
    return file


def word_at(file, address):
    file.seek(address - 0x100000)
    return file.read32()


def test_parse_hook_file():
    entries = parse_hook_file(HOOKS, "a.hks")
    assert [entry.name for entry in entries] == ["first", "second"]
    assert entries[0].values == {
        "type": "branch",
        "link": "true",
        "addr": "0x100010",
        "dest": "0x100000",
    }
    assert entries[0].line == 2
    assert entries[1].line == 8
    assert entries[1].path == "a.hks"


def test_values_before_any_entry_are_ignored():
    entries = parse_hook_file("  type: branch\nentry:\n  addr: 1\n")
    assert len(entries) == 1
    assert entries[0].values == {"addr": "1"}


@pytest.mark.parametrize(
    "kind, expected",
    [
        ("branch", BranchHook),
        ("SoftBranch", SoftBranchHook),
        ("soft_branch", SoftBranchHook),
        ("patch", PatchHook),
        ("symptr", SymbolAddrPatchHook),
        ("sym_ptr", SymbolAddrPatchHook),
    ],
)
def test_hook_from_info_types(kind, expected):
    table = SymTable()
    table.parse_line("00100020 g F .text 00000004 target")
    values = {
        "type": kind,
        "addr": "0x100010",
        "dest": "0x100000",
        "link": "false",
        "data": "00",
        "sym": "target",
    }
    hook = HookLinker(table).hook_from_info(HookInfo("h", "x.hks", 1, values))
    assert type(hook) is expected


def test_hook_from_info_errors():
    linker = HookLinker()
    with pytest.raises(HookError, match="No type given"):
        linker.hook_from_info(HookInfo("h", "x.hks", 1, {}))
    with pytest.raises(HookError, match='Invalid type "jump"'):
        linker.hook_from_info(HookInfo("h", "x.hks", 1, {"type": "Jump"}))


def test_load_file_reports_errors(tmp_path):
    path = tmp_path / "bad.hks"
    path.write_text("good:\n  type: patch\n  addr: 0x100000\n  data: 00\nbad:\n  addr: 0x100000\n")
    messages = []
    linker = HookLinker(output=messages.append)
    linker.load_hooks(path, LoadMode.FILE)
    assert len(linker.hooks) == 1
    assert messages == [f"{path}:5: error: Hook: No type given"]


def test_load_directory_only_hook_files(tmp_path):
    (tmp_path / "a.hks").write_text(HOOKS)
    (tmp_path / "notes.txt").write_text(HOOKS)
    nested = tmp_path / "sub"
    nested.mkdir()
    (nested / "b.hks").write_text(HOOKS)

    flat = HookLinker()
    flat.load_hooks(tmp_path)
    assert len(flat.hooks) == 2

    deep = HookLinker()
    deep.load_hooks(tmp_path, LoadMode.SUBDIRS)
    assert len(deep.hooks) == 4


def test_load_missing_directory(tmp_path):
    linker = HookLinker()
    linker.load_hooks(tmp_path / "missing")
    linker.load_hooks(tmp_path / "missing.hks", LoadMode.FILE)
    assert linker.hooks == []


def test_apply_and_extra_size(tmp_path):
    path = tmp_path / "h.hks"
    path.write_text(HOOKS)
    linker = HookLinker()
    linker.load_hooks(path, LoadMode.FILE)
    assert linker.extra_data_size() == sum(h.extra_data_size() for h in linker.hooks)

    linker.extra_data_ptr = 0x100080
    file = make_file()
    linker.apply_to(file)
    assert word_at(file, 0x100010) == make_branch_opcode(0x100010, 0x100000, True)
    assert word_at(file, 0x100020) == make_branch_opcode(0x100020, 0x100080, False)
    assert word_at(file, 0x100080) == 0xE92D5FFF

    linker.clear()
    assert linker.hooks == []
    assert linker.extra_data_size() == 0