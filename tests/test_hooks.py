import pytest

from magikoopa.files import MemoryFile
from magikoopa.hooks import (
    BranchHook,
    HookError,
    HookInfo,
    OpcodePosition,
    PatchHook,
    SoftBranchHook,
    SymbolAddrPatchHook,
    make_branch_opcode,
    offset_opcode,
)
from magikoopa.symtable import SymTable


def make_file(size=0x100):
    file = MemoryFile(None)
    file.write_data(bytes(size))
    file.seek(0)
    return file


def word_at(file, address):
    file.seek(address - 0x100000)
    return file.read32()


def info(**values):
    return HookInfo("hook", "test.hks", 1, dict(values))


def sym_table():
    table = SymTable()
    table.parse_line("00100020 g     F .text  00000010 myFunc")
    table.parse_line("00100040 g     O .data  00000004 myData")
    return table


def test_branch_opcode_forward_and_link():
    assert make_branch_opcode(0x100000, 0x100008, False) == 0xEA000000
    assert make_branch_opcode(0x100000, 0x100008, True) == 0xEB000000


def test_branch_opcode_to_itself():
    assert make_branch_opcode(0x100000, 0x100000, False) == 0xEAFFFFFE


def test_offset_opcode_leaves_other_instructions():
    assert offset_opcode(0xE3A00000, 0x100000, 0x100040) == 0xE3A00000


def test_offset_opcode_keeps_branch_target():
    original = make_branch_opcode(0x100000, 0x100100, True)
    moved = offset_opcode(original, 0x100000, 0x100040)
    assert moved == make_branch_opcode(0x100040, 0x100100, True)


def test_hook_info_values():
    entry = info(addr="0x100010", count="42", flag="TRUE", other="no")
    assert entry.get_uint("addr") == 0x100010
    assert entry.get_uint("count") == 42
    assert entry.get_bool("flag") is True
    assert entry.get_bool("other") is False
    assert entry.get("missing") == ""
    assert entry.has("addr") and not entry.has("missing")


@pytest.mark.parametrize("value", ["", "abc", "0xzz", "0x1FFFFFFFF", "-1"])
def test_hook_info_bad_uint(value):
    with pytest.raises(ValueError):
        info(v=value).get_uint("v")


def test_branch_hook_writes_branch():
    file = make_file()
    hook = BranchHook(info(addr="0x100010", dest="0x100000", link="true"))
    hook.write_data(file, 0)
    assert word_at(file, 0x100010) == make_branch_opcode(0x100010, 0x100000, True)


def test_branch_hook_uses_symbol():
    hook = BranchHook(info(addr="0x100010", func="myFunc", link="false"), sym_table())
    assert hook.destination == 0x100020
    assert hook.link is False


def test_missing_address():
    with pytest.raises(HookError, match="No address given"):
        BranchHook(info(dest="0x100000", link="true"))


def test_address_below_code_base():
    with pytest.raises(HookError, match="Invalid address"):
        BranchHook(info(addr="0x1000", dest="0x100000", link="true"))


def test_branch_hook_needs_link():
    with pytest.raises(HookError, match="Invalid branch link type"):
        BranchHook(info(addr="0x100010", dest="0x100000"))


def test_unknown_function():
    with pytest.raises(HookError, match='Function name "nope" not found'):
        BranchHook(info(addr="0x100010", func="nope", link="true"), sym_table())


def test_function_without_symbol_table():
    with pytest.raises(HookError, match="Invalid SymTable"):
        BranchHook(info(addr="0x100010", func="myFunc", link="true"))


def test_error_carries_info():
    entry = info(addr="0x100010")
    with pytest.raises(HookError) as caught:
        SoftBranchHook(entry)
    assert caught.value.info is entry
    assert caught.value.msg == "No branch destination given"


def test_soft_branch_layout():
    file = make_file()
    hook = SoftBranchHook(info(addr="0x100010", dest="0x100020"))
    assert hook.opcode_position is OpcodePosition.IGNORE
    assert hook.extra_data_size() == 20
    extra = 0x100080
    hook.write_data(file, extra)
    assert word_at(file, 0x100010) == make_branch_opcode(0x100010, extra, False)
    assert word_at(file, extra) == 0xE92D5FFF
    assert word_at(file, extra + 4) == make_branch_opcode(extra + 4, 0x100020, True)
    assert word_at(file, extra + 8) == 0xE8BD5FFF
    assert word_at(file, extra + 12) == make_branch_opcode(extra + 12, 0x100014, False)


def test_soft_branch_pre_replays_opcode():
    file = make_file()
    file.seek(0x10)
    file.write32(0xE3A00001)
    hook = SoftBranchHook(info(addr="0x100010", dest="0x100020", opcode="PRE"))
    hook.write_data(file, 0x100080)
    assert word_at(file, 0x100080) == 0xE3A00001
    assert word_at(file, 0x100084) == 0xE92D5FFF


def test_soft_branch_bad_opcode_position():
    with pytest.raises(HookError, match="Invalid softHook opcode position"):
        SoftBranchHook(info(addr="0x100010", dest="0x100020", opcode="middle"))


def test_patch_hook_hex_data():
    file = make_file()
    PatchHook(info(addr="0x100010", data="0x DE AD\tbe ef")).write_data(file, 0)
    file.seek(0x10)
    assert file.read_data(4) == bytes.fromhex("deadbeef")


def test_patch_hook_odd_hex():
    hook = PatchHook(info(addr="0x100010", data="abc"))
    assert hook.patch_data == b"\x0a\xbc"


def test_patch_hook_from_symbol():
    file = make_file()
    file.seek(0x40)
    file.write_data(b"\x01\x02\x03\x04")
    hook = PatchHook(info(addr="0x100010", src="myData", len="4"), sym_table())
    hook.write_data(file, 0)
    file.seek(0x10)
    assert file.read_data(4) == b"\x01\x02\x03\x04"


def test_patch_hook_without_data():
    with pytest.raises(HookError, match="No patch data given"):
        PatchHook(info(addr="0x100010"))


def test_patch_hook_bad_source_symbol():
    with pytest.raises(HookError, match="Invalid src symbol"):
        PatchHook(info(addr="0x100010", src="missing", len="4"), sym_table())


def test_symbol_pointer_hook():
    file = make_file()
    SymbolAddrPatchHook(info(addr="0x100010", sym="myFunc"), sym_table()).write_data(file, 0)
    assert word_at(file, 0x100010) == 0x100020


def test_symbol_pointer_hook_missing_symbol():
    with pytest.raises(HookError, match="No symbol given"):
        SymbolAddrPatchHook(info(addr="0x100010"), sym_table())
    with pytest.raises(HookError, match='Symbol name "zz" not found'):
        SymbolAddrPatchHook(info(addr="0x100010", sym="zz"), sym_table())