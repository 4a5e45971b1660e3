import struct

import pytest

from magikoopa.exheader import Exheader, ExheaderError, to_hex
from magikoopa.files import MemoryFile


def _raw():
    raw = bytearray(0x800)
    raw[0:8] = b"GAME\0\0\0\0"
    raw[0xD] = 0x01
    struct.pack_into("<3I", raw, 0x10, 0x100000, 0x20, 0x1F000)
    struct.pack_into("<I", raw, 0x3C, 0x1234)
    struct.pack_into("<Q", raw, 0x40, 0x0004013000001002)
    struct.pack_into("<I", raw, 0x200 + 0x170, 0xF0000003)
    raw[0x400:0x500] = bytes(range(256))
    return raw


def test_parses_fields():
    header = Exheader(MemoryFile(None, bytes(_raw())))
    assert header.sci.title == "GAME"
    assert header.sci.compress_exefs_code is True
    assert header.sci.sd_application is False
    assert header.sci.text.address == 0x100000
    assert header.sci.text.size == 0x1F000
    assert header.sci.bss_size == 0x1234
    assert header.aci1.kernel_descriptors[0] == 0xF0000003


def test_round_trip_bytes():
    raw = bytes(_raw())
    assert Exheader(MemoryFile(None, raw)).to_bytes() == raw


def test_wrong_size_rejected():
    with pytest.raises(ExheaderError):
        Exheader(MemoryFile(None, bytes(0x7FF)))


def test_save_writes_changes():
    file = MemoryFile(None, bytes(_raw()))
    header = Exheader(file)
    header.sci.bss_size = 0
    header.sci.sd_application = True
    header.save()
    again = Exheader(file)
    assert again.sci.bss_size == 0
    assert again.sci.sd_application is True
    assert again.sci.compress_exefs_code is True


def test_describe_names_modules():
    text = Exheader(MemoryFile(None, bytes(_raw()))).describe()
    assert "SAFE_MODE sm (Stored in SAFE_MODE NATIVE_FIRM)" in text
    assert "GAME" in text


def test_describe_aci_shows_syscall_mask():
    text = Exheader(MemoryFile(None, bytes(_raw()))).describe_aci(0)
    assert "- 3 -> 0" in text
    assert text.startswith("  ACI0")


def test_to_hex():
    assert to_hex(0x10, 8) == "0x00000010"
    assert to_hex(0xABCDEF, 2) == "0xabcdef"