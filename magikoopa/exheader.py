"""The NCCH extended header: code layout, dependencies and kernel capabilities."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List

from .files import Endianness, FileBase

EXHEADER_SIZE = 0x800

_ACI1_OFFSET = 0x200
_ACI2_OFFSET = 0x600
_SYSTEM_CAPS_SIZE = 0x170
_KERNEL_DESCRIPTOR_COUNT = 28
_DEPENDENCY_COUNT = 48

MODULES = {
    0x0004013000001002: "SAFE_MODE sm (Stored in SAFE_MODE NATIVE_FIRM)",
    0x0004013000001102: "fs (Stored in NATIVE_FIRM)",
    0x0004013000001103: "SAFE_MODE fs (Stored in SAFE_MODE NATIVE_FIRM)",
    0x0004013000001202: "pm (Stored in NATIVE_FIRM)",
    0x0004013000001203: "SAFE_MODE pm (Stored in SAFE_MODE NATIVE_FIRM)",
    0x0004013000001302: "loader (Stored in NATIVE_FIRM)",
    0x0004013000001303: "SAFE_MODE loader (Stored in SAFE_MODE NATIVE_FIRM)",
    0x0004013000001402: "pxi (Stored in NATIVE_FIRM)",
    0x0004013000001503: "SAFE_MODE AM",
    0x0004013020001503: "New_3DS SAFE_MODE AM",
    0x0004013000001602: "Camera",
    0x0004013020001602: "New_3DS Camera",
    0x0004013000001702: "Config (cfg)",
    0x0004013000001703: "SAFE_MODE Config (cfg)",
    0x0004013020001703: "New_3DS SAFE_MODE Config (cfg)",
    0x0004013000001802: "Codec",
    0x0004013000001803: "SAFE_MODE Codec",
    0x0004013020001803: "New_3DS SAFE_MODE Codec",
    0x0004013000001A02: "DSP",
    0x0004013000001A03: "SAFE_MODE DSP",
    0x0004013020001A03: "New_3DS SAFE_MODE DSP",
    0x0004013000001B02: "GPIO",
    0x0004013000001B03: "SAFE_MODE GPIO",
    0x0004013020001B03: "New_3DS SAFE_MODE GPIO",
    0x0004013000001C02: "GSP",
    0x0004013020001C02: "New_3DS GSP",
    0x0004013000001C03: "SAFE_MODE GSP",
    0x0004013020001C03: "New_3DS SAFE_MODE GSP",
    0x0004013000001D02: "HID (Human Interface Devices)",
    0x0004013000001D03: "SAFE_MODE HID",
    0x0004013020001D03: "New_3DS SAFE_MODE HID",
    0x0004013000001E02: "i2c",
    0x0004013020001E02: "New_3DS i2c",
    0x0004013000001E03: "SAFE_MODE i2c",
    0x0004013020001E03: "New_3DS SAFE_MODE i2c",
    0x0004013000001F02: "MCU",
    0x0004013020001F02: "New_3DS MCU",
    0x0004013000001F03: "SAFE_MODE MCU",
    0x0004013020001F03: "New_3DS SAFE_MODE MCU",
    0x0004013000002002: "MIC (Microphone)",
    0x0004013000002102: "PDN",
    0x0004013000002103: "SAFE_MODE PDN",
    0x0004013020002103: "New_3DS SAFE_MODE PDN",
    0x0004013000002202: "PTM (Play time, pedometer, and battery manager)",
    0x0004013020002202: "New_3DS PTM (Play time, pedometer, and battery manager)",
    0x0004013020002203: "New_3DS SAFE_MODE PTM",
    0x0004013020002302: "New_3DS spi",
    0x0004013000002303: "SAFE_MODE spi",
    0x0004013020002303: "New_3DS SAFE_MODE spi",
    0x0004013000002402: "AC (Network manager)",
    0x0004013000002403: "SAFE_MODE AC",
    0x0004013020002403: "New_3DS SAFE_MODE AC",
    0x0004013000002602: "Cecd (StreetPass)",
    0x0004013000002702: "CSND",
    0x0004013000002703: "SAFE_MODE CSND",
    0x0004013020002703: "New_3DS SAFE_MODE CSND",
    0x0004013000002802: "DLP (Download Play)",
    0x0004013000002902: "HTTP",
    0x0004013000002903: "SAFE_MODE HTTP",
    0x0004013020002903: "New_3DS SAFE_MODE HTTP",
    0x0004013000002A02: "MP",
    0x0004013000002A03: "SAFE_MODE MP",
    0x0004013000002B02: "NDM",
    0x0004013000002C02: "NIM",
    0x0004013000002C03: "SAFE_MODE NIM",
    0x0004013020002C03: "New_3DS SAFE_MODE NIM",
    0x0004013000002D02: "NWM (Low-level wifi manager)",
    0x0004013000002D03: "SAFE_MODE NWM",
    0x0004013020002D03: "New_3DS SAFE_MODE NWM",
    0x0004013000002E02: "Sockets",
    0x0004013000002E03: "SAFE_MODE Sockets",
    0x0004013020002E03: "New_3DS SAFE_MODE Sockets",
    0x0004013000002F02: "SSL",
    0x0004013000002F03: "SAFE_MODE SSL",
    0x0004013020002F03: "New_3DS SAFE_MODE SSL",
    0x0004013000003000: "Process9 (in SAFE_MODE and normal NATIVE_FIRM)",
    0x0004013000003103: "SAFE_MODE PS",
    0x0004013020003103: "New_3DS SAFE_MODE PS",
    0x0004013000003202: "friends (Friends list)",
    0x0004013000003203: "SAFE_MODE friends (Friends list)",
    0x0004013020003203: "New_3DS SAFE_MODE friends (Friends list)",
    0x0004013000003302: "IR (Infrared)",
    0x0004013000003303: "SAFE_MODE IR",
    0x0004013020003303: "New_3DS SAFE_MODE IR",
    0x0004013000003402: "BOSS (SpotPass)",
    0x0004013000003502: "News (Notifications)",
    0x0004013000003702: "RO",
    0x0004013000003802: "act (handles Nintendo Network accounts)",
    0x0004013000004002: "Old3DS nfc",
    0x0004013020004002: "New_3DS nfc",
    0x0004013020004102: "New_3DS mvd",
    0x0004013020004202: "New_3DS qtm",
    0x0004013000008003: 'SAFE_MODE NS (Memory-region: "SYSTEM")',
    0x0004013020008003: 'New_3DS SAFE_MODE NS (Memory-region: "SYSTEM")',
}


class ExheaderError(ValueError):
    """The data is not a valid extended header."""


def to_hex(value: int, width: int = 8) -> str:
    """Format ``value`` as lower-case hex, zero-padded to ``width`` digits, with 0x."""
    return "0x" + format(value, "x").rjust(width, "0")


@dataclass
class CodeSetInfo:
    """Placement of one code segment."""

    address: int = 0
    physical_region_size: int = 0
    size: int = 0

    @classmethod
    def unpack(cls, raw: bytes, offset: int) -> "CodeSetInfo":
        return cls(*struct.unpack_from("<3I", raw, offset))

    def pack_into(self, raw: bytearray, offset: int) -> None:
        struct.pack_into("<3I", raw, offset, self.address, self.physical_region_size, self.size)


@dataclass
class AccessControlInfo:
    """Access control info: ARM11 system and kernel capabilities, ARM9 access."""

    system_caps: bytes = bytes(_SYSTEM_CAPS_SIZE)
    kernel_descriptors: List[int] = field(
        default_factory=lambda: [0] * _KERNEL_DESCRIPTOR_COUNT
    )
    kernel_reserved: bytes = bytes(0x10)
    arm9_access_control: bytes = bytes(0x10)

    @classmethod
    def unpack(cls, raw: bytes, offset: int) -> "AccessControlInfo":
        caps_end = offset + _SYSTEM_CAPS_SIZE
        return cls(
            bytes(raw[offset:caps_end]),
            list(struct.unpack_from(f"<{_KERNEL_DESCRIPTOR_COUNT}I", raw, caps_end)),
            bytes(raw[offset + 0x1E0:offset + 0x1F0]),
            bytes(raw[offset + 0x1F0:offset + 0x200]),
        )

    def pack_into(self, raw: bytearray, offset: int) -> None:
        if len(self.kernel_descriptors) != _KERNEL_DESCRIPTOR_COUNT:
            raise ExheaderError("ARM11 kernel capabilities need exactly 28 descriptors")
        raw[offset:offset + _SYSTEM_CAPS_SIZE] = self.system_caps
        struct.pack_into(
            f"<{_KERNEL_DESCRIPTOR_COUNT}I",
            raw,
            offset + _SYSTEM_CAPS_SIZE,
            *(value & 0xFFFFFFFF for value in self.kernel_descriptors),
        )
        raw[offset + 0x1E0:offset + 0x1F0] = self.kernel_reserved
        raw[offset + 0x1F0:offset + 0x200] = self.arm9_access_control


@dataclass
class SystemControlInfo:
    """System control info: title, flags, segment layout and dependencies."""

    title: str = ""
    compress_exefs_code: bool = False
    sd_application: bool = False
    remaster_version: int = 0
    text: CodeSetInfo = field(default_factory=CodeSetInfo)
    stack_size: int = 0
    read_only: CodeSetInfo = field(default_factory=CodeSetInfo)
    data: CodeSetInfo = field(default_factory=CodeSetInfo)
    bss_size: int = 0
    dependency_modules: List[int] = field(default_factory=lambda: [0] * _DEPENDENCY_COUNT)
    save_data_size: int = 0
    jump_id: int = 0

    @classmethod
    def unpack(cls, raw: bytes) -> "SystemControlInfo":
        flags = raw[0xD]
        return cls(
            title=bytes(raw[0:8]).split(b"\0", 1)[0].decode("latin-1"),
            compress_exefs_code=bool(flags & 1),
            sd_application=bool(flags & 2),
            remaster_version=struct.unpack_from("<H", raw, 0xE)[0],
            text=CodeSetInfo.unpack(raw, 0x10),
            stack_size=struct.unpack_from("<I", raw, 0x1C)[0],
            read_only=CodeSetInfo.unpack(raw, 0x20),
            data=CodeSetInfo.unpack(raw, 0x30),
            bss_size=struct.unpack_from("<I", raw, 0x3C)[0],
            dependency_modules=list(struct.unpack_from(f"<{_DEPENDENCY_COUNT}Q", raw, 0x40)),
            save_data_size=struct.unpack_from("<Q", raw, 0x1C0)[0],
            jump_id=struct.unpack_from("<Q", raw, 0x1C8)[0],
        )

    def pack_into(self, raw: bytearray) -> None:
        if len(self.dependency_modules) != _DEPENDENCY_COUNT:
            raise ExheaderError("the dependency list needs exactly 48 entries")
        raw[0:8] = self.title.encode("latin-1")[:8].ljust(8, b"\0")
        raw[0xD] = (raw[0xD] & ~0x03) | int(self.compress_exefs_code) | (int(self.sd_application) << 1)
        struct.pack_into("<H", raw, 0xE, self.remaster_version & 0xFFFF)
        self.text.pack_into(raw, 0x10)
        struct.pack_into("<I", raw, 0x1C, self.stack_size & 0xFFFFFFFF)
        self.read_only.pack_into(raw, 0x20)
        self.data.pack_into(raw, 0x30)
        struct.pack_into("<I", raw, 0x3C, self.bss_size & 0xFFFFFFFF)
        struct.pack_into(f"<{_DEPENDENCY_COUNT}Q", raw, 0x40, *self.dependency_modules)
        struct.pack_into("<QQ", raw, 0x1C0, self.save_data_size, self.jump_id)


class Exheader:
    """An extended header read from a 0x800-byte file and written back by :meth:`save`."""

    def __init__(self, file: FileBase) -> None:
        if file.size() != EXHEADER_SIZE:
            raise ExheaderError("Exheader: invalid file: wrong file size")
        self.file = file
        file.endianness = Endianness.LITTLE
        with file:
            file.seek(0)
            raw = file.read_data(EXHEADER_SIZE)
        if len(raw) != EXHEADER_SIZE:
            raise ExheaderError("Exheader: invalid file: short read")
        self._raw = bytearray(raw)
        self.sci = SystemControlInfo.unpack(raw)
        self.aci1 = AccessControlInfo.unpack(raw, _ACI1_OFFSET)
        self.aci2 = AccessControlInfo.unpack(raw, _ACI2_OFFSET)

    def to_bytes(self) -> bytes:
        """Return the header with all parsed fields written back."""
        raw = bytearray(self._raw)
        self.sci.pack_into(raw)
        self.aci1.pack_into(raw, _ACI1_OFFSET)
        self.aci2.pack_into(raw, _ACI2_OFFSET)
        return bytes(raw)

    def save(self) -> bool:
        """Write the header back to its file."""
        data = self.to_bytes()
        with self.file:
            self.file.resize(len(data))
            self.file.seek(0)
            self.file.write_data(data)
            self.file.save()
        self._raw = bytearray(data)
        return True

    def describe_aci(self, index: int) -> str:
        """Describe the first (index 0) or second access control info."""
        aci = self.aci1 if index == 0 else self.aci2
        lines = [f"  ACI{index}", "  {", "    ARM11 Kernel Capabilities", "    {"]
        for descriptor in aci.kernel_descriptors:
            lines.append(f"      Raw:  {to_hex(descriptor)}")
            if descriptor & 0xF8000000 == 0xF0000000:
                mask = descriptor & 0x00FFFFFF
                table_index = (descriptor & 0x03000000) >> 24
                lines.append(f"    - {mask} -> {table_index}")
        lines += ["    }", "  }"]
        return "\n".join(lines)

    def describe(self) -> str:
        """Return a readable dump of the whole header."""
        sci = self.sci

        def code_set(info: CodeSetInfo) -> List[str]:
            return [
                f"      Address:              {to_hex(info.address)}",
                f"      Physical region size: {to_hex(info.physical_region_size)}",
                f"      Size:                 {to_hex(info.size)}",
            ]

        lines = [
            "NCCH Extended Header",
            "{",
            "  SCI",
            "  {",
            f"    Title:                  {sci.title}",
            f"    Compressed Exefs Code:  {int(sci.compress_exefs_code)}",
            f"    SD Application:         {int(sci.sd_application)}",
            f"    Remaster Version:       {to_hex(sci.remaster_version, 4)}",
            "",
            "    Text code set info:",
            *code_set(sci.text),
            "",
            f"    Stack Size:             {to_hex(sci.stack_size)}",
            "",
            "    Read-only code set info:",
            *code_set(sci.read_only),
            "",
            "    Data code set info:",
            *code_set(sci.data),
            "",
            f"    BSS Size:               {to_hex(sci.bss_size)}",
            "",
            "    Dependency module (program ID) list:",
        ]
        for module in sci.dependency_modules:
            if module:
                lines.append(f"      - {MODULES.get(module, 'Unknown')} ({to_hex(module, 16)})")
        lines += [
            "",
            f"    Save data size:         {to_hex(sci.save_data_size, 16)}",
            f"    Jump ID:                {to_hex(sci.jump_id, 16)}",
            "  }",
            "",
            self.describe_aci(0),
            "",
            self.describe_aci(1),
            "}",
        ]
        return "\n".join(lines)