"""Random-access files backed by memory or by the host filesystem."""

from __future__ import annotations

import enum
import os
import struct
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Optional, Union

_SUBFILE_MEMORY_LIMIT = 32 * 1024 * 1024
_COPY_CHUNK = 4096
_MAX_MEMORY_SIZE = 0xFFFFFFFF


class Endianness(enum.Enum):
    """Byte order used by the typed read and write helpers."""

    LITTLE = "<"
    BIG = ">"


class FilesystemMode(enum.Enum):
    """Whether a container repacks on every file save or only on request."""

    AUTO_SAVE = enum.auto()
    MANUAL_SAVE = enum.auto()


class FileContainer(ABC):
    """Something that owns files and is told when one of them is saved."""

    @abstractmethod
    def save(self, file: "FileBase") -> bool:
        """Store the contents of ``file`` back into the container."""


class CompressedFile(FileContainer):
    """A container holding exactly one compressed file."""

    def __init__(self) -> None:
        self.compression_level = 0

    @abstractmethod
    def get_file(self) -> "FileBase":
        """Return the decompressed contents as a new file."""


class FileBase(ABC):
    """A seekable binary file with endian-aware typed accessors."""

    def __init__(
        self,
        parent: Optional[FileContainer] = None,
        endianness: Endianness = Endianness.LITTLE,
    ) -> None:
        self.parent = parent
        self.id_path = ""
        self.open_count = 0
        self.endianness = endianness

    @abstractmethod
    def open(self) -> None:
        """Open the file; calls nest."""

    @abstractmethod
    def close(self) -> None:
        """Undo one call to :meth:`open`."""

    @abstractmethod
    def save(self) -> None:
        """Flush the contents and notify the parent container."""

    @abstractmethod
    def read_data(self, length: int) -> bytes:
        """Read up to ``length`` bytes from the current position."""

    @abstractmethod
    def write_data(self, data: bytes) -> int:
        """Write ``data`` at the current position and return the count written."""

    @abstractmethod
    def pos(self) -> int:
        """Return the current position."""

    @abstractmethod
    def seek(self, pos: int) -> bool:
        """Move to ``pos``."""

    @abstractmethod
    def size(self) -> int:
        """Return the size in bytes."""

    @abstractmethod
    def resize(self, size: int) -> bool:
        """Grow or shrink the file to ``size`` bytes."""

    def __enter__(self) -> "FileBase":
        self.open()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _read_struct(self, code: str, width: int):
        data = self.read_data(width)
        if len(data) != width:
            raise EOFError(f"expected {width} bytes, got {len(data)}")
        return struct.unpack(self.endianness.value + code, data)[0]

    def _write_struct(self, code: str, value) -> None:
        self.write_data(struct.pack(self.endianness.value + code, value))

    def read8(self) -> int:
        return self._read_struct("B", 1)

    def read16(self) -> int:
        return self._read_struct("H", 2)

    def read32(self) -> int:
        return self._read_struct("I", 4)

    def read64(self) -> int:
        return self._read_struct("Q", 8)

    def read_float(self) -> float:
        return self._read_struct("f", 4)

    def read_double(self) -> float:
        return self._read_struct("d", 8)

    def read_string(self, length: int = 0) -> str:
        """Read a Latin-1 string: NUL-terminated if ``length`` is 0, else fixed-size."""
        if length:
            return bytes(self.read8() for _ in range(length)).decode("latin-1")
        chars = bytearray()
        while (value := self.read8()) != 0:
            chars.append(value)
        return chars.decode("latin-1")

    def write8(self, value: int) -> None:
        self._write_struct("B", value & 0xFF)

    def write16(self, value: int) -> None:
        self._write_struct("H", value & 0xFFFF)

    def write32(self, value: int) -> None:
        self._write_struct("I", value & 0xFFFFFFFF)

    def write64(self, value: int) -> None:
        self._write_struct("Q", value & 0xFFFFFFFFFFFFFFFF)

    def write_float(self, value: float) -> None:
        self._write_struct("f", value)

    def write_double(self, value: float) -> None:
        self._write_struct("d", value)

    def write_string(self, value: str, length: int = 0) -> None:
        """Write a Latin-1 string padded with NULs to ``length`` (default: len + 1)."""
        if length == 0:
            length = len(value) + 1
        value = value[:length]
        encoded = value.encode("latin-1", errors="replace")
        self.write_data(encoded + bytes(length - len(encoded)))

    def skip(self, num: int) -> None:
        self.seek(self.pos() + num)

    def clone(self, container: Optional[FileContainer] = None) -> "FileBase":
        """Return an independent copy of the whole file."""
        return self.get_subfile(container, 0, self.size())

    def get_subfile(
        self, container: Optional[FileContainer], offset: int, size: int
    ) -> "FileBase":
        """Copy ``size`` bytes from ``offset`` into a new file owned by ``container``."""
        self.open()
        try:
            self.seek(offset)
            if size >= _SUBFILE_MEMORY_LIMIT:
                result: FileBase = ExternalFile(parent=container)
                with result:
                    result.resize(size)
                    result.seek(0)
                    remaining = size
                    while remaining > 0:
                        chunk = self.read_data(min(_COPY_CHUNK, remaining))
                        if not chunk:
                            break
                        result.write_data(chunk)
                        remaining -= len(chunk)
            else:
                result = MemoryFile(container, self.read_data(size), size)
        finally:
            self.close()
        return result

    def set_id_path(self, path: str) -> None:
        """Set the path identifying this file inside its container, once."""
        if path.startswith("/"):
            path = path[1:]
        if self.id_path:
            raise RuntimeError("cannot set the ID path of a file twice")
        self.id_path = path


class MemoryFile(FileBase):
    """A file held entirely in memory."""

    def __init__(
        self,
        parent: Optional[FileContainer] = None,
        data: Optional[bytes] = None,
        size: Optional[int] = None,
    ) -> None:
        super().__init__(parent)
        if data is None:
            self._data = bytearray(size or 0)
        else:
            self._data = bytearray(data)
            if size is not None:
                self._data = self._data[:size]
                self._data.extend(bytes(size - len(self._data)))
        self._pos = 0

    def open(self) -> None:
        self.open_count += 1

    def close(self) -> None:
        if self.open_count <= 0:
            raise RuntimeError("MemoryFile closed more often than opened")
        self.open_count -= 1

    def save(self) -> None:
        if self.parent is not None:
            self.parent.save(self)

    def read_data(self, length: int) -> bytes:
        length = min(length, len(self._data) - self._pos)
        if length < 1:
            return b""
        chunk = bytes(self._data[self._pos:self._pos + length])
        self._pos += length
        return chunk

    def write_data(self, data: bytes) -> int:
        length = len(data)
        if length < 1 or length > _MAX_MEMORY_SIZE:
            return 0
        end = self._pos + length
        if end > len(self._data):
            self.resize(end)
        self._data[self._pos:end] = data
        self._pos = end
        return length

    def pos(self) -> int:
        return self._pos

    def seek(self, pos: int) -> bool:
        self._pos = pos
        return True

    def size(self) -> int:
        return len(self._data)

    def resize(self, size: int) -> bool:
        if size > _MAX_MEMORY_SIZE:
            raise ValueError(f"memory file size {size:#x} exceeds 32 bits")
        if size < len(self._data):
            del self._data[size:]
        else:
            self._data.extend(bytes(size - len(self._data)))
        return True


class ExternalFile(FileBase):
    """A file on disk, or an anonymous temporary file when no path is given."""

    def __init__(
        self,
        path: Union[str, os.PathLike, None] = None,
        parent: Optional[FileContainer] = None,
    ) -> None:
        super().__init__(parent)
        self.path: Optional[Path] = Path(path) if path is not None else None
        self._handle: Optional[IO[bytes]] = None
        self._temporary: Optional[IO[bytes]] = None
        if self.path is None:
            self._temporary = tempfile.TemporaryFile()

    def _require_handle(self) -> IO[bytes]:
        if self._handle is None:
            raise RuntimeError("file is not open")
        return self._handle

    def open(self) -> None:
        if self.open_count == 0:
            if self._temporary is not None:
                self._handle = self._temporary
            else:
                assert self.path is not None
                mode = "r+b" if self.path.exists() else "w+b"
                self._handle = open(self.path, mode)
        self.open_count += 1

    def close(self) -> None:
        if self.open_count <= 0:
            raise RuntimeError("ExternalFile closed more often than opened")
        self.open_count -= 1
        if self.open_count == 0 and self._handle is not None:
            if self._temporary is None:
                self._handle.close()
            else:
                self._handle.flush()
            self._handle = None

    def save(self) -> None:
        if self._handle is not None:
            self._handle.flush()
        if self.parent is not None:
            self.parent.save(self)

    def read_data(self, length: int) -> bytes:
        return self._require_handle().read(length)

    def write_data(self, data: bytes) -> int:
        return self._require_handle().write(data)

    def pos(self) -> int:
        return self._require_handle().tell()

    def seek(self, pos: int) -> bool:
        self._require_handle().seek(pos)
        return True

    def size(self) -> int:
        handle = self._handle if self._handle is not None else self._temporary
        if handle is not None:
            handle.flush()
            return os.fstat(handle.fileno()).st_size
        assert self.path is not None
        return self.path.stat().st_size if self.path.exists() else 0

    def resize(self, size: int) -> bool:
        handle = self._handle if self._handle is not None else self._temporary
        if handle is not None:
            handle.flush()
            os.ftruncate(handle.fileno(), size)
        else:
            assert self.path is not None
            if not self.path.exists():
                self.path.touch()
            os.truncate(self.path, size)
        return True