"""Sahara protocol constants and packet layouts."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar, Iterable, Union

VERSION = 2
VERSION_SUPPORTED = 4
RAW_BUFFER_SIZE = 8 * 1024
DEBUG_STRLEN = 20

_HEADER = struct.Struct("<II")


class PacketError(ValueError):
    """Raised when bytes do not hold the expected Sahara packet."""


class CommandId(IntEnum):
    """Sahara command identifiers."""

    NO_CMD = 0x00
    HELLO = 0x01
    HELLO_RESP = 0x02
    READ_DATA = 0x03
    END_IMAGE_TX = 0x04
    DONE = 0x05
    DONE_RESP = 0x06
    RESET = 0x07
    RESET_RESP = 0x08
    MEMORY_DEBUG = 0x09
    MEMORY_READ = 0x0A
    CMD_READY = 0x0B
    CMD_SWITCH_MODE = 0x0C
    CMD_EXEC = 0x0D
    CMD_EXEC_RESP = 0x0E
    CMD_EXEC_DATA = 0x0F
    MEMORY_DEBUG_64 = 0x10
    MEMORY_READ_64 = 0x11
    READ_DATA_64 = 0x12


class ImageType(IntEnum):
    """Image formats a target may request."""

    BINARY = 0
    ELF = 1


class Status(IntEnum):
    """Sahara status codes."""

    SUCCESS = 0x00
    INVALID_CMD = 0x01
    PROTOCOL_MISMATCH = 0x02
    INVALID_TARGET_PROTOCOL = 0x03
    INVALID_HOST_PROTOCOL = 0x04
    INVALID_PACKET_SIZE = 0x05
    UNEXPECTED_IMAGE_ID = 0x06
    INVALID_HEADER_SIZE = 0x07
    INVALID_DATA_SIZE = 0x08
    INVALID_IMAGE_TYPE = 0x09
    INVALID_TX_LENGTH = 0x0A
    INVALID_RX_LENGTH = 0x0B
    GENERAL_TX_RX_ERROR = 0x0C
    READ_DATA_ERROR = 0x0D
    UNSUPPORTED_NUM_PHDRS = 0x0E
    INVALID_PDHR_SIZE = 0x0F
    MULTIPLE_SHARED_SEG = 0x10
    UNINIT_PHDR_LOC = 0x11
    INVALID_DEST_ADDR = 0x12
    INVALID_IMG_HDR_DATA_SIZE = 0x13
    INVALID_ELF_HDR = 0x14
    UNKNOWN_HOST_ERROR = 0x15
    TIMEOUT_RX = 0x16
    TIMEOUT_TX = 0x17
    INVALID_HOST_MODE = 0x18
    INVALID_MEMORY_READ = 0x19
    INVALID_DATA_SIZE_REQUEST = 0x1A
    MEMORY_DEBUG_NOT_SUPPORTED = 0x1B
    INVALID_MODE_SWITCH = 0x1C
    CMD_EXEC_FAILURE = 0x1D
    EXEC_CMD_INVALID_PARAM = 0x1E
    EXEC_CMD_UNSUPPORTED = 0x1F
    EXEC_DATA_INVALID_CLIENT_CMD = 0x20
    HASH_TABLE_AUTH_FAILURE = 0x21
    HASH_VERIFICATION_FAILURE = 0x22
    HASH_TABLE_NOT_FOUND = 0x23


class Mode(IntEnum):
    """Target operating modes and image transfer status."""

    IMAGE_TX_PENDING = 0x0
    IMAGE_TX_COMPLETE = 0x1
    MEMORY_DEBUG = 0x2
    COMMAND = 0x3


class ExecCommand(IntEnum):
    """Commands executable while the target is in command mode."""

    NOP = 0x00
    SERIAL_NUM_READ = 0x01
    MSM_HW_ID_READ = 0x02
    OEM_PK_HASH_READ = 0x03
    SWITCH_DMSS = 0x04
    SWITCH_STREAMING = 0x05
    READ_DEBUG_DATA = 0x06


class State(IntEnum):
    """Host-side protocol states."""

    WAIT_HELLO = 0
    WAIT_COMMAND = 1
    WAIT_RESET_RESP = 2
    WAIT_DONE_RESP = 3
    WAIT_MEMORY_READ = 4
    WAIT_CMD_EXEC_RESP = 5
    WAIT_MEMORY_TABLE = 6
    WAIT_MEMORY_REGION = 7


def _unpack(data: bytes, layout: struct.Struct, expected: Iterable[int]) -> tuple[int, tuple]:
    data = bytes(data)
    if len(data) < layout.size:
        raise PacketError(f"packet needs {layout.size} bytes, got {len(data)}")
    command, _length, *fields = layout.unpack_from(data)
    allowed = tuple(expected)
    if command not in allowed:
        names = ", ".join(CommandId(c).name for c in allowed)
        raise PacketError(f"expected {names} packet, got command {command:#x}")
    return command, tuple(fields)


def _pack(command: CommandId, layout: struct.Struct, *fields: int) -> bytes:
    return layout.pack(int(command), layout.size, *fields)


@dataclass(frozen=True)
class Header:
    """Command and total length that open every packet."""

    command: int
    length: int

    SIZE: ClassVar[int] = _HEADER.size

    def pack(self) -> bytes:
        return _HEADER.pack(self.command, self.length)

    @classmethod
    def unpack(cls, data: bytes) -> "Header":
        data = bytes(data)
        if len(data) < _HEADER.size:
            raise PacketError(f"header needs {_HEADER.size} bytes, got {len(data)}")
        return cls(*_HEADER.unpack_from(data))


_HELLO = struct.Struct("<II4I6I")


@dataclass(frozen=True)
class Hello:
    """Hello packet sent by the target to start the protocol."""

    version: int
    version_supported: int
    cmd_packet_length: int
    mode: int
    reserved: tuple[int, ...] = (0,) * 6

    SIZE: ClassVar[int] = _HELLO.size

    @classmethod
    def unpack(cls, data: bytes) -> "Hello":
        _, fields = _unpack(data, _HELLO, (CommandId.HELLO,))
        return cls(*fields[:4], reserved=tuple(fields[4:]))


@dataclass(frozen=True)
class HelloResponse:
    """Host answer to a Hello packet."""

    version: int
    version_supported: int
    mode: int
    status: int = Status.SUCCESS
    reserved: tuple[int, ...] = (1, 2, 3, 4, 5, 6)

    SIZE: ClassVar[int] = _HELLO.size

    def pack(self) -> bytes:
        if len(self.reserved) != 6:
            raise PacketError("hello response needs six reserved words")
        return _pack(
            CommandId.HELLO_RESP,
            _HELLO,
            self.version,
            self.version_supported,
            self.status,
            self.mode,
            *self.reserved,
        )

    @classmethod
    def from_hello(cls, hello: Hello) -> "HelloResponse":
        """Echo the target's versions and mode with a success status."""
        return cls(
            version=hello.version,
            version_supported=hello.version_supported,
            mode=hello.mode,
        )


_READ_DATA = struct.Struct("<II3I")
_READ_DATA_64 = struct.Struct("<II3Q")


@dataclass(frozen=True)
class ReadData:
    """Target request for a segment of the current image."""

    image_id: int
    data_offset: int
    data_length: int

    SIZE: ClassVar[int] = _READ_DATA.size

    @classmethod
    def unpack(cls, data: bytes) -> "ReadData":
        _, fields = _unpack(data, _READ_DATA, (CommandId.READ_DATA,))
        return cls(*fields)


@dataclass(frozen=True)
class ReadData64:
    """Target request for a segment, with 64-bit fields."""

    image_id: int
    data_offset: int
    data_length: int

    SIZE: ClassVar[int] = _READ_DATA_64.size

    @classmethod
    def unpack(cls, data: bytes) -> "ReadData64":
        _, fields = _unpack(data, _READ_DATA_64, (CommandId.READ_DATA_64,))
        return cls(*fields)


_END_IMAGE = struct.Struct("<II2I")


@dataclass(frozen=True)
class EndImageTx:
    """Target notice that one image transfer has ended."""

    image_id: int
    status: int

    SIZE: ClassVar[int] = _END_IMAGE.size

    @classmethod
    def unpack(cls, data: bytes) -> "EndImageTx":
        _, fields = _unpack(data, _END_IMAGE, (CommandId.END_IMAGE_TX,))
        return cls(*fields)


@dataclass(frozen=True)
class Done:
    """Host notice that an image transfer is complete."""

    SIZE: ClassVar[int] = _HEADER.size

    def pack(self) -> bytes:
        return _pack(CommandId.DONE, _HEADER)


_DONE_RESP = struct.Struct("<III")


@dataclass(frozen=True)
class DoneResponse:
    """Target answer to Done, saying whether more images are pending."""

    image_tx_status: int

    SIZE: ClassVar[int] = _DONE_RESP.size

    @classmethod
    def unpack(cls, data: bytes) -> "DoneResponse":
        _, fields = _unpack(data, _DONE_RESP, (CommandId.DONE_RESP,))
        return cls(*fields)


@dataclass(frozen=True)
class Reset:
    """Host request for the target to reset."""

    SIZE: ClassVar[int] = _HEADER.size

    def pack(self) -> bytes:
        return _pack(CommandId.RESET, _HEADER)


@dataclass(frozen=True)
class ResetResponse:
    """Target acknowledgement of a reset."""

    SIZE: ClassVar[int] = _HEADER.size

    @classmethod
    def unpack(cls, data: bytes) -> "ResetResponse":
        _unpack(data, _HEADER, (CommandId.RESET_RESP,))
        return cls()


_MEMORY_32 = struct.Struct("<II2I")
_MEMORY_64 = struct.Struct("<II2Q")


@dataclass(frozen=True)
class MemoryDebug:
    """Target offer of a memory table for a RAM dump."""

    memory_table_addr: int
    memory_table_length: int
    is_64bit: bool = False

    @classmethod
    def unpack(cls, data: bytes) -> "MemoryDebug":
        header = Header.unpack(data)
        if header.command == CommandId.MEMORY_DEBUG_64:
            _, fields = _unpack(data, _MEMORY_64, (CommandId.MEMORY_DEBUG_64,))
            return cls(*fields, is_64bit=True)
        _, fields = _unpack(data, _MEMORY_32, (CommandId.MEMORY_DEBUG,))
        return cls(*fields, is_64bit=False)


@dataclass(frozen=True)
class MemoryRead:
    """Host request for a region of target memory."""

    address: int
    length: int
    is_64bit: bool = False

    def pack(self) -> bytes:
        if self.is_64bit:
            mask = 0xFFFFFFFFFFFFFFFF
            return _pack(
                CommandId.MEMORY_READ_64, _MEMORY_64, self.address & mask, self.length & mask
            )
        mask = 0xFFFFFFFF
        return _pack(CommandId.MEMORY_READ, _MEMORY_32, self.address & mask, self.length & mask)


_ENTRY_32 = struct.Struct(f"<3I{DEBUG_STRLEN}s{DEBUG_STRLEN}s")
_ENTRY_64 = struct.Struct(f"<3Q{DEBUG_STRLEN}s{DEBUG_STRLEN}s")


def _c_string(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("latin-1")


@dataclass(frozen=True)
class DebugEntry:
    """One region listed in a target's memory table."""

    save_pref: int
    mem_base: int
    length: int
    desc: str
    filename: str

    @staticmethod
    def size(is_64bit: bool) -> int:
        """Byte size of one table entry in the given layout."""
        return (_ENTRY_64 if is_64bit else _ENTRY_32).size


def parse_memory_table(data: Union[bytes, bytearray], is_64bit: bool) -> list[DebugEntry]:
    """Decode a memory table into its entries."""
    data = bytes(data)
    layout = _ENTRY_64 if is_64bit else _ENTRY_32
    if len(data) % layout.size:
        raise PacketError(
            f"memory table length {len(data)} is not a multiple of {layout.size}"
        )
    return [
        DebugEntry(save_pref, mem_base, length, _c_string(desc), _c_string(filename))
        for save_pref, mem_base, length, desc, filename in layout.iter_unpack(data)
    ]