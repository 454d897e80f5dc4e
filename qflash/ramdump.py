"""Reading a target's memory regions over Sahara's memory debug mode."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Iterable, Optional, Protocol, Union

from .packets import RAW_BUFFER_SIZE, DebugEntry, MemoryRead, PacketError, parse_memory_table
from .transport import TransportError

logger = logging.getLogger(__name__)

MIN_READ_SIZE = 16 * 1024
_PROGRESS_STEP = 32 * 1024 * 1024


class Channel(Protocol):
    def read(self, size: int, timeout: Optional[float] = None) -> bytes: ...

    def write(self, data: bytes) -> int: ...


def is_valid_memory_table(length: int, is_64bit: bool) -> bool:
    """Whether ``length`` is a whole number of table entries."""
    return length % DebugEntry.size(is_64bit) == 0


def describe_throughput(seconds: float, size: int) -> str:
    """Describe how many bytes moved in how long, with the rate when known."""
    if size == 0:
        return "Cannot calculate throughput, size is 0"
    whole = int(seconds)
    micros = round((seconds - whole) * 1_000_000)
    if micros >= 1_000_000:
        whole += 1
        micros -= 1_000_000
    text = f"{size} bytes transferred in {whole}.{micros:06d} seconds"
    if seconds > 0.0:
        rate = size / seconds / (1024.0 * 1024.0)
        text += f" ({rate:.4f}MBps)"
    return text


class MemoryDumper:
    """Fetches a memory table and the regions it lists from a target."""

    def __init__(self, channel: Channel, max_read: int = RAW_BUFFER_SIZE) -> None:
        if max_read <= 0:
            raise ValueError("max_read must be positive")
        self.channel = channel
        self.max_read = max_read

    def send_memory_read(self, address: int, length: int, is_64bit: bool = False) -> None:
        """Ask the target for ``length`` bytes starting at ``address``."""
        logger.debug(
            "SENDING -->  SAHARA_MEMORY_READ, address 0x%08X, length 0x%08X", address, length
        )
        packet = MemoryRead(address, length, is_64bit).pack()
        sent = 0
        while sent < len(packet):
            written = self.channel.write(packet[sent:])
            if written <= 0:
                raise TransportError("sending MEMORY_READ packet failed")
            sent += written

    def read_exact(self, length: int) -> bytes:
        """Read exactly ``length`` bytes, across as many reads as it takes."""
        chunks = bytearray()
        while len(chunks) < length:
            try:
                chunks += self.channel.read(length - len(chunks))
            except TransportError:
                logger.error("bytes_read = %d, bytes_to_read = %d", len(chunks), length)
                raise
        return bytes(chunks)

    def read_table(self, address: int, length: int, is_64bit: bool = False) -> list[DebugEntry]:
        """Fetch and decode the memory table the target announced."""
        if not is_valid_memory_table(length, is_64bit):
            raise PacketError(f"invalid memory table length {length}")
        if length == 0:
            return []
        self.send_memory_read(address, length, is_64bit)
        if length > RAW_BUFFER_SIZE:
            raise PacketError("memory table length is greater than the intermediate buffer")
        raw = self.read_exact(length)
        logger.info("Memory Debug table received")
        if not is_64bit:
            count = length // DebugEntry.size(False)
            if count * DebugEntry.size(True) > RAW_BUFFER_SIZE:
                raise PacketError(
                    "memory table converted to 64-bit entries exceeds the intermediate buffer"
                )
        entries = parse_memory_table(raw, is_64bit)
        for entry in entries:
            logger.info(
                "Base 0x%08X Len 0x%08X, '%s', '%s'",
                entry.mem_base,
                entry.length,
                entry.filename,
                entry.desc,
            )
        return entries

    def _dump_region(self, entry: DebugEntry, target: Path, is_64bit: bool) -> None:
        started = time.monotonic()
        with open(target, "wb") as handle:
            done = 0
            while done < entry.length:
                size = min(entry.length - done, self.max_read)
                self.send_memory_read(entry.mem_base + done, size, is_64bit)
                try:
                    data = self.read_exact(size)
                except TransportError:
                    if self.max_read > MIN_READ_SIZE:
                        self.max_read //= 2
                        logger.debug("reducing read size to %d", self.max_read)
                        continue
                    raise
                done += size
                handle.write(data)
                if done % _PROGRESS_STEP == 0 or done == entry.length:
                    logger.debug("received %d of %d bytes", done, entry.length)
        logger.info("Received file '%s'", entry.filename)
        logger.info(describe_throughput(time.monotonic() - started, entry.length))

    def dump(
        self,
        entries: Iterable[DebugEntry],
        directory: Union[str, os.PathLike] = ".",
        is_64bit: bool = False,
    ) -> list[Path]:
        """Save every listed region to a file named after it; return the paths."""
        base = Path(directory)
        written = []
        for entry in entries:
            target = base / entry.filename
            self._dump_region(entry, target, is_64bit)
            written.append(target)
        return written