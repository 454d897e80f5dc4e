"""Host side of the Sahara protocol: loading the flash programmer into a target."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO, Optional, Union

from .packets import (
    RAW_BUFFER_SIZE,
    CommandId,
    Done,
    DoneResponse,
    EndImageTx,
    Header,
    Hello,
    HelloResponse,
    MemoryDebug,
    Mode,
    PacketError,
    ReadData,
    Reset,
    ResetResponse,
    State,
    Status,
)
from .ramdump import Channel, MemoryDumper, is_valid_memory_table
from .transport import TransportError, open_channel

logger = logging.getLogger(__name__)

DEFAULT_PORT = "/dev/ttyUSB0"
PROGRAMMER_PREFIX = "prog"
# Image id of the NAND firehose programmer; once it is loaded the host stops.
PROGRAMMER_IMAGE_ID = 13
_LAST_COMMAND = CommandId.READ_DATA_64 + 1


class SaharaError(RuntimeError):
    """Raised when the Sahara exchange with the target fails."""


def find_programmer(directory: Union[str, os.PathLike]) -> Path:
    """Return the path of the flash programmer image in ``directory``."""
    base = Path(directory)
    try:
        names = sorted(entry.name for entry in base.iterdir())
    except OSError as exc:
        raise SaharaError(f"cannot list {base}: {exc}") from exc
    for name in names:
        if name.startswith(PROGRAMMER_PREFIX):
            return base / name
    raise SaharaError(f"no programmer image in {base}")


def _command_name(command: int) -> str:
    try:
        return CommandId(command).name
    except ValueError:
        return f"CMD_UNKNOWN_{command}"


class SaharaClient:
    """Drives the Sahara state machine over a channel."""

    def __init__(
        self,
        channel: Channel,
        firehose_dir: Union[str, os.PathLike],
        do_reset: bool = True,
    ) -> None:
        self.channel = channel
        self.firehose_dir = Path(firehose_dir)
        self.do_reset = do_reset
        self.dumper = MemoryDumper(channel)
        self.transferred = 0
        self._image: Optional[BinaryIO] = None

    def send(self, data: bytes) -> None:
        """Send every byte of ``data``."""
        data = bytes(data)
        sent = 0
        while sent < len(data):
            try:
                written = self.channel.write(data[sent:])
            except TransportError as exc:
                raise SaharaError(f"write failed: {exc}") from exc
            if written <= 0:
                raise SaharaError(f"write returned failure {written}")
            sent += written

    def receive_packet(self) -> bytes:
        """Read one packet and check that its header matches what arrived."""
        try:
            data = self.channel.read(self.dumper.max_read)
        except TransportError as exc:
            raise SaharaError(f"read failed: {exc}") from exc
        try:
            header = Header.unpack(data)
        except PacketError as exc:
            raise SaharaError(str(exc)) from exc
        logger.debug(
            "Read %d bytes, Header indicates command %d and packet length %d bytes",
            len(data),
            header.command,
            header.length,
        )
        if len(data) != header.length:
            raise SaharaError(
                f"packet length {header.length} does not match {len(data)} bytes read"
            )
        if header.command >= _LAST_COMMAND:
            raise SaharaError(f"RECEIVED <-- SAHARA_CMD_UNKNOWN_{header.command}")
        logger.debug("RECEIVED <-- %s", _command_name(header.command))
        return data

    def transfer_image(self, request: ReadData) -> None:
        """Send the programmer segment the target asked for."""
        programmer = find_programmer(self.firehose_dir)
        logger.info("prog_nand_firehose_filename = %s", programmer.name)
        logger.info(
            "0x%08x 0x%08x 0x%08x", request.image_id, request.data_offset, request.data_length
        )
        if self._image is None:
            try:
                self._image = open(programmer, "rb")
            except OSError as exc:
                raise SaharaError(f"cannot open {programmer}: {exc}") from exc
        self._image.seek(request.data_offset)
        remaining = request.data_length
        while remaining > 0:
            size = min(remaining, RAW_BUFFER_SIZE)
            chunk = self._image.read(size)
            if len(chunk) != size:
                raise SaharaError(
                    f"Read {len(chunk)} bytes, but was asked for 0x{request.data_length:08X} bytes"
                )
            self.send(chunk)
            remaining -= size
        self.transferred += request.data_length

    def _send_reset(self) -> State:
        logger.debug("SENDING --> SAHARA_RESET")
        self.send(Reset().pack())
        return State.WAIT_RESET_RESP

    def _wait_hello(self) -> State:
        try:
            packet = self.receive_packet()
        except SaharaError:
            self.send(b"\x00")
            packet = self.receive_packet()
        command = Header.unpack(packet).command
        if command != CommandId.HELLO:
            logger.error("Received a different command: %x while waiting for hello packet", command)
            return self._send_reset()
        try:
            hello = Hello.unpack(packet)
        except PacketError as exc:
            raise SaharaError(str(exc)) from exc
        try:
            mode_name = Mode(hello.mode).name
        except ValueError:
            mode_name = f"0x{hello.mode:x}"
        logger.debug("RECEIVED <-- SAHARA_MODE_%s", mode_name)
        logger.debug("SENDING --> SAHARA_HELLO_RESPONSE")
        self.send(HelloResponse.from_hello(hello).pack())
        return State.WAIT_COMMAND

    def _dump_memory(self, debug: MemoryDebug) -> State:
        try:
            entries = self.dumper.read_table(
                debug.memory_table_addr, debug.memory_table_length, debug.is_64bit
            )
            self.dumper.dump(entries, ".", debug.is_64bit)
        except (PacketError, TransportError, OSError) as exc:
            raise SaharaError(f"memory dump failed: {exc}") from exc
        if self.do_reset:
            return self._send_reset()
        return State.WAIT_HELLO

    def run(self) -> None:
        """Run the exchange until the target has what it needs."""
        state = State.WAIT_HELLO
        image_id = 0
        try:
            while True:
                logger.debug("STATE <-- SAHARA_%s", state.name)
                if state == State.WAIT_HELLO:
                    state = self._wait_hello()
                elif state == State.WAIT_COMMAND:
                    packet = self.receive_packet()
                    command = Header.unpack(packet).command
                    if command in (CommandId.MEMORY_DEBUG, CommandId.MEMORY_DEBUG_64):
                        debug = MemoryDebug.unpack(packet)
                        logger.info(
                            "Memory Table Address: 0x%08X, Memory Table Length: 0x%08X",
                            debug.memory_table_addr,
                            debug.memory_table_length,
                        )
                        if not is_valid_memory_table(debug.memory_table_length, debug.is_64bit):
                            logger.error("Invalid memory table received")
                            state = self._send_reset()
                            continue
                        state = self._dump_memory(debug)
                        if state == State.WAIT_HELLO:
                            return
                    elif command == CommandId.READ_DATA:
                        try:
                            self.transfer_image(ReadData.unpack(packet))
                        except SaharaError as exc:
                            logger.error("image transfer failed: %s", exc)
                    elif command == CommandId.END_IMAGE_TX:
                        end = EndImageTx.unpack(packet)
                        logger.debug("image_id = %d, status = %d", end.image_id, end.status)
                        if end.status != Status.SUCCESS:
                            raise SaharaError(f"image {end.image_id} failed with status {end.status}")
                        image_id = end.image_id
                        logger.debug("SENDING --> SAHARA_DONE")
                        self.send(Done().pack())
                        state = State.WAIT_DONE_RESP
                    else:
                        logger.error("Received an unknown command: %d", command)
                        state = self._send_reset()
                elif state == State.WAIT_DONE_RESP:
                    status = DoneResponse.unpack(self.receive_packet()).image_tx_status
                    logger.info("image_tx_status = %d", status)
                    if status == Mode.IMAGE_TX_PENDING:
                        if image_id == PROGRAMMER_IMAGE_ID:
                            return
                        state = State.WAIT_HELLO
                    elif status == Mode.IMAGE_TX_COMPLETE:
                        logger.info("Successfully uploaded all images")
                        return
                    else:
                        raise SaharaError(
                            f"Received unrecognized status {status} at SAHARA_WAIT_DONE_RESP state"
                        )
                elif state == State.WAIT_RESET_RESP:
                    packet = self.receive_packet()
                    command = Header.unpack(packet).command
                    if command != CommandId.RESET_RESP:
                        logger.info(
                            "Waiting for reset response code %d, received %d instead.",
                            CommandId.RESET_RESP,
                            command,
                        )
                        continue
                    ResetResponse.unpack(packet)
                    return
                else:
                    raise SaharaError(f"Unrecognized state {state}")
        except PacketError as exc:
            raise SaharaError(str(exc)) from exc
        finally:
            if self._image is not None:
                self._image.close()
                self._image = None


def sahara_main(
    firehose_dir: Union[str, os.PathLike], channel: Optional[Channel] = None
) -> int:
    """Load the programmer; return 0 on success and 1 on failure."""
    owned = channel is None
    if owned:
        try:
            channel = open_channel(DEFAULT_PORT)
        except TransportError as exc:
            logger.error("cannot open %s: %s", DEFAULT_PORT, exc)
            return 1
    try:
        SaharaClient(channel, firehose_dir).run()
    except SaharaError as exc:
        logger.error("Sahara protocol error: %s", exc)
        return 1
    finally:
        if owned:
            logger.info("Disconnecting from com port")
            channel.close()
    logger.info("Sahara protocol completed")
    return 0