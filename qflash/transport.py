"""Channels to a module in download mode: serial ports, TCP and USB discovery."""

from __future__ import annotations

import errno
import logging
import os
import re
import socket
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import serial

logger = logging.getLogger(__name__)

USB_BASE = "/dev/bus/usb"
BAUDRATE = 115200
DEFAULT_TIMEOUT = 5.0
MAX_DESCRIPTOR_READ = 1024

QUECTEL_VENDOR = 0x2C7C
QUALCOMM_VENDOR = 0x05C6
EDL_PRODUCT = 0x9008

_DT_DEVICE = 0x01
_DT_CONFIG = 0x02
_DT_INTERFACE = 0x04
_DT_ENDPOINT = 0x05
_DT_CS_INTERFACE = 0x24

_DEVICE = struct.Struct("<BBHBBBBHHHBBBB")
_CONFIG = struct.Struct("<BBHBBBBB")
_INTERFACE = struct.Struct("<BBBBBBBBB")
_ENDPOINT = struct.Struct("<BBBBHB")

_XFERTYPE_MASK = 0x03
_XFER_BULK = 0x02
_XFER_INT = 0x03
_DIR_IN = 0x80


class TransportError(OSError):
    """Raised when a channel cannot be opened, read or written."""


@dataclass
class UsbDeviceInfo:
    """What the descriptors of a matching USB device say about it."""

    path: str = ""
    id_vendor: int = 0
    id_product: int = 0
    num_interfaces: int = 0
    interrupt_endpoints: dict[int, int] = field(default_factory=dict)
    bulk_in: dict[int, int] = field(default_factory=dict)
    bulk_out: dict[int, int] = field(default_factory=dict)
    max_packet_size: dict[int, int] = field(default_factory=dict)


def _is_wanted(vendor: int, product: int) -> bool:
    return vendor == QUECTEL_VENDOR or (vendor == QUALCOMM_VENDOR and product == EDL_PRODUCT)


def parse_descriptors(data: bytes) -> Optional[UsbDeviceInfo]:
    """Walk a device's raw descriptors.

    Returns the device's details when it is a Quectel module or a Qualcomm
    emergency download device and every descriptor is understood, else None.
    """
    data = bytes(data)
    info = UsbDeviceInfo()
    seen_device = False
    interface = 0
    offset = 0
    while offset < len(data):
        length = data[offset]
        kind = data[offset + 1] if offset + 1 < len(data) else None
        if length == 0 or offset + length > len(data):
            break
        chunk = data[offset:offset + length]

        if length == _DEVICE.size and kind == _DT_DEVICE:
            fields = _DEVICE.unpack(chunk)
            vendor, product = fields[7], fields[8]
            if not _is_wanted(vendor, product):
                break
            info.id_vendor, info.id_product = vendor, product
            seen_device = True
            logger.debug("D: idVendor=%04x idProduct=%04x", vendor, product)
        elif length == _CONFIG.size and kind == _DT_CONFIG:
            info.num_interfaces = _CONFIG.unpack(chunk)[3]
            logger.debug("C: bNumInterfaces: %d", info.num_interfaces)
        elif length == _INTERFACE.size and kind == _DT_INTERFACE:
            fields = _INTERFACE.unpack(chunk)
            interface = fields[2]
            logger.debug(
                "I: If#= %d Alt= %d #EPs= %d Cls=%02x Sub=%02x Prot=%02x", *fields[2:8]
            )
        elif length == _ENDPOINT.size and kind == _DT_ENDPOINT:
            _, _, address, attributes, packet_size, interval = _ENDPOINT.unpack(chunk)
            logger.debug(
                "E: Ad=%02x Atr=%02x MxPS= %d Ivl=%dms", address, attributes, packet_size, interval
            )
            xfer = attributes & _XFERTYPE_MASK
            if xfer == _XFER_BULK:
                if address & _DIR_IN:
                    info.bulk_in[interface] = address
                else:
                    info.bulk_out[interface] = address
                info.max_packet_size[interface] = packet_size
            elif xfer == _XFER_INT:
                info.interrupt_endpoints[interface] = address
        elif length in (4, 5) and kind == _DT_CS_INTERFACE:
            pass
        else:
            logger.debug("unknown bLength=%d bDescriptorType=%s", length, kind)
            break
        offset += length

    if offset != len(data) or not seen_device:
        return None
    return info


def find_usb_device(base: Union[str, os.PathLike] = USB_BASE) -> Optional[UsbDeviceInfo]:
    """Search the usbfs tree under ``base`` for the first matching device."""
    root = Path(base)
    try:
        buses = sorted(p for p in root.iterdir() if p.name.isdigit())
    except OSError:
        return None
    for bus in buses:
        try:
            devices = sorted(p for p in bus.iterdir() if p.name.isdigit())
        except OSError:
            continue
        for device in devices:
            try:
                with open(device, "rb") as handle:
                    raw = handle.read(MAX_DESCRIPTOR_READ)
            except OSError:
                continue
            info = parse_descriptors(raw)
            if info is not None:
                info.path = str(device)
                return info
    return None


def find_ec20(base: Union[str, os.PathLike] = USB_BASE) -> tuple[int, int, int]:
    """Return vendor id, product id and interface count of the attached module."""
    info = find_usb_device(base)
    if info is None:
        raise TransportError(errno.ENODEV, "no Quectel module found on the USB bus")
    return info.id_vendor, info.id_product, info.num_interfaces


def _leading_int(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else 0


def parse_tcp_address(port_name: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts, checking the port range."""
    host, sep, port_text = port_name.partition(":")
    if not sep:
        raise TransportError(f"not a host:port address: {port_name!r}")
    port = _leading_int(port_text)
    if not 1 <= port <= 0xFFFF:
        raise TransportError(f"port out of range in {port_name!r}")
    return host, port


class SerialChannel:
    """A raw serial line at 115200 baud."""

    def __init__(self, port_name: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.port_name = port_name
        self.timeout = timeout
        try:
            self._port = serial.serial_for_url(port_name, baudrate=BAUDRATE, timeout=timeout)
        except (serial.SerialException, ValueError) as exc:
            raise TransportError(f"device {port_name} could not be opened: {exc}") from exc

    def read(self, size: int, timeout: Optional[float] = None) -> bytes:
        """Wait for data and return up to ``size`` bytes of what has arrived."""
        if size <= 0:
            raise ValueError("read size must be positive")
        self._port.timeout = self.timeout if timeout is None else timeout
        try:
            first = self._port.read(1)
            if not first:
                raise TransportError(errno.ETIMEDOUT, f"no data from {self.port_name}")
            waiting = min(self._port.in_waiting, size - 1)
            rest = self._port.read(waiting) if waiting else b""
        except serial.SerialException as exc:
            raise TransportError(f"read from {self.port_name} failed: {exc}") from exc
        return first + rest

    def write(self, data: bytes) -> int:
        """Send all of ``data``; return the number of bytes sent."""
        try:
            written = self._port.write(bytes(data))
            self._port.flush()
        except serial.SerialException as exc:
            raise TransportError(f"write to {self.port_name} failed: {exc}") from exc
        return len(data) if written is None else written

    def close(self) -> None:
        self._port.close()

    def __enter__(self) -> "SerialChannel":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class TcpChannel:
    """A TCP connection to a module bridged over the network."""

    def __init__(self, host: str, port: int, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        logger.debug("tcp_host = %s, tcp_port = %d", host, port)
        try:
            self._sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as exc:
            raise TransportError(f"could not connect to {host}:{port}: {exc}") from exc

    def read(self, size: int, timeout: Optional[float] = None) -> bytes:
        """Wait for data and return up to ``size`` bytes of what has arrived."""
        if size <= 0:
            raise ValueError("read size must be positive")
        self._sock.settimeout(self.timeout if timeout is None else timeout)
        try:
            data = self._sock.recv(size)
        except socket.timeout as exc:
            raise TransportError(errno.ETIMEDOUT, f"no data from {self.host}:{self.port}") from exc
        except OSError as exc:
            raise TransportError(f"read from {self.host}:{self.port} failed: {exc}") from exc
        if not data:
            raise TransportError(f"connection to {self.host}:{self.port} closed")
        return data

    def write(self, data: bytes) -> int:
        """Send all of ``data``; return the number of bytes sent."""
        data = bytes(data)
        try:
            self._sock.sendall(data)
        except OSError as exc:
            raise TransportError(f"write to {self.host}:{self.port} failed: {exc}") from exc
        return len(data)

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "TcpChannel":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def open_channel(
    port_name: str, timeout: float = DEFAULT_TIMEOUT
) -> Union[SerialChannel, TcpChannel]:
    """Open a serial device (``/dev/tty...``) or a TCP address (``host:port``)."""
    if port_name.startswith("/"):
        if not os.access(port_name, os.R_OK):
            raise TransportError(errno.ENOENT, f"port {port_name} is not accessible")
        if not port_name.startswith("/dev/tty"):
            raise TransportError(f"unsupported port {port_name}")
        return SerialChannel(port_name, timeout)
    host, port = parse_tcp_address(port_name)
    return TcpChannel(host, port, timeout)