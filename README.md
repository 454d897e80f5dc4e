# qflash

qflash provides building blocks for talking to a Qualcomm-based cellular
module in emergency download mode (USB `05c6:9008`). Its main part is the host
side of the Sahara protocol. That code loads the flash programmer image into
the target and can save the memory regions a target offers in memory-debug
mode. The package also provides Sahara packet layouts, serial and TCP
channels, USB descriptor discovery, an MD5 digest and the reflected CRC-16.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `qflash.md5`
  - `Md5(data=b"")` is an incremental hasher with `update`, `digest` and
    `hexdigest`.
  - `md5sum(path)` returns `(digest, bytes_read)` for a file.
- `qflash.crc`
  - `crc16_l(data, bits=None)` computes the reflected CRC-16 (polynomial
    `0x8408`, seed `0xFFFF`) over the first `bits` bits of `data`, or over all
    of it by default.
- `qflash.packets` covers Sahara constants and packet layouts.
  - Enums: `CommandId`, `Status`, `Mode`, `ExecCommand`, `ImageType` and
    `State`.
  - Packet dataclasses: `Header`, `Hello`, `HelloResponse`, `ReadData`,
    `ReadData64`, `EndImageTx`, `Done`, `DoneResponse`, `Reset`,
    `ResetResponse`, `MemoryDebug` and `MemoryRead`. They provide `pack` or
    `unpack` according to the direction the packet travels.
  - `parse_memory_table(data, is_64bit)` decodes a RAM-dump table into
    `DebugEntry` items.
  - Malformed input raises `PacketError`.
- `qflash.transport`
  - `parse_descriptors(data)` walks raw USB descriptors.
  - `find_usb_device(base="/dev/bus/usb")` scans usbfs for a Quectel module
    or a Qualcomm emergency download device.
  - `find_ec20(base)` returns `(vendor_id, product_id, interface_count)`. It
    raises `TransportError` when no such device is present.
  - `open_channel(port_name, timeout)` returns a `SerialChannel` for a
    `/dev/tty...` path (115200 baud) or a `TcpChannel` for a `host:port`
    address. Both channels have `read`, `write` and `close`, and both work as
    context managers.
- `qflash.ramdump`
  - `MemoryDumper(channel, max_read)` reads a target's memory table and writes
    each listed region to a file named after it. If a read fails, it halves
    the read size, but not below 16 KiB.
  - `is_valid_memory_table` and `describe_throughput` are helpers.
- `qflash.sahara`
  - `find_programmer(directory)` picks the first file whose name starts with
    `prog`.
  - `SaharaClient(channel, firehose_dir, do_reset=True).run()` answers the
    target's Hello. It then serves the programmer segments the target requests
    and finishes once the programmer image (id 13) has been loaded or the
    target reports that all images are complete.
  - `sahara_main(firehose_dir, channel=None)` returns 0 on success and 1 on
    failure. When no channel is given, it opens `/dev/ttyUSB0`.

```python
from qflash.crc import crc16_l
from qflash.md5 import Md5

print(Md5(b"abc").hexdigest())
print(hex(crc16_l(b"123456789", 72)))
```

```python
from qflash.sahara import sahara_main
from qflash.transport import open_channel

with open_channel("/dev/ttyUSB0") as channel:
    status = sahara_main("/path/to/firmware/firehose", channel)
```

## What it does not do

- It has no command-line program. Everything is used from Python.
- It stops once the programmer has been loaded. It does not speak the
  Firehose XML protocol that comes next, so it does not erase partitions and
  does not write the images listed in a `rawprogram*.xml` file.
- USB support covers finding a device and reading its descriptors only. Data
  goes over a serial device node or a TCP connection, never through direct
  USB bulk transfers.