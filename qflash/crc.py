"""Reflected CRC-16 (polynomial 0x8408) as used by HDLC framing."""

from __future__ import annotations

SEED = 0xFFFF
POLYNOMIAL = 0x8408


def _build_table() -> tuple[int, ...]:
    table = []
    for value in range(256):
        crc = value
        for _ in range(8):
            crc = (crc >> 1) ^ POLYNOMIAL if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_TABLE = _build_table()


def crc16_l(data: bytes, bits: int | None = None) -> int:
    """Compute the CRC over the first ``bits`` bits of ``data``.

    ``bits`` defaults to the whole buffer. Whole bytes go through the table;
    a trailing partial byte is folded in bit by bit.
    """
    data = bytes(data)
    if bits is None:
        bits = len(data) * 8
    if bits < 0:
        raise ValueError("bit count must not be negative")
    whole, rest = divmod(bits, 8)
    needed = whole + (1 if rest else 0)
    if needed > len(data):
        raise ValueError("bit count exceeds the data length")

    crc = SEED
    for byte in data[:whole]:
        crc = _TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)

    if rest:
        value = data[whole] << 8
        for _ in range(rest):
            if (crc ^ value) & 0x01:
                crc = (crc >> 1) ^ POLYNOMIAL
            else:
                crc >>= 1
            value >>= 1

    return ~crc & 0xFFFF