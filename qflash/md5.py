"""MD5 message digest with incremental hashing and a file helper."""

from __future__ import annotations

import math
import struct
from os import PathLike
from typing import Union

_MASK = 0xFFFFFFFF
_BLOCK = 64
_INITIAL = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476)

_CONSTANTS = tuple(int(abs(math.sin(i + 1)) * 2**32) & _MASK for i in range(64))

_SHIFTS = (
    (7, 12, 17, 22) * 4
    + (5, 9, 14, 20) * 4
    + (4, 11, 16, 23) * 4
    + (6, 10, 15, 21) * 4
)

_INDICES = (
    tuple(range(16))
    + tuple((5 * i + 1) % 16 for i in range(16))
    + tuple((3 * i + 5) % 16 for i in range(16))
    + tuple((7 * i) % 16 for i in range(16))
)


def _f(x: int, y: int, z: int) -> int:
    return z ^ (x & (y ^ z))


def _g(x: int, y: int, z: int) -> int:
    return y ^ (z & (x ^ y))


def _h(x: int, y: int, z: int) -> int:
    return x ^ y ^ z


def _i(x: int, y: int, z: int) -> int:
    return (y ^ (x | (~z & _MASK))) & _MASK


_ROUNDS = (_f,) * 16 + (_g,) * 16 + (_h,) * 16 + (_i,) * 16


def _rotate_left(value: int, shift: int) -> int:
    value &= _MASK
    return ((value << shift) | (value >> (32 - shift))) & _MASK


def _compress(state: tuple[int, int, int, int], block: bytes) -> tuple[int, int, int, int]:
    words = struct.unpack("<16I", block)
    a, b, c, d = state
    for func, index, constant, shift in zip(_ROUNDS, _INDICES, _CONSTANTS, _SHIFTS):
        a = (b + _rotate_left(a + func(b, c, d) + words[index] + constant, shift)) & _MASK
        a, b, c, d = d, a, b, c
    return (
        (state[0] + a) & _MASK,
        (state[1] + b) & _MASK,
        (state[2] + c) & _MASK,
        (state[3] + d) & _MASK,
    )


class Md5:
    """Incremental MD5 hasher."""

    digest_size = 16
    block_size = _BLOCK

    def __init__(self, data: bytes = b"") -> None:
        self._state = _INITIAL
        self._buffer = b""
        self._length = 0
        if data:
            self.update(data)

    def update(self, data: bytes) -> None:
        """Feed more bytes into the hash."""
        data = bytes(data)
        self._length += len(data)
        pending = self._buffer + data
        full = len(pending) - len(pending) % _BLOCK
        for offset in range(0, full, _BLOCK):
            self._state = _compress(self._state, pending[offset:offset + _BLOCK])
        self._buffer = pending[full:]

    def digest(self) -> bytes:
        """Return the 16-byte digest of everything fed so far."""
        bit_length = (self._length * 8) & 0xFFFFFFFFFFFFFFFF
        padding = b"\x80" + b"\x00" * ((55 - len(self._buffer)) % _BLOCK)
        tail = self._buffer + padding + struct.pack("<Q", bit_length)
        state = self._state
        for offset in range(0, len(tail), _BLOCK):
            state = _compress(state, tail[offset:offset + _BLOCK])
        return struct.pack("<4I", *state)

    def hexdigest(self) -> str:
        """Return the digest as lower-case hexadecimal text."""
        return self.digest().hex()


def md5sum(path: Union[str, bytes, PathLike]) -> tuple[bytes, int]:
    """Hash a file; return its digest and the number of bytes read.

    Raises OSError when the file cannot be opened.
    """
    hasher = Md5()
    total = 0
    with open(path, "rb") as handle:
        while chunk := handle.read(256):
            hasher.update(chunk)
            total += len(chunk)
    return hasher.digest(), total