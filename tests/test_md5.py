import hashlib

import pytest

from qflash.md5 import Md5, md5sum


def test_empty_digest():
    assert Md5().hexdigest() == "d41d8cd98f00b204e9800998ecf8427e"


def test_abc_digest():
    assert Md5(b"abc").hexdigest() == "900150983cd24fb0d6963f7d28e17f72"


@pytest.mark.parametrize("size", [0, 1, 55, 56, 57, 63, 64, 65, 119, 120, 128, 1000])
def test_matches_reference_at_block_boundaries(size):
    data = bytes((i * 7 + 3) % 256 for i in range(size))
    assert Md5(data).digest() == hashlib.md5(data).digest()


def test_incremental_equals_one_shot():
    data = bytes(range(256)) * 5
    hasher = Md5()
    for start in range(0, len(data), 37):
        hasher.update(data[start:start + 37])
    assert hasher.digest() == Md5(data).digest()


def test_digest_does_not_consume_state():
    hasher = Md5(b"hello ")
    first = hasher.digest()
    assert hasher.digest() == first
    hasher.update(b"world")
    assert hasher.digest() == hashlib.md5(b"hello world").digest()


def test_digest_length_and_hex_consistency():
    hasher = Md5(b"firmware")
    assert len(hasher.digest()) == 16
    assert hasher.hexdigest() == hasher.digest().hex()


def test_md5sum_file(tmp_path):
    data = b"modem image contents\n" * 50
    path = tmp_path / "image.bin"
    path.write_bytes(data)
    digest, count = md5sum(path)
    assert count == len(data)
    assert digest == hashlib.md5(data).digest()


def test_md5sum_missing_file(tmp_path):
    with pytest.raises(OSError):
        md5sum(tmp_path / "absent.bin")