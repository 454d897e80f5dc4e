import pytest

from qflash.crc import crc16_l


def test_standard_check_value():
    assert crc16_l(b"123456789") == 0x906E


def test_empty_input_is_complement_of_seed():
    assert crc16_l(b"") == 0x0000


def test_default_bits_covers_whole_buffer():
    data = b"\x4b\x65\x01\x00"
    assert crc16_l(data) == crc16_l(data, len(data) * 8)


def test_prefix_bits_select_prefix_bytes():
    data = b"\x01\x02\x03\x04\x05"
    assert crc16_l(data, 24) == crc16_l(data[:3])


def test_result_fits_sixteen_bits():
    for size in range(0, 40):
        value = crc16_l(bytes(range(size)))
        assert 0 <= value <= 0xFFFF


def test_appending_little_endian_crc_gives_residue():
    data = b"streaming download"
    crc = crc16_l(data)
    framed = data + crc.to_bytes(2, "little")
    assert crc16_l(framed) == crc16_l(b"any" + crc16_l(b"any").to_bytes(2, "little"))


def test_changed_byte_changes_crc():
    assert crc16_l(b"\x00\x01") != crc16_l(b"\x00\x02") or False
    assert crc16_l(b"\x00\x01") == crc16_l(bytearray(b"\x00\x01"))


def test_too_many_bits_rejected():
    with pytest.raises(ValueError):
        crc16_l(b"\x00", 9)


def test_negative_bits_rejected():
    with pytest.raises(ValueError):
        crc16_l(b"\x00", -1)