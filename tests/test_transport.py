import socket
import struct
import threading

import pytest

from qflash.transport import (
    SerialChannel,
    TcpChannel,
    TransportError,
    find_ec20,
    find_usb_device,
    open_channel,
    parse_descriptors,
    parse_tcp_address,
)


def device_descriptor(vendor, product):
    return struct.pack("<BBHBBBBHHHBBBB", 18, 1, 0x0200, 0, 0, 0, 64, vendor, product, 0, 1, 2, 3, 1)


def config_descriptor(num_interfaces):
    return struct.pack("<BBHBBBBB", 9, 2, 32, num_interfaces, 1, 0, 0x80, 50)


def interface_descriptor(number):
    return struct.pack("<BBBBBBBBB", 9, 4, number, 0, 2, 0xFF, 0xFF, 0xFF, 0)


def endpoint_descriptor(address, attributes, packet_size):
    return struct.pack("<BBBBHB", 7, 5, address, attributes, packet_size, 0)


def edl_descriptors():
    return (
        device_descriptor(0x05C6, 0x9008)
        + config_descriptor(1)
        + interface_descriptor(0)
        + endpoint_descriptor(0x81, 0x02, 512)
        + endpoint_descriptor(0x01, 0x02, 512)
    )


def test_parse_edl_device():
    info = parse_descriptors(edl_descriptors())
    assert info is not None
    assert (info.id_vendor, info.id_product) == (0x05C6, 0x9008)
    assert info.num_interfaces == 1
    assert info.bulk_in == {0: 0x81}
    assert info.bulk_out == {0: 0x01}
    assert info.max_packet_size == {0: 512}


def test_parse_interrupt_endpoint_and_class_descriptor():
    data = (
        device_descriptor(0x2C7C, 0x0125)
        + config_descriptor(2)
        + interface_descriptor(1)
        + bytes([5, 0x24, 0, 0x10, 0x01])
        + endpoint_descriptor(0x83, 0x03, 16)
    )
    info = parse_descriptors(data)
    assert info is not None
    assert info.interrupt_endpoints == {1: 0x83}
    assert info.bulk_in == {}


def test_parse_rejects_other_vendor():
    assert parse_descriptors(device_descriptor(0x1234, 0x9008) + config_descriptor(1)) is None


def test_parse_rejects_unknown_descriptor():
    assert parse_descriptors(edl_descriptors() + bytes([3, 0x77, 0])) is None


def test_parse_rejects_truncated_and_empty():
    assert parse_descriptors(edl_descriptors()[:-2]) is None
    assert parse_descriptors(b"") is None


def make_usb_tree(root, payload):
    bus = root / "001"
    bus.mkdir()
    (bus / "002").write_bytes(payload)
    (bus / "notes").write_bytes(b"ignored")
    (root / "devices").mkdir()
    return bus / "002"


def test_find_usb_device(tmp_path):
    path = make_usb_tree(tmp_path, edl_descriptors())
    info = find_usb_device(tmp_path)
    assert info is not None
    assert info.path == str(path)
    assert info.id_product == 0x9008


def test_find_ec20(tmp_path):
    make_usb_tree(tmp_path, edl_descriptors())
    assert find_ec20(tmp_path) == (0x05C6, 0x9008, 1)


def test_find_ec20_without_device(tmp_path):
    make_usb_tree(tmp_path, device_descriptor(0x1234, 0x5678))
    assert find_usb_device(tmp_path) is None
    with pytest.raises(TransportError):
        find_ec20(tmp_path)


def test_find_usb_device_missing_base(tmp_path):
    assert find_usb_device(tmp_path / "absent") is None


def test_parse_tcp_address():
    assert parse_tcp_address("127.0.0.1:5000") == ("127.0.0.1", 5000)


@pytest.mark.parametrize("name", ["hostonly", "host:0", "host:70000", "host:abc"])
def test_parse_tcp_address_errors(name):
    with pytest.raises(TransportError):
        parse_tcp_address(name)


@pytest.fixture
def echo_server():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    port = server.getsockname()[1]

    def serve():
        conn, _ = server.accept()
        with conn:
            data = conn.recv(1024)
            if data:
                conn.sendall(data)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield port
    thread.join(timeout=2)
    server.close()


def test_tcp_round_trip(echo_server):
    with TcpChannel("127.0.0.1", echo_server, timeout=2) as channel:
        assert channel.write(b"<data/>") == 7
        assert channel.read(64) == b"<data/>"


def test_tcp_read_after_close_raises(echo_server):
    with TcpChannel("127.0.0.1", echo_server, timeout=2) as channel:
        channel.write(b"x")
        assert channel.read(1) == b"x"
        with pytest.raises(TransportError):
            channel.read(1)


def test_tcp_connect_refused():
    probe = socket.socket()
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    with pytest.raises(TransportError):
        TcpChannel("127.0.0.1", port, timeout=1)


def test_open_channel_tcp(echo_server):
    channel = open_channel(f"127.0.0.1:{echo_server}", timeout=2)
    try:
        assert isinstance(channel, TcpChannel)
        assert channel.port == echo_server
        channel.write(b"hi")
        assert channel.read(2) == b"hi"
    finally:
        channel.close()


def test_serial_loop_round_trip():
    with SerialChannel("loop://", timeout=1) as channel:
        assert channel.write(b"\x01\x00\x00\x00") == 4
        assert channel.read(16) == b"\x01\x00\x00\x00"


def test_serial_read_limited_to_size():
    with SerialChannel("loop://", timeout=1) as channel:
        channel.write(b"abcdef")
        assert channel.read(4) == b"abcd"
        assert channel.read(4) == b"ef"


def test_serial_read_timeout():
    with SerialChannel("loop://", timeout=0.1) as channel:
        with pytest.raises(TransportError):
            channel.read(8)


def test_serial_read_rejects_bad_size():
    with SerialChannel("loop://", timeout=0.1) as channel:
        with pytest.raises(ValueError):
            channel.read(0)


def test_open_channel_missing_tty():
    with pytest.raises(TransportError):
        open_channel("/dev/ttyDoesNotExist99")


def test_open_channel_bad_name():
    with pytest.raises(TransportError):
        open_channel("nocolonhere")