import ipaddress

import pytest

from amneziawg.conn.base import WrongEndpointTypeError
from amneziawg.conn.bindtest import (
    BindClosedError,
    ChannelEndpoint,
    new_channel_binds,
)


def receive_one(fn, size=64):
    bufs = [bytearray(size)]
    sizes = [0]
    eps = [None]
    n = fn(bufs, sizes, eps)
    return n, bytes(bufs[0][: sizes[0]]), eps[0]


def test_endpoint_strings_and_bytes():
    ep = ChannelEndpoint(7)
    assert ep.dst_to_string() == "127.0.0.1:7"
    assert ep.dst_to_bytes() == bytes([7])
    assert ep.src_to_string() == ""
    assert ep.src_ip() is None
    assert ep.dst_ip() == ipaddress.IPv4Address("127.0.0.1")


def test_open_returns_two_funcs_and_a_source_port():
    a, b = new_channel_binds()
    fns, port = a.open(0)
    assert len(fns) == 2
    assert port in (a.source4.value, a.source6.value)
    assert a.source4 == b.target4
    assert a.source6 == b.target6


def test_send_v4_reaches_other_side():
    a, b = new_channel_binds()
    a.open(0)
    fns, _ = b.open(0)
    a.send([b"hello"], a.target4)
    n, data, ep = receive_one(fns[0])
    assert n == 1
    assert data == b"hello"
    assert ep == b.target6


def test_send_v6_reaches_other_side():
    a, b = new_channel_binds()
    fns, _ = a.open(0)
    b.open(0)
    b.send([b"one", b"two"], b.target6)
    assert receive_one(fns[1])[1] == b"one"
    assert receive_one(fns[1])[1] == b"two"


def test_receive_truncates_to_buffer():
    a, b = new_channel_binds()
    a.open(0)
    fns, _ = b.open(0)
    a.send([b"abcdef"], a.target4)
    n, data, _ = receive_one(fns[0], size=3)
    assert data == b"abc"


@pytest.mark.parametrize("index", [0, 1])
def test_receive_after_close_raises(index):
    a, _ = new_channel_binds()
    fns, _ = a.open(0)
    assert len(fns) == 2
    a.close()
    bufs = [bytearray(8)]
    sizes = [0]
    eps = [None]
    with pytest.raises(BindClosedError):
        fns[index](bufs, sizes, eps)
    assert sizes == [0]
    assert eps == [None]


def test_send_after_close_raises():
    a, _ = new_channel_binds()
    a.open(0)
    a.close()
    a.close()
    with pytest.raises(BindClosedError):
        a.send([b"x"], a.target4)


def test_send_to_unknown_endpoint_raises():
    a, _ = new_channel_binds()
    a.open(0)
    with pytest.raises(ValueError, match="invalid argument"):
        a.send([b"x"], ChannelEndpoint(99))


def test_send_wrong_endpoint_type():
    a, _ = new_channel_binds()
    a.open(0)
    with pytest.raises(WrongEndpointTypeError):
        a.send([b"x"], object())


def test_parse_endpoint_uses_port():
    a, _ = new_channel_binds()
    assert a.parse_endpoint("127.0.0.1:3") == ChannelEndpoint(3)
    with pytest.raises(ValueError):
        a.parse_endpoint("not an endpoint")


def test_batch_size_and_mark():
    a, _ = new_channel_binds()
    a.set_mark(5)
    assert a.batch_size() == 1