import errno
import sys

import pytest

from amneziawg.conn.base import (
    IDEAL_BATCH_SIZE,
    BindAlreadyOpenError,
    WrongEndpointTypeError,
    pretty_name,
)
from amneziawg.conn.bindtest import ChannelEndpoint
from amneziawg.conn.endpoint import StdNetEndpoint
from amneziawg.conn.stdbind import (
    ReceiverCreator,
    StdNetBind,
    UDPGSODisabledError,
    default_bind,
)


@pytest.fixture
def bind():
    b = StdNetBind()
    yield b
    b.close()


def _receive_packets(fn, count, batch):
    bufs = [bytearray(2048) for _ in range(batch)]
    sizes = [0] * batch
    eps = [None] * batch
    packets = []
    endpoints = []
    while len(packets) < count:
        n = fn(bufs, sizes, eps)
        for i in range(n):
            if sizes[i]:
                packets.append(bytes(bufs[i][: sizes[i]]))
                endpoints.append(eps[i])
    return packets, endpoints


def _send(b, bufs, ep):
    try:
        b.send(bufs, ep)
    except UDPGSODisabledError as exc:
        assert exc.retry_err is None


def test_receive_func_after_close_raises():
    b = StdNetBind()
    fns, _ = b.open(0)
    b.close()
    bufs = [bytearray(1)]
    sizes = [0]
    eps = [None]
    for fn in fns:
        with pytest.raises(OSError) as info:
            fn(bufs, sizes, eps)
        assert info.value.errno == errno.EBADF


def test_open_twice_raises(bind):
    bind.open(0)
    with pytest.raises(BindAlreadyOpenError):
        bind.open(0)


def test_reopen_after_close():
    b = StdNetBind()
    _, port1 = b.open(0)
    b.close()
    fns, port2 = b.open(0)
    b.close()
    assert port1 > 0 and port2 > 0
    assert len(fns) >= 1


def test_receive_functions_have_pretty_names(bind):
    fns, _ = bind.open(0)
    names = [pretty_name(fn) for fn in fns]
    assert names[0] == "v4"
    assert set(names) <= {"v4", "v6"}


def test_loopback_send_and_receive():
    a, b = StdNetBind(), StdNetBind()
    try:
        _, port_a = a.open(0)
        fns_b, port_b = b.open(0)
        _send(a, [b"hello"], a.parse_endpoint(f"127.0.0.1:{port_b}"))
        packets, endpoints = _receive_packets(fns_b[0], 1, b.batch_size())
        assert packets == [b"hello"]
        assert endpoints[0].dst_to_string() == f"127.0.0.1:{port_a}"
    finally:
        a.close()
        b.close()


def test_loopback_multiple_packets_arrive_separately():
    a, b = StdNetBind(), StdNetBind()
    try:
        a.open(0)
        fns_b, port_b = b.open(0)
        _send(a, [b"ab", b"cd", b"ef"], a.parse_endpoint(f"127.0.0.1:{port_b}"))
        packets, _ = _receive_packets(fns_b[0], 3, b.batch_size())
        assert sorted(packets) == [b"ab", b"cd", b"ef"]
    finally:
        a.close()
        b.close()


def test_send_when_closed_raises_afnosupport(bind):
    with pytest.raises(OSError) as info:
        bind.send([b"x"], bind.parse_endpoint("127.0.0.1:9"))
    assert info.value.errno == errno.EAFNOSUPPORT


def test_send_wrong_endpoint_type(bind):
    bind.open(0)
    with pytest.raises(WrongEndpointTypeError):
        bind.send([b"x"], ChannelEndpoint(1))


def test_parse_endpoint(bind):
    ep = bind.parse_endpoint("[::1]:51820")
    assert isinstance(ep, StdNetEndpoint)
    assert ep.port == 51820
    assert ep.dst_to_string() == "[::1]:51820"
    with pytest.raises(ValueError):
        bind.parse_endpoint("not an endpoint")


def test_batch_size(bind):
    expected = IDEAL_BATCH_SIZE if sys.platform.startswith(("linux", "android")) else 1
    assert bind.batch_size() == expected


def test_peek_socket_fd(bind):
    bind.open(0)
    assert bind.peek_socket_fd4() >= 0
    bind.close()
    with pytest.raises(OSError):
        bind.peek_socket_fd4()
    with pytest.raises(OSError):
        bind.peek_socket_fd6()


def test_receiver_creator_used_for_ipv4():
    class Recording(ReceiverCreator):
        def __init__(self):
            self.calls = []

            def custom_ipv4(bufs, sizes, eps):
                return 0

            self.fn = custom_ipv4

        def create_ipv4_receiver(self, sock, rx_offload):
            self.calls.append((sock.getsockname()[1], rx_offload))
            return self.fn

    creator = Recording()
    b = StdNetBind(receiver_creator=creator)
    try:
        fns, port = b.open(0)
        assert fns[0] is creator.fn
        assert len(creator.calls) == 1
        assert creator.calls[0][0] == port
        assert creator.calls[0][1] in (True, False)
    finally:
        b.close()


def test_udp_gso_disabled_error():
    cause = OSError(errno.EIO, "io")
    err = UDPGSODisabledError("127.0.0.1:1", cause)
    assert str(err).startswith("disabled UDP GSO on 127.0.0.1:1, NIC(s)")
    assert err.retry_err is cause
    assert err.on_laddr == "127.0.0.1:1"


def test_default_bind_is_std_bind():
    b = default_bind()
    try:
        fns, port = b.open(0)
        assert isinstance(b, StdNetBind)
        assert port > 0
        assert len(fns) in (1, 2)
    finally:
        b.close()


def test_set_mark_on_closed_bind_is_noop(bind):
    bind.set_mark(0)
    with pytest.raises(OSError):
        bind.peek_socket_fd4()