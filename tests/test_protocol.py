import random

import pytest

from amneziawg.awg.protocol import (
    ASecConfig,
    JunkCreator,
    Limit,
    Protocol,
    ProtocolConfigError,
    parse_magic_header,
    sort_limits,
)


def _config() -> ASecConfig:
    return ASecConfig(
        is_set=True,
        junk_packet_count=5,
        junk_packet_min_size=500,
        junk_packet_max_size=1000,
        init_header_junk_size=30,
        response_header_junk_size=40,
        init_packet_magic_header=123456,
        response_packet_magic_header=67543,
        underload_packet_magic_header=32345,
        transport_packet_magic_header=123123,
    )


@pytest.fixture
def creator() -> JunkCreator:
    return JunkCreator(_config())


def test_create_junk_packets_distinct(creator):
    packets = creator.create_junk_packets()
    assert len(packets) == 5
    assert len(set(packets)) == 5
    assert all(500 <= len(p) < 1000 for p in packets)


def test_create_junk_packets_zero_count():
    creator = JunkCreator(ASecConfig(junk_packet_count=0))
    assert creator.create_junk_packets() == []


def test_random_junk_differs(creator):
    first = creator.random_junk(10)
    second = creator.random_junk(10)
    assert len(first) == len(second) == 10
    assert first != second


def test_random_packet_size_in_range(creator):
    for _ in range(30):
        size = creator.random_packet_size()
        assert 500 <= size <= 1000


def test_random_packet_size_equal_bounds():
    creator = JunkCreator(ASecConfig(junk_packet_min_size=5, junk_packet_max_size=5))
    with pytest.raises(ProtocolConfigError):
        creator.random_packet_size()


def test_append_junk(creator):
    buffer = bytearray(b"apple")
    creator.append_junk(buffer, 30)
    assert len(buffer) == 5 + 30
    assert buffer[:5] == b"apple"


def test_seeded_creators_agree():
    a = JunkCreator(_config(), rng=random.Random(7))
    b = JunkCreator(_config(), rng=random.Random(7))
    assert a.random_junk(16) == b.random_junk(16)


def test_limit_rejects_min_above_max():
    with pytest.raises(ProtocolConfigError, match="cannot be greater"):
        Limit(10, 5, 1)


def test_parse_magic_header_valid():
    assert parse_magic_header("H1", "100-200", 1) == Limit(100, 200, 1)


@pytest.mark.parametrize(
    "value", ["100", "1-2-3", "a-2", "1-", "-1-2", "4294967296-4294967297", "5-3"]
)
def test_parse_magic_header_invalid(value):
    with pytest.raises(ProtocolConfigError):
        parse_magic_header("H1", value, 1)


def test_parse_magic_header_max_uint32():
    limit = parse_magic_header("H2", "4294967295-4294967295", 2)
    assert (limit.min, limit.max, limit.header_type) == (4294967295, 4294967295, 2)


def test_sort_limits():
    limits = [Limit(30, 40, 3), Limit(1, 2, 1), Limit(10, 20, 2)]
    assert [limit.header_type for limit in sort_limits(limits)] == [1, 2, 3]


def test_protocol_header_junk_sizes():
    protocol = Protocol(asec_cfg=_config())
    assert len(protocol.create_init_header_junk()) == 30
    assert len(protocol.create_response_header_junk()) == 40
    assert protocol.create_cookie_reply_header_junk() == b""
    assert protocol.create_transport_header_junk(100) == b""


def test_protocol_transport_header_junk():
    protocol = Protocol(asec_cfg=ASecConfig(transport_header_junk_size=12))
    assert len(protocol.create_transport_header_junk(1400)) == 12