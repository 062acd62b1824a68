import ipaddress

import pytest

from amneziawg.conn.endpoint import StdNetEndpoint
from amneziawg.conn.offload import (
    Message,
    SplitOverflowError,
    coalesce_messages,
    split_coalesced_messages,
)


def mock_set_gso(control, gso_size):
    return gso_size.to_bytes(2, "little")


def mock_get_gso(control):
    if len(control) < 2:
        return 0
    return int.from_bytes(control[:2], "little")


@pytest.mark.parametrize(
    "bufs, want_lens, want_gso",
    [
        ([(b"\0", 1)], [1], [0]),
        ([(b"\0", 2), (b"\0", 1)], [2], [1]),
        ([(b"\0\0", 3), (b"\0", 1)], [3], [2]),
        ([(b"\0\0", 3), (b"\0", 1), (b"\0\0", 2)], [3, 2], [2, 0]),
        ([(b"\0\0", 4), (b"\0\0", 2), (b"\0\0", 2)], [4, 2], [2, 0]),
    ],
)
def test_coalesce_messages(bufs, want_lens, want_gso):
    addr = ("127.0.0.1", 1)
    ep = StdNetEndpoint(ipaddress.ip_address("127.0.0.1"), 1)
    msgs = [Message() for _ in bufs]
    got = coalesce_messages(addr, ep, bufs, msgs, mock_set_gso)
    assert got == len(want_lens)
    for i in range(got):
        assert msgs[i].addr is addr
        assert len(msgs[i].buffer) == want_lens[i]
        assert mock_get_gso(msgs[i].oob) == want_gso[i]


def new_msg(n, gso):
    return Message(
        buffer=bytearray((1 << 16) - 1),
        n=n,
        nn=2 if gso > 0 else 0,
        oob=gso.to_bytes(2, "little"),
    )


@pytest.mark.parametrize(
    "spec, want_num, want_lens, want_err",
    [
        ([(0, 0), (0, 0), (3, 1), (0, 0)], 3, [1, 1, 1, 0], False),
        ([(0, 0), (0, 0), (1, 0), (0, 0)], 1, [1, 0, 0, 0], False),
        ([(0, 0), (0, 0), (1, 0), (1, 0)], 2, [1, 1, 0, 0], False),
        ([(0, 0), (0, 0), (1, 0), (3, 1)], 4, [1, 1, 1, 1], False),
        ([(0, 0), (0, 0), (2, 1), (2, 1)], 4, [1, 1, 1, 1], False),
        ([(0, 0), (0, 0), (1, 0), (4, 1)], 4, [1, 1, 1, 1], True),
    ],
)
def test_split_coalesced_messages(spec, want_num, want_lens, want_err):
    msgs = [new_msg(n, gso) for n, gso in spec]
    if want_err:
        with pytest.raises(SplitOverflowError) as info:
            split_coalesced_messages(msgs, 2, mock_get_gso)
        got = info.value.n
    else:
        got = split_coalesced_messages(msgs, 2, mock_get_gso)
    assert got == want_num
    assert [m.n for m in msgs] == want_lens