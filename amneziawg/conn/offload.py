"""Coalescing of outgoing datagrams (GSO) and splitting of received ones (GRO)."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from amneziawg.conn.base import UDP_SEGMENT_MAX_DATAGRAMS
from amneziawg.conn.endpoint import StdNetEndpoint, src_control

# Exceeding these values results in EMSGSIZE.
MAX_IPV4_PAYLOAD_LEN = (1 << 16) - 1 - 20 - 8
MAX_IPV6_PAYLOAD_LEN = (1 << 16) - 1 - 8

SetGSO = Callable[[bytes, int], bytes]
GetGSO = Callable[[bytes], int]
BufferLike = Union[bytes, bytearray, memoryview, "tuple[bytes, int]"]


@dataclass
class Message:
    """One datagram slot for batched reads and writes."""

    buffer: bytearray = field(default_factory=bytearray)
    n: int = 0
    nn: int = 0
    oob: bytes = b""
    addr: Any = None
    capacity: Optional[int] = None  # None means unbounded


class SplitOverflowError(RuntimeError):
    """Raised when split datagrams do not fit into the message slots."""

    def __init__(self, n: int) -> None:
        super().__init__("splitting coalesced packet resulted in overflow")
        self.n = n


def _unpack(item: BufferLike) -> tuple[bytes, Optional[int]]:
    if isinstance(item, tuple):
        data, capacity = item
        return bytes(data), capacity
    return bytes(item), None


def coalesce_messages(
    addr: Any,
    endpoint: StdNetEndpoint,
    bufs: Sequence[BufferLike],
    msgs: list[Message],
    set_gso: SetGSO,
) -> int:
    """Pack ``bufs`` into ``msgs`` as GSO batches; return the messages used.

    A buffer may be given as ``(data, capacity)`` to limit how much can be
    appended to it; plain bytes have no capacity limit.
    """
    base = -1
    gso_size = 0
    dgram_count = 0
    end_batch = False
    max_payload = MAX_IPV6_PAYLOAD_LEN if endpoint.dst_ip().version == 6 else MAX_IPV4_PAYLOAD_LEN
    last = len(bufs) - 1
    for i, item in enumerate(bufs):
        data, capacity = _unpack(item)
        if i > 0:
            msg = msgs[base]
            before = len(msg.buffer)
            free = float("inf") if msg.capacity is None else msg.capacity - before
            if (
                len(data) + before <= max_payload
                and len(data) <= gso_size
                and len(data) <= free
                and dgram_count < UDP_SEGMENT_MAX_DATAGRAMS
                and not end_batch
            ):
                msg.buffer.extend(data)
                if i == last:
                    msg.oob = set_gso(msg.oob, gso_size)
                dgram_count += 1
                if len(data) < gso_size:
                    # A short tail packet is legal but must end the batch.
                    end_batch = True
                continue
        if dgram_count > 1:
            msgs[base].oob = set_gso(msgs[base].oob, gso_size)
        end_batch = False
        base += 1
        gso_size = len(data)
        msg = msgs[base]
        msg.oob = src_control(endpoint)
        msg.buffer = bytearray(data)
        msg.capacity = capacity
        msg.addr = addr
        dgram_count = 1
    return base + 1


def split_coalesced_messages(
    msgs: list[Message], first_msg_at: int, get_gso: GetGSO
) -> int:
    """Split GRO datagrams from ``first_msg_at`` on into slots from 0; return count."""
    n = 0
    for i in range(first_msg_at, len(msgs)):
        msg = msgs[i]
        if msg.n == 0:
            return n
        gso_size = get_gso(msg.oob[:msg.nn])
        total = msg.n
        start = 0
        end = total
        num_to_split = 1
        if gso_size > 0:
            num_to_split = (total + gso_size - 1) // gso_size
            end = gso_size
        source = bytes(msg.buffer[:total])
        for _ in range(num_to_split):
            if n > i:
                raise SplitOverflowError(n)
            dst = msgs[n]
            chunk = source[start:end][: len(dst.buffer)]
            dst.buffer[: len(chunk)] = chunk
            dst.n = len(chunk)
            dst.addr = msg.addr
            start = end
            end = min(end + gso_size, total)
            n += 1
        if i != n - 1:
            msg.n = 0
    return n