"""An in-memory pair of binds connected by queues, for testing."""

from __future__ import annotations

import ipaddress
import queue
import random
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Optional

from amneziawg.conn.base import (
    Bind,
    Endpoint,
    IPAddress,
    ReceiveFunc,
    WrongEndpointTypeError,
)
from amneziawg.conn.endpoint import parse_endpoint

QUEUE_SIZE = 8192
_POLL_INTERVAL = 0.01
_LOOPBACK = ipaddress.IPv4Address("127.0.0.1")


class BindClosedError(OSError):
    """Raised when using a bind that has been closed."""

    def __init__(self, message: str = "use of closed network connection") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ChannelEndpoint(Endpoint):
    """An endpoint identified by a small number."""

    value: int

    def clear_src(self) -> None:
        pass

    def src_to_string(self) -> str:
        return ""

    def dst_to_string(self) -> str:
        return f"127.0.0.1:{self.value}"

    def dst_to_bytes(self) -> bytes:
        return bytes([self.value & 0xFF])

    def dst_ip(self) -> IPAddress:
        return _LOOPBACK

    def src_ip(self) -> Optional[IPAddress]:
        return None


@dataclass(eq=False)
class ChannelBind(Bind):
    """One side of a pair of binds that pass packets through queues."""

    rx4: queue.Queue
    tx4: queue.Queue
    rx6: queue.Queue
    tx6: queue.Queue
    source4: ChannelEndpoint
    source6: ChannelEndpoint
    target4: ChannelEndpoint
    target6: ChannelEndpoint
    _close_signal: Optional[threading.Event] = field(default=None, init=False, repr=False)

    def _closed(self) -> bool:
        return self._close_signal is not None and self._close_signal.is_set()

    def open(self, port: int) -> tuple[list[ReceiveFunc], int]:
        self._close_signal = threading.Event()
        fns = [self._make_receive_func(self.rx4), self._make_receive_func(self.rx6)]
        source = self.source4 if random.getrandbits(1) == 0 else self.source6
        return fns, source.value

    def close(self) -> None:
        if self._close_signal is not None:
            self._close_signal.set()

    def batch_size(self) -> int:
        return 1

    def set_mark(self, mark: int) -> None:
        pass

    def _make_receive_func(self, channel: queue.Queue) -> ReceiveFunc:
        def receive(bufs: list, sizes: list, eps: list) -> int:
            while True:
                if self._closed():
                    raise BindClosedError()
                try:
                    packet = channel.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                break
            copied = min(len(bufs[0]), len(packet))
            bufs[0][:copied] = packet[:copied]
            sizes[0] = copied
            eps[0] = self.target6
            return 1

        return receive

    def send(self, bufs: Sequence[bytes], endpoint: Endpoint) -> None:
        if not isinstance(endpoint, ChannelEndpoint):
            raise WrongEndpointTypeError()
        for buf in bufs:
            if self._closed():
                raise BindClosedError()
            packet = bytes(buf)
            if endpoint == self.target4:
                self.tx4.put(packet)
            elif endpoint == self.target6:
                self.tx6.put(packet)
            else:
                raise ValueError("invalid argument")

    def parse_endpoint(self, s: str) -> ChannelEndpoint:
        return ChannelEndpoint(parse_endpoint(s).port)


def new_channel_binds() -> tuple[ChannelBind, ChannelBind]:
    """Return two binds wired to each other."""
    a_rx4: queue.Queue = queue.Queue(QUEUE_SIZE)
    b_rx4: queue.Queue = queue.Queue(QUEUE_SIZE)
    a_rx6: queue.Queue = queue.Queue(QUEUE_SIZE)
    b_rx6: queue.Queue = queue.Queue(QUEUE_SIZE)
    target_a4, target_b4 = ChannelEndpoint(1), ChannelEndpoint(2)
    target_a6, target_b6 = ChannelEndpoint(3), ChannelEndpoint(4)
    first = ChannelBind(
        rx4=a_rx4, tx4=b_rx4, rx6=a_rx6, tx6=b_rx6,
        source4=target_b4, source6=target_b6,
        target4=target_a4, target6=target_a6,
    )
    second = ChannelBind(
        rx4=b_rx4, tx4=a_rx4, rx6=b_rx6, tx6=a_rx6,
        source4=target_a4, source6=target_a6,
        target4=target_b4, target6=target_b6,
    )
    return first, second