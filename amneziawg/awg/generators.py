"""Byte generators used to build tagged junk packets."""

from __future__ import annotations

import os
import queue
import random
import re
import threading
import time
from abc import ABC, abstractmethod

MAX_RANDOM_PACKET_SIZE = 1000
MAX_WAIT_TIMEOUT_MS = 5000

_UINT64_MASK = (1 << 64) - 1
_INT_RE = re.compile(r"[+-]?[0-9]+")
_HEX_RE = re.compile(r"[0-9a-fA-F]*")


class GeneratorError(ValueError):
    """Raised when a generator parameter is invalid."""


class PacketCounter:
    """A thread-safe unsigned 64-bit counter of sent junk packets."""

    def __init__(self, value: int = 0) -> None:
        self._value = value & _UINT64_MASK
        self._lock = threading.Lock()

    def load(self) -> int:
        with self._lock:
            return self._value

    def store(self, value: int) -> None:
        with self._lock:
            self._value = value & _UINT64_MASK

    def add(self, delta: int) -> int:
        with self._lock:
            self._value = (self._value + delta) & _UINT64_MASK
            return self._value

    def inc(self) -> int:
        return self.add(1)


packet_counter = PacketCounter()


class WaitResponse:
    """Lets a generator block until a response has been received."""

    def __init__(self) -> None:
        self._channel: queue.Queue[None] = queue.Queue(maxsize=1)
        self._should_wait = threading.Event()

    @property
    def should_wait(self) -> bool:
        return self._should_wait.is_set()

    def notify(self) -> None:
        """Signal that a response arrived, waking one waiter."""
        self._channel.put(None)

    def wait(self) -> None:
        """Mark that a response is awaited and block until notified."""
        self._should_wait.set()
        self._channel.get()
        self._should_wait.clear()


wait_response = WaitResponse()


class Generator(ABC):
    """Produces a piece of a junk packet."""

    @abstractmethod
    def generate(self) -> bytes:
        """Return the bytes for this piece."""

    @abstractmethod
    def size(self) -> int:
        """Return the number of bytes this piece contributes."""


class BytesGenerator(Generator):
    """Emits a fixed byte string."""

    def __init__(self, value: bytes) -> None:
        self._value = bytes(value)

    def generate(self) -> bytes:
        return self._value

    def size(self) -> int:
        return len(self._value)


class RandomPacketGenerator(Generator):
    """Emits a fixed number of random bytes."""

    def __init__(self, size: int, rng: random.Random | None = None) -> None:
        self._size = size
        self._rng = rng if rng is not None else random.Random(os.urandom(32))
        self._lock = threading.Lock()

    def generate(self) -> bytes:
        with self._lock:
            return self._rng.randbytes(self._size)

    def size(self) -> int:
        return self._size


class TimestampGenerator(Generator):
    """Emits the current Unix time as 8 big-endian bytes."""

    def generate(self) -> bytes:
        return (int(time.time()) & _UINT64_MASK).to_bytes(8, "big")

    def size(self) -> int:
        return 8


class WaitTimeoutGenerator(Generator):
    """Sleeps for a fixed time and emits nothing."""

    def __init__(self, timeout: float) -> None:
        self.timeout = max(0.0, timeout)

    def generate(self) -> bytes:
        time.sleep(self.timeout)
        return b""

    def size(self) -> int:
        return 0


class PacketCounterGenerator(Generator):
    """Emits the packet counter as 8 big-endian bytes."""

    def __init__(self, counter: PacketCounter | None = None) -> None:
        self._counter = counter if counter is not None else packet_counter

    def generate(self) -> bytes:
        return self._counter.load().to_bytes(8, "big")

    def size(self) -> int:
        return 8


class WaitResponseGenerator(Generator):
    """Blocks until a response is signalled and emits nothing."""

    def __init__(self, waiter: WaitResponse | None = None) -> None:
        self._waiter = waiter if waiter is not None else wait_response

    def generate(self) -> bytes:
        self._waiter.wait()
        return b""

    def size(self) -> int:
        return 0


def _atoi(param: str, what: str) -> int:
    if not _INT_RE.fullmatch(param):
        raise GeneratorError(f"{what} parse int: invalid syntax: {param!r}")
    return int(param)


def hex_to_bytes(hex_str: str) -> bytes:
    """Decode a hex string with an optional 0x prefix, padding odd lengths."""
    for prefix in ("0x", "0X"):
        if hex_str.startswith(prefix):
            hex_str = hex_str[len(prefix):]
    if len(hex_str) % 2:
        hex_str = "0" + hex_str
    if not _HEX_RE.fullmatch(hex_str):
        raise GeneratorError(f"invalid hex string: {hex_str!r}")
    return bytes.fromhex(hex_str)


def new_bytes_generator(param: str) -> BytesGenerator:
    if not (param.startswith("0x") or param.startswith("0X")):
        raise GeneratorError(f"not correct hex: {param}")
    try:
        value = hex_to_bytes(param)
    except GeneratorError as exc:
        raise GeneratorError(f"hexToBytes: {exc}") from exc
    return BytesGenerator(value)


def new_random_packet_generator(param: str) -> RandomPacketGenerator:
    size = _atoi(param, "random packet")
    if size > MAX_RANDOM_PACKET_SIZE:
        raise GeneratorError("random packet size must be less than 1000")
    if size < 0:
        raise GeneratorError(f"random packet size must not be negative: {size}")
    return RandomPacketGenerator(size)


def new_timestamp_generator(param: str) -> TimestampGenerator:
    if param:
        raise GeneratorError(f"timestamp param needs to be empty: {param}")
    return TimestampGenerator()


def new_wait_timeout_generator(param: str) -> WaitTimeoutGenerator:
    timeout = _atoi(param, "timeout")
    if timeout > MAX_WAIT_TIMEOUT_MS:
        raise GeneratorError("timeout must be less than 5000ms")
    return WaitTimeoutGenerator(timeout / 1000)


def new_packet_counter_generator(param: str) -> PacketCounterGenerator:
    if param:
        raise GeneratorError(f"packet counter param needs to be empty: {param}")
    return PacketCounterGenerator()


def new_wait_response_generator(param: str) -> WaitResponseGenerator:
    if param:
        raise GeneratorError(f"wait response param needs to be empty: {param}")
    return WaitResponseGenerator()