"""Obfuscation settings, magic header limits and junk creation."""

from __future__ import annotations

import os
import random
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field

from amneziawg.awg.handshake import SpecialHandshakeHandler

_UINT32_MAX = 0xFFFFFFFF
_UINT_RE = re.compile(r"[0-9]+")


class ProtocolConfigError(ValueError):
    """Raised when obfuscation settings are invalid."""


@dataclass
class ASecConfig:
    """Settings for junk packets, header junk and magic headers."""

    is_set: bool = False
    junk_packet_count: int = 0
    junk_packet_min_size: int = 0
    junk_packet_max_size: int = 0
    init_header_junk_size: int = 0
    response_header_junk_size: int = 0
    cookie_reply_header_junk_size: int = 0
    transport_header_junk_size: int = 0
    init_packet_magic_header: int = 0
    response_packet_magic_header: int = 0
    underload_packet_magic_header: int = 0
    transport_packet_magic_header: int = 0


@dataclass(frozen=True)
class Limit:
    """An inclusive range of magic header values for one message type."""

    min: int
    max: int
    header_type: int

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise ProtocolConfigError(
                f"min ({self.min}) cannot be greater than max ({self.max})"
            )


def _parse_uint32(text: str, what: str, key: str) -> int:
    if not _UINT_RE.fullmatch(text):
        raise ProtocolConfigError(f"parse {what} key: {key}; value: {text}; invalid syntax")
    value = int(text)
    if value > _UINT32_MAX:
        raise ProtocolConfigError(f"parse {what} key: {key}; value: {text}; value out of range")
    return value


def parse_magic_header(key: str, value: str, default_header_type: int) -> Limit:
    """Parse a ``min-max`` magic header range."""
    limits = value.split("-")
    if len(limits) != 2:
        raise ProtocolConfigError(f"invalid format for key: {key}; {value}")
    low = _parse_uint32(limits[0], "min", key)
    high = _parse_uint32(limits[1], "max", key)
    try:
        return Limit(low, high, default_header_type)
    except ProtocolConfigError as exc:
        raise ProtocolConfigError(f"new limit key: {key}; value: {value}; {exc}") from exc


def sort_limits(limits: Iterable[Limit]) -> list[Limit]:
    """Return the limits ordered by their lower bound."""
    return sorted(limits, key=lambda limit: limit.min)


class JunkCreator:
    """Creates random junk packets and header junk."""

    def __init__(self, config: ASecConfig, rng: random.Random | None = None) -> None:
        self.config = config
        self._rng = rng if rng is not None else random.Random(os.urandom(32))
        self._lock = threading.Lock()

    def create_junk_packets(self) -> list[bytes]:
        """Return ``junk_packet_count`` packets of random size and content."""
        return [
            self.random_junk(self.random_packet_size())
            for _ in range(self.config.junk_packet_count)
        ]

    def random_packet_size(self) -> int:
        """Return a size in ``[junk_packet_min_size, junk_packet_max_size)``."""
        span = self.config.junk_packet_max_size - self.config.junk_packet_min_size
        if span <= 0:
            raise ProtocolConfigError(
                "junk packet max size must be greater than junk packet min size"
            )
        with self._lock:
            value = self._rng.getrandbits(64)
        return value % span + self.config.junk_packet_min_size

    def random_junk(self, size: int) -> bytes:
        with self._lock:
            return self._rng.randbytes(size)

    def append_junk(self, writer: bytearray, size: int) -> None:
        """Append ``size`` random bytes to ``writer``."""
        writer.extend(self.random_junk(size))


@dataclass
class Protocol:
    """Obfuscation state shared by a device."""

    asec_cfg: ASecConfig = field(default_factory=ASecConfig)
    is_asec_on: bool = False
    junk_creator: JunkCreator | None = None
    handshake_handler: SpecialHandshakeHandler = field(
        default_factory=SpecialHandshakeHandler
    )
    asec_lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.junk_creator is None:
            self.junk_creator = JunkCreator(self.asec_cfg)

    def create_init_header_junk(self) -> bytes:
        return self._create_header_junk(self.asec_cfg.init_header_junk_size)

    def create_response_header_junk(self) -> bytes:
        return self._create_header_junk(self.asec_cfg.response_header_junk_size)

    def create_cookie_reply_header_junk(self) -> bytes:
        return self._create_header_junk(self.asec_cfg.cookie_reply_header_junk_size)

    def create_transport_header_junk(self, packet_size: int) -> bytes:
        return self._create_header_junk(
            self.asec_cfg.transport_header_junk_size, packet_size
        )

    def _create_header_junk(self, junk_size: int, extra_size: int = 0) -> bytes:
        if junk_size == 0:
            return b""
        with self.asec_lock:
            buffer = bytearray()
            self.junk_creator.append_junk(buffer, junk_size)
        return bytes(buffer)