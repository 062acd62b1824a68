"""Core interfaces shared by all network binds and endpoints."""

from __future__ import annotations

import functools
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from ipaddress import IPv4Address, IPv6Address
from typing import Optional, Union

IDEAL_BATCH_SIZE = 128  # maximum number of packets handled per read and write

# Hard limit on datagrams coalesced into one UDP_SEGMENT send.
UDP_SEGMENT_MAX_DATAGRAMS = 64

IPAddress = Union[IPv4Address, IPv6Address]

# A receive function fills buffers, sizes and endpoints and returns how many
# of them are to be evaluated.
ReceiveFunc = Callable[[list, list, list], int]


class BindAlreadyOpenError(RuntimeError):
    """Raised when opening a bind that is already open."""

    def __init__(self, message: str = "bind is already open") -> None:
        super().__init__(message)


class WrongEndpointTypeError(TypeError):
    """Raised when an endpoint does not belong to the bind it is used with."""

    def __init__(
        self, message: str = "endpoint type does not correspond with bind type"
    ) -> None:
        super().__init__(message)


class Endpoint(ABC):
    """Source and destination addresses cached for a peer."""

    @abstractmethod
    def clear_src(self) -> None:
        """Forget the cached source address."""

    @abstractmethod
    def src_to_string(self) -> str:
        """Return the local source address."""

    @abstractmethod
    def dst_to_string(self) -> str:
        """Return the destination address as ``ip:port``."""

    @abstractmethod
    def dst_to_bytes(self) -> bytes:
        """Return the destination in binary form, for cookie calculations."""

    @abstractmethod
    def dst_ip(self) -> Optional[IPAddress]:
        """Return the destination IP address."""

    @abstractmethod
    def src_ip(self) -> Optional[IPAddress]:
        """Return the source IP address, or None when unknown."""


class Bind(ABC):
    """Listens on a port for both IPv4 and IPv6 UDP traffic."""

    @abstractmethod
    def open(self, port: int) -> tuple[list[ReceiveFunc], int]:
        """Start listening; return the receive functions and the actual port."""

    @abstractmethod
    def close(self) -> None:
        """Stop listening."""

    @abstractmethod
    def set_mark(self, mark: int) -> None:
        """Set the firewall mark of outgoing packets."""

    @abstractmethod
    def send(self, bufs: Sequence[bytes], endpoint: Endpoint) -> None:
        """Send packets to ``endpoint``."""

    @abstractmethod
    def parse_endpoint(self, s: str) -> Endpoint:
        """Create an endpoint from a string."""

    @abstractmethod
    def batch_size(self) -> int:
        """Return the number of buffers handled per receive or send."""


_SKIPPED_PARTS = ("<locals>", "<lambda>")


def pretty_name(fn: Callable) -> str:
    """Return a short name for a receive function: ``v4``, ``v6`` or its name."""
    target = fn
    while isinstance(target, functools.partial):
        target = target.func
    target = getattr(target, "__func__", target)
    name = getattr(target, "__qualname__", "") or getattr(target, "__name__", "")
    parts = [part for part in name.split(".") if part and part not in _SKIPPED_PARTS]
    name = parts[-1] if parts else ""
    if not name:
        return hex(id(fn))
    if name.endswith("IPv4") or name.lower().endswith("ipv4"):
        return "v4"
    if name.endswith("IPv6") or name.lower().endswith("ipv6"):
        return "v6"
    return name