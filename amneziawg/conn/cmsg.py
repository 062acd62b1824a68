"""Socket control messages (cmsghdr) and UDP GSO/GRO size handling."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass

_HEADER = struct.Struct("=Qii")
SIZEOF_CMSGHDR = _HEADER.size
_ALIGN = 8

SOL_UDP = 17
UDP_SEGMENT = 103
UDP_GRO = 104

SIZE_OF_GSO_DATA = 2


def _align(length: int) -> int:
    return (length + _ALIGN - 1) & ~(_ALIGN - 1)


def cmsg_len(length: int) -> int:
    """Return the header length value for ``length`` bytes of data."""
    return _align(SIZEOF_CMSGHDR) + length


def cmsg_space(length: int) -> int:
    """Return the buffer space one message with ``length`` data bytes takes."""
    return _align(SIZEOF_CMSGHDR) + _align(length)


GSO_CONTROL_SIZE = cmsg_space(SIZE_OF_GSO_DATA)


@dataclass(frozen=True)
class ControlMessage:
    level: int
    type: int
    data: bytes


def pack_control_message(level: int, type_: int, data: bytes) -> bytes:
    """Encode one control message, padded to its full space."""
    header = _HEADER.pack(cmsg_len(len(data)), level, type_)
    return (header + bytes(data)).ljust(cmsg_space(len(data)), b"\0")


def parse_control_messages(control: bytes) -> Iterator[ControlMessage]:
    """Yield each control message in ``control``; raise ValueError if malformed."""
    rem = bytes(control)
    while len(rem) > SIZEOF_CMSGHDR:
        length, level, type_ = _HEADER.unpack_from(rem)
        if length < SIZEOF_CMSGHDR or length > len(rem):
            raise ValueError(f"invalid control message length: {length}")
        yield ControlMessage(level, type_, rem[cmsg_len(0):length])
        rem = rem[_align(length):]


def get_gso_size(control: bytes) -> int:
    """Return the GRO segment size found in ``control``, or 0."""
    try:
        for msg in parse_control_messages(control):
            if (
                msg.level == SOL_UDP
                and msg.type == UDP_GRO
                and len(msg.data) >= SIZE_OF_GSO_DATA
            ):
                return int.from_bytes(msg.data[:SIZE_OF_GSO_DATA], "little" if struct.pack("=H", 1)[0] else "big")
    except ValueError as exc:
        raise ValueError(f"error parsing socket control message: {exc}") from exc
    return 0


def set_gso_size(control: bytes, gso_size: int, capacity: int) -> bytes:
    """Append a UDP_SEGMENT message to ``control`` if ``capacity`` allows it."""
    if capacity - len(control) < GSO_CONTROL_SIZE:
        return bytes(control)
    return bytes(control) + pack_control_message(
        SOL_UDP, UDP_SEGMENT, struct.pack("=H", gso_size & 0xFFFF)
    )