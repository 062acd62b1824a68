"""Standard UDP endpoint with sticky source address support."""

from __future__ import annotations

import ipaddress
import struct
from dataclasses import dataclass, field
from typing import Optional

from amneziawg.conn.base import Endpoint, IPAddress
from amneziawg.conn.cmsg import (
    cmsg_len,
    cmsg_space,
    pack_control_message,
    parse_control_messages,
)

IPPROTO_IP = 0
IP_PKTINFO = 8
IPPROTO_IPV6 = 41
IPV6_PKTINFO = 50

SIZEOF_INET4_PKTINFO = 12
SIZEOF_INET6_PKTINFO = 20

STICKY_CONTROL_SIZE = cmsg_space(SIZEOF_INET6_PKTINFO)
STD_NET_SUPPORTS_STICKY_SOCKETS = True

_V4_SPACE = cmsg_space(SIZEOF_INET4_PKTINFO)
_V6_SPACE = cmsg_space(SIZEOF_INET6_PKTINFO)


@dataclass
class StdNetEndpoint(Endpoint):
    """A destination address and port with an optional sticky source."""

    addr: IPAddress
    port: int
    src: bytes = field(default=b"")

    def clear_src(self) -> None:
        self.src = b""

    def dst_ip(self) -> IPAddress:
        return self.addr

    def src_ip(self) -> Optional[IPAddress]:
        offset = cmsg_len(0)
        if len(self.src) == _V4_SPACE:
            return ipaddress.IPv4Address(self.src[offset + 4:offset + 8])
        if len(self.src) == _V6_SPACE:
            return ipaddress.IPv6Address(self.src[offset:offset + 16])
        return None

    def src_ifidx(self) -> int:
        offset = cmsg_len(0)
        if len(self.src) == _V4_SPACE:
            return struct.unpack_from("=i", self.src, offset)[0]
        if len(self.src) == _V6_SPACE:
            return struct.unpack_from("=I", self.src, offset + 16)[0]
        return 0

    def dst_to_bytes(self) -> bytes:
        return self.addr.packed + (self.port & 0xFFFF).to_bytes(2, "little")

    def dst_to_string(self) -> str:
        if self.addr.version == 6:
            return f"[{self.addr}]:{self.port}"
        return f"{self.addr}:{self.port}"

    def src_to_string(self) -> str:
        ip = self.src_ip()
        return "" if ip is None else str(ip)


def parse_endpoint(s: str) -> StdNetEndpoint:
    """Parse ``ip:port`` or ``[ipv6]:port``."""
    if s.startswith("["):
        host, sep, port = s[1:].partition("]:")
        if not sep:
            raise ValueError(f"invalid address and port: {s!r}")
    else:
        host, sep, port = s.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"invalid address and port: {s!r}")
    if not port.isdigit() or not port.isascii() or int(port) > 0xFFFF:
        raise ValueError(f"invalid port {port!r} in {s!r}")
    try:
        addr = ipaddress.ip_address(host)
    except ValueError as exc:
        raise ValueError(f"invalid address in {s!r}: {exc}") from exc
    if s.startswith("[") and addr.version != 6:
        raise ValueError(f"invalid address and port: {s!r}")
    return StdNetEndpoint(addr, int(port))


def get_src_from_control(control: bytes, endpoint: StdNetEndpoint) -> None:
    """Store the PKTINFO found in ``control`` as the endpoint's source."""
    endpoint.clear_src()
    try:
        for msg in parse_control_messages(control):
            if msg.level == IPPROTO_IP and msg.type == IP_PKTINFO:
                size = SIZEOF_INET4_PKTINFO
            elif msg.level == IPPROTO_IPV6 and msg.type == IPV6_PKTINFO:
                size = SIZEOF_INET6_PKTINFO
            else:
                continue
            data = msg.data[:size].ljust(size, b"\0")
            endpoint.src = pack_control_message(msg.level, msg.type, data)
            return
    except ValueError:
        return


def src_control(endpoint: StdNetEndpoint) -> bytes:
    """Return the control data that pins the endpoint's source address."""
    return bytes(endpoint.src)