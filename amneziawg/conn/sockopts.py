"""Socket options applied to UDP sockets before they are bound."""

from __future__ import annotations

import errno
import os
import socket
import struct
import sys
from collections.abc import Callable
from typing import Any

from amneziawg.conn.cmsg import UDP_GRO, UDP_SEGMENT

# UDP read/write buffer size (7MB), the most a default macOS configuration
# allows. Linux clamps it to net.core.{r,w}mem_max unless forced.
SOCKET_BUFFER_SIZE = 7 << 20

SOL_SOCKET = socket.SOL_SOCKET
SO_RCVBUF = socket.SO_RCVBUF
SO_SNDBUF = socket.SO_SNDBUF
SO_SNDBUFFORCE = 32
SO_RCVBUFFORCE = 33
IPPROTO_IP = 0
IP_PKTINFO = 8
IPPROTO_IPV6 = 41
IPV6_RECVPKTINFO = 49
IPV6_V6ONLY = getattr(socket, "IPV6_V6ONLY", 26)
IPPROTO_UDP = 17

# Socket options used to set a firewall mark, per platform.
_FWMARK_OPTIONS = {
    "linux": 36,  # SO_MARK
    "android": 36,
    "freebsd": 0x1015,  # SO_USER_COOKIE
    "openbsd": 0x1021,  # SO_RTABLE
}

_PLATFORM = sys.platform

ControlFn = Callable[[str, Any], None]

# Functions applied after the platform's own. Modify only during start-up.
extra_control_fns: list[ControlFn] = []


def _platform() -> str:
    name = _PLATFORM
    if name.startswith("linux"):
        return "linux"
    for prefix in ("android", "freebsd", "openbsd"):
        if name.startswith(prefix):
            return prefix
    if name == "win32":
        return "windows"
    if name in ("emscripten", "wasi"):
        return "wasm"
    return "unix"


def _is_linux() -> bool:
    return _platform() in ("linux", "android")


def parse_kernel_version(release: str) -> tuple[int, int]:
    """Return the major and minor numbers of a ``N.N.N`` release string."""
    values = [0, 0]
    value = 0
    index = 0
    for char in release + "\0":
        if "0" <= char <= "9":
            value = value * 10 + ord(char) - ord("0")
            continue
        values[index] = value
        index += 1
        if index >= len(values):
            break
        value = 0
    return values[0], values[1]


def kernel_version() -> tuple[int, int]:
    """Return the running kernel's major and minor version, or (0, 0)."""
    try:
        release = os.uname().release
    except (AttributeError, OSError):
        return 0, 0
    return parse_kernel_version(release)


def _set_buffer_sizes(network: str, sock: Any) -> None:
    for option in (SO_RCVBUF, SO_SNDBUF):
        try:
            sock.setsockopt(SOL_SOCKET, option, SOCKET_BUFFER_SIZE)
        except OSError:
            pass


def _force_buffer_sizes(network: str, sock: Any) -> None:
    # Going beyond *mem_max needs CAP_NET_ADMIN; failure only costs speed.
    for option in (SO_RCVBUFFORCE, SO_SNDBUFFORCE):
        try:
            sock.setsockopt(SOL_SOCKET, option, SOCKET_BUFFER_SIZE)
        except OSError:
            pass


def _enable_pktinfo(network: str, sock: Any) -> None:
    android = _platform() == "android"
    if network == "udp4":
        if not android:
            sock.setsockopt(IPPROTO_IP, IP_PKTINFO, 1)
    elif network == "udp6":
        if not android:
            sock.setsockopt(IPPROTO_IPV6, IPV6_RECVPKTINFO, 1)
        sock.setsockopt(IPPROTO_IPV6, IPV6_V6ONLY, 1)
    else:
        raise ValueError(f"unhandled network: {network}: invalid argument")


def _enable_gro(network: str, sock: Any) -> None:
    # Kernels before 5.12 cannot report UDP_GRO back, so leave it off there.
    if kernel_version() < (5, 12):
        return
    try:
        sock.setsockopt(IPPROTO_UDP, UDP_GRO, 1)
    except OSError:
        pass


def _set_v6only(network: str, sock: Any) -> None:
    if network == "udp6":
        sock.setsockopt(IPPROTO_IPV6, IPV6_V6ONLY, 1)


def _control_fns() -> list[ControlFn]:
    platform = _platform()
    if platform in ("linux", "android"):
        fns = [_set_buffer_sizes, _force_buffer_sizes, _enable_pktinfo, _enable_gro]
    elif platform == "windows":
        fns = [_set_buffer_sizes]
    elif platform == "wasm":
        fns = []
    else:
        fns = [_set_buffer_sizes, _set_v6only]
    return fns + list(extra_control_fns)


def apply_control_fns(sock: Any, network: str) -> None:
    """Apply the platform's socket options to ``sock`` before it is bound."""
    for fn in _control_fns():
        fn(network, sock)


def open_udp_socket(network: str, port: int) -> tuple[socket.socket, int]:
    """Open and bind a UDP socket for ``udp4`` or ``udp6``; return it and its port."""
    if network == "udp4":
        family, host = socket.AF_INET, "0.0.0.0"
    elif network == "udp6":
        family, host = socket.AF_INET6, "::"
    else:
        raise ValueError(f"unhandled network: {network}")
    sock = socket.socket(family, socket.SOCK_DGRAM)
    try:
        apply_control_fns(sock, network)
        sock.bind((host, port))
        actual_port = sock.getsockname()[1]
    except BaseException:
        sock.close()
        raise
    return sock, actual_port


def should_disable_udp_gso(err: BaseException) -> bool:
    """Tell whether a send error means UDP segmentation offload must be turned off."""
    if not _is_linux():
        return False
    # EIO: the driver lacks tx checksumming; EINVAL: segment exceeds path MTU.
    return isinstance(err, OSError) and err.errno in (errno.EIO, errno.EINVAL)


def supports_udp_offload(sock: Any) -> tuple[bool, bool]:
    """Return whether ``sock`` supports transmit and receive UDP offload."""
    if not _is_linux():
        return False, False
    try:
        sock.getsockopt(IPPROTO_UDP, UDP_SEGMENT)
        tx_offload = True
    except OSError:
        tx_offload = False
    try:
        sock.setsockopt(IPPROTO_UDP, UDP_GRO, 1)
        rx_offload = True
    except OSError:
        rx_offload = False
    return tx_offload, rx_offload


def set_mark(sock: Any, mark: int) -> None:
    """Set the firewall mark on ``sock`` where the platform supports one."""
    option = _FWMARK_OPTIONS.get(_platform(), 0)
    if option == 0 or sock is None:
        return
    sock.setsockopt(SOL_SOCKET, option, struct.pack("=I", mark & 0xFFFFFFFF))