"""UDP bind over standard sockets, with sticky sources and UDP offload."""

from __future__ import annotations

import errno
import ipaddress
import os
import select
import socket
import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

from amneziawg.conn.base import (
    IDEAL_BATCH_SIZE,
    Bind,
    BindAlreadyOpenError,
    Endpoint,
    ReceiveFunc,
    WrongEndpointTypeError,
)
from amneziawg.conn.cmsg import (
    GSO_CONTROL_SIZE,
    get_gso_size,
    pack_control_message,
    parse_control_messages,
    set_gso_size,
)
from amneziawg.conn.endpoint import (
    STICKY_CONTROL_SIZE,
    StdNetEndpoint,
    get_src_from_control,
    parse_endpoint,
    src_control,
)
from amneziawg.conn.offload import Message, SplitOverflowError, coalesce_messages
from amneziawg.conn.sockopts import (
    open_udp_socket,
    set_mark,
    should_disable_udp_gso,
    supports_udp_offload,
)

_CONTROL_SIZE = STICKY_CONTROL_SIZE + GSO_CONTROL_SIZE
_MAX_DATAGRAM = 0xFFFF
_POLL_INTERVAL = 0.1
_MAX_PORT_TRIES = 100


def _is_linux() -> bool:
    return sys.platform.startswith(("linux", "android"))


def _closed_error() -> OSError:
    return OSError(errno.EBADF, "use of closed network connection")


def _afnosupport() -> OSError:
    return OSError(errno.EAFNOSUPPORT, os.strerror(errno.EAFNOSUPPORT))


class UDPGSODisabledError(OSError):
    """Raised after a send had to be retried with UDP GSO turned off."""

    def __init__(self, on_laddr: str, retry_err: Optional[BaseException]) -> None:
        super().__init__(
            f"disabled UDP GSO on {on_laddr}, NIC(s) may not support checksum "
            "offload or peer MTU with protocol headers is greater than path MTU"
        )
        self.on_laddr = on_laddr
        self.retry_err = retry_err


class ReceiverCreator(ABC):
    """Builds a custom receive function for the IPv4 socket of a bind."""

    @abstractmethod
    def create_ipv4_receiver(self, sock: socket.socket, rx_offload: bool) -> ReceiveFunc:
        """Return the receive function to use for ``sock``."""


def _wait_readable(sock: socket.socket) -> None:
    while True:
        if sock.fileno() < 0:
            raise _closed_error()
        try:
            ready, _, _ = select.select([sock], [], [], _POLL_INTERVAL)
        except (OSError, ValueError) as exc:
            raise _closed_error() from exc
        if ready:
            return


def _read(sock: socket.socket, rx_offload: bool, size: int) -> tuple[bytes, bytes, Any]:
    _wait_readable(sock)
    bufsize = max(size, _MAX_DATAGRAM) if rx_offload else max(size, 1)
    try:
        if hasattr(sock, "recvmsg"):
            data, ancdata, _flags, addr = sock.recvmsg(bufsize, _CONTROL_SIZE)
            control = b"".join(
                pack_control_message(level, type_, item) for level, type_, item in ancdata
            )
        else:
            data, addr = sock.recvfrom(bufsize)
            control = b""
    except ValueError as exc:
        raise _closed_error() from exc
    return data, control, addr


def _address_ip(addr: Any) -> Any:
    return ipaddress.ip_address(addr[0].split("%", 1)[0])


def _format_laddr(sock: socket.socket) -> str:
    try:
        host, port = sock.getsockname()[:2]
    except OSError:
        return ""
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _send_datagrams(
    sock: socket.socket, datagrams: Sequence[tuple[bytes, bytes]], address: tuple
) -> None:
    for data, control in datagrams:
        if hasattr(sock, "sendmsg"):
            ancdata = [(m.level, m.type, m.data) for m in parse_control_messages(control)]
            sock.sendmsg([bytes(data)], ancdata, 0, address)
        else:
            sock.sendto(bytes(data), address)


class StdNetBind(Bind):
    """A bind over one IPv4 and one IPv6 UDP socket sharing a port."""

    def __init__(self, receiver_creator: Optional[ReceiverCreator] = None) -> None:
        self._lock = threading.Lock()
        self._receiver_creator = receiver_creator
        self._ipv4: Optional[socket.socket] = None
        self._ipv6: Optional[socket.socket] = None
        self._reset_flags()

    def _reset_flags(self) -> None:
        self._blackhole4 = False
        self._blackhole6 = False
        self._ipv4_tx_offload = False
        self._ipv4_rx_offload = False
        self._ipv6_tx_offload = False
        self._ipv6_rx_offload = False

    def parse_endpoint(self, s: str) -> StdNetEndpoint:
        return parse_endpoint(s)

    def _listen_pair(self, uport: int) -> tuple[Optional[socket.socket], Optional[socket.socket], int]:
        tries = 0
        while True:
            port = uport
            v4 = None
            try:
                v4, port = open_udp_socket("udp4", port)
            except OSError as exc:
                if exc.errno != errno.EAFNOSUPPORT:
                    raise
                port = 0
            try:
                v6, port = open_udp_socket("udp6", port)
            except OSError as exc:
                if uport == 0 and exc.errno == errno.EADDRINUSE and tries < _MAX_PORT_TRIES:
                    if v4 is not None:
                        v4.close()
                    tries += 1
                    continue
                if exc.errno != errno.EAFNOSUPPORT:
                    if v4 is not None:
                        v4.close()
                    raise
                v6 = None
            return v4, v6, port

    def open(self, port: int) -> tuple[list[ReceiveFunc], int]:
        """Listen on ``port`` (0 picks one); return receive functions and the port."""
        with self._lock:
            if self._ipv4 is not None or self._ipv6 is not None:
                raise BindAlreadyOpenError()
            v4, v6, actual = self._listen_pair(port)
            fns: list[ReceiveFunc] = []
            if v4 is not None:
                self._ipv4_tx_offload, self._ipv4_rx_offload = supports_udp_offload(v4)
                if self._receiver_creator is not None:
                    fns.append(
                        self._receiver_creator.create_ipv4_receiver(v4, self._ipv4_rx_offload)
                    )
                else:
                    rx4 = self._ipv4_rx_offload

                    def receive_ipv4(bufs: list, sizes: list, eps: list) -> int:
                        return self._receive(v4, rx4, bufs, sizes, eps)

                    fns.append(receive_ipv4)
                self._ipv4 = v4
            if v6 is not None:
                self._ipv6_tx_offload, self._ipv6_rx_offload = supports_udp_offload(v6)
                rx6 = self._ipv6_rx_offload

                def receive_ipv6(bufs: list, sizes: list, eps: list) -> int:
                    return self._receive(v6, rx6, bufs, sizes, eps)

                fns.append(receive_ipv6)
                self._ipv6 = v6
            if not fns:
                raise _afnosupport()
            return fns, actual

    def _receive(
        self,
        sock: socket.socket,
        rx_offload: bool,
        bufs: list,
        sizes: list,
        eps: list,
    ) -> int:
        data, control, addr = _read(sock, rx_offload, len(bufs[0]))
        gso = get_gso_size(control) if rx_offload else 0
        if gso > 0:
            segments = [data[i:i + gso] for i in range(0, len(data), gso)] or [b""]
        else:
            segments = [data]
        if len(segments) > len(bufs):
            raise SplitOverflowError(len(bufs))
        for i, segment in enumerate(segments):
            n = min(len(segment), len(bufs[i]))
            bufs[i][:n] = segment[:n]
            sizes[i] = n
            if n == 0:
                continue
            ep = StdNetEndpoint(_address_ip(addr), addr[1])
            get_src_from_control(control, ep)
            eps[i] = ep
        return len(segments)

    def batch_size(self) -> int:
        return IDEAL_BATCH_SIZE if _is_linux() else 1

    def close(self) -> None:
        with self._lock:
            errors: list[OSError] = []
            for sock in (self._ipv4, self._ipv6):
                if sock is None:
                    continue
                try:
                    sock.close()
                except OSError as exc:
                    errors.append(exc)
            self._ipv4 = None
            self._ipv6 = None
            self._reset_flags()
        if errors:
            raise errors[0]

    def set_mark(self, mark: int) -> None:
        for sock in (self._ipv4, self._ipv6):
            if sock is not None:
                set_mark(sock, mark)

    def _peek_fd(self, sock: Optional[socket.socket]) -> int:
        if sock is None or sock.fileno() < 0:
            raise _closed_error()
        return sock.fileno()

    def peek_socket_fd4(self) -> int:
        return self._peek_fd(self._ipv4)

    def peek_socket_fd6(self) -> int:
        return self._peek_fd(self._ipv6)

    def send(self, bufs: Sequence[bytes], endpoint: Endpoint) -> None:
        """Send ``bufs`` to ``endpoint``, coalescing them when offload is on."""
        if not isinstance(endpoint, StdNetEndpoint):
            raise WrongEndpointTypeError()
        ip = endpoint.dst_ip()
        is6 = ip.version == 6
        with self._lock:
            if is6:
                blackhole, sock, offload = self._blackhole6, self._ipv6, self._ipv6_tx_offload
            else:
                blackhole, sock, offload = self._blackhole4, self._ipv4, self._ipv4_tx_offload
        if blackhole:
            return
        if sock is None:
            raise _afnosupport()
        address: tuple = (str(ip), endpoint.port, 0, 0) if is6 else (str(ip), endpoint.port)

        retried = False
        error: Optional[OSError] = None
        while True:
            try:
                if offload:
                    msgs = [Message() for _ in bufs]
                    count = coalesce_messages(
                        address,
                        endpoint,
                        bufs,
                        msgs,
                        lambda oob, size: set_gso_size(oob, size, _CONTROL_SIZE),
                    )
                    datagrams = [(bytes(m.buffer), m.oob) for m in msgs[:count]]
                else:
                    control = src_control(endpoint)
                    datagrams = [(bytes(buf), control) for buf in bufs]
                _send_datagrams(sock, datagrams, address)
                error = None
            except OSError as exc:
                if offload and should_disable_udp_gso(exc):
                    offload = False
                    with self._lock:
                        if is6:
                            self._ipv6_tx_offload = False
                        else:
                            self._ipv4_tx_offload = False
                    retried = True
                    continue
                error = exc
            break
        if retried:
            raise UDPGSODisabledError(_format_laddr(sock), error) from error
        if error is not None:
            raise error


def default_bind() -> StdNetBind:
    """Return the bind used by default on this platform."""
    return StdNetBind()