"""Longest-prefix-match table mapping IP prefixes to peers."""

from __future__ import annotations

import ipaddress
import threading
from collections.abc import Iterator
from typing import Any, Union

_IPV4_LEN = 4
_IPV6_LEN = 16
_ROOT_BIT = 2

PrefixLike = Union[
    str,
    ipaddress.IPv4Interface,
    ipaddress.IPv6Interface,
    ipaddress.IPv4Network,
    ipaddress.IPv6Network,
]


def common_bits(ip1: bytes, ip2: bytes) -> int:
    """Return the number of leading bits two addresses share."""
    size = len(ip1)
    if size not in (_IPV4_LEN, _IPV6_LEN):
        raise ValueError("wrong size bit string")
    width = size * 8
    diff = int.from_bytes(ip1, "big") ^ int.from_bytes(ip2[:size], "big")
    return width - diff.bit_length()


class _Trie:
    __slots__ = ("root",)

    def __init__(self) -> None:
        self.root: _Node | None = None


class _Node:
    __slots__ = (
        "peer",
        "child",
        "parent_owner",
        "parent_bit",
        "cidr",
        "bit_at_byte",
        "bit_at_shift",
        "bits",
    )

    def __init__(self, peer: Any, bits: bytes, cidr: int) -> None:
        self.peer = peer
        self.child: list[_Node | None] = [None, None]
        self.parent_owner: _Node | _Trie | None = None
        self.parent_bit = 0
        self.cidr = cidr
        self.bit_at_byte = cidr // 8
        self.bit_at_shift = 7 - cidr % 8
        width = len(bits) * 8
        mask = ((1 << cidr) - 1) << (width - cidr)
        self.bits = (int.from_bytes(bits, "big") & mask).to_bytes(len(bits), "big")

    def choose(self, ip: bytes) -> int:
        return (ip[self.bit_at_byte] >> self.bit_at_shift) & 1

    def set_parent(self, owner: _Node | _Trie | None, bit: int) -> None:
        self.parent_owner = owner
        self.parent_bit = bit

    def zeroize(self) -> None:
        self.peer = None
        self.child = [None, None]
        self.parent_owner = None


def _link(owner: _Node | _Trie, bit: int, child: _Node | None) -> None:
    if bit == _ROOT_BIT:
        owner.root = child  # type: ignore[union-attr]
    else:
        owner.child[bit] = child  # type: ignore[union-attr]


def _node_placement(node: _Node | None, ip: bytes, cidr: int) -> tuple[_Node | None, bool]:
    parent = None
    while node is not None and node.cidr <= cidr and common_bits(node.bits, ip) >= node.cidr:
        parent = node
        if parent.cidr == cidr:
            return parent, True
        node = node.child[node.choose(ip)]
    return parent, False


def _lookup(node: _Node | None, ip: bytes) -> Any:
    found = None
    size = len(ip)
    while node is not None and common_bits(node.bits, ip) >= node.cidr:
        if node.peer is not None:
            found = node.peer
        if node.bit_at_byte == size:
            break
        node = node.child[node.choose(ip)]
    return found


def _prefix_parts(prefix: PrefixLike) -> tuple[bytes, int]:
    if isinstance(prefix, str):
        prefix = ipaddress.ip_interface(prefix)
    if isinstance(prefix, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
        return prefix.ip.packed, prefix.network.prefixlen
    if isinstance(prefix, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return prefix.network_address.packed, prefix.prefixlen
    raise ValueError(f"unknown address type: {prefix!r}")


def _address_bytes(ip: Any) -> bytes:
    if isinstance(ip, str):
        return ipaddress.ip_address(ip).packed
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return ip.packed
    return bytes(ip)


class AllowedIPs:
    """Maps IPv4 and IPv6 prefixes to peers with longest-prefix lookup."""

    def __init__(self) -> None:
        self._ipv4 = _Trie()
        self._ipv6 = _Trie()
        self._entries: dict[int, tuple[Any, dict[_Node, None]]] = {}
        self._lock = threading.Lock()

    def _trie_for(self, ip: bytes) -> _Trie:
        if len(ip) == _IPV6_LEN:
            return self._ipv6
        if len(ip) == _IPV4_LEN:
            return self._ipv4
        raise ValueError("unknown address type")

    def _add_to_peer_entries(self, node: _Node) -> None:
        _, nodes = self._entries.setdefault(id(node.peer), (node.peer, {}))
        nodes[node] = None

    def _remove_from_peer_entries(self, node: _Node) -> None:
        if node.peer is None:
            return
        entry = self._entries.get(id(node.peer))
        if entry is None:
            return
        entry[1].pop(node, None)
        if not entry[1]:
            del self._entries[id(node.peer)]

    def _insert(self, trie: _Trie, ip: bytes, cidr: int, peer: Any) -> None:
        if trie.root is None:
            node = _Node(peer, ip, cidr)
            node.set_parent(trie, _ROOT_BIT)
            self._add_to_peer_entries(node)
            trie.root = node
            return

        node, exact = _node_placement(trie.root, ip, cidr)
        if exact:
            self._remove_from_peer_entries(node)
            node.peer = peer
            self._add_to_peer_entries(node)
            return

        new_node = _Node(peer, ip, cidr)
        self._add_to_peer_entries(new_node)

        if node is None:
            down = trie.root
        else:
            bit = node.choose(ip)
            down = node.child[bit]
            if down is None:
                new_node.set_parent(node, bit)
                node.child[bit] = new_node
                return

        cidr = min(cidr, common_bits(down.bits, ip))
        parent = node

        if new_node.cidr == cidr:
            bit = new_node.choose(down.bits)
            down.set_parent(new_node, bit)
            new_node.child[bit] = down
            if parent is None:
                new_node.set_parent(trie, _ROOT_BIT)
                trie.root = new_node
            else:
                bit = parent.choose(new_node.bits)
                new_node.set_parent(parent, bit)
                parent.child[bit] = new_node
            return

        node = _Node(None, new_node.bits, cidr)
        bit = node.choose(down.bits)
        down.set_parent(node, bit)
        node.child[bit] = down
        bit = node.choose(new_node.bits)
        new_node.set_parent(node, bit)
        node.child[bit] = new_node
        if parent is None:
            node.set_parent(trie, _ROOT_BIT)
            trie.root = node
        else:
            bit = parent.choose(node.bits)
            node.set_parent(parent, bit)
            parent.child[bit] = node

    def _remove_node(self, node: _Node) -> None:
        self._remove_from_peer_entries(node)
        node.peer = None
        if node.child[0] is not None and node.child[1] is not None:
            return
        child = node.child[1 if node.child[0] is None else 0]
        if child is not None:
            child.set_parent(node.parent_owner, node.parent_bit)
        _link(node.parent_owner, node.parent_bit, child)
        if node.child[0] is not None or node.child[1] is not None or node.parent_bit > 1:
            node.zeroize()
            return
        parent = node.parent_owner
        assert isinstance(parent, _Node)
        if parent.peer is not None:
            node.zeroize()
            return
        child = parent.child[node.parent_bit ^ 1]
        if child is not None:
            child.set_parent(parent.parent_owner, parent.parent_bit)
        _link(parent.parent_owner, parent.parent_bit, child)
        node.zeroize()
        parent.zeroize()

    def insert(self, prefix: PrefixLike, peer: Any) -> None:
        """Route ``prefix`` to ``peer``, replacing any peer it had."""
        ip, cidr = _prefix_parts(prefix)
        with self._lock:
            self._insert(self._trie_for(ip), ip, cidr, peer)

    def remove(self, prefix: PrefixLike, peer: Any) -> None:
        """Remove ``prefix`` if it is routed to exactly ``peer``."""
        ip, cidr = _prefix_parts(prefix)
        with self._lock:
            node, exact = _node_placement(self._trie_for(ip).root, ip, cidr)
            if not exact or node is None or node.peer is not peer:
                return
            self._remove_node(node)

    def remove_by_peer(self, peer: Any) -> None:
        """Remove every prefix routed to ``peer``."""
        with self._lock:
            entry = self._entries.get(id(peer))
            if entry is None or entry[0] is not peer:
                return
            for node in list(entry[1]):
                self._remove_node(node)

    def lookup(self, ip: Any) -> Any:
        """Return the peer of the longest prefix holding ``ip``, or None."""
        packed = _address_bytes(ip)
        with self._lock:
            if len(packed) == _IPV6_LEN:
                return _lookup(self._ipv6.root, packed)
            if len(packed) == _IPV4_LEN:
                return _lookup(self._ipv4.root, packed)
        raise ValueError("looking up unknown address type")

    def entries_for_peer(
        self, peer: Any
    ) -> Iterator[ipaddress.IPv4Network | ipaddress.IPv6Network]:
        """Yield the prefixes routed to ``peer`` in insertion order."""
        with self._lock:
            entry = self._entries.get(id(peer))
            if entry is None or entry[0] is not peer:
                nodes: list[_Node] = []
            else:
                nodes = list(entry[1])
            prefixes = [
                ipaddress.ip_network((ipaddress.ip_address(node.bits), node.cidr))
                for node in nodes
            ]
        yield from prefixes

    def is_empty(self) -> bool:
        with self._lock:
            return self._ipv4.root is None and self._ipv6.root is None