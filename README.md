# amneziawg

Building blocks for an AmneziaWG-style tunnel. The package uses only the
standard library.

## Contents

### Junk packets (`amneziawg.awg`)

- `amneziawg.awg.generators` has the byte generators that tags stand for.
  - `BytesGenerator` (`<b 0x..>`) emits fixed bytes.
  - `RandomPacketGenerator` (`<r N>`) emits N random bytes, with N at most 1000.
  - `TimestampGenerator` (`<t>`) emits the Unix time as 8 big-endian bytes.
  - `PacketCounterGenerator` (`<c>`) emits the shared `PacketCounter` as 8
    big-endian bytes.
  - `WaitTimeoutGenerator` (`<wt MS>`) sleeps for MS milliseconds, at most
    5000, and emits nothing.
  - `WaitResponseGenerator` blocks until a response is signalled.

  Bad parameters raise `GeneratorError`.
- `amneziawg.awg.tag_parser.parse(name, text)` turns a tag expression such as
  `<b 0xf6ab3267fa><c><t><r 10><wt 10>` into a `TagJunkPacketGenerator`.
  The `<c>` and `<t>` tags may each appear only once per expression. Errors
  raise `TagParseError`.
- `amneziawg.awg.tag_junk` has two classes:
  - `TagJunkPacketGenerator` builds one packet.
  - `TagJunkPacketGenerators` holds a set of packets named `x1`..`xn`.
    `validate()` raises `JunkValidationError` if the indices have gaps.
    `generate_packets()` produces every packet and advances the packet counter.
- `amneziawg.awg.handshake.SpecialHandshakeHandler` returns the special junk on
  its first call. After that it returns it again only once `i_timeout` seconds
  have passed. It also returns the controlled junk.
- `amneziawg.awg.protocol` holds the obfuscation settings:
  - `ASecConfig` holds the settings themselves.
  - `Limit` and `parse_magic_header("H1", "100-200", type)` describe magic
    header ranges; `sort_limits` orders them by their lower bound.
  - `JunkCreator` makes random junk packets and header junk.
  - `Protocol` bundles these together.

  Invalid settings raise `ProtocolConfigError`.

### Allowed IPs (`amneziawg.allowedips`)

`AllowedIPs` is a longest-prefix-match trie that maps IPv4 and IPv6 prefixes
to peers. It provides these methods:

- `insert`
- `remove`, which removes a prefix only if it belongs to the given peer
- `remove_by_peer`
- `lookup`
- `entries_for_peer`
- `is_empty`

`common_bits` returns the number of leading bits two addresses share.

### Constants (`amneziawg.constants`)

This module holds the protocol timing and limit constants, with times given in
seconds.

### Networking (`amneziawg.conn`)

- `base` defines the abstract classes `Bind` and `Endpoint`, plus these names:
  - `BindAlreadyOpenError` and `WrongEndpointTypeError`;
  - `pretty_name`, which gives a receive function a short name such as `v4` or
    `v6`;
  - `IDEAL_BATCH_SIZE`.
- `endpoint` covers endpoints:
  - `StdNetEndpoint` and `parse_endpoint("ip:port")` or
    `parse_endpoint("[ipv6]:port")`;
  - `get_src_from_control` and `src_control`, which read and write the sticky
    `IP_PKTINFO`/`IPV6_PKTINFO` source address.
- `cmsg` packs and parses socket control messages. It also has
  `get_gso_size` and `set_gso_size` for UDP GRO/GSO.
- `offload` has `coalesce_messages` and `split_coalesced_messages`, which
  batch datagrams for UDP segmentation offload.
- `sockopts` applies socket options before a socket is bound:
  - buffer sizes, PKTINFO, `IPV6_V6ONLY` and GRO, chosen per platform;
  - `open_udp_socket`, `supports_udp_offload`, `should_disable_udp_gso`,
    `set_mark` and `parse_kernel_version`.
- `stdbind` has `StdNetBind`, a bind over one IPv4 and one IPv6 UDP socket
  that share a port. `default_bind()` returns one.
  - When a coalesced send fails because the NIC lacks offload, it retries
    without GSO and raises `UDPGSODisabledError`.
  - A `ReceiverCreator` can supply the IPv4 receive function.
- `bindtest` has `ChannelBind` and `new_channel_binds()`: two binds that are
  connected in memory by queues, for testing.

## Install

```
pip install .
```

Install the test extra and run the tests:

```
pip install ".[test]"
pytest
```

## Examples

Parse a tag expression and generate a packet from it:

```python
from amneziawg.awg.tag_parser import parse

gen = parse("i1", "<b 0xf6ab><r 4>")
packet = gen.generate_packet()   # 2 fixed bytes followed by 4 random bytes
```

Look up a peer by address:

```python
import ipaddress
from amneziawg.allowedips import AllowedIPs

table = AllowedIPs()
table.insert(ipaddress.ip_network("192.168.4.0/24"), "peer-a")
table.lookup(bytes([192, 168, 4, 20]))   # "peer-a"
```

Send a packet between two in-memory binds:

```python
from amneziawg.conn.bindtest import new_channel_binds

a, b = new_channel_binds()
a.open(0)
fns, _ = b.open(0)
a.send([b"hello"], a.target4)

bufs, sizes, eps = [bytearray(64)], [0], [None]
fns[0](bufs, sizes, eps)         # returns 1
bytes(bufs[0][:sizes[0]])        # b"hello"
```

## What the package does not do

The package provides the pieces listed above and nothing more. It does not
include:

- a tunnel device;
- handshakes or packet encryption;
- a configuration interface;
- a command-line program.

`StdNetBind` is the only socket-backed bind, and it has no support for binding
its sockets to a network interface.