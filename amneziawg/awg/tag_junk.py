"""Junk packets assembled from sequences of tag generators."""

from __future__ import annotations

from dataclasses import dataclass, field

from amneziawg.awg.generators import Generator, PacketCounter, packet_counter


class JunkValidationError(ValueError):
    """Raised when junk packet definitions are inconsistent."""


@dataclass(frozen=True)
class IpcField:
    key: str
    value: str


@dataclass
class TagJunkPacketGenerator:
    """A named junk packet built by concatenating generator outputs."""

    name: str
    tag_value: str = ""
    generators: list[Generator] = field(default_factory=list)
    packet_size: int = 0

    def append(self, generator: Generator) -> None:
        self.generators.append(generator)
        self.packet_size += generator.size()

    def generate_packet(self) -> bytes:
        return b"".join(generator.generate() for generator in self.generators)

    def name_index(self) -> int:
        """Return the digit in the second character of the name."""
        if len(self.name) != 2:
            raise JunkValidationError(f"name must be 2 character long: {self.name}")
        digit = self.name[1]
        if digit not in "0123456789":
            raise JunkValidationError(f"name 2 char should be an int: {digit!r}")
        return int(digit)

    def ipc_fields(self) -> IpcField:
        return IpcField(key=self.name, value=self.tag_value)


@dataclass
class TagJunkPacketGenerators:
    """An ordered set of junk packet definitions."""

    tag_generators: list[TagJunkPacketGenerator] = field(default_factory=list)
    default_junk_count: int = 0
    counter: PacketCounter = field(
        default_factory=lambda: packet_counter, compare=False, repr=False
    )

    def __len__(self) -> int:
        return len(self.tag_generators)

    def append_generator(self, generator: TagJunkPacketGenerator) -> None:
        self.tag_generators.append(generator)

    def is_defined(self) -> bool:
        return bool(self.tag_generators)

    def validate(self) -> None:
        """Check that packet indices run 1..n with no gaps."""
        count = len(self.tag_generators)
        seen = [False] * count
        for generator in self.tag_generators:
            try:
                index = generator.name_index()
            except JunkValidationError as exc:
                raise JunkValidationError(f"name index: {exc}") from exc
            if index > count or index < 1:
                raise JunkValidationError("junk packet index should be consecutive")
            seen[index - 1] = True
        if not all(seen):
            raise JunkValidationError("junk packet index should be consecutive")

    def generate_packets(self) -> list[bytes]:
        packets = []
        for generator in self.tag_generators:
            size = generator.packet_size
            packets.append(generator.generate_packet()[:size].ljust(size, b"\0"))
            self.counter.inc()
        self.counter.add(self.default_junk_count)
        return packets

    def ipc_fields(self) -> list[IpcField]:
        return [generator.ipc_fields() for generator in self.tag_generators]