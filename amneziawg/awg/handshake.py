"""Junk packets sent around the handshake."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from amneziawg.awg.tag_junk import JunkValidationError, TagJunkPacketGenerators


@dataclass
class SpecialHandshakeHandler:
    """Decides when special and controlled junk packets are produced."""

    special_junk: TagJunkPacketGenerators = field(default_factory=TagJunkPacketGenerators)
    controlled_junk: TagJunkPacketGenerators = field(
        default_factory=TagJunkPacketGenerators
    )
    i_timeout: float = 0.0
    is_set: bool = False
    clock: Callable[[], float] = field(default=time.monotonic, repr=False, compare=False)
    _is_first_done: bool = field(default=False, init=False, repr=False)
    _next_itime: float = field(default=0.0, init=False, repr=False)

    def validate(self) -> None:
        """Validate both generator sets, reporting every problem found."""
        errors = []
        for generators in (self.special_junk, self.controlled_junk):
            try:
                generators.validate()
            except JunkValidationError as exc:
                errors.append(exc)
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise JunkValidationError("\n".join(str(err) for err in errors))

    def generate_special_junk(self) -> list[bytes]:
        """Return special junk on the first call and after each timeout."""
        if not self.special_junk.is_defined():
            return []
        if not self._is_first_done:
            self._is_first_done = True
        elif not self.clock() > self._next_itime:
            return []
        packets = self.special_junk.generate_packets()
        self._next_itime = self.clock() + self.i_timeout
        return packets

    def generate_controlled_junk(self) -> list[bytes]:
        if not self.controlled_junk.is_defined():
            return []
        return self.controlled_junk.generate_packets()