"""Parser for tagged junk packet definitions such as ``<b 0x01><c><t>``."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from amneziawg.awg.generators import (
    Generator,
    GeneratorError,
    new_bytes_generator,
    new_packet_counter_generator,
    new_random_packet_generator,
    new_timestamp_generator,
    new_wait_timeout_generator,
)
from amneziawg.awg.tag_junk import TagJunkPacketGenerator


class TagParseError(ValueError):
    """Raised when a junk packet definition cannot be parsed."""


class EnumTag(str, Enum):
    BYTES = "b"
    COUNTER = "c"
    TIMESTAMP = "t"
    RANDOM_BYTES = "r"
    WAIT_TIMEOUT = "wt"
    WAIT_RESPONSE = "wr"


_GENERATOR_CREATORS: dict[EnumTag, Callable[[str], Generator]] = {
    EnumTag.BYTES: new_bytes_generator,
    EnumTag.COUNTER: new_packet_counter_generator,
    EnumTag.TIMESTAMP: new_timestamp_generator,
    EnumTag.RANDOM_BYTES: new_random_packet_generator,
    EnumTag.WAIT_TIMEOUT: new_wait_timeout_generator,
}

_UNIQUE_TAGS = frozenset({EnumTag.COUNTER, EnumTag.TIMESTAMP})

_TAG_RE = re.compile(r"([a-zA-Z]+)(?:\s+([^>]+))?>")


@dataclass(frozen=True)
class Tag:
    name: str
    param: str = ""


def parse_tag(text: str) -> Tag:
    """Parse the body of one tag, e.g. ``b 0x01>``."""
    match = _TAG_RE.search(text)
    if match is None:
        raise TagParseError(f"ill formated tag: {text}")
    return Tag(name=match.group(1), param=(match.group(2) or "").strip())


def parse(name: str, text: str) -> TagJunkPacketGenerator:
    """Build a junk packet generator from a tag definition string."""
    pieces = text.split("<")
    if len(pieces) <= 1:
        raise TagParseError(f"empty input: {text}")

    seen_unique: set[EnumTag] = set()
    pieces = pieces[1:]
    result = TagJunkPacketGenerator(name, text)
    for piece in pieces:
        if len(piece) <= 1:
            raise TagParseError(f"empty tag in input: {pieces}")
        if piece.count(">") != 1:
            raise TagParseError(f"ill formated input: {text}")

        tag = parse_tag(piece)
        try:
            enum_tag = EnumTag(tag.name)
            creator = _GENERATOR_CREATORS[enum_tag]
        except (ValueError, KeyError):
            raise TagParseError(f"invalid tag: {tag.name}") from None
        if enum_tag in _UNIQUE_TAGS:
            if enum_tag in seen_unique:
                raise TagParseError(f"tag {tag.name} needs to be unique")
            seen_unique.add(enum_tag)
        try:
            generator = creator(tag.param)
        except GeneratorError as exc:
            raise TagParseError(f"gen: {exc}") from exc
        result.append(generator)

    return result