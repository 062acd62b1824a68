import threading
import time

import pytest

from amneziawg.awg.generators import (
    GeneratorError,
    PacketCounter,
    PacketCounterGenerator,
    WaitResponse,
    WaitResponseGenerator,
    hex_to_bytes,
    new_bytes_generator,
    new_packet_counter_generator,
    new_random_packet_generator,
    new_timestamp_generator,
    new_wait_response_generator,
    new_wait_timeout_generator,
    packet_counter,
)


@pytest.mark.parametrize("param", ["", "123456", "0X12345q", "0x12345q"])
def test_new_bytes_generator_rejects(param):
    with pytest.raises(GeneratorError):
        new_bytes_generator(param)


@pytest.mark.parametrize(
    "param, expected",
    [
        ("0xf6ab3267fa", bytes([0xF6, 0xAB, 0x32, 0x67, 0xFA])),
        ("0xfab3267fa", bytes([0x0F, 0xAB, 0x32, 0x67, 0xFA])),
    ],
)
def test_new_bytes_generator_valid(param, expected):
    gen = new_bytes_generator(param)
    assert gen.generate() == expected
    assert gen.size() == len(expected)


def test_hex_to_bytes_uppercase_prefix():
    assert hex_to_bytes("0XF6ab") == bytes([0xF6, 0xAB])


def test_hex_to_bytes_rejects_spaces():
    with pytest.raises(GeneratorError):
        hex_to_bytes("0xf6 ab")


@pytest.mark.parametrize("param", ["", "x", "1001"])
def test_new_random_packet_generator_rejects(param):
    with pytest.raises(GeneratorError):
        new_random_packet_generator(param)


def test_new_random_packet_generator_valid():
    gen = new_random_packet_generator("12")
    first = gen.generate()
    second = gen.generate()
    assert first != second
    assert len(first) == 12
    assert gen.size() == 12


def test_packet_counter_generator_rejects_param():
    with pytest.raises(GeneratorError):
        new_packet_counter_generator("anything")


def test_packet_counter_generator_reads_counter():
    gen = new_packet_counter_generator("")
    assert gen.size() == 8
    packet_counter.store(42)
    output = gen.generate()
    assert len(output) == 8
    assert int.from_bytes(output, "big") == 42
    packet_counter.add(1)
    assert int.from_bytes(gen.generate(), "big") == 43


def test_packet_counter_wraps_at_64_bits():
    counter = PacketCounter((1 << 64) - 1)
    assert counter.inc() == 0
    assert PacketCounterGenerator(counter).generate() == bytes(8)


def test_timestamp_generator():
    gen = new_timestamp_generator("")
    output = gen.generate()
    assert len(output) == gen.size() == 8
    assert abs(int.from_bytes(output, "big") - time.time()) <= 2


def test_timestamp_generator_rejects_param():
    with pytest.raises(GeneratorError):
        new_timestamp_generator("x")


@pytest.mark.parametrize("param", ["5001", "soon", ""])
def test_wait_timeout_generator_rejects(param):
    with pytest.raises(GeneratorError):
        new_wait_timeout_generator(param)


def test_wait_timeout_generator_valid():
    gen = new_wait_timeout_generator("0")
    assert gen.generate() == b""
    assert gen.size() == 0
    assert new_wait_timeout_generator("5000").timeout == 5.0


def test_wait_response_generator_rejects_param():
    with pytest.raises(GeneratorError):
        new_wait_response_generator("x")


def test_wait_response_generator_blocks_until_notified():
    waiter = WaitResponse()
    gen = WaitResponseGenerator(waiter)
    results = []
    thread = threading.Thread(target=lambda: results.append(gen.generate()))
    thread.start()
    deadline = time.monotonic() + 5
    while not waiter.should_wait and time.monotonic() < deadline:
        time.sleep(0.01)
    assert waiter.should_wait
    waiter.notify()
    thread.join(5)
    assert results == [b""]
    assert not waiter.should_wait
    assert gen.size() == 0