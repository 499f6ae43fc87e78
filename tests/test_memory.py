"""
Tests for the growable memory store and the instruction decoder.
"""

import pytest

from interpreter import (
    MODE_IMMEDIATE,
    MODE_POSITION,
    MODE_RELATIVE,
    IntcodeAddressError,
    IntcodeDecodeError,
    Memory,
    ParamModes,
    decode,
)


class TestMemory:
    """Zero-filled reads and grow-on-write."""

    def test_read_within_image(self):
        memory = Memory([5, 6, 7])
        assert memory.read(0) == 5
        assert memory.read(2) == 7

    def test_read_past_end_is_zero(self):
        memory = Memory([5, 6, 7])
        assert memory.read(3) == 0
        assert memory.read(10_000) == 0
        assert len(memory) == 3

    def test_write_past_end_zero_fills(self):
        memory = Memory([1, 2, 3])
        memory.write(7, 9)
        assert memory.snapshot() == [1, 2, 3, 0, 0, 0, 0, 9]
        assert len(memory) == 8

    def test_write_beyond_capacity_keeps_lower_cells(self):
        memory = Memory([1, 2, 3])
        memory.write(5000, 4)
        assert len(memory) == 5001
        assert memory.read(4999) == 0
        assert memory.read(5000) == 4
        assert memory.snapshot()[:3] == [1, 2, 3]

    def test_empty_memory(self):
        memory = Memory()
        assert memory.snapshot() == []
        assert memory.read(0) == 0

    def test_negative_addresses_fail(self):
        memory = Memory([1])
        with pytest.raises(IntcodeAddressError):
            memory.read(-1)
        with pytest.raises(IntcodeAddressError):
            memory.write(-3, 1)

    def test_large_values_are_exact(self):
        memory = Memory([1125899906842624])
        memory.write(1, 2 ** 70)
        assert memory.read(0) == 1125899906842624
        assert memory.read(1) == 2 ** 70

    def test_snapshot_returns_plain_ints(self):
        snapshot = Memory([1, -2]).snapshot()
        assert snapshot == [1, -2]
        assert all(type(word) is int for word in snapshot)

    def test_copy_does_not_alias(self):
        memory = Memory([1, 2, 3])
        clone = memory.copy()
        clone.write(0, 99)
        clone.write(10, 1)
        assert memory.snapshot() == [1, 2, 3]
        assert clone.snapshot()[0] == 99


class TestDecoder:
    """Opcode extraction and the parameter mode cursor."""

    def test_plain_opcode_defaults_to_position_modes(self):
        opcode, modes = decode(2)
        assert opcode == 2
        assert [modes.next(), modes.next(), modes.next()] == [MODE_POSITION] * 3

    def test_modes_read_least_significant_first(self):
        opcode, modes = decode(1002)
        assert opcode == 2
        assert modes.next() == MODE_POSITION
        assert modes.next() == MODE_IMMEDIATE
        assert modes.next() == MODE_POSITION

    def test_relative_mode(self):
        opcode, modes = decode(21101)
        assert opcode == 1
        assert [modes.next(), modes.next(), modes.next()] == [MODE_IMMEDIATE, MODE_IMMEDIATE, MODE_RELATIVE]

    def test_halt(self):
        opcode, _ = decode(99)
        assert opcode == 99

    def test_unknown_opcode(self):
        with pytest.raises(IntcodeDecodeError) as excinfo:
            decode(42)
        assert excinfo.value.opcode == 42

    def test_negative_word(self):
        with pytest.raises(IntcodeDecodeError):
            decode(-1)

    def test_unknown_mode_digit(self):
        modes = ParamModes(30)
        assert modes.next() == MODE_POSITION
        with pytest.raises(IntcodeDecodeError):
            modes.next()
