# tests/test_aliases.py
"""
Tests for the alias table and backward free-slot allocation.
"""

import pytest

from aliases import AliasAllocationError, AliasTable, BFEMInternalError
from tape import Tape


class TestAssignAddress:

    def test_allocates_from_the_top_skipping_nonzero(self):
        tape = Tape(10)
        tape.set_value_at(2, 1)
        table = AliasTable(["A", "B"])
        assert table.assign_address("A", tape) == 9
        assert table.assign_address("B", tape) == 8

    def test_skips_nonzero_cells(self):
        tape = Tape(10)
        tape.set_value_at(9, 3)
        tape.set_value_at(8, 1)
        table = AliasTable()
        assert table.assign_address("x", tape) == 7

    def test_already_bound_name_keeps_address(self):
        tape = Tape(4)
        table = AliasTable()
        first = table.assign_address("x", tape)
        assert table.assign_address("x", tape) == first
        assert len(table) == 1

    def test_full_tape_raises(self):
        tape = Tape(2)
        tape.set_value_at(0, 1)
        table = AliasTable()
        table.assign_address("a", tape)
        with pytest.raises(AliasAllocationError) as info:
            table.assign_address("b", tape)
        assert info.value.name == "b"

    def test_allocate_all_in_discovery_order(self):
        tape = Tape(10)
        tape.set_value_at(8, 5)
        table = AliasTable(["first", "second", "third"])
        table.allocate_all(tape)
        assert table.resolve("first") == 9
        assert table.resolve("second") == 7
        assert table.resolve("third") == 6


class TestBindings:

    def test_bidirectional(self):
        table = AliasTable()
        table.bind("x", 3)
        assert table.resolve("x") == 3
        assert table.name_at(3) == "x"
        assert "x" in table
        assert dict(table) == {"x": 3}

    def test_unknown_name_resolves_to_none(self):
        assert AliasTable().resolve("missing") is None

    def test_address_cannot_be_shared(self):
        table = AliasTable()
        table.bind("x", 3)
        with pytest.raises(BFEMInternalError):
            table.bind("y", 3)

    def test_name_cannot_move(self):
        table = AliasTable()
        table.bind("x", 3)
        with pytest.raises(BFEMInternalError):
            table.bind("x", 4)

    def test_names_deduplicated(self):
        table = AliasTable(["a", "b", "a"])
        assert table.names == ["a", "b"]

    def test_shift_moves_both_directions(self):
        table = AliasTable()
        table.bind("x", 3)
        table.bind("y", 1)
        table.shift(2)
        assert table.resolve("x") == 5
        assert table.name_at(3) == "y"
        assert table.name_at(1) is None

    def test_clear(self):
        table = AliasTable(["x"])
        table.bind("x", 0)
        table.clear()
        assert len(table) == 0
        assert table.names == ["x"]
