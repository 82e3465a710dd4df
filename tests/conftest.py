# tests/conftest.py
"""
Shared helpers for the BFEM test-suite.
"""

from __future__ import annotations

from typing import Tuple

import pytest

from devices import BufferDevice
from interpreter import Interpreter, RunOptions
from tape import CellPolicy, Tape, TapePolicy


HELLO_WORLD = (
    "++++++++[>++++[>++>+++>+++>+<<<<-]>+>+>->>+[<]<-]"
    ">>.>---.+++++++..+++.>>.<-.<.+++.------.--------.>>+.>++."
)

ALIAS_SWAP = "++{a}+++{b}+++++{a}[-{b}+{a}]{b}."

NESTED_MULTIPLY = "+++[>+++++[>+<-]<-]>>."


def make_interpreter(source: str, data=b"", **options) -> Tuple[Interpreter, BufferDevice]:
    device = BufferDevice(data)
    interpreter = Interpreter(source, options=RunOptions(**options), device=device)
    return interpreter, device


def run_source(source: str, data=b"", **options) -> Tuple[Interpreter, BufferDevice]:
    interpreter, device = make_interpreter(source, data, **options)
    interpreter.run()
    return interpreter, device


@pytest.fixture
def small_tape():
    return Tape(5)


@pytest.fixture
def append_tape():
    return Tape(5, tape_policy=TapePolicy.APPEND)


@pytest.fixture
def fail_tape():
    return Tape(5, cell_policy=CellPolicy.FAIL, tape_policy=TapePolicy.FAIL)
