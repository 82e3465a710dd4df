from __future__ import annotations
from enum import Enum
import numpy as np
from typing import Optional
from numpy.typing import NDArray

from parser import BFEMError, Span


DEFAULT_TAPE_SIZE = 30000
CELL_MIN = 0
CELL_MAX = 255


class CellPolicy(str, Enum):
    CIRCULAR = "circular"
    CLAMP = "clamp"
    FAIL = "fail"


class TapePolicy(str, Enum):
    CIRCULAR = "circular"
    APPEND = "append"
    FAIL = "fail"


class BFEMRuntimeError(BFEMError):
    """Raised for runtime faults."""


class CellRangeError(BFEMRuntimeError):
    def __init__(self, message: str, *, address: int, value: int, delta: int, span: Optional[Span] = None) -> None:
        super().__init__(message, span=span)
        self.address = address
        self.value = value
        self.delta = delta


class PointerRangeError(BFEMRuntimeError):
    def __init__(self, message: str, *, limit: int, distance: int, pointer: int, span: Optional[Span] = None) -> None:
        super().__init__(message, span=span)
        self.limit = limit
        self.distance = distance
        self.pointer = pointer


def _zeros(count: int) -> NDArray[np.uint8]:
    return np.zeros(count, dtype=np.uint8)


class Tape:
    """Byte cells, a pointer, and the overflow policies applied to both."""

    def __init__(
        self,
        size: int = DEFAULT_TAPE_SIZE,
        *,
        cell_policy: CellPolicy = CellPolicy.CIRCULAR,
        tape_policy: TapePolicy = TapePolicy.CIRCULAR,
    ) -> None:
        if size <= 0:
            raise ValueError(f"Tape size must be positive, got {size}")
        self.cells: NDArray[np.uint8] = _zeros(size)
        self.pointer = 0
        self.cell_policy = CellPolicy(cell_policy)
        self.tape_policy = TapePolicy(tape_policy)
        # Number of cells prepended by APPEND growth since the last clear().
        self.origin = 0

    @property
    def size(self) -> int:
        return int(self.cells.shape[0])

    def clear(self) -> None:
        self.cells.fill(0)
        self.origin = 0

    def realign(self) -> None:
        self.pointer = 0

    def get_value(self) -> int:
        return int(self.cells[self.pointer])

    def set_value(self, value: int) -> None:
        self.set_value_at(self.pointer, value)

    def get_value_at(self, address: int) -> int:
        self._check_address(address)
        return int(self.cells[address])

    def set_value_at(self, address: int, value: int) -> None:
        self._check_address(address)
        if not CELL_MIN <= value <= CELL_MAX:
            raise CellRangeError(
                f"Value {value} does not fit in cell {address}",
                address=address,
                value=int(self.cells[address]),
                delta=value - int(self.cells[address]),
            )
        self.cells[address] = value

    def move_pointer_to(self, address: int) -> None:
        self._check_address(address)
        self.pointer = address

    def add(self, count: int) -> None:
        self._shift_cell(count)

    def sub(self, count: int) -> None:
        self._shift_cell(-count)

    def _shift_cell(self, delta: int) -> None:
        current = int(self.cells[self.pointer])
        target = current + delta
        if CELL_MIN <= target <= CELL_MAX:
            self.cells[self.pointer] = target
            return
        policy = self.cell_policy
        if policy is CellPolicy.CIRCULAR:
            self.cells[self.pointer] = target % (CELL_MAX + 1)
            return
        if policy is CellPolicy.CLAMP:
            self.cells[self.pointer] = CELL_MAX if target > CELL_MAX else CELL_MIN
            return
        if delta > 0:
            message = f"Cell {self.pointer} (value {current}) would go above {CELL_MAX} if {delta} were added"
        else:
            message = f"Cell {self.pointer} (value {current}) would go below {CELL_MIN} if {-delta} were subtracted"
        raise CellRangeError(message, address=self.pointer, value=current, delta=delta)

    def move_left(self, count: int) -> None:
        target = self.pointer - count
        if target >= 0:
            self.pointer = target
            return
        policy = self.tape_policy
        if policy is TapePolicy.CIRCULAR:
            self.pointer = target % self.size
            return
        if policy is TapePolicy.APPEND:
            # Grow by the distance crossed past the front; the pointer lands on the new first cell.
            grow = -target
            self.cells = np.concatenate((_zeros(grow), self.cells))
            self.origin += grow
            self.pointer = 0
            return
        raise PointerRangeError(
            f"Tape pointer would be below 0 if moved left {count} spaces from {self.pointer}",
            limit=0,
            distance=count,
            pointer=self.pointer,
        )

    def move_right(self, count: int) -> None:
        target = self.pointer + count
        if target < self.size:
            self.pointer = target
            return
        policy = self.tape_policy
        if policy is TapePolicy.CIRCULAR:
            self.pointer = target % self.size
            return
        if policy is TapePolicy.APPEND:
            self.cells = np.concatenate((self.cells, _zeros(target - self.size + 1)))
            self.pointer = target
            return
        limit = self.size - 1
        raise PointerRangeError(
            f"Tape pointer would be above {limit} if moved right {count} spaces from {self.pointer}",
            limit=limit,
            distance=count,
            pointer=self.pointer,
        )

    def snapshot(self) -> str:
        return f"ptr={self.pointer} val={self.get_value()} size={self.size}"

    def _check_address(self, address: int) -> None:
        if not 0 <= address < self.size:
            raise PointerRangeError(
                f"Address {address} is outside the tape (size {self.size})",
                limit=self.size - 1,
                distance=address - self.pointer,
                pointer=self.pointer,
            )
