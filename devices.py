from __future__ import annotations
from abc import ABC, abstractmethod
from typing import BinaryIO, Iterable, List, Optional, Union

from tape import BFEMRuntimeError


class InputExhaustedError(BFEMRuntimeError):
    def __init__(self) -> None:
        super().__init__("Input requested but the input stream is exhausted")


class ByteDevice(ABC):
    """The byte-level I/O capability the interpreter needs."""

    @abstractmethod
    def read_byte(self) -> Optional[int]:
        """Return the next byte, or None when no byte is available yet."""

    @abstractmethod
    def write_byte(self, value: int) -> None:
        ...


class BufferDevice(ByteDevice):
    """In-memory device. ``None`` entries in the input simulate "no byte yet"."""

    def __init__(self, data: Union[bytes, str, Iterable[Optional[int]]] = b"") -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._pending: List[Optional[int]] = list(data)
        self._index = 0
        self.output = bytearray()
        self.reads = 0

    def read_byte(self) -> Optional[int]:
        self.reads += 1
        if self._index >= len(self._pending):
            raise InputExhaustedError()
        value = self._pending[self._index]
        self._index += 1
        return value

    def write_byte(self, value: int) -> None:
        self.output.append(value)


class StreamDevice(ByteDevice):
    """Device over binary streams. A ``None`` read from a non-blocking reader means "no byte yet"."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO) -> None:
        self.reader = reader
        self.writer = writer

    @classmethod
    def from_stdio(cls) -> "StreamDevice":
        import sys

        return cls(sys.stdin.buffer, sys.stdout.buffer)

    def read_byte(self) -> Optional[int]:
        self.writer.flush()
        chunk = self.reader.read(1)
        if chunk is None:
            return None
        if chunk == b"":
            raise InputExhaustedError()
        return chunk[0]

    def write_byte(self, value: int) -> None:
        self.writer.write(bytes((value,)))
        self.writer.flush()
