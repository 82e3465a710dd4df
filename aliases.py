from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
import numpy as np

from parser import BFEMError, Span
from tape import BFEMRuntimeError, Tape


class BFEMInternalError(BFEMError):
    """Raised when the interpreter's own bookkeeping is inconsistent."""


class AliasResolutionInvariantViolation(BFEMInternalError):
    def __init__(self, name: str, *, span: Optional[Span] = None) -> None:
        super().__init__(
            f"Alias {name} was not found and pre-alloc was not disabled. "
            "This may indicate an error in the parser or allocator",
            span=span,
        )
        self.name = name


class AliasAllocationError(BFEMRuntimeError):
    def __init__(self, name: str, *, span: Optional[Span] = None) -> None:
        super().__init__(f"No free cell left to allocate alias {name}", span=span)
        self.name = name


class AliasTable:
    """Known alias names and their name <-> address bindings."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self.names: List[str] = list(dict.fromkeys(names))
        self._by_name: Dict[str, int] = {}
        self._by_address: Dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Tuple[str, int]]:
        return iter(self._by_name.items())

    def bind(self, name: str, address: int) -> None:
        owner = self._by_address.get(address)
        if owner is not None and owner != name:
            raise BFEMInternalError(f"Address {address} is already bound to alias {owner}")
        previous = self._by_name.get(name)
        if previous is not None and previous != address:
            raise BFEMInternalError(f"Alias {name} is already bound to address {previous}")
        self._by_name[name] = address
        self._by_address[address] = name
        if name not in self.names:
            self.names.append(name)

    def resolve(self, name: str) -> Optional[int]:
        return self._by_name.get(name)

    def name_at(self, address: int) -> Optional[str]:
        return self._by_address.get(address)

    def assign_address(self, name: str, tape: Tape) -> int:
        existing = self._by_name.get(name)
        if existing is not None:
            return existing
        # Work backwards from the end of the tape until we find an empty, unclaimed cell.
        for candidate in np.flatnonzero(tape.cells == 0)[::-1]:
            address = int(candidate)
            if address not in self._by_address:
                self.bind(name, address)
                return address
        raise AliasAllocationError(name)

    def allocate_all(self, tape: Tape) -> None:
        for name in self.names:
            self.assign_address(name, tape)

    def shift(self, offset: int) -> None:
        if offset == 0:
            return
        self._by_name = {name: address + offset for name, address in self._by_name.items()}
        self._by_address = {address: name for name, address in self._by_name.items()}

    def clear(self) -> None:
        self._by_name.clear()
        self._by_address.clear()
