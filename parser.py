from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


WHITESPACE = " \t\r\n"


@dataclass(frozen=True)
class Span:
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length

    def cover(self, other: "Span") -> "Span":
        start = min(self.offset, other.offset)
        end = max(self.end, other.end)
        return Span(start, end - start)


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


def locate(source: str, span: Span, filename: str = "<string>") -> SourceLocation:
    """Translate a character span into a 1-based line/column location."""
    offset = max(0, min(span.offset, len(source)))
    line_start = source.rfind("\n", 0, offset) + 1
    line_end = source.find("\n", offset)
    if line_end == -1:
        line_end = len(source)
    line = source.count("\n", 0, offset) + 1
    return SourceLocation(
        file=filename,
        line=line,
        column=offset - line_start + 1,
        statement=source[line_start:line_end].rstrip("\r"),
    )


class BFEMError(Exception):
    """Base class for interpreter errors."""

    def __init__(self, message: str, *, span: Optional[Span] = None) -> None:
        super().__init__(message)
        self.message = message
        self.span = span
        self.step_index: Optional[int] = None


class BFEMParseError(BFEMError):
    """Raised when parsing fails."""


class UnrecognizedTokenError(BFEMParseError):
    def __init__(self, char: str, *, span: Span, reason: str = "") -> None:
        message = f"Unrecognised character {char!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, span=span)
        self.char = char


class UnbalancedLoopError(BFEMParseError):
    pass


class UnterminatedAliasError(BFEMParseError):
    pass


@dataclass(frozen=True)
class Instruction:
    span: Span


@dataclass(frozen=True)
class Add(Instruction):
    count: int = 1


@dataclass(frozen=True)
class Subtract(Instruction):
    count: int = 1


@dataclass(frozen=True)
class MoveLeft(Instruction):
    count: int = 1


@dataclass(frozen=True)
class MoveRight(Instruction):
    count: int = 1


@dataclass(frozen=True)
class Input(Instruction):
    pass


@dataclass(frozen=True)
class Output(Instruction):
    pass


@dataclass(frozen=True)
class Loop(Instruction):
    body: List[Instruction] = field(default_factory=list)


@dataclass(frozen=True)
class Goto(Instruction):
    name: str = ""


SIMPLE_TOKENS = {
    "+": Add,
    "-": Subtract,
    "<": MoveLeft,
    ">": MoveRight,
    ",": Input,
    ".": Output,
}


@dataclass
class Program:
    instructions: List[Instruction]
    alias_names: List[str]
    source: str = ""
    filename: str = "<string>"

    def optimized(self) -> "Program":
        from optimizer import optimize

        return Program(
            instructions=optimize(self.instructions),
            alias_names=list(self.alias_names),
            source=self.source,
            filename=self.filename,
        )


class Parser:
    def __init__(
        self,
        source: str,
        filename: str = "<string>",
        *,
        aliases: bool = True,
        skip_whitespace: bool = True,
    ) -> None:
        self.source = source
        self.filename = filename
        self.aliases = aliases
        self.skip_whitespace = skip_whitespace
        self.index = 0
        # dict keeps discovery order while deduplicating
        self._alias_names: Dict[str, None] = {}

    def parse(self) -> Program:
        instructions = self._parse_instructions()
        return Program(
            instructions=instructions,
            alias_names=list(self._alias_names),
            source=self.source,
            filename=self.filename,
        )

    def _parse_instructions(self) -> List[Instruction]:
        # Each open loop is (offset of its '[', the enclosing instruction list).
        open_loops: List[Tuple[int, List[Instruction]]] = []
        current: List[Instruction] = []
        while not self._eof:
            ch = self._peek()
            if ch == "[":
                open_loops.append((self.index, current))
                current = []
                self.index += 1
                continue
            if ch == "]":
                if not open_loops:
                    raise UnrecognizedTokenError(ch, span=Span(self.index, 1), reason="no matching '['")
                start, enclosing = open_loops.pop()
                self.index += 1
                enclosing.append(Loop(span=Span(start, self.index - start), body=current))
                current = enclosing
                continue
            if ch in WHITESPACE and self.skip_whitespace:
                self.index += 1
                continue
            current.append(self._parse_one())
        if open_loops:
            raise UnbalancedLoopError(
                "Unmatched '[': reached end of input before finding ']'",
                span=Span(open_loops[-1][0], 1),
            )
        return current

    def _parse_one(self) -> Instruction:
        start = self.index
        ch = self._peek()
        kind = SIMPLE_TOKENS.get(ch)
        if kind is not None:
            self.index += 1
            return kind(span=Span(start, 1))
        if ch == "{" and self.aliases:
            return self._parse_alias()
        reason = "aliases are disabled" if ch == "{" else ""
        raise UnrecognizedTokenError(ch, span=Span(start, 1), reason=reason)

    def _parse_alias(self) -> Goto:
        start = self.index
        close = self.source.find("}", start + 1)
        if close == -1:
            raise UnterminatedAliasError(
                "Unterminated alias: reached end of input before finding '}'",
                span=Span(start, 1),
            )
        name = self.source[start + 1:close]
        self.index = close + 1
        self._alias_names.setdefault(name, None)
        return Goto(span=Span(start, self.index - start), name=name)

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.source)

    def _peek(self) -> str:
        return self.source[self.index]


def parse(
    source: str,
    filename: str = "<string>",
    *,
    aliases: bool = True,
    skip_whitespace: bool = True,
) -> Program:
    return Parser(source, filename, aliases=aliases, skip_whitespace=skip_whitespace).parse()
