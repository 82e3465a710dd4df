from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from aliases import AliasResolutionInvariantViolation, AliasTable, BFEMInternalError
from devices import ByteDevice, StreamDevice
from hooks import HookRegistry, StepContext
from parser import (
    Add,
    BFEMError,
    Goto,
    Input,
    Instruction,
    Loop,
    MoveLeft,
    MoveRight,
    Output,
    Parser,
    Program,
    SourceLocation,
    Span,
    Subtract,
    locate,
)
from tape import DEFAULT_TAPE_SIZE, BFEMRuntimeError, CellPolicy, Tape, TapePolicy


TOP_LEVEL = "<top-level>"


@dataclass(frozen=True)
class RunOptions:
    aliases: bool = True
    optimize: bool = True
    preallocate: bool = True
    skip_whitespace: bool = True
    tape_policy: TapePolicy = TapePolicy.CIRCULAR
    cell_policy: CellPolicy = CellPolicy.CIRCULAR
    tape_size: int = DEFAULT_TAPE_SIZE

    def make_tape(self) -> Tape:
        return Tape(self.tape_size, cell_policy=self.cell_policy, tape_policy=self.tape_policy)


class ExecutionCancelled(BFEMError):
    pass


@dataclass
class Frame:
    name: str
    frame_id: str
    body: List[Instruction]
    loop: Optional[Loop] = None
    index: int = 0


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    rule: str
    span: Optional[Span]
    tape_snapshot: Optional[str]


class StateLogger:
    def __init__(self, verbose: bool) -> None:
        self.verbose = verbose
        # Full history only in verbose mode.
        self.entries: List[StateEntry] = []
        self.next_state_index = 0
        self.last_entry: Optional[StateEntry] = None
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        rule: str,
        span: Optional[Span],
        tape_snapshot: Optional[str] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=frame.frame_id if frame else None,
            rule=rule,
            span=span,
            tape_snapshot=tape_snapshot,
        )
        if self.verbose:
            self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.last_entry = entry
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def forget_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)


class Interpreter:
    def __init__(
        self,
        source: str = "",
        filename: str = "<string>",
        *,
        options: Optional[RunOptions] = None,
        device: Optional[ByteDevice] = None,
        tape: Optional[Tape] = None,
        hooks: Optional[HookRegistry] = None,
        cancel: Optional[Callable[[], bool]] = None,
        verbose: bool = False,
    ) -> None:
        self.source = source
        self.filename = filename
        self.options = options or RunOptions()
        self.device = device or StreamDevice.from_stdio()
        self.tape = tape or self.options.make_tape()
        self.hooks = hooks or HookRegistry()
        self.cancel = cancel
        self.verbose = verbose
        self.aliases = AliasTable()
        self.logger = StateLogger(verbose=verbose)
        self.call_stack: List[Frame] = []
        self.frame_counter = 0
        self.program: Optional[Program] = None

    def parse(self) -> Program:
        parser = Parser(
            self.source,
            self.filename,
            aliases=self.options.aliases,
            skip_whitespace=self.options.skip_whitespace,
        )
        program = parser.parse()
        if self.options.optimize:
            program = program.optimized()
        return program

    def run(self) -> None:
        self.execute(self.parse())

    def execute(self, program: Program, *, aliases: Optional[AliasTable] = None) -> None:
        self.program = program
        self.source = program.source
        self.filename = program.filename
        self.aliases = aliases if aliases is not None else AliasTable(program.alias_names)
        # Bindings from an earlier run point into a tape that is about to be cleared.
        self.aliases.clear()
        self.call_stack = [self._new_frame(TOP_LEVEL, program.instructions, None)]
        self.tape.clear()
        self.tape.realign()
        try:
            if self.options.preallocate:
                self.aliases.allocate_all(self.tape)
            self._emit_event("program_start", self, program)
            self._execute_block()
        except BFEMError as error:
            self._emit_event("on_error", self, error)
            if error.step_index is None and self.logger.last_entry is not None:
                error.step_index = self.logger.last_entry.step_index
            raise
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            # Convert unexpected Python-level exceptions so callers can format them like any other fault.
            last = self.logger.last_entry
            wrapped = BFEMInternalError(
                f"Internal interpreter error: {exc}",
                span=last.span if last else None,
            )
            if last is not None:
                wrapped.step_index = last.step_index
            raise wrapped from exc
        else:
            self._emit_event("program_end", self, 0)
            root = self.call_stack.pop()
            self.logger.forget_frame(root.frame_id)

    def _execute_block(self) -> None:
        stack = self.call_stack
        tape = self.tape
        while stack:
            frame = stack[-1]
            body = frame.body
            if frame.index >= len(body):
                if frame.loop is None:
                    return
                if tape.get_value() != 0:
                    self._check_cancelled(frame.loop.span)
                    frame.index = 0
                    continue
                stack.pop()
                self.logger.forget_frame(frame.frame_id)
                continue

            instruction = body[frame.index]
            frame.index += 1
            self._check_cancelled(instruction.span)
            self._log_step(frame, instruction)
            self._emit_event("before_instruction", self, instruction)
            if isinstance(instruction, Loop):
                if tape.get_value() != 0:
                    stack.append(self._new_frame("loop", instruction.body, instruction))
            else:
                try:
                    self._execute_instruction(instruction)
                except BFEMError as error:
                    if error.span is None:
                        error.span = instruction.span
                    raise
            self._emit_event("after_instruction", self, instruction)

    def _execute_instruction(self, instruction: Instruction) -> None:
        tape = self.tape
        if isinstance(instruction, Add):
            tape.add(instruction.count)
            return
        if isinstance(instruction, Subtract):
            tape.sub(instruction.count)
            return
        if isinstance(instruction, MoveLeft):
            origin = tape.origin
            tape.move_left(instruction.count)
            # Cells prepended in front of bound aliases move them along.
            self.aliases.shift(tape.origin - origin)
            return
        if isinstance(instruction, MoveRight):
            tape.move_right(instruction.count)
            return
        if isinstance(instruction, Input):
            tape.set_value(self._read_byte(instruction.span))
            return
        if isinstance(instruction, Output):
            self.device.write_byte(tape.get_value())
            return
        if isinstance(instruction, Goto):
            self._goto(instruction)
            return
        raise BFEMInternalError(f"Unknown instruction {type(instruction).__name__}", span=instruction.span)

    def _read_byte(self, span: Span) -> int:
        value = self.device.read_byte()
        while value is None:
            self._check_cancelled(span)
            value = self.device.read_byte()
        return value

    def _goto(self, instruction: Goto) -> None:
        address = self.aliases.resolve(instruction.name)
        if address is None:
            if self.options.preallocate:
                raise AliasResolutionInvariantViolation(instruction.name, span=instruction.span)
            address = self.aliases.assign_address(instruction.name, self.tape)
        self.tape.move_pointer_to(address)

    def _check_cancelled(self, span: Span) -> None:
        if self.cancel is not None and self.cancel():
            raise ExecutionCancelled("Execution cancelled", span=span)

    def _new_frame(self, name: str, body: List[Instruction], loop: Optional[Loop]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, body=body, loop=loop)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        if not self.hooks.has_handlers(event):
            return
        try:
            self.hooks.emit(event, *args, **kwargs)
        except BFEMError:
            raise
        except Exception as exc:
            last = self.logger.last_entry
            raise BFEMRuntimeError(
                f"Hook '{event}' failed: {exc}",
                span=last.span if last else None,
            )

    def _log_step(self, frame: Frame, instruction: Instruction) -> None:
        rule = type(instruction).__name__
        snapshot = self.tape.snapshot() if self.verbose else None
        entry = self.logger.record(frame=frame, rule=rule, span=instruction.span, tape_snapshot=snapshot)

        if not self.hooks.has_step_rules:
            return
        try:
            self.hooks.after_step(
                self,
                StepContext(step_index=entry.step_index, rule=rule, span=instruction.span, extra=None),
            )
        except BFEMError:
            raise
        except Exception as exc:
            raise BFEMRuntimeError(f"Step rule failed: {exc}", span=instruction.span)


@dataclass
class RunResult:
    error: Optional[BFEMError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def span(self) -> Optional[Span]:
        return self.error.span if self.error is not None else None


def run(
    program: Program,
    tape: Tape,
    aliases: AliasTable,
    device: ByteDevice,
    *,
    preallocate: bool = True,
    hooks: Optional[HookRegistry] = None,
    cancel: Optional[Callable[[], bool]] = None,
) -> RunResult:
    """Execute an already parsed program and report the first fault, if any."""
    interpreter = Interpreter(
        program.source,
        program.filename,
        options=RunOptions(preallocate=preallocate),
        device=device,
        tape=tape,
        hooks=hooks,
        cancel=cancel,
    )
    try:
        interpreter.execute(program, aliases=aliases)
    except BFEMError as error:
        return RunResult(error=error)
    return RunResult()


def describe(instruction: Instruction) -> Optional[str]:
    if isinstance(instruction, Add):
        return f"Add {instruction.count}"
    if isinstance(instruction, Subtract):
        return f"Subtract {instruction.count}"
    if isinstance(instruction, MoveLeft):
        return f"Move left {instruction.count} spaces"
    if isinstance(instruction, MoveRight):
        return f"Move right {instruction.count} spaces"
    if isinstance(instruction, Input):
        return "Take input"
    if isinstance(instruction, Output):
        return "Write output"
    if isinstance(instruction, Goto):
        return f"Go to alias {instruction.name}"
    return None


def walk(instructions: List[Instruction]) -> Iterator[Tuple[int, Instruction]]:
    """Yield ``(depth, instruction)`` pairs in source order, descending into loops."""
    stack: List[Iterator[Instruction]] = [iter(instructions)]
    while stack:
        instruction = next(stack[-1], None)
        if instruction is None:
            stack.pop()
            continue
        yield len(stack) - 1, instruction
        if isinstance(instruction, Loop):
            stack.append(iter(instruction.body))


def explain(instructions: List[Instruction]) -> List[Tuple[Span, str]]:
    labels: List[Tuple[Span, str]] = []
    for _depth, instruction in walk(instructions):
        info = describe(instruction)
        if info is not None:
            labels.append((instruction.span, info))
    return labels


def _instruction_fields(instruction: Instruction) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "op": type(instruction).__name__,
        "span": [instruction.span.offset, instruction.span.length],
    }
    if isinstance(instruction, (Add, Subtract, MoveLeft, MoveRight)):
        data["count"] = instruction.count
    elif isinstance(instruction, Goto):
        data["name"] = instruction.name
    return data


def instruction_to_dict(instruction: Instruction) -> Dict[str, Any]:
    root = _instruction_fields(instruction)
    pending = [(instruction, root)]
    while pending:
        node, data = pending.pop()
        if not isinstance(node, Loop):
            continue
        body: List[Dict[str, Any]] = []
        data["body"] = body
        for child in node.body:
            child_data = _instruction_fields(child)
            body.append(child_data)
            pending.append((child, child_data))
    return root


def format_tree(instructions: List[Instruction], depth: int = 0) -> str:
    lines: List[str] = []
    for level, instruction in walk(instructions):
        pad = "  " * (depth + level)
        where = f"@{instruction.span.offset}+{instruction.span.length}"
        if isinstance(instruction, Loop):
            lines.append(f"{pad}Loop {where}")
        else:
            lines.append(f"{pad}{describe(instruction)} {where}")
    return "\n".join(lines)


@dataclass
class Diagnostic:
    message: str
    span: Optional[Span]
    source: str
    filename: str = "<string>"
    kind: str = "BFEMError"

    @classmethod
    def from_error(cls, error: BFEMError, source: str, filename: str = "<string>") -> "Diagnostic":
        return cls(message=error.message, span=error.span, source=source, filename=filename, kind=error.__class__.__name__)

    @property
    def location(self) -> Optional[SourceLocation]:
        if self.span is None:
            return None
        return locate(self.source, self.span, self.filename)

    def render(self) -> str:
        lines: List[str] = []
        location = self.location
        if location is not None and self.span is not None:
            lines.append(f"  File \"{location.file}\", line {location.line}, col {location.column}")
            lines.extend(_excerpt(location, self.span))
        lines.append(f"{self.kind}: {self.message}")
        return "\n".join(lines)


def _excerpt(location: SourceLocation, span: Span) -> List[str]:
    if not location.statement:
        return []
    available = len(location.statement) - (location.column - 1)
    width = max(1, min(span.length, available))
    return [
        f"    {location.statement}",
        "    " + " " * (location.column - 1) + "^" * width,
    ]


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    span: Optional[Span]
    state_entry: Optional[StateEntry] = field(default=None)


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def _locate(self, span: Optional[Span]) -> Optional[SourceLocation]:
        if span is None:
            return None
        return locate(self.interpreter.source, span, self.interpreter.filename)

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            span = entry.span if entry else (frame.loop.span if frame.loop else None)
            name = frame.name
            if frame.loop is not None:
                loop_location = self._locate(frame.loop.span)
                if loop_location is not None:
                    name = f"loop@{loop_location.line}:{loop_location.column}"
            frames.append(
                TracebackFrame(name=name, location=self._locate(span), span=span, state_entry=entry)
            )
        return frames

    def format_text(self, error: BFEMError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        frames = self.build_frames()
        for index, frame in enumerate(frames):
            if frame.location:
                lines.append(
                    f"  File \"{frame.location.file}\", line {frame.location.line}, "
                    f"col {frame.location.column}, in {frame.name}"
                )
                # Point at the failing instruction in the innermost frame.
                span = error.span if index == len(frames) - 1 and error.span else frame.span
                location = self._locate(span)
                if location is not None and span is not None:
                    lines.extend(_excerpt(location, span))
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.tape_snapshot is not None:
                    lines.append(f"    Tape snapshot: {frame.state_entry.tape_snapshot}")
        aliases = self.interpreter.aliases
        if verbose and len(aliases):
            bindings = ", ".join(f"{name}={address}" for name, address in aliases)
            lines.append(f"Aliases: {bindings}")
        lines.append(f"{error.__class__.__name__}: {error.message}")
        return "\n".join(lines)

    def to_json(self, error: BFEMError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "column": frame.location.column,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                entry["rule"] = frame.state_entry.rule
                if frame.state_entry.tape_snapshot is not None:
                    entry["tape_snapshot"] = frame.state_entry.tape_snapshot
            frames_json.append(entry)
        span = error.span
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "span": [span.offset, span.length] if span else None,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
            "aliases": dict(self.interpreter.aliases),
        }
        return json.dumps(data, indent=2)
