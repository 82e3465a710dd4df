# tests/test_interpreter.py
"""
Tests for the executor: instruction semantics, alias handling, fault
propagation, cancellation, hooks and step logging.
"""

import json

import pytest

from aliases import AliasResolutionInvariantViolation, AliasTable, BFEMInternalError
from devices import BufferDevice, InputExhaustedError
from hooks import HookRegistry
from interpreter import (
    ExecutionCancelled,
    Interpreter,
    RunOptions,
    TracebackFormatter,
    explain,
    format_tree,
    instruction_to_dict,
    run,
)
from parser import Span, Subtract, UnbalancedLoopError, parse
from tape import BFEMRuntimeError, CellRangeError, PointerRangeError, Tape
from tests.conftest import ALIAS_SWAP, HELLO_WORLD, NESTED_MULTIPLY, make_interpreter, run_source


class TestEndToEnd:

    def test_add_and_output(self):
        interpreter, device = run_source("+++.")
        assert bytes(device.output) == b"\x03"
        assert interpreter.tape.pointer == 0

    def test_hello_world(self):
        _, device = run_source(HELLO_WORLD)
        assert bytes(device.output) == b"Hello World!\n"

    def test_nested_loops(self):
        _, device = run_source(NESTED_MULTIPLY)
        assert bytes(device.output) == bytes([15])

    def test_unbalanced_loop_produces_no_output(self):
        interpreter, device = make_interpreter("[+++")
        with pytest.raises(UnbalancedLoopError) as info:
            interpreter.run()
        assert info.value.span == Span(0, 1)
        assert device.output == bytearray()

    def test_tape_cleared_between_runs(self):
        interpreter, device = make_interpreter("+.")
        interpreter.run()
        interpreter.run()
        assert bytes(device.output) == b"\x01\x01"


class TestLoops:

    def _count_subtracts(self, source):
        hooks = HookRegistry()
        seen = []

        @hooks.on_event("before_instruction")
        def _record(interpreter, instruction):
            if isinstance(instruction, Subtract):
                seen.append(instruction)

        interpreter = Interpreter(
            source,
            options=RunOptions(optimize=False),
            device=BufferDevice(),
            hooks=hooks,
        )
        interpreter.run()
        return interpreter, len(seen)

    def test_clear_loop_runs_once_per_unit(self):
        interpreter, passes = self._count_subtracts("+++++[-]")
        assert passes == 5
        assert interpreter.tape.get_value() == 0

    def test_loop_on_zero_cell_is_skipped(self):
        interpreter, passes = self._count_subtracts("[-]")
        assert passes == 0
        assert interpreter.tape.get_value() == 0

    def test_condition_reread_each_pass(self):
        _, device = run_source("++++[>++<-]>.")
        assert bytes(device.output) == bytes([8])


class TestInput:

    def test_polls_until_byte_available(self):
        device = BufferDevice([None, None, 65])
        interpreter = Interpreter(",.", device=device)
        interpreter.run()
        assert bytes(device.output) == b"A"
        assert device.reads == 3

    def test_echo_until_zero(self):
        _, device = run_source(",[.,]", b"hi\x00")
        assert bytes(device.output) == b"hi"

    def test_exhausted_input_reports_span(self):
        interpreter, _ = make_interpreter("+,")
        with pytest.raises(InputExhaustedError) as info:
            interpreter.run()
        assert info.value.span == Span(1, 1)


class TestFaults:

    def test_cell_fault_in_loop_keeps_prior_output(self):
        interpreter, device = make_interpreter("+.[>-]", cell_policy="fail")
        with pytest.raises(CellRangeError) as info:
            interpreter.run()
        assert bytes(device.output) == b"\x01"
        assert info.value.span == Span(4, 1)
        assert info.value.step_index is not None

    def test_pointer_fault(self):
        interpreter, _ = make_interpreter("+<", tape_policy="fail")
        with pytest.raises(PointerRangeError) as info:
            interpreter.run()
        assert info.value.span == Span(1, 1)
        assert interpreter.tape.pointer == 0

    def test_merged_fault_reports_merged_span(self):
        interpreter, _ = make_interpreter("." + "+" * 300, cell_policy="fail")
        with pytest.raises(CellRangeError) as info:
            interpreter.run()
        assert info.value.span == Span(1, 300)
        assert interpreter.tape.get_value() == 0

    def test_unexpected_exception_is_wrapped(self):
        class BrokenDevice(BufferDevice):
            def write_byte(self, value):
                raise RuntimeError("disk on fire")

        interpreter = Interpreter("+.", device=BrokenDevice())
        with pytest.raises(BFEMInternalError) as info:
            interpreter.run()
        assert "disk on fire" in info.value.message
        assert info.value.span == Span(1, 1)


class TestAliases:

    def test_preallocated_aliases(self):
        interpreter, device = run_source(ALIAS_SWAP)
        assert bytes(device.output) == bytes([8])
        assert interpreter.aliases.resolve("a") == 29999
        assert interpreter.aliases.resolve("b") == 29998

    def test_lazy_aliases(self):
        interpreter, device = run_source(ALIAS_SWAP, preallocate=False)
        assert bytes(device.output) == bytes([8])
        assert interpreter.aliases.resolve("b") == 29998

    def test_lazy_allocation_skips_used_cells(self):
        interpreter, _ = run_source(">>+<<{x}", tape_size=3, preallocate=False)
        assert interpreter.aliases.resolve("x") == 1
        assert interpreter.tape.pointer == 1

    def test_aliases_follow_prepended_cells(self):
        for optimize in (True, False):
            interpreter, device = run_source(
                "{a}+<<<<{a}.", tape_size=2, tape_policy="append", optimize=optimize
            )
            assert bytes(device.output) == b"\x01"
            assert interpreter.aliases.resolve("a") == 4
            assert interpreter.tape.size == 5

    def test_missing_preallocated_alias_is_internal(self):
        program = parse("{x}+")
        result = run(program, Tape(10), AliasTable(), BufferDevice())
        assert not result.ok
        assert isinstance(result.error, AliasResolutionInvariantViolation)
        assert isinstance(result.error, BFEMInternalError)
        assert not isinstance(result.error, BFEMRuntimeError)
        assert result.span == Span(0, 3)


class TestRunResult:

    def test_ok(self):
        program = parse("++.").optimized()
        device = BufferDevice()
        tape = Tape(8)
        result = run(program, tape, AliasTable(program.alias_names), device)
        assert result.ok
        assert result.span is None
        assert bytes(device.output) == b"\x02"

    def test_fault_with_span(self):
        program = parse("-")
        tape = Tape(8, cell_policy="fail")
        result = run(program, tape, AliasTable(), BufferDevice())
        assert isinstance(result.error, CellRangeError)
        assert result.span == Span(0, 1)

    def test_run_clears_tape_first(self):
        tape = Tape(4)
        tape.set_value_at(3, 9)
        tape.move_pointer_to(2)
        program = parse("{v}")
        aliases = AliasTable(program.alias_names)
        assert run(program, tape, aliases, BufferDevice()).ok
        assert aliases.resolve("v") == 3
        assert tape.pointer == 3

    def test_stale_bindings_are_dropped(self):
        program = parse("{v}")
        aliases = AliasTable(program.alias_names)
        aliases.bind("v", 0)
        assert run(program, Tape(4), aliases, BufferDevice()).ok
        assert aliases.resolve("v") == 3


class TestCancellation:

    def test_infinite_loop_cancelled(self):
        checks = []

        def cancel():
            checks.append(1)
            return len(checks) > 50

        interpreter = Interpreter("+[]", device=BufferDevice(), cancel=cancel)
        with pytest.raises(ExecutionCancelled) as info:
            interpreter.run()
        assert info.value.span == Span(1, 2)

    def test_cancel_while_polling_input(self):
        device = BufferDevice([None] * 10)
        polls = []

        def cancel():
            polls.append(1)
            return len(polls) > 3

        interpreter = Interpreter(",", device=device, cancel=cancel)
        with pytest.raises(ExecutionCancelled):
            interpreter.run()


class TestHooksAndLogging:

    def test_program_events(self):
        hooks = HookRegistry()
        events = []
        hooks.on_event("program_start", lambda interp, program: events.append("start"))
        hooks.on_event("program_end", lambda interp, code: events.append(("end", code)))
        Interpreter("+", device=BufferDevice(), hooks=hooks).run()
        assert events == ["start", ("end", 0)]

    def test_on_error_event(self):
        hooks = HookRegistry()
        errors = []
        hooks.on_event("on_error", lambda interp, error: errors.append(error))
        interpreter = Interpreter("<", options=RunOptions(tape_policy="fail"), device=BufferDevice(), hooks=hooks)
        with pytest.raises(PointerRangeError):
            interpreter.run()
        assert len(errors) == 1

    def test_step_rule(self):
        hooks = HookRegistry()
        steps = []
        hooks.every_n_steps(2, lambda interp, ctx: steps.append(ctx.rule))
        Interpreter("+>+>", options=RunOptions(optimize=False), device=BufferDevice(), hooks=hooks).run()
        assert steps == ["Add", "Add"]

    def test_failing_hook_is_wrapped(self):
        hooks = HookRegistry()

        def explode(interp, instruction):
            raise ValueError("boom")

        hooks.on_event("after_instruction", explode)
        interpreter = Interpreter("+", device=BufferDevice(), hooks=hooks)
        with pytest.raises(BFEMRuntimeError) as info:
            interpreter.run()
        assert "boom" in info.value.message

    def test_verbose_logger_keeps_entries(self):
        interpreter = Interpreter("++>", options=RunOptions(optimize=False), device=BufferDevice(), verbose=True)
        interpreter.run()
        entries = interpreter.logger.entries
        assert [e.rule for e in entries] == ["Add", "Add", "MoveRight"]
        assert entries[1].tape_snapshot == "ptr=0 val=1 size=30000"
        assert entries[2].state_id == "s_000002"

    def test_quiet_logger_keeps_last_entry_only(self):
        interpreter, _ = run_source("+++>")
        assert interpreter.logger.entries == []
        assert interpreter.logger.last_entry.rule == "MoveRight"

    def test_finished_loop_frames_are_forgotten(self):
        hooks = HookRegistry()
        sizes = []

        @hooks.on_event("after_instruction")
        def _measure(interp, instruction):
            sizes.append((len(interp.logger.frame_last_entry), len(interp.call_stack)))

        interpreter = Interpreter("+" * 200 + "[>+[-]<-]", device=BufferDevice(), hooks=hooks)
        interpreter.run()
        assert all(entries <= depth for entries, depth in sizes)
        assert max(entries for entries, _ in sizes) <= 3
        assert interpreter.logger.frame_last_entry == {}


class TestDeepNesting:

    def test_runs_without_recursion(self):
        depth = 3000
        interpreter, device = run_source("+" + "[" * depth + "-" + "]" * depth + "+.")
        assert bytes(device.output) == b"\x01"
        assert interpreter.logger.frame_last_entry == {}

    def test_explain_and_tree(self):
        depth = 3000
        program = parse("[" * depth + "," + "]" * depth)
        assert explain(program.instructions) == [(Span(depth, 1), "Take input")]
        lines = format_tree(program.instructions).splitlines()
        assert len(lines) == depth + 1
        assert lines[-1] == "  " * depth + f"Take input @{depth}+1"
        node = instruction_to_dict(program.instructions[0])
        for _ in range(depth - 1):
            node = node["body"][0]
        assert node["body"] == [{"op": "Input", "span": [depth, 1]}]


class TestTracebackFormatting:

    def test_text_traceback_names_loop_frame(self):
        interpreter, _ = make_interpreter("+[>-]", cell_policy="fail")
        with pytest.raises(CellRangeError) as info:
            interpreter.run()
        text = TracebackFormatter(interpreter).format_text(info.value, verbose=False)
        lines = text.splitlines()
        assert lines[0] == "Traceback (most recent call last):"
        assert any("in <top-level>" in line for line in lines)
        assert any("in loop@1:2" in line for line in lines)
        assert "       ^" in lines
        assert lines[-1].startswith("CellRangeError: Cell 1 (value 0)")

    def test_json_traceback(self):
        interpreter, _ = make_interpreter("\n<", tape_policy="fail")
        with pytest.raises(PointerRangeError) as info:
            interpreter.run()
        data = json.loads(TracebackFormatter(interpreter).to_json(info.value))
        assert data["error"]["type"] == "PointerRangeError"
        assert data["error"]["span"] == [1, 1]
        assert data["traceback"][0]["source_location"]["line"] == 2
        assert data["traceback"][0]["rule"] == "MoveLeft"

    def test_verbose_traceback_lists_alias_bindings(self):
        interpreter, _ = make_interpreter("{a}+{b}-", cell_policy="fail", tape_size=4)
        with pytest.raises(CellRangeError) as info:
            interpreter.run()
        formatter = TracebackFormatter(interpreter)
        assert "Aliases: a=3, b=2" in formatter.format_text(info.value, verbose=True).splitlines()
        quiet = formatter.format_text(info.value, verbose=False).splitlines()
        assert not any(line.startswith("Aliases:") for line in quiet)
        assert json.loads(formatter.to_json(info.value))["aliases"] == {"a": 3, "b": 2}
