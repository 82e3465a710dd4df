"""BFEM entry point and command line wiring."""

from __future__ import annotations
import argparse
import json
import sys
from typing import List, Optional, Tuple

from aliases import BFEMInternalError
from devices import ByteDevice, StreamDevice
from interpreter import (
    Diagnostic,
    ExecutionCancelled,
    Interpreter,
    RunOptions,
    TracebackFormatter,
    explain,
    format_tree,
    instruction_to_dict,
)
from parser import BFEMError, BFEMParseError, locate
from tape import DEFAULT_TAPE_SIZE, CellPolicy, TapePolicy


EXIT_OK = 0
EXIT_FAULT = 1
EXIT_INTERNAL = 3
EXIT_CANCELLED = 130


def _make_device() -> ByteDevice:
    return StreamDevice.from_stdio()


def _options_from_args(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        aliases=not args.disable_aliases,
        optimize=not args.disable_optimise,
        preallocate=not args.disable_alloc,
        skip_whitespace=not args.keep_whitespace,
        tape_policy=TapePolicy(args.tape_mode),
        cell_policy=CellPolicy(args.cell_mode),
        tape_size=args.tape_size,
    )


def _positive_int(text: str) -> int:
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("program", help="Source file path or literal source with -source")
    common.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    common.add_argument("--disable-aliases", action="store_true", help="Disable variable aliases")
    common.add_argument("--disable-optimise", action="store_true", help="Disable consecutive instruction optimisations")
    common.add_argument("--disable-alloc", action="store_true", help="Disable alias pre-allocation")
    common.add_argument("--keep-whitespace", action="store_true", help="Reject whitespace instead of skipping it")
    common.add_argument("--tape-mode", choices=[p.value for p in TapePolicy], default=TapePolicy.CIRCULAR.value)
    common.add_argument("--cell-mode", choices=[p.value for p in CellPolicy], default=CellPolicy.CIRCULAR.value)
    common.add_argument("--tape-size", type=_positive_int, default=DEFAULT_TAPE_SIZE)
    common.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit tape snapshots in tracebacks")
    common.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")

    parser = argparse.ArgumentParser(
        prog="bfem",
        description="BrainF*ck Easy Mode (BFEM). Brainf*ck with quality-of-life improvements.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("run", parents=[common], help="Run the given file")
    compile_parser = commands.add_parser("compile", parents=[common], help="Write the instruction tree of the given file")
    compile_parser.add_argument("output", nargs="?", help="Output file (default: stdout)")
    compile_parser.add_argument("-t", "--tree", action="store_true", help="Output an indented instruction tree instead of JSON")
    commands.add_parser("explain", parents=[common], help="Show a detailed preview of parser info")
    return parser


def _read_source(args: argparse.Namespace) -> Optional[Tuple[str, str]]:
    if args.source_mode:
        return args.program, "<string>"
    try:
        with open(args.program, "r", encoding="utf-8") as handle:
            return handle.read(), args.program
    except OSError as exc:
        print(f"Failed to read {args.program}: {exc}", file=sys.stderr)
        return None


def _write_output(path: Optional[str], rendered: str) -> int:
    if not path:
        print(rendered)
        return EXIT_OK
    try:
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(rendered + "\n")
    except OSError as exc:
        print(f"Failed to write {path}: {exc}", file=sys.stderr)
        return EXIT_FAULT
    return EXIT_OK


def _explain_text(interpreter: Interpreter, source: str, filename: str) -> str:
    program = interpreter.parse()
    lines = [f"Info sheet for {filename}"]
    for span, info in explain(program.instructions):
        location = locate(source, span, filename)
        lines.append(f"  {location.line}:{location.column}  {source[span.offset:span.end]!r:<12} {info}")
    return "\n".join(lines)


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    loaded = _read_source(args)
    if loaded is None:
        return EXIT_FAULT
    source_text, filename = loaded

    interpreter = Interpreter(
        source=source_text,
        filename=filename,
        options=_options_from_args(args),
        device=_make_device(),
        verbose=args.verbose,
    )
    try:
        if args.command == "compile":
            program = interpreter.parse()
            if args.tree:
                rendered = format_tree(program.instructions)
            else:
                tree = [instruction_to_dict(i) for i in program.instructions]
                try:
                    rendered = json.dumps(tree, indent=2)
                except RecursionError:
                    print("Loops are nested too deeply for JSON output; use --tree instead", file=sys.stderr)
                    return EXIT_FAULT
            return _write_output(args.output, rendered)
        if args.command == "explain":
            print(_explain_text(interpreter, source_text, filename))
            return EXIT_OK
        interpreter.run()
    except BFEMParseError as error:
        print(Diagnostic.from_error(error, source_text, filename).render(), file=sys.stderr)
        return EXIT_FAULT
    except KeyboardInterrupt:
        print("\nExecutionCancelled: interrupted", file=sys.stderr)
        return EXIT_CANCELLED
    except BFEMError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        if isinstance(error, BFEMInternalError):
            return EXIT_INTERNAL
        if isinstance(error, ExecutionCancelled):
            return EXIT_CANCELLED
        return EXIT_FAULT
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(run_cli())
