from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from .compiler import DEFAULT_ARRAY_SIZE, DEFAULT_STACK_SIZE, CompileError
from .driver import DEFAULT_MODE, CompilerDriver, CompilerOptions, IOFailure, Mode
from .emulator import AssemblyEmulator, EmulationError
from .toolchain import Toolchain, ToolchainError


def _uint(value: str) -> int:
    if not value.isdigit():
        raise argparse.ArgumentTypeError("option requires a numerical argument")
    return int(value)


def _positive_uint(value: str) -> int:
    number = _uint(value)
    if number < 1:
        raise argparse.ArgumentTypeError("array size must be at least 1")
    return number


def _to_input_bytes(data: str) -> List[int]:
    # argv arrives decoded with the filesystem encoding; hand the program the original bytes
    return list(os.fsencode(data))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tinybfc",
        description="Compile Brainfuck into 32-bit x86 Linux assembly",
    )
    parser.add_argument("source", nargs="?", help="Path to the Brainfuck source file")
    parser.add_argument(
        "-s",
        "--stack-size",
        type=_uint,
        default=DEFAULT_STACK_SIZE,
        metavar="NUMBER",
        help="Initial capacity of the loop bracket stack",
    )
    parser.add_argument(
        "-a",
        "--array-size",
        type=_positive_uint,
        default=DEFAULT_ARRAY_SIZE,
        metavar="ARRSIZE",
        help="Size in bytes of the program's cell array",
    )
    parser.add_argument("-c", action="store_true", dest="no_link", help="Only compile and assemble")
    parser.add_argument("-S", action="store_true", dest="compile_only", help="Only compile")
    parser.add_argument("-o", dest="output", metavar="FILE", help="Specify an output file")
    parser.add_argument("-v", action="store_true", dest="verbose", help="Enable verbose output")
    parser.add_argument("-i", action="store_true", dest="stdin", help="Read the source from stdin")
    parser.add_argument(
        "-pipe",
        action="store_true",
        dest="pipe",
        help="Pipe to the assembler if -S is not set, otherwise print to stdout",
    )
    parser.add_argument(
        "--run",
        action="store_true",
        help="Execute the compiled program in the built-in emulator",
    )
    parser.add_argument(
        "--input",
        default="",
        help="Input string supplied to the program when running",
    )
    return parser


def options_from_args(args: argparse.Namespace) -> CompilerOptions:
    mode = DEFAULT_MODE
    if args.no_link:
        mode &= ~Mode.LINK
    if args.compile_only:
        mode &= ~(Mode.LINK | Mode.ASSEMBLE)
    if args.verbose:
        mode |= Mode.VERBOSE
    if args.pipe and not args.output:
        mode |= Mode.PIPE_OUT
    if args.stdin and not args.source:
        mode |= Mode.PIPE_IN
    return CompilerOptions(
        stack_size=args.stack_size,
        array_size=args.array_size,
        output_file=args.output,
        input_file=args.source,
        mode=mode,
    )


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if verbose else "%(message)s",
    )


def _run_in_emulator(driver: CompilerDriver, input_text: str) -> int:
    assembly = driver.compile_source()
    result = AssemblyEmulator().run(assembly, input_data=_to_input_bytes(input_text))
    stdout = sys.stdout
    stdout.flush()
    stdout.buffer.write(result.output)
    stdout.buffer.flush()
    return result.exit_status


def main(argv: Optional[List[str]] = None, toolchain: Optional[Toolchain] = None) -> int:
    args = build_parser().parse_args(argv)
    options = options_from_args(args)
    setup_logging(options.has(Mode.VERBOSE))

    driver = CompilerDriver(options, toolchain)
    try:
        if args.run:
            return _run_in_emulator(driver, args.input)
        driver.run()
    except IOFailure as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except CompileError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except ToolchainError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except EmulationError as exc:
        print(f"runtime error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
