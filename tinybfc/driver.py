from __future__ import annotations

import enum
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional, TextIO

from .compiler import DEFAULT_ARRAY_SIZE, DEFAULT_STACK_SIZE, BrainfuckCompiler
from .toolchain import GnuToolchain, Toolchain, ToolchainConfig

logger = logging.getLogger(__name__)

DEFAULT_BASENAME = "a.out"


class IOFailure(Exception):
    pass


class NoInputFiles(IOFailure):
    def __init__(self) -> None:
        super().__init__("tinybfc: error: no input files\ncompilation terminated.")


class Mode(enum.IntFlag):
    COMPILE = 1 << 0
    ASSEMBLE = 1 << 1
    LINK = 1 << 2
    PIPE_OUT = 1 << 3
    PIPE_IN = 1 << 4
    VERBOSE = 1 << 5


DEFAULT_MODE = Mode.COMPILE | Mode.ASSEMBLE | Mode.LINK


@dataclass
class CompilerOptions:
    stack_size: int = DEFAULT_STACK_SIZE
    array_size: int = DEFAULT_ARRAY_SIZE
    output_file: Optional[str] = None
    input_file: Optional[str] = None
    mode: Mode = field(default=DEFAULT_MODE)

    def has(self, flag: Mode) -> bool:
        return bool(self.mode & flag)


def remove_extension(name: str) -> str:
    dot = name.rfind(".")
    slash = name.rfind("/")
    if dot <= slash:
        return name
    return name[:dot]


def derive_assembly_name(options: CompilerOptions) -> Optional[str]:
    if options.has(Mode.PIPE_OUT):
        return None
    if not options.has(Mode.ASSEMBLE) and options.output_file:
        return options.output_file
    if options.input_file:
        return f"{remove_extension(options.input_file)}.s"
    return f"{DEFAULT_BASENAME}.s"


def derive_object_name(options: CompilerOptions) -> str:
    if not options.has(Mode.LINK) and options.output_file:
        return options.output_file
    if options.input_file:
        return f"{remove_extension(options.input_file)}.o"
    return f"{DEFAULT_BASENAME}.o"


def read_source(options: CompilerOptions, stdin: Optional[BinaryIO] = None) -> bytes:
    if options.has(Mode.PIPE_IN):
        stream = stdin if stdin is not None else sys.stdin.buffer
        return stream.read()
    if not options.input_file:
        raise NoInputFiles()
    try:
        data = Path(options.input_file).read_bytes()
    except OSError as exc:
        raise IOFailure(f"error: couldn't open file {options.input_file}: {exc}") from exc
    logger.debug("opening file %s", options.input_file)
    return data


def _remove_intermediate(path: str) -> None:
    try:
        Path(path).unlink()
    except OSError as exc:
        logger.info("failed to remove %s: %s", path, exc)


class CompilerDriver:
    """Runs the compile, assemble and link pipeline selected by ``options.mode``."""

    def __init__(
        self,
        options: CompilerOptions,
        toolchain: Optional[Toolchain] = None,
        *,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[TextIO] = None,
    ) -> None:
        self.options = options
        self.toolchain = toolchain or GnuToolchain(ToolchainConfig.from_env())
        self.stdin = stdin
        self.stdout = stdout

    def compile_source(self) -> str:
        source = read_source(self.options, self.stdin)
        compiler = BrainfuckCompiler(
            array_size=self.options.array_size,
            stack_size=self.options.stack_size,
        )
        return compiler.compile(source).text()

    def run(self) -> None:
        options = self.options
        assembly = self.compile_source()
        assembly_path = derive_assembly_name(options)
        object_path = derive_object_name(options)

        if options.has(Mode.PIPE_OUT):
            if options.has(Mode.ASSEMBLE):
                self.toolchain.assemble(object_path, text=assembly)
            else:
                stdout = self.stdout if self.stdout is not None else sys.stdout
                stdout.write(assembly)
        else:
            if assembly_path is None:
                raise IOFailure("internal error: expected assembly path")
            self._write_assembly(assembly_path, assembly)

        if not options.has(Mode.ASSEMBLE):
            return

        if not options.has(Mode.PIPE_OUT):
            self.toolchain.assemble(object_path, source_path=assembly_path)
            if not options.has(Mode.LINK):
                _remove_intermediate(assembly_path)

        if not options.has(Mode.LINK):
            return

        self.toolchain.link(object_path, options.output_file)
        _remove_intermediate(object_path)
        if not options.has(Mode.PIPE_OUT):
            _remove_intermediate(assembly_path)

    def _write_assembly(self, path: str, assembly: str) -> None:
        logger.debug("writing assembly to %s", path)
        try:
            Path(path).write_text(assembly, encoding="utf-8")
        except OSError as exc:
            raise IOFailure(f"error: couldn't write file {path}: {exc}") from exc


__all__ = [
    "CompilerDriver",
    "CompilerOptions",
    "DEFAULT_MODE",
    "IOFailure",
    "Mode",
    "NoInputFiles",
    "derive_assembly_name",
    "derive_object_name",
    "read_source",
    "remove_extension",
]
