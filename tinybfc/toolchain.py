from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


class ToolchainError(Exception):
    pass


class ToolNotFoundError(ToolchainError):
    def __init__(self, tool: str, command: Sequence[str]) -> None:
        super().__init__(f"{tool}: command not found")
        self.tool = tool
        self.command = list(command)


class ExternalToolFailure(ToolchainError):
    def __init__(self, tool: str, returncode: int, command: Sequence[str]) -> None:
        super().__init__(f"{tool} exited with code {returncode}")
        self.tool = tool
        self.returncode = returncode
        self.command = list(command)


class Toolchain(Protocol):
    def assemble(
        self,
        object_path: PathLike,
        *,
        text: Optional[str] = None,
        source_path: Optional[PathLike] = None,
    ) -> Path:
        ...

    def link(self, object_path: PathLike, output_path: Optional[PathLike] = None) -> Path:
        ...


@dataclass
class ToolchainConfig:
    """Assembler/linker settings for a 32-bit x86 ELF target.

    ``from_env`` reads optional overrides:

    - ``TINYBFC_AS`` / ``TINYBFC_LD``: executable names
    - ``TINYBFC_ASFLAGS`` / ``TINYBFC_LDFLAGS``: extra flags, shell-split
    """

    assembler: str = "as"
    linker: str = "ld"
    assembler_flags: Tuple[str, ...] = ("--32",)
    linker_flags: Tuple[str, ...] = ("-m", "elf_i386")
    debug: bool = True

    @classmethod
    def from_env(cls) -> "ToolchainConfig":
        config = cls()
        if "TINYBFC_AS" in os.environ:
            config.assembler = os.environ["TINYBFC_AS"]
        if "TINYBFC_LD" in os.environ:
            config.linker = os.environ["TINYBFC_LD"]
        if "TINYBFC_ASFLAGS" in os.environ:
            config.assembler_flags = tuple(shlex.split(os.environ["TINYBFC_ASFLAGS"]))
        if "TINYBFC_LDFLAGS" in os.environ:
            config.linker_flags = tuple(shlex.split(os.environ["TINYBFC_LDFLAGS"]))
        return config


@dataclass
class GnuToolchain:
    config: ToolchainConfig = field(default_factory=ToolchainConfig)

    def assemble(
        self,
        object_path: PathLike,
        *,
        text: Optional[str] = None,
        source_path: Optional[PathLike] = None,
    ) -> Path:
        if (text is None) == (source_path is None):
            raise ValueError("assemble() needs exactly one of text or source_path")
        command: List[str] = [self.config.assembler, *self.config.assembler_flags]
        if source_path is not None:
            command.append(os.fspath(source_path))
        if self.config.debug:
            command.append("-g")
        command.extend(["-o", os.fspath(object_path)])
        self._run(command, stdin_data=text)
        return Path(object_path)

    def link(self, object_path: PathLike, output_path: Optional[PathLike] = None) -> Path:
        command: List[str] = [self.config.linker, *self.config.linker_flags, os.fspath(object_path)]
        if output_path is not None:
            command.extend(["-o", os.fspath(output_path)])
        self._run(command)
        return Path(output_path) if output_path is not None else Path("a.out")

    def _run(self, command: List[str], stdin_data: Optional[str] = None) -> None:
        tool = command[0]
        logger.debug("running: %s", shlex.join(command))
        try:
            completed = subprocess.run(command, input=stdin_data, text=True)
        except FileNotFoundError as exc:
            raise ToolNotFoundError(tool, command) from exc
        if completed.returncode != 0:
            raise ExternalToolFailure(tool, completed.returncode, command)


__all__ = [
    "ExternalToolFailure",
    "GnuToolchain",
    "Toolchain",
    "ToolchainConfig",
    "ToolchainError",
    "ToolNotFoundError",
]
