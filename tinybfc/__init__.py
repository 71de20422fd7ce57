from .compiler import (
    AssemblyProgram,
    BracketStack,
    BrainfuckCompiler,
    CompileError,
    LabelAllocator,
    LoopFrame,
    UnmatchedClosingBracket,
    UnmatchedOpeningBracket,
    translate,
)
from .driver import CompilerDriver, CompilerOptions, IOFailure, Mode
from .emulator import AssemblyEmulator, EmulationError, ExecutionState, MemoryAccessError, StepLimitExceeded
from .toolchain import ExternalToolFailure, GnuToolchain, ToolchainConfig, ToolchainError

__all__ = [
    "AssemblyEmulator",
    "AssemblyProgram",
    "BracketStack",
    "BrainfuckCompiler",
    "CompileError",
    "CompilerDriver",
    "CompilerOptions",
    "EmulationError",
    "ExecutionState",
    "ExternalToolFailure",
    "GnuToolchain",
    "IOFailure",
    "LabelAllocator",
    "LoopFrame",
    "MemoryAccessError",
    "Mode",
    "StepLimitExceeded",
    "ToolchainConfig",
    "ToolchainError",
    "UnmatchedClosingBracket",
    "UnmatchedOpeningBracket",
    "translate",
]
