from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_STACK_SIZE = 1000
DEFAULT_ARRAY_SIZE = 1000

INDENT = "\t"
BUFFER_SYMBOL = "buffer"
ENTRY_SYMBOL = "_start"
LOOP_START_PREFIX = ".LB"
LOOP_END_PREFIX = ".LE"

Source = Union[str, bytes, bytearray]


class CompileError(Exception):
    pass


class UnmatchedClosingBracket(CompileError):
    def __init__(self, position: int) -> None:
        super().__init__(f"unmatched closing bracket at position {position}")
        self.position = position


class UnmatchedOpeningBracket(CompileError):
    def __init__(self, positions: Sequence[int]) -> None:
        self.positions = tuple(positions)
        self.count = len(self.positions)
        where = ", ".join(str(position) for position in self.positions)
        noun = "bracket" if self.count == 1 else "brackets"
        label = "position" if self.count == 1 else "positions"
        super().__init__(f"{self.count} unmatched opening {noun} at {label} {where}")


# === Instruction templates ===

_SYSCALL_WRITE = (
    "movl $4, %eax",
    "movl $1, %ebx",
    "movl %edi, %ecx",
    "movl $1, %edx",
    "int $0x80",
)

_SYSCALL_READ = (
    "movl $3, %eax",
    "movl $0, %ebx",
    "movl %edi, %ecx",
    "movl $1, %edx",
    "int $0x80",
)

TEMPLATES: Dict[str, Tuple[str, ...]] = {
    ">": ("inc %edi",),
    "<": ("dec %edi",),
    "+": ("incb (%edi)",),
    "-": ("decb (%edi)",),
    ".": _SYSCALL_WRITE,
    ",": _SYSCALL_READ,
}

LOOP_START = "["
LOOP_END = "]"
SYMBOLS = frozenset(TEMPLATES) | {LOOP_START, LOOP_END}

_EXIT = (
    "movl $1, %eax",
    "movl $0, %ebx",
    "int $0x80",
)


def loop_start_label(label_id: int) -> str:
    return f"{LOOP_START_PREFIX}{label_id}"


def loop_end_label(label_id: int) -> str:
    return f"{LOOP_END_PREFIX}{label_id}"


# === Bookkeeping ===


class LabelAllocator:
    """Hands out strictly increasing loop ids, starting at 1."""

    def __init__(self) -> None:
        self._last = 0

    @property
    def last(self) -> int:
        return self._last

    def allocate(self) -> int:
        self._last += 1
        return self._last


@dataclass(frozen=True)
class LoopFrame:
    id: int
    position: int


class BracketStack:
    """LIFO of open loop frames.

    Storage is pre-sized from ``capacity`` and doubled whenever it fills up,
    so the hint only affects allocation and never limits nesting depth.
    """

    def __init__(self, capacity: int = DEFAULT_STACK_SIZE) -> None:
        self._slots: List[Optional[LoopFrame]] = [None] * max(1, capacity)
        self._size = 0

    def __len__(self) -> int:
        return self._size

    def __bool__(self) -> bool:
        return self._size > 0

    @property
    def capacity(self) -> int:
        return len(self._slots)

    def push(self, frame: LoopFrame) -> None:
        if self._size == len(self._slots):
            self._slots.extend([None] * len(self._slots))
        self._slots[self._size] = frame
        self._size += 1

    def pop(self) -> Optional[LoopFrame]:
        if self._size == 0:
            return None
        self._size -= 1
        frame = self._slots[self._size]
        self._slots[self._size] = None
        return frame

    def frames(self) -> List[LoopFrame]:
        return [frame for frame in self._slots[: self._size] if frame is not None]


# === Output ===


@dataclass(frozen=True)
class AssemblyProgram:
    lines: Tuple[str, ...]

    def __iter__(self) -> Iterator[str]:
        return iter(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def __str__(self) -> str:
        return self.text()

    def text(self) -> str:
        return "\n".join(self.lines) + "\n"

    def labels(self) -> List[str]:
        return [line[:-1] for line in self.lines if line.endswith(":")]

    def loop_labels(self) -> List[str]:
        return [
            label
            for label in self.labels()
            if label.startswith((LOOP_START_PREFIX, LOOP_END_PREFIX))
        ]


class _Emitter:
    def __init__(self) -> None:
        self.lines: List[str] = []

    def instructions(self, instructions: Sequence[str]) -> None:
        self.lines.extend(INDENT + instruction for instruction in instructions)

    def label(self, name: str) -> None:
        self.lines.append(f"{name}:")

    def blank(self) -> None:
        self.lines.append("")

    def build(self) -> AssemblyProgram:
        return AssemblyProgram(lines=tuple(self.lines))


# === Translator ===


class BrainfuckCompiler:
    def __init__(
        self,
        array_size: int = DEFAULT_ARRAY_SIZE,
        stack_size: int = DEFAULT_STACK_SIZE,
    ) -> None:
        if array_size < 1:
            raise ValueError(f"array size must be a positive integer, got {array_size}")
        self.array_size = array_size
        self.stack_size = stack_size

    def compile(self, source: Source) -> AssemblyProgram:
        symbols = _as_text(source)
        labels = LabelAllocator()
        stack = BracketStack(self.stack_size)
        out = _Emitter()

        self._emit_prologue(out)
        for position, symbol in enumerate(symbols):
            template = TEMPLATES.get(symbol)
            if template is not None:
                out.instructions(template)
                out.blank()
            elif symbol == LOOP_START:
                frame = LoopFrame(id=labels.allocate(), position=position)
                stack.push(frame)
                out.instructions(("cmpb $0, (%edi)", f"jz {loop_end_label(frame.id)}"))
                out.label(loop_start_label(frame.id))
            elif symbol == LOOP_END:
                frame = stack.pop()
                if frame is None:
                    raise UnmatchedClosingBracket(position)
                out.instructions(("cmpb $0, (%edi)", f"jnz {loop_start_label(frame.id)}"))
                out.label(loop_end_label(frame.id))

        if stack:
            raise UnmatchedOpeningBracket([frame.position for frame in stack.frames()])

        self._emit_epilogue(out)
        logger.debug(
            "translated %d characters into %d lines (%d loops)",
            len(symbols),
            len(out.lines),
            labels.last,
        )
        return out.build()

    def _emit_prologue(self, out: _Emitter) -> None:
        out.instructions((".section .bss", f".lcomm {BUFFER_SYMBOL} {self.array_size}"))
        out.blank()
        out.instructions((".section .text", f".globl {ENTRY_SYMBOL}"))
        out.label(ENTRY_SYMBOL)
        out.instructions((f"movl ${BUFFER_SYMBOL}, %edi",))
        out.blank()

    def _emit_epilogue(self, out: _Emitter) -> None:
        out.instructions(_EXIT)
        out.blank()


def _as_text(source: Source) -> str:
    # One byte per symbol; latin-1 maps every byte to exactly one character.
    if isinstance(source, (bytes, bytearray)):
        return bytes(source).decode("latin-1")
    return source


def translate(
    source: Source,
    array_size: int = DEFAULT_ARRAY_SIZE,
    stack_capacity_hint: int = DEFAULT_STACK_SIZE,
) -> AssemblyProgram:
    return BrainfuckCompiler(array_size=array_size, stack_size=stack_capacity_hint).compile(source)


__all__ = [
    "AssemblyProgram",
    "BracketStack",
    "BrainfuckCompiler",
    "CompileError",
    "DEFAULT_ARRAY_SIZE",
    "DEFAULT_STACK_SIZE",
    "LabelAllocator",
    "LoopFrame",
    "UnmatchedClosingBracket",
    "UnmatchedOpeningBracket",
    "loop_end_label",
    "loop_start_label",
    "translate",
]
