from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .compiler import AssemblyProgram

WORD_MASK = 0xFFFFFFFF
BYTE_MASK = 0xFF
DEFAULT_BASE_ADDRESS = 0x0804A000

SYS_EXIT = 1
SYS_READ = 3
SYS_WRITE = 4
STDOUT_FD = 1
STDIN_FD = 0

REGISTERS = ("eax", "ebx", "ecx", "edx", "esi", "edi")


class EmulationError(RuntimeError):
    pass


class StepLimitExceeded(EmulationError):
    """Raised when execution exceeds the configured step budget."""


class MemoryAccessError(EmulationError):
    def __init__(self, address: int) -> None:
        super().__init__(f"segmentation fault: access to address 0x{address:08x}")
        self.address = address


class UnsupportedInstruction(EmulationError):
    pass


@dataclass(frozen=True)
class Instruction:
    mnemonic: str
    operands: Tuple[str, ...]
    line: int

    def __str__(self) -> str:
        return f"{self.mnemonic} {', '.join(self.operands)}".rstrip()


@dataclass
class LoadedProgram:
    instructions: List[Instruction]
    labels: Dict[str, int]
    buffer_symbol: str
    buffer_size: int
    entry: str


@dataclass
class ExecutionState:
    step: int
    pc: int
    instruction: Optional[str]
    cursor: int
    tape_start: int
    tape: List[int]
    output: bytes
    exit_status: Optional[int]


@dataclass
class EmulationResult:
    output: bytes
    exit_status: int
    steps: int


def load(program: Union[AssemblyProgram, str]) -> LoadedProgram:
    """Parse the directives, labels and instructions of an emitted program."""
    text = program.text() if isinstance(program, AssemblyProgram) else program
    instructions: List[Instruction] = []
    labels: Dict[str, int] = {}
    buffer_symbol: Optional[str] = None
    buffer_size = 0
    entry: Optional[str] = None

    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.split("#", 1)[0].strip()
        if not line:
            continue
        if line.endswith(":"):
            labels[line[:-1]] = len(instructions)
            continue
        mnemonic, _, rest = line.partition(" ")
        operands = tuple(part.strip() for part in rest.split(",")) if rest.strip() else ()
        if mnemonic == ".lcomm":
            name, size = operands[0].split()
            buffer_symbol = name
            buffer_size = int(size)
        elif mnemonic == ".globl":
            entry = operands[0]
        elif mnemonic.startswith("."):
            continue
        else:
            instructions.append(Instruction(mnemonic=mnemonic, operands=operands, line=number))

    if buffer_symbol is None:
        raise UnsupportedInstruction("program does not reserve a buffer with .lcomm")
    if entry is None or entry not in labels:
        raise UnsupportedInstruction("program has no entry point label")
    return LoadedProgram(
        instructions=instructions,
        labels=labels,
        buffer_symbol=buffer_symbol,
        buffer_size=buffer_size,
        entry=entry,
    )


@dataclass
class AssemblyEmulator:
    """Executes the 32-bit x86 subset produced by ``BrainfuckCompiler``.

    Registers wrap at 32 bits and memory cells at 8 bits, like the real
    machine. Moving the cursor is never checked; only dereferencing an
    address outside the reserved buffer faults.
    """

    base_address: int = DEFAULT_BASE_ADDRESS

    registers: Dict[str, int] = field(init=False, repr=False)
    memory: bytearray = field(init=False, repr=False)
    output_buffer: bytearray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.reset(0)

    def reset(self, buffer_size: int) -> None:
        self.registers = {name: 0 for name in REGISTERS}
        self.memory = bytearray(buffer_size)
        self.output_buffer = bytearray()
        self.zero_flag = False
        self.exit_status: Optional[int] = None

    @property
    def cursor(self) -> int:
        return (self.registers["edi"] - self.base_address) & WORD_MASK

    def run(
        self,
        program: Union[AssemblyProgram, str],
        input_data: Optional[Iterable[int]] = None,
        max_steps: Optional[int] = None,
    ) -> EmulationResult:
        state: Optional[ExecutionState] = None
        for state in self.step(program, input_data=input_data, max_steps=max_steps):
            pass
        assert state is not None
        return EmulationResult(
            output=bytes(self.output_buffer),
            exit_status=self.exit_status if self.exit_status is not None else 0,
            steps=state.step,
        )

    def step(
        self,
        program: Union[AssemblyProgram, str],
        input_data: Optional[Iterable[int]] = None,
        max_steps: Optional[int] = None,
        tape_window: int = 10,
    ) -> Iterator[ExecutionState]:
        loaded = load(program)
        self.reset(loaded.buffer_size)
        input_iter = iter(list(input_data or []))
        pc = loaded.labels[loaded.entry]
        steps = 0

        while self.exit_status is None:
            if pc >= len(loaded.instructions):
                raise EmulationError("execution ran past the end of the program")
            if max_steps is not None and steps >= max_steps:
                raise StepLimitExceeded("program exceeded allowed step count")

            instruction = loaded.instructions[pc]
            pc = self._execute(instruction, pc, loaded, input_iter)
            steps += 1
            yield self._snapshot(pc, str(instruction), steps, tape_window)

        yield self._snapshot(pc, None, steps, tape_window)

    def _execute(
        self,
        instruction: Instruction,
        pc: int,
        loaded: LoadedProgram,
        input_iter: Iterator[int],
    ) -> int:
        mnemonic = instruction.mnemonic
        operands = instruction.operands
        new_pc = pc + 1
        if mnemonic == "movl":
            value = self._read_operand(operands[0], loaded)
            self._write_register(operands[1], value)
        elif mnemonic in ("inc", "dec"):
            delta = 1 if mnemonic == "inc" else -1
            register = operands[0]
            self._write_register(register, self._read_register(register) + delta)
        elif mnemonic in ("incb", "decb"):
            delta = 1 if mnemonic == "incb" else -1
            address = self._address(operands[0])
            self._store(address, self._load(address) + delta)
        elif mnemonic == "cmpb":
            immediate = self._immediate(operands[0])
            value = self._load(self._address(operands[1]))
            self.zero_flag = ((value - immediate) & BYTE_MASK) == 0
        elif mnemonic in ("jz", "jnz"):
            if self.zero_flag == (mnemonic == "jz"):
                new_pc = self._target(operands[0], loaded)
        elif mnemonic == "int":
            if self._immediate(operands[0]) != 0x80:
                raise UnsupportedInstruction(f"unsupported interrupt at line {instruction.line}")
            self._syscall(input_iter)
        else:
            raise UnsupportedInstruction(
                f"unsupported instruction '{instruction}' at line {instruction.line}"
            )
        return new_pc

    def _syscall(self, input_iter: Iterator[int]) -> None:
        number = self.registers["eax"]
        if number == SYS_EXIT:
            self.exit_status = self.registers["ebx"] & BYTE_MASK
        elif number == SYS_WRITE:
            if self.registers["ebx"] != STDOUT_FD:
                raise EmulationError(f"write to unsupported descriptor {self.registers['ebx']}")
            address = self.registers["ecx"]
            count = self.registers["edx"]
            for offset in range(count):
                self.output_buffer.append(self._load(address + offset))
            self.registers["eax"] = count
        elif number == SYS_READ:
            if self.registers["ebx"] != STDIN_FD:
                raise EmulationError(f"read from unsupported descriptor {self.registers['ebx']}")
            address = self.registers["ecx"]
            read = 0
            for offset in range(self.registers["edx"]):
                try:
                    value = next(input_iter)
                except StopIteration:
                    break
                self._store(address + offset, value)
                read += 1
            self.registers["eax"] = read
        else:
            raise UnsupportedInstruction(f"unsupported system call {number}")

    def _read_operand(self, operand: str, loaded: LoadedProgram) -> int:
        if operand.startswith("$"):
            symbol = operand[1:]
            if symbol == loaded.buffer_symbol:
                return self.base_address
            return self._immediate(operand)
        return self._read_register(operand)

    def _immediate(self, operand: str) -> int:
        if not operand.startswith("$"):
            raise UnsupportedInstruction(f"expected immediate operand, got '{operand}'")
        return int(operand[1:], 0)

    def _register_name(self, operand: str) -> str:
        name = operand.lstrip("%")
        if not operand.startswith("%") or name not in self.registers:
            raise UnsupportedInstruction(f"unknown register '{operand}'")
        return name

    def _read_register(self, operand: str) -> int:
        return self.registers[self._register_name(operand)]

    def _write_register(self, operand: str, value: int) -> None:
        self.registers[self._register_name(operand)] = value & WORD_MASK

    def _address(self, operand: str) -> int:
        if not (operand.startswith("(") and operand.endswith(")")):
            raise UnsupportedInstruction(f"expected memory operand, got '{operand}'")
        return self._read_register(operand[1:-1])

    def _target(self, label: str, loaded: LoadedProgram) -> int:
        try:
            return loaded.labels[label]
        except KeyError as exc:
            raise UnsupportedInstruction(f"undefined label '{label}'") from exc

    def _offset(self, address: int) -> int:
        offset = (address - self.base_address) & WORD_MASK
        if offset >= len(self.memory):
            raise MemoryAccessError(address & WORD_MASK)
        return offset

    def _load(self, address: int) -> int:
        return self.memory[self._offset(address)]

    def _store(self, address: int, value: int) -> None:
        self.memory[self._offset(address)] = value & BYTE_MASK

    def _snapshot(
        self,
        pc: int,
        instruction: Optional[str],
        step: int,
        tape_window: int,
    ) -> ExecutionState:
        cursor = self.cursor
        size = len(self.memory)
        anchor = cursor if cursor < size else 0
        start = max(0, anchor - tape_window)
        end = min(size, anchor + tape_window + 1)
        return ExecutionState(
            step=step,
            pc=pc,
            instruction=instruction,
            cursor=cursor,
            tape_start=start,
            tape=list(self.memory[start:end]),
            output=bytes(self.output_buffer),
            exit_status=self.exit_status,
        )


__all__ = [
    "AssemblyEmulator",
    "EmulationError",
    "EmulationResult",
    "ExecutionState",
    "Instruction",
    "LoadedProgram",
    "MemoryAccessError",
    "StepLimitExceeded",
    "UnsupportedInstruction",
    "load",
]
