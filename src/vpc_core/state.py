"""Value types for machine state, memory, kernel log and console.

Every type here is a frozen dataclass. Updates return new objects so the
engine can take state in and hand state back without the caller ever seeing
a half-applied step.

State Components:
    - MachineState: pc, instruction register, R0-R7, flags, clock period,
      cycle counter and the cosmetic temperature gauge
    - MemoryBank: fixed-length word array plus the last accessed address
    - KernelLog: bounded ring of trace lines (oldest dropped first)
    - ConsoleBuffer: append-only program output
"""

from dataclasses import dataclass, field, replace
from typing import Iterable, Optional, Tuple

from .isa import MEMORY_SIZE, NOP_INSTRUCTION, REGISTER_COUNT, Instruction


DEFAULT_CLOCK_PERIOD = 500
DEFAULT_TEMPERATURE = 35.0
KERNEL_LOG_CAPACITY = 50


@dataclass(frozen=True)
class Flags:
    """Condition bits. Only `equal` is written by the instruction set."""
    zero: bool = False
    equal: bool = False


@dataclass(frozen=True)
class MachineState:
    """Register machine state.

    Attributes:
        pc: Index of the next instruction to fetch
        ir: Most recently fetched instruction (NOP after reset)
        registers: Values of R0-R7
        flags: Condition flags
        clock_period: Tick interval in milliseconds
        cycles: Ticks elapsed since power-on
        temperature: Cosmetic gauge in degrees C, no effect on execution
    """
    pc: int = 0
    ir: Instruction = NOP_INSTRUCTION
    registers: Tuple[int, ...] = (0,) * REGISTER_COUNT
    flags: Flags = field(default_factory=Flags)
    clock_period: int = DEFAULT_CLOCK_PERIOD
    cycles: int = 0
    temperature: float = DEFAULT_TEMPERATURE

    def get_register(self, index: int) -> int:
        """Value of register `index` (precondition: 0 <= index < 8)."""
        return self.registers[index]

    def set_register(self, index: int, value: int) -> "MachineState":
        """New state with register `index` set to `value`.

        Registers have no fixed width; values are stored as given.
        """
        registers = list(self.registers)
        registers[index] = value
        return replace(self, registers=tuple(registers))

    def set_equal(self, equal: bool) -> "MachineState":
        return replace(self, flags=replace(self.flags, equal=equal))

    def increment_pc(self) -> "MachineState":
        return replace(self, pc=self.pc + 1)

    def set_pc(self, new_pc: int) -> "MachineState":
        return replace(self, pc=new_pc)

    def set_ir(self, instruction: Instruction) -> "MachineState":
        return replace(self, ir=instruction)

    def reset(self) -> "MachineState":
        """Reset registers, pc, flags and IR.

        Cycle counter, temperature and clock period are preserved.
        """
        return MachineState(
            clock_period=self.clock_period,
            cycles=self.cycles,
            temperature=self.temperature,
        )

    def __str__(self) -> str:
        regs = " ".join(f"R{i}={v}" for i, v in enumerate(self.registers))
        flags = f"Z={int(self.flags.zero)} E={int(self.flags.equal)}"
        return f"[Cycle {self.cycles}] PC={self.pc} IR={self.ir} {regs} {flags}"


@dataclass(frozen=True)
class MemoryBank:
    """Fixed-length flat word array.

    Reads and writes are bounds-checked by the caller via `in_range`;
    `read`/`write` themselves assume a valid address.

    Attributes:
        words: Memory contents
        last_accessed: Address of the most recent LOAD/STORE, if any
    """
    words: Tuple[int, ...] = (0,) * MEMORY_SIZE
    last_accessed: Optional[int] = None

    @classmethod
    def zeroed(cls, size: int = MEMORY_SIZE) -> "MemoryBank":
        return cls(words=(0,) * size)

    def __len__(self) -> int:
        return len(self.words)

    def in_range(self, address: int) -> bool:
        return 0 <= address < len(self.words)

    def read(self, address: int) -> Tuple[int, "MemoryBank"]:
        """Return the word at `address` and a bank marking the access."""
        return self.words[address], replace(self, last_accessed=address)

    def write(self, address: int, value: int) -> "MemoryBank":
        words = list(self.words)
        words[address] = value
        return MemoryBank(words=tuple(words), last_accessed=address)

    def seed(self, pairs: Iterable[Tuple[int, int]]) -> "MemoryBank":
        """Overwrite the given (address, value) pairs; out-of-range pairs are skipped."""
        words = list(self.words)
        for address, value in pairs:
            if 0 <= address < len(words):
                words[address] = value
        return replace(self, words=tuple(words))


@dataclass(frozen=True)
class KernelLog:
    """Bounded trace of micro-operations, most recent last."""
    lines: Tuple[str, ...] = ()
    capacity: int = KERNEL_LOG_CAPACITY

    def extend(self, new_lines: Iterable[str]) -> "KernelLog":
        lines = self.lines + tuple(new_lines)
        if len(lines) > self.capacity:
            lines = lines[-self.capacity:]
        return replace(self, lines=lines)

    def append(self, line: str) -> "KernelLog":
        return self.extend((line,))

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)


@dataclass(frozen=True)
class ConsoleBuffer:
    """Append-only console output."""
    lines: Tuple[str, ...] = ()

    def extend(self, new_lines: Iterable[str]) -> "ConsoleBuffer":
        return ConsoleBuffer(self.lines + tuple(new_lines))

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)
