"""Instruction set for the VPC core.

Defines the opcode vocabulary, tagged operands and the immutable
Instruction/Program types consumed by the execution engine.

Operand convention:
    Programs are written as an opcode plus raw integers. For the
    addressing-mode-sensitive slots (LOAD source, CMP second operand) a raw
    integer below REGISTER_COUNT names a register, anything else is an
    immediate value or address. Instruction.from_raw resolves this once,
    when the program is built, into Register/Immediate operands so the
    engine never has to guess.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence, Tuple, Union


REGISTER_COUNT = 8
MEMORY_SIZE = 1024


class OpCode(str, Enum):
    """Symbolic operation identifiers."""
    NOP = "NOP"
    MOV = "MOV"
    LOAD = "LOAD"
    STORE = "STORE"
    ADD = "ADD"
    SUB = "SUB"
    AND = "AND"
    OR = "OR"
    CMP = "CMP"
    JEQ = "JEQ"
    JMP = "JMP"
    HLT = "HLT"
    OUT = "OUT"


@dataclass(frozen=True)
class Register:
    """Operand naming one of the general purpose registers."""
    index: int

    def __str__(self) -> str:
        return f"R{self.index}"


@dataclass(frozen=True)
class Immediate:
    """Operand carrying a literal value, address or jump target."""
    value: int

    def __str__(self) -> str:
        return str(self.value)


Operand = Union[Register, Immediate]

# Operand kinds per opcode: "reg" is always a register, "imm" is always a
# literal, "dual" follows the register-count threshold.
OPERAND_LAYOUT = {
    OpCode.NOP: (),
    OpCode.MOV: ("reg", "imm"),
    OpCode.LOAD: ("reg", "dual"),
    OpCode.STORE: ("reg", "imm"),
    OpCode.ADD: ("reg", "reg"),
    OpCode.SUB: ("reg", "reg"),
    OpCode.AND: ("reg", "reg"),
    OpCode.OR: ("reg", "reg"),
    OpCode.CMP: ("reg", "dual"),
    OpCode.JEQ: ("imm",),
    OpCode.JMP: ("imm",),
    OpCode.HLT: (),
    OpCode.OUT: ("reg",),
}


def tag_operand(kind: str, raw: int) -> Operand:
    """Resolve a raw integer into a tagged operand for the given slot kind."""
    if kind == "reg":
        return Register(raw)
    if kind == "dual" and 0 <= raw < REGISTER_COUNT:
        return Register(raw)
    return Immediate(raw)


@dataclass(frozen=True)
class Instruction:
    """One opcode plus at most two tagged operands.

    Attributes:
        op: Operation to perform
        operands: Tagged operands in source order
        comment: Optional human readable note (not used by the engine)
    """
    op: OpCode
    operands: Tuple[Operand, ...] = ()
    comment: str = field(default="", compare=False)

    @classmethod
    def from_raw(cls, op, args: Sequence[int] = (), comment: str = "") -> "Instruction":
        """Build an instruction from an opcode and raw integer operands.

        Args:
            op: OpCode member or its mnemonic string
            args: Raw integer operands, one per operand slot
            comment: Optional note shown in listings

        Returns:
            Instruction with operands tagged per OPERAND_LAYOUT

        Raises:
            ValueError: If the opcode is unknown or the operand count is wrong
        """
        opcode = OpCode(op.upper()) if isinstance(op, str) else OpCode(op)
        layout = OPERAND_LAYOUT[opcode]
        if len(args) != len(layout):
            raise ValueError(
                f"{opcode.value} takes {len(layout)} operands, got {len(args)}"
            )
        operands = tuple(tag_operand(kind, int(raw)) for kind, raw in zip(layout, args))
        return cls(opcode, operands, comment)

    @property
    def args(self) -> Tuple[int, ...]:
        """Raw integer view of the operands."""
        return tuple(
            o.index if isinstance(o, Register) else o.value for o in self.operands
        )

    def __str__(self) -> str:
        if not self.operands:
            return self.op.value
        return f"{self.op.value} " + ", ".join(str(o) for o in self.operands)


NOP_INSTRUCTION = Instruction(OpCode.NOP)

Program = Tuple[Instruction, ...]


def make_program(rows: Iterable) -> Program:
    """Build a Program from (op, args[, comment]) rows or Instructions."""
    program = []
    for row in rows:
        if isinstance(row, Instruction):
            program.append(row)
        else:
            program.append(Instruction.from_raw(*row))
    return tuple(program)
