"""Text assembler for the VPC instruction set.

Turns assembly source such as

    MOV R3, 1
    loop:
        LOAD R2, R1     ; R2 = MEM[R1]
        CMP R2, R0
        JEQ found

into an immutable Program. Operands are tagged while assembling, so the
register/immediate question is settled here and never at execution time:

    - `Rn` is always a register
    - a bare number in a register-or-immediate slot (LOAD source, CMP second
      operand) below 8 is a register index, matching Instruction.from_raw
    - jump targets may be numbers or labels
"""

import re
from typing import Dict, List, Optional, Tuple

from .isa import (
    OPERAND_LAYOUT,
    REGISTER_COUNT,
    Immediate,
    Instruction,
    OpCode,
    Program,
    Register,
    tag_operand,
)


# Accepted spellings that are not OpCode values
MNEMONIC_ALIASES = {"HALT": OpCode.HLT}

REGISTER_PATTERN = re.compile(r'^R([0-9]+)$')
LABEL_PATTERN = re.compile(r'^[A-Z_][A-Z0-9_]*$')


class AssemblyError(ValueError):
    """Raised when source cannot be assembled.

    Attributes:
        line_no: 1-based source line, if known
        text: Offending source text
    """

    def __init__(self, message: str, line_no: Optional[int] = None, text: str = ""):
        self.line_no = line_no
        self.text = text
        location = f"line {line_no}: " if line_no is not None else ""
        super().__init__(f"{location}{message}")


class Assembler:
    """Single-line instruction decoder with label resolution.

    Attributes:
        labels: Dictionary mapping upper-cased label names to addresses
    """

    def __init__(self, labels: Optional[Dict[str, int]] = None):
        self.labels: Dict[str, int] = {}
        self.set_labels(labels or {})

    def set_labels(self, labels: Dict[str, int]) -> None:
        """Set label-to-address mapping for jump resolution."""
        self.labels = {name.upper(): addr for name, addr in labels.items()}

    def decode(self, line: str, line_no: Optional[int] = None) -> Instruction:
        """Decode one instruction line.

        Args:
            line: Instruction text without label or comment (e.g. "ADD R0, R1")
            line_no: Source line number for error messages

        Returns:
            Instruction with tagged operands

        Raises:
            AssemblyError: If the mnemonic, operand count or an operand is invalid
        """
        # Normalize: uppercase, collapse whitespace around commas
        text = re.sub(r'\s+', ' ', line.strip().upper())
        text = re.sub(r'\s*,\s*', ',', text)
        if not text:
            raise AssemblyError("Empty instruction", line_no, line)

        mnemonic, _, rest = text.partition(" ")
        opcode = self._parse_opcode(mnemonic, line_no, line)
        tokens = [t for t in rest.split(",") if t] if rest else []

        layout = OPERAND_LAYOUT[opcode]
        if len(tokens) != len(layout):
            raise AssemblyError(
                f"{opcode.value} expects {len(layout)} operand(s), got {len(tokens)}",
                line_no,
                line,
            )

        operands = tuple(
            self._parse_operand(kind, token, opcode, line_no, line)
            for kind, token in zip(layout, tokens)
        )
        return Instruction(opcode, operands, comment=line.strip())

    def _parse_opcode(self, mnemonic: str, line_no, line) -> OpCode:
        if mnemonic in MNEMONIC_ALIASES:
            return MNEMONIC_ALIASES[mnemonic]
        try:
            return OpCode(mnemonic)
        except ValueError:
            raise AssemblyError(f"Unknown instruction: {mnemonic}", line_no, line) from None

    def _parse_operand(self, kind: str, token: str, opcode: OpCode, line_no, line):
        reg_match = REGISTER_PATTERN.match(token)
        if reg_match:
            index = int(reg_match.group(1))
            if index >= REGISTER_COUNT:
                raise AssemblyError(f"Invalid register: {token}", line_no, line)
            if kind == "imm":
                raise AssemblyError(
                    f"{opcode.value} expects a value here, not register {token}", line_no, line
                )
            return Register(index)

        if kind == "reg":
            raise AssemblyError(f"Expected register, got {token}", line_no, line)

        if opcode in (OpCode.JEQ, OpCode.JMP):
            return Immediate(self._resolve_address(token, line_no, line))

        try:
            value = parse_immediate(token)
        except ValueError:
            raise AssemblyError(f"Invalid operand: {token}", line_no, line) from None
        return tag_operand(kind, value)

    def _resolve_address(self, target: str, line_no, line) -> int:
        """Resolve a jump target (number or label) to an instruction index."""
        try:
            address = parse_immediate(target)
        except ValueError:
            address = None
        if address is not None:
            if address < 0:
                raise AssemblyError(f"Negative jump target: {target}", line_no, line)
            return address
        if target in self.labels:
            return self.labels[target]
        raise AssemblyError(f"Unknown label: {target}", line_no, line)


def parse_immediate(value: str) -> int:
    """Parse an immediate value (decimal, hex, or binary).

    Raises:
        ValueError: If value cannot be parsed
    """
    value = value.strip().upper()
    sign = 1
    if value.startswith("-"):
        sign, value = -1, value[1:]

    if value.startswith("0X"):
        return sign * int(value[2:], 16)
    if value.startswith("0B"):
        return sign * int(value[2:], 2)
    return sign * int(value)


def parse_program(source: str) -> Tuple[List[Tuple[int, str]], Dict[str, int]]:
    """Split assembly source into instruction lines and labels.

    Handles:
        - Labels (`name:` on its own line or before an instruction)
        - Comments (starting with ; or #)
        - Blank lines

    Returns:
        Tuple of ([(line_no, instruction_text), ...], label-to-address dict)

    Raises:
        AssemblyError: On a malformed or duplicate label
    """
    lines: List[Tuple[int, str]] = []
    labels: Dict[str, int] = {}

    for line_no, raw in enumerate(source.split("\n"), start=1):
        line = re.sub(r'[;#].*$', '', raw).strip()
        if not line:
            continue

        if ":" in line:
            label, _, line = line.partition(":")
            label = label.strip()
            if not LABEL_PATTERN.match(label.upper()):
                raise AssemblyError(f"Invalid label: {label}", line_no, raw)
            if label.upper() in labels:
                raise AssemblyError(f"Duplicate label: {label}", line_no, raw)
            labels[label.upper()] = len(lines)
            line = line.strip()
            if not line:
                continue

        lines.append((line_no, line))

    return lines, labels


def assemble(source: str) -> Program:
    """Assemble source text into a Program.

    Raises:
        AssemblyError: If any line fails to assemble
    """
    lines, labels = parse_program(source)
    assembler = Assembler(labels)
    return tuple(assembler.decode(text, line_no) for line_no, text in lines)


def disassemble(program: Program) -> List[str]:
    """Render a program as numbered listing lines."""
    width = len(str(max(len(program) - 1, 0)))
    return [f"{addr:>{width}}: {instruction}" for addr, instruction in enumerate(program)]
