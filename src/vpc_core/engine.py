"""Execution engine: the pure fetch-decode-execute step.

Each opcode is a handler registered in a frozen InstructionRegistry.
A handler takes (state, memory, instruction) and returns a StepResult
holding the new state, the new memory and the log/console lines produced.
Nothing is mutated in place; the caller applies the result.

Faults never raise. Out-of-range memory access and a pc outside the
program are reported as kernel log lines, with a typed Fault attached
to the result for callers that want to branch on it.
"""

import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Tuple

from .isa import Instruction, OpCode, Register
from .state import MachineState, MemoryBank


TEMPERATURE_CEILING = 85.0

HALT_END_OF_PROGRAM = "CPU HALT: End of instructions."
HALT_TRIGGERED = "CPU HALT triggered."


class Fault(str, Enum):
    """Non-fatal conditions reported alongside a step result."""
    SEGFAULT = "SEGFAULT"
    PC_OVERRUN = "PC_OVERRUN"


@dataclass(frozen=True)
class StepResult:
    """Outcome of one engine step.

    Attributes:
        state: Machine state after the step
        memory: Memory bank after the step
        log_lines: Kernel log lines produced by the step
        console_lines: Console lines produced by the step
        fault: Fault raised during the step, if any (informational)
    """
    state: MachineState
    memory: MemoryBank
    log_lines: Tuple[str, ...] = ()
    console_lines: Tuple[str, ...] = ()
    fault: Optional[Fault] = None


Handler = Callable[[MachineState, MemoryBank, Instruction], StepResult]


class InstructionRegistry:
    """Frozen mapping of opcodes to handler functions.

    Attributes:
        _handlers: Dictionary mapping OpCode to handler
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self):
        self._handlers: Dict[OpCode, Handler] = {}
        self._frozen = False
        self._register_all_handlers()
        self.freeze()

    def _register_all_handlers(self) -> None:
        # Data movement
        self.register(OpCode.MOV, _op_mov)
        self.register(OpCode.LOAD, _op_load)
        self.register(OpCode.STORE, _op_store)

        # Arithmetic / bitwise
        self.register(OpCode.ADD, _binary_op("ADD", lambda a, b: a + b))
        self.register(OpCode.SUB, _binary_op("SUB", lambda a, b: a - b))
        self.register(OpCode.AND, _binary_op("AND", lambda a, b: a & b))
        self.register(OpCode.OR, _binary_op("OR", lambda a, b: a | b))

        # Comparison and control flow
        self.register(OpCode.CMP, _op_cmp)
        self.register(OpCode.JEQ, _op_jeq)
        self.register(OpCode.JMP, _op_jmp)

        # Special
        self.register(OpCode.OUT, _op_out)
        self.register(OpCode.HLT, _op_hlt)
        self.register(OpCode.NOP, _op_nop)

    def register(self, op: OpCode, handler: Handler) -> None:
        """Register a handler for an opcode.

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If opcode already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register handlers: registry is frozen")
        if op in self._handlers:
            raise ValueError(f"Handler already registered: {op.value}")
        self._handlers[op] = handler

    def freeze(self) -> None:
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def opcodes(self) -> set:
        return set(self._handlers)

    def dispatch(self, state: MachineState, memory: MemoryBank, instruction: Instruction) -> StepResult:
        # Every OpCode member is registered, so lookups cannot miss.
        return self._handlers[instruction.op](state, memory, instruction)


# =============================================================================
# Handlers
# =============================================================================

def _resolve(state: MachineState, operand) -> int:
    """Value of a tagged operand: register contents or the literal itself."""
    if isinstance(operand, Register):
        return state.get_register(operand.index)
    return operand.value


def _op_nop(state, memory, instruction):
    return StepResult(state.increment_pc(), memory, ("NOP",))


def _op_mov(state, memory, instruction):
    """MOV Rd, imm - Load immediate value into register."""
    dst, src = instruction.operands
    value = _resolve(state, src)
    new_state = state.set_register(dst.index, value).increment_pc()
    return StepResult(new_state, memory, (f"MOV: R{dst.index} = {value}",))


def _op_load(state, memory, instruction):
    """LOAD Rd, addr - Read memory into a register.

    The address is the contents of a register operand or the literal
    address itself. Out-of-range addresses leave the register untouched.
    """
    dst, src = instruction.operands
    address = _resolve(state, src)
    if not memory.in_range(address):
        return StepResult(
            state.increment_pc(), memory, (f"ERR: SegFault at {address}",), fault=Fault.SEGFAULT
        )
    value, new_memory = memory.read(address)
    new_state = state.set_register(dst.index, value).increment_pc()
    return StepResult(new_state, new_memory, (f"LOAD: R{dst.index} = MEM[{address}] ({value})",))


def _op_store(state, memory, instruction):
    """STORE Rs, addr - Write a register to memory."""
    src, dest = instruction.operands
    address = _resolve(state, dest)
    if not memory.in_range(address):
        return StepResult(
            state.increment_pc(), memory, (f"ERR: SegFault at {address}",), fault=Fault.SEGFAULT
        )
    value = state.get_register(src.index)
    new_memory = memory.write(address, value)
    return StepResult(
        state.increment_pc(), new_memory, (f"STORE: MEM[{address}] = R{src.index} ({value})",)
    )


def _binary_op(name: str, fn: Callable[[int, int], int]) -> Handler:
    """Build a handler for `OP Rd, Rs` register-register arithmetic."""

    def handler(state, memory, instruction):
        dst, src = instruction.operands
        result = fn(state.get_register(dst.index), _resolve(state, src))
        new_state = state.set_register(dst.index, result)
        return StepResult(
            new_state.increment_pc(),
            memory,
            (f"{name}: R{dst.index} = {new_state.get_register(dst.index)}",),
        )

    handler.__name__ = f"_op_{name.lower()}"
    return handler


def _op_cmp(state, memory, instruction):
    """CMP Rs, operand - Set the equal flag."""
    reg, other = instruction.operands
    val1 = state.get_register(reg.index)
    val2 = _resolve(state, other)
    equal = val1 == val2
    new_state = state.set_equal(equal).increment_pc()
    return StepResult(
        new_state, memory, (f"CMP: R{reg.index}({val1}) == {val2} ? {str(equal).lower()}",)
    )


def _op_jeq(state, memory, instruction):
    """JEQ addr - Jump if the equal flag is set."""
    target = _resolve(state, instruction.operands[0])
    if state.flags.equal:
        return StepResult(state.set_pc(target), memory, (f"JEQ: Jumping to {target}",))
    return StepResult(state.increment_pc(), memory, ("JEQ: Not equal, continuing",))


def _op_jmp(state, memory, instruction):
    """JMP addr - Unconditional jump."""
    target = _resolve(state, instruction.operands[0])
    return StepResult(state.set_pc(target), memory, (f"JMP: Jumping to {target}",))


def _op_out(state, memory, instruction):
    """OUT Rs - Write a register to the console."""
    reg = instruction.operands[0].index
    value = state.get_register(reg)
    return StepResult(
        state.increment_pc(),
        memory,
        (f"[SYS_CALL] sys_write(1, R{reg}:{value})",),
        (str(value),),
    )


def _op_hlt(state, memory, instruction):
    # pc stays put so the next fetch sees HLT again
    return StepResult(state, memory, (HALT_TRIGGERED,))


# =============================================================================
# Step
# =============================================================================

_registry: Optional[InstructionRegistry] = None


def get_registry() -> InstructionRegistry:
    """Get the singleton instruction registry."""
    global _registry
    if _registry is None:
        _registry = InstructionRegistry()
    return _registry


def step(
    state: MachineState,
    memory: MemoryBank,
    program: Sequence[Instruction],
    rng: Optional[random.Random] = None,
) -> StepResult:
    """Execute one fetch-decode-execute cycle.

    Args:
        state: Current machine state (not modified)
        memory: Current memory bank (not modified)
        program: Loaded instruction sequence
        rng: Random source for the temperature gauge; None keeps the
            step fully deterministic

    Returns:
        StepResult with the new state, memory and log/console deltas
    """
    if rng is not None:
        state = replace(
            state, temperature=min(TEMPERATURE_CEILING, state.temperature + rng.random() * 2)
        )

    if not 0 <= state.pc < len(program):
        return StepResult(state, memory, (HALT_END_OF_PROGRAM,), fault=Fault.PC_OVERRUN)

    instruction = program[state.pc]
    return get_registry().dispatch(state.set_ir(instruction), memory, instruction)


def is_halted(state: MachineState, program: Sequence[Instruction]) -> bool:
    """Derived run status: HLT in the IR or pc outside the program."""
    return state.ir.op is OpCode.HLT or not 0 <= state.pc < len(program)
