"""VPC-Core: register machine engine for the virtual PC simulator.

A fixed-width register machine with flat addressable memory, a small
fetch-decode-execute instruction set and a step function invoked once per
clock tick. Everything around it (desktop shell, windows, file browser)
only reads snapshots and feeds in power, program and clock-speed inputs.

Architecture:
    PROGRAM -> FETCH -> IR -> REGISTRY -> HANDLER -> StepResult -> DRIVER
       |                        |                         |
   [tagged operands]      [frozen opcode map]   [state, memory, log, console]

Modules:
    isa: OpCode, tagged operands, Instruction, Program
    state: MachineState, MemoryBank, KernelLog, ConsoleBuffer value types
    engine: Pure step() over a frozen InstructionRegistry
    assembler: Text source to Program
    programs: Bundled demo programs, memory pre-seeding, load/format
    clock: ClockDriver power/boot state machine and tick scheduling
    config: MachineConfig, optionally loaded from YAML
    log: Application logging setup
"""

__version__ = "0.1.0"
__author__ = "VPC Project"

from .isa import OpCode, Instruction, Register, Immediate, make_program
from .state import MachineState, MemoryBank, KernelLog, ConsoleBuffer
from .engine import step, StepResult, Fault, InstructionRegistry
from .assembler import assemble, AssemblyError
from .programs import ProgramImage, load_program, UnknownProgramError
from .clock import ClockDriver, RunStatus, MachineSnapshot
from .config import MachineConfig, load_config

__all__ = [
    "OpCode", "Instruction", "Register", "Immediate", "make_program",
    "MachineState", "MemoryBank", "KernelLog", "ConsoleBuffer",
    "step", "StepResult", "Fault", "InstructionRegistry",
    "assemble", "AssemblyError",
    "ProgramImage", "load_program", "UnknownProgramError",
    "ClockDriver", "RunStatus", "MachineSnapshot",
    "MachineConfig", "load_config",
]
