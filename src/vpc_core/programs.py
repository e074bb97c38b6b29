"""Program loader: bundled demo programs, memory pre-seeding and resets.

A ProgramImage is everything needed to start a program: its instructions,
the (address, value) pairs to poke into memory first, and the banner lines
shown on the console. Loading an image resets registers, pc, flags and IR
but keeps the cycle counter, temperature and clock period; memory outside
the seeded addresses is left as the previous run left it.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .assembler import assemble
from .isa import Program, make_program
from .state import ConsoleBuffer, MachineState, MemoryBank


logger = logging.getLogger(__name__)

SEARCH_START = 500
SEARCH_SPAN = 20
SEARCH_TARGET = 42
SORT_START = 200
SORT_SPAN = 10

FORMAT_BANNER = ("DISK FORMATTED.", "SYSTEM RESET.")


class UnknownProgramError(KeyError):
    """Raised when a program name is not bundled."""


@dataclass(frozen=True)
class ProgramImage:
    """A loadable program.

    Attributes:
        name: Process name shown in the kernel log (e.g. "ADDITION.EXE")
        instructions: Immutable instruction sequence
        seeds: (address, value) pairs written to memory at load time
        banner: Console lines appended after the "Loading ..." line
        description: One-line summary for listings
        file_name: Name shown in the console "Loading ..." line, if not `name`
    """
    name: str
    instructions: Program
    seeds: Tuple[Tuple[int, int], ...] = ()
    banner: Tuple[str, ...] = ()
    description: str = ""
    file_name: str = ""

    @property
    def display_name(self) -> str:
        return self.file_name or self.name


# =============================================================================
# Bundled programs
# =============================================================================

PROGRAM_ADDITION = make_program([
    ("MOV", [0, 15], "MOV 15 to R0"),
    ("MOV", [1, 25], "MOV 25 to R1"),
    ("ADD", [0, 1], "ADD R0 + R1 -> R0"),
    ("STORE", [0, 100], "STORE R0 to Mem[100]"),
    ("OUT", [0], "PRINT R0"),
    ("HLT", [], "STOP"),
])

PROGRAM_SEARCH = make_program([
    ("MOV", [3, 1], "R3 = 1 (Incrementer)"),
    ("MOV", [0, SEARCH_TARGET], "Target value -> R0"),
    ("MOV", [1, SEARCH_START], "Start Index -> R1"),
    # loop (3)
    ("LOAD", [2, 1], "Load Mem[R1] -> R2"),
    ("CMP", [2, 0], "Compare R2, R0"),
    ("JEQ", [8], "If Equal, Jump to Found (8)"),
    ("ADD", [1, 3], "Inc R1 by R3"),
    ("JMP", [3], "Jump back to Loop (3)"),
    # found (8)
    ("OUT", [1], "Print Found Index"),
    ("HLT", [], "Found! Stop"),
])

PROGRAM_SORT = make_program([
    ("MOV", [3, 1], "R3 = 1 (Incrementer)"),
    ("MOV", [0, 5], "Limit -> R0"),
    ("MOV", [1, SORT_START], "Start Addr -> R1"),
    # loop (3)
    ("LOAD", [2, 1], "Load Mem[R1]"),
    ("OUT", [2], "Inspect Value"),
    ("ADD", [1, 3], "Next Address (R1+R3)"),
    ("CMP", [1, SORT_START + 5], "Check End Boundary"),
    ("JEQ", [9], "Done? Jump to End"),
    ("JMP", [3], "Loop Back (3)"),
    # end (9)
    ("HLT", [], "Sorted"),
])


def _addition_image(rng: random.Random) -> ProgramImage:
    return ProgramImage(
        name="ADDITION.EXE",
        instructions=PROGRAM_ADDITION,
        description="15 + 25, stored to Mem[100] and printed",
    )


def _search_image(rng: random.Random) -> ProgramImage:
    """Hide SEARCH_TARGET at a random offset in [501, 510] among noise."""
    logger.info("Initializing Memory Search Job...")
    fillers = [v for v in range(100) if v != SEARCH_TARGET]
    seeds = [(SEARCH_START + i, rng.choice(fillers)) for i in range(SEARCH_SPAN)]
    target_loc = SEARCH_START + rng.randint(1, 10)
    seeds.append((target_loc, SEARCH_TARGET))
    return ProgramImage(
        name="SEARCH.EXE",
        instructions=PROGRAM_SEARCH,
        seeds=tuple(seeds),
        banner=(f"(DEBUG) Hiding value {SEARCH_TARGET} at Mem[{target_loc}]",),
        description=f"Linear search for {SEARCH_TARGET} from Mem[{SEARCH_START}]",
    )


def _sort_image(rng: random.Random) -> ProgramImage:
    logger.info("Initializing Sort Visualization...")
    seeds = tuple((SORT_START + i, rng.randrange(255)) for i in range(SORT_SPAN))
    return ProgramImage(
        name="SORT_VISUALIZER.EXE",
        instructions=PROGRAM_SORT,
        seeds=seeds,
        description=f"Inspect Mem[{SORT_START}..{SORT_START + 4}]",
        file_name="SORT.EXE",
    )


BUNDLED_PROGRAMS: Dict[str, Callable[[random.Random], ProgramImage]] = {
    "add": _addition_image,
    "search": _search_image,
    "sort": _sort_image,
}


def list_programs() -> Tuple[str, ...]:
    return tuple(BUNDLED_PROGRAMS)


def load_program(
    name: str,
    rng: Optional[random.Random] = None,
    seed: Optional[int] = None,
) -> ProgramImage:
    """Build the image for a bundled program.

    Args:
        name: Program identifier ("add", "search", "sort"), case insensitive
        rng: Random source for memory pre-seeding
        seed: Seed for a fresh random source when rng is not given

    Returns:
        ProgramImage ready to apply

    Raises:
        UnknownProgramError: If name is not a bundled program
    """
    key = name.lower()
    if key not in BUNDLED_PROGRAMS:
        raise UnknownProgramError(
            f"Unknown program: {name} (available: {', '.join(BUNDLED_PROGRAMS)})"
        )
    if rng is None:
        rng = random.Random(seed)
    return BUNDLED_PROGRAMS[key](rng)


def image_from_source(source: str, name: str = "USER.EXE") -> ProgramImage:
    """Wrap assembled source as an image with no memory seeds.

    Raises:
        AssemblyError: If the source does not assemble
    """
    return ProgramImage(name=name, instructions=assemble(source), description="User program")


# =============================================================================
# Load / format
# =============================================================================

def apply_image(
    state: MachineState,
    memory: MemoryBank,
    console: ConsoleBuffer,
    image: ProgramImage,
) -> Tuple[MachineState, MemoryBank, ConsoleBuffer]:
    """Reset the machine for `image` and poke its seeds into memory."""
    new_console = console.extend((f"Loading {image.display_name}...",) + image.banner)
    return state.reset(), memory.seed(image.seeds), new_console


def format_machine(
    state: MachineState,
    memory_size: int,
) -> Tuple[MachineState, MemoryBank, ConsoleBuffer]:
    """Zero memory and reset the machine, keeping cycles and temperature."""
    return state.reset(), MemoryBank.zeroed(memory_size), ConsoleBuffer(FORMAT_BANNER)
