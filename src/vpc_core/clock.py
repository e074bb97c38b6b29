"""Clock driver: power/boot state machine and tick scheduling.

The driver is the single owner of machine state, memory, kernel log and
console. Every change goes through one of its operations, and each tick
applies at most one engine step.

Status transitions:
    OFF -> BOOTING        power_on()
    BOOTING -> IDLE       boot delay elapsed (checked on tick)
    IDLE/HALTED -> RUNNING  load() / load_image()
    RUNNING -> HALTED     tick sees HLT in the IR or pc outside the program
    any -> OFF            power_off(), all state discarded

Requests from other producers (UI callbacks, timers) can be queued with
submit(); the queue is drained at the start of the next tick so a load or
format never interleaves with a step.
"""

import logging
import random
import time
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Deque, Optional, Tuple

from .config import MachineConfig
from .engine import StepResult, is_halted, step
from .isa import OpCode, Program
from .programs import ProgramImage, apply_image, format_machine, load_program
from .state import ConsoleBuffer, Flags, KernelLog, MachineState, MemoryBank


logger = logging.getLogger(__name__)

SYS_CALL = "[SYS_CALL]"

# (fraction of boot delay, kernel line); the last stage ends the boot
BOOT_STAGES = (
    (1.0 / 3.5, "KERNEL_LOAD_IMAGE..."),
    (2.0 / 3.5, "MOUNT_VFS_ROOT..."),
    (1.0, "INIT_USER_SESSION({user})"),
)

QUEUEABLE_COMMANDS = ("power_on", "power_off", "load", "load_image", "format", "set_clock")


class RunStatus(str, Enum):
    OFF = "OFF"
    BOOTING = "BOOTING"
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    HALTED = "HALTED"


@dataclass(frozen=True)
class MachineSnapshot:
    """Read-only view of everything the presentation layer renders."""
    status: RunStatus
    program_name: Optional[str]
    pc: int
    ir: str
    registers: Tuple[int, ...]
    flags: Flags
    cycles: int
    temperature: float
    clock_period: int
    memory: Tuple[int, ...]
    last_accessed: Optional[int]
    kernel_log: Tuple[str, ...]
    console: Tuple[str, ...]


class ClockDriver:
    """Owns the virtual PC and advances it one tick at a time.

    Attributes:
        config: Machine configuration
        state: Machine state (None while powered off)
        memory: Memory bank (None while powered off)
        kernel_log: Bounded kernel trace
        console: Console output
        program: Loaded instruction sequence, if any
        program_name: Name of the loaded program, if any
    """

    def __init__(
        self,
        config: Optional[MachineConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize a powered-off machine.

        Args:
            config: Machine configuration (defaults if None)
            rng: Random source for temperature jitter and program seeding
            clock: Monotonic time source used for the boot delay
            sleep: Sleep function used by run()
        """
        self.config = config or MachineConfig()
        self.config.validate()
        self.rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep

        self.state: Optional[MachineState] = None
        self.memory: Optional[MemoryBank] = None
        self.kernel_log = KernelLog(capacity=self.config.log_capacity)
        self.console = ConsoleBuffer()
        self.program: Optional[Program] = None
        self.program_name: Optional[str] = None

        self._status = RunStatus.OFF
        self._boot_started = 0.0
        self._boot_stage = 0
        self._queue: Deque[Tuple[str, tuple]] = deque()
        self._in_tick = False

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def powered(self) -> bool:
        return self._status is not RunStatus.OFF

    def is_halted(self) -> bool:
        """True once the loaded program has stopped or was discarded after halting."""
        if self._status is RunStatus.HALTED:
            return True
        if self.program is None or self.state is None:
            return False
        return is_halted(self.state, self.program)

    @property
    def clock_period(self) -> int:
        if self.state is None:
            return self.config.default_clock
        return self.state.clock_period

    # =========================================================================
    # Inputs
    # =========================================================================

    def power_on(self) -> None:
        """Create fresh state and start booting. No-op if already on."""
        if self.powered:
            return
        self.state = MachineState(
            clock_period=self.config.default_clock,
            temperature=self.config.initial_temperature,
        )
        self.memory = MemoryBank.zeroed(self.config.memory_size)
        self.kernel_log = KernelLog(capacity=self.config.log_capacity)
        self.console = ConsoleBuffer()
        self.program = None
        self.program_name = None
        self._status = RunStatus.BOOTING
        self._boot_started = self._clock()
        self._boot_stage = 0
        self._kernel("BIOS_POST_INIT")
        logger.info("Power on, booting")
        self._advance_boot()

    def power_off(self) -> None:
        """Discard all machine state. No-op if already off."""
        if not self.powered:
            return
        logger.info("ACPI_SHUTDOWN_SIGNAL")
        self.state = None
        self.memory = None
        self.kernel_log = KernelLog(capacity=self.config.log_capacity)
        self.console = ConsoleBuffer()
        self.program = None
        self.program_name = None
        self._queue.clear()
        self._status = RunStatus.OFF

    def load(self, name: str, seed: Optional[int] = None) -> ProgramImage:
        """Load a bundled program by name.

        Args:
            name: Program identifier ("add", "search", "sort")
            seed: Optional seed for deterministic memory pre-seeding

        Returns:
            The applied ProgramImage

        Raises:
            RuntimeError: If the machine is off or still booting
            UnknownProgramError: If name is not a bundled program
        """
        self._require_ready("load a program")
        rng = random.Random(seed) if seed is not None else self.rng
        image = load_program(name, rng=rng)
        self.load_image(image)
        return image

    def load_image(self, image: ProgramImage) -> None:
        """Load a prepared ProgramImage (bundled or assembled).

        Raises:
            RuntimeError: If the machine is off or still booting
        """
        self._require_ready("load a program")
        self.state, self.memory, self.console = apply_image(
            self.state, self.memory, self.console, image
        )
        self.program = image.instructions
        self.program_name = image.name
        self._status = RunStatus.RUNNING
        self._kernel(f"exec_image('{image.name}')")
        logger.info("Process %s started (%d instructions)", image.name, len(image.instructions))

    def format(self) -> None:
        """Zero memory and reset the machine, keeping cycles and temperature.

        Raises:
            RuntimeError: If the machine is off or still booting
        """
        self._require_ready("format")
        self._kernel("ioctl_fmt(DISK_0)")
        self.state, self.memory, self.console = format_machine(
            self.state, self.config.memory_size
        )
        self.program = None
        self.program_name = None
        self._status = RunStatus.IDLE
        self._kernel("ioctl_fmt(DISK_0) success")
        logger.warning("Disk Formatted by User")

    def set_clock(self, speed) -> int:
        """Select the tick period.

        Args:
            speed: Period in ms or its label (e.g. 500 or "2x")

        Returns:
            The selected period in ms

        Raises:
            ValueError: If speed is not one of the configured speeds
            RuntimeError: If the machine is off
        """
        speeds = self.config.clock_speeds
        if isinstance(speed, str) and speed in speeds:
            period = speeds[speed]
        elif isinstance(speed, int) and speed in speeds.values():
            period = speed
        else:
            choices = ", ".join(f"{label}={ms}" for label, ms in speeds.items())
            raise ValueError(f"Unsupported clock speed: {speed!r} (choose from {choices})")
        if not self.powered:
            raise RuntimeError("Cannot set clock: machine is off")
        self.state = replace(self.state, clock_period=period)
        logger.info("Clock period set to %d ms", period)
        return period

    def submit(self, command: str, *args) -> None:
        """Queue a command to run at the start of the next tick.

        Raises:
            ValueError: If command is not a queueable operation
        """
        if command not in QUEUEABLE_COMMANDS:
            raise ValueError(f"Unknown command: {command}")
        self._queue.append((command, args))

    @property
    def pending_commands(self) -> int:
        return len(self._queue)

    # =========================================================================
    # Ticking
    # =========================================================================

    def tick(self) -> bool:
        """Advance the machine by one clock tick.

        Returns:
            True if the tick was applied, False if the machine is off or the
            tick was dropped because another one is still in flight
        """
        if self._in_tick:
            logger.debug("Tick dropped: previous tick still in flight")
            return False

        self._in_tick = True
        try:
            self._drain_commands()
            if not self.powered:
                return False

            self.state = replace(
                self.state,
                cycles=self.state.cycles + 1,
                temperature=self._jitter(self.state.temperature),
            )

            if self._status is RunStatus.BOOTING:
                self._advance_boot()
            elif self._status is RunStatus.RUNNING and self.program is not None:
                self._run_program_tick()
            return True
        finally:
            self._in_tick = False

    def run(self, max_ticks: Optional[int] = None, until_halted: bool = True) -> int:
        """Tick in real time, sleeping one clock period between ticks.

        Args:
            max_ticks: Stop after this many ticks (None for no limit)
            until_halted: Stop once a loaded program halts

        Returns:
            Number of ticks issued
        """
        ticks = 0
        while self.powered and (max_ticks is None or ticks < max_ticks):
            self.tick()
            ticks += 1
            if until_halted and self._status is RunStatus.HALTED:
                break
            self._sleep(self.clock_period / 1000.0)
        return ticks

    def run_until_halted(self, max_ticks: int = 10000) -> int:
        """Tick without sleeping until the loaded program halts.

        Returns:
            Number of ticks issued

        Raises:
            RuntimeError: If no program is running or max_ticks is exceeded
        """
        if self._status is not RunStatus.RUNNING:
            raise RuntimeError(f"No program running (status {self._status.value})")
        ticks = 0
        while self._status is RunStatus.RUNNING:
            if ticks >= max_ticks:
                raise RuntimeError(f"Max ticks ({max_ticks}) exceeded")
            self.tick()
            ticks += 1
        return ticks

    # =========================================================================
    # Output
    # =========================================================================

    def snapshot(self) -> MachineSnapshot:
        state = self.state or MachineState(clock_period=self.config.default_clock)
        memory = self.memory or MemoryBank(words=())
        return MachineSnapshot(
            status=self._status,
            program_name=self.program_name,
            pc=state.pc,
            ir=str(state.ir),
            registers=state.registers,
            flags=state.flags,
            cycles=state.cycles,
            temperature=state.temperature,
            clock_period=state.clock_period,
            memory=memory.words,
            last_accessed=memory.last_accessed,
            kernel_log=self.kernel_log.lines,
            console=self.console.lines,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _run_program_tick(self) -> None:
        if self.state.ir.op is OpCode.HLT:
            logger.info("Process %s finished successfully.", self.program_name)
            self._kernel(f"PROC_EXIT({self.program_name}, 0)")
            self._stop_program()
            return

        if not 0 <= self.state.pc < len(self.program):
            logger.info(
                "Process %s left its instruction range (pc %d)", self.program_name, self.state.pc
            )
            self._stop_program()
            return

        self._apply(step(self.state, self.memory, self.program))

    def _apply(self, result: StepResult) -> None:
        self.state = result.state
        self.memory = result.memory
        self.kernel_log = self.kernel_log.extend(result.log_lines)
        self.console = self.console.extend(result.console_lines)
        for line in result.log_lines:
            if result.fault is not None:
                logger.warning("%s: %s", result.fault.value, line)
            else:
                logger.debug(line)

    def _stop_program(self) -> None:
        logger.debug("Final state %s", self.state)
        self.program = None
        self.program_name = None
        self._status = RunStatus.HALTED

    def _advance_boot(self) -> None:
        delay = self.config.boot_delay
        elapsed = self._clock() - self._boot_started
        while self._boot_stage < len(BOOT_STAGES):
            fraction, line = BOOT_STAGES[self._boot_stage]
            if elapsed < fraction * delay:
                return
            self._kernel(line.format(user=self.config.user))
            self._boot_stage += 1
        self._status = RunStatus.IDLE
        logger.info("System Boot Completed")
        logger.info("User %s logged in", self.config.user)

    def _drain_commands(self) -> None:
        while self._queue:
            command, args = self._queue.popleft()
            try:
                getattr(self, command)(*args)
            except (RuntimeError, ValueError, KeyError) as e:
                logger.error("Queued %s failed: %s", command, e)

    def _jitter(self, temperature: float) -> float:
        value = temperature + (self.rng.random() - 0.5)
        return max(self.config.min_temperature, min(self.config.max_temperature, value))

    def _kernel(self, action: str) -> None:
        self.kernel_log = self.kernel_log.append(f"{SYS_CALL} {action}")

    def _require_ready(self, action: str) -> None:
        if self._status is RunStatus.OFF:
            raise RuntimeError(f"Cannot {action}: machine is off")
        if self._status is RunStatus.BOOTING:
            raise RuntimeError(f"Cannot {action}: machine is still booting")
