"""Tests for the ClockDriver state machine."""

import logging
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from vpc_core import ClockDriver, MachineConfig, RunStatus
from vpc_core.isa import OpCode, make_program
from vpc_core.programs import ProgramImage, image_from_source


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def machine(fake_clock):
    return ClockDriver(rng=random.Random(7), clock=fake_clock, sleep=lambda s: None)


@pytest.fixture
def booted():
    driver = ClockDriver(config=MachineConfig(boot_delay=0.0), rng=random.Random(7))
    driver.power_on()
    return driver


class TestPower:
    def test_starts_off(self, machine):
        assert machine.status is RunStatus.OFF
        assert machine.state is None
        assert machine.tick() is False

    def test_power_on_boots(self, machine):
        machine.power_on()
        assert machine.status is RunStatus.BOOTING
        assert machine.kernel_log.lines == ("[SYS_CALL] BIOS_POST_INIT",)
        assert machine.state.clock_period == 500
        assert len(machine.memory) == 1024

    def test_boot_stages(self, machine, fake_clock):
        machine.power_on()

        fake_clock.now += 1.2
        machine.tick()
        assert machine.kernel_log.lines[-1] == "[SYS_CALL] KERNEL_LOAD_IMAGE..."
        assert machine.status is RunStatus.BOOTING

        fake_clock.now += 1.2
        machine.tick()
        assert machine.kernel_log.lines[-1] == "[SYS_CALL] MOUNT_VFS_ROOT..."

        fake_clock.now += 1.2
        machine.tick()
        assert machine.kernel_log.lines[-1] == "[SYS_CALL] INIT_USER_SESSION(iffi)"
        assert machine.status is RunStatus.IDLE

    def test_zero_boot_delay_boots_immediately(self, booted):
        assert booted.status is RunStatus.IDLE
        assert len(booted.kernel_log) == 4

    def test_power_on_twice_is_noop(self, booted):
        booted.tick()
        cycles = booted.state.cycles
        booted.power_on()
        assert booted.state.cycles == cycles

    def test_power_off_discards_everything(self, booted):
        booted.load("add")
        booted.tick()
        booted.power_off()
        assert booted.status is RunStatus.OFF
        assert booted.state is None
        assert booted.memory is None
        assert booted.program is None
        assert len(booted.kernel_log) == 0
        assert len(booted.console) == 0

    def test_power_cycle_starts_fresh(self, booted):
        booted.load("add")
        booted.run_until_halted()
        booted.power_off()
        booted.power_on()
        assert booted.state.cycles == 0
        assert booted.memory.words[100] == 0


class TestTicking:
    def test_idle_ticks_count_cycles(self, booted):
        for _ in range(3):
            assert booted.tick() is True
        assert booted.state.cycles == 3
        assert booted.state.pc == 0

    def test_ticks_count_while_booting(self, machine):
        machine.power_on()
        machine.tick()
        assert machine.status is RunStatus.BOOTING
        assert machine.state.cycles == 1

    def test_temperature_stays_in_bounds(self, booted):
        for _ in range(500):
            booted.tick()
            assert 30.0 <= booted.state.temperature <= 85.0

    def test_temperature_respects_configured_bounds_while_running(self):
        driver = ClockDriver(
            config=MachineConfig(boot_delay=0.0, max_temperature=40.0),
            rng=random.Random(3),
        )
        driver.power_on()
        driver.load_image(image_from_source("loop:\n    JMP loop"))
        previous = driver.state.temperature
        for _ in range(200):
            driver.tick()
            assert 30.0 <= driver.state.temperature <= 40.0
            # one jitter of at most half a degree per tick
            assert abs(driver.state.temperature - previous) <= 0.5
            previous = driver.state.temperature

    @pytest.mark.parametrize("target", [-1, -100])
    def test_negative_jump_halts_program(self, booted, target):
        program = make_program([("JMP", [target]), ("MOV", [0, 99]), ("HLT", [])])
        booted.load_image(ProgramImage(name="WILD.EXE", instructions=program))
        ticks = booted.run_until_halted(max_ticks=10)
        assert ticks == 2
        assert booted.status is RunStatus.HALTED
        assert booted.state.pc == target
        assert booted.state.registers[0] == 0

    def test_load_while_booting_fails(self, machine):
        machine.power_on()
        with pytest.raises(RuntimeError, match="booting"):
            machine.load("add")

    def test_load_while_off_fails(self, machine):
        with pytest.raises(RuntimeError, match="off"):
            machine.load("add")

    def test_load_keeps_cycles(self, booted):
        booted.tick()
        booted.tick()
        booted.load("add")
        assert booted.status is RunStatus.RUNNING
        assert booted.state.cycles == 2
        assert booted.kernel_log.lines[-1] == "[SYS_CALL] exec_image('ADDITION.EXE')"

    def test_halt_detection(self, booted):
        booted.load("add")
        for _ in range(6):
            booted.tick()
        assert booted.state.ir.op is OpCode.HLT
        assert booted.status is RunStatus.RUNNING

        booted.tick()
        assert booted.status is RunStatus.HALTED
        state_after_halt = booted.state

        booted.tick()
        assert booted.state.pc == state_after_halt.pc
        assert booted.state.cycles == state_after_halt.cycles + 1

    def test_run_off_end_of_program(self, booted):
        booted.load_image(image_from_source("NOP"))
        booted.tick()
        booted.tick()
        assert booted.status is RunStatus.HALTED
        assert booted.program is None

    def test_run_until_halted_requires_program(self, booted):
        with pytest.raises(RuntimeError, match="No program running"):
            booted.run_until_halted()

    def test_run_sleeps_clock_period(self):
        sleeps = []
        driver = ClockDriver(
            config=MachineConfig(boot_delay=0.0),
            rng=random.Random(0),
            sleep=sleeps.append,
        )
        driver.power_on()
        driver.set_clock("MAX")
        driver.load("add")
        ticks = driver.run(max_ticks=50)
        assert ticks == 7
        assert sleeps == [0.1] * 6

    def test_reentrant_tick_is_dropped(self, booted):
        booted.load("add")
        results = []

        original = booted._run_program_tick

        def nested():
            results.append(booted.tick())
            original()

        booted._run_program_tick = nested
        assert booted.tick() is True
        assert results == [False]
        assert booted.state.pc == 1


class TestFormat:
    def test_format_zeroes_memory(self, booted):
        booted.load("add")
        booted.run_until_halted()
        cycles = booted.state.cycles
        booted.format()

        assert set(booted.memory.words) == {0}
        assert booted.state.registers == (0,) * 8
        assert booted.state.cycles == cycles
        assert booted.console.lines == ("DISK FORMATTED.", "SYSTEM RESET.")
        assert booted.status is RunStatus.IDLE
        assert booted.kernel_log.lines[-1] == "[SYS_CALL] ioctl_fmt(DISK_0) success"

    def test_format_logs_warning(self, booted, caplog):
        with caplog.at_level(logging.WARNING, logger="vpc_core"):
            booted.format()
        assert "Disk Formatted by User" in caplog.text

    def test_memory_persists_across_loads_without_format(self, booted):
        booted.load("add")
        booted.run_until_halted()
        booted.load("sort", seed=1)
        assert booted.memory.words[100] == 40


class TestClockSpeed:
    def test_set_by_label_and_value(self, booted):
        assert booted.set_clock("1x") == 1000
        assert booted.state.clock_period == 1000
        assert booted.set_clock(100) == 100
        assert booted.clock_period == 100

    def test_unsupported_speed(self, booted):
        with pytest.raises(ValueError, match="Unsupported clock speed"):
            booted.set_clock(250)

    def test_speed_survives_program_load(self, booted):
        booted.set_clock("MAX")
        booted.load("add")
        assert booted.state.clock_period == 100

    def test_speed_change_keeps_state(self, booted):
        booted.load("add")
        booted.tick()
        before = booted.state
        booted.set_clock("1x")
        assert booted.state.pc == before.pc
        assert booted.state.registers == before.registers

    def test_set_clock_while_off(self, machine):
        with pytest.raises(RuntimeError):
            machine.set_clock("2x")


class TestCommandQueue:
    def test_commands_run_at_next_tick(self, booted):
        booted.submit("load", "add")
        assert booted.status is RunStatus.IDLE
        assert booted.pending_commands == 1

        booted.tick()
        assert booted.pending_commands == 0
        assert booted.program_name == "ADDITION.EXE"
        # the same tick also executed the first instruction
        assert booted.state.pc == 1

    def test_commands_apply_in_order(self, booted):
        booted.submit("load", "add")
        booted.submit("set_clock", "MAX")
        booted.submit("format")
        booted.tick()
        assert booted.program is None
        assert booted.state.clock_period == 100
        assert booted.status is RunStatus.IDLE

    def test_failed_command_is_logged(self, booted, caplog):
        booted.submit("load", "tetris")
        with caplog.at_level(logging.ERROR, logger="vpc_core"):
            assert booted.tick() is True
        assert "Queued load failed" in caplog.text

    def test_unknown_command(self, booted):
        with pytest.raises(ValueError):
            booted.submit("self_destruct")

    def test_queued_power_off(self, booted):
        booted.submit("power_off")
        assert booted.tick() is False
        assert booted.status is RunStatus.OFF


class TestSnapshot:
    def test_snapshot_when_off(self, machine):
        snap = machine.snapshot()
        assert snap.status is RunStatus.OFF
        assert snap.memory == ()
        assert snap.kernel_log == ()

    def test_snapshot_running(self, booted):
        booted.load("add")
        for _ in range(4):
            booted.tick()
        snap = booted.snapshot()
        assert snap.status is RunStatus.RUNNING
        assert snap.program_name == "ADDITION.EXE"
        assert snap.ir == "STORE R0, 100"
        assert snap.registers[0] == 40
        assert snap.last_accessed == 100
        assert snap.memory[100] == 40
        assert snap.kernel_log[-1] == "STORE: MEM[100] = R0 (40)"

    def test_snapshot_flags_are_read_only(self, booted):
        booted.load_image(image_from_source("MOV R0, 42\nCMP R0, 42\nHLT"))
        booted.run_until_halted()
        snap = booted.snapshot()
        assert snap.flags.equal is True
        assert snap.flags.zero is False
        with pytest.raises(AttributeError):
            snap.flags.equal = False
