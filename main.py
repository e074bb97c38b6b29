#!/usr/bin/env python3
"""VPC-Core Command Line Interface.

Power on the virtual PC, load a program and tick it until it halts.

Usage:
    python main.py --program add
    python main.py --program search --seed 7 --trace
    python main.py --file programs/multiply.asm --realtime --speed MAX
"""

import argparse
import logging
import random
import sys
from dataclasses import replace
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from vpc_core import AssemblyError, ClockDriver, MachineConfig, RunStatus, load_config
from vpc_core.assembler import disassemble
from vpc_core.config import ConfigError
from vpc_core.log import setup_logging
from vpc_core.programs import image_from_source, list_programs


def main():
    parser = argparse.ArgumentParser(
        description="VPC-Core: virtual PC register machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run the addition demo
    python main.py --program add

    # Run the memory search with a fixed seed and print the kernel log
    python main.py --program search --seed 7 --trace

    # Run inline assembly
    python main.py --inline "MOV R0, 42; OUT R0; HLT"
        """
    )

    parser.add_argument(
        "--program", "-p",
        choices=list_programs(),
        help="Bundled program to run"
    )
    parser.add_argument(
        "--file", "-f",
        type=str,
        help="Path to assembly program file (.asm)"
    )
    parser.add_argument(
        "--inline", "-i",
        type=str,
        help="Inline assembly (separate instructions with ;)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        help="Seed for memory pre-seeding and temperature jitter"
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        help="YAML machine configuration"
    )
    parser.add_argument(
        "--speed", "-s",
        type=str,
        help="Clock speed label (1x, 2x, MAX) used with --realtime"
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Sleep one clock period between ticks"
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=10000,
        help="Maximum ticks before giving up. Default: 10000"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print the kernel log"
    )
    parser.add_argument(
        "--listing",
        action="store_true",
        help="Print the program listing before running"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (console lines only)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Application log level. Default: WARNING"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Write a DEBUG application log to this file"
    )

    args = parser.parse_args()

    sources = [s for s in (args.program, args.file, args.inline) if s]
    if len(sources) != 1:
        parser.error("Exactly one of --program, --file or --inline is required")

    setup_logging(level=getattr(logging, args.log_level), log_file=args.log_file)

    try:
        config = load_config(args.config) if args.config else MachineConfig()
    except (OSError, ConfigError) as e:
        print(f"Error: {e}")
        return 1

    # Boot immediately; the CLI has nothing to show during the boot delay
    if not args.realtime:
        config = replace(config, boot_delay=0.0)

    machine = ClockDriver(config=config, rng=random.Random(args.seed))
    machine.power_on()
    while machine.status is RunStatus.BOOTING:
        machine.run(max_ticks=1, until_halted=False)

    if args.speed:
        try:
            machine.set_clock(args.speed)
        except ValueError as e:
            print(f"Error: {e}")
            return 1

    # Load program
    try:
        if args.program:
            image = machine.load(args.program, seed=args.seed)
        else:
            if args.file:
                program_path = Path(args.file)
                if not program_path.exists():
                    print(f"Error: Program file not found: {args.file}")
                    return 1
                source = program_path.read_text()
                name = program_path.stem.upper() + ".EXE"
            else:
                source = args.inline.replace(";", "\n")
                name = "INLINE.EXE"
            image = image_from_source(source, name=name)
            machine.load_image(image)
    except AssemblyError as e:
        print(f"Assembly error: {e}")
        return 1

    if args.listing and not args.quiet:
        print(f"{image.name} - {image.description}")
        for line in disassemble(image.instructions):
            print(f"  {line}")

    if not args.quiet:
        print("-" * 60)
        print(f"Executing {image.name}...")
        print("-" * 60)

    try:
        if args.realtime:
            ticks = machine.run(max_ticks=args.max_ticks)
        else:
            ticks = machine.run_until_halted(max_ticks=args.max_ticks)
    except RuntimeError as e:
        print(f"Execution error: {e}")
        ticks = None

    snapshot = machine.snapshot()

    if args.quiet:
        for line in snapshot.console:
            print(line)
        return 0 if machine.is_halted() else 1

    print("Console:")
    for line in snapshot.console:
        print(f"  > {line}")

    if args.trace:
        print()
        print("Kernel log:")
        for line in snapshot.kernel_log:
            print(f"  {line}")

    print()
    if ticks is not None:
        print(f"Ticks: {ticks}")
    print(f"Cycles: {snapshot.cycles}")
    print(f"Status: {snapshot.status.value}")
    print("Registers: " + " ".join(f"R{i}={v}" for i, v in enumerate(snapshot.registers)))
    print(f"Flags: Z={int(snapshot.flags.zero)} E={int(snapshot.flags.equal)}")
    print(f"Temperature: {snapshot.temperature:.1f}C")

    # Return exit code based on halted state
    return 0 if machine.is_halted() else 1


if __name__ == "__main__":
    sys.exit(main())
