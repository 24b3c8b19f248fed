#!/usr/bin/env python3
"""RVEMU Command Line Interface.

Run flat RV32I binary images with the emulator.

Usage:
    python main.py program.bin
    python main.py program.bin --max-cycles 5000 --trace
    python main.py --demo
"""

import argparse
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from rvemu import RV32ICPU, EmulatorError, MEMORY_SIZE, assemble


# x1 = 5, x2 = 10, x3 = x1 + x2, then spin on a self-branch
DEMO_PROGRAM = """
    addi x1, x0, 5
    addi x2, x0, 10
    add  x3, x1, x2
loop:
    beq  x0, x0, loop
"""

DEFAULT_CYCLE_CAP = 100


def load_binary(path: Path) -> bytes:
    """Read a binary image, rejecting missing and empty files.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is empty
    """
    data = path.read_bytes()
    if not data:
        raise ValueError(f"File '{path}' is empty.")
    return data


def main():
    parser = argparse.ArgumentParser(
        description="RVEMU: RV32I base integer interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a raw binary (loaded at address 0)
    python main.py hello.bin

    # Run with a per-instruction trace
    python main.py hello.bin --trace

    # Run the built-in demonstration program
    python main.py --demo
        """
    )

    parser.add_argument(
        "binary",
        nargs="?",
        type=str,
        help="Path to flat binary image"
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Run the built-in demonstration program"
    )
    parser.add_argument(
        "--max-cycles", "-c",
        type=int,
        default=None,
        help=f"Cycles to execute. Default: min({DEFAULT_CYCLE_CAP}, image size)"
    )
    parser.add_argument(
        "--memory-size",
        type=int,
        default=MEMORY_SIZE,
        help=f"Memory capacity in bytes. Default: {MEMORY_SIZE}"
    )
    parser.add_argument(
        "--trace", "-t",
        action="store_true",
        help="Print full execution trace"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (register dump only)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log every decoded instruction"
    )

    args = parser.parse_args()

    if not args.binary and not args.demo:
        parser.error("Either a binary file or --demo is required")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Load image
    if args.demo:
        image = assemble(DEMO_PROGRAM)
        if not args.quiet:
            print("Running demonstration program")
    else:
        try:
            image = load_binary(Path(args.binary))
        except (OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    cycles = args.max_cycles
    if cycles is None:
        cycles = min(DEFAULT_CYCLE_CAP, len(image))

    cpu = RV32ICPU(memory_size=args.memory_size, record_trace=args.trace)

    exit_code = 0
    try:
        cpu.load_image(image)
    except EmulatorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not args.quiet:
        print(f"{cycles} cycles")

    try:
        cpu.run(cycles)
    except EmulatorError as e:
        print(f"Execution error: {e}", file=sys.stderr)
        exit_code = 1

    if not args.quiet and cpu.get_pc() >= args.memory_size:
        print("PC out of bounds (End of program?)")

    # Output
    if args.trace:
        cpu.print_trace()
    else:
        cpu.dump_regs()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
