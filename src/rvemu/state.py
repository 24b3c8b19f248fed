"""MachineState: mutable state representation for the RV32I emulator.

This module defines the storage the execution engine operates on.

State Components:
    - Memory: fixed-capacity little-endian byte array with one MMIO port
    - Registers: x0-x31 (32 general-purpose 32-bit registers, x0 hardwired)
    - PC: Program counter (byte address into memory)
    - CSRs: mstatus/mepc/satp, present but never touched by instructions
    - Cycle count: Total executed steps

A MachineState is created once from a binary image and then mutated in
place by every step, so several independent machines can coexist in one
process.
"""

import logging
import sys
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional


logger = logging.getLogger(__name__)

MASK32 = 0xFFFFFFFF
NUM_REGISTERS = 32

# 1 MiB of backing storage
MEMORY_SIZE = 1024 * 1024

# Byte stores here go to the console instead of memory
UART_ADDRESS = 0x10000000

ABI_NAMES: List[str] = [
    "zero", "ra", "sp", "gp", "tp", "t0", "t1", "t2",
    "s0", "s1", "a0", "a1", "a2", "a3", "a4", "a5",
    "a6", "a7", "s2", "s3", "s4", "s5", "s6", "s7",
    "s8", "s9", "s10", "s11", "t3", "t4", "t5", "t6",
]


class EmulatorError(RuntimeError):
    """Base class for conditions that stop the emulation."""


class ImageTooLargeError(EmulatorError):
    """Binary image does not fit into memory."""

    def __init__(self, image_size: int, capacity: int):
        super().__init__(
            f"Binary too large for memory: {image_size} bytes > {capacity} bytes"
        )
        self.image_size = image_size
        self.capacity = capacity


def to_signed(value: int) -> int:
    """Interpret a 32-bit value as a two's complement signed integer."""
    value &= MASK32
    return value - (1 << 32) if value & 0x80000000 else value


def sign_extend(value: int, bits: int) -> int:
    """Sign-extend the low *bits* of value to a Python int."""
    sign = 1 << (bits - 1)
    value &= (1 << bits) - 1
    return (value ^ sign) - sign


class Memory:
    """Byte-addressable memory with bounds-lenient accessors.

    Loads whose window falls outside the array read as zero and stores
    outside it are dropped. A byte store to UART_ADDRESS writes the raw
    byte to the binary output stream and never reaches the array.

    Attributes:
        data: Backing bytearray
        output: Binary stream receiving UART bytes (sys.stdout.buffer when None)
    """

    def __init__(self, size: int = MEMORY_SIZE, output: Optional[BinaryIO] = None):
        """Initialize zero-filled memory.

        Args:
            size: Capacity in bytes
            output: Binary stream for UART output, defaults to sys.stdout.buffer at write time
        """
        self.data = bytearray(size)
        self.output = output

    @property
    def size(self) -> int:
        return len(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def load_image(self, image: bytes) -> None:
        """Copy a binary image to address 0.

        Raises:
            ImageTooLargeError: If the image is larger than memory
        """
        if len(image) > len(self.data):
            logger.error("image of %d bytes exceeds memory of %d bytes",
                         len(image), len(self.data))
            raise ImageTooLargeError(len(image), len(self.data))
        self.data[:len(image)] = image

    def in_bounds(self, addr: int, width: int) -> bool:
        """Check that addr .. addr+width-1 lies inside memory."""
        return 0 <= addr and addr + width <= len(self.data)

    def _read(self, addr: int, width: int) -> int:
        if not self.in_bounds(addr, width):
            return 0
        return int.from_bytes(self.data[addr:addr + width], "little")

    def _write(self, addr: int, width: int, value: int) -> None:
        if not self.in_bounds(addr, width):
            return
        mask = (1 << (8 * width)) - 1
        self.data[addr:addr + width] = (value & mask).to_bytes(width, "little")

    def load8(self, addr: int) -> int:
        return self._read(addr, 1)

    def load16(self, addr: int) -> int:
        return self._read(addr, 2)

    def load32(self, addr: int) -> int:
        return self._read(addr, 4)

    def store8(self, addr: int, value: int) -> None:
        if addr == UART_ADDRESS:
            stream = self.output
            if stream is None:
                # pending text goes out before the raw byte
                sys.stdout.flush()
                stream = sys.stdout.buffer
            stream.write(bytes([value & 0xFF]))
            stream.flush()
            return
        self._write(addr, 1, value)

    # Only the byte path is memory-mapped; wider stores to the UART fall
    # through to the (out of range) array write.
    def store16(self, addr: int, value: int) -> None:
        self._write(addr, 2, value)

    def store32(self, addr: int, value: int) -> None:
        self._write(addr, 4, value)


class RegisterFile:
    """The 32 general-purpose registers; x0 always reads zero."""

    def __init__(self):
        self._regs: List[int] = [0] * NUM_REGISTERS

    def read(self, index: int) -> int:
        index %= NUM_REGISTERS
        if index == 0:
            return 0
        return self._regs[index]

    def write(self, index: int, value: int) -> None:
        index %= NUM_REGISTERS
        if index == 0:
            return
        self._regs[index] = value & MASK32

    def dump(self) -> List[int]:
        """Get a copy of all register values, x0 first."""
        return [self.read(i) for i in range(NUM_REGISTERS)]

    def __getitem__(self, index: int) -> int:
        return self.read(index)

    def __setitem__(self, index: int, value: int) -> None:
        self.write(index, value)


def register_index(name) -> int:
    """Resolve a register given as an int, "xN" or an ABI name.

    Args:
        name: Register index, "x5", "X5", "t0", "fp", ...

    Returns:
        Register index 0-31

    Raises:
        KeyError: If the name is not a register
    """
    if isinstance(name, int):
        if not 0 <= name < NUM_REGISTERS:
            raise KeyError(f"Invalid register: {name}")
        return name

    reg = name.strip().lower()
    if reg == "fp":
        return 8
    if reg in ABI_NAMES:
        return ABI_NAMES.index(reg)
    if reg.startswith("x") and reg[1:].isdigit():
        index = int(reg[1:])
        if index < NUM_REGISTERS:
            return index
    raise KeyError(f"Invalid register: {name}")


@dataclass
class ControlStatusRegisters:
    """Reserved machine-mode CSRs. No instruction reads or writes them."""
    mstatus: int = 0
    mepc: int = 0
    satp: int = 0


@dataclass
class MachineState:
    """Complete state of one emulated hart.

    Attributes:
        memory: Byte-addressable memory
        registers: General-purpose register file
        pc: Program counter (byte address of the next fetch)
        csrs: Inert control/status registers
        cycle_count: Number of completed steps
    """
    memory: Memory = field(default_factory=Memory)
    registers: RegisterFile = field(default_factory=RegisterFile)
    pc: int = 0
    csrs: ControlStatusRegisters = field(default_factory=ControlStatusRegisters)
    cycle_count: int = 0

    def snapshot(self) -> dict:
        """Capture registers and PC for tracing.

        Returns:
            Dictionary with a copy of the registers, pc and cycle count
        """
        return {
            "registers": self.registers.dump(),
            "pc": self.pc,
            "cycle_count": self.cycle_count,
            # memory is excluded, copying it every step is too expensive
        }

    def validate(self) -> bool:
        """Validate state integrity.

        Checks:
            - x0 reads zero and every register fits in 32 bits
            - PC lies within memory or exactly at its upper bound
            - Cycle count is non-negative
        """
        values = self.registers.dump()
        if values[0] != 0:
            return False
        if any(not 0 <= v <= MASK32 for v in values):
            return False
        if not 0 <= self.pc <= len(self.memory):
            return False
        return self.cycle_count >= 0

    def dump_registers(self) -> Dict[str, int]:
        """Get all register values keyed by "x0".."x31"."""
        return {f"x{i}": v for i, v in enumerate(self.registers.dump())}

    def __str__(self) -> str:
        nonzero = " ".join(
            f"x{i}=0x{v:08x}" for i, v in enumerate(self.registers.dump()) if v
        )
        return f"[Cycle {self.cycle_count}] PC=0x{self.pc:08x} {nonzero}".rstrip()


def create_initial_state(
    image: bytes,
    memory_size: int = MEMORY_SIZE,
    output: Optional[BinaryIO] = None,
) -> MachineState:
    """Create a fresh machine with a binary image loaded at address 0.

    Args:
        image: Raw program bytes
        memory_size: Memory capacity in bytes
        output: Binary stream for UART output

    Returns:
        MachineState with pc = 0 and zeroed registers

    Raises:
        ImageTooLargeError: If the image does not fit
    """
    memory = Memory(memory_size, output=output)
    memory.load_image(image)
    return MachineState(memory=memory)
