"""RV32ICPU: Main CPU orchestrator for the RV32I emulator.

This module implements the execution pipeline:
    MEMORY -> FETCH -> DECODE -> KIND -> REGISTRY -> EXECUTE -> STATE

One step performs exactly one fetch-decode-execute cycle. The program
counter advances by 4 unless the executed instruction redirected it, in
which case the redirect target is used as-is.
"""

import logging
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Optional, Union

from .asm import assemble
from .decode import DecodeResult, Decoder, disassemble
from .registry import INSTRUCTION_WIDTH, ExecutorRegistry, get_registry
from .state import (
    MASK32,
    MEMORY_SIZE,
    EmulatorError,
    MachineState,
    create_initial_state,
    register_index,
)


logger = logging.getLogger(__name__)


class FetchFaultError(EmulatorError):
    """Instruction fetch window extends past the end of memory."""

    def __init__(self, address: int):
        super().__init__(f"PC out of bounds: 0x{address:08x}")
        self.address = address


@dataclass
class ExecutionTraceEntry:
    """Single entry in the execution trace.

    Attributes:
        cycle: Cycle number (0-indexed)
        pc: Address the instruction was fetched from
        word: Raw instruction word
        decode_result: Result from the decoder
        next_pc: Program counter after the step
        pre_state: Registers/pc before execution (only when tracing)
        post_state: Registers/pc after execution (only when tracing)
        error: Decode error message for invalid instructions
    """
    cycle: int
    pc: int
    word: int
    decode_result: DecodeResult
    next_pc: int
    pre_state: Optional[dict] = None
    post_state: Optional[dict] = None
    error: Optional[str] = None

    @property
    def redirected(self) -> bool:
        return self.next_pc != (self.pc + INSTRUCTION_WIDTH) & MASK32


class RV32ICPU:
    """RV32I base-integer interpreter.

    Attributes:
        decoder: Decoder instance for instruction decode
        registry: ExecutorRegistry with verified primitives
        state: Current machine state (None until an image is loaded)
        trace: Execution trace entries (filled when record_trace is set)
        max_cycles: Default cycle budget for run()
    """

    DEFAULT_MAX_CYCLES = 10000

    def __init__(
        self,
        memory_size: int = MEMORY_SIZE,
        max_cycles: int = DEFAULT_MAX_CYCLES,
        output: Optional[BinaryIO] = None,
        record_trace: bool = False,
    ):
        """Initialize the CPU.

        Args:
            memory_size: Memory capacity in bytes
            max_cycles: Default cycle budget for run()
            output: Binary stream for UART output (sys.stdout.buffer when None)
            record_trace: Keep an ExecutionTraceEntry with register snapshots per step
        """
        self.decoder = Decoder()
        self.registry: ExecutorRegistry = get_registry()
        self.state: Optional[MachineState] = None
        self.trace: List[ExecutionTraceEntry] = []
        self.memory_size = memory_size
        self.max_cycles = max_cycles
        self.output = output
        self.record_trace = record_trace

    def load_image(self, image: bytes) -> None:
        """Create a fresh machine with a binary image at address 0.

        Raises:
            ImageTooLargeError: If the image does not fit into memory
        """
        self.state = create_initial_state(bytes(image), self.memory_size, self.output)
        self.trace = []
        logger.debug("loaded %d byte image into %d bytes of memory", len(image), self.memory_size)

    def load_program(self, source: str) -> None:
        """Assemble source code and load the resulting image."""
        self.load_image(assemble(source))

    def _require_state(self) -> MachineState:
        if self.state is None:
            raise RuntimeError("No program loaded")
        return self.state

    def fetch(self) -> int:
        """Read the instruction word at the program counter.

        Raises:
            FetchFaultError: If pc .. pc+3 is not inside memory
        """
        state = self._require_state()
        if not state.memory.in_bounds(state.pc, INSTRUCTION_WIDTH):
            logger.error("PC out of bounds: 0x%08x", state.pc)
            raise FetchFaultError(state.pc)
        return state.memory.load32(state.pc)

    def step(self) -> ExecutionTraceEntry:
        """Execute a single instruction cycle.

        Performs: FETCH -> DECODE -> EXECUTE -> PC update

        Returns:
            ExecutionTraceEntry describing the cycle

        Raises:
            RuntimeError: If no program loaded
            FetchFaultError: If the program counter left memory
        """
        state = self._require_state()
        pc = state.pc
        pre_state = state.snapshot() if self.record_trace else None

        # FETCH
        word = self.fetch()

        # DECODE
        decode_result = self.decoder.decode(word)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("0x%08x: %08x  %s", pc, word, disassemble(decode_result))

        # EXECUTE
        target = self.registry.execute(state, decode_result.key, decode_result.params)

        # The only place the default advance is applied
        state.pc = target if target is not None else (pc + INSTRUCTION_WIDTH) & MASK32
        state.cycle_count += 1

        entry = ExecutionTraceEntry(
            cycle=state.cycle_count - 1,
            pc=pc,
            word=word,
            decode_result=decode_result,
            next_pc=state.pc,
            pre_state=pre_state,
            post_state=state.snapshot() if self.record_trace else None,
            error=decode_result.error,
        )
        if self.record_trace:
            self.trace.append(entry)

        return entry

    def run(self, max_cycles: Optional[int] = None) -> List[ExecutionTraceEntry]:
        """Run until the cycle budget is spent or the pc reaches the end of memory.

        Args:
            max_cycles: Steps to execute in this call (instance default if None)

        Returns:
            Execution trace (empty unless record_trace is set)

        Raises:
            FetchFaultError: If a fetch straddles the end of memory
        """
        state = self._require_state()
        limit = max_cycles if max_cycles is not None else self.max_cycles

        for _ in range(limit):
            if state.pc >= len(state.memory):
                logger.info("PC out of bounds (end of program?) at 0x%08x", state.pc)
                break
            self.step()

        return self.trace

    def get_register(self, reg: Union[int, str]) -> int:
        """Get value of a register.

        Args:
            reg: Index, "xN" or ABI name

        Returns:
            Unsigned 32-bit register value
        """
        return self._require_state().registers.read(register_index(reg))

    def dump_registers(self) -> Dict[str, int]:
        """Get all register values keyed "x0".."x31"."""
        return self._require_state().dump_registers()

    def get_pc(self) -> int:
        return self._require_state().pc

    def get_cycle_count(self) -> int:
        if self.state is None:
            return 0
        return self.state.cycle_count

    def format_register_dump(self) -> str:
        """Render all registers, four per row, followed by the PC."""
        state = self._require_state()
        values = state.registers.dump()
        lines = ["", "[Register Dump]"]
        for row in range(0, len(values), 4):
            lines.append("  ".join(
                f"x{i:2d}: 0x{values[i]:08x}" for i in range(row, row + 4)
            ))
        lines.append(f"PC : 0x{state.pc:08x}")
        return "\n".join(lines)

    def dump_regs(self) -> None:
        """Print the register dump."""
        print(self.format_register_dump())

    def print_trace(self) -> None:
        """Print execution trace in human-readable format."""
        print("=" * 70)
        print("RV32I EXECUTION TRACE")
        print("=" * 70)

        for entry in self.trace:
            status = "OK" if not entry.error else f"ERROR: {entry.error}"
            print(f"\n[Cycle {entry.cycle}] {status}")
            print(f"  Fetched instruction: 0x{entry.word:08x} at 0x{entry.pc:08x}")
            print(f"  Decoded: {disassemble(entry.decode_result)}")

            if entry.pre_state and entry.post_state:
                pre_regs = entry.pre_state["registers"]
                post_regs = entry.post_state["registers"]
                changes = [
                    f"x{i}: 0x{pre_regs[i]:08x} -> 0x{post_regs[i]:08x}"
                    for i in range(len(pre_regs)) if pre_regs[i] != post_regs[i]
                ]
                if changes:
                    print(f"  Changes: {', '.join(changes)}")

            if entry.redirected:
                print(f"  PC: 0x{entry.pc:08x} -> 0x{entry.next_pc:08x}")

        print("\n" + "=" * 70)
        print("FINAL STATE")
        print("=" * 70)
        if self.state:
            print(self.format_register_dump())
            print(f"Cycles: {self.get_cycle_count()}")

    def get_summary(self) -> Dict:
        """Get execution summary.

        Returns:
            Dictionary with execution statistics and final state
        """
        return {
            "cycles": self.get_cycle_count(),
            "registers": self.dump_registers() if self.state else {},
            "pc": self.get_pc() if self.state else 0,
            "trace_length": len(self.trace),
            "errors": [e.error for e in self.trace if e.error],
        }
