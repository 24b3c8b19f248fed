"""RVEMU: Interpreter for the 32-bit RISC-V base integer ISA.

This package loads a flat binary image into an emulated address space and
repeatedly fetches, decodes and executes 32-bit instruction words against a
register file and byte-addressable memory.

Architecture:
    MEMORY -> FETCH -> DECODE -> KIND -> REGISTRY -> EXECUTE -> STATE
               |         |        |         |           |
           [PC-based] [Decoder] [Enum] [Verified]  [In-place]
                                        Primitives  MachineState

Modules:
    state: Memory, RegisterFile and the MachineState dataclass
    decode: Bit-field extraction and the tagged-variant Decoder
    registry: Verified RV32I primitives (ADD, LW, BEQ, JAL, ...)
    cpu: Main RV32ICPU orchestrator (fetch / step / run)
    asm: Instruction encoders and a small assembler
"""

__version__ = "0.1.0"

from .state import (
    MachineState,
    Memory,
    RegisterFile,
    EmulatorError,
    ImageTooLargeError,
    UART_ADDRESS,
    MEMORY_SIZE,
)
from .decode import Decoder, DecodeResult, InstructionKind, decode_fields, disassemble
from .registry import ExecutorRegistry
from .cpu import RV32ICPU, FetchFaultError, ExecutionTraceEntry
from .asm import assemble, AsmError

__all__ = [
    "MachineState",
    "Memory",
    "RegisterFile",
    "EmulatorError",
    "ImageTooLargeError",
    "UART_ADDRESS",
    "MEMORY_SIZE",
    "Decoder",
    "DecodeResult",
    "InstructionKind",
    "decode_fields",
    "disassemble",
    "ExecutorRegistry",
    "RV32ICPU",
    "FetchFaultError",
    "ExecutionTraceEntry",
    "assemble",
    "AsmError",
]
