"""ExecutorRegistry: verified RV32I primitives.

This module implements the registry pattern for CPU operations: every
InstructionKind the decoder can emit maps to exactly one handler, and the
registry is frozen once populated.

Each primitive has the signature (MachineState, params) -> Optional[int].
It mutates registers and memory in place and returns the redirected
program counter, or None to fall through to the next instruction. The
step driver owns the pc + 4 default, so handlers never add it themselves.

Families:
    ALU register-register: ADD SUB SLL SLT SLTU XOR SRL SRA OR AND
    ALU register-immediate: ADDI SLTI SLTIU XORI ORI ANDI SLLI SRLI SRAI
    Loads: LB LH LW LBU LHU
    Stores: SB SH SW
    Branches: BEQ BNE BLT BGE BLTU BGEU
    Jumps: JAL JALR
    Upper immediates: LUI AUIPC
    System: ECALL EBREAK (no effect)
    INVALID: reported, no effect
"""

import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

from .decode import InstructionKind as K
from .state import MASK32, MachineState, sign_extend, to_signed


logger = logging.getLogger(__name__)

INSTRUCTION_WIDTH = 4

Handler = Callable[[MachineState, Dict[str, Any]], Optional[int]]


# Operands arrive as unsigned 32-bit values; results are masked on write.
ALU_OPS: Dict[K, Callable[[int, int], int]] = {
    K.ADD: lambda a, b: a + b,
    K.SUB: lambda a, b: a - b,
    K.SLL: lambda a, b: a << (b & 0x1F),
    K.SLT: lambda a, b: int(to_signed(a) < to_signed(b)),
    K.SLTU: lambda a, b: int(a < b),
    K.XOR: lambda a, b: a ^ b,
    K.SRL: lambda a, b: a >> (b & 0x1F),
    K.SRA: lambda a, b: to_signed(a) >> (b & 0x1F),
    K.OR: lambda a, b: a | b,
    K.AND: lambda a, b: a & b,
}

IMM_OPS: Dict[K, K] = {
    K.ADDI: K.ADD,
    K.SLTI: K.SLT,
    K.SLTIU: K.SLTU,
    K.XORI: K.XOR,
    K.ORI: K.OR,
    K.ANDI: K.AND,
    K.SLLI: K.SLL,
    K.SRLI: K.SRL,
    K.SRAI: K.SRA,
}

BRANCH_CONDITIONS: Dict[K, Callable[[int, int], bool]] = {
    K.BEQ: lambda a, b: a == b,
    K.BNE: lambda a, b: a != b,
    K.BLT: lambda a, b: to_signed(a) < to_signed(b),
    K.BGE: lambda a, b: to_signed(a) >= to_signed(b),
    K.BLTU: lambda a, b: a < b,
    K.BGEU: lambda a, b: a >= b,
}

# kind -> (width in bytes, sign-extend)
LOAD_WIDTHS = {
    K.LB: (1, True),
    K.LH: (2, True),
    K.LW: (4, False),
    K.LBU: (1, False),
    K.LHU: (2, False),
}

STORE_WIDTHS = {
    K.SB: 1,
    K.SH: 2,
    K.SW: 4,
}


class ExecutorRegistry:
    """Verified registry of RV32I primitives.

    The registry is frozen after initialization to ensure
    no runtime modifications can occur.

    Attributes:
        _primitives: Dictionary mapping instruction kinds to handlers
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self):
        """Initialize registry with all primitives."""
        self._primitives: Dict[K, Handler] = {}
        self._frozen = False
        self._register_all_primitives()
        self.freeze()

    def _register_all_primitives(self) -> None:
        """Register one handler for every instruction kind."""
        # Arithmetic and logic
        for key in ALU_OPS:
            self.register(key, partial(self._op_alu_reg, ALU_OPS[key]))
        for key, base in IMM_OPS.items():
            self.register(key, partial(self._op_alu_imm, ALU_OPS[base]))

        # Memory
        for key, (width, signed) in LOAD_WIDTHS.items():
            self.register(key, partial(self._op_load, width, signed))
        for key, width in STORE_WIDTHS.items():
            self.register(key, partial(self._op_store, width))

        # Control flow
        for key, condition in BRANCH_CONDITIONS.items():
            self.register(key, partial(self._op_branch, condition))
        self.register(K.JAL, self._op_jal)
        self.register(K.JALR, self._op_jalr)

        # Upper immediates
        self.register(K.LUI, self._op_lui)
        self.register(K.AUIPC, self._op_auipc)

        # Special
        self.register(K.ECALL, self._op_system)
        self.register(K.EBREAK, self._op_system)
        self.register(K.INVALID, self._op_invalid)

    def register(self, key: K, handler: Handler) -> None:
        """Register a primitive operation.

        Args:
            key: Instruction kind
            handler: Function taking (state, params) and returning a pc or None

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register primitives: registry is frozen")
        if key in self._primitives:
            raise ValueError(f"Primitive already registered: {key}")
        self._primitives[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def get_valid_keys(self) -> set:
        """Get set of all registered instruction kinds."""
        return set(self._primitives.keys())

    def execute(self, state: MachineState, key: K, params: Dict[str, Any]) -> Optional[int]:
        """Execute a registered primitive.

        Args:
            state: Machine state, mutated in place
            key: Instruction kind
            params: Operands from the decoder

        Returns:
            Redirected program counter (32-bit), or None to fall through

        Raises:
            KeyError: If key not in registry
        """
        if key not in self._primitives:
            raise KeyError(f"Unknown operation key: {key}")

        target = self._primitives[key](state, params)
        if target is None:
            return None
        return target & MASK32

    # =========================================================================
    # Arithmetic Primitives
    # =========================================================================

    def _op_alu_reg(self, op, state: MachineState, params: Dict[str, Any]) -> None:
        """rd = rs1 <op> rs2."""
        regs = state.registers
        regs.write(params["rd"], op(regs.read(params["rs1"]), regs.read(params["rs2"])))

    def _op_alu_imm(self, op, state: MachineState, params: Dict[str, Any]) -> None:
        """rd = rs1 <op> imm.

        Shift forms carry "shamt" instead of "imm". The immediate is taken
        as its 32-bit pattern so SLTIU compares against the sign-extended
        value reinterpreted as unsigned.
        """
        regs = state.registers
        operand = params["shamt"] if "shamt" in params else params["imm"] & MASK32
        regs.write(params["rd"], op(regs.read(params["rs1"]), operand))

    # =========================================================================
    # Memory Primitives
    # =========================================================================

    def _op_load(self, width: int, signed: bool, state: MachineState, params: Dict[str, Any]) -> None:
        """rd = mem[rs1 + imm], sign- or zero-extended to 32 bits."""
        addr = (state.registers.read(params["rs1"]) + params["imm"]) & MASK32
        memory = state.memory
        if width == 1:
            value = memory.load8(addr)
        elif width == 2:
            value = memory.load16(addr)
        else:
            value = memory.load32(addr)

        if signed:
            value = sign_extend(value, 8 * width)
        state.registers.write(params["rd"], value)

    def _op_store(self, width: int, state: MachineState, params: Dict[str, Any]) -> None:
        """mem[rs1 + imm] = low bits of rs2."""
        addr = (state.registers.read(params["rs1"]) + params["imm"]) & MASK32
        value = state.registers.read(params["rs2"])
        memory = state.memory
        if width == 1:
            memory.store8(addr, value & 0xFF)
        elif width == 2:
            memory.store16(addr, value & 0xFFFF)
        else:
            memory.store32(addr, value)

    # =========================================================================
    # Control Flow Primitives
    # =========================================================================

    def _op_branch(self, condition, state: MachineState, params: Dict[str, Any]) -> Optional[int]:
        """Jump to pc + imm when the condition holds on (rs1, rs2)."""
        regs = state.registers
        if condition(regs.read(params["rs1"]), regs.read(params["rs2"])):
            return state.pc + params["imm"]
        return None

    def _op_jal(self, state: MachineState, params: Dict[str, Any]) -> int:
        """JAL rd, imm - Link and jump relative to this instruction.

        Params:
            rd: Link register (receives pc + 4)
            imm: J-immediate

        Returns:
            pc + imm
        """
        state.registers.write(params["rd"], state.pc + INSTRUCTION_WIDTH)
        return state.pc + params["imm"]

    def _op_jalr(self, state: MachineState, params: Dict[str, Any]) -> int:
        """JALR rd, imm(rs1) - Link and jump to a register target.

        The base is read before rd is written, so "jalr ra, 0(ra)" works.

        Returns:
            (rs1 + imm) with bit 0 cleared
        """
        target = (state.registers.read(params["rs1"]) + params["imm"]) & ~1
        state.registers.write(params["rd"], state.pc + INSTRUCTION_WIDTH)
        return target

    # =========================================================================
    # Upper Immediate Primitives
    # =========================================================================

    def _op_lui(self, state: MachineState, params: Dict[str, Any]) -> None:
        state.registers.write(params["rd"], params["imm"])

    def _op_auipc(self, state: MachineState, params: Dict[str, Any]) -> None:
        state.registers.write(params["rd"], state.pc + params["imm"])

    # =========================================================================
    # Special Primitives
    # =========================================================================

    def _op_system(self, state: MachineState, params: Dict[str, Any]) -> None:
        """ECALL / EBREAK - Recognized, no side effects."""
        return None

    def _op_invalid(self, state: MachineState, params: Dict[str, Any]) -> None:
        """INVALID - Report the word and continue with the next instruction."""
        raw = params.get("raw", 0)
        logger.warning("unknown instruction 0x%08x at pc 0x%08x, skipped", raw, state.pc)
        return None


# Singleton registry instance
_registry: Optional[ExecutorRegistry] = None


def get_registry() -> ExecutorRegistry:
    """Get the singleton executor registry instance.

    Returns:
        The frozen ExecutorRegistry instance
    """
    global _registry
    if _registry is None:
        _registry = ExecutorRegistry()
    return _registry
