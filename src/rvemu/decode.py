"""Decoder: bit-level instruction decode for the RV32I emulator.

This module turns a raw 32-bit instruction word into a tagged variant:
an InstructionKind naming the operation plus the operands it needs.
The executor never looks at encoding bits again.

Architecture:
    Raw word -> decode_fields -> InstructionFields
                              -> Decoder.decode -> DecodeResult(kind, params)

Decode is two-level: the opcode selects an instruction family, funct3 and
funct7 (or bit 10 of the I-immediate for SRLI/SRAI) select the operation
within the family.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from .state import sign_extend


logger = logging.getLogger(__name__)

# Opcode families
OPCODE_LOAD = 0x03
OPCODE_OP_IMM = 0x13
OPCODE_AUIPC = 0x17
OPCODE_STORE = 0x23
OPCODE_OP = 0x33
OPCODE_LUI = 0x37
OPCODE_BRANCH = 0x63
OPCODE_JALR = 0x67
OPCODE_JAL = 0x6F
OPCODE_SYSTEM = 0x73

FUNCT7_BASE = 0x00
FUNCT7_ALT = 0x20


class InstructionKind(Enum):
    """Every operation the executor knows how to perform."""
    # Register-register
    ADD = "add"
    SUB = "sub"
    SLL = "sll"
    SLT = "slt"
    SLTU = "sltu"
    XOR = "xor"
    SRL = "srl"
    SRA = "sra"
    OR = "or"
    AND = "and"

    # Register-immediate
    ADDI = "addi"
    SLTI = "slti"
    SLTIU = "sltiu"
    XORI = "xori"
    ORI = "ori"
    ANDI = "andi"
    SLLI = "slli"
    SRLI = "srli"
    SRAI = "srai"

    # Memory
    LB = "lb"
    LH = "lh"
    LW = "lw"
    LBU = "lbu"
    LHU = "lhu"
    SB = "sb"
    SH = "sh"
    SW = "sw"

    # Control flow
    BEQ = "beq"
    BNE = "bne"
    BLT = "blt"
    BGE = "bge"
    BLTU = "bltu"
    BGEU = "bgeu"
    JAL = "jal"
    JALR = "jalr"

    # Upper immediates
    LUI = "lui"
    AUIPC = "auipc"

    # System
    ECALL = "ecall"
    EBREAK = "ebreak"

    INVALID = "invalid"

    @property
    def mnemonic(self) -> str:
        return self.value


R_TYPE = {
    (0x0, FUNCT7_BASE): InstructionKind.ADD,
    (0x0, FUNCT7_ALT): InstructionKind.SUB,
    (0x1, FUNCT7_BASE): InstructionKind.SLL,
    (0x2, FUNCT7_BASE): InstructionKind.SLT,
    (0x3, FUNCT7_BASE): InstructionKind.SLTU,
    (0x4, FUNCT7_BASE): InstructionKind.XOR,
    (0x5, FUNCT7_BASE): InstructionKind.SRL,
    (0x5, FUNCT7_ALT): InstructionKind.SRA,
    (0x6, FUNCT7_BASE): InstructionKind.OR,
    (0x7, FUNCT7_BASE): InstructionKind.AND,
}

I_TYPE = {
    0x0: InstructionKind.ADDI,
    0x2: InstructionKind.SLTI,
    0x3: InstructionKind.SLTIU,
    0x4: InstructionKind.XORI,
    0x6: InstructionKind.ORI,
    0x7: InstructionKind.ANDI,
}

LOADS = {
    0x0: InstructionKind.LB,
    0x1: InstructionKind.LH,
    0x2: InstructionKind.LW,
    0x4: InstructionKind.LBU,
    0x5: InstructionKind.LHU,
}

STORES = {
    0x0: InstructionKind.SB,
    0x1: InstructionKind.SH,
    0x2: InstructionKind.SW,
}

BRANCHES = {
    0x0: InstructionKind.BEQ,
    0x1: InstructionKind.BNE,
    0x4: InstructionKind.BLT,
    0x5: InstructionKind.BGE,
    0x6: InstructionKind.BLTU,
    0x7: InstructionKind.BGEU,
}


@dataclass(frozen=True)
class InstructionFields:
    """Every bit field of an instruction word, extracted unconditionally.

    Only some fields are meaningful for a given format; all immediates are
    signed Python ints.
    """
    opcode: int
    rd: int
    funct3: int
    rs1: int
    rs2: int
    funct7: int
    imm_i: int
    imm_s: int
    imm_b: int
    imm_u: int
    imm_j: int


def decode_fields(word: int) -> InstructionFields:
    """Extract register/function fields and the five immediates.

    Args:
        word: 32-bit instruction word

    Returns:
        InstructionFields for the word
    """
    word &= 0xFFFFFFFF

    imm_i = sign_extend(word >> 20, 12)
    imm_s = sign_extend(((word >> 25) << 5) | ((word >> 7) & 0x1F), 12)
    imm_b = sign_extend(
        ((word >> 31) & 0x1) << 12
        | ((word >> 7) & 0x1) << 11
        | ((word >> 25) & 0x3F) << 5
        | ((word >> 8) & 0xF) << 1,
        13,
    )
    imm_u = sign_extend(word & 0xFFFFF000, 32)
    imm_j = sign_extend(
        ((word >> 31) & 0x1) << 20
        | ((word >> 12) & 0xFF) << 12
        | ((word >> 20) & 0x1) << 11
        | ((word >> 21) & 0x3FF) << 1,
        21,
    )

    return InstructionFields(
        opcode=word & 0x7F,
        rd=(word >> 7) & 0x1F,
        funct3=(word >> 12) & 0x7,
        rs1=(word >> 15) & 0x1F,
        rs2=(word >> 20) & 0x1F,
        funct7=(word >> 25) & 0x7F,
        imm_i=imm_i,
        imm_s=imm_s,
        imm_b=imm_b,
        imm_u=imm_u,
        imm_j=imm_j,
    )


@dataclass
class DecodeResult:
    """Result of instruction decode operation.

    Attributes:
        key: Decoded operation
        params: Operands the operation needs (rd, rs1, rs2, imm, shamt)
        valid: Whether decode succeeded
        error: Error message if decode failed
        raw_word: Original instruction word
        fields: All extracted bit fields
    """
    key: InstructionKind
    params: Dict[str, int]
    valid: bool
    error: Optional[str] = None
    raw_word: int = 0
    fields: Optional[InstructionFields] = field(default=None, repr=False)


class Decoder:
    """Bit-pattern instruction decoder.

    Each opcode family has a private decode method; unknown encodings
    produce an INVALID result instead of raising.
    """

    def __init__(self):
        self._families = {
            OPCODE_OP: self._decode_op,
            OPCODE_OP_IMM: self._decode_op_imm,
            OPCODE_LOAD: self._decode_load,
            OPCODE_STORE: self._decode_store,
            OPCODE_BRANCH: self._decode_branch,
            OPCODE_LUI: self._decode_lui,
            OPCODE_AUIPC: self._decode_auipc,
            OPCODE_JAL: self._decode_jal,
            OPCODE_JALR: self._decode_jalr,
            OPCODE_SYSTEM: self._decode_system,
        }

    def decode(self, word: int) -> DecodeResult:
        """Decode an instruction word to an operation and its operands.

        Args:
            word: 32-bit instruction word

        Returns:
            DecodeResult; INVALID with an error for unknown encodings
        """
        word &= 0xFFFFFFFF
        f = decode_fields(word)

        family = self._families.get(f.opcode)
        if family is None:
            return self._invalid(word, f, f"Unknown opcode: 0x{f.opcode:02x}")

        decoded = family(f)
        if decoded is None:
            return self._invalid(
                word, f,
                f"Unknown encoding: opcode=0x{f.opcode:02x} "
                f"funct3=0x{f.funct3:x} funct7=0x{f.funct7:02x}"
            )

        key, params = decoded
        return DecodeResult(key, params, True, raw_word=word, fields=f)

    def _invalid(self, word: int, f: InstructionFields, error: str) -> DecodeResult:
        logger.debug("decode of 0x%08x failed: %s", word, error)
        return DecodeResult(
            InstructionKind.INVALID,
            {"raw": word},
            False,
            error=error,
            raw_word=word,
            fields=f,
        )

    # =========================================================================
    # Families
    # =========================================================================

    def _decode_op(self, f: InstructionFields) -> Optional[Tuple[InstructionKind, dict]]:
        key = R_TYPE.get((f.funct3, f.funct7))
        if key is None:
            return None
        return key, {"rd": f.rd, "rs1": f.rs1, "rs2": f.rs2}

    def _decode_op_imm(self, f: InstructionFields) -> Optional[Tuple[InstructionKind, dict]]:
        if f.funct3 == 0x1:
            return InstructionKind.SLLI, {"rd": f.rd, "rs1": f.rs1, "shamt": f.imm_i & 0x1F}
        if f.funct3 == 0x5:
            # bit 10 of the immediate is bit 30 of the word, as in funct7
            key = InstructionKind.SRAI if f.imm_i & 0x400 else InstructionKind.SRLI
            return key, {"rd": f.rd, "rs1": f.rs1, "shamt": f.imm_i & 0x1F}
        return I_TYPE[f.funct3], {"rd": f.rd, "rs1": f.rs1, "imm": f.imm_i}

    def _decode_load(self, f: InstructionFields) -> Optional[Tuple[InstructionKind, dict]]:
        key = LOADS.get(f.funct3)
        if key is None:
            return None
        return key, {"rd": f.rd, "rs1": f.rs1, "imm": f.imm_i}

    def _decode_store(self, f: InstructionFields) -> Optional[Tuple[InstructionKind, dict]]:
        key = STORES.get(f.funct3)
        if key is None:
            return None
        return key, {"rs1": f.rs1, "rs2": f.rs2, "imm": f.imm_s}

    def _decode_branch(self, f: InstructionFields) -> Optional[Tuple[InstructionKind, dict]]:
        key = BRANCHES.get(f.funct3)
        if key is None:
            return None
        return key, {"rs1": f.rs1, "rs2": f.rs2, "imm": f.imm_b}

    def _decode_lui(self, f: InstructionFields) -> Tuple[InstructionKind, dict]:
        return InstructionKind.LUI, {"rd": f.rd, "imm": f.imm_u}

    def _decode_auipc(self, f: InstructionFields) -> Tuple[InstructionKind, dict]:
        return InstructionKind.AUIPC, {"rd": f.rd, "imm": f.imm_u}

    def _decode_jal(self, f: InstructionFields) -> Tuple[InstructionKind, dict]:
        return InstructionKind.JAL, {"rd": f.rd, "imm": f.imm_j}

    def _decode_jalr(self, f: InstructionFields) -> Optional[Tuple[InstructionKind, dict]]:
        if f.funct3 != 0x0:
            return None
        return InstructionKind.JALR, {"rd": f.rd, "rs1": f.rs1, "imm": f.imm_i}

    def _decode_system(self, f: InstructionFields) -> Optional[Tuple[InstructionKind, dict]]:
        if f.funct3 != 0x0:
            return None
        if f.imm_i == 0x0:
            return InstructionKind.ECALL, {}
        if f.imm_i == 0x1:
            return InstructionKind.EBREAK, {}
        return None


def _reg(index: int) -> str:
    return f"x{index}"


def disassemble(result: DecodeResult) -> str:
    """Render a decoded instruction as assembly text.

    Args:
        result: Output of Decoder.decode

    Returns:
        Text such as "addi x1, x0, 5" or ".word 0x00000000" for invalid words
    """
    key = result.key
    p = result.params

    if not result.valid:
        return f".word 0x{result.raw_word:08x}"

    name = key.mnemonic
    if key in R_TYPE.values():
        return f"{name} {_reg(p['rd'])}, {_reg(p['rs1'])}, {_reg(p['rs2'])}"
    if "shamt" in p:
        return f"{name} {_reg(p['rd'])}, {_reg(p['rs1'])}, {p['shamt']}"
    if key in I_TYPE.values():
        return f"{name} {_reg(p['rd'])}, {_reg(p['rs1'])}, {p['imm']}"
    if key in LOADS.values() or key is InstructionKind.JALR:
        return f"{name} {_reg(p['rd'])}, {p['imm']}({_reg(p['rs1'])})"
    if key in STORES.values():
        return f"{name} {_reg(p['rs2'])}, {p['imm']}({_reg(p['rs1'])})"
    if key in BRANCHES.values():
        return f"{name} {_reg(p['rs1'])}, {_reg(p['rs2'])}, {p['imm']}"
    if key in (InstructionKind.LUI, InstructionKind.AUIPC):
        return f"{name} {_reg(p['rd'])}, 0x{(p['imm'] >> 12) & 0xFFFFF:x}"
    if key is InstructionKind.JAL:
        return f"{name} {_reg(p['rd'])}, {p['imm']}"
    return name
