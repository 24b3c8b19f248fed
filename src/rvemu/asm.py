"""RV32I encoders and a small two-pass assembler.

The encoders are the exact inverse of the decoder's bit layouts. The
assembler turns text into a flat binary image suitable for
RV32ICPU.load_image.

Supports:
    - Labels (``name:``, optionally followed by an instruction)
    - Comments (``#`` or ``;`` to end of line)
    - Registers as ``x0``-``x31`` or ABI names (``zero``, ``ra``, ``sp``, ...)
    - Memory operands as ``offset(reg)``
    - Every base integer instruction plus ``nop``, ``li``, ``mv``, ``j``,
      ``ret`` and the ``.word`` directive

Usage:
    from rvemu.asm import assemble
    image = assemble("addi x1, x0, 5")
"""

import re
from typing import Dict, List, Tuple

from .decode import (
    BRANCHES,
    FUNCT7_ALT,
    FUNCT7_BASE,
    I_TYPE,
    LOADS,
    OPCODE_AUIPC,
    OPCODE_BRANCH,
    OPCODE_JAL,
    OPCODE_JALR,
    OPCODE_LOAD,
    OPCODE_LUI,
    OPCODE_OP,
    OPCODE_OP_IMM,
    OPCODE_STORE,
    OPCODE_SYSTEM,
    R_TYPE,
    STORES,
)
from .state import MASK32, register_index, sign_extend


class AsmError(ValueError):
    def __init__(self, line: int, msg: str):
        self.line = line
        super().__init__(f"Line {line}: {msg}")


# =============================================================================
# Encoders
# =============================================================================

def _check_range(value: int, bits: int, what: str) -> None:
    lo, hi = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    if not lo <= value <= hi:
        raise ValueError(f"{what} {value} out of range [{lo}, {hi}]")


def encode_r(funct7: int, rs2: int, rs1: int, funct3: int, rd: int, opcode: int = OPCODE_OP) -> int:
    return ((funct7 & 0x7F) << 25 | (rs2 & 0x1F) << 20 | (rs1 & 0x1F) << 15
            | (funct3 & 0x7) << 12 | (rd & 0x1F) << 7 | (opcode & 0x7F))


def encode_i(imm: int, rs1: int, funct3: int, rd: int, opcode: int = OPCODE_OP_IMM) -> int:
    _check_range(imm, 12, "I-immediate")
    return ((imm & 0xFFF) << 20 | (rs1 & 0x1F) << 15 | (funct3 & 0x7) << 12
            | (rd & 0x1F) << 7 | (opcode & 0x7F))


def encode_s(imm: int, rs2: int, rs1: int, funct3: int, opcode: int = OPCODE_STORE) -> int:
    _check_range(imm, 12, "S-immediate")
    imm &= 0xFFF
    return ((imm >> 5) << 25 | (rs2 & 0x1F) << 20 | (rs1 & 0x1F) << 15
            | (funct3 & 0x7) << 12 | (imm & 0x1F) << 7 | (opcode & 0x7F))


def encode_b(imm: int, rs2: int, rs1: int, funct3: int, opcode: int = OPCODE_BRANCH) -> int:
    _check_range(imm, 13, "B-immediate")
    if imm & 1:
        raise ValueError(f"B-immediate {imm} is not a multiple of 2")
    imm &= 0x1FFF
    return (((imm >> 12) & 0x1) << 31 | ((imm >> 5) & 0x3F) << 25
            | (rs2 & 0x1F) << 20 | (rs1 & 0x1F) << 15 | (funct3 & 0x7) << 12
            | ((imm >> 1) & 0xF) << 8 | ((imm >> 11) & 0x1) << 7 | (opcode & 0x7F))


def encode_u(imm: int, rd: int, opcode: int = OPCODE_LUI) -> int:
    """Encode a U-type word; imm is the full value with its low 12 bits zero."""
    if not -(1 << 31) <= imm <= MASK32:
        raise ValueError(f"U-immediate {imm} does not fit in 32 bits")
    if imm & 0xFFF:
        raise ValueError(f"U-immediate 0x{imm & MASK32:x} has nonzero low 12 bits")
    return (imm & 0xFFFFF000) | (rd & 0x1F) << 7 | (opcode & 0x7F)


def encode_j(imm: int, rd: int, opcode: int = OPCODE_JAL) -> int:
    _check_range(imm, 21, "J-immediate")
    if imm & 1:
        raise ValueError(f"J-immediate {imm} is not a multiple of 2")
    imm &= 0x1FFFFF
    return (((imm >> 20) & 0x1) << 31 | ((imm >> 1) & 0x3FF) << 21
            | ((imm >> 11) & 0x1) << 20 | ((imm >> 12) & 0xFF) << 12
            | (rd & 0x1F) << 7 | (opcode & 0x7F))


# =============================================================================
# Mnemonic tables
# =============================================================================

R_OPS = {key.mnemonic: (funct3, funct7) for (funct3, funct7), key in R_TYPE.items()}
I_OPS = {key.mnemonic: funct3 for funct3, key in I_TYPE.items()}
SHIFT_OPS = {"slli": (0x1, FUNCT7_BASE), "srli": (0x5, FUNCT7_BASE), "srai": (0x5, FUNCT7_ALT)}
LOAD_OPS = {key.mnemonic: funct3 for funct3, key in LOADS.items()}
STORE_OPS = {key.mnemonic: funct3 for funct3, key in STORES.items()}
BRANCH_OPS = {key.mnemonic: funct3 for funct3, key in BRANCHES.items()}

_MEM_OPERAND = re.compile(r"^(.*)\(\s*([\w]+)\s*\)$")
_LABEL = re.compile(r"^([A-Za-z_.][\w.]*)\s*:(.*)$")


def _parse_imm(text: str) -> int:
    """Parse an immediate value (decimal, hex or binary, may be negative)."""
    return int(text.strip(), 0)


def _fits_i(value: int) -> bool:
    return -2048 <= value <= 2047


def _split_operands(text: str) -> List[str]:
    text = text.strip()
    if not text:
        return []
    return [op.strip() for op in text.split(",")]


def _size_of(mnem: str, ops: List[str]) -> int:
    if mnem == "li" and len(ops) == 2:
        try:
            return 4 if _fits_i(_parse_imm(ops[1])) else 8
        except ValueError:
            return 4
    return 4


class _Assembler:
    """State for pass 2: label table plus per-line encoding helpers."""

    def __init__(self, labels: Dict[str, int]):
        self.labels = labels

    def reg(self, lineno: int, text: str) -> int:
        try:
            return register_index(text)
        except KeyError as e:
            raise AsmError(lineno, f"Invalid register: {text!r}") from e

    def imm(self, lineno: int, text: str) -> int:
        try:
            return _parse_imm(text)
        except ValueError as e:
            raise AsmError(lineno, f"Invalid immediate: {text!r}") from e

    def mem(self, lineno: int, text: str) -> Tuple[int, int]:
        match = _MEM_OPERAND.match(text)
        if not match:
            raise AsmError(lineno, f"Expected offset(reg), got: {text!r}")
        offset = match.group(1).strip()
        return (self.imm(lineno, offset) if offset else 0), self.reg(lineno, match.group(2))

    def target(self, lineno: int, text: str, addr: int) -> int:
        """Resolve a label to a pc-relative offset, or take a number as-is."""
        if text in self.labels:
            return self.labels[text] - addr
        try:
            return _parse_imm(text)
        except ValueError as e:
            raise AsmError(lineno, f"Unknown label: {text}") from e

    def encode(self, lineno: int, mnem: str, ops: List[str], addr: int) -> List[int]:
        def expect(count: int) -> None:
            if len(ops) != count:
                raise AsmError(lineno, f"{mnem} takes {count} operands, got {len(ops)}")

        if mnem in R_OPS:
            expect(3)
            funct3, funct7 = R_OPS[mnem]
            return [encode_r(funct7, self.reg(lineno, ops[2]), self.reg(lineno, ops[1]),
                             funct3, self.reg(lineno, ops[0]))]

        if mnem in I_OPS:
            expect(3)
            return [encode_i(self.imm(lineno, ops[2]), self.reg(lineno, ops[1]),
                             I_OPS[mnem], self.reg(lineno, ops[0]))]

        if mnem in SHIFT_OPS:
            expect(3)
            funct3, funct7 = SHIFT_OPS[mnem]
            shamt = self.imm(lineno, ops[2])
            if not 0 <= shamt <= 31:
                raise AsmError(lineno, f"Shift amount {shamt} out of range [0, 31]")
            return [encode_i(funct7 << 5 | shamt, self.reg(lineno, ops[1]),
                             funct3, self.reg(lineno, ops[0]))]

        if mnem in LOAD_OPS:
            expect(2)
            offset, base = self.mem(lineno, ops[1])
            return [encode_i(offset, base, LOAD_OPS[mnem], self.reg(lineno, ops[0]), OPCODE_LOAD)]

        if mnem in STORE_OPS:
            expect(2)
            offset, base = self.mem(lineno, ops[1])
            return [encode_s(offset, self.reg(lineno, ops[0]), base, STORE_OPS[mnem])]

        if mnem in BRANCH_OPS:
            expect(3)
            return [encode_b(self.target(lineno, ops[2], addr), self.reg(lineno, ops[1]),
                             self.reg(lineno, ops[0]), BRANCH_OPS[mnem])]

        if mnem in ("lui", "auipc"):
            expect(2)
            upper = self.imm(lineno, ops[1])
            if not -(1 << 19) <= upper <= 0xFFFFF:
                raise AsmError(lineno, f"Upper immediate {upper} out of range")
            opcode = OPCODE_LUI if mnem == "lui" else OPCODE_AUIPC
            return [encode_u((upper & 0xFFFFF) << 12, self.reg(lineno, ops[0]), opcode)]

        if mnem == "jal":
            if len(ops) == 1:
                return [encode_j(self.target(lineno, ops[0], addr), 1)]
            expect(2)
            return [encode_j(self.target(lineno, ops[1], addr), self.reg(lineno, ops[0]))]

        if mnem == "jalr":
            if len(ops) == 1:
                return [encode_i(0, self.reg(lineno, ops[0]), 0x0, 1, OPCODE_JALR)]
            if len(ops) == 3:
                return [encode_i(self.imm(lineno, ops[2]), self.reg(lineno, ops[1]),
                                 0x0, self.reg(lineno, ops[0]), OPCODE_JALR)]
            expect(2)
            offset, base = self.mem(lineno, ops[1])
            return [encode_i(offset, base, 0x0, self.reg(lineno, ops[0]), OPCODE_JALR)]

        if mnem == "ecall":
            expect(0)
            return [encode_i(0, 0, 0x0, 0, OPCODE_SYSTEM)]
        if mnem == "ebreak":
            expect(0)
            return [encode_i(1, 0, 0x0, 0, OPCODE_SYSTEM)]

        # Pseudo-instructions
        if mnem == "nop":
            expect(0)
            return [encode_i(0, 0, 0x0, 0)]
        if mnem == "mv":
            expect(2)
            return [encode_i(0, self.reg(lineno, ops[1]), 0x0, self.reg(lineno, ops[0]))]
        if mnem == "j":
            expect(1)
            return [encode_j(self.target(lineno, ops[0], addr), 0)]
        if mnem == "ret":
            expect(0)
            return [encode_i(0, 1, 0x0, 0, OPCODE_JALR)]
        if mnem == "li":
            expect(2)
            rd = self.reg(lineno, ops[0])
            value = self.imm(lineno, ops[1])
            if _fits_i(value):
                return [encode_i(value, 0, 0x0, rd)]
            if not -(1 << 31) <= value <= MASK32:
                raise AsmError(lineno, f"li value {value} does not fit in 32 bits")
            lower = sign_extend(value, 12)
            upper = (value - lower) & MASK32
            return [encode_u(upper, rd), encode_i(lower, rd, 0x0, rd)]
        if mnem == ".word":
            expect(1)
            return [self.imm(lineno, ops[0]) & MASK32]

        raise AsmError(lineno, f"Unknown mnemonic: {mnem!r}")


def parse_source(source: str) -> Tuple[List[Tuple[int, str, List[str], int]], Dict[str, int]]:
    """Pass 1: strip comments, collect labels and assign addresses.

    Args:
        source: Assembly source code

    Returns:
        Tuple of (list of (line, mnemonic, operands, address), label-to-address dict)
    """
    statements = []
    labels: Dict[str, int] = {}
    addr = 0

    for lineno, line in enumerate(source.split("\n"), 1):
        line = re.sub(r"[;#].*$", "", line).strip()

        match = _LABEL.match(line)
        while match:
            label = match.group(1)
            if label in labels:
                raise AsmError(lineno, f"Duplicate label: {label}")
            labels[label] = addr
            line = match.group(2).strip()
            match = _LABEL.match(line)

        if not line:
            continue

        parts = line.split(None, 1)
        mnem = parts[0].lower()
        ops = _split_operands(parts[1] if len(parts) > 1 else "")
        statements.append((lineno, mnem, ops, addr))
        addr += _size_of(mnem, ops)

    return statements, labels


def assemble_words(source: str) -> List[int]:
    """Assemble source into a list of 32-bit instruction words."""
    statements, labels = parse_source(source)
    asm = _Assembler(labels)
    words: List[int] = []

    for lineno, mnem, ops, addr in statements:
        try:
            words.extend(asm.encode(lineno, mnem, ops, addr))
        except AsmError:
            raise
        except ValueError as e:
            raise AsmError(lineno, str(e)) from e

    return words


def assemble(source: str) -> bytes:
    """Two-pass assembler.

    Pass 1: collect labels, compute instruction sizes.
    Pass 2: encode words with resolved pc-relative offsets.

    Returns:
        Little-endian binary image starting at address 0

    Raises:
        AsmError: On any syntax, operand or range error
    """
    return b"".join(word.to_bytes(4, "little") for word in assemble_words(source))
