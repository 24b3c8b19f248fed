"""Tests for the RV32I encoders and assembler."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from rvemu.asm import (
    AsmError,
    assemble,
    assemble_words,
    encode_b,
    encode_i,
    encode_j,
    encode_u,
    parse_source,
)


class TestEncoders:
    """Test encoders against well-known instruction words."""

    def test_known_words(self):
        assert encode_i(5, 0, 0x0, 1) == 0x00500093          # addi x1, x0, 5
        assert encode_b(-4, 0, 0, 0x0) == 0xFE000EE3         # beq x0, x0, -4
        assert encode_j(-8, 0) == 0xFF9FF06F                 # jal x0, -8
        assert encode_u(0x12345000, 1) == 0x123450B7         # lui x1, 0x12345

    def test_range_checks(self):
        with pytest.raises(ValueError):
            encode_i(2048, 0, 0, 1)
        with pytest.raises(ValueError):
            encode_b(4096, 0, 0, 0)
        with pytest.raises(ValueError):
            encode_b(3, 0, 0, 0)
        with pytest.raises(ValueError):
            encode_j(2**20, 0)
        with pytest.raises(ValueError):
            encode_u(0x1234, 1)


class TestAssembler:
    """Test assembly of complete sources."""

    def test_demo_program(self):
        words = assemble_words("""
            addi x1, x0, 5
            addi x2, x0, 10
            add  x3, x1, x2
        loop:
            beq  x0, x0, loop
        """)
        assert words == [0x00500093, 0x00A00113, 0x002081B3, 0x00000063]

    def test_assemble_returns_little_endian_bytes(self):
        assert assemble("addi x1, x0, 5") == b"\x93\x00\x50\x00"

    def test_labels_and_comments(self):
        statements, labels = parse_source("""
        start:              # entry
            nop             ; first
        mid: nop
            nop
        end:
        """)
        assert labels == {"start": 0, "mid": 4, "end": 12}
        assert [s[1] for s in statements] == ["nop", "nop", "nop"]

    def test_backward_and_forward_labels(self):
        words = assemble_words("""
        top:
            beq x1, x2, done
            jal x0, top
        done:
            nop
        """)
        assert words[0] == encode_b(8, 2, 1, 0x0)
        assert words[1] == encode_j(-4, 0)

    def test_abi_register_names(self):
        assert assemble_words("addi a0, zero, 1") == assemble_words("addi x10, x0, 1")
        assert assemble_words("mv sp, ra") == [encode_i(0, 1, 0x0, 2)]

    def test_memory_operands(self):
        assert assemble_words("lw x1, 8(x2)") == [encode_i(8, 2, 0x2, 1, opcode=0x03)]
        assert assemble_words("sw x2, 8(x1)") == [0x0020A423]
        assert assemble_words("lbu t0, (sp)") == [encode_i(0, 2, 0x4, 5, opcode=0x03)]

    def test_shift_immediates(self):
        assert assemble_words("srai x1, x1, 3") == [encode_i(0x400 | 3, 1, 0x5, 1)]
        assert assemble_words("slli x1, x1, 31") == [encode_i(31, 1, 0x1, 1)]

    def test_li_small_is_one_word(self):
        assert assemble_words("li t0, -5") == [encode_i(-5, 0, 0x0, 5)]

    def test_li_large_is_lui_addi(self):
        source = "li t0, 0x12345FFF\nafter: nop"
        words = assemble_words(source)
        _, labels = parse_source(source)
        # lower part -1 needs the upper part rounded up
        assert words[:2] == [encode_u(0x12346000, 5), encode_i(-1, 5, 0x0, 5)]
        assert labels["after"] == 8

    def test_system_and_pseudo(self):
        assert assemble_words("ecall\nebreak\nret\nnop") == [
            0x00000073, 0x00100073, 0x00008067, 0x00000013,
        ]

    def test_upper_immediates(self):
        assert assemble_words("lui x1, 0x12345") == [0x123450B7]
        assert assemble_words("auipc x1, 1") == [encode_u(0x1000, 1, 0x17)]

    def test_jalr_forms(self):
        expected = [encode_i(4, 5, 0x0, 1, opcode=0x67)]
        assert assemble_words("jalr x1, 4(x5)") == expected
        assert assemble_words("jalr x1, x5, 4") == expected
        assert assemble_words("jalr x5") == [encode_i(0, 5, 0x0, 1, opcode=0x67)]

    def test_word_directive(self):
        assert assemble_words(".word 0xdeadbeef") == [0xDEADBEEF]


class TestAssemblerErrors:
    """Test error reporting with line numbers."""

    def test_unknown_mnemonic(self):
        with pytest.raises(AsmError, match="Unknown mnemonic") as excinfo:
            assemble("nop\nmul x1, x2, x3")
        assert excinfo.value.line == 2

    def test_bad_register(self):
        with pytest.raises(AsmError, match="Invalid register"):
            assemble("addi x32, x0, 1")

    def test_immediate_out_of_range(self):
        with pytest.raises(AsmError, match="out of range"):
            assemble("addi x1, x0, 4096")

    def test_duplicate_label(self):
        with pytest.raises(AsmError, match="Duplicate label"):
            assemble("a:\nnop\na:\nnop")

    def test_unknown_label(self):
        with pytest.raises(AsmError, match="Unknown label"):
            assemble("j nowhere")

    def test_operand_count(self):
        with pytest.raises(AsmError, match="takes 3 operands"):
            assemble("add x1, x2")

    def test_errors_keep_cause(self):
        with pytest.raises(AsmError) as excinfo:
            assemble("addi x1, x0, 4096")
        assert isinstance(excinfo.value.__cause__, ValueError)

        with pytest.raises(AsmError) as excinfo:
            assemble("addi x99, x0, 1")
        assert isinstance(excinfo.value.__cause__, KeyError)
