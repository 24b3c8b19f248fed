"""Tests for the instruction decoder."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from rvemu.asm import encode_b, encode_i, encode_j, encode_r, encode_s, encode_u
from rvemu.decode import (
    DecodeResult,
    Decoder,
    InstructionKind as K,
    decode_fields,
    disassemble,
)


class TestDecodeResultDataclass:
    """Test DecodeResult structure."""

    def test_valid_result(self):
        result = DecodeResult(K.ADD, {"rd": 1, "rs1": 2, "rs2": 3}, True)
        assert result.key is K.ADD
        assert result.params == {"rd": 1, "rs1": 2, "rs2": 3}
        assert result.valid is True
        assert result.error is None

    def test_invalid_result(self):
        result = DecodeResult(K.INVALID, {}, False, error="Unknown")
        assert result.valid is False
        assert result.error == "Unknown"


class TestFieldExtraction:
    """Test register and function fields against known encodings."""

    def test_addi(self):
        """addi x1, x0, 5 = 0x00500093."""
        f = decode_fields(0x00500093)
        assert f.opcode == 0x13
        assert f.rd == 1
        assert f.funct3 == 0
        assert f.rs1 == 0
        assert f.imm_i == 5

    def test_add(self):
        """add x3, x1, x2 = 0x002081b3."""
        f = decode_fields(0x002081B3)
        assert (f.opcode, f.rd, f.funct3, f.rs1, f.rs2, f.funct7) == (0x33, 3, 0, 1, 2, 0)

    def test_sub_funct7(self):
        """sub x3, x1, x2 = 0x402081b3."""
        assert decode_fields(0x402081B3).funct7 == 0x20

    def test_all_fields_maximal(self):
        f = decode_fields(0xFFFFFFFF)
        assert (f.opcode, f.rd, f.funct3, f.rs1, f.rs2, f.funct7) == (0x7F, 31, 7, 31, 31, 0x7F)

    @pytest.mark.parametrize("funct7,rs2,rs1,funct3,rd", [
        (0x00, 0, 0, 0, 0),
        (0x7F, 31, 31, 7, 31),
        (0x20, 17, 5, 3, 12),
        (0x01, 1, 30, 6, 2),
    ])
    def test_r_fields_roundtrip(self, funct7, rs2, rs1, funct3, rd):
        f = decode_fields(encode_r(funct7, rs2, rs1, funct3, rd))
        assert (f.funct7, f.rs2, f.rs1, f.funct3, f.rd, f.opcode) == (funct7, rs2, rs1, funct3, rd, 0x33)


class TestImmediates:
    """Test the five immediate formats, including both extremes."""

    @pytest.mark.parametrize("imm", [-2048, -1, 0, 1, 2047])
    def test_imm_i(self, imm):
        assert decode_fields(encode_i(imm, 3, 0, 4)).imm_i == imm

    @pytest.mark.parametrize("imm", [-2048, -1, 0, 31, 32, 2047])
    def test_imm_s(self, imm):
        assert decode_fields(encode_s(imm, 5, 6, 2)).imm_s == imm

    @pytest.mark.parametrize("imm", [-4096, -4, -2, 0, 2, 2048, 4094])
    def test_imm_b(self, imm):
        assert decode_fields(encode_b(imm, 1, 2, 0)).imm_b == imm

    @pytest.mark.parametrize("imm", [-(2**31), -4096, 0, 0x1000, 0x7FFFF000])
    def test_imm_u(self, imm):
        assert decode_fields(encode_u(imm, 7)).imm_u == imm

    @pytest.mark.parametrize("imm", [-(2**20), -8, -2, 0, 2, 2048, 2**20 - 2])
    def test_imm_j(self, imm):
        assert decode_fields(encode_j(imm, 1)).imm_j == imm

    def test_imm_u_low_bits_zero(self):
        """lui x1, 0x12345 = 0x123450b7."""
        assert decode_fields(0x123450B7).imm_u == 0x12345000

    def test_imm_u_signed(self):
        """Upper immediates with bit 31 set decode as negative values."""
        assert decode_fields(0xFFFFF0B7).imm_u == -4096

    def test_imm_s_known(self):
        """sw x2, 8(x1) = 0x0020a423."""
        f = decode_fields(0x0020A423)
        assert f.imm_s == 8
        assert f.rs1 == 1
        assert f.rs2 == 2

    def test_imm_b_known(self):
        """beq x0, x0, -4 = 0xfe000ee3."""
        assert decode_fields(0xFE000EE3).imm_b == -4

    def test_imm_j_known(self):
        """jal x0, -8 = 0xff9ff06f."""
        assert decode_fields(0xFF9FF06F).imm_j == -8

    def test_b_and_j_bit0_always_zero(self):
        f = decode_fields(0xFFFFFFFF)
        assert f.imm_b & 1 == 0
        assert f.imm_j & 1 == 0
        assert f.imm_b == -2
        assert f.imm_j == -2


class TestDecoderKinds:
    """Test opcode / funct dispatch to instruction kinds."""

    @pytest.fixture
    def decoder(self):
        return Decoder()

    @pytest.mark.parametrize("funct3,funct7,key", [
        (0x0, 0x00, K.ADD),
        (0x0, 0x20, K.SUB),
        (0x1, 0x00, K.SLL),
        (0x2, 0x00, K.SLT),
        (0x3, 0x00, K.SLTU),
        (0x4, 0x00, K.XOR),
        (0x5, 0x00, K.SRL),
        (0x5, 0x20, K.SRA),
        (0x6, 0x00, K.OR),
        (0x7, 0x00, K.AND),
    ])
    def test_register_ops(self, decoder, funct3, funct7, key):
        result = decoder.decode(encode_r(funct7, 2, 1, funct3, 3))
        assert result.valid is True
        assert result.key is key
        assert result.params == {"rd": 3, "rs1": 1, "rs2": 2}

    @pytest.mark.parametrize("funct3,key", [
        (0x0, K.ADDI),
        (0x2, K.SLTI),
        (0x3, K.SLTIU),
        (0x4, K.XORI),
        (0x6, K.ORI),
        (0x7, K.ANDI),
    ])
    def test_immediate_ops(self, decoder, funct3, key):
        result = decoder.decode(encode_i(-7, 1, funct3, 3))
        assert result.key is key
        assert result.params == {"rd": 3, "rs1": 1, "imm": -7}

    def test_shift_immediates(self, decoder):
        """SRLI vs SRAI is chosen by bit 10 of the immediate."""
        slli = decoder.decode(encode_i(4, 1, 0x1, 2))
        srli = decoder.decode(encode_i(4, 1, 0x5, 2))
        srai = decoder.decode(encode_i(0x400 | 4, 1, 0x5, 2))
        assert slli.key is K.SLLI
        assert srli.key is K.SRLI
        assert srai.key is K.SRAI
        assert srai.params == {"rd": 2, "rs1": 1, "shamt": 4}

    @pytest.mark.parametrize("funct3,key", [
        (0x0, K.LB), (0x1, K.LH), (0x2, K.LW), (0x4, K.LBU), (0x5, K.LHU),
    ])
    def test_loads(self, decoder, funct3, key):
        result = decoder.decode(encode_i(-4, 2, funct3, 5, opcode=0x03))
        assert result.key is key
        assert result.params == {"rd": 5, "rs1": 2, "imm": -4}

    @pytest.mark.parametrize("funct3,key", [(0x0, K.SB), (0x1, K.SH), (0x2, K.SW)])
    def test_stores(self, decoder, funct3, key):
        result = decoder.decode(encode_s(12, 7, 2, funct3))
        assert result.key is key
        assert result.params == {"rs1": 2, "rs2": 7, "imm": 12}

    @pytest.mark.parametrize("funct3,key", [
        (0x0, K.BEQ), (0x1, K.BNE), (0x4, K.BLT),
        (0x5, K.BGE), (0x6, K.BLTU), (0x7, K.BGEU),
    ])
    def test_branches(self, decoder, funct3, key):
        result = decoder.decode(encode_b(-16, 2, 1, funct3))
        assert result.key is key
        assert result.params == {"rs1": 1, "rs2": 2, "imm": -16}

    def test_upper_and_jumps(self, decoder):
        assert decoder.decode(encode_u(0x12345000, 1, 0x37)).key is K.LUI
        assert decoder.decode(encode_u(0x12345000, 1, 0x17)).key is K.AUIPC
        jal = decoder.decode(encode_j(2048, 1))
        assert jal.key is K.JAL
        assert jal.params == {"rd": 1, "imm": 2048}
        jalr = decoder.decode(encode_i(8, 5, 0, 1, opcode=0x67))
        assert jalr.key is K.JALR
        assert jalr.params == {"rd": 1, "rs1": 5, "imm": 8}

    def test_system(self, decoder):
        assert decoder.decode(0x00000073).key is K.ECALL
        assert decoder.decode(0x00100073).key is K.EBREAK


class TestDecoderInvalid:
    """Test unknown encodings decode to INVALID rather than raising."""

    @pytest.fixture
    def decoder(self):
        return Decoder()

    def test_all_zero_word(self, decoder):
        result = decoder.decode(0x00000000)
        assert result.key is K.INVALID
        assert result.valid is False
        assert "opcode" in result.error
        assert result.params == {"raw": 0}

    def test_unknown_opcode(self, decoder):
        # FENCE is outside the supported set
        assert decoder.decode(0x0000000F).key is K.INVALID

    def test_bad_funct7(self, decoder):
        # MUL (funct7 = 1) is not part of the base ISA
        assert decoder.decode(encode_r(0x01, 2, 1, 0, 3)).key is K.INVALID

    def test_bad_load_funct3(self, decoder):
        assert decoder.decode(encode_i(0, 1, 0x3, 2, opcode=0x03)).key is K.INVALID

    def test_bad_store_funct3(self, decoder):
        assert decoder.decode(encode_s(0, 1, 2, 0x3)).key is K.INVALID

    def test_bad_branch_funct3(self, decoder):
        assert decoder.decode(encode_b(0, 1, 2, 0x2)).key is K.INVALID

    def test_other_system(self, decoder):
        # csrrw and mret are not implemented
        assert decoder.decode(0x30501073).key is K.INVALID
        assert decoder.decode(0x30200073).key is K.INVALID


class TestDisassemble:
    """Test rendering of decoded instructions."""

    @pytest.fixture
    def decoder(self):
        return Decoder()

    @pytest.mark.parametrize("word,text", [
        (0x00500093, "addi x1, x0, 5"),
        (0x002081B3, "add x3, x1, x2"),
        (0x0020A423, "sw x2, 8(x1)"),
        (0x123450B7, "lui x1, 0x12345"),
        (0xFE000EE3, "beq x0, x0, -4"),
        (0xFF9FF06F, "jal x0, -8"),
        (0x00000073, "ecall"),
        (0x00000000, ".word 0x00000000"),
    ])
    def test_known_words(self, decoder, word, text):
        assert disassemble(decoder.decode(word)) == text

    def test_load_and_shift(self, decoder):
        assert disassemble(decoder.decode(encode_i(-4, 2, 0x2, 1, opcode=0x03))) == "lw x1, -4(x2)"
        assert disassemble(decoder.decode(encode_i(0x400 | 3, 1, 0x5, 1))) == "srai x1, x1, 3"
