# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

from pathlib import Path
from typing import Tuple

import pytest

from decodegen.backend import CppBackend, gen_decoder
from decodegen.container import Container
from decodegen.error import DecodeGenError

from test_builder import RISCV, build


RTYPE = """
format RType[32] {
  fields:
    unsigned func7[7];
    unsigned rs2[5];
    unsigned rs1[5];
    unsigned func3[3];
    unsigned rd[5];
    unsigned opcode[7];
};
"""


def _generate(container: Container,
              prefix: str = 'test') -> Tuple[str, str]:
    decoder = container.decoder
    assert decoder is not None
    assert not container.has_errors
    genh, genc = gen_decoder(container, decoder, prefix)
    return genh.get_content(), genc.get_content()


def test_riscv_header() -> None:
    header, _ = _generate(build(RISCV), 'risc_v')
    assert header.startswith(
        '// This file is generated by decodegen.  Do not edit.\n')
    assert '#ifndef RISC_V_BIN_DECODER_H\n#define RISC_V_BIN_DECODER_H\n' \
        in header
    assert header.endswith('#endif  // RISC_V_BIN_DECODER_H\n')
    assert '#include <cstdint>\n' in header
    assert 'namespace riscv {\nnamespace isa {\n' in header
    assert '}  // namespace isa\n}  // namespace riscv\n' in header
    assert ('enum class OpcodeEnum {\n'
            '  kNone = 0,\n'
            '  kAdd = 1,\n'
            '  kSub = 2,\n'
            '};\n') in header
    func7 = ('inline uint8_t ExtractFunc7(uint32_t value) {\n'
             '  uint8_t result = (value >> 25) & 0x7f;\n'
             '  return result;\n'
             '}\n')
    # Promoted into the base format, and kept in RType.
    base = header.index('namespace inst32_format {\n')
    derived = header.index('namespace r_type {\n')
    assert base < derived
    assert func7 in header[base:derived]
    assert func7 in header[derived:]
    assert 'struct' not in header
    assert 'OpcodeEnum DecodeRiscVInst32(uint32_t inst_word);\n' in header
    assert 'ExtractBits' not in header


def test_riscv_source() -> None:
    _, source = _generate(build(RISCV), 'risc_v')
    assert '#include "risc_v_bin_decoder.h"\n' in source
    assert ('static constexpr OpcodeEnum (*parse_group_RiscVInst32_0[2])(\n'
            '    uint32_t) = {\n'
            '    &DecodeRiscVInst32_0_0,\n'
            '    &DecodeRiscVInst32_0_1,\n'
            '};\n') in source
    assert ('OpcodeEnum DecodeRiscVInst32_0(uint32_t inst_word) {\n'
            '  if ((inst_word & 0xbe00707f) != 0x33) '
            'return OpcodeEnum::kNone;\n'
            '  uint32_t index;\n'
            '  index = (inst_word >> 30) & 0x1;\n'
            '  return parse_group_RiscVInst32_0[index](inst_word);\n'
            '}\n') in source
    assert ('OpcodeEnum DecodeRiscVInst32_0_1(uint32_t inst_word) {\n'
            '  return OpcodeEnum::kSub;\n'
            '}\n') in source
    assert ('OpcodeEnum DecodeRiscVInst32None(uint32_t inst_word) {\n'
            '  return OpcodeEnum::kNone;\n'
            '}\n') in source
    assert ('OpcodeEnum DecodeRiscVInst32(uint32_t inst_word) {\n'
            '  OpcodeEnum opcode = DecodeRiscVInst32_0(inst_word);\n'
            '  return opcode;\n'
            '}\n') in source


def test_complex_leaf() -> None:
    _, source = _generate(build(RTYPE + """
instruction group G[32] : RType {
  a : RType : func3 == 1, rs2 != 0;
};
decoder D { G; };
"""))
    assert ('OpcodeEnum DecodeG_0(uint32_t inst_word) {\n'
            '  if ((inst_word & 0x7000) != 0x1000) '
            'return OpcodeEnum::kNone;\n'
            '  uint32_t func3_value = (inst_word >> 12) & 0x7;\n'
            '  uint32_t rs2_value = (inst_word >> 20) & 0x1f;\n'
            '  if ((func3_value == 0x1) &&\n'
            '      (rs2_value != 0x0))\n'
            '    return OpcodeEnum::kA;\n'
            '  return OpcodeEnum::kNone;\n'
            '}\n') in source


def test_opcode_table() -> None:
    _, source = _generate(build(RTYPE + """
instruction group G[32] : RType {
  x0 : RType : opcode == 0x33, func3 == 0;
  x1 : RType : opcode == 0x33, func3 == 1;
  x3 : RType : opcode == 0x33, func3 == 3;
  x7 : RType : opcode == 0x33, func3 == 7;
  y : RType : opcode == 0x13;
};
decoder D { G; };
"""))
    assert ('OpcodeEnum DecodeG_0_1(uint32_t inst_word) {\n'
            '  static constexpr OpcodeEnum opcodes[8] = {\n'
            '    OpcodeEnum::kX0,\n'
            '    OpcodeEnum::kX1,\n'
            '    OpcodeEnum::kNone,\n'
            '    OpcodeEnum::kX3,\n') in source
    assert ('    OpcodeEnum::kX7,\n'
            '  };\n'
            '  uint32_t index;\n'
            '  index = (inst_word >> 12) & 0x7;\n'
            '  return opcodes[index];\n'
            '}\n') in source


def test_includes_and_opcode_enum() -> None:
    header, source = _generate(build(RTYPE + """
instruction group G[32] : RType { a : RType : opcode == 1; };
decoder D {
  opcode_enum = "isa::Op";
  includes { "isa/opcodes.h", "<vector>" };
  G;
};
"""))
    assert '#include "isa/opcodes.h"\n#include <vector>\n' in header
    assert 'enum class' not in header
    assert 'isa::Op DecodeG(uint32_t inst_word);\n' in header
    assert '  return isa::Op::kA;\n' in source


def test_wide_format_extractors() -> None:
    header, _ = _generate(build("""
format Wide[80] {
  fields:
    unsigned hi[16];
    format Half halves[2];
    signed lo[32];
};
format Half[16] {
  fields:
    unsigned top[4];
    unsigned rest[12];
};
format S[32] {
  fields:
    signed imm[12];
    unsigned rest[20];
};
instruction group G[32] : S { a : S : rest == 1; };
decoder D { G; };
"""))
    assert 'namespace internal {\n' in header
    assert ('inline int32_t ExtractLo(const uint8_t *value) {\n'
            '  int32_t result = internal::ExtractBits<int32_t>'
            '(value, 10, 31, 32);\n'
            '  return result;\n'
            '}\n') in header
    assert ('inline uint16_t ExtractHalves(const uint8_t *value, '
            'int index) {\n'
            '  return internal::ExtractBits<uint16_t>'
            '(value, 10, 63 - index * 16, 16);\n'
            '}\n') in header
    assert ('inline int16_t ExtractImm(uint32_t value) {\n'
            '  int16_t result = (value >> 20) & 0xfff;\n'
            '  result = result << 4;\n'
            '  result = result >> 4;\n'
            '  return result;\n'
            '}\n') in header


def test_backend_refuses_errors(tmp_path: Path) -> None:
    with pytest.raises(DecodeGenError):
        CppBackend().generate(Container(), str(tmp_path), 'x')
    container = build(RISCV + 'format Bad[8] { fields: unsigned x[4]; };')
    with pytest.raises(DecodeGenError):
        CppBackend().generate(container, str(tmp_path), 'x')
    assert list(tmp_path.iterdir()) == []


def test_write_only_when_changed(tmp_path: Path) -> None:
    container = build(RISCV)
    CppBackend().generate(container, str(tmp_path / 'out'), 'risc_v')
    header = tmp_path / 'out' / 'risc_v_bin_decoder.h'
    assert header.exists()
    assert (tmp_path / 'out' / 'risc_v_bin_decoder.cc').exists()

    decoder = container.decoder
    assert decoder is not None
    genh, _ = gen_decoder(container, decoder, 'risc_v')
    assert not genh.write(str(tmp_path / 'out'))
    header.write_text('stale', encoding='utf-8')
    assert genh.write(str(tmp_path / 'out'))
    assert header.read_text(encoding='utf-8') == genh.get_content()


PACKED = """
format Half[16] {
  fields:
    unsigned top[4];
    unsigned rest[12];
};
format P[32] {
  fields:
    unsigned op[4];
    signed imm[4];
    format Half half;
    unsigned r[8];
  overlays:
    unsigned off[10] = imm, r[7..6], 0b01, [1..0];
  layout: packed_struct;
};
instruction group G[32] : P { a : P : op == 1; };
decoder D { G; };
"""


def test_packed_struct_layout() -> None:
    header, source = _generate(build(PACKED))
    assert ('namespace p {\n'
            '\n'
            'struct __attribute__((packed)) P {\n'
            '  uint8_t r : 8;\n'
            '  uint16_t half : 16;\n'
            '  int8_t imm : 4;\n'
            '  uint8_t op : 4;\n'
            '};\n'
            '\n'
            'union UnionP {\n'
            '  uint32_t value;\n'
            '  P p;\n'
            '};\n'
            '\n'
            '}  // namespace p\n') in header
    cast = ('  const p::UnionP *packed_union;\n'
            '  packed_union = reinterpret_cast<const p::UnionP *>(&value);\n')
    assert ('inline int8_t ExtractImm(uint32_t value) {\n'
            + cast +
            '  return packed_union->p.imm;\n'
            '}\n') in header
    assert ('inline uint16_t ExtractHalf(uint32_t value) {\n'
            + cast +
            '  return packed_union->p.half;\n'
            '}\n') in header
    assert ('inline uint16_t ExtractOff(uint32_t value) {\n'
            '  uint16_t result;\n'
            + cast +
            '  result = static_cast<uint16_t>(packed_union->p.imm & 0xf)'
            ' << 6;\n'
            '  result |= static_cast<uint16_t>((packed_union->p.r >> 6)'
            ' & 0x3) << 4;\n'
            '  result |= 0x1 << 2;\n'
            '  result |= static_cast<uint16_t>(packed_union->value & 0x3);\n'
            '  return result;\n'
            '}\n') in header
    # Half keeps the shift and mask form.
    assert ('inline uint8_t ExtractTop(uint16_t value) {\n'
            '  uint8_t result = (value >> 12) & 0xf;\n') in header
    # The types precede every extractor that reads through them.
    assert header.index('union UnionP') < header.index('inline ')
    # Decoding still works on the instruction word.
    assert '  if ((inst_word & 0xf0000000) != 0x10000000) ' in source

    default = build(PACKED.replace('packed_struct', 'default'))
    header, _ = _generate(default)
    assert 'packed_union' not in header
