# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

from pathlib import Path

import pytest

from decodegen.encoding import ConstraintType
from decodegen.error import ParseError
from decodegen.overlay import BinaryNum, BitRange
from decodegen.parser import (
    BinFormatParser,
    DecoderDecl,
    FieldDecl,
    FormatDecl,
    FormatRefDecl,
    GroupDecl,
)


def parse(src: str) -> BinFormatParser:
    return BinFormatParser('test.bin_fmt', src=src)


def parse_error(src: str) -> str:
    with pytest.raises(ParseError) as excinfo:
        parse(src)
    return str(excinfo.value)


FORMATS = """
format Inst32Format[32] {
  fields:
    unsigned bits[25];
    unsigned opcode[7];
};

format SType[32] : Inst32Format {
  fields:
    unsigned imm7[7];
    signed rs2[5];
    format Pair pairs[2];
  overlays:
    signed imm12[12] = imm7, rd;
    unsigned tagged[5] = 0b10, imm7[2..0];
    unsigned raw[4] = [31..30, 1..0];
  layout: packed;
};
"""


def test_format() -> None:
    decls = parse(FORMATS).decls
    assert [d.name for d in decls] == ['Inst32Format', 'SType']
    base, stype = decls
    assert isinstance(base, FormatDecl) and isinstance(stype, FormatDecl)
    assert (base.width, base.parent, base.layout) == (32, None, None)
    assert base.info.line == 2
    assert (stype.width, stype.parent, stype.layout) == (32, 'Inst32Format',
                                                         'packed')
    imm7, rs2, pairs = stype.components
    assert isinstance(imm7, FieldDecl) and isinstance(rs2, FieldDecl)
    assert (imm7.name, imm7.is_signed, imm7.width) == ('imm7', False, 7)
    assert (rs2.name, rs2.is_signed, rs2.width) == ('rs2', True, 5)
    assert isinstance(pairs, FormatRefDecl)
    assert (pairs.alias, pairs.format_name, pairs.size) == ('pairs', 'Pair',
                                                            2)

    imm12, tagged, raw = stype.overlays
    assert (imm12.name, imm12.is_signed, imm12.width) == ('imm12', True, 12)
    assert [(p.field, p.ranges) for p in imm12.parts] == [('imm7', None),
                                                          ('rd', None)]
    assert tagged.parts[0].bits == BinaryNum(0b10, 2)
    assert tagged.parts[1].ranges == [BitRange(2, 0)]
    assert raw.parts[0].field is None
    assert raw.parts[0].ranges == [BitRange(31, 30), BitRange(1, 0)]


def test_format_without_width() -> None:
    decl = parse("format Sub : Base { fields: format Base; };").decls[0]
    assert isinstance(decl, FormatDecl)
    assert decl.width is None
    ref = decl.components[0]
    assert isinstance(ref, FormatRefDecl)
    assert (ref.alias, ref.format_name, ref.size) == (None, 'Base', 1)


def test_group() -> None:
    decl = parse("""
instruction group RiscV32[32] : Inst32Format {
  add : RType : func3 == 0, func7 == 0b000'0000, opcode == 0x33;
  neg : SType : rs2 == -1;
  mv : RType : rs1 != rd;
  big : RType : rd >= 1'000, rs1 < 0x1_F;
  any : RType;
};
""").decls[0]
    assert isinstance(decl, GroupDecl)
    assert (decl.name, decl.width, decl.format_name) == ('RiscV32', 32,
                                                        'Inst32Format')
    add, neg, mv, big, any_ = decl.encodings
    assert (add.name, add.format_name) == ('add', 'RType')
    assert [(c.name, c.op, c.value, c.bin_width)
            for c in add.constraints] == [
        ('func3', ConstraintType.EQ, 0, None),
        ('func7', ConstraintType.EQ, 0, 7),
        ('opcode', ConstraintType.EQ, 0x33, None)]
    assert neg.constraints[0].value == -1
    assert (mv.constraints[0].op, mv.constraints[0].rhs) == (
        ConstraintType.NE, 'rd')
    assert [(c.op, c.value) for c in big.constraints] == [
        (ConstraintType.GE, 1000), (ConstraintType.LT, 0x1F)]
    assert any_.constraints == []
    assert add.info.line == 3


def test_decoder() -> None:
    decl = parse("""
decoder RiscV {
  namespace sim::riscv::isa;
  opcode_enum = "Opcode";
  includes { "isa/opcodes.h", "<cstdint>" };
  RiscV32;
  All = { RiscV32, RiscVC };
};
""").decls[0]
    assert isinstance(decl, DecoderDecl)
    assert decl.name == 'RiscV'
    assert decl.namespaces == [['sim', 'riscv', 'isa']]
    assert decl.opcode_enums == ['Opcode']
    assert decl.includes == ['isa/opcodes.h', '<cstdint>']
    assert [(g.name, g.members) for g in decl.groups] == [
        ('RiscV32', None), ('All', ['RiscV32', 'RiscVC'])]


def test_comments_and_lines() -> None:
    decls = parse("""// line comment
/* block
   comment */ format F[8] {
  fields: unsigned a[8];  // trailing
};
format G[8] { fields: unsigned b[8]; };
""").decls
    assert [(d.name, d.info.line) for d in decls] == [('F', 3), ('G', 6)]


def test_empty_input() -> None:
    assert parse('').decls == []
    assert parse('// nothing\n').decls == []


def test_errors() -> None:
    assert parse_error("format F[8] {\n  fields:\n    unsigned a[8]\n};\n") \
        == "test.bin_fmt:4:1: expected ';'"
    assert parse_error("frobnicate;") == (
        "test.bin_fmt:1:11: expected 'include', 'format', "
        "'instruction group' or 'decoder', found 'frobnicate'")
    assert parse_error("format F[8] @") == "test.bin_fmt:1:13: stray '@'"
    assert parse_error('include "x;') \
        == "test.bin_fmt:1:9: missing terminating '\"'"
    assert parse_error("/* open") == "test.bin_fmt:1:1: unterminated comment"
    assert parse_error(
        "format F[8] { overlays: unsigned x[3] = 5; };").endswith(
            "overlay constants must be binary")
    assert parse_error(
        "format F[8] { unsigned a[8]; };").endswith(
            "expected 'fields:' or 'overlays:'")
    assert parse_error(
        "instruction group G[8] : F { a : F : x = 1; };").endswith(
            "expected comparison operator")


def _write(path: Path, text: str) -> str:
    path.write_text(text, encoding='utf-8')
    return str(path)


def test_include(tmp_path: Path) -> None:
    _write(tmp_path / 'common.bin_fmt',
           "format Common[8] { fields: unsigned c[8]; };\n")
    main = _write(tmp_path / 'main.bin_fmt',
                  'include "common.bin_fmt";\n'
                  'include "common.bin_fmt";\n'
                  "format Main[8] : Common { fields: unsigned m[8]; };\n")
    decls = BinFormatParser(main).decls
    assert [d.name for d in decls] == ['Common', 'Main']
    assert decls[0].info.parent is not None
    assert decls[0].info.parent.fname == main
    assert decls[1].info.line == 3


def test_include_dirs(tmp_path: Path) -> None:
    incdir = tmp_path / 'include'
    incdir.mkdir()
    _write(incdir / 'lib.bin_fmt', "format Lib[8] { fields: unsigned l[8]; };")
    main = _write(tmp_path / 'main.bin_fmt', 'include "lib.bin_fmt";\n')
    with pytest.raises(ParseError) as excinfo:
        BinFormatParser(main)
    assert "can't read include file" in str(excinfo.value)
    decls = BinFormatParser(main, [str(incdir)]).decls
    assert [d.name for d in decls] == ['Lib']


def test_include_loop(tmp_path: Path) -> None:
    first = _write(tmp_path / 'a.bin_fmt', 'include "b.bin_fmt";\n')
    _write(tmp_path / 'b.bin_fmt', 'include "a.bin_fmt";\n')
    with pytest.raises(ParseError) as excinfo:
        BinFormatParser(first)
    assert 'inclusion loop for a.bin_fmt' in str(excinfo.value)
    assert 'In file included from' in str(excinfo.value)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        BinFormatParser(str(tmp_path / 'missing.bin_fmt'))
