# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Binary format description parser

Reads a ``.bin_fmt`` description into a list of declarations.  Checking
what the declarations mean is left to `builder`.
"""

import os
import re
from typing import (
    List,
    NamedTuple,
    Optional,
    Sequence,
    Set,
    Union,
)

from .encoding import ConstraintType
from .error import ParseError
from .overlay import BinaryNum, BitRange
from .source import SourceInfo


class FieldDecl(NamedTuple):
    name: str
    is_signed: bool
    width: int
    info: SourceInfo


class FormatRefDecl(NamedTuple):
    alias: Optional[str]
    format_name: str
    size: int
    info: SourceInfo


class OverlayPart(NamedTuple):
    # Exactly one of these describes the part: a field name (with
    # optional field-relative ranges), bare format ranges, or a literal.
    field: Optional[str]
    ranges: Optional[List[BitRange]]
    bits: Optional[BinaryNum]


class OverlayDecl(NamedTuple):
    name: str
    is_signed: bool
    width: int
    parts: List[OverlayPart]
    info: SourceInfo


class FormatDecl(NamedTuple):
    name: str
    width: Optional[int]
    parent: Optional[str]
    components: List[Union[FieldDecl, FormatRefDecl]]
    overlays: List[OverlayDecl]
    layout: Optional[str]
    info: SourceInfo


class ConstraintDecl(NamedTuple):
    name: str
    op: ConstraintType
    value: int
    # Number of digits of a binary literal value
    bin_width: Optional[int]
    # Name of the field or overlay compared against, instead of a value
    rhs: Optional[str]
    info: SourceInfo


class EncodingDecl(NamedTuple):
    name: str
    format_name: str
    constraints: List[ConstraintDecl]
    info: SourceInfo


class GroupDecl(NamedTuple):
    name: str
    width: int
    format_name: str
    encodings: List[EncodingDecl]
    info: SourceInfo


class GroupRef(NamedTuple):
    name: str
    # Set for a merged group
    members: Optional[List[str]]
    info: SourceInfo


class DecoderDecl(NamedTuple):
    name: str
    namespaces: List[List[str]]
    opcode_enums: List[str]
    includes: List[str]
    groups: List[GroupRef]
    info: SourceInfo


Declaration = Union[FormatDecl, GroupDecl, DecoderDecl]

_OPERATORS = ('==', '!=', '<=', '>=', '::', '..', '<', '>')
_NUMBER = re.compile(r"0[bB][01][01'_]*"
                     r"|0[xX][0-9a-fA-F][0-9a-fA-F'_]*"
                     r"|[0-9][0-9'_]*")
_IDENT = re.compile(r'[A-Za-z_][A-Za-z0-9_]*')


class BinFormatParser:
    """
    Parse a binary format description.

    :param fname: Source file name.
    :param include_dirs: Directories searched for included files after
        the directory of the including file.
    :param previously_included:
        The absolute names of previously included source files,
        if being invoked from another parser.
    :param incl_info:
       `SourceInfo` of the include directive, None for the main file.

    :ivar decls: Resulting declarations, includes expanded in place.

    :raise OSError: For problems reading the main file.
    :raise ParseError: For errors in the source.
    """
    def __init__(self, fname: str,
                 include_dirs: Sequence[str] = (),
                 previously_included: Optional[Set[str]] = None,
                 incl_info: Optional[SourceInfo] = None,
                 src: Optional[str] = None):
        self._fname = fname
        self._include_dirs = list(include_dirs)
        self._included = previously_included or set()
        self._included.add(os.path.abspath(fname))
        self.src = ''

        # Lexer state (see `accept` for details):
        self.info = SourceInfo(fname, incl_info)
        self.tok: Optional[str] = None
        self.pos = 0
        self.cursor = 0
        self.val: Union[None, str, int, BinaryNum] = None
        self.line_pos = 0

        self.decls: List[Declaration] = []

        if src is None:
            # May raise OSError; allow the caller to handle it.
            with open(fname, 'r', encoding='utf-8') as fp:
                src = fp.read()
        self._parse(src)

    def _parse(self, src: str) -> None:
        self.src = src
        if self.src == '' or self.src[-1] != '\n':
            self.src += '\n'
        self.accept()
        while self.tok is not None:
            info = self.info
            keyword = self.get_ident()
            if keyword == 'include':
                self._include_directive(info)
            elif keyword == 'format':
                self.decls.append(self.get_format(info))
            elif keyword == 'instruction':
                self.expect_keyword('group')
                self.decls.append(self.get_group(info))
            elif keyword == 'decoder':
                self.decls.append(self.get_decoder(info))
            else:
                raise ParseError(
                    self, "expected 'include', 'format', 'instruction group' "
                    "or 'decoder', found '%s'" % keyword)

    def _include_directive(self, info: SourceInfo) -> None:
        if self.tok != '"':
            raise ParseError(self, "expected file name string")
        include = self.val
        assert isinstance(include, str)
        self.accept()
        self.expect(';')
        incl_fname = self._find_include(include, info)
        incl_abs_fname = os.path.abspath(incl_fname)
        # catch inclusion cycle
        inf: Optional[SourceInfo] = info
        while inf:
            if incl_abs_fname == os.path.abspath(inf.fname):
                raise ParseError(self, "inclusion loop for %s" % include)
            inf = inf.parent
        # skip multiple include of the same file
        if incl_abs_fname in self._included:
            return
        try:
            incl = BinFormatParser(incl_fname, self._include_dirs,
                                   self._included, info)
        except OSError as err:
            raise ParseError(
                self, f"can't read include file '{incl_fname}': "
                f"{err.strerror}") from err
        self.decls.extend(incl.decls)

    def _find_include(self, include: str, info: SourceInfo) -> str:
        candidates = [os.path.join(os.path.dirname(info.fname), include)]
        candidates += [os.path.join(d, include) for d in self._include_dirs]
        for candidate in candidates:
            if os.path.exists(candidate):
                return candidate
        return candidates[0]

    def accept(self) -> None:
        """
        Read and store the next token.

        ``.tok`` holds the token type:

        - single characters ``{ } [ ] ( ) ; : , = -`` stand for themselves;
        - ``== != < <= > >= :: ..`` stand for themselves;
        - ``i`` is an identifier or keyword, ``.val`` its text;
        - ``0`` is a number, ``.val`` an int, or a `BinaryNum` for a
          binary literal;
        - ``"`` is a string, ``.val`` its contents;
        - None is end of input.

        ``//`` and ``/* */`` comments are skipped.
        """
        while True:
            self.pos = self.cursor
            self.val = None
            if self.cursor >= len(self.src):
                self.tok = None
                return
            self.tok = self.src[self.cursor]
            self.cursor += 1

            if self.tok == '\n':
                self.info = self.info.next_line()
                self.line_pos = self.cursor
            elif self.tok.isspace():
                continue
            elif self.src.startswith('//', self.pos):
                self.cursor = self.src.find('\n', self.pos)
            elif self.src.startswith('/*', self.pos):
                end = self.src.find('*/', self.pos + 2)
                if end < 0:
                    raise ParseError(self, "unterminated comment")
                for _ in range(self.src.count('\n', self.pos, end)):
                    self.info = self.info.next_line()
                newline = self.src.rfind('\n', self.pos, end)
                if newline >= 0:
                    self.line_pos = newline + 1
                self.cursor = end + 2
            elif self.tok == '"':
                end = self.src.find('"', self.cursor)
                newline = self.src.find('\n', self.cursor)
                if end < 0 or newline < end:
                    raise ParseError(self, "missing terminating '\"'")
                self.val = self.src[self.cursor:end]
                self.cursor = end + 1
                return
            elif re.match(r'[A-Za-z_]', self.tok):
                match = _IDENT.match(self.src, self.pos)
                assert match is not None
                self.tok = 'i'
                self.val = match.group(0)
                self.cursor = match.end()
                return
            elif self.tok in '0123456789':
                match = _NUMBER.match(self.src, self.pos)
                assert match is not None
                self.cursor = match.end()
                digits = match.group(0).replace("'", '').replace('_', '')
                if digits[:2] in ('0b', '0B'):
                    self.val = BinaryNum(int(digits[2:], 2), len(digits) - 2)
                elif digits[:2] in ('0x', '0X'):
                    self.val = int(digits[2:], 16)
                else:
                    self.val = int(digits, 10)
                self.tok = '0'
                return
            else:
                for op in _OPERATORS:
                    if self.src.startswith(op, self.pos):
                        self.tok = op
                        self.cursor = self.pos + len(op)
                        return
                if self.tok in '{}[]();:,=-':
                    return
                raise ParseError(self, "stray '%s'" % self.tok)

    def expect(self, tok: str) -> None:
        if self.tok != tok:
            raise ParseError(self, "expected '%s'" % tok)
        self.accept()

    def expect_keyword(self, keyword: str) -> None:
        if self.tok != 'i' or self.val != keyword:
            raise ParseError(self, "expected '%s'" % keyword)
        self.accept()

    def get_ident(self) -> str:
        if self.tok != 'i':
            raise ParseError(self, "expected identifier")
        val = self.val
        assert isinstance(val, str)
        self.accept()
        return val

    def get_number(self) -> Union[int, BinaryNum]:
        if self.tok != '0':
            raise ParseError(self, "expected number")
        val = self.val
        assert isinstance(val, (int, BinaryNum))
        self.accept()
        return val

    def get_int(self) -> int:
        val = self.get_number()
        if isinstance(val, BinaryNum):
            return val.value
        return val

    def get_width(self) -> int:
        self.expect('[')
        width = self.get_int()
        self.expect(']')
        return width

    def get_format(self, info: SourceInfo) -> FormatDecl:
        name = self.get_ident()
        width = None
        if self.tok == '[':
            width = self.get_width()
        parent = None
        if self.tok == ':':
            self.accept()
            parent = self.get_ident()
        self.expect('{')
        components: List[Union[FieldDecl, FormatRefDecl]] = []
        overlays: List[OverlayDecl] = []
        layout = None
        section = None
        while self.tok != '}':
            item_info = self.info
            word = self.get_ident()
            if word in ('fields', 'overlays', 'layout') and self.tok == ':':
                self.accept()
                section = word
                if word == 'layout':
                    layout = self.get_ident()
                    self.expect(';')
                continue
            if section == 'fields':
                components.append(self.get_field_def(word, item_info))
            elif section == 'overlays':
                overlays.append(self.get_overlay_def(word, item_info))
            else:
                raise ParseError(self, "expected 'fields:' or 'overlays:'")
        self.accept()
        self.expect(';')
        return FormatDecl(name, width, parent, components, overlays, layout,
                          info)

    def get_field_def(self, word: str, info: SourceInfo
                      ) -> Union[FieldDecl, FormatRefDecl]:
        if word == 'format':
            format_name = self.get_ident()
            alias = None
            if self.tok == 'i':
                alias = self.get_ident()
            size = 1
            if self.tok == '[':
                size = self.get_width()
            self.expect(';')
            return FormatRefDecl(alias, format_name, size, info)
        if word not in ('signed', 'unsigned'):
            raise ParseError(self, "expected 'signed', 'unsigned' or 'format'")
        name = self.get_ident()
        width = self.get_width()
        self.expect(';')
        return FieldDecl(name, word == 'signed', width, info)

    def get_overlay_def(self, word: str, info: SourceInfo) -> OverlayDecl:
        if word not in ('signed', 'unsigned'):
            raise ParseError(self, "expected 'signed' or 'unsigned'")
        name = self.get_ident()
        width = self.get_width()
        self.expect('=')
        parts = [self.get_overlay_part()]
        while self.tok == ',':
            self.accept()
            parts.append(self.get_overlay_part())
        self.expect(';')
        return OverlayDecl(name, word == 'signed', width, parts, info)

    def get_overlay_part(self) -> OverlayPart:
        if self.tok == '0':
            val = self.get_number()
            if not isinstance(val, BinaryNum):
                raise ParseError(self, "overlay constants must be binary")
            return OverlayPart(None, None, val)
        if self.tok == '[':
            return OverlayPart(None, self.get_ranges(), None)
        name = self.get_ident()
        ranges = None
        if self.tok == '[':
            ranges = self.get_ranges()
        return OverlayPart(name, ranges, None)

    def get_ranges(self) -> List[BitRange]:
        self.expect('[')
        ranges = []
        while True:
            first = self.get_int()
            last = first
            if self.tok == '..':
                self.accept()
                last = self.get_int()
            ranges.append(BitRange(first, last))
            if self.tok == ']':
                self.accept()
                return ranges
            self.expect(',')

    def get_group(self, info: SourceInfo) -> GroupDecl:
        name = self.get_ident()
        width = self.get_width()
        self.expect(':')
        format_name = self.get_ident()
        self.expect('{')
        encodings = []
        while self.tok != '}':
            enc_info = self.info
            enc_name = self.get_ident()
            self.expect(':')
            enc_format = self.get_ident()
            constraints = []
            if self.tok == ':':
                self.accept()
                constraints.append(self.get_constraint())
                while self.tok == ',':
                    self.accept()
                    constraints.append(self.get_constraint())
            self.expect(';')
            encodings.append(EncodingDecl(enc_name, enc_format, constraints,
                                          enc_info))
        self.accept()
        self.expect(';')
        return GroupDecl(name, width, format_name, encodings, info)

    def get_constraint(self) -> ConstraintDecl:
        info = self.info
        name = self.get_ident()
        try:
            op = ConstraintType(self.tok)
        except ValueError:
            raise ParseError(
                self, "expected comparison operator") from None
        self.accept()
        if self.tok == 'i':
            return ConstraintDecl(name, op, 0, None, self.get_ident(), info)
        negate = False
        if self.tok == '-':
            self.accept()
            negate = True
        val = self.get_number()
        bin_width = None
        if isinstance(val, BinaryNum):
            bin_width = val.width
            val = val.value
        return ConstraintDecl(name, op, -val if negate else val, bin_width,
                              None, info)

    def get_decoder(self, info: SourceInfo) -> DecoderDecl:
        name = self.get_ident()
        decl = DecoderDecl(name, [], [], [], [], info)
        self.expect('{')
        while self.tok != '}':
            item_info = self.info
            word = self.get_ident()
            if word == 'namespace':
                path = [self.get_ident()]
                while self.tok == '::':
                    self.accept()
                    path.append(self.get_ident())
                decl.namespaces.append(path)
            elif word == 'opcode_enum':
                self.expect('=')
                if self.tok != '"':
                    raise ParseError(self, "expected string")
                assert isinstance(self.val, str)
                decl.opcode_enums.append(self.val)
                self.accept()
            elif word == 'includes':
                self.expect('{')
                while self.tok != '}':
                    if self.tok != '"':
                        raise ParseError(self, "expected string")
                    assert isinstance(self.val, str)
                    decl.includes.append(self.val)
                    self.accept()
                    if self.tok != '}':
                        self.expect(',')
                self.accept()
            elif self.tok == '=':
                self.accept()
                self.expect('{')
                members = [self.get_ident()]
                while self.tok == ',':
                    self.accept()
                    members.append(self.get_ident())
                self.expect('}')
                decl.groups.append(GroupRef(word, members, item_info))
            else:
                decl.groups.append(GroupRef(word, None, item_info))
            self.expect(';')
        self.accept()
        self.expect(';')
        return decl
