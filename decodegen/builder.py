# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Container population

`ContainerBuilder` turns parsed declarations into a checked `Container`:
formats first, then instruction groups and their encodings, then the
selected decoder, and finally the decoder trees.  Problems are reported
to the container's sink; building always runs to the end.
"""

import logging
from typing import (
    Dict,
    List,
    Optional,
    Sequence,
)

from .container import Container
from .error import ErrorKind, ErrorSink
from .format import Format, Layout
from .group import InstructionGroup
from .parser import (
    BinFormatParser,
    ConstraintDecl,
    Declaration,
    DecoderDecl,
    FieldDecl,
    FormatDecl,
    GroupDecl,
    OverlayDecl,
)


LOG = logging.getLogger(__name__)


class ContainerBuilder:
    """
    :param decls: Declarations from `BinFormatParser`.
    :param decoder_name: Decoder to select; may be omitted when there is
        exactly one.
    :param sink: Diagnostic sink for the new container.
    """
    def __init__(self, decls: Sequence[Declaration],
                 decoder_name: Optional[str] = None,
                 sink: Optional[ErrorSink] = None):
        self._decls = decls
        self._decoder_name = decoder_name
        self.container = Container(sink)
        self.sink = self.container.sink

    def build(self) -> Container:
        format_decls = [d for d in self._decls if isinstance(d, FormatDecl)]
        group_decls = [d for d in self._decls if isinstance(d, GroupDecl)]
        decoder_decls = [d for d in self._decls
                         if isinstance(d, DecoderDecl)]
        self._def_formats(format_decls)
        self.container.check_formats()
        for group_decl in group_decls:
            self._def_group(group_decl)
        decoder_decl = self._select_decoder(decoder_decls)
        if decoder_decl is not None:
            self._def_decoder(decoder_decl)
            self.container.process()
        return self.container

    def _format_width(self, decl: FormatDecl,
                      by_name: Dict[str, FormatDecl]) -> Optional[int]:
        seen = set()
        while decl.width is None:
            seen.add(decl.name)
            if decl.parent is None or decl.parent not in by_name \
                    or decl.parent in seen:
                self.sink.report(
                    ErrorKind.UNRESOLVED_REFERENCE, decl.info,
                    f"Format '{decl.name}' has no width and no base format "
                    "to inherit one from")
                return None
            decl = by_name[decl.parent]
        return decl.width

    def _def_formats(self, decls: List[FormatDecl]) -> None:
        by_name: Dict[str, FormatDecl] = {}
        for decl in decls:
            by_name.setdefault(decl.name, decl)
        for decl in decls:
            width = self._format_width(decl, by_name)
            if width is None:
                continue
            fmt = None
            with self.sink.catching(decl.info):
                fmt = self.container.add_format(decl.name, width,
                                                decl.parent, decl.info)
            if fmt is None:
                continue
            if decl.layout is not None:
                try:
                    fmt.layout = Layout(decl.layout)
                except ValueError:
                    self.sink.report(
                        ErrorKind.SYNTAX, decl.info,
                        f"Unknown layout '{decl.layout}' in format "
                        f"'{decl.name}'")
            for component in decl.components:
                with self.sink.catching(component.info):
                    if isinstance(component, FieldDecl):
                        fmt.add_field(component.name, component.is_signed,
                                      component.width)
                    else:
                        fmt.add_format_reference(component.alias,
                                                 component.format_name,
                                                 component.size)
            for overlay_decl in decl.overlays:
                self._def_overlay(fmt, overlay_decl)

    def _def_overlay(self, fmt: Format, decl: OverlayDecl) -> None:
        with self.sink.catching(decl.info):
            overlay = fmt.add_overlay(decl.name, decl.is_signed, decl.width)
            overlay.info = decl.info
            for part in decl.parts:
                if part.bits is not None:
                    overlay.add_bit_constant(part.bits)
                elif part.field is not None:
                    overlay.add_field_reference(part.field, part.ranges)
                else:
                    assert part.ranges is not None
                    overlay.add_format_reference(part.ranges)

    def _def_group(self, decl: GroupDecl) -> None:
        group = None
        with self.sink.catching(decl.info):
            group = self.container.add_instruction_group(
                decl.name, decl.width, decl.format_name, decl.info)
        if group is None:
            return
        for enc_decl in decl.encodings:
            fmt = self.container.get_format(enc_decl.format_name)
            if fmt is None:
                self.sink.report(
                    ErrorKind.UNRESOLVED_REFERENCE, enc_decl.info,
                    f"Encoding '{enc_decl.name}' refers to undefined format "
                    f"'{enc_decl.format_name}'")
                continue
            encoding = group.add_encoding(enc_decl.name, fmt, enc_decl.info)
            if encoding is None:
                continue
            for constraint in enc_decl.constraints:
                with self.sink.catching(constraint.info):
                    self._check_literal_width(fmt, constraint)
                    if constraint.rhs is not None:
                        encoding.add_other_field(constraint.op,
                                                 constraint.name,
                                                 constraint.rhs)
                    else:
                        encoding.add_other(constraint.op, constraint.name,
                                           constraint.value)

    def _check_literal_width(self, fmt: Format,
                             decl: ConstraintDecl) -> None:
        if decl.bin_width is None:
            return
        field = fmt.get_field(decl.name)
        overlay = fmt.get_overlay(decl.name)
        if field is not None:
            width = field.width
        elif overlay is not None:
            width = overlay.declared_width
        else:
            return
        if width != decl.bin_width:
            self.sink.warn(
                ErrorKind.LITERAL_WIDTH, decl.info,
                f"Binary literal for '{decl.name}' has {decl.bin_width} "
                f"digits, but '{decl.name}' is {width} bits wide")

    def _select_decoder(self, decls: List[DecoderDecl]
                        ) -> Optional[DecoderDecl]:
        by_name: Dict[str, DecoderDecl] = {}
        for decl in decls:
            if decl.name in by_name:
                self.sink.report(ErrorKind.DUPLICATE_NAME, decl.info,
                                 f"Decoder '{decl.name}' already defined")
                continue
            by_name[decl.name] = decl
        if self._decoder_name is not None:
            if self._decoder_name not in by_name:
                self.sink.report(ErrorKind.DECODER_MISCONFIG, None,
                                 f"No decoder named '{self._decoder_name}'")
                return None
            return by_name[self._decoder_name]
        if not by_name:
            self.sink.report(ErrorKind.DECODER_MISCONFIG, None,
                             "No decoder defined")
            return None
        if len(by_name) > 1:
            self.sink.report(
                ErrorKind.DECODER_MISCONFIG, None,
                "Can only select one decoder, found: %s"
                % ', '.join(sorted(by_name)))
            return None
        return next(iter(by_name.values()))

    def _def_decoder(self, decl: DecoderDecl) -> None:
        decoder = None
        with self.sink.catching(decl.info):
            decoder = self.container.add_decoder(decl.name, decl.info)
        if decoder is None:
            return
        if len(decl.namespaces) > 1:
            self.sink.report(
                ErrorKind.DECODER_MISCONFIG, decl.info,
                f"More than one namespace declaration in decoder "
                f"'{decl.name}'")
        elif decl.namespaces:
            for name in decl.namespaces[0]:
                decoder.add_namespace(name)
        if len(decl.opcode_enums) > 1:
            self.sink.report(
                ErrorKind.DECODER_MISCONFIG, decl.info,
                f"More than one opcode_enum declaration in decoder "
                f"'{decl.name}'")
        elif decl.opcode_enums:
            if not decl.opcode_enums[0]:
                self.sink.report(ErrorKind.DECODER_MISCONFIG, decl.info,
                                 "Empty opcode_enum string")
            else:
                decoder.opcode_enum = decl.opcode_enums[0]
        for include in decl.includes:
            decoder.add_include_file(include)
        for ref in decl.groups:
            with self.sink.catching(ref.info):
                group: Optional[InstructionGroup]
                if ref.members is not None:
                    group = self.container.merge_groups(ref.name,
                                                        ref.members,
                                                        ref.info)
                else:
                    group = self.container.get_instruction_group(ref.name)
                    if group is None:
                        self.sink.report(
                            ErrorKind.UNRESOLVED_REFERENCE, ref.info,
                            f"Instruction group '{ref.name}' not found")
                        continue
                decoder.add_instruction_group(group)


def load(fname: str, include_dirs: Sequence[str] = (),
         decoder_name: Optional[str] = None,
         sink: Optional[ErrorSink] = None) -> Container:
    """
    Parse FNAME and build its container.

    :raise OSError: if FNAME cannot be read.
    :raise ParseError: on a syntax error.
    """
    parser = BinFormatParser(fname, include_dirs)
    LOG.debug("%s: %d declarations", fname, len(parser.decls))
    return ContainerBuilder(parser.decls, decoder_name, sink).build()
