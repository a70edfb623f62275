# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
The decoder description container

A `Container` owns every format and instruction group of a description,
and the one decoder selected for code generation.  It also drives the
checking passes, reporting problems to its `ErrorSink`.
"""

import logging
from typing import (
    Dict,
    List,
    Optional,
    Sequence,
)

from .common import int_type_bit_width
from .error import ErrorKind, ErrorSink, SemanticError
from .format import Format
from .group import InstructionGroup
from .source import SourceInfo


LOG = logging.getLogger(__name__)

DEFAULT_OPCODE_ENUM = 'OpcodeEnum'


class Decoder:
    """
    The selected decoder: which instruction groups to generate code for,
    and how to wrap the generated code.
    """
    def __init__(self, name: str, info: Optional[SourceInfo] = None):
        self.name = name
        self.info = info
        self.opcode_enum = DEFAULT_OPCODE_ENUM
        self.namespaces: List[str] = []
        self.include_files: List[str] = []
        self.groups: List[InstructionGroup] = []

    def add_namespace(self, name: str) -> None:
        self.namespaces.append(name)

    def add_include_file(self, name: str) -> None:
        if name not in self.include_files:
            self.include_files.append(name)

    def add_instruction_group(self, group: InstructionGroup) -> None:
        if group in self.groups:
            raise SemanticError(
                ErrorKind.DECODER_MISCONFIG,
                f"Instruction group '{group.name}' listed twice in decoder "
                f"'{self.name}'")
        self.groups.append(group)

    def check_encodings(self) -> None:
        for group in self.groups:
            group.check_encodings()


class Container:
    """
    The `add_*` methods and `merge_groups` raise `SemanticError` on bad
    input and leave the container unchanged.  The checking passes,
    `check_formats` and `process`, never raise: they report to `sink`.

    :param sink: Where diagnostics go; a fresh `ErrorSink` by default.
    """
    def __init__(self, sink: Optional[ErrorSink] = None):
        self.sink = sink or ErrorSink()
        self._format_map: Dict[str, Format] = {}
        self._group_map: Dict[str, InstructionGroup] = {}
        self.decoder: Optional[Decoder] = None

    @property
    def opcode_enum(self) -> str:
        if self.decoder is None:
            return DEFAULT_OPCODE_ENUM
        return self.decoder.opcode_enum

    @property
    def has_errors(self) -> bool:
        return self.sink.has_errors

    def add_format(self, name: str, width: int,
                   parent_name: Optional[str] = None,
                   info: Optional[SourceInfo] = None) -> Format:
        if name in self._format_map:
            raise SemanticError(ErrorKind.DUPLICATE_NAME,
                                f"Format '{name}' already defined", info)
        if width < 1:
            raise SemanticError(
                ErrorKind.OUT_OF_RANGE,
                f"Format '{name}' must be at least one bit wide", info)
        fmt = Format(name, width, self, parent_name, info)
        self._format_map[name] = fmt
        return fmt

    def get_format(self, name: str) -> Optional[Format]:
        return self._format_map.get(name)

    @property
    def formats(self) -> List[Format]:
        """All formats, ordered by name."""
        return [self._format_map[name] for name in sorted(self._format_map)]

    def add_instruction_group(self, name: str, width: int, format_name: str,
                              info: Optional[SourceInfo] = None
                              ) -> InstructionGroup:
        if name in self._group_map:
            raise SemanticError(
                ErrorKind.DUPLICATE_NAME,
                f"Instruction group '{name}' already defined", info)
        fmt = self.get_format(format_name)
        if fmt is None:
            raise SemanticError(
                ErrorKind.UNRESOLVED_REFERENCE,
                f"Instruction group '{name}' refers to undefined format "
                f"'{format_name}'", info)
        if fmt.declared_width != width:
            raise SemanticError(
                ErrorKind.WIDTH_MISMATCH,
                f"Instruction group '{name}' width ({width}) differs from "
                f"format '{format_name}' width ({fmt.declared_width})", info)
        if int_type_bit_width(width) < 0:
            raise SemanticError(
                ErrorKind.WIDTH_MISMATCH,
                f"Instruction group '{name}': instruction words wider than "
                "64 bits are not supported", info)
        group = InstructionGroup(name, width, fmt, self, info)
        self._group_map[name] = group
        return group

    def get_instruction_group(self, name: str) -> Optional[InstructionGroup]:
        return self._group_map.get(name)

    @property
    def instruction_groups(self) -> List[InstructionGroup]:
        return [self._group_map[name] for name in sorted(self._group_map)]

    def add_decoder(self, name: str,
                    info: Optional[SourceInfo] = None) -> Decoder:
        if self.decoder is not None:
            raise SemanticError(
                ErrorKind.DECODER_MISCONFIG,
                f"Can only select one decoder: '{self.decoder.name}' "
                f"already selected, '{name}' rejected", info)
        self.decoder = Decoder(name, info)
        return self.decoder

    def merge_groups(self, name: str, source_names: Sequence[str],
                     info: Optional[SourceInfo] = None) -> InstructionGroup:
        """
        Create group NAME holding copies of the encodings of the named
        groups, in order.  All of them must use the same format.
        """
        if not source_names:
            raise SemanticError(
                ErrorKind.DECODER_MISCONFIG,
                f"Merged instruction group '{name}' has no child groups",
                info)
        sources = []
        for source_name in source_names:
            source = self.get_instruction_group(source_name)
            if source is None:
                raise SemanticError(
                    ErrorKind.UNRESOLVED_REFERENCE,
                    f"Merged instruction group '{name}' refers to undefined "
                    f"instruction group '{source_name}'", info)
            if sources and (source.format_name != sources[0].format_name
                            or source.width != sources[0].width):
                raise SemanticError(
                    ErrorKind.DECODER_MISCONFIG,
                    f"Merged instruction group '{name}': group "
                    f"'{source_name}' uses format '{source.format_name}', "
                    f"expected '{sources[0].format_name}'", info)
            sources.append(source)
        group = self.add_instruction_group(name, sources[0].width,
                                           sources[0].format_name, info)
        for source in sources:
            for encoding in source.encodings:
                group.add_encoding_copy(encoding)
        return group

    def check_formats(self) -> None:
        """Lay out every format, then promote and prune extractors."""
        for fmt in self.formats:
            with self.sink.catching(fmt.info):
                fmt.compute_and_check_width()
        self.propagate_extractors()

    def propagate_extractors(self) -> None:
        roots = [fmt for fmt in self.formats if fmt.base_format is None]
        for fmt in roots:
            fmt.propagate_extractors_up()
        for fmt in roots:
            fmt.propagate_extractors_down()

    def process(self) -> None:
        """Build and check the decoder trees of the selected decoder."""
        decoder = self.decoder
        if decoder is None:
            self.sink.report(ErrorKind.DECODER_MISCONFIG, None,
                             "No decoder selected")
            return
        if not decoder.groups:
            self.sink.report(
                ErrorKind.DECODER_MISCONFIG, decoder.info,
                f"Decoder '{decoder.name}' has no instruction groups")
            return
        for group in decoder.groups:
            group.process_encodings()
        decoder.check_encodings()
        LOG.debug("decoder %s: %d groups processed", decoder.name,
                  len(decoder.groups))
