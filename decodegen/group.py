# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Instruction groups

An instruction group collects the encodings decoded by one generated
decode function, and builds the decoder tree for them.
"""

import logging
from typing import (
    TYPE_CHECKING,
    List,
    Optional,
    Set,
)

from .encoding import InstructionEncoding
from .encoding_group import EncodingGroup
from .error import ErrorKind, ErrorSink
from .extract import extract_value, get_extraction_recipe
from .format import Format
from .source import SourceInfo


if TYPE_CHECKING:
    from .container import Container


LOG = logging.getLogger(__name__)


class InstructionGroup:
    """
    :param name: Group name, unique in the container.
    :param width: Instruction word width; equals the format width.
    :param fmt: Format all encodings must use or derive from.
    :param container: The owning container.
    """
    def __init__(self, name: str, width: int, fmt: Format,
                 container: 'Container',
                 info: Optional[SourceInfo] = None):
        self.name = name
        self.width = width
        self.format = fmt
        self.container = container
        self.info = info
        self.encodings: List[InstructionEncoding] = []
        self._opcode_names: Set[str] = set()
        self.roots: List[EncodingGroup] = []

    @property
    def format_name(self) -> str:
        return self.format.name

    @property
    def opcode_enum(self) -> str:
        return self.container.opcode_enum

    @property
    def sink(self) -> ErrorSink:
        return self.container.sink

    def _note_opcode(self, name: str, info: Optional[SourceInfo]) -> None:
        if name in self._opcode_names:
            self.sink.warn(
                ErrorKind.DUPLICATE_OPCODE, info,
                f"Duplicate instruction opcode name '{name}' in group "
                f"'{self.name}'")
        self._opcode_names.add(name)

    def add_encoding(self, name: str, fmt: Format,
                     info: Optional[SourceInfo] = None
                     ) -> Optional[InstructionEncoding]:
        """
        Create encoding NAME in format FMT.

        :return: the new encoding, or None if FMT does not derive from the
            group's format.
        """
        if not fmt.is_derived_from(self.format):
            self.sink.report(
                ErrorKind.FORMAT_MISMATCH, info,
                f"Format '{fmt.name}' used by instruction encoding '{name}' "
                f"is not derived from '{self.format.name}'")
            return None
        self._note_opcode(name, info)
        encoding = InstructionEncoding(name, fmt, info)
        self.encodings.append(encoding)
        return encoding

    def add_encoding_copy(self, encoding: InstructionEncoding) -> None:
        """Add a copy of an encoding from another group."""
        self._note_opcode(encoding.name, encoding.info)
        self.encodings.append(encoding.copy())

    def process_encodings(self) -> None:
        """Partition the encodings into decoder trees."""
        if not self.encodings:
            self.sink.warn(ErrorKind.EMPTY_GROUP, self.info,
                           f"No encodings in instruction group: "
                           f"'{self.name}'")
            return
        self.roots = [EncodingGroup(self)]
        for enc in sorted(self.encodings, key=lambda enc: enc.mask):
            for root in self.roots:
                if root.can_add_encoding(enc):
                    root.add_encoding(enc)
                    break
            else:
                root = EncodingGroup(self)
                root.add_encoding(enc)
                self.roots.append(root)
        for root in self.roots:
            root.add_sub_groups()
        LOG.debug("group %s: %d encodings in %d trees", self.name,
                  len(self.encodings), len(self.roots))

    def check_encodings(self) -> None:
        for root in self.roots:
            root.check_encodings()

    def sorted_roots(self) -> List[EncodingGroup]:
        """Return the roots in decode order, by their constant bits."""
        def root_key(root: EncodingGroup) -> int:
            return extract_value(root.encodings[0].value,
                                 get_extraction_recipe(root.constant))
        return sorted(self.roots, key=root_key)

    def dump(self) -> str:
        ret = f"Instruction group: {self.name}\n"
        common_mask = -1
        for enc in self.encodings:
            common_mask &= enc.mask
        if self.encodings:
            ret += f"  common bits: {common_mask:#x}\n"
        for root in self.roots:
            ret += root.dump('', '  ')
        return ret

    def __repr__(self) -> str:
        return "<%s %s[%d]>" % (type(self).__name__, self.name, self.width)
