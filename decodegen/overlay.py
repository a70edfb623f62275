# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Overlays

An overlay is a virtual field of a format.  Its value is the left to right
concatenation of field slices, format bit ranges and binary literals.
Literal bits are not part of the instruction word, so an overlay that
contains any must be extracted before it can be compared.
"""

from typing import (
    TYPE_CHECKING,
    List,
    NamedTuple,
    Optional,
    Sequence,
)

from .common import low_mask
from .error import ErrorKind, SemanticError
from .source import SourceInfo


if TYPE_CHECKING:
    from .format import Field, Format


class BitRange(NamedTuple):
    """Inclusive bit range, FIRST being the most significant bit."""
    first: int
    last: int

    @property
    def width(self) -> int:
        return self.first - self.last + 1


class BinaryNum(NamedTuple):
    """A binary literal that remembers how many digits it was written with."""
    value: int
    width: int


class OverlayComponent:
    """
    One piece of an overlay.

    `high` and `low` are bit positions in the containing format (-1 for a
    literal); `position` is the most significant bit the piece occupies
    within the overlay value.
    """
    def __init__(self, width: int, high: int = -1, low: int = -1,
                 field: Optional['Field'] = None,
                 bin_num: Optional[BinaryNum] = None):
        self.width = width
        self.high = high
        self.low = low
        self.field = field
        self.bin_num = bin_num
        self.position = -1

    @property
    def is_constant(self) -> bool:
        return self.bin_num is not None

    @property
    def mask(self) -> int:
        if self.is_constant:
            return 0
        return low_mask(self.width) << self.low

    @property
    def shift(self) -> int:
        """Distance of this piece's low bit from bit 0 of the overlay."""
        return self.position - self.width + 1


class Overlay:
    """
    :param name: Overlay name, unique in its format.
    :param is_signed: Whether the overlay value is sign extended.
    :param width: Declared width in bits.
    :param fmt: Containing format.
    """
    def __init__(self, name: str, is_signed: bool, width: int,
                 fmt: 'Format'):
        self.name = name
        self.is_signed = is_signed
        self.declared_width = width
        self.computed_width = 0
        self.format = fmt
        self.info: Optional[SourceInfo] = None
        self.mask = 0
        self.must_be_extracted = False
        self.components: List[OverlayComponent] = []
        self._high_low_computed = False

    def add_bit_constant(self, bin_num: BinaryNum) -> None:
        self.components.append(OverlayComponent(bin_num.width,
                                                bin_num=bin_num))
        self.computed_width += bin_num.width
        self.must_be_extracted = True

    def add_field_reference(
            self, name: str,
            ranges: Optional[Sequence[BitRange]] = None) -> None:
        """
        Append field NAME, or the given slices of it.

        Slice bounds are relative to the field.
        """
        field = self.format.get_field(name)
        if field is None:
            raise SemanticError(
                ErrorKind.UNRESOLVED_REFERENCE,
                f"Overlay '{self.name}' refers to undefined field '{name}' "
                f"in format '{self.format.name}'", self.info)
        if ranges is None:
            ranges = [BitRange(field.width - 1, 0)]
        for bit_range in ranges:
            if not 0 <= bit_range.last <= bit_range.first < field.width:
                raise SemanticError(
                    ErrorKind.OUT_OF_RANGE,
                    f"Overlay '{self.name}': bit range "
                    f"[{bit_range.first}..{bit_range.last}] is outside of "
                    f"field '{name}' ({field.width} bits)", self.info)
            self.components.append(
                OverlayComponent(bit_range.width, bit_range.first,
                                 bit_range.last, field=field))
            self.computed_width += bit_range.width

    def add_format_reference(self, ranges: Sequence[BitRange]) -> None:
        """Append bit ranges of the containing format."""
        width = self.format.declared_width
        for bit_range in ranges:
            if not 0 <= bit_range.last <= bit_range.first < width:
                raise SemanticError(
                    ErrorKind.OUT_OF_RANGE,
                    f"Overlay '{self.name}': bit range "
                    f"[{bit_range.first}..{bit_range.last}] is outside of "
                    f"format '{self.format.name}' ({width} bits)", self.info)
            self.components.append(
                OverlayComponent(bit_range.width, bit_range.first,
                                 bit_range.last))
            self.computed_width += bit_range.width

    def check_width(self) -> None:
        if self.computed_width != self.declared_width:
            raise SemanticError(
                ErrorKind.WIDTH_MISMATCH,
                f"Overlay '{self.name}' declared width "
                f"({self.declared_width}) differs from computed width "
                f"({self.computed_width})", self.info)

    def compute_high_low(self) -> None:
        """
        Assign component positions and translate field slices to format
        bit positions.  Needs the field positions of the format, and only
        runs once.
        """
        if self._high_low_computed:
            return
        position = self.declared_width - 1
        for component in self.components:
            component.position = position
            if component.field is not None:
                component.high += component.field.low
                component.low += component.field.low
            self.mask |= component.mask
            position -= component.width
        self._high_low_computed = True

    @property
    def value_mask(self) -> int:
        """Bits of the overlay value that come from the instruction word."""
        mask = 0
        for component in self.components:
            if not component.is_constant:
                mask |= low_mask(component.width) << component.shift
        return mask

    def get_value(self, word: int) -> int:
        """Return the value of the overlay in instruction word WORD."""
        self.check_width()
        value = 0
        for component in self.components:
            if component.bin_num is not None:
                value |= component.bin_num.value << component.shift
                continue
            bits = word & component.mask
            diff = component.high - component.position
            if diff > 0:
                value |= bits >> diff
            else:
                value |= bits << -diff
        if self.is_signed and value >> (self.declared_width - 1):
            value -= 1 << self.declared_width
        return value

    def get_bit_field(self, value: int) -> int:
        """
        Return the instruction word bits the overlay value VALUE implies.

        Literal components have no bits in the word and are skipped.
        """
        self.check_width()
        word = 0
        for component in self.components:
            if component.is_constant:
                continue
            bits = (value >> component.shift) & low_mask(component.width)
            word |= bits << component.low
        return word

    def write_simple_value_extractor(self, value: str, result: str) -> str:
        """
        Return C statements that compute the overlay from VALUE into
        RESULT, for formats of at most 64 bits.
        """
        ret = ''
        assign = ' = '
        for component in self.components:
            if component.bin_num is not None:
                if component.bin_num.value == 0:
                    continue
                ret += f'  {result}{assign}{component.bin_num.value:#x}'
                if component.shift > 0:
                    ret += f' << {component.shift}'
                ret += ';\n'
            else:
                ret += f'  {result}{assign}({value} & {component.mask:#x})'
                diff = component.high - component.position
                if diff < 0:
                    ret += f' << {-diff}'
                elif diff > 0:
                    ret += f' >> {diff}'
                ret += ';\n'
            assign = ' |= '
        if not ret:
            ret = f'  {result} = 0;\n'
        return ret

    def write_packed_struct_value_extractor(self, value: str, result: str,
                                            union_type: str, member: str,
                                            result_type: str) -> str:
        """
        Like write_simple_value_extractor(), reading field slices through
        the packed struct MEMBER of UNION_TYPE laid over VALUE.
        """
        ret = (f'  const {union_type} *packed_union;\n'
               f'  packed_union = reinterpret_cast<const {union_type} *>'
               f'(&{value});\n')
        body = ''
        assign = ' = '
        for component in self.components:
            if component.bin_num is not None:
                if component.bin_num.value == 0:
                    continue
                bits = f'{component.bin_num.value:#x}'
            else:
                if component.field is not None:
                    bits = f'packed_union->{member}.{component.field.name}'
                    low = component.low - component.field.low
                    whole = (component.width == component.field.width
                             and not component.field.is_signed)
                else:
                    bits = 'packed_union->value'
                    low = component.low
                    whole = False
                if low:
                    bits = f'{bits} >> {low}'
                if not whole:
                    if low:
                        bits = f'({bits})'
                    bits = f'{bits} & {low_mask(component.width):#x}'
                bits = f'static_cast<{result_type}>({bits})'
            body += f'  {result}{assign}{bits}'
            if component.shift > 0:
                body += f' << {component.shift}'
            body += ';\n'
            assign = ' |= '
        if not body:
            body = f'  {result} = 0;\n'
        return ret + body

    def write_complex_value_extractor(self, value: str, result: str,
                                      return_type: str) -> str:
        """
        Like write_simple_value_extractor(), for formats held in a byte
        array.
        """
        byte_size = (self.format.declared_width + 7) // 8
        ret = f'  {result} = 0;\n'
        for component in self.components:
            if component.bin_num is not None:
                if component.bin_num.value == 0:
                    continue
                ret += (f'  {result} |= {component.bin_num.value:#x}'
                        f' << {component.shift};\n')
                continue
            ret += (f'  {result} |= internal::ExtractBits<{return_type}>('
                    f'{value}, {byte_size}, {component.high}, '
                    f'{component.width}) << {component.shift};\n')
        return ret

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Overlay):
            return NotImplemented
        return (self.write_simple_value_extractor('value', 'result')
                == other.write_simple_value_extractor('value', 'result'))

    __hash__ = None  # type: ignore

    def __repr__(self) -> str:
        return "<%s %s[%d]>" % (type(self).__name__, self.name,
                                self.declared_width)
