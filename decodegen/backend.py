# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Code generation back-ends

`CppBackend` writes a C++ header with the field and overlay extractors
and the decode function declarations, and a source file with the decode
functions themselves, one per decoder tree node.

Extractors of formats with a packed struct layout read their fields
through a union of the instruction word and a packed bit field struct
instead of shifting and masking.
"""

from abc import ABC, abstractmethod
import logging
from typing import (
    Dict,
    List,
    Set,
    Tuple,
)

from .common import (
    camel_case,
    gen_namespace_close,
    gen_namespace_open,
    int_type_bit_width,
    int_type_name,
    low_mask,
    mcgen,
    snake_case,
)
from .container import Container, Decoder
from .encoding import Constraint
from .encoding_group import EncodingGroup
from .error import DecodeGenError
from .extract import write_extraction
from .format import FieldOrFormat, Format, Layout
from .gen import GenC, GenH
from .group import InstructionGroup
from .overlay import Overlay


LOG = logging.getLogger(__name__)


class DecoderBackend(ABC):
    # pylint: disable=too-few-public-methods

    @abstractmethod
    def generate(self,
                 container: Container,
                 output_dir: str,
                 prefix: str) -> None:
        """
        Generate code for the selected decoder of CONTAINER.

        :param container: A processed container without errors.
        :param output_dir: The output directory to store generated code.
        :param prefix: Prefix for the generated file names.

        :raise DecodeGenError: On failures.
        """


class CppBackend(DecoderBackend):
    # pylint: disable=too-few-public-methods

    def generate(self,
                 container: Container,
                 output_dir: str,
                 prefix: str) -> None:
        decoder = container.decoder
        if decoder is None or container.has_errors:
            raise DecodeGenError("no code generated: decoder has errors")
        genh, genc = gen_decoder(container, decoder, prefix)
        genh.write(output_dir)
        genc.write(output_dir)


_EXTRACT_BITS = '''
namespace internal {

// Extract WIDTH bits ending at bit MSB from the DATA_SIZE byte array DATA,
// bit 0 being the least significant bit of the last byte.
template <typename T>
static inline T ExtractBits(const uint8_t *data, int data_size, int msb,
                            int width) {
  T val = 0;
  int lsb = msb - width + 1;
  int byte_index = data_size - (lsb >> 3) - 1;
  int bit_index = lsb & 0x7;
  int extracted = 0;
  while (extracted < width) {
    int bits = std::min(8 - bit_index, width - extracted);
    T byte_bits = (data[byte_index] >> bit_index) & ((1 << bits) - 1);
    val |= byte_bits << extracted;
    extracted += bits;
    bit_index = 0;
    byte_index--;
  }
  return val;
}

}  // namespace internal
'''


def _arg_type(fmt: Format) -> str:
    if fmt.int_type_bits < 0:
        return 'const uint8_t *'
    return fmt.uint_type_name + ' '


def _sign_extend(width: int, result: str) -> str:
    shift = int_type_bit_width(width) - width
    if not shift:
        return ''
    return mcgen('''
  %(result)s = %(result)s << %(shift)d;
  %(result)s = %(result)s >> %(shift)d;
''',
                 result=result, shift=shift)


def _packed_union(owner: Format) -> Tuple[str, str]:
    """Return the union type laid over OWNER and its struct member."""
    member = snake_case(owner.name)
    return '%s::Union%s' % (member, camel_case(owner.name)), member


def _packed_union_cast(union_type: str) -> str:
    return mcgen('''
  const %(union_type)s *packed_union;
  packed_union = reinterpret_cast<const %(union_type)s *>(&value);
''',
                 union_type=union_type)


def gen_packed_struct_types(fmt: Format) -> str:
    """
    Return the packed struct of FMT and the union that lays it over an
    instruction word.

    Bit fields are declared starting from the least significant bit,
    the allocation order on little endian targets.
    """
    members = ''
    for component in reversed(fmt.components):
        signed = component.field is not None and component.field.is_signed
        members += mcgen('''
  %(c_type)s %(name)s : %(width)d;
''',
                         c_type=int_type_name(component.width, signed),
                         name=component.name, width=component.width)
    return mcgen('''

namespace %(ns)s {

struct __attribute__((packed)) %(c_name)s {
%(members)s};

union Union%(c_name)s {
  %(uint_type)s value;
  %(c_name)s %(ns)s;
};

}  // namespace %(ns)s
''',
                 ns=snake_case(fmt.name), c_name=camel_case(fmt.name),
                 members=members, uint_type=fmt.uint_type_name)


def gen_field_extractor(fmt: Format, name: str,
                        entry: FieldOrFormat) -> str:
    assert entry.field is not None
    field = entry.field
    ret_type = int_type_name(field.width, field.is_signed)
    if entry.packed:
        # Signed bit fields sign extend on their own.
        union_type, member = _packed_union(field.format)
        return mcgen('''

inline %(ret_type)s Extract%(c_name)s(%(arg_type)svalue) {
%(cast)s  return packed_union->%(member)s.%(field)s;
}
''',
                     ret_type=ret_type, c_name=camel_case(name),
                     arg_type=_arg_type(fmt),
                     cast=_packed_union_cast(union_type), member=member,
                     field=field.name)
    if fmt.int_type_bits > 0:
        expr = '(value >> %d) & %#x' % (field.low, low_mask(field.width))
    else:
        expr = 'internal::ExtractBits<%s>(value, %d, %d, %d)' % (
            ret_type, (fmt.declared_width + 7) // 8, field.high, field.width)
    ret = mcgen('''

inline %(ret_type)s Extract%(c_name)s(%(arg_type)svalue) {
  %(ret_type)s result = %(expr)s;
''',
                ret_type=ret_type, c_name=camel_case(name),
                arg_type=_arg_type(fmt), expr=expr)
    if field.is_signed:
        ret += _sign_extend(field.width, 'result')
    ret += mcgen('''
  return result;
}
''')
    return ret


def gen_format_ref_extractor(fmt: Format, name: str,
                             entry: FieldOrFormat) -> str:
    assert entry.format is not None
    width = entry.format.declared_width
    if entry.packed:
        assert entry.owner is not None
        union_type, member = _packed_union(entry.owner)
        return mcgen('''

inline %(ret_type)s Extract%(c_name)s(%(arg_type)svalue) {
%(cast)s  return packed_union->%(member)s.%(alias)s;
}
''',
                     ret_type=int_type_name(width), c_name=camel_case(name),
                     arg_type=_arg_type(fmt),
                     cast=_packed_union_cast(union_type), member=member,
                     alias=entry.name)
    if width > 64:
        LOG.warning("format %s: no extractor for '%s', format '%s' is "
                    "wider than 64 bits", fmt.name, name, entry.format.name)
        return ''
    ret_type = int_type_name(width)
    index_arg = ''
    index_adj = ''
    if entry.size > 1:
        index_arg = ', int index'
        index_adj = ' - index * %d' % width
    low = entry.high - width + 1
    if fmt.int_type_bits > 0:
        if index_adj:
            shift = '(%d%s)' % (low, index_adj)
        else:
            shift = '%d' % low
        expr = '(value >> %s) & %#x' % (shift, low_mask(width))
    else:
        expr = 'internal::ExtractBits<%s>(value, %d, %d%s, %d)' % (
            ret_type, (fmt.declared_width + 7) // 8, entry.high, index_adj,
            width)
    return mcgen('''

inline %(ret_type)s Extract%(c_name)s(%(arg_type)svalue%(index_arg)s) {
  return %(expr)s;
}
''',
                 ret_type=ret_type, c_name=camel_case(name),
                 arg_type=_arg_type(fmt), index_arg=index_arg, expr=expr)


def gen_overlay_extractor(fmt: Format, name: str, overlay: Overlay) -> str:
    ret_type = int_type_name(overlay.declared_width, overlay.is_signed)
    ret = mcgen('''

inline %(ret_type)s Extract%(c_name)s(%(arg_type)svalue) {
  %(ret_type)s result;
''',
                ret_type=ret_type, c_name=camel_case(name),
                arg_type=_arg_type(fmt))
    if overlay.format.layout is Layout.PACKED_STRUCT:
        union_type, member = _packed_union(overlay.format)
        ret += overlay.write_packed_struct_value_extractor(
            'value', 'result', union_type, member,
            int_type_name(overlay.declared_width))
    elif fmt.int_type_bits > 0:
        ret += overlay.write_simple_value_extractor('value', 'result')
    else:
        ret += overlay.write_complex_value_extractor('value', 'result',
                                                     ret_type)
    if overlay.is_signed:
        ret += _sign_extend(overlay.declared_width, 'result')
    ret += mcgen('''
  return result;
}
''')
    return ret


def gen_format_extractors(fmt: Format) -> str:
    """Return the extractor namespace of FMT, empty if it has none."""
    body = ''
    for name, entry in sorted(fmt.extractors.items()):
        if entry is None:
            continue
        if entry.is_field:
            body += gen_field_extractor(fmt, name, entry)
        else:
            body += gen_format_ref_extractor(fmt, name, entry)
    for name, overlay in sorted(fmt.overlay_extractors.items()):
        if overlay is None:
            continue
        body += gen_overlay_extractor(fmt, name, overlay)
    if not body:
        return ''
    return mcgen('''

namespace %(ns)s {
%(body)s
}  // namespace %(ns)s
''',
                 ns=snake_case(fmt.name), body=body)


def gen_opcode_enum(decoder: Decoder) -> str:
    names: List[str] = []
    for group in decoder.groups:
        for enc in group.encodings:
            if enc.name not in names:
                names.append(enc.name)
    ret = mcgen('''

enum class %(opcode_enum)s {
  kNone = 0,
''',
                opcode_enum=decoder.opcode_enum)
    for i, name in enumerate(names, 1):
        ret += mcgen('''
  k%(c_name)s = %(i)d,
''',
                     c_name=camel_case(name), i=i)
    ret += mcgen('''
};
''')
    return ret


class _GroupGenerator:
    """Decode functions for one instruction group."""
    def __init__(self, group: InstructionGroup, opcode_enum: str):
        self.group = group
        self.opcode_enum = opcode_enum
        self.word_type = int_type_name(group.width)
        self.declarations = ''
        self.tables = ''
        self.definitions = ''

    def _signature(self, name: str) -> str:
        return '%s Decode%s(%s inst_word)' % (self.opcode_enum, name,
                                             self.word_type)

    def _none(self) -> str:
        return '%s::kNone' % self.opcode_enum

    def _opcode(self, name: str) -> str:
        return '%s::k%s' % (self.opcode_enum, camel_case(name))

    def gen(self) -> Tuple[str, str]:
        """
        :return: the header declaration and the source definitions.
        """
        group_name = self.group.name
        self.declarations += mcgen('''
%(signature)s;
''',
                                   signature=self._signature(group_name
                                                             + 'None'))
        self.definitions += mcgen('''

%(signature)s {
  return %(none)s;
}
''',
                                  signature=self._signature(group_name
                                                            + 'None'),
                                  none=self._none())
        top = mcgen('''

%(signature)s {
''',
                    signature=self._signature(group_name))
        roots = self.group.sorted_roots()
        if not roots:
            top += mcgen('''
  return %(none)s;
''',
                         none=self._none())
        for i, root in enumerate(roots):
            name = '%s_%x' % (group_name, i)
            self.gen_node(root, name)
            top += mcgen('''
  %(assign)sDecode%(name)s(inst_word);
''',
                         assign=('%s opcode = ' % self.opcode_enum
                                 if i == 0 else 'opcode = '),
                         name=name)
            if i < len(roots) - 1:
                top += mcgen('''
  if (opcode != %(none)s) return opcode;
''',
                             none=self._none())
        if roots:
            top += mcgen('''
  return opcode;
''')
        top += mcgen('''
}
''')
        decl = mcgen('''

%(signature)s;
''',
                     signature=self._signature(group_name))
        source = (self.declarations + self.tables + self.definitions + top)
        return decl, source

    def _constant_test(self, node: EncodingGroup) -> str:
        if not node.constant:
            return ''
        value = node.encodings[0].value & node.constant
        return mcgen('''
  if ((inst_word & %(constant)#x) != %(value)#x) return %(none)s;
''',
                     constant=node.constant, value=value, none=self._none())

    def _index_extraction(self, node: EncodingGroup) -> str:
        if not node.discriminator_recipe:
            return ''
        ret = mcgen('''
  %(word_type)s index;
''',
                    word_type=self.word_type)
        return ret + write_extraction(node.discriminator_recipe,
                                      'inst_word', 'index', '  ')

    def gen_node(self, node: EncodingGroup, name: str) -> None:
        self.declarations += mcgen('''
%(signature)s;
''',
                                   signature=self._signature(name))
        body = ''
        if not node.is_leaf:
            body += self._gen_dispatch(node, name)
        elif node.simple_decoding:
            body += self._gen_simple_leaf(node)
        else:
            body += self._constant_test(node) + self._index_extraction(node)
            body += self._gen_complex_leaf(node)
        self.definitions += mcgen('''

%(signature)s {
%(body)s}
''',
                                  signature=self._signature(name), body=body)
        for child in node.sub_groups:
            index = node.discriminator_value(child.encodings[0])
            self.gen_node(child, '%s_%x' % (name, index))

    def _gen_dispatch(self, node: EncodingGroup, name: str) -> str:
        children: Dict[int, EncodingGroup] = {}
        for child in node.sub_groups:
            children[node.discriminator_value(child.encodings[0])] = child
        self.tables += mcgen('''

static constexpr %(opcode_enum)s (*parse_group_%(name)s[%(size)d])(
    %(word_type)s) = {
''',
                             opcode_enum=self.opcode_enum, name=name,
                             size=node.discriminator_size,
                             word_type=self.word_type)
        for index in range(node.discriminator_size):
            if index in children:
                target = '%s_%x' % (name, index)
            else:
                target = self.group.name + 'None'
            self.tables += mcgen('''
    &Decode%(target)s,
''',
                                 target=target)
        self.tables += mcgen('''
};
''')
        return (self._constant_test(node) + self._index_extraction(node)
                + mcgen('''
  return parse_group_%(name)s[index](inst_word);
''',
                        name=name))

    def _gen_simple_leaf(self, node: EncodingGroup) -> str:
        if len(node.encodings) == 1:
            return self._constant_test(node) + mcgen('''
  return %(opcode)s;
''',
                                                     opcode=self._opcode(
                                                         node.encodings[0]
                                                         .name))
        ret = mcgen('''
  static constexpr %(opcode_enum)s opcodes[%(size)d] = {
''',
                    opcode_enum=self.opcode_enum,
                    size=node.discriminator_size)
        for enc in node.opcode_table():
            ret += mcgen('''
    %(opcode)s,
''',
                         opcode=(self._opcode(enc.name) if enc is not None
                                 else self._none()))
        ret += mcgen('''
  };
''')
        ret += self._constant_test(node) + self._index_extraction(node)
        ret += mcgen('''
  return opcodes[index];
''')
        return ret

    def _value_type(self, width: int) -> str:
        if width > self.group.width:
            return int_type_name(width)
        return self.word_type

    def _gen_extraction(self, constraint: Constraint, rhs: bool,
                        extracted: Set[str]) -> str:
        if rhs:
            field, overlay = constraint.rhs_field, constraint.rhs_overlay
        else:
            field, overlay = constraint.field, constraint.overlay
        if field is not None:
            var = field.name + '_value'
            if var in extracted:
                return ''
            extracted.add(var)
            return mcgen('''
  %(c_type)s %(var)s = (inst_word >> %(low)d) & %(mask)#x;
''',
                         c_type=self._value_type(field.width), var=var,
                         low=field.low, mask=low_mask(field.width))
        assert overlay is not None
        var = overlay.name + '_value'
        if var in extracted:
            return ''
        extracted.add(var)
        return mcgen('''
  %(c_type)s %(var)s;
''',
                     c_type=self._value_type(overlay.declared_width),
                     var=var) + overlay.write_simple_value_extractor(
                         'inst_word', var)

    def _gen_complex_leaf(self, node: EncodingGroup) -> str:
        ret = ''
        extracted: Set[str] = set()
        for rule in node.decode_rules():
            conditions = []
            for constraint in rule.conditions:
                ret += self._gen_extraction(constraint, False, extracted)
                if constraint.rhs_name is not None:
                    ret += self._gen_extraction(constraint, True, extracted)
                    rhs = constraint.rhs_name + '_value'
                else:
                    rhs = '%#x' % constraint.value
                conditions.append('(%s_value %s %s)' % (
                    constraint.name, constraint.type.value, rhs))
            if rule.index is not None:
                conditions.insert(0, '(index == %#x)' % rule.index)
            opcode = self._opcode(rule.encoding.name)
            if not conditions:
                ret += mcgen('''
  return %(opcode)s;
''',
                             opcode=opcode)
                # Nothing after an unconditional return is reachable.
                return ret
            cond = ' &&\n      '.join(conditions)
            if len(conditions) > 1:
                cond = '(%s)' % cond
            ret += mcgen('''
  if %(cond)s
    return %(opcode)s;
''',
                         cond=cond, opcode=opcode)
        ret += mcgen('''
  return %(none)s;
''',
                     none=self._none())
        return ret


def _include_line(name: str) -> str:
    if name.startswith('<'):
        return '#include %s\n' % name
    return '#include "%s"\n' % name


def gen_decoder(container: Container, decoder: Decoder,
                prefix: str) -> Tuple[GenH, GenC]:
    """Return the header and source file objects for DECODER."""
    h_name = prefix + '_bin_decoder.h'
    blurb = 'Decoder functions for decoder %s.' % decoder.name
    genh = GenH(h_name, blurb)
    genc = GenC(prefix + '_bin_decoder.cc', blurb)

    genh.preamble_add(mcgen('''
#include <algorithm>
#include <cstdint>
'''))
    for include in decoder.include_files:
        genh.preamble_add(_include_line(include))
    genh.preamble_add('\n' + gen_namespace_open(decoder.namespaces))
    genc.preamble_add(mcgen('''
#include "%(h_name)s"

''',
                            h_name=h_name))
    genc.preamble_add(gen_namespace_open(decoder.namespaces))

    formats = container.formats
    if any(fmt.int_type_bits < 0 for fmt in formats):
        genh.add(_EXTRACT_BITS)
    if not decoder.include_files:
        genh.add(gen_opcode_enum(decoder))
    # Extractors promoted to a base format use the derived format's types.
    for fmt in formats:
        if fmt.layout is Layout.PACKED_STRUCT:
            genh.add(gen_packed_struct_types(fmt))
    for fmt in formats:
        genh.add(gen_format_extractors(fmt))
    for group in decoder.groups:
        decl, source = _GroupGenerator(group, decoder.opcode_enum).gen()
        genh.add(decl)
        genc.add(source)
    genh.add('\n' + gen_namespace_close(decoder.namespaces))
    genc.add('\n' + gen_namespace_close(decoder.namespaces))
    LOG.debug("decoder %s: generated %s", decoder.name, h_name)
    return genh, genc
