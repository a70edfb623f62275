# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Decoder tree nodes

An `EncodingGroup` holds a set of encodings together with the bits that
are known at that point of the decode: `ignore` are the bits consumed by
ancestors, `constant` the bits all encodings agree on, and
`discriminator` the bits used to pick a child or, at a leaf, an opcode.

Leaves are decoded either by table lookup on the discriminator (simple
decoding), or by checking each encoding's remaining constraints in turn.
"""

from collections import defaultdict
import logging
from typing import (
    TYPE_CHECKING,
    Dict,
    List,
    NamedTuple,
    Optional,
)

from .common import (
    MASK64,
    int_type_bit_width,
    low_mask,
    popcount,
    str_match_bits,
)
from .encoding import Constraint, InstructionEncoding
from .error import ErrorKind
from .extract import ExtractionRecipe, extract_value, get_extraction_recipe


if TYPE_CHECKING:
    from .group import InstructionGroup


LOG = logging.getLogger(__name__)


class DecodeRule(NamedTuple):
    """
    One step of a complex leaf: ENCODING is decoded when the discriminator
    equals INDEX (None when the leaf has no discriminator) and every
    constraint in CONDITIONS holds.
    """
    index: Optional[int]
    conditions: List[Constraint]
    encoding: InstructionEncoding


class EncodingGroup:
    """
    :param inst_group: The instruction group the tree belongs to.
    :param ignore: Bits already decoded by the ancestors.
    :param parent: Parent node, None for a root.
    """
    def __init__(self, inst_group: 'InstructionGroup', ignore: int = 0,
                 parent: Optional['EncodingGroup'] = None):
        self.inst_group = inst_group
        self.ignore = ignore
        self.parent = parent
        self.encodings: List[InstructionEncoding] = []
        self.sub_groups: List[EncodingGroup] = []
        self.mask = 0
        self.constant = 0
        self.varying = 0
        self.value = 0
        self.last_value = 0
        self.discriminator = 0
        self.discriminator_recipe: ExtractionRecipe = []
        self.discriminator_size = 0
        self.simple_decoding = False
        self.inst_word_bits = int_type_bit_width(inst_group.width)

    @property
    def is_leaf(self) -> bool:
        return not self.sub_groups

    def can_add_encoding(self, encoding: InstructionEncoding) -> bool:
        """An encoding can join if it shares a required bit."""
        if not self.encodings:
            return True
        return (self.mask & encoding.mask) != 0

    def add_encoding(self, encoding: InstructionEncoding) -> None:
        value = encoding.value
        if not self.encodings:
            self.last_value = value
            self.mask = encoding.mask
        self.encodings.append(encoding)
        self.mask &= encoding.mask & ~self.ignore
        self.varying |= value ^ self.last_value
        self.constant = ~self.varying & self.mask & ~self.ignore
        self.last_value = value
        self.value = self.encodings[0].value & self.constant

    def adjust_mask(self) -> None:
        """
        Drop the bits the parent already decodes, then order the
        encodings by their remaining varying bits.
        """
        if self.parent is not None:
            parent_mask = self.parent.mask
            self.constant &= ~parent_mask
            self.mask &= ~parent_mask
            self.varying &= ~parent_mask
            self.value &= ~parent_mask
        key_mask = self.mask & ~self.constant & ~self.ignore
        self.encodings.sort(key=lambda enc: enc.value & key_mask)

    def is_simple_decode(self) -> bool:
        """
        A leaf decodes by table lookup when no encoding has constraints
        beyond plain equality and the discriminator covers exactly the
        bits that vary.  Every encoding must also be fully described by
        the bits checked on the way to the leaf, else the lookup could
        accept a word the encoding rejects.
        """
        if self.sub_groups:
            return False
        for enc in self.encodings:
            if enc.other_constraints or enc.equal_extracted_constraints:
                return False
            if enc.mask & ~self.ignore & ~self.mask:
                return False
        return self.discriminator == self.varying

    def _set_discriminator(self, discriminator: int) -> None:
        self.discriminator = discriminator
        self.discriminator_recipe = get_extraction_recipe(discriminator)

    def discriminator_value(self, encoding: InstructionEncoding) -> int:
        return extract_value(encoding.value, self.discriminator_recipe)

    def add_sub_groups(self) -> None:
        """
        Split the group on its discriminator, recursing where a child
        still has undecided bits.
        """
        self.adjust_mask()
        self._set_discriminator(self.mask & ~self.constant)
        self.simple_decoding = self.is_simple_decode()
        if self.discriminator:
            self.discriminator_size = 1 << popcount(self.discriminator)
        else:
            self.discriminator_size = 0

        buckets: Dict[int, List[InstructionEncoding]] = defaultdict(list)
        for enc in self.encodings:
            buckets[self.discriminator_value(enc)].append(enc)
        # No progress if every encoding lands in the same child.
        if len(buckets) == 1:
            return

        child_ignore = self.ignore | self.constant | self.discriminator
        for index in sorted(buckets):
            child = EncodingGroup(self.inst_group, child_ignore, self)
            for enc in buckets[index]:
                child.add_encoding(enc)
            child.adjust_mask()
            if (child.varying | child.constant) != child.mask:
                self.simple_decoding = False
                child.add_sub_groups()
                max_varying = max((popcount(grp.varying)
                                   for grp in child.sub_groups), default=0)
                if max_varying < 2:
                    child.sub_groups = []
                    child.simple_decoding = child.is_simple_decode()
            else:
                child._set_discriminator(child.mask & ~child.constant)
                child.discriminator_size = 1 << popcount(child.discriminator)
                child.simple_decoding = child.is_simple_decode()
            self.sub_groups.append(child)
        self.simple_decoding = False

    def check_encodings(self) -> None:
        """Report encodings a simple leaf cannot tell apart."""
        if self.is_leaf and self.simple_decoding:
            prev: Optional[InstructionEncoding] = None
            prev_value = -1
            for enc in self.encodings:
                value = self.discriminator_value(enc)
                if prev is not None and value == prev_value:
                    self.inst_group.sink.report(
                        ErrorKind.DUPLICATE_ENCODING, enc.info,
                        f"Duplicate encodings in instruction group "
                        f"{self.inst_group.name}: {prev.name} and {enc.name}")
                prev = enc
                prev_value = value
        for grp in self.sub_groups:
            grp.check_encodings()

    def child_for(self, index: int) -> Optional['EncodingGroup']:
        """Return the child selected by discriminator value INDEX."""
        for grp in self.sub_groups:
            if self.discriminator_value(grp.encodings[0]) == index:
                return grp
        return None

    def opcode_table(self) -> List[Optional[InstructionEncoding]]:
        """
        Return the lookup table of a simple leaf, indexed by discriminator
        value, with None for the gaps.
        """
        assert self.is_leaf and self.simple_decoding
        table: List[Optional[InstructionEncoding]] = [None] * max(
            self.discriminator_size, 1)
        for enc in self.encodings:
            index = self.discriminator_value(enc)
            if table[index] is None:
                table[index] = enc
        return table

    def _covered(self, constraint: Constraint) -> bool:
        if constraint.field is not None:
            mask = constraint.field.mask
        else:
            assert constraint.overlay is not None
            overlay = constraint.overlay
            mask = overlay.get_bit_field(low_mask(overlay.declared_width))
        return (mask & ~(self.ignore | self.discriminator)) == 0

    def decode_rules(self) -> List[DecodeRule]:
        """
        Return the ordered checks of a complex leaf.  Equality constraints
        whose bits are all decided by the ancestors or the discriminator
        are marked `can_ignore` and left out.
        """
        assert self.is_leaf
        rules = []
        for enc in self.encodings:
            for constraint in enc.equal_constraints:
                constraint.can_ignore = self._covered(constraint)
            conditions = [c for c in enc.equal_constraints
                          if not c.can_ignore]
            conditions += enc.equal_extracted_constraints
            conditions += enc.other_constraints
            index = None
            if self.discriminator_recipe:
                index = self.discriminator_value(enc)
            rules.append(DecodeRule(index, conditions, enc))
        return rules

    def dump(self, prefix: str = '', indent: str = '') -> str:
        width = min(self.inst_group.width, 64)
        if self.parent is None:
            recipe = get_extraction_recipe(self.constant)
        else:
            recipe = self.parent.discriminator_recipe
        grp_value = extract_value(self.encodings[0].value, recipe)
        ret = f"{indent}{prefix}GROUP:\n"
        for label, val in (('mask', self.mask),
                           ('ignore', self.ignore & MASK64),
                           ('constant', self.constant),
                           ('varying', self.varying),
                           ('discriminator', self.discriminator)):
            ret += f"{indent}  {label + ':':<15}{val:#0{width // 4 + 2}x}\n"
        ret += f"{indent}  {'value:':<15}{grp_value:#x}\n"
        ret += f"{indent}  {'simple:':<15}{self.simple_decoding}\n"
        ret += f"{indent}  {'leaf:':<15}{self.is_leaf}\n"
        ret += f"{indent}  {'encodings:':<15}{len(self.encodings)}\n"
        if self.is_leaf:
            for enc in self.encodings:
                bits = str_match_bits(enc.value, enc.mask, width)
                ret += (f"{indent}  {enc.name}: {bits} : "
                        f"{self.discriminator_value(enc):#x}\n")
            return ret
        for grp in self.sub_groups:
            sub_prefix = f"{self.discriminator_value(grp.encodings[0]):#x}: "
            ret += grp.dump(sub_prefix, indent + '  ')
        return ret

    def __repr__(self) -> str:
        return "<%s %d encodings, discriminator %#x>" % (
            type(self).__name__, len(self.encodings), self.discriminator)
