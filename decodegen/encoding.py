# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Instruction encodings and their constraints
"""

from enum import Enum
from typing import List, Optional, Tuple

from .common import low_mask
from .error import ErrorKind, SemanticError
from .format import Field, Format
from .overlay import Overlay
from .source import SourceInfo


class ConstraintType(Enum):
    EQ = '=='
    NE = '!='
    LT = '<'
    LE = '<='
    GT = '>'
    GE = '>='

    @property
    def is_ordering(self) -> bool:
        return self not in (ConstraintType.EQ, ConstraintType.NE)

    def evaluate(self, lhs: int, rhs: int) -> bool:
        if self is ConstraintType.EQ:
            return lhs == rhs
        if self is ConstraintType.NE:
            return lhs != rhs
        if self is ConstraintType.LT:
            return lhs < rhs
        if self is ConstraintType.LE:
            return lhs <= rhs
        if self is ConstraintType.GT:
            return lhs > rhs
        return lhs >= rhs


class Constraint:
    """
    A comparison of a field or overlay against a value, or against a
    second field or overlay of the same format.
    """
    def __init__(self, op: ConstraintType,
                 field: Optional[Field] = None,
                 overlay: Optional[Overlay] = None,
                 value: int = 0,
                 rhs_field: Optional[Field] = None,
                 rhs_overlay: Optional[Overlay] = None):
        assert (field is None) != (overlay is None)
        self.type = op
        self.field = field
        self.overlay = overlay
        self.value = value
        self.rhs_field = rhs_field
        self.rhs_overlay = rhs_overlay
        # Set when the bits are already checked further up the decode tree
        self.can_ignore = False

    @property
    def name(self) -> str:
        if self.field is not None:
            return self.field.name
        assert self.overlay is not None
        return self.overlay.name

    @property
    def rhs_name(self) -> Optional[str]:
        if self.rhs_field is not None:
            return self.rhs_field.name
        if self.rhs_overlay is not None:
            return self.rhs_overlay.name
        return None

    @property
    def mask(self) -> int:
        """Instruction word bits read by the constraint."""
        mask = _target_mask(self.field, self.overlay)
        if self.rhs_field is not None or self.rhs_overlay is not None:
            mask |= _target_mask(self.rhs_field, self.rhs_overlay)
        return mask

    def copy(self) -> 'Constraint':
        return Constraint(self.type, self.field, self.overlay, self.value,
                          self.rhs_field, self.rhs_overlay)

    def __repr__(self) -> str:
        rhs = self.rhs_name or hex(self.value)
        return "<%s %s %s %s>" % (type(self).__name__, self.name,
                                  self.type.value, rhs)


def _target_mask(field: Optional[Field], overlay: Optional[Overlay]) -> int:
    if field is not None:
        return field.mask
    assert overlay is not None
    return overlay.mask


class InstructionEncoding:
    """
    A named opcode and the constraints its encoding puts on a format.

    Equality constraints on plain bits make up `mask` and `value`.
    Equality constraints on overlays that contain literal bits go to
    `equal_extracted_constraints`, everything else to
    `other_constraints`.
    """
    def __init__(self, name: str, fmt: Format,
                 info: Optional[SourceInfo] = None):
        self.name = name
        self.format = fmt
        self.info = info
        self.equal_constraints: List[Constraint] = []
        self.equal_extracted_constraints: List[Constraint] = []
        self.other_constraints: List[Constraint] = []
        self._mask_set = False
        self._mask = 0
        self._value = 0
        self._extracted_mask = 0
        self._other_mask = 0

    def _resolve(self, name: str) -> Tuple[Optional[Field],
                                           Optional[Overlay], int, bool]:
        field = self.format.get_field(name)
        if field is not None:
            return field, None, field.width, field.is_signed
        overlay = self.format.get_overlay(name)
        if overlay is not None:
            return None, overlay, overlay.computed_width, overlay.is_signed
        raise SemanticError(
            ErrorKind.UNRESOLVED_REFERENCE,
            f"Encoding '{self.name}': format '{self.format.name}' has no "
            f"field or overlay named '{name}'", self.info)

    def _check_value(self, op: ConstraintType, name: str, width: int,
                     is_signed: bool, value: int) -> int:
        if is_signed:
            if op.is_ordering:
                raise SemanticError(
                    ErrorKind.ILLEGAL_CONSTRAINT,
                    f"Encoding '{self.name}': only == and != can be used "
                    f"with signed field or overlay '{name}'", self.info)
            lo = -(1 << (width - 1))
            hi = 1 << (width - 1)
        else:
            lo = 0
            hi = 1 << width
        if not lo <= value < hi:
            raise SemanticError(
                ErrorKind.OUT_OF_RANGE,
                f"Encoding '{self.name}': value {value} does not fit in "
                f"'{name}' ({width} bits)", self.info)
        return value & low_mask(width)

    def add_equal(self, name: str, value: int) -> Constraint:
        field, overlay, width, is_signed = self._resolve(name)
        value = self._check_value(ConstraintType.EQ, name, width, is_signed,
                                  value)
        constraint = Constraint(ConstraintType.EQ, field, overlay, value)
        if overlay is not None and overlay.must_be_extracted:
            self.equal_extracted_constraints.append(constraint)
        else:
            self.equal_constraints.append(constraint)
        self._mask_set = False
        return constraint

    def add_other(self, op: ConstraintType, name: str,
                  value: int) -> Constraint:
        if op is ConstraintType.EQ:
            return self.add_equal(name, value)
        field, overlay, width, is_signed = self._resolve(name)
        value = self._check_value(op, name, width, is_signed, value)
        constraint = Constraint(op, field, overlay, value)
        self.other_constraints.append(constraint)
        self._mask_set = False
        return constraint

    def add_other_field(self, op: ConstraintType, name: str,
                        rhs_name: str) -> Constraint:
        """Add a constraint comparing two fields or overlays."""
        field, overlay, _, is_signed = self._resolve(name)
        rhs_field, rhs_overlay, _, rhs_signed = self._resolve(rhs_name)
        if op.is_ordering and (is_signed or rhs_signed):
            raise SemanticError(
                ErrorKind.ILLEGAL_CONSTRAINT,
                f"Encoding '{self.name}': only == and != can be used to "
                f"compare signed '{name}' and '{rhs_name}'", self.info)
        constraint = Constraint(op, field, overlay, 0, rhs_field,
                                rhs_overlay)
        self.other_constraints.append(constraint)
        self._mask_set = False
        return constraint

    def compute_mask_and_value(self) -> None:
        self._mask = 0
        self._value = 0
        for constraint in self.equal_constraints:
            if constraint.field is not None:
                field = constraint.field
                self._mask |= field.mask
                self._value |= constraint.value << field.low
            else:
                assert constraint.overlay is not None
                self._mask |= constraint.overlay.mask
                self._value |= constraint.overlay.get_bit_field(
                    constraint.value)
        self._value &= self._mask
        self._extracted_mask = 0
        for constraint in self.equal_extracted_constraints:
            self._extracted_mask |= constraint.mask
        self._other_mask = 0
        for constraint in self.other_constraints:
            self._other_mask |= constraint.mask
        self._mask_set = True

    def _ensure_mask(self) -> None:
        if not self._mask_set:
            self.compute_mask_and_value()

    @property
    def mask(self) -> int:
        self._ensure_mask()
        return self._mask

    @property
    def value(self) -> int:
        self._ensure_mask()
        return self._value

    @property
    def extracted_mask(self) -> int:
        self._ensure_mask()
        return self._extracted_mask

    @property
    def other_mask(self) -> int:
        self._ensure_mask()
        return self._other_mask

    @property
    def combined_mask(self) -> int:
        self._ensure_mask()
        return self._mask | self._extracted_mask | self._other_mask

    def copy(self) -> 'InstructionEncoding':
        enc = InstructionEncoding(self.name, self.format, self.info)
        enc.equal_constraints = [c.copy() for c in self.equal_constraints]
        enc.equal_extracted_constraints = [
            c.copy() for c in self.equal_extracted_constraints]
        enc.other_constraints = [c.copy() for c in self.other_constraints]
        return enc

    def __repr__(self) -> str:
        return "<%s %s>" % (type(self).__name__, self.name)
