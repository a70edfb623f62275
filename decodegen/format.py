# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Instruction formats

A `Format` is a fixed width template for an instruction word.  Its
components (fields and references to other formats) are packed from the
most significant bit down in declaration order.  A format may derive from
a base format of the same width, and owns the overlays defined on it.
"""

from enum import Enum
import logging
from typing import (
    TYPE_CHECKING,
    Dict,
    List,
    Optional,
)

from .common import int_type_bit_width, int_type_name, low_mask
from .error import ErrorKind, SemanticError
from .overlay import Overlay
from .source import SourceInfo


if TYPE_CHECKING:
    from .container import Container


LOG = logging.getLogger(__name__)

MAX_FIELD_WIDTH = 64


class Layout(Enum):
    DEFAULT = 'default'
    PACKED_STRUCT = 'packed_struct'


class Field:
    """A named bit slice of a format."""
    def __init__(self, name: str, is_signed: bool, width: int,
                 fmt: 'Format'):
        self.name = name
        self.is_signed = is_signed
        self.width = width
        self.format = fmt
        # Computed by Format.compute_and_check_width()
        self.high = -1
        self.low = -1

    @property
    def mask(self) -> int:
        return low_mask(self.width) << self.low

    def __repr__(self) -> str:
        return "<%s %s[%d:%d]>" % (type(self).__name__, self.name,
                                   self.high, self.low)


class FieldOrFormat:
    """
    One component of a format: a field, or `size` consecutive copies of
    another format.

    A format reference is created with the name of its target; the target
    itself is looked up during width computation.  `owner` is the format
    the component is declared in.
    """
    def __init__(self, field: Optional[Field] = None,
                 format_alias: Optional[str] = None,
                 format_name: Optional[str] = None,
                 size: int = 1,
                 owner: Optional['Format'] = None):
        assert (field is None) != (format_name is None)
        self.field = field
        self.format_alias = format_alias or format_name
        self.format_name = format_name
        self.size = size
        self.format: Optional['Format'] = None
        self.owner = field.format if field is not None else owner
        self.high = -1

    @property
    def is_field(self) -> bool:
        return self.field is not None

    @property
    def packed(self) -> bool:
        """True if the component is read through a packed struct."""
        return (self.owner is not None
                and self.owner.layout is Layout.PACKED_STRUCT)

    @property
    def name(self) -> str:
        if self.field is not None:
            return self.field.name
        assert self.format_alias is not None
        return self.format_alias

    @property
    def width(self) -> int:
        if self.field is not None:
            return self.field.width
        assert self.format is not None
        return self.format.declared_width * self.size

    @property
    def low(self) -> int:
        if self.field is not None:
            return self.field.low
        return self.high - self.width + 1

    def __eq__(self, other: object) -> bool:
        # Two extractors are the same when they pick the same bits the
        # same way.
        if not isinstance(other, FieldOrFormat):
            return NotImplemented
        if self.is_field != other.is_field or self.packed != other.packed:
            return False
        if self.field is not None:
            assert other.field is not None
            return (self.field.high == other.field.high
                    and self.field.width == other.field.width
                    and self.field.is_signed == other.field.is_signed)
        return (self.format is other.format
                and self.high == other.high
                and self.size == other.size)

    __hash__ = None  # type: ignore

    def __repr__(self) -> str:
        if self.field is not None:
            return repr(self.field)
        return "<%s %s %s[%d]>" % (type(self).__name__, self.format_name,
                                   self.format_alias, self.size)


class Format:
    """
    A named, fixed width instruction format.

    The mutators (`add_field`, `add_format_reference`, `add_overlay`)
    and `compute_and_check_width` raise `SemanticError`.  Callers that
    want problems collected instead wrap them in `ErrorSink.catching`,
    as `ContainerBuilder` and `Container.check_formats` do.

    :param name: Format name, unique in the container.
    :param width: Declared width in bits.
    :param container: The owning container, used to resolve names.
    :param base_format_name: Name of the base format, if any.
    :param info: Source location of the definition.
    """
    def __init__(self, name: str, width: int, container: 'Container',
                 base_format_name: Optional[str] = None,
                 info: Optional[SourceInfo] = None):
        self.name = name
        self.declared_width = width
        self.computed_width = 0
        self.container = container
        self.base_format_name = base_format_name
        self.info = info
        self.layout = Layout.DEFAULT
        self.base_format: Optional[Format] = None
        self.derived_formats: List[Format] = []
        self.components: List[FieldOrFormat] = []
        self._field_map: Dict[str, Field] = {}
        self._overlay_map: Dict[str, Overlay] = {}
        # A None value marks an extractor that could not be promoted.
        self.extractors: Dict[str, Optional[FieldOrFormat]] = {}
        self.overlay_extractors: Dict[str, Optional[Overlay]] = {}
        self._checked = False

    def _check_name(self, name: str) -> None:
        if name in self._field_map:
            raise SemanticError(
                ErrorKind.DUPLICATE_NAME,
                f"Field '{name}' already defined in format '{self.name}'")
        if name in self._overlay_map:
            raise SemanticError(
                ErrorKind.DUPLICATE_NAME,
                f"Overlay '{name}' already defined in format '{self.name}'")
        for component in self.components:
            if not component.is_field and component.name == name:
                raise SemanticError(
                    ErrorKind.DUPLICATE_NAME,
                    f"Format reference '{name}' already defined in format "
                    f"'{self.name}'")

    def add_field(self, name: str, is_signed: bool, width: int) -> Field:
        self._check_name(name)
        if width < 1:
            raise SemanticError(
                ErrorKind.OUT_OF_RANGE,
                f"Field '{name}' in format '{self.name}' must be at least "
                "one bit wide")
        if width > MAX_FIELD_WIDTH:
            raise SemanticError(
                ErrorKind.WIDTH_MISMATCH,
                f"Field '{name}' in format '{self.name}' is wider than "
                f"{MAX_FIELD_WIDTH} bits")
        field = Field(name, is_signed, width, self)
        self._field_map[name] = field
        self.components.append(FieldOrFormat(field=field))
        return field

    def add_format_reference(self, alias: Optional[str], format_name: str,
                             size: int = 1) -> FieldOrFormat:
        """Add SIZE copies of format FORMAT_NAME, resolved later."""
        self._check_name(alias or format_name)
        if size < 1:
            raise SemanticError(
                ErrorKind.OUT_OF_RANGE,
                f"Format reference '{alias or format_name}' in format "
                f"'{self.name}' must have a size of at least one")
        if size > 1 and self.layout is Layout.PACKED_STRUCT:
            raise SemanticError(
                ErrorKind.OUT_OF_RANGE,
                f"Format reference '{alias or format_name}' in format "
                f"'{self.name}': formats in packed struct layouts can not "
                "be replicated")
        ref = FieldOrFormat(format_alias=alias, format_name=format_name,
                            size=size, owner=self)
        self.components.append(ref)
        return ref

    def add_overlay(self, name: str, is_signed: bool, width: int) -> Overlay:
        self._check_name(name)
        if width < 1:
            raise SemanticError(
                ErrorKind.OUT_OF_RANGE,
                f"Overlay '{name}' in format '{self.name}' must be at least "
                "one bit wide")
        if width > MAX_FIELD_WIDTH:
            raise SemanticError(
                ErrorKind.WIDTH_MISMATCH,
                f"Overlay '{name}' in format '{self.name}' is wider than "
                f"{MAX_FIELD_WIDTH} bits")
        overlay = Overlay(name, is_signed, width, self)
        self._overlay_map[name] = overlay
        return overlay

    def get_field(self, name: str) -> Optional[Field]:
        return self._field_map.get(name)

    def get_overlay(self, name: str) -> Optional[Overlay]:
        return self._overlay_map.get(name)

    @property
    def fields(self) -> List[Field]:
        return list(self._field_map.values())

    @property
    def overlays(self) -> List[Overlay]:
        return list(self._overlay_map.values())

    def _lookup_base(self) -> Optional['Format']:
        if self.base_format is not None or self.base_format_name is None:
            return self.base_format
        return self.container.get_format(self.base_format_name)

    def compute_and_check_width(self) -> None:
        """
        Resolve the base format and format references, and lay out fields.

        :raise SemanticError: on an unresolved name, on a width that
            differs from the base format's, when the component widths
            do not add up to the declared width, or on a packed struct
            layout wider than 64 bits.
        """
        if self._checked:
            return
        if (self.layout is Layout.PACKED_STRUCT
                and self.declared_width > MAX_FIELD_WIDTH):
            raise SemanticError(
                ErrorKind.WIDTH_MISMATCH,
                f"Format '{self.name}' with a packed struct layout is wider "
                f"than {MAX_FIELD_WIDTH} bits", self.info)
        if self.base_format_name is not None:
            base = self.container.get_format(self.base_format_name)
            if base is None:
                raise SemanticError(
                    ErrorKind.UNRESOLVED_REFERENCE,
                    f"Format '{self.name}' refers to undefined base format "
                    f"'{self.base_format_name}'", self.info)
            ancestor: Optional[Format] = base
            seen = set()
            while ancestor is not None and ancestor.name not in seen:
                if ancestor is self:
                    raise SemanticError(
                        ErrorKind.UNRESOLVED_REFERENCE,
                        f"Format '{self.name}' inherits from itself",
                        self.info)
                seen.add(ancestor.name)
                ancestor = ancestor._lookup_base()
            if base.declared_width != self.declared_width:
                raise SemanticError(
                    ErrorKind.WIDTH_MISMATCH,
                    f"Format '{self.name}' ({self.declared_width}) differs "
                    f"in width from base format '{base.name}' "
                    f"({base.declared_width})", self.info)
            self.base_format = base
            base.derived_formats.append(self)

        self.computed_width = 0
        for component in self.components:
            high = self.declared_width - self.computed_width - 1
            if component.field is not None:
                component.field.high = high
                component.field.low = high - component.field.width + 1
                self.computed_width += component.field.width
                self.extractors[component.name] = component
                continue
            if component.format is None:
                assert component.format_name is not None
                target = self.container.get_format(component.format_name)
                if target is None:
                    raise SemanticError(
                        ErrorKind.UNRESOLVED_REFERENCE,
                        f"Format '{self.name}' refers to undefined format "
                        f"'{component.format_name}'", self.info)
                component.format = target
            component.high = high
            self.computed_width += component.width
            self.extractors[component.name] = component
        if self.computed_width != self.declared_width:
            raise SemanticError(
                ErrorKind.WIDTH_MISMATCH,
                f"Format '{self.name}' declared width ({self.declared_width}) "
                f"differs from computed width ({self.computed_width})",
                self.info)

        for name, overlay in self._overlay_map.items():
            overlay.check_width()
            overlay.compute_high_low()
            self.overlay_extractors[name] = overlay
        self._checked = True
        LOG.debug("format %s: %d bits, %d components, %d overlays",
                  self.name, self.declared_width, len(self.components),
                  len(self._overlay_map))

    def propagate_extractors_up(self) -> None:
        """
        Try to hoist extractors into the base format.

        Derived formats are handled first, so an extractor can climb more
        than one level.  An extractor that conflicts with a different one
        of the same name leaves a None entry in the base, which keeps any
        later sibling from promoting it again.
        """
        for fmt in self.derived_formats:
            fmt.propagate_extractors_up()
        base = self.base_format
        if base is None:
            return
        for name, field_or_format in self.extractors.items():
            if field_or_format is None:
                continue
            if name not in base.extractors:
                base.extractors[name] = field_or_format
            elif base.extractors[name] is None:
                continue
            elif field_or_format != base.extractors[name]:
                base.extractors[name] = None
        for name, overlay in self.overlay_extractors.items():
            if overlay is None:
                continue
            if name not in base.overlay_extractors:
                base.overlay_extractors[name] = overlay
            elif base.overlay_extractors[name] is None:
                continue
            elif overlay != base.overlay_extractors[name]:
                base.overlay_extractors[name] = None

    def propagate_extractors_down(self) -> None:
        """
        Drop failed promotions, and names that are both a field or
        format extractor and an overlay extractor.
        """
        for name in list(self.extractors):
            if self.extractors[name] is None:
                del self.extractors[name]
            elif name in self.overlay_extractors:
                del self.overlay_extractors[name]
                del self.extractors[name]
        for name in list(self.overlay_extractors):
            if self.overlay_extractors[name] is None:
                del self.overlay_extractors[name]
            elif name in self.extractors:
                del self.extractors[name]
                del self.overlay_extractors[name]
        for fmt in self.derived_formats:
            fmt.propagate_extractors_down()

    def has_extract(self, name: str) -> bool:
        """True if this format or a base has a field extractor NAME."""
        if self.extractors.get(name) is not None:
            return True
        if self.base_format is not None:
            return self.base_format.has_extract(name)
        return False

    def has_overlay_extract(self, name: str) -> bool:
        """True if this format or a base has an overlay extractor NAME."""
        if self.overlay_extractors.get(name) is not None:
            return True
        if self.base_format is not None:
            return self.base_format.has_overlay_extract(name)
        return False

    def is_derived_from(self, other: 'Format') -> bool:
        fmt: Optional[Format] = self
        seen = set()
        while fmt is not None and fmt.name not in seen:
            if fmt is other:
                return True
            seen.add(fmt.name)
            fmt = fmt._lookup_base()
        return False

    @property
    def int_type_bits(self) -> int:
        return int_type_bit_width(self.declared_width)

    @property
    def uint_type_name(self) -> str:
        return int_type_name(self.declared_width)

    def __repr__(self) -> str:
        return "<%s %s[%d]>" % (type(self).__name__, self.name,
                                self.declared_width)
