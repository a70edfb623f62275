# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
decodegen error classes and the diagnostic sink

Entity mutators raise `SemanticError`; the pipeline catches those and
routes them into an `ErrorSink` so that every problem in an input is
reported in one run.
"""

from contextlib import contextmanager
from enum import Enum
import logging
from typing import (
    TYPE_CHECKING,
    Iterator,
    List,
    NamedTuple,
    Optional,
)

from .source import SourceInfo


if TYPE_CHECKING:
    from .parser import BinFormatParser


LOG = logging.getLogger(__name__)


class ErrorKind(Enum):
    """Category of a diagnostic."""
    DUPLICATE_NAME = 'duplicate-name'
    WIDTH_MISMATCH = 'width-mismatch'
    UNRESOLVED_REFERENCE = 'unresolved-reference'
    OUT_OF_RANGE = 'out-of-range'
    ILLEGAL_CONSTRAINT = 'illegal-constraint'
    DUPLICATE_ENCODING = 'duplicate-encoding'
    DECODER_MISCONFIG = 'decoder-misconfig'
    FORMAT_MISMATCH = 'format-mismatch'
    SYNTAX = 'syntax'
    # Warnings
    DUPLICATE_OPCODE = 'duplicate-opcode'
    EMPTY_GROUP = 'empty-group'
    LITERAL_WIDTH = 'literal-width'


class DecodeGenError(Exception):
    """Base class for all exceptions from the decodegen package."""


class SourceError(DecodeGenError):
    """Error class for all exceptions that may identify a source location."""
    def __init__(self, info: Optional[SourceInfo], msg: str,
                 col: Optional[int] = None):
        super().__init__()
        self.info = info
        self.msg = msg
        self.col = col

    def __str__(self) -> str:
        if self.info is None:
            return self.msg
        loc = str(self.info)
        if self.col is not None:
            loc += ':%s' % self.col
        return loc + ': ' + self.msg


class ParseError(SourceError):
    """Error class for all surface syntax errors."""
    def __init__(self, parser: 'BinFormatParser', msg: str):
        col = 1
        for ch in parser.src[parser.line_pos:parser.pos]:
            if ch == '\t':
                col = (col + 7) % 8 + 1
            else:
                col += 1
        super().__init__(parser.info, msg, col)


class SemanticError(SourceError):
    """Error class for semantic errors in the decoder description."""
    def __init__(self, kind: ErrorKind, msg: str,
                 info: Optional[SourceInfo] = None):
        super().__init__(info, msg)
        self.kind = kind


class Diagnostic(NamedTuple):
    kind: ErrorKind
    info: Optional[SourceInfo]
    msg: str
    is_warning: bool = False

    def __str__(self) -> str:
        text = self.msg
        if self.is_warning:
            text = 'warning: ' + text
        if self.info is None:
            return text
        return f"{self.info}: {text}"


class ErrorSink:
    """
    Accumulates errors and warnings.

    Nothing here raises; the owner inspects `has_errors` once the
    pipeline has run and declines to emit code if it is set.
    """
    def __init__(self) -> None:
        self.diagnostics: List[Diagnostic] = []

    def report(self, kind: ErrorKind, info: Optional[SourceInfo],
               msg: str) -> None:
        """Record an error."""
        diag = Diagnostic(kind, info, msg)
        LOG.error("%s", diag)
        self.diagnostics.append(diag)

    def warn(self, kind: ErrorKind, info: Optional[SourceInfo],
             msg: str) -> None:
        """Record a warning."""
        diag = Diagnostic(kind, info, msg, is_warning=True)
        LOG.warning("%s", diag)
        self.diagnostics.append(diag)

    def report_exception(self, err: SemanticError,
                         info: Optional[SourceInfo] = None) -> None:
        self.report(err.kind, err.info or info, err.msg)

    @contextmanager
    def catching(self, info: Optional[SourceInfo] = None) -> Iterator[None]:
        """
        Report a `SemanticError` raised in the managed block.

        :param info: location to attach if the error carries none.
        """
        try:
            yield
        except SemanticError as err:
            self.report_exception(err, info)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_warning]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_warning]

    @property
    def has_errors(self) -> bool:
        return any(not d.is_warning for d in self.diagnostics)

    def kinds(self) -> List[ErrorKind]:
        return [d.kind for d in self.diagnostics]
