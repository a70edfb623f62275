"""
Binary instruction decoder generator.

`decodegen` reads a description of the binary instruction formats and
encodings of an instruction set, partitions the encodings of each
instruction group into a tree of decode steps, and generates C++ decode
functions from the trees.

`Container` holds a description; `ContainerBuilder` fills one from the
declarations read by `BinFormatParser`, and `load` does both for a file.
Problems are collected by an `ErrorSink` rather than raised.
"""

# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

import logging

from .builder import ContainerBuilder, load
from .container import Container, Decoder
from .error import (
    DecodeGenError,
    ErrorKind,
    ErrorSink,
    ParseError,
    SemanticError,
)
from .parser import BinFormatParser


# Suppress logging unless an application engages it.
logging.getLogger('decodegen').addHandler(logging.NullHandler())


__all__ = (
    # Classes, most to least important
    'Container',
    'ContainerBuilder',
    'BinFormatParser',
    'Decoder',
    'ErrorSink',
    'ErrorKind',

    # Exceptions, most generic to most explicit
    'DecodeGenError',
    'ParseError',
    'SemanticError',

    # Functions
    'load',
)
