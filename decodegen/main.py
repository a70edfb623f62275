# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
decodegen

This is the main entry point for generating C++ decoders from a binary
format description.
"""

import argparse
from importlib import import_module
import logging
import sys
from typing import Optional

from .backend import CppBackend, DecoderBackend
from .builder import load
from .common import must_match, snake_case
from .error import DecodeGenError


def invalid_prefix_char(prefix: str) -> Optional[str]:
    """
    Return the first character of PREFIX that cannot start the generated
    file names, or None if PREFIX is usable.
    """
    match = must_match(r'([A-Za-z_.-][A-Za-z0-9_.-]*)?', prefix)
    if match.end() != len(prefix):
        return prefix[match.end()]
    return None


def create_backend(path: Optional[str]) -> DecoderBackend:
    """
    Return an instance of the decoder backend class at PATH, given as
    MODULE.CLASS, or the C++ backend if PATH is None.
    """
    if path is None:
        return CppBackend()

    module_path, dot, class_name = path.rpartition('.')
    if not dot:
        raise DecodeGenError(
            f"decoder backend '{path}' is not of the form MODULE.CLASS")

    try:
        mod = import_module(module_path)
    except Exception as ex:
        raise DecodeGenError(
            f"unable to import decoder backend module '{module_path}': "
            f"{ex}") from ex

    klass = getattr(mod, class_name, None)
    if klass is None:
        raise DecodeGenError(
            f"decoder backend module '{module_path}' has no class "
            f"'{class_name}'")

    try:
        backend = klass()
    except Exception as ex:
        raise DecodeGenError(
            f"decoder backend '{path}' cannot be instantiated: {ex}") from ex

    if not isinstance(backend, DecoderBackend):
        raise DecodeGenError(
            f"'{path}' is not a decoder backend: it must be an instance of "
            "DecoderBackend")

    return backend


def main() -> int:
    """
    decodegen executable entry point.
    Expects arguments via sys.argv, see --help for details.

    :return: int, 0 on success, 1 on failure.
    """
    parser = argparse.ArgumentParser(
        description='Generate a C++ instruction decoder from a binary '
        'format description')
    parser.add_argument('-o', '--output-dir', action='store',
                        default='',
                        help="write output to directory OUTPUT_DIR")
    parser.add_argument('-p', '--prefix', action='store',
                        default=None,
                        help="prefix for generated file names "
                        "(default: decoder name in snake case)")
    parser.add_argument('-d', '--decoder', action='store', default=None,
                        help="name of the decoder to generate")
    parser.add_argument('-I', '--include-dir', action='append',
                        dest='include_dirs', default=[],
                        help="search DIR for included files")
    parser.add_argument('-B', '--backend', default=None,
                        help="Python module name for code generator")
    parser.add_argument('--dump', action='store_true',
                        help="print the decoder trees")
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="log debug messages")
    parser.add_argument('input', action='store')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s: %(message)s')

    if args.prefix is not None:
        bad_char = invalid_prefix_char(args.prefix)
        if bad_char:
            msg = (f"invalid character '{bad_char}' in file name prefix "
                   f"'{args.prefix}'")
            print(f"{sys.argv[0]}: {msg}", file=sys.stderr)
            return 1

    try:
        backend = create_backend(args.backend)
        container = load(args.input, args.include_dirs, args.decoder)
        if container.has_errors:
            print(f"{args.input}: {len(container.sink.errors)} error(s), "
                  "no code generated", file=sys.stderr)
            return 1
        decoder = container.decoder
        assert decoder is not None
        if args.dump:
            for group in decoder.groups:
                print(group.dump())
        prefix = args.prefix
        if prefix is None:
            prefix = snake_case(decoder.name)
        backend.generate(container, args.output_dir, prefix)
    except DecodeGenError as err:
        print(err, file=sys.stderr)
        return 1
    except OSError as err:
        print(f"{sys.argv[0]}: {err.filename}: {err.strerror}",
              file=sys.stderr)
        return 1
    return 0
