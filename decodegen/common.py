# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
decodegen helper library
"""

import re
from typing import List, Optional


MASK64 = (1 << 64) - 1


def popcount(x: int) -> int:
    """Return the number of set bits in non-negative X."""
    return bin(x).count('1')


def low_mask(width: int) -> int:
    """Return a mask of WIDTH low-order one bits."""
    return (1 << width) - 1


def int_type_bit_width(bitwidth: int) -> int:
    """
    Return the width of the smallest C integer type holding BITWIDTH bits.

    The result is one of 8, 16, 32 or 64, or -1 when BITWIDTH needs more
    than 64 bits and a byte array has to be used instead.
    """
    width = 8
    while width < bitwidth:
        width <<= 1
    if width > 64:
        return -1
    return width


def int_type_name(bitwidth: int, signed: bool = False) -> str:
    """Return the C integer type name for BITWIDTH bits."""
    if bitwidth > 64:
        return 'uint8_t *'
    prefix = '' if signed else 'u'
    return f'{prefix}int{int_type_bit_width(bitwidth)}_t'


def str_match_bits(bits: int, mask: int, width: int) -> str:
    """Return a string pretty-printing BITS/MASK over WIDTH bits"""
    r = ''
    for pos in range(width - 1, -1, -1):
        i = 1 << pos
        if i & mask:
            r += '1' if i & bits else '0'
        else:
            r += '.'
        if pos and pos % 8 == 0:
            r += ' '
    return r


# rs1_value -> Rs1Value, c_addi4spn -> CAddi4spn
def camel_case(name: str) -> str:
    return ''.join(part[:1].upper() + part[1:] for part in name.split('_'))


# RiscVGInst32 -> risc_v_g_inst32
def snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def must_match(pattern: str, string: str) -> 're.Match[str]':
    match = re.match(pattern, string)
    assert match is not None
    return match


# Generate @code with @kwds interpolated.
def cgen(code: str, **kwds: object) -> str:
    return code % kwds


def mcgen(code: str, **kwds: object) -> str:
    if code[0] == '\n':
        code = code[1:]
    return cgen(code, **kwds)


def c_fname(filename: str) -> str:
    return re.sub(r'[^A-Za-z0-9_]', '_', filename)


def guardstart(name: str) -> str:
    return mcgen('''
#ifndef %(name)s
#define %(name)s

''',
                 name=c_fname(name).upper())


def guardend(name: str) -> str:
    return mcgen('''

#endif  // %(name)s
''',
                 name=c_fname(name).upper())


def gen_namespace_open(namespaces: Optional[List[str]]) -> str:
    ret = ''
    for name in namespaces or []:
        ret += 'namespace %s {\n' % name
    return ret


def gen_namespace_close(namespaces: Optional[List[str]]) -> str:
    ret = ''
    for name in reversed(namespaces or []):
        ret += '}  // namespace %s\n' % name
    return ret
