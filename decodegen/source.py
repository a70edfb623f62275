# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Source locations

A `SourceInfo` names a position in an input file.  The core never looks
inside one; it only passes it through to the error sink.
"""

import copy
from typing import Optional, TypeVar


class SourceInfo:
    T = TypeVar('T', bound='SourceInfo')

    def __init__(self, fname: str, parent: Optional['SourceInfo']):
        self.fname = fname
        self.line = 1
        self.parent = parent

    def next_line(self: T) -> T:
        info = copy.copy(self)
        info.line += 1
        return info

    def loc(self) -> str:
        return f"{self.fname}:{self.line}"

    def include_path(self) -> str:
        ret = ''
        parent = self.parent
        while parent:
            ret = 'In file included from %s:\n' % parent.loc() + ret
            parent = parent.parent
        return ret

    def __str__(self) -> str:
        return self.include_path() + self.loc()
