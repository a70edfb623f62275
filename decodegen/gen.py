# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Generated output files

A `GenFile` accumulates a preamble and a body, and is written out only
when its content differs from what is already on disk, so that build
systems do not rebuild from unchanged generated sources.
"""

import logging
import os

from .common import guardend, guardstart, mcgen


LOG = logging.getLogger(__name__)


class GenFile:
    def __init__(self, fname: str):
        self.fname = fname
        self._preamble = ''
        self._body = ''

    def preamble_add(self, text: str) -> None:
        self._preamble += text

    def add(self, text: str) -> None:
        self._body += text

    def get_content(self) -> str:
        return self._top() + self._preamble + self._body + self._bottom()

    def _top(self) -> str:
        return ''

    def _bottom(self) -> str:
        return ''

    def write(self, output_dir: str) -> bool:
        """
        Write the file into OUTPUT_DIR.

        :return: True if the file was (re)written.
        """
        pathname = os.path.join(output_dir, self.fname)
        odir = os.path.dirname(pathname)

        if odir:
            os.makedirs(odir, exist_ok=True)

        # use os.open for O_CREAT to create and read a non-existent file
        fd = os.open(pathname, os.O_RDWR | os.O_CREAT, 0o666)
        with os.fdopen(fd, 'r+', encoding='utf-8') as fp:
            text = self.get_content()
            oldtext = fp.read(len(text) + 1)
            if text == oldtext:
                LOG.debug("%s unchanged", pathname)
                return False
            fp.seek(0)
            fp.truncate(0)
            fp.write(text)
        LOG.info("wrote %s", pathname)
        return True


class GenC(GenFile):
    def __init__(self, fname: str, blurb: str):
        super().__init__(fname)
        self._blurb = blurb

    def _top(self) -> str:
        return mcgen('''
// This file is generated by decodegen.  Do not edit.
//
// %(blurb)s

''',
                     blurb=self._blurb)


class GenH(GenC):
    def _top(self) -> str:
        return super()._top() + guardstart(self.fname)

    def _bottom(self) -> str:
        return guardend(self.fname)
