# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

"""
Extraction recipes

A recipe packs the bits selected by a mask into a dense integer.  Each
step handles one run of contiguous one bits in the mask: the source is
shifted right by `shift` and ANDed with `mask`, and the partial results
are ORed together.  Runs are visited from the least significant bit up,
so bits keep their relative left-to-right order.
"""

from typing import List, NamedTuple

from .common import low_mask


class ExtractionStep(NamedTuple):
    mask: int
    shift: int


ExtractionRecipe = List[ExtractionStep]


def get_extraction_recipe(mask: int) -> ExtractionRecipe:
    """Return the recipe that packs the bits of MASK."""
    recipe = []
    total_width = 0
    pos = 0
    while mask >> pos:
        if not (mask >> pos) & 1:
            pos += 1
            continue
        start = pos
        while (mask >> pos) & 1:
            pos += 1
        width = pos - start
        recipe.append(ExtractionStep(low_mask(width) << total_width,
                                     start - total_width))
        total_width += width
    return recipe


def extract_value(value: int, recipe: ExtractionRecipe) -> int:
    """Apply RECIPE to VALUE."""
    result = 0
    for step in recipe:
        result |= (value >> step.shift) & step.mask
    return result


def write_extraction(recipe: ExtractionRecipe, value: str, result: str,
                     indent: str) -> str:
    """
    Return C code that applies RECIPE to the variable VALUE.

    The steps are written in recipe order; the first assigns RESULT, the
    others OR into it.  An empty recipe assigns zero.
    """
    if not recipe:
        return f'{indent}{result} = 0;\n'
    ret = ''
    assign = ' = '
    for step in recipe:
        expr = value
        if step.shift:
            expr = f'({value} >> {step.shift})'
        ret += f'{indent}{result}{assign}{expr} & {step.mask:#x};\n'
        assign = ' |= '
    return ret
