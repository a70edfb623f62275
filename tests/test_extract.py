# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

import random

from decodegen.common import MASK64, popcount
from decodegen.extract import (
    ExtractionStep,
    extract_value,
    get_extraction_recipe,
    write_extraction,
)


def test_empty_mask() -> None:
    recipe = get_extraction_recipe(0)
    assert recipe == []
    assert extract_value(0xDEADBEEF, recipe) == 0
    assert write_extraction(recipe, 'value', 'result', '  ') == \
        '  result = 0;\n'


def test_split_mask() -> None:
    recipe = get_extraction_recipe(0b1111_0111_011_01_0)
    assert extract_value(0b1010_0101_010_10_0, recipe) == 0b1010_101_10_0


def test_steps_low_run_first() -> None:
    recipe = get_extraction_recipe(0xF00F)
    assert recipe == [ExtractionStep(0xF, 0), ExtractionStep(0xF0, 8)]
    assert extract_value(0xA005, recipe) == 0xA5


def test_contiguous_mask_is_one_step() -> None:
    recipe = get_extraction_recipe(0x0FF0)
    assert recipe == [ExtractionStep(0xFF, 4)]
    assert extract_value(0x1234, recipe) == 0x23


def test_all_ones_packs_densely() -> None:
    for mask in (1, 0x8000_0000_0000_0001, 0x5555, 0xF0F0_F0F0_0000_FFFF,
                 MASK64):
        packed = extract_value(MASK64, get_extraction_recipe(mask))
        assert packed == (1 << popcount(mask)) - 1


def _gather(word: int, mask: int) -> int:
    """Concatenate the bits of WORD selected by MASK, one at a time."""
    result = 0
    for pos in range(63, -1, -1):
        if (mask >> pos) & 1:
            result = (result << 1) | ((word >> pos) & 1)
    return result


def test_extract_concatenates_selected_bits() -> None:
    rng = random.Random(0x5EED)
    masks = [0x00FF_F000_0F0F_00F0, MASK64, 1 << 63]
    masks += [rng.getrandbits(64) for _ in range(100)]
    # Sparse ones too
    masks += [rng.getrandbits(64) & rng.getrandbits(64)
              & rng.getrandbits(64) for _ in range(100)]
    for mask in masks:
        recipe = get_extraction_recipe(mask)
        for word in (0, MASK64, 0x0123_4567_89AB_CDEF,
                     rng.getrandbits(64), rng.getrandbits(64)):
            assert extract_value(word, recipe) == _gather(word, mask), \
                f'mask {mask:#x}, word {word:#x}'


def test_write_extraction_follows_recipe() -> None:
    recipe = get_extraction_recipe(0xF00F)
    assert write_extraction(recipe, 'value', 'result', '  ') == (
        '  result = value & 0xf;\n'
        '  result |= (value >> 8) & 0xf0;\n')
