# This work is licensed under the terms of the GNU GPL, version 2 or later.
# See the COPYING file in the top-level directory.

import pytest

from decodegen.container import DEFAULT_OPCODE_ENUM, Container
from decodegen.error import ErrorKind, SemanticError

from decodeutil import f16, make_format


def test_duplicate_names() -> None:
    container = Container()
    f16(container)
    with pytest.raises(SemanticError) as excinfo:
        container.add_format('F16', 16)
    assert excinfo.value.kind is ErrorKind.DUPLICATE_NAME
    container.check_formats()
    container.add_instruction_group('G', 16, 'F16')
    with pytest.raises(SemanticError) as excinfo:
        container.add_instruction_group('G', 16, 'F16')
    assert excinfo.value.kind is ErrorKind.DUPLICATE_NAME


def test_mutators_raise_passes_report() -> None:
    container = Container()
    f16(container)
    bad = make_format(container, 'Bad', 16, [('op', 4)])
    bad.add_format_reference(None, 'Nowhere')
    with container.sink.catching():
        container.add_format('Bad', 16)
    assert container.get_format('Bad') is bad
    container.check_formats()
    container.process()
    assert container.sink.kinds() == [ErrorKind.DUPLICATE_NAME,
                                      ErrorKind.UNRESOLVED_REFERENCE,
                                      ErrorKind.DECODER_MISCONFIG]


def test_format_width_must_be_positive() -> None:
    container = Container()
    with pytest.raises(SemanticError) as excinfo:
        container.add_format('Empty', 0)
    assert excinfo.value.kind is ErrorKind.OUT_OF_RANGE


def test_group_checks() -> None:
    container = Container()
    f16(container)
    make_format(container, 'Wide', 80, [('lo', 40), ('hi', 40)])
    container.check_formats()
    with pytest.raises(SemanticError) as excinfo:
        container.add_instruction_group('G', 32, 'F16')
    assert excinfo.value.kind is ErrorKind.WIDTH_MISMATCH
    with pytest.raises(SemanticError) as excinfo:
        container.add_instruction_group('G', 16, 'Nope')
    assert excinfo.value.kind is ErrorKind.UNRESOLVED_REFERENCE
    with pytest.raises(SemanticError) as excinfo:
        container.add_instruction_group('G', 80, 'Wide')
    assert excinfo.value.kind is ErrorKind.WIDTH_MISMATCH
    assert container.instruction_groups == []


def test_formats_sorted_by_name() -> None:
    container = Container()
    make_format(container, 'Zed', 8, [('z', 8)])
    make_format(container, 'Alpha', 8, [('a', 8)])
    assert [fmt.name for fmt in container.formats] == ['Alpha', 'Zed']
    assert container.get_format('Zed') is not None
    assert container.get_format('zed') is None


def test_check_formats_reports_errors() -> None:
    container = Container()
    make_format(container, 'Short', 16, [('a', 4)])
    make_format(container, 'Good', 8, [('g', 8)])
    container.check_formats()
    assert container.sink.kinds() == [ErrorKind.WIDTH_MISMATCH]


def _two_groups(container: Container) -> None:
    fmt = f16(container)
    make_format(container, 'Other', 16, [('x', 16)])
    container.check_formats()
    first = container.add_instruction_group('First', 16, 'F16')
    first.add_encoding('a', fmt).add_equal('op', 1)
    second = container.add_instruction_group('Second', 16, 'F16')
    second.add_encoding('b', fmt).add_equal('op', 2)


def test_merge_groups_copies_encodings() -> None:
    container = Container()
    _two_groups(container)
    merged = container.merge_groups('All', ['First', 'Second'])
    assert [enc.name for enc in merged.encodings] == ['a', 'b']
    first = container.get_instruction_group('First')
    assert first is not None
    assert merged.encodings[0] is not first.encodings[0]
    merged.encodings[0].add_equal('a', 3)
    assert first.encodings[0].mask == 0xF000
    assert merged.encodings[0].mask == 0xFF00


def test_merge_groups_errors() -> None:
    container = Container()
    _two_groups(container)
    container.add_instruction_group('Odd', 16, 'Other')
    with pytest.raises(SemanticError) as excinfo:
        container.merge_groups('All', [])
    assert excinfo.value.kind is ErrorKind.DECODER_MISCONFIG
    with pytest.raises(SemanticError) as excinfo:
        container.merge_groups('All', ['First', 'Missing'])
    assert excinfo.value.kind is ErrorKind.UNRESOLVED_REFERENCE
    with pytest.raises(SemanticError) as excinfo:
        container.merge_groups('All', ['First', 'Odd'])
    assert excinfo.value.kind is ErrorKind.DECODER_MISCONFIG
    assert container.get_instruction_group('All') is None


def test_merge_groups_duplicate_opcode() -> None:
    container = Container()
    _two_groups(container)
    container.merge_groups('All', ['First', 'First'])
    assert container.sink.kinds() == [ErrorKind.DUPLICATE_OPCODE]


def test_one_decoder_only() -> None:
    container = Container()
    assert container.opcode_enum == DEFAULT_OPCODE_ENUM
    decoder = container.add_decoder('Dec')
    decoder.opcode_enum = 'Op'
    assert container.opcode_enum == 'Op'
    with pytest.raises(SemanticError) as excinfo:
        container.add_decoder('Other')
    assert excinfo.value.kind is ErrorKind.DECODER_MISCONFIG
    assert 'Can only select one decoder' in excinfo.value.msg


def test_decoder_lists_group_once() -> None:
    container = Container()
    _two_groups(container)
    decoder = container.add_decoder('Dec')
    decoder.add_include_file('a.h')
    decoder.add_include_file('a.h')
    assert decoder.include_files == ['a.h']
    first = container.get_instruction_group('First')
    assert first is not None
    decoder.add_instruction_group(first)
    with pytest.raises(SemanticError) as excinfo:
        decoder.add_instruction_group(first)
    assert excinfo.value.kind is ErrorKind.DECODER_MISCONFIG


def test_process_needs_decoder_and_groups() -> None:
    container = Container()
    container.process()
    assert container.sink.kinds() == [ErrorKind.DECODER_MISCONFIG]

    container = Container()
    container.add_decoder('Dec')
    container.process()
    assert container.sink.kinds() == [ErrorKind.DECODER_MISCONFIG]
    assert 'no instruction groups' in container.sink.errors[0].msg


def test_process_builds_trees() -> None:
    container = Container()
    _two_groups(container)
    decoder = container.add_decoder('Dec')
    for name in ('First', 'Second'):
        group = container.get_instruction_group(name)
        assert group is not None
        decoder.add_instruction_group(group)
    container.process()
    assert not container.has_errors
    assert all(len(group.roots) == 1 for group in decoder.groups)
