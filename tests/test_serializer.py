import io

import pytest

from numba_explorer.errors import FramingError
from numba_explorer.serializer import format_header, read_blocks, serialize, split_args, write_block
from numba_explorer.toolchain import CallableBinding, MethodDefinition, SpecializationRecord, StageOutput

from .conftest import FakeType


def make_record(name, line, *args):
    binding = CallableBinding(name=name, value=None)
    method = MethodDefinition(binding=binding, line=line, handle=None)
    return SpecializationRecord(binding=binding, arg_types=tuple(FakeType(a) for a in args), method=method)


def test_header_layout():
    record = make_record("axpy", 5, "array(float32, 1d, A)", "float32", "array(float32, 1d, A)")
    output = StageOutput.from_text("a\nb\nc\n")
    assert format_header(record, output) == "<5 3 axpy array(float32, 1d, A), float32, array(float32, 1d, A)>"


def test_zero_arguments_keep_the_trailing_space():
    assert format_header(make_record("answer", 13), StageOutput.from_text("x\n")) == "<13 1 answer >"


def test_block_is_header_text_and_blank_line():
    stream = io.StringIO()
    write_block(stream, make_record("square", 5, "int32"), StageOutput.from_text("line one\nline two"))
    assert stream.getvalue() == "<5 2 square int32>\nline one\nline two\n\n"


def test_serialize_writes_blocks_in_order():
    stream = io.StringIO()
    blocks = [
        (make_record("f", 1, "int64"), StageOutput.from_text("f body\n")),
        (make_record("g", 9, "float64"), StageOutput.from_text("g body\n\nmore\n")),
    ]
    assert serialize(blocks, stream) == 2
    assert stream.getvalue() == "<1 1 f int64>\nf body\n\n<9 3 g float64>\ng body\n\nmore\n\n"


def test_read_blocks_uses_line_counts():
    text = "<1 1 f int64>\nf body\n\n<9 3 g float64, float64>\ng body\n\nmore\n\n"
    blocks = read_blocks(text)

    assert [(b.line, b.line_count, b.name, b.args) for b in blocks] == [
        (1, 1, "f", "int64"),
        (9, 3, "g", "float64, float64"),
    ]
    assert blocks[1].text == "g body\n\nmore\n"
    assert blocks[1].arg_list == ["float64", "float64"]


def test_read_blocks_zero_arguments():
    (block,) = read_blocks("<13 1 answer >\nbody\n\n")
    assert block.args == ""
    assert block.arg_list == []


def test_read_empty_output():
    assert read_blocks("") == []


def test_malformed_header():
    with pytest.raises(FramingError) as exc_info:
        read_blocks("not a header\n")
    assert exc_info.value.line == 1


def test_truncated_block():
    with pytest.raises(FramingError):
        read_blocks("<1 5 f int64>\nonly one line\n")


def test_missing_separator():
    with pytest.raises(FramingError) as exc_info:
        read_blocks("<1 1 f int64>\nbody\n<2 1 g int64>\nbody\n\n")
    assert exc_info.value.line == 3


def test_split_args_respects_brackets():
    assert split_args("array(float32, 1d, C), UniTuple(int64, 2), float64") == [
        "array(float32, 1d, C)",
        "UniTuple(int64, 2)",
        "float64",
    ]
