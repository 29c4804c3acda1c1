import pytest

from loxvm.chunk import Chunk, OpCode, format_value, is_falsey, values_equal


def test_opcodes_encode_in_declaration_order():
    chunk = Chunk()
    members = list(OpCode)
    for op in members:
        chunk.write(op, 1)
    code = list(chunk.code)
    assert code[0] == OpCode.CONSTANT == 0
    assert code[-1] == OpCode.METHOD
    assert code == list(range(len(members)))
    assert chunk.lines == [1] * len(members)


def test_new_chunk_is_empty():
    chunk = Chunk()
    assert len(chunk) == 0
    assert chunk.lines == []
    assert chunk.constants == []


def test_write_records_bytes_and_lines():
    chunk = Chunk()
    chunk.write(OpCode.RETURN, 3)
    chunk.write(OpCode.NIL, 4)
    assert bytes(chunk.code) == bytes([OpCode.RETURN, OpCode.NIL])
    assert chunk.lines == [3, 4]
    assert len(chunk) == len(chunk.lines)


def test_write_rejects_values_outside_byte_range():
    chunk = Chunk()
    with pytest.raises(ValueError):
        chunk.write(256, 1)


def test_add_constant_returns_sequential_indexes():
    chunk = Chunk()
    indexes = [chunk.add_constant(v) for v in (1.5, "s", None)]
    assert indexes == [0, 1, 2]
    assert chunk.constants[indexes[1]] == "s"


def test_chunks_do_not_share_storage():
    a, b = Chunk(), Chunk()
    a.write(OpCode.POP, 1)
    a.add_constant(2.0)
    assert len(b) == 0
    assert b.constants == []


@pytest.mark.parametrize(
    "a, b, expected",
    [
        (1.0, 1.0, True),
        (1.0, 2.0, False),
        (True, True, True),
        (True, False, False),
        (None, None, True),
        (None, False, False),
        (True, 1.0, False),
        (False, 0.0, False),
        ("ab", "ab", True),
        ("ab", "ba", False),
        ("1", 1.0, False),
    ],
)
def test_values_equal(a, b, expected):
    assert values_equal(a, b) is expected
    assert values_equal(b, a) is expected


def test_objects_compare_by_identity():
    first, second = object(), object()
    assert values_equal(first, first) is True
    assert values_equal(first, second) is False


@pytest.mark.parametrize(
    "value, expected",
    [(None, True), (False, True), (True, False), (0.0, False), ("", False)],
)
def test_is_falsey(value, expected):
    assert is_falsey(value) is expected


def test_format_literals():
    assert format_value(None) == "nil"
    assert format_value(True) == "true"
    assert format_value(False) == "false"


def test_format_numbers_drop_trailing_zero():
    assert format_value(3.0) == "3"
    assert format_value(0.5) == "0.5"


def test_format_string_is_raw_text():
    assert format_value("hi there") == "hi there"


def test_format_number_round_trips_through_float():
    for value in (1.0, 2.25, -7.0, 100.0):
        assert float(format_value(value)) == value