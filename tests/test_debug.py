import pytest

from loxvm.chunk import Chunk, OpCode
from loxvm.debug import disassemble_chunk, disassemble_instruction
from loxvm.objects import LoxFunction


def _chunk(*pairs):
    chunk = Chunk()
    for byte, line in pairs:
        chunk.write(byte, line)
    return chunk


def test_simple_instruction_pinned():
    chunk = _chunk((OpCode.RETURN, 123))
    text, nxt = disassemble_instruction(chunk, 0)
    assert text == "0000  123 OP_RETURN"
    assert nxt == 1


def test_constant_instruction_pinned():
    chunk = Chunk()
    index = chunk.add_constant(1.2)
    chunk.write(OpCode.CONSTANT, 123)
    chunk.write(index, 123)
    text, nxt = disassemble_instruction(chunk, 0)
    assert text == "0000  123 OP_CONSTANT         0 '1.2'"
    assert nxt == 2


def test_same_line_uses_bar():
    chunk = _chunk((OpCode.NIL, 7), (OpCode.POP, 7), (OpCode.RETURN, 8))
    second, _ = disassemble_instruction(chunk, 1)
    third, _ = disassemble_instruction(chunk, 2)
    assert second.startswith("0001    | ")
    assert second.endswith("OP_POP")
    assert third.startswith("0002    8 ")


def test_byte_instruction_advances_two():
    chunk = _chunk((OpCode.GET_LOCAL, 1), (3, 1))
    text, nxt = disassemble_instruction(chunk, 0)
    assert nxt == 2
    assert text.split()[-2:] == ["OP_GET_LOCAL", "3"]


@pytest.mark.parametrize(
    "op,hi,lo,expected_target",
    [(OpCode.JUMP, 0, 5, 8), (OpCode.JUMP_IF_FALSE, 1, 0, 259)],
)
def test_forward_jump_target(op, hi, lo, expected_target):
    chunk = _chunk((op, 1), (hi, 1), (lo, 1))
    text, nxt = disassemble_instruction(chunk, 0)
    assert nxt == 3
    assert text.endswith(f"-> {expected_target}")


def test_loop_jumps_backwards():
    chunk = _chunk(*[(OpCode.NIL, 1)] * 4, (OpCode.LOOP, 1), (0, 1), (7, 1))
    text, nxt = disassemble_instruction(chunk, 4)
    assert nxt == 7
    assert text.endswith("-> 0")


def test_invoke_shows_argument_count():
    chunk = Chunk()
    index = chunk.add_constant("speak")
    for byte in (OpCode.INVOKE, index, 2):
        chunk.write(byte, 1)
    text, nxt = disassemble_instruction(chunk, 0)
    assert nxt == 3
    assert "(2 args)" in text
    assert text.endswith("'speak'")


def test_closure_lists_upvalues():
    chunk = Chunk()
    fn = LoxFunction(name="inner", upvalue_count=2)
    index = chunk.add_constant(fn)
    for byte in (OpCode.CLOSURE, index, 1, 3, 0, 0):
        chunk.write(byte, 1)
    text, nxt = disassemble_instruction(chunk, 0)
    lines = text.split("\n")
    assert nxt == 6
    assert lines[0].endswith("<fn inner>")
    assert lines[1].startswith("0002")
    assert lines[1].endswith("local 3")
    assert lines[2].startswith("0004")
    assert lines[2].endswith("upvalue 0")


def test_unknown_opcode():
    chunk = _chunk((250, 1))
    text, nxt = disassemble_instruction(chunk, 0)
    assert text.endswith("Unknown opcode 250")
    assert nxt == 1


def test_disassemble_chunk_header_and_lines():
    chunk = Chunk()
    index = chunk.add_constant(2.0)
    for byte in (OpCode.CONSTANT, index, OpCode.NEGATE, OpCode.RETURN):
        chunk.write(byte, 1)
    listing = disassemble_chunk(chunk, "test chunk")
    lines = listing.splitlines()
    assert lines[0] == "== test chunk =="
    assert len(lines) == 4
    assert [line[:4] for line in lines[1:]] == ["0000", "0002", "0003"]
    assert listing.endswith("OP_RETURN\n")


def test_disassemble_empty_chunk():
    assert disassemble_chunk(Chunk(), "empty") == "== empty ==\n"