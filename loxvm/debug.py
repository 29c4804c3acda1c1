"""Human-readable listings of bytecode chunks."""

from __future__ import annotations

from typing import Callable

from .chunk import Chunk, OpCode, format_value

_SIMPLE = frozenset({
    OpCode.NIL, OpCode.TRUE, OpCode.FALSE, OpCode.POP, OpCode.EQUAL,
    OpCode.GREATER, OpCode.LESS, OpCode.ADD, OpCode.SUBTRACT,
    OpCode.MULTIPLY, OpCode.DIVIDE, OpCode.NOT, OpCode.NEGATE,
    OpCode.PRINT, OpCode.CLOSE_UPVALUE, OpCode.RETURN, OpCode.INHERIT,
})

_CONSTANT = frozenset({
    OpCode.CONSTANT, OpCode.GET_GLOBAL, OpCode.DEFINE_GLOBAL,
    OpCode.SET_GLOBAL, OpCode.CLASS, OpCode.METHOD, OpCode.GET_PROPERTY,
    OpCode.SET_PROPERTY, OpCode.GET_SUPER,
})

_BYTE = frozenset({
    OpCode.GET_LOCAL, OpCode.SET_LOCAL, OpCode.GET_UPVALUE,
    OpCode.SET_UPVALUE, OpCode.CALL,
})

_JUMP_SIGN = {OpCode.JUMP: 1, OpCode.JUMP_IF_FALSE: 1, OpCode.LOOP: -1}


def _op_name(op: OpCode) -> str:
    return f"OP_{op.name}"


def _simple(op: OpCode, chunk: Chunk, offset: int) -> tuple[str, int]:
    return _op_name(op), offset + 1


def _constant(op: OpCode, chunk: Chunk, offset: int) -> tuple[str, int]:
    index = chunk.code[offset + 1]
    value = format_value(chunk.constants[index])
    return f"{_op_name(op):<16} {index:4d} '{value}'", offset + 2


def _byte(op: OpCode, chunk: Chunk, offset: int) -> tuple[str, int]:
    slot = chunk.code[offset + 1]
    return f"{_op_name(op):<16} {slot:4d}", offset + 2


def _jump(op: OpCode, chunk: Chunk, offset: int) -> tuple[str, int]:
    jump = (chunk.code[offset + 1] << 8) | chunk.code[offset + 2]
    target = offset + 3 + _JUMP_SIGN[op] * jump
    return f"{_op_name(op):<16} {offset:4d} -> {target}", offset + 3


def _invoke(op: OpCode, chunk: Chunk, offset: int) -> tuple[str, int]:
    index = chunk.code[offset + 1]
    arg_count = chunk.code[offset + 2]
    value = format_value(chunk.constants[index])
    text = f"{_op_name(op):<16} ({arg_count} args) {index:4d} '{value}'"
    return text, offset + 3


def _closure(op: OpCode, chunk: Chunk, offset: int) -> tuple[str, int]:
    offset += 1
    index = chunk.code[offset]
    offset += 1
    function = chunk.constants[index]
    lines = [f"{_op_name(op):<16} {index:4d} {format_value(function)}"]
    for _ in range(function.upvalue_count):
        is_local = chunk.code[offset]
        slot = chunk.code[offset + 1]
        offset += 2
        kind = "local" if is_local else "upvalue"
        lines.append(f"{offset - 2:04d}      |                     {kind} {slot}")
    return "\n".join(lines), offset


def _handler(op: OpCode) -> Callable[[OpCode, Chunk, int], tuple[str, int]]:
    if op in _SIMPLE:
        return _simple
    if op in _CONSTANT:
        return _constant
    if op in _BYTE:
        return _byte
    if op in _JUMP_SIGN:
        return _jump
    if op in (OpCode.INVOKE, OpCode.SUPER_INVOKE):
        return _invoke
    return _closure


def disassemble_instruction(chunk: Chunk, offset: int) -> tuple[str, int]:
    """Describe the instruction at ``offset``; return its text and the next offset."""
    if offset > 0 and chunk.lines[offset] == chunk.lines[offset - 1]:
        prefix = f"{offset:04d}    | "
    else:
        prefix = f"{offset:04d} {chunk.lines[offset]:4d} "

    byte = chunk.code[offset]
    try:
        op = OpCode(byte)
    except ValueError:
        return f"{prefix}Unknown opcode {byte}", offset + 1
    text, next_offset = _handler(op)(op, chunk, offset)
    return prefix + text, next_offset


def disassemble_chunk(chunk: Chunk, name: str) -> str:
    """Return a full listing of the chunk under a ``== name ==`` header."""
    lines = [f"== {name} =="]
    offset = 0
    while offset < len(chunk.code):
        text, offset = disassemble_instruction(chunk, offset)
        lines.append(text)
    return "\n".join(lines) + "\n"