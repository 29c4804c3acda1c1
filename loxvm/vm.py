"""Stack-based virtual machine that runs compiled Lox bytecode."""

from __future__ import annotations

import math
import sys
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Optional, TextIO

from .chunk import OpCode, format_value, is_falsey, values_equal
from .compiler import compile_source
from .objects import (
    LoxBoundMethod,
    LoxClass,
    LoxClosure,
    LoxInstance,
    LoxNative,
    Upvalue,
)
from .scopes import CompileError

FRAMES_MAX = 64


class InterpretResult(Enum):
    """Outcome of running a piece of source."""

    OK = auto()
    COMPILE_ERROR = auto()
    RUNTIME_ERROR = auto()


class LoxRuntimeError(Exception):
    """An error raised while executing bytecode."""


@dataclass
class _CallFrame:
    closure: LoxClosure
    slots: int
    ip: int = 0
    code: bytearray = field(init=False)

    def __post_init__(self) -> None:
        self.code = self.closure.function.chunk.code


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _clock(*_args: Any) -> float:
    return time.process_time()


_Handler = Callable[[_CallFrame], Optional[bool]]


class VM:
    """Executes Lox programs; globals persist across calls to interpret."""

    def __init__(self, out: Optional[TextIO] = None, err: Optional[TextIO] = None) -> None:
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        self.globals: dict[str, Any] = {}
        self._stack: list[Any] = []
        self._frames: list[_CallFrame] = []
        self._open_upvalues: dict[int, Upvalue] = {}
        self._dispatch: dict[int, _Handler] = {
            OpCode.CONSTANT: self._op_constant,
            OpCode.NIL: lambda frame: self._push(None),
            OpCode.TRUE: lambda frame: self._push(True),
            OpCode.FALSE: lambda frame: self._push(False),
            OpCode.POP: lambda frame: self._discard(),
            OpCode.GET_LOCAL: self._op_get_local,
            OpCode.SET_LOCAL: self._op_set_local,
            OpCode.GET_GLOBAL: self._op_get_global,
            OpCode.DEFINE_GLOBAL: self._op_define_global,
            OpCode.SET_GLOBAL: self._op_set_global,
            OpCode.GET_UPVALUE: self._op_get_upvalue,
            OpCode.SET_UPVALUE: self._op_set_upvalue,
            OpCode.GET_PROPERTY: self._op_get_property,
            OpCode.SET_PROPERTY: self._op_set_property,
            OpCode.GET_SUPER: self._op_get_super,
            OpCode.EQUAL: self._op_equal,
            OpCode.GREATER: self._op_greater,
            OpCode.LESS: self._op_less,
            OpCode.ADD: self._op_add,
            OpCode.SUBTRACT: self._op_subtract,
            OpCode.MULTIPLY: self._op_multiply,
            OpCode.DIVIDE: self._op_divide,
            OpCode.NOT: lambda frame: self._push(is_falsey(self._pop())),
            OpCode.NEGATE: self._op_negate,
            OpCode.PRINT: self._op_print,
            OpCode.JUMP: self._op_jump,
            OpCode.JUMP_IF_FALSE: self._op_jump_if_false,
            OpCode.LOOP: self._op_loop,
            OpCode.CALL: self._op_call,
            OpCode.INVOKE: self._op_invoke,
            OpCode.SUPER_INVOKE: self._op_super_invoke,
            OpCode.CLOSURE: self._op_closure,
            OpCode.CLOSE_UPVALUE: self._op_close_upvalue,
            OpCode.RETURN: self._op_return,
            OpCode.CLASS: self._op_class,
            OpCode.INHERIT: self._op_inherit,
            OpCode.METHOD: self._op_method,
        }
        self._define_native("clock", _clock)

    # ---- Public entry point ----

    def interpret(self, source: str) -> InterpretResult:
        """Compile and run source, reporting errors on the error stream."""
        try:
            function = compile_source(source)
        except CompileError as exc:
            self.err.write(f"{exc}\n")
            return InterpretResult.COMPILE_ERROR

        closure = LoxClosure(function)
        self._push(closure)
        try:
            self._call(closure, 0)
            self._run()
        except LoxRuntimeError as exc:
            self._report(exc)
            return InterpretResult.RUNTIME_ERROR
        return InterpretResult.OK

    # ---- Stack and setup ----

    def _define_native(self, name: str, function: Callable[..., Any]) -> None:
        self.globals[name] = LoxNative(function, name)

    def _push(self, value: Any) -> None:
        self._stack.append(value)

    def _pop(self) -> Any:
        return self._stack.pop()

    def _discard(self) -> None:
        self._stack.pop()

    def _peek(self, distance: int) -> Any:
        return self._stack[-1 - distance]

    def _reset_stack(self) -> None:
        for upvalue in self._open_upvalues.values():
            upvalue.close()
        self._open_upvalues.clear()
        self._stack.clear()
        self._frames.clear()

    def _report(self, exc: LoxRuntimeError) -> None:
        lines = [str(exc)]
        for frame in reversed(self._frames):
            function = frame.closure.function
            line = function.chunk.lines[frame.ip - 1]
            where = "script" if function.name is None else f"{function.name}()"
            lines.append(f"[line {line}] in {where}")
        self.err.write("\n".join(lines) + "\n")
        self._reset_stack()

    # ---- Instruction decoding ----

    @staticmethod
    def _read_byte(frame: _CallFrame) -> int:
        byte = frame.code[frame.ip]
        frame.ip += 1
        return byte

    @staticmethod
    def _read_short(frame: _CallFrame) -> int:
        value = (frame.code[frame.ip] << 8) | frame.code[frame.ip + 1]
        frame.ip += 2
        return value

    def _read_constant(self, frame: _CallFrame) -> Any:
        return frame.closure.function.chunk.constants[self._read_byte(frame)]

    def _run(self) -> None:
        while True:
            frame = self._frames[-1]
            op = self._read_byte(frame)
            handler = self._dispatch.get(op)
            if handler is None:
                raise LoxRuntimeError(f"Unknown opcode {op}.")
            if handler(frame):
                return

    # ---- Calls ----

    def _call(self, closure: LoxClosure, arg_count: int) -> None:
        arity = closure.function.arity
        if arg_count != arity:
            raise LoxRuntimeError(f"Expected {arity} arguments but got {arg_count}.")
        if len(self._frames) == FRAMES_MAX:
            raise LoxRuntimeError("Stack overflow.")
        self._frames.append(_CallFrame(closure, len(self._stack) - arg_count - 1))

    def _call_value(self, callee: Any, arg_count: int) -> None:
        if isinstance(callee, LoxBoundMethod):
            self._stack[-arg_count - 1] = callee.receiver
            self._call(callee.method, arg_count)
        elif isinstance(callee, LoxClass):
            self._stack[-arg_count - 1] = LoxInstance(callee)
            initializer = callee.methods.get("init")
            if initializer is not None:
                self._call(initializer, arg_count)
            elif arg_count != 0:
                raise LoxRuntimeError(f"Expected 0 arguments but got {arg_count}.")
        elif isinstance(callee, LoxClosure):
            self._call(callee, arg_count)
        elif isinstance(callee, LoxNative):
            first_arg = len(self._stack) - arg_count
            result = callee(*self._stack[first_arg:])
            del self._stack[first_arg - 1:]
            self._push(result)
        else:
            raise LoxRuntimeError("Can only call functions and classes.")

    def _invoke_from_class(self, klass: LoxClass, name: str, arg_count: int) -> None:
        method = klass.methods.get(name)
        if method is None:
            raise LoxRuntimeError(f"Undefined property '{name}'.")
        self._call(method, arg_count)

    def _invoke(self, name: str, arg_count: int) -> None:
        receiver = self._peek(arg_count)
        if not isinstance(receiver, LoxInstance):
            raise LoxRuntimeError("Only instances have methods.")
        if name in receiver.fields:
            value = receiver.fields[name]
            self._stack[-arg_count - 1] = value
            self._call_value(value, arg_count)
            return
        self._invoke_from_class(receiver.klass, name, arg_count)

    def _bind_method(self, klass: LoxClass, name: str) -> None:
        method = klass.methods.get(name)
        if method is None:
            raise LoxRuntimeError(f"Undefined property '{name}'.")
        bound = LoxBoundMethod(self._peek(0), method)
        self._pop()
        self._push(bound)

    # ---- Upvalues ----

    def _capture_upvalue(self, slot: int) -> Upvalue:
        upvalue = self._open_upvalues.get(slot)
        if upvalue is None:
            upvalue = Upvalue(self._stack, slot)
            self._open_upvalues[slot] = upvalue
        return upvalue

    def _close_upvalues(self, last: int) -> None:
        for slot in [s for s in self._open_upvalues if s >= last]:
            self._open_upvalues.pop(slot).close()

    # ---- Opcode handlers ----

    def _op_constant(self, frame: _CallFrame) -> None:
        self._push(self._read_constant(frame))

    def _op_get_local(self, frame: _CallFrame) -> None:
        self._push(self._stack[frame.slots + self._read_byte(frame)])

    def _op_set_local(self, frame: _CallFrame) -> None:
        self._stack[frame.slots + self._read_byte(frame)] = self._peek(0)

    def _op_get_global(self, frame: _CallFrame) -> None:
        name = self._read_constant(frame)
        if name not in self.globals:
            raise LoxRuntimeError(f"Undefined variable '{name}'.")
        self._push(self.globals[name])

    def _op_define_global(self, frame: _CallFrame) -> None:
        name = self._read_constant(frame)
        self.globals[name] = self._peek(0)
        self._pop()

    def _op_set_global(self, frame: _CallFrame) -> None:
        name = self._read_constant(frame)
        if name not in self.globals:
            raise LoxRuntimeError(f"Undefined variable '{name}'.")
        self.globals[name] = self._peek(0)

    def _op_get_upvalue(self, frame: _CallFrame) -> None:
        upvalue = frame.closure.upvalues[self._read_byte(frame)]
        assert upvalue is not None
        self._push(upvalue.value)

    def _op_set_upvalue(self, frame: _CallFrame) -> None:
        upvalue = frame.closure.upvalues[self._read_byte(frame)]
        assert upvalue is not None
        upvalue.value = self._peek(0)

    def _op_get_property(self, frame: _CallFrame) -> None:
        instance = self._peek(0)
        if not isinstance(instance, LoxInstance):
            raise LoxRuntimeError("Only instances have properties.")
        name = self._read_constant(frame)
        if name in instance.fields:
            self._pop()
            self._push(instance.fields[name])
            return
        self._bind_method(instance.klass, name)

    def _op_set_property(self, frame: _CallFrame) -> None:
        instance = self._peek(1)
        if not isinstance(instance, LoxInstance):
            raise LoxRuntimeError("Only instances have fields.")
        instance.fields[self._read_constant(frame)] = self._peek(0)
        value = self._pop()
        self._pop()
        self._push(value)

    def _op_get_super(self, frame: _CallFrame) -> None:
        name = self._read_constant(frame)
        superclass = self._pop()
        self._bind_method(superclass, name)

    def _op_equal(self, frame: _CallFrame) -> None:
        b = self._pop()
        a = self._pop()
        self._push(values_equal(a, b))

    def _numeric_operands(self) -> tuple[float, float]:
        b, a = self._peek(0), self._peek(1)
        if not (_is_number(a) and _is_number(b)):
            raise LoxRuntimeError("Operands must be numbers.")
        del self._stack[-2:]
        return a, b

    def _op_greater(self, frame: _CallFrame) -> None:
        a, b = self._numeric_operands()
        self._push(a > b)

    def _op_less(self, frame: _CallFrame) -> None:
        a, b = self._numeric_operands()
        self._push(a < b)

    def _op_add(self, frame: _CallFrame) -> None:
        b, a = self._peek(0), self._peek(1)
        if isinstance(a, str) and isinstance(b, str):
            result: Any = a + b
        elif _is_number(a) and _is_number(b):
            result = float(a) + float(b)
        else:
            raise LoxRuntimeError("Operands must be two numbers or two strings.")
        del self._stack[-2:]
        self._push(result)

    def _op_subtract(self, frame: _CallFrame) -> None:
        a, b = self._numeric_operands()
        self._push(float(a) - float(b))

    def _op_multiply(self, frame: _CallFrame) -> None:
        a, b = self._numeric_operands()
        self._push(float(a) * float(b))

    def _op_divide(self, frame: _CallFrame) -> None:
        a, b = self._numeric_operands()
        self._push(_divide(float(a), float(b)))

    def _op_negate(self, frame: _CallFrame) -> None:
        if not _is_number(self._peek(0)):
            raise LoxRuntimeError("Operand must be a number.")
        self._push(-float(self._pop()))

    def _op_print(self, frame: _CallFrame) -> None:
        self.out.write(format_value(self._pop()) + "\n")

    def _op_jump(self, frame: _CallFrame) -> None:
        offset = self._read_short(frame)
        frame.ip += offset

    def _op_jump_if_false(self, frame: _CallFrame) -> None:
        offset = self._read_short(frame)
        if is_falsey(self._peek(0)):
            frame.ip += offset

    def _op_loop(self, frame: _CallFrame) -> None:
        offset = self._read_short(frame)
        frame.ip -= offset

    def _op_call(self, frame: _CallFrame) -> None:
        arg_count = self._read_byte(frame)
        self._call_value(self._peek(arg_count), arg_count)

    def _op_invoke(self, frame: _CallFrame) -> None:
        name = self._read_constant(frame)
        arg_count = self._read_byte(frame)
        self._invoke(name, arg_count)

    def _op_super_invoke(self, frame: _CallFrame) -> None:
        name = self._read_constant(frame)
        arg_count = self._read_byte(frame)
        superclass = self._pop()
        self._invoke_from_class(superclass, name, arg_count)

    def _op_closure(self, frame: _CallFrame) -> None:
        closure = LoxClosure(self._read_constant(frame))
        self._push(closure)
        for i in range(closure.upvalue_count):
            is_local = self._read_byte(frame)
            index = self._read_byte(frame)
            if is_local:
                closure.upvalues[i] = self._capture_upvalue(frame.slots + index)
            else:
                closure.upvalues[i] = frame.closure.upvalues[index]

    def _op_close_upvalue(self, frame: _CallFrame) -> None:
        self._close_upvalues(len(self._stack) - 1)
        self._pop()

    def _op_return(self, frame: _CallFrame) -> bool:
        result = self._pop()
        self._close_upvalues(frame.slots)
        self._frames.pop()
        if not self._frames:
            self._pop()
            return True
        del self._stack[frame.slots:]
        self._push(result)
        return False

    def _op_class(self, frame: _CallFrame) -> None:
        self._push(LoxClass(self._read_constant(frame)))

    def _op_inherit(self, frame: _CallFrame) -> None:
        superclass = self._peek(1)
        if not isinstance(superclass, LoxClass):
            raise LoxRuntimeError("Superclass must be a class.")
        subclass = self._peek(0)
        subclass.methods.update(superclass.methods)
        self._pop()

    def _op_method(self, frame: _CallFrame) -> None:
        name = self._read_constant(frame)
        method = self._peek(0)
        klass = self._peek(1)
        klass.methods[name] = method
        self._pop()