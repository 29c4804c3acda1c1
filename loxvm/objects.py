"""Heap objects of the Lox runtime: functions, closures, classes and friends.

Strings are plain Python ``str`` values and hash tables are plain ``dict``s.
Python's own memory management replaces the mark-and-sweep collector.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .chunk import Chunk

NativeFn = Callable[..., Any]


@dataclass(eq=False)
class LoxFunction:
    """A compiled function: its bytecode, arity and captured-variable count."""

    name: Optional[str] = None
    arity: int = 0
    upvalue_count: int = 0
    chunk: Chunk = field(default_factory=Chunk)

    def __str__(self) -> str:
        return "<script>" if self.name is None else f"<fn {self.name}>"


@dataclass(eq=False)
class LoxNative:
    """A function implemented in Python, called with the argument values."""

    function: NativeFn
    name: str = ""

    def __call__(self, *args: Any) -> Any:
        return self.function(*args)

    def __str__(self) -> str:
        return "<native fn>"


class Upvalue:
    """A variable captured by a closure.

    While open it refers to a slot of the VM's value stack; once closed it
    holds the value itself.
    """

    __slots__ = ("_stack", "slot", "closed")

    def __init__(self, stack: list[Any], slot: int) -> None:
        self._stack: Optional[list[Any]] = stack
        self.slot = slot
        self.closed: Any = None

    @property
    def is_open(self) -> bool:
        return self._stack is not None

    @property
    def value(self) -> Any:
        if self._stack is not None:
            return self._stack[self.slot]
        return self.closed

    @value.setter
    def value(self, new: Any) -> None:
        if self._stack is not None:
            self._stack[self.slot] = new
        else:
            self.closed = new

    def close(self) -> None:
        """Copy the stack slot's current value in and stop referring to the stack."""
        if self._stack is None:
            return
        self.closed = self._stack[self.slot]
        self._stack = None

    def __str__(self) -> str:
        return "upvalue"

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"Upvalue({state}, slot={self.slot}, value={self.value!r})"


@dataclass(eq=False)
class LoxClosure:
    """A function paired with the upvalues it captured."""

    function: LoxFunction
    upvalues: list[Optional[Upvalue]] = field(init=False)

    def __post_init__(self) -> None:
        self.upvalues = [None] * self.function.upvalue_count

    @property
    def upvalue_count(self) -> int:
        return len(self.upvalues)

    def __str__(self) -> str:
        return str(self.function)


@dataclass(eq=False)
class LoxClass:
    """A class: its name and a table of method closures."""

    name: str
    methods: dict[str, LoxClosure] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class LoxInstance:
    """An instance of a class with its own field table."""

    klass: LoxClass
    fields: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.klass.name} instance"


@dataclass(eq=False)
class LoxBoundMethod:
    """A method closure bound to the receiver it was accessed on."""

    receiver: Any
    method: LoxClosure

    def __str__(self) -> str:
        return str(self.method.function)