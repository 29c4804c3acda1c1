"""Compile-time bookkeeping of locals, upvalues and nested function scopes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .objects import LoxFunction

MAX_LOCALS = 256
MAX_UPVALUES = 256


class CompileError(Exception):
    """A problem found while compiling Lox source."""


class FunctionType(Enum):
    """What kind of body a function scope compiles."""

    FUNCTION = auto()
    INITIALIZER = auto()
    METHOD = auto()
    SCRIPT = auto()


@dataclass
class Local:
    """A local variable slot; depth -1 means declared but not yet initialised."""

    name: str
    depth: int
    is_captured: bool = False


@dataclass(frozen=True)
class UpvalueRef:
    """Where a captured variable comes from: an enclosing local or upvalue."""

    index: int
    is_local: bool


class FunctionScope:
    """State for one function being compiled, linked to its enclosing one."""

    def __init__(
        self,
        kind: FunctionType,
        enclosing: Optional["FunctionScope"] = None,
        name: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.enclosing = enclosing
        self.function = LoxFunction(name=None if kind is FunctionType.SCRIPT else name)
        self.upvalues: list[UpvalueRef] = []
        self.scope_depth = 0
        # Slot zero holds the receiver in methods and the callee otherwise.
        slot_zero = "" if kind is FunctionType.FUNCTION else "this"
        self.locals: list[Local] = [Local(slot_zero, 0)]

    def add_local(self, name: str) -> Local:
        """Declare a new, not yet initialised, local variable."""
        if len(self.locals) == MAX_LOCALS:
            raise CompileError("Too many local variables in function.")
        local = Local(name, -1)
        self.locals.append(local)
        return local

    def resolve_local(self, name: str) -> Optional[int]:
        """Return the slot of the innermost local with this name, or None."""
        for slot in range(len(self.locals) - 1, -1, -1):
            local = self.locals[slot]
            if local.name == name:
                if local.depth == -1:
                    raise CompileError(
                        "Can't read local variable in its own initializer."
                    )
                return slot
        return None

    def add_upvalue(self, index: int, is_local: bool) -> int:
        """Record a captured variable, reusing an identical entry if present."""
        ref = UpvalueRef(index, is_local)
        try:
            return self.upvalues.index(ref)
        except ValueError:
            pass
        if len(self.upvalues) == MAX_UPVALUES:
            raise CompileError("Too many closure variables in function.")
        self.upvalues.append(ref)
        self.function.upvalue_count = len(self.upvalues)
        return len(self.upvalues) - 1

    def resolve_upvalue(self, name: str) -> Optional[int]:
        """Find ``name`` in enclosing functions and capture it; None if global."""
        if self.enclosing is None:
            return None
        local = self.enclosing.resolve_local(name)
        if local is not None:
            self.enclosing.locals[local].is_captured = True
            return self.add_upvalue(local, True)
        upvalue = self.enclosing.resolve_upvalue(name)
        if upvalue is not None:
            return self.add_upvalue(upvalue, False)
        return None