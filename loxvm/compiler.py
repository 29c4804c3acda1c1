"""Single-pass compiler from Lox source text to bytecode functions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional, TypeVar

from .chunk import Chunk, OpCode
from .objects import LoxFunction
from .scanner import Scanner, Token, TokenType
from .scopes import CompileError, FunctionScope, FunctionType

_UINT8_MAX = 255
_UINT16_MAX = 65535

_T = TypeVar("_T")


class _Precedence(IntEnum):
    NONE = 0
    ASSIGNMENT = 1
    OR = 2
    AND = 3
    EQUALITY = 4
    COMPARISON = 5
    TERM = 6
    FACTOR = 7
    UNARY = 8
    CALL = 9
    PRIMARY = 10


_ParseFn = Callable[["_Compiler", bool], None]


@dataclass(frozen=True)
class _ParseRule:
    prefix: Optional[_ParseFn]
    infix: Optional[_ParseFn]
    precedence: _Precedence


@dataclass
class _ClassState:
    enclosing: Optional["_ClassState"]
    has_superclass: bool = False


_SYNC_POINTS = frozenset({
    TokenType.CLASS, TokenType.FUN, TokenType.VAR, TokenType.FOR,
    TokenType.IF, TokenType.WHILE, TokenType.PRINT, TokenType.RETURN,
})

_BINARY_OPS: dict[TokenType, tuple[OpCode, ...]] = {
    TokenType.BANG_EQUAL: (OpCode.EQUAL, OpCode.NOT),
    TokenType.EQUAL_EQUAL: (OpCode.EQUAL,),
    TokenType.GREATER: (OpCode.GREATER,),
    TokenType.GREATER_EQUAL: (OpCode.LESS, OpCode.NOT),
    TokenType.LESS: (OpCode.LESS,),
    TokenType.LESS_EQUAL: (OpCode.GREATER, OpCode.NOT),
    TokenType.PLUS: (OpCode.ADD,),
    TokenType.MINUS: (OpCode.SUBTRACT,),
    TokenType.STAR: (OpCode.MULTIPLY,),
    TokenType.SLASH: (OpCode.DIVIDE,),
}

_LITERALS = {
    TokenType.FALSE: OpCode.FALSE,
    TokenType.NIL: OpCode.NIL,
    TokenType.TRUE: OpCode.TRUE,
}


class _Compiler:
    def __init__(self, source: str) -> None:
        self._scanner = Scanner(source)
        self._current = Token(TokenType.EOF, "", 1)
        self._previous = self._current
        self._errors: list[str] = []
        self._panic = False
        self._scope: Optional[FunctionScope] = None
        self._class: Optional[_ClassState] = None

    # ---- Error reporting ----

    def _error_at(self, token: Token, message: str) -> None:
        if self._panic:
            return
        self._panic = True
        if token.type is TokenType.EOF:
            where = " at end"
        elif token.type is TokenType.ERROR:
            where = ""
        else:
            where = f" at '{token.lexeme}'"
        self._errors.append(f"[line {token.line}] Error{where}: {message}")

    def _error(self, message: str) -> None:
        self._error_at(self._previous, message)

    def _error_at_current(self, message: str) -> None:
        self._error_at(self._current, message)

    def _guard(self, action: Callable[[], _T], fallback: _T) -> _T:
        try:
            return action()
        except CompileError as exc:
            self._error(str(exc))
            return fallback

    # ---- Token stream ----

    def _advance(self) -> None:
        self._previous = self._current
        while True:
            self._current = self._scanner.scan_token()
            if self._current.type is not TokenType.ERROR:
                break
            self._error_at_current(self._current.lexeme)

    def _consume(self, kind: TokenType, message: str) -> None:
        if self._current.type is kind:
            self._advance()
            return
        self._error_at_current(message)

    def _check(self, kind: TokenType) -> bool:
        return self._current.type is kind

    def _match(self, kind: TokenType) -> bool:
        if not self._check(kind):
            return False
        self._advance()
        return True

    # ---- Emitting bytecode ----

    @property
    def _chunk(self) -> Chunk:
        assert self._scope is not None
        return self._scope.function.chunk

    def _emit(self, *data: int) -> None:
        for byte in data:
            self._chunk.write(byte & 0xFF, self._previous.line)

    def _emit_loop(self, loop_start: int) -> None:
        self._emit(OpCode.LOOP)
        offset = len(self._chunk) - loop_start + 2
        if offset > _UINT16_MAX:
            self._error("Loop body too large.")
        self._emit((offset >> 8) & 0xFF, offset & 0xFF)

    def _emit_jump(self, instruction: OpCode) -> int:
        self._emit(instruction, 0xFF, 0xFF)
        return len(self._chunk) - 2

    def _emit_return(self) -> None:
        assert self._scope is not None
        if self._scope.kind is FunctionType.INITIALIZER:
            self._emit(OpCode.GET_LOCAL, 0)
        else:
            self._emit(OpCode.NIL)
        self._emit(OpCode.RETURN)

    def _make_constant(self, value: Any) -> int:
        index = self._chunk.add_constant(value)
        if index > _UINT8_MAX:
            self._error("Too many constants in one chunk.")
            return 0
        return index

    def _emit_constant(self, value: Any) -> None:
        self._emit(OpCode.CONSTANT, self._make_constant(value))

    def _patch_jump(self, offset: int) -> None:
        jump = len(self._chunk) - offset - 2
        if jump > _UINT16_MAX:
            self._error("Too much code to jump over.")
        self._chunk.code[offset] = (jump >> 8) & 0xFF
        self._chunk.code[offset + 1] = jump & 0xFF

    # ---- Scopes ----

    def _begin_function(self, kind: FunctionType) -> FunctionScope:
        name = None if kind is FunctionType.SCRIPT else self._previous.lexeme
        self._scope = FunctionScope(kind, self._scope, name)
        return self._scope

    def _end_function(self) -> LoxFunction:
        self._emit_return()
        assert self._scope is not None
        function = self._scope.function
        self._scope = self._scope.enclosing
        return function

    def _begin_scope(self) -> None:
        assert self._scope is not None
        self._scope.scope_depth += 1

    def _end_scope(self) -> None:
        scope = self._scope
        assert scope is not None
        scope.scope_depth -= 1
        while scope.locals and scope.locals[-1].depth > scope.scope_depth:
            local = scope.locals.pop()
            self._emit(OpCode.CLOSE_UPVALUE if local.is_captured else OpCode.POP)

    # ---- Variables ----

    def _identifier_constant(self, name: str) -> int:
        return self._make_constant(name)

    def _add_local(self, name: str) -> None:
        assert self._scope is not None
        scope = self._scope
        self._guard(lambda: scope.add_local(name), None)

    def _declare_variable(self) -> None:
        scope = self._scope
        assert scope is not None
        if scope.scope_depth == 0:
            return
        name = self._previous.lexeme
        for local in reversed(scope.locals):
            if local.depth != -1 and local.depth < scope.scope_depth:
                break
            if local.name == name:
                self._error("Already a variable with this name in this scope.")
        self._add_local(name)

    def _parse_variable(self, message: str) -> int:
        self._consume(TokenType.IDENTIFIER, message)
        self._declare_variable()
        assert self._scope is not None
        if self._scope.scope_depth > 0:
            return 0
        return self._identifier_constant(self._previous.lexeme)

    def _mark_initialized(self) -> None:
        scope = self._scope
        assert scope is not None
        if scope.scope_depth == 0:
            return
        scope.locals[-1].depth = scope.scope_depth

    def _define_variable(self, global_index: int) -> None:
        assert self._scope is not None
        if self._scope.scope_depth > 0:
            self._mark_initialized()
            return
        self._emit(OpCode.DEFINE_GLOBAL, global_index)

    def _argument_list(self) -> int:
        count = 0
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                self._expression()
                if count == _UINT8_MAX:
                    self._error("Can't have more than 255 arguments.")
                count += 1
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after arguments.")
        return count

    def _named_variable(self, name: str, can_assign: bool) -> None:
        scope = self._scope
        assert scope is not None
        arg = self._guard(lambda: scope.resolve_local(name), 0)
        if arg is not None:
            get_op, set_op = OpCode.GET_LOCAL, OpCode.SET_LOCAL
        else:
            arg = self._guard(lambda: scope.resolve_upvalue(name), 0)
            if arg is not None:
                get_op, set_op = OpCode.GET_UPVALUE, OpCode.SET_UPVALUE
            else:
                arg = self._identifier_constant(name)
                get_op, set_op = OpCode.GET_GLOBAL, OpCode.SET_GLOBAL

        if can_assign and self._match(TokenType.EQUAL):
            self._expression()
            self._emit(set_op, arg)
        else:
            self._emit(get_op, arg)

    # ---- Expression parse functions ----

    def _variable(self, can_assign: bool) -> None:
        self._named_variable(self._previous.lexeme, can_assign)

    def _grouping(self, can_assign: bool) -> None:
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after expression.")

    def _number(self, can_assign: bool) -> None:
        self._emit_constant(float(self._previous.lexeme))

    def _string(self, can_assign: bool) -> None:
        self._emit_constant(self._previous.lexeme[1:-1])

    def _unary(self, can_assign: bool) -> None:
        operator = self._previous.type
        self._parse_precedence(_Precedence.UNARY)
        if operator is TokenType.BANG:
            self._emit(OpCode.NOT)
        elif operator is TokenType.MINUS:
            self._emit(OpCode.NEGATE)

    def _binary(self, can_assign: bool) -> None:
        operator = self._previous.type
        rule = _RULES[operator]
        self._parse_precedence(_Precedence(rule.precedence + 1))
        ops = _BINARY_OPS.get(operator)
        if ops:
            self._emit(*ops)

    def _call(self, can_assign: bool) -> None:
        count = self._argument_list()
        self._emit(OpCode.CALL, count)

    def _dot(self, can_assign: bool) -> None:
        self._consume(TokenType.IDENTIFIER, "Expect property name after '.'.")
        name = self._identifier_constant(self._previous.lexeme)
        if can_assign and self._match(TokenType.EQUAL):
            self._expression()
            self._emit(OpCode.SET_PROPERTY, name)
        elif self._match(TokenType.LEFT_PAREN):
            count = self._argument_list()
            self._emit(OpCode.INVOKE, name, count)
        else:
            self._emit(OpCode.GET_PROPERTY, name)

    def _literal(self, can_assign: bool) -> None:
        op = _LITERALS.get(self._previous.type)
        if op is not None:
            self._emit(op)

    def _super(self, can_assign: bool) -> None:
        if self._class is None:
            self._error("Can't use 'super' outside of a class.")
        elif not self._class.has_superclass:
            self._error("Can't use 'super' in a class with no superclass.")

        self._consume(TokenType.DOT, "Expect '.' after 'super'.")
        self._consume(TokenType.IDENTIFIER, "Expect superclass method name.")
        name = self._identifier_constant(self._previous.lexeme)

        self._named_variable("this", False)
        if self._match(TokenType.LEFT_PAREN):
            count = self._argument_list()
            self._named_variable("super", False)
            self._emit(OpCode.SUPER_INVOKE, name, count)
        else:
            self._named_variable("super", False)
            self._emit(OpCode.GET_SUPER, name)

    def _this(self, can_assign: bool) -> None:
        if self._class is None:
            self._error("Can't use 'this' outside of a class.")
            return
        self._variable(False)

    def _and(self, can_assign: bool) -> None:
        end_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._parse_precedence(_Precedence.AND)
        self._patch_jump(end_jump)

    def _or(self, can_assign: bool) -> None:
        else_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        end_jump = self._emit_jump(OpCode.JUMP)
        self._patch_jump(else_jump)
        self._emit(OpCode.POP)
        self._parse_precedence(_Precedence.OR)
        self._patch_jump(end_jump)

    def _parse_precedence(self, precedence: _Precedence) -> None:
        self._advance()
        prefix = _RULES[self._previous.type].prefix
        if prefix is None:
            self._error("Expect expression.")
            return

        can_assign = precedence <= _Precedence.ASSIGNMENT
        prefix(self, can_assign)

        while precedence <= _RULES[self._current.type].precedence:
            self._advance()
            infix = _RULES[self._previous.type].infix
            assert infix is not None
            infix(self, can_assign)

        if can_assign and self._match(TokenType.EQUAL):
            self._error("Invalid assignment target.")

    def _expression(self) -> None:
        self._parse_precedence(_Precedence.ASSIGNMENT)

    # ---- Statements ----

    def _block(self) -> None:
        while not self._check(TokenType.RIGHT_BRACE) and not self._check(TokenType.EOF):
            self._declaration()
        self._consume(TokenType.RIGHT_BRACE, "Expect '}' after block.")

    def _function(self, kind: FunctionType) -> None:
        scope = self._begin_function(kind)
        self._begin_scope()

        self._consume(TokenType.LEFT_PAREN, "Expect '(' after function name.")
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                scope.function.arity += 1
                if scope.function.arity > _UINT8_MAX:
                    self._error_at_current("Can't have more than 255 parameters.")
                constant = self._parse_variable("Expect parameter name.")
                self._define_variable(constant)
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after parameters.")
        self._consume(TokenType.LEFT_BRACE, "Expect '{' before function body.")
        self._block()

        function = self._end_function()
        self._emit(OpCode.CLOSURE, self._make_constant(function))
        for upvalue in scope.upvalues:
            self._emit(1 if upvalue.is_local else 0, upvalue.index)

    def _method(self) -> None:
        self._consume(TokenType.IDENTIFIER, "Expect method name.")
        constant = self._identifier_constant(self._previous.lexeme)
        kind = FunctionType.INITIALIZER if self._previous.lexeme == "init" else FunctionType.METHOD
        self._function(kind)
        self._emit(OpCode.METHOD, constant)

    def _class_declaration(self) -> None:
        self._consume(TokenType.IDENTIFIER, "Expect class name.")
        class_name = self._previous.lexeme
        name_constant = self._identifier_constant(class_name)
        self._declare_variable()

        self._emit(OpCode.CLASS, name_constant)
        self._define_variable(name_constant)

        state = _ClassState(self._class)
        self._class = state

        if self._match(TokenType.LESS):
            self._consume(TokenType.IDENTIFIER, "Expect superclass name.")
            self._variable(False)
            if class_name == self._previous.lexeme:
                self._error("A class can't inherit from itself.")

            self._begin_scope()
            self._add_local("super")
            self._define_variable(0)

            self._named_variable(class_name, False)
            self._emit(OpCode.INHERIT)
            state.has_superclass = True

        self._named_variable(class_name, False)
        self._consume(TokenType.LEFT_BRACE, "Expect '{' before class body.")
        while not self._check(TokenType.RIGHT_BRACE) and not self._check(TokenType.EOF):
            self._method()
        self._consume(TokenType.RIGHT_BRACE, "Expect '}' after class body.")
        self._emit(OpCode.POP)

        if state.has_superclass:
            self._end_scope()

        self._class = state.enclosing

    def _fun_declaration(self) -> None:
        global_index = self._parse_variable("Expect function name.")
        self._mark_initialized()
        self._function(FunctionType.FUNCTION)
        self._define_variable(global_index)

    def _var_declaration(self) -> None:
        global_index = self._parse_variable("Expect variable name.")
        if self._match(TokenType.EQUAL):
            self._expression()
        else:
            self._emit(OpCode.NIL)
        self._consume(TokenType.SEMICOLON, "Expect ';' after variable declaration.")
        self._define_variable(global_index)

    def _expression_statement(self) -> None:
        self._expression()
        self._consume(TokenType.SEMICOLON, "Expect ';' after expression.")
        self._emit(OpCode.POP)

    def _if_statement(self) -> None:
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'if'.")
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after condition.")

        then_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._statement()

        else_jump = self._emit_jump(OpCode.JUMP)
        self._patch_jump(then_jump)
        self._emit(OpCode.POP)

        if self._match(TokenType.ELSE):
            self._statement()
        self._patch_jump(else_jump)

    def _print_statement(self) -> None:
        self._expression()
        self._consume(TokenType.SEMICOLON, "Expect ';' after value.")
        self._emit(OpCode.PRINT)

    def _return_statement(self) -> None:
        assert self._scope is not None
        if self._scope.kind is FunctionType.SCRIPT:
            self._error("Can't return from top-level code.")

        if self._match(TokenType.SEMICOLON):
            self._emit_return()
        else:
            if self._scope.kind is FunctionType.INITIALIZER:
                self._error("Can't return a value from an initializer.")
            self._expression()
            self._consume(TokenType.SEMICOLON, "Expect ';' after return value.")
            self._emit(OpCode.RETURN)

    def _while_statement(self) -> None:
        loop_start = len(self._chunk)
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'while'.")
        self._expression()
        self._consume(TokenType.RIGHT_PAREN, "Expect ')' after condition.")

        exit_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
        self._emit(OpCode.POP)
        self._statement()
        self._emit_loop(loop_start)

        self._patch_jump(exit_jump)
        self._emit(OpCode.POP)

    def _for_statement(self) -> None:
        self._begin_scope()
        self._consume(TokenType.LEFT_PAREN, "Expect '(' after 'for'.")
        if self._match(TokenType.SEMICOLON):
            pass
        elif self._match(TokenType.VAR):
            self._var_declaration()
        else:
            self._expression_statement()

        loop_start = len(self._chunk)
        exit_jump: Optional[int] = None
        if not self._match(TokenType.SEMICOLON):
            self._expression()
            self._consume(TokenType.SEMICOLON, "Expect ';' after loop condition.")
            exit_jump = self._emit_jump(OpCode.JUMP_IF_FALSE)
            self._emit(OpCode.POP)

        if not self._match(TokenType.RIGHT_PAREN):
            body_jump = self._emit_jump(OpCode.JUMP)
            increment_start = len(self._chunk)
            self._expression()
            self._emit(OpCode.POP)
            self._consume(TokenType.RIGHT_PAREN, "Expect ')' after for clauses.")

            self._emit_loop(loop_start)
            loop_start = increment_start
            self._patch_jump(body_jump)

        self._statement()
        self._emit_loop(loop_start)

        if exit_jump is not None:
            self._patch_jump(exit_jump)
            self._emit(OpCode.POP)

        self._end_scope()

    def _synchronize(self) -> None:
        self._panic = False
        while self._current.type is not TokenType.EOF:
            if self._previous.type is TokenType.SEMICOLON:
                return
            if self._current.type in _SYNC_POINTS:
                return
            self._advance()

    def _declaration(self) -> None:
        if self._match(TokenType.CLASS):
            self._class_declaration()
        elif self._match(TokenType.FUN):
            self._fun_declaration()
        elif self._match(TokenType.VAR):
            self._var_declaration()
        else:
            self._statement()

        if self._panic:
            self._synchronize()

    def _statement(self) -> None:
        if self._match(TokenType.PRINT):
            self._print_statement()
        elif self._match(TokenType.FOR):
            self._for_statement()
        elif self._match(TokenType.IF):
            self._if_statement()
        elif self._match(TokenType.RETURN):
            self._return_statement()
        elif self._match(TokenType.WHILE):
            self._while_statement()
        elif self._match(TokenType.LEFT_BRACE):
            self._begin_scope()
            self._block()
            self._end_scope()
        else:
            self._expression_statement()

    def compile(self) -> LoxFunction:
        self._begin_function(FunctionType.SCRIPT)
        self._advance()
        while not self._match(TokenType.EOF):
            self._declaration()
        function = self._end_function()
        if self._errors:
            raise CompileError("\n".join(self._errors))
        return function


def _rule(prefix: Optional[_ParseFn], infix: Optional[_ParseFn],
          precedence: _Precedence) -> _ParseRule:
    return _ParseRule(prefix, infix, precedence)


_C = _Compiler
_P = _Precedence

_RULES: dict[TokenType, _ParseRule] = {kind: _rule(None, None, _P.NONE) for kind in TokenType}
_RULES.update({
    TokenType.LEFT_PAREN: _rule(_C._grouping, _C._call, _P.CALL),
    TokenType.DOT: _rule(None, _C._dot, _P.CALL),
    TokenType.MINUS: _rule(_C._unary, _C._binary, _P.TERM),
    TokenType.PLUS: _rule(None, _C._binary, _P.TERM),
    TokenType.SLASH: _rule(None, _C._binary, _P.FACTOR),
    TokenType.STAR: _rule(None, _C._binary, _P.FACTOR),
    TokenType.BANG: _rule(_C._unary, None, _P.NONE),
    TokenType.BANG_EQUAL: _rule(None, _C._binary, _P.EQUALITY),
    TokenType.EQUAL_EQUAL: _rule(None, _C._binary, _P.EQUALITY),
    TokenType.GREATER: _rule(None, _C._binary, _P.COMPARISON),
    TokenType.GREATER_EQUAL: _rule(None, _C._binary, _P.COMPARISON),
    TokenType.LESS: _rule(None, _C._binary, _P.COMPARISON),
    TokenType.LESS_EQUAL: _rule(None, _C._binary, _P.COMPARISON),
    TokenType.IDENTIFIER: _rule(_C._variable, None, _P.NONE),
    TokenType.STRING: _rule(_C._string, None, _P.NONE),
    TokenType.NUMBER: _rule(_C._number, None, _P.NONE),
    TokenType.AND: _rule(None, _C._and, _P.AND),
    TokenType.FALSE: _rule(_C._literal, None, _P.NONE),
    TokenType.NIL: _rule(_C._literal, None, _P.NONE),
    TokenType.OR: _rule(None, _C._or, _P.OR),
    TokenType.SUPER: _rule(_C._super, None, _P.NONE),
    TokenType.THIS: _rule(_C._this, None, _P.NONE),
    TokenType.TRUE: _rule(_C._literal, None, _P.NONE),
})


def compile_source(source: str) -> LoxFunction:
    """Compile a whole script into its top-level function.

    Raises CompileError whose message lists every reported error, one per line.
    """
    return _Compiler(source).compile()