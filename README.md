# loxvm

loxvm runs programs in Lox, a small dynamically typed scripting language. It
compiles source text to bytecode and then runs that bytecode on a stack-based
virtual machine.

Lox has numbers, strings, booleans and `nil`. It also has global and local
variables, `if`, `while` and `for`, first-class functions with closures, and
classes with single inheritance, initialisers and `super` calls. One built-in
function is defined: `clock()`, which returns the processor time in seconds.

## Installing

```
pip install .
```

## Running programs

Programs are run from Python through `loxvm.vm.VM`:

```python
import io
from loxvm.vm import VM, InterpretResult

out = io.StringIO()
err = io.StringIO()
vm = VM(out=out, err=err)
result = vm.interpret('print "hi";')
assert result is InterpretResult.OK
assert out.getvalue() == "hi\n"
```

`VM(out, err)` writes the output of `print` to `out` and error reports to
`err`. Both default to the process's standard output and standard error.
Global variables are kept in `vm.globals` and persist from one call to
`interpret` to the next, so one `VM` can run a program piece by piece.

`interpret(source)` returns an `InterpretResult`:

- `InterpretResult.OK` when the program ran to the end;
- `InterpretResult.COMPILE_ERROR` when the source did not compile. Every
  error is written to `err` on its own line, such as
  `[line 1] Error at ';': Expect expression.`;
- `InterpretResult.RUNTIME_ERROR` when execution failed. The message is
  written to `err` followed by one `[line N] in ...` line per active call,
  innermost first.

## Example

```
class Greeter {
  init(name) { this.name = name; }
  greet() { print "Hello, " + this.name + "!"; }
}

fun counter() {
  var n = 0;
  fun next() { n = n + 1; return n; }
  return next;
}

Greeter("world").greet();
var c = counter();
c();
print c();   // 2
print clock() >= 0;
```

## The lower layers

- `loxvm.scanner.tokenize(source)` yields the tokens of a source text,
  ending with an `EOF` token. `loxvm.scanner.Scanner` produces them one at a
  time through `scan_token()`.
- `loxvm.compiler.compile_source(source)` compiles a whole script into a
  `LoxFunction`, or raises `loxvm.scopes.CompileError` listing every error.
- `loxvm.debug.disassemble_chunk(chunk, name)` returns the bytecode listing
  of a chunk as text; `disassemble_instruction(chunk, offset)` returns the
  text of one instruction and the offset of the next.
- `loxvm.chunk` holds `OpCode`, `Chunk` and the value helpers
  `values_equal`, `is_falsey` and `format_value`.

## What it does not do

The package installs no command-line program and has no interactive prompt.
To run a script file, read it and pass its text to `VM.interpret`.

## Running the tests

```
pip install .[test]
pytest
```