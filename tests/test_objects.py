import pytest

from loxvm.chunk import Chunk, format_value, values_equal
from loxvm.objects import (
    LoxBoundMethod,
    LoxClass,
    LoxClosure,
    LoxFunction,
    LoxInstance,
    LoxNative,
    Upvalue,
)


def test_script_function_prints_as_script():
    assert str(LoxFunction()) == "<script>"


def test_named_function_prints_with_name():
    assert format_value(LoxFunction(name="add")) == "<fn add>"


def test_new_function_defaults():
    fn = LoxFunction()
    assert fn.arity == 0
    assert fn.upvalue_count == 0
    assert isinstance(fn.chunk, Chunk)
    assert len(fn.chunk) == 0


def test_functions_have_separate_chunks():
    a, b = LoxFunction(), LoxFunction()
    a.chunk.write(1, 1)
    assert len(b.chunk) == 0


def test_native_prints_and_calls():
    native = LoxNative(lambda x, y: x + y, "plus")
    assert str(native) == "<native fn>"
    assert native(2, 3) == 5


def test_closure_allocates_upvalue_slots():
    fn = LoxFunction(name="f", upvalue_count=3)
    closure = LoxClosure(fn)
    assert closure.upvalues == [None, None, None]
    assert closure.upvalue_count == fn.upvalue_count
    assert str(closure) == "<fn f>"


def test_open_upvalue_reads_and_writes_stack():
    stack = [10, 20, 30]
    up = Upvalue(stack, 1)
    assert up.is_open
    assert up.value == 20
    up.value = 99
    assert stack[1] == 99
    stack[1] = 7
    assert up.value == 7


def test_closed_upvalue_detaches_from_stack():
    stack = ["a", "b"]
    up = Upvalue(stack, 0)
    up.close()
    assert not up.is_open
    assert up.value == "a"
    stack[0] = "changed"
    assert up.value == "a"
    up.value = "z"
    assert stack[0] == "changed"
    assert up.closed == "z"


def test_close_twice_keeps_value():
    stack = [1]
    up = Upvalue(stack, 0)
    up.close()
    stack[0] = 2
    up.close()
    assert up.value == 1


def test_upvalue_prints_as_upvalue():
    assert str(Upvalue([None], 0)) == "upvalue"


def test_class_and_instance_printing():
    klass = LoxClass("Point")
    inst = LoxInstance(klass)
    assert str(klass) == "Point"
    assert format_value(inst) == "Point instance"


def test_instances_have_independent_fields():
    klass = LoxClass("C")
    a, b = LoxInstance(klass), LoxInstance(klass)
    a.fields["x"] = 1
    assert "x" not in b.fields
    assert a.klass is b.klass


def test_bound_method_prints_method_function():
    klass = LoxClass("C")
    method = LoxClosure(LoxFunction(name="greet"))
    klass.methods["greet"] = method
    bound = LoxBoundMethod(LoxInstance(klass), klass.methods["greet"])
    assert str(bound) == "<fn greet>"
    assert bound.method is method


@pytest.mark.parametrize(
    "make",
    [
        lambda: LoxFunction(name="f"),
        lambda: LoxClass("K"),
        lambda: LoxInstance(LoxClass("K")),
        lambda: LoxClosure(LoxFunction()),
    ],
)
def test_objects_compare_by_identity(make):
    a, b = make(), make()
    assert values_equal(a, a)
    assert not values_equal(a, b)