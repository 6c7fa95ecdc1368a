import pytest

from rubylet.rubylet_datatypes import (
    RubyError, RubyFrozenError, RubyArgumentError, LoopControlOutsideLoop, RubyObject, RubyRange,
    RubyHash, Symbol, FrozenStr,
)
from rubylet.rubylet_guard import ExecutionGuard
from rubylet.rubylet_interpreter import Interpreter
from rubylet.rubylet_parser import Parser
from rubylet.rubylet_runtime import ScriptRunner


@pytest.fixture
def interp():
    return ScriptRunner().new_session()


def run(interp, source):
    return interp.run(Parser().parse(source))


# --- running programs ---

def test_run_returns_last_value(interp):
    assert run(interp, "a = 2\nb = 3\na * b") == 6


def test_output_is_buffered_until_taken(interp):
    run(interp, "puts 'one'\nprint 'two'")
    assert interp.take_output() == "one\ntwo"
    assert interp.take_output() == ""


def test_output_statements_work_without_kernel():
    bare = Interpreter()
    bare.run(Parser().parse("puts 1\np 'x'\nprint :s"))
    assert bare.take_output() == '1\n"x"\ns'


def test_top_level_return_ends_the_program(interp):
    assert run(interp, "puts 1\nreturn 5\nputs 2") == 5
    assert interp.take_output() == "1\n"


def test_loop_control_outside_loop(interp):
    with pytest.raises(LoopControlOutsideLoop) as exc:
        run(interp, "x = 1\nnext")
    assert exc.value.ruby_class == "LocalJumpError"
    assert exc.value.line == 2


def test_errors_carry_the_statement_line(interp):
    with pytest.raises(RubyError) as exc:
        run(interp, "a = 1\n\nb = a + nil")
    assert exc.value.kind == "TypeError"
    assert exc.value.line == 3


def test_eval_source_shares_the_top_scope(interp):
    run(interp, "total = 10")
    assert interp.eval_source("total + 5") == 15
    interp.eval_source("def bump(v)\n  v + 1\nend")
    assert run(interp, "bump(total)") == 11


def test_seeded_sessions_agree():
    first = Interpreter(seed=42)
    second = Interpreter(seed=42)
    assert first.rng.random() == second.rng.random()


def test_guard_is_reused(interp):
    assert isinstance(interp.guard, ExecutionGuard)
    run(interp, "3.times { |i| i }")
    assert interp.guard.operations > 0


class HostFailure(Exception):
    pass


def test_python_failures_become_internal_errors(interp, monkeypatch):
    def broken(*args):
        raise HostFailure("host failure")
    monkeypatch.setattr(interp, "binary_op", broken)
    with pytest.raises(RubyError) as exc:
        run(interp, "1 + 2")
    assert exc.value.kind == "InternalError"
    assert "host failure" in exc.value.message


# --- classes of values ---

@pytest.mark.parametrize("value, name", [
    (None, "NilClass"),
    (True, "TrueClass"),
    (False, "FalseClass"),
    (1, "Integer"),
    (1.5, "Float"),
    ("s", "String"),
    (Symbol("s"), "Symbol"),
    ([1], "Array"),
    (RubyHash(), "Hash"),
    (RubyRange(1, 2), "Range"),
])
def test_class_of_builtin_values(interp, value, name):
    assert interp.class_name(value) == name


def test_class_of_user_objects(interp):
    run(interp, "class Widget\nend\n$w = Widget.new")
    widget = interp.globals["$w"]
    assert isinstance(widget, RubyObject)
    assert interp.class_name(widget) == "Widget"
    assert interp.class_of(interp.classes["Comparable"]).name == "Module"
    assert interp.class_of(widget.cls).name == "Class"


def test_builtin_exception_classes(interp):
    zero = interp.classes["ZeroDivisionError"]
    assert zero.is_subclass_of(interp.classes["StandardError"])
    assert interp.classes["Math"].constants["DomainError"].superclass.name == "ArgumentError"


@pytest.mark.parametrize("value, text", [
    (None, "nil"),
    (True, "true"),
    (3, "an instance of Integer"),
])
def test_describe_receiver(interp, value, text):
    assert interp.describe_receiver(value) == text


def test_describe_main_and_classes(interp):
    assert interp.describe_receiver(interp.main) == "main:Object"
    assert interp.describe_receiver(interp.classes["String"]) == "class String"
    assert interp.describe_receiver(interp.classes["Enumerable"]) == "module Enumerable"


def test_responds_to(interp):
    run(interp, "def helper\nend\nclass Duck\n  def quack\n  end\nend\n$d = Duck.new")
    duck = interp.globals["$d"]
    assert interp.responds_to(duck, "quack")
    assert interp.responds_to(duck, "inspect")
    assert not interp.responds_to(duck, "bark")
    assert interp.responds_to(interp.main, "helper")
    assert interp.responds_to("text", "upcase")


# --- equality, ordering and frozen state ---

def test_equality(interp):
    assert interp.equal(1, 1.0)
    assert interp.equal([1, [2]], [1, [2]])
    assert not interp.equal("1", 1)
    assert interp.equal(Symbol("a"), Symbol("a"))


def test_comparison(interp):
    assert interp.compare(1, 2) == -1
    assert interp.compare("b", "a") == 1
    assert interp.compare_or_none(1, "a") is None
    with pytest.raises(RubyArgumentError) as exc:
        interp.compare(1, "a")
    assert exc.value.message == "comparison of Integer with String failed"


def test_binary_op(interp):
    assert interp.binary_op("+", 2, 3) == 5
    assert interp.binary_op("+", "a", "b") == "ab"
    assert interp.binary_op("!=", 1, 2) is True
    assert interp.binary_op("<<", [1], 2) == [1, 2]


def test_freezing(interp):
    items = [1]
    assert not interp.is_frozen(items)
    interp.freeze(items)
    assert interp.is_frozen(items)
    with pytest.raises(RubyFrozenError) as exc:
        interp.check_frozen(items)
    assert exc.value.message == "can't modify frozen Array: [1]"
    assert interp.is_frozen(FrozenStr("x"))
    assert interp.is_frozen(5)
    assert not interp.is_frozen("x")
