import pytest

from rubylet.rubylet_datatypes import (
    RubySyntaxError, StructuralError, Symbol, Param, Literal, Identifier, InstanceVar, BinaryOp,
    UnaryOp, Call, Output, Assign, MultiAssign, Append, If, While, For, Case, MethodDef, ClassDef,
    SingletonClassDef, ModuleDef, Return, BeginBlock, RescueClause, Alias, ConstantRef, BlockNode,
    Splat, ArrayNode,
)
from rubylet.rubylet_parser import Parser, parse_program


def lit(v):
    return Literal(v)


def test_program_is_a_statement_list():
    body = parse_program("x = 1\nputs x")
    assert body == [Assign(Identifier("x"), lit(1)), Output("puts", [Identifier("x")])]


def test_statement_lines_are_recorded():
    body = parse_program("\n\nputs 1")
    assert body[0].line == 3


def test_if_elsif_else():
    (node,) = parse_program("if x > 1\n  a\nelsif x < 0\n  b\nelse\n  c\nend")
    assert isinstance(node, If)
    assert len(node.branches) == 2
    assert node.branches[1][0] == BinaryOp("<", Identifier("x"), lit(0))
    assert node.else_body == [Identifier("c")]


def test_unless_negates_condition():
    (node,) = parse_program("unless done\n  go\nend")
    assert node.branches[0][0] == UnaryOp("!", Identifier("done"))


def test_one_line_if_then():
    (node,) = parse_program("if ok then puts 1 else puts 2 end")
    assert node.branches[0][1] == [Output("puts", [lit(1)])]
    assert node.else_body == [Output("puts", [lit(2)])]


def test_statement_modifiers():
    assert parse_program("puts 1 if ok") == [If([(Identifier("ok"), [Output("puts", [lit(1)])])], None)]
    (loop,) = parse_program("i += 1 until i > 3")
    assert isinstance(loop, While) and loop.until


def test_rescue_modifier_wraps_assigned_value():
    (node,) = parse_program("x = risky rescue 0")
    assert isinstance(node, Assign)
    assert node.value == BeginBlock([Identifier("risky")], [RescueClause([], None, [lit(0)])])


def test_while_loop():
    (node,) = parse_program("while i < 3\n  i += 1\nend")
    assert isinstance(node, While)
    assert not node.until
    assert len(node.body) == 1


def test_for_loop_declares_variable():
    (node,) = parse_program("for n in 1..3\n  puts n\nend")
    assert node.names == ["n"]
    assert node.body == [Output("puts", [Identifier("n")])]


def test_case_when():
    (node,) = parse_program("case v\nwhen 1, 2\n  :low\nwhen String\n  :str\nelse\n  :other\nend")
    assert isinstance(node, Case)
    assert node.whens[0][0] == [lit(1), lit(2)]
    assert node.whens[1][0] == [ConstantRef("String")]
    assert node.else_body == [lit(Symbol("other"))]


def test_case_needs_when_first():
    with pytest.raises(StructuralError):
        parse_program("case v\n  puts 1\nwhen 1\nend")


def test_method_definition():
    (node,) = parse_program("def add(a, b = 1)\n  a + b\nend")
    assert node.name == "add"
    assert [p.kind for p in node.params] == ["required", "optional"]
    assert node.body == [BinaryOp("+", Identifier("a"), Identifier("b"))]


def test_method_bodies_have_their_own_locals():
    body = parse_program("x = 1\ndef f\n  x\nend")
    # Inside the method `x` is not a known local, so it stays a bare name.
    assert body[1].body == [Identifier("x")]


def test_setter_and_operator_definitions():
    names = [n.name for n in parse_program(
        "def name=(v)\nend\ndef ==(other)\nend\ndef [](i)\nend\ndef self.build\nend")]
    assert names == ["name=", "==", "[]", "build"]


def test_singleton_method_flag():
    (node,) = parse_program("def self.create\n  new\nend")
    assert node.singleton


def test_endless_method():
    (node,) = parse_program("def square(x) = x * x")
    assert node == MethodDef("square", [Param("x")], [BinaryOp("*", Identifier("x"), Identifier("x"))])


def test_def_with_rescue_section():
    (node,) = parse_program("def f\n  risky\nrescue ArgumentError => e\n  e\nensure\n  done\nend")
    (begin,) = node.body
    assert isinstance(begin, BeginBlock)
    assert begin.rescues[0].classes == [ConstantRef("ArgumentError")]
    assert begin.rescues[0].var == "e"
    assert begin.ensure_body == [Identifier("done")]


def test_class_with_superclass():
    (node,) = parse_program("class Dog < Animal\n  def speak\n    'woof'\n  end\nend")
    assert isinstance(node, ClassDef)
    assert node.superclass == ConstantRef("Animal")
    assert isinstance(node.body[0], MethodDef)


def test_singleton_class_block():
    (node,) = parse_program("class Foo\n  class << self\n    def make\n    end\n  end\nend")
    assert isinstance(node.body[0], SingletonClassDef)


def test_module_definition():
    (node,) = parse_program("module Greeting\n  def hi\n  end\nend")
    assert isinstance(node, ModuleDef)
    assert node.name == "Greeting"


def test_module_name_must_be_constant():
    with pytest.raises(RubySyntaxError):
        parse_program("module greeting\nend")


def test_begin_rescue_else_ensure():
    (node,) = parse_program("begin\n  a\nrescue\n  b\nelse\n  c\nensure\n  d\nend")
    assert node.rescues[0].classes == []
    assert node.else_body == [Identifier("c")]
    assert node.ensure_body == [Identifier("d")]


def test_else_without_rescue_is_rejected():
    with pytest.raises(StructuralError):
        parse_program("begin\n  a\nelse\n  b\nend")


def test_do_block_attaches_to_call():
    (node,) = parse_program("[1, 2].each do |v|\n  puts v\nend")
    assert node.name == "each"
    assert node.block == BlockNode([Param("v")], [Output("puts", [Identifier("v")])])


def test_do_block_on_assigned_call():
    (node,) = parse_program("doubled = [1].map do |v|\n  v * 2\nend")
    assert isinstance(node, Assign)
    assert node.value.block is not None


def test_return_with_several_values():
    (node,) = parse_program("def f\n  return 1, 2\nend")
    assert node.body == [Return(ArrayNode([lit(1), lit(2)]))]


def test_multiple_assignment():
    (node,) = parse_program("a, *b = 1, 2, 3")
    assert node == MultiAssign([Identifier("a"), Splat(Identifier("b"))], [lit(1), lit(2), lit(3)])


def test_append_to_local():
    (node,) = parse_program("list = []\nlist << 4")[1:]
    assert node == Append(Identifier("list"), lit(4))


def test_append_to_instance_variable():
    (node,) = parse_program("@items << 1")
    assert node == Append(InstanceVar("@items"), lit(1))


def test_alias():
    assert parse_program("alias greet hello") == [Alias("greet", "hello")]


def test_interpolation_may_hold_statements():
    (node,) = parse_program('puts "#{a = 1; a + 1}"')
    (string,) = node.args
    assert isinstance(string.parts[0], BeginBlock)


@pytest.mark.parametrize("source", [
    "end",
    "else\nputs 1",
    "def f\n  1\n",
    "while x\n  when 1\nend",
    "puts 1 if",
    "retry",
], ids=["stray-end", "stray-else", "missing-end", "bad-separator", "empty-modifier", "unsupported-keyword"])
def test_structural_errors_are_syntax_errors(source):
    with pytest.raises(RubySyntaxError):
        Parser().parse(source)


def test_missing_end_is_reported_before_running():
    with pytest.raises(StructuralError) as exc:
        parse_program("puts 1\nif true\n  puts 2\n")
    assert exc.value.line == 2


def test_call_with_keyword_arguments_in_statement():
    (node,) = parse_program("greet name: 'x'")
    assert isinstance(node, Call)
    assert node.args[0].braces is False
