import pytest

from rubylet.rubylet_datatypes import (
    RubySyntaxError, Symbol, Param, Literal, StringNode, ArrayNode, HashNode, RangeNode,
    Identifier, InstanceVar, ConstantRef, BinaryOp, LogicalOp, UnaryOp, Ternary, Splat,
    BlockNode, LambdaNode, Call, Output, Yield, Super, Assign, OpAssign,
)
from rubylet.rubylet_expressions import ExpressionParser, ParseContext, parse_params
from rubylet.rubylet_lexer import tokenize


def parse(text, names=()):
    return ExpressionParser(tokenize(text), ParseContext(names)).parse_statement()


def lit(v):
    return Literal(v)


# --- precedence ---

def test_multiplication_binds_tighter():
    assert parse("1 + 2 * 3") == BinaryOp("+", lit(1), BinaryOp("*", lit(2), lit(3)))


def test_additive_is_left_associative():
    assert parse("10 - 4 - 3") == BinaryOp("-", BinaryOp("-", lit(10), lit(4)), lit(3))


def test_power_is_right_associative():
    assert parse("2 ** 3 ** 2") == BinaryOp("**", lit(2), BinaryOp("**", lit(3), lit(2)))


def test_negative_literal_binds_before_power():
    assert parse("-2 ** 2") == BinaryOp("**", lit(-2), lit(2))


def test_unary_minus_on_name():
    assert parse("-x", names={"x"}) == UnaryOp("-", Identifier("x"))


def test_parentheses_group():
    assert parse("(1 + 2) * 3") == BinaryOp("*", BinaryOp("+", lit(1), lit(2)), lit(3))


def test_comparison_below_arithmetic():
    assert parse("a + 1 == b", names={"a", "b"}) == BinaryOp(
        "==", BinaryOp("+", Identifier("a"), lit(1)), Identifier("b"))


def test_logical_operators():
    node = parse("a || b && c", names={"a", "b", "c"})
    assert node == LogicalOp("||", Identifier("a"), LogicalOp("&&", Identifier("b"), Identifier("c")))


def test_word_operators_bind_loosest():
    node = parse("x = 1 and y", names={"y"})
    assert isinstance(node, LogicalOp)
    assert node.left == Assign(Identifier("x"), lit(1))


def test_not_keyword():
    assert parse("not true") == UnaryOp("!", lit(True))


def test_ternary():
    assert parse("a ? 1 : 2", names={"a"}) == Ternary(Identifier("a"), lit(1), lit(2))


def test_ranges():
    assert parse("1..5") == RangeNode(lit(1), lit(5), False)
    assert parse("1...5") == RangeNode(lit(1), lit(5), True)


# --- literals ---

def test_symbol_and_nil():
    assert parse(":ok") == lit(Symbol("ok"))
    assert parse("nil") == lit(None)


def test_array_literal():
    assert parse("[1, 'a', :b]") == ArrayNode([lit(1), lit("a"), lit(Symbol("b"))])


def test_hash_literal_with_labels_and_rockets():
    assert parse('{a: 1, "b" => 2}') == HashNode([(lit(Symbol("a")), lit(1)), (lit("b"), lit(2))])


def test_interpolated_string():
    node = parse('"n=#{n + 1}"', names={"n"})
    assert node == StringNode(["n=", BinaryOp("+", Identifier("n"), lit(1))])


def test_word_list():
    assert parse("%w[x y]") == ArrayNode([lit("x"), lit("y")])


def test_constant_path():
    assert parse("Math::PI") == ConstantRef("PI", ConstantRef("Math"))


# --- names and calls ---

def test_unknown_bare_name_is_identifier():
    assert parse("foo") == Identifier("foo")


def test_command_call_with_arguments():
    assert parse("greet 'bob', 2") == Call(None, "greet", [lit("bob"), lit(2)])


def test_local_variable_is_not_a_command():
    assert parse("x -1", names={"x"}) == BinaryOp("-", Identifier("x"), lit(1))


def test_command_call_with_negative_argument():
    assert parse("foo -1") == Call(None, "foo", [lit(-1)])


def test_parenthesised_call():
    node = parse("add(1, 2)")
    assert node == Call(None, "add", [lit(1), lit(2)], has_parens=True)


def test_output_forms():
    assert parse("puts 1, 2") == Output("puts", [lit(1), lit(2)])
    assert parse("p") == Output("p", [])
    assert parse("print(x)", names={"x"}) == Output("print", [Identifier("x")])


def test_method_chain():
    node = parse("list.map(&:to_s).join(', ')", names={"list"})
    assert node.name == "join"
    assert node.args == [lit(", ")]
    inner = node.receiver
    assert inner.name == "map"
    assert inner.block_arg == lit(Symbol("to_s"))


def test_safe_navigation():
    node = parse("user&.name", names={"user"})
    assert node == Call(Identifier("user"), "name", safe_nav=True)


def test_indexing_vs_array_argument():
    assert parse("a[0]", names={"a"}) == Call(Identifier("a"), "[]", [lit(0)], has_parens=True)
    assert parse("show [0]") == Call(None, "show", [ArrayNode([lit(0)])])


def test_keyword_arguments_become_trailing_hash():
    node = parse("connect(host: 'h', port: 80)")
    assert node.args == [HashNode([(lit(Symbol("host")), lit("h")), (lit(Symbol("port")), lit(80))], braces=False)]


def test_splat_argument():
    assert parse("f(*xs)", names={"xs"}).args == [Splat(Identifier("xs"))]


def test_brace_block_with_params():
    node = parse("[1, 2].each { |v| v }")
    assert node.block == BlockNode([Param("v")], [Identifier("v")])


def test_block_on_bare_name():
    node = parse("loop { 1 }")
    assert node == Call(None, "loop", [], block=BlockNode([], [lit(1)]))


def test_stabby_lambda():
    node = parse("->(x) { x * 2 }")
    assert node == LambdaNode([Param("x")], [BinaryOp("*", Identifier("x"), lit(2))])


def test_yield_and_super():
    assert parse("yield 1, 2") == Yield([lit(1), lit(2)])
    assert parse("super") == Super(None)
    assert parse("super()") == Super([])


# --- assignment ---

def test_assignment_declares_local():
    ctx = ParseContext()
    node = ExpressionParser(tokenize("total = 0"), ctx).parse_statement()
    assert node == Assign(Identifier("total"), lit(0))
    assert "total" in ctx.locals


def test_operator_assignment():
    assert parse("@count += 1") == OpAssign(InstanceVar("@count"), "+", lit(1))
    assert parse("x ||= []", names={"x"}) == OpAssign(Identifier("x"), "||", ArrayNode([]))


def test_attribute_assignment_target():
    node = parse("obj.name = 'z'", names={"obj"})
    assert node == Assign(Call(Identifier("obj"), "name"), lit("z"))


def test_invalid_assignment_target():
    with pytest.raises(RubySyntaxError):
        parse("1 = 2")


def test_trailing_tokens_are_an_error():
    with pytest.raises(RubySyntaxError):
        parse("1 2")


def test_unclosed_paren():
    with pytest.raises(RubySyntaxError):
        parse("(1 + 2")


# --- parameters ---

def test_parameter_kinds():
    params = parse_params(tokenize("a, b = 2, *rest, key:, opt: 1, **opts, &blk"), ParseContext())
    assert [(p.name, p.kind) for p in params] == [
        ("a", "required"), ("b", "optional"), ("rest", "rest"), ("key", "keyword"),
        ("opt", "keyword"), ("opts", "keyrest"), ("blk", "block"),
    ]
    assert params[1].default == lit(2)
    assert params[3].default is None
    assert params[4].default == lit(1)


def test_destructuring_parameter():
    (param,) = parse_params(tokenize("(k, v)"), ParseContext())
    assert param.kind == "destructure"
    assert [p.name for p in param.names] == ["k", "v"]
