import pytest

from rubylet.rubylet_runtime import ScriptRunner


def run_ruby(src: str):
    runner = ScriptRunner()
    return runner.handle_script(src)


def assert_ok(res, output=None):
    assert res.status == 'success', res.format_error()
    if output is not None:
        assert res.output == output


def assert_error(res, kind=None, contains: str | None = None):
    assert res.status == 'error', f"expected error, got success: {res.output!r}"
    if kind is not None:
        assert res.error_kind == kind, res.format_error()
    if contains is not None:
        assert contains in (res.error_message or ""), f"error did not contain {contains!r}: {res.error_message!r}"


# Chapter 1: Output, values and arithmetic

def test_puts_writes_each_argument_on_its_own_line():
    assert_ok(run_ruby('puts "Hello, World!"\nputs 1, 2'), "Hello, World!\n1\n2\n")


def test_puts_without_arguments_prints_a_blank_line():
    assert_ok(run_ruby("puts"), "\n")


def test_puts_nil_prints_an_empty_line():
    assert_ok(run_ruby("puts nil"), "\n")


def test_puts_array_prints_one_line():
    assert_ok(run_ruby("puts [1, 2, 3]"), "[1, 2, 3]\n")


def test_print_adds_no_newline():
    assert_ok(run_ruby('print "a"\nprint "b", 1\nputs'), "ab1\n")


def test_p_shows_inspect_form():
    src = 'p "hi"\np :sym\np nil\np [1, "two", :three]\np({a: 1})'
    assert_ok(run_ruby(src), '"hi"\n:sym\nnil\n[1, "two", :three]\n{:a=>1}\n')


def test_p_returns_its_argument():
    res = run_ruby("x = p 5\nputs x + 1")
    assert_ok(res, "5\n6\n")


def test_integer_arithmetic():
    assert_ok(run_ruby("puts 2 + 3 * 4\nputs (2 + 3) * 4\nputs 2 ** 10"), "14\n20\n1024\n")


def test_integer_division_floors():
    assert_ok(run_ruby("puts 7 / 2\nputs -7 / 2\nputs 7 % 3\nputs 7 % -3"), "3\n-4\n1\n-2\n")


def test_float_results():
    assert_ok(run_ruby("puts 7 / 2.0\nputs 10.0\nputs 0.1 + 0.2"), "3.5\n10.0\n0.30000000000000004\n")


def test_big_integers_do_not_overflow():
    assert_ok(run_ruby("puts 2 ** 100"), "1267650600228229401496703205376\n")


def test_negative_exponent_gives_float():
    assert_ok(run_ruby("puts 2 ** -1"), "0.5\n")


def test_division_by_zero():
    res = run_ruby("puts 1\nputs 1 / 0\nputs 2")
    assert_error(res, "DivisionByZero", "divided by 0")
    assert res.error_class == "ZeroDivisionError"
    assert res.output == "1\n"
    assert res.error_line == 2


def test_modulo_by_zero():
    assert_error(run_ruby("5 % 0"), "DivisionByZero")


def test_string_interpolation():
    src = 'name = "Ada"\nage = 36\nputs "#{name} is #{age} years old"'
    assert_ok(run_ruby(src), "Ada is 36 years old\n")


def test_interpolation_of_expressions_and_nil():
    assert_ok(run_ruby('x = nil\nputs "sum=#{1 + 2} x=#{x}."'), "sum=3 x=.\n")


def test_nested_interpolation():
    assert_ok(run_ruby('puts "#{"#{1 + 1}"}"'), "2\n")


def test_single_quotes_do_not_interpolate():
    assert_ok(run_ruby("puts 'a#{1}b'"), "a#{1}b\n")


def test_variables_and_reassignment():
    assert_ok(run_ruby("x = 1\nx += 4\nx *= 2\nputs x"), "10\n")


def test_or_assign_only_sets_when_nil():
    assert_ok(run_ruby("a = nil\na ||= 3\na ||= 4\nputs a"), "3\n")


def test_multiple_assignment_swaps():
    assert_ok(run_ruby("a, b = 1, 2\na, b = b, a\nputs a, b"), "2\n1\n")


def test_splat_in_multiple_assignment():
    assert_ok(run_ruby("first, *rest = [1, 2, 3]\np first\np rest"), "1\n[2, 3]\n")


def test_globals_are_visible_in_methods():
    src = "$count = 0\ndef bump\n  $count += 1\nend\nbump\nbump\nputs $count"
    assert_ok(run_ruby(src), "2\n")


def test_constants():
    assert_ok(run_ruby("LIMIT = 10\nputs LIMIT * 2"), "20\n")


def test_math_constants_and_functions():
    assert_ok(run_ruby("puts Math.sqrt(16)\nputs Math::PI.round(2)"), "4.0\n3.14\n")


def test_only_nil_and_false_are_falsey():
    src = "[0, '', [], nil, false].each do |v|\n  puts(v ? 'yes' : 'no')\nend"
    assert_ok(run_ruby(src), "yes\nyes\nyes\nno\nno\n")


def test_undefined_variable_is_a_name_error():
    res = run_ruby("puts 1\nputs missing")
    assert_error(res, "NameError", "undefined local variable or method 'missing'")
    assert res.output == "1\n"


def test_type_error_when_adding_nil():
    assert_error(run_ruby("1 + nil"), "TypeError", "nil can't be coerced into Integer")


@pytest.mark.parametrize("src, expected", [
    ("puts 3.7.floor", "3\n"),
    ("puts 3.2.ceil", "4\n"),
    ("puts 2.5.round", "3\n"),
    ("puts -7.abs", "7\n"),
    ("puts 10.divmod(3).inspect", "[3, 1]\n"),
    ("puts 255.to_s(2)", "11111111\n"),
    ("puts 4.even?", "true\n"),
    ("puts 3.14159.round(2)", "3.14\n"),
    ("puts 10.fdiv(4)", "2.5\n"),
], ids=["floor", "ceil", "round-half-up", "abs", "divmod", "to_s-radix", "even", "round-digits", "fdiv"])
def test_numeric_methods(src, expected):
    assert_ok(run_ruby(src), expected)


def test_comments_are_ignored():
    src = "# leading comment\nputs 1 # trailing\n=begin\nputs 2\n=end\nputs 3"
    assert_ok(run_ruby(src), "1\n3\n")


def test_result_value_is_the_last_expression():
    res = run_ruby("x = 4\nx * 10")
    assert_ok(res)
    assert res.value == 40
