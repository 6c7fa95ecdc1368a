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


# Chapter 3: Methods

def test_method_returns_last_expression():
    assert_ok(run_ruby("def add(a, b)\n  a + b\nend\nputs add(2, 3)"), "5\n")


def test_explicit_return_leaves_early():
    src = "def check(n)\n  return 'neg' if n < 0\n  'pos'\nend\nputs check(-1), check(1)"
    assert_ok(run_ruby(src), "neg\npos\n")


def test_return_several_values_makes_an_array():
    assert_ok(run_ruby("def pair\n  return 1, 2\nend\na, b = pair\nputs a + b"), "3\n")


def test_calls_without_parentheses():
    assert_ok(run_ruby("def greet(name)\n  \"Hi #{name}\"\nend\nputs greet 'Bo'"), "Hi Bo\n")


def test_default_arguments():
    src = "def greet(name, greeting = 'Hello')\n  \"#{greeting}, #{name}\"\nend\nputs greet('A')\nputs greet('B', 'Yo')"
    assert_ok(run_ruby(src), "Hello, A\nYo, B\n")


def test_default_may_use_earlier_parameters():
    assert_ok(run_ruby("def box(w, h = w)\n  w * h\nend\nputs box(3)"), "9\n")


def test_rest_arguments():
    src = "def total(first, *rest)\n  first + rest.sum\nend\nputs total(1)\nputs total(1, 2, 3)"
    assert_ok(run_ruby(src), "1\n6\n")


def test_splat_at_call_site():
    assert_ok(run_ruby("def add(a, b, c)\n  a + b + c\nend\nnums = [1, 2, 3]\nputs add(*nums)"), "6\n")


def test_keyword_arguments():
    src = """
def order(item, qty: 1, gift: false)
  "#{qty} x #{item}#{gift ? ' (gift)' : ''}"
end
puts order('tea')
puts order('cake', qty: 2, gift: true)
"""
    assert_ok(run_ruby(src), "1 x tea\n2 x cake (gift)\n")


def test_required_keyword_missing():
    src = "def connect(host:)\n  host\nend\nconnect"
    assert_error(run_ruby(src), "ArgumentError", "missing keyword: :host")


def test_unknown_keyword():
    src = "def connect(host: 'x')\n  host\nend\nconnect(port: 1)"
    assert_error(run_ruby(src), "ArgumentError", "unknown keyword: :port")


def test_double_splat_collects_keywords():
    src = "def opts(**rest)\n  rest\nend\np opts(a: 1, b: 2)"
    assert_ok(run_ruby(src), "{:a=>1, :b=>2}\n")


@pytest.mark.parametrize("call, expected", [
    ("two(1)", "given 1, expected 2"),
    ("two(1, 2, 3)", "given 3, expected 2"),
    ("opt", "given 0, expected 1..2"),
    ("rest", "given 0, expected 1+"),
], ids=["too-few", "too-many", "optional", "rest"])
def test_wrong_number_of_arguments(call, expected):
    src = "def two(a, b)\nend\ndef opt(a, b = 1)\nend\ndef rest(a, *more)\nend\n" + call
    res = run_ruby(src)
    assert_error(res, "ArgumentError", f"wrong number of arguments ({expected})")
    assert res.output == ""


def test_arity_error_reports_the_call_line():
    res = run_ruby("def one(a)\n  a\nend\nputs 'x'\none")
    assert_error(res, "ArgumentError")
    assert res.error_line == 5
    assert res.output == "x\n"


def test_recursion():
    src = "def fact(n)\n  n <= 1 ? 1 : n * fact(n - 1)\nend\nputs fact(20)"
    assert_ok(run_ruby(src), "2432902008176640000\n")


def test_methods_do_not_see_outer_locals():
    src = "x = 10\ndef peek\n  x\nend\npeek"
    assert_error(run_ruby(src), "NameError", "undefined local variable or method 'x'")


def test_undefined_method_with_arguments_is_no_method_error():
    assert_error(run_ruby("shout('hi')"), "NoMethodError", "undefined method 'shout' for main:Object")


def test_predicate_and_bang_method_names():
    src = "def small?(n)\n  n < 10\nend\nputs small?(3)\nputs small?(30)"
    assert_ok(run_ruby(src), "true\nfalse\n")


def test_endless_method_definition():
    assert_ok(run_ruby("def square(x) = x * x\nputs square(7)"), "49\n")


def test_method_defined_later_can_be_called_from_earlier_method():
    src = "def a\n  b + 1\nend\ndef b\n  41\nend\nputs a"
    assert_ok(run_ruby(src), "42\n")


def test_method_level_rescue_and_ensure():
    src = """
def safe_div(a, b)
  a / b
rescue ZeroDivisionError
  :infinite
ensure
  puts "checked"
end
p safe_div(6, 3)
p safe_div(1, 0)
"""
    assert_ok(run_ruby(src), "checked\n2\nchecked\n:infinite\n")


def test_method_name_symbol():
    assert_ok(run_ruby("def who\n  __method__\nend\np who"), ":who\n")


def test_method_object_and_respond_to():
    src = "def double(n)\n  n * 2\nend\nm = method(:double)\nputs m.call(4)\np [1, 2].map(&m)\nputs respond_to?(:double, true)"
    assert_ok(run_ruby(src), "8\n[2, 4]\ntrue\n")
