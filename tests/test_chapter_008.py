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


# Chapter 8: Exceptions

def test_rescue_with_variable():
    src = "begin\n  1 / 0\nrescue ZeroDivisionError => e\n  puts \"caught: #{e.message}\"\n  p e.class\nend"
    assert_ok(run_ruby(src), "caught: divided by 0\nZeroDivisionError\n")


def test_else_and_ensure():
    src = """
def attempt(n)
  begin
    10 / n
  rescue ZeroDivisionError
    puts "rescued"
  else
    puts "no error"
  ensure
    puts "always"
  end
end
attempt(2)
attempt(0)
"""
    assert_ok(run_ruby(src), "no error\nalways\nrescued\nalways\n")


def test_ensure_runs_when_error_escapes():
    res = run_ruby("begin\n  raise 'boom'\nensure\n  puts 'cleanup'\nend")
    assert_error(res, contains="boom")
    assert res.error_class == "RuntimeError"
    assert res.output == "cleanup\n"


def test_raise_string_is_runtime_error():
    src = "begin\n  raise 'bad thing'\nrescue => e\n  p e\n  puts e.class\nend"
    assert_ok(run_ruby(src), "#<RuntimeError: bad thing>\nRuntimeError\n")


def test_raise_class_with_message():
    src = "begin\n  raise ArgumentError, 'nope'\nrescue ArgumentError => e\n  puts e.message\nend"
    assert_ok(run_ruby(src), "nope\n")


def test_rescue_order_and_multiple_classes():
    src = """
def classify(v)
  Integer(v)
  :ok
rescue TypeError, ArgumentError => e
  e.class.name
end
puts classify("12")
puts classify("x")
puts classify(nil)
"""
    assert_ok(run_ruby(src), "ok\nArgumentError\nTypeError\n")


def test_standard_error_catches_subclasses():
    src = "begin\n  [].fetch(1)\nrescue StandardError => e\n  puts e.class\nend"
    assert_ok(run_ruby(src), "IndexError\n")


def test_bare_rescue_does_not_catch_non_standard_errors():
    src = "begin\n  raise NotImplementedError, 'later'\nrescue\n  puts 'caught'\nend"
    res = run_ruby(src)
    assert_error(res, contains="later")
    assert res.error_class == "NotImplementedError"


def test_custom_exception_class():
    src = """
class InsufficientFunds < StandardError
  attr_reader :needed
  def initialize(needed)
    @needed = needed
    super("need #{needed} more")
  end
end

begin
  raise InsufficientFunds.new(5)
rescue InsufficientFunds => e
  puts e.message
  puts e.needed
  p e.is_a?(StandardError)
end
"""
    assert_ok(run_ruby(src), "need 5 more\n5\ntrue\n")


def test_custom_exception_default_message_is_class_name():
    src = "class Oops < StandardError\nend\nbegin\n  raise Oops\nrescue Oops => e\n  puts e.message\nend"
    assert_ok(run_ruby(src), "Oops\n")


def test_uncaught_custom_exception_reports_its_class():
    res = run_ruby("class Oops < StandardError\nend\nputs 'start'\nraise Oops, 'went wrong'")
    assert_error(res, contains="went wrong")
    assert res.error_class == "Oops"
    assert res.output == "start\n"
    assert res.error_line == 4


def test_reraise_from_rescue():
    src = "begin\n  begin\n    raise 'inner'\n  rescue => e\n    puts 'logging'\n    raise\n  end\nrescue => outer\n  puts outer.message\nend"
    assert_ok(run_ruby(src), "logging\ninner\n")


def test_rescue_modifier():
    assert_ok(run_ruby("v = Integer('zz') rescue -1\nputs v"), "-1\n")


def test_conversion_without_exception():
    assert_ok(run_ruby("p Integer('zz', exception: false)\np Float('1.5')"), "nil\n1.5\n")


def test_no_method_error_on_nil():
    res = run_ruby("name = nil\nputs 'go'\nname.upcase")
    assert_error(res, "NoMethodError", "undefined method 'upcase' for nil")
    assert res.output == "go\n"


def test_rescue_no_method_error_message():
    src = "begin\n  nil.length\nrescue NoMethodError => e\n  puts e.message\nend"
    assert_ok(run_ruby(src), "undefined method 'length' for nil\n")


def test_error_inside_method_keeps_partial_output():
    src = "def explode\n  puts 'inside'\n  raise ArgumentError, 'bad'\nend\nputs 'before'\nexplode\nputs 'after'"
    res = run_ruby(src)
    assert_error(res, "ArgumentError", "bad")
    assert res.output == "before\ninside\n"
    assert res.error_line == 3


def test_format_error_shows_the_failing_line():
    res = run_ruby("x = 1\ny = x / 0\nputs y")
    text = res.format_error()
    assert text.startswith("Error on line 2: ZeroDivisionError: divided by 0")
    assert "> 2 | y = x / 0" in text


def test_exception_hierarchy_queries():
    src = "p ZeroDivisionError.ancestors.include?(StandardError)\np KeyError.superclass"
    assert_ok(run_ruby(src), "true\nIndexError\n")


def test_ensure_value_does_not_replace_result():
    src = "def f\n  begin\n    :body\n  ensure\n    :ensure\n  end\nend\np f"
    assert_ok(run_ruby(src), ":body\n")


def test_rescued_error_in_loop_continues():
    src = """
[1, 0, 2].each do |d|
  begin
    puts 10 / d
  rescue ZeroDivisionError
    puts "skip"
  end
end
"""
    assert_ok(run_ruby(src), "10\nskip\n5\n")


def test_rescue_in_do_block_body():
    src = "[0].each do |d|\n  puts 1 / d\nrescue ZeroDivisionError\n  puts 'block rescue'\nend"
    assert_ok(run_ruby(src), "block rescue\n")


def test_retry_is_reported_as_unsupported():
    res = run_ruby("begin\n  x\nrescue\n  retry\nend")
    assert_error(res, "SyntaxError", "'retry' is not supported")
