import pytest

from rubylet.rubylet_datatypes import RubyError, Symbol
from rubylet.rubylet_runtime import ScriptRunner, ExecutionResult, execute, source_context


@pytest.fixture
def runner():
    return ScriptRunner()


# --- ExecutionResult ---

def test_success_result_fields(runner):
    res = runner.handle_script("puts 'hi'\n41 + 1")
    assert res.ok
    assert res.status == 'success'
    assert res.output == "hi\n"
    assert res.value == 42
    assert res.error_kind is None
    assert res.format_error() == ""


def test_error_result_fields(runner):
    res = runner.handle_script("puts 'a'\nnope")
    assert not res.ok
    assert res.output == "a\n"
    assert res.error_kind == "NameError"
    assert res.error_class == "NameError"
    assert res.error_line == 2
    assert res.value is None


def test_format_error_without_line():
    res = ExecutionResult(status='error', error_kind="InternalError", error_message="oops")
    assert res.format_error() == "InternalError: oops"


def test_format_error_marks_the_line(runner):
    res = runner.handle_script("a = 1\nb = a.fly\nc = 3")
    assert res.format_error() == (
        "Error on line 2: NoMethodError: undefined method 'fly' for an instance of Integer\n"
        "  1 | a = 1\n"
        "> 2 | b = a.fly\n"
        "  3 | c = 3"
    )


def test_source_context_edges():
    src = "one\ntwo"
    assert source_context(src, 1) == "> 1 | one\n  2 | two"
    assert source_context(src, 9) == ""
    assert source_context(None, 1) == ""
    assert source_context("a\nb\nc\nd\ne\nf\ng\nh\ni\nj", 10).splitlines()[-1] == "> 10 | j"


def test_syntax_errors_produce_no_output(runner):
    res = runner.handle_script("puts 'never'\nif true\n  puts 1")
    assert res.error_kind == "SyntaxError"
    assert res.output == ""


# --- sessions ---

def test_each_script_gets_a_fresh_session(runner):
    runner.handle_script("x = 1\ndef helper\n  :h\nend")
    res = runner.handle_script("helper")
    assert res.error_kind == "NameError"


def test_explicit_session_keeps_state(runner):
    session = runner.new_session()
    runner.handle_script("x = 5\ndef twice(v)\n  v * 2\nend", session)
    res = runner.handle_script("twice(x)", session)
    assert res.ok
    assert res.value == 10
    assert runner.interpreter is session


def test_session_survives_an_error(runner):
    session = runner.new_session()
    runner.handle_script("count = 1", session)
    assert not runner.handle_script("count.fly", session).ok
    assert runner.handle_script("count + 1", session).value == 2


def test_output_is_not_repeated_between_runs(runner):
    session = runner.new_session()
    assert runner.handle_script("puts 1", session).output == "1\n"
    assert runner.handle_script("puts 2", session).output == "2\n"


def test_limits_reach_the_session():
    session = ScriptRunner(max_operations=123, time_limit=2.0, max_output=50).new_session()
    assert session.guard.max_operations == 123
    assert session.guard.time_limit == 2.0
    assert session.guard.max_output == 50


def test_environment_limits(monkeypatch):
    monkeypatch.setenv("RUBYLET_MAX_OPERATIONS", "77")
    assert ScriptRunner().new_session().guard.max_operations == 77


# --- execute ---

def test_execute_returns_output():
    assert execute("3.times { |i| print i }") == "012"


def test_execute_raises_with_partial_output():
    with pytest.raises(RubyError) as exc:
        execute("puts 'first'\nraise ArgumentError, 'bad'")
    assert exc.value.kind == "ArgumentError"
    assert exc.value.message == "bad"
    assert exc.value.partial_output == "first\n"
    assert exc.value.line == 2


def test_execute_accepts_limits():
    with pytest.raises(RubyError) as exc:
        execute("loop do\nend", max_operations=1000)
    assert exc.value.kind == "ResourceExceeded"


# --- kernel functions ---

def test_seeded_randomness_is_repeatable():
    src = "p rand(100)\np rand\np [1, 2, 3, 4].shuffle"
    first = ScriptRunner(seed=7).handle_script(src).output
    second = ScriptRunner(seed=7).handle_script(src).output
    assert first == second


def test_srand_resets_the_sequence(runner):
    res = runner.handle_script("srand(3)\na = rand(1000)\nsrand(3)\np a == rand(1000)")
    assert res.output == "true\n"


def test_rand_with_range(runner):
    res = runner.handle_script("v = rand(1..6)\np (1..6).include?(v)\np rand(0.5) < 0.5")
    assert res.output == "true\ntrue\n"


def test_print_family(runner):
    src = "print 'a', 1, nil, :b\nputs\nputc 'xyz'\nputc 10\nprintf(\"%05.1f|%-3s|\\n\", 3.14159, 'x')\npp [1]"
    assert runner.handle_script(src).output == "a1b\nx\n003.1|x  |\n[1]\n"


def test_puts_renders_arrays_on_one_line(runner):
    assert runner.handle_script("puts [1, [2]], nil\nputs []").output == "[1, [2]]\n\n[]\n"


def test_format_and_sprintf(runner):
    res = runner.handle_script("p format('%d items at %.2f', 3, 1.5)\np sprintf('%x', 255)")
    assert res.output == '"3 items at 1.50"\n"ff"\n'


def test_stdout_object(runner):
    res = runner.handle_script("$stdout.puts 'x'\nSTDOUT.print 'y'\np $stdout.write('ab')")
    assert res.output == "x\nyab2\n"


def test_conversion_functions(runner):
    src = "p Integer('42')\np Integer('ff', 16)\np Float('2.5')\np String(7)\np Array(nil)\np Array([1])\np Array(1..2)\np Hash(nil)"
    assert runner.handle_script(src).output == '42\n255\n2.5\n"7"\n[]\n[1]\n[1, 2]\n{}\n'


def test_integer_rejects_an_invalid_radix(runner):
    res = runner.handle_script("Integer('zz', 99)")
    assert res.error_kind == "ArgumentError"
    assert res.error_message == "invalid radix 99"
    assert runner.handle_script("'12'.to_i(1)").error_message == "invalid radix 1"


def test_conversion_of_nil_is_a_type_error(runner):
    res = runner.handle_script("Integer(nil)")
    assert res.error_kind == "TypeError"
    assert res.error_message == "can't convert nil into Integer"


def test_fail_is_raise(runner):
    res = runner.handle_script("fail 'stop'")
    assert res.error_class == "RuntimeError"
    assert res.error_message == "stop"


def test_raise_requires_an_exception(runner):
    res = runner.handle_script("raise 5")
    assert res.error_kind == "TypeError"
    assert res.error_message == "exception class/object expected"


def test_sleep_uses_the_time_budget():
    res = ScriptRunner(time_limit=1.0).handle_script("p sleep(0.2)\nsleep(5)\nputs 'late'")
    assert res.output == "0\n"
    assert res.error_kind == "ResourceExceeded"


def test_sleep_rejects_negative_intervals(runner):
    assert runner.handle_script("sleep(-1)").error_kind == "ArgumentError"


def test_eval_runs_in_the_session(runner):
    res = runner.handle_script("x = 4\np eval('x * 10')\neval('y = 2')\np y")
    assert res.output == "40\n2\n"


def test_define_method_at_top_level(runner):
    res = runner.handle_script("define_method(:greet) { |n| \"hi #{n}\" }\nputs greet('bo')")
    assert res.output == "hi bo\n"


def test_gets_and_require_are_harmless(runner):
    assert runner.handle_script("p gets\np require('set')").output == "nil\ntrue\n"


def test_result_value_is_a_language_value(runner):
    assert runner.handle_script(":ready").value == Symbol("ready")
