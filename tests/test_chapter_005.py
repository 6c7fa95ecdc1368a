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


# Chapter 5: Strings and symbols

@pytest.mark.parametrize("expr, expected", [
    ('"hello".upcase', "HELLO"),
    ('"Hello World".swapcase', "hELLO wORLD"),
    ('"ruby is fun".capitalize', "Ruby is fun"),
    ('"stressed".reverse', "desserts"),
    ('"  pad  ".strip', "pad"),
    ('"hello".length', "5"),
    ('"hello"[1]', "e"),
    ('"hello"[1, 3]', "ell"),
    ('"hello"[1..]', "ello"),
    ('"hello"[-3..-1]', "llo"),
    ('"hello".index("l")', "2"),
    ('"a-b-c".split("-").inspect', '["a", "b", "c"]'),
    ('"one two  three".split.length', "3"),
    ('"hi" * 3', "hihihi"),
    ('"title".center(11, "*")', "***title***"),
    ('"7".rjust(3, "0")', "007"),
    ('"mississippi".squeeze', "misisipi"),
    ('"mississippi".count("s")', "4"),
    ('"hello".tr("el", "ip")', "hippo"),
    ('"hello".delete("l")', "heo"),
    ('"line\\n".chomp', "line"),
    ('"az".succ', "ba"),
    ('"abc".start_with?("ab")', "true"),
    ('"abc".include?("d")', "false"),
    ('"a,b".sub(",", ";")', "a;b"),
    ('"2 cats, 3 dogs".gsub(/\\d/) { |d| (d.to_i * 2).to_s }', "4 cats, 6 dogs"),
    ('"cat".gsub(/[aeiou]/, "a" => "4")', "c4t"),
    ('"The rain".scan(/[aeiou]/).join', "eai"),
    ('"abc".chars.inspect', '["a", "b", "c"]'),
    ('"abc".each_char.to_a.length', "3"),
    ('"42".to_i + "1.5".to_f', "43.5"),
    ('"12abc".to_i', "12"),
    ('"ff".hex', "255"),
    ('"b" <=> "a"', "1"),
    ('"Apple".casecmp?("apple")', "true"),
])
def test_string_methods(expr, expected):
    assert_ok(run_ruby(f"puts({expr})"), expected + "\n")


def test_string_concatenation_and_append():
    src = 's = "foo"\ns += "bar"\ns << "baz"\nputs s\nputs "x" + "y"'
    assert_ok(run_ruby(src), "foobarbaz\nxy\n")


def test_adding_a_number_to_a_string_coerces():
    assert_ok(run_ruby('puts "a" + 1'), "a1\n")


def test_bang_methods_change_the_variable():
    src = 's = "hello"\nr = s.upcase!\nputs s\np r\np s.upcase!'
    assert_ok(run_ruby(src), 'HELLO\n"HELLO"\nnil\n')


def test_bang_methods_change_instance_variables():
    src = """
class Shouter
  def initialize(text)
    @text = text
  end
  def shout
    @text.upcase!
    @text << "!"
    @text
  end
end
puts Shouter.new("hey").shout
"""
    assert_ok(run_ruby(src), "HEY!\n")


def test_index_assignment_on_strings():
    assert_ok(run_ruby('s = "cat"\ns[0] = "b"\nputs s'), "bat\n")


def test_frozen_string_cannot_change():
    res = run_ruby('s = "abc".freeze\nputs s.frozen?\ns << "d"')
    assert_error(res, "FrozenError", "can't modify frozen String")
    assert res.output == "true\n"


def test_format_and_percent_operator():
    src = 'puts format("%05.2f", 3.14159)\nputs "%-4s|%3d" % ["ab", 7]\nputs "%x %o %b" % [255, 8, 5]\nputs format("%s has %d", "Bo", 2)'
    assert_ok(run_ruby(src), "03.14\nab  |  7\nff 10 101\nBo has 2\n")


def test_format_too_few_arguments():
    assert_error(run_ruby('format("%d %d", 1)'), "ArgumentError", "too few arguments")


def test_heredoc_free_multiline_string():
    assert_ok(run_ruby('s = "a\nb"\nputs s.lines.length'), "2\n")


def test_each_char_with_block():
    assert_ok(run_ruby('"ab".each_char { |c| print c.ord, " " }\nputs'), "97 98 \n")


def test_regex_match_and_captures():
    src = """
if "John Smith" =~ /(\\w+) (\\w+)/
  puts $~[2]
  puts $1
end
m = "2024-05-06".match(/(?<year>\\d+)-(?<month>\\d+)/)
puts m[:year]
puts m["month"]
p "abc" =~ /z/
p "abc".match?(/b/)
"""
    assert_ok(run_ruby(src), "Smith\nJohn\n2024\n05\nnil\ntrue\n")


def test_symbols():
    src = "s = :status\nputs s\np s\nputs s.to_s.length\np 'ok'.to_sym\np :a <=> :b\np :a.object_id == :a.object_id"
    assert_ok(run_ruby(src), "status\n:status\n6\n:ok\n-1\ntrue\n")


def test_string_and_symbol_are_not_equal():
    assert_ok(run_ruby('p "a" == :a\np "a" == "a"'), "false\ntrue\n")


def test_undefined_string_method():
    assert_error(run_ruby('"abc".shout'), "NoMethodError", "undefined method 'shout' for an instance of String")


def test_string_times_negative():
    assert_error(run_ruby('"a" * -1'), "ArgumentError", "negative argument")
