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


# Chapter 6: Arrays, hashes, ranges and enumerables

@pytest.mark.parametrize("expr, expected", [
    ("[3, 1, 2].sort", "[1, 2, 3]"),
    ("[3, 1, 2].sort { |a, b| b <=> a }", "[3, 2, 1]"),
    ("%w[pear fig apple].sort_by(&:length)", '["fig", "pear", "apple"]'),
    ("[1, 2, 3].map { |v| v * v }", "[1, 4, 9]"),
    ("(1..10).select(&:even?)", "[2, 4, 6, 8, 10]"),
    ("(1..6).reject { |v| v % 3 == 0 }", "[1, 2, 4, 5]"),
    ("[1, 2, 3, 4].inject(:+)", "10"),
    ("[1, 2, 3].reduce(10) { |acc, v| acc + v }", "16"),
    ("[1, 2, 3].sum", "6"),
    ("[4, 9, 1].max", "9"),
    ("[4, 9, 1].minmax", "[1, 9]"),
    ("%w[a bb ccc].max_by(&:size)", '"ccc"'),
    ("[1, 2, 3, 4].partition(&:odd?)", "[[1, 3], [2, 4]]"),
    ("%w[ant bee ape].group_by { |w| w[0] }", '{"a"=>["ant", "ape"], "b"=>["bee"]}'),
    ("%w[a b a c a].tally", '{"a"=>3, "b"=>1, "c"=>1}'),
    ("(1..7).each_slice(3).to_a", "[[1, 2, 3], [4, 5, 6], [7]]"),
    ("[1, 2, 3].each_cons(2).to_a", "[[1, 2], [2, 3]]"),
    ("[1, 2].zip([3, 4])", "[[1, 3], [2, 4]]"),
    ("[[1, [2]], 3].flatten", "[1, 2, 3]"),
    ("[1, 1, 2, nil].compact.uniq", "[1, 2]"),
    ("[1, 2, 3].include?(2)", "true"),
    ("[1, 2, 3].first(2)", "[1, 2]"),
    ("[1, 2, 3].last", "3"),
    ("[1, 2, 3].take_while { |v| v < 3 }", "[1, 2]"),
    ("[1, 2, 3].each_with_object([]) { |v, acc| acc << v * 2 }", "[2, 4, 6]"),
    ("%w[a b].each_with_index.map { |s, i| s * (i + 1) }", '["a", "bb"]'),
    ("[1, 2, 3].count(&:odd?)", "2"),
    ("[1, 2, 3].find { |v| v > 1 }", "2"),
    ("[1, 2, 3].any? { |v| v > 2 }", "true"),
    ("[1, 2, 3].all?(&:positive?)", "true"),
    ("[1, 2, 3].none?(&:zero?)", "true"),
    ("[1, 2] + [3]", "[1, 2, 3]"),
    ("[1, 2, 2, 3] - [2]", "[1, 3]"),
    ("[1, 2] * 2", "[1, 2, 1, 2]"),
    ("[1, 2, 3].join('-')", '"1-2-3"'),
    ("[1, 2, 3, 4].each_slice(2).map(&:sum)", "[3, 7]"),
    ("[1, 2, 3, 4, 6].chunk_while { |a, b| b == a + 1 }.to_a", "[[1, 2, 3, 4], [6]]"),
    ("[3, 1].map.with_index { |v, i| v + i }", "[3, 2]"),
    ("Array.new(3, 0)", "[0, 0, 0]"),
    ("Array.new(3) { |i| i * i }", "[0, 1, 4]"),
    ("(1..Float::INFINITY).lazy.map { |v| v * 2 }.first(3)", "[2, 4, 6]"),
])
def test_enumerable_methods(expr, expected):
    assert_ok(run_ruby(f"p({expr})"), expected + "\n")


def test_array_indexing():
    src = "a = [10, 20, 30]\np a[0], a[-1], a[5], a[0, 2], a[1..]"
    assert_ok(run_ruby(src), "10\n30\nnil\n[10, 20]\n[20, 30]\n")


def test_array_mutation():
    src = "a = [1, 2]\na << 3\na.push(4, 5)\na.unshift(0)\np a.pop\np a.shift\na[10] = 1\np a.length\na.delete(1)\np a.compact"
    assert_ok(run_ruby(src), "5\n0\n11\n[2, 3, 4]\n")


def test_arrays_are_shared_references():
    assert_ok(run_ruby("a = [1]\nb = a\nb << 2\np a\nc = a.dup\nc << 3\np a"), "[1, 2]\n[1, 2]\n")


def test_fetch_out_of_bounds():
    assert_error(run_ruby("[1, 2].fetch(5)"), "IndexError", "index 5 outside of array bounds: -2...2")


def test_frozen_array():
    assert_error(run_ruby("a = [1].freeze\na << 2"), "FrozenError", "can't modify frozen Array")


def test_hash_basics():
    src = """
h = { "one" => 1, two: 2 }
h[:three] = 3
p h
p h["one"], h[:two], h[:missing]
p h.keys
p h.length
p h.key?(:two)
h.delete("one")
p h
"""
    out = '{"one"=>1, :two=>2, :three=>3}\n1\n2\nnil\n["one", :two, :three]\n3\ntrue\n{:two=>2, :three=>3}\n'
    assert_ok(run_ruby(src), out)


def test_hash_keeps_insertion_order_when_updating():
    assert_ok(run_ruby("h = {b: 1, a: 2}\nh[:b] = 5\np h"), "{:b=>5, :a=>2}\n")


def test_hash_iteration():
    src = "scores = {ann: 3, bo: 5}\nscores.each { |name, score| puts \"#{name}: #{score}\" }\nscores.each_pair do |k, v|\n  print k, v\nend\nputs"
    assert_ok(run_ruby(src), "ann: 3\nbo: 5\nann3bo5\n")


def test_hash_transformations():
    src = """
prices = {apple: 1, pear: 2}
p prices.map { |k, v| [k, v * 10] }.to_h
p prices.transform_values { |v| v + 1 }
p prices.select { |k, v| v > 1 }
p prices.sum { |k, v| v }
p prices.sort_by { |k, v| -v }.first
p prices.min_by { |_, v| v }
p prices.merge({kiwi: 3})
p prices.to_a
p prices.invert
"""
    out = ("{:apple=>10, :pear=>20}\n{:apple=>2, :pear=>3}\n{:pear=>2}\n3\n[:pear, 2]\n[:apple, 1]\n"
           "{:apple=>1, :pear=>2, :kiwi=>3}\n[[:apple, 1], [:pear, 2]]\n{1=>:apple, 2=>:pear}\n")
    assert_ok(run_ruby(src), out)


def test_hash_with_default_value():
    src = "counts = Hash.new(0)\n%w[a b a].each { |w| counts[w] += 1 }\np counts\np counts['zzz']"
    assert_ok(run_ruby(src), '{"a"=>2, "b"=>1}\n0\n')


def test_hash_with_default_block():
    src = "groups = Hash.new { |h, k| h[k] = [] }\ngroups[:x] << 1\ngroups[:x] << 2\np groups"
    assert_ok(run_ruby(src), "{:x=>[1, 2]}\n")


def test_hash_fetch_and_dig():
    src = "h = {a: {b: [1, 2]}}\np h.dig(:a, :b, 1)\np h.fetch(:z, 'dflt')\nh.fetch(:z)"
    res = run_ruby(src)
    assert_error(res, "KeyError", "key not found: :z")
    assert res.output == '2\n"dflt"\n'


def test_ranges():
    src = "r = 1..5\np r.to_a\np (1...5).to_a\np r.include?(3)\np r.sum\np ('a'..'e').to_a.join\np (1..10).step(3).to_a\np (5..1).to_a"
    out = '[1, 2, 3, 4, 5]\n[1, 2, 3, 4]\ntrue\n15\n"abcde"\n[1, 4, 7, 10]\n[]\n'
    assert_ok(run_ruby(src), out)


def test_range_case_membership_with_floats():
    assert_ok(run_ruby("p (1..2).include?(1.5)\np (1...2).cover?(2)"), "true\nfalse\n")


def test_nested_collections_print_with_inspect():
    assert_ok(run_ruby('data = [{name: "x", tags: [:a]}, nil]\np data\nputs data.inspect'),
              '[{:name=>"x", :tags=>[:a]}, nil]\n[{:name=>"x", :tags=>[:a]}, nil]\n')


def test_destructuring_block_parameters():
    src = "pairs = [[1, [2, 3]], [4, [5, 6]]]\npairs.each { |a, (b, c)| print a + b + c, ' ' }\nputs"
    assert_ok(run_ruby(src), "6 15 \n")


def test_enumerator_next():
    src = "e = [1, 2].each\np e.next\np e.next\nbegin\n  e.next\nrescue StopIteration\n  puts 'done'\nend"
    assert_ok(run_ruby(src), "1\n2\ndone\n")
