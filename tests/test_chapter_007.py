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


# Chapter 7: Classes, modules and objects

POINT = """
class Point
  attr_reader :x, :y
  attr_accessor :label

  def initialize(x, y)
    @x = x
    @y = y
  end

  def +(other)
    Point.new(x + other.x, y + other.y)
  end

  def to_s
    "(#{x}, #{y})"
  end
end
"""


def test_constructor_and_readers():
    assert_ok(run_ruby(POINT + "pt = Point.new(1, 2)\nputs pt.x + pt.y"), "3\n")


def test_to_s_is_used_by_puts_and_interpolation():
    assert_ok(run_ruby(POINT + 'pt = Point.new(1, 2)\nputs pt\nputs "at #{pt}"'), "(1, 2)\nat (1, 2)\n")


def test_operator_methods():
    assert_ok(run_ruby(POINT + "puts Point.new(1, 2) + Point.new(3, 4)"), "(4, 6)\n")


def test_accessor_writes():
    assert_ok(run_ruby(POINT + "pt = Point.new(0, 0)\npt.label = 'origin'\nputs pt.label"), "origin\n")


def test_default_inspect_lists_instance_variables():
    src = "class Pet\n  def initialize(name)\n    @name = name\n    @age = 3\n  end\nend\np Pet.new('Rex')"
    assert_ok(run_ruby(src), '#<Pet @name="Rex", @age=3>\n')


def test_unset_instance_variable_is_nil():
    assert_ok(run_ruby("class Box\n  def peek\n    @item\n  end\nend\np Box.new.peek"), "nil\n")


def test_wrong_arity_for_new():
    assert_error(run_ruby(POINT + "Point.new(1)"), "ArgumentError", "wrong number of arguments (given 1, expected 2)")


def test_inheritance_and_super():
    src = """
class Animal
  attr_reader :name
  def initialize(name)
    @name = name
  end
  def speak
    "..."
  end
  def describe
    "#{name} says #{speak}"
  end
end

class Dog < Animal
  def initialize(name, breed)
    super(name)
    @breed = breed
  end
  def speak
    "Woof"
  end
end

class Puppy < Dog
  def speak
    super + "!"
  end
end

puts Dog.new("Rex", "lab").describe
puts Puppy.new("Bit", "pug").describe
p Puppy.superclass
p Puppy.ancestors.take(3)
p Puppy.new("a", "b").is_a?(Animal)
p Dog.new("a", "b").instance_of?(Animal)
"""
    out = "Rex says Woof\nBit says Woof!\nDog\n[Puppy, Dog, Animal]\ntrue\nfalse\n"
    assert_ok(run_ruby(src), out)


def test_zsuper_passes_the_same_arguments():
    src = """
class Base
  def greet(name, punct = ".")
    "Hello #{name}#{punct}"
  end
end
class Loud < Base
  def greet(name, punct = "!")
    super.upcase
  end
end
puts Loud.new.greet("bo")
"""
    assert_ok(run_ruby(src), "HELLO BO!\n")


def test_class_methods_and_class_variables():
    src = """
class Counter
  @@made = 0
  LIMIT = 3

  def self.made
    @@made
  end

  def initialize
    @@made += 1
  end
end
Counter.new
Counter.new
puts Counter.made
puts Counter::LIMIT
"""
    assert_ok(run_ruby(src), "2\n3\n")


def test_singleton_class_block():
    src = "class Config\n  class << self\n    def default\n      'cfg'\n    end\n  end\nend\nputs Config.default"
    assert_ok(run_ruby(src), "cfg\n")


def test_modules_as_mixins():
    src = """
module Greeter
  def greet
    "Hi, I'm #{name}"
  end
end

class Person
  include Greeter
  attr_reader :name
  def initialize(name)
    @name = name
  end
end

puts Person.new("Ada").greet
p Person.include?(Greeter)
p Person.new("x").is_a?(Greeter)
"""
    assert_ok(run_ruby(src), "Hi, I'm Ada\ntrue\ntrue\n")


def test_module_functions_and_constants():
    src = """
module Geometry
  SIDES = 4
  def self.area(w, h)
    w * h
  end
end
puts Geometry.area(2, 3)
puts Geometry::SIDES
"""
    assert_ok(run_ruby(src), "6\n4\n")


def test_comparable_through_spaceship():
    src = """
class Version
  include Comparable
  attr_reader :n
  def initialize(n)
    @n = n
  end
  def <=>(other)
    n <=> other.n
  end
  def to_s
    "v#{n}"
  end
end
a = Version.new(1)
b = Version.new(2)
p a < b
p a == Version.new(1)
puts [b, a].sort.join(" ")
puts [a, b].max
"""
    assert_ok(run_ruby(src), "true\ntrue\nv1 v2\nv2\n")


def test_enumerable_through_each():
    src = """
class Trio
  include Enumerable
  def each
    yield 3
    yield 1
    yield 2
  end
end
t = Trio.new
p t.sort
p t.map { |v| v * 2 }
p t.include?(2)
p t.min
"""
    assert_ok(run_ruby(src), "[1, 2, 3]\n[6, 2, 4]\ntrue\n1\n")


def test_struct():
    src = """
Pair = Struct.new(:left, :right) do
  def sum
    left + right
  end
end
pr = Pair.new(1, 2)
puts pr.sum
pr.left = 10
p pr
p pr == Pair.new(10, 2)
p pr.to_a
"""
    assert_ok(run_ruby(src), "3\n#<struct Pair left=10, right=2>\ntrue\n[10, 2]\n")


def test_method_missing():
    src = """
class Ghost
  def method_missing(name, *args)
    "#{name} called with #{args.inspect}"
  end
  def respond_to_missing?(name, include_private = false)
    name.to_s.start_with?("boo")
  end
end
g = Ghost.new
puts g.boo(1, 2)
p g.respond_to?(:boo_hoo)
p g.respond_to?(:other)
"""
    assert_ok(run_ruby(src), "boo called with [1, 2]\ntrue\nfalse\n")


def test_reopening_builtin_classes():
    src = 'class String\n  def shout\n    upcase + "!"\n  end\nend\nputs "hey".shout'
    assert_ok(run_ruby(src), "HEY!\n")


def test_undefined_method_on_object():
    src = "class Cat\nend\nCat.new.fly"
    assert_error(run_ruby(src), "NoMethodError", "undefined method 'fly' for an instance of Cat")


def test_uninitialized_constant():
    assert_error(run_ruby("Missing.new"), "NameError", "uninitialized constant Missing")


def test_self_and_class_introspection():
    src = """
class Robot
  def whoami
    self.class.name
  end
end
r = Robot.new
puts r.whoami
p r.respond_to?(:whoami)
p Robot.instance_methods(false)
p r.instance_variables
"""
    assert_ok(run_ruby(src), "Robot\ntrue\n[:whoami]\n[]\n")


def test_equality_override():
    src = """
class Money
  attr_reader :cents
  def initialize(cents)
    @cents = cents
  end
  def ==(other)
    other.is_a?(Money) && cents == other.cents
  end
end
p Money.new(5) == Money.new(5)
p Money.new(5) != Money.new(6)
p [Money.new(1)].include?(Money.new(1))
"""
    assert_ok(run_ruby(src), "true\ntrue\ntrue\n")
