"""
Built-in methods for every value kind.

Each table publishes its `_name` members as methods: `_empty_q` becomes
`empty?` and `_map_bang` becomes `map!`. Operators resolve through
OPERATORS to `op_*` members. Tables receive the receiver as their first
argument and the block, when they accept one, as the `block` keyword.
"""
import functools
import inspect
import itertools
import math
import re
from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR, ROUND_CEILING
from typing import Any, Dict, List, Optional

from rubylet.rubylet_datatypes import (
    Symbol, RubyHash, RubyRange, RubyRegexp, RubyMatch, RubyClass, RubyObject, Proc,
    Enumerator, LazySequence, RubyError,
    RubyArgumentError, RubyTypeError, RubyIndexError, RubyKeyError, RubyRangeError,
    RubyLocalJumpError, RubyNameError, RubyNoMethodError, DivisionByZero, ResourceExceeded,
    error_for_class,
    truthy, hash_key, values_equal, compare_values,
)


OPERATORS = {
    "==": "op_eq", "!=": "op_neq", "!": "op_not", "===": "op_case_eq", "=~": "op_match",
    "<=>": "op_cmp", "+": "op_plus", "-": "op_minus", "*": "op_times", "/": "op_div",
    "%": "op_mod", "**": "op_pow", "<": "op_lt", ">": "op_gt", "<=": "op_le", ">=": "op_ge",
    "<<": "op_lshift", ">>": "op_rshift", "&": "op_and", "|": "op_or", "^": "op_xor",
    "[]": "op_aref", "[]=": "op_aset", "-@": "op_uminus", "+@": "op_uplus", "~": "op_invert",
}

# Largest integer result `**`, `*` or `<<` may build before the run is stopped.
MAX_INTEGER_BITS = 100_000


def method_name(attr: str) -> str:
    name = attr[1:]
    if name.endswith("_q"):
        return name[:-2] + "?"
    if name.endswith("_bang"):
        return name[:-5] + "!"
    return name


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def sym_name(value) -> str:
    if isinstance(value, Symbol):
        return value.name
    if isinstance(value, str):
        return value
    raise RubyTypeError(f"{value!r} is not a symbol nor a string")


def round_half_up(value, digits: int = 0, rounding=ROUND_HALF_UP):
    """Integer/Float#round (and floor/ceil through `rounding`) with a digits argument."""
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        if digits > 0:
            return value
        raise error_for_class("FloatDomainError", "Infinity" if not math.isnan(value) else "NaN")
    if isinstance(value, int) and digits >= 0:
        return value
    quantum = Decimal(1).scaleb(-digits)
    result = Decimal(repr(value) if isinstance(value, float) else value).quantize(quantum, rounding=rounding)
    if digits > 0:
        return float(result)
    return int(result)


def numeric_binary(op: str, a, b):
    """Arithmetic and comparison between two numbers, with language semantics."""
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "*":
        if isinstance(a, int) and isinstance(b, int) and a.bit_length() + b.bit_length() > MAX_INTEGER_BITS:
            raise ResourceExceeded("integer result of * is too large", reason="memory")
        return a * b
    if op in ("/", "%"):
        if b == 0:
            raise DivisionByZero("divided by 0")
        if op == "%":
            return a % b
        if isinstance(a, int) and isinstance(b, int):
            return a // b
        return a / b
    if op == "**":
        if isinstance(a, int) and isinstance(b, int):
            if b < 0:
                if a == 0:
                    raise DivisionByZero("divided by 0")
                return float(a) ** b
            if abs(a) > 1 and b * abs(a).bit_length() > MAX_INTEGER_BITS:
                raise ResourceExceeded("integer result of ** is too large", reason="memory")
            return a ** b
        try:
            result = float(a) ** b
        except ZeroDivisionError:
            return math.inf
        except OverflowError:
            return math.inf
        return math.nan if isinstance(result, complex) else result
    if op == "<":
        return a < b
    if op == ">":
        return a > b
    if op == "<=":
        return a <= b
    if op == ">=":
        return a >= b
    if op == "<=>":
        return compare_values(a, b)
    raise RubyNoMethodError(f"undefined method '{op}' for an instance of {type(a).__name__}")


class BuiltinTable:
    """Discovers a table's `_name` members and calls them with arity checking."""

    def __init__(self, interp):
        self.interp = interp
        self.methods: Dict[str, Any] = {}
        self._signatures: Dict[Any, inspect.Signature] = {}
        for attr, member in inspect.getmembers(self):
            if attr.startswith("_") and not attr.startswith("__") and callable(member):
                self.methods[method_name(attr)] = member
        for op, attr in OPERATORS.items():
            member = getattr(self, attr, None)
            if member is not None:
                self.methods[op] = member
        for klass in reversed(type(self).__mro__):
            for alias, target in vars(klass).get("ALIASES", {}).items():
                if target in self.methods:
                    self.methods[alias] = self.methods[target]

    def lookup(self, name: str):
        return self.methods.get(name)

    def names(self) -> List[str]:
        return sorted(self.methods)

    def call(self, fn, recv, args: List[Any], block=None):
        signature = self._signatures.get(fn)
        if signature is None:
            signature = self._signatures[fn] = inspect.signature(fn)
        kwargs = {}
        if "block" in signature.parameters:
            kwargs["block"] = block
        try:
            signature.bind(recv, *args, **kwargs)
        except TypeError:
            raise RubyArgumentError(
                f"wrong number of arguments (given {len(args)}, expected {_arity_text(signature)})")
        return fn(recv, *args, **kwargs)

    # ----- helpers shared by the tables -----

    def run_block(self, block, *args):
        return self.interp.yield_block(block, list(args))

    def need_block(self, block, name: str = "yield"):
        if block is None:
            raise RubyLocalJumpError(f"no block given ({name})")
        return block

    def to_s(self, value) -> str:
        return self.interp.printer.to_s(value)

    def inspect(self, value) -> str:
        return self.interp.printer.pformat(value)

    def class_name(self, value) -> str:
        return self.interp.class_name(value)

    def equal(self, a, b) -> bool:
        return self.interp.equal(a, b)

    def compare(self, a, b) -> int:
        return self.interp.compare(a, b)

    def sort_key(self):
        return functools.cmp_to_key(self.compare)

    def check_frozen(self, value):
        self.interp.check_frozen(value)

    def to_int(self, value, what: str = "Integer") -> int:
        if isinstance(value, bool) or value is None or not isinstance(value, (int, float)):
            raise RubyTypeError(f"no implicit conversion of {self.class_name(value)} into {what}")
        return int(value)


def _arity_text(signature) -> str:
    params = [p for p in list(signature.parameters.values())[1:] if p.name != "block"]
    required = sum(1 for p in params if p.default is inspect.Parameter.empty
                   and p.kind == inspect.Parameter.POSITIONAL_OR_KEYWORD)
    optional = sum(1 for p in params if p.default is not inspect.Parameter.empty)
    if any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params):
        return f"{required}+"
    if optional:
        return f"{required}..{required + optional}"
    return str(required)


# =================================================================
# Object (shared by every kind)
# =================================================================

class ObjectMethods(BuiltinTable):
    """Methods every value answers to."""

    ALIASES = {"kind_of?": "is_a?", "public_send": "send", "__send__": "send",
               "yield_self": "then", "clone": "dup"}

    def _class(self, recv): return self.interp.class_of(recv)
    def _nil_q(self, recv): return recv is None
    def _itself(self, recv): return recv
    def _to_s(self, recv): return self.to_s(recv)
    def _inspect(self, recv): return self.inspect(recv)
    def _frozen_q(self, recv): return self.interp.is_frozen(recv)
    def _hash(self, recv): return hash(hash_key(recv))

    def _is_a_q(self, recv, cls):
        if not isinstance(cls, RubyClass):
            raise RubyTypeError("class or module required")
        return self.interp.class_of(recv).is_subclass_of(cls)

    def _instance_of_q(self, recv, cls):
        return self.interp.class_of(recv) is cls

    def _respond_to_q(self, recv, name, include_all=False):
        return self.interp.responds_to(recv, sym_name(name))

    def _send(self, recv, name, *args, block=None):
        return self.interp.send(recv, sym_name(name), list(args), block)

    def _method(self, recv, name):
        name = sym_name(name)
        if not self.interp.responds_to(recv, name):
            raise RubyNoMethodError(f"undefined method '{name}' for {self.interp.describe_receiver(recv)}")
        return Proc([], [], None, is_lambda=True, symbol=None,
                    native=lambda *args, block=None: self.interp.send(recv, name, list(args), block))

    def _tap(self, recv, block=None):
        self.run_block(self.need_block(block), recv)
        return recv

    def _then(self, recv, block=None):
        return self.run_block(self.need_block(block), recv)

    def _freeze(self, recv):
        self.interp.freeze(recv)
        return recv

    def _dup(self, recv):
        if isinstance(recv, list):
            return list(recv)
        if isinstance(recv, RubyHash):
            return recv.copy()
        if isinstance(recv, RubyObject):
            dup = RubyObject(recv.cls)
            dup.ivars = dict(recv.ivars)
            return dup
        return recv

    def _equal_q(self, recv, other):
        if is_number(recv) or isinstance(recv, (Symbol, bool)) or recv is None:
            return type(recv) is type(other) and values_equal(recv, other)
        return recv is other

    def _eql_q(self, recv, other):
        return type(recv) is type(other) and values_equal(recv, other)

    def _object_id(self, recv):
        if isinstance(recv, int) and not isinstance(recv, bool):
            return 2 * recv + 1
        if recv is None:
            return 8
        if isinstance(recv, Symbol):
            return hash(recv) & 0xFFFFFFFF
        return id(recv) // 8

    def _instance_variable_get(self, recv, name):
        return self.ivars_of(recv).get(sym_name(name))

    def _instance_variable_set(self, recv, name, value):
        self.check_frozen(recv)
        self.ivars_of(recv)[sym_name(name)] = value
        return value

    def _instance_variable_defined_q(self, recv, name):
        return sym_name(name) in self.ivars_of(recv)

    def _instance_variables(self, recv):
        return [Symbol(k) for k in self.ivars_of(recv)]

    def ivars_of(self, recv) -> Dict[str, Any]:
        ivars = getattr(recv, "ivars", None)
        return ivars if ivars is not None else {}

    def _display(self, recv):
        self.interp.write(self.to_s(recv))
        return None

    def _methods(self, recv):
        return [Symbol(n) for n in self.interp.method_names(recv)]

    def op_eq(self, recv, other): return values_equal(recv, other) or recv is other
    def op_neq(self, recv, other): return not self.equal(recv, other)
    def op_not(self, recv): return not truthy(recv)
    def op_case_eq(self, recv, other): return self.equal(recv, other)
    def op_match(self, recv, other): return None

    def op_cmp(self, recv, other):
        return 0 if self.equal(recv, other) else None

    # Comparable, through the receiver's `<=>`.
    def op_lt(self, recv, other): return self.compare(recv, other) < 0
    def op_gt(self, recv, other): return self.compare(recv, other) > 0
    def op_le(self, recv, other): return self.compare(recv, other) <= 0
    def op_ge(self, recv, other): return self.compare(recv, other) >= 0

    def _between_q(self, recv, low, high):
        return self.compare(recv, low) >= 0 and self.compare(recv, high) <= 0

    def _clamp(self, recv, low, high=None):
        if isinstance(low, RubyRange):
            low, high = low.start, low.end
        if low is not None and self.compare(recv, low) < 0:
            return low
        if high is not None and self.compare(recv, high) > 0:
            return high
        return recv


class NilMethods(ObjectMethods):
    def _to_s(self, recv): return ""
    def _to_a(self, recv): return []
    def _to_i(self, recv): return 0
    def _to_f(self, recv): return 0.0
    def _to_h(self, recv): return RubyHash()
    def _inspect(self, recv): return "nil"
    def op_and(self, recv, other): return False
    def op_or(self, recv, other): return truthy(other)
    def op_xor(self, recv, other): return truthy(other)


class BoolMethods(ObjectMethods):
    def _to_s(self, recv): return "true" if recv else "false"
    def op_and(self, recv, other): return recv and truthy(other)
    def op_or(self, recv, other): return recv or truthy(other)
    def op_xor(self, recv, other): return recv != truthy(other)


# =================================================================
# Numbers
# =================================================================

class NumericMethods(ObjectMethods):
    """Integer and Float."""

    ALIASES = {"magnitude": "abs", "next": "succ", "modulo": "%", "to_int": "to_i",
               "inspect": "to_s"}

    def operand(self, recv, other, op: str):
        if is_number(other):
            return other
        if op in ("+", "-", "*", "/", "%", "**"):
            raise RubyTypeError(f"{self.coerce_name(other)} can't be coerced into {self.class_name(recv)}")
        raise RubyArgumentError(f"comparison of {self.class_name(recv)} with {self.short_inspect(other)} failed")

    def coerce_name(self, value):
        return "nil" if value is None else self.class_name(value)

    def short_inspect(self, value):
        if value is None or isinstance(value, (int, float, str, Symbol)):
            return self.inspect(value)
        return self.class_name(value)

    def arith(self, op, recv, other):
        return numeric_binary(op, recv, self.operand(recv, other, op))

    def op_plus(self, recv, other):
        if isinstance(other, str):
            return self.to_s(recv) + other
        return self.arith("+", recv, other)

    def op_minus(self, recv, other): return self.arith("-", recv, other)
    def op_times(self, recv, other): return self.arith("*", recv, other)
    def op_div(self, recv, other): return self.arith("/", recv, other)
    def op_mod(self, recv, other): return self.arith("%", recv, other)
    def op_pow(self, recv, other): return self.arith("**", recv, other)
    def op_lt(self, recv, other): return self.arith("<", recv, other)
    def op_gt(self, recv, other): return self.arith(">", recv, other)
    def op_le(self, recv, other): return self.arith("<=", recv, other)
    def op_ge(self, recv, other): return self.arith(">=", recv, other)
    def op_eq(self, recv, other): return is_number(other) and recv == other
    def op_uminus(self, recv): return -recv
    def op_uplus(self, recv): return recv

    def op_cmp(self, recv, other):
        return compare_values(recv, other) if is_number(other) else None

    def int_operand(self, recv, other):
        if not isinstance(recv, int) or not isinstance(other, int) or isinstance(other, bool):
            raise RubyTypeError(f"{self.coerce_name(other)} can't be coerced into {self.class_name(recv)}")
        return other

    def op_and(self, recv, other): return recv & self.int_operand(recv, other)
    def op_or(self, recv, other): return recv | self.int_operand(recv, other)
    def op_xor(self, recv, other): return recv ^ self.int_operand(recv, other)

    def op_lshift(self, recv, other):
        shift = self.int_operand(recv, other)
        if recv and shift > 0 and recv.bit_length() + shift > MAX_INTEGER_BITS:
            raise ResourceExceeded("integer result of << is too large", reason="memory")
        return recv << shift

    def op_rshift(self, recv, other): return recv >> self.int_operand(recv, other)
    def op_invert(self, recv): return ~recv

    def op_aref(self, recv, bit):
        return (recv >> self.to_int(bit)) & 1

    def _to_s(self, recv, base=10):
        if isinstance(recv, float):
            return self.to_s(recv)
        if base == 10:
            return str(recv)
        if not 2 <= base <= 36:
            raise RubyArgumentError(f"invalid radix {base}")
        digits = "0123456789abcdefghijklmnopqrstuvwxyz"
        n, out = abs(recv), []
        while True:
            n, r = divmod(n, base)
            out.append(digits[r])
            if n == 0:
                break
        return ("-" if recv < 0 else "") + "".join(reversed(out))

    def _to_i(self, recv):
        if isinstance(recv, float) and (math.isnan(recv) or math.isinf(recv)):
            raise error_for_class("FloatDomainError", self.to_s(recv))
        return int(recv)

    def _to_f(self, recv): return float(recv)
    def _to_r(self, recv): return recv
    def _to_c(self, recv): return recv
    def _abs(self, recv): return abs(recv)
    def _integer_q(self, recv): return isinstance(recv, int)
    def _zero_q(self, recv): return recv == 0
    def _nonzero_q(self, recv): return None if recv == 0 else recv
    def _positive_q(self, recv): return recv > 0
    def _negative_q(self, recv): return recv < 0
    def _even_q(self, recv): return self.int_operand(recv, recv) % 2 == 0
    def _odd_q(self, recv): return self.int_operand(recv, recv) % 2 == 1
    def _finite_q(self, recv): return not isinstance(recv, float) or math.isfinite(recv)
    def _nan_q(self, recv): return isinstance(recv, float) and math.isnan(recv)

    def _infinite_q(self, recv):
        if isinstance(recv, float) and math.isinf(recv):
            return 1 if recv > 0 else -1
        return None

    def _succ(self, recv): return recv + 1
    def _pred(self, recv): return recv - 1
    def _ord(self, recv): return recv

    def _chr(self, recv):
        if not 0 <= recv < 0x110000:
            raise RubyRangeError(f"{recv} out of char range")
        return chr(recv)

    def _round(self, recv, digits=0, half=None):
        return round_half_up(recv, self.to_int(digits))

    def _floor(self, recv, digits=0):
        return round_half_up(recv, self.to_int(digits), rounding=ROUND_FLOOR)

    def _ceil(self, recv, digits=0):
        return round_half_up(recv, self.to_int(digits), rounding=ROUND_CEILING)

    def _truncate(self, recv, digits=0):
        if recv < 0:
            return self._ceil(recv, digits)
        return self._floor(recv, digits)

    def _div(self, recv, other):
        other = self.operand(recv, other, "/")
        if other == 0:
            raise DivisionByZero("divided by 0")
        return int(math.floor(recv / other)) if isinstance(recv, float) or isinstance(other, float) else recv // other

    def _fdiv(self, recv, other):
        other = self.operand(recv, other, "/")
        if other == 0:
            return math.nan if recv == 0 else math.copysign(math.inf, recv)
        return recv / other

    def _divmod(self, recv, other):
        other = self.operand(recv, other, "%")
        if other == 0:
            raise DivisionByZero("divided by 0")
        q, r = divmod(recv, other)
        return [int(q) if isinstance(q, float) else q, r]

    def _remainder(self, recv, other):
        other = self.operand(recv, other, "%")
        if other == 0:
            raise DivisionByZero("divided by 0")
        return math.fmod(recv, other) if isinstance(recv, float) or isinstance(other, float) \
            else int(math.copysign(abs(recv) % abs(other), recv))

    def _pow(self, recv, exponent, modulus=None):
        if modulus is not None:
            return pow(recv, exponent, modulus)
        return self.op_pow(recv, exponent)

    def _gcd(self, recv, other): return math.gcd(recv, self.int_operand(recv, other))
    def _lcm(self, recv, other): return math.lcm(recv, self.int_operand(recv, other))
    def _bit_length(self, recv): return recv.bit_length()

    def _digits(self, recv, base=10):
        if recv < 0:
            raise RubyArgumentError("out of domain", ruby_class="Math::DomainError")
        out = []
        while True:
            recv, r = divmod(recv, base)
            out.append(r)
            if recv == 0:
                return out

    def _coerce(self, recv, other):
        if isinstance(recv, float) or isinstance(other, float):
            return [float(other), float(recv)]
        return [other, recv]

    def _size(self, recv): return 8

    # ----- iteration -----

    def _times(self, recv, block=None):
        if block is None:
            return Enumerator(self.materialize(range(max(0, recv))), "times", recv)
        for i in range(recv):
            self.run_block(block, i)
        return recv

    def _upto(self, recv, limit, block=None):
        values = range(recv, int(math.floor(limit)) + 1)
        if block is None:
            return Enumerator(self.materialize(values), "upto", recv)
        for i in values:
            self.run_block(block, i)
        return recv

    def _downto(self, recv, limit, block=None):
        values = range(recv, int(math.ceil(limit)) - 1, -1)
        if block is None:
            return Enumerator(self.materialize(values), "downto", recv)
        for i in values:
            self.run_block(block, i)
        return recv

    def _step(self, recv, limit=None, step=1, block=None):
        if isinstance(limit, RubyHash):
            options = {k.name if isinstance(k, Symbol) else k: v for k, v in limit.pairs()}
            limit, step = options.get("to"), options.get("by", 1)
        values = step_values(recv, limit, step)
        if block is None:
            return Enumerator(self.materialize(values), "step", recv)
        for value in values:
            self.run_block(block, value)
        return recv

    def materialize(self, iterable) -> list:
        if hasattr(iterable, "__len__"):
            self.interp.guard.check_collection(len(iterable))
            return list(iterable)
        out = []
        for value in iterable:
            out.append(value)
            if len(out) > self.interp.guard.max_collection:
                self.interp.guard.check_collection(len(out))
        return out


def step_values(start, limit, step):
    """Yields start, start+step, ... up to limit (inclusive); endless when limit is None."""
    if step == 0:
        raise RubyArgumentError("step can't be 0")
    use_float = any(isinstance(v, float) for v in (start, limit, step))
    if use_float and limit is not None:
        count = int(math.floor((limit - start) / step + 1e-9))
        for i in range(count + 1):
            yield start + i * step
        return
    value = start
    while limit is None or (value <= limit if step > 0 else value >= limit):
        yield value
        value += step


# =================================================================
# Strings and symbols
# =================================================================

_FORMAT_RE = re.compile(
    r"%\{(?P<brace>\w+)\}|%(?:<(?P<name>\w+)>)?(?P<flags>[-+ 0#]*)(?P<width>\*|\d+)?"
    r"(?:\.(?P<precision>\d+))?(?P<type>[sdiufgeExXobBcp%])?")

_INT_PREFIX = re.compile(r"\A\s*([-+]?)(0[bBoOxX])?([0-9a-zA-Z_]*)")
_FLOAT_PREFIX = re.compile(r"\A\s*[-+]?(?:\d[\d_]*)?(?:\.\d[\d_]*)?(?:[eE][-+]?\d+)?")

# Bang and in-place string methods; the interpreter rebinds the receiver
# variable to the non-destructive result.
STRING_MUTATORS = {
    "upcase!": "upcase", "downcase!": "downcase", "capitalize!": "capitalize",
    "swapcase!": "swapcase", "reverse!": "reverse", "strip!": "strip", "lstrip!": "lstrip",
    "rstrip!": "rstrip", "chomp!": "chomp", "chop!": "chop", "squeeze!": "squeeze",
    "gsub!": "gsub", "sub!": "sub", "tr!": "tr", "delete!": "delete", "succ!": "succ",
    "next!": "succ", "delete_prefix!": "delete_prefix", "delete_suffix!": "delete_suffix",
    "<<": "+", "concat": "concat", "prepend": "prepend", "insert": "insert",
    "replace": "replace", "clear": "clear", "freeze": "freeze",
}


def format_string(interp, fmt: str, args) -> str:
    """Kernel#format / String#%."""
    printer = interp.printer
    values = list(args)
    named = values[0] if len(values) == 1 and isinstance(values[0], RubyHash) else None
    position = 0

    def next_arg():
        nonlocal position
        if position >= len(values):
            raise RubyArgumentError("too few arguments")
        position += 1
        return values[position - 1]

    def convert(m):
        kind = m.group("type")
        if m.group("brace"):
            return printer.to_s(_named_arg(named, m.group("brace")))
        if kind is None:
            raise RubyArgumentError(f"malformed format string - {m.group(0)}")
        if kind == "%":
            return "%"
        flags = m.group("flags")
        width = m.group("width")
        if width == "*":
            width = str(next_arg())
        precision = m.group("precision")
        interp.guard.check_collection(int(width or 0) + int(precision or 0))
        value = _named_arg(named, m.group("name")) if m.group("name") else next_arg()
        align = "<" if "-" in flags else ">"
        if kind in "sp":
            text = printer.to_s(value) if kind == "s" else printer.pformat(value)
            if precision is not None:
                text = text[:int(precision)]
            return format(text, f"{align}{width or ''}")
        sign = "+" if "+" in flags else (" " if " " in flags else "")
        zero = "0" if "0" in flags and "-" not in flags else ""
        if zero:
            align = "="
        alt = "#" if "#" in flags else ""
        spec_width = width or ""
        if kind == "c":
            text = value if isinstance(value, str) else chr(value)
            return format(text[:1], f"{'<' if '-' in flags else '>'}{spec_width}")
        if kind in "diu":
            number = _format_integer(value)
            return format(number, f"{align}{sign}{zero}{spec_width}d")
        if kind in "xXobB":
            number = _format_integer(value)
            code = {"x": "x", "X": "X", "o": "o", "b": "b", "B": "b"}[kind]
            return format(number, f"{align}{sign}{alt}{zero}{spec_width}{code}")
        number = float(value) if is_number(value) else _parse_float_arg(value)
        prec = f".{precision}" if precision is not None else ".6"
        if kind == "g" and precision is None:
            prec = ""
        return format(number, f"{align}{sign}{alt}{zero}{spec_width}{prec}{kind}")

    return _FORMAT_RE.sub(convert, fmt)


def _named_arg(named, name):
    if named is None:
        raise RubyArgumentError("one hash required")
    key = Symbol(name)
    if key not in named:
        raise RubyKeyError(f"key<{name}> not found")
    return named[key]


def _format_integer(value) -> int:
    if isinstance(value, float):
        return math.floor(value)
    if isinstance(value, str):
        return parse_integer(value, strict=True)
    if value is None or isinstance(value, bool) or not isinstance(value, int):
        raise RubyTypeError("can't convert value into Integer")
    return value


def _parse_float_arg(value) -> float:
    if isinstance(value, str):
        return parse_float(value, strict=True)
    raise RubyTypeError("can't convert value into Float")


def parse_integer(text: str, base: int = 10, strict: bool = False):
    """String#to_i (lenient) and Integer() (strict) parsing."""
    if not 2 <= base <= 36:
        raise RubyArgumentError(f"invalid radix {base}")
    m = _INT_PREFIX.match(text)
    sign, prefix = m.group(1), m.group(2)
    if prefix:
        prefix_base = {"b": 2, "o": 8, "x": 16}[prefix[1].lower()]
        if not strict and base != prefix_base:
            return 0
        base = prefix_base
    valid = "0123456789abcdefghijklmnopqrstuvwxyz"[:base]
    taken = []
    end = m.start(3)
    for i in range(m.start(3), len(text)):
        ch = text[i]
        if ch == "_" and taken:
            continue
        if ch.lower() not in valid:
            break
        taken.append(ch)
        end = i + 1
    if strict and (not taken or text[end:].strip()):
        raise RubyArgumentError(f"invalid value for Integer(): {_quote(text)}")
    if not taken:
        return 0
    value = int("".join(taken), base)
    return -value if sign == "-" else value


def parse_float(text: str, strict: bool = False) -> float:
    m = _FLOAT_PREFIX.match(text)
    taken = m.group(0).strip().replace("_", "")
    if strict and (not taken or text[m.end():].strip() or taken in "+-"):
        raise RubyArgumentError(f"invalid value for Float(): {_quote(text)}")
    try:
        return float(taken) if taken not in ("", "+", "-") else 0.0
    except ValueError:
        return 0.0


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def expand_tr_set(spec: str):
    negate = len(spec) > 1 and spec[0] == "^"
    if negate:
        spec = spec[1:]
    chars: List[str] = []
    i = 0
    while i < len(spec):
        if i + 2 < len(spec) and spec[i + 1] == "-":
            chars.extend(chr(c) for c in range(ord(spec[i]), ord(spec[i + 2]) + 1))
            i += 3
        else:
            chars.append(spec[i])
            i += 1
    return chars, negate


def _in_sets(ch: str, sets) -> bool:
    for chars, negate in sets:
        if (ch in chars) == negate:
            return False
    return True


def expand_replacement(template: str, match) -> str:
    """Expands `\\0`, `\\1`, `\\&` and `\\k<name>` in a sub/gsub replacement."""
    out = []
    i = 0
    while i < len(template):
        ch = template[i]
        if ch == "\\" and i + 1 < len(template):
            nxt = template[i + 1]
            if nxt.isdigit():
                index = int(nxt)
                out.append((match.group(index) or "") if index <= (match.re.groups or 0) else "")
                i += 2
                continue
            if nxt == "&":
                out.append(match.group(0))
                i += 2
                continue
            if nxt == "k" and template.startswith("<", i + 2):
                close = template.find(">", i + 3)
                if close != -1:
                    out.append(match.group(template[i + 3:close]) or "")
                    i = close + 1
                    continue
            if nxt == "\\":
                out.append("\\")
                i += 2
                continue
        out.append(ch)
        i += 1
    return "".join(out)


def string_succ(text: str) -> str:
    if not text:
        return ""
    chars = list(text)
    positions = [i for i, c in enumerate(chars) if c.isascii() and c.isalnum()]
    if not positions:
        chars[-1] = chr(ord(chars[-1]) + 1)
        return "".join(chars)
    for index in reversed(positions):
        ch = chars[index]
        if ch == "z":
            chars[index], carry = "a", "a"
        elif ch == "Z":
            chars[index], carry = "A", "A"
        elif ch == "9":
            chars[index], carry = "0", "1"
        else:
            chars[index] = chr(ord(ch) + 1)
            return "".join(chars)
    chars.insert(positions[0], carry)
    return "".join(chars)


def range_bounds(r: RubyRange, length: int):
    """Translates a range index into (start, stop) slice bounds, None when out of range."""
    start = 0 if r.start is None else r.start
    if start < 0:
        start += length
    if start < 0 or start > length:
        return None
    if r.end is None:
        stop = length
    else:
        end = r.end + length if r.end < 0 else r.end
        stop = end if r.exclusive else end + 1
    return start, max(start, min(stop, length))


def _pad(width: int, pad: str) -> str:
    if width <= 0:
        return ""
    return (pad * (width // len(pad) + 1))[:width]


class StringMethods(ObjectMethods):
    ALIASES = {"size": "length", "to_str": "to_s", "intern": "to_sym", "slice": "[]",
               "next": "succ", "each_grapheme_cluster": "each_char", "===": "==",
               "eql?": "=="}

    def _to_s(self, recv): return str(recv)
    def _inspect(self, recv): return self.inspect(recv)
    def _length(self, recv): return len(recv)
    def _empty_q(self, recv): return not recv
    def _upcase(self, recv): return recv.upper()
    def _downcase(self, recv): return recv.lower()
    def _swapcase(self, recv): return recv.swapcase()
    def _capitalize(self, recv): return recv[:1].upper() + recv[1:].lower()
    def _reverse(self, recv): return recv[::-1]
    def _strip(self, recv): return recv.strip(" \t\n\v\f\r\0")
    def _lstrip(self, recv): return recv.lstrip(" \t\n\v\f\r\0")
    def _rstrip(self, recv): return recv.rstrip(" \t\n\v\f\r\0")
    def _chop(self, recv): return recv[:-2] if recv.endswith("\r\n") else recv[:-1]
    def _chars(self, recv): return list(recv)
    def _bytes(self, recv): return list(recv.encode("utf-8"))
    def _codepoints(self, recv): return [ord(c) for c in recv]
    def _bytesize(self, recv): return len(recv.encode("utf-8"))
    def _ord(self, recv):
        if not recv:
            raise RubyArgumentError("empty string")
        return ord(recv[0])
    def _chr(self, recv): return recv[:1]
    def _hex(self, recv): return parse_integer(recv, 16)
    def _oct(self, recv): return parse_integer(recv, 8)
    def _to_sym(self, recv): return Symbol(recv)
    def _to_i(self, recv, base=10): return parse_integer(recv, base)
    def _to_f(self, recv): return parse_float(recv)
    def _to_r(self, recv): return parse_float(recv)
    def _succ(self, recv): return string_succ(recv)
    def _encoding(self, recv): return "UTF-8"
    def _force_encoding(self, recv, encoding): return recv
    def _unicode_normalize(self, recv, form=None): return recv
    def _valid_encoding_q(self, recv): return True
    def _ascii_only_q(self, recv): return recv.isascii()
    def _upcase_q(self, recv): return recv == recv.upper()
    def _hash(self, recv): return hash(str(recv))
    def _dup(self, recv): return str(recv)
    def op_uplus(self, recv): return str(recv)
    def op_uminus(self, recv): return recv
    def op_eq(self, recv, other): return isinstance(other, str) and str(recv) == str(other)
    def op_plus(self, recv, other):
        text = self.to_s(other)
        self.interp.guard.check_collection(len(recv) + len(text))
        return recv + text

    def _lines(self, recv, separator="\n"):
        parts = recv.split(separator)
        lines = [part + separator for part in parts[:-1]]
        if parts[-1]:
            lines.append(parts[-1])
        return lines

    def _chomp(self, recv, suffix=None):
        if suffix is None:
            for ending in ("\r\n", "\n", "\r"):
                if recv.endswith(ending):
                    return recv[:-len(ending)]
            return recv
        return recv[:-len(suffix)] if suffix and recv.endswith(suffix) else recv

    def _delete_prefix(self, recv, prefix): return recv[len(prefix):] if recv.startswith(prefix) else recv
    def _delete_suffix(self, recv, suffix): return recv[:-len(suffix)] if suffix and recv.endswith(suffix) else recv

    def _include_q(self, recv, other):
        if not isinstance(other, str):
            raise RubyTypeError(f"no implicit conversion of {self.class_name(other)} into String")
        return other in recv

    def _start_with_q(self, recv, *prefixes):
        for prefix in prefixes:
            if isinstance(prefix, RubyRegexp):
                if prefix.pattern.match(recv):
                    return True
            elif recv.startswith(prefix):
                return True
        return False

    def _end_with_q(self, recv, *suffixes):
        return any(recv.endswith(s) for s in suffixes)

    def _index(self, recv, pattern, start=0):
        if start < 0:
            start += len(recv)
        if isinstance(pattern, RubyRegexp):
            m = pattern.pattern.search(recv, start)
            return m.start() if m else None
        pos = recv.find(pattern, start)
        return None if pos < 0 else pos

    def _rindex(self, recv, pattern, stop=None):
        end = len(recv) if stop is None else stop + len(pattern)
        if isinstance(pattern, RubyRegexp):
            found = [m.start() for m in pattern.pattern.finditer(recv) if m.start() <= end]
            return found[-1] if found else None
        pos = recv.rfind(pattern, 0, end)
        return None if pos < 0 else pos

    def _center(self, recv, width, pad=" "):
        self.interp.guard.check_collection(width)
        total = width - len(recv)
        left = total // 2
        return _pad(left, pad) + recv + _pad(total - left, pad)

    def _ljust(self, recv, width, pad=" "):
        self.interp.guard.check_collection(width)
        return recv + _pad(width - len(recv), pad)

    def _rjust(self, recv, width, pad=" "):
        self.interp.guard.check_collection(width)
        return _pad(width - len(recv), pad) + recv

    def _split(self, recv, pattern=None, limit=0):
        if pattern is None or pattern == " ":
            parts = recv.split() if limit <= 0 else recv.lstrip().split(None, limit - 1)
            if limit > 0 and len(parts) == limit and not recv.strip():
                parts = []
        elif isinstance(pattern, RubyRegexp):
            if pattern.pattern.match(""):
                parts = [c for c in recv] if limit <= 0 else list(recv[:limit - 1]) + [recv[limit - 1:]]
            else:
                parts = pattern.pattern.split(recv, maxsplit=max(0, limit - 1))
                parts = [p if p is not None else "" for p in parts]
        elif pattern == "":
            parts = list(recv) if limit <= 0 else list(recv[:limit - 1]) + [recv[limit - 1:]]
        else:
            parts = recv.split(pattern, limit - 1 if limit > 0 else -1)
        if limit == 0:
            while parts and parts[-1] == "":
                parts.pop()
        return parts

    def _partition(self, recv, sep):
        if isinstance(sep, RubyRegexp):
            m = sep.pattern.search(recv)
            if not m:
                return [recv, "", ""]
            return [recv[:m.start()], m.group(0), recv[m.end():]]
        head, found, tail = recv.partition(sep)
        return [head, found, tail]

    def _rpartition(self, recv, sep):
        head, found, tail = recv.rpartition(sep)
        if not found:
            return ["", "", recv]
        return [head, found, tail]

    def _count(self, recv, *sets):
        if not sets:
            raise RubyArgumentError("wrong number of arguments (given 0, expected 1+)")
        expanded = [expand_tr_set(s) for s in sets]
        return sum(1 for ch in recv if _in_sets(ch, expanded))

    def _delete(self, recv, *sets):
        if not sets:
            raise RubyArgumentError("wrong number of arguments (given 0, expected 1+)")
        expanded = [expand_tr_set(s) for s in sets]
        return "".join(ch for ch in recv if not _in_sets(ch, expanded))

    def _squeeze(self, recv, *sets):
        expanded = [expand_tr_set(s) for s in sets]
        out = []
        for ch in recv:
            if out and out[-1] == ch and (not expanded or _in_sets(ch, expanded)):
                continue
            out.append(ch)
        return "".join(out)

    def _tr(self, recv, source, target):
        chars, negate = expand_tr_set(source)
        replacement, _ = expand_tr_set(target) if target else ([], False)
        out = []
        for ch in recv:
            if negate:
                if ch in chars:
                    out.append(ch)
                elif replacement:
                    out.append(replacement[-1])
            elif ch in chars:
                if replacement:
                    index = chars.index(ch)
                    out.append(replacement[min(index, len(replacement) - 1)])
            else:
                out.append(ch)
        return "".join(out)

    def _sub(self, recv, pattern, replacement=None, block=None):
        return self.substitute(recv, pattern, replacement, block, 1)

    def _gsub(self, recv, pattern, replacement=None, block=None):
        return self.substitute(recv, pattern, replacement, block, 0)

    def substitute(self, recv, pattern, replacement, block, count):
        regex = pattern.pattern if isinstance(pattern, RubyRegexp) else re.compile(re.escape(pattern))
        if replacement is None and block is None:
            raise RubyArgumentError("wrong number of arguments (given 1, expected 2)")

        def replace(m):
            if isinstance(replacement, RubyHash):
                return self.to_s(replacement.get(m.group(0)))
            if replacement is not None:
                return expand_replacement(self.to_s(replacement), m)
            self.interp.last_match = RubyMatch(m)
            return self.to_s(self.run_block(block, m.group(0)))

        return regex.sub(replace, recv, count=count)

    def _scan(self, recv, pattern, block=None):
        regex = pattern.pattern if isinstance(pattern, RubyRegexp) else re.compile(re.escape(pattern))
        results = []
        for m in regex.finditer(recv):
            item = list(m.groups()) if regex.groups else m.group(0)
            if block is not None:
                self.interp.last_match = RubyMatch(m)
                self.run_block(block, item)
            else:
                results.append(item)
        return recv if block is not None else results

    def _match(self, recv, pattern, start=0):
        regex = pattern.pattern if isinstance(pattern, RubyRegexp) else re.compile(re.escape(pattern))
        m = regex.search(recv, start)
        self.interp.last_match = RubyMatch(m) if m else None
        return self.interp.last_match

    def _match_q(self, recv, pattern):
        regex = pattern.pattern if isinstance(pattern, RubyRegexp) else re.compile(re.escape(pattern))
        return regex.search(recv) is not None

    def op_match(self, recv, pattern):
        if not isinstance(pattern, RubyRegexp):
            raise RubyTypeError(f"wrong argument type {self.class_name(pattern)} (expected Regexp)")
        m = pattern.pattern.search(recv)
        self.interp.last_match = RubyMatch(m) if m else None
        return m.start() if m else None

    def op_times(self, recv, count):
        count = self.to_int(count)
        if count < 0:
            raise RubyArgumentError("negative argument")
        self.interp.guard.check_collection(len(recv) * count)
        return recv * count

    def op_mod(self, recv, args):
        return format_string(self.interp, recv, args if isinstance(args, list) else [args])

    def op_cmp(self, recv, other):
        return compare_values(recv, other) if isinstance(other, str) else None

    def op_aref(self, recv, index, length=None):
        if length is not None:
            start = self.to_int(index)
            if start < 0:
                start += len(recv)
            if start < 0 or start > len(recv) or length < 0:
                return None
            return recv[start:start + length]
        if isinstance(index, RubyRange):
            bounds = range_bounds(index, len(recv))
            return None if bounds is None else recv[bounds[0]:bounds[1]]
        if isinstance(index, str):
            return index if index in recv else None
        if isinstance(index, RubyRegexp):
            m = index.pattern.search(recv)
            return m.group(0) if m else None
        i = self.to_int(index)
        if -len(recv) <= i < len(recv):
            return recv[i]
        return None

    def replaced_slice(self, recv, args):
        """The string `recv[index] = value` produces."""
        *index, value = args
        if len(index) == 2:
            start, length = index
            if start < 0:
                start += len(recv)
            stop = start + length
        elif isinstance(index[0], RubyRange):
            bounds = range_bounds(index[0], len(recv))
            if bounds is None:
                raise RubyRangeError(f"{self.to_s(index[0])} out of range")
            start, stop = bounds
        elif isinstance(index[0], str):
            start = recv.find(index[0])
            if start < 0:
                raise RubyIndexError("string not matched")
            stop = start + len(index[0])
        else:
            start = index[0] + len(recv) if index[0] < 0 else index[0]
            if not 0 <= start < len(recv):
                raise RubyIndexError(f"index {index[0]} out of string")
            stop = start + 1
        return recv[:start] + self.to_s(value) + recv[stop:]

    def _concat(self, recv, *others):
        text = "".join(self.to_s(o) for o in others)
        self.interp.guard.check_collection(len(recv) + len(text))
        return recv + text

    def _prepend(self, recv, *others):
        text = "".join(self.to_s(o) for o in others)
        self.interp.guard.check_collection(len(recv) + len(text))
        return text + recv

    def _replace(self, recv, other): return other
    def _clear(self, recv): return ""

    def _insert(self, recv, index, other):
        self.interp.guard.check_collection(len(recv) + len(other))
        if index < 0:
            index += len(recv) + 1
        return recv[:index] + other + recv[index:]

    def _casecmp(self, recv, other):
        return compare_values(recv.lower(), other.lower()) if isinstance(other, str) else None

    def _casecmp_q(self, recv, other):
        return recv.casefold() == other.casefold() if isinstance(other, str) else None

    def _each_char(self, recv, block=None):
        if block is None:
            return Enumerator(list(recv), "each_char", recv)
        for ch in recv:
            self.run_block(block, ch)
        return recv

    def _each_line(self, recv, block=None):
        lines = recv.splitlines(keepends=True)
        if block is None:
            return Enumerator(lines, "each_line", recv)
        for line in lines:
            self.run_block(block, line)
        return recv

    def _each_byte(self, recv, block=None):
        data = list(recv.encode("utf-8"))
        if block is None:
            return Enumerator(data, "each_byte", recv)
        for b in data:
            self.run_block(block, b)
        return recv

    def _upto(self, recv, last, exclusive=False, block=None):
        values = []
        current = recv
        while True:
            if exclusive and current == last:
                break
            values.append(current)
            if current == last or len(current) > len(last):
                break
            current = string_succ(current)
            self.interp.guard.tick()
        if values and values[-1] != last and len(values[-1]) > len(last):
            values.pop()
        if block is None:
            return Enumerator(values, "upto", recv)
        for value in values:
            self.run_block(block, value)
        return recv

    # Destructive forms outside a rebindable receiver: the new value, or nil if unchanged.
    def bang_result(self, name, recv, *args, block=None):
        fn = self.methods[name]
        kwargs = {"block": block} if "block" in inspect.signature(fn).parameters else {}
        result = fn(recv, *args, **kwargs)
        return None if result == recv else result


def _string_bang(name):
    def method(self, recv, *args, block=None):
        self.check_frozen(recv)
        return self.bang_result(name, recv, *args, block=block)
    method.__name__ = f"_{name}_bang"
    return method


for _name in ("upcase", "downcase", "capitalize", "swapcase", "reverse", "strip", "lstrip",
              "rstrip", "chomp", "chop", "squeeze", "gsub", "sub", "tr", "delete", "succ",
              "delete_prefix", "delete_suffix"):
    setattr(StringMethods, f"_{_name}_bang", _string_bang(_name))


class SymbolMethods(ObjectMethods):
    ALIASES = {"id2name": "to_s", "name": "to_s", "size": "length"}

    def _to_s(self, recv): return recv.name
    def _to_sym(self, recv): return recv
    def _length(self, recv): return len(recv.name)
    def _empty_q(self, recv): return not recv.name
    def _upcase(self, recv): return Symbol(recv.name.upper())
    def _downcase(self, recv): return Symbol(recv.name.lower())
    def _capitalize(self, recv): return Symbol(recv.name[:1].upper() + recv.name[1:].lower())
    def _swapcase(self, recv): return Symbol(recv.name.swapcase())
    def _succ(self, recv): return Symbol(string_succ(recv.name))
    def _start_with_q(self, recv, *prefixes): return any(recv.name.startswith(p) for p in prefixes)
    def _end_with_q(self, recv, *suffixes): return any(recv.name.endswith(s) for s in suffixes)
    def op_aref(self, recv, *args): return self.interp.send(recv.name, "[]", list(args))

    def op_cmp(self, recv, other):
        return compare_values(recv, other) if isinstance(other, Symbol) else None

    def _to_proc(self, recv):
        return Proc([], [], None, symbol=recv.name)


# =================================================================
# Collections
# =================================================================

# Methods Hash, Range and Enumerator answer by running the Array version
# over their elements.
ENUMERABLE_METHODS = frozenset({
    "map", "collect", "flat_map", "collect_concat", "select", "filter", "reject", "find",
    "detect", "find_all", "filter_map", "find_index", "partition", "group_by", "chunk_while",
    "slice_when", "each_slice", "each_cons", "each_with_object", "each_with_index", "each_entry",
    "inject", "reduce", "sum", "count", "min", "max", "minmax", "min_by", "max_by", "sort",
    "sort_by", "take", "drop", "take_while", "drop_while", "any?", "all?", "none?", "one?",
    "tally", "to_a", "entries", "include?", "member?", "first", "zip", "uniq", "reverse_each",
    "cycle", "lazy", "to_h", "each_index", "chunk", "grep", "grep_v", "length", "size",
    "join", "reverse", "last", "sample", "shuffle", "to_ary", "minmax_by",
})


def flatten(items, depth=-1, guard=None):
    """Flattens nested lists; with a guard, stops once the result passes its collection limit."""
    out = []
    for item in items:
        if isinstance(item, list) and depth != 0:
            out.extend(flatten(item, depth - 1, guard))
            if guard is not None and len(out) > guard.max_collection:
                guard.check_collection(len(out))
        else:
            out.append(item)
    return out


def iter_range(r: RubyRange, class_name=None):
    """Iterates an Integer or String range; endless integer ranges never stop."""
    start, end = r.start, r.end
    if isinstance(start, int) and not isinstance(start, bool):
        if end is None or end == math.inf:
            return itertools.count(start)
        if isinstance(end, float):
            last = math.floor(end)
            stop = last if r.exclusive and last == end else last + 1
        else:
            stop = end if r.exclusive else end + 1
        return iter(range(start, stop))
    if isinstance(start, str) and isinstance(end, str):
        return _string_range(start, end, r.exclusive)
    name = class_name(start) if class_name else type(start).__name__
    raise RubyTypeError(f"can't iterate from {name}")


def _string_range(start: str, end: str, exclusive: bool):
    current = start
    if len(start) > len(end):
        return
    while True:
        if exclusive and current == end:
            return
        yield current
        if current == end:
            return
        current = string_succ(current)
        if len(current) > len(end):
            return


class ArrayMethods(ObjectMethods):
    """Array, plus the Enumerable behaviour every collection borrows."""

    ALIASES = {
        "size": "length", "collect": "map", "collect!": "map!", "filter": "select",
        "filter!": "select!", "find_all": "select", "detect": "find", "reduce": "inject",
        "member?": "include?", "entries": "to_a", "to_ary": "to_a", "append": "push",
        "prepend": "unshift", "find_index": "index", "collect_concat": "flat_map",
        "each_entry": "each", "slice": "[]", "to_s": "inspect",
        "difference": "-", "union": "|", "eql?": "==", "===": "==",
    }

    def as_list(self, recv) -> list:
        return recv

    def each_item(self, recv):
        return list(recv)

    # ----- basics -----

    def _length(self, recv): return len(recv)
    def _empty_q(self, recv): return not recv
    def _to_a(self, recv): return list(recv)
    def _inspect(self, recv): return self.inspect(recv)
    def _hash(self, recv): return hash(hash_key(recv))
    def _frozen_q(self, recv): return self.interp.is_frozen(recv)

    def op_eq(self, recv, other):
        return isinstance(other, list) and len(recv) == len(other) and \
            all(self.equal(a, b) for a, b in zip(recv, other))

    def op_cmp(self, recv, other):
        if not isinstance(other, list):
            return None
        for a, b in zip(recv, other):
            c = self.interp.compare_or_none(a, b)
            if c is None or c != 0:
                return c
        return (len(recv) > len(other)) - (len(recv) < len(other))

    def op_plus(self, recv, other):
        if not isinstance(other, list):
            raise RubyTypeError(f"no implicit conversion of {self.class_name(other)} into Array")
        self.interp.guard.check_collection(len(recv) + len(other))
        return recv + other

    def op_minus(self, recv, other):
        remove = {hash_key(v) for v in self.to_list(other)}
        return [v for v in recv if hash_key(v) not in remove]

    def op_times(self, recv, other):
        if isinstance(other, str):
            return self._join(recv, other)
        count = self.to_int(other)
        if count < 0:
            raise RubyArgumentError("negative argument")
        self.interp.guard.check_collection(len(recv) * count)
        return recv * count

    def op_and(self, recv, other):
        keep = {hash_key(v) for v in self.to_list(other)}
        return self._uniq([v for v in recv if hash_key(v) in keep])

    def op_or(self, recv, other):
        return self._uniq(recv + self.to_list(other))

    def _intersection(self, recv, *others):
        result = recv
        for other in others:
            result = self.op_and(result, other)
        return result

    def _intersect_q(self, recv, other): return bool(self.op_and(recv, other))

    def to_list(self, value) -> list:
        if isinstance(value, list):
            return value
        raise RubyTypeError(f"no implicit conversion of {self.class_name(value)} into Array")

    # ----- indexing -----

    def op_aref(self, recv, index, length=None):
        if length is not None:
            start = self.to_int(index)
            if start < 0:
                start += len(recv)
            if start < 0 or start > len(recv) or length < 0:
                return None
            return recv[start:start + length]
        if isinstance(index, RubyRange):
            bounds = range_bounds(index, len(recv))
            return None if bounds is None else recv[bounds[0]:bounds[1]]
        i = self.to_int(index)
        if -len(recv) <= i < len(recv):
            return recv[i]
        return None

    def op_aset(self, recv, *args):
        self.check_frozen(recv)
        if len(args) == 3:
            start, length, value = args
            if start < 0:
                start += len(recv)
            recv[start:start + length] = value if isinstance(value, list) else [value]
            return value
        if len(args) != 2:
            raise RubyArgumentError(f"wrong number of arguments (given {len(args)}, expected 2..3)")
        index, value = args
        if isinstance(index, RubyRange):
            bounds = range_bounds(index, len(recv))
            if bounds is None:
                raise RubyRangeError(f"{self.to_s(index)} out of range")
            recv[bounds[0]:bounds[1]] = value if isinstance(value, list) else [value]
            return value
        i = self.to_int(index)
        if i < 0:
            if i < -len(recv):
                raise RubyIndexError(f"index {i} too small for array; minimum: -{len(recv)}")
            i += len(recv)
        if i >= len(recv):
            self.interp.guard.check_collection(i + 1)
            recv.extend([None] * (i + 1 - len(recv)))
        recv[i] = value
        return value

    def _at(self, recv, index): return self.op_aref(recv, index)

    def _dig(self, recv, *keys):
        value = recv
        for key in keys:
            if value is None:
                return None
            value = self.interp.send(value, "[]", [key])
        return value

    def _fetch(self, recv, index, *default, block=None):
        i = self.to_int(index)
        if -len(recv) <= i < len(recv):
            return recv[i]
        if block is not None:
            return self.run_block(block, index)
        if default:
            return default[0]
        raise RubyIndexError(f"index {i} outside of array bounds: {-len(recv)}...{len(recv)}")

    def _first(self, recv, count=None):
        items = self.each_item(recv)
        if count is None:
            return items[0] if items else None
        if count < 0:
            raise RubyArgumentError("negative array size")
        return items[:count]

    def _last(self, recv, count=None):
        items = self.each_item(recv)
        if count is None:
            return items[-1] if items else None
        return items[-count:] if count else []

    def _values_at(self, recv, *indexes):
        return [self.op_aref(recv, i) for i in indexes]

    def _assoc(self, recv, key):
        for item in recv:
            if isinstance(item, list) and item and self.equal(item[0], key):
                return item
        return None

    def _index(self, recv, *value, block=None):
        for i, item in enumerate(self.each_item(recv)):
            if (self.equal(item, value[0]) if value else truthy(self.run_block(block, item))):
                return i
        return None

    def _rindex(self, recv, *value, block=None):
        for i in range(len(recv) - 1, -1, -1):
            if (self.equal(recv[i], value[0]) if value else truthy(self.run_block(block, recv[i]))):
                return i
        return None

    def _include_q(self, recv, value):
        return any(self.equal(item, value) for item in self.each_item(recv))

    def _count(self, recv, *value, block=None):
        items = self.each_item(recv)
        if value:
            return sum(1 for item in items if self.equal(item, value[0]))
        if block is not None:
            return sum(1 for item in items if truthy(self.run_block(block, item)))
        return len(items)

    def _join(self, recv, separator=""):
        if separator is None:
            separator = ""
        return separator.join(self.to_s(v) if not isinstance(v, list) else self._join(v, separator)
                              for v in self.each_item(recv))

    # ----- mutation -----

    def _push(self, recv, *values):
        self.check_frozen(recv)
        self.interp.guard.check_collection(len(recv) + len(values))
        recv.extend(values)
        return recv

    def op_lshift(self, recv, value):
        return self._push(recv, value)

    def _pop(self, recv, count=None):
        self.check_frozen(recv)
        if count is None:
            return recv.pop() if recv else None
        taken = recv[len(recv) - count:] if count else []
        del recv[len(recv) - len(taken):]
        return taken

    def _shift(self, recv, count=None):
        self.check_frozen(recv)
        if count is None:
            return recv.pop(0) if recv else None
        taken = recv[:count]
        del recv[:count]
        return taken

    def _unshift(self, recv, *values):
        self.check_frozen(recv)
        recv[0:0] = values
        return recv

    def _insert(self, recv, index, *values):
        self.check_frozen(recv)
        if index < 0:
            index += len(recv) + 1
        if index > len(recv):
            recv.extend([None] * (index - len(recv)))
        recv[index:index] = values
        return recv

    def _concat(self, recv, *others):
        self.check_frozen(recv)
        for other in others:
            recv.extend(self.to_list(other))
        self.interp.guard.check_collection(len(recv))
        return recv

    def _delete(self, recv, value, block=None):
        self.check_frozen(recv)
        found = [item for item in recv if self.equal(item, value)]
        recv[:] = [item for item in recv if not self.equal(item, value)]
        if not found:
            return self.run_block(block, value) if block is not None else None
        return found[-1]

    def _delete_at(self, recv, index):
        self.check_frozen(recv)
        if -len(recv) <= index < len(recv):
            return recv.pop(index)
        return None

    def _delete_if(self, recv, block=None):
        self.check_frozen(recv)
        recv[:] = [item for item in list(recv) if not truthy(self.run_block(block, item))]
        return recv

    def _reject_bang(self, recv, block=None):
        before = len(recv)
        self._delete_if(recv, block=block)
        return None if len(recv) == before else recv

    def _keep_if(self, recv, block=None):
        self.check_frozen(recv)
        recv[:] = [item for item in list(recv) if truthy(self.run_block(block, item))]
        return recv

    def _select_bang(self, recv, block=None):
        before = len(recv)
        self._keep_if(recv, block=block)
        return None if len(recv) == before else recv

    def _clear(self, recv):
        self.check_frozen(recv)
        recv.clear()
        return recv

    def _replace(self, recv, other):
        self.check_frozen(recv)
        recv[:] = self.to_list(other)
        return recv

    def _fill(self, recv, *args, block=None):
        self.check_frozen(recv)
        if block is not None:
            recv[:] = [self.run_block(block, i) for i in range(len(recv))]
        else:
            value = args[0] if args else None
            start = args[1] if len(args) > 1 else 0
            stop = start + args[2] if len(args) > 2 else len(recv)
            if stop > len(recv):
                recv.extend([None] * (stop - len(recv)))
            for i in range(start, stop):
                recv[i] = value
        return recv

    def _slice_bang(self, recv, index, length=None):
        self.check_frozen(recv)
        result = self.op_aref(recv, index, length)
        if result is None:
            return None
        if length is not None:
            start = index + len(recv) if index < 0 else index
            del recv[start:start + length]
        elif isinstance(index, RubyRange):
            start, stop = range_bounds(index, len(recv))
            del recv[start:stop]
        else:
            del recv[index]
        return result

    def _compact(self, recv): return [v for v in self.each_item(recv) if v is not None]

    def _compact_bang(self, recv):
        self.check_frozen(recv)
        before = len(recv)
        recv[:] = [v for v in recv if v is not None]
        return None if len(recv) == before else recv

    def _flatten(self, recv, depth=-1): return flatten(self.each_item(recv), depth, self.interp.guard)

    def _flatten_bang(self, recv, depth=-1):
        self.check_frozen(recv)
        recv[:] = flatten(recv, depth, self.interp.guard)
        return recv

    def _reverse(self, recv): return self.each_item(recv)[::-1]

    def _reverse_bang(self, recv):
        self.check_frozen(recv)
        recv.reverse()
        return recv

    def _rotate(self, recv, count=1):
        if not recv:
            return []
        count %= len(recv)
        return recv[count:] + recv[:count]

    def _rotate_bang(self, recv, count=1):
        self.check_frozen(recv)
        recv[:] = self._rotate(recv, count)
        return recv

    def _uniq(self, recv, block=None):
        seen = set()
        out = []
        for item in self.each_item(recv):
            key = hash_key(self.run_block(block, item) if block is not None else item)
            if key not in seen:
                seen.add(key)
                out.append(item)
        return out

    def _uniq_bang(self, recv, block=None):
        self.check_frozen(recv)
        result = self._uniq(recv, block=block)
        changed = len(result) != len(recv)
        recv[:] = result
        return recv if changed else None

    def _sort(self, recv, block=None):
        items = self.each_item(recv)
        if block is not None:
            return sorted(items, key=functools.cmp_to_key(
                lambda a, b: self.to_int(self.run_block(block, a, b))))
        return sorted(items, key=self.sort_key())

    def _sort_bang(self, recv, block=None):
        self.check_frozen(recv)
        recv[:] = self._sort(recv, block=block)
        return recv

    def _sort_by(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "sort_by", recv)
        keyed = [(self.run_block(block, item), item) for item in self.each_item(recv)]
        key = self.sort_key()
        keyed.sort(key=lambda pair: key(pair[0]))
        return [item for _, item in keyed]

    def _sort_by_bang(self, recv, block=None):
        self.check_frozen(recv)
        recv[:] = self._sort_by(recv, block=block)
        return recv

    def _map_bang(self, recv, block=None):
        self.check_frozen(recv)
        recv[:] = [self.run_block(block, item) for item in list(recv)]
        return recv

    def _shuffle(self, recv, random=None):
        items = self.each_item(recv)
        self.interp.rng.shuffle(items)
        return items

    def _shuffle_bang(self, recv):
        self.check_frozen(recv)
        self.interp.rng.shuffle(recv)
        return recv

    def _sample(self, recv, count=None):
        items = self.each_item(recv)
        if count is None:
            return self.interp.rng.choice(items) if items else None
        return self.interp.rng.sample(items, min(count, len(items)))

    # ----- iteration -----

    def _each(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "each", recv)
        for item in self.each_item(recv):
            self.run_block(block, item)
        return recv

    def _each_with_index(self, recv, block=None):
        items = self.each_item(recv)
        if block is None:
            return Enumerator([[item, i] for i, item in enumerate(items)], "each_with_index", recv)
        for i, item in enumerate(items):
            self.run_block(block, item, i)
        return recv

    def _each_index(self, recv, block=None):
        for i in range(len(recv)):
            self.run_block(self.need_block(block), i)
        return recv

    def _reverse_each(self, recv, block=None):
        items = self.each_item(recv)[::-1]
        if block is None:
            return Enumerator(items, "reverse_each", recv)
        for item in items:
            self.run_block(block, item)
        return recv

    def _cycle(self, recv, count=None, block=None):
        items = self.each_item(recv)
        if block is None:
            return LazySequence(Enumerator(items, "cycle", recv), [("cycle", count)])
        rounds = itertools.count() if count is None else range(count)
        for _ in rounds:
            if not items:
                break
            for item in items:
                self.interp.guard.tick()
                self.run_block(block, item)
        return None

    def _each_slice(self, recv, size, block=None):
        if size <= 0:
            raise RubyArgumentError("invalid slice size")
        items = self.each_item(recv)
        slices = [items[i:i + size] for i in range(0, len(items), size)]
        if block is None:
            return Enumerator(slices, "each_slice", recv, [size])
        for chunk in slices:
            self.run_block(block, chunk)
        return recv

    def _each_cons(self, recv, size, block=None):
        if size <= 0:
            raise RubyArgumentError("invalid size")
        items = self.each_item(recv)
        windows = [items[i:i + size] for i in range(len(items) - size + 1)]
        if block is None:
            return Enumerator(windows, "each_cons", recv, [size])
        for window in windows:
            self.run_block(block, window)
        return recv

    def _each_with_object(self, recv, memo, block=None):
        for item in self.each_item(recv):
            self.run_block(self.need_block(block), item, memo)
        return memo

    def _map(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "map", recv)
        return [self.run_block(block, item) for item in self.each_item(recv)]

    def _flat_map(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "flat_map", recv)
        out = []
        for item in self.each_item(recv):
            value = self.run_block(block, item)
            if isinstance(value, list):
                out.extend(value)
            else:
                out.append(value)
        return out

    def _select(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "select", recv)
        return [item for item in self.each_item(recv) if truthy(self.run_block(block, item))]

    def _reject(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "reject", recv)
        return [item for item in self.each_item(recv) if not truthy(self.run_block(block, item))]

    def _filter_map(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "filter_map", recv)
        out = []
        for item in self.each_item(recv):
            value = self.run_block(block, item)
            if truthy(value):
                out.append(value)
        return out

    def _find(self, recv, block=None):
        for item in self.each_item(recv):
            if truthy(self.run_block(self.need_block(block), item)):
                return item
        return None

    def _partition(self, recv, block=None):
        yes, no = [], []
        for item in self.each_item(recv):
            (yes if truthy(self.run_block(self.need_block(block), item)) else no).append(item)
        return [yes, no]

    def _group_by(self, recv, block=None):
        if block is None:
            return Enumerator(self.each_item(recv), "group_by", recv)
        groups = RubyHash()
        for item in self.each_item(recv):
            key = self.run_block(block, item)
            if key in groups:
                groups[key].append(item)
            else:
                groups[key] = [item]
        return groups

    def _chunk_while(self, recv, block=None):
        items = self.each_item(recv)
        chunks: List[list] = []
        for item in items:
            if chunks and truthy(self.run_block(self.need_block(block), chunks[-1][-1], item)):
                chunks[-1].append(item)
            else:
                chunks.append([item])
        return chunks

    def _slice_when(self, recv, block=None):
        items = self.each_item(recv)
        chunks: List[list] = []
        for item in items:
            if chunks and not truthy(self.run_block(self.need_block(block), chunks[-1][-1], item)):
                chunks[-1].append(item)
            else:
                chunks.append([item])
        return chunks

    def _chunk(self, recv, block=None):
        chunks: List[list] = []
        for item in self.each_item(recv):
            key = self.run_block(self.need_block(block), item)
            if chunks and values_equal(chunks[-1][0], key):
                chunks[-1][1].append(item)
            else:
                chunks.append([key, [item]])
        return chunks

    def _tally(self, recv):
        counts = RubyHash()
        for item in self.each_item(recv):
            counts[item] = counts.get(item, 0) + 1
        return counts

    def _grep(self, recv, pattern, block=None):
        out = [item for item in self.each_item(recv) if truthy(self.interp.case_equal(pattern, item))]
        return [self.run_block(block, item) for item in out] if block is not None else out

    def _grep_v(self, recv, pattern):
        return [item for item in self.each_item(recv) if not truthy(self.interp.case_equal(pattern, item))]

    def _zip(self, recv, *others, block=None):
        items = self.each_item(recv)
        lists = [self.interp.send(o, "to_a", []) if not isinstance(o, list) else o for o in others]
        rows = [[item] + [other[i] if i < len(other) else None for other in lists]
                for i, item in enumerate(items)]
        if block is not None:
            for row in rows:
                self.run_block(block, row)
            return None
        return rows

    def _product(self, recv, *others):
        lists = [recv] + [self.to_list(o) for o in others]
        size = 1
        for values in lists:
            size *= len(values)
        self.interp.guard.check_collection(size)
        return [list(combo) for combo in itertools.product(*lists)]

    def _combination(self, recv, size, block=None):
        self.interp.guard.check_collection(math.comb(len(recv), size) if size >= 0 else 0)
        combos = [list(c) for c in itertools.combinations(recv, size)] if size >= 0 else []
        if block is None:
            return Enumerator(combos, "combination", recv, [size])
        for combo in combos:
            self.run_block(block, combo)
        return recv

    def _permutation(self, recv, size=None, block=None):
        if size is not None and size < 0:
            size = len(recv) + 1
        self.interp.guard.check_collection(math.perm(len(recv), size))
        perms = [list(p) for p in itertools.permutations(recv, size)]
        if block is None:
            return Enumerator(perms, "permutation", recv, [size] if size is not None else [])
        for perm in perms:
            self.run_block(block, perm)
        return recv

    def _transpose(self, recv):
        if not recv:
            return []
        width = len(recv[0])
        for row in recv:
            if len(row) != width:
                raise RubyIndexError(f"element size differs ({len(row)} should be {width})")
        return [list(col) for col in zip(*recv)]

    def _take(self, recv, count):
        if count < 0:
            raise RubyArgumentError("attempt to take negative size")
        return self.each_item(recv)[:count]

    def _drop(self, recv, count):
        if count < 0:
            raise RubyArgumentError("attempt to drop negative size")
        return self.each_item(recv)[count:]

    def _take_while(self, recv, block=None):
        out = []
        for item in self.each_item(recv):
            if not truthy(self.run_block(self.need_block(block), item)):
                break
            out.append(item)
        return out

    def _drop_while(self, recv, block=None):
        items = self.each_item(recv)
        for i, item in enumerate(items):
            if not truthy(self.run_block(self.need_block(block), item)):
                return items[i:]
        return []

    def _inject(self, recv, *args, block=None):
        items = self.each_item(recv)
        symbol = None
        if len(args) == 2:
            acc, symbol = args
        elif len(args) == 1 and block is None:
            symbol = args[0]
            if not items:
                return None
            acc, items = items[0], items[1:]
        elif len(args) == 1:
            acc = args[0]
        else:
            if not items:
                return None
            acc, items = items[0], items[1:]
        for item in items:
            if symbol is not None:
                acc = self.interp.binary_op(sym_name(symbol), acc, item)
            else:
                acc = self.run_block(block, acc, item)
        return acc

    def _sum(self, recv, init=0, block=None):
        items = self.each_item(recv)
        if block is not None:
            items = [self.run_block(block, item) for item in items]
        if all(is_number(v) for v in items) and is_number(init):
            if any(isinstance(v, float) for v in items) or isinstance(init, float):
                return math.fsum([init] + items)
            return init + sum(items)
        acc = init
        for item in items:
            acc = self.interp.binary_op("+", acc, item)
        return acc

    def _min(self, recv, count=None, block=None):
        return self.extreme(recv, count, block, -1)

    def _max(self, recv, count=None, block=None):
        return self.extreme(recv, count, block, 1)

    def extreme(self, recv, count, block, sign):
        items = self.each_item(recv)
        if block is not None:
            key = functools.cmp_to_key(lambda a, b: self.to_int(self.run_block(block, a, b)))
        else:
            key = self.sort_key()
        ordered = sorted(items, key=key, reverse=sign > 0)
        if count is not None:
            return ordered[:count]
        return ordered[0] if ordered else None

    def _minmax(self, recv):
        return [self._min(recv), self._max(recv)]

    def _min_by(self, recv, count=None, block=None):
        return self.extreme_by(recv, count, block, -1, "min_by")

    def _max_by(self, recv, count=None, block=None):
        return self.extreme_by(recv, count, block, 1, "max_by")

    def extreme_by(self, recv, count, block, sign, name):
        items = self.each_item(recv)
        if block is None:
            return Enumerator(items, name, recv)
        keyed = [(self.run_block(block, item), item) for item in items]
        key = self.sort_key()
        keyed.sort(key=lambda pair: key(pair[0]), reverse=sign > 0)
        if count is not None:
            return [item for _, item in keyed[:count]]
        return keyed[0][1] if keyed else None

    def _minmax_by(self, recv, block=None):
        return [self._min_by(recv, block=block), self._max_by(recv, block=block)]

    def _any_q(self, recv, *pattern, block=None):
        return any(self.matches(item, pattern, block) for item in self.each_item(recv))

    def _all_q(self, recv, *pattern, block=None):
        return all(self.matches(item, pattern, block) for item in self.each_item(recv))

    def _none_q(self, recv, *pattern, block=None):
        return not any(self.matches(item, pattern, block) for item in self.each_item(recv))

    def _one_q(self, recv, *pattern, block=None):
        return sum(1 for item in self.each_item(recv) if self.matches(item, pattern, block)) == 1

    def matches(self, item, pattern, block) -> bool:
        if pattern:
            return truthy(self.interp.case_equal(pattern[0], item))
        if block is not None:
            return truthy(self.run_block(block, item))
        return truthy(item)

    def _to_h(self, recv, block=None):
        result = RubyHash()
        for item in self.each_item(recv):
            pair = self.run_block(block, item) if block is not None else item
            if not isinstance(pair, list) or len(pair) != 2:
                raise RubyTypeError(f"wrong element type {self.class_name(pair)} (expected array)")
            result[pair[0]] = pair[1]
        return result

    def _lazy(self, recv): return LazySequence(self.each_item(recv))

    def _bsearch(self, recv, block=None):
        low, high = 0, len(recv)
        while low < high:
            mid = (low + high) // 2
            result = self.run_block(self.need_block(block), recv[mid])
            if result is True or (is_number(result) and result == 0):
                high = mid
            elif result is False or result is None or (is_number(result) and result > 0):
                low = mid + 1
            else:
                high = mid
        return recv[low] if low < len(recv) else None


class EnumerableDelegate:
    """Answers ENUMERABLE_METHODS by running the Array table over `as_list(recv)`."""

    def lookup(self, name: str):
        fn = self.methods.get(name)
        if fn is not None or name not in ENUMERABLE_METHODS:
            return fn
        target = self.interp.tables["array"].lookup(name)
        if target is None:
            return None

        @functools.wraps(target)
        def delegated(recv, *args, **kwargs):
            return target(self.as_list(recv), *args, **kwargs)

        self.methods[name] = delegated
        return delegated


class HashMethods(EnumerableDelegate, ObjectMethods):
    ALIASES = {
        "size": "length", "has_key?": "key?", "include?": "key?", "member?": "key?",
        "has_value?": "value?", "each_pair": "each", "store": "[]=", "filter": "select",
        "filter!": "select!", "update": "merge!", "to_s": "inspect", "default=": "set_default",
        "===": "==", "eql?": "==",
    }

    def as_list(self, recv) -> list:
        return [[k, v] for k, v in recv.pairs()]

    def _length(self, recv): return len(recv)
    def _empty_q(self, recv): return not recv
    def _keys(self, recv): return list(recv.keys())
    def _values(self, recv): return [v for _, v in recv.pairs()]
    def _key_q(self, recv, key): return key in recv
    def _value_q(self, recv, value): return any(self.equal(v, value) for _, v in recv.pairs())
    def _to_a(self, recv): return self.as_list(recv)
    def _inspect(self, recv): return self.inspect(recv)
    def _default(self, recv, *key): return recv.default
    def _any_q(self, recv, *pattern, block=None):
        if not pattern and block is None:
            return bool(recv)
        return self.interp.tables["array"]._any_q(self.as_list(recv), *pattern, block=block)

    def _set_default(self, recv, value):
        self.check_frozen(recv)
        recv.default = value
        return value

    def op_eq(self, recv, other):
        if not isinstance(other, RubyHash) or len(recv) != len(other):
            return False
        for key, value in recv.pairs():
            if key not in other or not self.equal(value, other[key]):
                return False
        return True

    def op_aref(self, recv, key):
        if key in recv:
            return recv[key]
        if recv.default_proc is not None:
            return self.interp.call_proc(recv.default_proc, [recv, key])
        return recv.default

    def op_aset(self, recv, key, value):
        self.check_frozen(recv)
        recv[key] = value
        return value

    def _fetch(self, recv, key, *default, block=None):
        if key in recv:
            return recv[key]
        if block is not None:
            return self.run_block(block, key)
        if default:
            return default[0]
        raise RubyKeyError(f"key not found: {self.inspect(key)}")

    def _fetch_values(self, recv, *keys, block=None):
        return [self._fetch(recv, key, block=block) for key in keys]

    def _values_at(self, recv, *keys): return [self.op_aref(recv, key) for key in keys]

    def _key(self, recv, value):
        for k, v in recv.pairs():
            if self.equal(v, value):
                return k
        return None

    def _dig(self, recv, *keys):
        value = recv
        for key in keys:
            if value is None:
                return None
            value = self.interp.send(value, "[]", [key])
        return value

    def _delete(self, recv, key, block=None):
        self.check_frozen(recv)
        if key in recv:
            value = recv[key]
            del recv[key]
            return value
        return self.run_block(block, key) if block is not None else None

    def _delete_if(self, recv, block=None):
        self.check_frozen(recv)
        for key, value in recv.pairs():
            if truthy(self.run_block(self.need_block(block), [key, value])):
                del recv[key]
        return recv

    def _reject_bang(self, recv, block=None):
        before = len(recv)
        self._delete_if(recv, block=block)
        return None if len(recv) == before else recv

    def _keep_if(self, recv, block=None):
        self.check_frozen(recv)
        for key, value in recv.pairs():
            if not truthy(self.run_block(self.need_block(block), [key, value])):
                del recv[key]
        return recv

    def _select_bang(self, recv, block=None):
        before = len(recv)
        self._keep_if(recv, block=block)
        return None if len(recv) == before else recv

    def _select(self, recv, block=None):
        if block is None:
            return Enumerator(self.as_list(recv), "select", recv)
        return self.derive(recv, [(k, v) for k, v in recv.pairs() if truthy(self.run_block(block, [k, v]))])

    def _reject(self, recv, block=None):
        if block is None:
            return Enumerator(self.as_list(recv), "reject", recv)
        return self.derive(recv, [(k, v) for k, v in recv.pairs() if not truthy(self.run_block(block, [k, v]))])

    def derive(self, recv, pairs) -> RubyHash:
        result = RubyHash(pairs, default=recv.default)
        result.default_proc = recv.default_proc
        return result

    def _each(self, recv, block=None):
        if block is None:
            return Enumerator(self.as_list(recv), "each", recv)
        for key, value in recv.pairs():
            self.run_block(block, [key, value])
        return recv

    def _each_key(self, recv, block=None):
        for key in list(recv.keys()):
            self.run_block(self.need_block(block), key)
        return recv

    def _each_value(self, recv, block=None):
        for _, value in recv.pairs():
            self.run_block(self.need_block(block), value)
        return recv

    def _merge(self, recv, *others, block=None):
        result = recv.copy()
        for other in others:
            self.merge_into(result, other, block)
        return result

    def _merge_bang(self, recv, *others, block=None):
        self.check_frozen(recv)
        for other in others:
            self.merge_into(recv, other, block)
        return recv

    def merge_into(self, target, other, block):
        if not isinstance(other, RubyHash):
            raise RubyTypeError(f"no implicit conversion of {self.class_name(other)} into Hash")
        for key, value in other.pairs():
            if block is not None and key in target:
                value = self.run_block(block, key, target[key], value)
            target[key] = value

    def _transform_values(self, recv, block=None):
        return RubyHash([(k, self.run_block(self.need_block(block), v)) for k, v in recv.pairs()])

    def _transform_values_bang(self, recv, block=None):
        self.check_frozen(recv)
        for key, value in recv.pairs():
            recv[key] = self.run_block(self.need_block(block), value)
        return recv

    def _transform_keys(self, recv, mapping=None, block=None):
        result = RubyHash()
        for key, value in recv.pairs():
            if isinstance(mapping, RubyHash) and key in mapping:
                new_key = mapping[key]
            elif block is not None:
                new_key = self.run_block(block, key)
            else:
                new_key = key
            result[new_key] = value
        return result

    def _transform_keys_bang(self, recv, mapping=None, block=None):
        self.check_frozen(recv)
        result = self._transform_keys(recv, mapping, block=block)
        recv.clear()
        recv.update(result.pairs())
        return recv

    def _invert(self, recv): return RubyHash([(v, k) for k, v in recv.pairs()])
    def _compact(self, recv): return self.derive(recv, [(k, v) for k, v in recv.pairs() if v is not None])

    def _slice(self, recv, *keys):
        return RubyHash([(k, recv[k]) for k in keys if k in recv])

    def _except(self, recv, *keys):
        drop = {hash_key(k) for k in keys}
        return self.derive(recv, [(k, v) for k, v in recv.pairs() if hash_key(k) not in drop])

    def _filter_map(self, recv, block=None):
        out = []
        for key, value in recv.pairs():
            result = self.run_block(self.need_block(block), [key, value])
            if truthy(result):
                out.append(result)
        return out

    def _to_h(self, recv, block=None):
        if block is None:
            return recv
        return self.interp.tables["array"]._to_h(self.as_list(recv), block=block)

    def _sort(self, recv, block=None):
        return self.interp.tables["array"]._sort(self.as_list(recv), block=block)

    def _clear(self, recv):
        self.check_frozen(recv)
        recv.clear()
        return recv

    def _replace(self, recv, other):
        self.check_frozen(recv)
        recv.clear()
        recv.update(other.pairs())
        return recv

    def _shift(self, recv):
        self.check_frozen(recv)
        if not recv:
            return None
        key, value = recv.pairs()[0]
        del recv[key]
        return [key, value]

    def _count(self, recv, *value, block=None):
        if not value and block is None:
            return len(recv)
        return self.interp.tables["array"]._count(self.as_list(recv), *value, block=block)

    def _sum(self, recv, init=0, block=None):
        return self.interp.tables["array"]._sum(self.as_list(recv), init, block=block)

    def _find(self, recv, block=None):
        return self.interp.tables["array"]._find(self.as_list(recv), block=block)

    def _min_by(self, recv, count=None, block=None):
        return self.interp.tables["array"]._min_by(self.as_list(recv), count, block=block)

    def _max_by(self, recv, count=None, block=None):
        return self.interp.tables["array"]._max_by(self.as_list(recv), count, block=block)

    def _sort_by(self, recv, block=None):
        return self.interp.tables["array"]._sort_by(self.as_list(recv), block=block)

    def _group_by(self, recv, block=None):
        return self.interp.tables["array"]._group_by(self.as_list(recv), block=block)

    def _partition(self, recv, block=None):
        return self.interp.tables["array"]._partition(self.as_list(recv), block=block)

    def _compare_by_identity(self, recv): return recv


class RangeMethods(EnumerableDelegate, ObjectMethods):
    ALIASES = {"member?": "include?", "===": "include?", "entries": "to_a", "to_ary": "to_a",
               "length": "size", "eql?": "=="}

    def as_list(self, recv) -> list:
        if recv.endless:
            raise RubyRangeError("cannot convert endless range to an array")
        size = self._size(recv)
        if size is not None:
            self.interp.guard.check_collection(size)
        return list(iter_range(recv, self.class_name))

    def _size(self, recv):
        if not is_number(recv.start):
            return None
        if recv.endless:
            return math.inf
        stop = math.floor(recv.end)
        count = stop - math.ceil(recv.start) + 1
        if recv.exclusive and stop == recv.end:
            count -= 1
        return max(0, int(count))

    def _count(self, recv, *value, block=None):
        if not value and block is None and is_number(recv.start):
            return self._size(recv)
        return self.interp.tables["array"]._count(self.as_list(recv), *value, block=block)

    def _begin(self, recv): return recv.start
    def _end(self, recv): return recv.end
    def _exclude_end_q(self, recv): return recv.exclusive
    def _to_a(self, recv): return self.as_list(recv)
    def _to_s(self, recv): return self.to_s(recv)
    def _inspect(self, recv): return self.inspect(recv)
    def _hash(self, recv): return hash(hash_key(recv))
    def op_eq(self, recv, other): return recv == other

    def _include_q(self, recv, value):
        if isinstance(recv.start, str) and isinstance(value, str) and not recv.endless:
            return any(v == value for v in iter_range(recv))
        return value in recv

    def _cover_q(self, recv, value):
        if isinstance(value, RubyRange):
            return value.start in recv and (value.end in recv or (value.exclusive and recv.exclusive
                                                                  and value.end == recv.end))
        return value in recv

    def _first(self, recv, count=None):
        if count is None:
            if recv.start is None:
                raise RubyRangeError("cannot get the first element of beginless range")
            return recv.start
        return list(itertools.islice(iter_range(recv, self.class_name), count))

    def _last(self, recv, count=None):
        if count is None:
            return recv.end
        return self.as_list(recv)[-count:] if count else []

    def _min(self, recv, count=None, block=None):
        if count is None and block is None and is_number(recv.start):
            return None if self._size(recv) == 0 else recv.start
        return self.interp.tables["array"]._min(self.as_list(recv), count, block=block)

    def _max(self, recv, count=None, block=None):
        if count is None and block is None and is_number(recv.start) and not recv.endless:
            if self._size(recv) == 0:
                return None
            if recv.exclusive:
                if not isinstance(recv.end, int):
                    raise RubyTypeError("cannot exclude non Integer end value")
                return recv.end - 1
            return recv.end
        return self.interp.tables["array"]._max(self.as_list(recv), count, block=block)

    def _sum(self, recv, init=0, block=None):
        if block is None and isinstance(recv.start, int) and isinstance(recv.end, int) and is_number(init):
            last = recv.end - 1 if recv.exclusive else recv.end
            if last < recv.start:
                return init
            return init + (recv.start + last) * (last - recv.start + 1) // 2
        return self.interp.tables["array"]._sum(self.as_list(recv), init, block=block)

    def _each(self, recv, block=None):
        if block is None:
            return Enumerator(self.as_list(recv), "each", recv)
        for value in iter_range(recv, self.class_name):
            self.interp.guard.tick()
            self.run_block(block, value)
        return recv

    def _reverse_each(self, recv, block=None):
        return self.interp.tables["array"]._reverse_each(self.as_list(recv), block=block)

    def _step(self, recv, step, block=None):
        if recv.exclusive and recv.end is not None:
            values = (v for v in step_values(recv.start, recv.end, step) if v != recv.end)
        else:
            values = step_values(recv.start, recv.end, step)
        if block is None:
            if recv.endless:
                return LazySequence(Enumerator([], "step", recv, [step]), [("step", step)])
            return Enumerator(self.interp.tables["numeric"].materialize(values), "step", recv, [step])
        for value in values:
            self.interp.guard.tick()
            self.run_block(block, value)
        return recv

    def op_mod(self, recv, step): return self._step(recv, step)

    def _lazy(self, recv): return LazySequence(recv)


class EnumeratorMethods(EnumerableDelegate, ObjectMethods):
    ALIASES = {"to_s": "inspect", "force": "to_a"}

    def as_list(self, recv) -> list:
        return list(recv.items)

    def _size(self, recv): return len(recv.items)
    def _to_a(self, recv): return list(recv.items)
    def _inspect(self, recv): return self.inspect(recv)
    def _rewind(self, recv):
        recv.position = 0
        return recv

    def _next(self, recv):
        if recv.position >= len(recv.items):
            raise RubyIndexError("iteration reached an end", ruby_class="StopIteration")
        recv.position += 1
        return recv.items[recv.position - 1]

    def _peek(self, recv):
        if recv.position >= len(recv.items):
            raise RubyIndexError("iteration reached an end", ruby_class="StopIteration")
        return recv.items[recv.position]

    def replay(self, recv, block):
        """Re-runs the method that produced the enumerator, with a new block."""
        if recv.source is None:
            return self.interp.tables["array"]._each(recv.items, block=block)
        return self.interp.send(recv.source, recv.method, list(recv.args), block)

    def _each(self, recv, block=None):
        if block is None:
            return recv
        return self.replay(recv, block)

    def _with_index(self, recv, offset=0, block=None):
        if block is None:
            return Enumerator([[item, i + offset] for i, item in enumerate(recv.items)], "with_index", recv)
        counter = itertools.count(offset)

        def indexed(*args):
            item = args[0] if len(args) == 1 else list(args)
            return self.run_block(block, item, next(counter))

        return self.replay(recv, Proc([], [], None, native=indexed))

    def _each_with_index(self, recv, block=None):
        return self._with_index(recv, 0, block=block)

    def _with_object(self, recv, memo, block=None):
        block = self.need_block(block)

        def with_memo(*args):
            item = args[0] if len(args) == 1 else list(args)
            return self.run_block(block, item, memo)

        self.replay(recv, Proc([], [], None, native=with_memo))
        return memo

    def _each_with_object(self, recv, memo, block=None):
        return self._with_object(recv, memo, block=block)


class LazyMethods(ObjectMethods):
    ALIASES = {"collect": "map", "filter": "select", "force": "to_a", "to_s": "inspect"}

    def _map(self, recv, block=None): return recv.chain("map", self.need_block(block))
    def _select(self, recv, block=None): return recv.chain("select", self.need_block(block))
    def _reject(self, recv, block=None): return recv.chain("reject", self.need_block(block))
    def _filter_map(self, recv, block=None): return recv.chain("filter_map", self.need_block(block))
    def _take_while(self, recv, block=None): return recv.chain("take_while", self.need_block(block))
    def _drop_while(self, recv, block=None): return recv.chain("drop_while", self.need_block(block))
    def _flat_map(self, recv, block=None): return recv.chain("flat_map", self.need_block(block))
    def _with_index(self, recv, offset=0): return recv.chain("with_index", offset)
    def _each_with_index(self, recv): return recv.chain("with_index", 0)
    def _take(self, recv, count): return recv.chain("take", count)
    def _drop(self, recv, count): return recv.chain("drop", count)
    def _lazy(self, recv): return recv
    def _eager(self, recv): return self._to_a(recv)
    def _inspect(self, recv): return self.inspect(recv)
    def _to_a(self, recv): return self.collect(recv)

    def _first(self, recv, count=None):
        if count is None:
            values = self.collect(recv, 1)
            return values[0] if values else None
        return self.collect(recv, count)

    def _each(self, recv, block=None):
        for value in self.iterate(recv):
            self.run_block(self.need_block(block), value)
        return recv

    def _include_q(self, recv, value):
        return any(self.equal(item, value) for item in self.iterate(recv))

    def _find(self, recv, block=None):
        for item in self.iterate(recv):
            if truthy(self.run_block(self.need_block(block), item)):
                return item
        return None

    def collect(self, recv, limit=None) -> list:
        out = []
        for value in self.iterate(recv):
            if limit is not None and len(out) >= limit:
                break
            out.append(value)
            if len(out) > self.interp.guard.max_collection:
                self.interp.guard.check_collection(len(out))
        return out

    def source_iter(self, recv):
        source, ops = recv.source, recv.ops
        if ops and ops[0][0] == "cycle":
            items = source.items
            count = ops[0][1]
            rounds = itertools.repeat(items) if count is None else itertools.repeat(items, count)
            return itertools.chain.from_iterable(rounds), ops[1:]
        if ops and ops[0][0] == "step":
            return step_values(source.source.start, None, ops[0][1]), ops[1:]
        if isinstance(source, RubyRange):
            return iter_range(source, self.class_name), ops
        if isinstance(source, Enumerator):
            return iter(source.items), ops
        return iter(source), ops

    def iterate(self, recv):
        items, ops = self.source_iter(recv)
        counters = [0] * len(ops)
        dropping = [True] * len(ops)
        for item in items:
            self.interp.guard.tick()
            pending = [item]
            for index, (op, arg) in enumerate(ops):
                produced = []
                for value in pending:
                    if op == "map":
                        produced.append(self.run_block(arg, value))
                    elif op == "flat_map":
                        result = self.run_block(arg, value)
                        produced.extend(result if isinstance(result, list) else [result])
                    elif op == "select":
                        if truthy(self.run_block(arg, value)):
                            produced.append(value)
                    elif op == "reject":
                        if not truthy(self.run_block(arg, value)):
                            produced.append(value)
                    elif op == "filter_map":
                        result = self.run_block(arg, value)
                        if truthy(result):
                            produced.append(result)
                    elif op == "take_while":
                        if not truthy(self.run_block(arg, value)):
                            return
                        produced.append(value)
                    elif op == "drop_while":
                        if dropping[index] and truthy(self.run_block(arg, value)):
                            continue
                        dropping[index] = False
                        produced.append(value)
                    elif op == "with_index":
                        produced.append([value, arg + counters[index]])
                        counters[index] += 1
                    elif op == "take":
                        if counters[index] >= arg:
                            return
                        counters[index] += 1
                        produced.append(value)
                    elif op == "drop":
                        counters[index] += 1
                        if counters[index] > arg:
                            produced.append(value)
                pending = produced
                if not pending:
                    break
            yield from pending
            for index, (op, arg) in enumerate(ops):
                if op == "take" and counters[index] >= arg:
                    return


# =================================================================
# Procs, regexps, errors and structs
# =================================================================

_PARAMETER_KINDS = {"optional": "opt", "rest": "rest", "keyword": "key", "keyrest": "keyrest",
                    "block": "block", "destructure": "req"}


class ProcMethods(ObjectMethods):
    ALIASES = {"yield": "call", "[]": "call", "===": "call", "to_s": "inspect"}

    def _call(self, recv, *args, block=None): return self.interp.call_proc(recv, list(args), block)
    def _to_proc(self, recv): return recv
    def _arity(self, recv): return recv.arity
    def _lambda_q(self, recv): return recv.is_lambda
    def _inspect(self, recv): return self.inspect(recv)

    def _parameters(self, recv):
        out = []
        for param in recv.params:
            if param.kind == "required":
                kind = "req" if recv.is_lambda else "opt"
            elif param.kind == "keyword" and param.default is None:
                kind = "keyreq"
            else:
                kind = _PARAMETER_KINDS[param.kind]
            out.append([Symbol(kind), Symbol(param.name)] if param.name else [Symbol(kind)])
        return out

    def _curry(self, recv, arity=None):
        if arity is None:
            arity = recv.arity if recv.arity >= 0 else -recv.arity - 1

        def curried(collected):
            def step(*args):
                got = collected + list(args)
                if len(got) >= arity:
                    return self.interp.call_proc(recv, got)
                return Proc([], [], None, is_lambda=True, native=curried(got))
            return step

        return Proc([], [], None, is_lambda=True, native=curried([]))

    def op_rshift(self, recv, other):
        return Proc([], [], None, is_lambda=True, native=lambda *args: self.interp.call_proc(
            other, [self.interp.call_proc(recv, list(args))]))

    def op_lshift(self, recv, other):
        return Proc([], [], None, is_lambda=True, native=lambda *args: self.interp.call_proc(
            recv, [self.interp.call_proc(other, list(args))]))


class RegexpMethods(ObjectMethods):
    def _source(self, recv): return recv.source
    def _inspect(self, recv): return self.inspect(recv)
    def _names(self, recv): return list(recv.pattern.groupindex)
    def _options(self, recv): return sum(bit for flag, bit in (("i", 1), ("x", 2), ("m", 4)) if flag in recv.flags)
    def _casefold_q(self, recv): return "i" in recv.flags
    def op_eq(self, recv, other): return recv == other

    def _to_s(self, recv):
        off = "".join(f for f in "mix" if f not in recv.flags)
        return f"(?{recv.flags}{'-' + off if off else ''}:{recv.source})"

    def _match(self, recv, text, pos=0):
        if text is None:
            self.interp.last_match = None
            return None
        m = recv.pattern.search(self.to_s(text), pos)
        self.interp.last_match = RubyMatch(m) if m else None
        return self.interp.last_match

    def _match_q(self, recv, text):
        return text is not None and recv.pattern.search(self.to_s(text)) is not None

    def op_match(self, recv, text):
        if text is None:
            return None
        m = recv.pattern.search(self.to_s(text))
        self.interp.last_match = RubyMatch(m) if m else None
        return m.start() if m else None

    def op_case_eq(self, recv, text):
        if not isinstance(text, (str, Symbol)):
            return False
        return recv.pattern.search(self.to_s(text)) is not None


class MatchDataMethods(ObjectMethods):
    ALIASES = {"size": "length"}

    def _to_s(self, recv): return recv.match.group(0)
    def _to_a(self, recv): return [recv.match.group(0)] + list(recv.match.groups())
    def _captures(self, recv): return list(recv.match.groups())
    def _names(self, recv): return list(recv.match.re.groupindex)
    def _pre_match(self, recv): return recv.match.string[:recv.match.start()]
    def _post_match(self, recv): return recv.match.string[recv.match.end():]
    def _string(self, recv): return recv.match.string
    def _length(self, recv): return len(recv.match.groups()) + 1
    def _begin(self, recv, n=0): return recv.match.start(n)
    def _end(self, recv, n=0): return recv.match.end(n)
    def _offset(self, recv, n=0): return [recv.match.start(n), recv.match.end(n)]
    def _inspect(self, recv): return self.inspect(recv)

    def _named_captures(self, recv):
        return RubyHash([(name, recv.match.group(name)) for name in recv.match.re.groupindex])

    def _values_at(self, recv, *indexes): return [self.op_aref(recv, i) for i in indexes]

    def op_aref(self, recv, index):
        if isinstance(index, (str, Symbol)):
            name = sym_name(index)
            if name not in recv.match.re.groupindex:
                raise RubyIndexError(f"undefined group name reference: {name}")
            return recv.match.group(name)
        values = self._to_a(recv)
        i = self.to_int(index)
        return values[i] if -len(values) <= i < len(values) else None


class ExceptionMethods(ObjectMethods):
    def _message(self, recv): return self.to_s(recv)
    def _to_s(self, recv): return recv.message
    def _inspect(self, recv): return self.inspect(recv)
    def _cause(self, recv): return None

    def _full_message(self, recv, highlight=False):
        return f"{self.to_s(recv)} ({self.class_name(recv)})"

    def _backtrace(self, recv):
        return [f"script:{recv.line}"] if recv.line else []

    def op_eq(self, recv, other):
        return isinstance(other, RubyError) and self.interp.class_of(recv) is self.interp.class_of(other) \
            and recv.message == other.message

    def _exception(self, recv, message=None):
        if message is None:
            return recv
        copy = type(recv)(self.to_s(message), ruby_class=recv.ruby_class)
        copy.cls = recv.cls
        copy.ivars = dict(recv.ivars)
        return copy


def struct_fields(cls) -> Optional[List[str]]:
    while cls is not None:
        if cls.struct_fields is not None:
            return cls.struct_fields
        cls = cls.superclass
    return None


class StructMethods(ObjectMethods):
    ALIASES = {"deconstruct": "to_a", "values": "to_a", "size": "length"}

    def _to_a(self, recv): return [recv.ivars.get("@" + f) for f in struct_fields(recv.cls)]
    def _members(self, recv): return [Symbol(f) for f in struct_fields(recv.cls)]
    def _length(self, recv): return len(struct_fields(recv.cls))
    def _inspect(self, recv): return self.inspect(recv)
    def _to_s(self, recv): return self.inspect(recv)

    def _to_h(self, recv, block=None):
        pairs = [[Symbol(f), recv.ivars.get("@" + f)] for f in struct_fields(recv.cls)]
        if block is not None:
            return self.interp.tables["array"]._to_h(pairs, block=block)
        return RubyHash(pairs)

    def _each(self, recv, block=None):
        for value in self._to_a(recv):
            self.run_block(self.need_block(block), value)
        return recv

    def _each_pair(self, recv, block=None):
        for f in struct_fields(recv.cls):
            self.run_block(self.need_block(block), Symbol(f), recv.ivars.get("@" + f))
        return recv

    def member_name(self, recv, key) -> str:
        fields = struct_fields(recv.cls)
        if isinstance(key, (str, Symbol)):
            name = sym_name(key)
            if name not in fields:
                raise RubyNameError(f"no member '{name}' in struct")
            return name
        i = self.to_int(key)
        if not -len(fields) <= i < len(fields):
            raise RubyIndexError(f"offset {i} too large for struct(size:{len(fields)})")
        return fields[i]

    def op_aref(self, recv, key):
        return recv.ivars.get("@" + self.member_name(recv, key))

    def op_aset(self, recv, key, value):
        self.check_frozen(recv)
        recv.ivars["@" + self.member_name(recv, key)] = value
        return value

    def op_eq(self, recv, other):
        if not isinstance(other, RubyObject) or other.cls is not recv.cls:
            return False
        return all(self.equal(a, b) for a, b in zip(self._to_a(recv), self._to_a(other)))

    def _dig(self, recv, *keys):
        value = recv
        for key in keys:
            if value is None:
                return None
            value = self.interp.send(value, "[]", [key])
        return value


# =================================================================
# Classes and modules
# =================================================================

class ClassMethods(ObjectMethods):
    """Methods of class and module objects (`Point.new`, `attr_accessor`, ...)."""

    ALIASES = {"module_eval": "class_eval", "class_exec": "class_eval", "module_exec": "class_eval",
               "attr": "attr_reader", "public_method_defined?": "method_defined?",
               "prepend": "include",
               "public_instance_methods": "instance_methods", "undef_method": "remove_method"}

    def _new(self, cls, *args, block=None): return self.interp.instantiate(cls, list(args), block)
    def _allocate(self, cls): return RubyObject(cls)
    def _name(self, cls): return self.to_s(cls) if cls.name else None
    def _to_s(self, cls): return self.to_s(cls)
    def _inspect(self, cls): return self.to_s(cls)
    def _superclass(self, cls): return cls.superclass
    def _ancestors(self, cls): return cls.ancestors()
    def _class(self, cls): return self.interp.class_of(cls)
    def _constants(self, cls): return [Symbol(n) for n in cls.constants]
    def _class_variables(self, cls): return [Symbol(n) for n in cls.class_vars]
    def _class_eval(self, cls, block=None): return self.interp.class_eval(cls, self.need_block(block))
    def _instance_variable_get(self, cls, name): return cls.ivars.get(sym_name(name))
    def _members(self, cls): return [Symbol(f) for f in struct_fields(cls) or []]

    def _instance_methods(self, cls, inherited=True):
        owners = [c for c in cls.ancestors() if not c.builtin] if inherited else [cls]
        names: List[str] = []
        for owner in owners:
            for name in owner.methods:
                if name not in names:
                    names.append(name)
        return [Symbol(n) for n in names]

    def _method_defined_q(self, cls, name):
        return cls.find_method(sym_name(name)) is not None

    def _instance_method(self, cls, name):
        method = cls.find_method(sym_name(name))
        if method is None:
            raise RubyNameError(f"undefined method '{sym_name(name)}' for class '{self.to_s(cls)}'")
        return Symbol(method.name)

    def _define_method(self, cls, name, body=None, block=None):
        proc = body if body is not None else self.need_block(block, "define_method")
        name = sym_name(name)
        cls.methods[name] = self.interp.method_from_proc(name, cls, proc)
        return Symbol(name)

    def _attr_accessor(self, cls, *names):
        return self.interp.define_attrs(cls, [sym_name(n) for n in names], reader=True, writer=True)

    def _attr_reader(self, cls, *names):
        return self.interp.define_attrs(cls, [sym_name(n) for n in names], reader=True, writer=False)

    def _attr_writer(self, cls, *names):
        return self.interp.define_attrs(cls, [sym_name(n) for n in names], reader=False, writer=True)

    def _include(self, cls, *modules):
        for module in modules:
            if not isinstance(module, RubyClass) or not module.is_module:
                raise RubyTypeError(f"wrong argument type {self.class_name(module)} (expected Module)")
            if module not in cls.includes:
                cls.includes.append(module)
        return cls

    def _extend(self, cls, *modules):
        for module in modules:
            if not isinstance(module, RubyClass) or not module.is_module:
                raise RubyTypeError(f"wrong argument type {self.class_name(module)} (expected Module)")
            if module not in cls.extends:
                cls.extends.append(module)
        return cls

    def _include_q(self, cls, module):
        return isinstance(module, RubyClass) and module.is_module and module is not cls \
            and module in cls.ancestors()

    def _const_get(self, cls, name):
        found, value = cls.lookup_constant(sym_name(name))
        if not found:
            found, value = self.interp.lookup_constant(sym_name(name))
        if not found:
            raise RubyNameError(f"uninitialized constant {sym_name(name)}")
        return value

    def _const_set(self, cls, name, value):
        cls.constants[sym_name(name)] = value
        return value

    def _const_defined_q(self, cls, name):
        return cls.lookup_constant(sym_name(name))[0]

    def _class_variable_get(self, cls, name):
        name = sym_name(name)
        if name not in cls.class_vars:
            raise RubyNameError(f"uninitialized class variable {name} in {self.to_s(cls)}")
        return cls.class_vars[name]

    def _class_variable_set(self, cls, name, value):
        cls.class_vars[sym_name(name)] = value
        return value

    def _class_variable_defined_q(self, cls, name):
        return sym_name(name) in cls.class_vars

    def _alias_method(self, cls, new_name, old_name):
        self.interp.alias_method(cls, sym_name(new_name), sym_name(old_name))
        return Symbol(sym_name(new_name))

    def _remove_method(self, cls, *names):
        for name in names:
            cls.methods.pop(sym_name(name), None)
        return cls

    def _module_function(self, cls, *names):
        if not names:
            cls.module_function = True
            return None
        for name in names:
            method = cls.methods.get(sym_name(name))
            if method is not None:
                cls.singleton_methods[method.name] = method
        return None

    # Visibility is not enforced.
    def _private(self, cls, *names): return names[0] if len(names) == 1 else None
    def _public(self, cls, *names): return names[0] if len(names) == 1 else None
    def _protected(self, cls, *names): return names[0] if len(names) == 1 else None
    def _private_constant(self, cls, *names): return None
    def _private_class_method(self, cls, *names): return None
    def _public_class_method(self, cls, *names): return None

    def op_case_eq(self, cls, value): return self.interp.class_of(value).is_subclass_of(cls)
    def op_eq(self, cls, other): return cls is other

    def op_lt(self, cls, other):
        if cls is other:
            return False
        return True if cls.is_subclass_of(other) else (False if other.is_subclass_of(cls) else None)

    def op_le(self, cls, other): return cls is other or self.op_lt(cls, other)
    def op_gt(self, cls, other): return self.op_lt(other, cls)
    def op_ge(self, cls, other): return cls is other or self.op_lt(other, cls)


class ArrayClassMethods(ClassMethods):
    def _new(self, cls, size=0, default=None, block=None):
        if isinstance(size, list):
            return list(size)
        size = self.to_int(size)
        if size < 0:
            raise RubyArgumentError("negative array size")
        self.interp.guard.check_collection(size)
        if block is not None:
            return [self.run_block(block, i) for i in range(size)]
        return [default] * size

    def op_aref(self, cls, *items): return list(items)


class HashClassMethods(ClassMethods):
    def _new(self, cls, default=None, block=None):
        result = RubyHash(default=default)
        result.default_proc = block
        return result

    def op_aref(self, cls, pairs=None):
        if isinstance(pairs, RubyHash):
            return pairs.copy()
        return RubyHash([(k, v) for k, v in (pairs or [])])


class StringClassMethods(ClassMethods):
    def _new(self, cls, text=""): return str(text)


class IntegerClassMethods(ClassMethods):
    def _sqrt(self, cls, n):
        n = self.to_int(n)
        if n < 0:
            raise RubyArgumentError('Numerical argument is out of domain - "isqrt"', ruby_class="Math::DomainError")
        return math.isqrt(n)


class ProcClassMethods(ClassMethods):
    def _new(self, cls, block=None): return self.need_block(block, "Proc.new")


class RangeClassMethods(ClassMethods):
    def _new(self, cls, start, end, exclusive=False): return RubyRange(start, end, truthy(exclusive))


class StructClassMethods(ClassMethods):
    def _new(self, cls, *fields, block=None):
        if cls.struct_fields is not None:
            return self.interp.instantiate(cls, list(fields), block)
        keyword_init = False
        if fields and isinstance(fields[-1], RubyHash):
            keyword_init = truthy(fields[-1].get(Symbol("keyword_init")))
            fields = fields[:-1]
        return self.interp.make_struct([sym_name(f) for f in fields], keyword_init, block)


def _domain_checked(name, fn, valid):
    def method(self, cls, *args):
        values = [self.interp.tables["numeric"].operand(0.0, a, "+") for a in args]
        if not valid(*values):
            raise RubyArgumentError(f'Numerical argument is out of domain - "{name}"',
                                    ruby_class="Math::DomainError")
        return float(fn(*values))
    method.__name__ = f"_{name}"
    return method


class MathMethods(ClassMethods):
    """The Math module's functions."""

    _sqrt = _domain_checked("sqrt", math.sqrt, lambda x: x >= 0)
    _cbrt = _domain_checked("cbrt", lambda x: math.copysign(abs(x) ** (1.0 / 3), x), lambda x: True)
    _sin = _domain_checked("sin", math.sin, lambda x: True)
    _cos = _domain_checked("cos", math.cos, lambda x: True)
    _tan = _domain_checked("tan", math.tan, lambda x: True)
    _asin = _domain_checked("asin", math.asin, lambda x: -1 <= x <= 1)
    _acos = _domain_checked("acos", math.acos, lambda x: -1 <= x <= 1)
    _atan = _domain_checked("atan", math.atan, lambda x: True)
    _atan2 = _domain_checked("atan2", math.atan2, lambda y, x: True)
    _sinh = _domain_checked("sinh", math.sinh, lambda x: True)
    _cosh = _domain_checked("cosh", math.cosh, lambda x: True)
    _tanh = _domain_checked("tanh", math.tanh, lambda x: True)
    _exp = _domain_checked("exp", math.exp, lambda x: True)
    _log2 = _domain_checked("log2", math.log2, lambda x: x > 0)
    _log10 = _domain_checked("log10", math.log10, lambda x: x > 0)
    _hypot = _domain_checked("hypot", math.hypot, lambda x, y: True)

    def _log(self, cls, x, base=None):
        x = self.interp.tables["numeric"].operand(0.0, x, "+")
        if x < 0:
            raise RubyArgumentError('Numerical argument is out of domain - "log"', ruby_class="Math::DomainError")
        if x == 0:
            return -math.inf
        return math.log(x) if base is None else math.log(x) / math.log(base)
