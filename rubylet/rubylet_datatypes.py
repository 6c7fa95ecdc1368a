"""
Defines the core data types for the rubylet runtime.

This module provides the values the interpreted language manipulates, the
executable node types produced by the parsers, the error taxonomy surfaced to
callers, and the control-transfer signals passed up the evaluation chain.
"""

import collections.abc
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


# =================================================================
# Errors
# =================================================================

class RubyError(Exception):
    """Base class for every failure a script can produce.

    `kind` is the machine-distinguishable category reported to callers,
    `ruby_class` is the language-level exception class used by `rescue`
    matching and by messages.
    """
    kind = "RuntimeError"
    ruby_class = "RuntimeError"
    rescuable = True

    def __init__(self, message: str = "", *, line: Optional[int] = None,
                 ruby_class: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.line = line
        if ruby_class:
            self.ruby_class = ruby_class
        # Output produced before the failure, filled in by the runner.
        self.partial_output = ""
        # Language-level class object for user-defined exception classes.
        self.cls = None
        self.ivars: Dict[str, Any] = {}

    def __str__(self) -> str:
        return f"{self.ruby_class}: {self.message}"


class RubySyntaxError(RubyError):
    kind = "SyntaxError"
    ruby_class = "SyntaxError"
    rescuable = False


class StructuralError(RubySyntaxError):
    """Unmatched block terminators and misplaced separators."""


class UnterminatedLiteral(RubySyntaxError):
    """A quoted literal runs past the end of the scanned text."""


class RubyNameError(RubyError):
    kind = "NameError"
    ruby_class = "NameError"


class RubyNoMethodError(RubyNameError):
    kind = "NoMethodError"
    ruby_class = "NoMethodError"


class RubyArgumentError(RubyError):
    kind = "ArgumentError"
    ruby_class = "ArgumentError"


class RubyTypeError(RubyError):
    kind = "TypeError"
    ruby_class = "TypeError"


class DivisionByZero(RubyError):
    kind = "DivisionByZero"
    ruby_class = "ZeroDivisionError"


class LoopControlOutsideLoop(RubyError):
    kind = "LoopControlOutsideLoop"
    ruby_class = "LocalJumpError"


class RubyLocalJumpError(RubyError):
    kind = "LocalJumpError"
    ruby_class = "LocalJumpError"


class RubyIndexError(RubyError):
    kind = "IndexError"
    ruby_class = "IndexError"


class RubyKeyError(RubyIndexError):
    kind = "KeyError"
    ruby_class = "KeyError"


class RubyRangeError(RubyError):
    kind = "RangeError"
    ruby_class = "RangeError"


class RubyFrozenError(RubyError):
    kind = "FrozenError"
    ruby_class = "FrozenError"


class RubyRuntimeError(RubyError):
    """Errors raised by scripts themselves (`raise "..."`)."""


class ResourceExceeded(RubyError):
    """The execution guard tripped; never catchable by scripts."""
    kind = "ResourceExceeded"
    ruby_class = "ResourceExceeded"
    rescuable = False

    def __init__(self, message: str = "", *, reason: str = "operations", line: Optional[int] = None):
        super().__init__(message, line=line)
        self.reason = reason


class RubyInternalError(RubyError):
    kind = "InternalError"
    ruby_class = "InternalError"
    rescuable = False


# Exception classes scripts may name in `raise` / `rescue`, child -> parent.
EXCEPTION_HIERARCHY: Dict[str, Optional[str]] = {
    "Exception": None,
    "ScriptError": "Exception",
    "NotImplementedError": "ScriptError",
    "StandardError": "Exception",
    "RuntimeError": "StandardError",
    "FrozenError": "RuntimeError",
    "ArgumentError": "StandardError",
    "NameError": "StandardError",
    "NoMethodError": "NameError",
    "TypeError": "StandardError",
    "ZeroDivisionError": "StandardError",
    "IndexError": "StandardError",
    "KeyError": "IndexError",
    "StopIteration": "IndexError",
    "FloatDomainError": "RangeError",
    "Math::DomainError": "ArgumentError",
    "UncaughtThrowError": "ArgumentError",
    "RangeError": "StandardError",
    "LocalJumpError": "StandardError",
    "IOError": "StandardError",
}

_ERROR_TYPES: Dict[str, type] = {
    "ArgumentError": RubyArgumentError,
    "NameError": RubyNameError,
    "NoMethodError": RubyNoMethodError,
    "TypeError": RubyTypeError,
    "ZeroDivisionError": DivisionByZero,
    "IndexError": RubyIndexError,
    "KeyError": RubyKeyError,
    "RangeError": RubyRangeError,
    "FrozenError": RubyFrozenError,
    "LocalJumpError": RubyLocalJumpError,
    "StopIteration": RubyIndexError,
    "FloatDomainError": RubyRangeError,
    "Math::DomainError": RubyArgumentError,
}


def error_for_class(ruby_class: str, message: str) -> RubyError:
    """Builds the Python error matching a language-level exception class name."""
    error_type = _ERROR_TYPES.get(ruby_class, RubyRuntimeError)
    return error_type(message, ruby_class=ruby_class)


# =================================================================
# Control-transfer signals
# =================================================================

@dataclass
class Signal:
    """A non-local exit travelling up the evaluation chain.

    `break` and `next` are consumed by the nearest loop or block call,
    `return` by the nearest method (or lambda) boundary.
    """
    kind: str
    value: Any = None
    from_block: bool = False
    block: Any = None


class SignalUnwind(Exception):
    """Carries a break/return Signal out of a built-in method that ran a block."""

    def __init__(self, signal: Signal):
        super().__init__(signal.kind)
        self.signal = signal


# =================================================================
# Runtime values
# =================================================================

class Symbol:
    """An immutable name token, compared by name."""
    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __eq__(self, other):
        return isinstance(other, Symbol) and self.name == other.name

    def __hash__(self):
        return hash(("symbol", self.name))

    def __repr__(self) -> str:
        return f"Symbol({self.name!r})"


class FrozenStr(str):
    """A string that has been frozen; string operations return plain `str`."""
    __slots__ = ()


class RubyRange:
    """A `start..end` / `start...end` range; `end` is None for endless ranges."""
    __slots__ = ("start", "end", "exclusive")

    def __init__(self, start: Any, end: Any, exclusive: bool = False):
        self.start = start
        self.end = end
        self.exclusive = exclusive

    @property
    def endless(self) -> bool:
        return self.end is None

    def __contains__(self, value) -> bool:
        if value is None or isinstance(value, bool):
            return False
        try:
            if value < self.start:
                return False
            if self.end is None:
                return True
            return value < self.end if self.exclusive else value <= self.end
        except TypeError:
            return False

    def __eq__(self, other):
        return (isinstance(other, RubyRange) and values_equal(self.start, other.start)
                and values_equal(self.end, other.end) and self.exclusive == other.exclusive)

    def __hash__(self):
        return hash(hash_key(self))

    def __repr__(self) -> str:
        dots = "..." if self.exclusive else ".."
        return f"RubyRange({self.start!r}{dots}{self.end!r})"


class RubyHash(collections.abc.MutableMapping):
    """An insertion-ordered mapping keyed by language-level equality.

    Python's own dict would conflate `true` with `1` and `1` with `1.0`;
    keys are normalized through `hash_key` while the original key objects
    are kept for iteration and printing.
    """

    def __init__(self, pairs=None, default=None):
        self._data: Dict[Any, Tuple[Any, Any]] = {}
        self.default = default
        self.default_proc = None
        self.frozen = False
        # Set when the hash was built from bare `key: value` call arguments.
        self.keyword_args = False
        if pairs:
            for k, v in pairs:
                self[k] = v

    def __getitem__(self, key):
        return self._data[hash_key(key)][1]

    def __setitem__(self, key, value):
        hk = hash_key(key)
        existing = self._data.get(hk)
        if existing is not None:
            self._data[hk] = (existing[0], value)
        else:
            self._data[hk] = (key, value)

    def __delitem__(self, key):
        del self._data[hash_key(key)]

    def __contains__(self, key) -> bool:
        return hash_key(key) in self._data

    def __iter__(self):
        return iter([k for k, _ in self._data.values()])

    def __len__(self) -> int:
        return len(self._data)

    def pairs(self) -> List[Tuple[Any, Any]]:
        """Returns a snapshot of (key, value) pairs in insertion order."""
        return list(self._data.values())

    def copy(self) -> "RubyHash":
        dup = RubyHash(self.pairs(), default=self.default)
        dup.default_proc = self.default_proc
        return dup

    def __eq__(self, other):
        if not isinstance(other, RubyHash):
            return NotImplemented
        return values_equal(self, other)

    __hash__ = None

    def __repr__(self) -> str:
        return f"RubyHash({self.pairs()!r})"


class RubyRegexp:
    """A compiled regular expression literal."""

    def __init__(self, source: str, flags: str = ""):
        self.source = source
        self.flags = "".join(sorted(set(flags) & set("imx")))
        options = 0
        if "i" in self.flags:
            options |= re.IGNORECASE
        if "x" in self.flags:
            options |= re.VERBOSE
        if "m" in self.flags:
            options |= re.DOTALL
        try:
            self.pattern = re.compile(translate_regexp(source), options | re.MULTILINE)
        except re.error as e:
            raise RubySyntaxError(f"invalid regular expression /{source}/: {e}") from e

    def __eq__(self, other):
        return isinstance(other, RubyRegexp) and self.source == other.source and self.flags == other.flags

    def __hash__(self):
        return hash(("regexp", self.source, self.flags))

    def __repr__(self) -> str:
        return f"RubyRegexp({self.source!r}, {self.flags!r})"


def translate_regexp(source: str) -> str:
    """Rewrites the handful of regexp spellings Python's `re` writes differently."""
    out = []
    i = 0
    while i < len(source):
        ch = source[i]
        if ch == "\\" and i + 1 < len(source):
            nxt = source[i + 1]
            if nxt == "A":
                out.append(r"\A")
            elif nxt == "z":
                out.append(r"\Z")
            elif nxt == "Z":
                out.append(r"(?=\n?\Z)")
            elif nxt == "h":
                out.append(r"[0-9a-fA-F]")
            else:
                out.append(source[i:i + 2])
            i += 2
            continue
        if source.startswith("(?<", i) and i + 3 < len(source) and source[i + 3] not in "=!":
            out.append("(?P<")
            i += 3
            continue
        out.append(ch)
        i += 1
    return "".join(out)


class RubyMatch:
    """Result of a successful regexp match (MatchData)."""

    def __init__(self, match: "re.Match"):
        self.match = match

    def __repr__(self) -> str:
        return f"RubyMatch({self.match.group(0)!r})"


class Scope:
    """A frame of local variable bindings with a link to its enclosing frame.

    Frames form the scope stack: lookup walks from the innermost frame
    outwards, assignment rebinds in the innermost frame that already defines
    the name, or creates the binding in this frame.
    """

    def __init__(self, parent: Optional["Scope"] = None):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent

    def find_owner(self, key: str) -> Optional["Scope"]:
        """Finds the Scope in the lookup chain that owns key."""
        scope = self
        while scope is not None:
            if key in scope.bindings:
                return scope
            scope = scope.parent
        return None

    def __contains__(self, key: str) -> bool:
        return self.find_owner(key) is not None

    def lookup(self, key: str) -> Tuple[bool, Any]:
        owner = self.find_owner(key)
        if owner is None:
            return False, None
        return True, owner.bindings[key]

    def assign(self, key: str, value: Any):
        owner = self.find_owner(key)
        (owner or self).bindings[key] = value

    def declare(self, key: str, value: Any):
        """Binds key in this frame, shadowing any outer binding."""
        self.bindings[key] = value

    def __repr__(self) -> str:
        keys = ", ".join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Scope bindings=[{keys}]{parent_id}>"


@dataclass
class RubyMethod:
    """A user-defined (or native accessor) method."""
    name: str
    params: List["Param"] = field(default_factory=list)
    body: List[Any] = field(default_factory=list)
    owner: Optional["RubyClass"] = None
    # Native implementation: fn(interpreter, receiver, args, block).
    native: Any = None
    # Block-bodied methods from `define_method`.
    proc: Any = None
    # Class nesting at the definition site, for constant lookup.
    lexical: Tuple[Any, ...] = ()


class RubyClass:
    """A class or module record: methods, singleton methods and constants."""

    def __init__(self, name: Optional[str], superclass: Optional["RubyClass"] = None,
                 is_module: bool = False, builtin: bool = False):
        self.name = name
        self.superclass = superclass
        self.is_module = is_module
        self.builtin = builtin
        self.methods: Dict[str, RubyMethod] = {}
        self.singleton_methods: Dict[str, RubyMethod] = {}
        self.constants: Dict[str, Any] = {}
        self.class_vars: Dict[str, Any] = {}
        self.ivars: Dict[str, Any] = {}
        self.includes: List["RubyClass"] = []
        self.extends: List["RubyClass"] = []
        self.frozen = False
        # Native singleton-method table (Math.sqrt, Array.new, ...).
        self.native_table = None
        # Field names for classes produced by Struct.new.
        self.struct_fields: Optional[List[str]] = None
        # Set by a bare `module_function`; later defs also become singleton methods.
        self.module_function = False

    def ancestors(self) -> List["RubyClass"]:
        out: List[RubyClass] = []
        cls = self
        while cls is not None:
            if cls not in out:
                out.append(cls)
            for mod in reversed(cls.includes):
                for anc in mod.ancestors():
                    if anc not in out:
                        out.append(anc)
            cls = cls.superclass
        return out

    def find_method(self, name: str) -> Optional[RubyMethod]:
        for cls in self.ancestors():
            method = cls.methods.get(name)
            if method is not None:
                return method
        return None

    def find_singleton_method(self, name: str) -> Optional[RubyMethod]:
        cls = self
        while cls is not None:
            method = cls.singleton_methods.get(name)
            if method is not None:
                return method
            for mod in reversed(cls.extends):
                method = mod.find_method(name)
                if method is not None:
                    return method
            cls = cls.superclass
        return None

    def is_subclass_of(self, other: "RubyClass") -> bool:
        return other in self.ancestors()

    def lookup_constant(self, name: str) -> Tuple[bool, Any]:
        for cls in self.ancestors():
            if name in cls.constants:
                return True, cls.constants[name]
        return False, None

    def __repr__(self) -> str:
        kind = "module" if self.is_module else "class"
        return f"<RubyClass {kind} {self.name}>"


class RubyObject:
    """An instance of a user-defined class."""

    def __init__(self, cls: RubyClass):
        self.cls = cls
        self.ivars: Dict[str, Any] = {}
        self.frozen = False

    def __repr__(self) -> str:
        return f"<RubyObject {self.cls.name} {list(self.ivars)}>"


class Proc:
    """A block, proc or lambda closing over the scope it was created in."""

    def __init__(self, params: List["Param"], body: List[Any], scope: Optional[Scope],
                 is_lambda: bool = False, symbol: Optional[str] = None, native: Any = None):
        self.params = params
        self.body = body
        self.scope = scope
        self.is_lambda = is_lambda
        # `&:name` shorthand.
        self.symbol = symbol
        # Host-implemented block: fn(*args).
        self.native = native
        # Frame the proc was created in; `return` inside it exits that frame.
        self.home = None

    @property
    def arity(self) -> int:
        if self.symbol is not None:
            return -2
        required = sum(1 for p in self.params if p.kind in ("required", "destructure"))
        if any(p.kind in ("optional", "rest") for p in self.params):
            return -(required + 1)
        return required

    def __repr__(self) -> str:
        return f"<Proc lambda={self.is_lambda} params={[p.name for p in self.params]}>"


class Enumerator:
    """A materialized, block-less iteration (`arr.each_with_index`, `5.times`)."""

    def __init__(self, items: List[Any], method: str, source: Any = None, args: Optional[List[Any]] = None):
        self.items = items
        self.method = method
        self.source = source
        self.args = list(args or [])
        # Cursor for external iteration (`next`, `peek`).
        self.position = 0

    def __repr__(self) -> str:
        return f"<Enumerator {self.method} {len(self.items)} items>"


class LazySequence:
    """A lazy enumerator over a (possibly endless) source."""

    def __init__(self, source: Any, ops: Optional[List[Tuple[str, Any]]] = None):
        self.source = source
        self.ops = list(ops or [])

    def chain(self, op: str, arg: Any) -> "LazySequence":
        return LazySequence(self.source, self.ops + [(op, arg)])

    def __repr__(self) -> str:
        return f"<LazySequence ops={[op for op, _ in self.ops]}>"


# =================================================================
# Value helpers
# =================================================================

def truthy(value) -> bool:
    """Only nil and false are falsy."""
    return value is not None and value is not False


def hash_key(value):
    """Normalizes a value into a Python key honouring language equality."""
    if value is None:
        return ("nil",)
    if isinstance(value, bool):
        return ("bool", value)
    if isinstance(value, float):
        return ("float", value)
    if isinstance(value, (int, str, Symbol)):
        return value
    if isinstance(value, list):
        return ("array", tuple(hash_key(v) for v in value))
    if isinstance(value, RubyHash):
        return ("hash", tuple((hash_key(k), hash_key(v)) for k, v in value.pairs()))
    if isinstance(value, RubyRange):
        return ("range", hash_key(value.start), hash_key(value.end), value.exclusive)
    if isinstance(value, RubyObject) and value.cls.struct_fields is not None:
        return ("struct", id(value.cls), tuple(hash_key(value.ivars.get("@" + f)) for f in value.cls.struct_fields))
    return ("object", id(value))


def values_equal(a, b) -> bool:
    """Structural equality for collections, value equality for scalars."""
    if a is b:
        return True
    if isinstance(a, bool) or isinstance(b, bool):
        return False
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, Symbol) and isinstance(b, Symbol):
        return a.name == b.name
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, RubyHash) and isinstance(b, RubyHash):
        if len(a) != len(b):
            return False
        for key, value in a.pairs():
            hk = hash_key(key)
            if hk not in b._data or not values_equal(value, b._data[hk][1]):
                return False
        return True
    if isinstance(a, RubyRange) and isinstance(b, RubyRange):
        return a == b
    if isinstance(a, RubyRegexp) and isinstance(b, RubyRegexp):
        return a == b
    if isinstance(a, RubyObject) and isinstance(b, RubyObject):
        if a.cls is b.cls and a.cls.struct_fields is not None:
            return all(values_equal(a.ivars.get("@" + f), b.ivars.get("@" + f)) for f in a.cls.struct_fields)
    return False


def compare_values(a, b) -> Optional[int]:
    """The `<=>` ordering for built-in kinds; None when the kinds do not compare."""
    if isinstance(a, bool) or isinstance(b, bool):
        return 0 if a is b else None
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return (a > b) - (a < b)
    if isinstance(a, str) and isinstance(b, str):
        return (a > b) - (a < b)
    if isinstance(a, Symbol) and isinstance(b, Symbol):
        return (a.name > b.name) - (a.name < b.name)
    if isinstance(a, list) and isinstance(b, list):
        for x, y in zip(a, b):
            c = compare_values(x, y)
            if c is None or c != 0:
                return c
        return (len(a) > len(b)) - (len(a) < len(b))
    if a is None and b is None:
        return 0
    return None


# =================================================================
# Executable nodes
# =================================================================

@dataclass
class Node:
    line: int = field(default=0, kw_only=True, compare=False)


@dataclass
class Param(Node):
    """One parameter spec: required, optional, rest, keyword, keyrest, block or destructure."""
    name: str
    kind: str = "required"
    default: Any = None
    names: Optional[List["Param"]] = None


# ----- expressions -----

@dataclass
class Literal(Node):
    value: Any


@dataclass
class StringNode(Node):
    """Interpolated text: parts are literal strings or expression nodes."""
    parts: List[Any]


@dataclass
class RegexNode(Node):
    parts: List[Any]
    flags: str = ""


@dataclass
class ArrayNode(Node):
    elements: List[Any]


@dataclass
class HashNode(Node):
    pairs: List[Tuple[Any, Any]]
    braces: bool = True


@dataclass
class RangeNode(Node):
    start: Any
    end: Any
    exclusive: bool = False


@dataclass
class Identifier(Node):
    """A bare name: a local variable if bound, otherwise a zero-argument call."""
    name: str


@dataclass
class InstanceVar(Node):
    name: str


@dataclass
class ClassVar(Node):
    name: str


@dataclass
class GlobalVar(Node):
    name: str


@dataclass
class ConstantRef(Node):
    name: str
    scope: Any = None


@dataclass
class SelfNode(Node):
    pass


@dataclass
class BinaryOp(Node):
    op: str
    left: Any
    right: Any


@dataclass
class LogicalOp(Node):
    op: str
    left: Any
    right: Any


@dataclass
class UnaryOp(Node):
    op: str
    operand: Any


@dataclass
class Ternary(Node):
    cond: Any
    then: Any
    otherwise: Any


@dataclass
class Splat(Node):
    value: Any


@dataclass
class BlockNode(Node):
    params: List[Param]
    body: List[Any]


@dataclass
class LambdaNode(Node):
    params: List[Param]
    body: List[Any]


@dataclass
class Call(Node):
    receiver: Any
    name: str
    args: List[Any] = field(default_factory=list)
    block: Optional[BlockNode] = None
    block_arg: Any = None
    has_parens: bool = False
    safe_nav: bool = False


@dataclass
class Output(Node):
    """`puts`, `p`, `print` and `pp`."""
    kind: str
    args: List[Any]


@dataclass
class Yield(Node):
    args: List[Any]


@dataclass
class Super(Node):
    """`super` with explicit arguments, or (args is None) forwarding the current ones."""
    args: Optional[List[Any]] = None
    block: Optional[BlockNode] = None


# ----- statements -----

@dataclass
class Assign(Node):
    target: Any
    value: Any


@dataclass
class OpAssign(Node):
    target: Any
    op: str
    value: Any


@dataclass
class MultiAssign(Node):
    targets: List[Any]
    values: List[Any]


@dataclass
class Append(Node):
    """`name << value` onto an existing binding."""
    target: Any
    value: Any


@dataclass
class If(Node):
    branches: List[Tuple[Any, List[Any]]]
    else_body: Optional[List[Any]] = None


@dataclass
class While(Node):
    cond: Any
    body: List[Any]
    until: bool = False


@dataclass
class For(Node):
    names: List[str]
    iterable: Any
    body: List[Any]


@dataclass
class Case(Node):
    subject: Any
    whens: List[Tuple[List[Any], List[Any]]]
    else_body: Optional[List[Any]] = None


@dataclass
class MethodDef(Node):
    name: str
    params: List[Param]
    body: List[Any]
    singleton: bool = False


@dataclass
class ClassDef(Node):
    name: str
    superclass: Any
    body: List[Any]
    scope: Any = None


@dataclass
class SingletonClassDef(Node):
    """`class << self` inside a class body."""
    body: List[Any]


@dataclass
class ModuleDef(Node):
    name: str
    body: List[Any]


@dataclass
class Return(Node):
    value: Any = None


@dataclass
class Break(Node):
    value: Any = None


@dataclass
class Next(Node):
    value: Any = None


@dataclass
class RescueClause(Node):
    classes: List[Any]
    var: Optional[str]
    body: List[Any]


@dataclass
class BeginBlock(Node):
    body: List[Any]
    rescues: List[RescueClause] = field(default_factory=list)
    else_body: Optional[List[Any]] = None
    ensure_body: Optional[List[Any]] = None


@dataclass
class Alias(Node):
    new_name: str
    old_name: str
