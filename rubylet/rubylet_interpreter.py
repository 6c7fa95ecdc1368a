"""
The core rubylet interpreter, containing the Evaluator and the object model it runs against.

The evaluator walks the executable nodes produced by the parser. Non-local
exits (`break`, `next`, `return`) travel back up the evaluation chain as
`Signal` values; when one has to cross a built-in method that was running a
block it is carried by a `SignalUnwind` exception and turned back into a
Signal at the next statement boundary.
"""
import os
import random
import sys
from typing import Any, Dict, List, Optional, Tuple

from rubylet.rubylet_datatypes import (
    RubyError, RubySyntaxError, RubyNameError, RubyNoMethodError, RubyArgumentError, RubyTypeError,
    RubyFrozenError, RubyLocalJumpError, RubyInternalError, DivisionByZero,
    LoopControlOutsideLoop, ResourceExceeded, EXCEPTION_HIERARCHY, error_for_class,
    Signal, SignalUnwind, Symbol, FrozenStr, RubyRange, RubyHash, RubyRegexp, RubyMatch, Scope,
    RubyMethod, RubyClass, RubyObject, Proc, Enumerator, LazySequence,
    truthy, values_equal, compare_values,
    Literal, StringNode, RegexNode, ArrayNode, HashNode, RangeNode, Identifier, InstanceVar,
    ClassVar, GlobalVar, ConstantRef, SelfNode, BinaryOp, LogicalOp, UnaryOp, Ternary, Splat,
    LambdaNode, Call, Output, Yield, Super, Assign, OpAssign, MultiAssign, Append, If, While, For,
    Case, MethodDef, ClassDef, SingletonClassDef, ModuleDef, Return, Break, Next, BeginBlock, Alias,
)
from rubylet.rubylet_guard import ExecutionGuard
from rubylet.rubylet_methods import (
    ObjectMethods, NilMethods, BoolMethods, NumericMethods, StringMethods, SymbolMethods,
    ArrayMethods, HashMethods, RangeMethods, EnumeratorMethods, LazyMethods, ProcMethods,
    RegexpMethods, MatchDataMethods, ExceptionMethods, StructMethods, ClassMethods,
    ArrayClassMethods, HashClassMethods, StringClassMethods, IntegerClassMethods, ProcClassMethods,
    RangeClassMethods, StructClassMethods, MathMethods,
    STRING_MUTATORS, ENUMERABLE_METHODS, is_number, numeric_binary, iter_range, struct_fields,
)
from rubylet.rubylet_printer import Printer


RECURSION_LIMIT = 10_000

# (name, superclass, is_module) in creation order.
_BUILTIN_CLASSES = [
    ("BasicObject", None, False),
    ("Kernel", None, True),
    ("Comparable", None, True),
    ("Enumerable", None, True),
    ("Object", "BasicObject", False),
    ("Module", "Object", False),
    ("Class", "Module", False),
    ("NilClass", "Object", False),
    ("TrueClass", "Object", False),
    ("FalseClass", "Object", False),
    ("Numeric", "Object", False),
    ("Integer", "Numeric", False),
    ("Float", "Numeric", False),
    ("String", "Object", False),
    ("Symbol", "Object", False),
    ("Array", "Object", False),
    ("Hash", "Object", False),
    ("Range", "Object", False),
    ("Proc", "Object", False),
    ("Regexp", "Object", False),
    ("MatchData", "Object", False),
    ("Enumerator", "Object", False),
    ("Enumerator::Lazy", "Enumerator", False),
    ("Struct", "Object", False),
    ("IO", "Object", False),
    ("Math", None, True),
]

_INCLUDES = {
    "Object": ["Kernel"], "Numeric": ["Comparable"], "String": ["Comparable"],
    "Array": ["Enumerable"], "Hash": ["Enumerable"], "Range": ["Enumerable"],
    "Enumerator": ["Enumerable"], "Struct": ["Enumerable"],
}

_CLASS_TABLES = {
    "Array": ArrayClassMethods, "Hash": HashClassMethods, "String": StringClassMethods,
    "Integer": IntegerClassMethods, "Proc": ProcClassMethods, "Range": RangeClassMethods,
    "Struct": StructClassMethods, "Math": MathMethods,
}

# Builtin classes whose values only come from literals.
_UNINSTANTIABLE = frozenset({"Integer", "Float", "Numeric", "Symbol", "NilClass", "TrueClass",
                             "FalseClass", "MatchData", "Enumerator", "Enumerator::Lazy", "IO"})

_KIND_TABLES = {
    type(None): "nil", bool: "bool", int: "numeric", float: "numeric", str: "string",
    FrozenStr: "string", Symbol: "symbol", list: "array", RubyHash: "hash", RubyRange: "range",
    Enumerator: "enumerator", LazySequence: "lazy", Proc: "proc", RubyRegexp: "regexp",
    RubyMatch: "match",
}

_KIND_CLASSES = {
    type(None): "NilClass", int: "Integer", float: "Float", str: "String", FrozenStr: "String",
    Symbol: "Symbol", list: "Array", RubyHash: "Hash", RubyRange: "Range", Proc: "Proc",
    RubyRegexp: "Regexp", RubyMatch: "MatchData", Enumerator: "Enumerator",
    LazySequence: "Enumerator::Lazy",
}

_NUMERIC_OPS = frozenset({"+", "-", "*", "/", "%", "**", "<", ">", "<=", ">=", "<=>"})

# Sentinel for "keep the home frame's value" in call_block.
_SAME = object()


class Frame:
    """One activation: `self`, where `def` puts methods, the block, and the constant nesting."""
    __slots__ = ("self_obj", "def_target", "block", "method", "args", "lexical", "singleton_defs")

    def __init__(self, self_obj, def_target=None, block=None, method=None, args=None,
                 lexical: Tuple[RubyClass, ...] = (), singleton_defs: bool = False):
        self.self_obj = self_obj
        # Class receiving `def`; None defines top-level functions.
        self.def_target = def_target
        self.block = block
        self.method = method
        self.args = args
        self.lexical = lexical
        self.singleton_defs = singleton_defs

    def __repr__(self) -> str:
        name = self.method.name if self.method is not None else "<main>"
        return f"<Frame {name} self={type(self.self_obj).__name__}>"


class Interpreter:
    """The rubylet execution engine: one session's objects, output and limits."""

    def __init__(self, guard: Optional[ExecutionGuard] = None, seed: Optional[int] = 0):
        self.guard = guard or ExecutionGuard()
        self.printer = Printer(self)
        self.rng = random.Random(seed)
        self.output: List[str] = []
        # id -> frozen Array; the value is kept so its id stays unique.
        self.frozen: Dict[int, Any] = {}
        self.last_match: Optional[RubyMatch] = None
        self.globals: Dict[str, Any] = {"$PROGRAM_NAME": "main", "$0": "main", "$,": None, "$/": "\n"}
        self.global_methods: Dict[str, RubyMethod] = {}
        self.classes: Dict[str, RubyClass] = {}
        self.tables = {
            "object": ObjectMethods(self), "nil": NilMethods(self), "bool": BoolMethods(self),
            "numeric": NumericMethods(self), "string": StringMethods(self),
            "symbol": SymbolMethods(self), "array": ArrayMethods(self), "hash": HashMethods(self),
            "range": RangeMethods(self), "enumerator": EnumeratorMethods(self),
            "lazy": LazyMethods(self), "proc": ProcMethods(self), "regexp": RegexpMethods(self),
            "match": MatchDataMethods(self), "exception": ExceptionMethods(self),
            "struct": StructMethods(self), "class": ClassMethods(self),
        }
        # Kernel functions (puts, rand, raise, ...); installed by the runtime.
        self.kernel = None
        self.current_line = 0
        self.debug = bool(os.environ.get("RUBYLET_DEBUG"))
        self._install_builtins()
        self.main = RubyObject(self.classes["Object"])
        self.top_scope = Scope()
        self.top_frame = Frame(self.main)
        if sys.getrecursionlimit() < RECURSION_LIMIT:
            sys.setrecursionlimit(RECURSION_LIMIT)

    def _dbg(self, *parts):
        if self.debug:
            print("[DBG]", *parts, file=sys.stderr)

    # =================================================================
    # Builtin classes
    # =================================================================

    def _install_builtins(self):
        obj_constants: Dict[str, Any] = {}
        for name, parent, is_module in _BUILTIN_CLASSES:
            superclass = self.classes[parent] if parent else None
            cls = RubyClass(name, superclass, is_module=is_module, builtin=True)
            self.classes[name] = cls
            if "::" in name:
                outer, inner = name.split("::")
                self.classes[outer].constants[inner] = cls
            else:
                obj_constants[name] = cls
        for name, modules in _INCLUDES.items():
            self.classes[name].includes.extend(self.classes[m] for m in modules)
        for name, table_type in _CLASS_TABLES.items():
            self.classes[name].native_table = table_type(self)
        for name in EXCEPTION_HIERARCHY:
            self._exception_class(name, obj_constants)
        self.classes["Object"].constants.update(obj_constants)

        float_cls = self.classes["Float"]
        float_cls.constants.update({
            "INFINITY": float("inf"), "NAN": float("nan"), "EPSILON": sys.float_info.epsilon,
            "MAX": sys.float_info.max, "MIN": sys.float_info.min,
        })
        math_cls = self.classes["Math"]
        math_cls.constants.update({"PI": 3.141592653589793, "E": 2.718281828459045})
        self._install_io()

    def _exception_class(self, name: str, obj_constants: Dict[str, Any]) -> RubyClass:
        if name in self.classes:
            return self.classes[name]
        parent = EXCEPTION_HIERARCHY[name]
        superclass = self._exception_class(parent, obj_constants) if parent else self.classes["Object"]
        cls = RubyClass(name, superclass, builtin=True)
        self.classes[name] = cls
        if "::" in name:
            outer, inner = name.split("::")
            self.classes[outer].constants[inner] = cls
        else:
            obj_constants[name] = cls
        return cls

    def _install_io(self):
        io = self.classes["IO"]

        def io_puts(interp, recv, args, block):
            interp.puts(args)

        def io_print(interp, recv, args, block):
            interp.write("".join(interp.printer.to_s(a) for a in args))

        def io_write(interp, recv, args, block):
            text = "".join(interp.printer.to_s(a) for a in args)
            interp.write(text)
            return len(text)

        for name, fn in (("puts", io_puts), ("print", io_print), ("write", io_write),
                         ("flush", lambda interp, recv, args, block: recv),
                         ("sync=", lambda interp, recv, args, block: args[0] if args else None)):
            io.methods[name] = RubyMethod(name, owner=io, native=fn)
        stdout = RubyObject(io)
        self.globals["$stdout"] = stdout
        self.classes["Object"].constants["STDOUT"] = stdout

    # =================================================================
    # Entry points
    # =================================================================

    def run(self, program: List[Any]):
        """Evaluates a parsed program in the session's top-level scope."""
        try:
            result = self._eval_body(program, self.top_scope, self.top_frame)
        except RecursionError:
            raise ResourceExceeded("stack level too deep", reason="stack", line=self.current_line)
        except RubyError:
            raise
        except Exception as e:
            raise RubyInternalError(f"{type(e).__name__}: {e}", line=self.current_line) from e
        finally:
            self.guard.depth = 0
        if type(result) is Signal:
            return self._top_level_exit(result)
        return result

    def _top_level_exit(self, signal: Signal):
        if signal.kind == "return":
            return signal.value
        if signal.from_block:
            raise RubyLocalJumpError(f"{signal.kind} from proc-closure", line=self.current_line)
        raise LoopControlOutsideLoop(f"Invalid {signal.kind}: not inside a loop or block",
                                     line=self.current_line)

    def eval_source(self, source: str):
        """Parses and runs more source in this session (`eval`, the REPL)."""
        from rubylet.rubylet_parser import parse_program
        result = self._eval_body(parse_program(source), self.top_scope, self.top_frame)
        if type(result) is Signal:
            raise SignalUnwind(result)
        return result

    def write(self, text: str):
        self.guard.charge_output(len(text))
        self.output.append(text)

    def puts(self, args: List[Any]):
        if not args:
            self.write("\n")
            return None
        for arg in args:
            text = self.printer.puts_form(arg)
            self.write(text if text.endswith("\n") else text + "\n")
        return None

    def take_output(self) -> str:
        text = "".join(self.output)
        self.output.clear()
        return text

    # =================================================================
    # Evaluation
    # =================================================================

    def _eval_body(self, body: List[Any], scope: Scope, frame: Frame):
        result = None
        try:
            for stmt in body:
                self.current_line = stmt.line
                try:
                    result = self._eval(stmt, scope, frame)
                except RubyError as e:
                    if e.line is None:
                        e.line = stmt.line
                    raise
                if type(result) is Signal:
                    return result
        except SignalUnwind as unwind:
            return unwind.signal
        return result

    def _value(self, node, scope: Scope, frame: Frame):
        result = self._eval(node, scope, frame)
        if type(result) is Signal:
            raise SignalUnwind(result)
        return result

    def _eval(self, node, scope: Scope, frame: Frame):
        self.guard.tick()
        match node:
            case Literal(value=value):
                return value
            case Identifier(name=name):
                found, value = scope.lookup(name)
                if found:
                    return value
                return self.call_function(name, [], None, frame, has_args=False)
            case Call():
                return self._eval_call(node, scope, frame)
            case BinaryOp(op=op, left=left, right=right):
                return self.binary_op(op, self._value(left, scope, frame), self._value(right, scope, frame))
            case Assign(target=target, value=value):
                return self._assign(target, self._value(value, scope, frame), scope, frame)
            case StringNode(parts=parts):
                text = "".join(p if isinstance(p, str) else self.printer.to_s(self._value(p, scope, frame))
                               for p in parts)
                self.guard.check_collection(len(text))
                return text
            case InstanceVar(name=name):
                return self.ivars_of(frame.self_obj).get(name)
            case SelfNode():
                return frame.self_obj
            case If(branches=branches, else_body=else_body):
                for cond, body in branches:
                    if truthy(self._value(cond, scope, frame)):
                        return self._eval_body(body, scope, frame)
                if else_body is not None:
                    return self._eval_body(else_body, scope, frame)
                return None
            case LogicalOp(op=op, left=left, right=right):
                value = self._value(left, scope, frame)
                if (op == "&&") == truthy(value):
                    return self._value(right, scope, frame)
                return value
            case UnaryOp(op=op, operand=operand):
                return self._unary(op, self._value(operand, scope, frame))
            case Output():
                return self._output(node, scope, frame)
            case ArrayNode(elements=elements):
                items = self.eval_list(elements, scope, frame)
                self.guard.check_collection(len(items))
                return items
            case HashNode(pairs=pairs, braces=braces):
                return self._eval_hash(pairs, braces, scope, frame)
            case RangeNode(start=start, end=end, exclusive=exclusive):
                return self._make_range(self._value(start, scope, frame) if start is not None else None,
                                        self._value(end, scope, frame) if end is not None else None,
                                        exclusive)
            case Ternary(cond=cond, then=then, otherwise=otherwise):
                branch = then if truthy(self._value(cond, scope, frame)) else otherwise
                return self._eval(branch, scope, frame)
            case OpAssign():
                return self._op_assign(node, scope, frame)
            case MultiAssign():
                return self._multi_assign(node, scope, frame)
            case Append(target=target, value=value):
                return self._append(target, self._value(value, scope, frame), scope, frame)
            case While():
                return self._eval_while(node, scope, frame)
            case For():
                return self._eval_for(node, scope, frame)
            case Case():
                return self._eval_case(node, scope, frame)
            case Return(value=value):
                return Signal("return", self._signal_value(value, scope, frame))
            case Break(value=value):
                return Signal("break", self._signal_value(value, scope, frame))
            case Next(value=value):
                return Signal("next", self._signal_value(value, scope, frame))
            case Yield(args=args):
                if frame.block is None:
                    raise RubyLocalJumpError("no block given (yield)")
                return self.yield_block(frame.block, self.eval_list(args, scope, frame))
            case LambdaNode(params=params, body=body):
                return self.make_proc(params, body or [], scope, frame, is_lambda=True)
            case GlobalVar(name=name):
                return self._global(name)
            case ClassVar(name=name):
                owner = self._cvar_owner(name, frame)
                if owner is None:
                    raise RubyNameError(f"uninitialized class variable {name} in {self.printer.to_s(self._cvar_class(frame))}")
                return owner.class_vars[name]
            case ConstantRef():
                return self._constant(node, scope, frame)
            case Splat(value=value):
                return self.splat_values(self._value(value, scope, frame))
            case RegexNode(parts=parts, flags=flags):
                source = "".join(p if isinstance(p, str) else self._regexp_part(self._value(p, scope, frame))
                                 for p in parts)
                return RubyRegexp(source, flags)
            case BeginBlock():
                return self._eval_begin(node, scope, frame)
            case MethodDef():
                return self._define_method(node, frame)
            case ClassDef():
                return self._eval_class(node, scope, frame)
            case ModuleDef():
                return self._eval_module(node, frame)
            case SingletonClassDef(body=body):
                if not isinstance(frame.self_obj, RubyClass):
                    raise RubyTypeError("class << self is only supported inside a class body")
                inner = Frame(frame.self_obj, frame.self_obj, lexical=frame.lexical, singleton_defs=True)
                return self._eval_body(body, Scope(), inner)
            case Super():
                return self._eval_super(node, scope, frame)
            case Alias(new_name=new_name, old_name=old_name):
                self.alias_method(frame.def_target, new_name, old_name)
                return None
        raise RubyInternalError(f"cannot evaluate {type(node).__name__}", line=getattr(node, "line", None))

    def _signal_value(self, node, scope, frame):
        if node is None:
            return None
        if isinstance(node, ArrayNode):
            return self.eval_list(node.elements, scope, frame)
        return self._value(node, scope, frame)

    def eval_list(self, nodes: List[Any], scope: Scope, frame: Frame) -> List[Any]:
        """Evaluates argument or element nodes, expanding `*splat`s."""
        out: List[Any] = []
        for n in nodes:
            if isinstance(n, Splat):
                out.extend(self.splat_values(self._value(n.value, scope, frame)))
            else:
                out.append(self._value(n, scope, frame))
        return out

    def splat_values(self, value) -> List[Any]:
        if value is None:
            return []
        if isinstance(value, list):
            return list(value)
        if isinstance(value, RubyHash):
            return [[k, v] for k, v in value.pairs()]
        if isinstance(value, (RubyRange, Enumerator)):
            return self.send(value, "to_a", [])
        return [value]

    def _eval_hash(self, pairs, braces: bool, scope, frame) -> RubyHash:
        result = RubyHash()
        result.keyword_args = not braces
        for key_node, value_node in pairs:
            if key_node is None:
                extra = self._value(value_node, scope, frame)
                if not isinstance(extra, RubyHash):
                    raise RubyTypeError(f"no implicit conversion of {self.class_name(extra)} into Hash")
                for k, v in extra.pairs():
                    result[k] = v
                continue
            key = self._value(key_node, scope, frame)
            if type(key) is str:
                key = FrozenStr(key)
            result[key] = self._value(value_node, scope, frame)
        return result

    def _make_range(self, start, end, exclusive: bool) -> RubyRange:
        if start is not None and end is not None and not (is_number(start) and is_number(end)):
            if compare_values(start, end) is None:
                raise RubyArgumentError("bad value for range")
        return RubyRange(start, end, exclusive)

    def _regexp_part(self, value) -> str:
        if isinstance(value, RubyRegexp):
            return value.source
        return self.printer.to_s(value)

    def _unary(self, op: str, value):
        if op == "!":
            return not truthy(value)
        if op == "-" and is_number(value):
            return -value
        if op == "+" and is_number(value):
            return value
        name = {"-": "-@", "+": "+@", "~": "~"}[op]
        return self.send(value, name, [])

    def _global(self, name: str):
        if name == "$~":
            return self.last_match
        if name[1:].isdigit():
            if self.last_match is None:
                return None
            group = int(name[1:])
            match = self.last_match.match
            return match.group(group) if group <= (match.re.groups or 0) else None
        return self.globals.get(name)

    def _output(self, node: Output, scope, frame):
        args = self.eval_list(node.args, scope, frame)
        if node.kind == "puts":
            return self.puts(args)
        if node.kind == "print":
            self.write("".join(self.printer.to_s(a) for a in args))
            return None
        for arg in args:
            self.write(self.printer.pformat(arg) + "\n")
        if not args:
            return None
        return args[0] if len(args) == 1 else args

    # ----- loops and branches -----

    def _eval_while(self, node: While, scope, frame):
        while truthy(self._value(node.cond, scope, frame)) != node.until:
            result = self._eval_body(node.body, scope, frame)
            if type(result) is Signal:
                if result.from_block or result.kind == "return":
                    return result
                if result.kind == "break":
                    return result.value
        return None

    def _eval_for(self, node: For, scope, frame):
        iterable = self._value(node.iterable, scope, frame)
        if isinstance(iterable, RubyRange):
            items = iter_range(iterable, self.class_name)
        elif isinstance(iterable, list):
            items = _live_items(iterable)
        elif isinstance(iterable, RubyHash):
            items = [[k, v] for k, v in iterable.pairs()]
        else:
            items = self.send(iterable, "to_a", [])
        for item in items:
            self.guard.tick()
            if len(node.names) == 1:
                scope.assign(node.names[0], item)
            else:
                values = item if isinstance(item, list) else [item]
                for i, name in enumerate(node.names):
                    scope.assign(name, values[i] if i < len(values) else None)
            result = self._eval_body(node.body, scope, frame)
            if type(result) is Signal:
                if result.from_block or result.kind == "return":
                    return result
                if result.kind == "break":
                    return result.value
        return iterable

    def _eval_case(self, node: Case, scope, frame):
        subject = self._value(node.subject, scope, frame) if node.subject is not None else None
        for values, body in node.whens:
            for value_node in values:
                if isinstance(value_node, Splat):
                    candidates = self.splat_values(self._value(value_node.value, scope, frame))
                else:
                    candidates = [self._value(value_node, scope, frame)]
                for candidate in candidates:
                    if node.subject is None:
                        hit = truthy(candidate)
                    else:
                        hit = truthy(self.case_equal(candidate, subject))
                    if hit:
                        return self._eval_body(body, scope, frame)
        if node.else_body is not None:
            return self._eval_body(node.else_body, scope, frame)
        return None

    def _eval_begin(self, node: BeginBlock, scope, frame):
        try:
            try:
                result = self._eval_body(node.body, scope, frame)
            except RubyError as error:
                clause = self._find_rescue(node, error, scope, frame)
                if clause is None:
                    raise
                self._dbg("rescue", error.ruby_class, error.message)
                if clause.var is not None:
                    scope.assign(clause.var, error)
                self.globals["$!"] = error
                return self._eval_body(clause.body, scope, frame)
            if node.else_body is not None and type(result) is not Signal:
                result = self._eval_body(node.else_body, scope, frame)
            return result
        finally:
            if node.ensure_body is not None:
                self._eval_body(node.ensure_body, scope, frame)

    def _find_rescue(self, node: BeginBlock, error: RubyError, scope, frame):
        if not error.rescuable:
            return None
        error_cls = self.class_of(error)
        for clause in node.rescues:
            classes = self.eval_list(clause.classes, scope, frame) or [self.classes["StandardError"]]
            for cls in classes:
                if not isinstance(cls, RubyClass):
                    raise RubyTypeError("class or module required for rescue clause")
                if error_cls.is_subclass_of(cls):
                    return clause
        return None

    # ----- assignment -----

    def _assign(self, target, value, scope: Scope, frame: Frame):
        match target:
            case Identifier(name=name):
                scope.assign(name, value)
            case InstanceVar(name=name):
                self.check_frozen(frame.self_obj)
                self.ivars_of(frame.self_obj)[name] = value
            case ClassVar(name=name):
                owner = self._cvar_owner(name, frame) or self._cvar_class(frame)
                owner.class_vars[name] = value
            case GlobalVar(name=name):
                self.globals[name] = value
            case ConstantRef(name=name, scope=None):
                container = frame.lexical[-1] if frame.lexical else self.classes["Object"]
                self._set_constant(container, name, value)
            case ConstantRef(name=name, scope=outer):
                container = self._value(outer, scope, frame)
                if not isinstance(container, RubyClass):
                    raise RubyTypeError(f"{self.printer.pformat(container)} is not a class/module")
                self._set_constant(container, name, value)
            case Call(name="[]"):
                recv = self._value(target.receiver, scope, frame)
                args = self.eval_list(target.args, scope, frame)
                self._index_assign(target.receiver, recv, args, value, scope, frame)
            case Call():
                recv = self._value(target.receiver, scope, frame)
                if target.safe_nav and recv is None:
                    return None
                self.send(recv, target.name + "=", [value])
            case _:
                raise RubySyntaxError("invalid assignment target", line=getattr(target, "line", None))
        return value

    def _set_constant(self, container: RubyClass, name: str, value):
        if isinstance(value, RubyClass) and value.name is None:
            value.name = name if container is self.classes["Object"] else f"{container.name}::{name}"
        container.constants[name] = value

    def _index_assign(self, recv_node, recv, args: List[Any], value, scope, frame):
        if isinstance(recv, str):
            self.check_frozen(recv)
            updated = self.tables["string"].replaced_slice(recv, list(args) + [value])
            self._rebind(recv_node, updated, scope, frame)
        else:
            self.send(recv, "[]=", list(args) + [value])
        return value

    def _rebind(self, node, value, scope, frame) -> bool:
        """Stores a new (string) value back where `node` read it from."""
        match node:
            case Identifier() | InstanceVar() | GlobalVar() | ClassVar():
                self._assign(node, value, scope, frame)
                return True
            case Call(name="[]"):
                container = self._value(node.receiver, scope, frame)
                args = self.eval_list(node.args, scope, frame)
                self._index_assign(node.receiver, container, args, value, scope, frame)
                return True
            case Call(args=[], block=None) if node.receiver is not None and node.name.isidentifier():
                self.send(self._value(node.receiver, scope, frame), node.name + "=", [value])
                return True
        return False

    def _read_target(self, target, scope: Scope, frame: Frame):
        match target:
            case Identifier(name=name):
                return scope.lookup(name)[1]
            case InstanceVar(name=name):
                return self.ivars_of(frame.self_obj).get(name)
            case ClassVar(name=name):
                owner = self._cvar_owner(name, frame)
                return owner.class_vars[name] if owner is not None else None
            case GlobalVar(name=name):
                return self._global(name)
            case ConstantRef():
                try:
                    return self._constant(target, scope, frame)
                except RubyNameError:
                    return None
        raise RubySyntaxError("invalid assignment target", line=getattr(target, "line", None))

    def _op_assign(self, node: OpAssign, scope, frame):
        target = node.target
        if isinstance(target, Call):
            recv = self._value(target.receiver, scope, frame)
            if target.safe_nav and recv is None:
                return None
            if target.name == "[]":
                args = self.eval_list(target.args, scope, frame)
                current = self.send(recv, "[]", args)

                def store(v):
                    self._index_assign(target.receiver, recv, args, v, scope, frame)
            else:
                current = self.send(recv, target.name, [])

                def store(v):
                    self.send(recv, target.name + "=", [v])
        else:
            current = self._read_target(target, scope, frame)

            def store(v):
                self._assign(target, v, scope, frame)
        if node.op == "||":
            if truthy(current):
                return current
            value = self._value(node.value, scope, frame)
        elif node.op == "&&":
            if not truthy(current):
                return current
            value = self._value(node.value, scope, frame)
        else:
            value = self.binary_op(node.op, current, self._value(node.value, scope, frame))
        store(value)
        return value

    def _multi_assign(self, node: MultiAssign, scope, frame):
        values = self.eval_list(node.values, scope, frame)
        if len(node.values) == 1 and not isinstance(node.values[0], Splat):
            single = values[0]
            values = list(single) if isinstance(single, list) else [single]
        targets = node.targets
        splat_at = next((i for i, t in enumerate(targets) if isinstance(t, Splat)), None)
        if splat_at is None:
            for i, target in enumerate(targets):
                self._assign(target, values[i] if i < len(values) else None, scope, frame)
            return values
        before, after = targets[:splat_at], targets[splat_at + 1:]
        for i, target in enumerate(before):
            self._assign(target, values[i] if i < len(values) else None, scope, frame)
        tail_start = max(len(before), len(values) - len(after))
        self._assign(targets[splat_at].value, values[len(before):tail_start], scope, frame)
        for i, target in enumerate(after):
            index = tail_start + i
            self._assign(target, values[index] if index < len(values) else None, scope, frame)
        return values

    def _append(self, target, value, scope, frame):
        current = self._read_target(target, scope, frame)
        if isinstance(current, str) and self.class_of(current).find_method("<<") is None:
            return self._mutate_string(target, current, "<<", [value], None, scope, frame)
        return self.send(current, "<<", [value])

    def _mutate_string(self, node, recv: str, name: str, args, block, scope, frame):
        """Runs a mutating String method by rebinding the receiver to the new string."""
        if name == "freeze":
            updated = recv if isinstance(recv, FrozenStr) else FrozenStr(recv)
        else:
            self.check_frozen(recv)
            updated = self.send(recv, STRING_MUTATORS[name], list(args), block)
        if node is not None:
            self._rebind(node, updated, scope, frame)
        if name.endswith("!"):
            return None if updated == recv else updated
        return updated

    # ----- constants and class variables -----

    def _constant(self, node: ConstantRef, scope, frame):
        if node.scope is None:
            found, value = self.lookup_constant(node.name, frame.lexical)
            if not found:
                raise RubyNameError(f"uninitialized constant {node.name}")
            return value
        container = self._value(node.scope, scope, frame)
        if not isinstance(container, RubyClass):
            raise RubyTypeError(f"{self.printer.pformat(container)} is not a class/module")
        found, value = container.lookup_constant(node.name)
        if not found:
            raise RubyNameError(f"uninitialized constant {self.printer.to_s(container)}::{node.name}")
        return value

    def lookup_constant(self, name: str, lexical: Tuple[RubyClass, ...] = ()):
        for cls in reversed(lexical):
            if name in cls.constants:
                return True, cls.constants[name]
        if lexical:
            found, value = lexical[-1].lookup_constant(name)
            if found:
                return True, value
        top = self.classes["Object"].constants
        if name in top:
            return True, top[name]
        return False, None

    def _cvar_class(self, frame: Frame) -> RubyClass:
        if frame.lexical:
            return frame.lexical[-1]
        if isinstance(frame.self_obj, RubyClass):
            return frame.self_obj
        return self.class_of(frame.self_obj)

    def _cvar_owner(self, name: str, frame: Frame) -> Optional[RubyClass]:
        for cls in self._cvar_class(frame).ancestors():
            if name in cls.class_vars:
                return cls
        return None

    # =================================================================
    # Definitions
    # =================================================================

    def _define_method(self, node: MethodDef, frame: Frame):
        method = RubyMethod(node.name, node.params, node.body, lexical=frame.lexical)
        if node.singleton or frame.singleton_defs:
            target = frame.self_obj
            if isinstance(target, RubyClass):
                method.owner = target
                target.singleton_methods[node.name] = method
            else:
                self.global_methods[node.name] = method
            return Symbol(node.name)
        target = frame.def_target
        if target is None:
            self.global_methods[node.name] = method
        else:
            method.owner = target
            target.methods[node.name] = method
            if target.module_function:
                target.singleton_methods[node.name] = method
        self._dbg("def", node.name, "on", target.name if target is not None else "main")
        return Symbol(node.name)

    def _eval_class(self, node: ClassDef, scope, frame):
        container = frame.lexical[-1] if frame.lexical else self.classes["Object"]
        superclass = None
        if node.superclass is not None:
            superclass = self._value(node.superclass, scope, frame)
            if not isinstance(superclass, RubyClass) or superclass.is_module:
                raise RubyTypeError("superclass must be a Class")
        cls = container.constants.get(node.name)
        if cls is not None:
            if not isinstance(cls, RubyClass) or cls.is_module:
                raise RubyTypeError(f"{node.name} is not a class")
            if superclass is not None and cls.superclass is not superclass:
                raise RubyTypeError(f"superclass mismatch for class {node.name}")
        else:
            name = node.name if container is self.classes["Object"] else f"{container.name}::{node.name}"
            parent = superclass or self.classes["Object"]
            cls = RubyClass(name, parent)
            fields = struct_fields(parent)
            if fields is not None:
                cls.struct_fields = list(fields)
            container.constants[node.name] = cls
            self._dbg("class", name, "<", parent.name)
            hook = parent.find_singleton_method("inherited")
            if hook is not None:
                self.invoke(hook, parent, [cls])
        inner = Frame(cls, cls, lexical=frame.lexical + (cls,))
        return self._eval_body(node.body, Scope(), inner)

    def _eval_module(self, node: ModuleDef, frame):
        container = frame.lexical[-1] if frame.lexical else self.classes["Object"]
        module = container.constants.get(node.name)
        if module is None:
            name = node.name if container is self.classes["Object"] else f"{container.name}::{node.name}"
            module = RubyClass(name, None, is_module=True)
            container.constants[node.name] = module
        elif not isinstance(module, RubyClass) or not module.is_module:
            raise RubyTypeError(f"{node.name} is not a module")
        inner = Frame(module, module, lexical=frame.lexical + (module,))
        return self._eval_body(node.body, Scope(), inner)

    def define_attrs(self, cls: RubyClass, names: List[str], reader: bool, writer: bool):
        defined = []
        for name in names:
            ivar = "@" + name
            if reader:
                cls.methods[name] = RubyMethod(name, owner=cls, native=_attr_reader(ivar, name))
                defined.append(Symbol(name))
            if writer:
                cls.methods[name + "="] = RubyMethod(name + "=", owner=cls, native=_attr_writer(ivar, name))
                defined.append(Symbol(name + "="))
        return defined

    def alias_method(self, cls: Optional[RubyClass], new_name: str, old_name: str):
        if cls is None:
            method = self.global_methods.get(old_name)
            if method is None:
                method = RubyMethod(new_name, native=_forwarder(old_name, kernel=True))
            self.global_methods[new_name] = method
            return
        method = cls.find_method(old_name)
        if method is None:
            table = self._instance_table(cls)
            if table is None or table.lookup(old_name) is None:
                raise RubyNameError(f"undefined method '{old_name}' for class '{self.printer.to_s(cls)}'")
            method = RubyMethod(new_name, owner=cls, native=_forwarder(old_name))
        cls.methods[new_name] = method

    def method_from_proc(self, name: str, cls: RubyClass, proc: Proc) -> RubyMethod:
        return RubyMethod(name, list(proc.params), owner=cls, proc=proc)

    def class_eval(self, cls: RubyClass, proc: Proc):
        return self.call_block(proc, [cls], self_obj=cls, def_target=cls)

    def make_struct(self, fields: List[str], keyword_init: bool, block: Optional[Proc]) -> RubyClass:
        cls = RubyClass(None, self.classes["Struct"])
        cls.struct_fields = list(fields)
        self.define_attrs(cls, fields, reader=True, writer=True)
        cls.methods["initialize"] = RubyMethod("initialize", owner=cls, native=_struct_initializer(keyword_init))
        if block is not None:
            self.class_eval(cls, block)
        return cls

    def instantiate(self, cls: RubyClass, args: List[Any], block: Optional[Proc] = None):
        if cls.is_module or (cls.builtin and cls.name in _UNINSTANTIABLE):
            kind = "module" if cls.is_module else "class"
            raise RubyNoMethodError(f"undefined method 'new' for {kind} {self.printer.to_s(cls)}")
        if cls.is_subclass_of(self.classes["Exception"]):
            return self._new_exception(cls, args, block)
        obj = RubyObject(cls)
        init = cls.find_method("initialize")
        if init is not None:
            self.invoke(init, obj, args, block)
        elif args:
            raise RubyArgumentError(f"wrong number of arguments (given {len(args)}, expected 0)")
        return obj

    def _new_exception(self, cls: RubyClass, args, block):
        base = cls
        while not (base.builtin and base.name in EXCEPTION_HIERARCHY):
            base = base.superclass
        error = error_for_class(base.name, "")
        error.message = None
        if not cls.builtin:
            error.cls = cls
            error.ruby_class = cls.name or base.name
        init = cls.find_method("initialize")
        if init is not None:
            self.invoke(init, error, args, block)
        elif args:
            error.message = self.printer.to_s(args[0])
        if error.message is None:
            error.message = cls.name or base.name
        error.args = (error.message,)
        return error

    # =================================================================
    # Calls
    # =================================================================

    def make_proc(self, params, body, scope: Scope, frame: Frame, is_lambda: bool = False) -> Proc:
        proc = Proc(params, body, scope, is_lambda=is_lambda)
        proc.home = frame
        return proc

    def _call_args(self, node: Call, scope, frame):
        args = self.eval_list(node.args, scope, frame)
        block = None
        if node.block is not None:
            block = self.make_proc(node.block.params, node.block.body, scope, frame)
        elif node.block_arg is not None:
            block = self.to_block(self._value(node.block_arg, scope, frame))
        return args, block

    def to_block(self, value) -> Optional[Proc]:
        if value is None or isinstance(value, Proc):
            return value
        if isinstance(value, Symbol):
            return Proc([], [], None, symbol=value.name)
        if self.responds_to(value, "to_proc"):
            converted = self.send(value, "to_proc", [])
            if isinstance(converted, Proc):
                return converted
        raise RubyTypeError(f"wrong argument type {self.class_name(value)} (expected Proc)")

    def _eval_call(self, node: Call, scope, frame):
        name = node.name
        if node.receiver is None:
            args, block = self._call_args(node, scope, frame)
            try:
                return self.call_function(name, args, block, frame, has_args=bool(args) or node.has_parens)
            except SignalUnwind as unwind:
                return self._catch_break(unwind, block)
        recv = self._value(node.receiver, scope, frame)
        if node.safe_nav and recv is None:
            return None
        args, block = self._call_args(node, scope, frame)
        try:
            if (name in STRING_MUTATORS and isinstance(recv, str)
                    and self.classes["String"].find_method(name) is None):
                return self._mutate_string(node.receiver, recv, name, args, block, scope, frame)
            return self.send(recv, name, args, block)
        except SignalUnwind as unwind:
            return self._catch_break(unwind, block)

    @staticmethod
    def _catch_break(unwind: SignalUnwind, block):
        signal = unwind.signal
        if block is not None and signal.kind == "break" and signal.block is block:
            return signal.value
        raise unwind

    def call_function(self, name: str, args: List[Any], block, frame: Frame, has_args: bool = True):
        """A call without an explicit receiver: methods of `self`, then top-level and Kernel functions."""
        self_obj = frame.self_obj
        if isinstance(self_obj, RubyClass):
            method = self_obj.find_singleton_method(name)
            if method is not None:
                return self.invoke(method, self_obj, args, block)
        method = self.class_of(self_obj).find_method(name)
        if method is None:
            method = self.global_methods.get(name)
        if method is not None:
            return self.invoke(method, self_obj, args, block)
        match name:
            case "block_given?" | "iterator?":
                return frame.block is not None
            case "lambda" | "proc":
                if block is None:
                    raise RubyArgumentError("tried to create Proc object without a block")
                if name == "lambda":
                    block.is_lambda = True
                return block
            case "__method__":
                return Symbol(frame.method.name) if frame.method is not None else None
        table = self.table_for(self_obj)
        fn = table.lookup(name)
        if fn is not None:
            return self.call_native(table, fn, name, self_obj, args, block)
        if self.kernel is not None:
            fn = self.kernel.lookup(name)
            if fn is not None:
                return self.call_native(self.kernel, fn, name, self_obj, args, block)
        missing = self.class_of(self_obj).find_method("method_missing")
        if missing is not None:
            return self.invoke(missing, self_obj, [Symbol(name)] + list(args), block)
        receiver = self.describe_receiver(self_obj)
        if has_args or block is not None:
            raise RubyNoMethodError(f"undefined method '{name}' for {receiver}")
        raise RubyNameError(f"undefined local variable or method '{name}' for {receiver}")

    def send(self, recv, name: str, args: List[Any], block: Optional[Proc] = None):
        """Dispatches `recv.name(*args, &block)`."""
        if isinstance(recv, RubyClass):
            method = recv.find_singleton_method(name)
            if method is not None:
                return self.invoke(method, recv, args, block)
        cls = self.class_of(recv)
        method = cls.find_method(name)
        if method is None and recv is self.main:
            method = self.global_methods.get(name)
        if method is not None:
            return self.invoke(method, recv, args, block)
        table = self.table_for(recv)
        fn = table.lookup(name)
        if fn is None and name in ENUMERABLE_METHODS and self._enumerable_object(recv):
            table = self.tables["array"]
            fn = table.lookup(name)
            recv = self.each_items(recv)
        if fn is not None:
            return self.call_native(table, fn, name, recv, args, block)
        missing = cls.find_method("method_missing")
        if missing is not None:
            return self.invoke(missing, recv, [Symbol(name)] + list(args), block)
        raise RubyNoMethodError(f"undefined method '{name}' for {self.describe_receiver(recv)}")

    def send_builtin(self, recv, name: str, args: List[Any], block=None):
        """Dispatches straight to the built-in table, skipping user methods."""
        table = self.table_for(recv)
        fn = table.lookup(name)
        if fn is None:
            raise RubyNoMethodError(f"undefined method '{name}' for {self.describe_receiver(recv)}")
        return self.call_native(table, fn, name, recv, args, block)

    def call_native(self, table, fn, name: str, recv, args: List[Any], block):
        try:
            return table.call(fn, recv, list(args), block)
        except TypeError as e:
            raise RubyTypeError(f"wrong argument type for '{name}' on {self.class_name(recv)} ({e})") from e
        except ValueError as e:
            raise RubyArgumentError(f"invalid value for '{name}': {e}") from e
        except OverflowError as e:
            raise error_for_class("FloatDomainError", str(e)) from e
        except ZeroDivisionError as e:
            raise DivisionByZero("divided by 0") from e

    def _enumerable_object(self, value) -> bool:
        if not isinstance(value, RubyObject):
            return False
        cls = value.cls
        return self.classes["Enumerable"] in cls.ancestors() and cls.find_method("each") is not None

    def each_items(self, obj) -> List[Any]:
        """Collects what a user-defined `each` yields."""
        items: List[Any] = []

        def collect(*values):
            items.append(values[0] if len(values) == 1 else list(values))
            self.guard.check_collection(len(items))

        self.send(obj, "each", [], Proc([], [], None, native=collect))
        return items

    def invoke(self, method: RubyMethod, recv, args: List[Any], block: Optional[Proc] = None):
        if method.native is not None:
            return method.native(self, recv, list(args), block)
        if method.proc is not None:
            target = method.owner if isinstance(method.owner, RubyClass) else _SAME
            return self.call_block(method.proc, args, block, self_obj=recv, def_target=target, method=method)
        def_target = method.owner if isinstance(method.owner, RubyClass) else None
        frame = Frame(recv, def_target, block, method, args, method.lexical)
        scope = Scope()
        self._dbg("call", method.name, "depth", self.guard.depth + 1)
        self.guard.enter_call()
        try:
            self._bind_params(method.params, args, block, scope, frame, strict=True)
            result = self._eval_body(method.body, scope, frame)
        finally:
            self.guard.exit_call()
        if type(result) is Signal:
            return self._method_exit(result, frame)
        return result

    def _method_exit(self, signal: Signal, frame: Frame):
        if signal.kind == "return" and (not signal.from_block or signal.block.home is frame):
            return signal.value
        if signal.from_block:
            raise SignalUnwind(signal)
        raise LoopControlOutsideLoop(f"Invalid {signal.kind}: not inside a loop or block")

    def _eval_super(self, node: Super, scope, frame):
        method = frame.method
        if method is None:
            raise RubyNoMethodError("super called outside of method")
        if node.args is None:
            args = self._forwarded_args(method.params, scope)
        else:
            args = self.eval_list(node.args, scope, frame)
        block = frame.block
        if node.block is not None:
            block = self.make_proc(node.block.params, node.block.body, scope, frame)
        self_obj = frame.self_obj
        name = method.name
        owner = method.owner
        parent_method = None
        if isinstance(self_obj, RubyClass) and owner is not None and owner.singleton_methods.get(name) is method:
            parent = owner.superclass
            parent_method = parent.find_singleton_method(name) if parent is not None else None
        else:
            ancestors = self.class_of(self_obj).ancestors()
            start = ancestors.index(owner) + 1 if owner in ancestors else len(ancestors)
            for cls in ancestors[start:]:
                if name in cls.methods:
                    parent_method = cls.methods[name]
                    break
        try:
            if parent_method is not None:
                return self.invoke(parent_method, self_obj, args, block)
            return self._builtin_super(self_obj, name, args, block)
        except SignalUnwind as unwind:
            return self._catch_break(unwind, block if node.block is not None else None)

    def _builtin_super(self, self_obj, name: str, args, block):
        match name:
            case "initialize":
                if isinstance(self_obj, RubyError):
                    self_obj.message = self.printer.to_s(args[0]) if args else self.class_name(self_obj)
                return None
            case "to_s" if isinstance(self_obj, (RubyObject, RubyError)):
                return self.printer.default_to_s(self_obj)
            case "inspect" if isinstance(self_obj, (RubyObject, RubyError)):
                return self.printer.default_inspect(self_obj)
            case "method_missing":
                missing = args[0].name if args and isinstance(args[0], Symbol) else "?"
                raise RubyNoMethodError(f"undefined method '{missing}' for {self.describe_receiver(self_obj)}")
            case "respond_to_missing?":
                return False
        if isinstance(self_obj, RubyClass):
            table = self.class_table(self_obj)
        else:
            table = self.table_for(self_obj)
        fn = table.lookup(name)
        if fn is None:
            raise RubyNoMethodError(
                f"super: no superclass method '{name}' for {self.describe_receiver(self_obj)}")
        return self.call_native(table, fn, name, self_obj, args, block)

    def _forwarded_args(self, params, scope: Scope) -> List[Any]:
        args: List[Any] = []
        keywords = RubyHash()
        keywords.keyword_args = True
        for param in params:
            value = scope.lookup(param.name)[1]
            if param.kind in ("required", "optional"):
                args.append(value)
            elif param.kind == "rest":
                args.extend(value or [])
            elif param.kind == "keyword":
                keywords[Symbol(param.name)] = value
            elif param.kind == "keyrest" and value:
                keywords.update(value)
        if keywords:
            args.append(keywords)
        return args

    # ----- blocks -----

    def yield_block(self, block: Proc, args: List[Any]):
        return self.call_block(block, args)

    def call_proc(self, proc: Proc, args: List[Any], block: Optional[Proc] = None):
        return self.call_block(proc, args, block)

    def call_block(self, proc: Proc, args: List[Any], block: Optional[Proc] = None,
                   self_obj=_SAME, def_target=_SAME, method: Optional[RubyMethod] = None):
        """Runs a block, proc or lambda; break/return out of a plain block unwind to its call site."""
        self.guard.tick()
        if proc.native is not None:
            if block is not None:
                return proc.native(*args, block=block)
            return proc.native(*args)
        if proc.symbol is not None:
            if not args:
                raise RubyArgumentError("no receiver given")
            return self.send(args[0], proc.symbol, list(args[1:]), block)
        lambda_rules = proc.is_lambda or method is not None
        frame = proc.home
        if lambda_rules or self_obj is not _SAME or def_target is not _SAME:
            home = proc.home
            frame = Frame(home.self_obj if self_obj is _SAME else self_obj,
                          home.def_target if def_target is _SAME else def_target,
                          block if method is not None else home.block,
                          method or home.method,
                          args if method is not None else home.args,
                          home.lexical, home.singleton_defs)
        scope = Scope(parent=proc.scope)
        params = proc.params
        if not lambda_rules:
            args = _auto_splat(params, args)
        self.guard.enter_call()
        try:
            self._bind_params(params, args, block, scope, frame, strict=lambda_rules)
            result = self._eval_body(proc.body, scope, frame)
        finally:
            self.guard.exit_call()
        if type(result) is not Signal:
            return result
        if not result.from_block:
            if result.kind == "next" or lambda_rules:
                return result.value
            result = Signal(result.kind, result.value, from_block=True, block=proc)
        elif lambda_rules and result.kind == "return" and result.block.home is frame:
            return result.value
        raise SignalUnwind(result)

    def _bind_params(self, params, args: List[Any], block, scope: Scope, frame: Frame, strict: bool):
        args = list(args)
        keyword_params = [p for p in params if p.kind in ("keyword", "keyrest")]
        keywords = None
        if keyword_params and args and isinstance(args[-1], RubyHash) \
                and all(isinstance(k, Symbol) for k in args[-1].keys()):
            keywords = args.pop()
        required = sum(1 for p in params if p.kind in ("required", "destructure"))
        optional = sum(1 for p in params if p.kind == "optional")
        rest_at = next((i for i, p in enumerate(params) if p.kind == "rest"), None)
        if strict and (len(args) < required or (rest_at is None and len(args) > required + optional)):
            if rest_at is not None:
                expected = f"{required}+"
            elif optional:
                expected = f"{required}..{required + optional}"
            else:
                expected = str(required)
            raise RubyArgumentError(f"wrong number of arguments (given {len(args)}, expected {expected})")
        post_required = 0 if rest_at is None else sum(
            1 for p in params[rest_at + 1:] if p.kind in ("required", "destructure"))
        spare = max(0, len(args) - required)
        pos = 0
        for param in params:
            kind = param.kind
            if kind in ("required", "destructure"):
                value = args[pos] if pos < len(args) else None
                pos += 1
                if kind == "destructure":
                    inner = value if isinstance(value, list) else [value]
                    self._bind_params(param.names, inner, None, scope, frame, strict=False)
                else:
                    scope.declare(param.name, value)
            elif kind == "optional":
                if spare > 0 and pos < len(args):
                    scope.declare(param.name, args[pos])
                    pos += 1
                    spare -= 1
                else:
                    scope.declare(param.name, self._value(param.default, scope, frame))
            elif kind == "rest":
                count = max(0, len(args) - pos - post_required)
                scope.declare(param.name, args[pos:pos + count])
                pos += count
            elif kind == "block":
                scope.declare(param.name, block)
        if keyword_params:
            self._bind_keywords(params, keywords, scope, frame, strict)

    def _bind_keywords(self, params, keywords: Optional[RubyHash], scope, frame, strict: bool):
        remaining = keywords.copy() if keywords is not None else RubyHash()
        missing = []
        keyrest = None
        for param in params:
            if param.kind == "keyrest":
                keyrest = param
                continue
            if param.kind != "keyword":
                continue
            key = Symbol(param.name)
            if key in remaining:
                scope.declare(param.name, remaining.pop(key))
            elif param.default is None:
                missing.append(param.name)
                scope.declare(param.name, None)
            else:
                scope.declare(param.name, self._value(param.default, scope, frame))
        if missing and strict:
            label = "keyword" if len(missing) == 1 else "keywords"
            raise RubyArgumentError(f"missing {label}: " + ", ".join(":" + m for m in missing))
        if keyrest is not None:
            remaining.keyword_args = False
            scope.declare(keyrest.name, remaining)
        elif remaining and strict:
            label = "keyword" if len(remaining) == 1 else "keywords"
            names = ", ".join(self.printer.pformat(k) for k in remaining.keys())
            raise RubyArgumentError(f"unknown {label}: {names}")

    # =================================================================
    # Object model queries
    # =================================================================

    def class_of(self, value) -> RubyClass:
        if value is True:
            return self.classes["TrueClass"]
        if value is False:
            return self.classes["FalseClass"]
        if isinstance(value, RubyObject):
            return value.cls
        if isinstance(value, RubyClass):
            return self.classes["Module"] if value.is_module else self.classes["Class"]
        if isinstance(value, RubyError):
            if value.cls is not None:
                return value.cls
            return self.classes.get(value.ruby_class) or self.classes["RuntimeError"]
        name = _KIND_CLASSES.get(type(value))
        return self.classes[name] if name is not None else self.classes["Object"]

    def class_name(self, value) -> str:
        return self.printer.to_s(self.class_of(value))

    def table_for(self, value):
        kind = _KIND_TABLES.get(type(value))
        if kind is not None:
            return self.tables[kind]
        if isinstance(value, RubyClass):
            return self.class_table(value)
        if isinstance(value, RubyObject):
            return self.tables["struct" if value.cls.struct_fields is not None else "object"]
        if isinstance(value, RubyError):
            return self.tables["exception"]
        return self.tables["object"]

    def class_table(self, cls: RubyClass):
        while cls is not None:
            if cls.native_table is not None:
                return cls.native_table
            cls = cls.superclass
        return self.tables["class"]

    def _instance_table(self, cls: RubyClass):
        for anc in cls.ancestors():
            if anc.builtin and anc.name in _KIND_TABLE_BY_CLASS:
                return self.tables[_KIND_TABLE_BY_CLASS[anc.name]]
        return self.tables["object"]

    def user_method(self, obj, name: str) -> Optional[RubyMethod]:
        method = self.class_of(obj).find_method(name)
        if method is None or method.native is not None:
            return None
        return method

    def responds_to(self, value, name: str) -> bool:
        if isinstance(value, RubyClass) and value.find_singleton_method(name) is not None:
            return True
        cls = self.class_of(value)
        if cls.find_method(name) is not None or self.table_for(value).lookup(name) is not None:
            return True
        if value is self.main and name in self.global_methods:
            return True
        if name in ENUMERABLE_METHODS and self._enumerable_object(value):
            return True
        hook = cls.find_method("respond_to_missing?")
        if hook is not None:
            return truthy(self.invoke(hook, value, [Symbol(name), False]))
        return False

    def method_names(self, value) -> List[str]:
        names = []
        for cls in self.class_of(value).ancestors():
            names.extend(n for n in cls.methods if n not in names)
        names.extend(n for n in self.table_for(value).names() if n not in names)
        return names

    def describe_receiver(self, value) -> str:
        if value is self.main:
            return "main:Object"
        if value is None:
            return "nil"
        if value is True or value is False:
            return "true" if value else "false"
        if isinstance(value, RubyClass):
            return f"{'module' if value.is_module else 'class'} {self.printer.to_s(value)}"
        return f"an instance of {self.class_name(value)}"

    def ivars_of(self, obj) -> Dict[str, Any]:
        ivars = getattr(obj, "ivars", None)
        return ivars if ivars is not None else {}

    # ----- equality, ordering, operators -----

    def equal(self, a, b) -> bool:
        if isinstance(a, RubyObject):
            method = a.cls.find_method("==")
            if method is not None:
                return truthy(self.invoke(method, a, [b]))
            if a is not b and self.classes["Comparable"] in a.cls.ancestors() \
                    and a.cls.find_method("<=>") is not None:
                return self.compare_or_none(a, b) == 0
            return a is b or values_equal(a, b)
        if isinstance(a, list) and isinstance(b, list):
            return a is b or (len(a) == len(b) and all(self.equal(x, y) for x, y in zip(a, b)))
        return values_equal(a, b)

    def compare_or_none(self, a, b) -> Optional[int]:
        result = compare_values(a, b)
        if result is not None:
            return result
        method = self.class_of(a).find_method("<=>")
        if method is None:
            return None
        result = self.invoke(method, a, [b])
        return result if is_number(result) else None

    def compare(self, a, b) -> int:
        result = self.compare_or_none(a, b)
        if result is None:
            other = self.printer.pformat(b) if b is None or is_number(b) else self.class_name(b)
            raise RubyArgumentError(f"comparison of {self.class_name(a)} with {other} failed")
        return result

    def case_equal(self, pattern, value):
        if isinstance(pattern, (RubyClass, RubyRange, RubyRegexp, Proc, RubyObject)):
            return truthy(self.send(pattern, "===", [value]))
        return self.equal(pattern, value)

    def binary_op(self, op: str, a, b):
        if op == "==":
            return self.equal(a, b)
        if op == "!=":
            if isinstance(a, RubyObject) and a.cls.find_method("!=") is not None:
                return self.send(a, "!=", [b])
            return not self.equal(a, b)
        if op == "!~":
            return not truthy(self.binary_op("=~", a, b))
        if op in _NUMERIC_OPS and is_number(a) and is_number(b) and type(a) is not bool and type(b) is not bool:
            return numeric_binary(op, a, b)
        if op == "+" and isinstance(a, str) and not isinstance(b, str):
            if self.classes["String"].find_method("+") is None:
                text = self.printer.to_s(b)
                self.guard.check_collection(len(a) + len(text))
                return a + text
        return self.send(a, op, [b])

    # ----- frozen state -----

    def freeze(self, value):
        if isinstance(value, list):
            self.frozen[id(value)] = value
        elif isinstance(value, (RubyHash, RubyObject, RubyClass)):
            value.frozen = True
        return value

    def is_frozen(self, value) -> bool:
        if isinstance(value, str):
            return isinstance(value, FrozenStr)
        if isinstance(value, list):
            return id(value) in self.frozen
        if isinstance(value, (RubyHash, RubyObject, RubyClass)):
            return value.frozen
        return value is None or isinstance(value, (bool, int, float, Symbol, RubyRange))

    def check_frozen(self, value):
        if isinstance(value, (str, list, RubyHash, RubyObject)) and self.is_frozen(value):
            raise RubyFrozenError(f"can't modify frozen {self.class_name(value)}: {self.printer.pformat(value)}")


_KIND_TABLE_BY_CLASS = {
    "NilClass": "nil", "TrueClass": "bool", "FalseClass": "bool", "Integer": "numeric",
    "Float": "numeric", "Numeric": "numeric", "String": "string", "Symbol": "symbol",
    "Array": "array", "Hash": "hash", "Range": "range", "Proc": "proc", "Regexp": "regexp",
    "MatchData": "match", "Exception": "exception", "Struct": "struct",
}


def _live_items(items: list):
    """Iterates a list by index so elements appended during the loop are visited."""
    i = 0
    while i < len(items):
        yield items[i]
        i += 1


def _auto_splat(params, args: List[Any]) -> List[Any]:
    """A plain block given one Array argument spreads it over several parameters."""
    if len(args) != 1 or not isinstance(args[0], list):
        return args
    positional = sum(1 for p in params if p.kind in ("required", "optional", "destructure"))
    has_rest = any(p.kind == "rest" for p in params)
    if positional > 1 or (positional and has_rest):
        return list(args[0])
    return args


def _attr_reader(ivar: str, name: str):
    def reader(interp, recv, args, block):
        if args:
            raise RubyArgumentError(f"wrong number of arguments (given {len(args)}, expected 0)")
        return interp.ivars_of(recv).get(ivar)
    reader.__name__ = name
    return reader


def _attr_writer(ivar: str, name: str):
    def writer(interp, recv, args, block):
        if len(args) != 1:
            raise RubyArgumentError(f"wrong number of arguments (given {len(args)}, expected 1)")
        interp.check_frozen(recv)
        interp.ivars_of(recv)[ivar] = args[0]
        return args[0]
    writer.__name__ = name + "="
    return writer


def _forwarder(name: str, kernel: bool = False):
    """Native body of an alias whose original is a built-in method."""
    def forward(interp, recv, args, block):
        if kernel:
            fn = interp.kernel.lookup(name) if interp.kernel is not None else None
            if fn is None:
                raise RubyNameError(f"undefined method '{name}' for main:Object")
            return interp.call_native(interp.kernel, fn, name, recv, args, block)
        return interp.send_builtin(recv, name, args, block)
    return forward


def _struct_initializer(keyword_init: bool):
    def initialize(interp, recv, args, block):
        fields = struct_fields(recv.cls)
        if args and len(args) == 1 and isinstance(args[0], RubyHash) and (keyword_init or args[0].keyword_args):
            values = args[0]
            unknown = [k for k in values.keys() if not isinstance(k, Symbol) or k.name not in fields]
            if unknown:
                names = ", ".join(interp.printer.to_s(k) for k in unknown)
                raise RubyArgumentError(f"unknown keywords: {names}")
            for f in fields:
                recv.ivars["@" + f] = values.get(Symbol(f))
            return None
        if keyword_init and args:
            raise RubyArgumentError(f"wrong number of arguments (given {len(args)}, expected 0)")
        if len(args) > len(fields):
            raise RubyArgumentError("struct size differs")
        for i, f in enumerate(fields):
            recv.ivars["@" + f] = args[i] if i < len(args) else None
        return None
    return initialize
