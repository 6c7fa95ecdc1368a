# rubylet_runtime.py

import math
from dataclasses import dataclass
from typing import Any, Literal, Optional

from rubylet.rubylet_datatypes import (
    RubyError, RubyArgumentError, RubyTypeError, RubyIndexError,
    Symbol, RubyHash, RubyRange, RubyClass, Enumerator, error_for_class,
)
from rubylet.rubylet_guard import ExecutionGuard
from rubylet.rubylet_interpreter import Interpreter
from rubylet.rubylet_methods import BuiltinTable, format_string, parse_integer, parse_float, is_number, sym_name
from rubylet.rubylet_parser import Parser


# ===================================================================
# 1. Kernel functions
# ===================================================================

class KernelMethods(BuiltinTable):
    """Receiver-less functions available everywhere (`puts`, `rand`, `raise`, ...)."""

    ALIASES = {"fail": "raise", "sprintf": "format", "require_relative": "require", "load": "require"}

    # --- Output ---
    def _puts(self, recv, *args): return self.interp.puts(list(args))

    def _print(self, recv, *args):
        self.interp.write("".join(self.to_s(a) for a in args))
        return None

    def _p(self, recv, *args):
        for arg in args:
            self.interp.write(self.inspect(arg) + "\n")
        if not args:
            return None
        return args[0] if len(args) == 1 else list(args)

    def _pp(self, recv, *args): return self._p(recv, *args)

    def _printf(self, recv, fmt, *args):
        self.interp.write(format_string(self.interp, fmt, list(args)))
        return None

    def _format(self, recv, fmt, *args): return format_string(self.interp, fmt, list(args))

    def _putc(self, recv, char):
        self.interp.write(self.to_s(char)[:1] if isinstance(char, str) else chr(self.to_int(char) % 256))
        return char

    # --- Randomness ---
    def _rand(self, recv, limit=None):
        rng = self.interp.rng
        if limit is None or limit == 0:
            return rng.random()
        if isinstance(limit, RubyRange):
            if isinstance(limit.start, float) or isinstance(limit.end, float):
                return rng.uniform(limit.start, limit.end)
            high = limit.end - 1 if limit.exclusive else limit.end
            return rng.randint(limit.start, high) if high >= limit.start else None
        if isinstance(limit, float):
            return rng.random() * limit
        return rng.randrange(abs(self.to_int(limit)))

    def _srand(self, recv, seed=0):
        self.interp.rng.seed(self.to_int(seed))
        return 0

    # --- Control ---
    def _loop(self, recv, block=None):
        if block is None:
            return Enumerator([], "loop", recv)
        guard = self.interp.guard
        try:
            while True:
                guard.tick()
                self.run_block(block)
        except RubyIndexError as e:
            if e.ruby_class != "StopIteration":
                raise
            return getattr(e, "result", None)

    def _raise(self, recv, error=None, message=None):
        interp = self.interp
        if error is None:
            current = interp.globals.get("$!")
            raise current if isinstance(current, RubyError) else error_for_class("RuntimeError", "unhandled exception")
        if isinstance(error, str):
            raise error_for_class("RuntimeError", error)
        if isinstance(error, RubyClass):
            if not error.is_subclass_of(interp.classes["Exception"]):
                raise RubyTypeError("exception class/object expected")
            raise interp.instantiate(error, [] if message is None else [message])
        if isinstance(error, RubyError):
            if message is not None:
                error.message = self.to_s(message)
            raise error
        raise RubyTypeError("exception class/object expected")

    def _sleep(self, recv, seconds=0):
        if not is_number(seconds) or seconds < 0:
            raise RubyArgumentError("time interval must not be negative")
        self.interp.guard.sleep(float(seconds))
        return int(round(seconds))

    # --- Conversions ---
    def _Integer(self, recv, value, base=None, exception=True):
        if isinstance(base, RubyHash):
            base, exception = None, _exception_option(base)
        elif isinstance(exception, RubyHash):
            exception = _exception_option(exception)
        try:
            if isinstance(value, str):
                return parse_integer(value, 10 if base is None else self.to_int(base), strict=True)
            if value is None:
                raise RubyTypeError("can't convert nil into Integer")
            if isinstance(value, float):
                if math.isnan(value) or math.isinf(value):
                    raise error_for_class("FloatDomainError", self.to_s(value))
                return int(value)
            if is_number(value):
                return value
            return self.interp.send(value, "to_i", [])
        except RubyError:
            if exception is False:
                return None
            raise

    def _Float(self, recv, value, exception=True):
        if isinstance(exception, RubyHash):
            exception = _exception_option(exception)
        try:
            if isinstance(value, str):
                return parse_float(value, strict=True)
            if value is None:
                raise RubyTypeError("can't convert nil into Float")
            if is_number(value):
                return float(value)
            return self.interp.send(value, "to_f", [])
        except RubyError:
            if exception is False:
                return None
            raise

    def _String(self, recv, value): return self.to_s(value)

    def _Array(self, recv, value):
        if value is None:
            return []
        if isinstance(value, list):
            return value
        if isinstance(value, (RubyHash, RubyRange, Enumerator)):
            return self.interp.send(value, "to_a", [])
        return [value]

    def _Hash(self, recv, value):
        if value is None or value == []:
            return RubyHash()
        if isinstance(value, RubyHash):
            return value
        raise RubyTypeError(f"can't convert {self.class_name(value)} into Hash")

    # --- Environment ---
    def _gets(self, recv, *args): return None
    def _require(self, recv, name): return True
    def _private(self, recv, *names): return names[0] if len(names) == 1 else None
    def _public(self, recv, *names): return names[0] if len(names) == 1 else None

    def _eval(self, recv, source, *args):
        if not isinstance(source, str):
            raise RubyTypeError(f"no implicit conversion of {self.class_name(source)} into String")
        return self.interp.eval_source(source)

    def _define_method(self, recv, name, body=None, block=None):
        proc = body if body is not None else self.need_block(block, "define_method")
        name = sym_name(name)
        self.interp.global_methods[name] = self.interp.method_from_proc(name, None, proc)
        return Symbol(name)


def _exception_option(options: RubyHash) -> bool:
    """The `exception:` keyword of the conversion functions."""
    return options.get(Symbol("exception"), True) is not False


# ===================================================================
# 2. Script runner
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    output: str = ""
    value: Any = None
    error_kind: Optional[str] = None
    error_class: Optional[str] = None
    error_message: Optional[str] = None
    error_line: Optional[int] = None
    source: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == 'success'

    def format_error(self) -> str:
        """Formats the error with its line number and the surrounding source lines."""
        if self.status != 'error':
            return ""
        msg = f"{self.error_class or self.error_kind}: {self.error_message or 'Unknown error'}"
        if self.error_line is None:
            return msg
        msg = f"Error on line {self.error_line}: {msg}"
        context = source_context(self.source, self.error_line)
        return f"{msg}\n{context}" if context else msg


def source_context(source: Optional[str], line: int, radius: int = 1) -> str:
    """Renders the lines around `line`, marking it with `>`."""
    if not source or line < 1:
        return ""
    lines = source.splitlines()
    if line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for n in range(start, end + 1):
        marker = ">" if n == line else " "
        out.append(f"{marker} {n:>{width}} | {lines[n - 1]}")
    return "\n".join(out)


class ScriptRunner:
    """Parses and executes rubylet source, one fresh session per script."""

    def __init__(self, max_operations: Optional[int] = None, time_limit: Optional[float] = None,
                 max_output: Optional[int] = None, seed: Optional[int] = 0, environ=None):
        self.limits = {"max_operations": max_operations, "time_limit": time_limit, "max_output": max_output}
        self.seed = seed
        self.environ = environ
        self.parser = Parser()
        # Session of the most recent run; the REPL keeps reusing it.
        self.interpreter: Optional[Interpreter] = None

    def new_session(self) -> Interpreter:
        try:
            guard = ExecutionGuard.from_env(self.environ, **self.limits)
        except ValueError:
            guard = ExecutionGuard(**{k: v for k, v in self.limits.items() if v is not None})
        interp = Interpreter(guard, seed=self.seed)
        interp.kernel = KernelMethods(interp)
        return interp

    def handle_script(self, source_code: str, interpreter: Optional[Interpreter] = None) -> ExecutionResult:
        """The main entry point to execute a script; user errors come back in the result."""
        interp = interpreter or self.new_session()
        self.interpreter = interp
        interp.guard.start()
        try:
            program = self.parser.parse(source_code)
            value = interp.run(program)
        except RubyError as e:
            interp._dbg("error", e.kind, e.message, "line", e.line)
            return ExecutionResult(
                status='error',
                output=interp.take_output(),
                error_kind=e.kind,
                error_class=self._error_class(interp, e),
                error_message=e.message,
                error_line=e.line,
                source=source_code,
            )
        return ExecutionResult(status='success', output=interp.take_output(), value=value, source=source_code)

    @staticmethod
    def _error_class(interp: Interpreter, error: RubyError) -> str:
        if error.cls is not None and error.cls.name:
            return error.cls.name
        return error.ruby_class


def execute(source: str, **limits) -> str:
    """Runs `source` in a fresh session and returns its output.

    Failures raise the `RubyError`, with the output produced before the
    failure attached as `partial_output`.
    """
    runner = ScriptRunner(**limits)
    interp = runner.new_session()
    interp.guard.start()
    try:
        interp.run(runner.parser.parse(source))
    except RubyError as e:
        e.partial_output = interp.take_output()
        raise
    return interp.take_output()


__all__ = ["KernelMethods", "ExecutionResult", "ScriptRunner", "execute", "source_context"]
