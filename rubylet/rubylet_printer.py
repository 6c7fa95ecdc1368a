"""
Formats runtime values into their textual (`to_s`) and inspect (`p`) forms.
"""
import math
import re

from rubylet.rubylet_datatypes import (
    Symbol, RubyHash, RubyRange, RubyRegexp, RubyMatch, RubyClass, RubyObject, Proc,
    Enumerator, LazySequence, RubyError,
)


_PLAIN_SYMBOL = re.compile(r"\A(?:[A-Za-z_][A-Za-z0-9_]*[?!=]?|\[\]=?|[-+*/%<>!~^&|]|\*\*|<=>|===?|=~|<<|>>|<=|>=|!=)\Z")

_STRING_ESCAPES = {
    "\n": "\\n", "\t": "\\t", "\r": "\\r", "\x1b": "\\e", "\0": "\\0",
    "\a": "\\a", "\b": "\\b", "\f": "\\f", "\v": "\\v", '"': '\\"', "\\": "\\\\",
}


def format_float(value: float) -> str:
    """Float#to_s: `1.0`, `0.1`, `1.0e+20`, `Infinity`, `NaN`."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    text = repr(value)
    if "e" in text:
        mantissa, exponent = text.split("e")
        if "." not in mantissa:
            mantissa += ".0"
        return f"{mantissa}e{exponent}"
    if "." not in text:
        text += ".0"
    return text


def inspect_string(value: str) -> str:
    out = ['"']
    i = 0
    while i < len(value):
        ch = value[i]
        if ch in _STRING_ESCAPES:
            out.append(_STRING_ESCAPES[ch])
        elif ch == "#" and value[i + 1:i + 2] in ("{", "$", "@"):
            out.append("\\#")
        elif ord(ch) < 32 or ord(ch) == 127:
            out.append(f"\\x{ord(ch):02X}")
        else:
            out.append(ch)
        i += 1
    out.append('"')
    return "".join(out)


def inspect_symbol(value: Symbol) -> str:
    if _PLAIN_SYMBOL.match(value.name):
        return ":" + value.name
    return ":" + inspect_string(value.name)


class Printer:
    """Formats values; user-defined `to_s` / `inspect` are honoured through the interpreter."""

    def __init__(self, interpreter=None):
        self.interpreter = interpreter
        self._inspect_handlers = self._create_inspect_handlers()
        self._seen = set()

    # ----- public entry points -----

    def pformat(self, obj) -> str:
        """The inspect form, as printed by `p`."""
        if isinstance(obj, (RubyObject, RubyError)) and self.interpreter is not None:
            custom = self.interpreter.user_method(obj, "inspect")
            if custom is not None:
                return self._as_text(self.interpreter.invoke(custom, obj, [], None))
        handler = self._get_handler(obj)
        if isinstance(obj, (list, RubyHash, RubyObject)):
            if id(obj) in self._seen:
                return "[...]" if isinstance(obj, list) else "{...}"
            self._seen.add(id(obj))
            try:
                return handler(obj)
            finally:
                self._seen.discard(id(obj))
        return handler(obj)

    def to_s(self, obj) -> str:
        """The textual form, as used by `print`, interpolation and `to_s`."""
        if isinstance(obj, str):
            return obj
        if obj is None:
            return ""
        if isinstance(obj, bool):
            return "true" if obj else "false"
        if isinstance(obj, int):
            return str(obj)
        if isinstance(obj, float):
            return format_float(obj)
        if isinstance(obj, Symbol):
            return obj.name
        if isinstance(obj, RubyMatch):
            return obj.match.group(0)
        if isinstance(obj, RubyRange):
            dots = "..." if obj.exclusive else ".."
            end = "" if obj.end is None else self.to_s(obj.end)
            return f"{self.to_s(obj.start)}{dots}{end}"
        if isinstance(obj, RubyClass):
            return self._class_name(obj)
        if isinstance(obj, (RubyObject, RubyError)) and self.interpreter is not None:
            custom = self.interpreter.user_method(obj, "to_s")
            if custom is not None:
                return self._as_text(self.interpreter.invoke(custom, obj, [], None))
        if isinstance(obj, (RubyObject, RubyError)):
            return self.default_to_s(obj)
        return self.pformat(obj)

    def default_to_s(self, obj) -> str:
        """`to_s` ignoring user overrides (what `super` reaches)."""
        if isinstance(obj, RubyError):
            return obj.message
        if obj.cls.struct_fields is not None:
            return self.default_inspect(obj)
        return f"#<{self._class_name(obj.cls)}>"

    def default_inspect(self, obj) -> str:
        return self._get_handler(obj)(obj)

    def puts_form(self, obj) -> str:
        """What `puts` writes for one argument (before the line terminator)."""
        if isinstance(obj, list):
            if id(obj) in self._seen:
                return "[...]"
            self._seen.add(id(obj))
            try:
                return "[" + ", ".join(self.puts_form(v) for v in obj) + "]"
            finally:
                self._seen.discard(id(obj))
        return self.to_s(obj)

    # ----- handlers -----

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._inspect_handlers:
            return self._inspect_handlers[obj_type]
        if isinstance(obj, str):
            return inspect_string
        if isinstance(obj, RubyError):
            return self._pformat_error
        if isinstance(obj, list):
            return self._pformat_list
        return lambda o: repr(o)

    def _create_inspect_handlers(self):
        return {
            str: inspect_string,
            int: str,
            float: format_float,
            bool: lambda o: "true" if o else "false",
            type(None): lambda o: "nil",
            Symbol: inspect_symbol,
            list: self._pformat_list,
            RubyHash: self._pformat_hash,
            RubyRange: self._pformat_range,
            RubyRegexp: self._pformat_regexp,
            RubyMatch: lambda o: f"#<MatchData {inspect_string(o.match.group(0))}>",
            RubyClass: self._class_name,
            RubyObject: self._pformat_object,
            Proc: self._pformat_proc,
            Enumerator: lambda o: f"#<Enumerator: {self.pformat(o.source)}:{o.method}>",
            LazySequence: lambda o: f"#<Enumerator::Lazy: {self.pformat(o.source)}>",
        }

    def _pformat_list(self, obj):
        return "[" + ", ".join(self.pformat(v) for v in obj) + "]"

    def _pformat_hash(self, obj):
        if not obj:
            return "{}"
        return "{" + ", ".join(f"{self.pformat(k)}=>{self.pformat(v)}" for k, v in obj.pairs()) + "}"

    def _pformat_range(self, obj):
        dots = "..." if obj.exclusive else ".."
        end = "" if obj.end is None else self.pformat(obj.end)
        start = "nil" if obj.start is None else self.pformat(obj.start)
        return f"{start}{dots}{end}"

    def _pformat_regexp(self, obj):
        return f"/{obj.source}/{obj.flags}"

    def _pformat_object(self, obj):
        name = self._class_name(obj.cls)
        if obj.cls.struct_fields is not None:
            fields = ", ".join(f"{f}={self.pformat(obj.ivars.get('@' + f))}" for f in obj.cls.struct_fields)
            return f"#<struct {name} {fields}>" if fields else f"#<struct {name}>"
        if not obj.ivars:
            return f"#<{name}>"
        ivars = ", ".join(f"{k}={self.pformat(v)}" for k, v in obj.ivars.items())
        return f"#<{name} {ivars}>"

    def _pformat_proc(self, obj):
        return "#<Proc (lambda)>" if obj.is_lambda else "#<Proc>"

    def _pformat_error(self, obj):
        name = obj.cls.name if obj.cls is not None else obj.ruby_class
        if not obj.message or obj.message == name:
            return name
        return f"#<{name}: {obj.message}>"

    @staticmethod
    def _class_name(cls: RubyClass) -> str:
        if cls.name:
            return cls.name
        return "#<Module>" if cls.is_module else "#<Class>"

    def _as_text(self, value) -> str:
        if isinstance(value, str):
            return value
        return self.to_s(value)
