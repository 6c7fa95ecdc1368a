"""
Tokenizer shared by the structural scanner and both parsers.

Tokens carry the line they start on and whether whitespace preceded them;
the parsers lean on the latter to tell `foo -1` (a command call) from
`foo - 1` and `a[0]` (indexing) from `puts [0]`.
"""

import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from rubylet.rubylet_datatypes import RubySyntaxError, UnterminatedLiteral


KEYWORDS = frozenset({
    "if", "unless", "elsif", "else", "end", "while", "until", "for", "in", "do",
    "def", "class", "module", "case", "when", "then", "begin", "rescue", "ensure",
    "return", "break", "next", "yield", "self", "nil", "true", "false", "and", "or",
    "not", "super", "alias", "redo", "retry", "undef",
})

# Longest first so that `**=` wins over `**` and `*`.
OPERATORS = (
    "**=", "<=>", "===", "...", "<<=", ">>=", "&&=", "||=",
    "==", "!=", ">=", "<=", "&&", "||", "<<", ">>", "**", "+=", "-=", "*=", "/=",
    "%=", "|=", "&=", "^=", "=~", "!~", "..", "::", "->", "=>", "&.",
    "+", "-", "*", "/", "%", "=", "<", ">", "!", "&", "|", "^", "~", "?", ":",
    ",", ".", ";", "(", ")", "[", "]", "{", "}",
)

# After these a `/` or `%w` begins a literal rather than an operator.
_OPERAND_END_OPS = frozenset({")", "]", "}"})

_NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F_]+|0[bB][01_]+|\d[\d_]*(\.\d[\d_]*)?([eE][-+]?\d+)?"
)
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

_SIMPLE_ESCAPES = {
    "n": "\n", "t": "\t", "r": "\r", "0": "\0", "s": " ", "e": "\x1b",
    "a": "\a", "b": "\b", "f": "\f", "v": "\v",
}

_PERCENT_CLOSERS = {"[": "]", "(": ")", "{": "}", "<": ">"}


@dataclass
class Token:
    kind: str
    value: Any
    line: int = 1
    spaced: bool = False

    def is_op(self, *values) -> bool:
        return self.kind == "op" and (not values or self.value in values)

    def is_kw(self, *values) -> bool:
        return self.kind == "kw" and (not values or self.value in values)

    def __repr__(self) -> str:
        return f"Token({self.kind}, {self.value!r}, line={self.line})"


@dataclass
class Interpolation:
    """A `#{...}` segment: raw source plus the line it starts on."""
    source: str
    line: int


class Lexer:
    """Turns one logical chunk of source into a flat token list."""

    def __init__(self, text: str, first_line: int = 1, keep_newlines: bool = False):
        self.text = text
        self.pos = 0
        self.line = first_line
        self.keep_newlines = keep_newlines
        self.tokens: List[Token] = []

    # ----- helpers -----

    def _prev(self) -> Optional[Token]:
        for tok in reversed(self.tokens):
            if tok.kind != "nl":
                return tok
        return None

    def _operand_expected(self, spaced: bool) -> bool:
        """True when the next token starts a value rather than continuing one."""
        prev = self._prev()
        if prev is None or (self.tokens and self.tokens[-1].kind == "nl"):
            return True
        if prev.kind == "op":
            return prev.value not in _OPERAND_END_OPS
        if prev.kind == "kw":
            return prev.value not in ("end", "self", "nil", "true", "false")
        if prev.kind == "label":
            return True
        if prev.kind == "ident" and spaced:
            nxt = self.text[self.pos + 1:self.pos + 2]
            return nxt not in (" ", "=", "")
        return False

    def _emit(self, kind: str, value: Any, line: int, spaced: bool):
        self.tokens.append(Token(kind, value, line, spaced))

    # ----- main loop -----

    def tokenize(self) -> List[Token]:
        text = self.text
        n = len(text)
        spaced = False
        while self.pos < n:
            ch = text[self.pos]
            if ch == "\n":
                if self.keep_newlines:
                    self._emit("nl", "\n", self.line, True)
                self.line += 1
                self.pos += 1
                spaced = True
                continue
            if ch in " \t\r":
                self.pos += 1
                spaced = True
                continue
            if ch == "\\" and text[self.pos + 1:self.pos + 2] == "\n":
                self.pos += 2
                self.line += 1
                spaced = True
                continue
            if ch == "#":
                end = text.find("\n", self.pos)
                self.pos = n if end < 0 else end
                continue
            start_line = self.line
            if ch.isdigit():
                self._read_number(spaced)
            elif ch == '"' or ch == "`":
                self._read_double_quoted(ch, spaced)
            elif ch == "'":
                self._read_single_quoted(spaced)
            elif ch == "@":
                m = re.compile(r"@@?[A-Za-z_][A-Za-z0-9_]*").match(text, self.pos)
                if not m:
                    raise RubySyntaxError("invalid instance variable name", line=start_line)
                name = m.group(0)
                self._emit("cvar" if name.startswith("@@") else "ivar", name, start_line, spaced)
                self.pos = m.end()
            elif ch == "$":
                m = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*|[0-9~!@&`'+*$?:\"<>,./\\;])").match(text, self.pos)
                if not m:
                    raise RubySyntaxError("invalid global variable name", line=start_line)
                self._emit("gvar", m.group(0), start_line, spaced)
                self.pos = m.end()
            elif ch.isalpha() or ch == "_":
                self._read_word(spaced)
            elif ch == ":" and self._read_symbol(spaced):
                pass
            elif ch == "/" and self._operand_expected(spaced):
                self._read_regex(spaced)
            elif ch == "%" and self._operand_expected(spaced) and self._read_percent_literal(spaced):
                pass
            else:
                self._read_operator(spaced)
            spaced = False
        return self.tokens

    # ----- literals -----

    def _read_number(self, spaced: bool):
        m = _NUMBER_RE.match(self.text, self.pos)
        raw = m.group(0)
        # `1..5` and `5.times`: a dot only belongs to the number when a digit follows.
        self.pos = m.end()
        clean = raw.replace("_", "")
        if clean[:2].lower() == "0x":
            self._emit("int", int(clean, 16), self.line, spaced)
        elif clean[:2].lower() == "0b":
            self._emit("int", int(clean, 2), self.line, spaced)
        elif m.group(1) or m.group(2):
            self._emit("float", float(clean), self.line, spaced)
        else:
            self._emit("int", int(clean), self.line, spaced)

    def _read_word(self, spaced: bool):
        text = self.text
        m = _IDENT_RE.match(text, self.pos)
        word = m.group(0)
        end = m.end()
        prev = self._prev()
        after_dot = prev is not None and prev.is_op(".", "&.", "::") and not spaced
        # Method names may end in ? or !, unless that character begins `!=` / `?:`-style operators.
        if end < len(text) and text[end] in "?!" and not word[0].isupper():
            follow = text[end + 1:end + 2]
            if follow != "=" or text[end + 1:end + 3] == "==":
                if not (text[end] == "?" and follow == ":"):
                    word += text[end]
                    end += 1
        # Labels: `name: value` in hashes and keyword arguments.
        if (text[end:end + 1] == ":" and text[end + 1:end + 2] != ":" and not after_dot
                and not (prev is not None and prev.is_op("?"))):
            self._emit("label", word, self.line, spaced)
            self.pos = end + 1
            return
        self.pos = end
        if after_dot and prev.is_op("::") and word[0].isupper():
            self._emit("const", word, self.line, spaced)
        elif after_dot:
            self._emit("ident", word, self.line, spaced)
        elif word in KEYWORDS:
            self._emit("kw", word, self.line, spaced)
        elif word == "defined?":
            self._emit("ident", word, self.line, spaced)
        elif word[0].isupper():
            self._emit("const", word, self.line, spaced)
        else:
            self._emit("ident", word, self.line, spaced)

    def _read_symbol(self, spaced: bool) -> bool:
        text = self.text
        nxt = text[self.pos + 1:self.pos + 2]
        if nxt == ":":
            return False
        if nxt == '"':
            self.pos += 1
            start_line = self.line
            parts = self._scan_double_quoted('"')
            if any(isinstance(p, Interpolation) for p in parts):
                raise RubySyntaxError("interpolated symbols are not supported", line=start_line)
            self._emit("symbol", "".join(parts), start_line, spaced)
            return True
        if nxt.isalpha() or nxt == "_":
            m = re.compile(r"[A-Za-z_][A-Za-z0-9_]*[?!=]?").match(text, self.pos + 1)
            name = m.group(0)
            # `:name=` only when it is not followed by another `=` or `>`.
            if name.endswith("=") and text[m.end():m.end() + 1] in ("=", ">", "~"):
                name = name[:-1]
            self._emit("symbol", name, self.line, spaced)
            self.pos = self.pos + 1 + len(name)
            return True
        if self._operand_expected(spaced) or (spaced and nxt not in (" ", "")):
            for op in ("[]=", "[]", "<=>", "===", "==", "=~", "!=", "<<", ">>", "<=", ">=",
                       "**", "+", "-", "*", "/", "%", "<", ">", "!", "&", "|", "^"):
                if text.startswith(op, self.pos + 1):
                    self._emit("symbol", op, self.line, spaced)
                    self.pos += 1 + len(op)
                    return True
        return False

    def _read_single_quoted(self, spaced: bool):
        text = self.text
        start_line = self.line
        i = self.pos + 1
        out = []
        while i < len(text):
            ch = text[i]
            if ch == "\\" and text[i + 1:i + 2] == "'":
                out.append("'")
                i += 2
                continue
            if ch == "'":
                self.pos = i + 1
                self._emit("string", "".join(out), start_line, spaced)
                return
            if ch == "\n":
                self.line += 1
            out.append(ch)
            i += 1
        raise UnterminatedLiteral("unterminated string literal", line=start_line)

    def _read_double_quoted(self, quote: str, spaced: bool):
        start_line = self.line
        self.pos += 1
        parts = self._scan_double_quoted(quote)
        if any(isinstance(p, Interpolation) for p in parts):
            self._emit("dstring", parts, start_line, spaced)
        else:
            self._emit("string", "".join(parts), start_line, spaced)

    def _scan_double_quoted(self, closer: str) -> List[Any]:
        """Reads up to `closer`, processing escapes; self.pos starts after the opener."""
        text = self.text
        start_line = self.line
        parts: List[Any] = []
        buf: List[str] = []
        i = self.pos
        while i < len(text):
            ch = text[i]
            if ch == "\\":
                decoded, i = self._escape(i)
                buf.append(decoded)
                continue
            if ch == "#" and text[i + 1:i + 2] == "{":
                if buf:
                    parts.append("".join(buf))
                    buf = []
                inner_line = self.line
                end = _matching_brace(text, i + 1)
                if end < 0:
                    raise UnterminatedLiteral("unterminated string interpolation", line=start_line)
                source = text[i + 2:end]
                self.line += source.count("\n")
                parts.append(Interpolation(source, inner_line))
                i = end + 1
                continue
            if ch == closer:
                if buf:
                    parts.append("".join(buf))
                self.pos = i + 1
                return parts
            if ch == "\n":
                self.line += 1
            buf.append(ch)
            i += 1
        raise UnterminatedLiteral("unterminated string literal", line=start_line)

    def _escape(self, i: int) -> Tuple[str, int]:
        text = self.text
        nxt = text[i + 1:i + 2]
        if nxt in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[nxt], i + 2
        if nxt == "u":
            if text[i + 2:i + 3] == "{":
                end = text.find("}", i + 3)
                codes = text[i + 3:end].split()
                return "".join(chr(int(c, 16)) for c in codes), end + 1
            return chr(int(text[i + 2:i + 6], 16)), i + 6
        if nxt == "x":
            m = re.compile(r"[0-9a-fA-F]{1,2}").match(text, i + 2)
            if m:
                return chr(int(m.group(0), 16)), m.end()
        if nxt == "\n":
            self.line += 1
            return "", i + 2
        if nxt == "":
            raise UnterminatedLiteral("unterminated string literal", line=self.line)
        return nxt, i + 2

    def _read_regex(self, spaced: bool):
        text = self.text
        start_line = self.line
        i = self.pos + 1
        parts: List[Any] = []
        buf: List[str] = []
        in_class = False
        while i < len(text):
            ch = text[i]
            if ch == "\\":
                buf.append(text[i:i + 2])
                i += 2
                continue
            if ch == "#" and text[i + 1:i + 2] == "{":
                if buf:
                    parts.append("".join(buf))
                    buf = []
                end = _matching_brace(text, i + 1)
                if end < 0:
                    raise UnterminatedLiteral("unterminated regexp interpolation", line=start_line)
                parts.append(Interpolation(text[i + 2:end], self.line))
                i = end + 1
                continue
            if ch == "[":
                in_class = True
            elif ch == "]":
                in_class = False
            elif ch == "/" and not in_class:
                if buf:
                    parts.append("".join(buf))
                m = re.compile(r"[imxo]*").match(text, i + 1)
                self.pos = m.end()
                self._emit("regex", (parts, m.group(0)), start_line, spaced)
                return
            elif ch == "\n":
                raise UnterminatedLiteral("unterminated regexp literal", line=start_line)
            buf.append(ch)
            i += 1
        raise UnterminatedLiteral("unterminated regexp literal", line=start_line)

    def _read_percent_literal(self, spaced: bool) -> bool:
        text = self.text
        kind = text[self.pos + 1:self.pos + 2]
        opener = text[self.pos + 2:self.pos + 3]
        if kind not in ("w", "i", "W", "I") or opener not in _PERCENT_CLOSERS:
            return False
        closer = _PERCENT_CLOSERS[opener]
        end = text.find(closer, self.pos + 3)
        if end < 0:
            raise UnterminatedLiteral("unterminated word list", line=self.line)
        body = text[self.pos + 3:end]
        self.line += body.count("\n")
        words = body.split()
        self._emit("words" if kind in "wW" else "symbols", words, self.line, spaced)
        self.pos = end + 1
        return True

    def _read_operator(self, spaced: bool):
        text = self.text
        for op in OPERATORS:
            if text.startswith(op, self.pos):
                if op == "&." and not (text[self.pos + 2:self.pos + 3].isalpha() or text[self.pos + 2:self.pos + 3] == "_"):
                    continue
                self._emit("op", op, self.line, spaced)
                self.pos += len(op)
                return
        raise RubySyntaxError(f"unexpected character {text[self.pos]!r}", line=self.line)


def _matching_brace(text: str, open_index: int) -> int:
    """Index of the `}` closing the `{` at open_index, skipping nested strings."""
    depth = 0
    i = open_index
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch in "\"'":
            i = _skip_string(text, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _skip_string(text: str, start: int) -> int:
    quote = text[start]
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if quote == '"' and ch == "#" and text[i + 1:i + 2] == "{":
            end = _matching_brace(text, i + 1)
            if end < 0:
                return len(text)
            i = end + 1
            continue
        if ch == quote:
            return i + 1
        i += 1
    return len(text)


def tokenize(text: str, first_line: int = 1, keep_newlines: bool = False) -> List[Token]:
    return Lexer(text, first_line, keep_newlines).tokenize()
