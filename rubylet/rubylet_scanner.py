"""
Splits source text into statement-bearing logical lines and locates block
boundaries.

Physical lines are joined while brackets are open or a line ends on a
binary operator, `;` splits a line into several statements, and one-line
compound forms (`if c then x else y end`, `arr.each do |v| p v end`) are
unfolded so that every block keyword stands on its own logical line. The
statement parser then only ever deals with one statement per line.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from rubylet.rubylet_datatypes import StructuralError, UnterminatedLiteral
from rubylet.rubylet_lexer import Token, tokenize


OPENER_KEYWORDS = frozenset({"if", "unless", "while", "until", "for", "def", "class", "module", "case", "begin"})

# Keywords that split a block body into sections, per opener.
SEPARATORS = {
    "if": ("elsif", "else"),
    "unless": ("else",),
    "case": ("when", "else"),
    "begin": ("rescue", "else", "ensure"),
    "def": ("rescue", "else", "ensure"),
    "do": ("rescue", "ensure"),
    "while": (),
    "until": (),
    "for": (),
    "class": (),
    "module": (),
}
ALL_SEPARATORS = frozenset({"elsif", "else", "when", "rescue", "ensure"})

_CONTINUATION_OPS = frozenset({
    ",", "+", "-", "*", "/", "%", "**", "&&", "||", "=", "+=", "-=", "*=", "/=", "||=", "&&=",
    "==", "!=", "<", ">", "<=", ">=", "=>", ".", "&.", "(", "[", "|", "<<", "?",
})

_BRACKETS = {"(": ")", "[": "]", "{": "}"}


@dataclass
class SourceLine:
    """One statement's worth of tokens."""
    number: int
    tokens: List[Token]

    @property
    def first(self) -> Token:
        return self.tokens[0]

    def __repr__(self) -> str:
        return f"SourceLine({self.number}, {[t.value for t in self.tokens]})"


def find_top_level(tokens: List[Token], predicate: Callable[[Token], bool], start: int = 0) -> Optional[int]:
    """Index of the first token matching predicate outside any brackets."""
    depth = 0
    for i in range(start, len(tokens)):
        tok = tokens[i]
        if depth == 0 and predicate(tok):
            return i
        if tok.kind == "op":
            if tok.value in _BRACKETS:
                depth += 1
            elif tok.value in (")", "]", "}"):
                depth -= 1
    return None


def _is_block_brace(tokens: List[Token], index: int) -> bool:
    """Whether the `{` at index opens a block rather than a hash literal."""
    if index == 0:
        return False
    prev = tokens[index - 1]
    return prev.kind in ("ident", "const") or prev.is_op(")")


def _open_brackets(tokens: List[Token]) -> List[int]:
    """Indices of bracket tokens left unclosed, innermost last."""
    stack: List[int] = []
    for i, tok in enumerate(tokens):
        if tok.kind != "op":
            continue
        if tok.value in _BRACKETS:
            stack.append(i)
        elif tok.value in (")", "]", "}"):
            if not stack:
                raise StructuralError(f"unexpected '{tok.value}'", line=tok.line)
            opener = tokens[stack.pop()]
            if _BRACKETS[opener.value] != tok.value:
                raise StructuralError(f"mismatched '{tok.value}'", line=tok.line)
    return stack


def _needs_continuation(tokens: List[Token]) -> bool:
    last = tokens[-1]
    if last.kind == "op" and last.value in _CONTINUATION_OPS:
        # `do |x|` ends on a pipe but is complete.
        if last.value == "|" and find_top_level(tokens, lambda t: t.is_kw("do")) is not None:
            return False
        if last.value == "|" and any(t.is_op("{") for t in tokens):
            return False
        return True
    return last.is_kw("and", "or", "not")


def _newlines_to_separators(tokens: List[Token]) -> List[Token]:
    """Inside a joined chunk, newlines end statements only within block braces."""
    out: List[Token] = []
    stack: List[bool] = []
    for i, tok in enumerate(tokens):
        if tok.kind == "nl":
            if stack and stack[-1] and out and not out[-1].is_op(";", "{", "|"):
                out.append(Token("op", ";", tok.line, True))
            continue
        if tok.kind == "op" and tok.value in _BRACKETS:
            stack.append(tok.value == "{" and _is_block_brace(tokens, i))
        elif tok.kind == "op" and tok.value in (")", "]", "}") and stack:
            stack.pop()
        out.append(tok)
    return out


def split_statements(tokens: List[Token]) -> List[List[Token]]:
    """Splits on top-level `;` and unfolds one-line compound forms."""
    pieces: List[List[Token]] = []
    start = 0
    while True:
        idx = find_top_level(tokens, lambda t: t.is_op(";"), start)
        chunk = tokens[start:] if idx is None else tokens[start:idx]
        if chunk:
            pieces.extend(_unfold(chunk))
        if idx is None:
            break
        start = idx + 1
    return pieces


def _unfold(tokens: List[Token]) -> List[List[Token]]:
    if not tokens:
        return []
    first = tokens[0]
    if first.is_kw("if", "unless", "elsif", "when", "while", "until", "rescue"):
        i = find_top_level(tokens, lambda t: t.is_kw("then"))
        if i is not None:
            return [tokens[:i]] + _unfold(tokens[i + 1:])
    if first.is_kw("else", "ensure", "begin") and len(tokens) > 1:
        return [tokens[:1]] + _unfold(tokens[1:])
    if first.is_kw("end") and len(tokens) > 1:
        if tokens[1].is_op(".", "&."):
            raise StructuralError("calling a method on the result of a multi-line block is not supported",
                                  line=tokens[1].line)
        return [tokens[:1]] + _unfold(tokens[1:])
    i = find_top_level(tokens, lambda t: t.is_kw("do"))
    if i is not None:
        j = i + 1
        if j < len(tokens) and tokens[j].is_op("||"):
            j += 1
        elif j < len(tokens) and tokens[j].is_op("|"):
            close = next((k for k in range(j + 1, len(tokens)) if tokens[k].is_op("|")), None)
            if close is None:
                raise StructuralError("unterminated block parameter list", line=tokens[j].line)
            j = close + 1
        if j < len(tokens):
            return [tokens[:j]] + _unfold(tokens[j:])
    i = find_top_level(tokens, lambda t: t.is_kw("end", "else", "elsif", "when"), 1)
    if i is not None:
        return [tokens[:i]] + _unfold(tokens[i:])
    return [tokens]


def logical_lines(source: str) -> List[SourceLine]:
    """Scans source into logical lines, one statement each."""
    physical = source.replace("\r\n", "\n").split("\n")
    out: List[SourceLine] = []
    pending: Optional[str] = None
    pending_start = 1
    open_brace_blocks: List[int] = []
    in_doc_comment = False
    for number, raw in enumerate(physical, start=1):
        if in_doc_comment:
            if raw.startswith("=end"):
                in_doc_comment = False
            continue
        if pending is None and raw.startswith("=begin"):
            in_doc_comment = True
            continue
        text = raw if pending is None else pending + "\n" + raw
        start = number if pending is None else pending_start
        is_last = number == len(physical)
        try:
            tokens = tokenize(text, start, keep_newlines=True)
        except UnterminatedLiteral:
            if is_last:
                raise
            pending, pending_start = text, start
            continue
        meaningful = [t for t in tokens if t.kind != "nl"]
        if not meaningful:
            pending = None
            continue
        # The `}` closing a multi-line brace block becomes its `end`.
        if open_brace_blocks and meaningful[0].is_op("}") and pending is None:
            open_brace_blocks.pop()
            meaningful[0].kind, meaningful[0].value = "kw", "end"
        open_indices = _open_brackets(meaningful)
        next_line = physical[number].lstrip() if not is_last else ""
        leading_dot = next_line.startswith(".") and not next_line.startswith("..")
        block_braces = [i for i in open_indices if meaningful[i].is_op("{") and _is_block_brace(meaningful, i)]
        if not is_last and (len(block_braces) != len(open_indices) or _needs_continuation(meaningful) or leading_dot):
            pending, pending_start = text, start
            continue
        pending = None
        if open_indices and len(block_braces) != len(open_indices):
            raise StructuralError(f"unclosed '{meaningful[open_indices[-1]].value}'", line=meaningful[open_indices[-1]].line)
        tokens = _newlines_to_separators(tokens)
        # A block brace left open turns into a `do ... end` block.
        for i in block_braces:
            meaningful[i].kind, meaningful[i].value = "kw", "do"
            open_brace_blocks.append(meaningful[i].line)
        for piece in split_statements(tokens):
            out.append(SourceLine(piece[0].line, piece))
    if in_doc_comment:
        raise StructuralError("unterminated =begin comment", line=len(physical))
    return out


def is_endless_def(tokens: List[Token]) -> bool:
    """`def square(x) = x * x`."""
    i = 1
    if i < len(tokens) and tokens[i].is_kw("self") and i + 1 < len(tokens) and tokens[i + 1].is_op("."):
        i += 2
    i += 1
    # Setter names: `def name=(value)`.
    if (i + 1 < len(tokens) and tokens[i].is_op("=") and not tokens[i].spaced
            and tokens[i + 1].is_op("(")):
        i += 1
    if i < len(tokens) and tokens[i].is_op("(") and not tokens[i].spaced:
        depth = 0
        while i < len(tokens):
            if tokens[i].is_op("("):
                depth += 1
            elif tokens[i].is_op(")"):
                depth -= 1
                if depth == 0:
                    break
            i += 1
        i += 1
    return i < len(tokens) and tokens[i].is_op("=")


def ends_with_do(tokens: List[Token]) -> bool:
    i = find_top_level(tokens, lambda t: t.is_kw("do"))
    return i is not None and i > 0


def block_opener(line: SourceLine) -> Optional[str]:
    """The block keyword this line opens, 'do' for do-blocks, or None."""
    first = line.first
    if first.is_kw(*OPENER_KEYWORDS):
        if first.value == "def" and is_endless_def(line.tokens):
            return None
        return first.value
    if ends_with_do(line.tokens):
        return "do"
    return None


def is_terminator(line: SourceLine) -> bool:
    return line.first.is_kw("end")


def find_end(lines: List[SourceLine], start: int, stop: Optional[int] = None) -> int:
    """Index of the `end` closing the opener at lines[start]."""
    stop = len(lines) if stop is None else stop
    depth = 0
    for i in range(start, stop):
        line = lines[i]
        if block_opener(line) is not None:
            depth += 1
        elif is_terminator(line):
            depth -= 1
            if depth == 0:
                return i
    opener = lines[start]
    keyword = block_opener(opener)
    raise StructuralError(f"'{keyword}' on line {opener.number} is missing its 'end'", line=opener.number)


def find_separators(lines: List[SourceLine], start: int, end: int) -> List[int]:
    """Indices of depth-0 separator lines strictly between start and end."""
    keyword = block_opener(lines[start])
    allowed = SEPARATORS.get(keyword, ())
    found: List[int] = []
    depth = 0
    for i in range(start + 1, end):
        line = lines[i]
        if block_opener(line) is not None:
            depth += 1
        elif is_terminator(line):
            depth -= 1
        elif depth == 0 and line.first.is_kw(*ALL_SEPARATORS):
            if line.first.value not in allowed:
                raise StructuralError(f"unexpected '{line.first.value}' inside '{keyword}'", line=line.number)
            found.append(i)
    return found
