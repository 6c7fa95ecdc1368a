"""
Precedence-climbing expression parser.

Levels, lowest to highest: `and`/`or`, `not`, assignment, ternary, `||`,
`&&`, equality, relational, range, `|` `^`, `&`, shifts, additive,
multiplicative, `**` (right-associative), unary `!` `-` `~`, then postfix
chains (`.method`, `[index]`, `::Const`, blocks) around primaries.
"""

from typing import Any, List, Optional, Set, Tuple

from rubylet.rubylet_datatypes import (
    RubySyntaxError, RubyRegexp, Symbol, Param,
    Literal, StringNode, RegexNode, ArrayNode, HashNode, RangeNode, Identifier,
    InstanceVar, ClassVar, GlobalVar, ConstantRef, SelfNode, BinaryOp, LogicalOp,
    UnaryOp, Ternary, Splat, BlockNode, LambdaNode, Call, Output, Yield, Super,
    Assign, OpAssign, BeginBlock,
)
from rubylet.rubylet_lexer import Token, Interpolation, tokenize


ASSIGN_OPS = frozenset({"=", "+=", "-=", "*=", "/=", "%=", "**=", "||=", "&&=", "<<=", ">>=", "|=", "&=", "^="})
OUTPUT_NAMES = frozenset({"puts", "p", "print", "pp"})

_COMMAND_ARG_KINDS = frozenset({
    "int", "float", "string", "dstring", "symbol", "ident", "const", "ivar", "cvar", "gvar",
    "regex", "words", "symbols", "label",
})
_COMMAND_ARG_KEYWORDS = frozenset({"nil", "true", "false", "self", "not", "yield", "super"})
_ARGS_END_KEYWORDS = frozenset({"do", "then", "end", "if", "unless", "while", "until", "rescue", "and", "or"})

_EQUALITY_OPS = ("==", "!=", "===", "=~", "!~", "<=>")
_RELATIONAL_OPS = ("<", ">", "<=", ">=")


class ParseContext:
    """Per-method parse state: the names known to be local variables."""

    def __init__(self, names=None):
        self.locals: Set[str] = set(names or ())

    def declare(self, name: str):
        self.locals.add(name)


def describe(tok: Optional[Token]) -> str:
    if tok is None:
        return "end of line"
    if tok.kind in ("kw", "op"):
        return f"'{tok.value}'"
    return f"{tok.kind} {tok.value!r}"


def split_top_level(tokens: List[Token], sep: str = ",") -> List[List[Token]]:
    """Splits on a separator operator outside brackets."""
    parts: List[List[Token]] = [[]]
    depth = 0
    for tok in tokens:
        if tok.kind == "op":
            if tok.value in ("(", "[", "{"):
                depth += 1
            elif tok.value in (")", "]", "}"):
                depth -= 1
            elif tok.value == sep and depth == 0:
                parts.append([])
                continue
        parts[-1].append(tok)
    if parts == [[]]:
        return []
    return parts


def matching_index(tokens: List[Token], open_index: int) -> int:
    """Index of the bracket closing tokens[open_index]."""
    depth = 0
    for i in range(open_index, len(tokens)):
        tok = tokens[i]
        if tok.kind != "op":
            continue
        if tok.value in ("(", "[", "{"):
            depth += 1
        elif tok.value in (")", "]", "}"):
            depth -= 1
            if depth == 0:
                return i
    raise RubySyntaxError(f"unclosed '{tokens[open_index].value}'", line=tokens[open_index].line)


class ExpressionParser:
    """Parses one token list into an expression node."""

    def __init__(self, tokens: List[Token], ctx: ParseContext, statements=None):
        self.tokens = tokens
        self.pos = 0
        self.ctx = ctx
        # The statement parser, for block bodies and interpolations.
        self.statements = statements
        self.line = tokens[0].line if tokens else 0

    # ----- token helpers -----

    def peek(self, offset: int = 0) -> Optional[Token]:
        i = self.pos + offset
        return self.tokens[i] if i < len(self.tokens) else None

    def advance(self) -> Token:
        tok = self.peek()
        if tok is None:
            raise self.error("unexpected end of line")
        self.pos += 1
        return tok

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def accept_op(self, *values) -> Optional[Token]:
        tok = self.peek()
        if tok is not None and tok.is_op(*values):
            self.pos += 1
            return tok
        return None

    def expect_op(self, value: str) -> Token:
        tok = self.peek()
        if tok is None or not tok.is_op(value):
            raise self.error(f"expected '{value}' but found {describe(tok)}")
        self.pos += 1
        return tok

    def error(self, message: str) -> RubySyntaxError:
        tok = self.peek()
        line = tok.line if tok is not None else (self.tokens[-1].line if self.tokens else self.line)
        return RubySyntaxError(message, line=line)

    # ----- entry points -----

    def parse_statement(self):
        node = self.parse_expression()
        if not self.at_end():
            raise self.error(f"unexpected {describe(self.peek())}")
        return node

    def parse_expression(self):
        left = self.parse_not()
        while True:
            tok = self.peek()
            if tok is None or not tok.is_kw("and", "or"):
                return left
            self.advance()
            right = self.parse_not()
            left = LogicalOp("&&" if tok.value == "and" else "||", left, right, line=tok.line)

    def parse_not(self):
        tok = self.peek()
        if tok is not None and tok.is_kw("not"):
            self.advance()
            return UnaryOp("!", self.parse_not(), line=tok.line)
        return self.parse_assignment()

    def parse_assignment(self):
        left = self.parse_ternary()
        tok = self.peek()
        if tok is None or tok.kind != "op" or tok.value not in ASSIGN_OPS:
            return left
        self.advance()
        target = self.as_target(left)
        value = self.parse_not()
        if tok.value == "=":
            return Assign(target, value, line=tok.line)
        return OpAssign(target, tok.value[:-1], value, line=tok.line)

    def as_target(self, node):
        """Validates an assignment target, declaring new locals."""
        match node:
            case Identifier(name=name):
                self.ctx.declare(name)
                return node
            case InstanceVar() | ClassVar() | GlobalVar() | ConstantRef():
                return node
            case Call(name="[]", block=None):
                return node
            case Call(receiver=None, args=[], has_parens=False, block=None):
                self.ctx.declare(node.name)
                return Identifier(node.name, line=node.line)
            case Call(args=[], has_parens=False, block=None) if node.name[-1:] not in ("?", "!"):
                return node
            case Splat(value=inner):
                return Splat(self.as_target(inner), line=node.line)
        raise RubySyntaxError("invalid assignment target", line=getattr(node, "line", self.line))

    # ----- binary levels -----

    def parse_ternary(self):
        cond = self.parse_or()
        tok = self.accept_op("?")
        if tok is None:
            return cond
        then = self.parse_ternary()
        self.expect_op(":")
        otherwise = self.parse_ternary()
        return Ternary(cond, then, otherwise, line=tok.line)

    def parse_or(self):
        left = self.parse_and()
        while (tok := self.accept_op("||")) is not None:
            left = LogicalOp("||", left, self.parse_and(), line=tok.line)
        return left

    def parse_and(self):
        left = self.parse_equality()
        while (tok := self.accept_op("&&")) is not None:
            left = LogicalOp("&&", left, self.parse_equality(), line=tok.line)
        return left

    def parse_equality(self):
        left = self.parse_relational()
        while (tok := self.accept_op(*_EQUALITY_OPS)) is not None:
            left = BinaryOp(tok.value, left, self.parse_relational(), line=tok.line)
        return left

    def parse_relational(self):
        left = self.parse_range()
        while (tok := self.accept_op(*_RELATIONAL_OPS)) is not None:
            left = BinaryOp(tok.value, left, self.parse_range(), line=tok.line)
        return left

    def parse_range(self):
        left = self.parse_bitor()
        tok = self.accept_op("..", "...")
        if tok is None:
            return left
        nxt = self.peek()
        if nxt is None or nxt.is_op(")", "]", ",") or nxt.is_kw("then", "do"):
            right = None
        else:
            right = self.parse_bitor()
        return RangeNode(left, right, tok.value == "...", line=tok.line)

    def parse_bitor(self):
        left = self.parse_bitand()
        while True:
            tok = self.peek()
            if tok is None or not tok.is_op("|", "^"):
                return left
            self.advance()
            left = BinaryOp(tok.value, left, self.parse_bitand(), line=tok.line)

    def parse_bitand(self):
        left = self.parse_shift()
        while True:
            tok = self.peek()
            if tok is None or not tok.is_op("&"):
                return left
            nxt = self.peek(1)
            # `foo &block` passes a block; `a & b` is set intersection.
            if tok.spaced and nxt is not None and not nxt.spaced:
                return left
            self.advance()
            left = BinaryOp("&", left, self.parse_shift(), line=tok.line)

    def parse_shift(self):
        left = self.parse_additive()
        while (tok := self.accept_op("<<", ">>")) is not None:
            left = BinaryOp(tok.value, left, self.parse_additive(), line=tok.line)
        return left

    def parse_additive(self):
        left = self.parse_multiplicative()
        while (tok := self.accept_op("+", "-")) is not None:
            left = BinaryOp(tok.value, left, self.parse_multiplicative(), line=tok.line)
        return left

    def parse_multiplicative(self):
        left = self.parse_power()
        while (tok := self.accept_op("*", "/", "%")) is not None:
            left = BinaryOp(tok.value, left, self.parse_power(), line=tok.line)
        return left

    def parse_power(self):
        base = self.parse_unary()
        tok = self.accept_op("**")
        if tok is None:
            return base
        return BinaryOp("**", base, self.parse_power(), line=tok.line)

    def parse_unary(self):
        tok = self.peek()
        if tok is not None and tok.kind == "op":
            if tok.value == "!":
                self.advance()
                return UnaryOp("!", self.parse_unary(), line=tok.line)
            if tok.value in ("-", "+"):
                self.advance()
                nxt = self.peek()
                if nxt is not None and nxt.kind in ("int", "float") and not nxt.spaced:
                    self.advance()
                    value = -nxt.value if tok.value == "-" else nxt.value
                    return self.parse_postfix(Literal(value, line=tok.line))
                return UnaryOp(tok.value, self.parse_unary(), line=tok.line)
            if tok.value == "~":
                self.advance()
                return UnaryOp("~", self.parse_unary(), line=tok.line)
        return self.parse_postfix(self.parse_primary())

    # ----- primaries -----

    def parse_primary(self):
        tok = self.advance()
        line = tok.line
        kind = tok.kind
        if kind in ("int", "float"):
            return Literal(tok.value, line=line)
        if kind == "string":
            return Literal(tok.value, line=line)
        if kind == "dstring":
            return StringNode(self._parse_parts(tok.value), line=line)
        if kind == "regex":
            parts, flags = tok.value
            if all(isinstance(p, str) for p in parts):
                return Literal(RubyRegexp("".join(parts), flags), line=line)
            return RegexNode(self._parse_parts(parts), flags, line=line)
        if kind == "symbol":
            return Literal(Symbol(tok.value), line=line)
        if kind == "words":
            return ArrayNode([Literal(w, line=line) for w in tok.value], line=line)
        if kind == "symbols":
            return ArrayNode([Literal(Symbol(w), line=line) for w in tok.value], line=line)
        if kind == "ivar":
            return InstanceVar(tok.value, line=line)
        if kind == "cvar":
            return ClassVar(tok.value, line=line)
        if kind == "gvar":
            return GlobalVar(tok.value, line=line)
        if kind == "const":
            nxt = self.peek()
            if nxt is not None and nxt.is_op("(") and not nxt.spaced:
                args, block_arg = self.parse_paren_args()
                return Call(None, tok.value, args, block_arg=block_arg, has_parens=True, line=line)
            return ConstantRef(tok.value, line=line)
        if kind == "ident":
            return self._parse_identifier(tok)
        if kind == "kw":
            return self._parse_keyword(tok)
        if kind == "op":
            if tok.value == "(":
                if self.accept_op(")"):
                    return Literal(None, line=line)
                inner = self.parse_expression()
                self.expect_op(")")
                return inner
            if tok.value == "[":
                elements, _ = self.parse_arguments("]")
                self.expect_op("]")
                return ArrayNode(elements, line=line)
            if tok.value == "{":
                return self._parse_hash(tok)
            if tok.value == "->":
                return self._parse_lambda(tok)
            if tok.value == "::":
                name = self.advance()
                return ConstantRef(name.value, line=line)
            if tok.value in ("..", "..."):
                return RangeNode(None, self.parse_bitor(), tok.value == "...", line=line)
        if kind == "label":
            raise RubySyntaxError(f"unexpected label '{tok.value}:'", line=line)
        raise RubySyntaxError(f"unexpected {describe(tok)}", line=line)

    def _parse_parts(self, parts) -> List[Any]:
        out: List[Any] = []
        for part in parts:
            if isinstance(part, Interpolation):
                out.append(self.parse_interpolation(part))
            else:
                out.append(part)
        return out

    def parse_interpolation(self, part: Interpolation):
        tokens = tokenize(part.source, part.line)
        if not tokens:
            return Literal(None, line=part.line)
        if self.statements is None:
            return ExpressionParser(tokens, self.ctx).parse_statement()
        body = self.statements.parse_inline(tokens, self.ctx)
        if len(body) == 1:
            return body[0]
        return BeginBlock(body, line=part.line)

    def _parse_identifier(self, tok: Token):
        name = tok.value
        line = tok.line
        nxt = self.peek()
        is_local = name in self.ctx.locals
        if name in OUTPUT_NAMES and not is_local:
            if nxt is not None and nxt.is_op("(") and not nxt.spaced:
                args, _ = self.parse_paren_args()
            elif self.starts_command_arg(nxt):
                args, _ = self.parse_arguments(None)
            else:
                args = []
            return Output(name, args, line=line)
        if nxt is not None and nxt.is_op("(") and not nxt.spaced:
            args, block_arg = self.parse_paren_args()
            return Call(None, name, args, block_arg=block_arg, has_parens=True, line=line)
        if is_local:
            return Identifier(name, line=line)
        if self.starts_command_arg(nxt):
            args, block_arg = self.parse_arguments(None)
            return Call(None, name, args, block_arg=block_arg, line=line)
        return Identifier(name, line=line)

    def _parse_keyword(self, tok: Token):
        line = tok.line
        value = tok.value
        if value == "nil":
            return Literal(None, line=line)
        if value == "true":
            return Literal(True, line=line)
        if value == "false":
            return Literal(False, line=line)
        if value == "self":
            return SelfNode(line=line)
        if value in ("yield", "super"):
            nxt = self.peek()
            args: Optional[List[Any]]
            block_arg = None
            if nxt is not None and nxt.is_op("(") and not nxt.spaced:
                args, block_arg = self.parse_paren_args()
            elif self.starts_command_arg(nxt):
                args, block_arg = self.parse_arguments(None)
            else:
                args = None
            if value == "yield":
                return Yield(args or [], line=line)
            return Super(args, line=line)
        raise RubySyntaxError(f"unexpected keyword '{value}'", line=line)

    def _parse_hash(self, open_tok: Token):
        pairs: List[Tuple[Any, Any]] = []
        while not self.accept_op("}"):
            tok = self.peek()
            if tok is None:
                raise RubySyntaxError("unclosed '{'", line=open_tok.line)
            if tok.kind == "label":
                self.advance()
                key = Literal(Symbol(tok.value), line=tok.line)
                value = self.parse_not()
            elif tok.is_op("**"):
                self.advance()
                key, value = None, self.parse_ternary()
            else:
                key = self.parse_ternary()
                self.expect_op("=>")
                value = self.parse_not()
            pairs.append((key, value))
            if not self.accept_op(","):
                self.expect_op("}")
                break
        return HashNode(pairs, line=open_tok.line)

    def _parse_lambda(self, arrow: Token):
        params: List[Param] = []
        nxt = self.peek()
        if nxt is not None and nxt.is_op("("):
            close = matching_index(self.tokens, self.pos)
            params = parse_params(self.tokens[self.pos + 1:close], self.ctx, self.statements)
            self.pos = close + 1
        elif nxt is not None and nxt.kind == "ident":
            start = self.pos
            while self.peek() is not None and not self.peek().is_op("{"):
                self.pos += 1
            params = parse_params(self.tokens[start:self.pos], self.ctx, self.statements)
        if self.peek() is None:
            # Body supplied by a following do-block.
            return LambdaNode(params, None, line=arrow.line)
        block = self.parse_brace_block()
        return LambdaNode(params or block.params, block.body, line=arrow.line)

    # ----- arguments -----

    def starts_command_arg(self, tok: Optional[Token]) -> bool:
        """Whether tok begins the first argument of a parenthesis-less call."""
        if tok is None or not tok.spaced:
            return False
        if tok.kind in _COMMAND_ARG_KINDS:
            return True
        if tok.kind == "kw":
            return tok.value in _COMMAND_ARG_KEYWORDS
        if tok.kind == "op":
            if tok.value in ("[", "->", "::", "("):
                return True
            nxt = self.peek(1)
            glued = nxt is not None and not nxt.spaced
            return glued and tok.value in ("-", "*", "&", "!", "**", "..")
        return False

    def parse_paren_args(self):
        self.expect_op("(")
        args, block_arg = self.parse_arguments(")")
        self.expect_op(")")
        return args, block_arg

    def parse_arguments(self, closer: Optional[str]):
        """Comma-separated call arguments up to closer (or the end of a command call)."""
        args: List[Any] = []
        kw_pairs: List[Tuple[Any, Any]] = []
        block_arg = None
        while True:
            tok = self.peek()
            if tok is None:
                break
            if closer is not None and tok.is_op(closer):
                break
            if closer is None and (tok.is_kw(*_ARGS_END_KEYWORDS) or tok.is_op("}", ")", "]", ";")):
                break
            if tok.is_op("*"):
                self.advance()
                args.append(Splat(self.parse_ternary(), line=tok.line))
            elif tok.is_op("**"):
                self.advance()
                kw_pairs.append((None, self.parse_ternary()))
            elif tok.is_op("&"):
                self.advance()
                block_arg = self.parse_ternary()
            elif tok.kind == "label":
                self.advance()
                kw_pairs.append((Literal(Symbol(tok.value), line=tok.line), self.parse_not()))
            else:
                value = self.parse_not()
                if self.accept_op("=>"):
                    kw_pairs.append((value, self.parse_not()))
                else:
                    args.append(value)
            if not self.accept_op(","):
                break
        if kw_pairs:
            hash_node = HashNode(kw_pairs, braces=False, line=kw_pairs[0][1].line)
            args.append(hash_node)
        return args, block_arg

    # ----- postfix chains -----

    def parse_postfix(self, node):
        while True:
            tok = self.peek()
            if tok is None:
                return node
            if tok.is_op(".", "&."):
                self.advance()
                name_tok = self.advance()
                if name_tok.is_op("("):
                    self.pos -= 1
                    name = "call"
                elif name_tok.kind in ("ident", "const", "kw"):
                    name = name_tok.value
                else:
                    raise RubySyntaxError(f"unexpected {describe(name_tok)} after '.'", line=name_tok.line)
                node = self._parse_call_rest(node, name, tok.value == "&.", tok.line)
                continue
            if tok.is_op("::"):
                self.advance()
                name_tok = self.advance()
                nxt = self.peek()
                if name_tok.kind == "const" and not (nxt is not None and nxt.is_op("(") and not nxt.spaced):
                    node = ConstantRef(name_tok.value, node, line=tok.line)
                else:
                    node = self._parse_call_rest(node, name_tok.value, False, tok.line)
                continue
            if tok.is_op("[") and (not tok.spaced or (isinstance(node, Identifier) and node.name in self.ctx.locals)):
                self.advance()
                args, _ = self.parse_arguments("]")
                self.expect_op("]")
                node = Call(node, "[]", args, has_parens=True, line=tok.line)
                continue
            if tok.is_op("{") and self._takes_block(node):
                block = self.parse_brace_block()
                node = with_block(node, block)
                continue
            return node

    def _takes_block(self, node) -> bool:
        if isinstance(node, Call):
            return node.block is None and node.block_arg is None and node.name != "[]"
        if isinstance(node, Identifier):
            return node.name not in self.ctx.locals
        if isinstance(node, Super):
            return node.block is None
        return False

    def _parse_call_rest(self, receiver, name: str, safe: bool, line: int):
        nxt = self.peek()
        args: List[Any] = []
        block_arg = None
        has_parens = False
        if nxt is not None and nxt.is_op("(") and not nxt.spaced:
            args, block_arg = self.parse_paren_args()
            has_parens = True
        elif self.starts_command_arg(nxt):
            args, block_arg = self.parse_arguments(None)
        return Call(receiver, name, args, block_arg=block_arg, has_parens=has_parens, safe_nav=safe, line=line)

    def parse_brace_block(self) -> BlockNode:
        open_index = self.pos
        open_tok = self.expect_op("{")
        close = matching_index(self.tokens, open_index)
        inner = self.tokens[self.pos:close]
        self.pos = close + 1
        params, body_tokens = split_block_params(inner, self.ctx, self.statements)
        if self.statements is None:
            body = [ExpressionParser(body_tokens, self.ctx).parse_statement()] if body_tokens else []
        else:
            body = self.statements.parse_inline(body_tokens, self.ctx) if body_tokens else []
        return BlockNode(params, body, line=open_tok.line)


def with_block(node, block: BlockNode):
    if isinstance(node, Identifier):
        return Call(None, node.name, [], block=block, line=node.line)
    node.block = block
    return node


def split_block_params(tokens: List[Token], ctx: ParseContext, statements=None):
    """Separates a leading `|params|` from a block's body tokens."""
    if tokens and tokens[0].is_op("||"):
        return [], tokens[1:]
    if not tokens or not tokens[0].is_op("|"):
        return [], tokens
    close = next((i for i in range(1, len(tokens)) if tokens[i].is_op("|")), None)
    if close is None:
        raise RubySyntaxError("unterminated block parameter list", line=tokens[0].line)
    return parse_params(tokens[1:close], ctx, statements), tokens[close + 1:]


def parse_params(tokens: List[Token], ctx: ParseContext, statements=None) -> List[Param]:
    """Parses a parameter list (without its surrounding delimiters)."""
    params: List[Param] = []
    for seg in split_top_level(tokens):
        if not seg:
            raise RubySyntaxError("malformed parameter list", line=tokens[0].line if tokens else 0)
        first = seg[0]
        line = first.line
        if first.is_op("*", "**", "&"):
            kind = {"*": "rest", "**": "keyrest", "&": "block"}[first.value]
            name = seg[1].value if len(seg) > 1 else first.value
            params.append(Param(name, kind, line=line))
        elif first.kind == "label":
            default = ExpressionParser(seg[1:], ctx, statements).parse_statement() if len(seg) > 1 else None
            params.append(Param(first.value, "keyword", default, line=line))
            name = first.value
        elif first.is_op("("):
            close = matching_index(seg, 0)
            inner = parse_params(seg[1:close], ctx, statements)
            params.append(Param("()", "destructure", names=inner, line=line))
            continue
        elif first.kind == "ident":
            name = first.value
            if len(seg) == 1:
                params.append(Param(name, line=line))
            elif seg[1].is_op("="):
                default = ExpressionParser(seg[2:], ctx, statements).parse_statement()
                params.append(Param(name, "optional", default, line=line))
            else:
                raise RubySyntaxError(f"unexpected {describe(seg[1])} in parameter list", line=line)
        else:
            raise RubySyntaxError(f"unexpected {describe(first)} in parameter list", line=line)
        ctx.declare(name)
    return params
