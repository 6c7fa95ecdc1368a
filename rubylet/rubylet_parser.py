"""
Statement parser: turns logical lines into executable nodes.

Block constructs are located with the structural scanner and parsed
recursively; everything else on a line is handed to the expression parser.
The whole program is parsed before anything runs, so structural mistakes
(a missing `end`, a stray `else`) surface before any output is produced.
"""

from typing import Any, List, Optional, Tuple

from rubylet.rubylet_datatypes import (
    RubySyntaxError, StructuralError,
    ArrayNode, Identifier, UnaryOp, Splat, BlockNode, LambdaNode,
    Call, Output, Super, Assign, OpAssign, MultiAssign, Append, If, While, For, Case,
    MethodDef, ClassDef, SingletonClassDef, ModuleDef, Return, Break, Next, RescueClause,
    BeginBlock, Alias, BinaryOp,
)
from rubylet.rubylet_expressions import (
    ExpressionParser, ParseContext, describe, matching_index, parse_params,
    split_block_params, split_top_level,
)
from rubylet.rubylet_lexer import Token
from rubylet.rubylet_scanner import (
    ALL_SEPARATORS, SourceLine, block_opener, find_end, find_separators, find_top_level,
    logical_lines, split_statements,
)


MODIFIER_KEYWORDS = ("if", "unless", "while", "until", "rescue")

# Operator method names accepted after `def`.
OPERATOR_METHODS = frozenset({
    "+", "-", "*", "/", "%", "**", "==", "!=", "<", ">", "<=", ">=", "<=>", "===",
    "<<", ">>", "!", "=~", "&", "|", "^",
})

Section = Tuple[SourceLine, int, int]


class Parser:
    """Builds the executable node list for a program."""

    def parse(self, source: str) -> List[Any]:
        lines = logical_lines(source)
        return self.parse_lines(lines, 0, len(lines), ParseContext())

    def parse_inline(self, tokens: List[Token], ctx: ParseContext) -> List[Any]:
        """Parses a brace-block body or interpolation: `;`-separated statements."""
        lines = [SourceLine(piece[0].line, piece) for piece in split_statements(tokens)]
        return self.parse_lines(lines, 0, len(lines), ctx)

    def parse_lines(self, lines: List[SourceLine], start: int, stop: int, ctx: ParseContext) -> List[Any]:
        body: List[Any] = []
        i = start
        while i < stop:
            line = lines[i]
            opener = block_opener(line)
            if opener is None:
                first = line.first
                if first.is_kw("end") or first.is_kw(*ALL_SEPARATORS):
                    raise StructuralError(f"unexpected '{first.value}'", line=line.number)
                body.append(self.parse_simple(line.tokens, ctx))
                i += 1
                continue
            end = find_end(lines, i, stop)
            body.append(self._parse_block(opener, lines, i, end, ctx))
            i = end + 1
        return body

    # ----- block constructs -----

    def _sections(self, lines: List[SourceLine], start: int, end: int) -> List[Section]:
        """(header line, body start, body stop) for the opener and each separator."""
        seps = find_separators(lines, start, end)
        headers = [start] + seps
        bounds = seps + [end]
        return [(lines[h], h + 1, b) for h, b in zip(headers, bounds)]

    def _parse_block(self, opener: str, lines: List[SourceLine], start: int, end: int, ctx: ParseContext):
        header = lines[start]
        match opener:
            case "if" | "unless":
                return self._parse_if(lines, start, end, ctx)
            case "while" | "until":
                tokens = self._strip_do(header.tokens[1:])
                cond = self._expr(tokens, ctx, header)
                body = self.parse_lines(lines, start + 1, end, ctx)
                return While(cond, body, opener == "until", line=header.number)
            case "for":
                return self._parse_for(lines, start, end, ctx)
            case "case":
                return self._parse_case(lines, start, end, ctx)
            case "def":
                return self._parse_def(lines, start, end)
            case "class":
                return self._parse_class(lines, start, end)
            case "module":
                name = header.tokens[1] if len(header.tokens) > 1 else None
                if name is None or name.kind != "const":
                    raise RubySyntaxError("module name must be a constant", line=header.number)
                body = self.parse_lines(lines, start + 1, end, ParseContext())
                return ModuleDef(name.value, body, line=header.number)
            case "begin":
                if len(header.tokens) > 1:
                    raise RubySyntaxError(f"unexpected {describe(header.tokens[1])} after 'begin'", line=header.number)
                return self._parse_begin(self._sections(lines, start, end), lines, ctx)
            case "do":
                return self._parse_do(lines, start, end, ctx)
        raise StructuralError(f"unknown block keyword '{opener}'", line=header.number)

    def _parse_if(self, lines, start, end, ctx):
        branches = []
        else_body = None
        for header, b0, b1 in self._sections(lines, start, end):
            keyword = header.first.value
            body = self.parse_lines(lines, b0, b1, ctx)
            if else_body is not None:
                raise StructuralError(f"'{keyword}' after 'else'", line=header.number)
            if keyword == "else":
                if len(header.tokens) > 1:
                    raise RubySyntaxError(f"unexpected {describe(header.tokens[1])} after 'else'", line=header.number)
                else_body = body
                continue
            cond = self._expr(header.tokens[1:], ctx, header)
            if keyword == "unless":
                cond = UnaryOp("!", cond, line=header.number)
            branches.append((cond, body))
        return If(branches, else_body, line=lines[start].number)

    def _parse_for(self, lines, start, end, ctx):
        header = lines[start]
        tokens = self._strip_do(header.tokens[1:])
        in_index = find_top_level(tokens, lambda t: t.is_kw("in"))
        if in_index is None or in_index == 0:
            raise RubySyntaxError("expected 'for NAME in EXPRESSION'", line=header.number)
        names = []
        for seg in split_top_level(tokens[:in_index]):
            if len(seg) != 1 or seg[0].kind != "ident":
                raise RubySyntaxError("loop variable must be a name", line=header.number)
            names.append(seg[0].value)
            ctx.declare(seg[0].value)
        iterable = self._expr(tokens[in_index + 1:], ctx, header)
        body = self.parse_lines(lines, start + 1, end, ctx)
        return For(names, iterable, body, line=header.number)

    def _parse_case(self, lines, start, end, ctx):
        sections = self._sections(lines, start, end)
        header, b0, b1 = sections[0]
        if b0 != b1:
            raise StructuralError("expected 'when' after 'case'", line=lines[b0].number)
        subject = self._expr(header.tokens[1:], ctx, header) if len(header.tokens) > 1 else None
        whens = []
        else_body = None
        for when_header, w0, w1 in sections[1:]:
            body = self.parse_lines(lines, w0, w1, ctx)
            if else_body is not None:
                raise StructuralError(f"'{when_header.first.value}' after 'else'", line=when_header.number)
            if when_header.first.value == "else":
                else_body = body
                continue
            values = []
            for seg in split_top_level(when_header.tokens[1:]):
                if seg and seg[0].is_op("*"):
                    values.append(Splat(self._expr(seg[1:], ctx, when_header), line=when_header.number))
                else:
                    values.append(self._expr(seg, ctx, when_header))
            if not values:
                raise RubySyntaxError("'when' needs at least one value", line=when_header.number)
            whens.append((values, body))
        return Case(subject, whens, else_body, line=header.number)

    def _parse_def(self, lines, start, end):
        header = lines[start]
        ctx = ParseContext()
        name, params, singleton, rest = self._parse_def_header(header, ctx)
        if rest:
            raise RubySyntaxError(f"unexpected {describe(rest[0])} in method definition", line=header.number)
        sections = self._sections(lines, start, end)
        if len(sections) > 1:
            body = [self._parse_begin(sections, lines, ctx)]
        else:
            body = self.parse_lines(lines, start + 1, end, ctx)
        return MethodDef(name, params, body, singleton, line=header.number)

    def _parse_def_header(self, header: SourceLine, ctx: ParseContext):
        tokens = header.tokens
        i = 1
        singleton = False
        if len(tokens) > 2 and tokens[1].is_kw("self") and tokens[2].is_op("."):
            singleton = True
            i = 3
        if i >= len(tokens):
            raise RubySyntaxError("method name expected after 'def'", line=header.number)
        tok = tokens[i]
        if tok.kind in ("ident", "const", "kw"):
            name = tok.value
            i += 1
            if (i + 1 < len(tokens) and tokens[i].is_op("=") and not tokens[i].spaced
                    and tokens[i + 1].is_op("(")):
                name += "="
                i += 1
        elif tok.is_op("[") and i + 1 < len(tokens) and tokens[i + 1].is_op("]"):
            name = "[]"
            i += 2
            if i < len(tokens) and tokens[i].is_op("=") and not tokens[i].spaced:
                name = "[]="
                i += 1
        elif tok.kind == "op" and tok.value in OPERATOR_METHODS:
            name = tok.value
            i += 1
        else:
            raise RubySyntaxError(f"invalid method name {describe(tok)}", line=header.number)
        rest = tokens[i:]
        if rest and rest[0].is_op("("):
            close = matching_index(rest, 0)
            params = parse_params(rest[1:close], ctx, self)
            rest = rest[close + 1:]
        else:
            eq = find_top_level(rest, lambda t: t.is_op("="))
            params = parse_params(rest if eq is None else rest[:eq], ctx, self)
            rest = [] if eq is None else rest[eq:]
        return name, params, singleton, rest

    def _parse_endless_def(self, tokens: List[Token], ctx: ParseContext):
        header = SourceLine(tokens[0].line, tokens)
        def_ctx = ParseContext()
        name, params, singleton, rest = self._parse_def_header(header, def_ctx)
        if not rest or not rest[0].is_op("="):
            raise RubySyntaxError("malformed method definition", line=header.number)
        body = [self._expr(rest[1:], def_ctx, header)]
        return MethodDef(name, params, body, singleton, line=header.number)

    def _parse_class(self, lines, start, end):
        header = lines[start]
        tokens = header.tokens
        if len(tokens) > 2 and tokens[1].is_op("<<") and tokens[2].is_kw("self"):
            body = self.parse_lines(lines, start + 1, end, ParseContext())
            return SingletonClassDef(body, line=header.number)
        if len(tokens) < 2 or tokens[1].kind != "const":
            raise RubySyntaxError("class name must be a constant", line=header.number)
        name = tokens[1].value
        rest = tokens[2:]
        while len(rest) >= 2 and rest[0].is_op("::") and rest[1].kind == "const":
            name = rest[1].value
            rest = rest[2:]
        superclass = None
        if rest:
            if not rest[0].is_op("<") or len(rest) < 2:
                raise RubySyntaxError(f"unexpected {describe(rest[0])} in class definition", line=header.number)
            superclass = self._expr(rest[1:], ParseContext(), header)
        body = self.parse_lines(lines, start + 1, end, ParseContext())
        return ClassDef(name, superclass, body, line=header.number)

    def _parse_begin(self, sections: List[Section], lines, ctx) -> BeginBlock:
        first, b0, b1 = sections[0]
        body = self.parse_lines(lines, b0, b1, ctx)
        rescues = []
        else_body = None
        ensure_body = None
        for header, s0, s1 in sections[1:]:
            keyword = header.first.value
            part = self.parse_lines(lines, s0, s1, ctx)
            if keyword == "rescue":
                if else_body is not None or ensure_body is not None:
                    raise StructuralError("'rescue' after 'else' or 'ensure'", line=header.number)
                classes, var = self._rescue_header(header, ctx)
                rescues.append(RescueClause(classes, var, part, line=header.number))
            elif keyword == "else":
                if not rescues:
                    raise StructuralError("'else' without 'rescue'", line=header.number)
                else_body = part
            elif keyword == "ensure":
                ensure_body = part
        return BeginBlock(body, rescues, else_body, ensure_body, line=first.number)

    def _rescue_header(self, header: SourceLine, ctx: ParseContext):
        tokens = header.tokens[1:]
        var = None
        arrow = find_top_level(tokens, lambda t: t.is_op("=>"))
        if arrow is not None:
            names = tokens[arrow + 1:]
            if len(names) != 1 or names[0].kind != "ident":
                raise RubySyntaxError("expected a variable name after '=>'", line=header.number)
            var = names[0].value
            ctx.declare(var)
            tokens = tokens[:arrow]
        classes = [self._expr(seg, ctx, header) for seg in split_top_level(tokens)]
        return classes, var

    def _parse_do(self, lines, start, end, ctx):
        header = lines[start]
        do_index = find_top_level(header.tokens, lambda t: t.is_kw("do"))
        head = header.tokens[:do_index]
        params, leftover = split_block_params(header.tokens[do_index + 1:], ctx, self)
        if leftover:
            raise RubySyntaxError(f"unexpected {describe(leftover[0])} after block parameters", line=header.number)
        sections = self._sections(lines, start, end)
        if len(sections) > 1:
            body = [self._parse_begin(sections, lines, ctx)]
        else:
            body = self.parse_lines(lines, start + 1, end, ctx)
        block = BlockNode(params, body, line=header.number)
        return self.parse_simple(head, ctx, block)

    @staticmethod
    def _strip_do(tokens: List[Token]) -> List[Token]:
        if tokens and tokens[-1].is_kw("do"):
            return tokens[:-1]
        return tokens

    # ----- simple statements -----

    def _expr(self, tokens: List[Token], ctx: ParseContext, where: Optional[SourceLine] = None):
        if not tokens:
            line = where.number if where is not None else 0
            raise RubySyntaxError("expression expected", line=line)
        return ExpressionParser(tokens, ctx, self).parse_statement()

    def _find_modifier(self, tokens: List[Token]) -> Optional[int]:
        found = None
        depth = 0
        for i, tok in enumerate(tokens):
            if tok.kind == "op":
                if tok.value in ("(", "[", "{"):
                    depth += 1
                elif tok.value in (")", "]", "}"):
                    depth -= 1
            elif depth == 0 and i > 0 and tok.is_kw(*MODIFIER_KEYWORDS):
                found = i
        return found

    def parse_simple(self, tokens: List[Token], ctx: ParseContext, block: Optional[BlockNode] = None):
        line = tokens[0].line
        mod = self._find_modifier(tokens)
        if mod is not None:
            return self._parse_modifier(tokens, mod, ctx, block)
        first = tokens[0]
        if first.is_kw("return", "break", "next"):
            if block is not None:
                raise RubySyntaxError(f"unexpected block after '{first.value}'", line=line)
            value = self._value_list(tokens[1:], ctx)
            node_type = {"return": Return, "break": Break, "next": Next}[first.value]
            return node_type(value, line=line)
        if first.is_kw("alias"):
            return self._parse_alias(tokens)
        if first.is_kw("def"):
            return self._parse_endless_def(tokens, ctx)
        if first.is_kw("redo", "retry", "undef"):
            raise RubySyntaxError(f"'{first.value}' is not supported", line=line)
        eq = find_top_level(tokens, lambda t: t.is_op("="))
        if eq is not None and find_top_level(tokens[:eq], lambda t: t.is_op(",")) is not None:
            return self._parse_multi_assign(tokens, eq, ctx)
        if (len(tokens) > 2 and tokens[1].is_op("<<") and tokens[0].kind in ("ident", "ivar", "gvar")
                and (tokens[0].kind != "ident" or tokens[0].value in ctx.locals)
                and find_top_level(tokens[2:], lambda t: t.is_op("<<")) is None):
            target = ExpressionParser(tokens[:1], ctx, self).parse_statement()
            value = self._expr(tokens[2:], ctx)
            if block is not None:
                value = self.attach_block(value, block)
            return Append(target, value, line=line)
        node = ExpressionParser(tokens, ctx, self).parse_statement()
        if block is not None:
            node = self.attach_block(node, block)
        return node

    def _parse_modifier(self, tokens, mod, ctx, block):
        keyword = tokens[mod].value
        left, right = tokens[:mod], tokens[mod + 1:]
        if not right:
            raise RubySyntaxError(f"condition expected after '{keyword}'", line=tokens[mod].line)
        line = tokens[0].line
        inner = self.parse_simple(left, ctx, block)
        cond = self._expr(right, ctx)
        match keyword:
            case "if":
                return If([(cond, [inner])], None, line=line)
            case "unless":
                return If([(UnaryOp("!", cond, line=line), [inner])], None, line=line)
            case "while" | "until":
                return While(cond, [inner], keyword == "until", line=line)
            case "rescue":
                fallback = RescueClause([], None, [cond], line=line)
                if isinstance(inner, (Assign, OpAssign)):
                    inner.value = BeginBlock([inner.value], [fallback], line=line)
                    return inner
                return BeginBlock([inner], [fallback], line=line)
        raise RubySyntaxError(f"unknown modifier '{keyword}'", line=line)

    def _value_list(self, tokens: List[Token], ctx: ParseContext):
        if not tokens:
            return None
        segments = split_top_level(tokens)
        if len(segments) == 1:
            return self._expr(tokens, ctx)
        return ArrayNode([self._splat_or_expr(seg, ctx) for seg in segments], line=tokens[0].line)

    def _splat_or_expr(self, seg: List[Token], ctx: ParseContext):
        if seg and seg[0].is_op("*"):
            return Splat(self._expr(seg[1:], ctx), line=seg[0].line)
        return self._expr(seg, ctx)

    def _parse_multi_assign(self, tokens, eq, ctx):
        line = tokens[0].line
        targets = []
        for seg in split_top_level(tokens[:eq]):
            if not seg:
                continue
            parser = ExpressionParser(seg, ctx, self)
            if seg[0].is_op("*"):
                parser.advance()
                node = Splat(parser.parse_postfix(parser.parse_primary()), line=seg[0].line)
            else:
                node = parser.parse_postfix(parser.parse_primary())
            if not parser.at_end():
                raise RubySyntaxError(f"unexpected {describe(parser.peek())} in assignment", line=line)
            targets.append(parser.as_target(node))
        values = [self._splat_or_expr(seg, ctx) for seg in split_top_level(tokens[eq + 1:])]
        if not values:
            raise RubySyntaxError("value expected after '='", line=line)
        return MultiAssign(targets, values, line=line)

    def _parse_alias(self, tokens):
        names = tokens[1:]
        if len(names) != 2 or any(t.kind not in ("ident", "symbol", "const") for t in names):
            raise RubySyntaxError("expected 'alias NEW OLD'", line=tokens[0].line)
        return Alias(names[0].value, names[1].value, line=tokens[0].line)

    def attach_block(self, node, block: BlockNode):
        """Hands a do-block to the call it belongs to."""
        match node:
            case Call(block=None, block_arg=None):
                node.block = block
                return node
            case Identifier():
                return Call(None, node.name, [], block=block, line=node.line)
            case Super(block=None):
                node.block = block
                return node
            case LambdaNode(body=None):
                node.params = node.params or block.params
                node.body = block.body
                return node
            case Assign() | OpAssign() | Append():
                node.value = self.attach_block(node.value, block)
                return node
            case Output(args=[*_, _]):
                node.args[-1] = self.attach_block(node.args[-1], block)
                return node
            case Return(value=v) | Break(value=v) | Next(value=v) if v is not None:
                node.value = self.attach_block(v, block)
                return node
            case BinaryOp():
                node.right = self.attach_block(node.right, block)
                return node
        raise RubySyntaxError("'do' block given to an expression that takes no block", line=block.line)


def parse_program(source: str) -> List[Any]:
    return Parser().parse(source)
