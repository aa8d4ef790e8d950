import enum
import logging
import typing
from dataclasses import dataclass, field

from . import parser


@dataclass(frozen=True)
class Token:
    """A terminal as it comes out of a tokenizer. Lines and columns count from
    1; position is the 0-based character offset of the first character.
    """

    symbol: str
    value: str
    line: int = 1
    column: int = 1
    position: int = 0


class TokenSource(typing.Protocol):
    def next_token(self) -> Token:
        """Pull the next token. After a token with the symbol #EOS has come
        out, every further call returns that same token again.

        Input that can't be tokenized comes out as a token with the symbol
        #ERROR.
        """
        ...


def advance(line: int, column: int, position: int, text: str) -> typing.Tuple[int, int, int]:
    """Where you end up after reading `text` from (line, column, position)."""
    newlines = text.count("\n")
    if newlines == 0:
        return (line, column + len(text), position + len(text))
    return (line + newlines, len(text) - text.rfind("\n"), position + len(text))


class TokenStream:
    """A TokenSource over any iterable of tokens.

    The iterable doesn't need to end with #EOS; when it runs out we make one
    up, sitting just past the last token. Either way, once we've handed out
    #EOS we keep handing out the same one.
    """

    _tokens: typing.Iterator[Token]
    _eos: Token | None
    _end: typing.Tuple[int, int, int]

    def __init__(self, tokens: typing.Iterable[Token]):
        self._tokens = iter(tokens)
        self._eos = None
        self._end = (1, 1, 0)

    @classmethod
    def from_pairs(cls, pairs: typing.Iterable[typing.Tuple[str, str]]) -> "TokenStream":
        """Make a stream from (symbol, text) pairs, laid end to end starting
        at line 1, column 1.
        """

        def tokens():
            line, column, position = 1, 1, 0
            for symbol, text in pairs:
                yield Token(symbol, text, line, column, position)
                line, column, position = advance(line, column, position, text)

        return cls(tokens())

    def next_token(self) -> Token:
        if self._eos is not None:
            return self._eos

        token = next(self._tokens, None)
        if token is None:
            line, column, position = self._end
            token = Token(parser.EOS, "", line, column, position)

        if token.symbol == parser.EOS:
            self._eos = token
        else:
            self._end = advance(token.line, token.column, token.position, token.value)
        return token

    def __iter__(self) -> typing.Iterator[Token]:
        """All the tokens up to and including #EOS."""
        while True:
            token = self.next_token()
            yield token
            if token.symbol == parser.EOS:
                return


class NodeKind(enum.Enum):
    ENTER_NON_TERMINAL = "EnterNonTerminal"
    EMPTY_NON_TERMINAL = "EmptyNonTerminal"
    TERMINAL = "Terminal"


@dataclass(frozen=True)
class ParseEvent:
    """One step of the parse: we expanded a non-terminal (which might have
    matched nothing) or we matched a terminal.
    """

    kind: NodeKind
    symbol: str
    value: str | None
    line: int
    column: int
    position: int
    rule: parser.Rule | None = None

    def key(self) -> typing.Tuple[NodeKind, str, str | None]:
        return (self.kind, self.symbol, self.value)


class ParseError(Exception):
    """The input doesn't match the grammar.

    `symbol` is what was on top of the stack, `expected` are the terminals
    that would have been fine there, and `token` is what we got instead.
    """

    message: str
    symbol: str
    expected: typing.Tuple[str, ...]
    token: Token

    def __init__(
        self,
        message: str,
        *,
        symbol: str,
        expected: typing.Iterable[str],
        token: Token,
    ):
        super().__init__(message)
        self.message = message
        self.symbol = symbol
        self.expected = tuple(expected)
        self.token = token

    @property
    def actual(self) -> str:
        return self.token.symbol

    @property
    def line(self) -> int:
        return self.token.line

    @property
    def column(self) -> int:
        return self.token.column

    @property
    def position(self) -> int:
        return self.token.position

    def __str__(self) -> str:
        return f"{self.line}:{self.column}: {self.message}"


class LexicalError(ParseError):
    """A ParseError where the offending token is the tokenizer's #ERROR."""


def _describe(token: Token) -> str:
    if token.symbol == parser.EOS:
        return "end of file"
    if token.symbol == parser.ERROR:
        return f"unrecognized input '{token.value}'"
    if token.value and token.value != token.symbol:
        return f"{token.symbol} '{token.value}'"
    return token.symbol


action_log = logging.getLogger("ll1.action")


class ParseCursor:
    """Drive a parse table over a token source, one step at a time.

    This is the table-driven pushdown automaton: a stack of symbols we still
    have to match, starting with just the start symbol, and one token of
    lookahead. Each call to `read` does exactly one thing:

    - If the top of the stack is a terminal, it has to be the lookahead. We
      match it, pop it, and pull the next token.
    - If the top is a non-terminal, the table tells us which rule to use for
      the lookahead. We pop the non-terminal and push the rule's symbols
      backwards, so the first one ends up on top. An epsilon rule pushes
      nothing.

    After each successful `read` the step is available as `event` (and the
    shortcut properties). A step that fails raises ParseError without
    changing anything.
    """

    table: parser.ParseTable
    start: str

    _tokens: TokenSource
    _stack: list[str]
    _lookahead: Token
    _last_end: typing.Tuple[int, int, int]
    _event: ParseEvent | None

    def __init__(self, table: parser.ParseTable, tokens: TokenSource, start: str | None = None):
        if start is None:
            start = table.start
        if not table.is_non_terminal(start):
            raise ValueError(f"{start} is not a non-terminal in this table")

        self.table = table
        self.start = start
        self._tokens = tokens
        self._stack = [start]
        self._lookahead = tokens.next_token()
        # Until we consume something, empty non-terminals sit at the front of
        # the first token.
        self._last_end = (self._lookahead.line, self._lookahead.column, self._lookahead.position)
        self._event = None

    @property
    def done(self) -> bool:
        return len(self._stack) == 0

    @property
    def lookahead(self) -> Token:
        return self._lookahead

    @property
    def stack(self) -> list[str]:
        """The pending symbols, top of the stack last."""
        return list(self._stack)

    @property
    def event(self) -> ParseEvent | None:
        return self._event

    @property
    def node_kind(self) -> NodeKind | None:
        return self._event.kind if self._event is not None else None

    @property
    def symbol(self) -> str | None:
        return self._event.symbol if self._event is not None else None

    @property
    def value(self) -> str | None:
        return self._event.value if self._event is not None else None

    @property
    def line(self) -> int:
        return self._event.line if self._event is not None else 0

    @property
    def column(self) -> int:
        return self._event.column if self._event is not None else 0

    @property
    def position(self) -> int:
        return self._event.position if self._event is not None else 0

    @property
    def rule(self) -> parser.Rule | None:
        return self._event.rule if self._event is not None else None

    def _error(self, message: str, symbol: str, expected: typing.Iterable[str]) -> ParseError:
        token = self._lookahead
        error_type = LexicalError if token.symbol == parser.ERROR else ParseError
        return error_type(
            "Syntax Error: " + message,
            symbol=symbol,
            expected=expected,
            token=token,
        )

    def read(self) -> bool:
        """Take one step. Returns False once the parse is complete."""
        token = self._lookahead
        if len(self._stack) == 0:
            if token.symbol != parser.EOS:
                raise self._error(
                    f"Expected end of file but found {_describe(token)}",
                    parser.EOS,
                    [parser.EOS],
                )
            self._event = None
            return False

        top = self._stack[-1]
        if not self.table.is_non_terminal(top):
            if top != token.symbol:
                raise self._error(f"Expected {top} but found {_describe(token)}", top, [top])

            event = ParseEvent(
                kind=NodeKind.TERMINAL,
                symbol=top,
                value=token.value,
                line=token.line,
                column=token.column,
                position=token.position,
            )
            next_token = self._tokens.next_token()

            self._last_end = advance(token.line, token.column, token.position, token.value)
            self._lookahead = next_token
            self._stack.pop()

        else:
            rule = self.table.get(top, token.symbol)
            if rule is None:
                expected = self.table.expected(top)
                raise self._error(
                    "Unexpected {actual} while parsing {top}, expected one of: {expected}".format(
                        actual=_describe(token),
                        top=top,
                        expected=", ".join(expected),
                    ),
                    top,
                    expected,
                )

            self._stack.pop()
            if rule.is_epsilon:
                line, column, position = self._last_end
                event = ParseEvent(
                    kind=NodeKind.EMPTY_NON_TERMINAL,
                    symbol=top,
                    value=None,
                    line=line,
                    column=column,
                    position=position,
                    rule=rule,
                )
            else:
                event = ParseEvent(
                    kind=NodeKind.ENTER_NON_TERMINAL,
                    symbol=top,
                    value=None,
                    line=token.line,
                    column=token.column,
                    position=token.position,
                    rule=rule,
                )
                self._stack.extend(reversed(rule.right))

        al = action_log
        if al.isEnabledFor(logging.INFO):
            al.info(
                "{stack: <30} {input: <15} {kind} {symbol}".format(
                    stack=" ".join(self._stack[-5:]),
                    input=token.symbol,
                    kind=event.kind.value,
                    symbol=event.symbol,
                )
            )

        self._event = event
        return True

    def __iter__(self) -> typing.Iterator[ParseEvent]:
        while self.read():
            assert self._event is not None
            yield self._event


@dataclass
class ParseNode:
    """A node in the parse tree.

    A node with a value is a terminal and has no children. A node without one
    is a non-terminal; its location comes from its first child and its length
    runs to the end of its last child. A non-terminal that matched nothing
    has no children, sits where the parser was when it matched, and has a
    length of zero.
    """

    symbol: str
    value: str | None = None
    children: list["ParseNode"] = field(default_factory=list)
    _line: int = field(default=0, repr=False)
    _column: int = field(default=0, repr=False)
    _position: int = field(default=0, repr=False)

    @classmethod
    def from_event(cls, event: ParseEvent) -> "ParseNode":
        return cls(
            symbol=event.symbol,
            value=event.value,
            _line=event.line,
            _column=event.column,
            _position=event.position,
        )

    def set_location(self, line: int, column: int, position: int):
        self._line = line
        self._column = column
        self._position = position

    @property
    def kind(self) -> NodeKind:
        if self.value is not None:
            return NodeKind.TERMINAL
        if len(self.children) > 0:
            return NodeKind.ENTER_NON_TERMINAL
        return NodeKind.EMPTY_NON_TERMINAL

    def key(self) -> typing.Tuple[NodeKind, str, str | None]:
        return (self.kind, self.symbol, self.value)

    @property
    def line(self) -> int:
        if self.value is None and len(self.children) > 0:
            return self.children[0].line
        return self._line

    @property
    def column(self) -> int:
        if self.value is None and len(self.children) > 0:
            return self.children[0].column
        return self._column

    @property
    def position(self) -> int:
        if self.value is None and len(self.children) > 0:
            return self.children[0].position
        return self._position

    @property
    def length(self) -> int:
        if self.value is not None:
            return len(self.value)
        if len(self.children) == 0:
            return 0
        last = self.children[-1]
        return (last.position - self.position) + last.length

    def fill_descendants_and_self(self, result: list["ParseNode"] | None = None) -> list["ParseNode"]:
        """This node, then each child's descendants-and-self in order. (That
        is, a pre-order walk.)
        """
        if result is None:
            result = []
        result.append(self)
        for child in self.children:
            child.fill_descendants_and_self(result)
        return result

    def format_lines(self) -> list[str]:
        lines = []

        def format_node(node: ParseNode, indent: str, more: bool):
            value = node.value if node.value is not None else ""
            lines.append(f"{indent}+- {node.symbol} {value}".rstrip())

            child_indent = indent + ("|  " if more else "   ")
            for index, child in enumerate(node.children):
                format_node(child, child_indent, index < len(node.children) - 1)

        format_node(self, "", False)
        return lines

    def format(self) -> str:
        return "\n".join(self.format_lines())

    def __str__(self) -> str:
        return self.format()


class TreeBuilder:
    """Assemble ParseEvents into a tree.

    Each event becomes a node and is attached to the innermost non-terminal
    that still has children coming. Because every entered non-terminal knows
    its rule, we know exactly how many children that is.
    """

    root: ParseNode | None
    _open: list[typing.Tuple[ParseNode, list[int]]]

    def __init__(self):
        self.root = None
        self._open = []

    def add(self, event: ParseEvent) -> ParseNode:
        node = ParseNode.from_event(event)
        if len(self._open) == 0:
            if self.root is not None:
                raise ValueError("The tree is already complete")
            self.root = node
        else:
            parent, remaining = self._open[-1]
            parent.children.append(node)
            remaining[0] -= 1
            if remaining[0] == 0:
                self._open.pop()

        if event.kind == NodeKind.ENTER_NON_TERMINAL:
            assert event.rule is not None
            self._open.append((node, [len(event.rule.right)]))

        return node


class Parser:
    """Parse token streams with a parse table.

    The parser itself holds nothing but the table, so one of these can be
    shared by as many parses as you like; each parse gets its own cursor.
    """

    table: parser.ParseTable

    def __init__(self, table: parser.ParseTable):
        self.table = table

    def cursor(self, tokens: TokenSource, start: str | None = None) -> ParseCursor:
        return ParseCursor(self.table, tokens, start)

    def events(self, tokens: TokenSource, start: str | None = None) -> typing.Iterator[ParseEvent]:
        """The parse as a stream of events. Raises ParseError when the input
        stops making sense.
        """
        return iter(self.cursor(tokens, start))

    def parse(
        self, tokens: TokenSource, start: str | None = None
    ) -> typing.Tuple[ParseNode | None, list[ParseError]]:
        """Parse a token stream into a tree, returning both the root of the
        tree (if any could be made) and the errors that were encountered.

        There is no error recovery: the first error ends the parse, and the
        tree is whatever we had built by then.
        """
        builder = TreeBuilder()
        errors: list[ParseError] = []
        try:
            for event in self.cursor(tokens, start):
                builder.add(event)
        except ParseError as e:
            errors.append(e)

        return (builder.root, errors)


def parse(
    table: parser.ParseTable,
    tokens: TokenSource | typing.Iterable[Token],
    start: str | None = None,
) -> typing.Tuple[ParseNode | None, list[ParseError]]:
    """Parse the tokens with the given table."""
    if not hasattr(tokens, "next_token"):
        tokens = TokenStream(typing.cast(typing.Iterable[Token], tokens))
    return Parser(table).parse(typing.cast(TokenSource, tokens), start)
