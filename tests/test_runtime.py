import logging
import re

import pytest

from hypothesis import given
from hypothesis.strategies import integers, one_of, recursive, tuples

import ll1.runtime as runtime

from ll1 import EOS, ERROR, Grammar
from ll1.runtime import (
    LexicalError,
    NodeKind,
    ParseError,
    Parser,
    Token,
    TokenStream,
)


EXPRESSION_GRAMMAR = Grammar.from_productions(
    [
        ("E", ["T", "E'"]),
        ("E'", ["+", "T", "E'"]),
        ("E'", []),
        ("T", ["F", "T'"]),
        ("T'", ["*", "F", "T'"]),
        ("T'", []),
        ("F", ["(", "E", ")"]),
        ("F", ["int"]),
    ]
)

TABLE = EXPRESSION_GRAMMAR.build_table()

TOKEN = re.compile(r"(?P<int>[0-9]+)|(?P<op>[-+*/()])|(?P<blank>\s+)|(?P<error>.)", re.DOTALL)


def lex(text: str) -> TokenStream:
    """Just enough of a tokenizer to feed the expression grammar."""

    def tokens():
        line, column = 1, 1
        for match in TOKEN.finditer(text):
            kind = match.lastgroup
            value = match.group()
            if kind == "int":
                yield Token("int", value, line, column, match.start())
            elif kind == "op":
                yield Token(value, value, line, column, match.start())
            elif kind == "error":
                yield Token(ERROR, value, line, column, match.start())
            line, column, _ = runtime.advance(line, column, match.start(), value)

    return TokenStream(tokens())


def leaves(node: runtime.ParseNode) -> list[str]:
    return [n.value for n in node.fill_descendants_and_self() if n.value is not None]


def test_parse_expression():
    tree, errors = Parser(TABLE).parse(lex("(3+3)*(3*7)"))

    assert errors == []
    assert tree is not None
    assert leaves(tree) == ["(", "3", "+", "3", ")", "*", "(", "3", "*", "7", ")"]

    # E -> T E', and the trailing E' is empty: there's no '+' at the top.
    assert tree.symbol == "E"
    assert [c.symbol for c in tree.children] == ["T", "E'"]
    assert tree.children[1].children == []

    # The '*' joins the two parenthesized groups.
    term = tree.children[0]
    left, rest = term.children
    assert left.symbol == "F"
    assert [c.symbol for c in rest.children] == ["*", "F", "T'"]
    right = rest.children[1]

    # The left group is a sum...
    assert [c.symbol for c in left.children] == ["(", "E", ")"]
    left_sum = left.children[1].children[1]
    assert left_sum.symbol == "E'"
    assert left_sum.children[0].value == "+"

    # ...and the right group is a product.
    assert [c.symbol for c in right.children] == ["(", "E", ")"]
    right_term = right.children[1].children[0]
    assert right_term.children[1].children[0].value == "*"
    assert right.children[1].children[1].children == []


def test_format_tree():
    tree, errors = Parser(TABLE).parse(lex("1+2"))
    assert errors == []
    assert tree is not None
    assert (
        tree.format()
        == """
+- E
   +- T
   |  +- F
   |  |  +- int 1
   |  +- T'
   +- E'
      +- + +
      +- T
      |  +- F
      |  |  +- int 2
      |  +- T'
      +- E'
""".strip("\n")
    )


def test_events():
    events = [event.key() for event in Parser(TABLE).events(lex("1+2"))]
    assert events == [
        (NodeKind.ENTER_NON_TERMINAL, "E", None),
        (NodeKind.ENTER_NON_TERMINAL, "T", None),
        (NodeKind.ENTER_NON_TERMINAL, "F", None),
        (NodeKind.TERMINAL, "int", "1"),
        (NodeKind.EMPTY_NON_TERMINAL, "T'", None),
        (NodeKind.ENTER_NON_TERMINAL, "E'", None),
        (NodeKind.TERMINAL, "+", "+"),
        (NodeKind.ENTER_NON_TERMINAL, "T", None),
        (NodeKind.ENTER_NON_TERMINAL, "F", None),
        (NodeKind.TERMINAL, "int", "2"),
        (NodeKind.EMPTY_NON_TERMINAL, "T'", None),
        (NodeKind.EMPTY_NON_TERMINAL, "E'", None),
    ]


def test_cursor_reads_one_step_at_a_time():
    cursor = Parser(TABLE).cursor(lex("12 * 3"))
    assert cursor.node_kind is None
    assert cursor.stack == ["E"]

    assert cursor.read()
    assert cursor.node_kind == NodeKind.ENTER_NON_TERMINAL
    assert cursor.symbol == "E"
    assert cursor.rule == EXPRESSION_GRAMMAR.rules[0]
    assert cursor.stack == ["E'", "T"]

    assert cursor.read()  # T
    assert cursor.read()  # F
    assert cursor.read()
    assert cursor.node_kind == NodeKind.TERMINAL
    assert (cursor.symbol, cursor.value) == ("int", "12")
    assert (cursor.line, cursor.column, cursor.position) == (1, 1, 0)
    assert cursor.lookahead.symbol == "*"

    assert cursor.read()  # T' -> * F T'
    assert cursor.read()
    assert (cursor.symbol, cursor.value) == ("*", "*")
    assert (cursor.line, cursor.column, cursor.position) == (1, 4, 3)

    remaining = [event.key() for event in cursor]
    assert remaining == [
        (NodeKind.ENTER_NON_TERMINAL, "F", None),
        (NodeKind.TERMINAL, "int", "3"),
        (NodeKind.EMPTY_NON_TERMINAL, "T'", None),
        (NodeKind.EMPTY_NON_TERMINAL, "E'", None),
    ]
    assert cursor.done
    assert not cursor.read()
    assert not cursor.read()


def test_empty_nodes_take_their_place():
    tree, errors = Parser(TABLE).parse(TokenStream.from_pairs([("int", "1"), ("+", "+"), ("int", "2")]))
    assert errors == []
    assert tree is not None
    assert (tree.position, tree.length) == (0, 3)

    term, sum_ = tree.children
    assert (term.position, term.length) == (0, 1)

    # The empty T' sits right after the '1'.
    empty = term.children[1]
    assert empty.children == []
    assert (empty.line, empty.column, empty.position, empty.length) == (1, 2, 1, 0)

    assert (sum_.position, sum_.length) == (1, 2)
    assert (sum_.children[2].position, sum_.children[2].length) == (3, 0)


def test_only_empty_rules():
    grammar = Grammar.from_productions(
        [
            ("S", ["A", "B"]),
            ("A", []),
            ("B", []),
        ]
    )
    tree, errors = runtime.parse(grammar.build_table(), [])
    assert errors == []
    assert tree is not None
    assert [n.key() for n in tree.fill_descendants_and_self()] == [
        (NodeKind.ENTER_NON_TERMINAL, "S", None),
        (NodeKind.EMPTY_NON_TERMINAL, "A", None),
        (NodeKind.EMPTY_NON_TERMINAL, "B", None),
    ]
    assert (tree.position, tree.length) == (0, 0)


def test_nullable_prefix():
    grammar = Grammar.from_productions(
        [
            ("S", ["A", "b"]),
            ("A", ["a"]),
            ("A", []),
        ]
    )
    table = grammar.build_table()

    tree, errors = runtime.parse(table, TokenStream.from_pairs([("b", "b")]))
    assert errors == []
    assert tree is not None
    assert tree.format() == "+- S\n   +- A\n   +- b b"

    tree, errors = runtime.parse(table, TokenStream.from_pairs([("a", "a"), ("b", "b")]))
    assert errors == []
    assert tree is not None
    assert leaves(tree) == ["a", "b"]


def test_missing_terminal():
    tree, errors = Parser(TABLE).parse(lex("(1"))

    [error] = errors
    assert isinstance(error, ParseError)
    assert error.symbol == ")"
    assert error.expected == (")",)
    assert error.actual == EOS
    assert (error.line, error.column, error.position) == (1, 3, 2)
    assert str(error) == "1:3: Syntax Error: Expected ) but found end of file"

    # We still get everything up to the error.
    assert tree is not None
    assert tree.symbol == "E"
    assert leaves(tree) == ["(", "1"]


def test_unexpected_token():
    tree, errors = Parser(TABLE).parse(lex("+"))

    [error] = errors
    assert error.symbol == "E"
    assert error.expected == ("(", "int")
    assert error.actual == "+"
    assert "while parsing E" in str(error)
    assert tree is None


def test_unknown_terminal():
    _, errors = Parser(TABLE).parse(lex("1 - 2"))

    [error] = errors
    assert error.symbol == "T'"
    assert error.expected == ("+", "*", ")", EOS)
    assert error.actual == "-"
    assert error.column == 3


def test_lexical_error():
    tree, errors = Parser(TABLE).parse(lex("1 ? 2"))

    [error] = errors
    assert isinstance(error, LexicalError)
    assert isinstance(error, ParseError)
    assert error.actual == ERROR
    assert error.token.value == "?"
    assert error.position == 2
    assert tree is not None
    assert leaves(tree) == ["1"]


def test_trailing_input():
    table = Grammar.from_productions([("S", ["a"])]).build_table()
    tree, errors = runtime.parse(table, TokenStream.from_pairs([("a", "a"), ("b", "b")]))

    [error] = errors
    assert error.expected == (EOS,)
    assert error.actual == "b"
    assert tree is not None
    assert leaves(tree) == ["a"]


def test_failed_step_changes_nothing():
    cursor = Parser(TABLE).cursor(lex("(1"))
    events = []
    with pytest.raises(ParseError):
        while cursor.read():
            events.append(cursor.event)

    stack = cursor.stack
    lookahead = cursor.lookahead
    event = cursor.event
    assert stack[-1] == ")"

    with pytest.raises(ParseError):
        cursor.read()

    assert cursor.stack == stack
    assert cursor.lookahead == lookahead
    assert cursor.event == event == events[-1]


def test_start_symbol_override():
    tree, errors = Parser(TABLE).parse(lex("2*3"), start="T")
    assert errors == []
    assert tree is not None
    assert tree.symbol == "T"
    assert leaves(tree) == ["2", "*", "3"]


def test_start_must_be_non_terminal():
    with pytest.raises(ValueError):
        Parser(TABLE).cursor(lex("1"), start="int")


def test_parsers_share_tables():
    parser = Parser(TABLE)
    first = parser.cursor(lex("1+2"))
    second = parser.cursor(lex("(3)"))

    # Interleave the two; neither notices the other.
    first_events = []
    second_events = []
    while not (first.done and second.done):
        if first.read():
            first_events.append(first.event.key())
        if second.read():
            second_events.append(second.event.key())

    assert first_events == [e.key() for e in parser.events(lex("1+2"))]
    assert second_events == [e.key() for e in parser.events(lex("(3)"))]


def test_token_stream_repeats_eos():
    stream = TokenStream.from_pairs([("a", "a"), ("b", "bb")])
    assert [t.symbol for t in stream] == ["a", "b", EOS]

    eos = stream.next_token()
    assert eos == Token(EOS, "", 1, 4, 3)
    assert stream.next_token() is eos
    assert stream.next_token() is eos


def test_token_stream_stops_at_eos():
    stream = TokenStream(
        [
            Token("a", "a"),
            Token(EOS, "", 1, 2, 1),
            Token("b", "b", 1, 2, 1),
        ]
    )
    assert [t.symbol for t in stream] == ["a", EOS]
    assert stream.next_token().symbol == EOS


def test_token_stream_lines():
    stream = TokenStream.from_pairs([("a", "x\nyy"), ("b", "b")])
    first = stream.next_token()
    second = stream.next_token()
    assert (first.line, first.column, first.position) == (1, 1, 0)
    assert (second.line, second.column, second.position) == (2, 3, 4)


def test_fill_descendants_appends():
    tree, _ = Parser(TABLE).parse(lex("7"))
    assert tree is not None

    result = [tree]
    tree.fill_descendants_and_self(result)
    assert result[0] is tree
    assert result[1] is tree
    assert [n.symbol for n in result[1:]] == ["E", "T", "F", "int", "T'", "E'"]


def test_action_log(caplog):
    with caplog.at_level(logging.INFO, logger="ll1.action"):
        Parser(TABLE).parse(lex("1"))

    records = [r for r in caplog.records if r.name == "ll1.action"]
    assert len(records) == 6
    assert "EnterNonTerminal E" in records[0].getMessage()


###############################################################################
# Properties
###############################################################################
def _binary(op):
    return lambda pair: pair[0] + [(op, op)] + pair[1]


expressions = recursive(
    integers(min_value=0, max_value=999).map(lambda n: [("int", str(n))]),
    lambda children: one_of(
        tuples(children, children).map(_binary("+")),
        tuples(children, children).map(_binary("*")),
        children.map(lambda inner: [("(", "(")] + inner + [(")", ")")]),
    ),
    max_leaves=12,
)


@given(expressions)
def test_events_match_tree(pairs):
    parser = Parser(TABLE)
    events = [event.key() for event in parser.events(TokenStream.from_pairs(pairs))]

    tree, errors = parser.parse(TokenStream.from_pairs(pairs))
    assert errors == []
    assert tree is not None
    assert [node.key() for node in tree.fill_descendants_and_self()] == events


@given(expressions)
def test_spans_nest(pairs):
    tree, errors = Parser(TABLE).parse(TokenStream.from_pairs(pairs))
    assert errors == []
    assert tree is not None
    assert tree.position == 0
    assert tree.length == sum(len(text) for _, text in pairs)

    for node in tree.fill_descendants_and_self():
        for child in node.children:
            assert node.position <= child.position
            assert child.position + child.length <= node.position + node.length
