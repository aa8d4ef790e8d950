"""This is a small helper library to generate LL(1) parser tables.

An LL(1) parser reads its input from left to right, builds a leftmost
derivation, and never needs to look more than one token ahead to decide what
to do next. All of the decisions are made ahead of time and stored in a table
that maps (non-terminal, terminal) to the rule to expand. This module builds
that table; `ll1.runtime` drives it.

## Making Grammars

A grammar is just a list of rules. You can build one a rule at a time:

    grammar = Grammar()
    grammar.add_rule("E", "T", "E'")
    grammar.add_rule("E'", "+", "T", "E'")
    grammar.add_rule("E'")
    grammar.add_rule("T", "F", "T'")
    grammar.add_rule("T'", "*", "F", "T'")
    grammar.add_rule("T'")
    grammar.add_rule("F", "(", "E", ")")
    grammar.add_rule("F", "int")

or, if you prefer the dense form, with a list of productions:

    grammar = Grammar.from_productions([
        ("E", ["T", "E'"]),
        ("E'", ["+", "T", "E'"]),
        ("E'", []),
        ...
    ])

Anything that shows up on the left of a rule is a non-terminal. Everything
else is a terminal. An empty right hand side means the rule matches nothing.
Unless you say otherwise the start symbol is the left side of the first rule.

Then `grammar.build_table()` gives you a `ParseTable`, or raises an error
explaining why it couldn't.

## What this does not do

The grammar you hand in must already be LL(1). There is no left-factoring and
no removal of left recursion; left recursive grammars are rejected with a
GrammarError and grammars that need more than one token of lookahead are
rejected with a ConstructionError that tells you which cells collided.

(The notes this follows are the same Stanford CS143 handouts that everybody
uses, handout 7 in particular, which covers FIRST, FOLLOW and predictive
parsing.)
"""

import dataclasses
import logging
import typing

# The two reserved terminals. #EOS marks the end of the token stream and
# #ERROR is what a tokenizer hands back when it can't make sense of the input.
EOS = "#EOS"
ERROR = "#ERROR"

SENTINELS = (EOS, ERROR)

generator_log = logging.getLogger("ll1.generator")


###############################################################################
# Errors
###############################################################################
class GrammarError(ValueError):
    """The grammar can't be analyzed: it's empty, it's malformed, or one of the
    set computations failed to settle.
    """

    symbols: list[str]

    def __init__(self, message: str, symbols: typing.Iterable[str] = ()):
        super().__init__(message)
        self.symbols = list(symbols)


@dataclasses.dataclass(frozen=True)
class Conflict:
    """Two or more rules that want the same cell of the parse table."""

    non_terminal: str
    terminal: str
    rules: typing.Tuple["Rule", ...]

    def __str__(self):
        lines = [
            f"When expanding '{self.non_terminal}' and seeing '{self.terminal}' we don't know whether to use:"
        ]
        lines.extend(f"- {rule}" for rule in self.rules)
        return "\n".join(lines)


class ConstructionError(ValueError):
    """The grammar is not LL(1): at least one cell of the parse table is
    claimed by more than one rule.
    """

    conflicts: list[Conflict]

    def __init__(self, conflicts: list[Conflict]):
        super().__init__(conflicts)
        self.conflicts = conflicts

    def __str__(self):
        return f"{len(self.conflicts)} conflicts:\n\n" + "\n\n".join(
            str(conflict) for conflict in self.conflicts
        )


###############################################################################
# Grammar model
###############################################################################
@dataclasses.dataclass(frozen=True)
class Rule:
    """A single production, `left -> right[0] right[1] ...`.

    Rules are values: two rules with the same left side and the same symbols on
    the right are the same rule, hash the same, and collapse together in sets.
    An empty right side is an epsilon rule.
    """

    left: str
    right: typing.Tuple[str, ...] = ()

    def __post_init__(self):
        # Any sequence is fine going in; we keep a tuple so we stay hashable.
        object.__setattr__(self, "right", tuple(self.right))

    @property
    def is_epsilon(self) -> bool:
        return len(self.right) == 0

    def __str__(self) -> str:
        return " ".join([self.left, "->", *self.right])


class Grammar:
    """An ordered list of rules plus an optional start symbol.

    Nothing about the grammar is cached: the terminals and non-terminals are
    worked out from the rules every time you ask for them, so adding a rule is
    always safe. Once you hand the grammar to a ParserGenerator you shouldn't
    change it, though; the tables are a snapshot.
    """

    rules: list[Rule]
    name: str
    _start: str | None

    def __init__(
        self,
        rules: typing.Iterable[Rule] | None = None,
        start: str | None = None,
        name: str | None = None,
    ):
        if name is None:
            name = "unknown"

        self.rules = list(rules) if rules is not None else []
        self._start = start
        self.name = name

    @classmethod
    def from_productions(
        cls,
        productions: typing.Iterable[typing.Tuple[str, typing.Sequence[str]]],
        start: str | None = None,
        name: str | None = None,
    ) -> "Grammar":
        """Build a grammar from the dense `[(left, [right, ...]), ...]` form."""
        return cls(
            [Rule(left, tuple(right)) for left, right in productions],
            start=start,
            name=name,
        )

    @property
    def start(self) -> str | None:
        """The start symbol. If nobody set one, it's the left side of the
        first rule, and if there are no rules at all it's None.
        """
        if self._start:
            return self._start
        if len(self.rules) > 0:
            return self.rules[0].left
        return None

    @start.setter
    def start(self, value: str | None):
        self._start = value

    def add_rule(self, left: str, *right: str) -> Rule:
        rule = Rule(left, right)
        self.rules.append(rule)
        return rule

    def rules_for(self, name: str) -> list[Rule]:
        return [rule for rule in self.rules if rule.left == name]

    def non_terminals(self) -> list[str]:
        """The distinct left hand sides, in the order they first appear."""
        # NOTE: dict keeps insertion order, which is the whole point here.
        return list(dict.fromkeys(rule.left for rule in self.rules))

    def terminals(self) -> list[str]:
        """Every right hand symbol that isn't a non-terminal, in the order
        they first appear, followed by #EOS and #ERROR.
        """
        non_terminals = set(self.non_terminals())
        terminals = dict.fromkeys(
            symbol
            for rule in self.rules
            for symbol in rule.right
            if symbol not in non_terminals and symbol not in SENTINELS
        )
        return list(terminals) + list(SENTINELS)

    def symbols(self) -> list[str]:
        return self.non_terminals() + self.terminals()

    def is_non_terminal(self, symbol: str | None) -> bool:
        return any(rule.left == symbol for rule in self.rules)

    def fresh_name(self, base: str) -> str:
        """Make up a name like `base'` that isn't already a symbol in the
        grammar. If `base'` is taken we try `base2'`, `base3'` and so on.
        """
        taken = set(self.symbols())
        candidate = base
        index = 1
        while True:
            name = candidate + "'"
            if name not in taken:
                return name
            index += 1
            candidate = f"{base}{index}"

    def augmented_rule(self) -> Rule:
        """The `S' -> S #EOS` rule that sits in front of the grammar when we
        compute FOLLOW. It is never stored in `rules`.
        """
        start = self.start
        if start is None:
            raise GrammarError("The grammar has no rules")
        return Rule(self.fresh_name(start), (start, EOS))

    def validate(self):
        """Raise GrammarError if this grammar can't be turned into a table."""
        start = self.start
        if start is None:
            raise GrammarError("The grammar has no rules")

        for rule in self.rules:
            if rule.left in SENTINELS:
                raise GrammarError(
                    f"{rule.left} is reserved and cannot be the left side of a rule ({rule})",
                    [rule.left],
                )

        if not self.is_non_terminal(start):
            raise GrammarError(f"The start symbol {start} has no rules", [start])

    def format(self) -> str:
        return "\n".join(str(rule) for rule in self.rules)

    def __str__(self) -> str:
        return self.format()

    def build_table(self, max_iterations: int | None = None) -> "ParseTable":
        """Construct a parse table for this grammar."""
        return ParserGenerator(self, max_iterations=max_iterations).gen_table()


###############################################################################
# PREDICT and FOLLOW
###############################################################################
class Prediction(typing.NamedTuple):
    """One member of a predict set: the rule that gets chosen, and the terminal
    that tells us to choose it. A symbol of None means the rule can match
    nothing at all, and the terminals come from FOLLOW instead.
    """

    rule: Rule | None
    symbol: str | None


# While we're still working, a prediction also remembers where in the rule
# the pending symbol sits, so that a leading non-terminal that can be empty
# lets us move on to the symbol after it.
_Pending = typing.Tuple[Rule | None, str | None, int]


def _leading(rule: Rule, index: int) -> _Pending:
    if index < len(rule.right):
        return (rule, rule.right[index], index)
    return (rule, None, index)


def _sort_key(prediction: Prediction) -> typing.Tuple[str, str]:
    rule, symbol = prediction
    return (str(rule) if rule is not None else "", symbol or "")


@dataclasses.dataclass(frozen=True)
class PredictInfo:
    """The predict sets of a grammar, one per symbol.

    For a terminal t, predicts[t] is just {(None, t)}. For a non-terminal N,
    predicts[N] holds a (rule, terminal) pair for every terminal that can
    start a derivation of N, along with the rule of N that derivation goes
    through. For example, with:

        [
          ('x', ['y', 'A']),
          ('y', ['B']),
          ('y', []),
        ]

    predicts['y'] is {(y -> B, 'B'), (y ->, None)}: the epsilon rule contributes
    a None, because the terminal that selects it is whatever comes after 'y'.

    predicts['x'] is {(x -> y A, 'B'), (x -> y A, 'A')}. Both come from the one
    rule of 'x'; 'B' comes from 'y', and since 'y' can be empty we also look
    at the symbol after it and find 'A'.
    """

    predicts: dict[str, frozenset[Prediction]]

    def __getitem__(self, symbol: str) -> frozenset[Prediction]:
        return self.predicts[symbol]

    def __contains__(self, symbol: str) -> bool:
        return symbol in self.predicts

    def format(self) -> str:
        lines = []
        for symbol, predictions in self.predicts.items():
            parts = [
                f"({rule if rule is not None else '-'}, {s if s is not None else '<empty>'})"
                for rule, s in sorted(predictions, key=_sort_key)
            ]
            lines.append(f"{symbol}: {', '.join(parts)}")
        return "\n".join(lines)

    @classmethod
    def from_grammar(cls, grammar: Grammar, max_iterations: int | None = None) -> "PredictInfo":
        """Compute the predict sets for the grammar.

        This is iteration to a fixed point. Each rule starts out predicting
        its first symbol. Every round we take each prediction that still
        points at a non-terminal M and, if M's own set is fully resolved,
        replace it with M's terminals (keeping *our* rule, not M's). If we
        get through a round without being able to resolve anything, the
        grammar is left recursive and we give up.
        """
        non_terminals = grammar.non_terminals()
        nt_set = set(non_terminals)

        working: dict[str, set[_Pending]] = {}
        for nt in non_terminals:
            working[nt] = set()
        for terminal in grammar.terminals():
            working[terminal] = {(None, terminal, 0)}
        for rule in grammar.rules:
            working[rule.left].add(_leading(rule, 0))

        if max_iterations is None:
            max_iterations = sum(len(rule.right) for rule in grammar.rules) + len(non_terminals) + 2

        def is_resolved(name: str) -> bool:
            return not any(symbol in nt_set for _, symbol, _ in working[name])

        for iteration in range(max_iterations):
            resolved = {name for name in non_terminals if is_resolved(name)}
            pending = [name for name in non_terminals if name not in resolved]
            if len(pending) == 0:
                generator_log.debug("predict sets settled after %d rounds", iteration)
                return cls(
                    predicts={
                        name: frozenset(Prediction(rule, symbol) for rule, symbol, _ in entries)
                        for name, entries in working.items()
                    }
                )

            # Work from the snapshot: nothing we compute this round is visible
            # until the round is over.
            updated: dict[str, set[_Pending]] = {}
            progress = False
            for name in pending:
                entries: set[_Pending] = set()
                for entry in working[name]:
                    rule, symbol, index = entry
                    if symbol is None or symbol not in resolved:
                        entries.add(entry)
                        continue

                    assert rule is not None
                    progress = True
                    for _, first, _ in working[symbol]:
                        if first is None:
                            # The leading symbol can be empty, so whatever
                            # comes after it can lead too.
                            entries.add(_leading(rule, index + 1))
                        else:
                            entries.add((rule, first, index))

                updated[name] = entries

            if not progress:
                raise _predict_cycle(working, pending, nt_set)

            working.update(updated)
            generator_log.debug(
                "predict round %d: %d non-terminals still pending", iteration + 1, len(pending)
            )

        pending = [name for name in non_terminals if not is_resolved(name)]
        raise GrammarError(
            f"Predict sets did not settle within {max_iterations} rounds: {', '.join(pending)}",
            pending,
        )


def _predict_cycle(
    working: dict[str, set[_Pending]],
    pending: list[str],
    nt_set: set[str],
) -> GrammarError:
    stuck = []
    for name in pending:
        for rule, symbol, _ in sorted(working[name], key=lambda e: (str(e[0]), e[1] or "")):
            if symbol in nt_set:
                stuck.append(f"- {rule} (waiting on {symbol})")

    return GrammarError(
        "The predict sets for {names} can never be resolved; the grammar is left recursive:\n{stuck}".format(
            names=", ".join(pending),
            stuck="\n".join(stuck),
        ),
        pending,
    )


def update_changed(items: set[str], other: typing.Iterable[str]) -> bool:
    """Merge the `other` set into the `items` set, and return True if this
    changed the items set.
    """
    old_len = len(items)
    items.update(other)
    return old_len != len(items)


@dataclasses.dataclass(frozen=True)
class FollowInfo:
    """The follow sets of a grammar: for each non-terminal, the terminals that
    can show up right after it.

    We put `S' -> S #EOS` in front of the grammar (S' is a made up name that
    doesn't collide with anything) so that #EOS follows the start symbol.
    Then for every rule we look at each pair of adjacent symbols: if the first
    is a non-terminal, whatever can start the second can follow the first. The
    last symbol of a rule is followed by whatever follows the rule itself.

    That last bit, and the case where the next symbol can be empty, leave us
    with sets that say "and everything in FOLLOW(N) too". Those references get
    flattened out by iterating to a fixed point, so the final sets only ever
    contain terminals.

    Take the expression grammar:

        E  -> T E'
        E' -> + T E'
        E' ->
        ...

    FOLLOW['T'] gets '+' directly from predicts["E'"], and then, because E'
    can be empty, everything in FOLLOW["E'"]; FOLLOW["E'"] is FOLLOW['E'],
    which is ')' and '#EOS'.
    """

    follows: dict[str, frozenset[str]]
    augmented: Rule

    def __getitem__(self, symbol: str) -> frozenset[str]:
        return self.follows[symbol]

    def __contains__(self, symbol: str) -> bool:
        return symbol in self.follows

    def format(self) -> str:
        return "\n".join(
            f"{symbol}: {' '.join(sorted(follows))}" for symbol, follows in self.follows.items()
        )

    @classmethod
    def from_grammar(
        cls,
        grammar: Grammar,
        predicts: PredictInfo,
        max_iterations: int | None = None,
    ) -> "FollowInfo":
        non_terminals = grammar.non_terminals()
        nt_set = set(non_terminals)
        augmented = grammar.augmented_rule()

        # The terminals we know about, and separately the non-terminals whose
        # follow sets we still have to pull in.
        terminals: dict[str, set[str]] = {nt: set() for nt in non_terminals}
        deferred: dict[str, set[str]] = {nt: set() for nt in non_terminals}

        def add(target: str, symbol: str):
            if symbol in nt_set:
                deferred[target].add(symbol)
            else:
                terminals[target].add(symbol)

        for rule in [augmented] + grammar.rules:
            if rule.is_epsilon:
                # Whatever follows the rule follows the rule. True, and useless,
                # but it drops out of the fixed point below.
                add(rule.left, rule.left)
                continue

            for target, follower in zip(rule.right, rule.right[1:]):
                if target not in nt_set:
                    continue

                for origin, symbol in predicts[follower]:
                    if symbol is not None:
                        add(target, symbol)
                    else:
                        assert origin is not None
                        add(target, origin.left)

            last = rule.right[-1]
            if last in nt_set and rule.left in nt_set:
                add(last, rule.left)

        if max_iterations is None:
            max_iterations = len(non_terminals) * (len(grammar.terminals()) + 1) + 2

        # Iteration to a fixed point: every round, each set absorbs the
        # terminals of every set it refers to. Sets only grow, and there are
        # only so many terminals, so this stops.
        for iteration in range(max_iterations):
            changed = False
            for name in non_terminals:
                for reference in deferred[name]:
                    if reference == name:
                        continue
                    changed = update_changed(terminals[name], terminals[reference]) or changed

            if not changed:
                generator_log.debug("follow sets settled after %d rounds", iteration + 1)
                return cls(
                    follows={name: frozenset(terminals[name]) for name in non_terminals},
                    augmented=augmented,
                )

        raise GrammarError(
            f"Follow sets did not settle within {max_iterations} rounds", non_terminals
        )


###############################################################################
# Parse tables
###############################################################################
@dataclasses.dataclass
class ParseTable:
    """The finished LL(1) table: rules[N][t] is the rule to expand when N is
    on top of the stack and t is the next token.
    """

    start: str
    rules: dict[str, dict[str, Rule]]
    terminals: list[str]

    def get(self, non_terminal: str, terminal: str) -> Rule | None:
        row = self.rules.get(non_terminal)
        if row is None:
            return None
        return row.get(terminal)

    def is_non_terminal(self, symbol: str) -> bool:
        return symbol in self.rules

    def expected(self, non_terminal: str) -> list[str]:
        """The terminals that have an entry for the given non-terminal, in
        grammar order.
        """
        row = self.rules.get(non_terminal, {})
        return [terminal for terminal in self.terminals if terminal in row]

    def format(self) -> str:
        """Format a parser table so pretty. Cells hold the index of the rule,
        numbered in the order the rules first appear in the table.
        """
        numbering: dict[Rule, int] = {}
        for row in self.rules.values():
            for terminal in self.terminals:
                rule = row.get(terminal)
                if rule is not None and rule not in numbering:
                    numbering[rule] = len(numbering)

        def format_cell(row: dict[str, Rule], terminal: str) -> str:
            rule = row.get(terminal)
            if rule is None:
                return ""
            return str(numbering[rule])

        width = max([len(nt) for nt in self.rules] + [4])
        header = "{blank} | {terms}".format(
            blank=" " * width,
            terms=" ".join(f"{terminal: <6}" for terminal in self.terminals),
        )

        lines = [header, "-" * len(header)] + [
            "{nt} | {cells}".format(
                nt=f"{nt: <{width}}",
                cells=" ".join(f"{format_cell(row, terminal): <6}" for terminal in self.terminals),
            )
            for nt, row in self.rules.items()
        ]
        lines.append("")
        lines.extend(f"{index}: {rule}" for rule, index in numbering.items())
        return "\n".join(lines)


class TableBuilder(object):
    """A helper object to assemble a parse table. Call `set_rule` for every
    cell, then `flush` to get the table (or the errors).

    Conflicts don't stop us; we keep going so that the error can describe
    every problem with the grammar at once.
    """

    start: str
    terminals: list[str]
    rules: dict[str, dict[str, Rule]]
    conflicts: dict[typing.Tuple[str, str], list[Rule]]

    def __init__(self, start: str, non_terminals: list[str], terminals: list[str]):
        self.start = start
        self.terminals = terminals
        self.rules = {nt: {} for nt in non_terminals}
        self.conflicts = {}

    def set_rule(self, non_terminal: str, terminal: str, rule: Rule):
        """Set the rule for (non_terminal, terminal). Setting the same rule
        twice is fine; setting a different one records a conflict.
        """
        row = self.rules[non_terminal]
        existing = row.get(terminal)
        if existing is None:
            row[terminal] = rule
            return

        if existing == rule:
            return

        key = (non_terminal, terminal)
        competing = self.conflicts.get(key)
        if competing is None:
            competing = [existing]
            self.conflicts[key] = competing
        if rule not in competing:
            competing.append(rule)

    def flush(self) -> ParseTable:
        """Finish building the table and return it.

        Raises ConstructionError if any cell was claimed by more than one rule.
        """
        if len(self.conflicts) > 0:
            raise ConstructionError(
                [
                    Conflict(non_terminal=nt, terminal=terminal, rules=tuple(rules))
                    for (nt, terminal), rules in self.conflicts.items()
                ]
            )

        return ParseTable(start=self.start, rules=self.rules, terminals=self.terminals)


class ParserGenerator:
    """Generate an LL(1) parse table for a grammar.

    All of the work that can fail on a bad grammar happens in the constructor
    (GrammarError) or in `gen_table` (ConstructionError), so nobody ever gets a
    half-built table to parse with.
    """

    grammar: Grammar
    predicts: PredictInfo
    follows: FollowInfo

    def __init__(self, grammar: Grammar, max_iterations: int | None = None):
        grammar.validate()

        self.grammar = grammar
        self.predicts = PredictInfo.from_grammar(grammar, max_iterations=max_iterations)
        self.follows = FollowInfo.from_grammar(
            grammar, self.predicts, max_iterations=max_iterations
        )

    def gen_table(self) -> ParseTable:
        """Turn the predict and follow sets into a parse table.

        A prediction that names a terminal claims that cell directly. A
        prediction of None (the rule can match nothing) claims every terminal
        in FOLLOW of its non-terminal.
        """
        start = self.grammar.start
        assert start is not None

        non_terminals = self.grammar.non_terminals()
        builder = TableBuilder(start, non_terminals, self.grammar.terminals())
        for nt in non_terminals:
            for rule, symbol in sorted(self.predicts[nt], key=_sort_key):
                assert rule is not None
                if symbol is not None:
                    builder.set_rule(nt, symbol, rule)
                else:
                    for follow in sorted(self.follows[nt]):
                        builder.set_rule(nt, follow, rule)

        table = builder.flush()
        generator_log.debug(
            "built table for %s: %d non-terminals, %d cells",
            self.grammar.name,
            len(table.rules),
            sum(len(row) for row in table.rules.values()),
        )
        return table
