"""Generate LL(1) parse tables and parse with them.

See `ll1.parser` for building tables and `ll1.runtime` for using them.
"""

from . import parser
from . import runtime

from .parser import (
    EOS,
    ERROR,
    SENTINELS,
    Conflict,
    ConstructionError,
    FollowInfo,
    Grammar,
    GrammarError,
    ParserGenerator,
    ParseTable,
    PredictInfo,
    Prediction,
    Rule,
    TableBuilder,
)
from .runtime import (
    LexicalError,
    NodeKind,
    ParseCursor,
    ParseError,
    ParseEvent,
    ParseNode,
    Parser,
    Token,
    TokenSource,
    TokenStream,
    TreeBuilder,
)
