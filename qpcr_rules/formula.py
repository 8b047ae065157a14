"""Formula engine: positive-call and concentration formulas.

Formulas are parsed once into a small typed expression tree and evaluated
against the Ct values of a single well. Grammar, loosest binding first:

    or          and ( ("||" | "or") and )*
    and         not ( ("&&" | "and") not )*
    not         ("!" | "not") not | comparison
    comparison  additive ( ("<" | "<=" | ">" | ">=" | "==" | "=" | "!=" | "<>") additive )?
    additive    term ( ("+" | "-") term )*
    term        unary ( ("*" | "/" | "%") unary )*
    unary       ("-" | "+") unary | power
    power       primary ( "^" unary )?
    primary     number | {Channel} | [Channel] | CT | E | PI | true | false
                | name "(" args ")" | "(" or ")"

``a^b`` becomes a ``pow(a, b)`` call node at parse time. ``{CT}`` refers
to the evaluated channel of the evaluated well.
"""

import logging
import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from qpcr_rules.constants import (
    NEGATIVE_KEYWORDS,
    NOT_APPLICABLE_KEYWORDS,
    POSITIVE_KEYWORDS,
    AnalysisConstants,
)
from qpcr_rules.exceptions import FormulaError
from qpcr_rules.well_index import WellDataIndex

logger = logging.getLogger(__name__)

OWN_CHANNEL = "CT"


# ==================== AST ====================
@dataclass(frozen=True)
class Number:
    value: float


@dataclass(frozen=True)
class Boolean:
    value: bool


@dataclass(frozen=True)
class ChannelRef:
    name: str


@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Node", ...]


Node = Union[Number, Boolean, ChannelRef, Unary, Binary, Call]


@dataclass(frozen=True)
class Formula:
    text: str
    root: Node
    references: FrozenSet[str]


_FUNCTIONS = {
    "abs": (1, abs),
    "pow": (2, math.pow),
    "power": (2, math.pow),
    "exp": (1, math.exp),
    "ln": (1, math.log),
    "log": (1, math.log),
    "log10": (1, math.log10),
}

_CONSTANTS = {
    "e": Number(math.e),
    "pi": Number(math.pi),
    "true": Boolean(True),
    "false": Boolean(False),
}

_COMPARISONS = {"<", "<=", ">", ">=", "==", "=", "!=", "<>"}


# ==================== TOKENIZER ====================
_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<ref>\{[^{}]*\}|\[[^\[\]]*\])
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op>&&|\|\||<=|>=|==|!=|<>|[-+*/%^(),<>=!])
    """,
    re.VERBOSE,
)


def tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise FormulaError(f"Unexpected character {text[pos]!r} at {pos}", text)
        kind = match.lastgroup
        if kind != "ws":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


# ==================== PARSER ====================
class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0
        self.references = set()

    def parse(self) -> Node:
        if not self.tokens:
            raise FormulaError("Empty formula", self.text)
        node = self._or()
        if self.pos < len(self.tokens):
            raise FormulaError(f"Unexpected token {self.tokens[self.pos][1]!r}", self.text)
        return node

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _accept(self, *values) -> Optional[str]:
        token = self._peek()
        if token is None:
            return None
        kind, value = token
        key = value.lower() if kind == "name" else value
        if kind in ("op", "name") and key in values:
            self.pos += 1
            return key
        return None

    def _expect(self, value: str) -> None:
        if self._accept(value) is None:
            raise FormulaError(f"Expected {value!r}", self.text)

    def _or(self) -> Node:
        node = self._and()
        while self._accept("||", "or"):
            node = Binary("or", node, self._and())
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._accept("&&", "and"):
            node = Binary("and", node, self._not())
        return node

    def _not(self) -> Node:
        if self._accept("!", "not"):
            return Unary("not", self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        node = self._additive()
        op = self._accept(*_COMPARISONS)
        if op is None:
            return node
        op = {"=": "==", "<>": "!="}.get(op, op)
        node = Binary(op, node, self._additive())
        if self._accept(*_COMPARISONS):
            raise FormulaError("Chained comparisons are not supported", self.text)
        return node

    def _additive(self) -> Node:
        node = self._term()
        while True:
            op = self._accept("+", "-")
            if op is None:
                return node
            node = Binary(op, node, self._term())

    def _term(self) -> Node:
        node = self._unary()
        while True:
            op = self._accept("*", "/", "%")
            if op is None:
                return node
            node = Binary(op, node, self._unary())

    def _unary(self) -> Node:
        op = self._accept("-", "+")
        if op is not None:
            return Unary(op, self._unary())
        return self._power()

    def _power(self) -> Node:
        base = self._primary()
        if self._accept("^"):
            return Call("pow", (base, self._unary()))
        return base

    def _primary(self) -> Node:
        token = self._peek()
        if token is None:
            raise FormulaError("Unexpected end of formula", self.text)
        kind, value = token
        if kind == "number":
            self.pos += 1
            return Number(float(value))
        if kind == "ref":
            self.pos += 1
            name = value[1:-1].strip()
            if not name:
                raise FormulaError("Empty channel reference", self.text)
            return self._reference(name)
        if kind == "name":
            self.pos += 1
            key = value.lower()
            if self._accept("("):
                return self._call(key)
            if key == OWN_CHANNEL.lower():
                return self._reference(OWN_CHANNEL)
            if key in _CONSTANTS:
                return _CONSTANTS[key]
            raise FormulaError(f"Unknown name {value!r}", self.text)
        if self._accept("("):
            node = self._or()
            self._expect(")")
            return node
        raise FormulaError(f"Unexpected token {value!r}", self.text)

    def _reference(self, name: str) -> ChannelRef:
        ref = ChannelRef(name.upper())
        self.references.add(ref.name)
        return ref

    def _call(self, name: str) -> Call:
        if name not in _FUNCTIONS:
            raise FormulaError(f"Unknown function {name!r}", self.text)
        args = []
        if not self._accept(")"):
            args.append(self._or())
            while self._accept(","):
                args.append(self._or())
            self._expect(")")
        arity = _FUNCTIONS[name][0]
        if len(args) != arity:
            raise FormulaError(f"{name}() takes {arity} argument(s), got {len(args)}", self.text)
        return Call(name, tuple(args))


@lru_cache(maxsize=AnalysisConstants.FORMULA_CACHE_SIZE)
def parse_formula(text: str) -> Formula:
    """Parse formula text into a Formula; raises FormulaError."""
    parser = _Parser(text)
    root = parser.parse()
    return Formula(text, root, frozenset(parser.references))


# ==================== EVALUATION ====================
def _number(value, formula: str) -> float:
    if isinstance(value, bool):
        raise FormulaError("Arithmetic on a boolean value", formula)
    return value


def _truth(value) -> bool:
    return value if isinstance(value, bool) else value != 0


def evaluate(node: Node, values: Dict[str, float], formula: str = ""):
    """Evaluate a tree; ``values`` must cover every referenced channel."""
    if isinstance(node, (Number, Boolean)):
        return node.value
    if isinstance(node, ChannelRef):
        return values[node.name]
    if isinstance(node, Unary):
        operand = evaluate(node.operand, values, formula)
        if node.op == "not":
            return not _truth(operand)
        operand = _number(operand, formula)
        return -operand if node.op == "-" else operand
    if isinstance(node, Call):
        fn = _FUNCTIONS[node.name][1]
        args = [_number(evaluate(arg, values, formula), formula) for arg in node.args]
        try:
            return float(fn(*args))
        except (ArithmeticError, ValueError) as e:
            raise FormulaError(f"{node.name}() failed: {e}", formula) from e

    op = node.op
    left = evaluate(node.left, values, formula)
    if op == "and":
        return _truth(left) and _truth(evaluate(node.right, values, formula))
    if op == "or":
        return _truth(left) or _truth(evaluate(node.right, values, formula))
    right = evaluate(node.right, values, formula)
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    left, right = _number(left, formula), _number(right, formula)
    try:
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op == "/":
            return left / right
        if op == "%":
            return math.fmod(left, right)
    except (ArithmeticError, ValueError) as e:
        raise FormulaError(f"{op!r} failed: {e}", formula) from e
    if op == "<":
        return left < right
    if op == "<=":
        return left <= right
    if op == ">":
        return left > right
    return left >= right


class FormulaEngine:
    """Evaluates rule formulas for wells of one WellDataIndex."""

    def __init__(self, index: WellDataIndex):
        self.index = index

    def _resolve(self, formula: Formula, position: str, channel: Optional[str]):
        values = {}
        for name in formula.references:
            source = channel if name == OWN_CHANNEL and channel else name
            ct = self.index.lookup(position, source)
            if ct is None:
                logger.debug(
                    "Well %s has no Ct for %s; %r is indeterminate", position, source, formula.text
                )
                return None
            values[name] = ct
        return values

    def _run(self, position: str, channel: Optional[str], text: str):
        try:
            formula = parse_formula(text)
            values = self._resolve(formula, position, channel)
            if values is None:
                return None
            return evaluate(formula.root, values, text)
        except FormulaError as e:
            logger.warning("Formula error in %r for well %s: %s", text, position, e)
            return None

    def evaluate_positive(
        self, position: str, formula: Optional[str], channel: Optional[str] = None
    ) -> Optional[bool]:
        """Positive call: True/False, or None when indeterminate."""
        text = (formula or "").strip()
        if not text:
            return None
        keyword = text.upper()
        if keyword in POSITIVE_KEYWORDS:
            return True
        if keyword in NEGATIVE_KEYWORDS:
            return False
        if keyword in NOT_APPLICABLE_KEYWORDS:
            return None
        result = self._run(position, channel, text)
        if result is None:
            return None
        if not isinstance(result, bool) and (math.isnan(result) or math.isinf(result)):
            logger.warning("Positive formula %r gave a non-finite value", text)
            return None
        return _truth(result)

    def evaluate_concentration(
        self, position: str, channel: str, formula: Optional[str]
    ) -> Optional[float]:
        """Concentration for one well+channel, or None when indeterminate.

        Requires the cell's own Ct value. Negative results clamp to 0;
        results are rounded to AnalysisConstants.CONCENTRATION_DECIMALS.
        """
        text = (formula or "").strip()
        if not text or text.upper() in NOT_APPLICABLE_KEYWORDS:
            return None
        if self.index.lookup(position, channel) is None:
            return None
        result = self._run(position, channel, text)
        if result is None:
            return None
        if isinstance(result, bool):
            logger.warning("Concentration formula %r returned a boolean", text)
            return None
        if math.isnan(result) or math.isinf(result):
            logger.warning("Concentration formula %r gave a non-finite value", text)
            return None
        return round(max(result, 0.0), AnalysisConstants.CONCENTRATION_DECIMALS)
