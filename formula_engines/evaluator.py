from __future__ import annotations

"""evaluator.py

Restricted, deterministic evaluation of a formula expression against one draw.

1. {condition?a:b} blocks are resolved against the special number.
2. Element names (longest first) are replaced by their values.
3. Only '+' and parentheses survive; '-', '*', '×', '/', '÷', '%' are inert
   separators. Operands with nothing between them concatenate.
4. The substituted text must match ^[\\d+()\\s]+$ and is folded by addition.

Nothing here executes dynamic code. Any failure evaluates to 0.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from formula_engines.elements import NAME_TABLE, ElementResolver, match_element
from formula_engines.errors import ElementUnknown, InvalidExpressionSyntax
from formula_engines.formula_parser import CONDITIONAL_RE
from formula_engines.models import DrawRecord

SAFE_RE = re.compile(r"^[\d+()\s]+$")
INERT_OPERATORS = frozenset("-*×/÷%")

# ---------------------------
# Conditions on the special number
# ---------------------------
Condition = Callable[[int], bool]


def _head(n: int) -> int:
    return n // 10


def _tail(n: int) -> int:
    return n % 10


def _head_tail_sum(n: int) -> int:
    return n // 10 + n % 10


CONDITIONS: Dict[str, Condition] = {
    "特码大": lambda n: n > 24,
    "特码小": lambda n: n <= 24,
    "特码单": lambda n: n % 2 == 1,
    "特码双": lambda n: n % 2 == 0,
    "特尾大": lambda n: _tail(n) >= 5,
    "特尾小": lambda n: _tail(n) < 5,
    "特尾单": lambda n: _tail(n) % 2 == 1,
    "特尾双": lambda n: _tail(n) % 2 == 0,
    "特头大": lambda n: _head(n) >= 2,
    "特头小": lambda n: _head(n) < 2,
    "特头单": lambda n: _head(n) % 2 == 1,
    "特头双": lambda n: _head(n) % 2 == 0,
    "特合大": lambda n: _head_tail_sum(n) > 6,
    "特合小": lambda n: _head_tail_sum(n) <= 6,
    "特合单": lambda n: _head_tail_sum(n) % 2 == 1,
    "特合双": lambda n: _head_tail_sum(n) % 2 == 0,
}


def check_condition(name: str, draw: DrawRecord) -> bool:
    fn = CONDITIONS.get(name.strip())
    if fn is None:
        logger.debug("unknown condition {!r} treated as false", name)
        return False
    return fn(draw.special)


def resolve_conditionals(expression: str, draw: DrawRecord) -> str:
    text = expression
    # inner blocks first; the pattern never spans a brace
    while True:
        new = CONDITIONAL_RE.sub(
            lambda m: m.group(2) if check_condition(m.group(1), draw) else m.group(3), text
        )
        if new == text:
            return new
        text = new


# ---------------------------
# Substitution
# ---------------------------
def substitute(expression: str, draw: DrawRecord, sort: bool,
               resolver: Optional[ElementResolver] = None) -> str:
    """Expression text with every element replaced by its value.

    Raises ElementUnknown when CJK text is left that names no element.
    """
    resolver = resolver or ElementResolver()
    text = resolve_conditionals(expression, draw)
    out: List[str] = []
    unknown: List[str] = []
    i = 0
    while i < len(text):
        name = match_element(text, i)
        if name is not None:
            out.append(str(resolver.resolve(NAME_TABLE[name], draw, sort)))
            i += len(name)
            continue
        ch = text[i]
        if ch in INERT_OPERATORS:
            out.append("+")
        elif ch.isspace():
            pass
        else:
            if "一" <= ch <= "鿿":
                unknown.append(ch)
            out.append(ch)
        i += 1

    if unknown:
        raise ElementUnknown("".join(unknown))
    return _collapse_plus("".join(out))


def _collapse_plus(text: str) -> str:
    text = re.sub(r"\++", "+", text)
    text = text.replace("(+", "(").replace("+)", ")")
    return text.strip("+")


# ---------------------------
# Folding
# ---------------------------
def _tokens(text: str) -> List[str]:
    return re.findall(r"\d+|[+()]", text)


def fold(text: str) -> int:
    """Sum of a '+'/'()' expression of non-negative integers."""
    if not text or not SAFE_RE.match(text):
        raise InvalidExpressionSyntax(text)
    tokens = _tokens(text)
    value, pos = _fold_expr(tokens, 0, text)
    if pos != len(tokens):
        raise InvalidExpressionSyntax(text)
    return value


def _fold_expr(tokens: List[str], pos: int, text: str) -> Tuple[int, int]:
    total, pos = _fold_term(tokens, pos, text)
    while pos < len(tokens) and tokens[pos] == "+":
        value, pos = _fold_term(tokens, pos + 1, text)
        total += value
    return total, pos


def _fold_term(tokens: List[str], pos: int, text: str) -> Tuple[int, int]:
    if pos >= len(tokens):
        raise InvalidExpressionSyntax(text)
    tok = tokens[pos]
    if tok.isdigit():
        return int(tok), pos + 1
    if tok == "(":
        value, pos = _fold_expr(tokens, pos + 1, text)
        if pos >= len(tokens) or tokens[pos] != ")":
            raise InvalidExpressionSyntax(text)
        return value, pos + 1
    raise InvalidExpressionSyntax(text)


def evaluate(expression: str, draw: DrawRecord, sort: bool,
             resolver: Optional[ElementResolver] = None) -> int:
    """Integer value of `expression` for `draw`; 0 when it cannot be evaluated."""
    try:
        return fold(substitute(expression, draw, sort, resolver))
    except ElementUnknown as e:
        logger.debug("period {}: {} in {!r}", draw.period, e, expression)
    except InvalidExpressionSyntax as e:
        logger.debug("period {}: {}", draw.period, e)
    return 0
