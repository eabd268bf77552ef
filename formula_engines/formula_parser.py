from __future__ import annotations

"""formula_parser.py

Text format:

    [L尾数类]特号+期数尾+3=15左1右1
     ^ ^     ^          ^  ^  ^   ^
     | |     expression |  |  left/right expansion (optional)
     | result type      |  periods (optional, default 15)
     rule (D/L)         offset (optional)

Normalization runs in a fixed order and every step is idempotent:
full-width -> strip display prefix -> numeral words -> aliases.
"""

import re
from typing import Dict, List, Optional, Tuple, Union

from loguru import logger

from formula_engines.elements import NAME_TABLE, match_element
from formula_engines.errors import DuplicateFormula, ParseError
from formula_engines.models import DEFAULT_PERIODS, RULES, ParsedFormula, ResultType

Diagnostic = Union[ParseError, DuplicateFormula]

# ---------------------------
# Character-level cleanup
# ---------------------------
_FULLWIDTH = {code: code - 0xFEE0 for code in range(0xFF01, 0xFF5F)}
_FULLWIDTH.update({ord("【"): "[", ord("】"): "]", ord("　"): " ", ord("＋"): "+", ord("－"): "-"})

LINE_NUMBER_RE = re.compile(r"^\s*\[\d+\]\s*")
_LEADING_PREFIX_RE = re.compile(r"^\s*(?:\[\d+\]|\d+[.、)]?)\s*(?=\[)")


def to_halfwidth(text: str) -> str:
    return text.translate(_FULLWIDTH)


# ---------------------------
# Numeral words
# ---------------------------
CHINESE_DIGITS: Dict[str, int] = {
    "零": 0, "一": 1, "二": 2, "两": 2, "三": 3, "四": 4,
    "五": 5, "六": 6, "七": 7, "八": 8, "九": 9,
}
_D = "一二两三四五六七八九"

_TENS_RE = re.compile(rf"([{_D}])十([{_D}]?)")
_TEEN_RE = re.compile(rf"十([{_D}])")

# words that contain numeral characters but are not numbers
_PROTECTED = sorted([rt.value for rt in ResultType] + ["五行"], key=len, reverse=True)
# 平五行 is the fifth ping number's phase, not 平 followed by 五行
_PING_FIVE_PHASE_RE = re.compile(r"平五(?=行)")


def _protect(text: str) -> Tuple[str, List[str]]:
    saved: List[str] = []
    for word in _PROTECTED:
        if word in text:
            # private-use code points never collide with element names or digits
            text = text.replace(word, chr(0xE000 + len(saved)))
            saved.append(word)
    return text, saved


def _restore(text: str, saved: List[str]) -> str:
    for i, word in enumerate(saved):
        text = text.replace(chr(0xE000 + i), word)
    return text


def chinese_to_number(text: str) -> str:
    """'十一' -> '11', '二十三' -> '23', '二十' -> '20', '六' -> '6'.

    Result-type tokens and the word 五行 are left alone, except in 平五行 (-> 平5行).
    """
    text = _PING_FIVE_PHASE_RE.sub("平5", text)
    text, saved = _protect(text)
    text = _TENS_RE.sub(lambda m: str(CHINESE_DIGITS[m.group(1)] * 10 + CHINESE_DIGITS.get(m.group(2), 0)), text)
    text = _TEEN_RE.sub(lambda m: f"1{CHINESE_DIGITS[m.group(1)]}", text)
    text = text.replace("十", "10")
    for word, digit in CHINESE_DIGITS.items():
        text = text.replace(word, str(digit))
    return _restore(text, saved)


# ---------------------------
# Aliases
# ---------------------------
CONDITIONAL_RE = re.compile(r"\{([^{}?]+)\?([^{}:]+):([^{}]+)\}")


def _resolve_aliases(text: str) -> str:
    """Single left-to-right pass, longest name first at each position."""
    out: List[str] = []
    i = 0
    while i < len(text):
        match = match_element(text, i)
        if match is None:
            out.append(text[i])
            i += 1
        else:
            out.append(NAME_TABLE[match])
            i += len(match)
    return "".join(out)


def normalize_expression(expression: str) -> str:
    """Canonical element names in an expression; conditions inside {..} stay verbatim."""
    text = re.sub(r"\s+", "", to_halfwidth(expression))
    text = chinese_to_number(text)

    pieces: List[str] = []
    last = 0
    for m in CONDITIONAL_RE.finditer(text):
        pieces.append(_resolve_aliases(text[last:m.start()]))
        pieces.append("{%s?%s:%s}" % (m.group(1), _resolve_aliases(m.group(2)), _resolve_aliases(m.group(3))))
        last = m.end()
    pieces.append(_resolve_aliases(text[last:]))
    return "".join(pieces)


def extract_elements(expression: str) -> List[str]:
    """Distinct canonical element names in order of first appearance."""
    text = CONDITIONAL_RE.sub(lambda m: f"{m.group(2)}+{m.group(3)}", normalize_expression(expression))
    found: List[str] = []
    i = 0
    while i < len(text):
        match = match_element(text, i)
        if match is None:
            i += 1
            continue
        if NAME_TABLE[match] not in found:
            found.append(NAME_TABLE[match])
        i += len(match)
    return found


# ---------------------------
# Parsing
# ---------------------------
FORMULA_RE = re.compile(
    r"^\[([A-Za-z])([^\]]+)\](.+?)([+-]\d+)?(?:=(\d+))?(?:左(\d+))?(?:右(\d+))?$"
)


def strip_display_prefix(line: str) -> str:
    return _LEADING_PREFIX_RE.sub("", line, count=1)


def parse_formula(text: str, line_index: int = 0) -> ParsedFormula:
    """Parse one formula line; raises ParseError."""
    raw = strip_display_prefix(to_halfwidth(text).strip())
    compact = chinese_to_number(re.sub(r"\s+", "", raw))
    if not compact:
        raise ParseError("empty formula", text)

    m = FORMULA_RE.match(compact)
    if m is None:
        raise ParseError("does not match [RuleType]expression=periods", text)

    rule, type_token, expr, offset, periods, left, right = m.groups()
    rule = rule.upper()
    if rule not in RULES:
        raise ParseError(f"unknown rule {rule!r}", text)
    try:
        result_type = ResultType.from_token(type_token)
    except ValueError:
        raise ParseError(f"unknown result type {type_token!r}", text) from None

    expression = normalize_expression(expr)
    if not expression.strip("+-"):
        raise ParseError("empty expression", text)

    n_periods = int(periods) if periods is not None else DEFAULT_PERIODS
    if n_periods <= 0:
        raise ParseError("periods must be positive", text)

    return ParsedFormula(
        rule=rule,
        result_type=result_type,
        expression=expression,
        offset=int(offset) if offset else 0,
        periods=n_periods,
        left_expand=int(left) if left else 0,
        right_expand=int(right) if right else 0,
        raw_text=raw,
        line_index=line_index,
    )


def try_parse(text: str, line_index: int = 0) -> Optional[ParsedFormula]:
    try:
        return parse_formula(text, line_index)
    except ParseError:
        return None


def parse_all(text: str) -> Tuple[List[ParsedFormula], List[Diagnostic]]:
    """Parse a multi-line batch.

    Every non-blank input line yields either one ParsedFormula or one
    diagnostic. `line_index` is the 0-based position in `text.splitlines()`;
    diagnostics carry 1-based line numbers.
    """
    formulas: List[ParsedFormula] = []
    errors: List[Diagnostic] = []
    first_seen: Dict[tuple, int] = {}

    for idx, line in enumerate(text.splitlines()):
        clean = LINE_NUMBER_RE.sub("", line).strip()
        if not clean:
            continue
        try:
            parsed = parse_formula(clean, line_index=idx)
        except ParseError as e:
            errors.append(ParseError(e.reason, clean, line=idx + 1))
            continue

        if parsed.key in first_seen:
            errors.append(DuplicateFormula(clean, line=idx + 1, first_line=first_seen[parsed.key]))
            continue
        first_seen[parsed.key] = idx + 1
        formulas.append(parsed)

    if errors:
        logger.debug("parse_all: {} formulas, {} diagnostics", len(formulas), len(errors))
    return formulas, errors


# ---------------------------
# Display helpers
# ---------------------------
def format_formula(parsed: ParsedFormula) -> str:
    """Canonical text; the offset is always written so re-parsing is stable."""
    out = f"[{parsed.rule}{parsed.result_type.value}]{parsed.expression}{parsed.offset:+d}={parsed.periods}"
    if parsed.left_expand:
        out += f"左{parsed.left_expand}"
    if parsed.right_expand:
        out += f"右{parsed.right_expand}"
    return out


def add_line_numbers(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    out = []
    for i, line in enumerate(lines):
        if LINE_NUMBER_RE.match(line):
            out.append(line)
        else:
            out.append(f"[{i + 1:03d}]{line}")
    return "\n".join(out)


def remove_line_numbers(text: str) -> str:
    return "\n".join(LINE_NUMBER_RE.sub("", line) for line in text.splitlines())


def renumber(lines: List[str]) -> str:
    """Strip any existing [NNN] and number lines 001.. again."""
    clean = [LINE_NUMBER_RE.sub("", line).strip() for line in lines]
    return "\n".join(f"[{i + 1:03d}] {line}" for i, line in enumerate(c for c in clean if c))
