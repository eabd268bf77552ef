from __future__ import annotations

"""verify_engine.py

Backtest a formula over a window of draw history (newest first).

For every record in the window the value is computed from the record
*before* it in history, except the single prediction case (no target period
and the newest record), which uses the record itself.
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from formula_engines.config import get_config
from formula_engines.cycles import attribute_of, expand, reduce_value, to_text
from formula_engines.elements import ElementCache, ElementResolver
from formula_engines.evaluator import evaluate
from formula_engines.models import DrawRecord, ParsedFormula, PeriodResult, VerifyResult


@dataclass(frozen=True)
class VerifyOverrides:
    """Values that replace the formula's own settings when not None."""

    offset: Optional[int] = None
    periods: Optional[int] = None
    left_expand: Optional[int] = None
    right_expand: Optional[int] = None

    def apply(self, formula: ParsedFormula) -> ParsedFormula:
        changes = {k: v for k, v in self.__dict__.items() if v is not None}
        if "periods" in changes and changes["periods"] <= 0:
            del changes["periods"]
        return replace(formula, **changes) if changes else formula


def default_resolver() -> ElementResolver:
    return ElementResolver(ElementCache(get_config().element_cache_size))


def _positions(history: Sequence[DrawRecord]) -> Dict[int, int]:
    return {d.period: i for i, d in enumerate(history)}


def _verify(
    formula: ParsedFormula,
    history: Sequence[DrawRecord],
    positions: Dict[int, int],
    target_period: Optional[int],
    resolver: ElementResolver,
) -> VerifyResult:
    start = positions.get(target_period, -1) if target_period is not None else -1
    if target_period is not None and start < 0:
        logger.debug("target period {} not in history, using most recent window", target_period)
        target_period = None
    if start < 0:
        start = 0

    window = history[start:start + formula.periods]
    predict_mode = target_period is None
    rt = formula.result_type

    period_results: List[PeriodResult] = []
    for offset_in_window, record in enumerate(window):
        idx = start + offset_in_window
        if predict_mode and idx == 0:
            source = record
        elif idx + 1 < len(history):
            source = history[idx + 1]
        else:
            source = record

        raw = evaluate(formula.expression, source, formula.use_sort, resolver)
        value = reduce_value(raw + formula.offset, rt)
        expanded = tuple(expand(value, formula.left_expand, formula.right_expand, rt))
        actual = attribute_of(record.special, rt, record.zodiac_year)
        period_results.append(PeriodResult(
            period=record.period,
            result=value,
            expanded=expanded,
            target_value=actual,
            hit=actual in expanded,
        ))

    # oldest -> newest
    period_results.reverse()
    hits = [p.hit for p in period_results]
    hit_count = sum(hits)
    total = len(period_results)
    latest = period_results[-1].expanded if period_results else ()

    return VerifyResult(
        formula=formula,
        hits=hits,
        hit_count=hit_count,
        total_periods=total,
        hit_rate=hit_count / total if total else 0.0,
        results=[to_text(v, rt) for v in latest],
        period_results=period_results,
        line_index=formula.line_index,
        target_period=target_period,
    )


def verify_formula(
    formula: ParsedFormula,
    history: Sequence[DrawRecord],
    overrides: Optional[VerifyOverrides] = None,
    target_period: Optional[int] = None,
    resolver: Optional[ElementResolver] = None,
) -> VerifyResult:
    if overrides is not None:
        formula = overrides.apply(formula)
    return _verify(formula, history, _positions(history), target_period, resolver or default_resolver())


def verify_formulas(
    formulas: Iterable[ParsedFormula],
    history: Sequence[DrawRecord],
    overrides: Optional[VerifyOverrides] = None,
    target_period: Optional[int] = None,
    resolver: Optional[ElementResolver] = None,
) -> List[VerifyResult]:
    """Same as verify_formula for each formula, sharing one resolver cache."""
    resolver = resolver or default_resolver()
    positions = _positions(history)
    out = []
    for f in formulas:
        if overrides is not None:
            f = overrides.apply(f)
        out.append(_verify(f, history, positions, target_period, resolver))
    return out
