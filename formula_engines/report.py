from __future__ import annotations

"""report.py

Batch views over verification results: summary lines, per-period coverage,
label counts, number heat map, and filtering back into formula text.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from formula_engines.cycles import numbers_for, to_text
from formula_engines.formula_parser import renumber
from formula_engines.models import NUMBER_MAX, NUMBER_MIN, DrawRecord, ResultType, VerifyResult

STAR_HIT = "★"
STAR_MISS = "☆"
RECENT_STARS = 10


def summary_line(index: int, result: VerifyResult) -> str:
    """[001]★☆★≡15中8次=6尾,7尾 (stars: last 10 periods, newest right)."""
    stars = "".join(STAR_HIT if h else STAR_MISS for h in result.hits[-RECENT_STARS:])
    return f"[{index + 1:03d}]{stars}≡{result.total_periods}中{result.hit_count}次={','.join(result.results)}"


def summary_lines(results: Sequence[VerifyResult]) -> List[str]:
    return [summary_line(i, r) for i, r in enumerate(results)]


def count_hits_per_period(results: Sequence[VerifyResult], history: Sequence[DrawRecord]) -> List[int]:
    """For up to 10 periods of the verified window: how many formulas covered the actual special.

    Newest period last.
    """
    if not results or not history:
        return []
    first = results[0]
    start = 0
    if first.target_period is not None:
        for i, d in enumerate(history):
            if d.period == first.target_period:
                start = i
                break
    span = min(first.total_periods or RECENT_STARS, RECENT_STARS)
    draws = list(history[start:start + span])

    by_period = [{p.period: p for p in r.period_results} for r in results]
    counts = []
    for draw in draws:
        covered = 0
        for r, periods in zip(results, by_period):
            pr = periods.get(draw.period)
            if pr is None:
                continue
            if any(draw.special in numbers_for(v, r.formula.result_type, draw.zodiac_year) for v in pr.expanded):
                covered += 1
        counts.append(covered)
    counts.reverse()
    return counts


def group_by_result_type(results: Sequence[VerifyResult]) -> Dict[ResultType, Dict[str, object]]:
    """Per result type: formula count and, for every label, how many newest-period sets contain it."""
    by_type: Dict[ResultType, List[VerifyResult]] = {}
    for r in results:
        by_type.setdefault(r.formula.result_type, []).append(r)

    out: Dict[ResultType, Dict[str, object]] = {}
    for rt, group in by_type.items():
        counts = {}
        for value in rt.domain:
            label = to_text(value, rt)
            counts[label] = sum(1 for r in group if label in r.results)
        out[rt] = {"formulas": len(group), "counts": counts}
    return out


def aggregate_all_numbers(results: Sequence[VerifyResult], zodiac_year: Optional[int] = None) -> Dict[int, int]:
    """Number 1-49 -> how many formulas' newest expanded set covers it."""
    counts = {n: 0 for n in range(NUMBER_MIN, NUMBER_MAX + 1)}
    for r in results:
        if not r.period_results:
            continue
        for value in r.period_results[-1].expanded:
            for n in numbers_for(value, r.formula.result_type, zodiac_year):
                counts[n] += 1
    return counts


# ---------------------------
# Filtering
# ---------------------------
@dataclass
class ResultFilter:
    hit_rate: Optional[str] = None         # "gt" | "lt" | "eq" | "between"
    value: float = 80.0                    # percent
    low: float = 70.0
    high: float = 90.0
    last_period: Optional[str] = None      # "hit" | "miss"
    min_trailing_misses: Optional[int] = None
    max_miss_streak: Optional[int] = None

    def matches(self, r: VerifyResult) -> bool:
        rate = r.hit_rate * 100
        if self.hit_rate == "gt" and not rate > self.value:
            return False
        if self.hit_rate == "lt" and not rate < self.value:
            return False
        if self.hit_rate == "eq" and not abs(rate - self.value) < 1:
            return False
        if self.hit_rate == "between" and not self.low <= rate <= self.high:
            return False
        if self.last_period == "hit" and not r.last_hit:
            return False
        if self.last_period == "miss" and r.last_hit:
            return False
        if self.min_trailing_misses is not None and r.trailing_misses() < self.min_trailing_misses:
            return False
        if self.max_miss_streak is not None and r.max_miss_streak() > self.max_miss_streak:
            return False
        return True

    def apply(self, results: Sequence[VerifyResult]) -> List[VerifyResult]:
        return [r for r in results if self.matches(r)]


def _select_lines(text: str, results: Sequence[VerifyResult], keep: bool) -> str:
    wanted = {r.line_index for r in results}
    lines = [
        line for i, line in enumerate(text.splitlines())
        if line.strip() and ((i in wanted) == keep)
    ]
    return renumber(lines)


def keep_lines(text: str, results: Sequence[VerifyResult]) -> str:
    """Formula text reduced to the lines that produced `results`, renumbered."""
    return _select_lines(text, results, keep=True)


def drop_lines(text: str, results: Sequence[VerifyResult]) -> str:
    """Formula text without the lines that produced `results`, renumbered."""
    return _select_lines(text, results, keep=False)
