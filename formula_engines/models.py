from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from formula_engines.errors import HistoryError

NUMBER_MIN = 1
NUMBER_MAX = 49
DRAW_SIZE = 7

RULE_SORTED = "D"   # ping numbers ascending
RULE_DRAWN = "L"    # ping numbers in draw order
RULES = (RULE_SORTED, RULE_DRAWN)

DEFAULT_PERIODS = 15


class ResultType(str, Enum):
    TAIL = "尾数类"
    HEAD = "头数类"
    DIGIT_SUM = "合数类"
    WAVE = "波色类"
    FIVE_PHASE = "五行类"
    ZODIAC = "肖位类"
    SINGLE = "单特类"
    SIZE_PARITY = "大小单双类"

    @classmethod
    def from_token(cls, token: str) -> "ResultType":
        try:
            return cls(token)
        except ValueError:
            raise ValueError(f"unknown result type: {token!r}") from None

    @property
    def cycle(self) -> int:
        return _CYCLES[self]

    @property
    def one_based(self) -> bool:
        return self in _ONE_BASED

    @property
    def domain(self) -> range:
        start = 1 if self.one_based else 0
        return range(start, start + self.cycle)


_CYCLES: Dict[ResultType, int] = {
    ResultType.TAIL: 10,
    ResultType.HEAD: 5,
    ResultType.DIGIT_SUM: 13,
    ResultType.WAVE: 3,
    ResultType.FIVE_PHASE: 5,
    ResultType.ZODIAC: 12,
    ResultType.SINGLE: 49,
    ResultType.SIZE_PARITY: 4,
}

_ONE_BASED = frozenset({ResultType.ZODIAC, ResultType.SINGLE, ResultType.DIGIT_SUM})

assert set(_CYCLES) == set(ResultType), "every result type needs a cycle length"


# ---------------------------
# Draw history
# ---------------------------
@dataclass(frozen=True)
class DrawRecord:
    """One draw. `numbers` keeps draw order: six ping numbers, then the special."""

    period: int
    numbers: Tuple[int, ...]
    zodiac_year: int = 7
    weekday: Optional[int] = None
    stem_branch: Optional[str] = None

    def __post_init__(self):
        nums = tuple(int(n) for n in self.numbers)
        object.__setattr__(self, "numbers", nums)
        if len(nums) != DRAW_SIZE:
            raise HistoryError(f"period {self.period}: expected {DRAW_SIZE} numbers, got {len(nums)}")
        if len(set(nums)) != DRAW_SIZE:
            raise HistoryError(f"period {self.period}: numbers must be distinct {list(nums)}")
        if any(n < NUMBER_MIN or n > NUMBER_MAX for n in nums):
            raise HistoryError(f"period {self.period}: numbers must be within 1-49 {list(nums)}")
        if not 1 <= int(self.zodiac_year) <= 12:
            raise HistoryError(f"period {self.period}: zodiac_year must be 1-12")

    @property
    def special(self) -> int:
        return self.numbers[6]

    def ping(self, sort: bool) -> Tuple[int, ...]:
        head = self.numbers[:6]
        return tuple(sorted(head)) if sort else head

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "numbers": list(self.numbers),
            "zodiac_year": self.zodiac_year,
            "weekday": self.weekday,
            "stem_branch": self.stem_branch,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DrawRecord":
        return cls(
            period=int(d["period"]),
            numbers=tuple(d["numbers"]),
            zodiac_year=int(d.get("zodiac_year") or 7),
            weekday=d.get("weekday"),
            stem_branch=d.get("stem_branch"),
        )


# ---------------------------
# Formulas & results
# ---------------------------
@dataclass(frozen=True)
class ParsedFormula:
    rule: str
    result_type: ResultType
    expression: str
    offset: int = 0
    periods: int = DEFAULT_PERIODS
    left_expand: int = 0
    right_expand: int = 0
    raw_text: str = field(default="", compare=False)
    line_index: int = field(default=0, compare=False)

    @property
    def use_sort(self) -> bool:
        return self.rule == RULE_SORTED

    @property
    def key(self) -> Tuple[str, str, str, int, int, int, int]:
        """Structural identity used for batch de-duplication."""
        return (
            self.rule,
            self.result_type.value,
            self.expression,
            self.periods,
            self.offset,
            self.left_expand,
            self.right_expand,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "result_type": self.result_type.value,
            "expression": self.expression,
            "offset": self.offset,
            "periods": self.periods,
            "left_expand": self.left_expand,
            "right_expand": self.right_expand,
            "raw_text": self.raw_text,
            "line_index": self.line_index,
        }


@dataclass(frozen=True)
class PeriodResult:
    period: int
    result: int
    expanded: Tuple[int, ...]
    target_value: int
    hit: bool


@dataclass
class VerifyResult:
    formula: ParsedFormula
    hits: List[bool]                 # oldest -> newest
    hit_count: int
    total_periods: int
    hit_rate: float
    results: List[str]               # labels of the newest period's expanded set
    period_results: List[PeriodResult]
    line_index: int = 0
    target_period: Optional[int] = None

    @property
    def last_hit(self) -> bool:
        return bool(self.hits) and self.hits[-1]

    def trailing_misses(self) -> int:
        count = 0
        for hit in reversed(self.hits):
            if hit:
                break
            count += 1
        return count

    def max_miss_streak(self) -> int:
        best = run = 0
        for hit in self.hits:
            run = 0 if hit else run + 1
            best = max(best, run)
        return best

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formula": self.formula.to_dict(),
            "hits": list(self.hits),
            "hit_count": self.hit_count,
            "total_periods": self.total_periods,
            "hit_rate": self.hit_rate,
            "results": list(self.results),
            "period_results": [
                {**asdict(p), "expanded": list(p.expanded)} for p in self.period_results
            ],
            "line_index": self.line_index,
            "target_period": self.target_period,
        }
