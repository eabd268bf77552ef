from __future__ import annotations

from typing import Callable, Dict, List, Optional

from formula_engines import tables
from formula_engines.models import NUMBER_MAX, NUMBER_MIN, ResultType


def reduce_value(value: int, result_type: ResultType) -> int:
    """Fold any integer (negative included) into the result type's domain."""
    n = result_type.cycle
    v = int(value)
    if result_type.one_based:
        return (v - 1) % n + 1
    return v % n


def expand(base: int, left: int, right: int, result_type: ResultType) -> List[int]:
    """Sorted, de-duplicated neighborhood reduce(base + i) for i in [-left, right]."""
    left = max(0, int(left))
    right = max(0, int(right))
    return sorted({reduce_value(base + i, result_type) for i in range(-left, right + 1)})


# ---------------------------
# number -> attribute
# ---------------------------
_ATTRIBUTES: Dict[ResultType, Callable[[int, int], int]] = {
    ResultType.TAIL: lambda n, y: n % 10,
    ResultType.HEAD: lambda n, y: n // 10,
    ResultType.DIGIT_SUM: lambda n, y: tables.digit_sum(n),
    ResultType.WAVE: lambda n, y: tables.wave_color(n),
    ResultType.FIVE_PHASE: lambda n, y: tables.five_phase(n, y),
    ResultType.ZODIAC: lambda n, y: tables.zodiac_position(n, y),
    ResultType.SINGLE: lambda n, y: n,
    ResultType.SIZE_PARITY: lambda n, y: tables.size_parity(n),
}

assert set(_ATTRIBUTES) == set(ResultType)


def attribute_of(num: int, result_type: ResultType, zodiac_year: Optional[int] = None) -> int:
    year = zodiac_year or tables.FIVE_PHASE_DEFAULT_YEAR
    return _ATTRIBUTES[result_type](int(num), year)


def numbers_for(value: int, result_type: ResultType, zodiac_year: Optional[int] = None) -> List[int]:
    """All numbers 1-49 whose attribute equals `value`."""
    return [
        n for n in range(NUMBER_MIN, NUMBER_MAX + 1)
        if attribute_of(n, result_type, zodiac_year) == value
    ]


# ---------------------------
# attribute value -> label
# ---------------------------
def _pick(names: List[str], value: int, offset: int = 0) -> str:
    idx = value - offset
    return names[idx] if 0 <= idx < len(names) else str(value)


_LABELS: Dict[ResultType, Callable[[int], str]] = {
    ResultType.TAIL: lambda v: f"{v}尾",
    ResultType.HEAD: lambda v: f"{v}头",
    ResultType.DIGIT_SUM: lambda v: f"{v}合",
    ResultType.WAVE: lambda v: _pick(tables.WAVE_NAMES, v),
    ResultType.FIVE_PHASE: lambda v: _pick(tables.FIVE_PHASE_NAMES, v),
    ResultType.ZODIAC: lambda v: _pick(tables.ZODIAC_NAMES, v, offset=1),
    ResultType.SINGLE: lambda v: f"{v:02d}",
    ResultType.SIZE_PARITY: lambda v: _pick(tables.SIZE_PARITY_NAMES, v),
}

assert set(_LABELS) == set(ResultType)


def to_text(value: int, result_type: ResultType) -> str:
    return _LABELS[result_type](int(value))
