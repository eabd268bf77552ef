from __future__ import annotations

"""elements.py

The 78 fixed draw-derived quantities ("elements") and their resolver.

- period series (4): 期数 期数尾 期数合 期数合尾  (period % 1000)
- sum series (4):    总分 总分尾 总分合 总分合尾  (sum of all 7 numbers)
- ping series (60):  平{1-6}{号 头 尾 合 合头 合尾 波 段 行 肖位}
- special (10):      特{号 头 尾 合 合头 合尾 波 段 行 肖位}

Calendar elements (星期 干 支 干支) resolve too but are not part of the 78.
"""

import threading
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from formula_engines import tables
from formula_engines.errors import ElementUnknown
from formula_engines.models import DrawRecord

NUMBER_ATTRS = ["号", "头", "尾", "合", "合头", "合尾", "波", "段", "行", "肖位"]

PERIOD_ELEMENTS = ["期数", "期数尾", "期数合", "期数合尾"]
TOTAL_ELEMENTS = ["总分", "总分尾", "总分合", "总分合尾"]
PING_ELEMENTS = [f"平{i}{attr}" for i in range(1, 7) for attr in NUMBER_ATTRS]
SPECIAL_ELEMENTS = [f"特{attr}" for attr in NUMBER_ATTRS]

ELEMENT_NAMES: List[str] = PERIOD_ELEMENTS + TOTAL_ELEMENTS + PING_ELEMENTS + SPECIAL_ELEMENTS
CALENDAR_ELEMENTS: List[str] = ["星期", "干", "支", "干支"]

assert len(ELEMENT_NAMES) == 78

# ---------------------------
# Aliases -> canonical names
# ---------------------------
ELEMENT_ALIASES: Dict[str, str] = {
    "特": "特号",
    "特码": "特号",
    "特码号": "特号",
    "特码五行": "特行",
    "特五行": "特行",
    "特肖": "特肖位",
    "特码肖": "特肖位",
    "总": "总分",
    "总分数": "总分",
    "期": "期数",
    "期尾": "期数尾",
    "期合": "期数合",
    "期合尾": "期数合尾",
}
for _attr in NUMBER_ATTRS[1:]:
    ELEMENT_ALIASES[f"特码{_attr}"] = f"特{_attr}"
for _i in range(1, 7):
    ELEMENT_ALIASES[f"平{_i}"] = f"平{_i}号"
    ELEMENT_ALIASES[f"平码{_i}"] = f"平{_i}号"
    ELEMENT_ALIASES[f"平{_i}五行"] = f"平{_i}行"
    ELEMENT_ALIASES[f"平{_i}肖"] = f"平{_i}肖位"
    ELEMENT_ALIASES[f"{_i}五行"] = f"平{_i}行"
    for _attr in NUMBER_ATTRS:
        # bare shorthand: "6波" -> "平6波"
        ELEMENT_ALIASES[f"{_i}{_attr}"] = f"平{_i}{_attr}"


def canonical_element(name: str) -> str:
    return ELEMENT_ALIASES.get(name, name)


def is_valid_element(name: str) -> bool:
    return canonical_element(name) in _RESOLVERS


def all_elements() -> List[str]:
    return list(ELEMENT_NAMES)


# ---------------------------
# Per-number attributes
# ---------------------------
def number_attribute(num: int, attr: str, zodiac_year: int) -> int:
    if attr == "号":
        return num
    if attr == "头":
        return num // 10
    if attr == "尾":
        return num % 10
    if attr == "合":
        return tables.digit_sum(num)
    if attr == "合头":
        return tables.digit_sum(num) // 10
    if attr == "合尾":
        return tables.digit_sum(num) % 10
    if attr == "波":
        return tables.wave_color(num)
    if attr == "段":
        return tables.segment(num)
    if attr == "行":
        return tables.five_phase(num, zodiac_year)
    if attr == "肖位":
        return tables.zodiac_position(num, zodiac_year)
    raise ElementUnknown(attr)


Resolver = Callable[[DrawRecord, bool], int]


def _period_value(draw: DrawRecord) -> int:
    return draw.period % 1000


def _total(draw: DrawRecord) -> int:
    return sum(draw.numbers)


def _ping_resolver(index: int, attr: str) -> Resolver:
    def resolve(draw: DrawRecord, sort: bool) -> int:
        return number_attribute(draw.ping(sort)[index], attr, draw.zodiac_year)
    return resolve


def _special_resolver(attr: str) -> Resolver:
    def resolve(draw: DrawRecord, sort: bool) -> int:
        return number_attribute(draw.special, attr, draw.zodiac_year)
    return resolve


def _build_resolvers() -> Dict[str, Resolver]:
    out: Dict[str, Resolver] = {
        "期数": lambda d, s: _period_value(d),
        "期数尾": lambda d, s: _period_value(d) % 10,
        "期数合": lambda d, s: tables.digit_sum(_period_value(d)),
        "期数合尾": lambda d, s: tables.digit_sum(_period_value(d)) % 10,
        "总分": lambda d, s: _total(d),
        "总分尾": lambda d, s: _total(d) % 10,
        "总分合": lambda d, s: tables.digit_sum(_total(d)),
        "总分合尾": lambda d, s: tables.digit_sum(_total(d)) % 10,
        "星期": lambda d, s: d.weekday or 0,
        "干": lambda d, s: tables.stem_index(d.stem_branch),
        "支": lambda d, s: tables.branch_index(d.stem_branch),
        "干支": lambda d, s: tables.stem_index(d.stem_branch) + tables.branch_index(d.stem_branch) * 10,
    }
    for i in range(6):
        for attr in NUMBER_ATTRS:
            out[f"平{i + 1}{attr}"] = _ping_resolver(i, attr)
    for attr in NUMBER_ATTRS:
        out[f"特{attr}"] = _special_resolver(attr)
    return out


_RESOLVERS: Dict[str, Resolver] = _build_resolvers()

assert all(name in _RESOLVERS for name in ELEMENT_NAMES + CALENDAR_ELEMENTS)

# canonical names and aliases, both mapping to the canonical name
NAME_TABLE: Dict[str, str] = {name: name for name in _RESOLVERS}
NAME_TABLE.update(ELEMENT_ALIASES)
_NAME_LENGTHS = sorted({len(k) for k in NAME_TABLE}, reverse=True)


def match_element(text: str, pos: int) -> Optional[str]:
    """Longest element name or alias starting at `pos`, or None."""
    for size in _NAME_LENGTHS:
        chunk = text[pos:pos + size]
        if len(chunk) == size and chunk in NAME_TABLE:
            # "12头" is not the shorthand "2头" preceded by a digit
            if chunk[0].isdigit() and pos > 0 and text[pos - 1].isdigit():
                continue
            return chunk
    return None


# ---------------------------
# Cache
# ---------------------------
class ElementCache:
    """Read-through memo of element values, evicting oldest insertions first.

    Keys are (element, period, sort). `maxsize=0` turns it into a no-op.
    Writes are locked so one cache can be read by several threads.
    """

    def __init__(self, maxsize: int = 20000):
        self.maxsize = max(0, int(maxsize))
        self._data: Dict[Hashable, int] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)

    @property
    def enabled(self) -> bool:
        return self.maxsize > 0

    def get(self, key: Hashable) -> Optional[int]:
        value = self._data.get(key)
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def put(self, key: Hashable, value: int) -> None:
        if not self.enabled:
            return
        with self._lock:
            if key not in self._data and len(self._data) >= self.maxsize:
                del self._data[next(iter(self._data))]
            self._data[key] = value

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
        self.hits = 0
        self.misses = 0


class ElementResolver:
    def __init__(self, cache: Optional[ElementCache] = None):
        self.cache = cache

    def resolve(self, name: str, draw: DrawRecord, sort: bool) -> int:
        canonical = canonical_element(name)
        fn = _RESOLVERS.get(canonical)
        if fn is None:
            raise ElementUnknown(name)
        if self.cache is None or not self.cache.enabled:
            return fn(draw, sort)

        key: Tuple[str, int, bool] = (canonical, draw.period, bool(sort))
        value = self.cache.get(key)
        if value is None:
            value = fn(draw, sort)
            self.cache.put(key, value)
        return value

    def resolve_all(self, draw: DrawRecord, sort: bool) -> Dict[str, int]:
        return {name: self.resolve(name, draw, sort) for name in ELEMENT_NAMES}


def resolve_element(name: str, draw: DrawRecord, sort: bool) -> int:
    """Uncached resolution; raises ElementUnknown for unknown names."""
    return ElementResolver().resolve(name, draw, sort)
