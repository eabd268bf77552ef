from __future__ import annotations

"""tables.py

Fixed partitions of 1-49 (wave color, five phase, zodiac, segment, size/parity).

All lookups go through dicts built once at import.
"""

from datetime import date
from typing import Dict, List, Optional

# ---------------------------
# Wave color (0=红, 1=蓝, 2=绿)
# ---------------------------
WAVE_NAMES = ["红波", "蓝波", "绿波"]

WAVE_COLORS: Dict[str, List[int]] = {
    "红": [1, 2, 7, 8, 12, 13, 18, 19, 23, 24, 29, 30, 34, 35, 40, 45, 46],
    "蓝": [3, 4, 9, 10, 14, 15, 20, 25, 26, 31, 36, 37, 41, 42, 47, 48],
    "绿": [5, 6, 11, 16, 17, 21, 22, 27, 28, 32, 33, 38, 39, 43, 44, 49],
}

# ---------------------------
# Five phase (0=金, 1=木, 2=水, 3=火, 4=土), keyed by zodiac year
# ---------------------------
FIVE_PHASE_NAMES = ["金", "木", "水", "火", "土"]

FIVE_PHASES_BY_YEAR: Dict[int, Dict[str, List[int]]] = {
    6: {  # 蛇年
        "金": [3, 4, 11, 12, 25, 26, 33, 34, 41, 42],
        "木": [7, 8, 15, 16, 23, 24, 37, 38, 45, 46],
        "水": [13, 14, 21, 22, 29, 30, 43, 44],
        "火": [1, 2, 9, 10, 17, 18, 31, 32, 39, 40, 47, 48],
        "土": [5, 6, 19, 20, 27, 28, 35, 36, 49],
    },
    7: {  # 马年
        "金": [4, 5, 12, 13, 26, 27, 34, 35, 42, 43],
        "木": [8, 9, 16, 17, 24, 25, 38, 39, 46, 47],
        "水": [1, 14, 15, 22, 23, 30, 31, 44, 45],
        "火": [2, 3, 10, 11, 18, 19, 32, 33, 40, 41, 48, 49],
        "土": [6, 7, 20, 21, 28, 29, 36, 37],
    },
}

FIVE_PHASE_DEFAULT_YEAR = 7

# ---------------------------
# Zodiac (1=鼠 ... 12=猪)
# ---------------------------
ZODIAC_NAMES = ["鼠", "牛", "虎", "兔", "龙", "蛇", "马", "羊", "猴", "鸡", "狗", "猪"]

# base grouping by position; rotated per zodiac year
BASE_ZODIAC_NUMBERS: Dict[int, List[int]] = {
    1: [1, 13, 25, 37, 49],
    2: [2, 14, 26, 38],
    3: [3, 15, 27, 39],
    4: [4, 16, 28, 40],
    5: [5, 17, 29, 41],
    6: [6, 18, 30, 42],
    7: [7, 19, 31, 43],
    8: [8, 20, 32, 44],
    9: [9, 21, 33, 45],
    10: [10, 22, 34, 46],
    11: [11, 23, 35, 47],
    12: [12, 24, 36, 48],
}

ZODIAC_BASE_YEAR = 2020  # 鼠

# ---------------------------
# Size / parity (0=小单, 1=小双, 2=大单, 3=大双)
# ---------------------------
SIZE_PARITY_NAMES = ["小单", "小双", "大单", "大双"]

SIZE_PARITY: Dict[str, List[int]] = {
    "小单": [1, 3, 5, 7, 9, 11, 13, 15, 17, 19, 21, 23],
    "小双": [2, 4, 6, 8, 10, 12, 14, 16, 18, 20, 22, 24],
    "大单": [25, 27, 29, 31, 33, 35, 37, 39, 41, 43, 45, 47, 49],
    "大双": [26, 28, 30, 32, 34, 36, 38, 40, 42, 44, 46, 48],
}

# ---------------------------
# Calendar tags
# ---------------------------
HEAVENLY_STEMS = "甲乙丙丁戊己庚辛壬癸"
EARTHLY_BRANCHES = "子丑寅卯辰巳午未申酉戌亥"
DEFAULT_STEM_BRANCH = "甲子"


def _invert(groups: Dict[str, List[int]], order: List[str]) -> Dict[int, int]:
    out: Dict[int, int] = {}
    for idx, name in enumerate(order):
        for n in groups[name]:
            out[n] = idx
    return out


_WAVE_OF = _invert(WAVE_COLORS, [n[0] for n in WAVE_NAMES])
_SIZE_PARITY_OF = _invert(SIZE_PARITY, SIZE_PARITY_NAMES)
_FIVE_PHASE_OF: Dict[int, Dict[int, int]] = {
    year: _invert(groups, FIVE_PHASE_NAMES) for year, groups in FIVE_PHASES_BY_YEAR.items()
}


def digit_sum(n: int) -> int:
    return sum(int(ch) for ch in str(abs(int(n))))


def wave_color(num: int) -> int:
    return _WAVE_OF.get(num, 0)


def five_phase(num: int, zodiac_year: Optional[int] = None) -> int:
    table = _FIVE_PHASE_OF.get(zodiac_year or FIVE_PHASE_DEFAULT_YEAR) or _FIVE_PHASE_OF[FIVE_PHASE_DEFAULT_YEAR]
    return table.get(num, 0)


def zodiac_position(num: int, zodiac_year: int) -> int:
    """Zodiac index (1-12) that `num` belongs to in the given zodiac year.

    The year's own animal owns the numbers of base position 1, the previous
    animal owns position 2, and so on backwards around the cycle.
    """
    if not 1 <= num <= 49:
        return 1
    position = (num - 1) % 12 + 1
    return (zodiac_year - position) % 12 + 1


def zodiac_map(zodiac_year: int) -> Dict[str, List[int]]:
    out: Dict[str, List[int]] = {}
    for position in range(1, 13):
        idx = (zodiac_year - position) % 12 + 1
        out[ZODIAC_NAMES[idx - 1]] = list(BASE_ZODIAC_NUMBERS[position])
    return out


def zodiac_index_for_year(year: Optional[int] = None) -> int:
    y = year or date.today().year
    return (y - ZODIAC_BASE_YEAR) % 12 + 1


def zodiac_name(index: int) -> str:
    return ZODIAC_NAMES[(index - 1) % 12]


def segment(num: int) -> int:
    if 1 <= num <= 49:
        return (num - 1) // 7 + 1
    return 1


def size_parity(num: int) -> int:
    return _SIZE_PARITY_OF.get(num, 0)


def stem_index(tag: Optional[str]) -> int:
    return HEAVENLY_STEMS.find((tag or DEFAULT_STEM_BRANCH)[0])


def branch_index(tag: Optional[str]) -> int:
    t = tag or DEFAULT_STEM_BRANCH
    return EARTHLY_BRANCHES.find(t[1]) if len(t) > 1 else -1
