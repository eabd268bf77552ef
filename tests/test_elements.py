from concurrent.futures import ThreadPoolExecutor

import pytest

from formula_engines import tables
from formula_engines.elements import (
    ELEMENT_NAMES,
    ElementCache,
    ElementResolver,
    all_elements,
    canonical_element,
    is_valid_element,
    match_element,
    resolve_element,
)
from formula_engines.errors import ElementUnknown
from formula_engines.models import DrawRecord


# ---------------------------
# tables
# ---------------------------
def test_wave_colors_cover_every_number_once():
    seen = [n for nums in tables.WAVE_COLORS.values() for n in nums]
    assert sorted(seen) == list(range(1, 50))
    assert tables.wave_color(1) == 0
    assert tables.wave_color(3) == 1
    assert tables.wave_color(5) == 2


def test_five_phase_depends_on_year():
    for groups in tables.FIVE_PHASES_BY_YEAR.values():
        assert sorted(n for nums in groups.values() for n in nums) == list(range(1, 50))
    assert tables.five_phase(1, 7) == 2   # 水
    assert tables.five_phase(1, 6) == 3   # 火
    # unknown years use the horse-year table
    assert tables.five_phase(1, 11) == tables.five_phase(1, 7)


def test_zodiac_rotation():
    assert tables.zodiac_index_for_year(2020) == 1
    assert tables.zodiac_index_for_year(2026) == 7
    assert tables.zodiac_position(1, 7) == 7
    assert tables.zodiac_position(13, 7) == 7
    assert tables.zodiac_position(2, 7) == 6
    assert tables.zodiac_map(7)["马"] == [1, 13, 25, 37, 49]
    assert tables.zodiac_name(7) == "马"


def test_segment_and_size_parity():
    assert [tables.segment(n) for n in (1, 7, 8, 49)] == [1, 1, 2, 7]
    assert [tables.size_parity(n) for n in (1, 24, 25, 26, 49)] == [0, 1, 2, 3, 2]
    assert tables.digit_sum(49) == 13


def test_stem_branch_defaults():
    assert tables.stem_index(None) == 0
    assert tables.branch_index(None) == 0
    assert tables.stem_index("乙丑") == 1
    assert tables.branch_index("乙丑") == 1


# ---------------------------
# element names
# ---------------------------
def test_exactly_78_distinct_elements():
    assert len(ELEMENT_NAMES) == 78
    assert len(set(ELEMENT_NAMES)) == 78
    assert all(is_valid_element(n) for n in ELEMENT_NAMES)
    assert all_elements() == ELEMENT_NAMES
    assert all_elements() is not ELEMENT_NAMES


def test_aliases():
    assert canonical_element("特码") == "特号"
    assert canonical_element("特码尾") == "特尾"
    assert canonical_element("平3") == "平3号"
    assert canonical_element("2五行") == "平2行"
    assert canonical_element("6波") == "平6波"
    assert not is_valid_element("特码大")


def test_match_element_prefers_longest():
    assert match_element("特码尾+1", 0) == "特码尾"
    assert match_element("期数合尾", 0) == "期数合尾"
    assert match_element("x特号", 1) == "特号"
    assert match_element("x特号", 0) is None


def test_match_element_does_not_split_numbers():
    assert match_element("12头", 1) is None
    assert match_element("+2头", 1) == "2头"


# ---------------------------
# resolution
# ---------------------------
def test_period_and_total_elements(two_draws):
    d = two_draws[0]
    assert resolve_element("期数", d, False) == 2
    assert resolve_element("期数尾", d, False) == 2
    assert resolve_element("总分", d, False) == 28
    assert resolve_element("总分尾", d, False) == 8
    assert resolve_element("总分合", d, False) == 10
    assert resolve_element("总分合尾", d, False) == 0


def test_special_elements(two_draws):
    d = two_draws[0]
    assert resolve_element("特号", d, False) == 7
    assert resolve_element("特头", d, False) == 0
    assert resolve_element("特尾", d, False) == 7
    assert resolve_element("特波", d, False) == 0
    assert resolve_element("特段", d, False) == 1
    assert resolve_element("特行", d, False) == 4
    assert resolve_element("特肖位", d, False) == 1


def test_digit_sum_parts():
    d = DrawRecord(period=2026123, numbers=(1, 2, 3, 4, 5, 6, 49))
    assert resolve_element("特合", d, False) == 13
    assert resolve_element("特合头", d, False) == 1
    assert resolve_element("特合尾", d, False) == 3
    assert resolve_element("期数", d, False) == 123
    assert resolve_element("期数合", d, False) == 6


def test_sort_flag_selects_ping_order(shuffled_draw):
    assert resolve_element("平1号", shuffled_draw, False) == 30
    assert resolve_element("平1号", shuffled_draw, True) == 5
    assert resolve_element("平6号", shuffled_draw, True) == 44
    # the special number ignores the flag
    assert resolve_element("特号", shuffled_draw, True) == 17


def test_calendar_elements():
    d = DrawRecord(period=2026001, numbers=(1, 2, 3, 4, 5, 6, 7), weekday=3, stem_branch="乙丑")
    assert resolve_element("星期", d, False) == 3
    assert resolve_element("干", d, False) == 1
    assert resolve_element("支", d, False) == 1
    assert resolve_element("干支", d, False) == 11

    bare = DrawRecord(period=2026001, numbers=(1, 2, 3, 4, 5, 6, 7))
    assert resolve_element("星期", bare, False) == 0
    assert resolve_element("干支", bare, False) == 0


def test_unknown_element_raises(two_draws):
    with pytest.raises(ElementUnknown) as exc:
        resolve_element("特码大", two_draws[0], False)
    assert exc.value.name == "特码大"


# ---------------------------
# cache
# ---------------------------
def test_cache_memoizes_by_element_period_and_sort(two_draws):
    resolver = ElementResolver(ElementCache(100))
    d = two_draws[0]
    assert resolver.resolve("特号", d, False) == 7
    assert resolver.resolve("特码", d, False) == 7
    assert resolver.cache.hits == 1
    resolver.resolve("特号", d, True)
    assert len(resolver.cache) == 2


def test_cache_evicts_oldest():
    cache = ElementCache(2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.put("c", 3)
    assert len(cache) == 2
    assert cache.get("a") is None
    assert cache.get("c") == 3


def test_cache_eviction_from_many_threads():
    cache = ElementCache(50)

    def fill(worker):
        for i in range(2000):
            cache.put((worker, i), i)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(fill, range(8)))
    assert len(cache) == 50


def test_zero_size_cache_is_disabled(two_draws):
    resolver = ElementResolver(ElementCache(0))
    assert resolver.resolve("特号", two_draws[0], False) == 7
    assert len(resolver.cache) == 0
    assert not resolver.cache.enabled


def test_resolve_all(two_draws):
    values = ElementResolver().resolve_all(two_draws[1], False)
    assert len(values) == 78
    assert values["特号"] == 16
    assert values["平1号"] == 10
