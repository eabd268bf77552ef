import pytest

from formula_engines.elements import ELEMENT_NAMES
from formula_engines.formula_parser import parse_formula, try_parse
from formula_engines.models import ResultType, VerifyResult
from formula_engines.search_engine import (
    FormulaSearch,
    SearchParams,
    SearchResult,
    evolutionary_search,
    exhaustive_search,
    finalize,
    make_rng,
    recommended_elements,
    secondary_fitness,
    smart_search,
    tolerance_for,
)


def _params(**kw):
    base = dict(target_hit_rate=20, max_count=5, seed=1, time_budget=60, max_evaluations=300)
    base.update(kw)
    return SearchParams(**base)


def test_tolerance_for_periods():
    assert [tolerance_for(p) for p in (10, 15, 30, 50, 100, 200)] == [1, 1, 2, 3, 5, 8]


def test_make_rng_is_stable():
    a = make_rng("search", "1")
    b = make_rng("search", "1")
    assert [a.random() for _ in range(5)] == [b.random() for _ in range(5)]
    assert make_rng("search", "2").random() != make_rng("search", "1").random()


def test_recommended_elements_are_known_and_unique():
    for rt in ResultType:
        names = recommended_elements(rt)
        assert names
        assert len(names) == len(set(names))
        assert set(names) <= set(ELEMENT_NAMES)
    assert recommended_elements(ResultType.TAIL)[0] == "平1尾"


def test_search_params_validation():
    with pytest.raises(ValueError):
        SearchParams(target_hit_rate=50, strategy="nope")
    p = SearchParams(target_hit_rate=50, result_types=[], periods=0, max_count=0)
    assert p.result_types == [ResultType.TAIL]
    assert p.periods == 1
    assert p.max_count == 1


def test_secondary_fitness_rewards_recent_hits():
    f = parse_formula("[L尾数类]特号=3")
    vr = VerifyResult(
        formula=f, hits=[False, True, True], hit_count=2, total_periods=3,
        hit_rate=2 / 3, results=[], period_results=[],
    )
    # (2 + 3) / 3 weighted, plus 0.5 for each of the 2 trailing hits
    assert secondary_fitness(vr) == pytest.approx(5 / 3 + 1.0)
    early = VerifyResult(
        formula=f, hits=[True, True, False], hit_count=2, total_periods=3,
        hit_rate=2 / 3, results=[], period_results=[],
    )
    assert secondary_fitness(early) < secondary_fitness(vr)


def test_finalize_orders_and_truncates():
    rs = [
        SearchResult("a", 0.2, 3, 15, 1.0),
        SearchResult("b", 0.6, 9, 15, 1.0),
        SearchResult("a", 0.2, 3, 15, 1.0),
        SearchResult("c", 0.4, 6, 15, 1.0),
    ]
    low = finalize(rs, SearchParams(target_hit_rate=20, max_count=5))
    assert [r.formula for r in low] == ["a", "c", "b"]
    high = finalize(rs, SearchParams(target_hit_rate=60, max_count=2))
    assert [r.formula for r in high] == ["b", "c"]


def test_evolutionary_results_are_valid(history):
    params = _params()
    results = smart_search(history, params)

    assert len(results) <= params.max_count
    assert len({r.formula for r in results}) == len(results)
    for r in results:
        parsed = try_parse(r.formula)
        assert parsed is not None
        assert parsed.result_type is ResultType.TAIL
        assert parsed.periods == 15
        assert abs(r.hit_rate * 100 - 20) <= 2 * tolerance_for(15)
        assert 0 <= r.hit_rate <= 1
    rates = [r.hit_rate for r in results]
    assert rates == sorted(rates)


def test_seeded_search_is_reproducible(history):
    a = smart_search(history, _params())
    b = smart_search(history, _params())
    assert [r.to_dict() for r in a] == [r.to_dict() for r in b]


def test_search_carries_requested_settings(history):
    params = _params(result_types=[ResultType.WAVE], offset=2, periods=10, left_expand=1)
    for r in smart_search(history, params):
        parsed = parse_formula(r.formula)
        assert parsed.result_type is ResultType.WAVE
        assert parsed.periods == 10
        assert parsed.left_expand == 1


def test_progress_callback(history):
    calls = []
    smart_search(history, _params(), on_progress=lambda *args: calls.append(args))
    assert calls
    for current, total, found, results in calls:
        assert found == len(results)
        assert current <= total


def test_should_stop_ends_after_seeding(history):
    search = FormulaSearch(history, _params(), should_stop=lambda: True)
    search.evolutionary()
    # 3 seeds x 2 rules + 1 template per rule for the single result type
    assert search.evaluations <= 8


def test_exhaustive_respects_evaluation_budget(history):
    params = _params(strategy="deep", target_hit_rate=50, max_count=3, max_evaluations=30)
    search = FormulaSearch(history, params)
    found = search.exhaustive()

    assert search.evaluations <= 30
    assert len(found) <= 3
    for r in found:
        assert len(parse_formula(r.formula).expression.split("+")) >= 10


def test_empty_history_returns_nothing():
    assert smart_search([], _params()) == []


def test_strategy_wrappers(history):
    evo = evolutionary_search(history, _params(max_count=2))
    assert len(evo) <= 2
    deep = exhaustive_search(history, _params(strategy="deep", max_count=2, max_evaluations=10))
    assert len(deep) <= 2


def test_exhaustive_prunes_prefixes_that_cannot_recover(history):
    params = _params(strategy="deep", target_hit_rate=100, max_count=3, max_evaluations=40)
    search = FormulaSearch(history, params)
    found = search.exhaustive()

    assert found == []
    assert search.evaluations <= 40
    assert search.pruned > 0
    assert search.processed > search.evaluations


def test_exhaustive_combinations_skip_rejected_subtrees(history):
    search = FormulaSearch(history, _params(strategy="deep"))
    every = list(search.combinations(5, 3, lambda prefix: True))
    assert len(every) == 10
    assert every[0] == (0, 1, 2) and every[-1] == (2, 3, 4)

    search.processed = 0
    kept = list(search.combinations(5, 3, lambda prefix: prefix != [0, 1]))
    # (0, 1, x) has three completions
    assert len(kept) == 7
    assert (0, 1, 2) not in kept
    assert search.pruned == 3
    assert search.processed == 3
