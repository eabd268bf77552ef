from __future__ import annotations

"""search_engine.py

Find formulas whose backtested hit rate lands near a target.

- fast / standard: evolutionary (seed -> mutate -> select)
- deep: exhaustive k-element combinations with prefix pruning

Hit rates inside this module are percentages (0-100); SearchResult.hit_rate
is a fraction like VerifyResult.hit_rate.
"""

import math
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from loguru import logger

from formula_engines.config import get_config
from formula_engines.elements import ELEMENT_NAMES, ElementResolver
from formula_engines.formula_parser import format_formula, try_parse
from formula_engines.models import RULES, DrawRecord, ParsedFormula, ResultType, VerifyResult
from formula_engines.verify_engine import default_resolver, verify_formula

STRATEGY_FAST = "fast"
STRATEGY_STANDARD = "standard"
STRATEGY_DEEP = "deep"


@dataclass(frozen=True)
class StrategyParams:
    population_size: int
    generations: int
    mutation_rate: float
    min_elements: int
    max_elements: int


STRATEGIES: Dict[str, StrategyParams] = {
    STRATEGY_FAST: StrategyParams(150, 15, 0.5, 1, 5),
    STRATEGY_STANDARD: StrategyParams(300, 25, 0.4, 5, 10),
    STRATEGY_DEEP: StrategyParams(0, 0, 0.0, 10, 15),
}

# mutation probabilities
ADD_PROB = 0.35
REMOVE_PROB = 0.2
SHUFFLE_PROB = 0.15
RESEED_PROB = 0.1
MIN_MUTATED_ELEMENTS = 2

ELITE_SIZE = 20
MUTATIONS_PER_ELITE = 3
SEEDS_PER_TYPE = 3

# exhaustive pruning: a prefix this far below the band cannot recover
PRUNE_RECOVERY = 0.3

# ---------------------------
# Recommended elements
# ---------------------------
ELEMENT_GROUPS: Dict[str, List[str]] = {
    "期数组": ["期数", "期数尾", "期数合", "期数合尾"],
    "总分组": ["总分", "总分尾", "总分合", "总分合尾"],
    "尾数组": [f"平{i}尾" for i in range(1, 7)] + ["特尾"],
    "头数组": [f"平{i}头" for i in range(1, 7)] + ["特头"],
    "合数组": [f"平{i}合" for i in range(1, 7)] + ["特合", "期数合", "总分合"],
    "波数组": [f"平{i}波" for i in range(1, 7)] + ["特波"],
    "行数组": [f"平{i}行" for i in range(1, 7)] + ["特行"],
    "段数组": [f"平{i}段" for i in range(1, 7)] + ["特段"],
    "肖位数组": [f"平{i}肖位" for i in range(1, 7)] + ["特肖位"],
    "号数组": [f"平{i}号" for i in range(1, 7)] + ["特号"],
}

RESULT_TYPE_ELEMENT_MAP: Dict[ResultType, List[str]] = {
    ResultType.TAIL: ["尾数组", "期数组", "合数组"],
    ResultType.HEAD: ["头数组"],
    ResultType.DIGIT_SUM: ["合数组", "期数组", "总分组"],
    ResultType.WAVE: ["波数组"],
    ResultType.FIVE_PHASE: ["行数组"],
    ResultType.ZODIAC: ["肖位数组"],
    ResultType.SINGLE: ["号数组", "期数组"],
    ResultType.SIZE_PARITY: ["尾数组", "合数组", "段数组"],
}

FORMULA_TEMPLATES: Dict[ResultType, List[List[str]]] = {
    ResultType.TAIL: [["特尾", "平1尾"], ["特尾", "期数尾"], ["平1尾", "平2尾", "平3尾"], ["期数合尾", "特尾"]],
    ResultType.HEAD: [["特头", "平1头"], ["平1头", "平2头"]],
    ResultType.DIGIT_SUM: [["特合", "期数合"], ["特合", "平1合"], ["期数合", "总分合"], ["平1合", "平2合", "平3合"]],
    ResultType.WAVE: [["特波", "平1波"], ["平1波", "平2波"]],
    ResultType.FIVE_PHASE: [["特行", "平1行"], ["平1行", "平2行", "平3行"]],
    ResultType.ZODIAC: [["特肖位", "平1肖位"], ["平1肖位", "平2肖位"]],
    ResultType.SINGLE: [["特号", "期数"], ["平1号", "平2号"]],
    ResultType.SIZE_PARITY: [["特尾", "期数尾"], ["特合", "平1合"], ["特段", "平1段"], ["平1段", "平2段"]],
}

assert set(RESULT_TYPE_ELEMENT_MAP) == set(ResultType)
assert set(FORMULA_TEMPLATES) == set(ResultType)


def recommended_elements(result_type: ResultType) -> List[str]:
    out: List[str] = []
    for group in RESULT_TYPE_ELEMENT_MAP[result_type]:
        for name in ELEMENT_GROUPS[group]:
            if name not in out:
                out.append(name)
    return out


def tolerance_for(periods: int) -> int:
    """Allowed distance (percentage points) from the target hit rate."""
    if periods <= 15:
        return 1
    if periods <= 30:
        return 2
    if periods <= 50:
        return 3
    if periods <= 100:
        return 5
    return 8


# ---------------------------
# Deterministic RNG
# ---------------------------
def make_rng(*parts: str) -> random.Random:
    """Create deterministic RNG from stable hash (NOT Python's built-in hash)."""
    seed = "|".join(parts)
    # FNV-1a 32-bit
    h = 2166136261
    for ch in seed.encode("utf-8"):
        h ^= ch
        h = (h * 16777619) & 0xFFFFFFFF
    return random.Random(h)


# ---------------------------
# Params / results
# ---------------------------
@dataclass
class SearchParams:
    target_hit_rate: float                       # percent, 0-100
    max_count: int = 20
    strategy: str = STRATEGY_FAST
    result_types: List[ResultType] = field(default_factory=lambda: [ResultType.TAIL])
    offset: int = 0
    periods: int = 15
    left_expand: int = 0
    right_expand: int = 0
    seed: Optional[int] = None
    time_budget: Optional[float] = None          # seconds; None -> config
    max_evaluations: Optional[int] = None        # None -> config

    def __post_init__(self):
        if self.strategy not in STRATEGIES:
            raise ValueError(f"unknown strategy: {self.strategy!r}")
        self.result_types = [ResultType(rt) for rt in self.result_types] or [ResultType.TAIL]
        self.periods = max(1, int(self.periods))
        self.max_count = max(1, int(self.max_count))


@dataclass
class SearchResult:
    formula: str
    hit_rate: float          # fraction 0-1
    hit_count: int
    total_periods: int
    fitness: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formula": self.formula,
            "hit_rate": self.hit_rate,
            "hit_count": self.hit_count,
            "total_periods": self.total_periods,
            "fitness": round(self.fitness, 4),
        }


ProgressCallback = Callable[[int, int, int, List[SearchResult]], None]
StopCheck = Callable[[], bool]


def secondary_fitness(result: VerifyResult) -> float:
    """Recent hits weigh more; a streak of hits ending at the newest period adds a bonus."""
    n = len(result.hits)
    if n == 0:
        return 0.0
    weighted = sum((i + 1) / n for i, hit in enumerate(result.hits) if hit)
    streak = 0
    for hit in reversed(result.hits):
        if not hit:
            break
        streak += 1
    return weighted + streak * 0.5


class FormulaSearch:
    """One search run. Not thread-safe; create one per request."""

    def __init__(
        self,
        history: Sequence[DrawRecord],
        params: SearchParams,
        on_progress: Optional[ProgressCallback] = None,
        should_stop: Optional[StopCheck] = None,
        resolver: Optional[ElementResolver] = None,
    ):
        cfg = get_config()
        self.history = list(history)
        self.params = params
        self.strategy = STRATEGIES[params.strategy]
        self.tolerance = tolerance_for(params.periods)
        self.on_progress = on_progress
        self.should_stop = should_stop or (lambda: False)
        self.resolver = resolver or default_resolver()
        self.progress_interval = max(1, cfg.progress_interval)
        self.time_budget = params.time_budget if params.time_budget is not None else cfg.search_time_budget
        self.max_evaluations = params.max_evaluations if params.max_evaluations is not None else cfg.search_max_evaluations

        seed = params.seed if params.seed is not None else cfg.search_seed
        self.rng = make_rng("search", str(seed)) if seed is not None else random.Random()

        # every window record is a backtest against the record before it
        self.anchor = self.history[0].period if self.history else None
        self.seen: set = set()
        self.results: List[SearchResult] = []
        self.processed = 0
        self.pruned = 0
        self.evaluations = 0
        self.total = 0
        self._started = time.monotonic()

    # ---------------------------
    # bookkeeping
    # ---------------------------
    def exhausted(self) -> bool:
        if self.should_stop():
            return True
        if self.max_evaluations and self.evaluations >= self.max_evaluations:
            return True
        if self.time_budget and time.monotonic() - self._started >= self.time_budget:
            return True
        return False

    def report(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self.processed, max(self.total, self.processed), len(self.results), list(self.results))

    def build(self, rule: str, result_type: ResultType, elements: List[str], offset: Optional[int] = None) -> str:
        p = self.params
        return format_formula(ParsedFormula(
            rule=rule,
            result_type=result_type,
            expression="+".join(elements),
            offset=p.offset if offset is None else offset,
            periods=p.periods,
            left_expand=p.left_expand,
            right_expand=p.right_expand,
        ))

    def score(self, text: str) -> Optional[SearchResult]:
        """Verify `text` once per run; None if already seen or unparsable."""
        if text in self.seen:
            return None
        self.seen.add(text)
        parsed = try_parse(text)
        if parsed is None:
            return None
        self.evaluations += 1
        vr = verify_formula(parsed, self.history, target_period=self.anchor, resolver=self.resolver)
        return SearchResult(
            formula=text,
            hit_rate=vr.hit_rate,
            hit_count=vr.hit_count,
            total_periods=vr.total_periods,
            fitness=secondary_fitness(vr),
        )

    def within(self, result: SearchResult, slack: float = 1.0) -> bool:
        return abs(result.hit_rate * 100 - self.params.target_hit_rate) <= self.tolerance * slack

    def rank_key(self, result: SearchResult):
        return (abs(result.hit_rate * 100 - self.params.target_hit_rate), -result.fitness)

    # ---------------------------
    # generators
    # ---------------------------
    def pick(self, pool: List[str]) -> str:
        return pool[self.rng.randrange(len(pool))]

    def _unique_fill(self, elements: List[str], pool: List[str], count: int) -> List[str]:
        used = set(elements)
        for _ in range(count):
            elem = self.pick(pool)
            attempts = 1
            while elem in used and attempts < 20:
                elem = self.pick(pool)
                attempts += 1
            if elem in used:
                continue
            used.add(elem)
            elements.append(elem)
        return elements

    def from_seed(self, seed_element: str, result_type: ResultType, rule: str) -> str:
        # 3-8 elements around the seed, mostly from the recommended pool
        recommended = recommended_elements(result_type)
        elements = [seed_element]
        for _ in range(self.rng.randint(3, 8) - 1):
            pool = recommended if self.rng.random() > 0.3 else ELEMENT_NAMES
            self._unique_fill(elements, pool, 1)
        return self.build(rule, result_type, elements)

    def from_template(self, result_type: ResultType, rule: str) -> Optional[str]:
        s = self.strategy
        count = self.rng.randint(s.min_elements, s.max_elements)
        base = list(self.pick(FORMULA_TEMPLATES[result_type]))[:count]
        pool = recommended_elements(result_type) + ELEMENT_NAMES
        elements = self._unique_fill(base, pool, count - len(base))
        if len(elements) < 3:
            return None
        return self.build(rule, result_type, elements)

    def mutate(self, text: str) -> Optional[str]:
        parsed = try_parse(text)
        if parsed is None:
            return None
        elements = [e for e in parsed.expression.split("+") if e]
        if not elements:
            return None

        p = self.params
        max_elements = 20 if p.periods <= 20 else 15 if p.periods <= 50 else 10
        recommended = recommended_elements(parsed.result_type) or ELEMENT_NAMES

        out = [self.pick(recommended) if self.rng.random() < self.strategy.mutation_rate else e for e in elements]
        if self.rng.random() < ADD_PROB and len(out) < max_elements:
            out.insert(self.rng.randrange(len(out) + 1), self.pick(recommended))
        if self.rng.random() < REMOVE_PROB and len(out) > MIN_MUTATED_ELEMENTS:
            out.pop(self.rng.randrange(len(out)))
        if self.rng.random() < SHUFFLE_PROB and len(out) > 1:
            self.rng.shuffle(out)
        if self.rng.random() < RESEED_PROB:
            return self.from_seed(self.pick(recommended), parsed.result_type, self.pick(list(RULES)))
        if len(out) < MIN_MUTATED_ELEMENTS:
            return None
        return format_formula(ParsedFormula(
            rule=parsed.rule,
            result_type=parsed.result_type,
            expression="+".join(out),
            offset=parsed.offset,
            periods=parsed.periods,
            left_expand=parsed.left_expand,
            right_expand=parsed.right_expand,
        ))

    def random_formula(self) -> str:
        rt = self.pick(self.params.result_types)
        recommended = list(recommended_elements(rt))
        self.rng.shuffle(recommended)
        count = self.rng.randint(1, 5)
        return self.build(self.pick(list(RULES)), rt, recommended[:count])

    # ---------------------------
    # strategies
    # ---------------------------
    def evolutionary(self) -> List[SearchResult]:
        s = self.strategy
        p = self.params
        self.total = s.population_size * s.generations

        def consider(text: Optional[str], slack: float = 1.0, sink: Optional[List[SearchResult]] = None) -> None:
            self.processed += 1
            if text is None:
                return
            result = self.score(text)
            if result is not None and self.within(result, slack):
                (self.results if sink is None else sink).append(result)

        for rt in p.result_types:
            for seed_element in ELEMENT_NAMES[:SEEDS_PER_TYPE]:
                for rule in RULES:
                    consider(self.from_seed(seed_element, rt, rule), slack=2.0)
        for rt in p.result_types:
            for rule in RULES:
                consider(self.from_template(rt, rule))

        for gen in range(s.generations):
            if self.exhausted():
                break
            elite = sorted(self.results, key=self.rank_key)[:ELITE_SIZE]
            fresh: List[SearchResult] = []
            for best in elite:
                for _ in range(MUTATIONS_PER_ELITE):
                    consider(self.mutate(best.formula), sink=fresh)
                    if self.processed % self.progress_interval == 0:
                        self.report()
            for _ in range(s.population_size // 2):
                consider(self.random_formula(), sink=fresh)

            self.results.extend(fresh)
            self.report()
            logger.debug("generation {}: {} candidates, {} evaluated", gen + 1, len(self.results), self.evaluations)
            if len(self.results) >= p.max_count * 2:
                break
        return self.results

    def prefix_survives(self, rule: str, rt: ResultType, names: List[str], rates: Dict[str, Optional[float]]) -> bool:
        """Score a combination prefix once and decide whether its subtree can still reach the band."""
        key = "+".join(names)
        if key not in rates:
            result = self.score(self.build(rule, rt, names))
            rates[key] = None if result is None else result.hit_rate * 100
        rate = rates[key]
        if rate is None:
            return True
        return rate + (100 - rate) * PRUNE_RECOVERY >= self.params.target_hit_rate - self.tolerance

    def combinations(self, n: int, k: int, keep: Callable[[List[int]], bool]):
        """Index combinations of size k in lexicographic order.

        At depth ceil(k/2) the prefix is offered to `keep`; a rejected prefix
        skips every combination below it, and those count as processed.
        """
        half = math.ceil(k / 2)
        chosen: List[int] = []

        def walk(start: int):
            if len(chosen) == k:
                yield tuple(chosen)
                return
            if k > 1 and len(chosen) == half:
                if self.exhausted():
                    return
                if not keep(chosen):
                    skipped = math.comb(n - chosen[-1] - 1, k - half)
                    self.processed += skipped
                    self.pruned += skipped
                    return
            for i in range(start, n - (k - len(chosen)) + 1):
                chosen.append(i)
                yield from walk(i + 1)
                chosen.pop()

        return walk(0)

    def exhaustive(self) -> List[SearchResult]:
        s = self.strategy
        p = self.params
        pool = list(ELEMENT_NAMES)
        sizes = range(s.min_elements, min(s.max_elements, len(pool)) + 1)
        per_pass = sum(math.comb(len(pool), k) for k in sizes)
        self.total = per_pass * len(p.result_types) * len(RULES)

        for rt in p.result_types:
            for rule in RULES:
                prefix_rates: Dict[str, Optional[float]] = {}

                def keep(prefix: List[int]) -> bool:
                    return self.prefix_survives(rule, rt, [pool[i] for i in prefix], prefix_rates)

                for k in sizes:
                    if len(self.results) >= p.max_count or self.exhausted():
                        self.report()
                        return self.results
                    for combo in self.combinations(len(pool), k, keep):
                        if len(self.results) >= p.max_count or self.exhausted():
                            self.report()
                            return self.results
                        self.processed += 1
                        if self.processed % self.progress_interval == 0:
                            self.report()

                        result = self.score(self.build(rule, rt, [pool[i] for i in combo]))
                        if result is not None and self.within(result):
                            self.results.append(result)
        self.report()
        return self.results

    def run(self) -> List[SearchResult]:
        if not self.history:
            return []
        if self.params.strategy == STRATEGY_DEEP:
            found = self.exhaustive()
        else:
            found = self.evolutionary()
        ranked = finalize(found, self.params)
        logger.info(
            "search {}: {} results ({} evaluated, {:.1f}s)",
            self.params.strategy, len(ranked), self.evaluations, time.monotonic() - self._started,
        )
        return ranked


def finalize(results: List[SearchResult], params: SearchParams) -> List[SearchResult]:
    """De-duplicate, order by hit rate (descending when the target is >= 50) and cut to max_count."""
    unique: Dict[str, SearchResult] = {}
    for r in results:
        unique.setdefault(r.formula, r)
    ordered = sorted(unique.values(), key=lambda r: -r.fitness)
    ordered.sort(key=lambda r: r.hit_rate, reverse=params.target_hit_rate >= 50)
    return ordered[:params.max_count]


def evolutionary_search(history: Sequence[DrawRecord], params: SearchParams, **kwargs) -> List[SearchResult]:
    return finalize(FormulaSearch(history, params, **kwargs).evolutionary(), params)


def exhaustive_search(history: Sequence[DrawRecord], params: SearchParams, **kwargs) -> List[SearchResult]:
    return finalize(FormulaSearch(history, params, **kwargs).exhaustive(), params)


def smart_search(
    history: Sequence[DrawRecord],
    params: SearchParams,
    on_progress: Optional[ProgressCallback] = None,
    should_stop: Optional[StopCheck] = None,
) -> List[SearchResult]:
    """Run the strategy named by params.strategy and return ranked results."""
    return FormulaSearch(history, params, on_progress=on_progress, should_stop=should_stop).run()
