import os
import random
import tempfile

# keep test runs out of the repo data dir and make searches short
os.environ.setdefault("FORMULA_LAB_DATA_DIR", tempfile.mkdtemp(prefix="formula_lab_"))
os.environ.setdefault("FORMULA_LAB_SEARCH_MAX_EVALS", "600")
os.environ.setdefault("FORMULA_LAB_SEARCH_SECONDS", "20")

import pytest

from formula_engines.models import DrawRecord


def make_history(count: int = 40, seed: int = 20260101):
    rng = random.Random(seed)
    out = [
        DrawRecord(period=2026001 + i, numbers=tuple(rng.sample(range(1, 50), 7)), zodiac_year=7)
        for i in range(count)
    ]
    out.reverse()
    return out


@pytest.fixture
def two_draws():
    return [
        DrawRecord(period=2026002, numbers=(1, 2, 3, 4, 5, 6, 7), zodiac_year=7),
        DrawRecord(period=2026001, numbers=(10, 11, 12, 13, 14, 15, 16), zodiac_year=7),
    ]


@pytest.fixture
def history():
    return make_history()


@pytest.fixture
def shuffled_draw():
    return DrawRecord(period=2026010, numbers=(30, 5, 12, 44, 9, 21, 17), zodiac_year=7)
