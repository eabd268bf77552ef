from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pandas as pd
from loguru import logger

from formula_engines.errors import HistoryError
from formula_engines.models import DRAW_SIZE, DrawRecord

NUMBER_COLUMNS = [f"n{i}" for i in range(1, DRAW_SIZE + 1)]

_SEPARATORS = re.compile(r"[,\s:;|，；：]+")

Listener = Callable[[], None]


# -----------------------------
# Text import
# -----------------------------
def parse_history_line(line: str, zodiac_year: int = 7) -> DrawRecord:
    parts = [p for p in _SEPARATORS.split(line.strip()) if p]
    if len(parts) != DRAW_SIZE + 1:
        raise HistoryError(f"expected period + {DRAW_SIZE} numbers: {line!r}")
    try:
        values = [int(p) for p in parts]
    except ValueError:
        raise HistoryError(f"non-numeric value: {line!r}") from None
    return DrawRecord(period=values[0], numbers=tuple(values[1:]), zodiac_year=zodiac_year)


def parse_history_text(text: str, zodiac_year: int = 7) -> List[DrawRecord]:
    """One draw per line: period then 7 numbers, separated by , space : ; or |.

    Invalid lines are skipped; a repeated period keeps the first occurrence.
    Returned newest first.
    """
    out: Dict[int, DrawRecord] = {}
    skipped = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            rec = parse_history_line(line, zodiac_year)
        except HistoryError as e:
            skipped += 1
            logger.debug("skip history line: {}", e)
            continue
        out.setdefault(rec.period, rec)
    if skipped:
        logger.warning("history import: {} lines skipped", skipped)
    return sorted(out.values(), key=lambda r: r.period, reverse=True)


# -----------------------------
# CSV load / save
# -----------------------------
def load_history_csv(path: str, default_zodiac_year: int = 7) -> List[DrawRecord]:
    df = pd.read_csv(path)
    for c in ["period"] + NUMBER_COLUMNS:
        if c not in df.columns:
            raise HistoryError(f"Missing column: {c}")

    df = df.copy()
    df["period"] = pd.to_numeric(df["period"], errors="coerce")
    for c in NUMBER_COLUMNS:
        df[c] = pd.to_numeric(df[c], errors="coerce")
    df = df.dropna(subset=["period"] + NUMBER_COLUMNS)
    if "zodiac_year" not in df.columns:
        df["zodiac_year"] = default_zodiac_year
    df["zodiac_year"] = pd.to_numeric(df["zodiac_year"], errors="coerce").fillna(default_zodiac_year)
    df = df.drop_duplicates(subset="period").sort_values("period", ascending=False).reset_index(drop=True)

    records = []
    for row in df.to_dict("records"):
        weekday = row.get("weekday")
        stem_branch = row.get("stem_branch")
        records.append(DrawRecord(
            period=int(row["period"]),
            numbers=tuple(int(row[c]) for c in NUMBER_COLUMNS),
            zodiac_year=int(row["zodiac_year"]),
            weekday=None if weekday is None or pd.isna(weekday) else int(weekday),
            stem_branch=None if stem_branch is None or pd.isna(stem_branch) else str(stem_branch),
        ))
    return records


def save_history_csv(records: Iterable[DrawRecord], path: str) -> None:
    rows = []
    for r in records:
        row = {"period": r.period, **dict(zip(NUMBER_COLUMNS, r.numbers))}
        row.update(zodiac_year=r.zodiac_year, weekday=r.weekday, stem_branch=r.stem_branch)
        rows.append(row)
    cols = ["period"] + NUMBER_COLUMNS + ["zodiac_year", "weekday", "stem_branch"]
    pd.DataFrame(rows, columns=cols).to_csv(path, index=False)


# -----------------------------
# In-memory store
# -----------------------------
class HistoryStore:
    """Draw history, newest first, unique by period.

    Listeners run after every change, e.g. to persist the store or drop a
    resolver cache built over it.
    """

    def __init__(self, records: Optional[Iterable[DrawRecord]] = None):
        self._by_period: Dict[int, DrawRecord] = {}
        self._listeners: List[Listener] = []
        if records:
            for r in records:
                self._by_period[r.period] = r

    def __len__(self) -> int:
        return len(self._by_period)

    def get_history(self) -> List[DrawRecord]:
        return sorted(self._by_period.values(), key=lambda r: r.period, reverse=True)

    def latest(self) -> Optional[DrawRecord]:
        if not self._by_period:
            return None
        return self._by_period[max(self._by_period)]

    def get(self, period: int) -> Optional[DrawRecord]:
        return self._by_period.get(period)

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for fn in self._listeners:
            fn()

    def merge(self, records: Iterable[DrawRecord]) -> int:
        """Add or replace records by period; returns how many were new."""
        added = 0
        for r in records:
            if r.period not in self._by_period:
                added += 1
            self._by_period[r.period] = r
        self._changed()
        return added

    def delete(self, period: int) -> bool:
        removed = self._by_period.pop(period, None) is not None
        if removed:
            self._changed()
        return removed

    def clear(self) -> None:
        self._by_period.clear()
        self._changed()

    def import_text(self, text: str, zodiac_year: int = 7) -> int:
        return self.merge(parse_history_text(text, zodiac_year))

    def import_csv(self, path: str, default_zodiac_year: int = 7) -> int:
        return self.merge(load_history_csv(path, default_zodiac_year))

    def save_csv(self, path: Path) -> None:
        save_history_csv(self.get_history(), str(path))
